"""
Emptying out a collection, a batch at a time.

We never load the whole collection: we read one page of documents
(ordered by ID), delete it, and go back for the next page until there's
nothing left.  Each batch is atomic, but the whole delete isn't:
if a batch fails, everything deleted by earlier batches stays deleted.
"""

import logging

from .store import Collection


logger = logging.getLogger(__name__)


def delete_all_documents(collection: Collection, *, batch_size: int) -> int:
    """
    Delete every document in ``collection``, and return the number of
    batches it took.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be at least 1, got {batch_size}")

    batches = 0

    while True:
        page = collection.page(limit=batch_size)

        if not page:
            break

        collection.delete_many([doc["id"] for doc in page])
        batches += 1

        logger.debug(
            "Deleted batch %d (%d documents) from %s", batches, len(page), collection.name
        )

    logger.info("Emptied %s in %d batch(es)", collection.name, batches)

    return batches
