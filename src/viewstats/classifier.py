"""
Tagging events as internal or external traffic.

An event is "internal" if it came from my own IP address.  Each event
gets an ``internalView`` flag, which is set once and then left alone.
That includes an explicit ``False``: it is final, and the event is never
re-checked against the internal IP.
"""

from collections.abc import Iterator
import logging

from .store import Collection, Document, DocumentStore, Filter, Transaction
from .types import ClassifyResult


logger = logging.getLogger(__name__)


def is_classified(doc: Document) -> bool:
    return doc["data"].get("internalView") is not None


def classify_event(
    t: Transaction, events: Collection, doc: Document, *, internal_ip: str
) -> ClassifyResult:
    """
    Set the ``internalView`` flag on a single event, unless it already
    has one.  This must be called inside a transaction which has read
    ``doc``.
    """
    if is_classified(doc):
        return {"event_id": doc["id"], "outcome": "already_classified"}

    is_internal = doc["data"].get("ip") == internal_ip
    t.update(events, doc["id"], {"internalView": is_internal})

    return {
        "event_id": doc["id"],
        "outcome": "classified_internal" if is_internal else "classified_external",
    }


def classify_latest_event(
    store: DocumentStore, *, collection: str, cutoff: str, internal_ip: str
) -> ClassifyResult:
    """
    Find the newest event before ``cutoff``, and classify it.

    The read and the write happen in the same transaction, so nobody
    else can see (or change) the event halfway through.
    """
    events = store.collection(collection)

    with store.transaction() as t:
        candidates = t.query(
            events,
            [("timestamp", "<", cutoff)],
            order_by=("timestamp", "desc"),
            limit=1,
        )

        if not candidates:
            result: ClassifyResult = {"event_id": None, "outcome": "no_candidate"}
        else:
            result = classify_event(t, events, candidates[0], internal_ip=internal_ip)

    logger.info("Classified event %s: %s", result["event_id"], result["outcome"])

    return result


def find_unclassified_events(
    store: DocumentStore, *, collection: str, cutoff: str | None = None
) -> list[str]:
    """
    Return the IDs of every event that doesn't have an ``internalView``
    flag yet, oldest first.
    """
    filters: list[Filter] = [("internalView", "==", None)]

    if cutoff is not None:
        filters.append(("timestamp", "<", cutoff))

    return [
        doc["id"]
        for doc in store.collection(collection).stream(
            filters, order_by=("timestamp", "asc")
        )
    ]


def classify_all_events(
    store: DocumentStore,
    *,
    collection: str,
    internal_ip: str,
    cutoff: str | None = None,
) -> Iterator[ClassifyResult]:
    """
    Classify every event that hasn't been classified yet.

    Each event is re-read and written in its own transaction, so if
    something else classifies it first, we leave it alone.
    """
    events = store.collection(collection)

    for event_id in find_unclassified_events(
        store, collection=collection, cutoff=cutoff
    ):
        with store.transaction() as t:
            doc = t.get(events, event_id)

            if doc is None:
                continue

            result = classify_event(t, events, doc, internal_ip=internal_ip)

        # Only yield once the transaction is committed, so we never hold
        # the write lock while the caller is busy.
        yield result
