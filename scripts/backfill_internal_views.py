"""
Set the ``internalView`` flag on every event that doesn't have one yet.

The ``/classify`` endpoint only looks at one event at a time, so this
catches up on everything in one go, e.g. before running the first
aggregation on a new database.
"""

import collections
import logging
import os

import tqdm

from viewstats.classifier import classify_all_events, find_unclassified_events
from viewstats.config import load_settings_from_env
from viewstats.store import DocumentStore


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING)

    settings = load_settings_from_env(os.environ)
    store = DocumentStore(settings["DATABASE_PATH"], timeout=settings["STORE_TIMEOUT"])

    total = len(
        find_unclassified_events(store, collection=settings["EVENTS_COLLECTION"])
    )

    outcomes: collections.Counter[str] = collections.Counter()

    for result in tqdm.tqdm(
        classify_all_events(
            store,
            collection=settings["EVENTS_COLLECTION"],
            internal_ip=settings["INTERNAL_IP"],
        ),
        total=total,
    ):
        outcomes[result["outcome"]] += 1

    store.close()

    for outcome, count in sorted(outcomes.items()):
        print(f"{outcome}: {count}")
