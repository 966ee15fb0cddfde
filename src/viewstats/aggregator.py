"""
The aggregation job.

This reads every event from before today, works out the rollups, and
then replaces the contents of the two rollup collections.  We don't try
to update rollup documents in place.  We empty the collections and
write the new documents from scratch, which is simpler and always gives
the same result as a fresh run.

Note: the replace isn't atomic across the two collections.  While a
run is in progress, somebody reading the rollups might see an empty or
half-written collection.  The next successful run fixes that.
"""

import datetime
import logging
import uuid

from . import date_helpers
from .bulk_replace import delete_all_documents
from .config import Settings
from .lease import hold_lease
from .rollups import compute_rollups
from .store import DocumentStore
from .types import AggregationSummary
from .validation import partition_events


logger = logging.getLogger(__name__)


LEASE_NAME = "aggregation"


class PartialReplacement(Exception):
    """
    Thrown if the run fails after it started deleting the old rollups.

    Anything deleted or written before the failure is left as-is, so the
    rollup collections may be incomplete until the next successful run.
    The underlying error is available as ``__cause__``.
    """

    def __init__(self, stage: str):
        self.stage = stage
        super().__init__(f"Replacing rollups failed while {stage}")


def run_aggregation(
    store: DocumentStore,
    settings: Settings,
    *,
    now: datetime.datetime | None = None,
    run_id: str | None = None,
) -> AggregationSummary:
    """
    Run the whole aggregation job once.
    """
    if now is None:
        now = date_helpers.now()

    if run_id is None:
        run_id = str(uuid.uuid4())

    started_at = date_helpers.isoformat(now)
    today = date_helpers.as_utc(now).date()

    with hold_lease(
        store,
        collection=settings["LOCKS_COLLECTION"],
        name=LEASE_NAME,
        owner=run_id,
        ttl=datetime.timedelta(seconds=settings["LEASE_SECONDS"]),
        now=now,
    ):
        events_collection = store.collection(settings["EVENTS_COLLECTION"])

        # A comparison never matches a missing timestamp, so fetch those
        # separately; validation rejects them and they get counted.
        documents = events_collection.query(
            [("timestamp", "<", date_helpers.start_of_day(now))]
        ) + events_collection.query([("timestamp", "==", None)])
        logger.info("Fetched %d events from before %s", len(documents), today)

        events, rejected = partition_events(documents)
        if rejected:
            logger.info("Rejected %d malformed event(s)", len(rejected))

        rollups = compute_rollups(
            events, today=today, internal_ip=settings["INTERNAL_IP"]
        )
        logger.info(
            "Computed %d page rollup(s) and %d period rollup(s)",
            len(rollups["top_pages"]),
            len(rollups["periods"]),
        )

        top_pages = store.collection(settings["TOP_PAGES_COLLECTION"])
        periods = store.collection(settings["PERIODS_COLLECTION"])

        stage = "deleting old rollups"

        try:
            for collection in (top_pages, periods):
                delete_all_documents(
                    collection, batch_size=settings["DELETE_BATCH_SIZE"]
                )

            stage = "writing new rollups"

            top_pages.add_all(rollups["top_pages"])
            periods.add_all(rollups["periods"])
        except Exception as err:
            raise PartialReplacement(stage) from err

    return {
        "run_id": run_id,
        "events": len(events),
        "rejected": len(rejected),
        "top_pages": len(rollups["top_pages"]),
        "periods": len(rollups["periods"]),
        "started_at": started_at,
        "finished_at": date_helpers.isoformat(date_helpers.now()),
    }
