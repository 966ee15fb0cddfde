"""
A lock document that stops two aggregation runs from overlapping.

Two runs deleting and writing the same collections at the same time
would interleave their batches and leave a mess, so each run has to
hold the lease for the duration of the replace.

The lease has an expiry time: if a run crashes without releasing it,
the next run can take it over once it's expired.
"""

from collections.abc import Iterator
import contextlib
import datetime
import logging

from . import date_helpers
from .store import DocumentStore, StoreError


logger = logging.getLogger(__name__)


class AggregationInProgress(Exception):
    """
    Thrown if another run is holding an unexpired lease.
    """

    def __init__(self, owner: str, expires_at: str):
        self.owner = owner
        self.expires_at = expires_at
        super().__init__(f"Lease is held by run {owner} until {expires_at}")


def acquire_lease(
    store: DocumentStore,
    *,
    collection: str,
    name: str,
    owner: str,
    ttl: datetime.timedelta,
    now: datetime.datetime,
) -> None:
    """
    Take the lease called ``name`` for ``owner``.

    This throws ``AggregationInProgress`` if somebody else holds it and
    it hasn't expired yet.
    """
    locks = store.collection(collection)

    with store.transaction() as t:
        existing = t.get(locks, name)

        if existing is not None:
            expires_at = existing["data"]["expiresAt"]

            if date_helpers.isoformat(now) < expires_at:
                raise AggregationInProgress(existing["data"]["owner"], expires_at)

            logger.warning(
                "Taking over expired lease %s from run %s",
                name,
                existing["data"]["owner"],
            )

        t.set(
            locks,
            name,
            {
                "owner": owner,
                "acquiredAt": date_helpers.isoformat(now),
                "expiresAt": date_helpers.isoformat(now + ttl),
            },
        )

    logger.info("Run %s acquired lease %s", owner, name)


def release_lease(
    store: DocumentStore, *, collection: str, name: str, owner: str
) -> bool:
    """
    Give up the lease, if ``owner`` still holds it.

    Returns False if the lease was taken over by somebody else in
    the meantime, in which case it's left alone.
    """
    locks = store.collection(collection)

    with store.transaction() as t:
        existing = t.get(locks, name)

        if existing is None or existing["data"]["owner"] != owner:
            logger.warning("Run %s no longer holds lease %s", owner, name)
            return False

        t.delete(locks, name)

    logger.info("Run %s released lease %s", owner, name)
    return True


@contextlib.contextmanager
def hold_lease(
    store: DocumentStore,
    *,
    collection: str,
    name: str,
    owner: str,
    ttl: datetime.timedelta,
    now: datetime.datetime,
) -> Iterator[None]:
    """
    Hold the lease for the duration of the ``with`` block.

    If the block fails and the lease can't be released either (say,
    because the store is still locked by the writer that broke the
    block), the block's error is the one that's raised.  The lease is
    then left to expire.
    """
    acquire_lease(
        store, collection=collection, name=name, owner=owner, ttl=ttl, now=now
    )

    try:
        yield
    except BaseException:
        try:
            release_lease(store, collection=collection, name=name, owner=owner)
        except StoreError:
            logger.exception(
                "Run %s couldn't release lease %s; it will expire at %s",
                owner,
                name,
                date_helpers.isoformat(now + ttl),
            )
        raise

    release_lease(store, collection=collection, name=name, owner=owner)
