"""
Checking the shape of raw events before they get counted.

Events are written by the tracking code, not by this app, so there's
no guarantee every document has the fields we need.  Rather than let a
missing ``page`` or ``ip`` turn into a ``None`` key in the rollups,
malformed events are rejected here, and the aggregator skips them.
"""

from collections.abc import Iterable
import datetime
import logging
import typing

from .store import Document
from .types import RejectedEvent, ViewEvent


logger = logging.getLogger(__name__)


class InvalidEvent(ValueError):
    """
    Thrown if an event document is missing a field, or a field has
    the wrong type.
    """

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"{field}: {reason}")


def _required_string(data: dict[str, typing.Any], field: str) -> str:
    try:
        value = data[field]
    except KeyError:
        raise InvalidEvent(field, "missing")

    if not isinstance(value, str):
        raise InvalidEvent(field, f"expected a string, got {type(value).__name__}")

    if not value:
        raise InvalidEvent(field, "empty")

    return value


def validate_event(data: dict[str, typing.Any]) -> ViewEvent:
    """
    Check a raw event document, and return it as a ``ViewEvent``.

    This throws ``InvalidEvent`` if the document isn't usable.
    """
    timestamp = _required_string(data, "timestamp")

    # We group events by the first 10 characters of the timestamp,
    # so that prefix has to be a real date.
    try:
        datetime.date.fromisoformat(timestamp[:10])
    except ValueError:
        raise InvalidEvent("timestamp", f"not an ISO-8601 timestamp: {timestamp!r}")

    event: ViewEvent = {
        "timestamp": timestamp,
        "ip": _required_string(data, "ip"),
        "page": _required_string(data, "page"),
    }

    internal_view = data.get("internalView")

    if internal_view is not None:
        if not isinstance(internal_view, bool):
            raise InvalidEvent(
                "internalView",
                f"expected a bool, got {type(internal_view).__name__}",
            )
        event["internalView"] = internal_view

    return event


def partition_events(
    documents: Iterable[Document],
) -> tuple[list[ViewEvent], list[RejectedEvent]]:
    """
    Split a list of event documents into the valid events, and the ones
    we had to reject (with the reason why).
    """
    valid: list[ViewEvent] = []
    rejected: list[RejectedEvent] = []

    for doc in documents:
        try:
            valid.append(validate_event(doc["data"]))
        except InvalidEvent as err:
            logger.warning("Skipping malformed event %s: %s", doc["id"], err)
            rejected.append({"id": doc["id"], "reason": str(err)})

    return valid, rejected
