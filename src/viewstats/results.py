"""
Turning the outcome of a job into something we can send back to
whoever triggered it.

The jobs themselves just raise exceptions; this is the only place that
catches them.  Every result says whether the job worked, and if not,
what kind of failure it was, so callers don't have to parse messages.
"""

from collections.abc import Callable, Mapping
import logging
import typing

from .aggregator import PartialReplacement
from .lease import AggregationInProgress
from .store import StoreUnavailable, TransactionConflict


logger = logging.getLogger(__name__)


ErrorKind = typing.Literal[
    "transaction_conflict",
    "already_running",
    "store_unavailable",
    "partial_completion",
    "internal_error",
]


class JobError(typing.TypedDict):
    kind: ErrorKind
    message: str


class JobResult(typing.TypedDict):
    ok: bool
    message: str
    error: JobError | None
    detail: dict[str, typing.Any]


HTTP_STATUS: dict[ErrorKind, int] = {
    "transaction_conflict": 409,
    "already_running": 409,
    "store_unavailable": 503,
    "partial_completion": 500,
    "internal_error": 500,
}


def classify_error(err: Exception) -> ErrorKind:
    """
    Decide what kind of failure an exception represents.
    """
    if isinstance(err, PartialReplacement):
        return "partial_completion"
    elif isinstance(err, AggregationInProgress):
        return "already_running"
    elif isinstance(err, TransactionConflict):
        return "transaction_conflict"
    elif isinstance(err, StoreUnavailable):
        return "store_unavailable"
    else:
        return "internal_error"


def run_job(name: str, job: Callable[[], Mapping[str, typing.Any]]) -> JobResult:
    """
    Run a job, and describe what happened.
    """
    try:
        detail = job()
    except Exception as err:
        kind = classify_error(err)
        message = str(err)

        if isinstance(err, PartialReplacement) and err.__cause__ is not None:
            message += f": {err.__cause__}"

        if kind == "internal_error":
            logger.exception("%s failed unexpectedly", name)
        else:
            logger.error("%s failed (%s): %s", name, kind, message)

        return {
            "ok": False,
            "message": f"{name} failed.",
            "error": {"kind": kind, "message": message},
            "detail": {},
        }

    logger.info("%s succeeded", name)

    return {
        "ok": True,
        "message": f"{name} succeeded.",
        "error": None,
        "detail": dict(detail),
    }


def http_status(result: JobResult) -> int:
    if result["error"] is None:
        return 200
    else:
        return HTTP_STATUS[result["error"]["kind"]]
