"""
Configuration.

The defaults live in ``DEFAULTS``; the Flask app loads them into
``app.config`` and then overrides them from any environment variables
prefixed with ``VIEWSTATS_``, e.g.

    VIEWSTATS_INTERNAL_IP=10.0.0.1
    VIEWSTATS_DELETE_BATCH_SIZE=100

"""

from collections.abc import Mapping
import datetime
import json
import typing


class Settings(typing.TypedDict):
    DATABASE_PATH: str
    INTERNAL_IP: str
    CLASSIFIER_CUTOFF: str
    DELETE_BATCH_SIZE: int
    REGION: str
    EVENTS_COLLECTION: str
    TOP_PAGES_COLLECTION: str
    PERIODS_COLLECTION: str
    LOCKS_COLLECTION: str
    LEASE_SECONDS: int
    STORE_TIMEOUT: float
    LOG_LEVEL: str


DEFAULTS: Settings = {
    "DATABASE_PATH": "views.sqlite",
    "INTERNAL_IP": "80.62.20.6",
    "CLASSIFIER_CUTOFF": "2020-07-21T09:47:58.666Z",
    "DELETE_BATCH_SIZE": 50,
    "REGION": "europe-west1",
    "EVENTS_COLLECTION": "views",
    "TOP_PAGES_COLLECTION": "topPages",
    "PERIODS_COLLECTION": "periodRollups",
    "LOCKS_COLLECTION": "locks",
    "LEASE_SECONDS": 600,
    "STORE_TIMEOUT": 5.0,
    "LOG_LEVEL": "INFO",
}


def _positive_int(config: Mapping[str, typing.Any], key: str) -> int:
    value = config[key]

    # ``bool`` is a subclass of ``int``, but ``True`` isn't a batch size
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"{key} must be a positive integer, got {value!r}")

    return value


def _non_empty_str(config: Mapping[str, typing.Any], key: str) -> str:
    value = config[key]

    if not isinstance(value, str) or not value:
        raise ValueError(f"{key} must be a non-empty string, got {value!r}")

    return value


def load_settings(config: Mapping[str, typing.Any]) -> Settings:
    """
    Pick out and check the settings this app uses from a larger
    mapping (usually ``app.config``).  Anything missing gets the default.

    This throws a ``ValueError`` if any of the values don't make sense.
    """
    merged = {key: config.get(key, default) for key, default in DEFAULTS.items()}

    cutoff = _non_empty_str(merged, "CLASSIFIER_CUTOFF")
    try:
        datetime.datetime.fromisoformat(cutoff)
    except ValueError:
        raise ValueError(f"CLASSIFIER_CUTOFF is not an ISO-8601 timestamp: {cutoff!r}")

    store_timeout = merged["STORE_TIMEOUT"]
    if isinstance(store_timeout, bool) or not isinstance(store_timeout, (int, float)):
        raise ValueError(f"STORE_TIMEOUT must be a number, got {store_timeout!r}")
    if store_timeout < 0:
        raise ValueError(f"STORE_TIMEOUT can't be negative, got {store_timeout!r}")

    return {
        "DATABASE_PATH": str(merged["DATABASE_PATH"]),
        "INTERNAL_IP": _non_empty_str(merged, "INTERNAL_IP"),
        "CLASSIFIER_CUTOFF": cutoff,
        "DELETE_BATCH_SIZE": _positive_int(merged, "DELETE_BATCH_SIZE"),
        "REGION": _non_empty_str(merged, "REGION"),
        "EVENTS_COLLECTION": _non_empty_str(merged, "EVENTS_COLLECTION"),
        "TOP_PAGES_COLLECTION": _non_empty_str(merged, "TOP_PAGES_COLLECTION"),
        "PERIODS_COLLECTION": _non_empty_str(merged, "PERIODS_COLLECTION"),
        "LOCKS_COLLECTION": _non_empty_str(merged, "LOCKS_COLLECTION"),
        "LEASE_SECONDS": _positive_int(merged, "LEASE_SECONDS"),
        "STORE_TIMEOUT": float(store_timeout),
        "LOG_LEVEL": _non_empty_str(merged, "LOG_LEVEL").upper(),
    }


def load_settings_from_env(
    environ: Mapping[str, str], *, prefix: str = "VIEWSTATS"
) -> Settings:
    """
    Load settings from environment variables, for the scripts that run
    outside the Flask app.

    Like ``Flask.config.from_prefixed_env()``, values are parsed as JSON
    where possible, so ``VIEWSTATS_DELETE_BATCH_SIZE=100`` is an int.
    """
    overrides: dict[str, typing.Any] = {}

    for key in DEFAULTS:
        try:
            raw = environ[f"{prefix}_{key}"]
        except KeyError:
            continue

        try:
            overrides[key] = json.loads(raw)
        except ValueError:
            overrides[key] = raw

    return load_settings(overrides)
