"""
Run the aggregation job once, outside the web app.
"""

import json
import logging
import os
import sys

from viewstats.aggregator import run_aggregation
from viewstats.config import load_settings_from_env
from viewstats.results import run_job
from viewstats.store import DocumentStore


if __name__ == "__main__":
    settings = load_settings_from_env(os.environ)

    logging.basicConfig(level=settings["LOG_LEVEL"])

    store = DocumentStore(settings["DATABASE_PATH"], timeout=settings["STORE_TIMEOUT"])

    try:
        result = run_job("Aggregation", lambda: run_aggregation(store, settings))
    finally:
        store.close()

    print(json.dumps(result, indent=2))

    if not result["ok"]:
        sys.exit(1)
