import logging

from flask import Flask, g, jsonify
from flask import Response as FlaskResponse
from flask.logging import default_handler

from .aggregator import run_aggregation
from .classifier import classify_latest_event
from .config import DEFAULTS, Settings, load_settings
from .results import http_status, JobResult, run_job
from .store import DocumentStore


app = Flask(__name__)

app.config.from_mapping(DEFAULTS)
app.config.from_prefixed_env("VIEWSTATS")

# Fail at startup, not on the first request, if the config is bad
load_settings(app.config)

# Send the log messages from every module to the same place as Flask's
logging.getLogger("viewstats").addHandler(default_handler)
logging.getLogger("viewstats").setLevel(app.config["LOG_LEVEL"])


def get_settings() -> Settings:
    return load_settings(app.config)


def get_store() -> DocumentStore:
    """
    Return the store for the current request, opening it if necessary.
    """
    if "store" not in g:
        settings = get_settings()
        g.store = DocumentStore(
            settings["DATABASE_PATH"], timeout=settings["STORE_TIMEOUT"]
        )

    store: DocumentStore = g.store
    return store


@app.teardown_appcontext
def close_store(exc: BaseException | None) -> None:
    store = g.pop("store", None)

    if store is not None:
        store.close()


def job_response(result: JobResult) -> tuple[FlaskResponse, int]:
    return jsonify(result), http_status(result)


@app.route("/")
def index() -> FlaskResponse:
    settings = get_settings()

    return jsonify(
        {
            "service": "viewstats",
            "region": settings["REGION"],
            "collections": {
                "events": settings["EVENTS_COLLECTION"],
                "top_pages": settings["TOP_PAGES_COLLECTION"],
                "periods": settings["PERIODS_COLLECTION"],
            },
        }
    )


@app.route("/classify", methods=["GET", "POST"])
def classify() -> tuple[FlaskResponse, int]:
    """
    Classify the most recent unclassified event as internal/external.
    """
    settings = get_settings()

    result = run_job(
        "Classification",
        lambda: classify_latest_event(
            get_store(),
            collection=settings["EVENTS_COLLECTION"],
            cutoff=settings["CLASSIFIER_CUTOFF"],
            internal_ip=settings["INTERNAL_IP"],
        ),
    )

    return job_response(result)


@app.route("/aggregate", methods=["GET", "POST"])
def aggregate() -> tuple[FlaskResponse, int]:
    """
    Recompute the top pages and period rollups.
    """
    settings = get_settings()

    result = run_job("Aggregation", lambda: run_aggregation(get_store(), settings))

    return job_response(result)
