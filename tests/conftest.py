from collections.abc import Iterator
import pathlib

from flask.testing import FlaskClient
import pytest

from viewstats.config import DEFAULTS, load_settings, Settings
from viewstats.store import DocumentStore


@pytest.fixture
def db_path(tmp_path: pathlib.Path) -> pathlib.Path:
    return tmp_path / "views.sqlite"


@pytest.fixture
def store(db_path: pathlib.Path) -> Iterator[DocumentStore]:
    """
    Creates an empty document store in a temporary directory.
    """
    s = DocumentStore(db_path)

    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def settings(db_path: pathlib.Path) -> Settings:
    return load_settings({**DEFAULTS, "DATABASE_PATH": str(db_path)})


@pytest.fixture()
def client(
    db_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch
) -> Iterator[FlaskClient]:
    """
    Creates an instance of the app for use in testing.

    See https://flask.palletsprojects.com/en/3.0.x/testing/#fixtures
    """
    from viewstats.app import app

    # ``setitem`` puts the old values back, so they don't leak between tests
    monkeypatch.setitem(app.config, "TESTING", True)
    monkeypatch.setitem(app.config, "DATABASE_PATH", str(db_path))

    with app.test_client() as client:
        yield client
