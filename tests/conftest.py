"""
tests/conftest.py
"""
from __future__ import annotations

import datetime as _dt
import itertools
from pathlib import Path
from typing import Generator

import pytest
from flask.testing import FlaskClient
from pytest import MonkeyPatch

# The single-file app lives here:
from mistakelog.app import app, get_db, init_db, insert_mistake


@pytest.fixture(scope="session")
def _tmp_db_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    """One temp file for the whole test session (faster than per-test)."""
    return tmp_path_factory.mktemp("data") / "test.sqlite3"


@pytest.fixture(scope="session", autouse=True)
def _configure_app(_tmp_db_path: Path) -> None:
    """Point the app at the temp database *once* and create the schema."""
    app.config.update(TESTING=True, DATABASE=str(_tmp_db_path))
    with app.app_context():
        init_db()


@pytest.fixture(autouse=True)
def _empty_table() -> None:
    """Every test starts with no mistakes stored."""
    with app.app_context():
        db = get_db()
        db.execute("DELETE FROM mistakes")
        db.commit()


@pytest.fixture
def client() -> Generator[FlaskClient, None, None]:
    """
    Gives each test an application context *and* test client.

    Yields:
        `flask.testing.FlaskClient`
    """
    with app.test_client() as client:
        with app.app_context():
            yield client


@pytest.fixture
def db(client):
    return get_db()


@pytest.fixture(autouse=True, scope="session")
def _fake_clock():
    """
    Patch mistakelog.app.utc_now for the whole test session so every call
    returns an ever-increasing timestamp.
    """
    from mistakelog import app as app_module  # import here to avoid early import

    counter = itertools.count()  # 0, 1, 2, …

    base = _dt.datetime(2099, 1, 1, tzinfo=_dt.timezone.utc)

    def _fake_now():
        return base + _dt.timedelta(seconds=next(counter))

    mp = MonkeyPatch()
    mp.setattr(app_module, "utc_now", _fake_now)

    yield  # tests run here

    mp.undo()


def _fields(**overrides: str) -> dict[str, str]:
    fields = {
        "topic": "graphs",
        "date": "2024-03-01",
        "problem_statement": "Shortest path returned the wrong length",
        "what_i_missed": "Edges had negative weights",
        "fix_rule": "Check edge weights before picking Dijkstra",
        "pattern_to_remember": "negative weights → Bellman-Ford",
    }
    fields.update(overrides)
    return fields


@pytest.fixture
def add_mistake(db):
    """Insert a mistake straight through the repository; returns its id."""

    def _add(**overrides: str) -> int:
        fields = _fields(**overrides)
        fields.setdefault("created_at", "2099-01-01T00:00:00+00:00")
        return insert_mistake(fields, db=db)

    return _add


@pytest.fixture
def form() -> dict[str, str]:
    """A complete, valid add/edit form payload."""
    return _fields()
