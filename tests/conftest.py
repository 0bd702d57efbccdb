"""
Shared pytest fixtures for the OMERO question-type tests.

Fixture summary
---------------
Database:
    db_path              -- temp .db file path with cleanup
    engine               -- SQLAlchemy engine on db_path (disposed on teardown)
    db_session           -- ORM session on a fully installed schema
    legacy_table         -- factory creating a plugin options table in a
                            historical shape and filling it with image URLs
    read_rows            -- read a table back with sqlite3 as a list of dicts
    table_columns        -- column names of a table via sqlite3

Forms:
    mc_form_data         -- valid multichoice submission dict
    interactive_form_data -- valid interactive submission dict

Flask:
    flask_app            -- app on a temp database, CSRF disabled
    flask_client         -- test client
"""

import os
import sqlite3
import tempfile

import pytest

from omeroqtypes.database import get_engine, get_session
from omeroqtypes.migrations import install_or_upgrade

MULTICHOICE_TABLE = "qtype_omemultichoice_options"
INTERACTIVE_TABLE = "qtype_omeinteractive_options"

# Table layouts of the options tables as shipped by historical releases
LEGACY_SCHEMAS = {
    (MULTICHOICE_TABLE, 0): (
        "CREATE TABLE qtype_omemultichoice_options (\n"
        "    id INTEGER PRIMARY KEY,\n"
        "    questionid INTEGER NOT NULL DEFAULT 0,\n"
        "    single INTEGER NOT NULL DEFAULT 1,\n"
        "    answertype INTEGER NOT NULL DEFAULT 0,\n"
        "    omeroimageurl TEXT NOT NULL\n"
        ")"
    ),
    (MULTICHOICE_TABLE, 2015121700): (
        "CREATE TABLE qtype_omemultichoice_options (\n"
        "    id INTEGER PRIMARY KEY,\n"
        "    questionid INTEGER NOT NULL DEFAULT 0,\n"
        "    single INTEGER NOT NULL DEFAULT 1,\n"
        "    omeroimageurl TEXT NOT NULL,\n"
        "    omeroimagelocked BOOLEAN NOT NULL DEFAULT 0,\n"
        "    omeroimageproperties TEXT NULL DEFAULT NULL\n"
        ")"
    ),
    (INTERACTIVE_TABLE, 0): (
        "CREATE TABLE qtype_omeinteractive_options (\n"
        "    id INTEGER PRIMARY KEY,\n"
        "    questionid INTEGER NOT NULL DEFAULT 0,\n"
        "    single INTEGER NOT NULL DEFAULT 1,\n"
        "    omeroimageurl TEXT NOT NULL\n"
        ")"
    ),
}


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def db_path():
    """Provide a temporary database file path with cleanup."""
    tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
    tmp.close()
    yield tmp.name
    try:
        if os.path.exists(tmp.name):
            os.remove(tmp.name)
    except OSError:
        pass  # Windows may still hold the lock


@pytest.fixture
def engine(db_path):
    """SQLAlchemy engine bound to the temp database."""
    eng = get_engine(db_path)
    yield eng
    eng.dispose()


@pytest.fixture
def db_session(engine):
    """ORM session on a freshly installed schema."""
    install_or_upgrade(engine)
    session = get_session(engine)
    yield session
    session.close()


@pytest.fixture
def legacy_table(db_path):
    """Factory fixture: create an options table in a historical layout.

    Usage::

        legacy_table(MULTICHOICE_TABLE, 0, ["/img/42?id=42&x=0.5"])

    Rows get ids 1..N in the order given.
    """

    def _create(table, version, urls, extra_sql=()):
        conn = sqlite3.connect(db_path)
        try:
            conn.execute(LEGACY_SCHEMAS[(table, version)])
            for row_id, url in enumerate(urls, start=1):
                conn.execute(
                    f"INSERT INTO {table} (id, questionid, omeroimageurl) VALUES (?, ?, ?)",
                    (row_id, row_id, url),
                )
            for statement in extra_sql:
                conn.execute(statement)
            conn.commit()
        finally:
            conn.close()

    return _create


@pytest.fixture
def read_rows(db_path):
    """Read every row of a table with plain sqlite3, ordered by id."""

    def _read(table):
        conn = sqlite3.connect(db_path)
        conn.row_factory = sqlite3.Row
        try:
            return [dict(row) for row in conn.execute(f"SELECT * FROM {table} ORDER BY id")]
        finally:
            conn.close()

    return _read


@pytest.fixture
def table_columns(db_path):
    """Column names of a table with plain sqlite3."""

    def _columns(table):
        conn = sqlite3.connect(db_path)
        try:
            return [row[1] for row in conn.execute(f"PRAGMA table_info({table})")]
        finally:
            conn.close()

    return _columns


# ---------------------------------------------------------------------------
# Form data
# ---------------------------------------------------------------------------


@pytest.fixture
def mc_form_data():
    """A valid single-answer multichoice submission with two ROI answers."""
    return {
        "name": "Mitosis phase",
        "questiontext": "Which ROI shows a cell in metaphase?",
        "defaultmark": "1",
        "generalfeedback": "",
        "omeroimageurl": "/omero-image-repository/42",
        "omeroimagelocked": "1",
        "omeroimageproperties": '{"id": 42, "center": {"x": 0.5, "y": 0.25}, "t": 1, "z": 1, "zoom_level": 10.0}',
        "focusablerois": "roi_1, roi_2",
        "single": "1",
        "shuffleanswers": "1",
        "answernumbering": "abc",
        "noanswers": "2",
        "roi[0]": "roi_1",
        "fraction[0]": "1.0",
        "feedback[0]": "Correct, chromosomes are aligned.",
        "roi[1]": "roi_2",
        "fraction[1]": "0.0",
        "feedback[1]": "This cell is in anaphase.",
        "correctfeedback": "Your answer is correct.",
        "partiallycorrectfeedback": "",
        "incorrectfeedback": "Your answer is incorrect.",
        "numhints": "1",
        "hint[0]": "Look for aligned chromosomes.",
        "editing_mode": "true",
    }


@pytest.fixture
def interactive_form_data(mc_form_data):
    """A valid interactive submission (no image lock/properties)."""
    data = dict(mc_form_data)
    data.pop("omeroimagelocked")
    data.pop("omeroimageproperties")
    data["name"] = "Find the nucleus"
    return data


# ---------------------------------------------------------------------------
# Flask fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def flask_app(db_path, monkeypatch):
    """Provide a Flask test app with a temporary database."""
    monkeypatch.setenv("SECRET_KEY", "test-secret-key")
    monkeypatch.delenv("DATABASE_URL", raising=False)
    from omeroqtypes.web.app import create_app

    test_config = {
        "paths": {"database_file": db_path},
        "image_server": {"url": "http://omero.example.org", "thumbnail_path": "/webgateway/render_shape_thumbnail"},
        "logging": {"level": "WARNING"},
    }
    app = create_app(test_config)
    app.config["TESTING"] = True
    app.config["WTF_CSRF_ENABLED"] = False  # Disable CSRF for non-security tests

    yield app

    app.config["DB_ENGINE"].dispose()


@pytest.fixture
def flask_client(flask_app):
    """Provide a Flask test client."""
    with flask_app.test_client() as client:
        yield client
