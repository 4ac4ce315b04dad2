from __future__ import annotations

import sqlite3
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from osmgraph.db.core import SqliteEngine
from osmgraph.db.schema import create_schema


@pytest.fixture()
def write_osm(tmp_path: Path):
    """Write an OSM XML document body into a temp file and return its path."""

    def _write(body: str, name: str = "extract.osm") -> Path:
        fp = tmp_path / name
        fp.write_text(
            '<?xml version="1.0" encoding="UTF-8"?>\n'
            '<osm version="0.6" generator="test">\n'
            f"{body}\n"
            "</osm>\n",
            encoding="utf-8",
        )
        return fp

    return _write


@pytest.fixture()
def sqlite_engine(tmp_path: Path):
    """A file-backed SQLite store with the schema already created."""
    engine = SqliteEngine(tmp_path / "osm.db")
    create_schema(engine)
    yield engine
    engine.close()


@pytest.fixture()
def mock_engine():
    """
    An engine whose execute/query_batches are mocks but whose dialect
    (placeholders, insert syntax, aggregation SQL) is SQLite's.
    """
    dialect = SqliteEngine()
    engine = MagicMock()
    engine.placeholder = dialect.placeholder
    engine.max_parameters = dialect.max_parameters
    engine.Error = sqlite3.Error
    engine.insert_ignore_sql.side_effect = dialect.insert_ignore_sql
    engine.char_sql.side_effect = dialect.char_sql
    engine.aggregate_children_sql.side_effect = dialect.aggregate_children_sql
    engine.execute.return_value = 0
    return engine
