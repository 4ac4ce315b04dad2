"""
End-to-end run: pick an extract, parse it, load it, read it back.

Usage:
    from osmgraph.db.core import open_engine
    from osmgraph.pipeline import list_candidate_files, run_pipeline

    files = list_candidate_files("maps/")
    with open_engine("sqlite:///osm.db") as engine:
        data = run_pipeline(files[0], engine)
"""

from __future__ import annotations

import logging
from pathlib import Path

from osmgraph.config import LoaderConfig
from osmgraph.db.fetcher import EntityFetcher
from osmgraph.db.loader import BulkLoader, LoadResult
from osmgraph.db.schema import create_schema
from osmgraph.entities import OsmData
from osmgraph.parsers.document import parse_document

logger = logging.getLogger(__name__)

CANDIDATE_SUFFIXES = (".osm", ".osm.xml", ".osm.gz", ".osm.bz2", ".osm.pbf")


def list_candidate_files(directory: str | Path) -> list[Path]:
    """OSM extracts directly inside *directory*, sorted by name."""
    directory = Path(directory)
    if not directory.is_dir():
        raise NotADirectoryError(f"Not a directory: {directory}")
    return sorted(
        p
        for p in directory.iterdir()
        if p.is_file() and p.name.lower().endswith(CANDIDATE_SUFFIXES)
    )


def load_file(path: str | Path, engine, config: LoaderConfig | None = None) -> LoadResult:
    """Create the schema if needed, then parse *path* and load every entity."""
    create_schema(engine)
    parsed = parse_document(path)
    result = BulkLoader(engine, config).load(parsed)
    logger.info(
        "Loaded %s: %d statements",
        Path(path).name,
        sum(result.statements.values()),
    )
    return result


def run_pipeline(
    path: str | Path, engine, config: LoaderConfig | None = None
) -> OsmData:
    load_file(path, engine, config)
    data = EntityFetcher(engine, config).fetch_all()
    logger.info("Read back %s", data.counts())
    return data
