from __future__ import annotations

from pathlib import Path

from osmgraph.parsers.osm_xml import parse_osm_xml
from osmgraph.parsers.pbf import parse_pbf
from osmgraph.parsers.result import ParseResult


def parse_document(path: str | Path) -> ParseResult:
    """Parse an OSM extract, choosing the reader from the file suffix."""
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"No such OSM file: {path}")
    if path.suffix == ".pbf":
        return parse_pbf(path)
    return parse_osm_xml(path)
