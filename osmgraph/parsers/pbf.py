"""
OpenStreetMap PBF reader.

Reads .osm.pbf files element-by-element with pyosmium and produces the same
ParseResult as the XML parser: nodes, ways (with ordered node refs) and
relations (with ordered members), each carrying its tags.

pyosmium objects are only valid inside the iteration step that produced
them, so every value is copied into our own entities immediately.

Usage:
    from osmgraph.parsers.pbf import parse_pbf

    result = parse_pbf("denmark-latest.osm.pbf")
    print(len(result.nodes), len(result.ways), len(result.relations))
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from osmgraph.entities import Member, MemberType, Node, Relation, Tag, Way
from osmgraph.exceptions import FormatError
from osmgraph.parsers.result import ParseResult, log_summary

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# pyosmium reports member kinds as single letters.
MEMBER_CODES = {"n": MemberType.NODE, "w": MemberType.WAY, "r": MemberType.RELATION}


def parse_pbf(filepath: str | Path) -> ParseResult:
    """
    Read every node, way and relation from an OSM PBF file in one pass.

    Args:
        filepath: Path to .osm.pbf file.

    Returns:
        ParseResult with the three entity lists.

    Raises:
        FormatError: pyosmium could not decode the file, or a node has no
                     valid location.
    """
    import osmium

    filepath = Path(filepath)
    result = ParseResult(source=filepath.name)

    try:
        for obj in osmium.FileProcessor(str(filepath)):
            if obj.is_node():
                result.nodes.append(_convert_node(obj))
            elif obj.is_way():
                result.ways.append(_convert_way(obj))
            elif obj.is_relation():
                result.relations.append(_convert_relation(obj, result))
    except RuntimeError as e:
        raise FormatError(f"Could not read {filepath.name}: {e}") from e

    log_summary(logger, result)
    return result


def _format_timestamp(value: datetime | None) -> str:
    if value is None:
        return ""
    return value.strftime(TIMESTAMP_FORMAT)


def _tags(obj) -> list[Tag]:
    return [Tag(key=t.k, value=t.v) for t in obj.tags]


def _convert_node(obj) -> Node:
    if not obj.location.valid():
        raise FormatError(f"Node {obj.id} has no valid location")
    return Node(
        id=obj.id,
        lat=obj.location.lat,
        lon=obj.location.lon,
        version=obj.version,
        timestamp=_format_timestamp(obj.timestamp),
        changeset=obj.changeset,
        uid=obj.uid,
        user=obj.user,
        tags=_tags(obj),
    )


def _convert_way(obj) -> Way:
    return Way(
        id=obj.id,
        version=obj.version,
        timestamp=_format_timestamp(obj.timestamp),
        changeset=obj.changeset,
        uid=obj.uid,
        user=obj.user,
        node_refs=[n.ref for n in obj.nodes],
        tags=_tags(obj),
    )


def _convert_relation(obj, result: ParseResult) -> Relation:
    members: list[Member] = []
    for m in obj.members:
        member_type = MEMBER_CODES.get(m.type)
        if member_type is None:
            logger.debug("Skipping member of relation %d: unknown type %r", obj.id, m.type)
            result.skip("member", obj.id, f"Unknown member type {m.type!r}")
            continue
        members.append(Member.create(obj.id, m.ref, member_type, m.role))

    return Relation(
        id=obj.id,
        version=obj.version,
        timestamp=_format_timestamp(obj.timestamp),
        changeset=obj.changeset,
        uid=obj.uid,
        user=obj.user,
        members=members,
        tags=_tags(obj),
    )
