"""
Streaming OpenStreetMap XML parser.

Reads .osm documents (optionally gzip or bzip2 compressed) in a single
forward pass using ElementTree's iterparse, clearing each element once it
closes so memory stays proportional to the output collections rather than
the document.

Child elements attach by nesting:
  - <tag>:    to the nearest enclosing node, way or relation still open.
  - <nd>:     to the most recently started way. Refs that are not integers
              are skipped.
  - <member>: to the most recently started relation. Members missing one of
              type/ref/role, or whose type is not node/way/relation, are
              skipped.

Malformed entity scalars (non-numeric id, lat, version, ...) and malformed
XML raise FormatError and abort the parse.

Usage:
    from osmgraph.parsers.osm_xml import parse_osm_xml

    result = parse_osm_xml("copenhagen.osm")
    print(len(result.nodes), len(result.ways), len(result.relations))
    print(result.children_skipped)
"""

from __future__ import annotations

import bz2
import gzip
import logging
import xml.etree.ElementTree as ET
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Any, Iterator, Union

from osmgraph.entities import Member, MemberType, Node, Relation, Tag, Way
from osmgraph.exceptions import FormatError, MemberReferenceError
from osmgraph.parsers.result import ParseResult, log_summary
from osmgraph.scalars import parse_float, parse_int

logger = logging.getLogger(__name__)

ENTITY_ELEMENTS = ("node", "way", "relation")

Entity = Union[Node, Way, Relation]


def parse_osm_xml(source: str | Path | IO[bytes]) -> ParseResult:
    """
    Stream-parse an OSM XML document into nodes, ways and relations.

    Args:
        source: Path to a .osm / .osm.gz / .osm.bz2 file, or a binary
                file object positioned at the start of the document.

    Returns:
        ParseResult with the three entity lists and the skipped children.

    Raises:
        FormatError: malformed XML or a malformed entity attribute.
    """
    name = str(source) if isinstance(source, (str, Path)) else getattr(source, "name", "<stream>")
    result = ParseResult(source=str(name))

    with _open_source(source) as stream:
        try:
            _consume(stream, result)
        except ET.ParseError as e:
            raise FormatError(f"Malformed XML in {name}: {e}") from e

    log_summary(logger, result)
    return result


@contextmanager
def _open_source(source: str | Path | IO[bytes]) -> Iterator[IO[bytes]]:
    if hasattr(source, "read"):
        yield source
        return

    path = Path(source)
    if path.suffix == ".gz":
        opener = gzip.open
    elif path.suffix == ".bz2":
        opener = bz2.open
    else:
        opener = open

    with opener(path, "rb") as f:
        yield f


def _consume(stream: IO[bytes], result: ParseResult) -> None:
    current: dict[str, Entity | None] = {kind: None for kind in ENTITY_ELEMENTS}
    open_entities: list[Entity] = []
    root: ET.Element | None = None

    for event, elem in ET.iterparse(stream, events=("start", "end")):
        name = _local_name(elem.tag)

        if event == "start":
            if root is None:
                root = elem

            if name in ENTITY_ELEMENTS:
                entity = _build_entity(name, elem.attrib)
                _output_list(result, name).append(entity)
                current[name] = entity
                open_entities.append(entity)
            elif name == "tag":
                _append_tag(open_entities[-1] if open_entities else None, elem.attrib, result)
            elif name == "nd":
                _append_node_ref(current["way"], elem.attrib, result)
            elif name == "member":
                _append_member(current["relation"], elem.attrib, result)
            continue

        if name in ENTITY_ELEMENTS:
            open_entities.pop()
            elem.clear()
            if not open_entities and root is not None:
                root.clear()
        elif name in ("tag", "nd", "member"):
            elem.clear()


def _local_name(tag: str) -> str:
    if tag.startswith("{"):
        return tag.rsplit("}", 1)[-1]
    return tag


def _output_list(result: ParseResult, kind: str) -> list:
    if kind == "node":
        return result.nodes
    if kind == "way":
        return result.ways
    return result.relations


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


def _build_entity(kind: str, attrs: dict[str, str]) -> Entity:
    common: dict[str, Any] = {
        "id": _int_attr(attrs, "id", kind, required=True),
        "version": _int_attr(attrs, "version", kind),
        "timestamp": attrs.get("timestamp", ""),
        "changeset": _int_attr(attrs, "changeset", kind),
        "uid": _int_attr(attrs, "uid", kind),
        "user": attrs.get("user", ""),
    }
    if kind == "node":
        return Node(
            lat=_float_attr(attrs, "lat", kind),
            lon=_float_attr(attrs, "lon", kind),
            **common,
        )
    if kind == "way":
        return Way(**common)
    return Relation(**common)


def _int_attr(attrs: dict[str, str], name: str, kind: str, required: bool = False) -> int:
    raw = attrs.get(name)
    if raw is None:
        if required:
            raise FormatError(f"<{kind}> is missing required attribute {name!r}")
        return 0
    try:
        return parse_int(raw)
    except ValueError:
        raise FormatError(
            f"<{kind} id={attrs.get('id')!r}> attribute {name}={raw!r} is not an integer"
        ) from None


def _float_attr(attrs: dict[str, str], name: str, kind: str) -> float:
    raw = attrs.get(name)
    if raw is None:
        return 0.0
    try:
        return parse_float(raw)
    except ValueError:
        raise FormatError(
            f"<{kind} id={attrs.get('id')!r}> attribute {name}={raw!r} is not a number"
        ) from None


# ---------------------------------------------------------------------------
# Children
# ---------------------------------------------------------------------------


def _append_tag(parent: Entity | None, attrs: dict[str, str], result: ParseResult) -> None:
    if parent is None:
        return
    key = attrs.get("k")
    if key is None:
        result.skip("tag", parent.id, "tag has no 'k' attribute")
        return
    parent.tags.append(Tag(key=key, value=attrs.get("v", "")))


def _append_node_ref(way: Way | None, attrs: dict[str, str], result: ParseResult) -> None:
    if way is None:
        result.skip("nd", None, "nd outside of any way")
        return
    raw = attrs.get("ref")
    try:
        ref = parse_int(raw)
    except ValueError:
        logger.debug("Skipping nd ref=%r in way %d", raw, way.id)
        result.skip("nd", way.id, f"ref {raw!r} is not an integer")
        return
    way.node_refs.append(ref)


def _append_member(
    relation: Relation | None, attrs: dict[str, str], result: ParseResult
) -> None:
    if relation is None:
        result.skip("member", None, "member outside of any relation")
        return

    raw_type, raw_ref, role = attrs.get("type"), attrs.get("ref"), attrs.get("role")
    if raw_type is None or raw_ref is None or role is None:
        result.skip("member", relation.id, "member is missing type, ref or role")
        return

    try:
        member_type = MemberType.from_osm(raw_type)
    except MemberReferenceError as e:
        logger.debug("Skipping member of relation %d: %s", relation.id, e)
        result.skip("member", relation.id, str(e))
        return

    try:
        ref_id = parse_int(raw_ref)
    except ValueError:
        raise FormatError(
            f"<member> of relation {relation.id} has non-integer ref {raw_ref!r}"
        ) from None

    relation.members.append(Member.create(relation.id, ref_id, member_type, role))
