"""
Decoders for the delimited child strings produced by the fetch queries.

Each parent row carries its children folded into one string: cells joined
by the record separator (RS), sub-fields of a cell joined by the field
separator (FS).

    tags       key FS value
    node refs  sequence_id FS ref_id
    members    sequence_id FS id FS node_id FS way_id FS relation_ref_id FS member_type FS role

Ordered children carry their sequence_id and are sorted by it after
decoding, so their order does not depend on the aggregate's output order.

Splits on FS are bounded so free text keeps any separator it contains: a tag
splits once (the value keeps the rest), a member splits into exactly seven
fields (the role keeps the rest). None or "" decodes to an empty list.
"""

from __future__ import annotations

import logging

from osmgraph.config import FIELD_SEPARATOR, RECORD_SEPARATOR
from osmgraph.entities import Member, MemberType, Tag
from osmgraph.exceptions import FormatError, MemberReferenceError
from osmgraph.scalars import parse_int

logger = logging.getLogger(__name__)

NODE_REF_FIELDS = 2
MEMBER_FIELDS = 7


def _cells(encoded: str | None, record_separator: str) -> list[str]:
    if not encoded:
        return []
    return encoded.split(record_separator)


def _to_int(raw: str, what: str) -> int:
    try:
        return parse_int(raw)
    except ValueError:
        raise FormatError(f"{what} {raw!r} is not an integer") from None


def _optional_int(raw: str, what: str) -> int | None:
    if raw == "":
        return None
    return _to_int(raw, what)


def _split(cell: str, field_separator: str, fields: int, what: str) -> list[str]:
    parts = cell.split(field_separator, fields - 1)
    if len(parts) != fields:
        raise FormatError(f"{what} cell {cell!r} has {len(parts)} fields, expected {fields}")
    return parts


def decode_tags(
    encoded: str | None,
    field_separator: str = FIELD_SEPARATOR,
    record_separator: str = RECORD_SEPARATOR,
) -> list[Tag]:
    tags = []
    for cell in _cells(encoded, record_separator):
        parts = cell.split(field_separator, 1)
        if len(parts) != 2:
            raise FormatError(f"Tag cell {cell!r} has no key/value separator")
        tags.append(Tag(key=parts[0], value=parts[1]))
    return tags


def decode_node_refs(
    encoded: str | None,
    field_separator: str = FIELD_SEPARATOR,
    record_separator: str = RECORD_SEPARATOR,
) -> list[int]:
    refs = []
    for cell in _cells(encoded, record_separator):
        raw_sequence, raw_ref = _split(cell, field_separator, NODE_REF_FIELDS, "Node ref")
        refs.append((_to_int(raw_sequence, "Node ref sequence_id"), _to_int(raw_ref, "Node ref")))
    refs.sort()
    return [ref for _, ref in refs]


def decode_members(
    encoded: str | None,
    field_separator: str = FIELD_SEPARATOR,
    record_separator: str = RECORD_SEPARATOR,
) -> list[Member]:
    """
    Rebuild members in sequence order. The member_type field decides which
    of the three id slots holds the target; a member_type that is not node,
    way or relation drops the cell.
    """
    members: list[tuple[int, Member]] = []
    for cell in _cells(encoded, record_separator):
        parts = _split(cell, field_separator, MEMBER_FIELDS, "Member")
        raw_sequence, raw_id, raw_node, raw_way, raw_relation, raw_type, role = parts

        try:
            member_type = MemberType.from_osm(raw_type)
        except MemberReferenceError as e:
            logger.debug("Dropping member cell %r: %s", cell, e)
            continue

        sequence_id = _to_int(raw_sequence, "Member sequence_id")
        try:
            member = Member.from_foreign_keys(
                id=_to_int(raw_id, "Member id"),
                member_type=member_type,
                node_id=_optional_int(raw_node, "Member node_id"),
                way_id=_optional_int(raw_way, "Member way_id"),
                relation_ref_id=_optional_int(raw_relation, "Member relation_ref_id"),
                role=role,
            )
        except FormatError:
            raise
        except ValueError as e:
            raise FormatError(str(e)) from e
        members.append((sequence_id, member))

    members.sort(key=lambda pair: pair[0])
    return [member for _, member in members]
