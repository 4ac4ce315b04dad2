"""
In-memory OpenStreetMap entities.

Nodes, ways and relations carry their scalar attributes plus their child
collections (tags, node references, members). A way's node references and a
relation's members are ordered; tags are not.

A relation member is held as a tagged union (member_type + ref_id). The
three-nullable-column form used by the store (node_id, way_id,
relation_ref_id) only exists at the store boundary, via
Member.foreign_keys() and Member.from_foreign_keys().
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from enum import Enum

from osmgraph.exceptions import MemberReferenceError

class MemberType(str, Enum):
    NODE = "node"
    WAY = "way"
    RELATION = "relation"

    @classmethod
    def from_osm(cls, value: str) -> MemberType:
        """
        Map a member kind ("node", "way" or "relation") to a MemberType.

        Raises MemberReferenceError for anything else.
        """
        try:
            return cls(value)
        except ValueError:
            raise MemberReferenceError(f"Unknown member type {value!r}") from None


@dataclass(frozen=True)
class Tag:
    key: str
    value: str


def member_id(relation_id: int, ref_id: int, member_type: MemberType, role: str) -> int:
    """
    Deterministic 64-bit identity for a relation member.

    SHA-256 over (relation_id, ref_id, member_type, role), truncated to the
    first 8 bytes and read as a signed big-endian integer so it fits a
    BIGINT column. Loading the same logical member twice yields the same id.
    """
    hasher = hashlib.sha256()
    hasher.update(relation_id.to_bytes(8, "big", signed=True))
    hasher.update(ref_id.to_bytes(8, "big", signed=True))
    hasher.update(member_type.value.encode("utf-8"))
    hasher.update(role.encode("utf-8"))
    return int.from_bytes(hasher.digest()[:8], "big", signed=True)


@dataclass(frozen=True)
class Member:
    id: int
    ref_id: int
    member_type: MemberType
    role: str

    @classmethod
    def create(
        cls, relation_id: int, ref_id: int, member_type: MemberType, role: str
    ) -> Member:
        return cls(
            id=member_id(relation_id, ref_id, member_type, role),
            ref_id=ref_id,
            member_type=member_type,
            role=role,
        )

    def foreign_keys(self) -> tuple[int | None, int | None, int | None]:
        """Return (node_id, way_id, relation_ref_id) with only the matching slot set."""
        return (
            self.ref_id if self.member_type is MemberType.NODE else None,
            self.ref_id if self.member_type is MemberType.WAY else None,
            self.ref_id if self.member_type is MemberType.RELATION else None,
        )

    @classmethod
    def from_foreign_keys(
        cls,
        id: int,
        member_type: MemberType,
        node_id: int | None,
        way_id: int | None,
        relation_ref_id: int | None,
        role: str,
    ) -> Member:
        """
        Rebuild a member from its store columns. The slot selected by
        member_type is authoritative; a missing value there is a ValueError.
        """
        slots = {
            MemberType.NODE: node_id,
            MemberType.WAY: way_id,
            MemberType.RELATION: relation_ref_id,
        }
        ref_id = slots[member_type]
        if ref_id is None:
            raise ValueError(f"Member {id} of type {member_type.value} has no target id")
        return cls(id=id, ref_id=ref_id, member_type=member_type, role=role)


@dataclass
class Node:
    id: int
    lat: float = 0.0
    lon: float = 0.0
    version: int = 0
    timestamp: str = ""
    changeset: int = 0
    uid: int = 0
    user: str = ""
    tags: list[Tag] = field(default_factory=list)


@dataclass
class Way:
    id: int
    version: int = 0
    timestamp: str = ""
    changeset: int = 0
    uid: int = 0
    user: str = ""
    node_refs: list[int] = field(default_factory=list)
    tags: list[Tag] = field(default_factory=list)


@dataclass
class Relation:
    id: int
    version: int = 0
    timestamp: str = ""
    changeset: int = 0
    uid: int = 0
    user: str = ""
    members: list[Member] = field(default_factory=list)
    tags: list[Tag] = field(default_factory=list)


@dataclass
class OsmData:
    """The three entity collections produced by a parse or a fetch."""

    nodes: list[Node] = field(default_factory=list)
    ways: list[Way] = field(default_factory=list)
    relations: list[Relation] = field(default_factory=list)

    def counts(self) -> dict[str, int]:
        return {
            "nodes": len(self.nodes),
            "ways": len(self.ways),
            "relations": len(self.relations),
        }
