"""
Batched bulk loader.

Writes parsed entities with multi-row insert-or-ignore statements, sized so
that no statement binds more parameters than the backend allows:

    rows_per_statement = min(max_parameters // fields_per_row, max_rows)

The size is computed per table, since a node row binds 8 parameters and a
tag row binds 3.

Parents go in before their children. load() writes every node, way and
relation first and only then their tags, way node refs and members, so a
store that enforces foreign keys never sees an orphan child row. Children
are flattened per parent chunk and re-chunked by the child table's own size.

Every statement commits on its own. A failing statement stops the call with
a StoreError; statements that already ran stay committed, and re-running
the load is safe because every insert ignores rows whose key exists.

Usage:
    from osmgraph.db.loader import BulkLoader

    loader = BulkLoader(engine)
    result = loader.load(parse_result)
    print(result.statements, result.rows)
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

from osmgraph.config import LoaderConfig
from osmgraph.db import schema
from osmgraph.db.schema import Table
from osmgraph.entities import Node, OsmData, Relation, Way
from osmgraph.exceptions import StoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def chunk_size(field_count: int, max_parameters: int, max_rows: int) -> int:
    """Largest number of rows of *field_count* fields one statement may bind."""
    if field_count < 1:
        raise ValueError(f"field_count must be positive, got {field_count}")
    rows = max_parameters // field_count
    if rows < 1:
        raise ValueError(
            f"A parameter ceiling of {max_parameters} cannot fit one row of {field_count} fields"
        )
    return min(rows, max_rows)


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


@dataclass
class LoadResult:
    """Rows sent and statements issued per table."""

    rows: dict[str, int] = field(default_factory=dict)
    statements: dict[str, int] = field(default_factory=dict)

    def record(self, table: str, row_count: int) -> None:
        self.rows[table] = self.rows.get(table, 0) + row_count
        self.statements[table] = self.statements.get(table, 0) + 1

    def merge(self, other: LoadResult) -> LoadResult:
        for table, count in other.rows.items():
            self.rows[table] = self.rows.get(table, 0) + count
        for table, count in other.statements.items():
            self.statements[table] = self.statements.get(table, 0) + count
        return self


# ---------------------------------------------------------------------------
# Row builders
# ---------------------------------------------------------------------------


def node_row(node: Node) -> tuple:
    return (
        node.id,
        node.lat,
        node.lon,
        node.version,
        node.timestamp,
        node.changeset,
        node.uid,
        node.user,
    )


def way_row(way: Way) -> tuple:
    return (way.id, way.version, way.timestamp, way.changeset, way.uid, way.user)


def relation_row(relation: Relation) -> tuple:
    return (
        relation.id,
        relation.version,
        relation.timestamp,
        relation.changeset,
        relation.uid,
        relation.user,
    )


def tag_rows(entities: Sequence[Node | Way | Relation]) -> list[tuple]:
    return [(e.id, tag.key, tag.value) for e in entities for tag in e.tags]


def way_node_rows(ways: Sequence[Way]) -> list[tuple]:
    return [
        (way.id, sequence_id, ref_id)
        for way in ways
        for sequence_id, ref_id in enumerate(way.node_refs)
    ]


def member_rows(relations: Sequence[Relation]) -> list[tuple]:
    rows = []
    for relation in relations:
        for sequence_id, member in enumerate(relation.members):
            node_id, way_id, relation_ref_id = member.foreign_keys()
            rows.append(
                (
                    member.id,
                    relation.id,
                    sequence_id,
                    node_id,
                    way_id,
                    relation_ref_id,
                    member.member_type.value,
                    member.role,
                )
            )
    return rows


ChildBuilder = Callable[[Sequence[Any]], list[tuple]]


class BulkLoader:
    """
    Loads entity collections into the store through *engine*.

    Parameters
    ----------
    engine : PostgresEngine | SqliteEngine
    config : LoaderConfig, optional
        max_parameters defaults to the engine's own ceiling.
    """

    def __init__(self, engine, config: LoaderConfig | None = None) -> None:
        self.engine = engine
        self.config = config or LoaderConfig()
        self.max_parameters = self.config.max_parameters or engine.max_parameters

    def rows_per_statement(self, table: Table) -> int:
        return chunk_size(
            table.field_count, self.max_parameters, self.config.max_rows_per_statement
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def insert_nodes(self, nodes: Sequence[Node]) -> LoadResult:
        result = self._insert_parents(schema.NODE, nodes, node_row)
        return result.merge(self._insert_node_children(nodes))

    def insert_ways(self, ways: Sequence[Way]) -> LoadResult:
        result = self._insert_parents(schema.WAY, ways, way_row)
        return result.merge(self._insert_way_children(ways))

    def insert_relations(self, relations: Sequence[Relation]) -> LoadResult:
        result = self._insert_parents(schema.RELATION, relations, relation_row)
        return result.merge(self._insert_relation_children(relations))

    def load(self, data: OsmData) -> LoadResult:
        """Insert all parent rows, then all child rows."""
        result = LoadResult()
        result.merge(self._insert_parents(schema.NODE, data.nodes, node_row))
        result.merge(self._insert_parents(schema.WAY, data.ways, way_row))
        result.merge(self._insert_parents(schema.RELATION, data.relations, relation_row))
        result.merge(self._insert_node_children(data.nodes))
        result.merge(self._insert_way_children(data.ways))
        result.merge(self._insert_relation_children(data.relations))
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _insert_node_children(self, nodes: Sequence[Node]) -> LoadResult:
        return self._insert_children(schema.NODE, nodes, [(schema.NODE_TAGS, tag_rows)])

    def _insert_way_children(self, ways: Sequence[Way]) -> LoadResult:
        return self._insert_children(
            schema.WAY,
            ways,
            [(schema.WAY_NODES, way_node_rows), (schema.WAY_TAGS, tag_rows)],
        )

    def _insert_relation_children(self, relations: Sequence[Relation]) -> LoadResult:
        return self._insert_children(
            schema.RELATION,
            relations,
            [(schema.MEMBER, member_rows), (schema.RELATION_TAGS, tag_rows)],
        )

    def _insert_parents(
        self, table: Table, entities: Sequence[Any], to_row: Callable[[Any], tuple]
    ) -> LoadResult:
        result = LoadResult()
        for chunk in chunked(entities, self.rows_per_statement(table)):
            self._execute_chunk(table, [to_row(e) for e in chunk], result)
        self._log_table(table, result)
        return result

    def _insert_children(
        self,
        parent: Table,
        entities: Sequence[Any],
        children: list[tuple[Table, ChildBuilder]],
    ) -> LoadResult:
        result = LoadResult()
        for parent_chunk in chunked(entities, self.rows_per_statement(parent)):
            for child_table, build_rows in children:
                rows = build_rows(parent_chunk)
                for child_chunk in chunked(rows, self.rows_per_statement(child_table)):
                    self._execute_chunk(child_table, child_chunk, result)
        for child_table, _ in children:
            self._log_table(child_table, result)
        return result

    def _execute_chunk(self, table: Table, rows: Sequence[tuple], result: LoadResult) -> None:
        sql = self.engine.insert_ignore_sql(table.name, table.columns, len(rows))
        params = tuple(value for row in rows for value in row)
        try:
            self.engine.execute(sql, params)
        except self.engine.Error as e:
            logger.error(
                "Insert into %s failed after %d statements: %s",
                table.name,
                result.statements.get(table.name, 0),
                e,
            )
            raise StoreError(f"Insert into {table.name} failed: {e}", table=table.name) from e
        result.record(table.name, len(rows))

    @staticmethod
    def _log_table(table: Table, result: LoadResult) -> None:
        if table.name in result.statements:
            logger.info(
                "Sent %d rows to %s in %d statements",
                result.rows[table.name],
                table.name,
                result.statements[table.name],
            )
