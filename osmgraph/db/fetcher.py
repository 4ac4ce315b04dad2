"""
Denormalizing fetch.

Reads each parent table with one query that left-joins a pre-aggregated
subquery per child relationship, so every parent row arrives with its tags,
node refs or members folded into delimited strings (see osmgraph.db.codec).
Way node refs and members are aggregated in sequence_id order and each cell
carries its sequence_id, so decoding restores the order even where the
backend cannot order inside an aggregate. Tags are aggregated in key order.

The store is assumed to hold what BulkLoader wrote: a null mandatory column
raises NoDataError and an unconvertible value raises FormatError, aborting
the whole fetch rather than skipping the row.

Usage:
    from osmgraph.db.fetcher import EntityFetcher

    data = EntityFetcher(engine).fetch_all()
    print(data.counts())
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any

from osmgraph.config import LoaderConfig
from osmgraph.db import codec
from osmgraph.entities import Node, OsmData, Relation, Way
from osmgraph.exceptions import FormatError, NoDataError, StoreError

logger = logging.getLogger(__name__)

ENTITY_COLUMNS = ('id', 'version', '"timestamp"', 'changeset', 'uid', '"user"')


class EntityFetcher:
    """
    Reconstructs entity collections from the store behind *engine*.

    Parameters
    ----------
    engine : PostgresEngine | SqliteEngine
    config : LoaderConfig, optional
        Supplies the separators and the read batch size.
    """

    def __init__(self, engine, config: LoaderConfig | None = None) -> None:
        self.engine = engine
        self.config = config or LoaderConfig()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def fetch_nodes(self) -> list[Node]:
        nodes = []
        for row in self._rows(self.nodes_sql()):
            nodes.append(
                Node(
                    id=_int_column(row, "id"),
                    lat=_float_column(row, "lat"),
                    lon=_float_column(row, "lon"),
                    version=_int_column(row, "version"),
                    timestamp=_str_column(row, "timestamp"),
                    changeset=_int_column(row, "changeset"),
                    uid=_int_column(row, "uid"),
                    user=_str_column(row, "user"),
                    tags=self._tags(row),
                )
            )
        logger.info("Fetched %d nodes", len(nodes))
        return nodes

    def fetch_ways(self) -> list[Way]:
        ways = []
        for row in self._rows(self.ways_sql()):
            ways.append(
                Way(
                    **_entity_fields(row),
                    node_refs=codec.decode_node_refs(
                        row.get("node_refs"),
                        self.config.field_separator,
                        self.config.record_separator,
                    ),
                    tags=self._tags(row),
                )
            )
        logger.info("Fetched %d ways", len(ways))
        return ways

    def fetch_relations(self) -> list[Relation]:
        relations = []
        for row in self._rows(self.relations_sql()):
            relations.append(
                Relation(
                    **_entity_fields(row),
                    members=codec.decode_members(
                        row.get("members"),
                        self.config.field_separator,
                        self.config.record_separator,
                    ),
                    tags=self._tags(row),
                )
            )
        logger.info("Fetched %d relations", len(relations))
        return relations

    def fetch_all(self) -> OsmData:
        return OsmData(
            nodes=self.fetch_nodes(),
            ways=self.fetch_ways(),
            relations=self.fetch_relations(),
        )

    # ------------------------------------------------------------------
    # SQL
    # ------------------------------------------------------------------

    def _sep(self, ch: str) -> str:
        return self.engine.char_sql(ch)

    def _tags_subquery(self, parent: str) -> str:
        fs = self._sep(self.config.field_separator)
        return self.engine.aggregate_children_sql(
            table=f"{parent}_tags",
            group_column=f"{parent}_id",
            cell_expr=f'"key" || {fs} || "value"',
            order_by='"key"',
            separator=self.config.record_separator,
            alias="tags",
        )

    def nodes_sql(self) -> str:
        return f"""
            select
                n.id, n.lat, n.lon, n.version, n."timestamp", n.changeset, n.uid, n."user",
                t.tags
            from node n
            left join ({self._tags_subquery("node")}) t on t.node_id = n.id
            order by n.id
        """

    def ways_sql(self) -> str:
        columns = ", ".join(f"w.{c}" for c in ENTITY_COLUMNS)
        fs = self._sep(self.config.field_separator)
        node_refs = self.engine.aggregate_children_sql(
            table="way_nodes",
            group_column="way_id",
            cell_expr=f"cast(sequence_id as text) || {fs} || cast(ref_id as text)",
            order_by="sequence_id",
            separator=self.config.record_separator,
            alias="node_refs",
        )
        return f"""
            select {columns}, wn.node_refs, t.tags
            from way w
            left join ({node_refs}) wn on wn.way_id = w.id
            left join ({self._tags_subquery("way")}) t on t.way_id = w.id
            order by w.id
        """

    def relations_sql(self) -> str:
        columns = ", ".join(f"r.{c}" for c in ENTITY_COLUMNS)
        fs = self._sep(self.config.field_separator)
        cell = f" || {fs} || ".join(
            [
                "cast(sequence_id as text)",
                "cast(id as text)",
                "coalesce(cast(node_id as text), '')",
                "coalesce(cast(way_id as text), '')",
                "coalesce(cast(relation_ref_id as text), '')",
                "member_type",
                "role",
            ]
        )
        members = self.engine.aggregate_children_sql(
            table="member",
            group_column="relation_id",
            cell_expr=cell,
            order_by="sequence_id",
            separator=self.config.record_separator,
            alias="members",
        )
        return f"""
            select {columns}, m.members, t.tags
            from relation r
            left join ({members}) m on m.relation_id = r.id
            left join ({self._tags_subquery("relation")}) t on t.relation_id = r.id
            order by r.id
        """

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _rows(self, sql: str) -> Iterator[dict[str, Any]]:
        try:
            for batch in self.engine.query_batches(
                sql, batch_size=self.config.fetch_batch_size
            ):
                yield from batch
        except self.engine.Error as e:
            raise StoreError(f"Fetch query failed: {e}") from e

    def _tags(self, row: dict[str, Any]):
        return codec.decode_tags(
            row.get("tags"), self.config.field_separator, self.config.record_separator
        )


def _require(row: dict[str, Any], column: str) -> Any:
    value = row.get(column)
    if value is None:
        raise NoDataError(f"Column {column!r} is null or missing in row {row.get('id')!r}")
    return value


def _int_column(row: dict[str, Any], column: str) -> int:
    value = _require(row, column)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise FormatError(f"Column {column!r} value {value!r} is not an integer") from None


def _float_column(row: dict[str, Any], column: str) -> float:
    value = _require(row, column)
    try:
        return float(value)
    except (TypeError, ValueError):
        raise FormatError(f"Column {column!r} value {value!r} is not a number") from None


def _str_column(row: dict[str, Any], column: str) -> str:
    value = _require(row, column)
    if not isinstance(value, str):
        raise FormatError(f"Column {column!r} value {value!r} is not text")
    return value


def _entity_fields(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": _int_column(row, "id"),
        "version": _int_column(row, "version"),
        "timestamp": _str_column(row, "timestamp"),
        "changeset": _int_column(row, "changeset"),
        "uid": _int_column(row, "uid"),
        "user": _str_column(row, "user"),
    }
