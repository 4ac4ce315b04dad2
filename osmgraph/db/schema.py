"""
Table definitions for the OSM entity store.

Parent tables (node, way, relation) are keyed by OSM id. Child tables hold
tags, way node refs and relation members. Ordered children (way_nodes,
member) carry an explicit sequence_id so the fetch layer can reproduce the
source order.

Only child -> parent foreign keys are declared. Way node refs and member
targets may point at entities outside the loaded extract, so they are
stored without referential checks.
"""

from __future__ import annotations

from dataclasses import dataclass

import pandas as pd


@dataclass(frozen=True)
class Table:
    name: str
    columns: tuple[str, ...]
    ddl: str

    @property
    def field_count(self) -> int:
        return len(self.columns)


NODE = Table(
    name="node",
    columns=("id", "lat", "lon", "version", "timestamp", "changeset", "uid", "user"),
    ddl="""
    create table if not exists node (
        id bigint primary key not null,
        lat double precision not null,
        lon double precision not null,
        version integer not null,
        "timestamp" text not null,
        changeset bigint not null,
        uid bigint not null,
        "user" text not null
    )""",
)

WAY = Table(
    name="way",
    columns=("id", "version", "timestamp", "changeset", "uid", "user"),
    ddl="""
    create table if not exists way (
        id bigint primary key not null,
        version integer not null,
        "timestamp" text not null,
        changeset bigint not null,
        uid bigint not null,
        "user" text not null
    )""",
)

RELATION = Table(
    name="relation",
    columns=("id", "version", "timestamp", "changeset", "uid", "user"),
    ddl="""
    create table if not exists relation (
        id bigint primary key not null,
        version integer not null,
        "timestamp" text not null,
        changeset bigint not null,
        uid bigint not null,
        "user" text not null
    )""",
)

WAY_NODES = Table(
    name="way_nodes",
    columns=("way_id", "sequence_id", "ref_id"),
    ddl="""
    create table if not exists way_nodes (
        way_id bigint not null references way (id),
        sequence_id integer not null,
        ref_id bigint not null,
        primary key (way_id, sequence_id)
    )""",
)

MEMBER = Table(
    name="member",
    columns=(
        "id",
        "relation_id",
        "sequence_id",
        "node_id",
        "way_id",
        "relation_ref_id",
        "member_type",
        "role",
    ),
    ddl="""
    create table if not exists member (
        id bigint primary key not null,
        relation_id bigint not null references relation (id),
        sequence_id integer not null,
        node_id bigint,
        way_id bigint,
        relation_ref_id bigint,
        member_type text not null,
        role text not null,
        constraint member_type_check check (
            (member_type = 'node' and node_id is not null and way_id is null and relation_ref_id is null) or
            (member_type = 'way' and way_id is not null and node_id is null and relation_ref_id is null) or
            (member_type = 'relation' and relation_ref_id is not null and node_id is null and way_id is null)
        )
    )""",
)


def _tag_table(parent: Table) -> Table:
    fk = f"{parent.name}_id"
    return Table(
        name=f"{parent.name}_tags",
        columns=(fk, "key", "value"),
        ddl=f"""
    create table if not exists {parent.name}_tags (
        {fk} bigint not null references {parent.name} (id),
        "key" text not null,
        "value" text not null,
        primary key ({fk}, "key")
    )""",
    )


NODE_TAGS = _tag_table(NODE)
WAY_TAGS = _tag_table(WAY)
RELATION_TAGS = _tag_table(RELATION)

# Creation order respects the declared foreign keys.
TABLES: tuple[Table, ...] = (
    NODE,
    WAY,
    RELATION,
    WAY_NODES,
    MEMBER,
    NODE_TAGS,
    WAY_TAGS,
    RELATION_TAGS,
)

INDEXES = (
    "create index if not exists member_relation_idx on member (relation_id, sequence_id)",
)


def create_schema(engine) -> None:
    """Create every table and index that does not exist yet."""
    for table in TABLES:
        engine.execute(table.ddl)
    for statement in INDEXES:
        engine.execute(statement)
    engine.logger.info("Schema ready (%d tables)", len(TABLES))


def table_counts(engine) -> pd.DataFrame:
    """Row count per table, as a DataFrame with table_name and row_count columns."""
    sql = " union all ".join(
        f"select '{t.name}' as table_name, count(*) as row_count from {t.name}"
        for t in TABLES
    )
    return engine.query(sql)
