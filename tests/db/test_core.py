import sqlite3
from unittest.mock import MagicMock, patch

import pandas as pd
import psycopg2
import pytest

from osmgraph.db.core import (
    DatabaseCredentials,
    PostgresEngine,
    SqliteEngine,
    _sqlite_path,
    open_engine,
)
from osmgraph.exceptions import StoreError


@pytest.fixture
def sample_creds():
    return DatabaseCredentials(
        host="db.example.com",
        port=5432,
        database="osm",
        username="loader",
        password="s3cret!@#",
    )


@pytest.fixture
def mock_cursor():
    cur = MagicMock()
    cur.description = [("col_a",), ("col_b",)]
    cur.fetchall.return_value = [("val1", "val2"), ("val3", "val4")]
    cur.rowcount = 2
    cur.close.return_value = None
    return cur


@pytest.fixture
def mock_conn(mock_cursor):
    conn = MagicMock()
    conn.closed = False
    conn.cursor.return_value = mock_cursor
    conn.commit.return_value = None
    conn.rollback.return_value = None
    return conn


@pytest.fixture
def engine(mock_conn, sample_creds):
    eng = PostgresEngine(sample_creds)
    eng._conn = mock_conn
    return eng


class TestDatabaseCredentials:
    def test_direct_construction(self, sample_creds):
        assert sample_creds.host == "db.example.com"
        assert sample_creds.port == 5432
        assert sample_creds.database == "osm"
        assert sample_creds.username == "loader"
        assert sample_creds.driver == "postgresql"

    # -- redacted_connection_string ----------------------------------------

    def test_redacted_connection_string(self, sample_creds):
        rcs = sample_creds.redacted_connection_string
        assert "s3cret" not in rcs
        assert "db.example.com" not in rcs
        assert rcs == "postgresql://loader:****@****:5432/osm"

    def test_str_redacts_sensitive_fields(self, sample_creds):
        s = str(sample_creds)
        assert "s3cret" not in s
        assert "db.example.com" not in s
        assert "loader" in s
        assert repr(sample_creds) == s

    # -- from_env_file -----------------------------------------------------

    def test_from_env_file(self, tmp_path):
        env = tmp_path / ".env"
        env.write_text(
            "# osm store\n"
            "OSM_DB_HOST=localhost\n"
            "OSM_DB_PORT=5433\n"
            "OSM_DB_DATABASE=osm\n"
            'OSM_DB_USER="loader"\n'
            "OSM_DB_PASSWORD='pw with spaces'\n"
        )
        creds = DatabaseCredentials.from_env_file(env)
        assert creds.host == "localhost"
        assert creds.port == 5433
        assert creds.username == "loader"
        assert creds.password == "pw with spaces"

    def test_from_env_file_custom_prefix_and_default_port(self, tmp_path):
        env = tmp_path / ".env"
        env.write_text(
            "GIS_HOST=h\nGIS_DATABASE=d\nGIS_USER=u\nGIS_PASSWORD=p\n"
        )
        creds = DatabaseCredentials.from_env_file(env, prefix="GIS_")
        assert creds.port == 5432
        assert creds.database == "d"

    def test_from_env_file_falls_back_to_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("OSM_DB_HOST", "envhost")
        monkeypatch.setenv("OSM_DB_DATABASE", "envdb")
        monkeypatch.setenv("OSM_DB_USER", "envuser")
        monkeypatch.setenv("OSM_DB_PASSWORD", "envpw")
        creds = DatabaseCredentials.from_env_file(tmp_path / "missing.env")
        assert creds.host == "envhost"
        assert creds.database == "envdb"

    def test_from_env_file_missing_variable(self, tmp_path, monkeypatch):
        monkeypatch.delenv("OSM_DB_PASSWORD", raising=False)
        env = tmp_path / ".env"
        env.write_text("OSM_DB_HOST=h\nOSM_DB_DATABASE=d\nOSM_DB_USER=u\n")
        with pytest.raises(ValueError, match="OSM_DB_PASSWORD"):
            DatabaseCredentials.from_env_file(env)

    # -- from_url ----------------------------------------------------------

    def test_from_url(self):
        creds = DatabaseCredentials.from_url("postgresql://u:p%40ss@db:6543/osm")
        assert creds.host == "db"
        assert creds.port == 6543
        assert creds.database == "osm"
        assert creds.username == "u"
        assert creds.password == "p@ss"

    def test_from_url_default_port(self):
        assert DatabaseCredentials.from_url("postgres://u:p@db/osm").port == 5432

    def test_from_url_requires_database(self):
        with pytest.raises(ValueError, match="database name"):
            DatabaseCredentials.from_url("postgresql://u:p@db:5432/")


class TestPgRetry:
    def test_retries_on_operational_error(self, engine, mock_cursor):
        mock_cursor.execute.side_effect = [
            psycopg2.OperationalError("connection reset"),
            None,
        ]
        engine.query("SELECT 1")
        assert mock_cursor.execute.call_count == 2

    def test_no_retry_on_programming_error(self, engine, mock_cursor):
        mock_cursor.execute.side_effect = psycopg2.ProgrammingError("syntax error")
        with pytest.raises(psycopg2.ProgrammingError):
            engine.query("SELECT bad syntax")
        assert mock_cursor.execute.call_count == 1

    def test_exhausts_retries(self, engine, mock_cursor):
        mock_cursor.execute.side_effect = psycopg2.OperationalError("down")
        with pytest.raises(psycopg2.OperationalError):
            engine.query("SELECT 1")
        assert mock_cursor.execute.call_count == 3

    def test_execute_is_not_retried(self, engine, mock_conn, mock_cursor):
        mock_cursor.execute.side_effect = psycopg2.OperationalError("timeout")
        with pytest.raises(psycopg2.OperationalError):
            engine.execute("insert into node values (%s)", (1,))
        assert mock_cursor.execute.call_count == 1
        mock_conn.rollback.assert_called_once()


class TestPostgresEngineStatements:
    def test_query_returns_dataframe(self, engine, mock_cursor):
        mock_cursor.description = [("id",), ("user",)]
        mock_cursor.fetchall.return_value = [(1, "alice"), (2, "bob")]
        df = engine.query("select id, \"user\" from node where id > %s", params=(0,))
        assert isinstance(df, pd.DataFrame)
        assert list(df.columns) == ["id", "user"]
        assert len(df) == 2

    def test_execute_returns_rowcount_and_commits(self, engine, mock_conn, mock_cursor):
        mock_cursor.rowcount = 3
        assert engine.execute("delete from node") == 3
        mock_conn.commit.assert_called_once()

    def test_query_batches_yields_dicts(self, engine, mock_conn):
        batch_cursor = MagicMock()
        batch_cursor.description = [("x",)]
        batch_cursor.fetchmany.side_effect = [[(1,), (2,)], [(3,)], []]
        mock_conn.cursor.return_value = batch_cursor

        batches = list(engine.query_batches("select x from t", batch_size=2))
        assert batches == [[{"x": 1}, {"x": 2}], [{"x": 3}]]
        mock_conn.cursor.assert_called_once_with(name="batch_cursor")
        batch_cursor.close.assert_called_once()

    def test_query_batches_retries_statement(self, engine, mock_conn):
        batch_cursor = MagicMock()
        batch_cursor.description = [("x",)]
        batch_cursor.execute.side_effect = [psycopg2.OperationalError("reset"), None]
        batch_cursor.fetchmany.side_effect = [[(1,)], []]
        mock_conn.cursor.return_value = batch_cursor

        assert list(engine.query_batches("select x from t")) == [[{"x": 1}]]
        assert batch_cursor.execute.call_count == 2
        mock_conn.rollback.assert_called_once()

    def test_query_batches_fetch_failure_is_not_retried(self, engine, mock_conn):
        batch_cursor = MagicMock()
        batch_cursor.description = [("x",)]
        batch_cursor.fetchmany.side_effect = [[(1,)], psycopg2.OperationalError("reset")]
        mock_conn.cursor.return_value = batch_cursor

        batches = engine.query_batches("select x from t")
        assert next(batches) == [{"x": 1}]
        with pytest.raises(psycopg2.OperationalError):
            next(batches)
        assert batch_cursor.execute.call_count == 1
        batch_cursor.close.assert_called_once()


class TestPostgresDialect:
    def test_insert_ignore_sql(self, engine):
        sql = engine.insert_ignore_sql("node_tags", ("node_id", "key", "value"), 2)
        assert sql == (
            'insert into node_tags ("node_id", "key", "value") values '
            "(%s, %s, %s), (%s, %s, %s) on conflict do nothing"
        )

    def test_char_sql(self, engine):
        assert engine.char_sql("\x1e") == "chr(30)"

    def test_aggregate_uses_ordered_string_agg(self, engine):
        sql = engine.aggregate_children_sql(
            "way_nodes", "way_id", "cast(ref_id as text)", "sequence_id", "\x1e", "node_refs"
        )
        assert "string_agg(cast(ref_id as text), chr(30) order by sequence_id)" in sql
        assert sql.endswith("group by way_id")


class TestPostgresEngineConnectionManagement:
    @patch("psycopg2.connect")
    def test_lazy_connection(self, mock_connect, sample_creds):
        mock_connect.return_value = MagicMock(closed=False)
        eng = PostgresEngine(sample_creds)
        assert eng._conn is None
        _ = eng.connection
        mock_connect.assert_called_once()

    @patch("psycopg2.connect")
    def test_reconnects_if_closed(self, mock_connect, sample_creds):
        conn_new = MagicMock(closed=False)
        mock_connect.return_value = conn_new
        eng = PostgresEngine(sample_creds)
        eng._conn = MagicMock(closed=True)
        assert eng.connection == conn_new

    def test_context_manager_closes(self, mock_conn, sample_creds):
        eng = PostgresEngine(sample_creds)
        eng._conn = mock_conn
        with eng:
            pass
        mock_conn.close.assert_called_once()

    def test_close_idempotent(self, mock_conn, sample_creds):
        eng = PostgresEngine(sample_creds)
        eng._conn = mock_conn
        eng.close()
        eng.close()
        mock_conn.close.assert_called_once()


class TestSqliteEngine:
    def test_query_and_execute(self):
        with SqliteEngine() as eng:
            eng.execute("create table t (x integer primary key)")
            assert eng.execute("insert into t values (?), (?)", (1, 2)) == 2
            df = eng.query("select x from t order by x")
            assert df["x"].tolist() == [1, 2]

    def test_insert_or_ignore_skips_duplicates(self):
        with SqliteEngine() as eng:
            eng.execute("create table t (x integer primary key)")
            sql = eng.insert_ignore_sql("t", ("x",), 2)
            assert sql == 'insert or ignore into t ("x") values (?), (?)'
            eng.execute(sql, (1, 2))
            eng.execute(sql, (2, 3))
            assert eng.query("select count(*) as n from t")["n"][0] == 3

    def test_foreign_keys_enforced(self):
        with SqliteEngine() as eng:
            eng.execute("create table p (id integer primary key)")
            eng.execute("create table c (p_id integer references p (id))")
            with pytest.raises(sqlite3.IntegrityError):
                eng.execute("insert into c values (?)", (1,))

    def test_query_batches(self):
        with SqliteEngine() as eng:
            eng.execute("create table t (x integer)")
            eng.execute("insert into t values (1), (2), (3)")
            batches = list(eng.query_batches("select x from t order by x", batch_size=2))
            assert batches == [[{"x": 1}, {"x": 2}], [{"x": 3}]]

    def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / "nested" / "osm.db"
        with SqliteEngine(path) as eng:
            eng.execute("create table t (x integer)")
        assert path.exists()

    def test_lock_errors_are_retried(self):
        eng = SqliteEngine()
        cur = MagicMock()
        cur.execute.side_effect = [sqlite3.OperationalError("database is locked"), None]
        cur.description = [("x",)]
        cur.fetchall.return_value = [(1,)]
        conn = MagicMock()
        conn.cursor.return_value = cur
        eng._conn = conn
        assert eng.query("select 1 as x")["x"].tolist() == [1]
        assert cur.execute.call_count == 2

    def test_query_batches_retries_lock_on_statement(self):
        eng = SqliteEngine()
        cur = MagicMock()
        cur.execute.side_effect = [sqlite3.OperationalError("database is locked"), None]
        cur.description = [("x",)]
        cur.fetchmany.side_effect = [[(1,), (2,)], []]
        conn = MagicMock()
        conn.cursor.return_value = cur
        eng._conn = conn
        assert list(eng.query_batches("select x from t")) == [[{"x": 1}, {"x": 2}]]
        assert cur.execute.call_count == 2

    def test_other_operational_errors_are_not_retried(self):
        with SqliteEngine() as eng:
            with pytest.raises(sqlite3.OperationalError):
                eng.query("select * from missing_table")

    def test_aggregate_sql_is_valid(self):
        with SqliteEngine() as eng:
            eng.execute("create table way_nodes (way_id integer, sequence_id integer, ref_id integer)")
            eng.execute(
                "insert into way_nodes values (1, 1, 20), (1, 0, 10), (1, 2, 10), (2, 0, 5)"
            )
            sql = eng.aggregate_children_sql(
                "way_nodes", "way_id", "cast(ref_id as text)", "sequence_id", ",", "refs"
            )
            df = eng.query(f"select * from ({sql}) order by way_id")
            if sqlite3.sqlite_version_info >= (3, 44, 0):
                assert df["refs"].tolist() == ["10,20,10", "5"]
            else:
                assert sorted(df["refs"][0].split(",")) == ["10", "10", "20"]
                assert df["refs"][1] == "5"

    def test_aggregate_sql_without_ordered_group_concat(self, monkeypatch):
        monkeypatch.setattr(sqlite3, "sqlite_version_info", (3, 40, 1))
        sql = SqliteEngine().aggregate_children_sql(
            "way_nodes", "way_id", "cast(ref_id as text)", "sequence_id", ",", "refs"
        )
        assert "order by" not in sql
        assert sql.startswith("select way_id, group_concat(cast(ref_id as text), char(44)) as refs")


class TestOpenEngine:
    @pytest.mark.parametrize(
        "url, expected",
        [
            ("sqlite:///osm.db", "osm.db"),
            ("sqlite:////var/data/osm.db", "/var/data/osm.db"),
            ("sqlite:///:memory:", ":memory:"),
            ("sqlite://", ":memory:"),
        ],
    )
    def test_sqlite_path(self, url, expected):
        assert _sqlite_path(url) == expected

    def test_sqlite_url(self, tmp_path):
        path = tmp_path / "osm.db"
        with open_engine(f"sqlite:///{path}") as eng:
            assert isinstance(eng, SqliteEngine)
            assert eng.path == str(path)
        assert path.exists()

    def test_sqlite_file_suffix(self, tmp_path):
        with open_engine(str(tmp_path / "osm.sqlite")) as eng:
            assert isinstance(eng, SqliteEngine)

    @patch("psycopg2.connect")
    def test_postgres_url(self, mock_connect):
        mock_connect.return_value = MagicMock(closed=False)
        eng = open_engine("postgresql://u:p@db:5432/osm")
        assert isinstance(eng, PostgresEngine)
        assert eng.creds.database == "osm"
        mock_connect.assert_called_once()

    @patch("psycopg2.connect")
    def test_env_prefix(self, mock_connect, tmp_path):
        mock_connect.return_value = MagicMock(closed=False)
        env = tmp_path / ".env"
        env.write_text("X_HOST=h\nX_DATABASE=d\nX_USER=u\nX_PASSWORD=p\n")
        eng = open_engine("X_", env_path=env)
        assert isinstance(eng, PostgresEngine)
        assert eng.creds.host == "h"

    @patch("psycopg2.connect")
    def test_connection_failure_becomes_store_error(self, mock_connect):
        mock_connect.side_effect = psycopg2.ProgrammingError("bad database")
        with pytest.raises(StoreError, match="Could not connect"):
            open_engine("postgresql://u:p@db:5432/osm")

    @patch("psycopg2.connect")
    def test_connection_failure_hides_password(self, mock_connect):
        mock_connect.side_effect = psycopg2.ProgrammingError("password authentication failed")
        with pytest.raises(StoreError) as excinfo:
            open_engine("postgresql://u:secretpw@db:5432/osm")
        assert "secretpw" not in str(excinfo.value)
        assert "postgresql://u:****@****:5432/osm" in str(excinfo.value)
