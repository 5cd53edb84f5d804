"""Tests for SqlSourceReader against a real SQLite source database."""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING

import pytest

from catalogsync.exceptions import AuthenticationError, SourceError
from catalogsync.models.datasources import Datasource
from catalogsync.source.reader import SourceReader, SqlSourceReader, resolve_connection_url
from tests.conftest import datasource_fields

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path


@pytest.fixture
def source_db(tmp_path: Path) -> Path:
    path = tmp_path / "erp.db"
    conn = sqlite3.connect(path)
    conn.execute(
        "CREATE TABLE productos (codigo TEXT PRIMARY KEY, descripcion TEXT,"
        " marca TEXT, activo INTEGER, updated_at INTEGER)"
    )
    conn.executemany(
        "INSERT INTO productos VALUES (?, ?, ?, ?, ?)",
        [
            ("P003", "Martillo", "ACME", 1, 2),
            ("P001", "Taladro", "ACME", 1, 1),
            ("P002", "Sierra", "Bosch", 0, 2),
            ("P004", "Lija", "3M", 1, 5),
        ],
    )
    conn.commit()
    conn.close()
    return path


def _datasource(source_db: Path, **overrides) -> Datasource:
    fields = datasource_fields(kind="sqlite", connection_url=f"sqlite:///{source_db}")
    fields.update(overrides)
    return Datasource(**fields)


@pytest.fixture
async def reader() -> AsyncIterator[SqlSourceReader]:
    r = SqlSourceReader()
    yield r
    await r.close()


# ==================================================================
# Reading
# ==================================================================


class TestReadRows:
    def test_satisfies_protocol(self):
        assert isinstance(SqlSourceReader(), SourceReader)

    async def test_ordered_by_marker_then_id(self, reader, source_db):
        rows = await reader.read_rows(_datasource(source_db), limit=10)
        assert [r["codigo"] for r in rows] == ["P001", "P002", "P003", "P004"]
        assert rows[0]["descripcion"] == "Taladro"

    async def test_strictly_after_watermark(self, reader, source_db):
        rows = await reader.read_rows(_datasource(source_db), watermark=2, limit=10)
        assert [r["codigo"] for r in rows] == ["P004"]

    async def test_pagination(self, reader, source_db):
        ds = _datasource(source_db)
        first = await reader.read_rows(ds, limit=2)
        second = await reader.read_rows(ds, limit=2, offset=2)
        assert [r["codigo"] for r in first + second] == ["P001", "P002", "P003", "P004"]

    async def test_count_rows(self, reader, source_db):
        ds = _datasource(source_db)
        assert await reader.count_rows(ds) == 4
        assert await reader.count_rows(ds, watermark=1) == 3

    async def test_custom_query(self, reader, source_db):
        ds = _datasource(
            source_db,
            table_name=None,
            query="SELECT codigo, descripcion, marca, updated_at FROM productos WHERE activo = 1",
        )
        rows = await reader.read_rows(ds, limit=10)
        assert [r["codigo"] for r in rows] == ["P001", "P003", "P004"]
        assert await reader.count_rows(ds, watermark=2) == 1

    async def test_read_records_by_id(self, reader, source_db):
        rows = await reader.read_records(_datasource(source_db), ["P004", "P002", "P999"])
        assert [r["codigo"] for r in rows] == ["P002", "P004"]

    async def test_read_records_empty(self, reader, source_db):
        assert await reader.read_records(_datasource(source_db), []) == []

    async def test_read_records_integer_key(self, reader, tmp_path: Path):
        path = tmp_path / "int_keys.db"
        conn = sqlite3.connect(path)
        conn.execute(
            "CREATE TABLE productos (codigo INTEGER PRIMARY KEY, descripcion TEXT,"
            " marca TEXT, updated_at INTEGER)"
        )
        conn.executemany(
            "INSERT INTO productos VALUES (?, ?, ?, ?)",
            [(5, "Taladro", "ACME", 1), (12, "Sierra", "Bosch", 2)],
        )
        conn.commit()
        conn.close()

        rows = await reader.read_records(_datasource(path), ["12", "99"])
        assert [r["codigo"] for r in rows] == [12]

    async def test_read_records_compares_ids_as_text(self, reader, source_db):
        from sqlalchemy.dialects import postgresql

        captured = []

        async def fake_fetch(datasource, stmt):
            captured.append(stmt)
            return []

        reader._fetch_all = fake_fetch
        await reader.read_records(_datasource(source_db), ["5"])

        sql = str(captured[0].compile(dialect=postgresql.dialect()))
        assert "CAST(codigo AS VARCHAR) IN" in sql

    def test_change_marker_of(self, source_db):
        ds = _datasource(source_db)
        assert SqlSourceReader().change_marker_of(ds, {"updated_at": "7"}) == 7


# ==================================================================
# Failures
# ==================================================================


class TestFailures:
    async def test_missing_table(self, reader, source_db):
        with pytest.raises(SourceError):
            await reader.read_rows(_datasource(source_db, table_name="nope"), limit=10)

    async def test_missing_credentials(self, reader, source_db, monkeypatch):
        monkeypatch.delenv("ERP_DB_PASSWORD", raising=False)
        ds = _datasource(source_db, credentials_env="ERP_DB_PASSWORD")
        with pytest.raises(AuthenticationError):
            await reader.read_rows(ds, limit=10)


class TestResolveConnectionUrl:
    def test_adds_async_driver(self):
        ds = Datasource(**datasource_fields())
        assert resolve_connection_url(ds).drivername == "postgresql+asyncpg"

    def test_keeps_explicit_driver(self):
        ds = Datasource(**datasource_fields(connection_url="postgresql+psycopg://h/db"))
        assert resolve_connection_url(ds).drivername == "postgresql+psycopg"

    def test_injects_password(self):
        ds = Datasource(**datasource_fields(credentials_env="ERP_DB_PASSWORD"))
        url = resolve_connection_url(ds, {"ERP_DB_PASSWORD": "s3cret"})
        assert url.password == "s3cret"
        assert url.username == "catalog"
