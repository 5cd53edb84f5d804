"""Source readers — extract product rows from relational databases."""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from sqlalchemy import String, bindparam, cast, column, func, literal_column, select, table, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine

from catalogsync.exceptions import AuthenticationError, SourceError, SourceUnavailableError
from catalogsync.source.watermark import Marker, coerce_marker

if TYPE_CHECKING:
    from collections.abc import Mapping

    from sqlalchemy import Select
    from sqlalchemy.engine import URL
    from sqlalchemy.ext.asyncio import AsyncEngine
    from sqlalchemy.sql import FromClause

    from catalogsync.models.datasources import Datasource

logger = logging.getLogger(__name__)

Row = dict[str, Any]

# Default async driver per source kind, used when the URL names none
_ASYNC_DRIVERS: dict[str, str] = {
    "postgresql": "postgresql+asyncpg",
    "postgres": "postgresql+asyncpg",
    "mysql": "mysql+aiomysql",
    "mariadb": "mysql+aiomysql",
    "mssql": "mssql+aioodbc",
    "sqlite": "sqlite+aiosqlite",
}


@runtime_checkable
class SourceReader(Protocol):
    """Async protocol for reading rows from a datasource.

    Unreachable sources raise :class:`SourceUnavailableError`; failing
    queries raise :class:`SourceError`.  Rows come back as plain dicts keyed
    by column name, ordered by change marker then id.
    """

    async def read_rows(
        self,
        datasource: Datasource,
        *,
        watermark: Marker | None = None,
        limit: int,
        offset: int = 0,
    ) -> list[Row]:
        """Read one page of rows whose change marker is strictly after *watermark*."""
        ...

    async def read_records(self, datasource: Datasource, record_ids: list[str]) -> list[Row]:
        """Read the rows whose id is in *record_ids*."""
        ...

    async def count_rows(self, datasource: Datasource, *, watermark: Marker | None = None) -> int:
        """Count rows strictly after *watermark*."""
        ...

    def change_marker_of(self, datasource: Datasource, row: Row) -> Marker:
        """Return the parsed change marker of *row*."""
        ...

    async def close(self) -> None:
        """Release connections."""
        ...


def resolve_connection_url(
    datasource: Datasource, environ: Mapping[str, str] | None = None
) -> URL:
    """Build the async SQLAlchemy URL for *datasource*.

    Adds the default async driver when the URL has none and injects the
    password from ``credentials_env``.
    """
    url = make_url(datasource.connection_url)
    if "+" not in url.drivername:
        url = url.set(drivername=_ASYNC_DRIVERS.get(url.drivername, url.drivername))
    if datasource.credentials_env:
        env = os.environ if environ is None else environ
        password = env.get(datasource.credentials_env)
        if password is None:
            msg = (
                f"Credentials for datasource {datasource.name!r} not found: "
                f"environment variable {datasource.credentials_env} is not set"
            )
            raise AuthenticationError(msg)
        url = url.set(password=password)
    return url


class SqlSourceReader:
    """:class:`SourceReader` over SQLAlchemy async engines.

    One engine is created per datasource on first use and cached until
    :meth:`close`.  Pre-built engines can be passed in *engines*, keyed by
    datasource id.
    """

    def __init__(
        self,
        *,
        engines: dict[str, AsyncEngine] | None = None,
        pool_size: int = 5,
    ) -> None:
        self._engines: dict[str, AsyncEngine] = dict(engines or {})
        self._owned: set[str] = set()
        self._pool_size = pool_size

    # ------------------------------------------------------------------
    # SourceReader protocol
    # ------------------------------------------------------------------

    async def read_rows(
        self,
        datasource: Datasource,
        *,
        watermark: Marker | None = None,
        limit: int,
        offset: int = 0,
    ) -> list[Row]:
        stmt = (
            self._filtered(select(literal_column("*")), datasource, watermark)
            .order_by(column(datasource.change_marker_field), column(datasource.id_field))
            .limit(limit)
            .offset(offset)
        )
        return await self._fetch_all(datasource, stmt)

    async def read_records(self, datasource: Datasource, record_ids: list[str]) -> list[Row]:
        if not record_ids:
            return []
        stmt = (
            select(literal_column("*"))
            .select_from(self._selectable(datasource))
            .where(cast(column(datasource.id_field), String).in_([str(r) for r in record_ids]))
            .order_by(column(datasource.id_field))
        )
        return await self._fetch_all(datasource, stmt)

    async def count_rows(self, datasource: Datasource, *, watermark: Marker | None = None) -> int:
        stmt = self._filtered(select(func.count().label("n")), datasource, watermark)
        rows = await self._fetch_all(datasource, stmt)
        return int(rows[0]["n"]) if rows else 0

    def change_marker_of(self, datasource: Datasource, row: Row) -> Marker:
        return coerce_marker(datasource.watermark_kind, row.get(datasource.change_marker_field))

    async def close(self) -> None:
        """Dispose engines this reader created."""
        for ds_id in list(self._owned):
            engine = self._engines.pop(ds_id)
            await engine.dispose()
        self._owned.clear()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _engine_for(self, datasource: Datasource) -> AsyncEngine:
        engine = self._engines.get(datasource.id)
        if engine is None:
            url = resolve_connection_url(datasource)
            kwargs: dict[str, Any] = {"pool_pre_ping": True}
            if not url.drivername.startswith("sqlite"):
                kwargs["pool_size"] = self._pool_size
            engine = create_async_engine(url, **kwargs)
            self._engines[datasource.id] = engine
            self._owned.add(datasource.id)
            logger.debug("Created source engine for datasource %s", datasource.name)
        return engine

    @staticmethod
    def _selectable(datasource: Datasource) -> FromClause:
        if datasource.query:
            return text(datasource.query).columns().subquery("src")
        if datasource.table_name:
            return table(datasource.table_name, schema=datasource.schema_name)
        msg = f"Datasource {datasource.name!r} has neither a table_name nor a query"
        raise SourceError(msg)

    def _filtered(
        self, stmt: Select[Any], datasource: Datasource, watermark: Marker | None
    ) -> Select[Any]:
        stmt = stmt.select_from(self._selectable(datasource))
        if watermark is not None:
            stmt = stmt.where(
                column(datasource.change_marker_field) > bindparam("watermark", watermark)
            )
        return stmt

    async def _fetch_all(self, datasource: Datasource, stmt: Select[Any]) -> list[Row]:
        engine = self._engine_for(datasource)
        try:
            async with engine.connect() as conn:
                result = await conn.execute(stmt)
                return [dict(row) for row in result.mappings().all()]
        except SQLAlchemyError as exc:
            raise _translate(datasource, exc) from exc
        except (OSError, TimeoutError) as exc:
            msg = f"Source {datasource.name!r} unreachable: {exc}"
            raise SourceUnavailableError(msg) from exc


def _translate(datasource: Datasource, exc: SQLAlchemyError) -> SourceError:
    """Map a SQLAlchemy failure to the catalogsync taxonomy."""
    if isinstance(exc, (OperationalError, InterfaceError)) or (
        isinstance(exc, DBAPIError) and exc.connection_invalidated
    ):
        return SourceUnavailableError(f"Source {datasource.name!r} unreachable: {exc}")
    return SourceError(f"Query on source {datasource.name!r} failed: {exc}")
