from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Protocol

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shop_erp_core.errors import RemoteWriteFailure
from shop_erp_core.models import TABLES, Base

logger = logging.getLogger(__name__)

Row = Dict[str, Any]
Filters = Dict[str, Any]


class RowStore(Protocol):
    """Row-oriented CRUD + filter API over named tables.

    Every call is independently committed and independently failable;
    nothing spans two calls. Failures surface as RemoteWriteFailure.

    Filters are column -> value equality; a list/tuple/set value means IN,
    None means IS NULL.
    """

    async def select(
        self,
        table: str,
        filters: Filters | None = None,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> List[Row]: ...

    async def get(self, table: str, row_id: int) -> Row | None: ...

    async def insert(self, table: str, row: Row) -> Row: ...

    async def update(self, table: str, filters: Filters, patch: Row) -> int: ...

    async def delete(self, table: str, filters: Filters) -> int: ...


def _model(table: str) -> type[Base]:
    try:
        return TABLES[table]
    except KeyError:
        raise ValueError(f"Unknown table: {table}") from None


def _column(model: type[Base], name: str):
    if name not in model.__table__.c:
        raise ValueError(f"Unknown column {model.__tablename__}.{name}")
    return getattr(model, name)


def _where(model: type[Base], filters: Filters | None) -> list:
    clauses = []
    for name, value in (filters or {}).items():
        col = _column(model, name)
        if isinstance(value, (list, tuple, set)):
            clauses.append(col.in_(list(value)))
        elif value is None:
            clauses.append(col.is_(None))
        else:
            clauses.append(col == value)
    return clauses


def _check_columns(model: type[Base], names: Iterable[str]) -> None:
    for name in names:
        _column(model, name)


def _as_dict(obj: Base) -> Row:
    return {attr.key: getattr(obj, attr.key) for attr in obj.__mapper__.column_attrs}


class SqlRowStore:
    """RowStore backed by async SQLAlchemy, one session and commit per call."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self._sessionmaker = sessionmaker

    def _failure(self, table: str, operation: str, exc: Exception) -> RemoteWriteFailure:
        logger.error("Row store %s on %s failed: %s", operation, table, exc)
        return RemoteWriteFailure(table, operation, str(exc))

    async def select(self, table, filters=None, *, order_by=None, descending=False, limit=None):
        model = _model(table)
        stmt = select(model).where(*_where(model, filters))
        if order_by:
            col = _column(model, order_by)
            if descending:
                stmt = stmt.order_by(col.desc(), model.id.desc())
            else:
                stmt = stmt.order_by(col.asc(), model.id.asc())
        else:
            stmt = stmt.order_by(model.id.asc())
        if limit:
            stmt = stmt.limit(limit)
        try:
            async with self._sessionmaker() as session:
                rows = (await session.execute(stmt)).scalars().all()
                return [_as_dict(r) for r in rows]
        except (SQLAlchemyError, OSError) as e:
            raise self._failure(table, "select", e) from e

    async def get(self, table, row_id):
        rows = await self.select(table, {"id": row_id}, limit=1)
        return rows[0] if rows else None

    async def insert(self, table, row):
        model = _model(table)
        _check_columns(model, row.keys())
        obj = model(**row)
        try:
            async with self._sessionmaker() as session:
                session.add(obj)
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            raise self._failure(table, "insert", e) from e
        return _as_dict(obj)

    async def update(self, table, filters, patch):
        model = _model(table)
        if not filters:
            raise ValueError("update requires at least one filter")
        _check_columns(model, patch.keys())
        stmt = (
            update(model)
            .where(*_where(model, filters))
            .values(**patch)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._sessionmaker() as session:
                result = await session.execute(stmt)
                await session.commit()
                return result.rowcount
        except (SQLAlchemyError, OSError) as e:
            raise self._failure(table, "update", e) from e

    async def delete(self, table, filters):
        model = _model(table)
        if not filters:
            raise ValueError("delete requires at least one filter")
        stmt = (
            delete(model)
            .where(*_where(model, filters))
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._sessionmaker() as session:
                result = await session.execute(stmt)
                await session.commit()
                return result.rowcount
        except (SQLAlchemyError, OSError) as e:
            raise self._failure(table, "delete", e) from e
