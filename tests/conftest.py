from decimal import Decimal
from typing import Any, Callable, Dict, List

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from main import app
from shop_erp_core.db import get_store
from shop_erp_core.errors import RemoteWriteFailure
from shop_erp_core.ledger import FINISHED_GOOD, RAW_MATERIAL, StockLedger
from shop_erp_core.models import Base
from shop_erp_core.recipes import RecipeResolver
from shop_erp_core.row_store import SqlRowStore


class FlakyStore:
    """Row store wrapper that fails chosen calls, like a dropped BaaS request."""

    def __init__(self, inner: SqlRowStore):
        self.inner = inner
        self.rules: List[Dict[str, Any]] = []

    def fail(self, operation: str, table: str, *, times: int = 1, skip: int = 0,
             match: Callable[[dict], bool] | None = None) -> None:
        """Fail the next ``times`` matching calls after letting ``skip`` of them through."""
        self.rules.append({
            "operation": operation, "table": table,
            "times": times, "skip": skip, "match": match,
        })

    def heal(self) -> None:
        self.rules.clear()

    def _check(self, operation: str, table: str, payload: dict | None) -> None:
        for rule in self.rules:
            if rule["operation"] != operation or rule["table"] != table or rule["times"] == 0:
                continue
            if rule["match"] is not None and not rule["match"](payload or {}):
                continue
            if rule["skip"]:
                rule["skip"] -= 1
                continue
            rule["times"] -= 1
            raise RemoteWriteFailure(table, operation, "injected failure")

    async def select(self, table, filters=None, **kwargs):
        self._check("select", table, filters)
        return await self.inner.select(table, filters, **kwargs)

    async def get(self, table, row_id):
        self._check("select", table, {"id": row_id})
        return await self.inner.get(table, row_id)

    async def insert(self, table, row):
        self._check("insert", table, row)
        return await self.inner.insert(table, row)

    async def update(self, table, filters, patch):
        self._check("update", table, filters)
        return await self.inner.update(table, filters, patch)

    async def delete(self, table, filters):
        self._check("delete", table, filters)
        return await self.inner.delete(table, filters)


@pytest_asyncio.fixture
async def store(tmp_path):
    """Fresh file-backed SQLite per test; each store call opens its own session."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield FlakyStore(SqlRowStore(async_sessionmaker(engine, expire_on_commit=False)))
    await engine.dispose()


@pytest.fixture
def ledger(store):
    return StockLedger(store)


@pytest.fixture
def make_item(ledger):
    async def _make(name: str, quantity: str = "0", type: str = RAW_MATERIAL, unit: str = "unidades", **extra):
        result = await ledger.create_item({
            "name": name,
            "type": type,
            "quantity": Decimal(quantity),
            "unit": unit,
            **extra,
        })
        return result.item
    return _make


@pytest_asyncio.fixture
async def broom(store, make_item):
    """Escoba A = 0.5 kg Cerdas + 1 Mango per unit."""
    escoba = await make_item("Escoba A", "0", type=FINISHED_GOOD)
    cerdas = await make_item("Cerdas", "400", unit="kg")
    mango = await make_item("Mango", "100")
    resolver = RecipeResolver(store)
    product = await resolver.create_product("Escoba A", escoba["id"])
    await resolver.add_line(product["id"], cerdas["id"], Decimal("0.5"))
    await resolver.add_line(product["id"], mango["id"], Decimal("1"))
    worker = await store.insert("workers", {"name": "Ana", "shift": "Mañana"})
    return {
        "escoba": escoba["id"],
        "cerdas": cerdas["id"],
        "mango": mango["id"],
        "product": product["id"],
        "worker": worker["id"],
    }


@pytest_asyncio.fixture
async def client(store):
    app.dependency_overrides[get_store] = lambda: store
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
