"""
Production consumption: a production event adds the finished good and draws
each recipe material; deleting the event undoes exactly what it applied.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel

from shop_erp_core.compensation import CompoundOperation
from shop_erp_core.errors import (
    IncompleteConsumption, Inconsistency, LedgerError, NotFound,
    RemoteWriteFailure, ValidationError,
)
from shop_erp_core.ledger import ENTRADA, SALIDA, StockLedger, movement_type_for, to_decimal
from shop_erp_core.orders import COMPLETED, OrderService
from shop_erp_core.recipes import RecipeLine, RecipeResolver
from shop_erp_core.row_store import Row, RowStore

logger = logging.getLogger(__name__)

APPLY = "apply"
REVERSE = "reverse"

REASONS = {
    (APPLY, "finished"): "Producción registrada",
    (APPLY, "material"): "Consumo producción",
    (REVERSE, "finished"): "Producción eliminada",
    (REVERSE, "material"): "Reintegro consumo producción",
}


class MaterialDraw(BaseModel):
    inventory_id: int
    quantity: Decimal


class LineOutcome(BaseModel):
    inventory_id: int
    change: Decimal
    ok: bool
    movement_id: int | None = None
    balance: Decimal | None = None
    error: str | None = None


class ConsumptionReport(BaseModel):
    direction: str
    product_inventory_id: int
    finished_change: Decimal
    finished_movement_id: int | None = None
    finished_balance: Decimal | None = None
    has_recipe: bool
    lines: List[LineOutcome] = []

    @property
    def failed(self) -> List[LineOutcome]:
        return [l for l in self.lines if not l.ok]

    def negative_stock(self) -> List[Tuple[int, Decimal]]:
        """(inventory id, balance) of every item this run left below zero."""
        balances = [(self.product_inventory_id, self.finished_balance)]
        balances += [(l.inventory_id, l.balance) for l in self.lines if l.ok]
        return [(i, b) for i, b in balances if b is not None and b < 0]


def draws_for(lines: List[RecipeLine], quantity: Decimal) -> List[MaterialDraw]:
    return [
        MaterialDraw(inventory_id=l.raw_material_inventory_id, quantity=l.quantity_per_unit * quantity)
        for l in lines
    ]


def snapshot(finished: Decimal, draws: List[MaterialDraw]) -> Dict[str, Any]:
    """JSON-safe record of what a production log entry applied."""
    return {
        "finished": str(finished),
        "materials": [{"inventory_id": d.inventory_id, "quantity": str(d.quantity)} for d in draws],
    }


def from_snapshot(data: Dict[str, Any]) -> Tuple[Decimal, List[MaterialDraw]]:
    return (
        to_decimal(data.get("finished", "0")),
        [
            MaterialDraw(inventory_id=m["inventory_id"], quantity=to_decimal(m["quantity"]))
            for m in data.get("materials", [])
        ],
    )


class ConsumptionEngine:
    def __init__(self, ledger: StockLedger, resolver: RecipeResolver | None = None):
        self.ledger = ledger
        self.resolver = resolver or RecipeResolver(ledger.store)

    async def plan(self, product_inventory_id: int, quantity: Decimal) -> List[MaterialDraw]:
        """Materials drawn by producing ``quantity`` of a finished good, per its current recipe."""
        product = await self.resolver.product_for_inventory(product_inventory_id)
        if product is None:
            logger.warning(
                "No product defined for inventory #%s; only the finished good stock will change",
                product_inventory_id,
            )
            return []
        lines = await self.resolver.resolve(product["id"])
        if not lines:
            logger.warning("Product #%s has no recipe lines; no materials will be drawn", product["id"])
        return draws_for(lines, to_decimal(quantity))

    async def apply(self, product_inventory_id: int, quantity: Decimal,
                    draws: List[MaterialDraw] | None = None) -> ConsumptionReport:
        quantity = to_decimal(quantity)
        if draws is None:
            draws = await self.plan(product_inventory_id, _positive(quantity))
        return await self._run(APPLY, product_inventory_id, quantity, draws)

    async def reverse(self, product_inventory_id: int, quantity: Decimal,
                      draws: List[MaterialDraw] | None = None) -> ConsumptionReport:
        quantity = to_decimal(quantity)
        if draws is None:
            draws = await self.plan(product_inventory_id, _positive(quantity))
        return await self._run(REVERSE, product_inventory_id, quantity, draws)

    async def _run(self, direction: str, inventory_id: int, finished: Decimal,
                   draws: List[MaterialDraw]) -> ConsumptionReport:
        # explicit draws with finished == 0 finish off a partially reversed entry
        if finished < 0 or (finished == 0 and not draws):
            raise ValidationError("Produced quantity must be greater than zero")
        bad = [d.inventory_id for d in draws if d.quantity <= 0]
        if bad:
            raise ValidationError("Material quantities must be greater than zero", inventory_ids=bad)
        sign = 1 if direction == APPLY else -1

        # finished good first: if this fails nothing has been written
        report = ConsumptionReport(
            direction=direction,
            product_inventory_id=inventory_id,
            finished_change=sign * finished,
            has_recipe=bool(draws),
        )
        if finished > 0:
            write, movement = await self.ledger.post_delta(
                inventory_id,
                sign * finished,
                ENTRADA if sign > 0 else SALIDA,
                REASONS[(direction, "finished")],
            )
            report.finished_movement_id = movement["id"]
            report.finished_balance = write.after

        report.lines = list(await asyncio.gather(*(
            self._draw(d, -sign * d.quantity, REASONS[(direction, "material")]) for d in draws
        )))

        failed = report.failed
        if failed:
            verb = "drawn" if direction == APPLY else "returned"
            logger.error(
                "%s inventory #%s: %s of %s materials not %s: %s",
                direction, inventory_id, len(failed), len(report.lines), verb,
                ", ".join(f"#{l.inventory_id} ({l.error})" for l in failed),
            )
            exc = IncompleteConsumption(
                f"Production of inventory #{inventory_id} was "
                f"{'recorded' if direction == APPLY else 'reversed'} but {len(failed)} material(s) were not {verb}",
                [
                    Inconsistency(table="inventory", row_id=l.inventory_id, delta=l.change, note=f"not {verb}: {l.error}")
                    for l in failed
                ],
                report=report.model_dump(mode="json"),
            )
            exc.report = report
            raise exc
        return report

    async def _draw(self, draw: MaterialDraw, change: Decimal, reason: str) -> LineOutcome:
        try:
            write, movement = await self.ledger.post_delta(draw.inventory_id, change, movement_type_for(change), reason)
        except LedgerError as e:
            return LineOutcome(inventory_id=draw.inventory_id, change=change, ok=False, error=e.message)
        return LineOutcome(
            inventory_id=draw.inventory_id, change=change, ok=True,
            movement_id=movement["id"], balance=write.after,
        )


def _positive(quantity: Decimal) -> Decimal:
    if quantity <= 0:
        raise ValidationError("Produced quantity must be greater than zero")
    return quantity


def negative_stock_warnings(report: ConsumptionReport) -> List[str]:
    return [
        f"Item #{item_id} now has negative stock ({balance})"
        for item_id, balance in report.negative_stock()
    ]


class LogResult(BaseModel):
    log: Dict[str, Any]
    report: ConsumptionReport
    order: Optional[Dict[str, Any]] = None
    warnings: List[str] = []


class LogDeletion(BaseModel):
    log_id: int
    report: ConsumptionReport
    order: Optional[Dict[str, Any]] = None
    warnings: List[str] = []


class ProductionLogService:
    def __init__(self, store: RowStore, engine: ConsumptionEngine | None = None,
                 orders: OrderService | None = None):
        self.store = store
        self.engine = engine or ConsumptionEngine(StockLedger(store))
        self.ledger = self.engine.ledger
        self.resolver = self.engine.resolver
        self.orders = orders or OrderService(store)

    async def get_log(self, log_id: int) -> Row:
        log = await self.store.get("production_log", log_id)
        if log is None:
            raise NotFound("production_log", log_id)
        return log

    async def list_logs(self, limit: int | None = None) -> List[Row]:
        logs = await self.store.select(
            "production_log", order_by="production_date", descending=True,
            limit=limit or self.ledger.page_size,
        )
        worker_ids = list({l["worker_id"] for l in logs})
        item_ids = list({l["inventory_id"] for l in logs})
        workers = {w["id"]: w for w in await self.store.select("workers", {"id": worker_ids})} if worker_ids else {}
        items = {i["id"]: i for i in await self.store.select("inventory", {"id": item_ids})} if item_ids else {}
        for l in logs:
            w = workers.get(l["worker_id"])
            i = items.get(l["inventory_id"])
            l["worker"] = {"name": w["name"]} if w else None
            l["inventory"] = {"name": i["name"], "unit": i["unit"]} if i else None
        return logs

    async def log_production(
        self,
        worker_id: int,
        inventory_id: int,
        quantity: Decimal,
        production_date: date,
        production_order_id: int | None = None,
    ) -> LogResult:
        """Insert the log row, then apply the production to stock.

        The row carries a snapshot of the materials drawn so deletion can
        undo exactly this entry even after the recipe changes.
        """
        quantity = to_decimal(quantity)
        if quantity <= 0:
            raise ValidationError("Produced quantity must be greater than zero")
        if await self.store.get("workers", worker_id) is None:
            raise NotFound("workers", worker_id)
        await self.ledger.get_item(inventory_id)
        if production_order_id is not None:
            await self._check_order(production_order_id, inventory_id)

        draws = await self.engine.plan(inventory_id, quantity)
        incomplete: IncompleteConsumption | None = None

        async with CompoundOperation(f"log_production inventory#{inventory_id}") as op:
            log = await self.store.insert("production_log", {
                "worker_id": worker_id,
                "inventory_id": inventory_id,
                "quantity": quantity,
                "production_date": production_date,
                "production_order_id": production_order_id,
                "consumption": snapshot(quantity, draws),
            })
            op.applied(
                lambda: self.store.delete("production_log", {"id": log["id"]}),
                table="production_log", row_id=log["id"],
                note="production logged but stock not updated",
            )
            try:
                report = await self.engine.apply(inventory_id, quantity, draws)
            except IncompleteConsumption as exc:
                # the finished good is in; the row stays so the gap can be traced
                op.disarm()
                incomplete = exc

        warnings: List[str] = []
        order = await self._refresh_order(production_order_id, warnings)

        if incomplete is not None:
            applied = [
                MaterialDraw(inventory_id=l.inventory_id, quantity=abs(l.change))
                for l in incomplete.report.lines if l.ok
            ]
            await self._narrow_snapshot(log["id"], snapshot(quantity, applied), incomplete)
            incomplete.context["production_log_id"] = log["id"]
            raise incomplete

        warnings.extend(negative_stock_warnings(report))
        logger.info(
            "Production logged #%s: inventory #%s +%s, %s materials drawn",
            log["id"], inventory_id, quantity, len(draws),
        )
        return LogResult(log=log, report=report, order=order, warnings=warnings)

    async def delete_log(self, log_id: int) -> LogDeletion:
        """Reverse the entry's stock effect, then delete the row.

        On a partial reversal the row is kept and its snapshot narrowed to
        what is still applied, so retrying only reverses the remainder.
        """
        log = await self.get_log(log_id)
        inventory_id = log["inventory_id"]
        if log["consumption"]:
            finished, draws = from_snapshot(log["consumption"])
        else:
            logger.warning(
                "Production log #%s has no consumption snapshot; reversing with the current recipe", log_id,
            )
            finished = to_decimal(log["quantity"])
            draws = await self.engine.plan(inventory_id, finished)

        try:
            report = await self.engine.reverse(inventory_id, finished, draws)
        except IncompleteConsumption as exc:
            remaining = [
                MaterialDraw(inventory_id=l.inventory_id, quantity=abs(l.change))
                for l in exc.report.lines if not l.ok
            ]
            await self._narrow_snapshot(log_id, snapshot(Decimal("0"), remaining), exc)
            exc.context["production_log_id"] = log_id
            raise

        async with CompoundOperation(f"delete_production_log #{log_id}") as op:
            op.applied(
                lambda: self.engine.apply(inventory_id, finished, draws),
                table="production_log", row_id=log_id,
                note="stock reversed but the log row was not deleted",
            )
            await self.store.delete("production_log", {"id": log_id})

        warnings = negative_stock_warnings(report)
        order = await self._refresh_order(log["production_order_id"], warnings)
        logger.info("Production log #%s deleted and reversed", log_id)
        return LogDeletion(log_id=log_id, report=report, order=order, warnings=warnings)

    async def _check_order(self, order_id: int, inventory_id: int) -> None:
        order = await self.orders.get_order(order_id)
        if order["status"] == COMPLETED:
            raise ValidationError(f"Production order #{order_id} is already completed")
        product = await self.resolver.get_product(order["product_id"])
        if product["finished_product_inventory_id"] != inventory_id:
            raise ValidationError(
                f"Production order #{order_id} is for a different product",
                production_order_id=order_id,
            )

    async def _refresh_order(self, order_id: int | None, warnings: List[str]) -> Row | None:
        if order_id is None:
            return None
        try:
            return await self.orders.refresh_status(order_id)
        except LedgerError as e:
            msg = f"Production order #{order_id} status could not be refreshed: {e.message}"
            logger.warning(msg)
            warnings.append(msg)
            return None

    async def _narrow_snapshot(self, log_id: int, data: Dict[str, Any], exc: IncompleteConsumption) -> None:
        try:
            await self.store.update("production_log", {"id": log_id}, {"consumption": data})
        except RemoteWriteFailure as e:
            exc.add(Inconsistency(
                table="production_log",
                row_id=log_id,
                note=f"consumption snapshot not updated to what was actually applied ({e.message}); "
                     f"fix it before deleting this entry",
            ))
