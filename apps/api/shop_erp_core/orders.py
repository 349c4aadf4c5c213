from __future__ import annotations

import logging
from decimal import Decimal
from typing import List

from shop_erp_core.errors import NotFound, OrderNotFeasible, ValidationError
from shop_erp_core.feasibility import FeasibilityChecker, FeasibilityReport
from shop_erp_core.ledger import to_decimal
from shop_erp_core.models import utcnow
from shop_erp_core.row_store import Row, RowStore

logger = logging.getLogger(__name__)

PENDING = "Pendiente"
IN_PROGRESS = "En Proceso"
COMPLETED = "Completado"
ORDER_STATUSES = (PENDING, IN_PROGRESS, COMPLETED)


def status_for(logged: Decimal, target: Decimal) -> str:
    if logged <= 0:
        return PENDING
    if logged < target:
        return IN_PROGRESS
    return COMPLETED


class OrderService:
    """Production orders are plans: creating one never touches stock.

    Status follows the production log entries that reference the order.
    """

    def __init__(self, store: RowStore, checker: FeasibilityChecker | None = None):
        self.store = store
        self.checker = checker or FeasibilityChecker(store)

    async def get_order(self, order_id: int) -> Row:
        order = await self.store.get("production_orders", order_id)
        if order is None:
            raise NotFound("production_orders", order_id)
        return order

    async def create_order(self, product_id: int, quantity: Decimal) -> tuple[Row, FeasibilityReport]:
        quantity = to_decimal(quantity)
        if quantity <= 0:
            raise ValidationError("Quantity to produce must be greater than zero")

        report = await self.checker.check(product_id, quantity)
        if not report.has_recipe:
            raise ValidationError(
                f"Product #{product_id} has no recipe; add its materials before planning production",
                product_id=product_id,
            )
        if not report.feasible:
            short = [m for m in report.per_material if not m.sufficient]
            raise OrderNotFeasible(
                "Not enough stock for: " + ", ".join(
                    f"{m.name} (required {m.required}, available {m.available})" for m in short
                ),
                per_material=[m.model_dump(mode="json") for m in report.per_material],
            )

        order = await self.store.insert("production_orders", {
            "product_id": product_id,
            "quantity_to_produce": quantity,
            "status": PENDING,
        })
        logger.info("Created production order #%s: product #%s x %s", order["id"], product_id, quantity)
        return order, report

    async def list_orders(self) -> List[Row]:
        orders = await self.store.select("production_orders", order_by="created_at", descending=True)
        product_ids = list({o["product_id"] for o in orders})
        products = {p["id"]: p for p in await self.store.select("products", {"id": product_ids})} if product_ids else {}
        for o in orders:
            p = products.get(o["product_id"])
            o["products"] = {"name": p["name"]} if p else None
        return orders

    async def logged_quantity(self, order_id: int) -> Decimal:
        logs = await self.store.select("production_log", {"production_order_id": order_id})
        return sum((to_decimal(l["quantity"]) for l in logs), Decimal("0"))

    async def refresh_status(self, order_id: int) -> Row:
        """Recompute status from the production log entries of the order."""
        order = await self.get_order(order_id)
        logged = await self.logged_quantity(order_id)
        status = status_for(logged, to_decimal(order["quantity_to_produce"]))
        if status == order["status"]:
            return order

        patch = {
            "status": status,
            "completed_at": (order["completed_at"] or utcnow()) if status == COMPLETED else None,
        }
        await self.store.update("production_orders", {"id": order_id}, patch)
        logger.info("Production order #%s: %s -> %s (logged %s)", order_id, order["status"], status, logged)
        return {**order, **patch}

    async def delete_order(self, order_id: int) -> None:
        await self.get_order(order_id)
        if await self.store.select("production_log", {"production_order_id": order_id}, limit=1):
            raise ValidationError(f"Production order #{order_id} has production logged against it")
        await self.store.delete("production_orders", {"id": order_id})
