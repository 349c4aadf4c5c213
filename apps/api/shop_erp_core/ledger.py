"""
Stock ledger and movement log for the central inventory.

Invariant kept by every writer in this module:

    inventory.quantity == sum(quantity_change of non-cancelled movements)

(an item's starting stock is itself recorded as an "Entrada" movement).
Quantity writes are compare-and-swap on ``inventory.version``.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel

from shop_erp_core.compensation import CompoundOperation
from shop_erp_core.config import settings
from shop_erp_core.errors import (
    ConflictError, InsufficientStock, MovementAlreadyCancelled, NotFound,
    RemoteWriteFailure, ValidationError,
)
from shop_erp_core.models import utcnow
from shop_erp_core.row_store import Row, RowStore

logger = logging.getLogger(__name__)

ENTRADA = "Entrada"
SALIDA = "Salida"
MOVEMENT_TYPES = (ENTRADA, SALIDA)

RAW_MATERIAL = "Materia Prima"
FINISHED_GOOD = "Producto Terminado"
ITEM_TYPES = (RAW_MATERIAL, FINISHED_GOOD)

BRANDS = ("Duramaxi", "Avanty", "Diletta", "Generica")
STANDARD_UNITS = ("docenas", "unidades", "kg", "metros")

INITIAL_STOCK_REASON = "Stock Inicial (Creación de artículo)"
MANUAL_ADJUSTMENT_REASON = "Ajuste manual desde formulario de edición"
SELLER_LOAD_REASON = "Carga a Vendedor"
SELLER_RETURN_REASON = "Devolución de Vendedor"


def is_seller_transfer(reason: str | None) -> bool:
    return (reason or "").startswith((SELLER_LOAD_REASON, SELLER_RETURN_REASON))


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def movement_type_for(delta: Decimal) -> str:
    return ENTRADA if delta > 0 else SALIDA


class QuantityWrite(BaseModel):
    table: str
    row_id: int
    before: Decimal
    after: Decimal


class ItemResult(BaseModel):
    item: Dict[str, Any]
    movement: Optional[Dict[str, Any]] = None
    warnings: List[str] = []


class ReconcileReport(BaseModel):
    item_id: int
    quantity: Decimal
    movement_total: Decimal
    difference: Decimal
    consistent: bool


async def adjust_counter(
    store: RowStore,
    table: str,
    row_id: int,
    delta: Decimal,
    *,
    check_stock: bool = False,
    retries: int | None = None,
) -> QuantityWrite:
    """Add ``delta`` to ``table.quantity`` with compare-and-swap on ``version``.

    Shared by the central ledger and the seller sub-ledgers. No movement is
    written here. With ``check_stock`` an outbound delta that would leave the
    counter below zero raises InsufficientStock before anything is written.
    """
    retries = retries or settings.ledger_cas_retries
    for attempt in range(1, retries + 1):
        row = await store.get(table, row_id)
        if row is None:
            raise NotFound(table, row_id)

        before = to_decimal(row["quantity"])
        after = before + delta
        if check_stock and delta < 0 and after < 0:
            raise InsufficientStock(row_id, -delta, before, ledger=table)

        patch: Dict[str, Any] = {"quantity": after, "version": row["version"] + 1}
        if table == "seller_inventory":
            patch["last_updated"] = utcnow()

        affected = await store.update(table, {"id": row_id, "version": row["version"]}, patch)
        if affected:
            if after < 0:
                logger.warning("%s #%s quantity is now negative (%s)", table, row_id, after)
            return QuantityWrite(table=table, row_id=row_id, before=before, after=after)
        logger.info("%s #%s changed concurrently (attempt %s/%s)", table, row_id, attempt, retries)

    raise ConflictError(table, row_id, retries)


class StockLedger:
    def __init__(self, store: RowStore, *, cas_retries: int | None = None, page_size: int | None = None):
        self.store = store
        self.cas_retries = cas_retries or settings.ledger_cas_retries
        self.page_size = page_size or settings.movement_page_size

    # ---- reads ----

    async def get_item(self, item_id: int) -> Row:
        item = await self.store.get("inventory", item_id)
        if item is None:
            raise NotFound("inventory", item_id)
        return item

    async def current_quantity(self, item_id: int) -> Decimal:
        return to_decimal((await self.get_item(item_id))["quantity"])

    async def list_items(self) -> List[Row]:
        return await self.store.select("inventory", order_by="name")

    async def low_stock(self) -> List[Row]:
        items = await self.list_items()
        return [
            i for i in items
            if to_decimal(i["quantity"]) < to_decimal(i["low_stock_threshold"])
        ]

    async def list_movements(self, limit: int | None = None, inventory_id: int | None = None) -> List[Row]:
        """Newest first, capped at the configured page size."""
        limit = min(limit or self.page_size, self.page_size)
        filters = {"inventory_id": inventory_id} if inventory_id is not None else None
        movements = await self.store.select(
            "inventory_movements", filters, order_by="created_at", descending=True, limit=limit,
        )
        item_ids = list({m["inventory_id"] for m in movements})
        items = {i["id"]: i for i in await self.store.select("inventory", {"id": item_ids})} if item_ids else {}
        for m in movements:
            item = items.get(m["inventory_id"])
            m["inventory"] = {"name": item["name"], "unit": item["unit"]} if item else None
        return movements

    async def reconcile(self, item_id: int) -> ReconcileReport:
        item = await self.get_item(item_id)
        movements = await self.store.select(
            "inventory_movements", {"inventory_id": item_id, "is_cancelled": False},
        )
        total = sum((to_decimal(m["quantity_change"]) for m in movements), Decimal("0"))
        quantity = to_decimal(item["quantity"])
        if quantity != total:
            logger.warning("inventory #%s out of balance: quantity=%s movements=%s", item_id, quantity, total)
        return ReconcileReport(
            item_id=item_id,
            quantity=quantity,
            movement_total=total,
            difference=quantity - total,
            consistent=quantity == total,
        )

    # ---- primitives ----

    async def adjust_quantity(self, item_id: int, delta: Decimal, *, check_stock: bool = False) -> QuantityWrite:
        """Quantity-only write. Callers are responsible for the movement trail."""
        return await adjust_counter(
            self.store, "inventory", item_id, delta,
            check_stock=check_stock, retries=self.cas_retries,
        )

    async def append_movement(self, item_id: int, delta: Decimal, reason: str | None) -> Row:
        return await self.store.insert("inventory_movements", {
            "inventory_id": item_id,
            "quantity_change": delta,
            "type": movement_type_for(delta),
            "reason": reason,
            "is_cancelled": False,
        })

    async def _delete_movement(self, movement_id: int) -> None:
        await self.store.delete("inventory_movements", {"id": movement_id})

    # ---- ledger operations ----

    async def apply_delta(
        self,
        item_id: int,
        delta: Decimal,
        movement_type: str,
        reason: str | None,
        *,
        check_stock: bool = False,
    ) -> Row:
        """Persist quantity, then append the movement.

        A failed append undoes the quantity write.
        """
        _, movement = await self.post_delta(item_id, delta, movement_type, reason, check_stock=check_stock)
        return movement

    async def post_delta(
        self,
        item_id: int,
        delta: Decimal,
        movement_type: str,
        reason: str | None,
        *,
        check_stock: bool = False,
    ) -> Tuple[QuantityWrite, Row]:
        """``apply_delta`` that also hands back the quantity write."""
        delta = to_decimal(delta)
        if delta == 0:
            raise ValidationError("Quantity change must not be zero")
        if movement_type not in MOVEMENT_TYPES or movement_type != movement_type_for(delta):
            raise ValidationError(
                f"Movement type {movement_type!r} does not match change {delta}",
                movement_type=movement_type,
            )

        async with CompoundOperation(f"apply_delta inventory#{item_id}") as op:
            write = await self.adjust_quantity(item_id, delta, check_stock=check_stock and movement_type == SALIDA)
            op.applied(
                lambda: self.adjust_quantity(item_id, -delta),
                table="inventory", row_id=item_id, delta=delta,
                note="quantity changed without a movement record",
            )
            movement = await self.append_movement(item_id, delta, reason)
        return write, movement

    async def register_movement(
        self, item_id: int, movement_type: str, quantity: Decimal, reason: str | None = None,
    ) -> Row:
        """Stock movement form: log the movement first, then update stock.

        If the stock update fails the just-inserted movement is deleted.
        """
        quantity = to_decimal(quantity)
        if quantity <= 0:
            raise ValidationError("Quantity must be greater than zero")
        if movement_type not in MOVEMENT_TYPES:
            raise ValidationError(f"Unknown movement type {movement_type!r}", movement_type=movement_type)

        item = await self.get_item(item_id)
        delta = quantity if movement_type == ENTRADA else -quantity
        available = to_decimal(item["quantity"])
        if movement_type == SALIDA and available + delta < 0:
            raise InsufficientStock(item_id, quantity, available)

        async with CompoundOperation(f"register_movement inventory#{item_id}") as op:
            movement = await self.append_movement(item_id, delta, reason)
            op.applied(
                lambda: self._delete_movement(movement["id"]),
                table="inventory_movements", row_id=movement["id"], delta=delta,
                note="movement logged but stock not updated",
            )
            await self.adjust_quantity(item_id, delta, check_stock=movement_type == SALIDA)

        logger.info("Registered %s of %s on inventory #%s (movement #%s)", movement_type, quantity, item_id, movement["id"])
        return movement

    async def cancel_movement(self, movement_id: int, *, seller_transfer: bool = False) -> Row:
        """Undo a movement's effect on stock, then flag it cancelled.

        The flag flip only matches a not-yet-cancelled row, so two racing
        cancels cannot both keep their inverse write. Seller loads and returns
        are refused unless ``seller_transfer`` is set: the truck side would
        keep its half of the transfer.
        """
        movement = await self.store.get("inventory_movements", movement_id)
        if movement is None:
            raise NotFound("inventory_movements", movement_id)
        if movement["is_cancelled"]:
            raise MovementAlreadyCancelled(movement_id)
        if is_seller_transfer(movement["reason"]) and not seller_transfer:
            raise ValidationError(
                f"Movement {movement_id} is a seller transfer; use a seller return instead",
                movement_id=movement_id,
            )

        item_id = movement["inventory_id"]
        inverse = -to_decimal(movement["quantity_change"])

        async with CompoundOperation(f"cancel_movement #{movement_id}") as op:
            await self.adjust_quantity(item_id, inverse)
            op.applied(
                lambda: self.adjust_quantity(item_id, -inverse),
                table="inventory", row_id=item_id, delta=inverse,
                note=f"stock reverted but movement #{movement_id} not flagged cancelled",
            )
            flipped = await self.store.update(
                "inventory_movements",
                {"id": movement_id, "is_cancelled": False},
                {"is_cancelled": True},
            )
            if not flipped:
                raise MovementAlreadyCancelled(movement_id)

        logger.info("Cancelled movement #%s (inventory #%s %+f)", movement_id, item_id, inverse)
        movement["is_cancelled"] = True
        return movement

    # ---- item maintenance ----

    async def create_item(self, data: Dict[str, Any]) -> ItemResult:
        """Insert an item and seed its starting stock as an "Entrada" movement."""
        _validate_item_fields(data)
        quantity = to_decimal(data.get("quantity", 0))
        if quantity < 0:
            raise ValidationError("Initial quantity cannot be negative")

        item = await self.store.insert("inventory", {
            "name": data["name"].strip(),
            "type": data["type"],
            "quantity": quantity,
            "low_stock_threshold": to_decimal(data.get("low_stock_threshold", 0)),
            "unit": data["unit"].strip(),
            "brand": data.get("brand", "Generica"),
            "version": 0,
        })

        result = ItemResult(item=item)
        if quantity > 0:
            try:
                result.movement = await self.append_movement(item["id"], quantity, INITIAL_STOCK_REASON)
            except RemoteWriteFailure as e:
                msg = f"Item #{item['id']} was created, but its initial stock movement could not be logged: {e.message}"
                logger.warning(msg)
                result.warnings.append(msg)
        return result

    async def update_item(self, item_id: int, data: Dict[str, Any]) -> ItemResult:
        """Item edit form: write the new values, then log any quantity change.

        A failed log does not undo the stock write; it comes back as a warning
        because the audit trail is now incomplete.
        """
        _validate_item_fields(data, partial=True)
        fields = {k: v for k, v in data.items() if k in ("name", "type", "low_stock_threshold", "unit", "brand")}
        if "low_stock_threshold" in fields:
            fields["low_stock_threshold"] = to_decimal(fields["low_stock_threshold"])
        target = to_decimal(data["quantity"]) if data.get("quantity") is not None else None

        for attempt in range(1, self.cas_retries + 1):
            original = await self.get_item(item_id)
            before = to_decimal(original["quantity"])
            patch = dict(fields)
            delta = Decimal("0")
            if target is not None and target != before:
                delta = target - before
                patch["quantity"] = target
            patch["version"] = original["version"] + 1
            if await self.store.update("inventory", {"id": item_id, "version": original["version"]}, patch):
                break
        else:
            raise ConflictError("inventory", item_id, self.cas_retries)

        item = {**original, **patch}
        result = ItemResult(item=item)
        if delta != 0:
            try:
                result.movement = await self.append_movement(item_id, delta, MANUAL_ADJUSTMENT_REASON)
            except RemoteWriteFailure as e:
                msg = (
                    f"Item #{item_id} was updated, but the change of {delta} could not be logged "
                    f"in the movement history: {e.message}"
                )
                logger.warning(msg)
                result.warnings.append(msg)
        if to_decimal(item["quantity"]) < 0:
            result.warnings.append(f"Item #{item_id} now has negative stock ({item['quantity']})")
        return result

    async def delete_item(self, item_id: int) -> None:
        await self.get_item(item_id)
        for table, column in (
            ("inventory_movements", "inventory_id"),
            ("products", "finished_product_inventory_id"),
            ("product_recipes", "raw_material_inventory_id"),
            ("seller_inventory", "inventory_id"),
            ("production_log", "inventory_id"),
        ):
            if await self.store.select(table, {column: item_id}, limit=1):
                raise ValidationError(
                    f"Item #{item_id} is referenced by {table} and cannot be deleted",
                    table=table,
                )
        await self.store.delete("inventory", {"id": item_id})


def _validate_item_fields(data: Dict[str, Any], partial: bool = False) -> None:
    required = ("name", "type", "unit")
    if not partial:
        missing = [k for k in required if not str(data.get(k) or "").strip()]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", fields=missing)
    if "type" in data and data["type"] is not None and data["type"] not in ITEM_TYPES:
        raise ValidationError(f"Unknown item type {data['type']!r}")
    if "brand" in data and data["brand"] is not None and data["brand"] not in BRANDS:
        raise ValidationError(f"Unknown brand {data['brand']!r}")
    if data.get("low_stock_threshold") is not None and to_decimal(data["low_stock_threshold"]) < 0:
        raise ValidationError("Low-stock threshold cannot be negative")
