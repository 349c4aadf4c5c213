"""
Seller truck sub-ledgers.

Each seller carries a per-item counter in ``seller_inventory`` linked to the
central ledger by transfers:

    Carga       central -q, seller +q   (total conserved)
    Venta       seller -q               (goods leave the system)
    Devolución  seller -q, central +q   (total conserved)
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from shop_erp_core.compensation import CompoundOperation
from shop_erp_core.errors import InsufficientStock, NotFound, RemoteWriteFailure, ValidationError
from shop_erp_core.ledger import (
    ENTRADA, SALIDA, SELLER_LOAD_REASON, SELLER_RETURN_REASON, StockLedger, adjust_counter, to_decimal,
)
from shop_erp_core.row_store import Row, RowStore

logger = logging.getLogger(__name__)

CARGA = "Carga"
VENTA = "Venta"
DEVOLUCION = "Devolución"
SELLER_MOVEMENT_TYPES = (CARGA, VENTA, DEVOLUCION)

DOZEN = Decimal("12")


def resolve_quantity(unit: str, units: Decimal | None = None, dozens: Decimal | None = None) -> Decimal:
    """Quantity in the item's own unit from a units and/or dozens entry.

    Items counted in ``docenas`` take the dozens figure; everything else
    takes units, converting dozens x 12 when only dozens were given.
    """
    if (unit or "").strip().lower() == "docenas":
        if dozens is not None:
            qty = to_decimal(dozens)
        elif units is not None:
            qty = to_decimal(units) / DOZEN
        else:
            raise ValidationError("Enter a quantity in dozens")
    else:
        if units is not None:
            qty = to_decimal(units)
        elif dozens is not None:
            qty = to_decimal(dozens) * DOZEN
        else:
            raise ValidationError("Enter a quantity in units")
    if qty <= 0:
        raise ValidationError("Quantity must be greater than zero")
    return qty.quantize(Decimal("0.001"))


class TransferResult(BaseModel):
    type: str
    seller_id: int
    inventory_id: int
    quantity: Decimal
    seller_quantity: Decimal
    central_movement: Optional[Dict[str, Any]] = None
    seller_movement: Optional[Dict[str, Any]] = None
    warnings: List[str] = []


class SellerLedger:
    def __init__(self, store: RowStore, ledger: StockLedger | None = None):
        self.store = store
        self.ledger = ledger or StockLedger(store)

    # ---- sellers ----

    async def get_seller(self, seller_id: int) -> Row:
        seller = await self.store.get("sellers", seller_id)
        if seller is None:
            raise NotFound("sellers", seller_id)
        return seller

    async def list_sellers(self) -> List[Row]:
        return await self.store.select("sellers", order_by="name")

    async def create_seller(self, name: str) -> Row:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Seller name is required")
        return await self.store.insert("sellers", {"name": name})

    async def delete_seller(self, seller_id: int) -> None:
        """Remove a seller with its movement history and empty truck rows.

        A truck still holding goods is refused: those goods would vanish from
        the stock totals. Return them first.
        """
        await self.get_seller(seller_id)
        rows = await self.store.select("seller_inventory", {"seller_id": seller_id})
        loaded = [r for r in rows if to_decimal(r["quantity"]) != 0]
        if loaded:
            raise ValidationError(
                f"Seller #{seller_id} still carries {len(loaded)} item(s); return them before deleting",
                inventory_ids=[r["inventory_id"] for r in loaded],
            )
        history = await self.store.select("seller_movements", {"seller_id": seller_id})

        async with CompoundOperation(f"delete_seller #{seller_id}") as op:
            await self.store.delete("seller_movements", {"seller_id": seller_id})
            op.applied(
                lambda: self._restore("seller_movements", history),
                table="seller_movements", row_id=seller_id,
                note=f"{len(history)} movement(s) of seller #{seller_id} deleted",
            )
            await self.store.delete("seller_inventory", {"seller_id": seller_id})
            op.applied(
                lambda: self._restore("seller_inventory", rows),
                table="seller_inventory", row_id=seller_id,
                note=f"{len(rows)} empty truck row(s) of seller #{seller_id} deleted",
            )
            await self.store.delete("sellers", {"id": seller_id})
        logger.info("Deleted seller #%s with %s movement(s)", seller_id, len(history))

    async def _restore(self, table: str, rows: List[Row]) -> None:
        for row in rows:
            await self.store.insert(table, row)

    async def seller_inventory(self, seller_id: int) -> List[Row]:
        await self.get_seller(seller_id)
        rows = await self.store.select("seller_inventory", {"seller_id": seller_id})
        item_ids = list({r["inventory_id"] for r in rows})
        items = {i["id"]: i for i in await self.store.select("inventory", {"id": item_ids})} if item_ids else {}
        for r in rows:
            item = items.get(r["inventory_id"])
            r["inventory"] = {"name": item["name"], "unit": item["unit"]} if item else None
        return sorted(rows, key=lambda r: (r["inventory"] or {}).get("name", ""))

    async def list_movements(self, seller_id: int, limit: int | None = None) -> List[Row]:
        await self.get_seller(seller_id)
        return await self.store.select(
            "seller_movements", {"seller_id": seller_id},
            order_by="created_at", descending=True, limit=limit or self.ledger.page_size,
        )

    async def total_stock(self, item_id: int) -> Dict[str, Any]:
        """Central quantity plus every seller's quantity of one item."""
        central = await self.ledger.current_quantity(item_id)
        rows = await self.store.select("seller_inventory", {"inventory_id": item_id})
        carried = sum((to_decimal(r["quantity"]) for r in rows), Decimal("0"))
        return {
            "inventory_id": item_id,
            "central": central,
            "sellers": carried,
            "total": central + carried,
        }

    # ---- transfers ----

    async def _slot(self, seller_id: int, item_id: int, create: bool = True) -> Row | None:
        rows = await self.store.select("seller_inventory", {"seller_id": seller_id, "inventory_id": item_id}, limit=1)
        if rows:
            return rows[0]
        if not create:
            return None
        try:
            return await self.store.insert("seller_inventory", {
                "seller_id": seller_id,
                "inventory_id": item_id,
                "quantity": Decimal("0"),
                "version": 0,
            })
        except RemoteWriteFailure:
            # a concurrent first load may have created it
            rows = await self.store.select("seller_inventory", {"seller_id": seller_id, "inventory_id": item_id}, limit=1)
            if rows:
                return rows[0]
            raise

    async def _take_from_truck(self, seller_id: int, item_id: int, quantity: Decimal):
        slot = await self._slot(seller_id, item_id, create=False)
        if slot is None:
            raise InsufficientStock(item_id, quantity, Decimal("0"), ledger="seller_inventory")
        return slot, await adjust_counter(
            self.store, "seller_inventory", slot["id"], -quantity,
            check_stock=True, retries=self.ledger.cas_retries,
        )

    async def carga(self, seller_id: int, item_id: int, quantity: Decimal, notes: str | None = None) -> TransferResult:
        """Load the truck: checked central Salida, then seller +q."""
        quantity = _positive(quantity)
        seller = await self.get_seller(seller_id)
        await self.ledger.get_item(item_id)

        async with CompoundOperation(f"carga seller#{seller_id} inventory#{item_id}") as op:
            movement = await self.ledger.apply_delta(
                item_id, -quantity, SALIDA, f"{SELLER_LOAD_REASON}: {seller['name']}", check_stock=True,
            )
            op.applied(
                lambda: self.ledger.cancel_movement(movement["id"], seller_transfer=True),
                table="inventory", row_id=item_id, delta=-quantity,
                note=f"central stock loaded (movement #{movement['id']}) but not added to seller #{seller_id}",
            )
            slot = await self._slot(seller_id, item_id)
            write = await adjust_counter(
                self.store, "seller_inventory", slot["id"], quantity, retries=self.ledger.cas_retries,
            )

        result = TransferResult(
            type=CARGA, seller_id=seller_id, inventory_id=item_id, quantity=quantity,
            seller_quantity=write.after, central_movement=movement,
        )
        await self._log(result, notes)
        return result

    async def venta(self, seller_id: int, item_id: int, quantity: Decimal, notes: str | None = None) -> TransferResult:
        """Sale from the truck: seller -q only."""
        quantity = _positive(quantity)
        await self.get_seller(seller_id)
        _, write = await self._take_from_truck(seller_id, item_id, quantity)

        result = TransferResult(
            type=VENTA, seller_id=seller_id, inventory_id=item_id, quantity=quantity,
            seller_quantity=write.after,
        )
        await self._log(result, notes)
        return result

    async def devolucion(self, seller_id: int, item_id: int, quantity: Decimal, notes: str | None = None) -> TransferResult:
        """Return to the shop: checked seller -q, then central Entrada."""
        quantity = _positive(quantity)
        seller = await self.get_seller(seller_id)
        await self.ledger.get_item(item_id)

        async with CompoundOperation(f"devolucion seller#{seller_id} inventory#{item_id}") as op:
            slot, write = await self._take_from_truck(seller_id, item_id, quantity)
            op.applied(
                lambda: adjust_counter(
                    self.store, "seller_inventory", slot["id"], quantity, retries=self.ledger.cas_retries,
                ),
                table="seller_inventory", row_id=slot["id"], delta=-quantity,
                note=f"taken from seller #{seller_id} but not returned to central stock",
            )
            movement = await self.ledger.apply_delta(
                item_id, quantity, ENTRADA, f"{SELLER_RETURN_REASON}: {seller['name']}",
            )

        result = TransferResult(
            type=DEVOLUCION, seller_id=seller_id, inventory_id=item_id, quantity=quantity,
            seller_quantity=write.after, central_movement=movement,
        )
        await self._log(result, notes)
        return result

    async def _log(self, result: TransferResult, notes: str | None) -> None:
        try:
            result.seller_movement = await self.store.insert("seller_movements", {
                "seller_id": result.seller_id,
                "inventory_id": result.inventory_id,
                "type": result.type,
                "quantity": result.quantity,
                "notes": notes,
            })
        except RemoteWriteFailure as e:
            msg = (
                f"{result.type} of {result.quantity} for seller #{result.seller_id} was applied, "
                f"but could not be recorded in the seller history: {e.message}"
            )
            logger.warning(msg)
            result.warnings.append(msg)
            return
        logger.info(
            "%s seller #%s inventory #%s x %s (truck now %s)",
            result.type, result.seller_id, result.inventory_id, result.quantity, result.seller_quantity,
        )


def _positive(quantity: Decimal) -> Decimal:
    quantity = to_decimal(quantity)
    if quantity <= 0:
        raise ValidationError("Quantity must be greater than zero")
    return quantity
