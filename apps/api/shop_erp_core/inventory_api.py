from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, condecimal

from shop_erp_core.deps import get_ledger
from shop_erp_core.ledger import ItemResult, ReconcileReport, StockLedger

router = APIRouter(prefix="/inventory", tags=["inventory"])

Qty = condecimal(gt=0, max_digits=12, decimal_places=3)
Level = condecimal(ge=0, max_digits=12, decimal_places=3)
Signed = condecimal(max_digits=12, decimal_places=3)


class ItemCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    type: Literal["Materia Prima", "Producto Terminado"]
    quantity: Level = Decimal("0")
    low_stock_threshold: Level = Decimal("0")
    unit: str = Field(min_length=1, max_length=64)
    brand: Literal["Duramaxi", "Avanty", "Diletta", "Generica"] = "Generica"


class ItemUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    type: Optional[Literal["Materia Prima", "Producto Terminado"]] = None
    # manual corrections may set any value, negative included
    quantity: Optional[Signed] = None
    low_stock_threshold: Optional[Level] = None
    unit: Optional[str] = Field(default=None, min_length=1, max_length=64)
    brand: Optional[Literal["Duramaxi", "Avanty", "Diletta", "Generica"]] = None


class MovementRequest(BaseModel):
    inventory_id: int
    type: Literal["Entrada", "Salida"]
    quantity: Qty
    reason: str | None = Field(default=None, max_length=500)


@router.get("")
async def list_items(ledger: StockLedger = Depends(get_ledger)) -> List[Dict[str, Any]]:
    return await ledger.list_items()


@router.get("/low-stock")
async def low_stock(ledger: StockLedger = Depends(get_ledger)) -> List[Dict[str, Any]]:
    return await ledger.low_stock()


@router.post("", response_model=ItemResult, status_code=201)
async def create_item(req: ItemCreateRequest, ledger: StockLedger = Depends(get_ledger)):
    return await ledger.create_item(req.model_dump())


@router.get("/movements")
async def list_movements(
    limit: int = Query(default=100, ge=1),
    inventory_id: int | None = None,
    ledger: StockLedger = Depends(get_ledger),
) -> List[Dict[str, Any]]:
    return await ledger.list_movements(limit=limit, inventory_id=inventory_id)


@router.post("/movements", status_code=201)
async def register_movement(req: MovementRequest, ledger: StockLedger = Depends(get_ledger)) -> Dict[str, Any]:
    return await ledger.register_movement(req.inventory_id, req.type, req.quantity, req.reason)


@router.post("/movements/{movement_id}/cancel")
async def cancel_movement(movement_id: int, ledger: StockLedger = Depends(get_ledger)) -> Dict[str, Any]:
    return await ledger.cancel_movement(movement_id)


@router.get("/{item_id}")
async def get_item(item_id: int, ledger: StockLedger = Depends(get_ledger)) -> Dict[str, Any]:
    return await ledger.get_item(item_id)


@router.patch("/{item_id}", response_model=ItemResult)
async def update_item(item_id: int, req: ItemUpdateRequest, ledger: StockLedger = Depends(get_ledger)):
    return await ledger.update_item(item_id, req.model_dump(exclude_none=True))


@router.delete("/{item_id}", status_code=204)
async def delete_item(item_id: int, ledger: StockLedger = Depends(get_ledger)):
    await ledger.delete_item(item_id)


@router.get("/{item_id}/reconcile", response_model=ReconcileReport)
async def reconcile(item_id: int, ledger: StockLedger = Depends(get_ledger)):
    return await ledger.reconcile(item_id)
