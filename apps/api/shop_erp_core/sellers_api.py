from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, condecimal, model_validator

from shop_erp_core.deps import get_sellers
from shop_erp_core.sellers import SellerLedger, TransferResult, resolve_quantity

router = APIRouter(prefix="/sellers", tags=["sellers"])

Qty = condecimal(gt=0, max_digits=12, decimal_places=3)


class SellerCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class TransferRequest(BaseModel):
    inventory_id: int
    units: Qty | None = None
    dozens: Qty | None = None
    notes: str | None = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def one_quantity(self):
        if self.units is None and self.dozens is None:
            raise ValueError("units or dozens is required")
        return self


async def _quantity(req: TransferRequest, sellers: SellerLedger) -> Decimal:
    item = await sellers.ledger.get_item(req.inventory_id)
    return resolve_quantity(item["unit"], req.units, req.dozens)


@router.get("")
async def list_sellers(sellers: SellerLedger = Depends(get_sellers)) -> List[Dict[str, Any]]:
    return await sellers.list_sellers()


@router.post("", status_code=201)
async def create_seller(req: SellerCreateRequest, sellers: SellerLedger = Depends(get_sellers)) -> Dict[str, Any]:
    return await sellers.create_seller(req.name)


@router.get("/stock/{item_id}")
async def total_stock(item_id: int, sellers: SellerLedger = Depends(get_sellers)) -> Dict[str, Any]:
    return await sellers.total_stock(item_id)


@router.delete("/{seller_id}", status_code=204)
async def delete_seller(seller_id: int, sellers: SellerLedger = Depends(get_sellers)):
    await sellers.delete_seller(seller_id)


@router.get("/{seller_id}/inventory")
async def seller_inventory(seller_id: int, sellers: SellerLedger = Depends(get_sellers)) -> List[Dict[str, Any]]:
    return await sellers.seller_inventory(seller_id)


@router.get("/{seller_id}/movements")
async def seller_movements(
    seller_id: int,
    limit: int = Query(default=100, ge=1),
    sellers: SellerLedger = Depends(get_sellers),
) -> List[Dict[str, Any]]:
    return await sellers.list_movements(seller_id, limit)


@router.post("/{seller_id}/carga", response_model=TransferResult)
async def carga(seller_id: int, req: TransferRequest, sellers: SellerLedger = Depends(get_sellers)):
    qty = await _quantity(req, sellers)
    return await sellers.carga(seller_id, req.inventory_id, qty, req.notes)


@router.post("/{seller_id}/venta", response_model=TransferResult)
async def venta(seller_id: int, req: TransferRequest, sellers: SellerLedger = Depends(get_sellers)):
    qty = await _quantity(req, sellers)
    return await sellers.venta(seller_id, req.inventory_id, qty, req.notes)


@router.post("/{seller_id}/devolucion", response_model=TransferResult)
async def devolucion(seller_id: int, req: TransferRequest, sellers: SellerLedger = Depends(get_sellers)):
    qty = await _quantity(req, sellers)
    return await sellers.devolucion(seller_id, req.inventory_id, qty, req.notes)
