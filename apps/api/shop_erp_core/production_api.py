from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, condecimal

from shop_erp_core.deps import get_checker, get_orders, get_production_logs, get_resolver
from shop_erp_core.feasibility import FeasibilityChecker, FeasibilityReport
from shop_erp_core.orders import OrderService
from shop_erp_core.production import LogDeletion, LogResult, ProductionLogService
from shop_erp_core.recipes import RecipeLine, RecipeResolver

router = APIRouter(prefix="/production", tags=["production"])

Qty = condecimal(gt=0, max_digits=12, decimal_places=3)


class ProductCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    finished_product_inventory_id: int


class RecipeLineRequest(BaseModel):
    raw_material_inventory_id: int
    quantity_required: Qty


class OrderCreateRequest(BaseModel):
    product_id: int
    quantity_to_produce: Qty


class OrderCreateResponse(BaseModel):
    order: Dict[str, Any]
    feasibility: FeasibilityReport


class ProductionLogRequest(BaseModel):
    worker_id: int
    inventory_id: int
    quantity: Qty
    production_date: date = Field(default_factory=date.today)
    production_order_id: int | None = None


# ---- products / recipes ----

@router.get("/products")
async def list_products(resolver: RecipeResolver = Depends(get_resolver)) -> List[Dict[str, Any]]:
    return await resolver.list_products()


@router.post("/products", status_code=201)
async def create_product(req: ProductCreateRequest, resolver: RecipeResolver = Depends(get_resolver)) -> Dict[str, Any]:
    return await resolver.create_product(req.name, req.finished_product_inventory_id)


@router.delete("/products/{product_id}", status_code=204)
async def delete_product(product_id: int, resolver: RecipeResolver = Depends(get_resolver)):
    await resolver.delete_product(product_id)


@router.get("/products/{product_id}/recipe", response_model=List[RecipeLine])
async def get_recipe(product_id: int, resolver: RecipeResolver = Depends(get_resolver)):
    return await resolver.resolve(product_id)


@router.post("/products/{product_id}/recipe", status_code=201)
async def add_recipe_line(
    product_id: int, req: RecipeLineRequest, resolver: RecipeResolver = Depends(get_resolver),
) -> Dict[str, Any]:
    return await resolver.add_line(product_id, req.raw_material_inventory_id, req.quantity_required)


@router.delete("/recipes/{recipe_id}", status_code=204)
async def remove_recipe_line(recipe_id: int, resolver: RecipeResolver = Depends(get_resolver)):
    await resolver.remove_line(recipe_id)


# ---- planning ----

@router.get("/feasibility", response_model=FeasibilityReport)
async def feasibility(
    product_id: int,
    quantity: Decimal = Query(ge=0),
    checker: FeasibilityChecker = Depends(get_checker),
):
    return await checker.check(product_id, quantity)


@router.get("/orders")
async def list_orders(orders: OrderService = Depends(get_orders)) -> List[Dict[str, Any]]:
    return await orders.list_orders()


@router.post("/orders", response_model=OrderCreateResponse, status_code=201)
async def create_order(req: OrderCreateRequest, orders: OrderService = Depends(get_orders)):
    order, report = await orders.create_order(req.product_id, req.quantity_to_produce)
    return OrderCreateResponse(order=order, feasibility=report)


@router.delete("/orders/{order_id}", status_code=204)
async def delete_order(order_id: int, orders: OrderService = Depends(get_orders)):
    await orders.delete_order(order_id)


# ---- production log ----

@router.get("/logs")
async def list_logs(
    limit: int = Query(default=100, ge=1),
    logs: ProductionLogService = Depends(get_production_logs),
) -> List[Dict[str, Any]]:
    return await logs.list_logs(limit)


@router.post("/logs", response_model=LogResult, status_code=201)
async def log_production(req: ProductionLogRequest, logs: ProductionLogService = Depends(get_production_logs)):
    return await logs.log_production(
        req.worker_id, req.inventory_id, req.quantity, req.production_date, req.production_order_id,
    )


@router.delete("/logs/{log_id}", response_model=LogDeletion)
async def delete_log(log_id: int, logs: ProductionLogService = Depends(get_production_logs)):
    return await logs.delete_log(log_id)
