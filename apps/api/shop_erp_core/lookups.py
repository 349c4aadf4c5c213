from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from shop_erp_core.db import get_store
from shop_erp_core.errors import ValidationError
from shop_erp_core.ledger import BRANDS, ITEM_TYPES, STANDARD_UNITS
from shop_erp_core.row_store import RowStore

router = APIRouter(prefix="/lookups", tags=["lookups"])


class WorkerCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    shift: str | None = Field(default=None, max_length=32)


@router.get("/workers")
async def list_workers(store: RowStore = Depends(get_store)):
    rows = await store.select("workers", order_by="name")
    return [{"id": r["id"], "name": r["name"], "shift": r["shift"]} for r in rows]


@router.post("/workers", status_code=201)
async def create_worker(req: WorkerCreateRequest, store: RowStore = Depends(get_store)):
    name = req.name.strip()
    if not name:
        raise ValidationError("Worker name is required")
    row = await store.insert("workers", {"name": name, "shift": req.shift})
    return {"id": row["id"], "name": row["name"], "shift": row["shift"]}


@router.get("/brands")
async def list_brands():
    return list(BRANDS)


@router.get("/units")
async def list_units():
    # free-text units are accepted too; these are the ones the forms offer
    return list(STANDARD_UNITS)


@router.get("/categories")
async def list_categories():
    return list(ITEM_TYPES)
