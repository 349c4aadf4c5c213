from __future__ import annotations

import logging
from decimal import Decimal
from typing import List

from pydantic import BaseModel

from shop_erp_core.compensation import CompoundOperation
from shop_erp_core.errors import NotFound, ValidationError
from shop_erp_core.ledger import FINISHED_GOOD, RAW_MATERIAL, to_decimal
from shop_erp_core.row_store import Row, RowStore

logger = logging.getLogger(__name__)


class RecipeLine(BaseModel):
    recipe_id: int | None = None
    raw_material_inventory_id: int
    quantity_per_unit: Decimal


class RecipeResolver:
    """One-level bill of materials: finished good -> raw materials per unit."""

    def __init__(self, store: RowStore):
        self.store = store

    async def get_product(self, product_id: int) -> Row:
        product = await self.store.get("products", product_id)
        if product is None:
            raise NotFound("products", product_id)
        return product

    async def resolve(self, product_id: int) -> List[RecipeLine]:
        """Recipe lines of a product.

        An empty list means the product exists but has no recipe; a missing
        product raises NotFound.
        """
        await self.get_product(product_id)
        rows = await self.store.select("product_recipes", {"product_id": product_id})
        return [
            RecipeLine(
                recipe_id=r["id"],
                raw_material_inventory_id=r["raw_material_inventory_id"],
                quantity_per_unit=to_decimal(r["quantity_required"]),
            )
            for r in rows
        ]

    async def product_for_inventory(self, inventory_id: int) -> Row | None:
        rows = await self.store.select("products", {"finished_product_inventory_id": inventory_id}, limit=1)
        return rows[0] if rows else None

    async def list_products(self) -> List[Row]:
        products = await self.store.select("products", order_by="name")
        recipes = await self.store.select("product_recipes")
        items = {i["id"]: i for i in await self.store.select("inventory")}
        for p in products:
            finished = items.get(p["finished_product_inventory_id"])
            p["inventory"] = {"name": finished["name"]} if finished else None
            p["recipe"] = [
                {
                    **r,
                    "material": (
                        {"name": items[r["raw_material_inventory_id"]]["name"],
                         "unit": items[r["raw_material_inventory_id"]]["unit"]}
                        if r["raw_material_inventory_id"] in items else None
                    ),
                }
                for r in recipes if r["product_id"] == p["id"]
            ]
        return products

    async def create_product(self, name: str, finished_product_inventory_id: int) -> Row:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Product name is required")
        item = await self.store.get("inventory", finished_product_inventory_id)
        if item is None:
            raise NotFound("inventory", finished_product_inventory_id)
        if item["type"] != FINISHED_GOOD:
            raise ValidationError(f"Inventory #{item['id']} is not a finished good")
        if await self.product_for_inventory(finished_product_inventory_id):
            raise ValidationError(
                f"Inventory #{item['id']} already has a product",
                finished_product_inventory_id=finished_product_inventory_id,
            )
        return await self.store.insert("products", {
            "name": name,
            "finished_product_inventory_id": finished_product_inventory_id,
        })

    async def delete_product(self, product_id: int) -> None:
        """Delete the recipe lines, then the product; lines come back if the product delete fails."""
        await self.get_product(product_id)
        if await self.store.select("production_orders", {"product_id": product_id}, limit=1):
            raise ValidationError(f"Product #{product_id} has production orders and cannot be deleted")

        lines = await self.store.select("product_recipes", {"product_id": product_id})
        async with CompoundOperation(f"delete_product #{product_id}") as op:
            for line in lines:
                await self.store.delete("product_recipes", {"id": line["id"]})
                op.applied(
                    lambda line=line: self.store.insert("product_recipes", line),
                    table="product_recipes", row_id=line["id"],
                    note="recipe line deleted but product kept",
                )
            await self.store.delete("products", {"id": product_id})

    async def add_line(self, product_id: int, raw_material_inventory_id: int, quantity_required: Decimal) -> Row:
        quantity_required = to_decimal(quantity_required)
        if quantity_required <= 0:
            raise ValidationError("Quantity required per unit must be greater than zero")
        await self.get_product(product_id)
        material = await self.store.get("inventory", raw_material_inventory_id)
        if material is None:
            raise NotFound("inventory", raw_material_inventory_id)
        if material["type"] != RAW_MATERIAL:
            raise ValidationError(f"Inventory #{material['id']} is not a raw material")
        return await self.store.insert("product_recipes", {
            "product_id": product_id,
            "raw_material_inventory_id": raw_material_inventory_id,
            "quantity_required": quantity_required,
        })

    async def remove_line(self, recipe_id: int) -> None:
        if not await self.store.delete("product_recipes", {"id": recipe_id}):
            raise NotFound("product_recipes", recipe_id)
