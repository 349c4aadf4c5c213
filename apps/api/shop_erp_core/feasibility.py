from __future__ import annotations

from decimal import Decimal
from typing import Dict, List

from pydantic import BaseModel

from shop_erp_core.errors import ValidationError
from shop_erp_core.ledger import to_decimal
from shop_erp_core.recipes import RecipeResolver
from shop_erp_core.row_store import RowStore


class MaterialCheck(BaseModel):
    material_id: int
    name: str
    unit: str
    required: Decimal
    available: Decimal
    sufficient: bool


class FeasibilityReport(BaseModel):
    product_id: int
    desired_quantity: Decimal
    feasible: bool
    has_recipe: bool
    per_material: List[MaterialCheck]


class FeasibilityChecker:
    """Read-then-compare check of current stock against a planned quantity.

    Advisory only: nothing is locked or reserved, so two plans checked at the
    same time can both pass against the same stock.
    """

    def __init__(self, store: RowStore, resolver: RecipeResolver | None = None):
        self.store = store
        self.resolver = resolver or RecipeResolver(store)

    async def check(self, product_id: int, desired_quantity: Decimal) -> FeasibilityReport:
        desired_quantity = to_decimal(desired_quantity)
        if desired_quantity < 0:
            raise ValidationError("Desired quantity cannot be negative")

        lines = await self.resolver.resolve(product_id)
        if not lines:
            return FeasibilityReport(
                product_id=product_id,
                desired_quantity=desired_quantity,
                feasible=False,
                has_recipe=False,
                per_material=[],
            )

        # the same material listed twice draws on the same stock
        required: Dict[int, Decimal] = {}
        for line in lines:
            mid = line.raw_material_inventory_id
            required[mid] = required.get(mid, Decimal("0")) + line.quantity_per_unit * desired_quantity

        items = {i["id"]: i for i in await self.store.select("inventory", {"id": list(required)})}

        per_material: List[MaterialCheck] = []
        for mid, need in required.items():
            item = items.get(mid)
            available = to_decimal(item["quantity"]) if item else Decimal("0")
            per_material.append(MaterialCheck(
                material_id=mid,
                name=item["name"] if item else "Desconocido",
                unit=item["unit"] if item else "",
                required=need,
                available=available,
                sufficient=available >= need,
            ))

        return FeasibilityReport(
            product_id=product_id,
            desired_quantity=desired_quantity,
            feasible=all(m.sufficient for m in per_material),
            has_recipe=True,
            per_material=per_material,
        )
