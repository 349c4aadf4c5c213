from decimal import Decimal

import pytest

from shop_erp_core.errors import NotFound, OrderNotFeasible, RemoteWriteFailure, ValidationError
from shop_erp_core.feasibility import FeasibilityChecker
from shop_erp_core.ledger import FINISHED_GOOD, SALIDA
from shop_erp_core.orders import PENDING, OrderService, status_for
from shop_erp_core.recipes import RecipeResolver

pytestmark = pytest.mark.asyncio


async def test_escoba_1000_is_short_on_cerdas_only(store, broom):
    report = await FeasibilityChecker(store).check(broom["product"], Decimal("1000"))

    assert report.has_recipe
    assert not report.feasible
    by_name = {m.name: m for m in report.per_material}
    assert by_name["Cerdas"].required == Decimal("500")
    assert by_name["Cerdas"].available == Decimal("400")
    assert not by_name["Cerdas"].sufficient
    # Mango 1000 > 100 as well; each flag is computed on its own
    assert by_name["Mango"].required == Decimal("1000")
    assert not by_name["Mango"].sufficient


async def test_mango_flag_unaffected_by_cerdas_shortage(store, ledger, broom):
    await ledger.register_movement(broom["mango"], "Entrada", Decimal("900"))
    report = await FeasibilityChecker(store).check(broom["product"], Decimal("1000"))
    by_id = {m.material_id: m for m in report.per_material}
    assert not report.feasible
    assert not by_id[broom["cerdas"]].sufficient
    assert by_id[broom["mango"]].sufficient


async def test_boundary_available_equals_required(store, ledger, broom):
    checker = FeasibilityChecker(store)
    # Cerdas 400 / 0.5 = 800, Mango 100 / 1 = 100
    at_limit = await checker.check(broom["product"], Decimal("100"))
    assert at_limit.feasible

    await ledger.register_movement(broom["mango"], SALIDA, Decimal("0.001"))
    just_short = await checker.check(broom["product"], Decimal("100"))
    assert not just_short.feasible
    mango = next(m for m in just_short.per_material if m.material_id == broom["mango"])
    assert mango.available == Decimal("99.999")
    assert not mango.sufficient


async def test_empty_recipe_never_has_recipe(store, make_item):
    item = await make_item("Balde", "0", type=FINISHED_GOOD)
    product = await RecipeResolver(store).create_product("Balde", item["id"])
    checker = FeasibilityChecker(store)

    for qty in ("0", "1", "1000000"):
        report = await checker.check(product["id"], Decimal(qty))
        assert report.has_recipe is False
        assert report.feasible is False
        assert report.per_material == []


async def test_zero_quantity_with_recipe_is_feasible(store, broom):
    report = await FeasibilityChecker(store).check(broom["product"], Decimal("0"))
    assert report.feasible
    assert all(m.required == 0 for m in report.per_material)


async def test_repeated_material_lines_are_summed(store, broom):
    await RecipeResolver(store).add_line(broom["product"], broom["mango"], Decimal("1"))
    report = await FeasibilityChecker(store).check(broom["product"], Decimal("60"))
    mango = next(m for m in report.per_material if m.material_id == broom["mango"])
    assert mango.required == Decimal("120")
    assert not mango.sufficient


async def test_negative_quantity_and_unknown_product(store, broom):
    checker = FeasibilityChecker(store)
    with pytest.raises(ValidationError):
        await checker.check(broom["product"], Decimal("-1"))
    with pytest.raises(NotFound):
        await checker.check(999, Decimal("1"))


async def test_recipe_lines_must_use_raw_materials(store, broom):
    resolver = RecipeResolver(store)
    with pytest.raises(ValidationError):
        await resolver.add_line(broom["product"], broom["escoba"], Decimal("1"))
    with pytest.raises(ValidationError):
        await resolver.add_line(broom["product"], broom["mango"], Decimal("0"))
    with pytest.raises(ValidationError):
        await resolver.create_product("Otra Escoba", broom["escoba"])


async def test_resolve_lists_recipe_lines(store, broom):
    lines = await RecipeResolver(store).resolve(broom["product"])
    assert {l.raw_material_inventory_id: l.quantity_per_unit for l in lines} == {
        broom["cerdas"]: Decimal("0.5"),
        broom["mango"]: Decimal("1"),
    }


async def test_create_order_is_a_plan_only(store, ledger, broom):
    orders = OrderService(store)
    order, report = await orders.create_order(broom["product"], Decimal("50"))

    assert order["status"] == PENDING
    assert report.feasible
    assert await ledger.current_quantity(broom["cerdas"]) == Decimal("400")
    assert await ledger.current_quantity(broom["mango"]) == Decimal("100")
    [listed] = await orders.list_orders()
    assert listed["products"] == {"name": "Escoba A"}


async def test_infeasible_order_is_refused(store, broom):
    with pytest.raises(OrderNotFeasible) as exc:
        await OrderService(store).create_order(broom["product"], Decimal("1000"))
    assert "Cerdas" in exc.value.message
    assert await store.select("production_orders") == []


async def test_order_without_recipe_is_refused(store, make_item):
    item = await make_item("Balde", "0", type=FINISHED_GOOD)
    product = await RecipeResolver(store).create_product("Balde", item["id"])
    with pytest.raises(ValidationError):
        await OrderService(store).create_order(product["id"], Decimal("1"))


async def test_product_with_orders_cannot_be_deleted(store, broom):
    await OrderService(store).create_order(broom["product"], Decimal("1"))
    with pytest.raises(ValidationError):
        await RecipeResolver(store).delete_product(broom["product"])


async def test_delete_product_removes_its_recipe(store, broom):
    resolver = RecipeResolver(store)
    await resolver.delete_product(broom["product"])
    assert await store.select("product_recipes") == []
    with pytest.raises(NotFound):
        await resolver.resolve(broom["product"])


async def test_delete_product_restores_lines_when_product_delete_fails(store, broom):
    store.fail("delete", "products")
    with pytest.raises(RemoteWriteFailure):
        await RecipeResolver(store).delete_product(broom["product"])
    assert len(await RecipeResolver(store).resolve(broom["product"])) == 2


async def test_status_for():
    assert status_for(Decimal("0"), Decimal("10")) == "Pendiente"
    assert status_for(Decimal("4"), Decimal("10")) == "En Proceso"
    assert status_for(Decimal("10"), Decimal("10")) == "Completado"
    assert status_for(Decimal("12"), Decimal("10")) == "Completado"
