import asyncio
from decimal import Decimal

import pytest

from shop_erp_core.errors import (
    ConflictError, InsufficientStock, MovementAlreadyCancelled, NotFound,
    PartialConsistency, RemoteWriteFailure, ValidationError,
)
from shop_erp_core.ledger import (
    ENTRADA, INITIAL_STOCK_REASON, MANUAL_ADJUSTMENT_REASON, SALIDA, StockLedger,
)

pytestmark = pytest.mark.asyncio


async def _movements(store, item_id, **filters):
    return await store.select("inventory_movements", {"inventory_id": item_id, **filters})


async def test_tornillos_salida_then_cancel(ledger, store, make_item):
    item = await make_item("Tornillos", "100", low_stock_threshold=Decimal("20"))

    movement = await ledger.register_movement(item["id"], SALIDA, Decimal("30"), "Venta mostrador")
    assert await ledger.current_quantity(item["id"]) == Decimal("70")
    outbound = [m for m in await _movements(store, item["id"], is_cancelled=False) if m["quantity_change"] < 0]
    assert len(outbound) == 1
    assert outbound[0]["quantity_change"] == Decimal("-30")
    assert outbound[0]["type"] == SALIDA

    await ledger.cancel_movement(movement["id"])
    assert await ledger.current_quantity(item["id"]) == Decimal("100")
    row = await store.get("inventory_movements", movement["id"])
    assert row is not None and row["is_cancelled"] is True

    with pytest.raises(MovementAlreadyCancelled):
        await ledger.cancel_movement(movement["id"])
    assert await ledger.current_quantity(item["id"]) == Decimal("100")
    assert (await ledger.reconcile(item["id"])).consistent


async def test_create_item_seeds_initial_entrada(ledger, store, make_item):
    item = await make_item("Clavos", "50")
    empty = await make_item("Alambre", "0", unit="metros")

    seeded = await _movements(store, item["id"])
    assert len(seeded) == 1
    assert seeded[0]["type"] == ENTRADA
    assert seeded[0]["reason"] == INITIAL_STOCK_REASON
    assert seeded[0]["quantity_change"] == Decimal("50")
    assert await _movements(store, empty["id"]) == []


async def test_create_item_rejects_unknown_type(ledger):
    with pytest.raises(ValidationError):
        await ledger.create_item({"name": "X", "type": "Herramienta", "unit": "unidades"})
    with pytest.raises(ValidationError):
        await ledger.create_item({"name": "", "type": "Materia Prima", "unit": "unidades"})


async def test_checked_salida_refused_before_any_write(ledger, store, make_item):
    item = await make_item("Tornillos", "10")
    with pytest.raises(InsufficientStock) as exc:
        await ledger.register_movement(item["id"], SALIDA, Decimal("10.001"))
    assert Decimal(exc.value.context["available"]) == Decimal("10")
    assert await ledger.current_quantity(item["id"]) == Decimal("10")
    assert len(await _movements(store, item["id"])) == 1


async def test_unknown_item_is_not_found(ledger):
    with pytest.raises(NotFound):
        await ledger.current_quantity(999)
    with pytest.raises(NotFound):
        await ledger.register_movement(999, ENTRADA, Decimal("1"))


async def test_apply_delta_type_must_match_sign(ledger, make_item):
    item = await make_item("Tornillos", "10")
    with pytest.raises(ValidationError):
        await ledger.apply_delta(item["id"], Decimal("-1"), ENTRADA, "mal")
    with pytest.raises(ValidationError):
        await ledger.apply_delta(item["id"], Decimal("0"), ENTRADA, "cero")


async def test_registered_movement_removed_when_stock_update_fails(ledger, store, make_item):
    item = await make_item("Tornillos", "100")
    store.fail("update", "inventory")

    with pytest.raises(RemoteWriteFailure):
        await ledger.register_movement(item["id"], SALIDA, Decimal("30"))

    assert await ledger.current_quantity(item["id"]) == Decimal("100")
    assert len(await _movements(store, item["id"])) == 1
    assert (await ledger.reconcile(item["id"])).consistent


async def test_quantity_restored_when_movement_append_fails(ledger, store, make_item):
    item = await make_item("Tornillos", "100")
    store.fail("insert", "inventory_movements")

    with pytest.raises(RemoteWriteFailure):
        await ledger.apply_delta(item["id"], Decimal("-10"), SALIDA, "Consumo")

    assert await ledger.current_quantity(item["id"]) == Decimal("100")
    assert (await ledger.reconcile(item["id"])).consistent


async def test_failed_compensation_reports_the_unrepaired_write(ledger, store, make_item):
    item = await make_item("Tornillos", "100")
    store.fail("insert", "inventory_movements")
    # first quantity write goes through, the undo does not
    store.fail("update", "inventory", skip=1)

    with pytest.raises(PartialConsistency) as exc:
        await ledger.apply_delta(item["id"], Decimal("-10"), SALIDA, "Consumo")

    [broken] = exc.value.inconsistencies
    assert broken.table == "inventory"
    assert broken.row_id == item["id"]
    assert broken.delta == Decimal("-10")
    assert "Manual correction required" in exc.value.message

    store.heal()
    report = await ledger.reconcile(item["id"])
    assert not report.consistent
    assert report.difference == Decimal("-10")


async def test_cancel_flag_failure_restores_quantity(ledger, store, make_item):
    item = await make_item("Tornillos", "100")
    movement = await ledger.register_movement(item["id"], SALIDA, Decimal("30"))
    store.fail("update", "inventory_movements")

    with pytest.raises(RemoteWriteFailure):
        await ledger.cancel_movement(movement["id"])

    assert await ledger.current_quantity(item["id"]) == Decimal("70")
    assert (await store.get("inventory_movements", movement["id"]))["is_cancelled"] is False


async def test_racing_cancels_apply_the_inverse_once(ledger, store, make_item):
    item = await make_item("Tornillos", "100")
    movement = await ledger.register_movement(item["id"], SALIDA, Decimal("30"))

    results = await asyncio.gather(
        ledger.cancel_movement(movement["id"]),
        ledger.cancel_movement(movement["id"]),
        return_exceptions=True,
    )

    assert sum(1 for r in results if isinstance(r, dict)) == 1
    assert sum(1 for r in results if isinstance(r, MovementAlreadyCancelled)) == 1
    assert await ledger.current_quantity(item["id"]) == Decimal("100")
    assert (await ledger.reconcile(item["id"])).consistent


async def test_concurrent_deltas_are_not_lost(ledger, make_item):
    item = await make_item("Tornillos", "100")
    await asyncio.gather(*(
        ledger.apply_delta(item["id"], Decimal("-1"), SALIDA, "Consumo") for _ in range(3)
    ))
    assert await ledger.current_quantity(item["id"]) == Decimal("97")
    assert (await ledger.reconcile(item["id"])).consistent


async def test_quantity_write_gives_up_after_lost_races(store, make_item, monkeypatch):
    item = await make_item("Tornillos", "100")

    async def always_stale(table, filters, patch):
        return 0

    monkeypatch.setattr(store, "update", always_stale)
    with pytest.raises(ConflictError):
        await StockLedger(store, cas_retries=2).adjust_quantity(item["id"], Decimal("-1"))


async def test_item_edit_logs_a_synthetic_movement(ledger, store, make_item):
    item = await make_item("Tornillos", "100")

    result = await ledger.update_item(item["id"], {"quantity": Decimal("80"), "low_stock_threshold": Decimal("25")})

    assert result.warnings == []
    assert result.movement["quantity_change"] == Decimal("-20")
    assert result.movement["reason"] == MANUAL_ADJUSTMENT_REASON
    assert (await ledger.get_item(item["id"]))["low_stock_threshold"] == Decimal("25")
    assert (await ledger.reconcile(item["id"])).consistent


async def test_item_edit_keeps_stock_when_log_fails(ledger, store, make_item):
    item = await make_item("Tornillos", "100")
    store.fail("insert", "inventory_movements")

    result = await ledger.update_item(item["id"], {"quantity": Decimal("80")})

    assert result.movement is None
    assert len(result.warnings) == 1
    assert await ledger.current_quantity(item["id"]) == Decimal("80")
    assert (await ledger.reconcile(item["id"])).difference == Decimal("-20")


async def test_item_edit_allows_negative_with_warning(ledger, make_item):
    item = await make_item("Tornillos", "5")
    result = await ledger.update_item(item["id"], {"quantity": Decimal("-2")})
    assert any("negative" in w for w in result.warnings)
    assert await ledger.current_quantity(item["id"]) == Decimal("-2")


async def test_low_stock_uses_threshold(ledger, make_item):
    item = await make_item("Tornillos", "100", low_stock_threshold=Decimal("20"))
    await make_item("Clavos", "500", low_stock_threshold=Decimal("20"))
    await make_item("Nuevo", "0")
    assert await ledger.low_stock() == []

    # sitting exactly on the threshold is not low yet
    await ledger.register_movement(item["id"], SALIDA, Decimal("80"))
    assert await ledger.low_stock() == []

    await ledger.register_movement(item["id"], SALIDA, Decimal("1"))
    assert [i["name"] for i in await ledger.low_stock()] == ["Tornillos"]


async def test_seller_transfer_movements_cannot_be_cancelled_directly(ledger, store, make_item):
    item = await make_item("Escoba A", "100")
    movement = await ledger.apply_delta(item["id"], Decimal("-12"), SALIDA, "Carga a Vendedor: Carlos")

    with pytest.raises(ValidationError):
        await ledger.cancel_movement(movement["id"])

    assert await ledger.current_quantity(item["id"]) == Decimal("88")
    assert (await store.get("inventory_movements", movement["id"]))["is_cancelled"] is False


async def test_movement_list_is_newest_first_and_capped(store, make_item):
    ledger = StockLedger(store, page_size=3)
    item = await make_item("Tornillos", "100")
    for qty in ("1", "2", "3", "4"):
        await ledger.register_movement(item["id"], SALIDA, Decimal(qty))

    movements = await ledger.list_movements(limit=50)
    assert len(movements) == 3
    assert [m["quantity_change"] for m in movements] == [Decimal("-4"), Decimal("-3"), Decimal("-2")]
    assert movements[0]["inventory"] == {"name": "Tornillos", "unit": "unidades"}


async def test_delete_item_refused_while_referenced(ledger, store, make_item):
    used = await make_item("Tornillos", "100")
    unused = await make_item("Arandelas", "0")

    with pytest.raises(ValidationError):
        await ledger.delete_item(used["id"])

    await ledger.delete_item(unused["id"])
    assert await store.get("inventory", unused["id"]) is None
