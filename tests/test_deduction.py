# tests/test_deduction.py
import asyncio
from decimal import Decimal

import pytest
import pytest_asyncio

from app.core.config import BackorderPolicy
from app.models import MovementType
from app.services.inventory import AppliedDeduction, DeductionResult, InventoryDeductionEngine, LineItem


@pytest_asyncio.fixture
async def burger_kitchen(seed):
    await seed.item("bun", minimum=2)
    await seed.item("patty", unit="kg", minimum="0.5")
    await seed.stock("1", "bun", 10)
    await seed.stock("1", "patty", "2.000")
    await seed.recipe("burger", {"bun": 1, "patty": "0.150"})
    return seed


async def test_order_deducts_every_ingredient(deduction, burger_kitchen, publisher):
    result = await deduction.deduct("ORD-1", "1", [{"item_id": "burger", "quantity": 3}])

    assert result.fully_applied
    assert [a.inventory_item_id for a in result.applied] == ["bun", "patty"]
    assert await burger_kitchen.current_stock("1", "bun") == Decimal("7")
    assert await burger_kitchen.current_stock("1", "patty") == Decimal("1.55")

    movements = {m.inventory_item_id: m for m in await burger_kitchen.movements()}
    assert movements["bun"].quantity_delta == Decimal("-3")
    assert movements["patty"].quantity_delta == Decimal("-0.45")
    for m in movements.values():
        assert m.new_stock == m.previous_stock + m.quantity_delta
        assert m.movement_type == MovementType.SALE
        assert m.reference_type == "order"
        assert m.reference_id == "ORD-1"
        assert m.movement_number.startswith("MOV-20260302120000-")

    updates = publisher.of("inventory:stock-updated")
    assert [(room, p["item_id"]) for room, p in updates] == [("location:1", "bun"), ("location:1", "patty")]
    assert updates[1][1]["new_stock"] == pytest.approx(1.55)


async def test_item_without_recipe_is_skipped(deduction, burger_kitchen):
    result = await deduction.deduct("ORD-2", "1", [LineItem("soda", 2), LineItem("burger", 1)])

    assert result.skipped_items == ["soda"]
    assert result.fully_applied
    assert len(result.applied) == 2


async def test_order_with_no_recipes_changes_nothing(deduction, burger_kitchen, publisher):
    result = await deduction.deduct("ORD-3", "1", [LineItem("soda", 2)])

    assert result.applied == []
    assert result.fully_applied
    assert await burger_kitchen.movements() == []
    assert publisher.events == []


async def test_shortage_rejected_by_default(deduction, burger_kitchen):
    result = await deduction.deduct("ORD-4", "1", [LineItem("burger", 20)])

    assert not result.fully_applied
    shortages = {s.inventory_item_id: s for s in result.shortages}
    assert shortages["bun"].requested == Decimal("20")
    assert shortages["bun"].available == Decimal("10")
    assert shortages["patty"].requested == Decimal("3")
    assert await burger_kitchen.current_stock("1", "bun") == Decimal("10")
    assert await burger_kitchen.movements() == []


async def test_backorder_allowed_goes_negative(session_factory, notifier, scanner, clock, burger_kitchen):
    engine = InventoryDeductionEngine(
        session_factory, notifier, scanner, backorder_policy=BackorderPolicy.ALLOW, clock=clock
    )

    result = await engine.deduct("ORD-5", "1", [LineItem("burger", 12)])

    assert result.fully_applied
    assert await burger_kitchen.current_stock("1", "bun") == Decimal("-2")
    bun = (await burger_kitchen.movements("bun"))[0]
    assert (bun.previous_stock, bun.new_stock) == (Decimal("10"), Decimal("-2"))


async def test_missing_stock_row(deduction, seed):
    await seed.item("bun")
    await seed.recipe("burger", {"bun": 1})

    result = await deduction.deduct("ORD-6", "2", [LineItem("burger", 1)])

    assert result.missing_stock == ["bun"]
    assert not result.fully_applied


async def test_deduction_reports_low_stock(deduction, burger_kitchen, publisher):
    await deduction.deduct("ORD-7", "1", [LineItem("burger", 8)])

    alerts = publisher.of("inventory:low-stock")
    assert [p["item_id"] for _, p in alerts] == ["bun"]
    assert alerts[0][1]["current_stock"] == 2.0
    assert alerts[0][1]["minimum_stock"] == 2.0


async def test_repeated_line_items_use_separate_units(deduction, burger_kitchen):
    result = await deduction.deduct("ORD-8", "1", [LineItem("burger", 1), LineItem("burger", 2)])

    assert sorted(a.unit for a in result.applied) == [
        "0:burger:bun", "0:burger:patty", "1:burger:bun", "1:burger:patty",
    ]
    assert await burger_kitchen.current_stock("1", "bun") == Decimal("7")


async def test_skip_units_are_not_deducted_again(deduction, burger_kitchen):
    result = await deduction.deduct(
        "ORD-9", "1", [LineItem("burger", 1)], skip_units={"0:burger:bun"}
    )

    assert result.already_applied == ["0:burger:bun"]
    assert [a.inventory_item_id for a in result.applied] == ["patty"]
    assert await burger_kitchen.current_stock("1", "bun") == Decimal("10")


async def test_redelivered_order_is_not_deducted_twice(deduction, burger_kitchen):
    # No skip_units: the earlier attempt committed stock but its progress write was lost
    first = await deduction.deduct("ORD-10", "1", [LineItem("burger", 2)])
    second = await deduction.deduct("ORD-10", "1", [LineItem("burger", 2)])

    assert len(first.applied) == 2
    assert second.applied == []
    assert second.already_applied == ["0:burger:bun", "0:burger:patty"]
    assert second.fully_applied
    assert await burger_kitchen.current_stock("1", "bun") == Decimal("8")

    movements = await burger_kitchen.movements("bun")
    assert len(movements) == 1
    assert movements[0].unit == "0:burger:bun"


async def test_same_unit_of_another_order_still_deducts(deduction, burger_kitchen):
    await deduction.deduct("ORD-11", "1", [LineItem("burger", 1)])
    result = await deduction.deduct("ORD-12", "1", [LineItem("burger", 1)])

    assert len(result.applied) == 2
    assert await burger_kitchen.current_stock("1", "bun") == Decimal("8")


async def test_concurrent_orders_never_oversell(deduction, seed):
    await seed.item("bun")
    await seed.stock("1", "bun", 5)
    await seed.recipe("slider", {"bun": 1})

    results = await asyncio.gather(*(
        deduction.deduct(f"ORD-{n}", "1", [LineItem("slider", 1)]) for n in range(8)
    ))

    applied = sum(len(r.applied) for r in results)
    short = sum(len(r.shortages) for r in results)
    assert (applied, short) == (5, 3)
    assert await seed.current_stock("1", "bun") == Decimal("0")

    movements = await seed.movements("bun")
    assert len(movements) == 5
    assert sorted(m.new_stock for m in movements) == [Decimal(n) for n in range(5)]
    for m in movements:
        assert m.new_stock == m.previous_stock + m.quantity_delta


def test_result_serializes_decimals_as_strings():
    result = DeductionResult("ORD-1", "1", applied=[
        AppliedDeduction("0:burger:bun", "bun", Decimal("1.000"), Decimal("3.000"), Decimal("2.000"), "MOV-1"),
    ])
    data = result.to_dict()
    assert data["applied"][0]["new_stock"] == "2.000"
    assert data["fully_applied"] is True
