# tests/test_scans.py
from datetime import datetime, timedelta

from app.models import InventoryLot, LotStatus
from app.services.inventory.scans import days_until

NOW = datetime(2026, 3, 2, 12, 0, 0)


def test_days_until_rounds_up():
    assert days_until(NOW + timedelta(days=1), NOW) == 1
    assert days_until(NOW + timedelta(hours=25), NOW) == 2
    assert days_until(NOW + timedelta(minutes=1), NOW) == 1
    assert days_until(NOW - timedelta(hours=12), NOW) == 0


async def test_low_stock_alert_per_row_at_or_below_minimum(scanner, seed, publisher):
    await seed.item("tomato", name="Tomatoes", minimum=5)
    await seed.item("basil", minimum=1)
    await seed.item("cheese", minimum=5)
    await seed.stock("1", "tomato", 3)
    await seed.stock("1", "basil", 4)
    await seed.stock("2", "tomato", 5)
    # Location override below the item default
    await seed.stock("1", "cheese", 3, location_minimum=2)

    alerts = await scanner.scan_low_stock()

    assert [(a.location_id, a.item_id) for a in alerts] == [("1", "tomato"), ("2", "tomato")]
    events = publisher.of("inventory:low-stock")
    assert [room for room, _ in events] == ["location:1", "location:2"]
    assert events[0][1] == {
        "item_id": "tomato",
        "item_name": "Tomatoes",
        "current_stock": 3.0,
        "minimum_stock": 5.0,
    }


async def test_low_stock_scan_scoped_to_location(scanner, seed):
    await seed.item("tomato", minimum=5)
    await seed.stock("1", "tomato", 3)
    await seed.stock("2", "tomato", 1)

    alerts = await scanner.scan_low_stock(location_id="2")
    assert [a.location_id for a in alerts] == ["2"]


async def test_unchanged_low_stock_alerts_on_every_scan(scanner, seed, publisher):
    await seed.item("tomato", minimum=5)
    await seed.stock("1", "tomato", 3)

    await scanner.scan_low_stock()
    await scanner.scan_low_stock()

    assert len(publisher.of("inventory:low-stock")) == 2


async def test_expiring_lots(scanner, seed, publisher, clock):
    await seed.item("milk", name="Milk")
    soon = await seed.lot("1", "milk", clock.now + timedelta(hours=36), remaining=4)
    later = await seed.lot("1", "milk", clock.now + timedelta(days=10), remaining=4)
    empty = await seed.lot("1", "milk", clock.now + timedelta(days=1), remaining=0)
    no_date = await seed.lot("1", "milk", None, remaining=4)

    alerts = await scanner.scan_expiring_lots()

    assert [(a.lot_id, a.days_until_expiry) for a in alerts] == [(soon, 2)]
    room, payload = publisher.of("inventory:lot-expiring")[0]
    assert room == "location:1"
    assert payload["item_name"] == "Milk"
    assert payload["expiry_date"] == "2026-03-04T00:00:00"

    assert (await seed.get(InventoryLot, empty)).status == LotStatus.DEPLETED
    assert (await seed.get(InventoryLot, later)).status == LotStatus.AVAILABLE
    assert (await seed.get(InventoryLot, no_date)).status == LotStatus.AVAILABLE


async def test_custom_threshold(scanner, seed, clock):
    await seed.item("milk")
    await seed.lot("1", "milk", clock.now + timedelta(days=10), remaining=4)

    assert await scanner.scan_expiring_lots(days_threshold=3) == []
    assert len(await scanner.scan_expiring_lots(days_threshold=14)) == 1


async def test_expired_lot_alerted_then_marked_expired(scanner, seed, publisher, clock):
    await seed.item("milk")
    past = await seed.lot("1", "milk", clock.now - timedelta(hours=12), remaining=2)

    alerts = await scanner.scan_expiring_lots()
    assert [a.days_until_expiry for a in alerts] == [0]
    assert (await seed.get(InventoryLot, past)).status == LotStatus.EXPIRED

    # No longer available, so the next scan is quiet
    assert await scanner.scan_expiring_lots() == []
    assert len(publisher.of("inventory:lot-expiring")) == 1


async def test_refresh_lot_statuses_counts(scanner, seed, clock):
    await seed.item("milk")
    await seed.lot("1", "milk", clock.now + timedelta(days=3), remaining=0)
    await seed.lot("1", "milk", clock.now - timedelta(days=1), remaining=3)
    await seed.lot("2", "milk", clock.now - timedelta(days=1), remaining=3)

    assert await scanner.refresh_lot_statuses(location_id="1") == {"depleted": 1, "expired": 1}
    assert await scanner.refresh_lot_statuses() == {"depleted": 0, "expired": 1}
