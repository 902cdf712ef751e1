"""
Inventory scans: low stock, expiring lots and lot status upkeep.

Scans publish one alert per matching row on every run. Repeated runs
re-alert on unchanged conditions; displays de-duplicate by item or lot id.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.clock import Clock, utcnow
from app.models import InventoryItem, InventoryLot, LocationStock, LotStatus
from app.realtime.events import RealtimeNotifier

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


@dataclass
class LowStockAlert:
    location_id: str
    item_id: str
    item_name: str
    current_stock: Decimal
    minimum_stock: Decimal


@dataclass
class ExpiringLotAlert:
    location_id: str
    lot_id: str
    item_name: str
    expiry_date: datetime
    days_until_expiry: int


def days_until(expiry: datetime, now: datetime) -> int:
    """Whole days until expiry, rounded up (negative once expired)."""
    return math.ceil((expiry - now).total_seconds() / SECONDS_PER_DAY)


class InventoryScanner:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: RealtimeNotifier,
        expiry_threshold_days: int = 7,
        clock: Clock = utcnow,
    ):
        self._session_factory = session_factory
        self.notifier = notifier
        self.expiry_threshold_days = expiry_threshold_days
        self._clock = clock

    async def scan_low_stock(
        self,
        location_id: Optional[str] = None,
        item_ids: Optional[Iterable[str]] = None,
    ) -> List[LowStockAlert]:
        """Alert on every stock row at or below its minimum (location override, else item default)."""
        minimum = func.coalesce(LocationStock.minimum_stock, InventoryItem.minimum_stock)
        stmt = (
            select(
                LocationStock.location_id,
                LocationStock.inventory_item_id,
                InventoryItem.name,
                LocationStock.current_stock,
                minimum.label("minimum_stock"),
            )
            .join(InventoryItem, InventoryItem.id == LocationStock.inventory_item_id)
            .where(LocationStock.current_stock <= minimum)
            .order_by(LocationStock.location_id, LocationStock.inventory_item_id)
        )
        if location_id is not None:
            stmt = stmt.where(LocationStock.location_id == location_id)
        if item_ids is not None:
            stmt = stmt.where(LocationStock.inventory_item_id.in_(set(item_ids)))

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()

        alerts = [
            LowStockAlert(
                location_id=row.location_id,
                item_id=row.inventory_item_id,
                item_name=row.name,
                current_stock=Decimal(row.current_stock),
                minimum_stock=Decimal(row.minimum_stock),
            )
            for row in rows
        ]
        for alert in alerts:
            await self.notifier.low_stock(
                alert.location_id, alert.item_id, alert.item_name, alert.current_stock, alert.minimum_stock
            )

        logger.info(f"Low stock check completed: {len(alerts)} alerts")
        return alerts

    async def scan_expiring_lots(
        self,
        location_id: Optional[str] = None,
        days_threshold: Optional[int] = None,
    ) -> List[ExpiringLotAlert]:
        """Alert on available lots expiring within the threshold, then refresh lot statuses."""
        threshold = self.expiry_threshold_days if days_threshold is None else days_threshold
        now = self._clock()
        horizon = now + timedelta(days=threshold)

        stmt = (
            select(
                InventoryLot.id,
                InventoryLot.location_id,
                InventoryLot.expiry_date,
                InventoryItem.name,
            )
            .join(InventoryItem, InventoryItem.id == InventoryLot.inventory_item_id)
            .where(
                InventoryLot.status == LotStatus.AVAILABLE,
                InventoryLot.remaining_qty > 0,
                InventoryLot.expiry_date.is_not(None),
                InventoryLot.expiry_date <= horizon,
            )
            .order_by(InventoryLot.expiry_date)
        )
        if location_id is not None:
            stmt = stmt.where(InventoryLot.location_id == location_id)

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()

        alerts = [
            ExpiringLotAlert(
                location_id=row.location_id,
                lot_id=row.id,
                item_name=row.name,
                expiry_date=row.expiry_date,
                days_until_expiry=days_until(row.expiry_date, now),
            )
            for row in rows
        ]
        for alert in alerts:
            await self.notifier.lot_expiring(
                alert.location_id, alert.lot_id, alert.item_name, alert.expiry_date, alert.days_until_expiry
            )

        logger.info(f"Expiry check completed: {len(alerts)} lots expiring soon")
        await self.refresh_lot_statuses(location_id)
        return alerts

    async def refresh_lot_statuses(self, location_id: Optional[str] = None) -> Dict[str, int]:
        """Mark empty lots depleted and past-date lots expired."""
        now = self._clock()
        scope = [InventoryLot.status == LotStatus.AVAILABLE]
        if location_id is not None:
            scope.append(InventoryLot.location_id == location_id)

        async with self._session_factory() as session:
            async with session.begin():
                depleted = await session.execute(
                    update(InventoryLot)
                    .where(*scope, InventoryLot.remaining_qty <= 0)
                    .values(status=LotStatus.DEPLETED)
                    .execution_options(synchronize_session=False)
                )
                expired = await session.execute(
                    update(InventoryLot)
                    .where(*scope, InventoryLot.expiry_date <= now)
                    .values(status=LotStatus.EXPIRED)
                    .execution_options(synchronize_session=False)
                )

        counts = {"depleted": depleted.rowcount, "expired": expired.rowcount}
        if counts["depleted"] or counts["expired"]:
            logger.info(f"Lot statuses refreshed: {counts}")
        return counts
