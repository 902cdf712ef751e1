"""
Report File Writer with Concurrency Control

Builds inventory and stock-movement reports and writes them as CSV or
Excel files. Writes hold a FileLock so two workers (or processes) never
produce the same file at once.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import Optional

import pandas as pd
from filelock import FileLock
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.clock import Clock, utcnow
from app.jobs.payloads import ReportFormat
from app.models import InventoryItem, LocationStock, StockMovement

logger = logging.getLogger(__name__)


@dataclass
class ReportFile:
    path: Path
    rows: int
    format: ReportFormat

    def to_dict(self) -> dict:
        return {"path": str(self.path), "file_name": self.path.name, "rows": self.rows, "format": self.format.value}


class ReportWriter:
    """Query + file writer for the reports job category."""

    INVENTORY_COLUMNS = [
        "location_id",
        "item_id",
        "item_name",
        "unit",
        "current_stock",
        "minimum_stock",
        "low_stock",
    ]

    MOVEMENT_COLUMNS = [
        "movement_number",
        "created_at",
        "location_id",
        "item_id",
        "movement_type",
        "quantity_delta",
        "previous_stock",
        "new_stock",
        "reference_type",
        "reference_id",
        "performed_by",
    ]

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        report_directory: str,
        lock_timeout: int = 30,
        clock: Clock = utcnow,
    ):
        self._session_factory = session_factory
        self.directory = Path(report_directory)
        self.lock_timeout = lock_timeout
        self._clock = clock

    def _ensure_directory(self) -> None:
        """Create report directory if needed."""
        if not self.directory.exists():
            self.directory.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created report directory: {self.directory}")

    def _write(self, stem: str, df: pd.DataFrame, fmt: ReportFormat) -> ReportFile:
        self._ensure_directory()
        suffix = ".xlsx" if fmt == ReportFormat.EXCEL else ".csv"
        path = self.directory / f"{stem}{suffix}"
        lock = FileLock(str(path) + ".lock", timeout=self.lock_timeout)

        with lock:
            logger.debug(f"Lock acquired for {path.name}")
            if fmt == ReportFormat.EXCEL:
                df.to_excel(str(path), index=False, engine="openpyxl")
            else:
                df.to_csv(str(path), index=False)

        logger.info(f"Report written: {path} ({len(df)} rows)")
        return ReportFile(path=path, rows=len(df), format=fmt)

    def _stem(self, kind: str, location_id: Optional[str]) -> str:
        scope = location_id or "all"
        return f"{kind}_{scope}_{self._clock():%Y%m%d_%H%M%S}"

    async def inventory_report(self, location_id: Optional[str], fmt: ReportFormat) -> ReportFile:
        minimum = func.coalesce(LocationStock.minimum_stock, InventoryItem.minimum_stock)
        stmt = (
            select(
                LocationStock.location_id,
                LocationStock.inventory_item_id,
                InventoryItem.name,
                InventoryItem.unit,
                LocationStock.current_stock,
                minimum.label("minimum_stock"),
            )
            .join(InventoryItem, InventoryItem.id == LocationStock.inventory_item_id)
            .order_by(LocationStock.location_id, InventoryItem.name)
        )
        if location_id is not None:
            stmt = stmt.where(LocationStock.location_id == location_id)

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()

        records = [
            {
                "location_id": r.location_id,
                "item_id": r.inventory_item_id,
                "item_name": r.name,
                "unit": r.unit,
                "current_stock": float(r.current_stock),
                "minimum_stock": float(r.minimum_stock),
                "low_stock": r.current_stock <= r.minimum_stock,
            }
            for r in rows
        ]
        df = pd.DataFrame(records, columns=self.INVENTORY_COLUMNS)
        return await asyncio.to_thread(self._write, self._stem("inventory", location_id), df, fmt)

    async def stock_movement_report(
        self,
        location_id: Optional[str],
        date_from: date,
        date_to: date,
        fmt: ReportFormat,
    ) -> ReportFile:
        start = datetime.combine(date_from, time.min)
        end = datetime.combine(date_to, time.min) + timedelta(days=1)
        stmt = (
            select(StockMovement)
            .where(StockMovement.created_at >= start, StockMovement.created_at < end)
            .order_by(StockMovement.created_at, StockMovement.movement_number)
        )
        if location_id is not None:
            stmt = stmt.where(StockMovement.location_id == location_id)

        async with self._session_factory() as session:
            movements = (await session.execute(stmt)).scalars().all()

        records = [
            {
                "movement_number": m.movement_number,
                "created_at": m.created_at.isoformat(),
                "location_id": m.location_id,
                "item_id": m.inventory_item_id,
                "movement_type": m.movement_type.value,
                "quantity_delta": float(m.quantity_delta),
                "previous_stock": float(m.previous_stock),
                "new_stock": float(m.new_stock),
                "reference_type": m.reference_type,
                "reference_id": m.reference_id,
                "performed_by": m.performed_by,
            }
            for m in movements
        ]
        df = pd.DataFrame(records, columns=self.MOVEMENT_COLUMNS)
        return await asyncio.to_thread(self._write, self._stem("stock_movements", location_id), df, fmt)
