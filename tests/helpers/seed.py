# tests/helpers/seed.py
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models import (
    InventoryItem,
    InventoryLot,
    LocationStock,
    LotStatus,
    Recipe,
    RecipeItem,
    Reservation,
    ReservationStatus,
    StockMovement,
)

Number = Union[int, str, Decimal]


class Seeder:
    """Inserts inventory fixtures and reads stock back."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def item(self, item_id: str, name: Optional[str] = None, minimum: Number = 0, unit: str = "unit") -> str:
        async with self.session_factory() as session:
            session.add(InventoryItem(id=item_id, name=name or item_id.title(), unit=unit,
                                      minimum_stock=Decimal(str(minimum))))
            await session.commit()
        return item_id

    async def stock(
        self,
        location_id: str,
        item_id: str,
        current: Number,
        location_minimum: Optional[Number] = None,
    ) -> None:
        async with self.session_factory() as session:
            session.add(LocationStock(
                location_id=location_id,
                inventory_item_id=item_id,
                current_stock=Decimal(str(current)),
                minimum_stock=None if location_minimum is None else Decimal(str(location_minimum)),
            ))
            await session.commit()

    async def recipe(self, menu_item_id: str, ingredients: Dict[str, Number]) -> None:
        async with self.session_factory() as session:
            recipe = Recipe(id=uuid.uuid4().hex, menu_item_id=menu_item_id)
            recipe.items = [
                RecipeItem(inventory_item_id=item_id, quantity=Decimal(str(qty)), position=i)
                for i, (item_id, qty) in enumerate(ingredients.items())
            ]
            session.add(recipe)
            await session.commit()

    async def lot(
        self,
        location_id: str,
        item_id: str,
        expiry: Optional[datetime],
        remaining: Number = 1,
        status: LotStatus = LotStatus.AVAILABLE,
    ) -> str:
        lot_id = uuid.uuid4().hex
        async with self.session_factory() as session:
            session.add(InventoryLot(
                id=lot_id,
                inventory_item_id=item_id,
                location_id=location_id,
                lot_number=f"LOT-{lot_id[:6]}",
                expiry_date=expiry,
                remaining_qty=Decimal(str(remaining)),
                status=status,
            ))
            await session.commit()
        return lot_id

    async def reservation(
        self,
        starts_at: datetime,
        phone: Optional[str] = "+15551234567",
        email: Optional[str] = "guest@example.com",
        status: ReservationStatus = ReservationStatus.CONFIRMED,
        location_id: str = "1",
    ) -> str:
        reservation_id = uuid.uuid4().hex
        async with self.session_factory() as session:
            session.add(Reservation(
                id=reservation_id,
                reservation_number=f"RES-{reservation_id[:6].upper()}",
                location_id=location_id,
                guest_name="Emma Garcia",
                guest_phone=phone,
                guest_email=email,
                party_size=4,
                starts_at=starts_at,
                status=status,
            ))
            await session.commit()
        return reservation_id

    # --- reads ---

    async def current_stock(self, location_id: str, item_id: str) -> Decimal:
        async with self.session_factory() as session:
            value = await session.scalar(
                select(LocationStock.current_stock).where(
                    LocationStock.location_id == location_id,
                    LocationStock.inventory_item_id == item_id,
                )
            )
        return Decimal(value)

    async def movements(self, item_id: Optional[str] = None) -> List[StockMovement]:
        stmt = select(StockMovement).order_by(StockMovement.created_at)
        if item_id is not None:
            stmt = stmt.where(StockMovement.inventory_item_id == item_id)
        async with self.session_factory() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def get(self, model, pk):
        async with self.session_factory() as session:
            return await session.get(model, pk)
