"""
Inventory Deduction Engine

Turns a completed order into ingredient stock decrements.

Each (location, ingredient) decrement runs in its own short transaction:

    UPDATE location_stock
       SET current_stock = current_stock - :q
     WHERE location_id = :loc AND inventory_item_id = :item
       [AND current_stock >= :q]          -- backorder policy "reject"
    RETURNING current_stock

followed by the StockMovement insert in the same transaction. The movement
carries the unit key and is unique per (order, unit); the transaction first
looks for it, so a retry after a lost progress write is a no-op. The row lock
taken by the UPDATE serializes concurrent orders touching the same pair
and nothing else, so no lock ever spans two ingredients.
"""

import logging
import uuid
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set, Union

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.clock import Clock, utcnow
from app.core.config import BackorderPolicy
from app.models import LocationStock, MovementType, Recipe, StockMovement
from app.realtime.events import RealtimeNotifier
from app.services.inventory.scans import InventoryScanner

logger = logging.getLogger(__name__)

QUANTUM = Decimal("0.001")


@dataclass
class LineItem:
    item_id: str
    quantity: int


@dataclass
class AppliedDeduction:
    unit: str
    inventory_item_id: str
    quantity: Decimal
    previous_stock: Decimal
    new_stock: Decimal
    movement_number: str


@dataclass
class Shortage:
    unit: str
    inventory_item_id: str
    requested: Decimal
    available: Decimal


@dataclass
class DeductionResult:
    order_id: str
    location_id: str
    applied: List[AppliedDeduction] = field(default_factory=list)
    already_applied: List[str] = field(default_factory=list)
    shortages: List[Shortage] = field(default_factory=list)
    missing_stock: List[str] = field(default_factory=list)
    skipped_items: List[str] = field(default_factory=list)

    @property
    def fully_applied(self) -> bool:
        return not self.shortages and not self.missing_stock

    def to_dict(self) -> dict:
        data = asdict(self)
        for entry in data["applied"]:
            for key in ("quantity", "previous_stock", "new_stock"):
                entry[key] = str(entry[key])
        for entry in data["shortages"]:
            entry["requested"] = str(entry["requested"])
            entry["available"] = str(entry["available"])
        data["fully_applied"] = self.fully_applied
        return data


OnApplied = Callable[[AppliedDeduction], Awaitable[None]]


def deduction_unit(line_index: int, item_id: str, inventory_item_id: str) -> str:
    """Idempotency key for one (line item, ingredient) decrement."""
    return f"{line_index}:{item_id}:{inventory_item_id}"


class InventoryDeductionEngine:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: RealtimeNotifier,
        scanner: InventoryScanner,
        backorder_policy: BackorderPolicy = BackorderPolicy.REJECT,
        clock: Clock = utcnow,
    ):
        self._session_factory = session_factory
        self.notifier = notifier
        self.scanner = scanner
        self.backorder_policy = backorder_policy
        self._clock = clock

    async def _load_recipes(self, menu_item_ids: Iterable[str]) -> Dict[str, Recipe]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Recipe).where(Recipe.menu_item_id.in_(set(menu_item_ids)))
            )
            return {recipe.menu_item_id: recipe for recipe in result.scalars().all()}

    async def deduct(
        self,
        order_id: str,
        location_id: str,
        line_items: Iterable[Union[LineItem, dict]],
        skip_units: Optional[Set[str]] = None,
        on_applied: Optional[OnApplied] = None,
        performed_by: str = "system",
    ) -> DeductionResult:
        """
        Deduct recipe ingredients for every line item of an order.

        Line items without a recipe are skipped (the order still succeeds).
        ``skip_units`` lists units already applied by an earlier attempt;
        ``on_applied`` runs right after each unit commits.
        """
        items = [i if isinstance(i, LineItem) else LineItem(**i) for i in line_items]
        skip_units = skip_units or set()
        result = DeductionResult(order_id=order_id, location_id=location_id)

        recipes = await self._load_recipes(i.item_id for i in items)

        for index, line in enumerate(items):
            recipe = recipes.get(line.item_id)
            if recipe is None:
                logger.info(f"No recipe for menu item {line.item_id}, skipping deduction (order {order_id})")
                result.skipped_items.append(line.item_id)
                continue

            for ingredient in recipe.items:
                unit = deduction_unit(index, line.item_id, ingredient.inventory_item_id)
                if unit in skip_units:
                    result.already_applied.append(unit)
                    continue

                qty = (Decimal(ingredient.quantity) * line.quantity).quantize(QUANTUM)
                applied = await self._deduct_one(
                    result, unit, order_id, location_id, ingredient.inventory_item_id, qty, performed_by
                )
                if applied is not None and on_applied is not None:
                    await on_applied(applied)

        for applied in result.applied:
            await self.notifier.stock_updated(location_id, applied.inventory_item_id, applied.new_stock)

        touched = {a.inventory_item_id for a in result.applied}
        if touched:
            await self.scanner.scan_low_stock(location_id=location_id, item_ids=touched)

        logger.info(
            f"Order {order_id} @ {location_id}: {len(result.applied)} deductions, "
            f"{len(result.shortages)} shortages, {len(result.skipped_items)} items without recipe"
        )
        return result

    async def _deduct_one(
        self,
        result: DeductionResult,
        unit: str,
        order_id: str,
        location_id: str,
        inventory_item_id: str,
        qty: Decimal,
        performed_by: str,
    ) -> Optional[AppliedDeduction]:
        now = self._clock()
        pair = (
            LocationStock.location_id == location_id,
            LocationStock.inventory_item_id == inventory_item_id,
        )

        async with self._session_factory() as session:
            try:
                async with session.begin():
                    existing = await session.scalar(
                        select(StockMovement.movement_number).where(
                            StockMovement.reference_type == "order",
                            StockMovement.reference_id == order_id,
                            StockMovement.unit == unit,
                        )
                    )
                    if existing is not None:
                        logger.info(f"Order {order_id}: unit {unit} already deducted ({existing})")
                        result.already_applied.append(unit)
                        return None

                    stmt = update(LocationStock).where(*pair)
                    if self.backorder_policy == BackorderPolicy.REJECT:
                        stmt = stmt.where(LocationStock.current_stock >= qty)
                    stmt = (
                        stmt.values(current_stock=LocationStock.current_stock - qty, updated_at=now)
                        .returning(LocationStock.current_stock)
                        .execution_options(synchronize_session=False)
                    )
                    row = (await session.execute(stmt)).first()

                    if row is None:
                        available = await session.scalar(select(LocationStock.current_stock).where(*pair))
                        if available is None:
                            logger.warning(f"No stock row for {inventory_item_id} at {location_id} (order {order_id})")
                            result.missing_stock.append(inventory_item_id)
                        else:
                            logger.warning(
                                f"Insufficient {inventory_item_id} at {location_id} for order {order_id}: "
                                f"requested={qty}, available={available}"
                            )
                            result.shortages.append(
                                Shortage(unit, inventory_item_id, qty, Decimal(available).quantize(QUANTUM))
                            )
                        return None

                    new_stock = Decimal(row[0]).quantize(QUANTUM)
                    previous_stock = new_stock + qty
                    movement = StockMovement(
                        id=uuid.uuid4().hex,
                        movement_number=f"MOV-{now:%Y%m%d%H%M%S}-{uuid.uuid4().hex[:8].upper()}",
                        inventory_item_id=inventory_item_id,
                        location_id=location_id,
                        movement_type=MovementType.SALE,
                        quantity_delta=-qty,
                        previous_stock=previous_stock,
                        new_stock=new_stock,
                        reference_type="order",
                        reference_id=order_id,
                        unit=unit,
                        performed_by=performed_by,
                        created_at=now,
                    )
                    session.add(movement)
            except IntegrityError:
                # A concurrent attempt committed the same unit first; our decrement rolled back
                logger.info(f"Order {order_id}: unit {unit} committed concurrently, not deducting again")
                result.already_applied.append(unit)
                return None

        applied = AppliedDeduction(unit, inventory_item_id, qty, previous_stock, new_stock, movement.movement_number)
        result.applied.append(applied)
        return applied
