"""
SQLAlchemy Database Models

Tables used by the jobs & realtime core:
- jobs: the durable job queue
- inventory_items / location_stock / stock_movements / inventory_lots:
  per-location stock, its append-only audit trail, and tracked lots
- recipes / recipe_items: menu item -> ingredient quantities
- reservations: read and flagged by the reminder scan

The relational schema is owned by the surrounding platform; the core only
reads, decrements, appends and flags rows.
"""

import enum
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.core.clock import utcnow
from app.database import Base


def _uuid() -> str:
    return uuid.uuid4().hex


# Quantities are exact decimals so stock arithmetic never drifts
Quantity = Numeric(14, 3)


class JobStatus(str, enum.Enum):
    """Job lifecycle: waiting -> active -> completed | failed (or back to waiting)."""
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class MovementType(str, enum.Enum):
    SALE = "sale"
    ADJUSTMENT = "adjustment"
    RECEIPT = "receipt"
    TRANSFER = "transfer"
    WASTE = "waste"


class LotStatus(str, enum.Enum):
    AVAILABLE = "available"
    DEPLETED = "depleted"
    EXPIRED = "expired"


class ReservationStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SEATED = "seated"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


# =========================================================================
# JOB QUEUE
# =========================================================================

class Job(Base):
    """
    A durable unit of asynchronous work.

    Owned by the dispatcher; only worker pool outcome reports (and the
    stall-recovery sweep) change its status.
    """
    __tablename__ = "jobs"
    __table_args__ = (
        Index("ix_jobs_pickup", "category", "status", "not_before"),
    )

    id = Column(String(32), primary_key=True, default=_uuid)
    category = Column(String(20), nullable=False)
    payload = Column(JSON, nullable=False)
    priority = Column(Integer, nullable=False, default=0)
    not_before = Column(DateTime, nullable=False, default=utcnow)
    attempt = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    status = Column(Enum(JobStatus), nullable=False, default=JobStatus.WAITING, index=True)

    # Per-unit outcomes (recipients, deduction units) recorded as they happen
    progress = Column(JSON, nullable=True)
    result = Column(JSON, nullable=True)
    last_error = Column(Text, nullable=True)

    worker_id = Column(String(100), nullable=True)
    lease_expires_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<Job {self.id} {self.category} {self.status.value} attempt={self.attempt}/{self.max_attempts}>"


# =========================================================================
# INVENTORY
# =========================================================================

class InventoryItem(Base):
    __tablename__ = "inventory_items"

    id = Column(String(64), primary_key=True, default=_uuid)
    name = Column(String(200), nullable=False)
    unit = Column(String(20), nullable=False, default="unit")
    minimum_stock = Column(Quantity, nullable=False, default=0)

    def __repr__(self):
        return f"<InventoryItem {self.id} {self.name}>"


class LocationStock(Base):
    """Current stock of one inventory item at one location."""
    __tablename__ = "location_stock"
    __table_args__ = (
        UniqueConstraint("location_id", "inventory_item_id", name="uq_location_stock_pair"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    location_id = Column(String(64), nullable=False, index=True)
    inventory_item_id = Column(String(64), ForeignKey("inventory_items.id"), nullable=False)
    current_stock = Column(Quantity, nullable=False, default=0)
    # Null means "use the item's default minimum"
    minimum_stock = Column(Quantity, nullable=True)
    updated_at = Column(DateTime, nullable=True)

    inventory_item = relationship(InventoryItem, lazy="joined")

    def __repr__(self):
        return f"<LocationStock {self.location_id}/{self.inventory_item_id} = {self.current_stock}>"


class StockMovement(Base):
    """
    Append-only audit record of one stock change.

    Invariant: new_stock == previous_stock + quantity_delta.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        UniqueConstraint("reference_type", "reference_id", "unit", name="uq_stock_movements_reference_unit"),
    )

    id = Column(String(32), primary_key=True, default=_uuid)
    movement_number = Column(String(40), nullable=False, unique=True)
    inventory_item_id = Column(String(64), ForeignKey("inventory_items.id"), nullable=False, index=True)
    location_id = Column(String(64), nullable=False, index=True)
    movement_type = Column(Enum(MovementType), nullable=False)
    quantity_delta = Column(Quantity, nullable=False)
    previous_stock = Column(Quantity, nullable=False)
    new_stock = Column(Quantity, nullable=False)
    reference_type = Column(String(40), nullable=True)
    reference_id = Column(String(64), nullable=True)
    unit = Column(String(160), nullable=True)
    performed_by = Column(String(64), nullable=False, default="system")
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    def __repr__(self):
        return f"<StockMovement {self.movement_number} {self.quantity_delta}>"


class InventoryLot(Base):
    __tablename__ = "inventory_lots"

    id = Column(String(32), primary_key=True, default=_uuid)
    inventory_item_id = Column(String(64), ForeignKey("inventory_items.id"), nullable=False)
    location_id = Column(String(64), nullable=False, index=True)
    lot_number = Column(String(60), nullable=True)
    expiry_date = Column(DateTime, nullable=True)
    remaining_qty = Column(Quantity, nullable=False, default=0)
    status = Column(Enum(LotStatus), nullable=False, default=LotStatus.AVAILABLE, index=True)

    inventory_item = relationship(InventoryItem, lazy="joined")


class Recipe(Base):
    __tablename__ = "recipes"

    id = Column(String(32), primary_key=True, default=_uuid)
    menu_item_id = Column(String(64), nullable=False, unique=True)

    items = relationship(
        "RecipeItem",
        order_by="RecipeItem.position",
        lazy="selectin",
        cascade="all, delete-orphan",
    )


class RecipeItem(Base):
    __tablename__ = "recipe_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    recipe_id = Column(String(32), ForeignKey("recipes.id"), nullable=False, index=True)
    inventory_item_id = Column(String(64), ForeignKey("inventory_items.id"), nullable=False)
    quantity = Column(Quantity, nullable=False)
    position = Column(Integer, nullable=False, default=0)


# =========================================================================
# RESERVATIONS
# =========================================================================

class Reservation(Base):
    __tablename__ = "reservations"

    id = Column(String(32), primary_key=True, default=_uuid)
    reservation_number = Column(String(40), nullable=True)
    location_id = Column(String(64), nullable=False, index=True)
    guest_name = Column(String(100), nullable=False)
    guest_phone = Column(String(20), nullable=True)
    guest_email = Column(String(255), nullable=True)
    party_size = Column(Integer, nullable=False, default=2)
    starts_at = Column(DateTime, nullable=False, index=True)
    status = Column(Enum(ReservationStatus), nullable=False, default=ReservationStatus.CONFIRMED)
    reminder_sent = Column(Boolean, nullable=False, default=False)
    reminder_sent_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<Reservation {self.id} {self.guest_name} {self.starts_at}>"
