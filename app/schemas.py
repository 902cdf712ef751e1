"""
Pydantic Schemas for Request/Response Validation

HTTP surface of the jobs & realtime core:
- Job submission and inspection
- Synchronous stock deduction for the order pipeline
- Producer-side event publishing
- Health
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.jobs.payloads import JobCategory, LineItemPayload
from app.realtime.events import HubEvent
from app.realtime.rooms import Room


# =============================================================================
# JOBS
# =============================================================================

class JobCreate(BaseModel):
    """Request schema for enqueueing a job."""
    category: JobCategory = Field(..., examples=["email"])
    payload: Dict[str, Any] = Field(
        ...,
        examples=[{
            "type": "order-confirmation",
            "to": ["guest@example.com"],
            "subject": "Order Confirmed #1042",
            "data": {"order_number": "1042"},
        }],
    )
    delay_seconds: float = Field(default=0, ge=0, description="Seconds before the job becomes eligible")
    priority: int = Field(default=0, description="Higher runs first among jobs due at the same time")
    max_attempts: Optional[int] = Field(default=None, ge=1, le=25)


class JobCreateResponse(BaseModel):
    job_id: str
    category: JobCategory
    status: str = "waiting"


class JobResponse(BaseModel):
    """Response schema for job data."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    category: str
    status: str
    payload: Dict[str, Any]
    priority: int
    attempt: int
    max_attempts: int
    not_before: datetime
    progress: Optional[Dict[str, Any]] = None
    result: Optional[Dict[str, Any]] = None
    last_error: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def status_value(cls, v: Any) -> str:
        return getattr(v, "value", v)


class JobCountsResponse(BaseModel):
    counts: Dict[str, Dict[str, int]]


# =============================================================================
# INVENTORY
# =============================================================================

class DeductionRequest(BaseModel):
    """Order line items to deduct from a location's stock."""
    order_id: str = Field(..., min_length=1, examples=["ORD-1042"])
    location_id: str = Field(..., min_length=1, examples=["7"])
    items: List[LineItemPayload] = Field(..., min_length=1)


class AppliedDeductionResponse(BaseModel):
    unit: str
    inventory_item_id: str
    quantity: str
    previous_stock: str
    new_stock: str
    movement_number: str


class ShortageResponse(BaseModel):
    unit: str
    inventory_item_id: str
    requested: str
    available: str


class DeductionResponse(BaseModel):
    order_id: str
    location_id: str
    fully_applied: bool
    applied: List[AppliedDeductionResponse]
    already_applied: List[str] = []
    shortages: List[ShortageResponse]
    missing_stock: List[str]
    skipped_items: List[str]


# =============================================================================
# REALTIME
# =============================================================================

class EventPublishRequest(BaseModel):
    """Producer-side publish into a room."""
    room: str = Field(..., examples=["kitchen-station:5"])
    event: HubEvent = Field(..., examples=["kitchen:new-order"])
    payload: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("room")
    @classmethod
    def validate_room(cls, v: str) -> str:
        # InvalidRoom is a ValueError, so pydantic reports it as a 422
        return str(Room.parse(v))


class EventBroadcastRequest(BaseModel):
    """Producer-side publish to every connection."""
    event: HubEvent = Field(..., examples=["system:notification"])
    payload: Dict[str, Any] = Field(default_factory=dict)


class EventPublishResponse(BaseModel):
    room: Optional[str] = None
    event: str
    delivered: int


# =============================================================================
# COMMON
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[Any] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    queue_database: str
    redis: str
    notifications: str
    connections: int
    jobs: Dict[str, Dict[str, int]] = {}
    timestamp: datetime
