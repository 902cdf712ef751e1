"""
Job Payload Schemas

Every job category accepts a closed set of variants, discriminated on the
``type`` field. Payloads are validated on enqueue (InvalidPayload on
mismatch) and parsed again by the worker before the handler runs.

Recipient formats (phone numbers, addresses) are not validated
here: a malformed recipient is a permanent delivery failure recorded on the
job, not a rejected submission.
"""

from datetime import date
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Set, Union, get_args

from pydantic import (
    BaseModel,
    BeforeValidator,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)

from app.jobs.errors import InvalidPayload


class JobCategory(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    INVENTORY = "inventory"
    REPORTS = "reports"
    SCHEDULED = "scheduled"


class ReportFormat(str, Enum):
    CSV = "csv"
    EXCEL = "excel"


def _as_recipient_list(v: Any) -> Any:
    if isinstance(v, str):
        return [v]
    return v


# A single address is accepted and treated as a one-element batch
Recipients = Annotated[List[str], BeforeValidator(_as_recipient_list), Field(min_length=1)]


# =============================================================================
# EMAIL
# =============================================================================

class EmailJob(BaseModel):
    """One email (or a bulk batch: every address in ``to`` is its own unit)."""
    type: Literal[
        "order-confirmation",
        "reservation-confirmation",
        "reservation-reminder",
        "waitlist-notification",
        "password-reset",
        "verification",
        "report-ready",
        "general",
    ]
    to: Recipients
    subject: str = Field(..., min_length=1, max_length=300)
    template: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    @property
    def template_name(self) -> str:
        return self.template or self.type


# =============================================================================
# SMS / WHATSAPP
# =============================================================================

class SmsJob(BaseModel):
    type: Literal[
        "order-status",
        "reservation-reminder",
        "waitlist-ready",
        "verification",
        "general",
    ]
    to: Recipients
    message: str = Field(..., min_length=1, max_length=1600)
    use_whatsapp: bool = False


# =============================================================================
# INVENTORY
# =============================================================================

class LineItemPayload(BaseModel):
    item_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)


class DeductStockJob(BaseModel):
    type: Literal["deduct-stock"]
    order_id: str = Field(..., min_length=1)
    location_id: str = Field(..., min_length=1)
    items: List[LineItemPayload] = Field(..., min_length=1)


class CheckLowStockJob(BaseModel):
    type: Literal["check-low-stock"]
    location_id: Optional[str] = None


class CheckExpiringLotsJob(BaseModel):
    type: Literal["check-expiring-lots"]
    location_id: Optional[str] = None
    days_threshold: Optional[int] = Field(None, ge=0, le=365)


InventoryJob = Annotated[
    Union[DeductStockJob, CheckLowStockJob, CheckExpiringLotsJob],
    Field(discriminator="type"),
]


# =============================================================================
# REPORTS
# =============================================================================

class InventoryReportJob(BaseModel):
    type: Literal["inventory-report"]
    location_id: Optional[str] = None
    format: ReportFormat = ReportFormat.EXCEL
    email: Optional[str] = None


class StockMovementReportJob(BaseModel):
    type: Literal["stock-movement-report"]
    location_id: Optional[str] = None
    date_from: date
    date_to: date
    format: ReportFormat = ReportFormat.CSV
    email: Optional[str] = None

    @field_validator("date_to")
    @classmethod
    def validate_range(cls, v: date, info) -> date:
        start = info.data.get("date_from")
        if start is not None and v < start:
            raise ValueError("date_to must not be before date_from")
        return v


ReportJob = Annotated[
    Union[InventoryReportJob, StockMovementReportJob],
    Field(discriminator="type"),
]


# =============================================================================
# SCHEDULED
# =============================================================================

class ScheduledJob(BaseModel):
    type: Literal["low-stock-check", "expiry-check", "reservation-reminder", "cleanup"]
    location_id: Optional[str] = None


# =============================================================================
# VALIDATION
# =============================================================================

_ADAPTERS: Dict[JobCategory, TypeAdapter] = {
    JobCategory.EMAIL: TypeAdapter(EmailJob),
    JobCategory.SMS: TypeAdapter(SmsJob),
    JobCategory.INVENTORY: TypeAdapter(InventoryJob),
    JobCategory.REPORTS: TypeAdapter(ReportJob),
    JobCategory.SCHEDULED: TypeAdapter(ScheduledJob),
}

# Variant classes per category, used to check handler registries
CATEGORY_VARIANTS: Dict[JobCategory, tuple] = {
    JobCategory.EMAIL: (EmailJob,),
    JobCategory.SMS: (SmsJob,),
    JobCategory.INVENTORY: (DeductStockJob, CheckLowStockJob, CheckExpiringLotsJob),
    JobCategory.REPORTS: (InventoryReportJob, StockMovementReportJob),
    JobCategory.SCHEDULED: (ScheduledJob,),
}


def variant_types(category: Any) -> Set[str]:
    """Every ``type`` value the category accepts."""
    types: Set[str] = set()
    for model in CATEGORY_VARIANTS[parse_category(category)]:
        types.update(get_args(model.model_fields["type"].annotation))
    return types


def parse_category(category: Any) -> JobCategory:
    try:
        return JobCategory(getattr(category, "value", category))
    except ValueError:
        valid = [c.value for c in JobCategory]
        raise InvalidPayload(str(category), f"unknown category, expected one of {valid}")


def parse_payload(category: Any, payload: Any) -> BaseModel:
    """Validate a raw payload into its category variant."""
    cat = parse_category(category)
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    try:
        return _ADAPTERS[cat].validate_python(payload)
    except ValidationError as e:
        raise InvalidPayload(cat.value, e.errors(include_url=False, include_context=False))


def dump_payload(model: BaseModel) -> dict:
    return model.model_dump(mode="json")
