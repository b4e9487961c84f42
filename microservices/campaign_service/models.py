"""
Campaign Service Data Models

Canonical data structures for the campaign delivery service: customers,
segments and their rules, campaigns, delivery logs and vendor receipts.
"""

import re
from dataclasses import dataclass, field as dataclass_field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _snake(value: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", value).lower()


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # naive timestamps are taken as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# =============================================================================
# ENUMS
# =============================================================================

class CustomerField(str, Enum):
    """Customer attributes a segment condition can reference"""
    NAME = "name"
    EMAIL = "email"
    PHONE = "phone"
    TOTAL_SPENDING = "total_spending"
    LAST_VISIT = "last_visit"

    @classmethod
    def _missing_(cls, value):
        # totalSpending / lastVisit
        if isinstance(value, str):
            snake = _snake(value.strip())
            for member in cls:
                if member.value == snake:
                    return member
        return None

    @property
    def is_numeric(self) -> bool:
        return self is CustomerField.TOTAL_SPENDING

    @property
    def is_date(self) -> bool:
        return self is CustomerField.LAST_VISIT


class ConditionOperator(str, Enum):
    """Segment condition operators"""
    GREATER_THAN = ">"
    LESS_THAN = "<"
    GREATER_THAN_OR_EQUAL = ">="
    LESS_THAN_OR_EQUAL = "<="
    EQUALS = "="
    NOT_EQUALS = "!="
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    IN_LAST_DAYS = "in_last_days"

    @classmethod
    def _missing_(cls, value):
        if not isinstance(value, str):
            return None
        value = value.strip()
        if value == "==":
            return cls.EQUALS
        if value == "<>":
            return cls.NOT_EQUALS
        snake = _snake(value)
        for member in cls:
            if member.value == snake:
                return member
        return None


class Combinator(str, Enum):
    """How a segment's conditions are combined"""
    ALL = "all"
    ANY = "any"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            return {
                "and": cls.ALL,
                "all": cls.ALL,
                "or": cls.ANY,
                "any": cls.ANY,
            }.get(value.strip().lower())
        return None


class DeliveryStatus(str, Enum):
    """Per-recipient delivery status"""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            for member in cls:
                if member.value == value.strip().lower():
                    return member
        return None

    @property
    def is_terminal(self) -> bool:
        return self is not DeliveryStatus.PENDING


# =============================================================================
# BASE MODELS
# =============================================================================

class BaseContract(BaseModel):
    """Base model for all contracts"""

    model_config = {
        "from_attributes": True,
        "populate_by_name": True,
    }


# =============================================================================
# CUSTOMER MODELS
# =============================================================================

class Customer(BaseContract):
    """Customer record (seed data for segmentation)"""
    customer_id: str = Field(default_factory=lambda: f"cus_{uuid4().hex[:16]}")
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=320)
    phone: Optional[str] = Field(None, max_length=50)
    total_spending: float = Field(
        default=0.0,
        ge=0,
        validation_alias=AliasChoices("total_spending", "totalSpending"),
    )
    last_visit: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("last_visit", "lastVisit"),
    )
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("Invalid email address")
        return v

    @field_validator("name", "phone")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("last_visit")
    @classmethod
    def last_visit_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    def attribute(self, customer_field: CustomerField) -> Any:
        """Value of the given segmentable attribute"""
        return getattr(self, customer_field.value)


class Order(BaseContract):
    """Purchase by a customer; feeds total_spending and last_visit"""
    order_id: str = Field(default_factory=lambda: f"ord_{uuid4().hex[:16]}")
    customer_id: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("customer_id", "customerId")
    )
    order_amount: float = Field(
        ..., gt=0, validation_alias=AliasChoices("order_amount", "orderAmount")
    )
    order_date: datetime = Field(
        default_factory=_utcnow,
        validation_alias=AliasChoices("order_date", "orderDate"),
    )
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("order_date")
    @classmethod
    def order_date_utc(cls, v: datetime) -> datetime:
        return _as_utc(v)


# =============================================================================
# SEGMENT MODELS
# =============================================================================

class Condition(BaseContract):
    """Single segment rule: <field> <operator> <value>"""

    model_config = {
        "from_attributes": True,
        "populate_by_name": True,
        "frozen": True,
    }

    field: CustomerField = Field(..., description="Customer attribute")
    operator: ConditionOperator = Field(..., description="Comparison operator")
    value: Any = Field(..., description="Value to compare against")

    @field_validator("value")
    @classmethod
    def validate_scalar(cls, v):
        if isinstance(v, (dict, list, tuple, set)):
            raise ValueError("Condition value must be a scalar")
        return v


class Segment(BaseContract):
    """Named, reusable audience definition"""
    segment_id: str = Field(default_factory=lambda: f"seg_{uuid4().hex[:16]}")
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    conditions: List[Condition] = Field(default_factory=list)
    combinator: Combinator = Field(
        default=Combinator.ALL,
        validation_alias=AliasChoices("combinator", "logic"),
    )
    # Preview hint recomputed on create and on rule changes; may go stale
    cached_audience_size: int = Field(default=0, ge=0)
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


# =============================================================================
# CAMPAIGN MODELS
# =============================================================================

class CampaignStats(BaseContract):
    """Read cache of delivery counts, reconciled from delivery logs"""
    sent: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    audience_size: int = Field(default=0, ge=0)


class Campaign(BaseContract):
    """One-shot send of a message template to a segment's audience"""
    campaign_id: str = Field(default_factory=lambda: f"cmp_{uuid4().hex[:16]}")
    name: str = Field(..., min_length=1, max_length=255)
    segment_id: str
    message: str = Field(..., min_length=1)
    created_by: Optional[str] = None
    stats: CampaignStats = Field(default_factory=CampaignStats)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


# =============================================================================
# DELIVERY MODELS
# =============================================================================

class VendorAck(BaseContract):
    """Immediate acknowledgement returned by the vendor channel"""
    success: bool
    message_id: str


class VendorResponse(BaseContract):
    """Vendor details recorded on a delivery log"""
    message_id: Optional[str] = None
    timestamp: Optional[datetime] = None
    error_message: Optional[str] = None


class DeliveryLog(BaseContract):
    """One message attempt to one customer within one campaign"""
    log_id: str = Field(default_factory=lambda: f"dlv_{uuid4().hex[:16]}")
    campaign_id: str
    customer_id: str
    status: DeliveryStatus = DeliveryStatus.PENDING
    vendor_message_id: Optional[str] = None
    vendor_timestamp: Optional[datetime] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

    @property
    def vendor_response(self) -> VendorResponse:
        return VendorResponse(
            message_id=self.vendor_message_id,
            timestamp=self.vendor_timestamp,
            error_message=self.error_message,
        )


class DeliveryReceipt(BaseContract):
    """Inbound vendor notification of a final delivery outcome"""
    message_id: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("message_id", "messageId")
    )
    campaign_id: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("campaign_id", "campaignId")
    )
    customer_id: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("customer_id", "customerId")
    )
    status: DeliveryStatus
    timestamp: datetime = Field(default_factory=_utcnow)
    error_message: Optional[str] = Field(
        None, validation_alias=AliasChoices("error_message", "errorMessage")
    )
    log_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("log_id", "logId")
    )

    @field_validator("status")
    @classmethod
    def validate_terminal(cls, v: DeliveryStatus) -> DeliveryStatus:
        if not v.is_terminal:
            raise ValueError("Receipt status must be SENT or FAILED")
        return v


@dataclass(frozen=True)
class ReceiptQueueEntry:
    """Ephemeral record awaiting the next batch flush"""
    campaign_id: str
    customer_id: str
    status: DeliveryStatus
    vendor_response: VendorResponse
    log_id: Optional[str] = None
    enqueued_at: datetime = dataclass_field(default_factory=_utcnow)

    @property
    def key(self) -> Union[str, Tuple[str, str]]:
        """Delivery-log identity: log_id when known, else (campaign, customer)"""
        if self.log_id:
            return self.log_id
        return (self.campaign_id, self.customer_id)

    @classmethod
    def from_receipt(cls, receipt: DeliveryReceipt) -> "ReceiptQueueEntry":
        return cls(
            campaign_id=receipt.campaign_id,
            customer_id=receipt.customer_id,
            status=receipt.status,
            vendor_response=VendorResponse(
                message_id=receipt.message_id,
                timestamp=receipt.timestamp,
                error_message=receipt.error_message,
            ),
            log_id=receipt.log_id,
        )


@dataclass(frozen=True)
class DeliveryLogWriteResult:
    """Outcome of one bulk receipt write"""
    requested: int
    applied: int
    campaign_ids: Tuple[str, ...] = ()

    @property
    def skipped(self) -> int:
        return self.requested - self.applied


class DeliveryStats(BaseContract):
    """Per-campaign counts derived from delivery logs"""
    campaign_id: str
    total: int = 0
    sent: int = 0
    failed: int = 0
    pending: int = 0


class AudiencePreview(BaseContract):
    """Audience size plus a bounded sample of matching customers"""
    audience_size: int
    sample_customers: List[Customer] = Field(default_factory=list)


class DispatchSummary(BaseContract):
    """Outcome of one campaign fan-out"""
    campaign_id: str
    attempted: int = 0
    accepted: int = 0
    rejected: int = 0
    errored: int = 0


class ReceiptAck(BaseContract):
    """Response to an accepted receipt"""
    accepted: bool = True
    queued: bool = True
    campaign_id: str
    customer_id: str
    message_id: str
    pending: int = Field(0, description="Receipts waiting for the next flush")


# =============================================================================
# REQUEST MODELS
# =============================================================================

class CustomerCreateRequest(BaseContract):
    """Customer creation request"""
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=320)
    phone: Optional[str] = Field(None, max_length=50)
    total_spending: float = Field(
        default=0.0,
        ge=0,
        validation_alias=AliasChoices("total_spending", "totalSpending"),
    )
    last_visit: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("last_visit", "lastVisit"),
    )


class CustomerUpdateRequest(BaseContract):
    """Partial customer update; only fields that are set change"""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    email: Optional[str] = Field(None, min_length=3, max_length=320)
    phone: Optional[str] = Field(None, max_length=50)
    total_spending: Optional[float] = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("total_spending", "totalSpending"),
    )
    last_visit: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("last_visit", "lastVisit"),
    )


class CustomerBulkCreateRequest(BaseContract):
    """Bulk customer import; stored all together or not at all"""
    customers: List[CustomerCreateRequest] = Field(..., min_length=1, max_length=1000)


class OrderCreateRequest(BaseContract):
    """Order creation request"""
    customer_id: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("customer_id", "customerId")
    )
    order_amount: float = Field(
        ..., gt=0, validation_alias=AliasChoices("order_amount", "orderAmount")
    )
    order_date: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("order_date", "orderDate"),
    )


class SegmentCreateRequest(BaseContract):
    """Segment creation request"""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    conditions: List[Condition] = Field(default_factory=list)
    combinator: Combinator = Field(
        default=Combinator.ALL,
        validation_alias=AliasChoices("combinator", "logic"),
    )


class SegmentUpdateRequest(BaseContract):
    """Segment update request"""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    conditions: Optional[List[Condition]] = None
    combinator: Optional[Combinator] = Field(
        default=None,
        validation_alias=AliasChoices("combinator", "logic"),
    )


class SegmentPreviewRequest(BaseContract):
    """Ad-hoc rules to preview without saving a segment"""
    conditions: List[Condition] = Field(default_factory=list)
    combinator: Combinator = Field(
        default=Combinator.ALL,
        validation_alias=AliasChoices("combinator", "logic"),
    )
    sample_size: Optional[int] = Field(None, ge=0, le=100)


class CampaignCreateRequest(BaseContract):
    """Campaign creation request (starts delivery)"""
    name: str = Field(..., max_length=255)
    segment_id: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("segment_id", "segmentId")
    )
    message: str


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class SegmentResponse(BaseContract):
    """Segment response"""
    segment: Segment
    message: str = "Success"


class SegmentListResponse(BaseContract):
    """Segment list response"""
    segments: List[Segment]
    total: int


class SegmentCustomersResponse(BaseContract):
    """Customers currently matching a segment"""
    segment_id: str
    total: int
    customers: List[Customer]


class CustomerListResponse(BaseContract):
    """Customer list response"""
    customers: List[Customer]
    total: int


class CustomerDetailResponse(BaseContract):
    """Customer with order history"""
    customer: Customer
    orders: List[Order]


class CustomerBulkCreateResponse(BaseContract):
    """Customers created by a bulk import"""
    customers: List[Customer]
    total: int
    message: str = "Success"


class OrderResponse(BaseContract):
    """Recorded order plus the customer it updated"""
    order: Order
    customer: Customer


class OrderListResponse(BaseContract):
    """Orders of one customer, newest first"""
    customer_id: str
    orders: List[Order]
    total: int


class CampaignResponse(BaseContract):
    """Campaign response"""
    campaign: Campaign
    message: str = "Success"


class CampaignListResponse(BaseContract):
    """Campaign list response"""
    campaigns: List[Campaign]
    total: int


class DeliveryLogListResponse(BaseContract):
    """Delivery logs for a campaign plus derived stats"""
    campaign_id: str
    logs: List[DeliveryLog]
    stats: DeliveryStats


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    service: str
    port: int
    version: str
    dependencies: Dict[str, str] = Field(default_factory=dict)


class ReadinessResponse(BaseModel):
    """Readiness check response"""
    ready: bool
    checks: Dict[str, bool] = Field(default_factory=dict)
    details: Dict[str, str] = Field(default_factory=dict)


class LivenessResponse(BaseModel):
    """Liveness check response"""
    alive: bool
    uptime_seconds: float


__all__ = [
    # Enums
    "CustomerField",
    "ConditionOperator",
    "Combinator",
    "DeliveryStatus",
    # Core Models
    "Customer",
    "Order",
    "Condition",
    "Segment",
    "CampaignStats",
    "Campaign",
    # Delivery
    "VendorAck",
    "VendorResponse",
    "DeliveryLog",
    "DeliveryReceipt",
    "ReceiptQueueEntry",
    "DeliveryLogWriteResult",
    "DeliveryStats",
    "AudiencePreview",
    "DispatchSummary",
    "ReceiptAck",
    # Requests
    "CustomerCreateRequest",
    "CustomerUpdateRequest",
    "CustomerBulkCreateRequest",
    "OrderCreateRequest",
    "SegmentCreateRequest",
    "SegmentUpdateRequest",
    "SegmentPreviewRequest",
    "CampaignCreateRequest",
    # Responses
    "SegmentResponse",
    "SegmentListResponse",
    "SegmentCustomersResponse",
    "CustomerListResponse",
    "CustomerDetailResponse",
    "CustomerBulkCreateResponse",
    "OrderResponse",
    "OrderListResponse",
    "CampaignResponse",
    "CampaignListResponse",
    "DeliveryLogListResponse",
    "HealthResponse",
    "ReadinessResponse",
    "LivenessResponse",
]
