"""
Campaign Service Protocols

Defines interfaces for dependency injection and testing.
Following the protocol-based architecture pattern.
"""

from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence

from .models import (
    Campaign,
    CampaignStats,
    Customer,
    DeliveryLog,
    DeliveryLogWriteResult,
    DeliveryReceipt,
    DeliveryStatus,
    Order,
    ReceiptQueueEntry,
    Segment,
    VendorAck,
)


ReceiptCallback = Callable[[DeliveryReceipt], Awaitable[Any]]


# ====================
# Repository Protocols
# ====================


class CustomerRepositoryProtocol(Protocol):
    """Protocol for customer population access"""

    async def save_customer(self, customer: Customer) -> Customer:
        """Save a customer"""
        ...

    async def get_customer(self, customer_id: str) -> Optional[Customer]:
        """Get customer by ID"""
        ...

    async def get_customer_by_email(self, email: str) -> Optional[Customer]:
        """Get customer by (normalized) email"""
        ...

    async def list_customers(self) -> List[Customer]:
        """List all customers"""
        ...

    async def save_customers(self, customers: Sequence[Customer]) -> List[Customer]:
        """Insert several new customers atomically"""
        ...

    async def delete_customer(self, customer_id: str) -> bool:
        """Delete customer and their orders; delivery logs are kept"""
        ...

    def iter_customers(self, batch_size: int = 500) -> AsyncIterator[List[Customer]]:
        """Stream the customer population in batches"""
        ...

    async def record_order(self, order: Order) -> Optional[Customer]:
        """
        Store an order and apply it to its customer in one step.

        Adds order_amount to total_spending and moves last_visit forward to
        order_date. Returns the updated customer, or None (and stores
        nothing) when the customer does not exist.
        """
        ...

    async def list_orders(self, customer_id: str) -> List[Order]:
        """Orders of a customer, newest first"""
        ...


class CampaignRepositoryProtocol(Protocol):
    """Protocol for segment, campaign and delivery-log storage"""

    async def initialize(self) -> None:
        """Initialize repository connection"""
        ...

    async def close(self) -> None:
        """Close repository connection"""
        ...

    async def health_check(self) -> bool:
        """Check repository health"""
        ...

    # Segment CRUD
    async def save_segment(self, segment: Segment) -> Segment:
        """Insert or replace a segment"""
        ...

    async def get_segment(self, segment_id: str) -> Optional[Segment]:
        """Get segment by ID"""
        ...

    async def list_segments(self) -> List[Segment]:
        """List segments, newest first"""
        ...

    async def delete_segment(self, segment_id: str) -> bool:
        """Delete segment; campaigns referencing it are untouched"""
        ...

    # Campaign operations
    async def create_campaign_with_logs(
        self, campaign: Campaign, logs: Sequence[DeliveryLog]
    ) -> Campaign:
        """Insert the campaign and all its pending delivery logs atomically"""
        ...

    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        """Get campaign by ID"""
        ...

    async def list_campaigns(self) -> List[Campaign]:
        """List campaigns, newest first"""
        ...

    async def update_campaign_stats(
        self, campaign_id: str, stats: CampaignStats
    ) -> Optional[Campaign]:
        """Overwrite the campaign's stats cache"""
        ...

    async def delete_campaign(self, campaign_id: str) -> bool:
        """Delete campaign and its delivery logs"""
        ...

    # Delivery log operations
    async def list_delivery_logs(
        self, campaign_id: str, status: Optional[DeliveryStatus] = None
    ) -> List[DeliveryLog]:
        """Delivery logs of a campaign, optionally filtered by status"""
        ...

    async def bulk_apply_receipts(
        self, entries: Sequence[ReceiptQueueEntry]
    ) -> DeliveryLogWriteResult:
        """
        Apply receipt outcomes in one write.

        Only logs still pending are updated; anything else is a no-op.
        """
        ...

    async def count_by_status(self, campaign_id: str) -> Dict[DeliveryStatus, int]:
        """Number of the campaign's delivery logs per status"""
        ...


# ====================
# Vendor Channel Protocol
# ====================


class VendorChannelProtocol(Protocol):
    """Protocol for the outbound messaging vendor"""

    async def send(self, campaign_id: str, recipient: Customer, message: str) -> VendorAck:
        """Submit one message; returns the immediate acknowledgement only"""
        ...

    def register_receipt_callback(self, callback: ReceiptCallback) -> None:
        """Register the consumer of asynchronous delivery receipts"""
        ...


# ====================
# Event Bus Protocol
# ====================


class EventBusProtocol(Protocol):
    """Protocol for event bus operations"""

    async def publish_event(self, event: Any) -> bool:
        """Publish an event to the event bus"""
        ...

    async def close(self) -> None:
        """Close event bus connection"""
        ...


# ====================
# Custom Exceptions
# ====================


class CampaignServiceError(Exception):
    """Base exception for campaign service errors"""
    pass


class CustomerNotFoundError(CampaignServiceError):
    """Raised when customer is not found"""
    pass


class SegmentNotFoundError(CampaignServiceError):
    """Raised when segment is not found"""
    pass


class CampaignNotFoundError(CampaignServiceError):
    """Raised when campaign is not found"""
    pass


class SegmentRuleError(CampaignServiceError):
    """Raised when segment conditions cannot be compiled"""

    def __init__(self, message: str, condition_index: Optional[int] = None):
        super().__init__(message)
        self.condition_index = condition_index


class CampaignValidationError(CampaignServiceError):
    """Raised when campaign validation fails"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class ReceiptQueueFullError(CampaignServiceError):
    """Raised when the receipt queue cannot take more entries"""

    def __init__(self, message: str, pending: int = 0):
        super().__init__(message)
        self.pending = pending


class DeliveryLogWriteError(CampaignServiceError):
    """Raised when a bulk receipt write fails; entries stay queued"""

    def __init__(self, message: str, retained: int = 0):
        super().__init__(message)
        self.retained = retained


class MessageDeliveryError(CampaignServiceError):
    """Raised when message delivery fails"""
    pass


__all__ = [
    "ReceiptCallback",
    "CustomerRepositoryProtocol",
    "CampaignRepositoryProtocol",
    "VendorChannelProtocol",
    "EventBusProtocol",
    "CampaignServiceError",
    "CustomerNotFoundError",
    "SegmentNotFoundError",
    "CampaignNotFoundError",
    "SegmentRuleError",
    "CampaignValidationError",
    "ReceiptQueueFullError",
    "DeliveryLogWriteError",
    "MessageDeliveryError",
]
