"""
Campaign Event Data Models

Event type definitions and data structures for campaign service events.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Event Type Definitions
# =============================================================================


class CampaignEventType(str, Enum):
    """
    Events published by campaign_service.

    These are the authoritative event types for this service.
    Other services should reference these when subscribing.
    """
    # Campaign lifecycle events
    CREATED = "campaign.created"
    DELETED = "campaign.deleted"

    # Delivery events
    DELIVERY_DISPATCHED = "campaign.delivery.dispatched"
    DELIVERY_UPDATED = "campaign.delivery.updated"

    # Segment events
    SEGMENT_CREATED = "segment.created"
    SEGMENT_UPDATED = "segment.updated"
    SEGMENT_DELETED = "segment.deleted"


# =============================================================================
# Event Data Models - Published Events
# =============================================================================


class CampaignCreatedEventData(BaseModel):
    """campaign.created event data"""
    campaign_id: str = Field(..., description="Campaign ID")
    segment_id: str = Field(..., description="Targeted segment")
    name: str = Field(..., description="Campaign name")
    audience_size: int = Field(..., description="Recipients frozen at creation")
    created_by: Optional[str] = Field(None, description="User who created the campaign")
    timestamp: datetime = Field(default_factory=_utcnow, description="Event timestamp")


class CampaignDeletedEventData(BaseModel):
    """campaign.deleted event data"""
    campaign_id: str = Field(..., description="Campaign ID")
    timestamp: datetime = Field(default_factory=_utcnow, description="Event timestamp")


class DeliveryDispatchedEventData(BaseModel):
    """campaign.delivery.dispatched event data"""
    campaign_id: str = Field(..., description="Campaign ID")
    attempted: int = Field(..., description="Recipients attempted")
    accepted: int = Field(..., description="Sends acknowledged by the vendor")
    rejected: int = Field(0, description="Sends refused by the vendor")
    errored: int = Field(0, description="Sends that raised")
    timestamp: datetime = Field(default_factory=_utcnow, description="Event timestamp")


class DeliveryUpdatedEventData(BaseModel):
    """campaign.delivery.updated event data (one per batch flush)"""
    campaign_ids: List[str] = Field(..., description="Campaigns touched by the flush")
    applied: int = Field(..., description="Delivery logs moved to a terminal status")
    skipped: int = Field(0, description="Receipts that changed nothing")
    stats: Dict[str, Dict[str, int]] = Field(
        default_factory=dict, description="campaign_id -> {total, sent, failed, pending}"
    )
    timestamp: datetime = Field(default_factory=_utcnow, description="Event timestamp")


class SegmentEventData(BaseModel):
    """segment.created / segment.updated / segment.deleted event data"""
    segment_id: str = Field(..., description="Segment ID")
    name: Optional[str] = Field(None, description="Segment name")
    cached_audience_size: Optional[int] = Field(None, description="Audience size hint")
    changed_fields: List[str] = Field(default_factory=list, description="Fields changed by an update")
    timestamp: datetime = Field(default_factory=_utcnow, description="Event timestamp")


__all__ = [
    # Event Types
    "CampaignEventType",
    # Published Event Data
    "CampaignCreatedEventData",
    "CampaignDeletedEventData",
    "DeliveryDispatchedEventData",
    "DeliveryUpdatedEventData",
    "SegmentEventData",
]
