"""
Campaign Service Events

Event models and publisher for campaign service.
"""

from .models import (
    CampaignEventType,
    CampaignCreatedEventData,
    CampaignDeletedEventData,
    DeliveryDispatchedEventData,
    DeliveryUpdatedEventData,
    SegmentEventData,
)
from .publishers import CampaignEventPublisher

__all__ = [
    # Event Types
    "CampaignEventType",
    # Event Data Models
    "CampaignCreatedEventData",
    "CampaignDeletedEventData",
    "DeliveryDispatchedEventData",
    "DeliveryUpdatedEventData",
    "SegmentEventData",
    # Publisher
    "CampaignEventPublisher",
]
