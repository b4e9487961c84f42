"""
Campaign Event Publishers

Publishes events to NATS.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from core.nats_client import Event, ServiceSource

from ..models import Campaign, DeliveryStats, DispatchSummary, Segment
from ..protocols import EventBusProtocol
from .models import (
    CampaignCreatedEventData,
    CampaignDeletedEventData,
    CampaignEventType,
    DeliveryDispatchedEventData,
    DeliveryUpdatedEventData,
    SegmentEventData,
)

logger = logging.getLogger(__name__)


class CampaignEventPublisher:
    """Publisher for campaign service events"""

    def __init__(self, event_bus: Optional[EventBusProtocol] = None):
        self.event_bus = event_bus
        self.source = ServiceSource.CAMPAIGN_SERVICE

    async def publish(
        self,
        event_type: CampaignEventType,
        data: Dict[str, Any],
    ) -> bool:
        """
        Publish an event to NATS.

        Args:
            event_type: The event type enum
            data: Event data payload

        Returns:
            True if published successfully, False otherwise
        """
        if not self.event_bus:
            logger.debug(f"Event bus not configured, skipping publish: {event_type.value}")
            return False

        try:
            event = Event(event_type=event_type, source=self.source, data=data)
            published = await self.event_bus.publish_event(event)
            logger.debug(f"Published event: {event_type.value}")
            return bool(published)

        except Exception as e:
            logger.error(f"Failed to publish event {event_type.value}: {e}")
            return False

    # ====================
    # Campaign Events
    # ====================

    async def publish_campaign_created(self, campaign: Campaign) -> bool:
        """Publish campaign.created event"""
        data = CampaignCreatedEventData(
            campaign_id=campaign.campaign_id,
            segment_id=campaign.segment_id,
            name=campaign.name,
            audience_size=campaign.stats.audience_size,
            created_by=campaign.created_by,
        )
        return await self.publish(CampaignEventType.CREATED, data.model_dump(mode="json"))

    async def publish_campaign_deleted(self, campaign_id: str) -> bool:
        """Publish campaign.deleted event"""
        data = CampaignDeletedEventData(campaign_id=campaign_id)
        return await self.publish(CampaignEventType.DELETED, data.model_dump(mode="json"))

    async def publish_delivery_dispatched(self, summary: DispatchSummary) -> bool:
        """Publish campaign.delivery.dispatched event"""
        data = DeliveryDispatchedEventData(**summary.model_dump())
        return await self.publish(CampaignEventType.DELIVERY_DISPATCHED, data.model_dump(mode="json"))

    async def publish_delivery_updated(
        self,
        campaign_ids: Iterable[str],
        applied: int,
        skipped: int = 0,
        stats: Optional[Dict[str, DeliveryStats]] = None,
    ) -> bool:
        """Publish campaign.delivery.updated event"""
        data = DeliveryUpdatedEventData(
            campaign_ids=list(campaign_ids),
            applied=applied,
            skipped=skipped,
            stats={
                cid: s.model_dump(include={"total", "sent", "failed", "pending"})
                for cid, s in (stats or {}).items()
            },
        )
        return await self.publish(CampaignEventType.DELIVERY_UPDATED, data.model_dump(mode="json"))

    # ====================
    # Segment Events
    # ====================

    async def publish_segment_created(self, segment: Segment) -> bool:
        """Publish segment.created event"""
        data = SegmentEventData(
            segment_id=segment.segment_id,
            name=segment.name,
            cached_audience_size=segment.cached_audience_size,
        )
        return await self.publish(CampaignEventType.SEGMENT_CREATED, data.model_dump(mode="json"))

    async def publish_segment_updated(self, segment: Segment, changed_fields: List[str]) -> bool:
        """Publish segment.updated event"""
        data = SegmentEventData(
            segment_id=segment.segment_id,
            name=segment.name,
            cached_audience_size=segment.cached_audience_size,
            changed_fields=changed_fields,
        )
        return await self.publish(CampaignEventType.SEGMENT_UPDATED, data.model_dump(mode="json"))

    async def publish_segment_deleted(self, segment_id: str) -> bool:
        """Publish segment.deleted event"""
        data = SegmentEventData(segment_id=segment_id)
        return await self.publish(CampaignEventType.SEGMENT_DELETED, data.model_dump(mode="json"))


__all__ = ["CampaignEventPublisher"]
