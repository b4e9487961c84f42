"""
Component Tests for Campaign Event Publishing

CampaignEventPublisher payloads and NATSEventBus subject/encoding, using
recording stand-ins for the broker.
"""

import json
import os
import sys
from decimal import Decimal

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from core.nats_client import Event, NATSEventBus
from microservices.campaign_service.events import CampaignEventPublisher, CampaignEventType
from microservices.campaign_service.models import DeliveryStats, DispatchSummary


class RecordingBus:
    def __init__(self, fail: bool = False):
        self.events = []
        self.fail = fail

    async def publish_event(self, event):
        if self.fail:
            raise ConnectionError("broker down")
        self.events.append(event)
        return True


class RecordingNatsConnection:
    is_connected = True

    def __init__(self):
        self.published = []
        self.drained = False

    async def publish(self, subject, data):
        self.published.append((subject, data))

    async def drain(self):
        self.drained = True


class TestCampaignEventPublisher:

    @pytest.mark.asyncio
    async def test_campaign_created_payload(self, factory):
        bus = RecordingBus()
        publisher = CampaignEventPublisher(bus)
        campaign = factory.make_campaign(audience_size=7, created_by="usr_1")

        assert await publisher.publish_campaign_created(campaign)

        event = bus.events[0]
        assert event.type == CampaignEventType.CREATED.value
        assert event.source == "campaign_service"
        assert event.data["campaign_id"] == campaign.campaign_id
        assert event.data["audience_size"] == 7
        assert event.data["created_by"] == "usr_1"

    @pytest.mark.asyncio
    async def test_delivery_updated_payload(self):
        bus = RecordingBus()
        publisher = CampaignEventPublisher(bus)
        stats = {"cmp_1": DeliveryStats(campaign_id="cmp_1", total=3, sent=2, failed=1)}

        await publisher.publish_delivery_updated(("cmp_1",), applied=3, skipped=1, stats=stats)

        data = bus.events[0].data
        assert data["campaign_ids"] == ["cmp_1"]
        assert data["applied"] == 3
        assert data["stats"]["cmp_1"] == {"total": 3, "sent": 2, "failed": 1, "pending": 0}

    @pytest.mark.asyncio
    async def test_dispatch_summary_payload(self):
        bus = RecordingBus()
        publisher = CampaignEventPublisher(bus)

        await publisher.publish_delivery_dispatched(
            DispatchSummary(campaign_id="cmp_1", attempted=4, accepted=3, errored=1)
        )

        assert bus.events[0].type == "campaign.delivery.dispatched"
        assert bus.events[0].data["errored"] == 1

    @pytest.mark.asyncio
    async def test_segment_updated_lists_changed_fields(self, factory):
        bus = RecordingBus()
        publisher = CampaignEventPublisher(bus)

        await publisher.publish_segment_updated(factory.make_segment(), ["conditions", "name"])

        assert bus.events[0].data["changed_fields"] == ["conditions", "name"]

    @pytest.mark.asyncio
    async def test_without_bus_nothing_is_published(self):
        assert await CampaignEventPublisher(None).publish_campaign_deleted("cmp_1") is False

    @pytest.mark.asyncio
    async def test_bus_errors_are_contained(self):
        publisher = CampaignEventPublisher(RecordingBus(fail=True))
        assert await publisher.publish_segment_deleted("seg_1") is False


class TestNATSEventBus:

    @pytest.mark.asyncio
    async def test_publishes_json_on_event_type_subject(self):
        bus = NATSEventBus("campaign_service")
        connection = RecordingNatsConnection()
        bus._client = connection

        ok = await bus.publish_event(
            Event(CampaignEventType.DELETED, "campaign_service", {"amount": Decimal("1.5")})
        )

        assert ok
        subject, data = connection.published[0]
        assert subject == "campaign.deleted"
        body = json.loads(data)
        assert body["type"] == "campaign.deleted"
        assert body["data"]["amount"] == 1.5

        await bus.close()
        assert connection.drained
        assert not bus.is_connected

    @pytest.mark.asyncio
    async def test_publish_when_disconnected_returns_false(self):
        bus = NATSEventBus("campaign_service")
        assert await bus.publish_event(Event("campaign.created", "campaign_service", {})) is False
