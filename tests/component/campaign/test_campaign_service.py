"""
Component Tests for CampaignService

Customer and order bookkeeping, segment management, audience preview and
campaign creation against the in-memory store and a fake vendor.
"""

import asyncio
import os
import sys
from datetime import datetime, timezone

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from microservices.campaign_service.audience_resolver import AudienceResolver
from microservices.campaign_service.campaign_service import CampaignService
from microservices.campaign_service.delivery_dispatcher import DeliveryDispatcher
from microservices.campaign_service.models import (
    Combinator,
    CustomerBulkCreateRequest,
    DeliveryStatus,
    SegmentUpdateRequest,
)
from microservices.campaign_service.protocols import (
    CampaignNotFoundError,
    CampaignValidationError,
    CustomerNotFoundError,
    SegmentNotFoundError,
    SegmentRuleError,
)


class TestCustomers:

    @pytest.mark.asyncio
    async def test_create_and_list(self, campaign_service, factory):
        created = await campaign_service.create_customer(factory.make_customer_create_request())
        customers = await campaign_service.list_customers()
        assert [c.customer_id for c in customers] == [created.customer_id]

    @pytest.mark.asyncio
    async def test_duplicate_email_rejected(self, campaign_service, factory):
        await campaign_service.create_customer(factory.make_customer_create_request(email="a@x.io"))
        with pytest.raises(CampaignValidationError) as exc_info:
            await campaign_service.create_customer(
                factory.make_customer_create_request(email="A@X.io")
            )
        assert exc_info.value.field == "email"


    @pytest.mark.asyncio
    async def test_invalid_email_reported_as_field_error(self, campaign_service, factory):
        with pytest.raises(CampaignValidationError) as exc_info:
            await campaign_service.create_customer(
                factory.make_customer_create_request(email="not-an-email")
            )
        assert exc_info.value.field == "email"

    @pytest.mark.asyncio
    async def test_get_unknown_customer(self, campaign_service):
        with pytest.raises(CustomerNotFoundError):
            await campaign_service.get_customer("cus_missing")
        with pytest.raises(CustomerNotFoundError):
            await campaign_service.delete_customer("cus_missing")

    @pytest.mark.asyncio
    async def test_update_changes_only_given_fields(self, campaign_service, factory):
        created = await campaign_service.create_customer(
            factory.make_customer_create_request(name="Bob", total_spending=250.0)
        )

        updated = await campaign_service.update_customer(
            created.customer_id,
            factory.make_customer_update_request(email=" BOB@Example.COM ", total_spending=900.0),
        )

        assert updated.email == "bob@example.com"
        assert updated.total_spending == 900.0
        assert updated.name == "Bob"
        stored = await campaign_service.get_customer(created.customer_id)
        assert stored.email == "bob@example.com"

    @pytest.mark.asyncio
    async def test_update_to_taken_email_rejected(self, campaign_service, factory):
        await campaign_service.create_customer(factory.make_customer_create_request(email="a@x.io"))
        other = await campaign_service.create_customer(
            factory.make_customer_create_request(email="b@x.io")
        )

        with pytest.raises(CampaignValidationError) as exc_info:
            await campaign_service.update_customer(
                other.customer_id, factory.make_customer_update_request(email="A@x.io")
            )

        assert exc_info.value.field == "email"
        assert (await campaign_service.get_customer(other.customer_id)).email == "b@x.io"

    @pytest.mark.asyncio
    async def test_update_moves_customer_into_segment(self, campaign_service, factory):
        created = await campaign_service.create_customer(
            factory.make_customer_create_request(total_spending=10.0)
        )
        segment = await campaign_service.create_segment(factory.make_segment_create_request())
        assert await campaign_service.get_segment_customers(segment.segment_id) == []

        await campaign_service.update_customer(
            created.customer_id, factory.make_customer_update_request(total_spending=5000.0)
        )

        members = await campaign_service.get_segment_customers(segment.segment_id)
        assert [m.customer_id for m in members] == [created.customer_id]

    @pytest.mark.asyncio
    async def test_bulk_create(self, campaign_service, factory):
        created = await campaign_service.bulk_create_customers(
            factory.make_customer_bulk_create_request(count=3)
        )

        assert len(created) == 3
        listed = await campaign_service.list_customers()
        assert {c.customer_id for c in listed} == {c.customer_id for c in created}

    @pytest.mark.asyncio
    async def test_bulk_create_is_all_or_nothing(self, campaign_service, factory, store):
        await campaign_service.create_customer(factory.make_customer_create_request(email="x@y.io"))
        request = CustomerBulkCreateRequest(
            customers=[
                factory.make_customer_create_request(email="new@y.io"),
                factory.make_customer_create_request(email="X@Y.io"),
            ]
        )

        with pytest.raises(CampaignValidationError) as exc_info:
            await campaign_service.bulk_create_customers(request)

        assert exc_info.value.field == "customers[1].email"
        assert len(store.customers) == 1

    @pytest.mark.asyncio
    async def test_bulk_create_rejects_duplicates_within_batch(self, campaign_service, factory, store):
        request = CustomerBulkCreateRequest(
            customers=[
                factory.make_customer_create_request(email="same@y.io"),
                factory.make_customer_create_request(email="other@y.io"),
                factory.make_customer_create_request(email="Same@y.io"),
            ]
        )

        with pytest.raises(CampaignValidationError) as exc_info:
            await campaign_service.bulk_create_customers(request)

        assert exc_info.value.field == "customers[2].email"
        assert store.customers == {}

    @pytest.mark.asyncio
    async def test_delete_removes_orders_but_keeps_delivery_logs(
        self, campaign_service, factory, dispatcher, store
    ):
        created = await campaign_service.create_customer(
            factory.make_customer_create_request(total_spending=5000.0)
        )
        await campaign_service.create_order(factory.make_order_create_request(created.customer_id))
        segment = await campaign_service.create_segment(factory.make_segment_create_request())
        campaign = await campaign_service.create_campaign(
            factory.make_campaign_create_request(segment.segment_id)
        )
        await dispatcher.wait_all()

        await campaign_service.delete_customer(created.customer_id)

        assert store.customers == {}
        assert store.orders == {}
        logs = await store.list_delivery_logs(campaign.campaign_id)
        assert [log.customer_id for log in logs] == [created.customer_id]


class TestOrders:

    @pytest.mark.asyncio
    async def test_order_raises_spending_and_sets_last_visit(self, campaign_service, factory):
        created = await campaign_service.create_customer(
            factory.make_customer_create_request(total_spending=250.0)
        )
        assert created.last_visit is None

        order, customer = await campaign_service.create_order(
            factory.make_order_create_request(
                created.customer_id, order_amount=80.5, order_date=factory.days_ago(3)
            )
        )

        assert customer.total_spending == 330.5
        assert customer.last_visit == factory.days_ago(3)
        assert order.customer_id == created.customer_id
        stored = await campaign_service.get_customer(created.customer_id)
        assert stored.total_spending == 330.5

    @pytest.mark.asyncio
    async def test_older_order_does_not_move_last_visit_back(self, campaign_service, factory):
        created = await campaign_service.create_customer(factory.make_customer_create_request())
        await campaign_service.create_order(
            factory.make_order_create_request(created.customer_id, order_date=factory.days_ago(1))
        )

        _, customer = await campaign_service.create_order(
            factory.make_order_create_request(
                created.customer_id, order_amount=10.0, order_date=factory.days_ago(40)
            )
        )

        assert customer.last_visit == factory.days_ago(1)
        assert customer.total_spending == 250.0 + 75.0 + 10.0

    @pytest.mark.asyncio
    async def test_order_date_defaults_to_now(self, campaign_service, factory):
        created = await campaign_service.create_customer(factory.make_customer_create_request())
        before = datetime.now(timezone.utc)

        order, customer = await campaign_service.create_order(
            factory.make_order_create_request(created.customer_id)
        )

        assert order.order_date >= before
        assert customer.last_visit == order.order_date

    @pytest.mark.asyncio
    async def test_order_for_unknown_customer_stores_nothing(self, campaign_service, factory, store):
        with pytest.raises(CustomerNotFoundError):
            await campaign_service.create_order(factory.make_order_create_request("cus_missing"))
        assert store.orders == {}

    @pytest.mark.asyncio
    async def test_concurrent_orders_all_counted(self, campaign_service, factory):
        created = await campaign_service.create_customer(
            factory.make_customer_create_request(total_spending=0.0)
        )

        await asyncio.gather(*[
            campaign_service.create_order(
                factory.make_order_create_request(created.customer_id, order_amount=10.0)
            )
            for _ in range(20)
        ])

        stored = await campaign_service.get_customer(created.customer_id)
        assert stored.total_spending == 200.0

    @pytest.mark.asyncio
    async def test_orders_listed_newest_first(self, campaign_service, factory):
        created = await campaign_service.create_customer(factory.make_customer_create_request())
        for days in (10, 2, 5):
            await campaign_service.create_order(
                factory.make_order_create_request(created.customer_id, order_date=factory.days_ago(days))
            )

        orders = await campaign_service.list_customer_orders(created.customer_id)
        customer, detail_orders = await campaign_service.get_customer_detail(created.customer_id)

        assert [o.order_date for o in orders] == [factory.days_ago(d) for d in (2, 5, 10)]
        assert detail_orders == orders
        assert customer.customer_id == created.customer_id

    @pytest.mark.asyncio
    async def test_order_after_campaign_leaves_its_recipients_unchanged(
        self, campaign_service, factory, dispatcher, store
    ):
        created = await campaign_service.create_customer(
            factory.make_customer_create_request(total_spending=900.0)
        )
        segment = await campaign_service.create_segment(factory.make_segment_create_request())
        before = await campaign_service.create_campaign(
            factory.make_campaign_create_request(segment.segment_id)
        )
        await dispatcher.wait_all()

        await campaign_service.create_order(
            factory.make_order_create_request(created.customer_id, order_amount=200.0)
        )
        after = await campaign_service.create_campaign(
            factory.make_campaign_create_request(segment.segment_id)
        )
        await dispatcher.wait_all()

        assert await store.list_delivery_logs(before.campaign_id) == []
        assert before.stats.audience_size == 0
        assert after.stats.audience_size == 1
        members = await campaign_service.get_segment_customers(segment.segment_id)
        assert [m.customer_id for m in members] == [created.customer_id]


class TestSegments:

    @pytest.mark.asyncio
    async def test_create_caches_audience_size(self, campaign_service, factory, seed):
        await seed([factory.make_customer(total_spending=1200), factory.make_customer(total_spending=500)])

        segment = await campaign_service.create_segment(
            factory.make_segment_create_request(), created_by="usr_1"
        )

        assert segment.cached_audience_size == 1
        assert segment.created_by == "usr_1"
        stored = await campaign_service.get_segment(segment.segment_id)
        assert stored.name == "High spenders"

    @pytest.mark.asyncio
    async def test_invalid_rules_are_not_stored(self, campaign_service, factory, store):
        request = factory.make_segment_create_request(conditions=[])
        with pytest.raises(SegmentRuleError):
            await campaign_service.create_segment(request)
        assert store.segments == {}

    @pytest.mark.asyncio
    async def test_update_rules_recomputes_size(self, campaign_service, factory, seed):
        await seed([factory.make_customer(name="Ann", total_spending=10), factory.make_customer(name="Bo", total_spending=2000)])
        segment = await campaign_service.create_segment(factory.make_segment_create_request())
        assert segment.cached_audience_size == 1

        updated = await campaign_service.update_segment(
            segment.segment_id,
            SegmentUpdateRequest(
                conditions=[
                    factory.make_condition(),
                    factory.make_condition(field="name", operator="=", value="Ann"),
                ],
                combinator=Combinator.ANY,
            ),
        )

        assert updated.cached_audience_size == 2
        assert updated.combinator is Combinator.ANY

    @pytest.mark.asyncio
    async def test_rename_keeps_rules(self, campaign_service, factory):
        segment = await campaign_service.create_segment(factory.make_segment_create_request())
        updated = await campaign_service.update_segment(
            segment.segment_id, SegmentUpdateRequest(name=" VIPs ")
        )
        assert updated.name == "VIPs"
        assert updated.conditions == segment.conditions

    @pytest.mark.asyncio
    async def test_unknown_segment(self, campaign_service):
        with pytest.raises(SegmentNotFoundError):
            await campaign_service.get_segment("seg_missing")
        with pytest.raises(SegmentNotFoundError):
            await campaign_service.delete_segment("seg_missing")

    @pytest.mark.asyncio
    async def test_preview_counts_all_but_samples_ten(self, campaign_service, factory, seed):
        await seed(factory.make_customers(15, total_spending=5000))

        preview = await campaign_service.preview_segment(factory.make_segment_preview_request())

        assert preview.audience_size == 15
        assert len(preview.sample_customers) == 10

    @pytest.mark.asyncio
    async def test_preview_sample_size_override(self, campaign_service, factory, seed):
        await seed(factory.make_customers(4, total_spending=5000))
        preview = await campaign_service.preview_segment(
            factory.make_segment_preview_request(sample_size=2)
        )
        assert preview.audience_size == 4
        assert len(preview.sample_customers) == 2

    @pytest.mark.asyncio
    async def test_segment_customers(self, campaign_service, factory, seed):
        rich, _ = await seed([factory.make_customer(total_spending=3000), factory.make_customer(total_spending=3)])
        segment = await campaign_service.create_segment(factory.make_segment_create_request())

        customers = await campaign_service.get_segment_customers(segment.segment_id)

        assert [c.customer_id for c in customers] == [rich.customer_id]


class TestCreateCampaign:

    @pytest.mark.asyncio
    async def test_high_spender_campaign_end_to_end(
        self, campaign_service, factory, seed, vendor, dispatcher, batch_updater, store
    ):
        rich, poor = await seed([
            factory.make_customer(name="Alice", total_spending=1200),
            factory.make_customer(name="Bob", total_spending=500),
        ])
        segment = await campaign_service.create_segment(factory.make_segment_create_request())

        campaign = await campaign_service.create_campaign(
            factory.make_campaign_create_request(segment.segment_id, message="Hi {name}, 10% off!")
        )

        assert campaign.stats.audience_size == 1
        logs = await store.list_delivery_logs(campaign.campaign_id)
        assert [(log.customer_id, log.status) for log in logs] == [(rich.customer_id, DeliveryStatus.PENDING)]

        await dispatcher.wait_all()
        assert vendor.messages_for(campaign.campaign_id) == {rich.customer_id: "Hi Alice, 10% off!"}

        await vendor.emit_all()
        await batch_updater.flush()

        delivery = await campaign_service.get_campaign_stats(campaign.campaign_id)
        assert (delivery.total, delivery.sent, delivery.failed, delivery.pending) == (1, 1, 0, 0)

    @pytest.mark.asyncio
    async def test_empty_audience_sends_nothing(
        self, campaign_service, factory, seed, vendor, dispatcher
    ):
        await seed([factory.make_customer(total_spending=10)])
        segment = await campaign_service.create_segment(factory.make_segment_create_request())

        campaign = await campaign_service.create_campaign(
            factory.make_campaign_create_request(segment.segment_id)
        )
        await dispatcher.wait_all()

        assert campaign.stats.audience_size == 0
        assert vendor.sent == []
        delivery = await campaign_service.get_campaign_stats(campaign.campaign_id)
        assert (delivery.total, delivery.sent, delivery.failed, delivery.pending) == (0, 0, 0, 0)

    @pytest.mark.asyncio
    async def test_recipients_are_frozen_at_creation(
        self, campaign_service, factory, seed, dispatcher, store
    ):
        await seed([factory.make_customer(total_spending=2000)])
        segment = await campaign_service.create_segment(factory.make_segment_create_request())
        campaign = await campaign_service.create_campaign(
            factory.make_campaign_create_request(segment.segment_id)
        )
        await dispatcher.wait_all()

        await seed([factory.make_customer(total_spending=9000)])

        logs = await store.list_delivery_logs(campaign.campaign_id)
        assert len(logs) == 1

    @pytest.mark.asyncio
    async def test_unknown_segment_creates_nothing(self, campaign_service, factory, store):
        with pytest.raises(SegmentNotFoundError):
            await campaign_service.create_campaign(
                factory.make_campaign_create_request("seg_missing")
            )
        assert store.campaigns == {}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field,overrides", [("name", {"name": "  "}), ("message", {"message": ""})])
    async def test_missing_name_or_message(self, campaign_service, factory, field, overrides):
        segment = await campaign_service.create_segment(factory.make_segment_create_request())
        with pytest.raises(CampaignValidationError) as exc_info:
            await campaign_service.create_campaign(
                factory.make_campaign_create_request(segment.segment_id, **overrides)
            )
        assert exc_info.value.field == field

    @pytest.mark.asyncio
    async def test_send_errors_leave_logs_pending(
        self, store, factory, seed, make_vendor, ingestor, stats
    ):
        customers = await seed(factory.make_customers(3, total_spending=5000))
        vendor = make_vendor(raise_for={customers[0].customer_id})
        vendor.register_receipt_callback(ingestor)
        dispatcher = DeliveryDispatcher(vendor)
        service = CampaignService(store, store, AudienceResolver(store), dispatcher, stats, ingestor)
        segment = await service.create_segment(factory.make_segment_create_request())

        campaign = await service.create_campaign(factory.make_campaign_create_request(segment.segment_id))
        await dispatcher.wait_all()
        await vendor.emit_all()
        await ingestor.batch_updater.flush()

        delivery = await service.get_campaign_stats(campaign.campaign_id)
        assert (delivery.sent, delivery.pending) == (2, 1)


class TestCampaignQueries:

    @pytest.mark.asyncio
    async def test_delivery_logs_filtered_by_status(
        self, campaign_service, factory, seed, vendor, dispatcher, batch_updater
    ):
        await seed(factory.make_customers(3, total_spending=5000))
        segment = await campaign_service.create_segment(factory.make_segment_create_request())
        campaign = await campaign_service.create_campaign(
            factory.make_campaign_create_request(segment.segment_id)
        )
        await dispatcher.wait_all()
        await vendor.emit_all()
        await batch_updater.flush()

        sent = await campaign_service.list_delivery_logs(campaign.campaign_id, DeliveryStatus.SENT)
        pending = await campaign_service.list_delivery_logs(campaign.campaign_id, DeliveryStatus.PENDING)

        assert len(sent.logs) == 3
        assert pending.logs == []
        assert sent.stats.sent == 3

    @pytest.mark.asyncio
    async def test_unknown_campaign(self, campaign_service):
        with pytest.raises(CampaignNotFoundError):
            await campaign_service.get_campaign_stats("cmp_missing")
        with pytest.raises(CampaignNotFoundError):
            await campaign_service.list_delivery_logs("cmp_missing")
        with pytest.raises(CampaignNotFoundError):
            await campaign_service.delete_campaign("cmp_missing")

    @pytest.mark.asyncio
    async def test_delete_campaign_removes_logs(self, campaign_service, factory, seed, dispatcher, store):
        await seed([factory.make_customer(total_spending=5000)])
        segment = await campaign_service.create_segment(factory.make_segment_create_request())
        campaign = await campaign_service.create_campaign(
            factory.make_campaign_create_request(segment.segment_id)
        )
        await dispatcher.wait_all()

        await campaign_service.delete_campaign(campaign.campaign_id)

        assert await campaign_service.list_campaigns() == []
        assert store.delivery_logs == {}
