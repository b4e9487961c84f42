"""
Campaign Service Business Logic

Implements customer and order bookkeeping, segment management, audience
preview, campaign creation with background delivery, delivery statistics
and receipt intake.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from .audience_resolver import AudienceResolver
from .delivery_dispatcher import DeliveryDispatcher
from .events.publishers import CampaignEventPublisher
from .models import (
    AudiencePreview,
    Campaign,
    CampaignCreateRequest,
    CampaignStats,
    Customer,
    CustomerBulkCreateRequest,
    CustomerCreateRequest,
    CustomerUpdateRequest,
    DeliveryLog,
    DeliveryLogListResponse,
    DeliveryReceipt,
    DeliveryStats,
    DeliveryStatus,
    Order,
    OrderCreateRequest,
    ReceiptAck,
    Segment,
    SegmentCreateRequest,
    SegmentPreviewRequest,
    SegmentUpdateRequest,
)
from .protocols import (
    CampaignNotFoundError,
    CampaignRepositoryProtocol,
    CampaignValidationError,
    CustomerNotFoundError,
    CustomerRepositoryProtocol,
    SegmentNotFoundError,
)
from .receipt_ingestor import ReceiptIngestor
from .rule_compiler import SegmentPredicate, compile_segment
from .stats_aggregator import StatsAggregator

logger = logging.getLogger(__name__)


class CampaignService:
    """Campaign service business logic layer"""

    def __init__(
        self,
        repository: CampaignRepositoryProtocol,
        customer_repository: CustomerRepositoryProtocol,
        resolver: AudienceResolver,
        dispatcher: DeliveryDispatcher,
        stats: StatsAggregator,
        ingestor: ReceiptIngestor,
        event_publisher: Optional[CampaignEventPublisher] = None,
    ):
        self.repository = repository
        self.customer_repository = customer_repository
        self.resolver = resolver
        self.dispatcher = dispatcher
        self.stats = stats
        self.ingestor = ingestor
        self.event_publisher = event_publisher

    # ====================
    # Customers
    # ====================

    async def create_customer(self, request: CustomerCreateRequest) -> Customer:
        """Add a customer to the population (emails are unique)"""
        customer = self._build_customer(request.model_dump())
        existing = await self.customer_repository.get_customer_by_email(customer.email)
        if existing:
            raise CampaignValidationError(
                f"Customer with email {customer.email} already exists", "email"
            )
        return await self.customer_repository.save_customer(customer)

    async def bulk_create_customers(self, request: CustomerBulkCreateRequest) -> List[Customer]:
        """
        Import many customers at once.

        The batch is checked up front and stored in one write, so either every
        customer is added or none is.
        """
        customers = []
        seen = set()
        for i, item in enumerate(request.customers):
            customer = self._build_customer(item.model_dump(), f"customers[{i}].")
            if customer.email in seen or await self.customer_repository.get_customer_by_email(
                customer.email
            ):
                raise CampaignValidationError(
                    f"Customer with email {customer.email} already exists",
                    f"customers[{i}].email",
                )
            seen.add(customer.email)
            customers.append(customer)

        created = await self.customer_repository.save_customers(customers)
        logger.info(f"Imported {len(created)} customers")
        return created

    async def get_customer(self, customer_id: str) -> Customer:
        customer = await self.customer_repository.get_customer(customer_id)
        if not customer:
            raise CustomerNotFoundError(f"Customer not found: {customer_id}")
        return customer

    async def get_customer_detail(self, customer_id: str) -> Tuple[Customer, List[Order]]:
        """Customer together with their order history"""
        customer = await self.get_customer(customer_id)
        orders = await self.customer_repository.list_orders(customer_id)
        return customer, orders

    async def list_customers(self) -> List[Customer]:
        return await self.customer_repository.list_customers()

    async def update_customer(self, customer_id: str, request: CustomerUpdateRequest) -> Customer:
        """Update a customer; changes affect segment matching from now on"""
        customer = await self.get_customer(customer_id)
        changes = request.model_dump(exclude_unset=True)
        if not changes:
            return customer

        updated = self._build_customer({**customer.model_dump(), **changes})
        if updated.email != customer.email:
            existing = await self.customer_repository.get_customer_by_email(updated.email)
            if existing and existing.customer_id != customer_id:
                raise CampaignValidationError(
                    f"Customer with email {updated.email} already exists", "email"
                )
        return await self.customer_repository.save_customer(updated)

    async def delete_customer(self, customer_id: str) -> None:
        """Delete a customer and their orders; past delivery logs stay"""
        if not await self.customer_repository.delete_customer(customer_id):
            raise CustomerNotFoundError(f"Customer not found: {customer_id}")
        logger.info(f"Deleted customer {customer_id}")

    def _build_customer(self, data: Dict[str, Any], prefix: str = "") -> Customer:
        try:
            return Customer.model_validate(data)
        except ValidationError as e:
            error = e.errors()[0]
            field = ".".join(str(part) for part in error["loc"])
            raise CampaignValidationError(error["msg"], f"{prefix}{field}") from e

    # ====================
    # Orders
    # ====================

    async def create_order(self, request: OrderCreateRequest) -> Tuple[Order, Customer]:
        """
        Record an order.

        The customer's total_spending grows by the order amount and last_visit
        moves forward to the order date in the same write.
        """
        order = Order(
            customer_id=request.customer_id,
            order_amount=request.order_amount,
            order_date=request.order_date or datetime.now(timezone.utc),
        )
        customer = await self.customer_repository.record_order(order)
        if customer is None:
            raise CustomerNotFoundError(f"Customer not found: {request.customer_id}")
        logger.info(
            f"Recorded order {order.order_id} of {order.order_amount} for {customer.customer_id}"
        )
        return order, customer

    async def list_customer_orders(self, customer_id: str) -> List[Order]:
        await self.get_customer(customer_id)
        return await self.customer_repository.list_orders(customer_id)

    # ====================
    # Segments
    # ====================

    async def create_segment(
        self, request: SegmentCreateRequest, created_by: Optional[str] = None
    ) -> Segment:
        """
        Create a segment.

        Conditions are compiled first, so malformed rules are rejected before
        anything is stored. The audience size is cached as a preview hint.
        """
        predicate = compile_segment(request.conditions, request.combinator)
        preview = await self.resolver.preview(predicate, sample_size=0)

        segment = Segment(
            name=request.name.strip(),
            description=request.description,
            conditions=request.conditions,
            combinator=request.combinator,
            cached_audience_size=preview.audience_size,
            created_by=created_by,
        )
        segment = await self.repository.save_segment(segment)
        logger.info(f"Created segment {segment.segment_id} ({segment.cached_audience_size} matching)")

        if self.event_publisher:
            await self.event_publisher.publish_segment_created(segment)
        return segment

    async def get_segment(self, segment_id: str) -> Segment:
        segment = await self.repository.get_segment(segment_id)
        if not segment:
            raise SegmentNotFoundError(f"Segment not found: {segment_id}")
        return segment

    async def list_segments(self) -> List[Segment]:
        return await self.repository.list_segments()

    async def update_segment(self, segment_id: str, request: SegmentUpdateRequest) -> Segment:
        """Update a segment; rule changes recompute the cached audience size"""
        segment = await self.get_segment(segment_id)
        changes = request.model_dump(exclude_unset=True, exclude_none=True)
        if not changes:
            return segment

        updates = {}
        if "name" in changes:
            updates["name"] = request.name.strip()
        if "description" in changes:
            updates["description"] = request.description
        if "conditions" in changes:
            updates["conditions"] = request.conditions
        if "combinator" in changes:
            updates["combinator"] = request.combinator

        if "conditions" in updates or "combinator" in updates:
            predicate = compile_segment(
                updates.get("conditions", segment.conditions),
                updates.get("combinator", segment.combinator),
            )
            preview = await self.resolver.preview(predicate, sample_size=0)
            updates["cached_audience_size"] = preview.audience_size

        updates["updated_at"] = datetime.now(timezone.utc)
        segment = segment.model_copy(update=updates)
        segment = await self.repository.save_segment(segment)

        if self.event_publisher:
            await self.event_publisher.publish_segment_updated(segment, sorted(changes))
        return segment

    async def delete_segment(self, segment_id: str) -> None:
        """Delete a segment; campaigns that referenced it keep their recipients"""
        if not await self.repository.delete_segment(segment_id):
            raise SegmentNotFoundError(f"Segment not found: {segment_id}")
        logger.info(f"Deleted segment {segment_id}")

        if self.event_publisher:
            await self.event_publisher.publish_segment_deleted(segment_id)

    async def preview_segment(self, request: SegmentPreviewRequest) -> AudiencePreview:
        """Audience size and sample for ad-hoc rules"""
        predicate = compile_segment(request.conditions, request.combinator)
        return await self.resolver.preview(predicate, sample_size=request.sample_size)

    async def get_segment_customers(self, segment_id: str) -> List[Customer]:
        """Customers matching the segment right now"""
        predicate = self._compile(await self.get_segment(segment_id))
        audience = await self.resolver.resolve(predicate)
        return audience.members

    def _compile(self, segment: Segment) -> SegmentPredicate:
        return compile_segment(segment.conditions, segment.combinator)

    # ====================
    # Campaigns
    # ====================

    async def create_campaign(
        self, request: CampaignCreateRequest, created_by: Optional[str] = None
    ) -> Campaign:
        """
        Create a campaign and start delivering it.

        The recipient set is resolved once and frozen: one pending delivery
        log per recipient is stored together with the campaign before any
        vendor call. Dispatch runs in the background; this returns as soon as
        the campaign is stored.

        Raises:
            CampaignValidationError: empty name or message
            SegmentNotFoundError: unknown segment
            SegmentRuleError: the segment's stored rules no longer compile
        """
        name = (request.name or "").strip()
        if not name:
            raise CampaignValidationError("Campaign name is required", "name")
        if not request.message or not request.message.strip():
            raise CampaignValidationError("Campaign message is required", "message")

        segment = await self.get_segment(request.segment_id)
        audience = await self.resolver.resolve(self._compile(segment))

        campaign = Campaign(
            name=name,
            segment_id=segment.segment_id,
            message=request.message,
            created_by=created_by,
            stats=CampaignStats(audience_size=audience.size),
        )
        logs = [
            DeliveryLog(
                campaign_id=campaign.campaign_id,
                customer_id=member.customer_id,
                created_at=campaign.created_at,
                updated_at=campaign.created_at,
            )
            for member in audience.members
        ]
        campaign = await self.repository.create_campaign_with_logs(campaign, logs)
        logger.info(
            f"Created campaign {campaign.campaign_id} for segment {segment.segment_id} "
            f"with {audience.size} recipients"
        )

        if audience.members:
            self.dispatcher.submit(campaign, audience.members)

        if self.event_publisher:
            await self.event_publisher.publish_campaign_created(campaign)
        return campaign

    async def get_campaign(self, campaign_id: str) -> Campaign:
        campaign = await self.repository.get_campaign(campaign_id)
        if not campaign:
            raise CampaignNotFoundError(f"Campaign not found: {campaign_id}")
        return campaign

    async def list_campaigns(self) -> List[Campaign]:
        return await self.repository.list_campaigns()

    async def delete_campaign(self, campaign_id: str) -> None:
        """
        Delete a campaign and its delivery logs.

        Messages already handed to the vendor are not retracted; their late
        receipts match no log and are dropped by the next flush.
        """
        if not await self.repository.delete_campaign(campaign_id):
            raise CampaignNotFoundError(f"Campaign not found: {campaign_id}")
        logger.info(f"Deleted campaign {campaign_id}")

        if self.event_publisher:
            await self.event_publisher.publish_campaign_deleted(campaign_id)

    # ====================
    # Delivery
    # ====================

    async def get_campaign_stats(self, campaign_id: str) -> DeliveryStats:
        await self.get_campaign(campaign_id)
        return await self.stats.stats_for(campaign_id)

    async def list_delivery_logs(
        self, campaign_id: str, status: Optional[DeliveryStatus] = None
    ) -> DeliveryLogListResponse:
        await self.get_campaign(campaign_id)
        logs = await self.repository.list_delivery_logs(campaign_id, status)
        stats = await self.stats.stats_for(campaign_id)
        return DeliveryLogListResponse(campaign_id=campaign_id, logs=logs, stats=stats)

    async def ingest_receipt(self, receipt: DeliveryReceipt) -> ReceiptAck:
        """Queue a vendor receipt; the batch updater applies it on its next tick"""
        return await self.ingestor.on_receipt(receipt)


__all__ = ["CampaignService"]
