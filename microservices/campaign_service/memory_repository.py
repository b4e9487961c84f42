"""
In-Memory Campaign Store

Default storage backend for local runs and tests. Implements both the
customer and the campaign repository protocols. Every mutation happens
under one asyncio lock, so a campaign and its delivery logs appear
together and a bulk receipt write is applied as a unit.
"""

import asyncio
import logging
from collections import Counter
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, List, Optional, Sequence, Tuple

from .models import (
    Campaign,
    CampaignStats,
    Customer,
    DeliveryLog,
    DeliveryLogWriteResult,
    DeliveryStatus,
    Order,
    ReceiptQueueEntry,
    Segment,
)

logger = logging.getLogger(__name__)


class MemoryCampaignStore:
    """Dict-backed customers, segments, campaigns and delivery logs"""

    def __init__(self):
        self.customers: Dict[str, Customer] = {}
        self.segments: Dict[str, Segment] = {}
        self.campaigns: Dict[str, Campaign] = {}
        self.delivery_logs: Dict[str, DeliveryLog] = {}
        self.orders: Dict[str, Order] = {}
        # (campaign_id, customer_id) -> log_id
        self._log_index: Dict[Tuple[str, str], str] = {}
        self._lock = asyncio.Lock()
        self.bulk_writes = 0

    async def initialize(self) -> None:
        logger.info("Using in-memory campaign store")

    async def close(self) -> None:
        pass

    async def health_check(self) -> bool:
        return True

    # ====================
    # Customers
    # ====================

    async def save_customer(self, customer: Customer) -> Customer:
        async with self._lock:
            self.customers[customer.customer_id] = customer.model_copy(deep=True)
        return customer

    async def save_customers(self, customers: Sequence[Customer]) -> List[Customer]:
        async with self._lock:
            emails = [c.email for c in customers]
            taken = {c.email for c in self.customers.values()}
            if len(set(emails)) != len(emails) or taken.intersection(emails):
                raise ValueError("Duplicate customer email")
            for customer in customers:
                self.customers[customer.customer_id] = customer.model_copy(deep=True)
        return list(customers)

    async def delete_customer(self, customer_id: str) -> bool:
        async with self._lock:
            if self.customers.pop(customer_id, None) is None:
                return False
            for order_id in [i for i, o in self.orders.items() if o.customer_id == customer_id]:
                del self.orders[order_id]
            return True

    async def get_customer(self, customer_id: str) -> Optional[Customer]:
        customer = self.customers.get(customer_id)
        return customer.model_copy(deep=True) if customer else None

    async def get_customer_by_email(self, email: str) -> Optional[Customer]:
        email = email.strip().lower()
        for customer in self.customers.values():
            if customer.email == email:
                return customer.model_copy(deep=True)
        return None

    async def list_customers(self) -> List[Customer]:
        results = sorted(self.customers.values(), key=lambda c: c.created_at, reverse=True)
        return [c.model_copy(deep=True) for c in results]

    async def iter_customers(self, batch_size: int = 500) -> AsyncIterator[List[Customer]]:
        snapshot = list(self.customers.values())
        for start in range(0, len(snapshot), batch_size):
            yield [c.model_copy(deep=True) for c in snapshot[start:start + batch_size]]

    # ====================
    # Orders
    # ====================

    async def record_order(self, order: Order) -> Optional[Customer]:
        async with self._lock:
            customer = self.customers.get(order.customer_id)
            if customer is None:
                return None
            customer.total_spending += order.order_amount
            if customer.last_visit is None or customer.last_visit < order.order_date:
                customer.last_visit = order.order_date
            self.orders[order.order_id] = order.model_copy(deep=True)
            return customer.model_copy(deep=True)

    async def list_orders(self, customer_id: str) -> List[Order]:
        results = [o for o in self.orders.values() if o.customer_id == customer_id]
        results.sort(key=lambda o: o.order_date, reverse=True)
        return [o.model_copy(deep=True) for o in results]

    # ====================
    # Segments
    # ====================

    async def save_segment(self, segment: Segment) -> Segment:
        async with self._lock:
            self.segments[segment.segment_id] = segment.model_copy(deep=True)
        return segment

    async def get_segment(self, segment_id: str) -> Optional[Segment]:
        segment = self.segments.get(segment_id)
        return segment.model_copy(deep=True) if segment else None

    async def list_segments(self) -> List[Segment]:
        results = sorted(self.segments.values(), key=lambda s: s.created_at, reverse=True)
        return [s.model_copy(deep=True) for s in results]

    async def delete_segment(self, segment_id: str) -> bool:
        async with self._lock:
            return self.segments.pop(segment_id, None) is not None

    # ====================
    # Campaigns
    # ====================

    async def create_campaign_with_logs(
        self, campaign: Campaign, logs: Sequence[DeliveryLog]
    ) -> Campaign:
        async with self._lock:
            keys = [(log.campaign_id, log.customer_id) for log in logs]
            if len(set(keys)) != len(keys):
                raise ValueError("Duplicate delivery log for the same customer")
            self.campaigns[campaign.campaign_id] = campaign.model_copy(deep=True)
            for log in logs:
                self.delivery_logs[log.log_id] = log.model_copy(deep=True)
                self._log_index[(log.campaign_id, log.customer_id)] = log.log_id
        return campaign

    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        campaign = self.campaigns.get(campaign_id)
        return campaign.model_copy(deep=True) if campaign else None

    async def list_campaigns(self) -> List[Campaign]:
        results = sorted(self.campaigns.values(), key=lambda c: c.created_at, reverse=True)
        return [c.model_copy(deep=True) for c in results]

    async def update_campaign_stats(
        self, campaign_id: str, stats: CampaignStats
    ) -> Optional[Campaign]:
        async with self._lock:
            campaign = self.campaigns.get(campaign_id)
            if campaign is None:
                return None
            campaign.stats = stats.model_copy()
            campaign.updated_at = datetime.now(timezone.utc)
            return campaign.model_copy(deep=True)

    async def delete_campaign(self, campaign_id: str) -> bool:
        async with self._lock:
            if self.campaigns.pop(campaign_id, None) is None:
                return False
            for log_id in [i for i, log in self.delivery_logs.items() if log.campaign_id == campaign_id]:
                log = self.delivery_logs.pop(log_id)
                self._log_index.pop((log.campaign_id, log.customer_id), None)
            return True

    # ====================
    # Delivery logs
    # ====================

    async def list_delivery_logs(
        self, campaign_id: str, status: Optional[DeliveryStatus] = None
    ) -> List[DeliveryLog]:
        results = [
            log for log in self.delivery_logs.values()
            if log.campaign_id == campaign_id and (status is None or log.status == status)
        ]
        results.sort(key=lambda log: log.created_at, reverse=True)
        return [log.model_copy(deep=True) for log in results]

    async def bulk_apply_receipts(
        self, entries: Sequence[ReceiptQueueEntry]
    ) -> DeliveryLogWriteResult:
        applied = 0
        touched = set()
        async with self._lock:
            self.bulk_writes += 1
            now = datetime.now(timezone.utc)
            for entry in entries:
                log_id = entry.log_id or self._log_index.get((entry.campaign_id, entry.customer_id))
                log = self.delivery_logs.get(log_id) if log_id else None
                if log is None or log.status != DeliveryStatus.PENDING:
                    continue
                if log.campaign_id != entry.campaign_id or log.customer_id != entry.customer_id:
                    continue
                log.status = entry.status
                log.vendor_message_id = entry.vendor_response.message_id
                log.vendor_timestamp = entry.vendor_response.timestamp
                log.error_message = entry.vendor_response.error_message
                log.completed_at = now
                log.updated_at = now
                applied += 1
                touched.add(log.campaign_id)

        return DeliveryLogWriteResult(
            requested=len(entries),
            applied=applied,
            campaign_ids=tuple(sorted(touched)),
        )

    async def count_by_status(self, campaign_id: str) -> Dict[DeliveryStatus, int]:
        return dict(Counter(
            log.status for log in self.delivery_logs.values() if log.campaign_id == campaign_id
        ))
