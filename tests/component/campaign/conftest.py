"""
Component Test Fixtures for Campaign Service

Wires real components against the in-memory store and a deterministic
fake vendor channel. Nothing here touches the network.
"""

import os
import sys
from typing import Callable, Dict, List, Optional, Set, Tuple

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from microservices.campaign_service.audience_resolver import AudienceResolver
from microservices.campaign_service.batch_updater import DeliveryBatchUpdater
from microservices.campaign_service.campaign_service import CampaignService
from microservices.campaign_service.delivery_dispatcher import DeliveryDispatcher
from microservices.campaign_service.memory_repository import MemoryCampaignStore
from microservices.campaign_service.models import (
    Customer,
    DeliveryReceipt,
    DeliveryStatus,
    VendorAck,
)
from microservices.campaign_service.protocols import MessageDeliveryError, ReceiptCallback
from microservices.campaign_service.receipt_ingestor import ReceiptIngestor
from microservices.campaign_service.stats_aggregator import StatsAggregator
from tests.contracts.campaign.data_contract import CampaignTestDataFactory


# ====================
# Mock Vendor
# ====================


class FakeVendorChannel:
    """
    Vendor channel with scripted outcomes.

    Sends are recorded and acknowledged; receipts are held back until
    emit_all() is called so tests control exactly when they arrive.
    """

    def __init__(
        self,
        outcome: Optional[Callable[[Customer], DeliveryStatus]] = None,
        raise_for: Optional[Set[str]] = None,
    ):
        self.outcome = outcome or (lambda customer: DeliveryStatus.SENT)
        self.raise_for = raise_for or set()
        self.sent: List[Tuple[str, str, str]] = []
        self.held: List[DeliveryReceipt] = []
        self._callback: Optional[ReceiptCallback] = None

    def register_receipt_callback(self, callback: ReceiptCallback) -> None:
        self._callback = callback

    async def send(self, campaign_id: str, recipient: Customer, message: str) -> VendorAck:
        if recipient.customer_id in self.raise_for:
            raise MessageDeliveryError(f"Vendor unreachable for {recipient.customer_id}")

        message_id = f"msg_{len(self.sent) + 1:06d}"
        self.sent.append((campaign_id, recipient.customer_id, message))
        status = self.outcome(recipient)
        self.held.append(
            DeliveryReceipt(
                message_id=message_id,
                campaign_id=campaign_id,
                customer_id=recipient.customer_id,
                status=status,
                error_message=None if status == DeliveryStatus.SENT else "Simulated delivery failure",
            )
        )
        return VendorAck(success=True, message_id=message_id)

    async def emit_all(self) -> int:
        """Deliver every held receipt through the registered callback"""
        receipts, self.held = self.held, []
        for receipt in receipts:
            await self._callback(receipt)
        return len(receipts)

    def messages_for(self, campaign_id: str) -> Dict[str, str]:
        return {customer: msg for cid, customer, msg in self.sent if cid == campaign_id}


# ====================
# Fixtures
# ====================


@pytest.fixture
def factory():
    """Test data factory"""
    return CampaignTestDataFactory()


@pytest.fixture
def store():
    """In-memory campaign store"""
    return MemoryCampaignStore()


@pytest.fixture
def make_vendor():
    """Builder for fake vendors with scripted outcomes"""
    return FakeVendorChannel


@pytest.fixture
def vendor():
    """Vendor that accepts everything and reports SENT"""
    return FakeVendorChannel()


@pytest.fixture
def batch_updater(store):
    """Batch updater that is flushed manually by tests"""
    return DeliveryBatchUpdater(store, flush_interval=0.05, max_pending=1000)


@pytest.fixture
def ingestor(batch_updater):
    return ReceiptIngestor(batch_updater)


@pytest.fixture
def stats(store):
    return StatsAggregator(store)


@pytest.fixture
def dispatcher(vendor, ingestor):
    vendor.register_receipt_callback(ingestor)
    return DeliveryDispatcher(vendor, max_concurrent_sends=10)


@pytest.fixture
def campaign_service(store, dispatcher, stats, ingestor):
    """CampaignService over the in-memory store and fake vendor"""
    return CampaignService(
        repository=store,
        customer_repository=store,
        resolver=AudienceResolver(store, preview_sample_size=10, batch_size=2),
        dispatcher=dispatcher,
        stats=stats,
        ingestor=ingestor,
    )


@pytest.fixture
def seed(store):
    """Async helper that stores customers and returns them"""

    async def _seed(customers: List[Customer]) -> List[Customer]:
        for customer in customers:
            await store.save_customer(customer)
        return customers

    return _seed
