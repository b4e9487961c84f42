"""
Campaign Service Factory

Factory for creating campaign service instances with proper dependency injection.
"""

import logging
from typing import Optional, Union

from core.config_manager import ConfigManager
from core.nats_client import NATSEventBus

from .audience_resolver import AudienceResolver
from .batch_updater import DeliveryBatchUpdater, FlushResult
from .campaign_repository import CampaignRepository
from .campaign_service import CampaignService
from .delivery_dispatcher import DeliveryDispatcher
from .events.publishers import CampaignEventPublisher
from .memory_repository import MemoryCampaignStore
from .protocols import VendorChannelProtocol
from .receipt_ingestor import ReceiptIngestor
from .stats_aggregator import StatsAggregator
from .vendor_simulator import VendorSimulator, WebhookReceiptCallback

logger = logging.getLogger(__name__)

Repository = Union[CampaignRepository, MemoryCampaignStore]


class CampaignServiceFactory:
    """Factory for creating campaign service components"""

    def __init__(
        self,
        config: Optional[ConfigManager] = None,
        repository: Optional[Repository] = None,
        vendor: Optional[VendorChannelProtocol] = None,
        start_background: bool = True,
    ):
        self.config = config or ConfigManager("campaign_service")
        self.start_background = start_background
        self._repository: Optional[Repository] = repository
        self._vendor: Optional[VendorChannelProtocol] = vendor
        self._service: Optional[CampaignService] = None
        self._nats_client: Optional[NATSEventBus] = None
        self._event_publisher: Optional[CampaignEventPublisher] = None
        self._batch_updater: Optional[DeliveryBatchUpdater] = None
        self._ingestor: Optional[ReceiptIngestor] = None
        self._dispatcher: Optional[DeliveryDispatcher] = None
        self._stats: Optional[StatsAggregator] = None
        self._webhook: Optional[WebhookReceiptCallback] = None

    async def initialize(self) -> None:
        """Initialize all components"""
        logger.info("Initializing Campaign Service components...")
        delivery = self.config.delivery
        infra = self.config.infrastructure

        # Initialize repository
        if self._repository is None:
            if delivery.store == "postgres":
                self._repository = CampaignRepository(self.config, auto_migrate=delivery.db_auto_migrate)
            else:
                self._repository = MemoryCampaignStore()
        await self._repository.initialize()

        # Initialize NATS client (optional)
        if infra.nats_enabled:
            try:
                self._nats_client = NATSEventBus(
                    service_name=self.config.service_name,
                    url=infra.resolved_nats_url,
                )
                await self._nats_client.connect()
                logger.info("NATS client connected")
            except Exception as e:
                logger.warning(f"NATS client initialization failed: {e}")
                self._nats_client = None
        self._event_publisher = CampaignEventPublisher(self._nats_client)

        # Receipt path: vendor -> ingestor -> batch updater -> store
        self._stats = StatsAggregator(self._repository)
        self._batch_updater = DeliveryBatchUpdater(
            self._repository,
            flush_interval=delivery.flush_interval_seconds,
            max_pending=delivery.max_pending_receipts,
            on_flush=self._after_flush,
        )
        self._ingestor = ReceiptIngestor(self._batch_updater)

        if self._vendor is None:
            self._vendor = VendorSimulator(
                success_rate=delivery.vendor_success_rate,
                min_delay=delivery.vendor_min_delay_seconds,
                max_delay=delivery.vendor_max_delay_seconds,
            )
        if delivery.vendor_receipt_webhook_url:
            self._webhook = WebhookReceiptCallback(delivery.vendor_receipt_webhook_url)
            self._vendor.register_receipt_callback(self._webhook)
            logger.info(f"Vendor receipts delivered via webhook {delivery.vendor_receipt_webhook_url}")
        else:
            self._vendor.register_receipt_callback(self._ingestor)

        # Send path
        self._dispatcher = DeliveryDispatcher(
            self._vendor,
            max_concurrent_sends=delivery.max_concurrent_sends,
            on_complete=self._event_publisher.publish_delivery_dispatched,
        )

        # Initialize main service
        self._service = CampaignService(
            repository=self._repository,
            customer_repository=self._repository,
            resolver=AudienceResolver(
                self._repository, preview_sample_size=delivery.preview_sample_size
            ),
            dispatcher=self._dispatcher,
            stats=self._stats,
            ingestor=self._ingestor,
            event_publisher=self._event_publisher,
        )

        if self.start_background:
            self._batch_updater.start()

        logger.info("Campaign Service components initialized")

    async def _after_flush(self, result: FlushResult) -> None:
        reconciled = await self._stats.reconcile_flush(result)
        if result.applied:
            await self._event_publisher.publish_delivery_updated(
                result.campaign_ids, result.applied, result.skipped, reconciled
            )

    async def close(self) -> None:
        """Close all components"""
        logger.info("Closing Campaign Service components...")

        if self._dispatcher:
            await self._dispatcher.shutdown(timeout=10.0)

        close_vendor = getattr(self._vendor, "close", None)
        if close_vendor is not None:
            await close_vendor()

        if self._webhook:
            await self._webhook.close()

        if self._batch_updater:
            await self._batch_updater.stop()

        if self._nats_client:
            await self._nats_client.close()

        if self._repository:
            await self._repository.close()

        logger.info("Campaign Service components closed")

    @property
    def repository(self) -> Repository:
        """Get campaign repository"""
        if not self._repository:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._repository

    @property
    def service(self) -> CampaignService:
        """Get campaign service"""
        if not self._service:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._service

    @property
    def batch_updater(self) -> DeliveryBatchUpdater:
        """Get receipt batch updater"""
        if not self._batch_updater:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._batch_updater

    @property
    def dispatcher(self) -> DeliveryDispatcher:
        """Get delivery dispatcher"""
        if not self._dispatcher:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._dispatcher

    @property
    def vendor(self) -> VendorChannelProtocol:
        """Get vendor channel"""
        if not self._vendor:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._vendor

    @property
    def nats_client(self) -> Optional[NATSEventBus]:
        """Get NATS client"""
        return self._nats_client

    @property
    def event_publisher(self) -> Optional[CampaignEventPublisher]:
        """Get event publisher"""
        return self._event_publisher


__all__ = ["CampaignServiceFactory"]
