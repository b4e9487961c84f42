"""
Receipt Ingestor

Inbound boundary for vendor delivery receipts. Receipts are only queued
here; the batch updater is the single writer of delivery status.
"""

import logging

from .batch_updater import DeliveryBatchUpdater
from .models import DeliveryReceipt, ReceiptAck, ReceiptQueueEntry

logger = logging.getLogger(__name__)


class ReceiptIngestor:
    """Accepts receipts from any task and hands them to the batch updater"""

    def __init__(self, batch_updater: DeliveryBatchUpdater):
        self.batch_updater = batch_updater

    async def on_receipt(self, receipt: DeliveryReceipt) -> ReceiptAck:
        """
        Queue a receipt for the next flush.

        Raises:
            ReceiptQueueFullError: the queue is at capacity; the sender should redeliver
        """
        entry = ReceiptQueueEntry.from_receipt(receipt)
        self.batch_updater.enqueue(entry)

        logger.debug(
            f"Queued {receipt.status.value} receipt {receipt.message_id} "
            f"for campaign {receipt.campaign_id} customer {receipt.customer_id}"
        )
        return ReceiptAck(
            campaign_id=receipt.campaign_id,
            customer_id=receipt.customer_id,
            message_id=receipt.message_id,
            pending=self.batch_updater.pending,
        )

    async def __call__(self, receipt: DeliveryReceipt) -> ReceiptAck:
        return await self.on_receipt(receipt)
