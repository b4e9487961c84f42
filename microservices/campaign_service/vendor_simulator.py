"""
Vendor Simulator

Stand-in for an external messaging vendor. Every send is accepted
immediately; the final outcome arrives later through the registered
receipt callback, after a random delay, like a real vendor webhook.
"""

import asyncio
import logging
import random
import string
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .models import Customer, DeliveryReceipt, DeliveryStatus, VendorAck
from .protocols import MessageDeliveryError, ReceiptCallback

logger = logging.getLogger(__name__)

SIMULATED_FAILURE_MESSAGE = "Simulated delivery failure"
_ID_ALPHABET = string.ascii_lowercase + string.digits


class VendorSimulator:
    """Probabilistically failing vendor channel with delayed receipts"""

    def __init__(
        self,
        success_rate: float = 0.9,
        min_delay: float = 0.5,
        max_delay: float = 5.5,
        rng: Optional[random.Random] = None,
        receipt_callback: Optional[ReceiptCallback] = None,
    ):
        if not 0.0 <= success_rate <= 1.0:
            raise ValueError("success_rate must be between 0 and 1")
        if min_delay < 0 or max_delay < min_delay:
            raise ValueError("delays must satisfy 0 <= min_delay <= max_delay")

        self.success_rate = success_rate
        self.min_delay = min_delay
        self.max_delay = max_delay
        self._rng = rng or random.Random()
        self._callback = receipt_callback
        self._receipt_tasks: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def pending_receipts(self) -> int:
        return len(self._receipt_tasks)

    def register_receipt_callback(self, callback: ReceiptCallback) -> None:
        self._callback = callback

    def _message_id(self) -> str:
        suffix = "".join(self._rng.choice(_ID_ALPHABET) for _ in range(9))
        return f"msg_{int(time.time() * 1000)}_{suffix}"

    async def send(self, campaign_id: str, recipient: Customer, message: str) -> VendorAck:
        """Accept the message and schedule its receipt"""
        if self._closed:
            raise MessageDeliveryError("Vendor channel is closed")
        if self._callback is None:
            raise MessageDeliveryError("No receipt callback registered")

        message_id = self._message_id()
        delivered = self._rng.random() < self.success_rate
        delay = self._rng.uniform(self.min_delay, self.max_delay)

        receipt = DeliveryReceipt(
            message_id=message_id,
            campaign_id=campaign_id,
            customer_id=recipient.customer_id,
            status=DeliveryStatus.SENT if delivered else DeliveryStatus.FAILED,
            error_message=None if delivered else SIMULATED_FAILURE_MESSAGE,
        )

        task = asyncio.create_task(self._emit_receipt(receipt, delay))
        self._receipt_tasks.add(task)
        task.add_done_callback(self._receipt_tasks.discard)

        logger.debug(f"Vendor accepted {message_id} for {recipient.customer_id}")
        return VendorAck(success=True, message_id=message_id)

    async def _emit_receipt(self, receipt: DeliveryReceipt, delay: float) -> None:
        await asyncio.sleep(delay)
        receipt = receipt.model_copy(update={"timestamp": datetime.now(timezone.utc)})
        try:
            await self._callback(receipt)
        except Exception as e:
            logger.error(
                f"Receipt callback failed for {receipt.message_id} "
                f"(campaign {receipt.campaign_id}, customer {receipt.customer_id}): {e}"
            )

    async def wait_idle(self) -> None:
        """Wait until every scheduled receipt has been delivered"""
        while self._receipt_tasks:
            await asyncio.gather(*list(self._receipt_tasks), return_exceptions=True)

    async def close(self) -> None:
        """Stop accepting sends and cancel receipts still in flight"""
        self._closed = True
        tasks = list(self._receipt_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Vendor simulator cancelled {len(tasks)} in-flight receipts")


class WebhookReceiptCallback:
    """
    Receipt callback that POSTs to the delivery-receipt HTTP endpoint.

    Transport errors and 5xx responses (including 503 from a full receipt
    queue) are retried; the receiver treats redelivery as a no-op.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        max_attempts: int = 3,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.max_attempts = max_attempts
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def __call__(self, receipt: DeliveryReceipt) -> Dict[str, Any]:
        poster = retry(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
            retry=retry_if_exception_type((httpx.TransportError, httpx.HTTPStatusError)),
            reraise=True,
        )(self._post)
        return await poster(receipt)

    async def _post(self, receipt: DeliveryReceipt) -> Dict[str, Any]:
        response = await self._client.post(self.url, json=receipt.model_dump(mode="json"))
        if response.status_code >= 500:
            response.raise_for_status()
        if response.status_code >= 400:
            # Rejected receipts are not retried
            logger.error(f"Receipt {receipt.message_id} rejected: {response.status_code} {response.text}")
            return {}
        return response.json()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
