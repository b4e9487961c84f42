"""
Delivery Dispatcher

Fans a campaign out to its recipients through the vendor channel. Every
send is independent: one recipient failing never stops the others. The
job runs as a tracked background task so callers can await it.
"""

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence

from .models import Campaign, Customer, DispatchSummary
from .protocols import VendorChannelProtocol

logger = logging.getLogger(__name__)

DispatchHook = Callable[[DispatchSummary], Awaitable[Any]]

NAME_PLACEHOLDER = re.compile(r"\{name\}", re.IGNORECASE)


def personalize_message(template: str, name: Optional[str]) -> str:
    """Replace every {name} placeholder (any case) with the recipient's name"""
    # Callable replacement: names may contain backslashes
    return NAME_PLACEHOLDER.sub(lambda _: name or "", template)


class DeliveryDispatcher:
    """Concurrent, fire-and-forget campaign fan-out"""

    def __init__(
        self,
        vendor: VendorChannelProtocol,
        max_concurrent_sends: int = 100,
        on_complete: Optional[DispatchHook] = None,
    ):
        if max_concurrent_sends < 1:
            raise ValueError("max_concurrent_sends must be at least 1")
        self.vendor = vendor
        self.max_concurrent_sends = max_concurrent_sends
        self.on_complete = on_complete
        self._jobs: Dict[str, asyncio.Task] = {}

    @property
    def active_jobs(self) -> int:
        return sum(1 for t in self._jobs.values() if not t.done())

    def submit(
        self,
        campaign: Campaign,
        recipients: Sequence[Customer],
        template: Optional[str] = None,
    ) -> asyncio.Task:
        """Start the fan-out in the background and return its task"""
        task = asyncio.create_task(
            self._run_job(campaign, recipients, template),
            name=f"dispatch:{campaign.campaign_id}",
        )
        self._jobs[campaign.campaign_id] = task
        task.add_done_callback(lambda t, cid=campaign.campaign_id: self._job_done(cid, t))
        return task

    async def _run_job(
        self,
        campaign: Campaign,
        recipients: Sequence[Customer],
        template: Optional[str],
    ) -> DispatchSummary:
        summary = await self.dispatch(campaign, recipients, template)
        if self.on_complete is not None:
            try:
                await self.on_complete(summary)
            except Exception as e:
                logger.error(f"Dispatch completion hook failed for {campaign.campaign_id}: {e}")
        return summary

    def _job_done(self, campaign_id: str, task: asyncio.Task) -> None:
        if self._jobs.get(campaign_id) is task:
            del self._jobs[campaign_id]
        if task.cancelled():
            logger.warning(f"Dispatch for campaign {campaign_id} was cancelled")
        elif task.exception() is not None:
            logger.error(
                f"Dispatch for campaign {campaign_id} failed: {task.exception()}",
                exc_info=task.exception(),
            )

    async def dispatch(
        self,
        campaign: Campaign,
        recipients: Sequence[Customer],
        template: Optional[str] = None,
    ) -> DispatchSummary:
        """Send the personalised message to every recipient"""
        template = campaign.message if template is None else template
        summary = DispatchSummary(campaign_id=campaign.campaign_id, attempted=len(recipients))
        if not recipients:
            return summary

        semaphore = asyncio.Semaphore(self.max_concurrent_sends)

        async def send_one(recipient: Customer) -> None:
            message = personalize_message(template, recipient.name)
            async with semaphore:
                try:
                    ack = await self.vendor.send(campaign.campaign_id, recipient, message)
                except Exception as e:
                    # Log stays pending; no receipt will arrive for it
                    logger.error(
                        f"Send failed for campaign {campaign.campaign_id} "
                        f"customer {recipient.customer_id}: {e}"
                    )
                    summary.errored += 1
                    return

            if ack.success:
                summary.accepted += 1
            else:
                summary.rejected += 1

        await asyncio.gather(*[send_one(r) for r in recipients])

        logger.info(
            f"Dispatched campaign {campaign.campaign_id}: {summary.attempted} attempted, "
            f"{summary.accepted} accepted, {summary.rejected} rejected, {summary.errored} errored"
        )
        return summary

    async def wait_all(self) -> None:
        """Wait until every submitted job has finished"""
        while True:
            pending = [t for t in self._jobs.values() if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Wait for outstanding jobs, cancelling whatever is left after timeout"""
        if not self._jobs:
            return
        jobs = list(self._jobs.values())
        done, pending = await asyncio.wait(jobs, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._jobs.clear()


__all__ = ["DeliveryDispatcher", "NAME_PLACEHOLDER", "personalize_message"]
