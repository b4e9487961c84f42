"""
Stats Aggregator

Derives per-campaign delivery counts from the delivery logs. Counts are
always recomputed from the logs; there are no separately incremented
counters that could drift.
"""

import logging
from typing import Dict

from .batch_updater import FlushResult
from .models import CampaignStats, DeliveryStats, DeliveryStatus
from .protocols import CampaignRepositoryProtocol

logger = logging.getLogger(__name__)


class StatsAggregator:
    """Read path over delivery logs"""

    def __init__(self, repository: CampaignRepositoryProtocol):
        self.repository = repository

    async def stats_for(self, campaign_id: str) -> DeliveryStats:
        """Group the campaign's logs by status; all zero when it has none"""
        counts: Dict[DeliveryStatus, int] = await self.repository.count_by_status(campaign_id)
        sent = counts.get(DeliveryStatus.SENT, 0)
        failed = counts.get(DeliveryStatus.FAILED, 0)
        pending = counts.get(DeliveryStatus.PENDING, 0)
        return DeliveryStats(
            campaign_id=campaign_id,
            total=sent + failed + pending,
            sent=sent,
            failed=failed,
            pending=pending,
        )

    async def reconcile(self, campaign_id: str) -> DeliveryStats:
        """Refresh the campaign's stats cache from its logs"""
        stats = await self.stats_for(campaign_id)
        campaign = await self.repository.get_campaign(campaign_id)
        if campaign is None:
            # Deleted while receipts were in flight
            return stats

        await self.repository.update_campaign_stats(
            campaign_id,
            CampaignStats(
                sent=stats.sent,
                failed=stats.failed,
                audience_size=campaign.stats.audience_size,
            ),
        )
        return stats

    async def reconcile_flush(self, result: FlushResult) -> Dict[str, DeliveryStats]:
        """Reconcile every campaign touched by a flush"""
        reconciled: Dict[str, DeliveryStats] = {}
        for campaign_id in result.campaign_ids:
            reconciled[campaign_id] = await self.reconcile(campaign_id)
        logger.debug(f"Reconciled stats for {len(reconciled)} campaigns")
        return reconciled
