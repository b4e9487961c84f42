"""
Audience Resolver

Evaluates a compiled segment predicate against the customer population.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .models import AudiencePreview, Customer
from .protocols import CustomerRepositoryProtocol
from .rule_compiler import SegmentPredicate

logger = logging.getLogger(__name__)


@dataclass
class Audience:
    """Materialized set of matching customers"""
    size: int = 0
    members: List[Customer] = field(default_factory=list)


class AudienceResolver:
    """Resolves segment predicates against customers streamed in batches"""

    def __init__(
        self,
        customer_repository: CustomerRepositoryProtocol,
        preview_sample_size: int = 10,
        batch_size: int = 500,
    ):
        self.customer_repository = customer_repository
        self.preview_sample_size = preview_sample_size
        self.batch_size = batch_size

    async def resolve(self, predicate: SegmentPredicate) -> Audience:
        """Every customer currently matching the predicate"""
        members: List[Customer] = []
        async for batch in self.customer_repository.iter_customers(self.batch_size):
            members.extend(c for c in batch if predicate(c))

        logger.info(f"Resolved audience of {len(members)} for {predicate!r}")
        return Audience(size=len(members), members=members)

    async def preview(
        self, predicate: SegmentPredicate, sample_size: Optional[int] = None
    ) -> AudiencePreview:
        """Count every match but keep only the first sample_size customers"""
        limit = self.preview_sample_size if sample_size is None else sample_size
        total = 0
        sample: List[Customer] = []
        async for batch in self.customer_repository.iter_customers(self.batch_size):
            for customer in batch:
                if not predicate(customer):
                    continue
                total += 1
                if len(sample) < limit:
                    sample.append(customer)

        return AudiencePreview(audience_size=total, sample_customers=sample)
