"""
Campaign Service Data Repository

Data access layer - PostgreSQL (Async, asyncpg)
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

from core.config_manager import ConfigManager
from core.postgres_client import PostgresClientWrapper
from .models import (
    Campaign,
    CampaignStats,
    Combinator,
    Condition,
    Customer,
    DeliveryLog,
    DeliveryLogWriteResult,
    DeliveryStatus,
    Order,
    ReceiptQueueEntry,
    Segment,
)

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


class CampaignRepository:
    """Campaign service data repository - PostgreSQL (Async)"""

    def __init__(
        self,
        config: Optional[ConfigManager] = None,
        db: Optional[PostgresClientWrapper] = None,
        auto_migrate: bool = False,
    ):
        if config is None:
            config = ConfigManager("campaign_service")

        self.db = db or PostgresClientWrapper(service_name="campaign_service", config=config)
        self.auto_migrate = auto_migrate
        self.schema = "campaign"

        # Table names
        self.customers_table = "customers"
        self.orders_table = "orders"
        self.segments_table = "segments"
        self.campaigns_table = "campaigns"
        self.logs_table = "delivery_logs"

    async def initialize(self):
        """Initialize database connection"""
        await self.db.connect()
        if self.auto_migrate:
            await self.apply_migrations()
        logger.info("Campaign repository initialized with PostgreSQL")

    async def apply_migrations(self) -> List[str]:
        """Run every bundled migration in file-name order (all are idempotent)"""
        applied = []
        for path in sorted(MIGRATIONS_DIR.glob("*.sql")):
            await self.db.execute(path.read_text())
            applied.append(path.name)
            logger.info(f"Applied migration {path.name}")
        return applied

    async def close(self):
        """Close database connection"""
        await self.db.close()
        logger.info("Campaign repository database connection closed")

    async def health_check(self) -> bool:
        """Check repository health"""
        return await self.db.health_check()

    # ====================
    # Customers
    # ====================

    async def save_customer(self, customer: Customer) -> Customer:
        """Insert or update a customer"""
        query = f'''
            INSERT INTO {self.schema}.{self.customers_table} (
                customer_id, name, email, phone, total_spending, last_visit, created_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7)
            ON CONFLICT (customer_id) DO UPDATE SET
                name = EXCLUDED.name,
                email = EXCLUDED.email,
                phone = EXCLUDED.phone,
                total_spending = EXCLUDED.total_spending,
                last_visit = EXCLUDED.last_visit
            RETURNING *
        '''
        params = [
            customer.customer_id,
            customer.name,
            customer.email,
            customer.phone,
            customer.total_spending,
            customer.last_visit,
            customer.created_at,
        ]
        try:
            row = await self.db.query_row(query, params)
            return self._row_to_customer(row) if row else customer
        except Exception as e:
            logger.error(f"Error saving customer: {e}", exc_info=True)
            raise

    async def save_customers(self, customers: Sequence[Customer]) -> List[Customer]:
        """Insert new customers in one statement; a duplicate email rejects them all"""
        if not customers:
            return []
        query = f'''
            INSERT INTO {self.schema}.{self.customers_table} (
                customer_id, name, email, phone, total_spending, last_visit, created_at
            )
            SELECT * FROM unnest(
                $1::text[], $2::text[], $3::text[], $4::text[],
                $5::float8[], $6::timestamptz[], $7::timestamptz[]
            )
            RETURNING *
        '''
        params = [
            [c.customer_id for c in customers],
            [c.name for c in customers],
            [c.email for c in customers],
            [c.phone for c in customers],
            [c.total_spending for c in customers],
            [c.last_visit for c in customers],
            [c.created_at for c in customers],
        ]
        try:
            rows = await self.db.query(query, params)
            return [self._row_to_customer(r) for r in rows]
        except Exception as e:
            logger.error(f"Error bulk saving {len(customers)} customers: {e}", exc_info=True)
            raise

    async def delete_customer(self, customer_id: str) -> bool:
        """Delete customer; orders go with it (ON DELETE CASCADE)"""
        rows = await self.db.query(
            f'''
                DELETE FROM {self.schema}.{self.customers_table}
                WHERE customer_id = $1
                RETURNING customer_id
            ''',
            [customer_id],
        )
        return len(rows) > 0

    async def get_customer(self, customer_id: str) -> Optional[Customer]:
        row = await self.db.query_row(
            f"SELECT * FROM {self.schema}.{self.customers_table} WHERE customer_id = $1",
            [customer_id],
        )
        return self._row_to_customer(row) if row else None

    async def get_customer_by_email(self, email: str) -> Optional[Customer]:
        row = await self.db.query_row(
            f"SELECT * FROM {self.schema}.{self.customers_table} WHERE email = $1",
            [email.strip().lower()],
        )
        return self._row_to_customer(row) if row else None

    async def list_customers(self) -> List[Customer]:
        rows = await self.db.query(
            f"SELECT * FROM {self.schema}.{self.customers_table} ORDER BY created_at DESC"
        )
        return [self._row_to_customer(r) for r in rows]

    async def iter_customers(self, batch_size: int = 500) -> AsyncIterator[List[Customer]]:
        """Keyset-paginated scan over all customers"""
        query = f'''
            SELECT * FROM {self.schema}.{self.customers_table}
            WHERE customer_id > $1
            ORDER BY customer_id
            LIMIT $2
        '''
        last_id = ""
        while True:
            rows = await self.db.query(query, [last_id, batch_size])
            if not rows:
                return
            yield [self._row_to_customer(r) for r in rows]
            if len(rows) < batch_size:
                return
            last_id = rows[-1]["customer_id"]

    # ====================
    # Orders
    # ====================

    async def record_order(self, order: Order) -> Optional[Customer]:
        """Update the customer and insert the order in one transaction"""
        customer_query = f'''
            UPDATE {self.schema}.{self.customers_table}
            SET total_spending = total_spending + $2,
                last_visit = GREATEST(COALESCE(last_visit, $3), $3)
            WHERE customer_id = $1
            RETURNING *
        '''
        order_query = f'''
            INSERT INTO {self.schema}.{self.orders_table} (
                order_id, customer_id, order_amount, order_date, created_at
            ) VALUES ($1, $2, $3, $4, $5)
        '''
        try:
            async with self.db.transaction() as conn:
                row = await conn.fetchrow(
                    customer_query, order.customer_id, order.order_amount, order.order_date
                )
                if row is None:
                    return None
                await conn.execute(
                    order_query,
                    order.order_id,
                    order.customer_id,
                    order.order_amount,
                    order.order_date,
                    order.created_at,
                )
            return self._row_to_customer(dict(row))
        except Exception as e:
            logger.error(f"Error recording order {order.order_id}: {e}", exc_info=True)
            raise

    async def list_orders(self, customer_id: str) -> List[Order]:
        rows = await self.db.query(
            f'''
                SELECT * FROM {self.schema}.{self.orders_table}
                WHERE customer_id = $1
                ORDER BY order_date DESC, order_id
            ''',
            [customer_id],
        )
        return [self._row_to_order(r) for r in rows]

    # ====================
    # Segments
    # ====================

    async def save_segment(self, segment: Segment) -> Segment:
        """Insert or update a segment"""
        query = f'''
            INSERT INTO {self.schema}.{self.segments_table} (
                segment_id, name, description, conditions, combinator,
                cached_audience_size, created_by, created_at, updated_at
            ) VALUES ($1, $2, $3, $4::jsonb, $5, $6, $7, $8, $9)
            ON CONFLICT (segment_id) DO UPDATE SET
                name = EXCLUDED.name,
                description = EXCLUDED.description,
                conditions = EXCLUDED.conditions,
                combinator = EXCLUDED.combinator,
                cached_audience_size = EXCLUDED.cached_audience_size,
                updated_at = EXCLUDED.updated_at
            RETURNING *
        '''
        params = [
            segment.segment_id,
            segment.name,
            segment.description,
            json.dumps([c.model_dump(mode="json") for c in segment.conditions]),
            segment.combinator.value,
            segment.cached_audience_size,
            segment.created_by,
            segment.created_at,
            segment.updated_at,
        ]
        try:
            row = await self.db.query_row(query, params)
            return self._row_to_segment(row) if row else segment
        except Exception as e:
            logger.error(f"Error saving segment: {e}", exc_info=True)
            raise

    async def get_segment(self, segment_id: str) -> Optional[Segment]:
        row = await self.db.query_row(
            f"SELECT * FROM {self.schema}.{self.segments_table} WHERE segment_id = $1",
            [segment_id],
        )
        return self._row_to_segment(row) if row else None

    async def list_segments(self) -> List[Segment]:
        rows = await self.db.query(
            f"SELECT * FROM {self.schema}.{self.segments_table} ORDER BY created_at DESC"
        )
        return [self._row_to_segment(r) for r in rows]

    async def delete_segment(self, segment_id: str) -> bool:
        rows = await self.db.query(
            f'''
                DELETE FROM {self.schema}.{self.segments_table}
                WHERE segment_id = $1
                RETURNING segment_id
            ''',
            [segment_id],
        )
        return len(rows) > 0

    # ====================
    # Campaigns
    # ====================

    async def create_campaign_with_logs(
        self, campaign: Campaign, logs: Sequence[DeliveryLog]
    ) -> Campaign:
        """Insert campaign and its pending delivery logs in one transaction"""
        campaign_query = f'''
            INSERT INTO {self.schema}.{self.campaigns_table} (
                campaign_id, name, segment_id, message, created_by,
                stats_sent, stats_failed, audience_size, created_at, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
        '''
        logs_query = f'''
            INSERT INTO {self.schema}.{self.logs_table} (
                log_id, campaign_id, customer_id, status, created_at, updated_at
            )
            SELECT r.log_id, $2, r.customer_id, $3, $4, $4
            FROM unnest($1::text[], $5::text[]) AS r(log_id, customer_id)
        '''
        try:
            async with self.db.transaction() as conn:
                await conn.execute(
                    campaign_query,
                    campaign.campaign_id,
                    campaign.name,
                    campaign.segment_id,
                    campaign.message,
                    campaign.created_by,
                    campaign.stats.sent,
                    campaign.stats.failed,
                    campaign.stats.audience_size,
                    campaign.created_at,
                    campaign.updated_at,
                )
                if logs:
                    await conn.execute(
                        logs_query,
                        [log.log_id for log in logs],
                        campaign.campaign_id,
                        DeliveryStatus.PENDING.value,
                        campaign.created_at,
                        [log.customer_id for log in logs],
                    )
            return campaign
        except Exception as e:
            logger.error(f"Error creating campaign {campaign.campaign_id}: {e}", exc_info=True)
            raise

    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        row = await self.db.query_row(
            f"SELECT * FROM {self.schema}.{self.campaigns_table} WHERE campaign_id = $1",
            [campaign_id],
        )
        return self._row_to_campaign(row) if row else None

    async def list_campaigns(self) -> List[Campaign]:
        rows = await self.db.query(
            f"SELECT * FROM {self.schema}.{self.campaigns_table} ORDER BY created_at DESC"
        )
        return [self._row_to_campaign(r) for r in rows]

    async def update_campaign_stats(
        self, campaign_id: str, stats: CampaignStats
    ) -> Optional[Campaign]:
        row = await self.db.query_row(
            f'''
                UPDATE {self.schema}.{self.campaigns_table}
                SET stats_sent = $2, stats_failed = $3, audience_size = $4, updated_at = $5
                WHERE campaign_id = $1
                RETURNING *
            ''',
            [campaign_id, stats.sent, stats.failed, stats.audience_size, datetime.now(timezone.utc)],
        )
        return self._row_to_campaign(row) if row else None

    async def delete_campaign(self, campaign_id: str) -> bool:
        """Delete campaign; delivery logs go with it (ON DELETE CASCADE)"""
        try:
            rows = await self.db.query(
                f'''
                    DELETE FROM {self.schema}.{self.campaigns_table}
                    WHERE campaign_id = $1
                    RETURNING campaign_id
                ''',
                [campaign_id],
            )
            return len(rows) > 0
        except Exception as e:
            logger.error(f"Error deleting campaign {campaign_id}: {e}")
            raise

    # ====================
    # Delivery logs
    # ====================

    async def list_delivery_logs(
        self, campaign_id: str, status: Optional[DeliveryStatus] = None
    ) -> List[DeliveryLog]:
        query = f"SELECT * FROM {self.schema}.{self.logs_table} WHERE campaign_id = $1"
        params: List[Any] = [campaign_id]
        if status is not None:
            query += " AND status = $2"
            params.append(status.value)
        query += " ORDER BY created_at DESC, log_id"
        rows = await self.db.query(query, params)
        return [self._row_to_log(r) for r in rows]

    async def bulk_apply_receipts(
        self, entries: Sequence[ReceiptQueueEntry]
    ) -> DeliveryLogWriteResult:
        """
        Apply receipts with one UPDATE ... FROM unnest(...).

        The `status = 'pending'` filter makes duplicates, late receipts and
        receipts for unknown logs no-ops.
        """
        if not entries:
            return DeliveryLogWriteResult(requested=0, applied=0)

        # One row per log: UPDATE ... FROM picks an arbitrary match otherwise
        unique: Dict[Tuple[str, str], ReceiptQueueEntry] = {}
        for entry in entries:
            unique.setdefault((entry.campaign_id, entry.customer_id), entry)
        batch = list(unique.values())

        query = f'''
            UPDATE {self.schema}.{self.logs_table} AS d
            SET status = r.status,
                vendor_message_id = r.message_id,
                vendor_timestamp = r.vendor_timestamp,
                error_message = r.error_message,
                completed_at = $8,
                updated_at = $8
            FROM unnest(
                $1::text[], $2::text[], $3::text[], $4::text[],
                $5::text[], $6::timestamptz[], $7::text[]
            ) AS r(log_id, campaign_id, customer_id, status, message_id, vendor_timestamp, error_message)
            WHERE d.status = 'pending'
              AND d.campaign_id = r.campaign_id
              AND d.customer_id = r.customer_id
              AND (r.log_id IS NULL OR d.log_id = r.log_id)
            RETURNING d.campaign_id
        '''
        params = [
            [e.log_id for e in batch],
            [e.campaign_id for e in batch],
            [e.customer_id for e in batch],
            [e.status.value for e in batch],
            [e.vendor_response.message_id for e in batch],
            [e.vendor_response.timestamp for e in batch],
            [e.vendor_response.error_message for e in batch],
            datetime.now(timezone.utc),
        ]
        rows = await self.db.query(query, params)
        return DeliveryLogWriteResult(
            requested=len(entries),
            applied=len(rows),
            campaign_ids=tuple(sorted({r["campaign_id"] for r in rows})),
        )

    async def count_by_status(self, campaign_id: str) -> Dict[DeliveryStatus, int]:
        rows = await self.db.query(
            f'''
                SELECT status, COUNT(*) AS count
                FROM {self.schema}.{self.logs_table}
                WHERE campaign_id = $1
                GROUP BY status
            ''',
            [campaign_id],
        )
        return {DeliveryStatus(r["status"]): int(r["count"]) for r in rows}

    # ====================
    # Row mapping
    # ====================

    def _row_to_customer(self, row: Dict[str, Any]) -> Customer:
        return Customer(
            customer_id=row["customer_id"],
            name=row["name"],
            email=row["email"],
            phone=row.get("phone"),
            total_spending=float(row.get("total_spending") or 0),
            last_visit=row.get("last_visit"),
            created_at=row["created_at"],
        )

    def _row_to_order(self, row: Dict[str, Any]) -> Order:
        return Order(
            order_id=row["order_id"],
            customer_id=row["customer_id"],
            order_amount=float(row["order_amount"]),
            order_date=row["order_date"],
            created_at=row["created_at"],
        )

    def _row_to_segment(self, row: Dict[str, Any]) -> Segment:
        conditions = row.get("conditions") or []
        if isinstance(conditions, str):
            conditions = json.loads(conditions)
        return Segment(
            segment_id=row["segment_id"],
            name=row["name"],
            description=row.get("description"),
            conditions=[Condition(**c) for c in conditions],
            combinator=Combinator(row.get("combinator") or "all"),
            cached_audience_size=row.get("cached_audience_size") or 0,
            created_by=row.get("created_by"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _row_to_campaign(self, row: Dict[str, Any]) -> Campaign:
        return Campaign(
            campaign_id=row["campaign_id"],
            name=row["name"],
            segment_id=row["segment_id"],
            message=row["message"],
            created_by=row.get("created_by"),
            stats=CampaignStats(
                sent=row.get("stats_sent") or 0,
                failed=row.get("stats_failed") or 0,
                audience_size=row.get("audience_size") or 0,
            ),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _row_to_log(self, row: Dict[str, Any]) -> DeliveryLog:
        return DeliveryLog(
            log_id=row["log_id"],
            campaign_id=row["campaign_id"],
            customer_id=row["customer_id"],
            status=DeliveryStatus(row["status"]),
            vendor_message_id=row.get("vendor_message_id"),
            vendor_timestamp=row.get("vendor_timestamp"),
            error_message=row.get("error_message"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            completed_at=row.get("completed_at"),
        )
