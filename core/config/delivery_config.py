#!/usr/bin/env python3
"""Campaign delivery pipeline configuration

Tunables for audience preview, dispatch fan-out, the simulated vendor
channel and the receipt batch updater.
"""
import os
from dataclasses import dataclass
from typing import Optional

def _bool(val: str) -> bool:
    return val.lower() == "true"

def _int(val: str, default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default

def _float(val: str, default: float) -> float:
    try:
        return float(val) if val else default
    except ValueError:
        return default


@dataclass
class DeliveryConfig:
    """Delivery pipeline settings"""

    # ===========================================
    # Storage backend: "memory" or "postgres"
    # ===========================================
    store: str = "memory"
    db_auto_migrate: bool = False

    # ===========================================
    # Audience
    # ===========================================
    preview_sample_size: int = 10

    # ===========================================
    # Dispatch
    # ===========================================
    max_concurrent_sends: int = 100

    # ===========================================
    # Vendor simulator
    # ===========================================
    vendor_success_rate: float = 0.9
    vendor_min_delay_seconds: float = 0.5
    vendor_max_delay_seconds: float = 5.5
    vendor_receipt_webhook_url: Optional[str] = None

    # ===========================================
    # Receipt batch updater
    # ===========================================
    flush_interval_seconds: float = 5.0
    max_pending_receipts: int = 100_000

    @classmethod
    def from_env(cls) -> 'DeliveryConfig':
        """Load delivery config from environment"""
        return cls(
            store=os.getenv("CAMPAIGN_STORE", "memory").lower(),
            db_auto_migrate=_bool(os.getenv("CAMPAIGN_DB_AUTO_MIGRATE", "false")),
            preview_sample_size=_int(os.getenv("SEGMENT_PREVIEW_SAMPLE_SIZE", "10"), 10),
            max_concurrent_sends=_int(os.getenv("DISPATCH_MAX_CONCURRENCY", "100"), 100),
            vendor_success_rate=_float(os.getenv("VENDOR_SUCCESS_RATE", "0.9"), 0.9),
            vendor_min_delay_seconds=_float(os.getenv("VENDOR_MIN_DELAY_SECONDS", "0.5"), 0.5),
            vendor_max_delay_seconds=_float(os.getenv("VENDOR_MAX_DELAY_SECONDS", "5.5"), 5.5),
            vendor_receipt_webhook_url=os.getenv("VENDOR_RECEIPT_WEBHOOK_URL") or None,
            flush_interval_seconds=_float(os.getenv("RECEIPT_FLUSH_INTERVAL_SECONDS", "5"), 5.0),
            max_pending_receipts=_int(os.getenv("RECEIPT_QUEUE_MAX_PENDING", "100000"), 100_000),
        )
