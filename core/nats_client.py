"""
NATS Client for Python Microservices

Provides event-driven communication between services.

This module wraps the nats-py client. Events are JSON encoded and published
with the event type as the subject (e.g. "campaign.created").
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Union

import nats
from nats.aio.client import Client as NATSClient

logger = logging.getLogger(__name__)


class DecimalEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles Decimal and datetime types"""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


class ServiceSource(Enum):
    """Services that publish events"""
    CAMPAIGN_SERVICE = "campaign_service"


class Event:
    """Event model"""

    def __init__(
        self,
        event_type: Union[Enum, str],
        source: Union[ServiceSource, str],
        data: Dict[str, Any],
        subject: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ):
        self.id = str(uuid.uuid4())
        self.type = event_type.value if isinstance(event_type, Enum) else event_type
        self.source = source.value if isinstance(source, Enum) else source
        self.data = data
        self.subject = subject
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.metadata = metadata or {}
        self.version = "1.0.0"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "source": self.source,
            "subject": self.subject,
            "timestamp": self.timestamp,
            "data": self.data,
            "metadata": self.metadata,
            "version": self.version,
        }


class NATSEventBus:
    """
    NATS event bus on top of nats-py.

    Publishing never raises: failures are logged and reported as False so a
    broken broker cannot fail the operation that emitted the event.
    """

    def __init__(self, service_name: str, url: str = "nats://localhost:4222"):
        """
        Initialize NATS Event Bus.

        Args:
            service_name: Name of the service (used as connection name)
            url: NATS server URL
        """
        self.service_name = service_name
        self.url = url
        self._client: Optional[NATSClient] = None

        logger.info(f"NATS EventBus initialized: {self.url}")

    async def connect(self):
        """Connect to NATS"""
        try:
            self._client = await nats.connect(self.url, name=self.service_name)
            logger.info(f"Connected to NATS as {self.service_name}")
        except Exception as e:
            logger.error(f"Failed to connect to NATS at {self.url}: {e}")
            raise

    async def publish_event(self, event: Event) -> bool:
        """Publish an event using its type as the subject"""
        if not self.is_connected:
            logger.error("Not connected to NATS")
            return False

        try:
            subject = event.subject or event.type
            data = json.dumps(event.to_dict(), cls=DecimalEncoder).encode()
            await self._client.publish(subject, data)
            logger.info(f"Published event {event.type} [{event.id}]")
            return True
        except Exception as e:
            logger.error(f"Error publishing event {event.id}: {e}")
            return False

    async def close(self):
        """Drain and close the NATS connection"""
        if self._client is not None:
            try:
                await self._client.drain()
            except Exception as e:
                logger.warning(f"Error draining NATS connection: {e}")
            self._client = None
        logger.info("Disconnected from NATS")

    @property
    def is_connected(self) -> bool:
        """Check if connected to NATS"""
        return self._client is not None and self._client.is_connected
