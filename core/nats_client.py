"""
NATS Client for Python Microservices
Provides event-driven communication between services

Thin wrapper around nats-py: an Event envelope plus an event bus that
publishes JSON-encoded envelopes on subjects named after the event type.
"""

import json
import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

import nats
from nats.aio.client import Client as NATS


class DecimalEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles Decimal and date types"""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        return super().default(obj)


logger = logging.getLogger(__name__)


class EventType(Enum):
    """Event types published by the notification engine"""

    # Campaign Events
    CAMPAIGN_CREATED = "campaign.created"
    CAMPAIGN_SENT = "campaign.sent"
    CAMPAIGN_FAILED = "campaign.failed"

    # Notification Events
    NOTIFICATION_STATUS_CHANGED = "notification.status_changed"

    # Special-day Events
    SPECIAL_DAY_DISPATCH_COMPLETED = "special_day.dispatch_completed"


class ServiceSource(Enum):
    """Service sources"""

    NOTIFICATION_SERVICE = "notification_service"


class Event:
    """Event model"""

    def __init__(
        self,
        event_type: EventType,
        source: ServiceSource,
        data: Dict[str, Any],
        subject: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ):
        self.id = str(uuid.uuid4())
        self.type = event_type.value
        self.source = source.value
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
    """NATS event bus publishing Event envelopes"""

    def __init__(self, service_name: str, url: str = "nats://localhost:4222"):
        """
        Initialize NATS Event Bus.

        Args:
            service_name: Name of the service (used as connection name)
            url: NATS server URL
        """
        self.service_name = service_name
        self.url = url
        self._client: Optional[NATS] = None

        logger.info(f"NATS EventBus initialized: {self.url}")

    async def connect(self):
        """Connect to the NATS server"""
        try:
            self._client = await nats.connect(
                servers=[self.url],
                name=self.service_name,
                max_reconnect_attempts=5,
            )
            logger.info(f"Connected to NATS as {self.service_name}")
        except Exception as e:
            logger.error(f"Failed to connect to NATS: {e}")
            raise

    async def publish_event(self, event: Event) -> bool:
        """Publish an event; the subject is the event type (e.g. "campaign.sent")"""
        if not self.is_connected:
            logger.error("Not connected to NATS")
            return False

        try:
            data = json.dumps(event.to_dict(), cls=DecimalEncoder).encode()
            await self._client.publish(event.type, data)
            logger.info(f"Published event {event.type} [{event.id}]")
            return True
        except Exception as e:
            logger.error(f"Failed to publish event {event.type} [{event.id}]: {e}")
            return False

    async def close(self):
        """Drain and close the NATS connection"""
        if self._client:
            await self._client.drain()
            self._client = None
        logger.info("Disconnected from NATS")

    @property
    def is_connected(self) -> bool:
        """Check if connected to NATS"""
        return self._client is not None and self._client.is_connected
