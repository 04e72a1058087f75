"""
Event Publishers for Notification Service

Centralized event publishing logic for notification_service
Publishes events to NATS for other services to consume
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel

from core.nats_client import Event, EventType, ServiceSource
from .models import (
    CampaignCreatedEventData,
    CampaignFailedEventData,
    CampaignSentEventData,
    NotificationStatusChangedEventData,
    SpecialDayDispatchCompletedEventData,
)

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class NotificationEventPublishers:
    """Publishers for notification service events"""

    def __init__(self, event_bus=None):
        """
        Initialize event publishers

        Args:
            event_bus: NATS event bus instance (None disables publishing)
        """
        self.event_bus = event_bus

    async def _publish(self, event_type: EventType, data: BaseModel, subject: Optional[str] = None) -> bool:
        if not self.event_bus:
            logger.debug(f"Event bus not available, skipping {event_type.value} event")
            return False

        try:
            event = Event(
                event_type=event_type,
                source=ServiceSource.NOTIFICATION_SERVICE,
                data=data.model_dump(),
                subject=subject,
            )
            published = await self.event_bus.publish_event(event)
            if published:
                logger.info(f"Published {event_type.value} event")
            return bool(published)
        except Exception as e:
            logger.error(f"Failed to publish {event_type.value} event: {e}")
            return False

    async def publish_campaign_created(
        self,
        campaign_id: str,
        name: str,
        status: str,
        scheduled_at: Optional[datetime] = None,
        created_by: Optional[str] = None,
    ) -> bool:
        """Publish campaign.created event"""
        return await self._publish(
            EventType.CAMPAIGN_CREATED,
            CampaignCreatedEventData(
                campaign_id=campaign_id,
                name=name,
                status=status,
                scheduled_at=scheduled_at.isoformat() if scheduled_at else None,
                created_by=created_by,
                timestamp=_now_iso(),
            ),
            subject=campaign_id,
        )

    async def publish_campaign_sent(
        self,
        campaign_id: str,
        total_recipients: int,
        sent_count: int,
        failed_count: int,
    ) -> bool:
        """Publish campaign.sent event"""
        return await self._publish(
            EventType.CAMPAIGN_SENT,
            CampaignSentEventData(
                campaign_id=campaign_id,
                total_recipients=total_recipients,
                sent_count=sent_count,
                failed_count=failed_count,
                timestamp=_now_iso(),
            ),
            subject=campaign_id,
        )

    async def publish_campaign_failed(self, campaign_id: str, reason: str) -> bool:
        """Publish campaign.failed event"""
        return await self._publish(
            EventType.CAMPAIGN_FAILED,
            CampaignFailedEventData(campaign_id=campaign_id, reason=reason, timestamp=_now_iso()),
            subject=campaign_id,
        )

    async def publish_notification_status_changed(
        self,
        notification_id: str,
        customer_id: str,
        channel: str,
        previous_status: str,
        status: str,
        campaign_id: Optional[str] = None,
    ) -> bool:
        """Publish notification.status_changed event"""
        return await self._publish(
            EventType.NOTIFICATION_STATUS_CHANGED,
            NotificationStatusChangedEventData(
                notification_id=notification_id,
                campaign_id=campaign_id,
                customer_id=customer_id,
                channel=channel,
                previous_status=previous_status,
                status=status,
                timestamp=_now_iso(),
            ),
            subject=notification_id,
        )

    async def publish_special_day_completed(
        self,
        birthday_sent: int,
        anniversary_sent: int,
        total_failed: int,
    ) -> bool:
        """Publish special_day.dispatch_completed event"""
        return await self._publish(
            EventType.SPECIAL_DAY_DISPATCH_COMPLETED,
            SpecialDayDispatchCompletedEventData(
                birthday_sent=birthday_sent,
                anniversary_sent=anniversary_sent,
                total_failed=total_failed,
                timestamp=_now_iso(),
            ),
        )
