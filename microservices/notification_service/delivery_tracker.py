"""
Delivery Tracker / Analytics Aggregator

Notification status moves forward only:
queued -> sent -> delivered -> opened -> clicked, or to failed from
queued/sent. Engagement on campaign notifications feeds the campaign
opened/clicked counters.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .events.publishers import NotificationEventPublishers
from .models import (
    AnalyticsReport,
    CampaignPerformance,
    Channel,
    ChannelBreakdown,
    DeliveryStatusUpdateRequest,
    Notification,
    NotificationStatus,
    StatusCounters,
)
from .protocols import (
    Clock,
    InvalidNotificationTransitionError,
    NotificationNotFoundError,
    NotificationRepositoryProtocol,
    NotificationValidationError,
    utc_now,
)

logger = logging.getLogger(__name__)

STATUS_RANK: Dict[NotificationStatus, int] = {
    NotificationStatus.QUEUED: 0,
    NotificationStatus.SENT: 1,
    NotificationStatus.DELIVERED: 2,
    NotificationStatus.OPENED: 3,
    NotificationStatus.CLICKED: 4,
}

FAILABLE_STATUSES = (NotificationStatus.QUEUED, NotificationStatus.SENT)

# Timestamp column stamped when a status is reached
STATUS_TIMESTAMPS = {
    NotificationStatus.SENT: "sent_at",
    NotificationStatus.DELIVERED: "delivered_at",
    NotificationStatus.OPENED: "opened_at",
    NotificationStatus.CLICKED: "clicked_at",
}

MAX_PERIOD_DAYS = 365
TOP_CAMPAIGNS = 10


def is_valid_transition(current: NotificationStatus, target: NotificationStatus) -> bool:
    if target == NotificationStatus.FAILED:
        return current in FAILABLE_STATUSES
    if current == NotificationStatus.FAILED:
        return False
    return STATUS_RANK[target] > STATUS_RANK[current]


def _rate(numerator: int, denominator: int) -> float:
    if denominator <= 0:
        return 0.0
    return round(numerator / denominator, 4)


class DeliveryTracker:
    """Applies delivery receipts to notifications"""

    def __init__(
        self,
        repository: NotificationRepositoryProtocol,
        event_publishers: Optional[NotificationEventPublishers] = None,
        clock: Clock = utc_now,
    ):
        self.repository = repository
        self.event_publishers = event_publishers or NotificationEventPublishers()
        self.clock = clock

    @staticmethod
    def _updates_for(
        notification: Notification,
        target: NotificationStatus,
        update: DeliveryStatusUpdateRequest,
        occurred_at: datetime,
    ) -> Dict[str, Any]:
        updates: Dict[str, Any] = {"status": target}
        if target == NotificationStatus.FAILED:
            updates["error_message"] = update.error or "Delivery failed"
            return updates
        # Stamp every state passed through on a forward jump
        current = notification.status
        for status, column in STATUS_TIMESTAMPS.items():
            passed = STATUS_RANK[current] < STATUS_RANK[status] <= STATUS_RANK[target]
            if passed and getattr(notification, column) is None:
                updates[column] = occurred_at
        return updates

    async def advance_status(
        self, notification_id: str, update: DeliveryStatusUpdateRequest
    ) -> Notification:
        """
        Move a notification to a later status.

        Raises:
            NotificationNotFoundError: unknown notification
            InvalidNotificationTransitionError: backward, repeated or out-of-failed move
        """
        target = update.status
        if target == NotificationStatus.QUEUED:
            raise NotificationValidationError("Status cannot be set to queued", fields=["status"])
        occurred_at = update.occurred_at or self.clock()

        # A lost compare-and-set means another receipt moved the row forward;
        # re-read and revalidate against the newer status
        updated = None
        while updated is None:
            notification = await self.repository.get_notification(notification_id)
            if not notification:
                raise NotificationNotFoundError(f"Notification {notification_id} not found")

            current = notification.status
            if not is_valid_transition(current, target):
                raise InvalidNotificationTransitionError(
                    f"Notification {notification_id} cannot move from {current.value} to {target.value}",
                    current_status=current,
                )

            updated = await self.repository.transition_notification(
                notification_id, current, self._updates_for(notification, target, update, occurred_at)
            )
            if updated is None:
                logger.debug(f"Notification {notification_id} changed concurrently, retrying {target.value}")

        if notification.campaign_id and target != NotificationStatus.FAILED:
            opened = int(
                STATUS_RANK[current] < STATUS_RANK[NotificationStatus.OPENED] <= STATUS_RANK[target]
            )
            clicked = int(target == NotificationStatus.CLICKED)
            if opened or clicked:
                await self.repository.increment_campaign_engagement(
                    notification.campaign_id, opened=opened, clicked=clicked
                )

        logger.info(f"Notification {notification_id}: {current.value} -> {target.value}")
        await self.event_publishers.publish_notification_status_changed(
            notification_id=notification_id,
            customer_id=notification.customer_id,
            channel=notification.channel.value,
            previous_status=current.value,
            status=target.value,
            campaign_id=notification.campaign_id,
        )
        return updated


def accumulate(
    counters: StatusCounters, status: NotificationStatus, count: int
) -> StatusCounters:
    """Add `count` notifications currently in `status`; delivery counters are cumulative"""
    counters.total += count
    if status == NotificationStatus.FAILED:
        counters.failed += count
        return counters
    counters.queued += count if status == NotificationStatus.QUEUED else 0
    rank = STATUS_RANK[status]
    if rank >= STATUS_RANK[NotificationStatus.SENT]:
        counters.sent += count
    if rank >= STATUS_RANK[NotificationStatus.DELIVERED]:
        counters.delivered += count
    if rank >= STATUS_RANK[NotificationStatus.OPENED]:
        counters.opened += count
    if rank >= STATUS_RANK[NotificationStatus.CLICKED]:
        counters.clicked += count
    return counters


def summarize(
    rows: Iterable[Tuple[Channel, NotificationStatus, int]]
) -> Tuple[StatusCounters, List[ChannelBreakdown]]:
    overall = StatusCounters()
    channels: Dict[Channel, ChannelBreakdown] = {}
    for channel, status, count in rows:
        accumulate(overall, status, count)
        breakdown = channels.setdefault(channel, ChannelBreakdown(channel=channel))
        accumulate(breakdown, status, count)
    ordered = [channels[channel] for channel in Channel if channel in channels]
    return overall, ordered


class AnalyticsAggregator:
    """Delivery and engagement report over a trailing window"""

    def __init__(self, repository: NotificationRepositoryProtocol, clock: Clock = utc_now):
        self.repository = repository
        self.clock = clock

    async def report(self, period_days: int = 30) -> AnalyticsReport:
        if period_days < 1 or period_days > MAX_PERIOD_DAYS:
            raise NotificationValidationError(
                f"period must be between 1 and {MAX_PERIOD_DAYS} days", fields=["period"]
            )

        now = self.clock()
        since = now - timedelta(days=period_days)

        rows = await self.repository.count_notifications_by_channel_status(since)
        overall, channels = summarize(rows)

        campaigns = await self.repository.list_campaigns_sent_since(since, limit=TOP_CAMPAIGNS)
        performance = [
            CampaignPerformance(
                campaign_id=campaign.id,
                name=campaign.name,
                category=campaign.category,
                total_recipients=campaign.total_recipients,
                sent_count=campaign.sent_count,
                opened_count=campaign.opened_count,
                clicked_count=campaign.clicked_count,
                open_rate=_rate(campaign.opened_count, campaign.sent_count),
                click_rate=_rate(campaign.clicked_count, campaign.sent_count),
                sent_at=campaign.sent_at,
            )
            for campaign in campaigns
        ]

        return AnalyticsReport(
            period_days=period_days,
            generated_at=now,
            overall=overall,
            campaigns=performance,
            channels=channels,
        )
