"""
Component Tests for Delivery Tracking and Analytics

Receipts advance notifications forward only, stamp the timestamps they
pass through and feed campaign engagement counters; the analytics report
aggregates them over a trailing window.
"""

import asyncio
from datetime import timedelta

import pytest

from microservices.notification_service.models import (
    CampaignStatus,
    Channel,
    DeliveryStatusUpdateRequest,
    NotificationStatus,
)
from microservices.notification_service.protocols import (
    InvalidNotificationTransitionError,
    NotificationNotFoundError,
    NotificationValidationError,
)

pytestmark = pytest.mark.component


def _receipt(status, **kwargs):
    return DeliveryStatusUpdateRequest(status=status, **kwargs)


@pytest.fixture
def sent_campaign(repository, factory, email_template):
    campaign = factory.make_campaign(
        email_template.id, status=CampaignStatus.SENT, total_recipients=4, sent_count=4
    )
    repository.campaigns[campaign.id] = campaign
    return campaign


@pytest.fixture
def campaign_notification(repository, factory, sent_campaign, clock):
    notification = factory.make_notification(
        "cust_01", campaign_id=sent_campaign.id, status=NotificationStatus.SENT, sent_at=clock.now
    )
    repository.notifications[notification.id] = notification
    return notification


class TestAdvanceStatus:
    @pytest.mark.asyncio
    async def test_queued_to_sent(self, delivery_tracker, repository, factory, clock, event_bus):
        notification = factory.make_notification("cust_01")
        repository.notifications[notification.id] = notification

        updated = await delivery_tracker.advance_status(notification.id, _receipt(NotificationStatus.SENT))

        assert updated.status == NotificationStatus.SENT
        assert updated.sent_at == clock.now
        assert event_bus.types() == ["notification.status_changed"]
        data = event_bus.published[0].data
        assert (data["previous_status"], data["status"]) == ("queued", "sent")
        assert data["campaign_id"] is None

    @pytest.mark.asyncio
    async def test_jump_stamps_every_passed_state(
        self, delivery_tracker, repository, campaign_notification, sent_campaign, clock
    ):
        occurred_at = clock.now + timedelta(hours=1)

        updated = await delivery_tracker.advance_status(
            campaign_notification.id, _receipt(NotificationStatus.CLICKED, occurred_at=occurred_at)
        )

        assert updated.status == NotificationStatus.CLICKED
        assert updated.sent_at == clock.now
        assert updated.delivered_at == occurred_at
        assert updated.opened_at == occurred_at
        assert updated.clicked_at == occurred_at

        campaign = repository.campaigns[sent_campaign.id]
        assert campaign.opened_count == 1
        assert campaign.clicked_count == 1

    @pytest.mark.asyncio
    async def test_open_then_click_counts_open_once(
        self, delivery_tracker, repository, campaign_notification, sent_campaign
    ):
        await delivery_tracker.advance_status(campaign_notification.id, _receipt(NotificationStatus.DELIVERED))
        await delivery_tracker.advance_status(campaign_notification.id, _receipt(NotificationStatus.OPENED))
        await delivery_tracker.advance_status(campaign_notification.id, _receipt(NotificationStatus.CLICKED))

        campaign = repository.campaigns[sent_campaign.id]
        assert campaign.opened_count == 1
        assert campaign.clicked_count == 1

    @pytest.mark.asyncio
    async def test_repeated_open_rejected(self, delivery_tracker, repository, campaign_notification, sent_campaign):
        await delivery_tracker.advance_status(campaign_notification.id, _receipt(NotificationStatus.OPENED))

        with pytest.raises(InvalidNotificationTransitionError) as exc_info:
            await delivery_tracker.advance_status(campaign_notification.id, _receipt(NotificationStatus.OPENED))

        assert exc_info.value.current_status == NotificationStatus.OPENED
        assert repository.campaigns[sent_campaign.id].opened_count == 1

    @pytest.mark.asyncio
    async def test_backward_move_rejected(self, delivery_tracker, repository, campaign_notification):
        await delivery_tracker.advance_status(campaign_notification.id, _receipt(NotificationStatus.DELIVERED))

        with pytest.raises(InvalidNotificationTransitionError):
            await delivery_tracker.advance_status(campaign_notification.id, _receipt(NotificationStatus.SENT))
        assert repository.notifications[campaign_notification.id].status == NotificationStatus.DELIVERED

    @pytest.mark.asyncio
    async def test_queued_target_rejected(self, delivery_tracker, campaign_notification):
        with pytest.raises(NotificationValidationError):
            await delivery_tracker.advance_status(campaign_notification.id, _receipt(NotificationStatus.QUEUED))

    @pytest.mark.asyncio
    async def test_bounce_after_send(self, delivery_tracker, repository, campaign_notification, sent_campaign):
        updated = await delivery_tracker.advance_status(
            campaign_notification.id, _receipt(NotificationStatus.FAILED, error="Hard bounce")
        )

        assert updated.status == NotificationStatus.FAILED
        assert updated.error_message == "Hard bounce"
        assert repository.campaigns[sent_campaign.id].opened_count == 0

    @pytest.mark.asyncio
    async def test_failure_after_delivery_rejected(self, delivery_tracker, campaign_notification):
        await delivery_tracker.advance_status(campaign_notification.id, _receipt(NotificationStatus.DELIVERED))

        with pytest.raises(InvalidNotificationTransitionError):
            await delivery_tracker.advance_status(campaign_notification.id, _receipt(NotificationStatus.FAILED))

    @pytest.mark.asyncio
    async def test_unknown_notification(self, delivery_tracker):
        with pytest.raises(NotificationNotFoundError):
            await delivery_tracker.advance_status("ntf_missing", _receipt(NotificationStatus.SENT))


class TestConcurrentReceipts:
    """Receipts for one notification arriving together"""

    @pytest.fixture(autouse=True)
    def interleaved_reads(self, repository, monkeypatch):
        read = repository.get_notification

        async def read_then_yield(notification_id):
            found = await read(notification_id)
            await asyncio.sleep(0)
            return found

        monkeypatch.setattr(repository, "get_notification", read_then_yield)

    @pytest.mark.asyncio
    async def test_click_and_delivery_never_move_backward(
        self, delivery_tracker, repository, campaign_notification, sent_campaign
    ):
        # Given: a sent notification; When: clicked and delivered receipts race
        results = await asyncio.gather(
            delivery_tracker.advance_status(campaign_notification.id, _receipt(NotificationStatus.CLICKED)),
            delivery_tracker.advance_status(campaign_notification.id, _receipt(NotificationStatus.DELIVERED)),
            return_exceptions=True,
        )

        # Then: the later status wins and the stale receipt is refused
        assert repository.notifications[campaign_notification.id].status == NotificationStatus.CLICKED
        assert isinstance(results[1], InvalidNotificationTransitionError)
        campaign = repository.campaigns[sent_campaign.id]
        assert (campaign.opened_count, campaign.clicked_count) == (1, 1)

    @pytest.mark.asyncio
    async def test_delivery_then_click_both_apply(
        self, delivery_tracker, repository, campaign_notification, sent_campaign
    ):
        results = await asyncio.gather(
            delivery_tracker.advance_status(campaign_notification.id, _receipt(NotificationStatus.DELIVERED)),
            delivery_tracker.advance_status(campaign_notification.id, _receipt(NotificationStatus.CLICKED)),
        )

        assert [r.status for r in results] == [NotificationStatus.DELIVERED, NotificationStatus.CLICKED]
        stored = repository.notifications[campaign_notification.id]
        assert stored.status == NotificationStatus.CLICKED
        assert stored.opened_at is not None
        campaign = repository.campaigns[sent_campaign.id]
        assert (campaign.opened_count, campaign.clicked_count) == (1, 1)

    @pytest.mark.asyncio
    async def test_duplicate_open_counted_once(
        self, delivery_tracker, repository, campaign_notification, sent_campaign, event_bus
    ):
        results = await asyncio.gather(
            delivery_tracker.advance_status(campaign_notification.id, _receipt(NotificationStatus.OPENED)),
            delivery_tracker.advance_status(campaign_notification.id, _receipt(NotificationStatus.OPENED)),
            return_exceptions=True,
        )

        assert results[0].status == NotificationStatus.OPENED
        assert isinstance(results[1], InvalidNotificationTransitionError)
        assert results[1].current_status == NotificationStatus.OPENED
        assert repository.campaigns[sent_campaign.id].opened_count == 1
        assert event_bus.types() == ["notification.status_changed"]


class TestAnalyticsReport:
    @pytest.mark.asyncio
    async def test_report_after_campaign(
        self, campaign_manager, delivery_tracker, analytics, repository, factory, email_template, email_sender, clock
    ):
        """Given a 4-recipient campaign with one failure, one open and one click, Then rates follow sent_count"""
        people = [factory.make_customer(id=f"cust_0{i}") for i in range(1, 5)]
        repository.add_customers(*people)
        email_sender.fail_for = {people[3].email}
        campaign = await campaign_manager.create_campaign(factory.make_campaign_create_request(email_template.id))
        await campaign_manager.send_campaign(campaign.id)

        by_customer = {n.customer_id: n for n in repository.notifications_for(campaign.id)}
        await delivery_tracker.advance_status(by_customer["cust_01"].id, _receipt(NotificationStatus.OPENED))
        await delivery_tracker.advance_status(by_customer["cust_02"].id, _receipt(NotificationStatus.CLICKED))

        report = await analytics.report(30)

        assert report.period_days == 30
        assert report.generated_at == clock.now
        assert report.overall.total == 4
        assert report.overall.sent == 3
        assert report.overall.delivered == 2
        assert report.overall.opened == 2
        assert report.overall.clicked == 1
        assert report.overall.failed == 1

        assert len(report.campaigns) == 1
        performance = report.campaigns[0]
        assert performance.campaign_id == campaign.id
        assert performance.sent_count == 3
        assert performance.open_rate == 0.6667
        assert performance.click_rate == 0.3333

        assert [c.channel for c in report.channels] == [Channel.EMAIL]

    @pytest.mark.asyncio
    async def test_window_excludes_old_activity(self, analytics, repository, factory, email_template, clock):
        old = factory.make_notification("cust_01", created_at=clock.now - timedelta(days=40))
        recent = factory.make_notification("cust_01", created_at=clock.now - timedelta(days=2))
        repository.notifications[old.id] = old
        repository.notifications[recent.id] = recent
        old_campaign = factory.make_campaign(
            email_template.id, status=CampaignStatus.SENT, sent_at=clock.now - timedelta(days=40)
        )
        repository.campaigns[old_campaign.id] = old_campaign

        report = await analytics.report(30)

        assert report.overall.total == 1
        assert report.campaigns == []

    @pytest.mark.asyncio
    async def test_zero_sent_has_zero_rates(self, analytics, repository, factory, email_template, clock):
        empty = factory.make_campaign(email_template.id, status=CampaignStatus.SENT, sent_at=clock.now)
        repository.campaigns[empty.id] = empty

        report = await analytics.report()

        assert report.campaigns[0].open_rate == 0.0
        assert report.campaigns[0].click_rate == 0.0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("period", [0, 366])
    async def test_period_bounds(self, analytics, period):
        with pytest.raises(NotificationValidationError) as exc_info:
            await analytics.report(period)
        assert exc_info.value.fields == ["period"]
