"""
Component Tests for the Scheduler Sweep

Due scheduled campaigns are sent oldest first, each at most once; one
campaign's failure never blocks the rest; interrupted sends are
reconciled to failed.
"""

from datetime import timedelta

import pytest

from microservices.notification_service.models import CampaignStatus
from microservices.notification_service.protocols import InvalidCampaignStateError

pytestmark = pytest.mark.component


@pytest.fixture
def audience(repository, factory):
    repository.add_customers(factory.make_customer(id="cust_01"), factory.make_customer(id="cust_02"))


def _schedule(repository, factory, template, minutes_from_now, clock, **overrides):
    campaign = factory.make_campaign(
        overrides.pop("template_id", template.id),
        status=CampaignStatus.SCHEDULED,
        scheduled_at=clock.now + timedelta(minutes=minutes_from_now),
        **overrides,
    )
    repository.campaigns[campaign.id] = campaign
    return campaign


class TestSweepSendsDueCampaigns:
    @pytest.mark.asyncio
    async def test_only_due_campaigns_are_sent(self, sweep, repository, factory, email_template, clock, audience):
        due = _schedule(repository, factory, email_template, -1, clock)
        future = _schedule(repository, factory, email_template, 10, clock)

        result = await sweep.sweep()

        assert result.sent == [due.id]
        assert result.started_at == clock.now
        assert repository.campaigns[due.id].status == CampaignStatus.SENT
        assert repository.campaigns[due.id].sent_count == 2
        assert repository.campaigns[future.id].status == CampaignStatus.SCHEDULED

    @pytest.mark.asyncio
    async def test_campaign_due_exactly_now_is_sent(self, sweep, repository, factory, email_template, clock):
        due = _schedule(repository, factory, email_template, 0, clock)

        result = await sweep.sweep()

        assert result.sent == [due.id]

    @pytest.mark.asyncio
    async def test_oldest_due_campaign_first(self, sweep, repository, factory, email_template, clock):
        newer = _schedule(repository, factory, email_template, -5, clock)
        older = _schedule(repository, factory, email_template, -60, clock)

        result = await sweep.sweep()

        assert result.sent == [older.id, newer.id]

    @pytest.mark.asyncio
    async def test_repeated_sweeps_send_once(
        self, sweep, repository, factory, email_template, clock, audience, email_sender
    ):
        due = _schedule(repository, factory, email_template, -1, clock)

        first = await sweep.sweep()
        clock.advance(minutes=1)
        second = await sweep.sweep()

        assert first.sent == [due.id]
        assert second.sent == []
        assert len(email_sender.sent) == 2
        assert len(repository.notifications_for(due.id)) == 2

    @pytest.mark.asyncio
    async def test_future_campaign_sent_once_due(self, sweep, repository, factory, email_template, clock):
        campaign = _schedule(repository, factory, email_template, 30, clock)

        assert (await sweep.sweep()).sent == []
        clock.advance(minutes=31)
        assert (await sweep.sweep()).sent == [campaign.id]


class TestSweepFaultIsolation:
    @pytest.mark.asyncio
    async def test_failure_marks_campaign_failed_and_continues(
        self, sweep, repository, factory, email_template, clock, audience, event_bus
    ):
        first = _schedule(repository, factory, email_template, -10, clock)
        second = _schedule(repository, factory, email_template, -5, clock)
        repository.fail_next("get_campaign_for_update", ConnectionError("connection reset"))

        result = await sweep.sweep()

        assert result.failed == [first.id]
        assert result.sent == [second.id]
        failed = repository.campaigns[first.id]
        assert failed.status == CampaignStatus.FAILED
        assert "connection reset" in failed.failure_reason
        assert "campaign.failed" in event_bus.types()
        assert repository.campaigns[second.id].status == CampaignStatus.SENT

    @pytest.mark.asyncio
    async def test_missing_template_fails_campaign(self, sweep, repository, factory, email_template, clock):
        orphan = _schedule(repository, factory, email_template, -1, clock, template_id="tpl_deleted")

        result = await sweep.sweep()

        assert result.failed == [orphan.id]
        assert repository.campaigns[orphan.id].status == CampaignStatus.FAILED

    @pytest.mark.asyncio
    async def test_conflict_is_skipped_not_failed(self, sweep, repository, factory, email_template, clock):
        """Given another worker claimed the campaign, Then the sweep skips it"""
        claimed = _schedule(repository, factory, email_template, -1, clock)
        repository.fail_next(
            "get_campaign_for_update",
            InvalidCampaignStateError("already sending", current_status=CampaignStatus.SENDING),
        )

        result = await sweep.sweep()

        assert result.skipped == [claimed.id]
        assert result.failed == []
        assert repository.campaigns[claimed.id].status == CampaignStatus.SCHEDULED

    @pytest.mark.asyncio
    async def test_campaign_failed_during_delivery_is_not_reported_sent(
        self, sweep, repository, factory, email_template, clock, audience, monkeypatch
    ):
        """Given the campaign is failed by another worker mid-delivery, Then the sweep does not count it sent"""
        due = _schedule(repository, factory, email_template, -1, clock)
        count = repository.count_campaign_notifications

        async def failed_meanwhile(campaign_id, statuses):
            repository.campaigns[campaign_id] = repository.campaigns[campaign_id].model_copy(
                update={"status": CampaignStatus.FAILED}
            )
            return await count(campaign_id, statuses)

        monkeypatch.setattr(repository, "count_campaign_notifications", failed_meanwhile)

        result = await sweep.sweep()

        assert result.sent == []
        assert result.skipped == [due.id]
        assert result.failed == []
        assert repository.campaigns[due.id].status == CampaignStatus.FAILED

    @pytest.mark.asyncio
    async def test_reconciliation_failure_does_not_block_sends(
        self, sweep, repository, factory, email_template, clock
    ):
        due = _schedule(repository, factory, email_template, -1, clock)
        # first list call is the stale-sending lookup
        repository.fail_next("list_campaigns_by_status", ConnectionError("timeout"))

        result = await sweep.sweep()

        assert result.reconciled == []
        assert result.sent == [due.id]


class TestSweepReconciliation:
    @pytest.mark.asyncio
    async def test_stale_sending_campaign_is_failed(
        self, sweep, repository, factory, email_template, clock, event_bus
    ):
        stale = factory.make_campaign(
            email_template.id,
            status=CampaignStatus.SENDING,
            sending_started_at=clock.now - timedelta(minutes=45),
        )
        active = factory.make_campaign(
            email_template.id,
            status=CampaignStatus.SENDING,
            sending_started_at=clock.now - timedelta(minutes=10),
        )
        repository.campaigns[stale.id] = stale
        repository.campaigns[active.id] = active

        result = await sweep.sweep()

        assert result.reconciled == [stale.id]
        assert repository.campaigns[stale.id].status == CampaignStatus.FAILED
        assert repository.campaigns[active.id].status == CampaignStatus.SENDING
        assert event_bus.types() == ["campaign.failed"]

    @pytest.mark.asyncio
    async def test_partial_sends_keep_their_sent_count(self, sweep, repository, factory, email_template, clock):
        stale = factory.make_campaign(
            email_template.id,
            status=CampaignStatus.SENDING,
            sending_started_at=clock.now - timedelta(hours=1),
        )
        repository.campaigns[stale.id] = stale
        repository.notifications["ntf_1"] = factory.make_notification(
            "cust_01", id="ntf_1", campaign_id=stale.id, status="sent"
        )

        await sweep.sweep()

        assert repository.campaigns[stale.id].sent_count == 1
