"""
Campaign Lifecycle Manager

Creates campaigns and runs the send algorithm:

1. open the send unit of work and lock the campaign
2. refuse unless the campaign is draft or scheduled
3. snapshot the audience
4. move to `sending` with total_recipients, then commit
5. render, persist and dispatch per recipient (bounded concurrency)
6. move to `sent` with sent_count taken from the notification rows

Infrastructure failures before the commit roll back and leave the status
untouched. Per-recipient failures are recorded on the notification row.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from .audience import build_audience_query
from .channels import ChannelDispatcher
from .events.publishers import NotificationEventPublishers
from .models import (
    Campaign,
    CampaignCategory,
    CampaignCreateRequest,
    CampaignStatus,
    Customer,
    Notification,
    NotificationStatus,
    Template,
)
from .protocols import (
    CampaignNotFoundError,
    Clock,
    InvalidCampaignStateError,
    NotificationRepositoryProtocol,
    NotificationServiceError,
    NotificationValidationError,
    StoreUnavailableError,
    TemplateNotFoundError,
    utc_now,
)
from .renderer import MessageRenderer

logger = logging.getLogger(__name__)

# Allowed campaign transitions (forward only; sent and failed are terminal)
VALID_TRANSITIONS: Dict[CampaignStatus, List[CampaignStatus]] = {
    CampaignStatus.DRAFT: [CampaignStatus.SENDING],
    CampaignStatus.SCHEDULED: [CampaignStatus.SENDING, CampaignStatus.FAILED],
    CampaignStatus.SENDING: [CampaignStatus.SENT, CampaignStatus.FAILED],
    CampaignStatus.SENT: [],
    CampaignStatus.FAILED: [],
}

SENDABLE_STATUSES = (CampaignStatus.DRAFT, CampaignStatus.SCHEDULED)

# Notifications that count toward sent_count
REACHED_SENT = (
    NotificationStatus.SENT,
    NotificationStatus.DELIVERED,
    NotificationStatus.OPENED,
    NotificationStatus.CLICKED,
)


def can_transition(current: CampaignStatus, target: CampaignStatus) -> bool:
    return target in VALID_TRANSITIONS.get(current, [])


def sources_for(target: CampaignStatus) -> List[CampaignStatus]:
    """Statuses from which target is reachable"""
    return [status for status, targets in VALID_TRANSITIONS.items() if target in targets]


class CampaignLifecycleManager:
    """Owns campaign creation, listing and the send algorithm"""

    def __init__(
        self,
        repository: NotificationRepositoryProtocol,
        dispatcher: ChannelDispatcher,
        renderer: Optional[MessageRenderer] = None,
        event_publishers: Optional[NotificationEventPublishers] = None,
        clock: Clock = utc_now,
        send_concurrency: int = 5,
        new_customer_window_days: int = 30,
    ):
        self.repository = repository
        self.dispatcher = dispatcher
        self.renderer = renderer or MessageRenderer()
        self.event_publishers = event_publishers or NotificationEventPublishers()
        self.clock = clock
        self.send_concurrency = max(1, send_concurrency)
        self.new_customer_window_days = new_customer_window_days

    # ====================
    # Create / read
    # ====================

    async def create_campaign(
        self, request: CampaignCreateRequest, created_by: Optional[str] = None
    ) -> Campaign:
        """
        Create a draft campaign, or a scheduled one when scheduled_at is set.

        Raises:
            NotificationValidationError: name or template_id blank
            TemplateNotFoundError: template missing or inactive
        """
        missing = [
            name for name, value in (("name", request.name), ("template_id", request.template_id))
            if value is None or not value.strip()
        ]
        if missing:
            raise NotificationValidationError(
                f"Missing required fields: {', '.join(missing)}", fields=missing
            )

        template = await self.repository.get_template(request.template_id)
        if not template or not template.is_active:
            raise TemplateNotFoundError(f"Template {request.template_id} not found or inactive")

        now = self.clock()
        campaign = Campaign(
            id=f"cmp_{uuid.uuid4().hex[:16]}",
            name=request.name.strip(),
            description=request.description,
            template_id=template.id,
            template_name=template.name,
            category=request.category,
            audience=request.audience,
            scheduled_at=request.scheduled_at,
            status=CampaignStatus.SCHEDULED if request.scheduled_at else CampaignStatus.DRAFT,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        created = await self.repository.create_campaign(campaign)
        logger.info(f"Campaign created: {created.id} ({created.status.value})")

        await self.event_publishers.publish_campaign_created(
            campaign_id=created.id,
            name=created.name,
            status=created.status.value,
            scheduled_at=created.scheduled_at,
            created_by=created_by,
        )
        return created

    async def get_campaign(self, campaign_id: str) -> Campaign:
        campaign = await self.repository.get_campaign(campaign_id)
        if not campaign:
            raise CampaignNotFoundError(f"Campaign {campaign_id} not found")
        return campaign

    async def list_campaigns(
        self,
        status: Optional[CampaignStatus] = None,
        category: Optional[CampaignCategory] = None,
        target_audience: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Campaign], int]:
        return await self.repository.list_campaigns(
            status=status,
            category=category,
            target_audience=target_audience,
            limit=limit,
            offset=offset,
        )

    # ====================
    # Send
    # ====================

    async def send_campaign(self, campaign_id: str) -> Campaign:
        """
        Send a draft or scheduled campaign to its audience.

        Raises:
            CampaignNotFoundError / TemplateNotFoundError: missing references
            InvalidCampaignStateError: campaign is not draft or scheduled
            StoreUnavailableError: persistence failed before `sending`
        """
        campaign, template, recipients = await self._begin_send(campaign_id)
        logger.info(
            f"Campaign {campaign_id} sending to {len(recipients)} recipient(s) via {template.channel.value}"
        )

        failed_count = await self._deliver_all(campaign, template, recipients)

        sent_count = await self.repository.count_campaign_notifications(campaign_id, REACHED_SENT)
        finished = await self.repository.transition_campaign(
            campaign_id,
            from_statuses=[CampaignStatus.SENDING],
            to_status=CampaignStatus.SENT,
            updates={"sent_count": sent_count, "sent_at": self.clock()},
        )
        if finished is None:
            # Reconciled or failed by someone else while we were delivering
            current = await self.get_campaign(campaign_id)
            logger.warning(
                f"Campaign {campaign_id} left sending before completion (now {current.status.value})"
            )
            return current

        logger.info(
            f"Campaign {campaign_id} sent: {sent_count}/{len(recipients)} delivered to channel, "
            f"{failed_count} failed"
        )
        await self.event_publishers.publish_campaign_sent(
            campaign_id=campaign_id,
            total_recipients=len(recipients),
            sent_count=sent_count,
            failed_count=failed_count,
        )
        return finished

    async def _begin_send(self, campaign_id: str) -> Tuple[Campaign, Template, List[Customer]]:
        """Steps 1-4 inside the unit of work"""
        try:
            async with self.repository.unit_of_work() as uow:
                campaign = await uow.get_campaign_for_update(campaign_id)
                if not campaign:
                    raise CampaignNotFoundError(f"Campaign {campaign_id} not found")

                if campaign.status not in SENDABLE_STATUSES:
                    raise InvalidCampaignStateError(
                        f"Campaign {campaign_id} cannot be sent from status {campaign.status.value}",
                        current_status=campaign.status,
                    )

                template = await uow.get_template(campaign.template_id)
                if not template or not template.is_active:
                    raise TemplateNotFoundError(f"Template {campaign.template_id} not found or inactive")

                query = build_audience_query(
                    campaign.audience,
                    now=self.clock(),
                    channel=template.channel,
                    category=campaign.category,
                    new_customer_window_days=self.new_customer_window_days,
                )
                recipients = await uow.resolve_audience(query)
                campaign = await uow.mark_sending(campaign_id, len(recipients), self.clock())
                return campaign, template, recipients

        except NotificationServiceError:
            raise
        except Exception as e:
            logger.error(f"Campaign {campaign_id} send aborted before sending: {e}", exc_info=True)
            raise StoreUnavailableError(f"Could not start campaign {campaign_id}: {e}") from e

    async def _deliver_all(
        self, campaign: Campaign, template: Template, recipients: Iterable[Customer]
    ) -> int:
        """Step 5; returns the number of failed recipients"""
        semaphore = asyncio.Semaphore(self.send_concurrency)

        async def deliver(customer: Customer) -> bool:
            async with semaphore:
                try:
                    return await self._deliver_one(campaign, template, customer)
                except Exception as e:
                    logger.error(
                        f"Campaign {campaign.id}: delivery to customer {customer.id} failed: {e}",
                        exc_info=True,
                    )
                    return False

        outcomes = await asyncio.gather(*(deliver(customer) for customer in recipients))
        return sum(1 for ok in outcomes if not ok)

    async def _deliver_one(self, campaign: Campaign, template: Template, customer: Customer) -> bool:
        variables = self.renderer.build_variables(customer, defaults=template.variables)
        subject = self.renderer.render(template.subject, variables) or None
        content = self.renderer.render(template.body, variables)
        recipient = customer.address_for(template.channel) or ""

        notification = await self.repository.create_notification(
            Notification(
                id=f"ntf_{uuid.uuid4().hex}",
                campaign_id=campaign.id,
                customer_id=customer.id,
                channel=template.channel,
                subject=subject,
                content=content,
                recipient=recipient,
                status=NotificationStatus.QUEUED,
                created_at=self.clock(),
            )
        )

        if not self.dispatcher.dispatches_immediately(template.channel):
            return True

        result = await self.dispatcher.send(template.channel, recipient, subject, content)
        if result.success:
            await self.repository.update_notification(
                notification.id,
                {
                    "status": NotificationStatus.SENT,
                    "provider_message_id": result.message_id,
                    "sent_at": self.clock(),
                },
            )
            return True

        await self.repository.update_notification(
            notification.id,
            {"status": NotificationStatus.FAILED, "error_message": result.error},
        )
        logger.warning(f"Campaign {campaign.id}: {recipient} failed: {result.error}")
        return False

    # ====================
    # Failure handling
    # ====================

    async def mark_failed(self, campaign_id: str, reason: str) -> Optional[Campaign]:
        """Move a scheduled or sending campaign to failed; None if it already left those states"""
        sent_count = await self.repository.count_campaign_notifications(campaign_id, REACHED_SENT)
        failed = await self.repository.transition_campaign(
            campaign_id,
            from_statuses=sources_for(CampaignStatus.FAILED),
            to_status=CampaignStatus.FAILED,
            updates={"failure_reason": reason[:1000], "sent_count": sent_count},
        )
        if failed:
            logger.warning(f"Campaign {campaign_id} marked failed: {reason}")
            await self.event_publishers.publish_campaign_failed(campaign_id, reason)
        return failed

    async def reconcile_stale_sending(self, started_before: datetime) -> List[str]:
        """Fail campaigns stuck in `sending` since before the cutoff"""
        reconciled: List[str] = []
        for campaign in await self.repository.list_campaigns_by_status(CampaignStatus.SENDING):
            started = campaign.sending_started_at or campaign.updated_at
            if started is None or started >= started_before:
                continue
            failed = await self.mark_failed(
                campaign.id, f"Send interrupted; still sending since {started.isoformat()}"
            )
            if failed:
                reconciled.append(campaign.id)
        return reconciled
