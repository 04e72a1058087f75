"""
Notification Service Business Logic Layer

Template store, triggers, customer preferences, audience preview and
one-off sends.

Uses dependency injection for testability:
- Repository is injected, not created at import time
- Channel dispatcher and renderer are injected
- Clock is injected so time-window rules are deterministic in tests
"""

import logging
import uuid
from typing import List, Optional

from .audience import build_audience_query
from .channels import ChannelDispatcher
from .models import (
    AudienceFilter,
    Channel,
    Customer,
    DispatchResult,
    EmailCheckRequest,
    Notification,
    NotificationPreference,
    NotificationStatus,
    PreferenceUpdateRequest,
    SendNotificationRequest,
    Template,
    TemplateCreateRequest,
    TemplateUpdateRequest,
    Trigger,
    TriggerCreateRequest,
    TriggerType,
)
from .protocols import (
    ChannelDeliveryError,
    Clock,
    CustomerNotFoundError,
    NotificationRepositoryProtocol,
    NotificationValidationError,
    TemplateInUseError,
    TemplateNotFoundError,
    utc_now,
)
from .renderer import MessageRenderer

logger = logging.getLogger(__name__)


def _blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


class NotificationService:
    """Notification service business logic layer"""

    def __init__(
        self,
        repository: NotificationRepositoryProtocol,
        dispatcher: ChannelDispatcher,
        renderer: Optional[MessageRenderer] = None,
        clock: Clock = utc_now,
        new_customer_window_days: int = 30,
    ):
        """
        Initialize notification service.

        Args:
            repository: Notification repository (real or in-memory)
            dispatcher: Channel dispatcher used for one-off sends
            renderer: Placeholder renderer
            clock: Source of "now" for audience windows and timestamps
            new_customer_window_days: Trailing window for the `new` audience
        """
        self.repository = repository
        self.dispatcher = dispatcher
        self.renderer = renderer or MessageRenderer()
        self.clock = clock
        self.new_customer_window_days = new_customer_window_days

    # ====================
    # Templates
    # ====================

    async def create_template(self, request: TemplateCreateRequest) -> Template:
        """Validate and store a new template"""
        missing = [
            name for name, value in (("name", request.name), ("body", request.body))
            if _blank(value)
        ]
        if missing:
            raise NotificationValidationError(
                f"Missing required fields: {', '.join(missing)}", fields=missing
            )

        now = self.clock()
        template = Template(
            id=f"tpl_{uuid.uuid4().hex[:16]}",
            name=request.name.strip(),
            channel=request.channel,
            subject=request.subject,
            body=request.body,
            variables=request.variables,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        created = await self.repository.create_template(template)
        logger.info(f"Template created: {created.id} ({created.channel.value})")
        return created

    async def get_template(self, template_id: str) -> Template:
        template = await self.repository.get_template(template_id)
        if not template:
            raise TemplateNotFoundError(f"Template {template_id} not found")
        return template

    async def list_templates(self, channel: Optional[Channel] = None) -> List[Template]:
        return await self.repository.list_templates(channel)

    async def update_template(self, template_id: str, request: TemplateUpdateRequest) -> Template:
        """Partial update; explicit blanks for required fields are rejected"""
        updates = request.model_dump(exclude_unset=True)
        invalid = [
            name for name in ("name", "body", "channel")
            if name in updates and (updates[name] is None or (
                isinstance(updates[name], str) and not updates[name].strip()
            ))
        ]
        if invalid:
            raise NotificationValidationError(
                f"Fields cannot be empty: {', '.join(invalid)}", fields=invalid
            )
        updates = {key: value for key, value in updates.items() if value is not None or key == "subject"}

        # Deactivation through update is a soft delete and gets the same reference check
        if updates.get("is_active") is False:
            current = await self.get_template(template_id)
            if current.is_active:
                campaign_count, trigger_count = await self.repository.count_template_references(template_id)
                if campaign_count or trigger_count:
                    raise TemplateInUseError(template_id, campaign_count, trigger_count)

        template = await self.repository.update_template(template_id, updates)
        if not template:
            raise TemplateNotFoundError(f"Template {template_id} not found")
        logger.info(f"Template updated: {template_id} ({', '.join(updates) or 'no changes'})")
        return template

    async def delete_template(self, template_id: str) -> Template:
        """Soft delete; refused while live campaigns or active triggers reference it"""
        await self.get_template(template_id)

        campaign_count, trigger_count = await self.repository.count_template_references(template_id)
        if campaign_count or trigger_count:
            raise TemplateInUseError(template_id, campaign_count, trigger_count)

        template = await self.repository.update_template(template_id, {"is_active": False})
        if not template:
            raise TemplateNotFoundError(f"Template {template_id} not found")
        logger.info(f"Template deactivated: {template_id}")
        return template

    async def hard_delete_template(self, template_id: str) -> None:
        """Unconditional removal; callers are responsible for authorization"""
        deleted = await self.repository.delete_template(template_id)
        if not deleted:
            raise TemplateNotFoundError(f"Template {template_id} not found")
        logger.warning(f"Template permanently deleted: {template_id}")

    # ====================
    # Triggers
    # ====================

    async def create_trigger(self, request: TriggerCreateRequest) -> Trigger:
        if _blank(request.name):
            raise NotificationValidationError("Missing required fields: name", fields=["name"])
        await self.get_template(request.template_id)

        trigger = Trigger(
            id=f"trg_{uuid.uuid4().hex[:16]}",
            name=request.name.strip(),
            trigger_type=request.trigger_type,
            conditions=request.conditions,
            template_id=request.template_id,
            is_active=True,
            created_at=self.clock(),
        )
        created = await self.repository.create_trigger(trigger)
        logger.info(f"Trigger created: {created.id} ({created.trigger_type.value})")
        return created

    async def list_triggers(self, trigger_type: Optional[TriggerType] = None) -> List[Trigger]:
        return await self.repository.list_triggers(trigger_type)

    # ====================
    # Preferences
    # ====================

    async def _require_customer(self, customer_id: str) -> Customer:
        customer = await self.repository.get_customer(customer_id)
        if not customer:
            raise CustomerNotFoundError(f"Customer {customer_id} not found")
        return customer

    async def get_preferences(self, customer_id: str) -> NotificationPreference:
        """Stored preferences, or the opted-in default when none exist"""
        await self._require_customer(customer_id)
        preference = await self.repository.get_preference(customer_id)
        if preference is None:
            return NotificationPreference(customer_id=customer_id, is_default=True)
        return preference

    async def update_preferences(
        self, customer_id: str, request: PreferenceUpdateRequest
    ) -> NotificationPreference:
        current = await self.get_preferences(customer_id)
        changes = request.model_dump(exclude_none=True)
        merged = current.model_copy(
            update={**changes, "updated_at": self.clock(), "is_default": False}
        )
        saved = await self.repository.upsert_preference(merged)
        logger.info(f"Preferences updated for customer {customer_id}: {sorted(changes)}")
        return saved

    # ====================
    # Audience preview
    # ====================

    async def preview_audience(self, audience: AudienceFilter) -> List[Customer]:
        query = build_audience_query(
            audience,
            now=self.clock(),
            new_customer_window_days=self.new_customer_window_days,
        )
        return await self.repository.resolve_audience(query)

    # ====================
    # One-off sends
    # ====================

    async def send_notification(self, request: SendNotificationRequest) -> Notification:
        """Render, persist and (for email) dispatch a single message"""
        if _blank(request.content):
            raise NotificationValidationError("Missing required fields: content", fields=["content"])

        customer = await self._require_customer(request.customer_id)
        recipient = (request.recipient or "").strip() or customer.address_for(request.channel)
        if not recipient:
            raise NotificationValidationError(
                f"Customer {customer.id} has no {request.channel.value} address",
                fields=["recipient"],
            )

        variables = self.renderer.build_variables(customer, extra=request.variables)
        notification = Notification(
            id=f"ntf_{uuid.uuid4().hex}",
            customer_id=customer.id,
            channel=request.channel,
            subject=self.renderer.render(request.subject, variables) or None,
            content=self.renderer.render(request.content, variables),
            recipient=recipient,
            status=NotificationStatus.QUEUED,
            created_at=self.clock(),
        )
        notification = await self.repository.create_notification(notification)

        if not self.dispatcher.dispatches_immediately(request.channel):
            logger.info(f"Notification {notification.id} queued for {request.channel.value}")
            return notification

        result = await self.dispatcher.send(
            request.channel, recipient, notification.subject, notification.content
        )
        updated = await self.repository.update_notification(
            notification.id, self._dispatch_updates(result)
        )
        return updated or notification

    def _dispatch_updates(self, result: DispatchResult) -> dict:
        if result.success:
            return {
                "status": NotificationStatus.SENT,
                "provider_message_id": result.message_id,
                "sent_at": self.clock(),
            }
        return {"status": NotificationStatus.FAILED, "error_message": result.error}

    async def send_test_email(self, request: EmailCheckRequest) -> DispatchResult:
        """Send a transport check email; failures are surfaced to the caller"""
        result = await self.dispatcher.send(
            Channel.EMAIL, str(request.to), request.subject, request.content
        )
        if not result.success:
            raise ChannelDeliveryError(result.error or "Email delivery failed")
        logger.info(f"Test email sent to {request.to} ({result.message_id})")
        return result
