"""
Notification Service Protocols (Interfaces)

These interfaces define contracts for dependency injection.
NO import-time I/O dependencies - safe to import anywhere.
"""
from datetime import datetime, timezone
from typing import (
    Any,
    AsyncContextManager,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    runtime_checkable,
)

from .audience import AudienceQuery
from .models import (
    Campaign,
    CampaignCategory,
    CampaignStatus,
    Channel,
    Customer,
    DispatchResult,
    EmailLog,
    EmailLogStatus,
    Notification,
    NotificationPreference,
    NotificationStatus,
    SpecialDayType,
    Template,
    Trigger,
    TriggerType,
)


Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Process-wide canonical clock"""
    return datetime.now(timezone.utc)


# ====================
# Exceptions
# ====================


class NotificationServiceError(Exception):
    """Base exception for notification service errors"""
    pass


class NotificationValidationError(NotificationServiceError):
    """Missing or invalid fields; raised before anything is persisted"""

    def __init__(self, message: str, fields: Optional[List[str]] = None):
        super().__init__(message)
        self.fields = fields or []


class ResourceNotFoundError(NotificationServiceError):
    """Referenced resource does not exist"""
    pass


class TemplateNotFoundError(ResourceNotFoundError):
    """Template not found"""
    pass


class CampaignNotFoundError(ResourceNotFoundError):
    """Campaign not found"""
    pass


class CustomerNotFoundError(ResourceNotFoundError):
    """Customer not found in the directory"""
    pass


class NotificationNotFoundError(ResourceNotFoundError):
    """Notification not found"""
    pass


class JobNotFoundError(ResourceNotFoundError):
    """Scheduler job not registered"""
    pass


class ResourceConflictError(NotificationServiceError):
    """Operation conflicts with current state; state is unchanged"""
    pass


class TemplateInUseError(ResourceConflictError):
    """Template still referenced by live campaigns or active triggers"""

    def __init__(self, template_id: str, campaign_count: int, trigger_count: int):
        super().__init__(
            f"Template {template_id} is in use by {campaign_count} campaign(s) "
            f"and {trigger_count} trigger(s)"
        )
        self.template_id = template_id
        self.campaign_count = campaign_count
        self.trigger_count = trigger_count


class InvalidCampaignStateError(ResourceConflictError):
    """Campaign is not in a state that allows the operation"""

    def __init__(self, message: str, current_status: Optional[CampaignStatus] = None):
        super().__init__(message)
        self.current_status = current_status


class InvalidNotificationTransitionError(ResourceConflictError):
    """Delivery status may only move forward"""

    def __init__(self, message: str, current_status: Optional[NotificationStatus] = None):
        super().__init__(message)
        self.current_status = current_status


class ChannelDeliveryError(NotificationServiceError):
    """Explicit single-message dispatch failed"""
    pass


class ChannelConfigurationError(NotificationServiceError):
    """Channel transport cannot be built from configuration"""
    pass


class StoreUnavailableError(NotificationServiceError):
    """Persistence failed at the infrastructure level"""
    pass


# ====================
# Repository Protocols
# ====================


@runtime_checkable
class CampaignSendUnitOfWork(Protocol):
    """
    Transaction covering the send guard, audience snapshot and the
    transition to `sending`. Commits when the context exits cleanly,
    rolls back otherwise.
    """

    async def get_campaign_for_update(self, campaign_id: str) -> Optional[Campaign]:
        """Load and lock the campaign row"""
        ...

    async def get_template(self, template_id: str) -> Optional[Template]:
        ...

    async def resolve_audience(self, query: AudienceQuery) -> List[Customer]:
        ...

    async def mark_sending(
        self, campaign_id: str, total_recipients: int, started_at: datetime
    ) -> Campaign:
        ...


@runtime_checkable
class NotificationRepositoryProtocol(Protocol):
    """
    Interface for Notification Repository.

    Implementations must provide these methods.
    Used for dependency injection to enable testing.
    """

    async def health_check(self) -> bool:
        ...

    # Template operations
    async def create_template(self, template: Template) -> Template:
        ...

    async def get_template(self, template_id: str) -> Optional[Template]:
        ...

    async def list_templates(self, channel: Optional[Channel] = None) -> List[Template]:
        """Active templates, newest first"""
        ...

    async def update_template(self, template_id: str, updates: Dict[str, Any]) -> Optional[Template]:
        ...

    async def count_template_references(self, template_id: str) -> Tuple[int, int]:
        """(live campaign count, active trigger count)"""
        ...

    async def delete_template(self, template_id: str) -> bool:
        """Hard delete"""
        ...

    # Campaign operations
    async def create_campaign(self, campaign: Campaign) -> Campaign:
        ...

    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        ...

    async def list_campaigns(
        self,
        status: Optional[CampaignStatus] = None,
        category: Optional[CampaignCategory] = None,
        target_audience: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Campaign], int]:
        ...

    async def list_campaigns_by_status(self, status: CampaignStatus) -> List[Campaign]:
        ...

    def unit_of_work(self) -> AsyncContextManager[CampaignSendUnitOfWork]:
        ...

    async def transition_campaign(
        self,
        campaign_id: str,
        from_statuses: Sequence[CampaignStatus],
        to_status: CampaignStatus,
        updates: Optional[Dict[str, Any]] = None,
    ) -> Optional[Campaign]:
        """Compare-and-set status change; None when the current status is not in from_statuses"""
        ...

    async def increment_campaign_engagement(
        self, campaign_id: str, opened: int = 0, clicked: int = 0
    ) -> None:
        ...

    async def list_campaigns_sent_since(self, since: datetime, limit: int = 10) -> List[Campaign]:
        ...

    # Notification operations
    async def create_notification(self, notification: Notification) -> Notification:
        ...

    async def get_notification(self, notification_id: str) -> Optional[Notification]:
        ...

    async def update_notification(
        self, notification_id: str, updates: Dict[str, Any]
    ) -> Optional[Notification]:
        ...

    async def transition_notification(
        self,
        notification_id: str,
        from_status: NotificationStatus,
        updates: Dict[str, Any],
    ) -> Optional[Notification]:
        """Compare-and-set update; None when the status is no longer from_status"""
        ...

    async def count_campaign_notifications(
        self, campaign_id: str, statuses: Sequence[NotificationStatus]
    ) -> int:
        ...

    async def count_notifications_by_channel_status(
        self, since: datetime
    ) -> List[Tuple[Channel, NotificationStatus, int]]:
        ...

    # Customer directory (read-only)
    async def get_customer(self, customer_id: str) -> Optional[Customer]:
        ...

    async def resolve_audience(self, query: AudienceQuery) -> List[Customer]:
        ...

    async def list_customers_with_special_dates(self) -> List[Customer]:
        """Active customers with an email and a birthday or anniversary"""
        ...

    # Preferences
    async def get_preference(self, customer_id: str) -> Optional[NotificationPreference]:
        ...

    async def upsert_preference(self, preference: NotificationPreference) -> NotificationPreference:
        ...

    # Triggers
    async def create_trigger(self, trigger: Trigger) -> Trigger:
        ...

    async def list_triggers(self, trigger_type: Optional[TriggerType] = None) -> List[Trigger]:
        ...

    # Email log
    async def append_email_log(self, log: EmailLog) -> EmailLog:
        ...

    async def list_email_logs(
        self,
        limit: int,
        offset: int,
        email_type: Optional[SpecialDayType] = None,
        status: Optional[EmailLogStatus] = None,
    ) -> Tuple[List[EmailLog], int]:
        ...


# ====================
# Transport / bus protocols
# ====================


@runtime_checkable
class ChannelSenderProtocol(Protocol):
    """Sends one rendered message over one channel"""

    name: str

    async def send(self, recipient: str, subject: Optional[str], content: str) -> DispatchResult:
        ...

    async def verify(self) -> bool:
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class EventBusProtocol(Protocol):
    """Interface for Event Bus"""

    async def publish_event(self, event: Any) -> bool:
        ...
