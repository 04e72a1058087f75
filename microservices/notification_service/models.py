"""
Notification Service Data Models

Templates, campaigns, notifications, triggers, preferences and the
special-day email ledger, plus request/response models for the API.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


# ====================
# Enums
# ====================


class Channel(str, Enum):
    """Delivery channel"""
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"


class CampaignStatus(str, Enum):
    """Campaign lifecycle status"""
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"


class CampaignCategory(str, Enum):
    """Campaign category (drives category opt-in)"""
    PROMOTION = "promotion"
    LOYALTY = "loyalty"
    PAYMENT_REMINDER = "payment_reminder"
    CUSTOM = "custom"


class TargetAudience(str, Enum):
    """Base audience selector"""
    ALL = "all"
    NEW = "new"
    RETURNING = "returning"
    LOYALTY = "loyalty"


class NotificationStatus(str, Enum):
    """Per-recipient delivery status"""
    QUEUED = "queued"
    SENT = "sent"
    DELIVERED = "delivered"
    OPENED = "opened"
    CLICKED = "clicked"
    FAILED = "failed"


class TriggerType(str, Enum):
    """Trigger type"""
    PROMOTION = "promotion"
    LOYALTY = "loyalty"
    PAYMENT_REMINDER = "payment_reminder"
    ORDER_UPDATE = "order_update"
    CUSTOM = "custom"
    BIRTHDAY = "birthday"
    ANNIVERSARY = "anniversary"


class SpecialDayType(str, Enum):
    """Date-predicate email type"""
    BIRTHDAY = "birthday"
    ANNIVERSARY = "anniversary"


class EmailLogStatus(str, Enum):
    """Special-day email attempt outcome"""
    SUCCESS = "success"
    FAILED = "failed"


VariableValue = Union[str, int, float, bool, None]


# ====================
# Customer directory read model
# ====================


class Customer(BaseModel):
    """Customer record as exposed by the customer directory"""
    id: str
    first_name: str = ""
    last_name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    is_active: bool = True
    customer_group: Optional[str] = None
    loyalty_points: int = 0
    loyalty_tier: Optional[str] = None
    total_spent: Decimal = Decimal("0")
    last_purchase_date: Optional[datetime] = None
    birthday: Optional[date] = None
    anniversary_date: Optional[date] = None
    created_at: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def address_for(self, channel: Channel) -> Optional[str]:
        """Recipient address for a channel (sms uses phone, everything else email)"""
        value = self.phone if channel == Channel.SMS else self.email
        if value is None or not value.strip():
            return None
        return value.strip()

    def render_variables(self) -> Dict[str, Any]:
        """Values exposed to templates under the `customer` key"""
        return {
            "id": self.id,
            "name": self.full_name,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "loyalty_points": self.loyalty_points,
            "loyalty_tier": self.loyalty_tier,
        }


class NotificationPreference(BaseModel):
    """Per-customer channel and category opt-in flags"""
    customer_id: str
    sms_enabled: bool = True
    email_enabled: bool = True
    push_enabled: bool = True
    marketing_sms: bool = True
    marketing_email: bool = True
    marketing_push: bool = True
    loyalty_notifications: bool = True
    payment_reminders: bool = True
    order_updates: bool = True
    updated_at: Optional[datetime] = None
    is_default: bool = Field(default=False, description="True when no stored row exists")

    def allows_channel(self, channel: Channel) -> bool:
        return getattr(self, f"{channel.value}_enabled")

    def allows_category(self, category: CampaignCategory, channel: Channel) -> bool:
        if category == CampaignCategory.PROMOTION:
            return getattr(self, f"marketing_{channel.value}")
        if category == CampaignCategory.LOYALTY:
            return self.loyalty_notifications
        if category == CampaignCategory.PAYMENT_REMINDER:
            return self.payment_reminders
        return True


# ====================
# Structured fields
# ====================


class AudienceFilter(BaseModel):
    """Declarative audience selection stored on a campaign"""
    model_config = ConfigDict(extra="forbid")

    target_audience: TargetAudience = TargetAudience.ALL
    customer_group: Optional[str] = Field(None, min_length=1)
    min_purchase_amount: Optional[Decimal] = Field(None, ge=0)
    last_purchase_days: Optional[int] = Field(None, ge=1, le=3650)
    notification_type: Optional[Channel] = Field(None, description="Channel whose opt-in is required")


class DatePredicateCondition(BaseModel):
    """Fires when today's month/day equals a stored customer date"""
    model_config = ConfigDict(extra="forbid")

    kind: Literal["date_predicate"] = "date_predicate"
    date_field: Literal["birthday", "anniversary_date"]


class GenericCondition(BaseModel):
    """Opaque rule payload kept for future trigger evaluators"""
    kind: Literal["generic"] = "generic"
    rules: Dict[str, Any] = Field(default_factory=dict)


TriggerCondition = Annotated[
    Union[DatePredicateCondition, GenericCondition],
    Field(discriminator="kind"),
]


# ====================
# Core entities
# ====================


class Template(BaseModel):
    """Reusable message skeleton"""
    id: str
    name: str
    channel: Channel
    subject: Optional[str] = None
    body: str
    variables: Dict[str, VariableValue] = Field(default_factory=dict, description="Default variable values")
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Campaign(BaseModel):
    """Bulk message run"""
    id: str
    name: str
    description: Optional[str] = None
    template_id: str
    template_name: Optional[str] = None
    category: CampaignCategory = CampaignCategory.CUSTOM
    audience: AudienceFilter = Field(default_factory=AudienceFilter)
    scheduled_at: Optional[datetime] = None
    status: CampaignStatus = CampaignStatus.DRAFT
    total_recipients: int = 0
    sent_count: int = 0
    opened_count: int = 0
    clicked_count: int = 0
    failure_reason: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    sending_started_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None


class Notification(BaseModel):
    """One rendered, addressed message"""
    id: str
    campaign_id: Optional[str] = None
    customer_id: str
    channel: Channel
    subject: Optional[str] = None
    content: str
    recipient: str
    status: NotificationStatus = NotificationStatus.QUEUED
    error_message: Optional[str] = None
    provider_message_id: Optional[str] = None
    created_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    opened_at: Optional[datetime] = None
    clicked_at: Optional[datetime] = None


class Trigger(BaseModel):
    """Named notification rule (metadata only)"""
    id: str
    name: str
    trigger_type: TriggerType
    conditions: TriggerCondition
    template_id: str
    is_active: bool = True
    created_at: Optional[datetime] = None


class EmailLog(BaseModel):
    """Special-day email attempt"""
    id: str
    customer_id: str
    email_type: SpecialDayType
    status: EmailLogStatus
    error: Optional[str] = None
    sent_at: datetime
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None


class DispatchResult(BaseModel):
    """Outcome of sending one message over one channel"""
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


# ====================
# Request Models
# ====================


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TemplateCreateRequest(BaseModel):
    """Create template request"""
    name: str = Field(..., max_length=255)
    channel: Channel
    subject: Optional[str] = Field(None, max_length=500)
    body: str
    variables: Dict[str, VariableValue] = Field(default_factory=dict)


class TemplateUpdateRequest(BaseModel):
    """Partial template update"""
    name: Optional[str] = Field(None, max_length=255)
    channel: Optional[Channel] = None
    subject: Optional[str] = Field(None, max_length=500)
    body: Optional[str] = None
    variables: Optional[Dict[str, VariableValue]] = None
    is_active: Optional[bool] = None


class CampaignCreateRequest(BaseModel):
    """Create campaign request"""
    name: str = Field(..., max_length=255)
    description: Optional[str] = None
    template_id: str
    category: CampaignCategory = CampaignCategory.CUSTOM
    audience: AudienceFilter = Field(default_factory=AudienceFilter)
    scheduled_at: Optional[datetime] = None

    @field_validator("scheduled_at")
    @classmethod
    def normalize_scheduled_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)


class TriggerCreateRequest(BaseModel):
    """Create trigger request"""
    name: str = Field(..., max_length=255)
    trigger_type: TriggerType
    conditions: TriggerCondition = Field(default_factory=GenericCondition)
    template_id: str


class PreferenceUpdateRequest(BaseModel):
    """Partial preference update"""
    model_config = ConfigDict(extra="forbid")

    sms_enabled: Optional[bool] = None
    email_enabled: Optional[bool] = None
    push_enabled: Optional[bool] = None
    marketing_sms: Optional[bool] = None
    marketing_email: Optional[bool] = None
    marketing_push: Optional[bool] = None
    loyalty_notifications: Optional[bool] = None
    payment_reminders: Optional[bool] = None
    order_updates: Optional[bool] = None


class SendNotificationRequest(BaseModel):
    """One-off notification outside any campaign"""
    customer_id: str
    channel: Channel
    subject: Optional[str] = None
    content: str
    recipient: Optional[str] = Field(None, description="Defaults to the customer's channel address")
    variables: Dict[str, VariableValue] = Field(default_factory=dict)


class DeliveryStatusUpdateRequest(BaseModel):
    """Delivery receipt (provider webhook or client beacon)"""
    status: NotificationStatus
    occurred_at: Optional[datetime] = None
    error: Optional[str] = None

    @field_validator("occurred_at")
    @classmethod
    def normalize_occurred_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)


class EmailCheckRequest(BaseModel):
    """Send a transport test email"""
    to: EmailStr
    subject: str = "Notification service test email"
    content: str = "<p>This is a test email from the notification service.</p>"


# ====================
# Response Models
# ====================


class TemplateListResponse(BaseModel):
    templates: List[Template]
    total: int


class CampaignListResponse(BaseModel):
    campaigns: List[Campaign]
    total: int
    limit: int
    offset: int


class TriggerListResponse(BaseModel):
    triggers: List[Trigger]
    total: int


class AudiencePreviewResponse(BaseModel):
    customers: List[Customer]
    total: int


class DeleteResponse(BaseModel):
    success: bool = True
    message: str


class StatusCounters(BaseModel):
    """Delivery counters; each state counts notifications that reached it"""
    total: int = 0
    queued: int = 0
    sent: int = 0
    delivered: int = 0
    opened: int = 0
    clicked: int = 0
    failed: int = 0


class ChannelBreakdown(StatusCounters):
    channel: Channel


class CampaignPerformance(BaseModel):
    campaign_id: str
    name: str
    category: CampaignCategory
    total_recipients: int
    sent_count: int
    opened_count: int
    clicked_count: int
    open_rate: float
    click_rate: float
    sent_at: Optional[datetime] = None


class AnalyticsReport(BaseModel):
    period_days: int
    generated_at: datetime
    overall: StatusCounters
    campaigns: List[CampaignPerformance]
    channels: List[ChannelBreakdown]


class SweepResult(BaseModel):
    """Outcome of one scheduler sweep"""
    started_at: datetime
    sent: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    reconciled: List[str] = Field(default_factory=list)


class SpecialDayDispatchResult(BaseModel):
    email_type: SpecialDayType
    success: bool
    emails_sent: int = 0
    emails_failed: int = 0
    total_customers: int = 0
    message: str = ""
    error: Optional[str] = None


class SpecialDaySummary(BaseModel):
    success: bool
    birthday: SpecialDayDispatchResult
    anniversary: SpecialDayDispatchResult
    total_emails_sent: int
    total_emails_failed: int


class UpcomingSpecialDay(BaseModel):
    customer_id: str
    first_name: str
    last_name: str
    email: Optional[str] = None
    email_type: SpecialDayType
    date: date
    days_until: int


class UpcomingSpecialDaysResponse(BaseModel):
    days: int
    total: int
    upcoming: List[UpcomingSpecialDay]


class SpecialDayServiceStatus(BaseModel):
    email_transport_ok: bool
    email_transport: str
    birthdays_today: int
    anniversaries_today: int


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class EmailLogListResponse(BaseModel):
    logs: List[EmailLog]
    pagination: Pagination


class JobStatus(BaseModel):
    name: str
    schedule: str
    running: bool
    next_run_at: Optional[datetime] = None
    run_count: int = 0
    last_run_at: Optional[datetime] = None
    last_error: Optional[str] = None


class SchedulerStatusResponse(BaseModel):
    running: bool
    jobs: List[JobStatus]


class JobRunResponse(BaseModel):
    """On-demand job run; errors are reported in job.last_error"""
    job: JobStatus
    result: Optional[Any] = None


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    service: str
    port: int
    version: str
    dependencies: Dict[str, str] = Field(default_factory=dict)


class ReadinessResponse(BaseModel):
    ready: bool
    checks: Dict[str, bool]
    details: Dict[str, str]


class LivenessResponse(BaseModel):
    alive: bool
    uptime_seconds: float
