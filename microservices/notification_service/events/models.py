"""
Event Data Models for Notification Service

Defines Pydantic models for events published by notification_service
"""

from typing import Optional

from pydantic import BaseModel, Field


# ====================
# Outbound Event Models (Published by notification_service)
# ====================

class CampaignCreatedEventData(BaseModel):
    """Data for campaign.created event"""
    campaign_id: str = Field(..., description="Campaign ID")
    name: str = Field(..., description="Campaign name")
    status: str = Field(..., description="draft or scheduled")
    scheduled_at: Optional[str] = Field(None, description="ISO timestamp of the planned send")
    created_by: Optional[str] = Field(None, description="Creator reference")
    timestamp: str = Field(..., description="ISO timestamp of creation")


class CampaignSentEventData(BaseModel):
    """Data for campaign.sent event"""
    campaign_id: str = Field(..., description="Campaign ID")
    total_recipients: int = Field(..., description="Audience size at send time")
    sent_count: int = Field(..., description="Notifications that reached sent")
    failed_count: int = Field(..., description="Notifications that failed")
    timestamp: str = Field(..., description="ISO timestamp of completion")


class CampaignFailedEventData(BaseModel):
    """Data for campaign.failed event"""
    campaign_id: str = Field(..., description="Campaign ID")
    reason: str = Field(..., description="Failure reason")
    timestamp: str = Field(..., description="ISO timestamp of failure")


class NotificationStatusChangedEventData(BaseModel):
    """Data for notification.status_changed event"""
    notification_id: str = Field(..., description="Notification ID")
    campaign_id: Optional[str] = Field(None, description="Owning campaign, if any")
    customer_id: str = Field(..., description="Recipient customer")
    channel: str = Field(..., description="email, sms or push")
    previous_status: str = Field(..., description="Status before the change")
    status: str = Field(..., description="Status after the change")
    timestamp: str = Field(..., description="ISO timestamp of the change")


class SpecialDayDispatchCompletedEventData(BaseModel):
    """Data for special_day.dispatch_completed event"""
    birthday_sent: int = Field(..., description="Birthday emails sent")
    anniversary_sent: int = Field(..., description="Anniversary emails sent")
    total_failed: int = Field(..., description="Failed attempts across both paths")
    timestamp: str = Field(..., description="ISO timestamp of completion")
