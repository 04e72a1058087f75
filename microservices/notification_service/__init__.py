"""
Notification Service Package

Notification templates, campaigns, scheduled dispatch, delivery tracking
and birthday/anniversary emails.
"""

from .campaign_manager import CampaignLifecycleManager
from .delivery_tracker import AnalyticsAggregator, DeliveryTracker
from .notification_service import NotificationService
from .special_day_service import SpecialDayService

__version__ = "1.0.0"
__all__ = [
    "AnalyticsAggregator",
    "CampaignLifecycleManager",
    "DeliveryTracker",
    "NotificationService",
    "SpecialDayService",
]
