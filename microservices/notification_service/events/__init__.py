"""
Event publishing for Notification Service
"""

from . import models
from .publishers import NotificationEventPublishers

__all__ = [
    "NotificationEventPublishers",
    "models",
]
