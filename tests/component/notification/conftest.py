"""
Component Test Fixtures for Notification Service

Services are wired to the in-memory repository, a recording email
transport and a recording event bus. Time comes from a FrozenClock.
"""

import pytest

from microservices.notification_service.campaign_manager import CampaignLifecycleManager
from microservices.notification_service.channels import ChannelDispatcher
from microservices.notification_service.delivery_tracker import AnalyticsAggregator, DeliveryTracker
from microservices.notification_service.events.publishers import NotificationEventPublishers
from microservices.notification_service.notification_service import NotificationService
from microservices.notification_service.scheduler import SchedulerSweep
from microservices.notification_service.special_day_service import SpecialDayService
from core.config import MailConfig

from tests.component.notification.mocks import (
    InMemoryNotificationRepository,
    RecordingEmailSender,
    RecordingEventBus,
)
from tests.contracts.notification.data_contract import FrozenClock, NotificationTestDataFactory


@pytest.fixture
def factory():
    return NotificationTestDataFactory


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def repository():
    return InMemoryNotificationRepository()


@pytest.fixture
def email_sender():
    return RecordingEmailSender()


@pytest.fixture
def event_bus():
    return RecordingEventBus()


@pytest.fixture
def dispatcher(email_sender):
    return ChannelDispatcher.with_email(email_sender)


@pytest.fixture
def publishers(event_bus):
    return NotificationEventPublishers(event_bus)


@pytest.fixture
def notification_service(repository, dispatcher, clock):
    return NotificationService(repository=repository, dispatcher=dispatcher, clock=clock)


@pytest.fixture
def campaign_manager(repository, dispatcher, publishers, clock):
    return CampaignLifecycleManager(
        repository=repository,
        dispatcher=dispatcher,
        event_publishers=publishers,
        clock=clock,
        send_concurrency=3,
    )


@pytest.fixture
def sweep(repository, campaign_manager, clock):
    return SchedulerSweep(
        repository=repository,
        campaign_manager=campaign_manager,
        clock=clock,
        stale_sending_minutes=30,
    )


@pytest.fixture
def delivery_tracker(repository, publishers, clock):
    return DeliveryTracker(repository, publishers, clock=clock)


@pytest.fixture
def analytics(repository, clock):
    return AnalyticsAggregator(repository, clock=clock)


@pytest.fixture
def special_days(repository, dispatcher, publishers, clock):
    return SpecialDayService(
        repository=repository,
        dispatcher=dispatcher,
        mail_config=MailConfig(store_name="Atelier", store_url="https://shop.example.com"),
        event_publishers=publishers,
        clock=clock,
    )


@pytest.fixture
def email_template(repository, factory):
    template = factory.make_template()
    repository.templates[template.id] = template
    return template
