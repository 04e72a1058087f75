"""
Notification API Test Fixtures

The app under test is the real FastAPI application. Its factory dependency
is overridden with a NotificationServiceFactory built on the in-memory
repository, a recording email transport and a recording event bus.
"""

from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio

from core.config import NotificationConfig, SchedulerConfig
from microservices.notification_service.factory import NotificationServiceFactory
from microservices.notification_service.main import API_PREFIX, app, get_optional_factory

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


@pytest_asyncio.fixture
async def components(repository, email_sender, event_bus, clock) -> AsyncGenerator[NotificationServiceFactory, None]:
    """Initialized service factory on in-memory dependencies"""
    config = NotificationConfig(
        environment="testing",
        scheduler=SchedulerConfig(enabled=False),
    )
    service_factory = NotificationServiceFactory(
        config,
        repository=repository,
        email_sender=email_sender,
        event_bus=event_bus,
        clock=clock,
    )
    await service_factory.initialize()
    yield service_factory
    await service_factory.close()


@pytest_asyncio.fixture
async def client(components) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client bound to the app with the factory dependency overridden"""
    app.dependency_overrides[get_optional_factory] = lambda: components
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http_client:
        yield http_client
    app.dependency_overrides.clear()


@pytest.fixture
def api_prefix() -> str:
    return API_PREFIX


@pytest.fixture
def email_template(repository, factory):
    template = factory.make_template()
    repository.templates[template.id] = template
    return template
