"""
Notification Repository Integration Fixtures

Runs against the PostgreSQL configured by POSTGRES_* variables. The
notification schema is applied once per test and its tables are emptied;
directory rows created here use the "it_" id prefix and are removed after.
"""

import os
import sys
from typing import AsyncGenerator

import pytest
import pytest_asyncio

_project_root = os.path.join(os.path.dirname(os.path.abspath(__file__)), "../../..")
sys.path.insert(0, _project_root)

from core.config import InfraConfig
from core.postgres_client import PostgresClient
from microservices.notification_service.notification_repository import NotificationRepository

from tests.contracts.notification.data_contract import NotificationTestDataFactory

NOTIFICATION_TABLES = [
    "notification.email_logs",
    "notification.notifications",
    "notification.triggers",
    "notification.campaigns",
    "notification.templates",
    "notification.preferences",
]


async def _insert_customer(db: PostgresClient, customer) -> None:
    await db.execute(
        '''
        INSERT INTO public.customers (
            id, first_name, last_name, email, phone, is_active, customer_group,
            loyalty_points, total_spent, last_purchase_date, birthday, anniversary_date, created_at
        ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
        ''',
        [
            customer.id, customer.first_name, customer.last_name, customer.email, customer.phone,
            customer.is_active, customer.customer_group, customer.loyalty_points, customer.total_spent,
            customer.last_purchase_date, customer.birthday, customer.anniversary_date, customer.created_at,
        ],
    )


@pytest.fixture
def factory():
    return NotificationTestDataFactory


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[PostgresClient, None]:
    client = PostgresClient("notification_service_tests", InfraConfig.from_env())
    await client.connect()
    yield client
    await client.execute("DELETE FROM public.customers WHERE id LIKE 'it\\_%'")
    await client.close()


@pytest_asyncio.fixture
async def pg_repository(db) -> AsyncGenerator[NotificationRepository, None]:
    repository = NotificationRepository(db)
    await repository.apply_schema()
    await db.execute(f"TRUNCATE {', '.join(NOTIFICATION_TABLES)}")
    await db.execute("DELETE FROM public.customers WHERE id LIKE 'it\\_%'")
    yield repository


@pytest.fixture
def add_customers(db):
    async def _add(*customers):
        for customer in customers:
            await _insert_customer(db, customer)
    return _add
