"""
Notification Service Factory

Factory for creating notification service components with proper
dependency injection. This is the ONLY place that builds I/O-dependent
objects (PostgreSQL pool, NATS connection, Resend client, APScheduler).

Usage:
    factory = NotificationServiceFactory(get_settings())
    await factory.initialize()
    ...
    await factory.close()
"""

import logging
from typing import Optional

from core.config import NotificationConfig, get_settings
from core.nats_client import NATSEventBus

from .campaign_manager import CampaignLifecycleManager
from .channels import ChannelDispatcher, build_email_sender
from .delivery_tracker import AnalyticsAggregator, DeliveryTracker
from .events.publishers import NotificationEventPublishers
from .notification_service import NotificationService
from .protocols import (
    ChannelSenderProtocol,
    Clock,
    EventBusProtocol,
    NotificationRepositoryProtocol,
    utc_now,
)
from .renderer import MessageRenderer
from .scheduler import SchedulerRegistry, SchedulerSweep, parse_time_of_day
from .special_day_service import SpecialDayService

logger = logging.getLogger(__name__)

CAMPAIGN_SWEEP_JOB = "campaign_sweep"
SPECIAL_DAY_JOB = "special_day_emails"


def _not_initialized() -> RuntimeError:
    return RuntimeError("Factory not initialized. Call initialize() first.")


class NotificationServiceFactory:
    """Factory for creating notification service components"""

    def __init__(
        self,
        config: Optional[NotificationConfig] = None,
        repository: Optional[NotificationRepositoryProtocol] = None,
        email_sender: Optional[ChannelSenderProtocol] = None,
        event_bus: Optional[EventBusProtocol] = None,
        clock: Clock = utc_now,
    ):
        """
        Args:
            config: Service configuration (defaults to the global settings)
            repository: Pre-built repository; skips PostgreSQL setup
            email_sender: Pre-built email transport; skips Resend setup
            event_bus: Pre-built event bus; skips NATS setup
            clock: Process clock shared by every component
        """
        self.config = config or get_settings()
        self.clock = clock

        self._repository = repository
        self._owns_repository = repository is None
        self._email_sender = email_sender
        self._owns_email_sender = email_sender is None
        self._event_bus = event_bus
        self._owns_event_bus = event_bus is None

        self._dispatcher: Optional[ChannelDispatcher] = None
        self._service: Optional[NotificationService] = None
        self._campaign_manager: Optional[CampaignLifecycleManager] = None
        self._delivery_tracker: Optional[DeliveryTracker] = None
        self._analytics: Optional[AnalyticsAggregator] = None
        self._special_days: Optional[SpecialDayService] = None
        self._sweep: Optional[SchedulerSweep] = None
        self._scheduler: Optional[SchedulerRegistry] = None

    async def initialize(self) -> None:
        """Initialize all components"""
        logger.info("Initializing Notification Service components...")

        # Email transport first: a production misconfiguration must stop startup
        if self._email_sender is None:
            self._email_sender = build_email_sender(self.config.mail, self.config.is_production)
        self._dispatcher = ChannelDispatcher.with_email(self._email_sender)

        # Initialize repository
        if self._repository is None:
            from core.postgres_client import PostgresClient
            from .notification_repository import NotificationRepository

            infra = self.config.infrastructure
            repository = NotificationRepository(
                PostgresClient(self.config.service_name, infra),
                customer_table=infra.customer_table,
            )
            await repository.initialize()
            if infra.apply_migrations:
                await repository.apply_schema()
            self._repository = repository

        # Initialize NATS client (optional)
        if self._event_bus is None and self.config.infrastructure.nats_enabled:
            try:
                nats_client = NATSEventBus(
                    service_name=self.config.service_name,
                    url=self.config.infrastructure.resolved_nats_url,
                )
                await nats_client.connect()
                self._event_bus = nats_client
                logger.info("NATS client connected")
            except Exception as e:
                logger.warning(f"NATS client initialization failed: {e}")
                self._event_bus = None

        publishers = NotificationEventPublishers(self._event_bus)
        renderer = MessageRenderer()

        # Initialize services
        self._service = NotificationService(
            repository=self._repository,
            dispatcher=self._dispatcher,
            renderer=renderer,
            clock=self.clock,
            new_customer_window_days=self.config.new_customer_window_days,
        )
        self._campaign_manager = CampaignLifecycleManager(
            repository=self._repository,
            dispatcher=self._dispatcher,
            renderer=renderer,
            event_publishers=publishers,
            clock=self.clock,
            send_concurrency=self.config.send_concurrency,
            new_customer_window_days=self.config.new_customer_window_days,
        )
        self._delivery_tracker = DeliveryTracker(self._repository, publishers, clock=self.clock)
        self._analytics = AnalyticsAggregator(self._repository, clock=self.clock)
        self._special_days = SpecialDayService(
            repository=self._repository,
            dispatcher=self._dispatcher,
            mail_config=self.config.mail,
            renderer=renderer,
            event_publishers=publishers,
            clock=self.clock,
        )
        self._sweep = SchedulerSweep(
            repository=self._repository,
            campaign_manager=self._campaign_manager,
            clock=self.clock,
            stale_sending_minutes=self.config.scheduler.stale_sending_minutes,
        )

        # Scheduler
        scheduler_config = self.config.scheduler
        self._scheduler = SchedulerRegistry(clock=self.clock)
        self._scheduler.register_interval(
            CAMPAIGN_SWEEP_JOB, self._sweep.sweep, scheduler_config.sweep_interval_seconds
        )
        self._scheduler.register_daily(
            SPECIAL_DAY_JOB,
            self._special_days.send_all_special_day_emails,
            parse_time_of_day(scheduler_config.special_day_run_at),
        )
        if scheduler_config.enabled:
            self._scheduler.start()
        else:
            logger.info("Scheduler disabled; jobs can still be run on demand")

        logger.info("Notification Service components initialized")

    async def close(self) -> None:
        """Close all components"""
        logger.info("Closing Notification Service components...")

        if self._scheduler:
            await self._scheduler.stop()

        if self._dispatcher and self._owns_email_sender:
            await self._dispatcher.close()

        if self._event_bus and self._owns_event_bus:
            await self._event_bus.close()

        if self._repository and self._owns_repository:
            await self._repository.close()

        logger.info("Notification Service components closed")

    @property
    def repository(self) -> NotificationRepositoryProtocol:
        """Get notification repository"""
        if not self._repository:
            raise _not_initialized()
        return self._repository

    @property
    def event_bus(self) -> Optional[EventBusProtocol]:
        """Get event bus (None when NATS is disabled or unreachable)"""
        return self._event_bus

    @property
    def dispatcher(self) -> ChannelDispatcher:
        if not self._dispatcher:
            raise _not_initialized()
        return self._dispatcher

    @property
    def service(self) -> NotificationService:
        """Get notification service"""
        if not self._service:
            raise _not_initialized()
        return self._service

    @property
    def campaign_manager(self) -> CampaignLifecycleManager:
        if not self._campaign_manager:
            raise _not_initialized()
        return self._campaign_manager

    @property
    def delivery_tracker(self) -> DeliveryTracker:
        if not self._delivery_tracker:
            raise _not_initialized()
        return self._delivery_tracker

    @property
    def analytics(self) -> AnalyticsAggregator:
        if not self._analytics:
            raise _not_initialized()
        return self._analytics

    @property
    def special_days(self) -> SpecialDayService:
        if not self._special_days:
            raise _not_initialized()
        return self._special_days

    @property
    def sweep(self) -> SchedulerSweep:
        if not self._sweep:
            raise _not_initialized()
        return self._sweep

    @property
    def scheduler(self) -> SchedulerRegistry:
        """Get scheduler registry"""
        if not self._scheduler:
            raise _not_initialized()
        return self._scheduler


__all__ = [
    "NotificationServiceFactory",
    "CAMPAIGN_SWEEP_JOB",
    "SPECIAL_DAY_JOB",
]
