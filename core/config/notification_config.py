#!/usr/bin/env python3
"""Notification engine configuration

Mail transport, scheduler cadence and send tuning for notification_service.
"""
import os
from dataclasses import dataclass, field
from typing import Optional

from .infra_config import InfraConfig
from .logging_config import LoggingConfig

def _bool(val: str) -> bool:
    return val.lower() == "true"

def _int(val: str, default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default


@dataclass
class MailConfig:
    """Email transport configuration (Resend HTTP API)"""
    resend_api_key: Optional[str] = None
    resend_api_url: str = "https://api.resend.com"
    from_address: str = "Atelier <noreply@atelier.example.com>"
    store_name: str = "Atelier"
    store_url: str = "https://atelier.example.com"
    http_timeout: int = 30

    @property
    def has_credentials(self) -> bool:
        return bool(self.resend_api_key)

    @classmethod
    def from_env(cls) -> 'MailConfig':
        return cls(
            resend_api_key=os.getenv("RESEND_API_KEY") or None,
            resend_api_url=os.getenv("RESEND_API_URL", "https://api.resend.com"),
            from_address=os.getenv("EMAIL_FROM", "Atelier <noreply@atelier.example.com>"),
            store_name=os.getenv("STORE_NAME", "Atelier"),
            store_url=os.getenv("STORE_URL", "https://atelier.example.com"),
            http_timeout=_int(os.getenv("EMAIL_HTTP_TIMEOUT", "30"), 30),
        )


@dataclass
class SchedulerConfig:
    """Periodic job configuration"""
    enabled: bool = True
    sweep_interval_seconds: int = 60
    special_day_run_at: str = "09:00"
    stale_sending_minutes: int = 30

    @classmethod
    def from_env(cls) -> 'SchedulerConfig':
        return cls(
            enabled=_bool(os.getenv("SCHEDULER_ENABLED", "true")),
            sweep_interval_seconds=_int(os.getenv("SCHEDULER_SWEEP_INTERVAL_SECONDS", "60"), 60),
            special_day_run_at=os.getenv("SPECIAL_DAY_RUN_AT", "09:00"),
            stale_sending_minutes=_int(os.getenv("STALE_SENDING_MINUTES", "30"), 30),
        )


@dataclass
class NotificationConfig:
    """Main notification_service configuration with all sub-configs"""

    # Environment
    environment: str = "development"
    debug: bool = False

    # Service settings
    service_name: str = "notification_service"
    service_host: str = "0.0.0.0"
    service_port: int = 8206

    # Campaign sending
    send_concurrency: int = 5
    new_customer_window_days: int = 30

    # Sub-configurations
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    infrastructure: InfraConfig = field(default_factory=InfraConfig)
    mail: MailConfig = field(default_factory=MailConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)

    @property
    def is_production(self) -> bool:
        return self.environment in ("production", "prod")

    @classmethod
    def from_env(cls) -> 'NotificationConfig':
        """Load complete configuration from environment"""
        env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
        return cls(
            environment=env,
            debug=_bool(os.getenv("DEBUG", "true" if env == "development" else "false")),
            service_name=os.getenv("SERVICE_NAME", "notification_service"),
            service_host=os.getenv("HOST", "0.0.0.0"),
            service_port=_int(os.getenv("SERVICE_PORT", "8206"), 8206),
            send_concurrency=max(1, _int(os.getenv("CAMPAIGN_SEND_CONCURRENCY", "5"), 5)),
            new_customer_window_days=_int(os.getenv("NEW_CUSTOMER_WINDOW_DAYS", "30"), 30),
            logging=LoggingConfig.from_env(),
            infrastructure=InfraConfig.from_env(),
            mail=MailConfig.from_env(),
            scheduler=SchedulerConfig.from_env(),
        )
