#!/usr/bin/env python3
"""Modular configuration system for the notification engine

Configuration hierarchy:
- infra_config: Infrastructure services (PostgreSQL, NATS)
- logging_config: Logging configuration
- notification_config: Mail transport, scheduler and campaign send settings
"""
import os
from dotenv import load_dotenv
from .logging_config import LoggingConfig, configure_logging
from .infra_config import InfraConfig
from .notification_config import MailConfig, NotificationConfig, SchedulerConfig

# Load environment file based on ENV
env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
env_files = {
    "development": "deployment/environments/dev.env",
    "dev": "deployment/environments/dev.env",
    "testing": "deployment/environments/test.env",
    "test": "deployment/environments/test.env",
    "staging": "deployment/environments/staging.env",
    "production": "deployment/environments/production.env",
}
env_file = env_files.get(env, "deployment/environments/dev.env")
load_dotenv(env_file, override=False)

# Create global settings instance
settings = NotificationConfig.from_env()

def get_settings() -> NotificationConfig:
    """Get global settings instance"""
    return settings

def reload_settings() -> NotificationConfig:
    """Reload settings from environment"""
    global settings
    settings = NotificationConfig.from_env()
    return settings

__all__ = [
    # Main config
    'NotificationConfig',
    'get_settings',
    'reload_settings',
    'settings',
    # Sub-configs
    'LoggingConfig',
    'configure_logging',
    'InfraConfig',
    'MailConfig',
    'SchedulerConfig',
]
