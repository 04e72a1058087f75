#!/usr/bin/env python3
"""
Core Module for Microservices Architecture

Shared infrastructure used by the notification engine.

COMPONENTS:
    - config/: Environment-driven configuration dataclasses
    - postgres_client.py: asyncpg pool wrapper
    - nats_client.py: NATS event bus
"""
