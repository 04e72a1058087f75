"""
Root conftest.py - Global configuration for all test layers.

Test Layers:
    - api/        : HTTP contract tests (ASGI transport, in-memory dependencies)
    - component/  : Component tests (services with in-memory repository/transports)
    - unit/       : Unit tests (pure functions, no I/O)
"""
import os
import sys
from typing import Any, Dict, List

import pytest

# Testing environment BEFORE any service imports (settings load at import time)
os.environ.setdefault("ENV", "testing")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ["NATS_ENABLED"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["APPLY_MIGRATIONS"] = "false"
os.environ.pop("RESEND_API_KEY", None)

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)


# =============================================================================
# Assertion Helpers
# =============================================================================

class AssertionHelpers:
    """Custom assertion helpers for tests"""

    @staticmethod
    def assert_http_success(response, expected_status: int = 200):
        """Assert HTTP response is successful"""
        assert response.status_code == expected_status, \
            f"Expected {expected_status}, got {response.status_code}: {response.text}"

    @staticmethod
    def assert_has_fields(data: Dict, fields: List[str]):
        """Assert dict has required fields"""
        missing = [f for f in fields if f not in data]
        assert not missing, f"Missing fields: {missing}"

    @staticmethod
    def assert_event_published(events: List[Any], event_type: str, **kwargs):
        """Assert an event was published with expected data"""
        matching = [e for e in events if getattr(e, "type", None) == event_type]
        assert matching, f"Event '{event_type}' not found in {[getattr(e, 'type', e) for e in events]}"

        if kwargs:
            for event in matching:
                if all(event.data.get(k) == v for k, v in kwargs.items()):
                    return event
            assert False, f"No event matched criteria: {kwargs}"

        return matching[0]


@pytest.fixture
def assertions() -> AssertionHelpers:
    """Provide assertion helpers"""
    return AssertionHelpers()


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "api: API contract tests")
    config.addinivalue_line("markers", "component: Component tests")
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Tests against live infrastructure")
    config.addinivalue_line("markers", "requires_db: Needs a live PostgreSQL")


def pytest_collection_modifyitems(config, items):
    """Skip infrastructure-bound tests unless explicitly enabled"""
    skip_db = pytest.mark.skip(reason="PostgreSQL not available (set RUN_DB_TESTS=1)")

    for item in items:
        if "requires_db" in item.keywords and not os.getenv("RUN_DB_TESTS"):
            item.add_marker(skip_db)
