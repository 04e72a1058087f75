"""
API Test Layer Configuration

Layer 1: API Contract Tests
- Requests go through the real FastAPI app over httpx's ASGI transport
- The service factory is built on in-memory dependencies and injected
  with app.dependency_overrides
- Validates HTTP status codes, payload shapes and error bodies

Usage:
    pytest tests/api -v
    pytest tests/api -v -k "campaign"
"""

import os
import sys

# Set testing environment BEFORE any service imports
os.environ["ENV"] = "testing"
os.environ["ENVIRONMENT"] = "testing"
os.environ["NATS_ENABLED"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"

# Add project root
sys.path.insert(
    0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
)


def pytest_configure(config):
    """Configure custom markers"""
    config.addinivalue_line("markers", "api: marks tests as API contract tests")
