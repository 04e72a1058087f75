"""
Component Test Layer Configuration (Layer 3)

Structure:
    tests/component/
    └── notification/   Services wired to in-memory repository and transports

Usage:
    pytest tests/component -v
    pytest tests/component/notification -v
"""
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

# Set testing environment BEFORE any imports
os.environ["ENV"] = "testing"
os.environ["ENVIRONMENT"] = "testing"
os.environ["NATS_ENABLED"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"

# Add project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

# Load test environment variables
project_root = Path(__file__).parent.parent.parent
test_env_file = project_root / "deployment" / "environments" / "test.env"
if test_env_file.exists():
    load_dotenv(test_env_file, override=True)


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure custom markers"""
    config.addinivalue_line(
        "markers", "component: marks tests as component tests"
    )
