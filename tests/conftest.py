"""
Global pytest configuration and fixtures for the metering engine tests.
"""

import os
import sys

import pytest

# Keep the test run on SQLite and away from any developer .env database
os.environ.pop("DATABASE_URL", None)
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("OBSERVABILITY__LOG_FORMAT", "text")

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))


@pytest.fixture(autouse=True)
def _reset_structlog():
    """Keep structlog configuration from leaking between tests."""
    import structlog

    yield
    structlog.reset_defaults()
