"""
Pytest configuration and fixtures
Loads environment variables and sets up test infrastructure
"""

import pytest
import os
from pathlib import Path

from dotenv import load_dotenv


def load_env_file():
    """Load environment variables from .env.test for testing"""
    env_file = Path(__file__).parent / '.env.test'
    if env_file.exists():
        # Only set if not already set (allow override)
        load_dotenv(env_file, override=False)


def pytest_configure(config):
    """Configure pytest and load environment"""
    # Load environment first
    load_env_file()

    # Register custom markers
    config.addinivalue_line(
        "markers", "athena: marks tests as requiring a live Athena connection"
    )


@pytest.fixture(scope="session")
def athena_enabled():
    """Check if live Athena tests are enabled"""
    return os.getenv("ATHENA_LIVE_TESTS", "false").lower() == "true"


@pytest.fixture(scope="session")
def skip_if_no_athena(athena_enabled):
    """Skip test if live Athena is not enabled"""
    if not athena_enabled:
        pytest.skip("Athena not enabled (set ATHENA_LIVE_TESTS=true)")
