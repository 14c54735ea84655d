"""
Pytest configuration and shared fixtures
"""

import pytest
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from execution.admission import AdmissionController, reset_admission_controller
from execution.models import ExecutionConfig


@pytest.fixture
def project_root_path():
    """Path to project root"""
    return project_root


@pytest.fixture
def fast_config():
    """Execution config with intervals short enough for unit tests"""
    return ExecutionConfig(
        output_location="s3://test-bucket/results/",
        polling_interval=0.01,
        exec_right_check_interval=0.005,
        base_retry_wait=0.0,
        retry_wait_max=0.0,
        retry_count_max=3
    )


@pytest.fixture
def admission():
    """Isolated admission controller"""
    return AdmissionController(max_concurrent=5, check_interval=0.005)


@pytest.fixture(autouse=True)
def fresh_process_admission():
    """Process-wide controller never leaks between tests"""
    reset_admission_controller()
    yield
    reset_admission_controller()


# Configure pytest
def pytest_configure(config):
    """Pytest configuration"""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
