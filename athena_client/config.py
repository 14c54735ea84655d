"""
Client Configuration - Environment-driven defaults for the query client
"""

import os
from pathlib import Path
from typing import Optional, Union

import structlog
from dotenv import load_dotenv
from pydantic import ValidationError

from execution.admission import get_admission_controller
from execution.errors import ConfigurationError
from execution.models import ExecutionConfig

logger = structlog.get_logger(__name__)


def load_environment(env_file: Optional[Union[str, Path]] = None) -> bool:
    """
    Load ATHENA_* variables from a dotenv file

    Variables already set in the process environment win.

    Args:
        env_file: Path to the dotenv file (defaults to .env in the working directory)

    Returns:
        True if a file was found and loaded
    """
    path = Path(env_file) if env_file else Path.cwd() / '.env'

    if not path.exists():
        logger.debug("env_file_not_found", path=str(path))
        return False

    load_dotenv(path, override=False)
    logger.info("env_file_loaded", path=str(path))
    return True


def _env_number(name: str, default: str, parse):
    raw = os.getenv(name, default)
    try:
        return parse(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e


def _env_float(name: str, default: str) -> float:
    return _env_number(name, default, float)


def _env_int(name: str, default: str) -> int:
    return _env_number(name, default, int)


class ClientSettings:
    """Client configuration read from the environment"""

    def __init__(self):
        # Query context
        self.OUTPUT_LOCATION = os.getenv("ATHENA_OUTPUT_LOCATION") or None
        self.DATABASE = os.getenv("ATHENA_DATABASE", "default")
        self.WORKGROUP = os.getenv("ATHENA_WORKGROUP", "primary")
        self.REGION = os.getenv("ATHENA_REGION") or os.getenv("AWS_REGION") or None

        # Encryption
        self.ENCRYPTION_OPTION = os.getenv("ATHENA_ENCRYPTION_OPTION") or None
        self.ENCRYPTION_KMS_KEY = os.getenv("ATHENA_ENCRYPTION_KMS_KEY") or None

        # Polling (seconds)
        self.POLLING_INTERVAL = _env_float("ATHENA_POLLING_INTERVAL", "1.0")
        self.QUERY_TIMEOUT = _env_float("ATHENA_QUERY_TIMEOUT", "0")
        self.EXEC_RIGHT_CHECK_INTERVAL = _env_float("ATHENA_EXEC_RIGHT_CHECK_INTERVAL", "0.1")

        # Retry
        self.BASE_RETRY_WAIT = _env_float("ATHENA_BASE_RETRY_WAIT", "0.2")
        self.RETRY_WAIT_MAX = _env_float("ATHENA_RETRY_WAIT_MAX", "10.0")
        self.RETRY_COUNT_MAX = _env_int("ATHENA_RETRY_COUNT_MAX", "10")

        # Admission
        self.CONCURRENT_EXEC_MAX = _env_int("ATHENA_CONCURRENT_EXEC_MAX", "5")

    def execution_config(self) -> ExecutionConfig:
        """
        Build the base ExecutionConfig from these settings

        Raises:
            ConfigurationError: If a setting is out of range or inconsistent
        """
        try:
            config = ExecutionConfig(
                output_location=self.OUTPUT_LOCATION,
                database=self.DATABASE,
                workgroup=self.WORKGROUP,
                encryption_option=self.ENCRYPTION_OPTION,
                encryption_kms_key=self.ENCRYPTION_KMS_KEY,
                polling_interval=self.POLLING_INTERVAL,
                query_timeout=self.QUERY_TIMEOUT,
                exec_right_check_interval=self.EXEC_RIGHT_CHECK_INTERVAL,
                base_retry_wait=self.BASE_RETRY_WAIT,
                retry_wait_max=self.RETRY_WAIT_MAX,
                retry_count_max=self.RETRY_COUNT_MAX,
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid ATHENA_* settings: {e}") from e

        config.validate_encryption()
        return config

    def apply_admission(self) -> None:
        """
        Apply CONCURRENT_EXEC_MAX to the process-wide admission controller

        Raises:
            ConfigurationError: If the ceiling is below 1
        """
        try:
            get_admission_controller().max_concurrent = self.CONCURRENT_EXEC_MAX
        except ValueError as e:
            raise ConfigurationError(str(e)) from e


def settings_config() -> ExecutionConfig:
    """ExecutionConfig built from the current environment"""
    return ClientSettings().execution_config()
