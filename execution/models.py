"""
Execution Models - Request, configuration and result types
"""

from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigurationError


ENCRYPTION_OPTIONS = ('SSE_S3', 'SSE_KMS', 'CSE_KMS')
KMS_ENCRYPTION_OPTIONS = ('SSE_KMS', 'CSE_KMS')


class ExecutionConfig(BaseModel):
    """Per-request execution configuration (times in seconds)"""

    model_config = ConfigDict(frozen=True, extra='forbid')

    # Result location and query context
    output_location: Optional[str] = None
    database: str = 'default'
    workgroup: str = 'primary'
    encryption_option: Optional[str] = None
    encryption_kms_key: Optional[str] = None

    # Polling
    polling_interval: float = Field(1.0, gt=0)
    query_timeout: float = Field(0.0, ge=0)  # 0 = no deadline
    exec_right_check_interval: float = Field(0.1, gt=0)

    # Retry
    base_retry_wait: float = Field(0.2, ge=0)
    retry_wait_max: float = Field(10.0, ge=0)
    retry_count_max: int = Field(10, ge=1)

    skip_fetch_result: bool = False

    def validate_encryption(self) -> None:
        """
        Fail fast on encryption settings the backend would reject

        Raises:
            ConfigurationError: Unknown option, or KMS option without a key
        """
        if self.encryption_option is None:
            return

        if self.encryption_option not in ENCRYPTION_OPTIONS:
            raise ConfigurationError(
                f"Unknown encryption option: {self.encryption_option}. "
                f"Expected one of {', '.join(ENCRYPTION_OPTIONS)}"
            )

        if self.encryption_option in KMS_ENCRYPTION_OPTIONS and not self.encryption_kms_key:
            raise ConfigurationError(
                f"KMS key required for encryption option {self.encryption_option}"
            )

    def merge(self, **overrides: Any) -> 'ExecutionConfig':
        """
        Return a validated copy with overrides applied

        Raises:
            ConfigurationError: If an override is unknown or invalid
        """
        if not overrides:
            return self

        try:
            merged = ExecutionConfig(**{**self.model_dump(), **overrides})
        except ValidationError as e:
            raise ConfigurationError(f"Invalid execution config: {e}") from e

        merged.validate_encryption()
        return merged


class ExecutionRequest(BaseModel):
    """One query to run - created by the caller, never mutated"""

    model_config = ConfigDict(frozen=True)

    query: str
    max_results: int = Field(1000, ge=1)
    next_token: Optional[str] = None
    config: ExecutionConfig = Field(default_factory=ExecutionConfig)


@dataclass(frozen=True)
class ResultPage:
    """Decoded output of one result fetch"""
    records: List[Dict[str, Any]]
    next_token: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ExecutionResult:
    """Aggregate view of a finished execution"""
    records: List[Dict[str, Any]]
    metadata: Dict[str, Any] = field(default_factory=dict)
    next_token: Optional[str] = None
