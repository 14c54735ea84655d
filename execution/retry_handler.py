"""
Retry Handler - Bounded exponential backoff for backend operations
"""

import asyncio
from dataclasses import dataclass
from typing import Callable, Any, Awaitable, Optional

import structlog

from .errors import (
    TransientBackendError,
    RetryExhaustedError,
    is_transient,
)

logger = structlog.get_logger(__name__)


@dataclass
class RetryContext:
    """Retry state for one logical operation, discarded when it completes"""
    operation: str
    attempt: int = 0
    delay: float = 0.0
    last_error: Optional[Exception] = None


def is_transient_error(error: Exception) -> bool:
    """
    Default transient classification

    Throttling / rate-limit codes and the scale-exhaustion message are
    transient. Everything else is permanent.
    """
    if isinstance(error, TransientBackendError):
        return True

    code = getattr(error, 'code', None)
    message = getattr(error, 'message', None) or str(error)
    return is_transient(code, message)


class RetryPolicy:
    """Wraps a single fallible backend call with bounded backoff"""

    def __init__(self,
                 base_wait: float = 0.2,
                 max_wait: float = 10.0,
                 max_retries: int = 10,
                 classifier: Optional[Callable[[Exception], bool]] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        """
        Initialize retry policy

        Args:
            base_wait: Delay before the first retry, in seconds
            max_wait: Upper bound for any single delay, in seconds
            max_retries: Transient failures tolerated before giving up
            classifier: Returns True for errors worth retrying
            sleep: Awaitable sleep used between attempts
        """
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")

        self.base_wait = base_wait
        self.max_wait = max_wait
        self.max_retries = max_retries
        self.classifier = classifier or is_transient_error
        self._sleep = sleep

    @classmethod
    def from_config(cls, config, **kwargs) -> 'RetryPolicy':
        """Build a policy from an ExecutionConfig"""
        return cls(
            base_wait=config.base_retry_wait,
            max_wait=config.retry_wait_max,
            max_retries=config.retry_count_max,
            **kwargs
        )

    def get_delay(self, attempt: int) -> float:
        """
        Calculate delay before next retry

        Args:
            attempt: Retry attempt number (0-indexed)

        Returns:
            Delay in seconds
        """
        return min(self.base_wait * (2 ** attempt), self.max_wait)

    def should_retry(self, error: Exception, context: RetryContext) -> bool:
        """True if the error is transient and the cap has room left"""
        if not self.classifier(error):
            return False

        return context.attempt + 1 < self.max_retries

    async def execute(self,
                      operation: str,
                      func: Callable[..., Awaitable[Any]],
                      *args,
                      on_retry: Optional[Callable[[RetryContext], None]] = None,
                      **kwargs) -> Any:
        """
        Execute an async function with retry logic

        Args:
            operation: Operation name, used for logging and error reporting
            func: Coroutine function to call
            *args: Positional arguments for function
            on_retry: Optional callback called before each retry
            **kwargs: Keyword arguments for function

        Returns:
            Function result

        Raises:
            RetryExhaustedError: If a transient error outlived the cap
            Exception: Any permanent error, unchanged
        """
        context = RetryContext(operation=operation)

        while True:
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                context.last_error = e

                if not self.classifier(e):
                    raise

                if not self.should_retry(e, context):
                    logger.error(
                        "retry_exhausted",
                        operation=operation,
                        attempts=context.attempt + 1,
                        error=str(e)
                    )
                    raise RetryExhaustedError(operation, context.attempt + 1, e) from e

                context.delay = self.get_delay(context.attempt)

                logger.warning(
                    "retrying_backend_call",
                    operation=operation,
                    attempt=context.attempt + 1,
                    delay_seconds=context.delay,
                    error=str(e)
                )

                if on_retry:
                    on_retry(context)

                await self._sleep(context.delay)
                context.attempt += 1
