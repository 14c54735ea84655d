"""
Execution Errors - Error taxonomy for the query execution lifecycle
"""

from typing import Optional


# Backend error codes that indicate throttling and should trigger retry
TRANSIENT_ERROR_CODES = (
    'ThrottlingException',
    'TooManyRequestsException',
)

# Backend messages that indicate resource exhaustion at current scale
TRANSIENT_ERROR_MESSAGES = (
    'Query exhausted resources at this scale factor',
)


class QueryExecutionError(Exception):
    """Base exception for everything that can end an execution"""

    def __init__(self, message: str, execution_id: Optional[str] = None):
        super().__init__(message)
        self.execution_id = execution_id


class BackendError(QueryExecutionError):
    """Error reported by the remote query service"""

    def __init__(self,
                 message: str,
                 code: Optional[str] = None,
                 execution_id: Optional[str] = None):
        super().__init__(message, execution_id=execution_id)
        self.code = code
        self.message = message


class TransientBackendError(BackendError):
    """Throttling, rate limiting or scale exhaustion - safe to retry"""
    pass


class PermanentBackendError(BackendError):
    """Any other backend error - never retried"""
    pass


class RetryExhaustedError(PermanentBackendError):
    """A transient error that persisted past the retry cap"""

    def __init__(self, operation: str, attempts: int, last_error: Exception):
        super().__init__(
            f"{operation} failed after {attempts} attempts: {last_error}",
            code=getattr(last_error, 'code', None),
            execution_id=getattr(last_error, 'execution_id', None)
        )
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error


class QueryFailedError(QueryExecutionError):
    """Backend reported FAILED or a state this client does not know"""

    def __init__(self, reason: str, execution_id: Optional[str] = None):
        super().__init__(reason, execution_id=execution_id)
        self.reason = reason


class QueryCancelledError(QueryExecutionError):
    """Execution was cancelled, by the backend or by the caller"""
    pass


class QueryTimeoutError(QueryExecutionError):
    """Local deadline exceeded while waiting for a terminal state"""
    pass


class RowDecodeError(QueryExecutionError):
    """A result cell could not be decoded to its reported column type"""
    pass


class InvalidStateTransition(Exception):
    """Attempted to move an execution out of a terminal state"""
    pass


class ConfigurationError(Exception):
    """Invalid static configuration, raised before any execution starts"""
    pass


def is_transient(code: Optional[str], message: Optional[str]) -> bool:
    """
    Classify a backend error code/message pair

    Args:
        code: Backend error code (e.g. ThrottlingException)
        message: Backend error message

    Returns:
        True if the error is expected to clear up when retried
    """
    if code in TRANSIENT_ERROR_CODES:
        return True

    return message in TRANSIENT_ERROR_MESSAGES
