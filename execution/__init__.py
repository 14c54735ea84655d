"""
Execution Package - Query lifecycle engine with admission control and retry
"""

from .admission import (
    AdmissionController,
    get_admission_controller,
    reset_admission_controller,
)
from .errors import (
    QueryExecutionError,
    BackendError,
    TransientBackendError,
    PermanentBackendError,
    RetryExhaustedError,
    QueryFailedError,
    QueryCancelledError,
    QueryTimeoutError,
    RowDecodeError,
    InvalidStateTransition,
    ConfigurationError,
)
from .executor import ExecutionStateMachine
from .handle import ExecutionHandle, ExecutionState, TERMINAL_STATES
from .models import ExecutionConfig, ExecutionRequest, ExecutionResult, ResultPage
from .result_sink import ResultSink, RecordStream
from .retry_handler import RetryPolicy, RetryContext, is_transient_error

__all__ = [
    'AdmissionController',
    'get_admission_controller',
    'reset_admission_controller',
    'QueryExecutionError',
    'BackendError',
    'TransientBackendError',
    'PermanentBackendError',
    'RetryExhaustedError',
    'QueryFailedError',
    'QueryCancelledError',
    'QueryTimeoutError',
    'RowDecodeError',
    'InvalidStateTransition',
    'ConfigurationError',
    'ExecutionStateMachine',
    'ExecutionHandle',
    'ExecutionState',
    'TERMINAL_STATES',
    'ExecutionConfig',
    'ExecutionRequest',
    'ExecutionResult',
    'ResultPage',
    'ResultSink',
    'RecordStream',
    'RetryPolicy',
    'RetryContext',
    'is_transient_error',
]
