"""
Execution Handle - Lifecycle state of a single query execution
"""

import time
from typing import Dict, Any, Optional
from datetime import datetime, timezone
from enum import Enum

from .errors import InvalidStateTransition


class ExecutionState(Enum):
    """Execution states"""
    SUBMITTED = "SUBMITTED"
    POLLING = "POLLING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    TIMED_OUT = "TIMED_OUT"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset([
    ExecutionState.SUCCEEDED,
    ExecutionState.FAILED,
    ExecutionState.CANCELLED,
    ExecutionState.TIMED_OUT,
])


class ExecutionHandle:
    """
    Mutable record of one execution, owned by its state machine

    Only the owning ExecutionStateMachine calls transition(); everyone else
    reads the snapshot from to_dict().
    """

    def __init__(self, query: str):
        self.query = query
        self.execution_id: Optional[str] = None
        self.state = ExecutionState.SUBMITTED
        self.started_at: Optional[datetime] = None
        self.completed_at: Optional[datetime] = None
        self.error_message: Optional[str] = None
        self.retries: Dict[str, int] = {}
        self._started_monotonic: Optional[float] = None
        self._completed_monotonic: Optional[float] = None

    def start(self) -> None:
        """Mark the moment the execution got its admission slot"""
        if self.started_at is None:
            self.started_at = datetime.now(timezone.utc)
            self._started_monotonic = time.monotonic()

    def transition(self,
                   new_state: ExecutionState,
                   error_message: Optional[str] = None) -> None:
        """
        Move to a new state

        Args:
            new_state: State to enter
            error_message: Reason attached to a failed terminal state

        Raises:
            InvalidStateTransition: If the handle is already terminal
        """
        if self.state.is_terminal:
            raise InvalidStateTransition(
                f"Execution {self.execution_id} is already {self.state.value}, "
                f"cannot move to {new_state.value}"
            )

        self.state = new_state

        if error_message:
            self.error_message = error_message

        if new_state.is_terminal:
            self.completed_at = datetime.now(timezone.utc)
            self._completed_monotonic = time.monotonic()

    def increment_retry(self, operation: str) -> int:
        """
        Increment retry counter for one operation

        Returns:
            New retry count for that operation
        """
        self.retries[operation] = self.retries.get(operation, 0) + 1
        return self.retries[operation]

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def elapsed_seconds(self) -> float:
        """Seconds since admission, frozen once terminal"""
        if self._started_monotonic is None:
            return 0.0
        end = self._completed_monotonic
        if end is None:
            end = time.monotonic()
        return end - self._started_monotonic

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            'execution_id': self.execution_id,
            'state': self.state.value,
            'query': self.query,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'elapsed_seconds': self.elapsed_seconds,
            'error_message': self.error_message,
            'retries': dict(self.retries),
        }
