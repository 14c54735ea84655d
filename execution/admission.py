"""
Admission Controller - Process-wide ceiling on running executions
"""

import asyncio
import threading
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_CONCURRENT_EXEC_MAX = 5
DEFAULT_CHECK_INTERVAL_SECONDS = 0.1


class AdmissionController:
    """
    Bounds how many executions run at once

    Waiters poll cooperatively instead of queueing, so there is no FIFO
    ordering and the latency to pick up a freed slot is bounded by the
    check interval.
    """

    def __init__(self,
                 max_concurrent: int = DEFAULT_CONCURRENT_EXEC_MAX,
                 check_interval: float = DEFAULT_CHECK_INTERVAL_SECONDS):
        """
        Initialize admission controller

        Args:
            max_concurrent: Ceiling on running executions
            check_interval: Seconds between admission checks while waiting
        """
        self._validate_ceiling(max_concurrent)
        self._max_concurrent = max_concurrent
        self._running = 0
        self._lock = threading.Lock()
        self.check_interval = check_interval

    @staticmethod
    def _validate_ceiling(value: int) -> None:
        if value < 1:
            raise ValueError(f"Concurrent execution ceiling must be >= 1, got {value}")

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @max_concurrent.setter
    def max_concurrent(self, value: int) -> None:
        # Takes effect on the next admission decision; running executions keep their slots
        self._validate_ceiling(value)
        with self._lock:
            previous = self._max_concurrent
            self._max_concurrent = value

        logger.info(
            "admission_ceiling_changed",
            previous=previous,
            ceiling=value
        )

    @property
    def running(self) -> int:
        return self._running

    def try_acquire(self) -> bool:
        """Take a slot if one is free, without waiting"""
        with self._lock:
            if self._running >= self._max_concurrent:
                return False
            self._running += 1
            return True

    async def acquire(self, check_interval: Optional[float] = None) -> None:
        """
        Wait until a slot is free, then take it

        Args:
            check_interval: Override for the seconds between checks
        """
        interval = check_interval if check_interval is not None else self.check_interval

        while not self.try_acquire():
            await asyncio.sleep(interval)

    def release(self) -> None:
        """Give a slot back"""
        with self._lock:
            if self._running == 0:
                clamped = True
            else:
                clamped = False
                self._running -= 1

        # Floor at zero protects the count against a double release
        if clamped:
            logger.warning("admission_release_without_slot")

    @asynccontextmanager
    async def slot(self, check_interval: Optional[float] = None) -> AsyncIterator[None]:
        """Hold a slot for the duration of the block, released on every exit path"""
        await self.acquire(check_interval)
        try:
            yield
        finally:
            self.release()

    def get_state(self) -> dict:
        """Get current admission state"""
        return {
            "running": self._running,
            "max_concurrent": self._max_concurrent,
            "check_interval": self.check_interval,
        }


# Process-wide controller shared by every client that is not given one
_admission_controller: Optional[AdmissionController] = None
_admission_controller_lock = threading.Lock()


def get_admission_controller() -> AdmissionController:
    """Get the process-wide admission controller (singleton)"""
    global _admission_controller

    with _admission_controller_lock:
        if _admission_controller is None:
            _admission_controller = AdmissionController()

    return _admission_controller


def reset_admission_controller() -> None:
    """Drop the process-wide controller so the next lookup starts fresh"""
    global _admission_controller

    with _admission_controller_lock:
        _admission_controller = None
