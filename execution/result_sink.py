"""
Result Sink - One execution, consumed as a record stream or an aggregate

Emission is fire-and-forget to the streams attached at that moment. There is
no replay buffer: a stream attached after records went out only sees what is
emitted from then on, and a stream attached after completion sees just the
completion (or the error).
"""

import asyncio
from typing import Dict, Any, List, Optional

import structlog

from .models import ExecutionResult, ResultPage

logger = structlog.get_logger(__name__)

_END = object()


class _Failure:
    """Queue item carrying the terminal error"""

    __slots__ = ('error',)

    def __init__(self, error: BaseException):
        self.error = error


class RecordStream:
    """
    Single-pass async iterator over decoded records

    Iteration ends normally on end-of-data (metadata is then available) and
    raises the execution error on failure. Not restartable.
    """

    def __init__(self, sink: 'ResultSink', queue: asyncio.Queue):
        self._sink = sink
        self._queue = queue
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def metadata(self) -> Optional[Dict[str, Any]]:
        """Final execution metadata, set once end-of-data is observed"""
        return self._sink.metadata if self._closed and self._sink.error is None else None

    @property
    def next_token(self) -> Optional[str]:
        return self._sink.next_token

    def __aiter__(self) -> 'RecordStream':
        return self

    async def __anext__(self) -> Dict[str, Any]:
        if self._closed:
            raise StopAsyncIteration

        item = await self._queue.get()

        if item is _END:
            self._detach()
            raise StopAsyncIteration

        if isinstance(item, _Failure):
            self._detach()
            raise item.error

        return item

    async def aclose(self) -> None:
        """Stop listening; records emitted afterwards are not delivered"""
        self._detach()

    def _detach(self) -> None:
        self._closed = True
        self._sink._detach(self._queue)


class ResultSink:
    """Fans one execution's records and outcome out to every consumer"""

    def __init__(self):
        self._subscribers: List[asyncio.Queue] = []
        self._finished = asyncio.Event()
        self._metadata: Optional[Dict[str, Any]] = None
        self._next_token: Optional[str] = None
        self._error: Optional[BaseException] = None
        self._emitted = 0

    # ========================================
    # Consumer side
    # ========================================

    @property
    def done(self) -> bool:
        return self._finished.is_set()

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    @property
    def metadata(self) -> Optional[Dict[str, Any]]:
        return self._metadata

    @property
    def next_token(self) -> Optional[str]:
        return self._next_token

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> RecordStream:
        """Attach an incremental consumer"""
        queue: asyncio.Queue = asyncio.Queue()

        if self.done:
            queue.put_nowait(_Failure(self._error) if self._error is not None else _END)
        else:
            self._subscribers.append(queue)

        return RecordStream(self, queue)

    def to_result(self) -> 'asyncio.Future[ExecutionResult]':
        """
        Attach an aggregate consumer

        Subscribes immediately, so it must be called before the execution
        starts emitting. Must be called with a running event loop.

        Returns:
            Future resolved with every record plus the final metadata, or
            rejected with the execution error
        """
        stream = self.subscribe()
        return asyncio.ensure_future(self._collect(stream))

    async def _collect(self, stream: RecordStream) -> ExecutionResult:
        records = [record async for record in stream]
        return ExecutionResult(
            records=records,
            metadata=self._metadata or {},
            next_token=self._next_token
        )

    async def wait(self) -> None:
        """Wait for the shared completion signal (end-of-data or error)"""
        await self._finished.wait()

    def _detach(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    # ========================================
    # Producer side
    # ========================================

    def emit(self, record: Dict[str, Any]) -> None:
        """Deliver one record to every attached stream"""
        self._ensure_open()
        self._emitted += 1
        for queue in list(self._subscribers):
            queue.put_nowait(record)

    def publish(self, page: ResultPage) -> None:
        """Emit every record of a page in row order, then end-of-data"""
        for record in page.records:
            self.emit(record)
        self.end(page.metadata, page.next_token)

    def end(self,
            metadata: Optional[Dict[str, Any]] = None,
            next_token: Optional[str] = None) -> None:
        """Signal end-of-data with the final execution metadata"""
        self._ensure_open()
        self._metadata = metadata or {}
        self._next_token = next_token

        logger.debug(
            "result_sink_completed",
            records=self._emitted,
            subscribers=len(self._subscribers)
        )

        self._close(_END)

    def fail(self, error: BaseException) -> None:
        """Signal the execution error to every attached stream"""
        self._ensure_open()
        self._error = error
        self._close(_Failure(error))

    def _ensure_open(self) -> None:
        if self.done:
            raise RuntimeError("Result sink already completed")

    def _close(self, item: Any) -> None:
        self._finished.set()
        for queue in list(self._subscribers):
            queue.put_nowait(item)
        self._subscribers.clear()
