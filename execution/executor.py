"""
Query Executor - Drives one query through its execution lifecycle
"""

import asyncio
import time
from typing import Optional, TYPE_CHECKING

import structlog

from .admission import AdmissionController, get_admission_controller
from .errors import (
    QueryExecutionError,
    QueryFailedError,
    QueryCancelledError,
    QueryTimeoutError,
)
from .handle import ExecutionHandle, ExecutionState
from .models import ExecutionRequest, ResultPage
from .result_sink import ResultSink
from .retry_handler import RetryPolicy, RetryContext

if TYPE_CHECKING:
    from infrastructure.athena_gateway import BackendGateway, ExecutionStatus
    from infrastructure.row_decoder import RowDecoder

logger = structlog.get_logger(__name__)

PENDING_STATES = ('QUEUED', 'RUNNING')


class ExecutionStateMachine:
    """
    Runs a single ExecutionRequest against the backend

    Submitted -> Polling -> (Succeeded | Failed | Cancelled | TimedOut).
    Every backend call goes through the retry policy; the outcome goes to the
    result sink, never to the caller of run().
    """

    def __init__(self,
                 request: ExecutionRequest,
                 gateway: "BackendGateway",
                 sink: ResultSink,
                 admission: Optional[AdmissionController] = None,
                 retry_policy: Optional[RetryPolicy] = None,
                 decoder: Optional["RowDecoder"] = None):
        """
        Initialize state machine

        Args:
            request: Query and per-request configuration
            gateway: Remote query service
            sink: Receives records and the terminal outcome
            admission: Concurrency gate (process-wide one if not provided)
            retry_policy: Backoff policy (built from request config if not provided)
            decoder: Row decoder for the fetched page
        """
        self.request = request
        self.config = request.config
        self.gateway = gateway
        self.sink = sink
        self.admission = admission or get_admission_controller()
        self.retry_policy = retry_policy or RetryPolicy.from_config(self.config)
        if decoder is None:
            from infrastructure.row_decoder import RowDecoder
            decoder = RowDecoder()

        self.decoder = decoder
        self.handle = ExecutionHandle(request.query)
        self._cancel_requested = False
        self._deadline: Optional[float] = None

    @property
    def execution_id(self) -> Optional[str]:
        return self.handle.execution_id

    @property
    def state(self) -> ExecutionState:
        return self.handle.state

    async def run(self) -> None:
        """
        Execute the request end to end

        Lifecycle failures are delivered through the sink. Task cancellation
        fails the sink and is then re-raised.
        """
        page: Optional[ResultPage] = None
        error: Optional[BaseException] = None

        try:
            async with self.admission.slot(self.config.exec_right_check_interval):
                self.handle.start()
                try:
                    page = await self._drive()
                except QueryExecutionError as e:
                    error = e
                except Exception as e:
                    self._mark_terminal(ExecutionState.FAILED, str(e))
                    error = e
        except asyncio.CancelledError:
            self._mark_terminal(ExecutionState.CANCELLED, "Execution task cancelled")
            self.sink.fail(QueryCancelledError(
                "Execution task cancelled", execution_id=self.execution_id
            ))
            raise

        # Slot is released before consumers hear about the outcome
        if error is not None:
            logger.error(
                "query_execution_failed",
                execution_id=self.execution_id,
                state=self.state.value,
                error_type=type(error).__name__,
                error=str(error)
            )
            self.sink.fail(error)
            return

        logger.info(
            "query_execution_succeeded",
            execution_id=self.execution_id,
            records=len(page.records),
            elapsed_seconds=round(self.handle.elapsed_seconds, 3),
            retries=self.handle.retries
        )
        self.sink.publish(page)

    async def cancel(self) -> None:
        """
        Request cancellation of this execution

        Before submission the execution ends without reaching the backend.
        While polling, the backend cancel is issued on the next poll
        iteration. No-op once terminal.
        """
        if self.handle.is_terminal:
            return

        self._cancel_requested = True
        logger.info("query_cancel_requested", execution_id=self.execution_id)

    # ========================================
    # Lifecycle
    # ========================================

    async def _drive(self) -> ResultPage:
        if self._cancel_requested:
            self._mark_terminal(ExecutionState.CANCELLED, "Cancelled before submission")
            raise QueryCancelledError("Query cancelled before submission")

        execution_id = await self._submit()
        self.handle.execution_id = execution_id
        self.handle.transition(ExecutionState.POLLING)

        logger.info(
            "query_submitted",
            execution_id=execution_id,
            database=self.config.database,
            workgroup=self.config.workgroup
        )

        status = await self._poll_until_terminal()

        if self.config.skip_fetch_result:
            return ResultPage(records=[], metadata=status.execution)

        return await self._fetch(status)

    async def _submit(self) -> str:
        try:
            return await self.retry_policy.execute(
                "submit",
                self.gateway.submit_query,
                self.request.query,
                output_location=self.config.output_location,
                encryption_option=self.config.encryption_option,
                encryption_kms_key=self.config.encryption_kms_key,
                database=self.config.database,
                workgroup=self.config.workgroup,
                on_retry=self._on_retry
            )
        except QueryExecutionError as e:
            self._mark_terminal(ExecutionState.FAILED, str(e))
            raise

    async def _poll_until_terminal(self) -> "ExecutionStatus":
        if self.config.query_timeout > 0:
            self._deadline = time.monotonic() + self.config.query_timeout

        while True:
            if self._cancel_requested:
                await self._cancel_backend("cancel_requested")
                self._mark_terminal(ExecutionState.CANCELLED, "Cancelled by caller")
                raise QueryCancelledError(
                    "FAILED: Query CANCELLED", execution_id=self.execution_id
                )

            status = await self._check_status()

            if status is None or self._deadline_passed():
                await self._time_out()

            state = status.state

            if state in PENDING_STATES:
                await asyncio.sleep(self._poll_delay())
                continue

            if state == 'SUCCEEDED':
                self.handle.transition(ExecutionState.SUCCEEDED)
                return status

            if state == 'FAILED':
                reason = status.reason or 'FAILED: Execution Error'
                self._mark_terminal(ExecutionState.FAILED, reason)
                raise QueryFailedError(reason, execution_id=self.execution_id)

            if state == 'CANCELLED':
                self._mark_terminal(ExecutionState.CANCELLED, 'FAILED: Query CANCELLED')
                raise QueryCancelledError(
                    'FAILED: Query CANCELLED', execution_id=self.execution_id
                )

            reason = f'FAILED: Unknown State {state}'
            self._mark_terminal(ExecutionState.FAILED, reason)
            raise QueryFailedError(reason, execution_id=self.execution_id)

    async def _check_status(self) -> Optional["ExecutionStatus"]:
        """Status check bounded by the deadline; None means the deadline hit first"""
        check = self.retry_policy.execute(
            "poll",
            self.gateway.get_execution_status,
            self.execution_id,
            on_retry=self._on_retry
        )

        try:
            if self._deadline is None:
                return await check
            try:
                return await asyncio.wait_for(check, timeout=max(self._remaining(), 0))
            except asyncio.TimeoutError:
                return None
        except QueryExecutionError as e:
            self._mark_terminal(ExecutionState.FAILED, str(e))
            raise

    async def _time_out(self) -> None:
        await self._cancel_backend("timeout")
        self._mark_terminal(ExecutionState.TIMED_OUT, "query timeout")
        raise QueryTimeoutError(
            f"query timeout after {self.config.query_timeout}s",
            execution_id=self.execution_id
        )

    async def _cancel_backend(self, cause: str) -> None:
        """Best-effort backend cancel; failures are logged, not raised"""
        try:
            await self.retry_policy.execute(
                "cancel",
                self.gateway.cancel_execution,
                self.execution_id,
                on_retry=self._on_retry
            )
        except Exception as e:
            logger.warning(
                "query_cancel_failed",
                execution_id=self.execution_id,
                cause=cause,
                error=str(e)
            )

    async def _fetch(self, status: "ExecutionStatus") -> ResultPage:
        raw = await self.retry_policy.execute(
            "fetch",
            self.gateway.fetch_result_page,
            self.execution_id,
            self.request.max_results,
            self.request.next_token,
            on_retry=self._on_retry
        )
        records = self.decoder.decode(raw.columns, raw.rows)

        return ResultPage(
            records=records,
            next_token=raw.next_token,
            metadata=status.execution
        )

    # ========================================
    # Helpers
    # ========================================

    def _remaining(self) -> float:
        return self._deadline - time.monotonic()

    def _deadline_passed(self) -> bool:
        return self._deadline is not None and self._remaining() <= 0

    def _poll_delay(self) -> float:
        if self._deadline is None:
            return self.config.polling_interval
        return max(min(self.config.polling_interval, self._remaining()), 0)

    def _mark_terminal(self, state: ExecutionState, reason: Optional[str] = None) -> None:
        if not self.handle.is_terminal:
            self.handle.transition(state, error_message=reason)

    def _on_retry(self, context: RetryContext) -> None:
        """Callback invoked before each retry"""
        self.handle.increment_retry(context.operation)
