"""
Athena Client - Wires admission, execution and result delivery together

Usage:
    from athena_client import create_athena_client, set_concurrent_exec_max

    set_concurrent_exec_max(10)
    client = create_athena_client(
        region_name="us-east-1",
        config=ExecutionConfig(output_location="s3://bucket/results/")
    )

    # Aggregate
    result = await client.query("SELECT 1")

    # Stream - attach before yielding to the event loop
    execution = client.execute("SELECT * FROM events", max_results=500)
    async for record in execution.stream():
        ...
"""

import asyncio
from typing import Any, Optional

import structlog

from execution.admission import AdmissionController, get_admission_controller
from execution.executor import ExecutionStateMachine
from execution.handle import ExecutionHandle, ExecutionState
from execution.models import ExecutionConfig, ExecutionRequest, ExecutionResult
from execution.result_sink import ResultSink, RecordStream
from infrastructure.athena_gateway import AthenaGateway, BackendGateway
from infrastructure.row_decoder import RowDecoder

from .config import ClientSettings

logger = structlog.get_logger(__name__)

DEFAULT_MAX_RESULTS = 1000


def set_concurrent_exec_max(value: int) -> None:
    """Set the process-wide ceiling on concurrently running executions"""
    get_admission_controller().max_concurrent = value


class QueryExecution:
    """
    One in-flight execution, consumable as a stream or an aggregate

    Both views share the same underlying execution. Attach them before the
    current coroutine yields, otherwise early records are missed.
    """

    def __init__(self, machine: ExecutionStateMachine, sink: ResultSink, task: asyncio.Task):
        self._machine = machine
        self._sink = sink
        self._task = task

    @property
    def handle(self) -> ExecutionHandle:
        return self._machine.handle

    @property
    def execution_id(self) -> Optional[str]:
        return self._machine.execution_id

    @property
    def state(self) -> ExecutionState:
        return self._machine.state

    @property
    def task(self) -> asyncio.Task:
        return self._task

    def to_result(self) -> 'asyncio.Future[ExecutionResult]':
        """Aggregate view: every record plus the final metadata"""
        return self._sink.to_result()

    def stream(self) -> RecordStream:
        """Incremental view: records as they are emitted"""
        return self._sink.subscribe()

    async def cancel(self) -> None:
        """Ask the execution to stop; the outcome arrives through the views"""
        await self._machine.cancel()

    async def wait(self) -> None:
        """Wait until the execution has finished and delivered its outcome"""
        await self._task


class AthenaClient:
    """Async client for long-running Athena queries"""

    def __init__(self,
                 gateway: BackendGateway,
                 config: Optional[ExecutionConfig] = None,
                 admission: Optional[AdmissionController] = None,
                 decoder: Optional[RowDecoder] = None,
                 concurrent_exec_max: Optional[int] = None):
        """
        Initialize client

        Args:
            gateway: Remote query service
            config: Base configuration merged into every request
            admission: Concurrency gate (process-wide one if not provided)
            decoder: Row decoder shared by all executions
            concurrent_exec_max: Deprecated, use set_concurrent_exec_max()

        Raises:
            ConfigurationError: If the encryption settings are inconsistent
        """
        self.gateway = gateway
        self.config = config or ExecutionConfig()
        self.config.validate_encryption()
        self.admission = admission or get_admission_controller()
        self.decoder = decoder or RowDecoder()

        if concurrent_exec_max:
            logger.warning(
                "deprecated_concurrent_exec_max",
                hint="use set_concurrent_exec_max() instead of the client argument"
            )
            self.admission.max_concurrent = concurrent_exec_max

    def execute(self,
                query: str,
                max_results: int = DEFAULT_MAX_RESULTS,
                next_token: Optional[str] = None,
                **overrides: Any) -> QueryExecution:
        """
        Start executing a query

        Must be called from a running event loop. The execution only begins
        once the caller yields, so views attached right after this call see
        every record.

        Args:
            query: Query text
            max_results: Result page size
            next_token: Continuation token of the page to fetch
            **overrides: ExecutionConfig fields for this request only

        Returns:
            QueryExecution with aggregate and stream views

        Raises:
            ConfigurationError: If an override is unknown or invalid
        """
        request = ExecutionRequest(
            query=query,
            max_results=max_results,
            next_token=next_token,
            config=self.config.merge(**overrides)
        )
        sink = ResultSink()
        machine = ExecutionStateMachine(
            request,
            gateway=self.gateway,
            sink=sink,
            admission=self.admission,
            decoder=self.decoder
        )
        task = asyncio.get_running_loop().create_task(machine.run())

        return QueryExecution(machine, sink, task)

    async def query(self,
                    query: str,
                    max_results: int = DEFAULT_MAX_RESULTS,
                    next_token: Optional[str] = None,
                    **overrides: Any) -> ExecutionResult:
        """Execute a query and wait for the aggregate result"""
        execution = self.execute(query, max_results, next_token, **overrides)
        return await execution.to_result()


def create_athena_client(region_name: Optional[str] = None,
                         config: Optional[ExecutionConfig] = None,
                         **kwargs: Any) -> AthenaClient:
    """
    Build a client backed by boto3

    Args:
        region_name: AWS region for the Athena and S3 clients
        config: Base execution configuration
        **kwargs: Passed to AthenaClient

    Returns:
        AthenaClient instance
    """
    gateway = AthenaGateway(region_name=region_name)
    return AthenaClient(gateway, config=config, **kwargs)


def create_athena_client_from_env(settings: Optional[ClientSettings] = None,
                                  **kwargs: Any) -> AthenaClient:
    """
    Build a boto3-backed client from ATHENA_* settings

    Applies the admission ceiling process-wide, then creates the client in
    the configured region with the configured base execution config.

    Args:
        settings: Settings to use (read from the environment if not provided)
        **kwargs: Passed to AthenaClient

    Raises:
        ConfigurationError: If a setting is invalid
    """
    settings = settings or ClientSettings()
    config = settings.execution_config()
    settings.apply_admission()

    return create_athena_client(region_name=settings.REGION, config=config, **kwargs)
