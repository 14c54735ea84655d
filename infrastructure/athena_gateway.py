"""
Athena Gateway - Thin async wrapper around the Athena and S3 APIs

Usage:
    from infrastructure.athena_gateway import AthenaGateway

    gateway = AthenaGateway(region_name="us-east-1")

    execution_id = await gateway.submit_query(
        "SELECT 1",
        output_location="s3://bucket/results/",
        database="default",
        workgroup="primary"
    )
    status = await gateway.get_execution_status(execution_id)
    page = await gateway.fetch_result_page(execution_id, max_results=100)
"""

import asyncio
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Tuple

import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from execution.errors import (
    BackendError,
    TransientBackendError,
    PermanentBackendError,
    is_transient,
)

logger = structlog.get_logger(__name__)

# SDK retries off: RetryPolicy is the only retry layer
SDK_CLIENT_CONFIG = Config(retries={"max_attempts": 1, "mode": "standard"})


@dataclass(frozen=True)
class ExecutionStatus:
    """Status snapshot of one backend execution"""
    state: str
    reason: Optional[str] = None
    execution: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RawResultPage:
    """Undecoded result page: column info, text rows and continuation token"""
    columns: List[Dict[str, Any]]
    rows: List[List[Optional[str]]]
    next_token: Optional[str] = None


def parse_s3_uri(uri: str) -> Tuple[str, str]:
    """
    Split an s3:// URI into bucket and key

    Raises:
        ValueError: If the URI has no bucket
    """
    path = uri[len("s3://"):] if uri.startswith("s3://") else uri
    bucket, _, key = path.partition("/")

    if not bucket:
        raise ValueError(f"Invalid S3 URI: {uri}")

    return bucket, key


def translate_client_error(error: Exception,
                           execution_id: Optional[str] = None) -> BackendError:
    """Turn a botocore error into a transient or permanent backend error"""
    if isinstance(error, ClientError):
        details = error.response.get("Error", {})
        code = details.get("Code")
        message = details.get("Message") or str(error)
    else:
        code = type(error).__name__
        message = str(error)

    if is_transient(code, message):
        return TransientBackendError(message, code=code, execution_id=execution_id)

    return PermanentBackendError(message, code=code, execution_id=execution_id)


class BackendGateway:
    """Abstract remote query service consumed by the execution engine"""

    async def submit_query(self,
                           query: str,
                           output_location: Optional[str] = None,
                           encryption_option: Optional[str] = None,
                           encryption_kms_key: Optional[str] = None,
                           database: str = "default",
                           workgroup: str = "primary") -> str:
        """Submit a query and return the backend execution id"""
        raise NotImplementedError

    async def get_execution_status(self, execution_id: str) -> ExecutionStatus:
        """Get the current status of an execution"""
        raise NotImplementedError

    async def cancel_execution(self, execution_id: str) -> None:
        """Ask the backend to stop an execution"""
        raise NotImplementedError

    async def fetch_result_page(self,
                                execution_id: str,
                                max_results: int,
                                next_token: Optional[str] = None) -> RawResultPage:
        """Fetch one page of results of a succeeded execution"""
        raise NotImplementedError

    async def read_raw_object(self, location_uri: str):
        """Open the raw result object stored at location_uri"""
        raise NotImplementedError


class AthenaGateway(BackendGateway):
    """
    BackendGateway backed by boto3

    boto3 calls block, so each one runs in a worker thread via
    asyncio.to_thread.
    """

    def __init__(self,
                 athena_client=None,
                 s3_client=None,
                 region_name: Optional[str] = None):
        """
        Initialize Athena gateway

        Args:
            athena_client: Preconfigured boto3 Athena client
            s3_client: Preconfigured boto3 S3 client
            region_name: Region used when clients are created here

        Clients created here have SDK retries disabled; preconfigured clients
        are used as given.
        """
        if athena_client is None:
            athena_client = boto3.client(
                "athena", region_name=region_name, config=SDK_CLIENT_CONFIG
            )
        if s3_client is None:
            s3_client = boto3.client("s3", region_name=region_name, config=SDK_CLIENT_CONFIG)

        self.athena = athena_client
        self.s3 = s3_client

        logger.info("athena_gateway_initialized", region=region_name)

    async def _call(self, method, execution_id: Optional[str] = None, **params) -> Dict[str, Any]:
        """
        Run a blocking boto3 call off the event loop

        Raises:
            BackendError: Translated from any botocore failure
        """
        try:
            return await asyncio.to_thread(method, **params)
        except (ClientError, BotoCoreError) as e:
            translated = translate_client_error(e, execution_id=execution_id)
            logger.debug(
                "athena_api_error",
                operation=getattr(method, "__name__", str(method)),
                code=translated.code,
                transient=isinstance(translated, TransientBackendError),
                error=translated.message
            )
            raise translated from e

    # ========================================
    # Query Execution API
    # ========================================

    async def submit_query(self,
                           query: str,
                           output_location: Optional[str] = None,
                           encryption_option: Optional[str] = None,
                           encryption_kms_key: Optional[str] = None,
                           database: str = "default",
                           workgroup: str = "primary") -> str:
        result_configuration: Dict[str, Any] = {}

        if output_location:
            result_configuration["OutputLocation"] = output_location

        if encryption_option:
            encryption: Dict[str, Any] = {"EncryptionOption": encryption_option}
            if encryption_kms_key:
                encryption["KmsKey"] = encryption_kms_key
            result_configuration["EncryptionConfiguration"] = encryption

        params: Dict[str, Any] = {
            "QueryString": query,
            "QueryExecutionContext": {"Database": database},
            "WorkGroup": workgroup,
        }
        if result_configuration:
            params["ResultConfiguration"] = result_configuration

        response = await self._call(self.athena.start_query_execution, **params)
        return response["QueryExecutionId"]

    async def get_execution_status(self, execution_id: str) -> ExecutionStatus:
        response = await self._call(
            self.athena.get_query_execution,
            execution_id=execution_id,
            QueryExecutionId=execution_id
        )
        execution = response.get("QueryExecution", {})
        status = execution.get("Status", {})

        return ExecutionStatus(
            state=status.get("State", ""),
            reason=status.get("StateChangeReason"),
            execution=execution
        )

    async def cancel_execution(self, execution_id: str) -> None:
        await self._call(
            self.athena.stop_query_execution,
            execution_id=execution_id,
            QueryExecutionId=execution_id
        )

    async def fetch_result_page(self,
                                execution_id: str,
                                max_results: int,
                                next_token: Optional[str] = None) -> RawResultPage:
        params: Dict[str, Any] = {
            "QueryExecutionId": execution_id,
            "MaxResults": max_results,
        }
        if next_token:
            params["NextToken"] = next_token

        response = await self._call(
            self.athena.get_query_results,
            execution_id=execution_id,
            **params
        )
        result_set = response.get("ResultSet", {})
        columns = result_set.get("ResultSetMetadata", {}).get("ColumnInfo", [])
        rows = [
            [datum.get("VarCharValue") for datum in row.get("Data", [])]
            for row in result_set.get("Rows", [])
        ]

        # First page of a SELECT carries the column names as its first row
        if next_token is None and rows and _is_header_row(rows[0], columns):
            rows = rows[1:]

        return RawResultPage(
            columns=columns,
            rows=rows,
            next_token=response.get("NextToken")
        )

    # ========================================
    # Object Storage API
    # ========================================

    async def read_raw_object(self, location_uri: str):
        """
        Open the raw result object (e.g. the CSV Athena wrote to S3)

        Returns:
            botocore StreamingBody; read()/iter_lines() block, so call them
            via asyncio.to_thread in async code
        """
        bucket, key = parse_s3_uri(location_uri)
        response = await self._call(self.s3.get_object, Bucket=bucket, Key=key)
        return response["Body"]


def _is_header_row(row: List[Optional[str]], columns: List[Dict[str, Any]]) -> bool:
    names = [column.get("Name") for column in columns]
    return bool(names) and row == names
