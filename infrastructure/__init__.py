"""
Infrastructure Module
Thin I/O wrappers around the remote query service:
- Athena gateway for submit / status / fetch / cancel
- S3 raw result object access
- Typed row decoding
"""

from .athena_gateway import (
    BackendGateway,
    AthenaGateway,
    ExecutionStatus,
    RawResultPage,
    parse_s3_uri,
    translate_client_error,
)
from .row_decoder import RowDecoder, converter_for

__all__ = [
    "BackendGateway",
    "AthenaGateway",
    "ExecutionStatus",
    "RawResultPage",
    "parse_s3_uri",
    "translate_client_error",
    "RowDecoder",
    "converter_for",
]
