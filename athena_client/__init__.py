"""
Athena Client - Async query client with bounded concurrency
"""

from .client import (
    AthenaClient,
    QueryExecution,
    create_athena_client,
    create_athena_client_from_env,
    set_concurrent_exec_max,
)
from .config import ClientSettings, load_environment, settings_config

__all__ = [
    "AthenaClient",
    "QueryExecution",
    "create_athena_client",
    "create_athena_client_from_env",
    "set_concurrent_exec_max",
    "ClientSettings",
    "load_environment",
    "settings_config",
]
