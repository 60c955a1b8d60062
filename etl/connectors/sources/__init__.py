from .base_connector import BaseConnector, RunState
from .data_contract import (
    CancellationToken,
    ColumnInfo,
    ConnectorConfig,
    ExecutionContext,
    ExecutionResult,
    ProgressInfo,
    TableInfo,
    TestConnectionResult,
    ValidationResult,
)
from .errors import ConnectorError, DuplicateConnectorError, ErrorCode, UnknownConnectorTypeError
from .factory import ConnectorRegistry, build_default_registry, create_connector, load_connector_config

__all__ = [
    "BaseConnector",
    "RunState",
    "CancellationToken",
    "ColumnInfo",
    "ConnectorConfig",
    "ExecutionContext",
    "ExecutionResult",
    "ProgressInfo",
    "TableInfo",
    "TestConnectionResult",
    "ValidationResult",
    "ConnectorError",
    "DuplicateConnectorError",
    "ErrorCode",
    "UnknownConnectorTypeError",
    "ConnectorRegistry",
    "build_default_registry",
    "create_connector",
    "load_connector_config",
]
