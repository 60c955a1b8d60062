"""Error codes and exceptions raised inside connectors and the registry."""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    CONFIG_VALIDATION_ERROR = "CONFIG_VALIDATION_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    EXECUTION_ERROR = "EXECUTION_ERROR"
    ABORTED = "ABORTED"
    UNKNOWN_PROVIDER_TYPE = "UNKNOWN_PROVIDER_TYPE"
    TIMEOUT = "TIMEOUT"
    DRIVER_UNAVAILABLE = "DRIVER_UNAVAILABLE"


class ConnectorError(Exception):
    """Base connector failure carrying a stable code and optional details."""

    default_code = ErrorCode.EXECUTION_ERROR

    def __init__(self, message: str, *, code: str | ErrorCode | None = None, details: Any = None):
        super().__init__(message)
        resolved = code or self.default_code
        self.code = resolved.value if isinstance(resolved, ErrorCode) else str(resolved)
        self.message = message
        self.details = details


class ConnectorConnectionError(ConnectorError):
    default_code = ErrorCode.CONNECTION_ERROR


class ExecutionAborted(ConnectorError):
    default_code = ErrorCode.ABORTED


class UnknownConnectorTypeError(ConnectorError, KeyError):
    default_code = ErrorCode.UNKNOWN_PROVIDER_TYPE

    def __init__(self, type_tag: str, available: list[str] | None = None):
        super().__init__(
            f"Unknown connector type '{type_tag}'",
            details={"type": type_tag, "available": available or []},
        )
        self.type_tag = type_tag

    def __str__(self) -> str:
        return self.message


class DuplicateConnectorError(ValueError):
    def __init__(self, type_tag: str):
        super().__init__(f"Connector type '{type_tag}' is already registered")
        self.type_tag = type_tag


__all__ = [
    "ErrorCode",
    "ConnectorError",
    "ConnectorConnectionError",
    "ExecutionAborted",
    "UnknownConnectorTypeError",
    "DuplicateConnectorError",
]
