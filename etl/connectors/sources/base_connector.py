"""Abstract connector contract and the shared run state machine."""

import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from threading import Lock
from time import perf_counter
from typing import Any, ClassVar, Iterator

from pydantic import ValidationError as PydanticValidationError

from .._config import normalize_keys
from .._logging import get_logger
from .data_contract import (
    ConnectorConfig,
    ExecutionContext,
    ExecutionError,
    ExecutionResult,
    LogLevel,
    ProgressInfo,
    Record,
    TableInfo,
    TestConnectionResult,
    ValidationError,
    ValidationResult,
)
from .errors import ConnectorConnectionError, ConnectorError, ErrorCode, ExecutionAborted

PROGRESS_CAP = 99.0
_LOG_LEVELS = {"debug": 10, "info": 20, "warn": 30, "error": 40}


class RunState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    CONNECTING = "connecting"
    EXTRACTING = "extracting"
    FINALIZING = "finalizing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"


_ACTIVE_STATES = {RunState.VALIDATING, RunState.CONNECTING, RunState.EXTRACTING, RunState.FINALIZING}


def estimate_record_size(record: Record) -> int:
    """Approximate the size of one record as the length of its JSON encoding."""
    return len(json.dumps(record, default=str))


def validation_error(field: str | None, code: str, message: str, details: Any = None) -> ValidationError:
    return ValidationError(field=field, code=code, message=message, details=details)


def pydantic_errors(exc: PydanticValidationError, prefix: str, code: str) -> list[ValidationError]:
    """Translate a pydantic failure into field errors under ``prefix``."""
    errors = []
    for item in exc.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        field = f"{prefix}.{location}" if location else prefix
        errors.append(validation_error(field, code, item.get("msg", "Invalid value")))
    return errors


class RunTracker:
    """Counters, progress and callback delivery for a single run."""

    def __init__(self, context: ExecutionContext | None, logger):
        self.context = context
        self.logger = logger
        self.records_processed = 0
        self.bytes_processed = 0
        self.total_records: int | None = None
        self.total_bytes: int | None = None
        self.metadata: dict[str, Any] = {}
        self._percent = 0.0
        self._started = perf_counter()

    @property
    def cancelled(self) -> bool:
        return self.context is not None and self.context.cancel_token.cancelled

    def log(self, level: LogLevel, message: str, details: Any = None) -> None:
        self.logger.log(_LOG_LEVELS.get(level, 20), message)
        if self.context is not None and self.context.on_log is not None:
            try:
                self.context.on_log(level, message, details)
            except Exception:
                self.logger.warning("on_log callback failed", exc_info=True)

    def set_totals(self, total_records: int | None = None, total_bytes: int | None = None) -> None:
        if total_records is not None:
            self.total_records = total_records
        if total_bytes is not None:
            self.total_bytes = total_bytes

    def _fraction(self) -> float | None:
        if self.total_records:
            return self.records_processed / self.total_records
        if self.total_bytes:
            return self.bytes_processed / self.total_bytes
        return None

    def progress(self, step: str, message: str | None = None, *, percent: float | None = None) -> None:
        """Emit a progress event; percent never decreases and stays below 100 until ``finish``."""
        fraction = self._fraction()
        eta: float | None = None
        if percent is None and fraction is not None:
            percent = fraction * 100
            if 0 < fraction < 1:
                elapsed = perf_counter() - self._started
                eta = elapsed / fraction * (1 - fraction)
        if percent is not None:
            self._percent = max(self._percent, min(PROGRESS_CAP, percent))
        self._emit(step, message, eta)

    def finish(self, message: str | None = None) -> None:
        self._percent = 100.0
        self._emit("completed", message, 0.0)

    def _emit(self, step: str, message: str | None, eta: float | None) -> None:
        if self.context is None or self.context.on_progress is None:
            return
        self.context.on_progress(
            ProgressInfo(
                percent=self._percent,
                current_step=step,
                message=message,
                records_processed=self.records_processed,
                total_records=self.total_records,
                bytes_processed=self.bytes_processed,
                total_bytes=self.total_bytes,
                estimated_time_remaining=eta,
            )
        )

    def deliver(self, batch: list[Record]) -> None:
        self.records_processed += len(batch)
        self.bytes_processed += sum(estimate_record_size(record) for record in batch)
        if self.context is not None and self.context.on_batch is not None:
            self.context.on_batch(batch)
        self.progress("extracting", f"Processed {self.records_processed} records")


class BaseConnector(ABC):
    """Common behaviour of every connector variant.

    Subclasses describe themselves through the class attributes, check their
    configuration in ``_validate`` and yield record batches from
    ``_iter_batches``. ``run`` owns the state machine, the cancellation checks
    between batches, progress emission and the mapping of every exception
    into an ``ExecutionResult``.
    """

    type_tag: ClassVar[str] = ""
    display_name: ClassVar[str] = ""
    description: ClassVar[str] = ""
    category: ClassVar[str] = ""
    capabilities: ClassVar[frozenset[str]] = frozenset({"preview_data"})

    def __init__(self, config: ConnectorConfig | dict[str, Any]):
        self.config = config if isinstance(config, ConnectorConfig) else ConnectorConfig.model_validate(config)
        self.logger = get_logger(f"connectors.sources.{self.type_tag or 'base'}")
        self._state = RunState.IDLE
        self._state_lock = Lock()
        self._context: ExecutionContext | None = None
        self._started_at: datetime | None = None
        self._disposed = False

    @property
    def connection(self) -> dict[str, Any]:
        return normalize_keys(self.config.connection)

    @property
    def options(self) -> dict[str, Any]:
        return normalize_keys(self.config.options)

    # -- hooks ------------------------------------------------------------

    @abstractmethod
    def _validate(self, config: ConnectorConfig) -> tuple[list[ValidationError], list[str]]:
        """Return field errors and warnings for ``config``."""

    @abstractmethod
    def _iter_batches(self, run: RunTracker) -> Iterator[list[Record]]:
        """Yield record batches; called after ``_open`` succeeded."""

    def _open(self) -> None:
        pass

    def _close(self) -> None:
        pass

    def _connection_check(self) -> str | None:
        """Check that the source is reachable; return a version string when known."""
        self._open()
        self._close()
        return None

    def _release(self) -> None:
        pass

    # -- public contract --------------------------------------------------

    def validate_config(self, config: ConnectorConfig | dict[str, Any] | None = None) -> ValidationResult:
        try:
            target = self._resolve_config(config)
            errors, warnings = self._validate(target)
        except Exception as exc:
            self.logger.exception("Configuration validation crashed")
            errors = [validation_error(None, ErrorCode.CONFIG_VALIDATION_ERROR.value, str(exc))]
            warnings = []
        return ValidationResult.from_errors(errors, warnings)

    def test_connection(self) -> TestConnectionResult:
        started = perf_counter()
        validation = self.validate_config()
        if not validation.is_valid:
            return TestConnectionResult(
                success=False,
                message="Configuration is invalid",
                latency_ms=(perf_counter() - started) * 1000,
                error="; ".join(error.message for error in validation.errors),
            )

        try:
            version = self._connection_check()
        except Exception as exc:
            self.logger.warning("Connection test failed for %s: %s", self.config.id, exc)
            return TestConnectionResult(
                success=False,
                message="Connection failed",
                latency_ms=(perf_counter() - started) * 1000,
                error=str(exc),
            )
        finally:
            self._safe_close()

        return TestConnectionResult(
            success=True,
            message="Connection successful",
            latency_ms=(perf_counter() - started) * 1000,
            version=version,
        )

    def run(self, context: ExecutionContext) -> ExecutionResult:
        started = perf_counter()
        with self._state_lock:
            if self._disposed:
                return self._failure(ErrorCode.EXECUTION_ERROR.value, "Connector has been disposed", None, started)
            if self._state in _ACTIVE_STATES:
                return self._failure(ErrorCode.EXECUTION_ERROR.value, "Connector is already running", None, started)
            self._state = RunState.VALIDATING
            self._context = context
            self._started_at = datetime.now(timezone.utc)

        tracker = RunTracker(context, self.logger)

        try:
            tracker.log("info", f"Starting {self.type_tag} execution {context.execution_id}")
            validation = self.validate_config()
            if not validation.is_valid:
                raise ConnectorError(
                    "Configuration validation failed",
                    code=ErrorCode.CONFIG_VALIDATION_ERROR,
                    details=[error.model_dump() for error in validation.errors],
                )
            for warning in validation.warnings:
                tracker.log("warn", warning)
            self._check_cancelled(context)

            self._state = RunState.CONNECTING
            tracker.progress("connecting", "Connecting to source")
            try:
                self._open()
            except ConnectorError:
                raise
            except Exception as exc:
                raise ConnectorConnectionError(f"Failed to connect: {exc}") from exc

            try:
                self._state = RunState.EXTRACTING
                self._extract(context, tracker)
            finally:
                self._safe_close()

            self._state = RunState.FINALIZING
            tracker.finish(f"Extracted {tracker.records_processed} records")
            self._state = RunState.SUCCEEDED
            tracker.log("info", f"Execution finished with {tracker.records_processed} records")
            return ExecutionResult(
                success=True,
                records_processed=tracker.records_processed,
                bytes_processed=tracker.bytes_processed,
                duration=perf_counter() - started,
                metadata=tracker.metadata,
            )
        except ExecutionAborted as exc:
            self._state = RunState.ABORTED
            tracker.log("warn", exc.message)
            return self._failure(exc.code, exc.message, exc.details, started, tracker)
        except ConnectorError as exc:
            self._state = RunState.FAILED
            tracker.log("error", exc.message, exc.details)
            return self._failure(exc.code, exc.message, exc.details, started, tracker)
        except Exception as exc:
            self.logger.exception("Execution %s failed", context.execution_id)
            self._state = RunState.FAILED
            tracker.log("error", str(exc))
            return self._failure(ErrorCode.EXECUTION_ERROR.value, str(exc), {"type": type(exc).__name__}, started, tracker)

    def _extract(self, context: ExecutionContext, tracker: RunTracker) -> None:
        batches = self._iter_batches(tracker)
        try:
            while True:
                self._check_cancelled(context)
                try:
                    batch = next(batches)
                except StopIteration:
                    break
                if batch:
                    tracker.deliver(batch)
        finally:
            batches.close()

    def abort(self) -> None:
        context = self._context
        if self._state in _ACTIVE_STATES and context is not None:
            self.logger.info("Abort requested for execution %s", context.execution_id)
            context.cancel_token.cancel("Execution aborted by caller")

    def dispose(self) -> None:
        if self._disposed:
            return
        self.abort()
        self._disposed = True
        self._safe_close()
        self._release()
        self.logger.debug("Connector %s disposed", self.config.id)

    def get_execution_state(self) -> dict[str, Any]:
        return {
            "is_running": self._state in _ACTIVE_STATES,
            "state": self._state.value,
            "context": self._context,
            "started_at": self._started_at,
        }

    def supports(self, capability: str) -> bool:
        return capability in self.capabilities

    # -- optional capabilities -------------------------------------------

    def list_available_tables(self) -> list[TableInfo]:
        raise NotImplementedError(f"{self.type_tag} connector does not list tables")

    def get_table_schema(self, table_name: str) -> TableInfo:
        raise NotImplementedError(f"{self.type_tag} connector does not describe tables")

    def preview_data(self, limit: int = 10, table_name: str | None = None) -> list[Record]:
        """Return the first ``limit`` records without reporting through any context."""
        if limit <= 0:
            return []
        tracker = RunTracker(None, self.logger)
        preview: list[Record] = []
        self._open()
        try:
            batches = self._iter_batches(tracker)
            try:
                for batch in batches:
                    preview.extend(batch[: limit - len(preview)])
                    if len(preview) >= limit:
                        break
            finally:
                batches.close()
        finally:
            self._safe_close()
        return preview

    # -- helpers ----------------------------------------------------------

    def _resolve_config(self, override: ConnectorConfig | dict[str, Any] | None) -> ConnectorConfig:
        if override is None:
            return self.config
        if isinstance(override, ConnectorConfig):
            return override

        merged = self.config.model_dump()
        for key, value in override.items():
            if key in {"connection", "options"} and isinstance(value, dict):
                merged[key] = {**merged.get(key, {}), **value}
            else:
                merged[key] = value
        return ConnectorConfig.model_validate(merged)

    @staticmethod
    def _check_cancelled(context: ExecutionContext) -> None:
        if context.cancel_token.cancelled:
            raise ExecutionAborted(context.cancel_token.reason or "Execution aborted")

    def _safe_close(self) -> None:
        try:
            self._close()
        except Exception:
            self.logger.warning("Error while closing %s connector", self.type_tag, exc_info=True)

    @staticmethod
    def _failure(
        code: str,
        message: str,
        details: Any,
        started: float,
        tracker: RunTracker | None = None,
    ) -> ExecutionResult:
        return ExecutionResult(
            success=False,
            records_processed=tracker.records_processed if tracker else 0,
            bytes_processed=tracker.bytes_processed if tracker else 0,
            duration=perf_counter() - started,
            metadata=tracker.metadata if tracker else {},
            error=ExecutionError(code=code, message=message, details=details),
        )


__all__ = [
    "BaseConnector",
    "RunState",
    "RunTracker",
    "estimate_record_size",
    "pydantic_errors",
    "validation_error",
]
