"""Shared shapes exchanged between connectors and their callers."""

from dataclasses import dataclass, field
from datetime import datetime
from threading import Event
from typing import Any, Callable, Literal

from pydantic import BaseModel, ConfigDict, Field

LogLevel = Literal["debug", "info", "warn", "error"]
Record = dict[str, Any]


class ScheduleConfig(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    cron: str | None = None
    timezone: str | None = None
    is_one_time: bool = Field(default=False, alias="isOneTime")
    is_enabled: bool = Field(default=True, alias="isEnabled")
    next_run_at: datetime | None = Field(default=None, alias="nextRunAt")
    last_run_at: datetime | None = Field(default=None, alias="lastRunAt")


class ConnectorConfig(BaseModel):
    """Immutable description of one data source; ``type`` selects the connector."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str = Field(min_length=1)
    name: str = ""
    type: str = Field(min_length=1)
    schedule: ScheduleConfig | None = None
    connection: dict[str, Any] = Field(default_factory=dict)
    options: dict[str, Any] = Field(default_factory=dict)


class ProgressInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    percent: float = Field(ge=0, le=100)
    current_step: str | None = None
    message: str | None = None
    records_processed: int | None = Field(default=None, ge=0)
    total_records: int | None = Field(default=None, ge=0)
    bytes_processed: int | None = Field(default=None, ge=0)
    total_bytes: int | None = Field(default=None, ge=0)
    estimated_time_remaining: float | None = None


class ValidationError(BaseModel):
    model_config = ConfigDict(extra="ignore")

    field: str | None = None
    code: str = Field(min_length=1)
    message: str
    details: Any = None


class ValidationResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    is_valid: bool
    errors: list[ValidationError] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def from_errors(cls, errors: list[ValidationError], warnings: list[str] | None = None) -> "ValidationResult":
        return cls(is_valid=not errors, errors=errors, warnings=warnings or [])

    def codes(self) -> list[str]:
        return [error.code for error in self.errors]


class ExecutionError(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: str
    message: str
    details: Any = None


class ExecutionResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    success: bool
    records_processed: int = Field(default=0, ge=0)
    bytes_processed: int = Field(default=0, ge=0)
    duration: float = Field(default=0.0, ge=0)
    metadata: dict[str, Any] = Field(default_factory=dict)
    error: ExecutionError | None = None


class TestConnectionResult(BaseModel):
    __test__ = False

    model_config = ConfigDict(extra="ignore")

    success: bool
    message: str | None = None
    latency_ms: float | None = None
    version: str | None = None
    error: str | None = None


class ForeignKeyRef(BaseModel):
    table: str
    column: str


class ColumnInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    type: str
    nullable: bool = True
    primary_key: bool = False
    foreign_key: ForeignKeyRef | None = None
    default_value: Any = None
    description: str | None = None


class TableInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    schema_name: str | None = None
    type: Literal["table", "view"] = "table"
    record_count: int | None = None
    columns: list[ColumnInfo] = Field(default_factory=list)
    description: str | None = None


class CancellationToken:
    """Cooperative cancellation flag shared between a caller and a running connector."""

    def __init__(self) -> None:
        self._event = Event()
        self.reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        if not self._event.is_set():
            self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class ExecutionContext:
    """Per-run identifiers and callbacks; build a fresh one for every run."""

    execution_id: str
    data_source_id: str
    project_id: str
    job_id: str | None = None
    user_id: str | None = None
    is_test: bool = False
    cancel_token: CancellationToken = field(default_factory=CancellationToken)
    on_progress: Callable[[ProgressInfo], None] | None = None
    on_log: Callable[[LogLevel, str, Any], None] | None = None
    on_batch: Callable[[list[Record]], None] | None = None
