from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

TrackingType = Literal["timestamp", "integer", "version"]


class SQLiteConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    file_path: str | None = None
    in_memory: bool = False


class PostgresConfig(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    host: str = Field(min_length=1)
    port: int = Field(default=5432, ge=1, le=65535)
    database: str = Field(min_length=1)
    username: str = Field(min_length=1)
    password: str = ""
    schema_name: str | None = Field(default=None, alias="schema")
    ssl: bool = False
    connection_timeout: int = Field(default=30, ge=1)


class MSSQLConfig(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    host: str = Field(min_length=1)
    port: int = Field(default=1433, ge=1, le=65535)
    database: str = Field(min_length=1)
    username: str = Field(min_length=1)
    password: str = ""
    schema_name: str | None = Field(default=None, alias="schema")
    driver: str = Field(default="ODBC Driver 18 for SQL Server", min_length=1)
    trust_server_certificate: str = Field(default="yes", min_length=1)
    connection_timeout: int = Field(default=30, ge=1)


class OracleConfig(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    host: str = Field(min_length=1)
    port: int = Field(default=1521, ge=1, le=65535)
    service_name: str = Field(min_length=1)
    username: str = Field(min_length=1)
    password: str = ""
    schema_name: str | None = Field(default=None, alias="schema")

    @model_validator(mode="before")
    @classmethod
    def _service_from_database(cls, values: Any) -> Any:
        if isinstance(values, dict) and not values.get("service_name") and values.get("database"):
            values = {**values, "service_name": values["database"]}
        return values


class ODBCConfig(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    driver: str | None = None
    dsn: str | None = None
    connection_string: str | None = None
    host: str | None = None
    port: int | None = Field(default=None, ge=1, le=65535)
    database: str | None = None
    username: str | None = None
    password: str | None = None
    schema_name: str | None = Field(default=None, alias="schema")
    connection_timeout: int = Field(default=30, ge=0)
    odbc_options: dict[str, Any] = Field(default_factory=dict)


class DeltaConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    enabled: bool = False
    tracking_column: str | None = None
    tracking_type: TrackingType = "timestamp"
    last_value: Any = None


class DatabaseOptions(BaseModel):
    """Extraction options shared by every database connector."""

    model_config = ConfigDict(extra="ignore")

    query: str | None = None
    table_name: str | None = None
    batch_size: int = Field(default=1000, ge=1)
    streaming: bool = True
    order_by: str | None = None
    limit: int | None = Field(default=None, ge=1)
    offset: int = Field(default=0, ge=0)
    custom_where_clause: str | None = None
    include_schema: bool = True
    delta_config: DeltaConfig = Field(default_factory=DeltaConfig)

    @model_validator(mode="before")
    @classmethod
    def _flat_delta_keys(cls, values: Any) -> Any:
        # tracking_column/tracking_type/last_value may be given at the top level
        if not isinstance(values, dict) or "tracking_column" not in values:
            return values
        delta = dict(values.get("delta_config") or {})
        delta.setdefault("enabled", True)
        for key in ("tracking_column", "tracking_type", "last_value"):
            if key in values:
                delta.setdefault(key, values[key])
        return {**values, "delta_config": delta}

    @property
    def delta_active(self) -> bool:
        return self.delta_config.enabled and bool(self.delta_config.tracking_column)
