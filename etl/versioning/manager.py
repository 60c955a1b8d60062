"""Versioned snapshot store: one immutable version per successful import."""

import json
import uuid
from datetime import datetime, timezone
from threading import Lock
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import create_engine, delete, func, insert, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import StaticPool

from connectors._logging import get_logger

from .diff import VersionDiff, calculate_diff
from .retention import RetentionPolicy
from .schema import (
    data_records_table,
    data_versions_table,
    metadata,
    retention_policies_table,
    sync_cursors_table,
    version_counters_table,
)

LOGGER = get_logger("versioning.manager")

DEFAULT_URL = "sqlite:///data_versions.db"


class VersionNotFoundError(LookupError):
    def __init__(self, version_id: str):
        super().__init__(f"Version '{version_id}' not found")
        self.version_id = version_id


class DataVersion(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    data_source_id: str
    project_id: str | None = None
    version: int = Field(ge=1)
    record_count: int = Field(default=0, ge=0)
    created_at: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)
    previous_version_id: str | None = None


class VersionStats(BaseModel):
    model_config = ConfigDict(extra="ignore")

    total_versions: int = 0
    total_records: int = 0
    latest_version: int | None = None
    oldest_version: int | None = None
    last_import_at: datetime | None = None


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _build_engine(url: str) -> Engine:
    if url.startswith("sqlite") and (url in {"sqlite://", "sqlite:///"} or ":memory:" in url):
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False, "timeout": 30})
    return create_engine(url, pool_pre_ping=True)


class VersionManager:
    """Creates, lists, reads and deletes data versions for each data source.

    Version numbers per data source only ever increase. The next number is
    one past the larger of the newest stored version and the source's
    ``version_counters`` row, so numbers freed by deletes are never handed out
    again. The counter moves in the same transaction that inserts the version
    and its records, while a per-source lock keeps concurrent imports of the
    same source in line. The unique ``(data_source_id, version)`` constraint
    backs this up at the database level.
    """

    def __init__(self, url_or_engine: str | Engine | None = None):
        if isinstance(url_or_engine, Engine):
            self.engine = url_or_engine
            self._owns_engine = False
        else:
            self.engine = _build_engine(url_or_engine or DEFAULT_URL)
            self._owns_engine = True
        self._locks_guard = Lock()
        self._source_locks: dict[str, Lock] = {}
        metadata.create_all(self.engine)
        LOGGER.info("Version store ready on %s", self.engine.url.render_as_string(hide_password=True))

    # -- versions ---------------------------------------------------------

    def create_version(
        self,
        data_source_id: str,
        records: list[dict[str, Any]],
        schema_meta: dict[str, Any] | None = None,
        *,
        project_id: str | None = None,
    ) -> str:
        """Store ``records`` as the next version of ``data_source_id``; return the version id."""
        version_id = str(uuid.uuid4())
        created_at = datetime.now(timezone.utc)

        with self._source_lock(data_source_id):
            with self.engine.begin() as connection:
                latest = connection.execute(
                    select(data_versions_table.c.id, data_versions_table.c.version)
                    .where(data_versions_table.c.data_source_id == data_source_id)
                    .order_by(data_versions_table.c.version.desc())
                    .limit(1)
                ).first()
                high_water = connection.execute(
                    select(version_counters_table.c.last_version).where(
                        version_counters_table.c.data_source_id == data_source_id
                    )
                ).scalar()
                next_version = max(high_water or 0, latest.version if latest else 0) + 1
                previous_version_id = latest.id if latest else None

                connection.execute(
                    insert(data_versions_table).values(
                        id=version_id,
                        data_source_id=data_source_id,
                        project_id=project_id,
                        version=next_version,
                        record_count=len(records),
                        created_at=created_at,
                        metadata_json=json.dumps(schema_meta or {}, default=str),
                        previous_version_id=previous_version_id,
                    )
                )
                if records:
                    connection.execute(
                        insert(data_records_table),
                        [
                            {
                                "version_id": version_id,
                                "record_index": index,
                                "record_data": json.dumps(record, default=str),
                            }
                            for index, record in enumerate(records)
                        ],
                    )
                self._upsert(
                    connection,
                    version_counters_table,
                    data_source_id,
                    {"last_version": next_version, "updated_at": created_at},
                )

        LOGGER.info(
            "Created version %s (#%s) for data source %s with %s records",
            version_id,
            next_version,
            data_source_id,
            len(records),
        )
        return version_id

    def list_versions(self, data_source_id: str) -> list[DataVersion]:
        """All versions of a data source, newest first."""
        query = (
            select(data_versions_table)
            .where(data_versions_table.c.data_source_id == data_source_id)
            .order_by(data_versions_table.c.version.desc())
        )
        with self.engine.connect() as connection:
            return [self._to_version(row) for row in connection.execute(query)]

    def get_version(self, version_id: str) -> DataVersion | None:
        with self.engine.connect() as connection:
            row = connection.execute(select(data_versions_table).where(data_versions_table.c.id == version_id)).first()
        return self._to_version(row) if row is not None else None

    def get_version_by_number(self, data_source_id: str, number: int) -> DataVersion | None:
        query = select(data_versions_table).where(
            data_versions_table.c.data_source_id == data_source_id,
            data_versions_table.c.version == number,
        )
        with self.engine.connect() as connection:
            row = connection.execute(query).first()
        return self._to_version(row) if row is not None else None

    def get_current_version(self, data_source_id: str) -> DataVersion | None:
        query = (
            select(data_versions_table)
            .where(data_versions_table.c.data_source_id == data_source_id)
            .order_by(data_versions_table.c.version.desc())
            .limit(1)
        )
        with self.engine.connect() as connection:
            row = connection.execute(query).first()
        return self._to_version(row) if row is not None else None

    def get_version_records(self, version_id: str, limit: int | None = None, offset: int = 0) -> list[dict[str, Any]]:
        query = (
            select(data_records_table.c.record_data)
            .where(data_records_table.c.version_id == version_id)
            .order_by(data_records_table.c.record_index)
            .offset(offset)
        )
        if limit is not None:
            query = query.limit(limit)
        with self.engine.connect() as connection:
            return [json.loads(row.record_data) for row in connection.execute(query)]

    def get_latest_records(self, data_source_id: str, limit: int | None = None, offset: int = 0) -> list[dict[str, Any]]:
        """Records of the current version; empty when the source has no version yet."""
        current = self.get_current_version(data_source_id)
        if current is None:
            return []
        return self.get_version_records(current.id, limit=limit, offset=offset)

    def delete_version(self, version_id: str) -> None:
        """Delete a version and its records in one transaction."""
        with self.engine.begin() as connection:
            exists = connection.execute(
                select(data_versions_table.c.id).where(data_versions_table.c.id == version_id)
            ).first()
            if exists is None:
                raise VersionNotFoundError(version_id)
            removed = connection.execute(
                delete(data_records_table).where(data_records_table.c.version_id == version_id)
            ).rowcount
            connection.execute(delete(data_versions_table).where(data_versions_table.c.id == version_id))
        LOGGER.info("Deleted version %s and %s records", version_id, removed)

    def diff_versions(self, data_source_id: str, from_number: int, to_number: int) -> VersionDiff:
        """Record-level changes going from version ``from_number`` to ``to_number``."""
        versions = []
        for number in (from_number, to_number):
            version = self.get_version_by_number(data_source_id, number)
            if version is None:
                raise VersionNotFoundError(f"{data_source_id}#{number}")
            versions.append(version)
        old, new = versions
        diff = calculate_diff(self.get_version_records(old.id), self.get_version_records(new.id))
        LOGGER.debug(
            "Diff of %s versions %s..%s: %s changes", data_source_id, from_number, to_number, diff.total_changes
        )
        return diff

    def get_stats(self, data_source_id: str) -> VersionStats:
        query = select(
            func.count(data_versions_table.c.id),
            func.coalesce(func.sum(data_versions_table.c.record_count), 0),
            func.max(data_versions_table.c.version),
            func.min(data_versions_table.c.version),
            func.max(data_versions_table.c.created_at),
        ).where(data_versions_table.c.data_source_id == data_source_id)
        with self.engine.connect() as connection:
            total, records, latest, oldest, last_import = connection.execute(query).one()
        return VersionStats(
            total_versions=total,
            total_records=records,
            latest_version=latest,
            oldest_version=oldest,
            last_import_at=_as_utc(last_import),
        )

    # -- retention policy -------------------------------------------------

    def set_retention_policy(self, data_source_id: str, policy: RetentionPolicy) -> None:
        values = {
            "strategy": policy.strategy,
            "value": policy.value,
            "auto_cleanup": policy.auto_cleanup,
            "min_versions": policy.min_versions,
            "updated_at": datetime.now(timezone.utc),
        }
        with self.engine.begin() as connection:
            self._upsert(connection, retention_policies_table, data_source_id, values)
        LOGGER.info("Retention policy for %s set to %s", data_source_id, policy.describe())

    def get_retention_policy(self, data_source_id: str) -> RetentionPolicy | None:
        with self.engine.connect() as connection:
            row = connection.execute(
                select(retention_policies_table).where(retention_policies_table.c.data_source_id == data_source_id)
            ).first()
        if row is None:
            return None
        return RetentionPolicy(
            strategy=row.strategy,
            value=row.value,
            auto_cleanup=bool(row.auto_cleanup),
            min_versions=row.min_versions,
        )

    # -- incremental sync cursor -----------------------------------------

    def set_sync_cursor(self, data_source_id: str, last_value: Any, tracking_column: str | None = None) -> None:
        values = {
            "tracking_column": tracking_column,
            "last_value": json.dumps(last_value, default=str),
            "updated_at": datetime.now(timezone.utc),
        }
        with self.engine.begin() as connection:
            self._upsert(connection, sync_cursors_table, data_source_id, values)
        LOGGER.debug("Sync cursor for %s stored at %s=%s", data_source_id, tracking_column, last_value)

    def get_sync_cursor(self, data_source_id: str) -> Any:
        with self.engine.connect() as connection:
            row = connection.execute(
                select(sync_cursors_table.c.last_value).where(sync_cursors_table.c.data_source_id == data_source_id)
            ).first()
        if row is None or row.last_value is None:
            return None
        return json.loads(row.last_value)

    def dispose(self) -> None:
        if self._owns_engine:
            self.engine.dispose()

    # -- helpers ----------------------------------------------------------

    def _source_lock(self, data_source_id: str) -> Lock:
        with self._locks_guard:
            lock = self._source_locks.get(data_source_id)
            if lock is None:
                lock = Lock()
                self._source_locks[data_source_id] = lock
            return lock

    @staticmethod
    def _upsert(connection: Connection, table, data_source_id: str, values: dict[str, Any]) -> None:
        key = table.c.data_source_id == data_source_id
        if connection.execute(select(table.c.data_source_id).where(key)).first() is None:
            connection.execute(insert(table).values(data_source_id=data_source_id, **values))
        else:
            connection.execute(update(table).where(key).values(**values))

    @staticmethod
    def _to_version(row) -> DataVersion:
        return DataVersion(
            id=row.id,
            data_source_id=row.data_source_id,
            project_id=row.project_id,
            version=row.version,
            record_count=row.record_count,
            created_at=_as_utc(row.created_at),
            metadata=json.loads(row.metadata_json) if row.metadata_json else {},
            previous_version_id=row.previous_version_id,
        )


__all__ = ["DataVersion", "VersionManager", "VersionNotFoundError", "VersionStats", "DEFAULT_URL"]
