"""SQLAlchemy Core tables backing the version store."""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)

metadata = MetaData()

data_versions_table = Table(
    "data_versions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("data_source_id", String(255), nullable=False),
    Column("project_id", String(255)),
    Column("version", Integer, nullable=False),
    Column("record_count", Integer, nullable=False, default=0),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("metadata_json", Text),
    Column("previous_version_id", String(36)),
    UniqueConstraint("data_source_id", "version", name="uq_data_versions_source_version"),
)

data_records_table = Table(
    "data_records",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("version_id", String(36), ForeignKey("data_versions.id"), nullable=False),
    Column("record_index", Integer, nullable=False),
    Column("record_data", Text, nullable=False),
)

Index("ix_data_records_version", data_records_table.c.version_id, data_records_table.c.record_index)

retention_policies_table = Table(
    "retention_policies",
    metadata,
    Column("data_source_id", String(255), primary_key=True),
    Column("strategy", String(32), nullable=False),
    Column("value", Integer),
    Column("auto_cleanup", Boolean, nullable=False, default=False),
    Column("min_versions", Integer, nullable=False, default=0),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

version_counters_table = Table(
    "version_counters",
    metadata,
    Column("data_source_id", String(255), primary_key=True),
    Column("last_version", Integer, nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

sync_cursors_table = Table(
    "sync_cursors",
    metadata,
    Column("data_source_id", String(255), primary_key=True),
    Column("tracking_column", String(255)),
    Column("last_value", Text),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)
