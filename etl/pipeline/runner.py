import uuid
from datetime import datetime, timezone
from typing import Any, Callable

from connectors._logging import get_logger
from connectors.sources.data_contract import (
    CancellationToken,
    ConnectorConfig,
    ExecutionContext,
    ProgressInfo,
    Record,
)
from connectors.sources.factory import ConnectorRegistry, build_default_registry, load_connector_config
from connectors.sources.sql.incremental import cursor_from_result, delta_settings, with_last_value
from versioning import RetentionPolicy, VersionManager, apply_retention_policy

logger = get_logger("pipeline.runner")


def run_ingestion(
    connector_config: ConnectorConfig | dict[str, Any] | str,
    manager: VersionManager,
    *,
    registry: ConnectorRegistry | None = None,
    project_id: str = "default",
    retention_policy: RetentionPolicy | None = None,
    execution_id: str | None = None,
    cancel_token: CancellationToken | None = None,
    on_progress: Callable[[ProgressInfo], None] | None = None,
    on_log: Callable[[str, str, Any], None] | None = None,
) -> dict:
    """
    Import one data source into the version store:
    1. Build and validate the connector
    2. Resume the delta cursor, if any
    3. Run the connector and collect its batches
    4. Commit the records as a new version and store the cursor
    5. Apply retention when the policy asks for auto cleanup
    """
    execution_id = execution_id or str(uuid.uuid4())
    started_at = datetime.now(timezone.utc)
    registry = registry or build_default_registry()

    if not isinstance(connector_config, ConnectorConfig):
        connector_config = ConnectorConfig.model_validate(load_connector_config(connector_config))
    data_source_id = connector_config.id

    summary: dict[str, Any] = {
        "execution_id": execution_id,
        "data_source_id": data_source_id,
        "status": "failure",
        "records_processed": 0,
        "version_id": None,
        "version": None,
        "retention": None,
        "error": None,
        "duration_seconds": 0.0,
    }

    # 1. Build and validate
    connector = registry.create(connector_config)
    try:
        validation = connector.validate_config()
        if not validation.is_valid:
            summary["error"] = {
                "code": "CONFIG_VALIDATION_ERROR",
                "message": "; ".join(error.message for error in validation.errors),
                "details": [error.model_dump() for error in validation.errors],
            }
            logger.warning("Validation failed for %s: %s", data_source_id, validation.codes())
            return summary

        # 2. Resume delta sync
        if delta_settings(connector_config) is not None:
            cursor = manager.get_sync_cursor(data_source_id)
            if cursor is not None:
                connector.dispose()
                connector = registry.create(with_last_value(connector_config, cursor))

        # 3. Run
        records: list[Record] = []
        context = ExecutionContext(
            execution_id=execution_id,
            data_source_id=data_source_id,
            project_id=project_id,
            cancel_token=cancel_token or CancellationToken(),
            on_progress=on_progress,
            on_log=on_log,
            on_batch=records.extend,
        )
        result = connector.run(context)
        summary["records_processed"] = result.records_processed

        if not result.success:
            summary["status"] = "aborted" if result.error and result.error.code == "ABORTED" else "failure"
            summary["error"] = result.error.model_dump() if result.error else None
            logger.warning("Ingestion %s for %s ended with %s", execution_id, data_source_id, summary["status"])
            return summary

        # 4. Commit version and cursor
        schema_meta = {
            "columns": result.metadata.get("columns", list(records[0].keys()) if records else []),
            "column_types": result.metadata.get("column_types", {}),
            "source_type": connector_config.type,
            "execution_id": execution_id,
            "metadata": result.metadata,
        }
        version_id = manager.create_version(data_source_id, records, schema_meta, project_id=project_id)
        version = manager.get_version(version_id)
        summary.update({"status": "success", "version_id": version_id, "version": version.version if version else None})

        last_value = cursor_from_result(result)
        if last_value is not None:
            delta = result.metadata.get("delta") or {}
            manager.set_sync_cursor(data_source_id, last_value, delta.get("tracking_column"))

        # 5. Retention
        policy = retention_policy or manager.get_retention_policy(data_source_id)
        if policy is not None and policy.auto_cleanup:
            summary["retention"] = apply_retention_policy(manager, data_source_id, policy).as_dict()

        logger.info(
            "Ingestion %s for %s stored version %s with %s records",
            execution_id,
            data_source_id,
            summary["version"],
            result.records_processed,
        )
        return summary
    finally:
        summary["duration_seconds"] = (datetime.now(timezone.utc) - started_at).total_seconds()
        connector.dispose()
