import argparse
import json
import os
import sys

from connectors import close_all_connections
from connectors.sources.factory import create_connector, load_connector_config
from pipeline.runner import run_ingestion
from versioning import DEFAULT_URL, RetentionPolicy, VersionManager, VersionNotFoundError, cleanup_old_versions


def _print_json(payload) -> None:
    print(json.dumps(payload, default=str))


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {value}")
    return number


def _version_store(args) -> VersionManager:
    return VersionManager(args.store or os.getenv("ETL_VERSION_STORE_URL") or DEFAULT_URL)


def _load_connector(args):
    try:
        return create_connector(load_connector_config(args.config))
    except Exception as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return None


def cmd_run(args) -> int:
    """Handle run subcommand."""
    try:
        connector_config = load_connector_config(args.config)
    except Exception as e:
        print(f"Error loading connector config: {e}", file=sys.stderr)
        return 1

    policy = None
    if args.keep_last is not None:
        policy = RetentionPolicy(strategy="keep-last", value=args.keep_last, auto_cleanup=True)
    elif args.keep_days is not None:
        policy = RetentionPolicy(strategy="keep-days", value=args.keep_days, auto_cleanup=True)

    manager = _version_store(args)
    try:
        result = run_ingestion(connector_config, manager, project_id=args.project, retention_policy=policy)
    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        return 1
    finally:
        manager.dispose()

    _print_json(result)
    if result["status"] == "success":
        print(f"Import finished. Version {result['version']} holds {result['records_processed']} records.", file=sys.stderr)
        return 0
    print(f"Import failed: {(result.get('error') or {}).get('message')}", file=sys.stderr)
    return 1


def cmd_test_connection(args) -> int:
    """Handle test-connection subcommand."""
    connector = _load_connector(args)
    if connector is None:
        return 1
    try:
        result = connector.test_connection()
    finally:
        connector.dispose()

    _print_json(result.model_dump(mode="json"))
    label = f"{connector.config.type} source from {args.config}"
    if result.success:
        print(f"Connection to {label} successful.", file=sys.stderr)
        return 0
    print(f"Connection to {label} failed.", file=sys.stderr)
    return 1


def cmd_validate(args) -> int:
    connector = _load_connector(args)
    if connector is None:
        return 1
    result = connector.validate_config()
    _print_json(result.model_dump(mode="json"))
    return 0 if result.is_valid else 1


def cmd_tables(args) -> int:
    connector = _load_connector(args)
    if connector is None:
        return 1
    try:
        if args.table:
            payload = connector.get_table_schema(args.table).model_dump(mode="json")
        else:
            payload = [table.model_dump(mode="json") for table in connector.list_available_tables()]
    except NotImplementedError as e:
        print(str(e), file=sys.stderr)
        return 1
    finally:
        connector.dispose()
    _print_json(payload)
    return 0


def cmd_preview(args) -> int:
    connector = _load_connector(args)
    if connector is None:
        return 1
    try:
        rows = connector.preview_data(limit=args.limit, table_name=args.table)
    finally:
        connector.dispose()
    _print_json(rows)
    return 0


def cmd_versions(args) -> int:
    manager = _version_store(args)
    try:
        payload = {
            "stats": manager.get_stats(args.source).model_dump(mode="json"),
            "versions": [version.model_dump(mode="json") for version in manager.list_versions(args.source)],
        }
    finally:
        manager.dispose()
    _print_json(payload)
    return 0


def cmd_diff(args) -> int:
    manager = _version_store(args)
    try:
        diff = manager.diff_versions(args.source, args.from_version, args.to_version)
    except VersionNotFoundError as e:
        print(str(e), file=sys.stderr)
        return 1
    finally:
        manager.dispose()
    _print_json(diff.as_dict(include_details=args.details))
    return 0


def cmd_cleanup(args) -> int:
    manager = _version_store(args)
    try:
        report = cleanup_old_versions(manager, args.source, args.keep)
    finally:
        manager.dispose()
    _print_json(report.as_dict())
    return 0 if not report.failures else 1


def cmd_retention(args) -> int:
    try:
        policy = RetentionPolicy(strategy=args.strategy, value=args.value, auto_cleanup=args.auto_cleanup)
    except ValueError as e:
        print(f"Invalid retention policy: {e}", file=sys.stderr)
        return 2

    manager = _version_store(args)
    try:
        manager.set_retention_policy(args.source, policy)
    finally:
        manager.dispose()
    _print_json(policy.model_dump())
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(description="Data source ingestion CLI")
    subparsers = parser.add_subparsers(dest="command", help="Subcommand to run")

    # Run command
    run_parser = subparsers.add_parser("run", help="Import a data source into a new version")
    run_parser.add_argument("--config", required=True, help="Path to connector JSON/YAML config")
    run_parser.add_argument("--store", help="Version store SQLAlchemy URL")
    run_parser.add_argument("--project", default="default", help="Project id recorded on the version")
    keep = run_parser.add_mutually_exclusive_group()
    keep.add_argument("--keep-last", type=_positive_int, help="Keep only the N newest versions after import")
    keep.add_argument("--keep-days", type=int, help="Delete versions older than N days after import")

    # Connector inspection commands
    test_parser = subparsers.add_parser("test-connection", help="Test a source connection")
    test_parser.add_argument("--config", required=True, help="Path to connector JSON/YAML config")

    validate_parser = subparsers.add_parser("validate", help="Validate a connector config")
    validate_parser.add_argument("--config", required=True, help="Path to connector JSON/YAML config")

    tables_parser = subparsers.add_parser("tables", help="List tables or describe one")
    tables_parser.add_argument("--config", required=True, help="Path to connector JSON/YAML config")
    tables_parser.add_argument("--table", help="Describe this table instead of listing")

    preview_parser = subparsers.add_parser("preview", help="Show the first records of a source")
    preview_parser.add_argument("--config", required=True, help="Path to connector JSON/YAML config")
    preview_parser.add_argument("--limit", type=int, default=10)
    preview_parser.add_argument("--table", help="Table to preview")

    # Version store commands
    versions_parser = subparsers.add_parser("versions", help="List versions of a data source")
    versions_parser.add_argument("--source", required=True, help="Data source id")
    versions_parser.add_argument("--store", help="Version store SQLAlchemy URL")

    diff_parser = subparsers.add_parser("diff", help="Compare the records of two versions")
    diff_parser.add_argument("--source", required=True, help="Data source id")
    diff_parser.add_argument("--from", dest="from_version", type=int, required=True, help="Older version number")
    diff_parser.add_argument("--to", dest="to_version", type=int, required=True, help="Newer version number")
    diff_parser.add_argument("--details", action="store_true", help="Include the changed records")
    diff_parser.add_argument("--store", help="Version store SQLAlchemy URL")

    cleanup_parser = subparsers.add_parser("cleanup", help="Keep only the newest versions")
    cleanup_parser.add_argument("--source", required=True, help="Data source id")
    cleanup_parser.add_argument("--keep", type=_positive_int, default=10, help="Number of versions to keep")
    cleanup_parser.add_argument("--store", help="Version store SQLAlchemy URL")

    retention_parser = subparsers.add_parser("retention", help="Set the retention policy of a data source")
    retention_parser.add_argument("--source", required=True, help="Data source id")
    retention_parser.add_argument("--strategy", choices=["keep-last", "keep-days", "keep-all"], required=True)
    retention_parser.add_argument("--value", type=int)
    retention_parser.add_argument("--auto-cleanup", action="store_true")
    retention_parser.add_argument("--store", help="Version store SQLAlchemy URL")

    args = parser.parse_args(argv)

    handlers = {
        "run": cmd_run,
        "test-connection": cmd_test_connection,
        "validate": cmd_validate,
        "tables": cmd_tables,
        "preview": cmd_preview,
        "versions": cmd_versions,
        "diff": cmd_diff,
        "cleanup": cmd_cleanup,
        "retention": cmd_retention,
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        sys.exit(1)

    try:
        code = handler(args)
    finally:
        close_all_connections()
    sys.exit(code)


if __name__ == "__main__":
    main()
