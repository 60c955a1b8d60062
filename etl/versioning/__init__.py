from .diff import RecordChange, VersionDiff, calculate_diff
from .manager import DEFAULT_URL, DataVersion, VersionManager, VersionNotFoundError, VersionStats
from .retention import (
    RetentionPolicy,
    RetentionReport,
    apply_retention_policy,
    cleanup_old_versions,
    compute_deletable,
)

__all__ = [
    "DEFAULT_URL",
    "DataVersion",
    "VersionManager",
    "VersionNotFoundError",
    "VersionStats",
    "RecordChange",
    "VersionDiff",
    "calculate_diff",
    "RetentionPolicy",
    "RetentionReport",
    "apply_retention_policy",
    "cleanup_old_versions",
    "compute_deletable",
]
