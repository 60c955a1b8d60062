"""Retention policies deciding which data versions may be deleted."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from time import perf_counter
from typing import TYPE_CHECKING, Iterable, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from connectors._logging import get_logger

if TYPE_CHECKING:
    from .manager import DataVersion, VersionManager

LOGGER = get_logger("versioning.retention")

RetentionStrategy = Literal["keep-last", "keep-days", "keep-all"]
DEFAULT_KEEP_LAST = 10
DEFAULT_KEEP_DAYS = 30


class RetentionPolicy(BaseModel):
    """``value`` is a version count for keep-last and a number of days for keep-days."""

    model_config = ConfigDict(extra="ignore")

    strategy: RetentionStrategy = "keep-last"
    value: int | None = Field(default=None, ge=0)
    auto_cleanup: bool = False
    min_versions: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _default_value(self) -> "RetentionPolicy":
        if self.value is None:
            if self.strategy == "keep-last":
                self.value = DEFAULT_KEEP_LAST
            elif self.strategy == "keep-days":
                self.value = DEFAULT_KEEP_DAYS
        if self.strategy == "keep-last" and self.value < 1:
            raise ValueError("keep-last must keep at least one version")
        return self

    def describe(self) -> str:
        if self.strategy == "keep-all":
            return "keep-all"
        return f"{self.strategy}={self.value}"


@dataclass
class RetentionFailure:
    version_id: str
    error: str


@dataclass
class RetentionReport:
    """Result of applying a retention policy."""

    deleted_count: int = 0
    deleted_ids: list[str] = field(default_factory=list)
    failures: list[RetentionFailure] = field(default_factory=list)
    duration_seconds: float = 0.0

    def as_dict(self) -> dict:
        return {
            "deleted_count": self.deleted_count,
            "deleted_ids": list(self.deleted_ids),
            "failures": [{"version_id": item.version_id, "error": item.error} for item in self.failures],
            "duration_seconds": self.duration_seconds,
        }


def compute_deletable(
    versions: Iterable["DataVersion"],
    policy: RetentionPolicy,
    now: datetime | None = None,
) -> set[str]:
    """Ids of the versions ``policy`` allows to delete.

    keep-last N keeps the N highest version numbers; keep-days D keeps every
    version created within D days of ``now``; keep-all keeps everything.
    ``min_versions`` always protects that many of the newest versions.
    """
    ordered = sorted(versions, key=lambda item: item.version, reverse=True)
    if policy.strategy == "keep-all":
        return set()

    if policy.strategy == "keep-last":
        candidates = ordered[policy.value :]
    else:
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=policy.value)
        candidates = [item for item in ordered if item.created_at < cutoff]

    protected = {item.id for item in ordered[: policy.min_versions]}
    return {item.id for item in candidates if item.id not in protected}


def apply_retention_policy(
    manager: "VersionManager",
    data_source_id: str,
    policy: RetentionPolicy,
    now: datetime | None = None,
) -> RetentionReport:
    """Delete what ``policy`` allows; a failed delete is reported and the rest continue."""
    started = perf_counter()
    versions = manager.list_versions(data_source_id)
    deletable = compute_deletable(versions, policy, now)
    report = RetentionReport()

    # oldest first
    for version in sorted(versions, key=lambda item: item.version):
        if version.id not in deletable:
            continue
        try:
            manager.delete_version(version.id)
        except Exception as exc:
            LOGGER.warning("Retention could not delete version %s: %s", version.id, exc)
            report.failures.append(RetentionFailure(version_id=version.id, error=str(exc)))
            continue
        report.deleted_ids.append(version.id)
        report.deleted_count += 1

    report.duration_seconds = perf_counter() - started
    LOGGER.info(
        "Retention %s on %s deleted %s of %s versions (%s failures)",
        policy.describe(),
        data_source_id,
        report.deleted_count,
        len(versions),
        len(report.failures),
    )
    return report


def cleanup_old_versions(manager: "VersionManager", data_source_id: str, keep_count: int) -> RetentionReport:
    """Keep only the ``keep_count`` newest versions."""
    return apply_retention_policy(manager, data_source_id, RetentionPolicy(strategy="keep-last", value=keep_count))


__all__ = [
    "RetentionFailure",
    "RetentionPolicy",
    "RetentionReport",
    "RetentionStrategy",
    "apply_retention_policy",
    "cleanup_old_versions",
    "compute_deletable",
]
