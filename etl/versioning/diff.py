"""Record-level differences between two data versions."""

import json
from dataclasses import dataclass, field
from typing import Any, Iterable

Record = dict[str, Any]


@dataclass
class RecordChange:
    old: Record
    new: Record
    changes: dict[str, dict[str, Any]]


@dataclass
class VersionDiff:
    """Per-record changes going from one version to another."""

    added: list[Record] = field(default_factory=list)
    removed: list[Record] = field(default_factory=list)
    modified: list[RecordChange] = field(default_factory=list)

    @property
    def total_changes(self) -> int:
        return len(self.added) + len(self.removed) + len(self.modified)

    def as_dict(self, include_details: bool = True) -> dict:
        payload = {
            "added": len(self.added),
            "removed": len(self.removed),
            "modified": len(self.modified),
            "total_changes": self.total_changes,
        }
        if include_details:
            payload["details"] = {
                "added": list(self.added),
                "removed": list(self.removed),
                "modified": [{"old": item.old, "new": item.new, "changes": item.changes} for item in self.modified],
            }
        return payload


def record_key(record: Record) -> str:
    """Match records on their ``id`` field, or on their whole content when they have none."""
    if record.get("id") is not None:
        return json.dumps(record["id"], default=str)
    return json.dumps(record, sort_keys=True, default=str)


def field_changes(old: Record, new: Record) -> dict[str, dict[str, Any]]:
    changes: dict[str, dict[str, Any]] = {}
    for key in list(old) + [key for key in new if key not in old]:
        if key not in old:
            changes[key] = {"type": "added", "value": new[key]}
        elif key not in new:
            changes[key] = {"type": "removed", "value": old[key]}
        elif old[key] != new[key]:
            changes[key] = {"type": "modified", "old_value": old[key], "new_value": new[key]}
    return changes


def calculate_diff(old_records: Iterable[Record], new_records: Iterable[Record]) -> VersionDiff:
    # a later record with the same key replaces an earlier one
    old_by_key = {record_key(record): record for record in old_records}
    new_by_key = {record_key(record): record for record in new_records}
    diff = VersionDiff()

    for key, record in new_by_key.items():
        previous = old_by_key.get(key)
        if previous is None:
            diff.added.append(record)
        elif previous != record:
            diff.modified.append(RecordChange(old=previous, new=record, changes=field_changes(previous, record)))

    diff.removed = [record for key, record in old_by_key.items() if key not in new_by_key]
    return diff


__all__ = ["RecordChange", "VersionDiff", "calculate_diff", "field_changes", "record_key"]
