"""
Reconciliation planner: turns classified rows plus operator decisions into a
commit plan the job processor executes. No mutation.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from rosterhub.models.team import Team
from rosterhub.services.conflicts import (
    ACTION_SKIP,
    ACTION_UPDATE,
    ALREADY_ACTIVE,
    ALREADY_IN_WHITELIST,
    DUPLICATE_IN_BATCH,
    ClassificationResult,
    ConflictRecord,
)
from rosterhub.services.records import SourceRecord

PATH_CREATE = "create"
PATH_UPDATE = "update"
PATH_SKIP = "skip"
PATH_INVALID = "invalid"
PATH_FOLLOW_UP = "follow_up"  # in-file duplicate the operator chose to commit

COMMIT_PATHS = frozenset({PATH_CREATE, PATH_UPDATE, PATH_FOLLOW_UP})

# fields compared for the "what will change" report
CHANGE_FIELDS = (
    "age",
    "team_name",
    "team_division",
    "phone",
    "first_name",
    "last_name",
    "school_name",
    "city",
    "state",
    "parent_name",
    "parent_email",
)


@dataclass
class RowPlan:
    row_index: int
    path: str
    conflict_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"row_index": self.row_index, "path": self.path, "conflict_type": self.conflict_type}


@dataclass
class CommitPlan:
    rows: list[RowPlan] = field(default_factory=list)
    conflicts: list[ConflictRecord] = field(default_factory=list)
    teams_to_create: list[dict[str, str | None]] = field(default_factory=list)
    detected_changes: list[dict[str, Any]] = field(default_factory=list)
    summary: dict[str, Any] = field(default_factory=dict)

    def paths(self) -> dict[int, str]:
        return {row.row_index: row.path for row in self.rows}

    def to_dict(self) -> dict[str, Any]:
        return {
            "rows": [r.to_dict() for r in self.rows],
            "conflicts": [c.to_dict() for c in self.conflicts],
            "teams_to_create": list(self.teams_to_create),
            "detected_changes": list(self.detected_changes),
            "summary": dict(self.summary),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CommitPlan":
        data = data or {}
        return cls(
            rows=[
                RowPlan(row_index=int(r["row_index"]), path=r["path"], conflict_type=r.get("conflict_type"))
                for r in data.get("rows", [])
            ],
            conflicts=[ConflictRecord.from_dict(c) for c in data.get("conflicts", [])],
            teams_to_create=list(data.get("teams_to_create", [])),
            detected_changes=list(data.get("detected_changes", [])),
            summary=dict(data.get("summary", {})),
        )


def resolve_path(record: SourceRecord, conflict: ConflictRecord | None) -> str:
    if not record.has_valid_email:
        return PATH_INVALID
    if conflict is None:
        return PATH_CREATE

    action = conflict.action
    if action == ACTION_SKIP:
        return PATH_SKIP
    if conflict.conflict_type == ALREADY_ACTIVE:
        return PATH_SKIP
    if conflict.conflict_type == DUPLICATE_IN_BATCH:
        return PATH_FOLLOW_UP
    if conflict.conflict_type == ALREADY_IN_WHITELIST and action == ACTION_UPDATE:
        return PATH_UPDATE
    # no-conflict-equivalent: import, or advisory parent_email_match
    return PATH_CREATE


def _norm(value: Any) -> str:
    if value is None:
        return ""
    return " ".join(str(value).split()).lower()


def diff_fields(incoming: dict[str, Any], stored: dict[str, Any]) -> dict[str, bool]:
    """field -> True only when both sides differ, ignoring case and whitespace. Empty CSV cells never count."""
    changes = {}
    for name in CHANGE_FIELDS:
        new_value = incoming.get(name)
        if new_value is None:
            changes[name] = False
            continue
        changes[name] = _norm(new_value) != _norm(stored.get(name))
    return changes


def plan_teams(db: Session, records: list[SourceRecord], paths: dict[int, str]) -> list[dict[str, str | None]]:
    wanted: dict[tuple[str, str | None], dict[str, str | None]] = {}
    for record in records:
        if paths.get(record.row_index) not in COMMIT_PATHS or not record.team_name:
            continue
        key = (record.team_name.strip().lower(), record.team_division)
        wanted.setdefault(key, {"name": record.team_name.strip(), "division": record.team_division})

    if not wanted:
        return []

    names = sorted({name for name, _ in wanted})
    existing = {
        name
        for (name,) in db.query(func.lower(Team.name)).filter(func.lower(Team.name).in_(names)).all()
    }
    return [team for (name, _), team in wanted.items() if name not in existing]


def build_plan(
    db: Session,
    records: list[SourceRecord],
    classification: ClassificationResult,
    overrides: dict[Any, str] | None = None,
) -> CommitPlan:
    if overrides:
        classification.apply_overrides(overrides, len(records))

    rows: list[RowPlan] = []
    paths: dict[int, str] = {}
    for record in records:
        conflict = classification.for_row(record.row_index)
        path = resolve_path(record, conflict)
        paths[record.row_index] = path
        rows.append(
            RowPlan(
                row_index=record.row_index,
                path=path,
                conflict_type=conflict.conflict_type if conflict else None,
            )
        )

    detected_changes = []
    for record in records:
        if paths[record.row_index] not in COMMIT_PATHS:
            continue
        snapshot = classification.provisional.get(record.email)
        if snapshot is None:
            continue
        changes = diff_fields(record.canonical_values(), snapshot.values)
        detected_changes.append(
            {
                "row_index": record.row_index,
                "email": record.email,
                "changes": changes,
                "has_changes": any(changes.values()),
            }
        )

    path_counts = Counter(paths.values())
    by_profile_type = Counter((r.profile_type or "unknown") for r in records if r.has_valid_email)
    by_division = Counter((r.team_division or "unknown") for r in records if r.has_valid_email)
    conflicts = classification.conflict_list()

    summary = {
        "total": len(records),
        "ready_to_import": sum(path_counts[p] for p in COMMIT_PATHS),
        "conflict_count": len(conflicts),
        "to_create": path_counts[PATH_CREATE],
        "to_update": path_counts[PATH_UPDATE],
        "follow_up": path_counts[PATH_FOLLOW_UP],
        "to_skip": path_counts[PATH_SKIP],
        "invalid": path_counts[PATH_INVALID],
        "by_profile_type": dict(by_profile_type),
        "by_division": dict(by_division),
        "classification": dict(classification.counts),
    }

    return CommitPlan(
        rows=rows,
        conflicts=conflicts,
        teams_to_create=plan_teams(db, records, paths),
        detected_changes=detected_changes,
        summary=summary,
    )
