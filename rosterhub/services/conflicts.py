"""
Conflict classification: compare mapped rows against what is already stored.

Read-only. Every row gets at most one ConflictRecord, decided in this order:

1. duplicate_in_batch - the email appeared on an earlier row of the same file
2. already_active     - a verified profile owns the email
3. already_in_whitelist - a pending profile or a whitelist entry with no active link
4. parent_email_match - advisory: the email is another row's guardian email
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable

from sqlalchemy import or_
from sqlalchemy.orm import Session

from rosterhub.core.errors import InvalidOverride
from rosterhub.models.authorized_user import AuthorizedUser
from rosterhub.models.profile import Profile
from rosterhub.services.records import WHITELIST_FIELDS, SourceRecord

DUPLICATE_IN_BATCH = "duplicate_in_batch"
ALREADY_ACTIVE = "already_active"
ALREADY_IN_WHITELIST = "already_in_whitelist"
PARENT_EMAIL_MATCH = "parent_email_match"

ACTION_SKIP = "skip"
ACTION_UPDATE = "update"
ACTION_IMPORT = "import"
ACTIONS = (ACTION_SKIP, ACTION_UPDATE, ACTION_IMPORT)

DEFAULT_ACTIONS = {
    DUPLICATE_IN_BATCH: ACTION_SKIP,
    ALREADY_ACTIVE: ACTION_SKIP,
    ALREADY_IN_WHITELIST: ACTION_UPDATE,
    PARENT_EMAIL_MATCH: ACTION_IMPORT,
}


@dataclass
class ConflictRecord:
    row_index: int
    conflict_type: str
    email: str
    override: str | None = None
    sibling_rows: list[int] = field(default_factory=list)

    @property
    def default_action(self) -> str:
        return DEFAULT_ACTIONS[self.conflict_type]

    @property
    def action(self) -> str:
        if self.conflict_type == ALREADY_ACTIVE:
            return ACTION_SKIP
        return self.override or self.default_action

    def to_dict(self) -> dict[str, Any]:
        return {
            "row_index": self.row_index,
            "conflict_type": self.conflict_type,
            "email": self.email,
            "default_action": self.default_action,
            "action": self.action,
            "override": self.override,
            "sibling_rows": list(self.sibling_rows),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConflictRecord":
        return cls(
            row_index=int(data["row_index"]),
            conflict_type=data["conflict_type"],
            email=data["email"],
            override=data.get("override"),
            sibling_rows=[int(i) for i in data.get("sibling_rows") or []],
        )


@dataclass
class ProvisionalSnapshot:
    """Stored values of the provisional record a row resolves to."""

    email: str
    profile_id: uuid.UUID | None
    whitelist_id: uuid.UUID | None
    values: dict[str, Any]


@dataclass
class ClassificationResult:
    conflicts: dict[int, ConflictRecord] = field(default_factory=dict)
    provisional: dict[str, ProvisionalSnapshot] = field(default_factory=dict)
    counts: dict[str, int] = field(default_factory=dict)

    def for_row(self, row_index: int) -> ConflictRecord | None:
        return self.conflicts.get(row_index)

    def apply_overrides(self, overrides: dict[Any, str] | None, row_count: int) -> None:
        """
        Operator decisions, keyed by row index (JSON gives us string keys).

        Overrides on rows without a conflict are ignored; already_active rows
        accept the value but keep committing as skip.
        """
        for key, action in (overrides or {}).items():
            try:
                row_index = int(key)
            except (TypeError, ValueError):
                raise InvalidOverride(f"Invalid row index in overrides: {key!r}")
            if row_index < 0 or row_index >= row_count:
                raise InvalidOverride(f"Row index {row_index} is out of range")
            if action not in ACTIONS:
                raise InvalidOverride(f"Invalid action {action!r}; expected one of {', '.join(ACTIONS)}")
            conflict = self.conflicts.get(row_index)
            if conflict is not None:
                conflict.override = action

    def conflict_list(self) -> list[ConflictRecord]:
        return [self.conflicts[i] for i in sorted(self.conflicts)]


def _chunks(items: list[str], size: int) -> Iterable[list[str]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def fetch_profiles_by_email(db: Session, emails: list[str], page_size: int) -> dict[str, Profile]:
    """email or secondary (tg) email -> profile. Primary email wins over a secondary match."""
    found: dict[str, Profile] = {}
    secondary: dict[str, Profile] = {}
    for page in _chunks(emails, page_size):
        rows = (
            db.query(Profile)
            .filter(or_(Profile.email.in_(page), Profile.tg_email.in_(page)))
            .all()
        )
        for profile in rows:
            found[profile.email.lower()] = profile
            if profile.tg_email:
                secondary.setdefault(profile.tg_email.lower(), profile)
    for email, profile in secondary.items():
        found.setdefault(email, profile)
    wanted = set(emails)
    return {e: p for e, p in found.items() if e in wanted}


def fetch_whitelist_by_email(db: Session, emails: list[str], page_size: int) -> dict[str, AuthorizedUser]:
    found: dict[str, AuthorizedUser] = {}
    for page in _chunks(emails, page_size):
        for entry in db.query(AuthorizedUser).filter(AuthorizedUser.email.in_(page)).all():
            found[entry.email.lower()] = entry
    return found


def _snapshot(email: str, profile: Profile | None, entry: AuthorizedUser | None) -> ProvisionalSnapshot:
    values: dict[str, Any] = {}
    if entry is not None:
        values.update({f: getattr(entry, f) for f in WHITELIST_FIELDS})
    if profile is not None:
        for f in WHITELIST_FIELDS:
            if hasattr(Profile, f) and values.get(f) is None:
                values[f] = getattr(profile, f)
    return ProvisionalSnapshot(
        email=email,
        profile_id=profile.id if profile is not None else None,
        whitelist_id=entry.id if entry is not None else None,
        values=values,
    )


def classify_records(db: Session, records: list[SourceRecord], page_size: int = 500) -> ClassificationResult:
    result = ClassificationResult()

    # 1. in-file duplicates
    rows_by_email: dict[str, list[int]] = {}
    for record in records:
        if record.has_valid_email:
            rows_by_email.setdefault(record.email, []).append(record.row_index)

    for email, indices in rows_by_email.items():
        for index in indices[1:]:
            result.conflicts[index] = ConflictRecord(
                row_index=index,
                conflict_type=DUPLICATE_IN_BATCH,
                email=email,
                sibling_rows=list(indices),
            )

    # 2 + 3. stored state for every distinct email
    emails = list(rows_by_email)
    profiles = fetch_profiles_by_email(db, emails, page_size)
    whitelist = fetch_whitelist_by_email(db, emails, page_size)

    linked_ids = {e.matched_profile_id for e in whitelist.values() if e.matched_profile_id}
    linked_active: set[uuid.UUID] = set()
    if linked_ids:
        linked_active = {
            pid
            for (pid,) in db.query(Profile.id)
            .filter(Profile.id.in_(linked_ids), Profile.verification_status == "verified")
            .all()
        }

    # 4. per first-occurrence row
    for email, indices in rows_by_email.items():
        first = indices[0]
        profile = profiles.get(email)
        entry = whitelist.get(email)

        if (profile is not None and profile.is_active) or (
            entry is not None and entry.matched_profile_id in linked_active
        ):
            result.conflicts[first] = ConflictRecord(row_index=first, conflict_type=ALREADY_ACTIVE, email=email)
        elif profile is not None or entry is not None:
            result.conflicts[first] = ConflictRecord(
                row_index=first, conflict_type=ALREADY_IN_WHITELIST, email=email
            )

        if profile is not None or entry is not None:
            result.provisional[email] = _snapshot(email, profile, entry)

    # 5. guardian cross-reference, only where nothing else applies
    parent_rows: dict[str, list[int]] = {}
    for record in records:
        if record.parent_email:
            parent_rows.setdefault(record.parent_email, []).append(record.row_index)

    for record in records:
        if not record.has_valid_email or record.row_index in result.conflicts:
            continue
        others = [i for i in parent_rows.get(record.email, []) if i != record.row_index]
        if others:
            result.conflicts[record.row_index] = ConflictRecord(
                row_index=record.row_index,
                conflict_type=PARENT_EMAIL_MATCH,
                email=record.email,
                sibling_rows=others,
            )

    by_type = [c.conflict_type for c in result.conflicts.values()]
    invalid = sum(1 for r in records if not r.has_valid_email)
    result.counts = {
        "total": len(records),
        "new": len(records) - invalid - sum(1 for t in by_type if t != PARENT_EMAIL_MATCH),
        "in_whitelist": by_type.count(ALREADY_IN_WHITELIST),
        "active": by_type.count(ALREADY_ACTIVE),
        "duplicates": by_type.count(DUPLICATE_IN_BATCH),
        "parent_email": by_type.count(PARENT_EMAIL_MATCH),
        "invalid": invalid,
    }
    return result
