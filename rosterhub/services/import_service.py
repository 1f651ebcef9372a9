"""
Import orchestration for the HTTP layer: preview, submit and resubmit.

Preview and submit run the same synchronous pipeline
(ingest -> map -> classify -> plan); submit additionally stages the files and
creates a pending ImportJob. Nothing here touches profiles or teams.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from rosterhub.core.audit import log_event
from rosterhub.core.config import Settings
from rosterhub.core.errors import ImportValidationError, MissingColumns
from rosterhub.models.import_job import JOB_FAILED, JOB_PENDING, ImportJob
from rosterhub.models.profile import Profile
from rosterhub.models.team import Team
from rosterhub.models.user import User
from rosterhub.services.conflicts import classify_records
from rosterhub.services.field_mapping import apply_overrides, auto_map_headers, has_email_column
from rosterhub.services.ingest import ImportKind, ParsedCSV, parse_csv
from rosterhub.services.planner import CommitPlan, build_plan
from rosterhub.services.records import build_source_records, build_team_records
from rosterhub.services.storage import LocalFileStorage

logger = logging.getLogger(__name__)


@dataclass
class UserPreview:
    parsed: ParsedCSV
    mapping: dict[str, str]
    plan: CommitPlan


@dataclass
class TeamPreview:
    parsed: ParsedCSV
    summary: dict[str, Any] = field(default_factory=dict)


def preview_users(
    db: Session,
    content: bytes,
    settings: Settings,
    column_mapping: dict[str, str] | None = None,
    conflict_overrides: dict[Any, str] | None = None,
) -> UserPreview:
    parsed = parse_csv(content, ImportKind.USERS, max_bytes=settings.MAX_UPLOAD_BYTES, max_rows=settings.MAX_USER_ROWS)
    mapping = apply_overrides(auto_map_headers(parsed.headers), column_mapping)
    if not has_email_column(mapping):
        raise MissingColumns(["Email"])

    records = build_source_records(parsed.rows, mapping)
    classification = classify_records(db, records, page_size=settings.LOOKUP_PAGE_SIZE)
    plan = build_plan(db, records, classification, conflict_overrides)
    return UserPreview(parsed=parsed, mapping=mapping, plan=plan)


def preview_teams(db: Session, content: bytes, settings: Settings) -> TeamPreview:
    parsed = parse_csv(content, ImportKind.TEAMS, max_bytes=settings.MAX_UPLOAD_BYTES, max_rows=settings.MAX_TEAM_ROWS)
    records = build_team_records(parsed.rows)

    team_ids = sorted({r.tg_team_id for r in records})
    existing = {tid for (tid,) in db.query(Team.tg_team_id).filter(Team.tg_team_id.in_(team_ids)).all()}

    member_emails = sorted({e for r in records for e in r.student_emails + r.mentor_emails})
    verified: set[str] = set()
    if member_emails:
        verified = {
            email.lower()
            for (email,) in db.query(Profile.email)
            .filter(Profile.verification_status == "verified", Profile.email.in_(member_emails))
            .all()
        }

    return TeamPreview(
        parsed=parsed,
        summary={
            "total": len(records),
            "distinct_teams": len(team_ids),
            "duplicates": len(records) - len(team_ids),
            "to_create": len(set(team_ids) - existing),
            "existing": len(existing),
            "member_emails": len(member_emails),
            "unlinked_member_emails": len(set(member_emails) - verified),
        },
    )


def _import_type(has_users: bool, has_teams: bool) -> str:
    if has_users and has_teams:
        return "users+teams"
    return "users" if has_users else "teams"


def submit_import(
    db: Session,
    *,
    user: User,
    storage: LocalFileStorage,
    settings: Settings,
    users_file: tuple[str, bytes] | None = None,
    teams_file: tuple[str, bytes] | None = None,
    column_mapping: dict[str, str] | None = None,
    conflict_overrides: dict[Any, str] | None = None,
) -> ImportJob:
    """Validate everything first; a job only exists for files that passed."""
    if users_file is None and teams_file is None:
        raise ImportValidationError("Upload a users file, a teams file, or both")

    user_preview = None
    team_preview = None
    if users_file is not None:
        user_preview = preview_users(db, users_file[1], settings, column_mapping, conflict_overrides)
    if teams_file is not None:
        team_preview = preview_teams(db, teams_file[1], settings)

    warnings: list[str] = []
    total = 0
    if user_preview is not None:
        warnings += user_preview.parsed.warnings
        total += len(user_preview.parsed.rows)
    if team_preview is not None:
        warnings += team_preview.parsed.warnings
        total += len(team_preview.parsed.rows)

    job = ImportJob(
        created_by_user_id=user.id,
        admin_email=user.email,
        file_name=", ".join(f[0] for f in (users_file, teams_file) if f is not None),
        import_type=_import_type(users_file is not None, teams_file is not None),
        status=JOB_PENDING,
        column_mapping=user_preview.mapping if user_preview else None,
        plan=(user_preview.plan if user_preview else CommitPlan()).to_dict(),
        total_records=total,
        warnings=warnings,
        storage_paths={},
        errors=[],
    )
    db.add(job)
    db.flush()

    paths: dict[str, str] = {}
    try:
        if users_file is not None:
            paths["users_csv"] = storage.stage(str(job.id), "users", users_file[0], users_file[1])
        if teams_file is not None:
            paths["teams_csv"] = storage.stage(str(job.id), "teams", teams_file[0], teams_file[1])
    except OSError:
        db.rollback()
        storage.remove(list(paths.values()))
        raise
    job.storage_paths = paths

    log_event(
        db=db,
        actor=user,
        action="import.submitted",
        entity_type="import_job",
        entity_id=job.id,
        metadata={"import_type": job.import_type, "total_records": total},
    )
    db.commit()
    db.refresh(job)
    logger.info("Import %s submitted: %s, %d records", job.id, job.import_type, total)
    return job


class ResubmitNotAllowed(Exception):
    pass


def resubmit_import(db: Session, *, user: User, job: ImportJob) -> ImportJob:
    """A failed job's staged files and plan become a fresh pending job; the failed one stays as history."""
    if job.status != JOB_FAILED:
        raise ResubmitNotAllowed(f"Only failed imports can be resubmitted (status is {job.status})")
    if not job.storage_paths:
        raise ResubmitNotAllowed("The failed import has no staged files")

    new_job = ImportJob(
        created_by_user_id=user.id,
        admin_email=user.email,
        resubmitted_from_id=job.id,
        file_name=job.file_name,
        import_type=job.import_type,
        status=JOB_PENDING,
        storage_paths=dict(job.storage_paths),
        column_mapping=job.column_mapping,
        plan=job.plan,
        total_records=job.total_records,
        warnings=list(job.warnings or []),
        errors=[],
    )
    db.add(new_job)
    db.flush()
    log_event(
        db=db,
        actor=user,
        action="import.resubmitted",
        entity_type="import_job",
        entity_id=new_job.id,
        metadata={"resubmitted_from": str(job.id)},
    )
    db.commit()
    db.refresh(new_job)
    return new_job
