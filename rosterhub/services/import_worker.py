"""
Background import processor.

A job is claimed (pending -> processing) by whoever triggers it; ``run`` then
works through the staged files in batches. Work units are the user rows in
file order followed by the team rows, so ``records_processed`` doubles as the
resume offset. Every unit ends in exactly one outcome:

    records_processed == new + updated + activated + skipped + failed

Row-level problems are recorded on the job and never stop the batch. Only
job-level problems (staged file gone, identity provider unreachable, anything
unexpected) fail the job, and they leave the staged files in place.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from rosterhub.core.config import Settings, settings as default_settings
from rosterhub.core.errors import ImportValidationError, JobFatalError, RowError, SourceUnavailable
from rosterhub.core.idempotency import finalize_job, mark_job_failed, write_checkpoint
from rosterhub.models.authorized_user import AuthorizedUser
from rosterhub.models.import_job import JOB_PROCESSING, ImportJob
from rosterhub.models.profile import Profile, ProfileRole
from rosterhub.models.team import Team, TeamMember
from rosterhub.services.conflicts import DUPLICATE_IN_BATCH
from rosterhub.services.field_mapping import auto_map_headers
from rosterhub.services.identity import (
    IdentityProvider,
    create_identity_with_retry,
    map_role,
    mask_email,
    membership_type_for_role,
    redact_text,
)
from rosterhub.services.ingest import ImportKind, parse_csv
from rosterhub.services.notifier import MAX_LISTED_ERRORS, Notifier
from rosterhub.services.planner import (
    PATH_CREATE,
    PATH_FOLLOW_UP,
    PATH_INVALID,
    PATH_SKIP,
    PATH_UPDATE,
    CommitPlan,
)
from rosterhub.services.records import (
    PROFILE_FIELDS,
    WHITELIST_FIELDS,
    SourceRecord,
    TeamSourceRecord,
    build_source_records,
    build_team_records,
)
from rosterhub.services.storage import LocalFileStorage

logger = logging.getLogger(__name__)

OUTCOME_NEW = "new"
OUTCOME_UPDATED = "updated"
OUTCOME_ACTIVATED = "activated"
OUTCOME_SKIPPED = "skipped"
OUTCOME_FAILED = "failed"


@dataclass
class JobCounters:
    processed: int = 0
    new: int = 0
    updated: int = 0
    activated: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    # per-phase detail, kept in result_summary
    duplicates: int = 0
    teams_created: int = 0
    teams_created_from_users: int = 0
    teams_patched: int = 0
    members_linked: int = 0

    @classmethod
    def from_job(cls, job: ImportJob) -> "JobCounters":
        detail = job.result_summary or {}
        return cls(
            processed=job.records_processed,
            new=job.records_new,
            updated=job.records_updated,
            activated=job.records_activated,
            skipped=job.records_skipped,
            failed=job.records_failed,
            errors=list(job.errors or []),
            duplicates=detail.get("duplicates", 0),
            teams_created=detail.get("teams_created", 0),
            teams_created_from_users=detail.get("teams_created_from_users", 0),
            teams_patched=detail.get("teams_patched", 0),
            members_linked=detail.get("members_linked", 0),
        )

    def record(self, outcome: str) -> None:
        setattr(self, outcome, getattr(self, outcome) + 1)

    def add_error(self, row: int | None, context: str, reason: str, **extra: Any) -> None:
        self.errors.append({"row": row, "context": context, "reason": redact_text(reason), **extra})

    def summary(self) -> dict[str, Any]:
        return {
            "records_processed": self.processed,
            "records_new": self.new,
            "records_updated": self.updated,
            "records_activated": self.activated,
            "records_skipped": self.skipped,
            "records_failed": self.failed,
            "duplicates": self.duplicates,
            "teams_created": self.teams_created,
            "teams_created_from_users": self.teams_created_from_users,
            "teams_patched": self.teams_patched,
            "members_linked": self.members_linked,
            "error_count": len(self.errors),
        }

    def to_values(self) -> dict[str, Any]:
        return {
            "records_processed": self.processed,
            "records_new": self.new,
            "records_updated": self.updated,
            "records_activated": self.activated,
            "records_skipped": self.skipped,
            "records_failed": self.failed,
            "errors": list(self.errors),
            "result_summary": self.summary(),
        }


@dataclass
class JobSources:
    users: list[SourceRecord] = field(default_factory=list)
    teams: list[TeamSourceRecord] = field(default_factory=list)
    plan: CommitPlan = field(default_factory=CommitPlan)

    @property
    def total(self) -> int:
        return len(self.users) + len(self.teams)


def load_job_sources(job: ImportJob, storage: LocalFileStorage, settings: Settings) -> JobSources:
    """Read the staged files back and rebuild the records the plan refers to."""
    paths = job.storage_paths or {}
    sources = JobSources(plan=CommitPlan.from_dict(job.plan))
    try:
        if paths.get("users_csv"):
            parsed = parse_csv(
                storage.read(paths["users_csv"]),
                ImportKind.USERS,
                max_bytes=settings.MAX_UPLOAD_BYTES,
                max_rows=settings.MAX_USER_ROWS,
            )
            mapping = job.column_mapping or auto_map_headers(parsed.headers)
            sources.users = build_source_records(parsed.rows, mapping)
        if paths.get("teams_csv"):
            parsed = parse_csv(
                storage.read(paths["teams_csv"]),
                ImportKind.TEAMS,
                max_bytes=settings.MAX_UPLOAD_BYTES,
                max_rows=settings.MAX_TEAM_ROWS,
            )
            sources.teams = build_team_records(parsed.rows)
    except ImportValidationError as e:
        raise SourceUnavailable(f"Staged file is no longer valid ({e.code})") from e
    return sources


# ---------------------------------------------------------------------------
# Row-level persistence helpers. None of these commit.
# ---------------------------------------------------------------------------

def find_profile(db: Session, email: str) -> Profile | None:
    rows = db.query(Profile).filter(or_(Profile.email == email, Profile.tg_email == email)).all()
    for profile in rows:
        if profile.email == email:
            return profile
    return rows[0] if rows else None


def apply_profile_fields(profile: Profile, record: SourceRecord) -> None:
    for name in PROFILE_FIELDS:
        value = getattr(record, name)
        if value is not None:
            setattr(profile, name, value)


def upsert_whitelist(db: Session, record: SourceRecord, *, replace: bool, profile_id: uuid.UUID | None = None):
    """replace=True overwrites every field (empty cells included); otherwise only non-empty CSV values merge in."""
    entry = db.query(AuthorizedUser).filter(AuthorizedUser.email == record.email).one_or_none()
    if entry is None:
        entry = AuthorizedUser(email=record.email)
        db.add(entry)
        replace = True
    for name in WHITELIST_FIELDS:
        value = getattr(record, name)
        if replace or value is not None:
            setattr(entry, name, value)
    if profile_id is not None:
        entry.matched_profile_id = profile_id
    return entry


def upsert_role(db: Session, profile_id: uuid.UUID, role: str) -> None:
    existing = db.query(ProfileRole).filter(ProfileRole.profile_id == profile_id).one_or_none()
    if existing is None:
        db.add(ProfileRole(profile_id=profile_id, role=role))
    else:
        existing.role = role


def ensure_team(db: Session, name: str, division: str | None) -> tuple[Team, bool]:
    """Teams referenced by user rows are keyed by name, case-insensitively."""
    name = name.strip()
    team = db.query(Team).filter(func.lower(Team.name) == name.lower()).first()
    if team is not None:
        return team, False
    team = Team(name=name, category=division.lower() if division else None)
    db.add(team)
    db.flush()
    return team, True


def link_member(db: Session, team_id: uuid.UUID, profile_id: uuid.UUID, member_type: str) -> bool:
    exists = (
        db.query(TeamMember.id)
        .filter(TeamMember.team_id == team_id, TeamMember.profile_id == profile_id)
        .first()
    )
    if exists is not None:
        return False
    db.add(TeamMember(team_id=team_id, profile_id=profile_id, member_type=member_type))
    return True


# ---------------------------------------------------------------------------
# Processor
# ---------------------------------------------------------------------------

class ImportProcessor:
    def __init__(
        self,
        session_factory: sessionmaker,
        provider: IdentityProvider,
        notifier: Notifier,
        storage: LocalFileStorage,
        *,
        settings: Settings = default_settings,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session_factory = session_factory
        self.provider = provider
        self.notifier = notifier
        self.storage = storage
        self.settings = settings
        self.sleep = sleep
        self.clock = clock

    def run(self, job_id: uuid.UUID) -> None:
        """Process a claimed job to completion (or failure). Safe to call on a resumed job."""
        db: Session = self.session_factory()
        counters: JobCounters | None = None
        try:
            job = db.get(ImportJob, job_id, populate_existing=True)
            if job is None or job.status != JOB_PROCESSING:
                logger.warning("Import %s is not in processing state; nothing to do", job_id)
                return

            counters = JobCounters.from_job(job)
            sources = load_job_sources(job, self.storage, self.settings)
            logger.info(
                "Import %s: %d user rows, %d team rows, resuming at %d",
                job_id, len(sources.users), len(sources.teams), counters.processed,
            )
            if not self._process(db, job, sources, counters):
                return
            self._finalize(db, job, counters)
        except JobFatalError as e:
            logger.exception("Import %s failed", job_id)
            self._fail(db, job_id, counters, str(e))
        except Exception as e:
            logger.exception("Import %s failed with an unexpected error", job_id)
            self._fail(db, job_id, counters, f"Unexpected error: {type(e).__name__} (details omitted)")
        finally:
            db.close()

    # -- batching -----------------------------------------------------------

    def _process(self, db: Session, job: ImportJob, sources: JobSources, counters: JobCounters) -> bool:
        """Returns False if a checkpoint was lost to another worker."""
        total = sources.total
        batch_size = max(1, self.settings.IMPORT_BATCH_SIZE)
        delay_ms = self.settings.IMPORT_DEFAULT_DELAY_MS
        paths = sources.plan.paths()
        n_users = len(sources.users)
        first_team_rows = _first_team_rows(sources.teams)
        duplicate_rows = {r.row_index for r in sources.plan.rows if r.conflict_type == DUPLICATE_IN_BATCH}

        if counters.processed < n_users:
            self._create_planned_teams(db, sources.plan, counters)

        start = counters.processed
        for batch_start in range(start, total, batch_size):
            batch_end = min(batch_start + batch_size, total)
            started = self.clock()
            previous = counters.processed

            for index in range(batch_start, min(batch_end, n_users)):
                record = sources.users[index]
                if record.row_index in duplicate_rows:
                    counters.duplicates += 1
                self._process_user_row(db, record, paths.get(record.row_index), counters)

            team_slice = sources.teams[max(batch_start, n_users) - n_users:max(batch_end - n_users, 0)]
            if team_slice:
                self._process_team_batch(db, team_slice, first_team_rows, counters)

            counters.processed = batch_end
            if not write_checkpoint(db, job.id, previous, {**counters.to_values(), "total_records": total}):
                logger.warning("Import %s: checkpoint at %d lost to another worker, stopping", job.id, previous)
                return False

            elapsed_ms = (self.clock() - started) * 1000
            if elapsed_ms / (batch_end - batch_start) > self.settings.IMPORT_SLOW_ROW_MS:
                delay_ms = min(delay_ms * 2, self.settings.IMPORT_MAX_DELAY_MS)
            else:
                delay_ms = self.settings.IMPORT_DEFAULT_DELAY_MS

            logger.info("Import %s: %d/%d processed", job.id, batch_end, total)
            if batch_end < total and delay_ms > 0:
                self.sleep(delay_ms / 1000)
        return True

    def _create_planned_teams(self, db: Session, plan: CommitPlan, counters: JobCounters) -> None:
        for planned in plan.teams_to_create:
            try:
                _, created = ensure_team(db, planned["name"], planned.get("division"))
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                logger.warning("Could not create planned team", exc_info=True)
                counters.add_error(None, "team", "Team creation failed (details omitted)")
                continue
            if created:
                counters.teams_created_from_users += 1

    # -- user rows ----------------------------------------------------------

    def _process_user_row(self, db: Session, record: SourceRecord, path: str | None, counters: JobCounters) -> None:
        if path is None:
            path = PATH_CREATE if record.has_valid_email else PATH_INVALID

        if path == PATH_SKIP:
            counters.record(OUTCOME_SKIPPED)
            return
        if path == PATH_INVALID:
            counters.record(OUTCOME_FAILED)
            counters.add_error(record.row_number, "user", "Missing or invalid email (details omitted)")
            return

        try:
            outcome = self._commit_user(db, record, path, counters)
        except RowError as e:
            db.rollback()
            counters.record(OUTCOME_FAILED)
            counters.add_error(record.row_number, "user", e.reason)
            return
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning("Row %d (%s) failed: %s", record.row_number, mask_email(record.email), type(e).__name__)
            counters.record(OUTCOME_FAILED)
            counters.add_error(record.row_number, "user", f"Database error ({type(e).__name__}, details omitted)")
            return
        counters.record(outcome)

    def _commit_user(self, db: Session, record: SourceRecord, path: str, counters: JobCounters) -> str:
        email = record.email
        role = map_role(record.profile_type)

        if path == PATH_UPDATE:
            upsert_whitelist(db, record, replace=False)
            db.commit()

        profile = find_profile(db, email)

        if profile is not None and profile.is_active:
            if path != PATH_FOLLOW_UP:
                # became active after the preview; active identities are never touched
                return OUTCOME_SKIPPED
            self._provision(db, profile, record, role, replace_whitelist=False, counters=counters)
            return OUTCOME_UPDATED

        if profile is not None:
            self._provision(db, profile, record, role, replace_whitelist=False, counters=counters)
            return OUTCOME_ACTIVATED

        identity_id, created = create_identity_with_retry(
            self.provider,
            email,
            {"intended_role": role},
            max_retries=self.settings.IMPORT_MAX_RETRIES,
            base_delay=self.settings.IMPORT_DEFAULT_DELAY_MS / 1000,
            sleep=self.sleep,
        )
        if not created:
            logger.info("Row %d: account already existed, continuing with lookup result", record.row_number)
        profile = self._wait_for_profile(db, identity_id)
        self._provision(db, profile, record, role, replace_whitelist=path == PATH_CREATE, counters=counters)
        return OUTCOME_UPDATED if path == PATH_UPDATE else OUTCOME_NEW

    def _wait_for_profile(self, db: Session, identity_id: uuid.UUID) -> Profile:
        for attempt in range(self.settings.PROFILE_POLL_RETRIES):
            profile = db.get(Profile, identity_id, populate_existing=True)
            if profile is not None:
                return profile
            if attempt + 1 < self.settings.PROFILE_POLL_RETRIES:
                self.sleep(self.settings.PROFILE_POLL_DELAY_MS / 1000)
        raise RowError("Profile not created after account creation (details omitted)")

    def _provision(
        self,
        db: Session,
        profile: Profile,
        record: SourceRecord,
        role: str | None,
        *,
        replace_whitelist: bool,
        counters: JobCounters,
    ) -> None:
        apply_profile_fields(profile, record)
        profile.verification_status = "verified"
        if role:
            upsert_role(db, profile.id, role)
        upsert_whitelist(db, record, replace=replace_whitelist, profile_id=profile.id)

        linked = False
        team_created = False
        if record.team_name:
            team, team_created = ensure_team(db, record.team_name, record.team_division)
            linked = link_member(db, team.id, profile.id, membership_type_for_role(role))
        db.commit()

        if team_created:
            counters.teams_created_from_users += 1
        if linked:
            counters.members_linked += 1

    # -- team rows ----------------------------------------------------------

    def _process_team_batch(
        self,
        db: Session,
        batch: list[TeamSourceRecord],
        first_rows: dict[str, int],
        counters: JobCounters,
    ) -> None:
        # teams first, so every membership below has its team
        resolved: list[tuple[TeamSourceRecord, uuid.UUID]] = []
        for record in batch:
            if first_rows.get(record.tg_team_id) != record.row_index:
                counters.duplicates += 1
                counters.record(OUTCOME_SKIPPED)
                continue
            try:
                team, outcome = self._upsert_team(db, record)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                counters.record(OUTCOME_FAILED)
                counters.add_error(
                    record.row_number, "team", f"Team write failed ({type(e).__name__}, details omitted)",
                    team_id=record.tg_team_id,
                )
                continue
            counters.record(outcome)
            if outcome == OUTCOME_NEW:
                counters.teams_created += 1
            elif outcome == OUTCOME_UPDATED:
                counters.teams_patched += 1
            resolved.append((record, team.id))

        emails = {e for record, _ in resolved for e in record.student_emails + record.mentor_emails}
        profiles: dict[str, uuid.UUID] = {}
        if emails:
            rows = (
                db.query(Profile.id, Profile.email)
                .filter(Profile.verification_status == "verified", Profile.email.in_(sorted(emails)))
                .all()
            )
            profiles = {email.lower(): pid for pid, email in rows}

        for record, team_id in resolved:
            for kind, member_type, member_emails in (
                ("student", "participant", record.student_emails),
                ("mentor", "mentor", record.mentor_emails),
            ):
                for email in member_emails:
                    profile_id = profiles.get(email)
                    if profile_id is None:
                        counters.add_error(
                            record.row_number, "team", f"Unlinked email ({kind}, details omitted)",
                            team_id=record.tg_team_id,
                        )
                        continue
                    self._link_team_member(db, record, team_id, profile_id, member_type, kind, counters)

    def _upsert_team(self, db: Session, record: TeamSourceRecord) -> tuple[Team, str]:
        team = db.query(Team).filter(Team.tg_team_id == record.tg_team_id).one_or_none()
        if team is None:
            team = Team(
                tg_team_id=record.tg_team_id,
                name=record.name or f"Team {record.tg_team_id}",
                category=record.category,
                city=record.city,
                state=record.state,
            )
            db.add(team)
            db.flush()
            outcome = OUTCOME_NEW
        else:
            changed = False
            for attr, value in (("name", record.name), ("category", record.category),
                                ("city", record.city), ("state", record.state)):
                if value and value != getattr(team, attr):
                    setattr(team, attr, value)
                    changed = True
            outcome = OUTCOME_UPDATED if changed else OUTCOME_SKIPPED
        return team, outcome

    def _link_team_member(
        self,
        db: Session,
        record: TeamSourceRecord,
        team_id: uuid.UUID,
        profile_id: uuid.UUID,
        member_type: str,
        kind: str,
        counters: JobCounters,
    ) -> None:
        try:
            if link_member(db, team_id, profile_id, member_type):
                db.commit()
                counters.members_linked += 1
        except IntegrityError:
            # linked concurrently; the membership exists, which is all we wanted
            db.rollback()
        except SQLAlchemyError:
            db.rollback()
            counters.add_error(
                record.row_number, "team", f"Link {kind} failed (details omitted)", team_id=record.tg_team_id
            )

    # -- terminal transitions -----------------------------------------------

    def _finalize(self, db: Session, job: ImportJob, counters: JobCounters) -> None:
        if not finalize_job(db, job.id, counters.to_values()):
            logger.info("Import %s was already finalized elsewhere", job.id)
            return
        logger.info(
            "Import %s completed: processed=%d new=%d updated=%d activated=%d skipped=%d failed=%d errors=%d",
            job.id, counters.processed, counters.new, counters.updated, counters.activated,
            counters.skipped, counters.failed, len(counters.errors),
        )

        try:
            self.storage.remove([p for p in (job.storage_paths or {}).values() if p])
        except Exception:
            logger.warning("Import %s: staged file cleanup failed", job.id, exc_info=True)

        if job.admin_email:
            try:
                self.notifier.send_summary(job.admin_email, counters.summary(), counters.errors[:MAX_LISTED_ERRORS])
            except Exception:
                logger.warning("Import %s: completion notification failed", job.id, exc_info=True)

    def _fail(self, db: Session, job_id: uuid.UUID, counters: JobCounters | None, reason: str) -> None:
        db.rollback()
        values: dict[str, Any] = {}
        errors: list[dict[str, Any]] = []
        if counters is not None:
            values = counters.to_values()
            errors = list(counters.errors)
        else:
            job = db.get(ImportJob, job_id, populate_existing=True)
            errors = list(job.errors or []) if job is not None else []
        errors.append({"row": None, "context": "job", "reason": redact_text(reason)})
        values["errors"] = errors
        try:
            if not mark_job_failed(db, job_id, values):
                logger.warning("Import %s: could not mark failed (no longer processing)", job_id)
        except SQLAlchemyError:
            logger.exception("Import %s: could not persist failure", job_id)


def _first_team_rows(teams: list[TeamSourceRecord]) -> dict[str, int]:
    first: dict[str, int] = {}
    for record in teams:
        first.setdefault(record.tg_team_id, record.row_index)
    return first


def stale_after(settings: Settings = default_settings) -> timedelta:
    return timedelta(minutes=settings.STALE_JOB_MINUTES)
