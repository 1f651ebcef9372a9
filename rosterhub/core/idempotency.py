"""
Compare-and-set helpers for ImportJob state.

Every transition is a single conditional UPDATE whose WHERE clause encodes the
expected current state; ``rowcount`` tells the caller whether it won. This is
what keeps two triggers (or a trigger and a resumed run) from processing the
same job twice.
"""

import uuid
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import update
from sqlalchemy.orm import Session

from rosterhub.models.import_job import (
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_PENDING,
    JOB_PROCESSING,
    ImportJob,
)


def _conditional_update(db: Session, job_id: uuid.UUID, conditions: list, values: dict[str, Any]) -> bool:
    stmt = (
        update(ImportJob)
        .where(ImportJob.id == job_id, *conditions)
        .values(**values, updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    db.commit()
    return result.rowcount == 1


def _read_back(db: Session, job_id: uuid.UUID) -> ImportJob | None:
    return db.get(ImportJob, job_id, populate_existing=True)


def claim_import_job(db: Session, job_id: uuid.UUID) -> ImportJob | None:
    """pending -> processing. None when the job is absent or someone else already claimed it."""
    won = _conditional_update(
        db,
        job_id,
        [ImportJob.status == JOB_PENDING],
        {"status": JOB_PROCESSING, "started_at": datetime.utcnow()},
    )
    return _read_back(db, job_id) if won else None


def claim_stalled_job(db: Session, job_id: uuid.UUID, stale_after: timedelta) -> ImportJob | None:
    """
    Re-claim a job left in processing by a worker that died.

    The guard includes the observed updated_at, so only one resumer wins even
    if several notice the same stalled job.
    """
    job = _read_back(db, job_id)
    if job is None or job.status != JOB_PROCESSING:
        return None
    if job.updated_at is None or job.updated_at.replace(tzinfo=None) > datetime.utcnow() - stale_after:
        return None

    won = _conditional_update(
        db,
        job_id,
        [ImportJob.status == JOB_PROCESSING, ImportJob.updated_at == job.updated_at],
        {},
    )
    return _read_back(db, job_id) if won else None


def write_checkpoint(db: Session, job_id: uuid.UUID, previous_processed: int, values: dict[str, Any]) -> bool:
    """Persist counters after a batch. False means another worker moved the job on; stop."""
    return _conditional_update(
        db,
        job_id,
        [ImportJob.status == JOB_PROCESSING, ImportJob.records_processed == previous_processed],
        values,
    )


def finalize_job(db: Session, job_id: uuid.UUID, values: dict[str, Any]) -> bool:
    """processing -> completed. Only one finalizer wins."""
    return _conditional_update(
        db,
        job_id,
        [ImportJob.status == JOB_PROCESSING],
        {**values, "status": JOB_COMPLETED, "completed_at": datetime.utcnow()},
    )


def mark_job_failed(db: Session, job_id: uuid.UUID, values: dict[str, Any]) -> bool:
    return _conditional_update(
        db,
        job_id,
        [ImportJob.status == JOB_PROCESSING],
        {**values, "status": JOB_FAILED, "completed_at": datetime.utcnow()},
    )
