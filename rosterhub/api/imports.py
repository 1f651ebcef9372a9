"""
Roster import endpoints.

Flow: preview (optional, repeatable) -> submit (creates a pending job) ->
process (claims the job and hands it to a background task) -> poll status.
"""

import json
import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, Query, UploadFile, status
from sqlalchemy.orm import Session

from rosterhub.core.audit import log_event
from rosterhub.core.config import settings
from rosterhub.core.errors import ImportValidationError, InvalidMapping, InvalidOverride
from rosterhub.core.idempotency import claim_import_job
from rosterhub.core.rbac import require_admin
from rosterhub.db.session import get_db, get_session_factory
from rosterhub.models.import_job import ImportJob
from rosterhub.models.user import User
from rosterhub.schemas.imports import (
    ConflictOut,
    ImportErrorOut,
    ImportErrorsOut,
    ImportJobOut,
    ImportPreviewOut,
    ProcessImportRequest,
)
from rosterhub.schemas.pagination import PaginatedResponse, PaginationMeta
from rosterhub.services.identity_provider import get_identity_provider
from rosterhub.services.import_service import (
    ResubmitNotAllowed,
    preview_teams,
    preview_users,
    resubmit_import,
    submit_import,
)
from rosterhub.services.import_worker import ImportProcessor
from rosterhub.services.ingest import ImportKind
from rosterhub.services.notifier import MAX_LISTED_ERRORS, get_notifier
from rosterhub.services.storage import LocalFileStorage, get_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/imports", tags=["imports"])


def get_import_processor() -> ImportProcessor:
    session_factory = get_session_factory()
    return ImportProcessor(
        session_factory,
        get_identity_provider(settings, session_factory),
        get_notifier(settings),
        get_storage(),
    )


def job_to_out(job: ImportJob) -> ImportJobOut:
    errors = job.errors or []
    return ImportJobOut(
        id=str(job.id),
        file_name=job.file_name,
        import_type=job.import_type,
        status=job.status,
        progress=job.progress,
        total_records=job.total_records,
        records_processed=job.records_processed,
        records_new=job.records_new,
        records_updated=job.records_updated,
        records_activated=job.records_activated,
        records_skipped=job.records_skipped,
        records_failed=job.records_failed,
        error_count=len(errors),
        errors_preview=[ImportErrorOut(**e) for e in errors[:MAX_LISTED_ERRORS]],
        warnings=job.warnings or [],
        result_summary=job.result_summary,
        resubmitted_from_id=str(job.resubmitted_from_id) if job.resubmitted_from_id else None,
        created_by_user_id=str(job.created_by_user_id) if job.created_by_user_id else None,
        started_at=job.started_at,
        completed_at=job.completed_at,
        created_at=job.created_at,
        updated_at=job.updated_at,
    )


def _validation_error(e: ImportValidationError) -> HTTPException:
    return HTTPException(status_code=e.http_status, detail=e.to_detail())


def _json_form(value: str | None, error_cls: type[ImportValidationError], label: str) -> dict[str, Any] | None:
    if not value:
        return None
    try:
        data = json.loads(value)
    except ValueError:
        raise error_cls(f"{label} is not valid JSON")
    if not isinstance(data, dict):
        raise error_cls(f"{label} must be a JSON object")
    return data


def _get_job_or_404(db: Session, import_id: UUID) -> ImportJob:
    job = db.get(ImportJob, import_id)
    if not job:
        raise HTTPException(status_code=404, detail="Import job not found")
    return job


@router.post("/preview", response_model=ImportPreviewOut)
def preview_import(
    file: UploadFile = File(...),
    kind: ImportKind = Form(ImportKind.USERS),
    column_mapping: str | None = Form(None),
    conflict_overrides: str | None = Form(None),
    db: Session = Depends(get_db),
    _: User = Depends(require_admin),
):
    """
    Parse, map and classify a file without writing anything.

    Send the returned mapping and conflict decisions back unchanged (or
    edited) to POST /admin/imports.
    """
    content = file.file.read()
    try:
        if kind == ImportKind.TEAMS:
            result = preview_teams(db, content, settings)
            return ImportPreviewOut(
                kind=kind.value,
                headers=result.parsed.headers,
                row_count=len(result.parsed.rows),
                warnings=result.parsed.warnings,
                summary=result.summary,
            )

        preview = preview_users(
            db,
            content,
            settings,
            _json_form(column_mapping, InvalidMapping, "column_mapping"),
            _json_form(conflict_overrides, InvalidOverride, "conflict_overrides"),
        )
    except ImportValidationError as e:
        raise _validation_error(e)

    plan = preview.plan
    return ImportPreviewOut(
        kind=kind.value,
        headers=preview.parsed.headers,
        row_count=len(preview.parsed.rows),
        mapping=preview.mapping,
        warnings=preview.parsed.warnings,
        invalid_rows=preview.parsed.invalid_rows,
        conflicts=[ConflictOut(**c.to_dict()) for c in plan.conflicts],
        teams_to_create=plan.teams_to_create,
        detected_changes=plan.detected_changes,
        summary=plan.summary,
    )


@router.post("", status_code=status.HTTP_201_CREATED, response_model=ImportJobOut)
def create_import(
    users_file: UploadFile | None = File(None),
    teams_file: UploadFile | None = File(None),
    column_mapping: str | None = Form(None),
    conflict_overrides: str | None = Form(None),
    db: Session = Depends(get_db),
    storage: LocalFileStorage = Depends(get_storage),
    current_user: User = Depends(require_admin),
):
    """Stage the files and create a pending import job. Processing starts with POST /admin/imports/process."""
    try:
        job = submit_import(
            db,
            user=current_user,
            storage=storage,
            settings=settings,
            users_file=(users_file.filename or "users.csv", users_file.file.read()) if users_file else None,
            teams_file=(teams_file.filename or "teams.csv", teams_file.file.read()) if teams_file else None,
            column_mapping=_json_form(column_mapping, InvalidMapping, "column_mapping"),
            conflict_overrides=_json_form(conflict_overrides, InvalidOverride, "conflict_overrides"),
        )
    except ImportValidationError as e:
        raise _validation_error(e)
    return job_to_out(job)


@router.post("/process", status_code=status.HTTP_202_ACCEPTED)
def process_import(
    payload: ProcessImportRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    processor: ImportProcessor = Depends(get_import_processor),
    current_user: User = Depends(require_admin),
):
    """
    Claim a pending job and process it in the background.

    Returns as soon as the claim succeeds. A second trigger for the same job
    (or an unknown id) gets 409.
    """
    try:
        import_id = UUID(payload.import_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Import already claimed or not found")

    job = claim_import_job(db, import_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Import already claimed or not found")

    log_event(db=db, actor=current_user, action="import.claimed", entity_type="import_job", entity_id=job.id)
    db.commit()

    background_tasks.add_task(processor.run, job.id)
    logger.info("Import %s claimed, processing in background", job.id)
    return {"status": "processing"}


@router.get("", response_model=PaginatedResponse[ImportJobOut])
def list_imports(
    status_filter: str | None = Query(default=None, alias="status"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    _: User = Depends(require_admin),
):
    query = db.query(ImportJob)
    if status_filter:
        query = query.filter(ImportJob.status == status_filter)

    total = query.count()
    jobs = query.order_by(ImportJob.created_at.desc()).offset(offset).limit(limit).all()
    items = [job_to_out(j) for j in jobs]
    return PaginatedResponse(
        items=items,
        pagination=PaginationMeta.for_page(total=total, limit=limit, offset=offset, returned=len(items)),
    )


@router.get("/{import_id}", response_model=ImportJobOut)
def get_import(
    import_id: UUID,
    db: Session = Depends(get_db),
    _: User = Depends(require_admin),
):
    """Job status and progress; poll this while a job is processing."""
    return job_to_out(_get_job_or_404(db, import_id))


@router.get("/{import_id}/errors", response_model=ImportErrorsOut)
def get_import_errors(
    import_id: UUID,
    db: Session = Depends(get_db),
    _: User = Depends(require_admin),
):
    job = _get_job_or_404(db, import_id)
    errors = job.errors or []
    return ImportErrorsOut(import_id=str(job.id), total=len(errors), errors=[ImportErrorOut(**e) for e in errors])


@router.post("/{import_id}/resubmit", status_code=status.HTTP_201_CREATED, response_model=ImportJobOut)
def resubmit(
    import_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    job = _get_job_or_404(db, import_id)
    try:
        new_job = resubmit_import(db, user=current_user, job=job)
    except ResubmitNotAllowed as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return job_to_out(new_job)
