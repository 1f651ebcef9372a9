from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ProcessImportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    import_id: str = Field(alias="importId", min_length=1)


class ConflictOut(BaseModel):
    row_index: int
    conflict_type: str
    email: str
    default_action: str
    action: str
    override: str | None = None
    sibling_rows: list[int] = []


class ImportPreviewOut(BaseModel):
    kind: str
    headers: list[str]
    row_count: int
    mapping: dict[str, str] | None = None
    warnings: list[str] = []
    invalid_rows: list[int] = []
    conflicts: list[ConflictOut] = []
    teams_to_create: list[dict[str, str | None]] = []
    detected_changes: list[dict[str, Any]] = []
    summary: dict[str, Any] = {}


class ImportErrorOut(BaseModel):
    row: int | None = None
    context: str | None = None
    reason: str
    team_id: str | None = None


class ImportJobOut(BaseModel):
    id: str
    file_name: str
    import_type: str
    status: str
    progress: int
    total_records: int
    records_processed: int
    records_new: int
    records_updated: int
    records_activated: int
    records_skipped: int
    records_failed: int
    error_count: int
    errors_preview: list[ImportErrorOut] = []
    warnings: list[str] = []
    result_summary: dict[str, Any] | None = None
    resubmitted_from_id: str | None = None
    created_by_user_id: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ImportErrorsOut(BaseModel):
    import_id: str
    total: int
    errors: list[ImportErrorOut]
