import uuid
from datetime import datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy import DateTime, ForeignKey, String, CheckConstraint, Integer
from sqlalchemy.orm import Mapped, mapped_column

from rosterhub.db.base import Base
from rosterhub.db.types import JSONType

JOB_PENDING = "pending"
JOB_PROCESSING = "processing"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"

TERMINAL_STATUSES = frozenset({JOB_COMPLETED, JOB_FAILED})


class ImportJob(Base):
    __tablename__ = "import_jobs"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','processing','completed','failed')",
            name="ck_import_job_status",
        ),
        sa.Index("ix_import_jobs_status_updated", "status", "updated_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)

    created_by_user_id: Mapped[uuid.UUID | None] = mapped_column(
        sa.Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    admin_email: Mapped[str | None] = mapped_column(String(320), nullable=True)  # completion summary recipient
    resubmitted_from_id: Mapped[uuid.UUID | None] = mapped_column(
        sa.Uuid, ForeignKey("import_jobs.id", ondelete="SET NULL"), nullable=True
    )

    file_name: Mapped[str] = mapped_column(String(500), nullable=False)
    import_type: Mapped[str] = mapped_column(String(20), nullable=False)  # users | teams | users+teams
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=JOB_PENDING, server_default=sa.text("'pending'")
    )

    # {"users_csv": "...", "teams_csv": "..."}
    storage_paths: Mapped[dict[str, str]] = mapped_column(JSONType, nullable=False, default=dict)
    column_mapping: Mapped[dict[str, str] | None] = mapped_column(JSONType, nullable=True)
    plan: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    total_records: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_new: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_updated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_activated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_skipped: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Summary statistics
    result_summary: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    errors: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    warnings: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)

    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    @property
    def progress(self) -> int:
        """0-100"""
        if not self.total_records:
            return 100 if self.status in TERMINAL_STATUSES else 0
        return min(100, int(self.records_processed * 100 / self.total_records))
