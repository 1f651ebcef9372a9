import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy import CheckConstraint, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from rosterhub.db.base import Base


class Profile(Base):
    """
    A roster person. ``id`` is the identity-provider account id.

    verification_status:
      - pending: account exists but the person is not active yet (provisional)
      - verified: active
    """

    __tablename__ = "profiles"
    __table_args__ = (
        CheckConstraint(
            "verification_status IN ('pending','verified')",
            name="ck_profile_verification_status",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)

    email: Mapped[str] = mapped_column(String(320), unique=True, index=True, nullable=False)
    tg_email: Mapped[str | None] = mapped_column(String(320), index=True, nullable=True)
    tg_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    first_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    school_name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    company_name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    city: Mapped[str | None] = mapped_column(String(200), nullable=True)
    state: Mapped[str | None] = mapped_column(String(200), nullable=True)
    parent_name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    parent_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    profile_type: Mapped[str | None] = mapped_column(String(50), nullable=True)

    verification_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending", server_default=sa.text("'pending'")
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=sa.func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=sa.func.now(), onupdate=datetime.utcnow, nullable=False
    )

    @property
    def is_active(self) -> bool:
        return self.verification_status == "verified"


class ProfileRole(Base):
    """Platform role of a roster person. One row per profile (upserted on profile_id)."""

    __tablename__ = "profile_roles"
    __table_args__ = (
        CheckConstraint(
            "role IN ('participant','mentor','judge','chapter_ambassador')",
            name="ck_profile_role",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    profile_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    role: Mapped[str] = mapped_column(String(50), nullable=False)
