import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from rosterhub.db.base import Base


class AuthorizedUser(Base):
    """
    Whitelist entry: someone authorized by a roster import who may not have an
    account yet. ``matched_profile_id`` links the entry once a profile claims it.
    """

    __tablename__ = "authorized_users"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(320), unique=True, index=True, nullable=False)

    tg_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    profile_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    company_name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    school_name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    team_name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    team_division: Mapped[str | None] = mapped_column(String(50), nullable=True)
    parent_name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    parent_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    city: Mapped[str | None] = mapped_column(String(200), nullable=True)
    state: Mapped[str | None] = mapped_column(String(200), nullable=True)
    age: Mapped[int | None] = mapped_column(Integer, nullable=True)
    parental_consent: Mapped[str | None] = mapped_column(String(100), nullable=True)
    media_consent: Mapped[str | None] = mapped_column(String(100), nullable=True)
    signed_up_at: Mapped[str | None] = mapped_column(String(50), nullable=True)

    matched_profile_id: Mapped[uuid.UUID | None] = mapped_column(
        sa.Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=sa.func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=sa.func.now(), onupdate=datetime.utcnow, nullable=False
    )
