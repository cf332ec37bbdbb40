from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.hcard.models import Base, User


class Application(Base):
    __tablename__ = "applications"
    __table_args__ = (
        Index("idx_applications_user", "user_id"),
        Index("idx_applications_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # Owner of record; the only non-privileged subject allowed to see its documents.
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)

    application_type: Mapped[str] = mapped_column(String(32), nullable=False, default="New")  # New, Renew
    job_category: Mapped[str | None] = mapped_column(String(128), nullable=True)  # e.g. "Food Handler"

    # Submitted -> Under Review -> ... -> Approved | Rejected | Cancelled (terminal)
    status: Mapped[str] = mapped_column(String(64), nullable=False, default="Submitted")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    owner: Mapped[User] = relationship("User", lazy="selectin")


class DocumentType(Base):
    __tablename__ = "document_types"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)  # e.g. "chest_xray"
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    # Lab results and exams: referrals on these carry clinician detail.
    is_medical: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
