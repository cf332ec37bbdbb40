from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.hcard.models import Base

ACCESS_SUCCESS = "Success"
ACCESS_UNAUTHORIZED = "Unauthorized"
ACCESS_EXPIRED = "Expired"
ACCESS_INVALID_SIGNATURE = "InvalidSignature"
ACCESS_NOT_FOUND = "DocumentNotFound"
ACCESS_INVALID_REQUEST = "InvalidRequest"

ACCESS_STATUSES = (
    ACCESS_SUCCESS,
    ACCESS_UNAUTHORIZED,
    ACCESS_EXPIRED,
    ACCESS_INVALID_SIGNATURE,
    ACCESS_NOT_FOUND,
    ACCESS_INVALID_REQUEST,
)

METHOD_SIGNED_URL = "signed_url"


class DocumentAccessLog(Base):
    """
    One row per fetch attempt on the secure document path, successful or not.

    ``document_id`` is a string because failed attempts may carry garbage.
    """

    __tablename__ = "document_access_logs"
    __table_args__ = (
        Index("idx_document_access_logs_document", "document_id"),
        Index("idx_document_access_logs_status", "access_status"),
        Index("idx_document_access_logs_accessed_at", "accessed_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    document_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    application_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    user_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    user_role: Mapped[str | None] = mapped_column(String(64), nullable=True)

    access_status: Mapped[str] = mapped_column(String(32), nullable=False)
    access_method: Mapped[str] = mapped_column(String(32), nullable=False, default=METHOD_SIGNED_URL)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    referrer: Mapped[str | None] = mapped_column(String(512), nullable=True)
    response_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    document_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    accessed_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
