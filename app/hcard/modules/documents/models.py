from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.hcard.models import Base
from app.hcard.modules.applications.models import Application, DocumentType

REVIEW_PENDING = "Pending"
REVIEW_VERIFIED = "Verified"
REVIEW_REFERRED = "Referred"

REVIEW_STATUSES = (REVIEW_PENDING, REVIEW_VERIFIED, REVIEW_REFERRED)


class DocumentUpload(Base):
    """
    One physical submission into a slot (application_id, document_type_id).

    Rows are never deleted. A newer upload into the same slot flips ``is_current``
    off on the previous one and records which upload superseded it.
    """

    __tablename__ = "document_uploads"
    __table_args__ = (
        Index("idx_document_uploads_slot", "application_id", "document_type_id"),
        Index("idx_document_uploads_status", "review_status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    application_id: Mapped[int] = mapped_column(ForeignKey("applications.id", ondelete="CASCADE"), nullable=False)
    document_type_id: Mapped[int] = mapped_column(ForeignKey("document_types.id", ondelete="RESTRICT"), nullable=False)

    storage_key: Mapped[str] = mapped_column(String(512), nullable=False)
    original_filename: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[str] = mapped_column(String(128), nullable=False, default="application/octet-stream")
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sha256: Mapped[str | None] = mapped_column(String(64), nullable=True)

    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    uploaded_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Pending -> Verified | Referred
    review_status: Mapped[str] = mapped_column(String(16), nullable=False, default=REVIEW_PENDING)
    admin_remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    superseded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    superseded_by_upload_id: Mapped[int | None] = mapped_column(
        ForeignKey("document_uploads.id", ondelete="SET NULL"),
        nullable=True,
    )

    application: Mapped[Application] = relationship("Application", lazy="selectin")
    document_type: Mapped[DocumentType] = relationship("DocumentType", lazy="selectin")

    @property
    def slot(self) -> tuple[int, int]:
        return (self.application_id, self.document_type_id)
