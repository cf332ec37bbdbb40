"""
Outcome stores.

``document_rejection_history`` is the original, narrower audit table. It is
read-only now: new decisions go to ``document_referral_history`` only. Both are
read together through ``reconciliation``; nothing else should query the legacy
table.
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.hcard.models import Base

ISSUE_DOCUMENT = "document_issue"
ISSUE_MEDICAL = "medical_referral"
ISSUE_TYPES = (ISSUE_DOCUMENT, ISSUE_MEDICAL)

MEDICAL_REFERRAL_CATEGORIES = frozenset(
    {
        "abnormal_xray",
        "elevated_urinalysis",
        "positive_stool",
        "positive_drug_test",
        "neuro_exam_failed",
        "hepatitis_consultation",
        "other_medical_concern",
    }
)

LEGACY_REJECTION_CATEGORIES = frozenset(
    {
        "quality_issue",
        "wrong_document",
        "expired_document",
        "incomplete_document",
        "invalid_document",
        "format_issue",
        "other",
    }
)

DOCUMENT_ISSUE_CATEGORIES = LEGACY_REJECTION_CATEGORIES | {
    "invalid_id",
    "expired_id",
    "blurry_photo",
    "wrong_format",
    "missing_info",
}

# Extended document-issue categories folded onto the legacy taxonomy.
DOCUMENT_ISSUE_TO_LEGACY = {
    "invalid_id": "invalid_document",
    "expired_id": "expired_document",
    "blurry_photo": "quality_issue",
    "wrong_format": "format_issue",
    "missing_info": "incomplete_document",
    **{c: c for c in LEGACY_REJECTION_CATEGORIES},
}

# pending -> resubmitted (set together with was_replaced)
OUTCOME_PENDING = "pending"
OUTCOME_RESUBMITTED = "resubmitted"


class _OutcomeColumns:
    """Columns both shapes share. Kept as a mixin so each table stays flat."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    application_id: Mapped[int] = mapped_column(ForeignKey("applications.id", ondelete="CASCADE"), nullable=False)
    document_type_id: Mapped[int] = mapped_column(ForeignKey("document_types.id", ondelete="RESTRICT"), nullable=False)
    document_upload_id: Mapped[int] = mapped_column(ForeignKey("document_uploads.id", ondelete="CASCADE"), nullable=False)

    # Snapshot of the flagged file; the blob itself is never deleted.
    storage_key: Mapped[str] = mapped_column(String(512), nullable=False)
    original_filename: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    file_type: Mapped[str | None] = mapped_column(String(128), nullable=True)

    specific_issues: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False)

    was_replaced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    replaced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    replacement_upload_id: Mapped[int | None] = mapped_column(
        ForeignKey("document_uploads.id", ondelete="SET NULL"),
        nullable=True,
    )

    status: Mapped[str] = mapped_column(String(32), nullable=False, default=OUTCOME_PENDING)

    notification_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notification_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)


class DocumentRejectionHistory(_OutcomeColumns, Base):
    __tablename__ = "document_rejection_history"
    __table_args__ = (
        Index("idx_rejection_history_slot", "application_id", "document_type_id"),
        Index("idx_rejection_history_replaced", "was_replaced"),
    )

    rejection_category: Mapped[str] = mapped_column(String(32), nullable=False, default="other")
    rejection_reason: Mapped[str] = mapped_column(Text, nullable=False)

    rejected_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    rejected_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class DocumentReferralHistory(_OutcomeColumns, Base):
    __tablename__ = "document_referral_history"
    __table_args__ = (
        UniqueConstraint("application_id", "document_type_id", "attempt_number", name="uq_referral_slot_attempt"),
        Index("idx_referral_history_slot", "application_id", "document_type_id"),
        Index("idx_referral_history_replaced", "was_replaced"),
    )

    issue_type: Mapped[str] = mapped_column(String(32), nullable=False)  # document_issue | medical_referral
    medical_referral_category: Mapped[str | None] = mapped_column(String(64), nullable=True)
    document_issue_category: Mapped[str | None] = mapped_column(String(64), nullable=True)

    referral_reason: Mapped[str] = mapped_column(Text, nullable=False)
    doctor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    clinic_address: Mapped[str | None] = mapped_column(String(512), nullable=True)
    finding_description: Mapped[str | None] = mapped_column(Text, nullable=True)

    referred_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    referred_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
