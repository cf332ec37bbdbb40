"""
Reconciliation of the two outcome stores.

Review outcomes moved from ``document_rejection_history`` (legacy, one shape) to
``document_referral_history`` (current, issue taxonomy + clinician detail) without a
backfill. Until the backfill lands every read has to look at both tables. This
module is the only place that does; callers get normalized ``OutcomeView`` objects
and never learn which table a record came from unless they ask for ``source``.

Rules:
- One attempt is one physical record from one table. Fields are never mixed.
- The dedupe key is (application_id, document_type_id, attempt_number). When both
  tables hold the key (only possible at the cutover attempt) the current row wins.
- Results are ordered newest decision first, regardless of source.

Nothing here writes. The state machine in ``documents.service`` patches the row a
view points at when a resubmission resolves it.
"""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import exists
from sqlalchemy.orm import Session

from app.hcard.modules.documents.models import REVIEW_PENDING, DocumentUpload

from .models import (
    DOCUMENT_ISSUE_TO_LEGACY,
    ISSUE_DOCUMENT,
    ISSUE_MEDICAL,
    DocumentReferralHistory,
    DocumentRejectionHistory,
)

SOURCE_LEGACY = "legacy"
SOURCE_CURRENT = "current"

OutcomeKey = tuple[int, int, int]


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class OutcomeView:
    source: str
    id: int
    application_id: int
    document_type_id: int
    document_upload_id: int
    attempt_number: int
    reason: str
    specific_issues: tuple[str, ...]
    reviewer_id: int | None
    decided_at: datetime
    was_replaced: bool
    replaced_at: datetime | None
    replacement_upload_id: int | None
    status: str
    storage_key: str
    original_filename: str
    file_size: int | None
    file_type: str | None
    row: Any = field(compare=False, repr=False)

    @property
    def slot(self) -> tuple[int, int]:
        return (self.application_id, self.document_type_id)

    @property
    def key(self) -> OutcomeKey:
        return (self.application_id, self.document_type_id, self.attempt_number)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source": self.source,
            "applicationId": self.application_id,
            "documentTypeId": self.document_type_id,
            "documentUploadId": self.document_upload_id,
            "issueType": self.issue_type,  # type: ignore[attr-defined]
            "category": self.category,  # type: ignore[attr-defined]
            "legacyCategory": self.legacy_category,  # type: ignore[attr-defined]
            "reason": self.reason,
            "specificIssues": list(self.specific_issues),
            "attemptNumber": self.attempt_number,
            "reviewedBy": self.reviewer_id,
            "decidedAt": _iso(self.decided_at),
            "wasReplaced": self.was_replaced,
            "replacedAt": _iso(self.replaced_at),
            "replacementUploadId": self.replacement_upload_id,
            "status": self.status,
            "file": {
                "fileName": self.original_filename,
                "fileSize": self.file_size,
                "fileType": self.file_type,
            },
        }


@dataclass(frozen=True)
class RejectionView(OutcomeView):
    """A record from the legacy table. The legacy shape only ever held document issues."""

    rejection_category: str = "other"

    @property
    def issue_type(self) -> str:
        return ISSUE_DOCUMENT

    @property
    def category(self) -> str:
        return self.rejection_category

    @property
    def legacy_category(self) -> str:
        return self.rejection_category


@dataclass(frozen=True)
class ReferralView(OutcomeView):
    issue_type: str = ISSUE_DOCUMENT
    medical_referral_category: str | None = None
    document_issue_category: str | None = None
    doctor_name: str | None = None
    clinic_address: str | None = None
    finding_description: str | None = None

    @property
    def category(self) -> str | None:
        if self.issue_type == ISSUE_MEDICAL:
            return self.medical_referral_category
        return self.document_issue_category

    @property
    def legacy_category(self) -> str | None:
        """The category in legacy terms, so mixed histories can be grouped. None for medical referrals."""
        if self.issue_type == ISSUE_MEDICAL:
            return None
        return DOCUMENT_ISSUE_TO_LEGACY.get(self.document_issue_category or "", "other")

    def to_dict(self) -> dict:
        out = super().to_dict()
        out.update(
            {
                "doctorName": self.doctor_name,
                "clinicAddress": self.clinic_address,
                "findingDescription": self.finding_description,
            }
        )
        return out


def _shared(row: DocumentRejectionHistory | DocumentReferralHistory) -> dict:
    return {
        "id": row.id,
        "application_id": row.application_id,
        "document_type_id": row.document_type_id,
        "document_upload_id": row.document_upload_id,
        "attempt_number": row.attempt_number,
        "specific_issues": tuple(row.specific_issues or ()),
        "was_replaced": bool(row.was_replaced),
        "replaced_at": row.replaced_at,
        "replacement_upload_id": row.replacement_upload_id,
        "status": row.status,
        "storage_key": row.storage_key,
        "original_filename": row.original_filename,
        "file_size": row.file_size,
        "file_type": row.file_type,
        "row": row,
    }


def rejection_view(row: DocumentRejectionHistory) -> RejectionView:
    return RejectionView(
        source=SOURCE_LEGACY,
        reason=row.rejection_reason,
        reviewer_id=row.rejected_by_user_id,
        decided_at=row.rejected_at,
        rejection_category=row.rejection_category,
        **_shared(row),
    )


def referral_view(row: DocumentReferralHistory) -> ReferralView:
    return ReferralView(
        source=SOURCE_CURRENT,
        reason=row.referral_reason,
        reviewer_id=row.referred_by_user_id,
        decided_at=row.referred_at,
        issue_type=row.issue_type,
        medical_referral_category=row.medical_referral_category,
        document_issue_category=row.document_issue_category,
        doctor_name=row.doctor_name,
        clinic_address=row.clinic_address,
        finding_description=row.finding_description,
        **_shared(row),
    )


def _load(
    s: Session,
    *,
    application_ids: Iterable[int],
    document_type_id: int | None = None,
) -> tuple[list[DocumentReferralHistory], list[DocumentRejectionHistory]]:
    ids = list(application_ids)
    if not ids:
        return [], []

    current_q = s.query(DocumentReferralHistory).filter(DocumentReferralHistory.application_id.in_(ids))
    legacy_q = s.query(DocumentRejectionHistory).filter(DocumentRejectionHistory.application_id.in_(ids))
    if document_type_id is not None:
        current_q = current_q.filter(DocumentReferralHistory.document_type_id == document_type_id)
        legacy_q = legacy_q.filter(DocumentRejectionHistory.document_type_id == document_type_id)
    return current_q.all(), legacy_q.all()


def merge(
    current_rows: Iterable[DocumentReferralHistory],
    legacy_rows: Iterable[DocumentRejectionHistory],
) -> dict[OutcomeKey, OutcomeView]:
    """Deduplicate both sources by (slot, attempt). Current rows win the cutover key."""
    merged: dict[OutcomeKey, OutcomeView] = {}
    for row in current_rows:
        view = referral_view(row)
        merged[view.key] = view
    for row in legacy_rows:
        view = rejection_view(row)
        merged.setdefault(view.key, view)
    return merged


def _newest_first(views: Iterable[OutcomeView]) -> list[OutcomeView]:
    return sorted(views, key=lambda v: (v.decided_at, v.attempt_number), reverse=True)


def history_for(s: Session, application_id: int, document_type_id: int) -> list[OutcomeView]:
    """Every outcome recorded against one slot, newest decision first."""
    current_rows, legacy_rows = _load(s, application_ids=[application_id], document_type_id=document_type_id)
    return _newest_first(merge(current_rows, legacy_rows).values())


def history_for_application(s: Session, application_id: int) -> list[OutcomeView]:
    current_rows, legacy_rows = _load(s, application_ids=[application_id])
    return _newest_first(merge(current_rows, legacy_rows).values())


def latest_for(s: Session, application_id: int, document_type_id: int) -> OutcomeView | None:
    """Outcome with the highest attempt number for the slot, or None."""
    views = history_for(s, application_id, document_type_id)
    if not views:
        return None
    return max(views, key=lambda v: v.attempt_number)


def unresolved_for(s: Session, application_id: int, document_type_id: int) -> list[OutcomeView]:
    return [v for v in history_for(s, application_id, document_type_id) if not v.was_replaced]


def next_attempt_number(s: Session, application_id: int, document_type_id: int) -> int:
    latest = latest_for(s, application_id, document_type_id)
    return (latest.attempt_number if latest else 0) + 1


@dataclass(frozen=True)
class UnresolvedCounts:
    total: int
    pending_resubmission: int
    by_type: dict[str, int]
    applications: int

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "pendingResubmission": self.pending_resubmission,
            "byType": dict(self.by_type),
            "applications": self.applications,
        }


def counts_for(s: Session, application_ids: Iterable[int]) -> UnresolvedCounts:
    """
    Aggregate outcome counts over a set of applications.

    ``total`` counts every distinct (slot, attempt); ``pending_resubmission`` counts the
    ones still waiting for a new upload; ``by_type`` splits ``total`` by issue type.
    """
    ids = sorted(set(application_ids))
    current_rows, legacy_rows = _load(s, application_ids=ids)
    merged = merge(current_rows, legacy_rows)

    by_type = {ISSUE_DOCUMENT: 0, ISSUE_MEDICAL: 0}
    pending = 0
    for view in merged.values():
        by_type[view.issue_type] = by_type.get(view.issue_type, 0) + 1  # type: ignore[attr-defined]
        if not view.was_replaced:
            pending += 1

    return UnresolvedCounts(
        total=len(merged),
        pending_resubmission=pending,
        by_type=by_type,
        applications=len(ids),
    )


def counts_for_subject(s: Session, user_id: int) -> UnresolvedCounts:
    from app.hcard.modules.applications.service import application_ids_for_user

    return counts_for(s, application_ids_for_user(s, user_id))


@dataclass(frozen=True)
class ResubmissionItem:
    outcome: OutcomeView
    upload: DocumentUpload

    def to_dict(self) -> dict:
        return {
            "uploadId": self.upload.id,
            "applicationId": self.outcome.application_id,
            "documentTypeId": self.outcome.document_type_id,
            "documentTypeName": self.upload.document_type.name if self.upload.document_type else None,
            "originalReason": self.outcome.reason,
            "issueType": self.outcome.issue_type,  # type: ignore[attr-defined]
            "attemptNumber": self.outcome.attempt_number,
            "resubmittedAt": _iso(self.outcome.replaced_at),
            "fileName": self.upload.original_filename,
        }


def resubmission_queue(s: Session, *, limit: int = 50) -> list[ResubmissionItem]:
    """
    Resolved outcomes whose replacement upload still waits for review, newest resubmission first.

    The Pending filter runs in SQL before ``limit`` so reviewed replacements never crowd out
    older ones still waiting.
    """
    current_rows = (
        s.query(DocumentReferralHistory)
        .join(DocumentUpload, DocumentUpload.id == DocumentReferralHistory.replacement_upload_id)
        .filter(DocumentReferralHistory.was_replaced.is_(True), DocumentUpload.review_status == REVIEW_PENDING)
        .order_by(DocumentReferralHistory.replaced_at.desc())
        .limit(limit)
        .all()
    )
    # A legacy row loses to any current row holding the same key, pending or not.
    superseded = exists().where(
        DocumentReferralHistory.application_id == DocumentRejectionHistory.application_id,
        DocumentReferralHistory.document_type_id == DocumentRejectionHistory.document_type_id,
        DocumentReferralHistory.attempt_number == DocumentRejectionHistory.attempt_number,
    )
    legacy_rows = (
        s.query(DocumentRejectionHistory)
        .join(DocumentUpload, DocumentUpload.id == DocumentRejectionHistory.replacement_upload_id)
        .filter(
            DocumentRejectionHistory.was_replaced.is_(True),
            DocumentUpload.review_status == REVIEW_PENDING,
            ~superseded,
        )
        .order_by(DocumentRejectionHistory.replaced_at.desc())
        .limit(limit)
        .all()
    )
    merged = merge(current_rows, legacy_rows)

    upload_ids = {v.replacement_upload_id for v in merged.values()}
    uploads = {u.id: u for u in s.query(DocumentUpload).filter(DocumentUpload.id.in_(upload_ids)).all()} if upload_ids else {}

    items = [ResubmissionItem(outcome=v, upload=uploads[v.replacement_upload_id]) for v in merged.values()]
    items.sort(key=lambda i: i.outcome.replaced_at or datetime.min, reverse=True)
    return items[:limit]
