"""
Document slot state machine.

A slot is one (application_id, document_type_id) pair. Its state is derived from
the current upload:

    Empty -> Uploaded (Pending) -> Verified          (terminal for the slot)
                                -> Referred -> Uploaded (next attempt) ...

Writes follow read-then-conditional-write inside the caller's transaction: the
slot's current upload is locked (FOR UPDATE where the database supports it), the
single-unresolved-outcome invariant is checked before the write and re-checked
after flush, and the unique (slot, attempt) constraint turns a lost race into
IntegrityViolation. Callers commit.
"""
from __future__ import annotations

import hashlib
import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from werkzeug.utils import secure_filename

from app.hcard.audit import record_event
from app.hcard.errors import IntegrityViolation, NotFound, TerminalStateViolation, Unauthorized
from app.hcard.modules.applications.models import Application, DocumentType
from app.hcard.modules.applications.service import (
    STATUS_MEDICAL_REFERRAL,
    STATUS_NEEDS_REVISION,
    STATUS_ONSITE_VERIFICATION,
    STATUS_UNDER_REVIEW,
    ensure_not_terminal,
    get_application_or_404,
    get_document_type_or_404,
    set_status,
)
from app.hcard.modules.referrals import reconciliation
from app.hcard.modules.referrals.models import (
    DOCUMENT_ISSUE_CATEGORIES,
    ISSUE_DOCUMENT,
    ISSUE_MEDICAL,
    ISSUE_TYPES,
    MEDICAL_REFERRAL_CATEGORIES,
    OUTCOME_PENDING,
    OUTCOME_RESUBMITTED,
    DocumentReferralHistory,
)
from app.hcard.rbac import REVIEW_PERMISSION, user_has_permission
from app.hcard.storage import Storage

from .models import REVIEW_PENDING, REVIEW_REFERRED, REVIEW_VERIFIED, DocumentUpload

if TYPE_CHECKING:
    from app.hcard.models import User

logger = logging.getLogger(__name__)

SLOT_EMPTY = "Empty"
SLOT_UPLOADED = "Uploaded"
SLOT_VERIFIED = "Verified"
SLOT_REFERRED = "Referred"

DEFAULT_MAX_ATTEMPTS = 5


def current_upload(
    s: Session,
    application_id: int,
    document_type_id: int,
    *,
    lock: bool = False,
) -> DocumentUpload | None:
    q = s.query(DocumentUpload).filter(
        DocumentUpload.application_id == application_id,
        DocumentUpload.document_type_id == document_type_id,
        DocumentUpload.is_current.is_(True),
    )
    if lock:
        q = q.with_for_update()
    rows = q.order_by(DocumentUpload.id.desc()).all()
    if len(rows) > 1:
        raise IntegrityViolation(
            f"Slot ({application_id}, {document_type_id}) has {len(rows)} current uploads.",
            upload_ids=[r.id for r in rows],
        )
    return rows[0] if rows else None


def slot_state(s: Session, application_id: int, document_type_id: int) -> str:
    upload = current_upload(s, application_id, document_type_id)
    if upload is None:
        return SLOT_EMPTY
    if upload.review_status == REVIEW_VERIFIED:
        return SLOT_VERIFIED
    if upload.review_status == REVIEW_REFERRED:
        return SLOT_REFERRED
    return SLOT_UPLOADED


def uploads_for_slot(s: Session, application_id: int, document_type_id: int) -> list[DocumentUpload]:
    return (
        s.query(DocumentUpload)
        .filter(
            DocumentUpload.application_id == application_id,
            DocumentUpload.document_type_id == document_type_id,
        )
        .order_by(DocumentUpload.uploaded_at.desc(), DocumentUpload.id.desc())
        .all()
    )


def _storage_key(application: Application, document_type: DocumentType, filename: str) -> str:
    return f"applications/{application.id}/{document_type.key}/{uuid.uuid4().hex}-{filename}"


def submit_upload(
    s: Session,
    *,
    application: Application,
    document_type: DocumentType,
    data: bytes,
    filename: str,
    content_type: str | None,
    user: User,
    storage: Storage,
) -> DocumentUpload:
    """
    Put a new upload into a slot.

    If the slot's current upload was referred, its single unresolved outcome is
    resolved here (was_replaced/replaced_at/replacement_upload_id). Any other
    number of unresolved outcomes is an IntegrityViolation.
    """
    ensure_not_terminal(application)
    if not data:
        raise ValueError("Uploaded file is empty.")

    previous = current_upload(s, application.id, document_type.id, lock=True)
    if previous is not None and previous.review_status == REVIEW_VERIFIED:
        raise TerminalStateViolation(
            f"{document_type.name} is already verified for application {application.id}.",
            upload_id=previous.id,
        )
    unresolved = reconciliation.unresolved_for(s, application.id, document_type.id)
    if previous is not None and previous.review_status == REVIEW_REFERRED and len(unresolved) != 1:
        logger.error(
            "Slot integrity: app=%s doc_type=%s referred upload=%s has %d unresolved outcomes",
            application.id,
            document_type.id,
            previous.id,
            len(unresolved),
        )
        raise IntegrityViolation(
            f"Expected exactly one unresolved outcome for slot ({application.id}, {document_type.id}), "
            f"found {len(unresolved)}.",
            outcome_keys=[v.key for v in unresolved],
        )
    if unresolved and (previous is None or previous.review_status != REVIEW_REFERRED):
        raise IntegrityViolation(
            f"Slot ({application.id}, {document_type.id}) has an unresolved outcome but no referred upload.",
            outcome_keys=[v.key for v in unresolved],
        )

    safe_name = secure_filename(filename or "") or "document.bin"
    ctype = (content_type or "application/octet-stream").strip()
    key = _storage_key(application, document_type, safe_name)
    storage.put_bytes(key, data, content_type=ctype)

    now = datetime.utcnow()
    upload = DocumentUpload(
        application_id=application.id,
        document_type_id=document_type.id,
        storage_key=key,
        original_filename=safe_name,
        content_type=ctype,
        size_bytes=len(data),
        sha256=hashlib.sha256(data).hexdigest(),
        uploaded_at=now,
        uploaded_by_user_id=user.id,
        review_status=REVIEW_PENDING,
        is_current=True,
    )
    s.add(upload)
    s.flush()

    resolved = None
    if previous is not None:
        previous.is_current = False
        previous.superseded_at = now
        previous.superseded_by_upload_id = upload.id
    if unresolved:
        resolved = unresolved[0]
        row = resolved.row
        row.was_replaced = True
        row.replaced_at = now
        row.replacement_upload_id = upload.id
        row.status = OUTCOME_RESUBMITTED

    record_event(
        s,
        actor=user,
        action="document.upload",
        entity_type="DocumentUpload",
        entity_id=str(upload.id),
        metadata={
            "application_id": application.id,
            "document_type": document_type.key,
            "filename": safe_name,
            "sha256": upload.sha256,
            "size_bytes": upload.size_bytes,
            "replaces_upload_id": previous.id if previous else None,
            "resolves_attempt": resolved.attempt_number if resolved else None,
        },
    )

    s.flush()
    if resolved is not None:
        _reopen_review_if_clear(s, application, user=user)

    logger.info(
        "Upload stored: app=%s doc_type=%s upload=%s resolves_attempt=%s",
        application.id,
        document_type.key,
        upload.id,
        resolved.attempt_number if resolved else None,
    )
    return upload


def _reopen_review_if_clear(s: Session, application: Application, *, user: User) -> None:
    """Back to Under Review once no current upload of the application is still referred."""
    if application.status not in (STATUS_NEEDS_REVISION, STATUS_MEDICAL_REFERRAL):
        return
    still_referred = (
        s.query(DocumentUpload.id)
        .filter(
            DocumentUpload.application_id == application.id,
            DocumentUpload.is_current.is_(True),
            DocumentUpload.review_status == REVIEW_REFERRED,
        )
        .first()
    )
    if still_referred is None:
        set_status(s, application, STATUS_UNDER_REVIEW, user=user, reason="All flagged documents resubmitted")


def _require_reviewer(user: User) -> None:
    if not user_has_permission(user, REVIEW_PERMISSION):
        raise Unauthorized("Only admins and inspectors can review documents.")


def verify_upload(s: Session, upload: DocumentUpload, *, reviewer: User, remarks: str | None = None) -> DocumentUpload:
    """Pending -> Verified."""
    _require_reviewer(reviewer)
    ensure_not_terminal(upload.application)
    if not upload.is_current:
        raise ValueError("Upload was superseded by a newer submission.")
    if upload.review_status == REVIEW_VERIFIED:
        raise TerminalStateViolation(f"Upload {upload.id} is already verified.", upload_id=upload.id)
    if upload.review_status != REVIEW_PENDING:
        raise ValueError(f"Upload {upload.id} is {upload.review_status}; waiting for a resubmission.")

    upload.review_status = REVIEW_VERIFIED
    upload.admin_remarks = (remarks or "").strip() or None
    upload.reviewed_by_user_id = reviewer.id
    upload.reviewed_at = datetime.utcnow()

    record_event(
        s,
        actor=reviewer,
        action="document.verify",
        entity_type="DocumentUpload",
        entity_id=str(upload.id),
        metadata={"application_id": upload.application_id, "document_type_id": upload.document_type_id},
    )
    return upload


@dataclass(frozen=True)
class OutcomeResult:
    outcome: reconciliation.ReferralView
    upload: DocumentUpload
    max_attempts: int

    @property
    def attempt_number(self) -> int:
        return self.outcome.attempt_number

    @property
    def remaining_attempts(self) -> int:
        return max(0, self.max_attempts - self.attempt_number)

    @property
    def max_attempts_reached(self) -> bool:
        return self.attempt_number >= self.max_attempts

    @property
    def is_final_attempt(self) -> bool:
        return self.remaining_attempts == 1

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.to_dict(),
            "attemptNumber": self.attempt_number,
            "remainingAttempts": self.remaining_attempts,
            "maxAttemptsReached": self.max_attempts_reached,
            "isFinalAttempt": self.is_final_attempt,
        }


def _validate_outcome(
    issue_type: str,
    category: str | None,
    reason: str,
    doctor_name: str | None,
) -> None:
    for name, value in (("issue_type", issue_type), ("category", category), ("reason", reason), ("doctor_name", doctor_name)):
        if value is not None and not isinstance(value, str):
            raise ValueError(f"{name} must be a string.")
    if issue_type not in ISSUE_TYPES:
        raise ValueError(f"Invalid issue type: {issue_type}")
    if not (reason or "").strip():
        raise ValueError("A reason is required.")
    if issue_type == ISSUE_MEDICAL:
        if category not in MEDICAL_REFERRAL_CATEGORIES:
            raise ValueError(f"Invalid medical referral category: {category}")
        if not (doctor_name or "").strip():
            raise ValueError("Doctor name is required for medical referrals.")
    elif category not in DOCUMENT_ISSUE_CATEGORIES:
        raise ValueError(f"Invalid document issue category: {category}")


def record_outcome(
    s: Session,
    *,
    application_id: int,
    document_type_id: int,
    issue_type: str,
    category: str | None,
    reason: str,
    reviewer: User,
    specific_issues: Sequence[str] = (),
    doctor_name: str | None = None,
    clinic_address: str | None = None,
    finding_description: str | None = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> OutcomeResult:
    """
    Flag the slot's current upload (document issue or medical referral).

    Creates exactly one record in the current store with attempt_number = max + 1
    across both stores, and moves the upload to Referred.
    """
    _require_reviewer(reviewer)
    _validate_outcome(issue_type, category, reason, doctor_name)

    application = get_application_or_404(s, application_id)
    document_type = get_document_type_or_404(s, document_type_id)
    ensure_not_terminal(application)

    upload = current_upload(s, application_id, document_type_id, lock=True)
    if upload is None:
        raise NotFound(f"No upload in slot ({application_id}, {document_type_id}).")

    unresolved = reconciliation.unresolved_for(s, application_id, document_type_id)
    if unresolved:
        raise IntegrityViolation(
            f"Slot ({application_id}, {document_type_id}) already has an unresolved outcome "
            f"(attempt {unresolved[0].attempt_number}).",
            outcome_keys=[v.key for v in unresolved],
        )
    if upload.review_status == REVIEW_VERIFIED:
        raise TerminalStateViolation(f"Upload {upload.id} is already verified.", upload_id=upload.id)
    if upload.review_status != REVIEW_PENDING:
        raise IntegrityViolation(
            f"Upload {upload.id} is {upload.review_status} with no unresolved outcome.",
            upload_id=upload.id,
        )

    attempt = reconciliation.next_attempt_number(s, application_id, document_type_id)
    issues = [str(i).strip() for i in specific_issues if str(i).strip()]
    now = datetime.utcnow()
    row = DocumentReferralHistory(
        application_id=application_id,
        document_type_id=document_type_id,
        document_upload_id=upload.id,
        storage_key=upload.storage_key,
        original_filename=upload.original_filename,
        file_size=upload.size_bytes,
        file_type=upload.content_type,
        issue_type=issue_type,
        medical_referral_category=category if issue_type == ISSUE_MEDICAL else None,
        document_issue_category=category if issue_type == ISSUE_DOCUMENT else None,
        referral_reason=reason.strip(),
        specific_issues=issues,
        doctor_name=(doctor_name or "").strip() or None,
        clinic_address=(clinic_address or "").strip() or None,
        finding_description=(finding_description or "").strip() or None,
        referred_by_user_id=reviewer.id,
        referred_at=now,
        attempt_number=attempt,
        was_replaced=False,
        status=OUTCOME_PENDING,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:512] or None,
    )
    s.add(row)
    try:
        s.flush()
    except IntegrityError as e:
        logger.error("Concurrent outcome for slot app=%s doc_type=%s attempt=%s: %s", application_id, document_type_id, attempt, e)
        raise IntegrityViolation(
            f"Attempt {attempt} for slot ({application_id}, {document_type_id}) was recorded concurrently.",
        ) from e

    # Re-check right before the caller commits.
    unresolved_after = reconciliation.unresolved_for(s, application_id, document_type_id)
    if len(unresolved_after) != 1:
        logger.error(
            "Slot integrity after write: app=%s doc_type=%s unresolved=%s",
            application_id,
            document_type_id,
            [v.key for v in unresolved_after],
        )
        raise IntegrityViolation(
            f"Slot ({application_id}, {document_type_id}) has {len(unresolved_after)} unresolved outcomes.",
        )

    result = OutcomeResult(outcome=reconciliation.referral_view(row), upload=upload, max_attempts=max_attempts)

    upload.review_status = REVIEW_REFERRED
    upload.reviewed_by_user_id = reviewer.id
    upload.reviewed_at = now
    if issue_type == ISSUE_MEDICAL:
        upload.admin_remarks = f"Medical finding: please see {row.doctor_name} at {row.clinic_address or 'the designated clinic'}"
    else:
        upload.admin_remarks = row.referral_reason

    if result.max_attempts_reached:
        new_status = STATUS_ONSITE_VERIFICATION
    elif issue_type == ISSUE_MEDICAL:
        new_status = STATUS_MEDICAL_REFERRAL
    else:
        new_status = STATUS_NEEDS_REVISION
    set_status(
        s,
        application,
        new_status,
        user=reviewer,
        reason=f"{document_type.name}: attempt {attempt} {issue_type}",
    )

    record_event(
        s,
        actor=reviewer,
        action="document.refer",
        entity_type="DocumentUpload",
        entity_id=str(upload.id),
        reason=row.referral_reason,
        metadata={
            "application_id": application_id,
            "document_type": document_type.key,
            "issue_type": issue_type,
            "category": category,
            "attempt_number": attempt,
            "max_attempts_reached": result.max_attempts_reached,
        },
    )
    s.flush()
    logger.info(
        "Outcome recorded: app=%s doc_type=%s attempt=%s issue_type=%s reviewer=%s",
        application_id,
        document_type.key,
        attempt,
        issue_type,
        reviewer.id,
    )
    return result


def get_upload_or_404(s: Session, upload_id: int) -> DocumentUpload:
    upload = s.get(DocumentUpload, upload_id)
    if not upload:
        raise NotFound(f"Document {upload_id} not found.")
    return upload


def serialize_upload(upload: DocumentUpload) -> dict:
    return {
        "id": upload.id,
        "applicationId": upload.application_id,
        "documentTypeId": upload.document_type_id,
        "documentTypeName": upload.document_type.name if upload.document_type else None,
        "fileName": upload.original_filename,
        "contentType": upload.content_type,
        "sizeBytes": upload.size_bytes,
        "uploadedAt": upload.uploaded_at.isoformat() if upload.uploaded_at else None,
        "reviewStatus": upload.review_status,
        "adminRemarks": upload.admin_remarks,
        "reviewedAt": upload.reviewed_at.isoformat() if upload.reviewed_at else None,
        "isCurrent": upload.is_current,
        "supersededByUploadId": upload.superseded_by_upload_id,
    }


def slot_summary(s: Session, application_id: int, document_type_id: int) -> dict:
    upload = current_upload(s, application_id, document_type_id)
    latest = reconciliation.latest_for(s, application_id, document_type_id)
    return {
        "applicationId": application_id,
        "documentTypeId": document_type_id,
        "state": slot_state(s, application_id, document_type_id),
        "currentUpload": serialize_upload(upload) if upload else None,
        "latestOutcome": latest.to_dict() if latest else None,
    }
