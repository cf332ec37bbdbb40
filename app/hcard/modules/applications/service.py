"""
Applications service layer: the ownership store the document core consults.

Every lookup here reads the database; callers re-ask on each request so an
ownership or status change is seen immediately.
"""
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from app.hcard.audit import record_event
from app.hcard.errors import NotFound, TerminalStateViolation

from .models import Application, DocumentType

if TYPE_CHECKING:
    from app.hcard.models import User


STATUS_SUBMITTED = "Submitted"
STATUS_UNDER_REVIEW = "Under Review"
STATUS_NEEDS_REVISION = "Documents Need Revision"
STATUS_MEDICAL_REFERRAL = "Referred for Medical Management"
STATUS_ONSITE_VERIFICATION = "Onsite Verification Required"
STATUS_APPROVED = "Approved"
STATUS_REJECTED = "Rejected"
STATUS_CANCELLED = "Cancelled"

VALID_STATUSES = {
    STATUS_SUBMITTED,
    STATUS_UNDER_REVIEW,
    STATUS_NEEDS_REVISION,
    STATUS_MEDICAL_REFERRAL,
    STATUS_ONSITE_VERIFICATION,
    STATUS_APPROVED,
    STATUS_REJECTED,
    STATUS_CANCELLED,
}

# Once reached, no slot of the application accepts uploads or review outcomes.
TERMINAL_STATUSES = frozenset({STATUS_APPROVED, STATUS_REJECTED, STATUS_CANCELLED})

APPLICATION_TYPES = {"New", "Renew"}


def is_terminal(status: str | None) -> bool:
    return status in TERMINAL_STATUSES


def get_application_or_404(s: Session, application_id: int) -> Application:
    app_ = s.get(Application, application_id)
    if not app_:
        raise NotFound(f"Application {application_id} not found.")
    return app_


def get_document_type_or_404(s: Session, document_type_id: int) -> DocumentType:
    dt = s.get(DocumentType, document_type_id)
    if not dt:
        raise NotFound(f"Document type {document_type_id} not found.")
    return dt


def ensure_not_terminal(application: Application) -> None:
    if is_terminal(application.status):
        raise TerminalStateViolation(
            f"Application {application.id} is {application.status}; its documents are frozen.",
            application_id=application.id,
            status=application.status,
        )


def owner_of(s: Session, document_id: int) -> int | None:
    """Subject id owning the application a document upload belongs to."""
    from app.hcard.modules.documents.models import DocumentUpload

    row = (
        s.query(Application.user_id)
        .join(DocumentUpload, DocumentUpload.application_id == Application.id)
        .filter(DocumentUpload.id == document_id)
        .one_or_none()
    )
    return row[0] if row else None


def application_status(s: Session, document_id: int) -> str | None:
    from app.hcard.modules.documents.models import DocumentUpload

    row = (
        s.query(Application.status)
        .join(DocumentUpload, DocumentUpload.application_id == Application.id)
        .filter(DocumentUpload.id == document_id)
        .one_or_none()
    )
    return row[0] if row else None


def application_ids_for_user(s: Session, user_id: int) -> list[int]:
    return [r[0] for r in s.query(Application.id).filter(Application.user_id == user_id).order_by(Application.id).all()]


def create_application(
    s: Session,
    *,
    owner: User,
    application_type: str = "New",
    job_category: str | None = None,
) -> Application:
    """Create a new application owned by ``owner``."""
    if application_type not in APPLICATION_TYPES:
        raise ValueError(f"Invalid application type: {application_type}")

    app_ = Application(
        user_id=owner.id,
        application_type=application_type,
        job_category=job_category.strip() if job_category else None,
        status=STATUS_SUBMITTED,
    )
    s.add(app_)
    s.flush()

    record_event(
        s,
        actor=owner,
        action="application.create",
        entity_type="Application",
        entity_id=str(app_.id),
        metadata={"application_type": app_.application_type, "job_category": app_.job_category},
    )
    return app_


def set_status(
    s: Session,
    application: Application,
    new_status: str,
    *,
    user: User | None,
    reason: str | None = None,
) -> Application:
    """Move an application to ``new_status``. Terminal applications reject every change."""
    if new_status not in VALID_STATUSES:
        raise ValueError(f"Invalid status: {new_status}")
    ensure_not_terminal(application)

    old_status = application.status
    if old_status == new_status:
        return application

    application.status = new_status
    application.updated_at = datetime.utcnow()

    record_event(
        s,
        actor=user,
        action="application.status",
        entity_type="Application",
        entity_id=str(application.id),
        reason=reason,
        metadata={"from": old_status, "to": new_status},
    )
    return application


def serialize_application(application: Application) -> dict:
    return {
        "id": application.id,
        "userId": application.user_id,
        "applicationType": application.application_type,
        "jobCategory": application.job_category,
        "status": application.status,
        "isTerminal": is_terminal(application.status),
        "createdAt": application.created_at.isoformat() if application.created_at else None,
        "updatedAt": application.updated_at.isoformat() if application.updated_at else None,
    }
