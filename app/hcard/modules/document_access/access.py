"""
Authorization check and token issuance for document reads.

``can_access`` is evaluated twice per read: before a token is issued and again
when the bytes are served. Both calls go to the database.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.hcard.audit import record_event
from app.hcard.errors import Unauthorized
from app.hcard.modules.applications.service import application_status, owner_of
from app.hcard.modules.documents.models import DocumentUpload
from app.hcard.modules.documents.service import get_upload_or_404
from app.hcard.rbac import REVIEW_PERMISSION, user_has_permission

from .tokens import IssuedToken, TokenService

if TYPE_CHECKING:
    from app.hcard.models import User

logger = logging.getLogger(__name__)


def can_access(s: Session, user: User | None, upload: DocumentUpload) -> bool:
    if user is None or not user.is_active:
        return False
    if user_has_permission(user, REVIEW_PERMISSION):
        return True
    return owner_of(s, upload.id) == user.id


def primary_role(user: User | None) -> str | None:
    if user is None:
        return None
    keys = user.role_keys
    for key in ("admin", "inspector", "applicant"):
        if key in keys:
            return key
    return keys[0] if keys else None


def issue_access_token(
    s: Session,
    tokens: TokenService,
    *,
    document_id: int,
    subject: User,
) -> IssuedToken:
    """
    Issue a signed link for one document. Raises NotFound or Unauthorized.

    Recording the issuance is best effort: a failure there is logged and the
    token is still returned.
    """
    upload = get_upload_or_404(s, document_id)
    if not can_access(s, subject, upload):
        logger.warning("Access URL refused: document=%s subject=%s", document_id, subject.id)
        raise Unauthorized("You are not allowed to view this document.")

    issued = tokens.issue(upload.id, subject.id)

    try:
        record_event(
            s,
            actor=subject,
            action="document.access_url.issue",
            entity_type="DocumentUpload",
            entity_id=str(upload.id),
            metadata={
                "role": primary_role(subject),
                "expires_at": issued.expires_at,
                "application_status": application_status(s, upload.id),
            },
        )
        s.commit()
    except SQLAlchemyError:
        s.rollback()
        logger.exception("Could not record access URL issuance for document=%s", upload.id)
    logger.info(
        "Access URL issued: document=%s subject=%s role=%s expires_at=%s",
        upload.id,
        subject.id,
        primary_role(subject),
        issued.expires_at,
    )
    return issued
