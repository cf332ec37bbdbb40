from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import func
from sqlalchemy.orm import Session

from .models import ACCESS_STATUSES, ACCESS_SUCCESS, METHOD_SIGNED_URL, DocumentAccessLog

if TYPE_CHECKING:
    from app.hcard.models import User
    from app.hcard.modules.documents.models import DocumentUpload

logger = logging.getLogger(__name__)


def log_access(
    s: Session,
    *,
    access_status: str,
    document_id: str | int | None,
    user: User | None = None,
    user_role: str | None = None,
    upload: DocumentUpload | None = None,
    error_message: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    referrer: str | None = None,
    response_time_ms: int | None = None,
) -> DocumentAccessLog:
    if access_status not in ACCESS_STATUSES:
        raise ValueError(f"Invalid access status: {access_status}")
    row = DocumentAccessLog(
        document_id=str(document_id)[:64] if document_id is not None else None,
        application_id=upload.application_id if upload else None,
        user_id=user.id if user else None,
        user_email=user.email if user else None,
        user_role=user_role,
        access_status=access_status,
        access_method=METHOD_SIGNED_URL,
        error_message=error_message,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:512] or None,
        referrer=(referrer or "")[:512] or None,
        response_time_ms=response_time_ms,
        document_type=upload.document_type.name if upload and upload.document_type else None,
        file_name=upload.original_filename if upload else None,
        accessed_at=datetime.utcnow(),
    )
    s.add(row)
    return row


def logs_for_document(s: Session, document_id: int, *, limit: int = 100) -> list[DocumentAccessLog]:
    return (
        s.query(DocumentAccessLog)
        .filter(DocumentAccessLog.document_id == str(document_id))
        .order_by(DocumentAccessLog.accessed_at.desc(), DocumentAccessLog.id.desc())
        .limit(limit)
        .all()
    )


def access_statistics(s: Session, *, days: int = 30) -> dict:
    """Counts per access status over the last ``days`` days, plus distinct documents and users."""
    since = datetime.utcnow() - timedelta(days=days)
    by_status = {status: 0 for status in ACCESS_STATUSES}
    rows = (
        s.query(DocumentAccessLog.access_status, func.count(DocumentAccessLog.id))
        .filter(DocumentAccessLog.accessed_at >= since)
        .group_by(DocumentAccessLog.access_status)
        .all()
    )
    for status, count in rows:
        by_status[status] = int(count)

    total = sum(by_status.values())
    unique_documents = (
        s.query(func.count(func.distinct(DocumentAccessLog.document_id)))
        .filter(DocumentAccessLog.accessed_at >= since)
        .scalar()
    )
    unique_users = (
        s.query(func.count(func.distinct(DocumentAccessLog.user_id)))
        .filter(DocumentAccessLog.accessed_at >= since, DocumentAccessLog.user_id.isnot(None))
        .scalar()
    )
    return {
        "days": days,
        "total": total,
        "successful": by_status[ACCESS_SUCCESS],
        "failed": total - by_status[ACCESS_SUCCESS],
        "byStatus": by_status,
        "uniqueDocuments": int(unique_documents or 0),
        "uniqueUsers": int(unique_users or 0),
    }


def serialize_access_log(row: DocumentAccessLog) -> dict:
    return {
        "id": row.id,
        "documentId": row.document_id,
        "applicationId": row.application_id,
        "userId": row.user_id,
        "userEmail": row.user_email,
        "userRole": row.user_role,
        "accessStatus": row.access_status,
        "accessMethod": row.access_method,
        "errorMessage": row.error_message,
        "ipAddress": row.ip_address,
        "responseTimeMs": row.response_time_ms,
        "documentType": row.document_type,
        "fileName": row.file_name,
        "accessedAt": row.accessed_at.isoformat() if row.accessed_at else None,
    }
