from __future__ import annotations

import mimetypes
import time

from flask import Blueprint, current_app, g, jsonify, request, send_file
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.hcard.db import db_session
from app.hcard.errors import Expired, MalformedToken, NotFound, TokenError, Unauthorized
from app.hcard.models import User
from app.hcard.modules.documents.models import DocumentUpload
from app.hcard.modules.documents.service import get_upload_or_404
from app.hcard.rbac import current_user_or_401, require_login, require_permission
from app.hcard.storage import BlobNotFound, storage_from_config

from .access import can_access, issue_access_token, primary_role
from .models import (
    ACCESS_EXPIRED,
    ACCESS_INVALID_REQUEST,
    ACCESS_INVALID_SIGNATURE,
    ACCESS_NOT_FOUND,
    ACCESS_SUCCESS,
    ACCESS_UNAUTHORIZED,
)
from .service import access_statistics, log_access, logs_for_document, serialize_access_log
from .tokens import SECURE_DOCUMENT_PATH, TokenService

# JSON API, mounted under /api.
bp = Blueprint("document_access", __name__)
# Signed-link fetch path, mounted at the root so issued URLs stay short.
secure_bp = Blueprint("secure_document", __name__)

_SECURE_HEADERS = {
    "Cache-Control": "no-store, private",
    "Pragma": "no-cache",
    "X-Content-Type-Options": "nosniff",
    "Content-Security-Policy": "default-src 'none'; img-src 'self'; style-src 'unsafe-inline'; sandbox",
    "Referrer-Policy": "no-referrer",
}


def token_service() -> TokenService:
    return current_app.extensions["token_service"]


@bp.post("/documents/<int:document_id>/access-url")
@require_login
def access_url(document_id: int):
    s = db_session()
    u = current_user_or_401()
    issued = issue_access_token(s, token_service(), document_id=document_id, subject=u)
    return jsonify(issued.to_dict())


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _record_attempt(s: Session, started: float, **fields) -> None:
    try:
        log_access(
            s,
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
            referrer=request.referrer,
            response_time_ms=_elapsed_ms(started),
            **fields,
        )
        s.commit()
    except SQLAlchemyError:
        s.rollback()
        current_app.logger.exception("Could not write document access log (request_id=%s)", getattr(g, "request_id", None))


@secure_bp.get(SECURE_DOCUMENT_PATH)
def secure_document():
    """
    Serve a document's bytes for a valid signed link.

    Signature, expiry, existence and authorization are checked in that order,
    and each attempt is logged whatever the outcome.
    """
    started = time.monotonic()
    s = db_session()
    raw_document_id = request.args.get("documentId")

    try:
        claims = token_service().validate(request.query_string.decode("utf-8", "replace"))
    except TokenError as e:
        if isinstance(e, Expired):
            status = ACCESS_EXPIRED
        elif isinstance(e, MalformedToken):
            status = ACCESS_INVALID_REQUEST
        else:
            status = ACCESS_INVALID_SIGNATURE
        current_app.logger.warning(
            "Secure document refused: status=%s document=%s reason=%s request_id=%s",
            status,
            raw_document_id,
            e.message,
            getattr(g, "request_id", None),
        )
        _record_attempt(s, started, access_status=status, document_id=raw_document_id, error_message=e.message)
        raise

    subject = s.get(User, claims.subject_id)
    upload = s.get(DocumentUpload, claims.document_id)
    if upload is None:
        _record_attempt(
            s,
            started,
            access_status=ACCESS_NOT_FOUND,
            document_id=claims.document_id,
            user=subject,
            user_role=primary_role(subject),
            error_message="Unknown document",
        )
        raise NotFound("Document not found.")

    if not can_access(s, subject, upload):
        current_app.logger.warning(
            "Secure document re-authorization failed: document=%s subject=%s", claims.document_id, claims.subject_id
        )
        _record_attempt(
            s,
            started,
            access_status=ACCESS_UNAUTHORIZED,
            document_id=claims.document_id,
            user=subject,
            user_role=primary_role(subject),
            upload=upload,
            error_message="Subject no longer authorized",
        )
        raise Unauthorized("You are not allowed to view this document.")

    try:
        fobj = storage_from_config(current_app.config).open(upload.storage_key)
    except BlobNotFound:
        current_app.logger.error("Blob missing for document=%s key=%s", upload.id, upload.storage_key)
        _record_attempt(
            s,
            started,
            access_status=ACCESS_NOT_FOUND,
            document_id=upload.id,
            user=subject,
            user_role=primary_role(subject),
            upload=upload,
            error_message="Blob missing",
        )
        raise NotFound("Document not found.") from None

    _record_attempt(
        s,
        started,
        access_status=ACCESS_SUCCESS,
        document_id=upload.id,
        user=subject,
        user_role=primary_role(subject),
        upload=upload,
    )
    mimetype = mimetypes.guess_type(upload.original_filename)[0] or upload.content_type or "application/octet-stream"
    resp = send_file(
        fobj,
        mimetype=mimetype,
        as_attachment=False,
        download_name=upload.original_filename,
        max_age=0,
    )
    resp.headers.update(_SECURE_HEADERS)
    return resp


@bp.get("/documents/<int:document_id>/access-logs")
@require_permission("access_logs.view")
def access_logs(document_id: int):
    s = db_session()
    get_upload_or_404(s, document_id)
    try:
        limit = min(max(int(request.args.get("limit", 100)), 1), 500)
    except ValueError:
        return jsonify({"error": "invalid_request", "message": "limit must be an integer."}), 400
    rows = logs_for_document(s, document_id, limit=limit)
    return jsonify({"logs": [serialize_access_log(r) for r in rows]})


@bp.get("/document-access/stats")
@require_permission("access_logs.view")
def access_stats():
    s = db_session()
    try:
        days = min(max(int(request.args.get("days", 30)), 1), 365)
    except ValueError:
        return jsonify({"error": "invalid_request", "message": "days must be an integer."}), 400
    return jsonify(access_statistics(s, days=days))

