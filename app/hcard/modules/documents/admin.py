from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from app.hcard.db import db_session
from app.hcard.errors import Unauthorized
from app.hcard.models import User
from app.hcard.modules.applications.models import Application
from app.hcard.modules.applications.service import get_application_or_404, get_document_type_or_404
from app.hcard.modules.referrals import reconciliation
from app.hcard.rbac import REVIEW_PERMISSION, current_user_or_401, require_login, require_permission, user_has_permission
from app.hcard.storage import storage_from_config

from .service import (
    get_upload_or_404,
    record_outcome,
    serialize_upload,
    slot_summary,
    submit_upload,
    uploads_for_slot,
    verify_upload,
)

bp = Blueprint("documents", __name__)


def _ensure_can_read(u: User, application: Application) -> None:
    if application.user_id != u.id and not user_has_permission(u, REVIEW_PERMISSION):
        raise Unauthorized("Not your application.")


@bp.post("/applications/<int:application_id>/documents/<int:document_type_id>")
@require_permission("documents.upload")
def upload_document(application_id: int, document_type_id: int):
    s = db_session()
    u = current_user_or_401()
    application = get_application_or_404(s, application_id)
    document_type = get_document_type_or_404(s, document_type_id)
    if application.user_id != u.id:
        raise Unauthorized("Only the applicant can upload documents for this application.")

    f = request.files.get("file")
    if not f or not f.filename:
        return jsonify({"error": "invalid_request", "message": "A file is required."}), 400

    try:
        upload = submit_upload(
            s,
            application=application,
            document_type=document_type,
            data=f.read(),
            filename=f.filename,
            content_type=f.mimetype,
            user=u,
            storage=storage_from_config(current_app.config),
        )
    except ValueError as e:
        s.rollback()
        return jsonify({"error": "invalid_request", "message": str(e)}), 400
    s.commit()
    return jsonify({"upload": serialize_upload(upload)}), 201


@bp.post("/uploads/<int:upload_id>/verify")
@require_permission(REVIEW_PERMISSION)
def verify(upload_id: int):
    s = db_session()
    u = current_user_or_401()
    upload = get_upload_or_404(s, upload_id)
    payload = request.get_json(silent=True) or request.form
    try:
        verify_upload(s, upload, reviewer=u, remarks=payload.get("remarks"))
    except ValueError as e:
        return jsonify({"error": "invalid_request", "message": str(e)}), 400
    s.commit()
    return jsonify({"upload": serialize_upload(upload)})


def _text_field(payload: dict, name: str) -> str | None:
    value = payload.get(name)
    if value is not None and not isinstance(value, str):
        raise ValueError(f"{name} must be a string.")
    return value


@bp.post("/applications/<int:application_id>/documents/<int:document_type_id>/outcomes")
@require_permission(REVIEW_PERMISSION)
def new_outcome(application_id: int, document_type_id: int):
    s = db_session()
    u = current_user_or_401()
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        payload = {}
    issues = payload.get("specificIssues") or []
    if not isinstance(issues, list) or not all(isinstance(i, str) for i in issues):
        return jsonify({"error": "invalid_request", "message": "specificIssues must be a list of strings."}), 400
    try:
        result = record_outcome(
            s,
            application_id=application_id,
            document_type_id=document_type_id,
            issue_type=(_text_field(payload, "issueType") or "").strip(),
            category=_text_field(payload, "category"),
            reason=_text_field(payload, "reason") or "",
            reviewer=u,
            specific_issues=issues,
            doctor_name=_text_field(payload, "doctorName"),
            clinic_address=_text_field(payload, "clinicAddress"),
            finding_description=_text_field(payload, "findingDescription"),
            max_attempts=current_app.config.get("MAX_DOCUMENT_ATTEMPTS", 5),
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
        )
    except ValueError as e:
        s.rollback()
        return jsonify({"error": "invalid_request", "message": str(e)}), 400
    s.commit()
    return jsonify(result.to_dict()), 201


@bp.get("/applications/<int:application_id>/documents/<int:document_type_id>/history")
@require_login
def history(application_id: int, document_type_id: int):
    s = db_session()
    u = current_user_or_401()
    application = get_application_or_404(s, application_id)
    get_document_type_or_404(s, document_type_id)
    _ensure_can_read(u, application)
    views = reconciliation.history_for(s, application_id, document_type_id)
    return jsonify({"history": [v.to_dict() for v in views]})


@bp.get("/applications/<int:application_id>/documents/<int:document_type_id>")
@require_login
def slot_detail(application_id: int, document_type_id: int):
    s = db_session()
    u = current_user_or_401()
    application = get_application_or_404(s, application_id)
    get_document_type_or_404(s, document_type_id)
    _ensure_can_read(u, application)
    summary = slot_summary(s, application_id, document_type_id)
    summary["uploads"] = [serialize_upload(x) for x in uploads_for_slot(s, application_id, document_type_id)]
    return jsonify(summary)
