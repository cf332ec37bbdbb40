from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.hcard.db import db_session
from app.hcard.errors import Unauthorized
from app.hcard.modules.applications.models import Application
from app.hcard.modules.applications.service import (
    create_application,
    get_application_or_404,
    serialize_application,
    set_status,
)
from app.hcard.modules.referrals import reconciliation
from app.hcard.rbac import REVIEW_PERMISSION, current_user_or_401, require_login, require_permission, user_has_permission

bp = Blueprint("applications", __name__)


@bp.get("/applications")
@require_login
def list_applications():
    s = db_session()
    u = current_user_or_401()
    q = s.query(Application)
    if not user_has_permission(u, REVIEW_PERMISSION):
        q = q.filter(Application.user_id == u.id)
    status = (request.args.get("status") or "").strip()
    if status:
        q = q.filter(Application.status == status)
    apps = q.order_by(Application.id.desc()).limit(200).all()
    return jsonify({"applications": [serialize_application(a) for a in apps]})


@bp.post("/applications")
@require_permission("applications.create")
def new_application():
    s = db_session()
    u = current_user_or_401()
    payload = request.get_json(silent=True) or request.form
    try:
        a = create_application(
            s,
            owner=u,
            application_type=(payload.get("applicationType") or "New").strip(),
            job_category=payload.get("jobCategory"),
        )
    except ValueError as e:
        return jsonify({"error": "invalid_request", "message": str(e)}), 400
    s.commit()
    return jsonify({"application": serialize_application(a)}), 201


@bp.get("/applications/<int:application_id>")
@require_login
def application_detail(application_id: int):
    s = db_session()
    u = current_user_or_401()
    a = get_application_or_404(s, application_id)
    if a.user_id != u.id and not user_has_permission(u, REVIEW_PERMISSION):
        raise Unauthorized("Not your application.")
    history = reconciliation.history_for_application(s, a.id)
    return jsonify({"application": serialize_application(a), "referralHistory": [v.to_dict() for v in history]})


@bp.post("/applications/<int:application_id>/status")
@require_permission("applications.manage")
def change_status(application_id: int):
    s = db_session()
    u = current_user_or_401()
    a = get_application_or_404(s, application_id)
    payload = request.get_json(silent=True) or request.form
    new_status = (payload.get("status") or "").strip()
    reason = (payload.get("reason") or "").strip()
    if not reason:
        return jsonify({"error": "invalid_request", "message": "Status change requires a reason."}), 400
    try:
        set_status(s, a, new_status, user=u, reason=reason)
    except ValueError as e:
        return jsonify({"error": "invalid_request", "message": str(e)}), 400
    s.commit()
    return jsonify({"application": serialize_application(a)})
