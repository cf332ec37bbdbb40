from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.hcard.db import db_session
from app.hcard.errors import Unauthorized
from app.hcard.rbac import current_user_or_401, require_login, require_permission, user_has_permission

from . import reconciliation

bp = Blueprint("referrals", __name__)


def _int_list(raw: str) -> list[int]:
    return [int(x) for x in raw.split(",") if x.strip()]


@bp.get("/referrals/counts")
@require_login
def counts():
    """
    Unresolved outcome counts.

    Without parameters: the caller's own applications. With ``user_id`` or
    ``application_ids`` (comma separated): requires referrals.view.
    """
    s = db_session()
    u = current_user_or_401()
    user_id = (request.args.get("user_id") or "").strip()
    application_ids = (request.args.get("application_ids") or "").strip()

    if not user_id and not application_ids:
        return jsonify(reconciliation.counts_for_subject(s, u.id).to_dict())

    if not user_has_permission(u, "referrals.view"):
        raise Unauthorized("Missing permission: referrals.view")
    try:
        if application_ids:
            result = reconciliation.counts_for(s, _int_list(application_ids))
        else:
            result = reconciliation.counts_for_subject(s, int(user_id))
    except ValueError:
        return jsonify({"error": "invalid_request", "message": "Ids must be integers."}), 400
    return jsonify(result.to_dict())


@bp.get("/referrals/resubmissions")
@require_permission("referrals.view")
def resubmissions():
    s = db_session()
    try:
        limit = min(max(int(request.args.get("limit", 50)), 1), 200)
    except ValueError:
        return jsonify({"error": "invalid_request", "message": "limit must be an integer."}), 400
    items = reconciliation.resubmission_queue(s, limit=limit)
    return jsonify({"resubmissions": [i.to_dict() for i in items]})
