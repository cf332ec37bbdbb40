import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request
from sqlalchemy import inspect as sa_inspect

from app.hcard.auth import bp as auth_bp, load_current_user
from app.hcard.config import load_config
from app.hcard.db import init_db, teardown_db_session
from app.hcard.errors import ConfigurationError, HcardError, IntegrityViolation, TokenError
from app.hcard.modules.applications.admin import bp as applications_bp
from app.hcard.modules.document_access.admin import bp as document_access_bp, secure_bp
from app.hcard.modules.document_access.signing import load_signing_config
from app.hcard.modules.document_access.tokens import TokenService
from app.hcard.modules.documents.admin import bp as documents_bp
from app.hcard.modules.referrals.admin import bp as referrals_bp
from app.hcard.routes import bp as routes_bp

logger = logging.getLogger(__name__)

# Tables the running code expects; a missing one means `alembic upgrade head` was skipped.
_EXPECTED_TABLES = (
    "users",
    "audit_events",
    "applications",
    "document_types",
    "document_uploads",
    "document_rejection_history",
    "document_referral_history",
    "document_access_logs",
)


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise ConfigurationError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise ConfigurationError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise ConfigurationError("SECRET_KEY must be set to a strong value in production (not default).")

    # Required in every environment: no secret, no signed links.
    signing = load_signing_config(app.config)
    app.extensions["token_service"] = TokenService(signing)

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):

            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [k for k in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY") if not app.config.get(k)]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(applications_bp, url_prefix="/api")
    app.register_blueprint(documents_bp, url_prefix="/api")
    app.register_blueprint(referrals_bp, url_prefix="/api")
    app.register_blueprint(document_access_bp, url_prefix="/api")
    app.register_blueprint(secure_bp)

    def _load_user_wrapper():
        if request.path.startswith(("/health", "/healthz")):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    # Schema health: detect drift between code expectations and the DB.
    app.config.setdefault("_schema_health_ok", True)
    app.config.setdefault("_schema_health_missing", [])

    def _run_schema_health_check() -> None:
        missing: list[str] = []
        try:
            insp = sa_inspect(app.extensions["sqlalchemy_engine"])
            missing = [t for t in _EXPECTED_TABLES if not insp.has_table(t)]
        except Exception as e:
            app.logger.exception("Schema health check failed: %s", e)
        if missing:
            app.config["_schema_health_missing"] = missing
            app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))
        app.config["_schema_health_ok"] = not missing

    _run_schema_health_check()

    @app.errorhandler(HcardError)
    def _err_hcard(e: HcardError):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        if isinstance(e, IntegrityViolation):
            app.logger.error("Integrity violation (request_id=%s): %s details=%s", rid, e.message, e.details)
        elif isinstance(e, TokenError):
            app.logger.warning("Token rejected (request_id=%s): %s %s", rid, type(e).__name__, e.message)
        elif e.status_code == 403:
            missing = getattr(g, "missing_permission", None)
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, rid)
        else:
            app.logger.info("%s (request_id=%s): %s", type(e).__name__, rid, e.message)
        return jsonify(e.public_body()), e.status_code

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return jsonify({"error": "not_found", "message": "Not found."}), 404

    @app.errorhandler(405)
    def _err_405(e):  # type: ignore[no-redef]
        return jsonify({"error": "method_not_allowed", "message": "Method not allowed."}), 405

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        return jsonify({"error": "file_too_large", "message": "File too large. Maximum size is 10MB."}), 413

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"error": "internal_error", "message": "Internal server error."}), 500

    logger.info("create_app() complete; app ready to serve")
    return app
