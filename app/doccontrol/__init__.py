import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request

from app.doccontrol.auth import bp as auth_bp, load_current_user
from app.doccontrol.config import load_config
from app.doccontrol.db import init_db, teardown_db_session
from app.doccontrol.modules.document_control.admin import bp as doc_control_bp
from app.doccontrol.routes import bp as routes_bp

logger = logging.getLogger(__name__)


def _error(code: str, message: str, status: int):
    return jsonify({"ok": False, "error": {"code": code, "message": message}}), status


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
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    if hasattr(os, "register_at_fork"):
        def _after_fork_child():
            engine = app.extensions.get("sqlalchemy_engine")
            if engine:
                engine.dispose()
                app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

        os.register_at_fork(after_in_child=_after_fork_child)

    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))
    if not app.config.get("VIRUSTOTAL_API_KEY"):
        app.logger.warning("VIRUSTOTAL_API_KEY not set; uploads will be stored unscanned")

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(doc_control_bp, url_prefix="/api/document-control")

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(401)
    def _err_401(e):  # type: ignore[no-redef]
        return _error("not_authenticated", "Login required", 401)

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        return _error("forbidden", f"Missing permission {missing}" if missing else "Forbidden", 403)

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return _error("not_found", f"No route for {request.path}", 404)

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        return _error("too_large", "File too large. Maximum size is 50MB.", 413)

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return _error("internal_error", "Internal server error", 500)

    logger.info("create_app() complete; app ready to serve")
    return app
