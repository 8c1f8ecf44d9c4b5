import logging

from flask import Flask, g, jsonify, request
from dotenv import load_dotenv
from sqlalchemy import inspect as sa_inspect

from app.tracker.backend import Backend, backend_from_config
from app.tracker.config import load_config
from app.tracker.db import init_db
from app.tracker.guard import install_guard
from app.tracker.routes import bp as routes_bp
from app.tracker.auth import bp as auth_bp, load_current_identity
from app.tracker.api import bp as api_bp
from app.tracker.sessions import SessionResolver


def create_app(backend: Backend | None = None) -> Flask:
    """
    Build the app. `backend` replaces the one described by config (tests pass
    fakes or a prepared local backend here).
    """
    load_dotenv()
    app = Flask(__name__, static_folder="static")
    app.config.from_mapping(load_config())

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if app.config.get("BACKEND") == "appwrite":
            for key in ("APPWRITE_ENDPOINT", "APPWRITE_PROJECT_ID", "APPWRITE_API_KEY"):
                if not app.config.get(key):
                    raise RuntimeError(f"{key} is required in production.")
        elif str(app.config.get("DATABASE_URL") or "").startswith("sqlite"):
            app.logger.warning("Self-hosted backend on sqlite in production; use Postgres for multi-worker deployments.")

    if backend is None:
        if app.config.get("BACKEND") == "local":
            init_db(app)
            _run_schema_health_check(app)
        backend = backend_from_config(app.config, sessionmaker=app.extensions.get("sqlalchemy_sessionmaker"))
    app.extensions["tracker_backend"] = backend
    app.extensions["tracker_resolver"] = SessionResolver(backend, app.config.get("DEVELOPERS_TEAM_ID"))

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(api_bp, url_prefix="/api")

    # Identity first, then the guard that reads it.
    app.before_request(load_current_identity)
    install_guard(app)

    @app.errorhandler(401)
    def _err_401(e):  # type: ignore[no-redef]
        return jsonify(error="Authentication required."), 401

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_role", None)
        if missing:
            app.logger.warning("Forbidden: missing_role=%s request_id=%s", missing, getattr(g, "request_id", None))
        return jsonify(error="Forbidden.", missing_role=missing), 403

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return jsonify(error="Not found."), 404

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        limit_mb = int(app.config.get("MAX_ATTACHMENT_BYTES") or 0) / (1024 * 1024)
        return jsonify(errors=[f"File too large. Please select an image smaller than {limit_mb:g}MB."]), 413

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s path=%s)", getattr(g, "request_id", None), request.path)
        return jsonify(error="Internal server error."), 500

    logging.getLogger(__name__).info("create_app() complete; backend=%s", type(backend).__name__)

    return app


def _run_schema_health_check(app: Flask) -> None:
    """Log loudly when the self-hosted backend's tables are missing."""
    engine = app.extensions["sqlalchemy_engine"]
    try:
        insp = sa_inspect(engine)
        missing = [
            t for t in ("accounts", "teams", "team_memberships", "auth_sessions", "projects", "feedback_items")
            if not insp.has_table(t)
        ]
    except Exception as e:
        app.logger.exception("Schema health check failed: %s", e)
        return
    if missing:
        app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))
