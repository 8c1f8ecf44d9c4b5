from flask import Blueprint, current_app, g, redirect

from app.tracker.backend import BackendError
from app.tracker.extensions import caller_scope, get_ids
from app.tracker.feedback import list_feedback, list_projects

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    # The guard already sent anonymous callers to /login.
    return redirect("/dashboard")


def _dashboard_model(view: str) -> dict:
    identity = g.identity
    model: dict = {"view": view, "user": identity.to_dict(), "items": [], "projects": []}
    scope, ids = caller_scope(), get_ids()
    try:
        model["items"] = [item.to_dict() for item in list_feedback(scope, ids, identity)]
        model["projects"] = [p.to_dict() for p in list_projects(scope, ids)]
    except BackendError as e:
        current_app.logger.warning("Dashboard fetch failed (user=%s): %s", identity.id, e)
        model["notice"] = "Failed to load feedback. Please try again."
    return model


@bp.get("/dashboard")
def dashboard():
    """Role-branching landing page."""
    return _dashboard_model("developer" if g.identity.is_developer else "user")


@bp.get("/dashboard/developer")
def developer_dashboard():
    return _dashboard_model("developer")


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for k8s/DO probes. No backend access, minimal overhead.
    """
    return "ok", 200
