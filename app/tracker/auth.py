from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, Response, current_app, g, jsonify, redirect, request

from app.tracker.backend import BackendError
from app.tracker.domain import SessionGrant
from app.tracker.extensions import caller_scope, current_credential, get_backend, get_resolver

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def _payload() -> dict:
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict()


def _safe_next(nxt: str) -> str:
    # Only local paths, to avoid open redirects.
    if nxt.startswith("/") and not nxt.startswith("//"):
        return nxt
    return "/dashboard"


def set_credential_cookie(resp: Response, grant: SessionGrant) -> None:
    resp.set_cookie(
        current_app.config["CREDENTIAL_COOKIE_NAME"],
        grant.secret,
        expires=grant.expires_at,
        path="/",
        secure=bool(current_app.config.get("CREDENTIAL_COOKIE_SECURE", True)),
        httponly=True,
        samesite="Strict",
    )


def clear_credential_cookie(resp: Response) -> None:
    resp.delete_cookie(
        current_app.config["CREDENTIAL_COOKIE_NAME"],
        path="/",
        secure=bool(current_app.config.get("CREDENTIAL_COOKIE_SECURE", True)),
        httponly=True,
        samesite="Strict",
    )


def load_current_identity() -> None:
    """
    Resolves g.identity from the credential cookie.
    Also assigns a simple per-request request_id (for log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith("/static/") or request.path in ("/health", "/healthz"):
        g.identity = None
        return
    g.identity = get_resolver().resolve(current_credential())


def _start_session(email: str, password: str) -> SessionGrant:
    return get_backend().privileged().account.create_email_password_session(email, password)


@bp.get("/login")
def login_get():
    nxt = (request.args.get("next") or "").strip()
    return {"page": "login", "next": nxt}


@bp.post("/login")
def login_post():
    data = _payload()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    nxt = (data.get("next") or "").strip()
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        return jsonify(error="Too many login attempts. Please wait 5 minutes."), 429

    _record_attempt(ip)

    if not email or not password:
        return jsonify(error="Email and password are required."), 400

    try:
        grant = _start_session(email, password)
    except BackendError as e:
        if e.status in (400, 401, 404):
            current_app.logger.info("Login failed (email=%s request_id=%s)", email, getattr(g, "request_id", None))
            return jsonify(error="Invalid credentials."), 401
        current_app.logger.error("Login backend error (email=%s): %s", email, e)
        return jsonify(error="Login is temporarily unavailable. Please try again."), 503

    _login_attempts[ip].clear()
    current_app.logger.info("Login ok (email=%s request_id=%s)", email, getattr(g, "request_id", None))
    resp = redirect(_safe_next(nxt))
    set_credential_cookie(resp, grant)
    return resp


@bp.get("/register")
def register_get():
    return {"page": "register"}


@bp.post("/register")
def register_post():
    data = _payload()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    name = (data.get("name") or "").strip()

    errors = []
    if not email or "@" not in email:
        errors.append("A valid email is required.")
    if len(password) < 8:
        errors.append("Password must be at least 8 characters.")
    if not name:
        errors.append("Name is required.")
    if errors:
        return jsonify(errors=errors), 400

    backend = get_backend()
    try:
        backend.privileged().account.create(email=email, password=password, name=name)
        grant = _start_session(email, password)
    except BackendError as e:
        if e.status == 409:
            return jsonify(errors=["An account with this email already exists."]), 409
        if e.status == 400:
            return jsonify(errors=[str(e)]), 400
        current_app.logger.error("Registration backend error (email=%s): %s", email, e)
        return jsonify(errors=["Registration is temporarily unavailable. Please try again."]), 503

    current_app.logger.info("Registered account (email=%s)", email)
    resp = redirect("/dashboard")
    set_credential_cookie(resp, grant)
    return resp


@bp.route("/logout", methods=["GET", "POST"])
def logout():
    identity = getattr(g, "identity", None)
    if identity is not None:
        try:
            caller_scope().account.delete_session("current")
        except BackendError as e:
            # The cookie goes regardless; an orphaned backend session expires on its own.
            current_app.logger.warning("Logout: backend session delete failed for %s: %s", identity.id, e)
    resp = redirect("/login")
    clear_credential_cookie(resp)
    return resp
