from __future__ import annotations

from flask import current_app, g, request

from app.tracker.backend import Backend, BackendScope, CollectionIds
from app.tracker.sessions import SessionResolver


def get_backend() -> Backend:
    return current_app.extensions["tracker_backend"]


def get_resolver() -> SessionResolver:
    return current_app.extensions["tracker_resolver"]


def get_ids() -> CollectionIds:
    return get_backend().ids


def current_credential() -> str | None:
    return request.cookies.get(current_app.config["CREDENTIAL_COOKIE_NAME"]) or None


def caller_scope() -> BackendScope:
    """Backend handle acting as the signed-in caller (request-scoped)."""
    scope = getattr(g, "caller_scope", None)
    if scope is None:
        scope = get_backend().for_session(current_credential() or "")
        g.caller_scope = scope
    return scope
