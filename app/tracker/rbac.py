"""
Authorization for API routes. The page guard skips /api/*, so each API view
declares what it needs here and gets 401/403 instead of a redirect.
"""
from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g

from app.tracker.domain import Identity


def is_developer(identity: Identity | None) -> bool:
    return bool(identity and identity.is_developer)


def require_identity(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        if getattr(g, "identity", None) is None:
            abort(401)
        return fn(*args, **kwargs)

    return wrapped


def require_developer(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        identity: Identity | None = getattr(g, "identity", None)
        if identity is None:
            abort(401)
        # Authenticated but not a developer -> 403
        if not is_developer(identity):
            g.missing_role = "developer"
            abort(403)
        return fn(*args, **kwargs)

    return wrapped
