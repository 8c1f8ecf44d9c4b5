"""
Per-request access guard for page routes.

`decide` is a pure function of (path, identity); the Flask hook recomputes it
on every request, so a logout or role change takes effect immediately.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from flask import Flask, current_app, g, redirect, request

from app.tracker.domain import Identity

LOGIN_PATH = "/login"
LANDING_PATH = "/dashboard"
PUBLIC_ROUTES = frozenset({"/login", "/register"})
DEVELOPER_PREFIX = "/dashboard/developer"

# Paths the guard never sees: API, static assets, health probes, images.
_UNGUARDED = re.compile(
    r"^/(?:api(?:/|$)|static/|health$|healthz$|favicon\.ico$|.*\.(?:svg|png|jpg|jpeg|gif|webp)$)"
)


class RouteClass(str, Enum):
    PUBLIC = "public"
    DEVELOPER_ONLY = "developer_only"
    GENERAL = "general"


@dataclass(frozen=True)
class Allow:
    pass


@dataclass(frozen=True)
class RedirectTo:
    location: str


Decision = Allow | RedirectTo


def is_guarded(path: str) -> bool:
    return not _UNGUARDED.match(path or "/")


def classify(path: str) -> RouteClass:
    if path in PUBLIC_ROUTES:
        return RouteClass.PUBLIC
    if path.startswith(DEVELOPER_PREFIX):
        return RouteClass.DEVELOPER_ONLY
    return RouteClass.GENERAL


def decide(path: str, identity: Identity | None) -> Decision:
    route = classify(path)
    if identity is None and route is not RouteClass.PUBLIC:
        return RedirectTo(LOGIN_PATH)
    if identity is not None and route is RouteClass.PUBLIC:
        return RedirectTo(LANDING_PATH)
    # Wrong role is a downgrade to the landing page, not an auth failure.
    if route is RouteClass.DEVELOPER_ONLY and (identity is None or not identity.is_developer):
        return RedirectTo(LANDING_PATH)
    return Allow()


def install_guard(app: Flask) -> None:
    """Register the guard after identity loading (before_request hooks run in order)."""

    @app.before_request
    def _access_guard():
        path = request.path
        if not is_guarded(path):
            return None
        identity: Identity | None = getattr(g, "identity", None)
        decision = decide(path, identity)
        if isinstance(decision, RedirectTo):
            current_app.logger.debug(
                "Guard redirect %s -> %s (user=%s request_id=%s)",
                path,
                decision.location,
                identity.id if identity else None,
                getattr(g, "request_id", None),
            )
            return redirect(decision.location, code=302)
        return None
