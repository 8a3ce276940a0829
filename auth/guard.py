"""
auth/guard.py -- Route classification and redirect decisions for page routes.

Pure functions, no I/O: given a path and whether the caller holds a valid
session, decide whether to let the request through or where to send it.
The HTTP middleware in api/main.py supplies the session check and turns the
decision into a response.

Route classes:
  PROTECTED  -- must be authenticated (/dashboard and everything under it)
  AUTH_ONLY  -- must NOT be authenticated (/login, /signup, ...). The root
                path "/" is auth-only by exact match: visitors see the
                landing page, signed-in users go straight to the dashboard.
  PUBLIC     -- no auth requirement either way (including every path that
                is not listed, e.g. /api/*; API routes do their own checks)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from urllib.parse import quote


class RouteClass(str, Enum):
    PUBLIC = "public"
    AUTH_ONLY = "auth_only"
    PROTECTED = "protected"


@dataclass(frozen=True)
class RouteConfig:
    protected: tuple[str, ...] = ("/dashboard",)
    auth_only: tuple[str, ...] = ("/login", "/signup", "/forgot-password", "/reset-password")
    public: tuple[str, ...] = ("/email-verification", "/landing")
    authenticated_redirect: str = "/dashboard"
    unauthenticated_redirect: str = "/login"


DEFAULT_ROUTES = RouteConfig()


@dataclass(frozen=True)
class GuardDecision:
    """allow=True means pass the request through unchanged."""

    allow: bool
    location: str | None = None


def _normalize(path: str) -> str:
    return path.rstrip("/")


def matches_routes(path: str, routes: tuple[str, ...]) -> bool:
    """True if path equals one of routes or sits below it.

    Trailing slashes are ignored, and prefix matching is segment-aware:
    /dashboard/profile matches /dashboard, /dashboards does not.
    """
    normalized = _normalize(path)
    for route in routes:
        base = _normalize(route)
        if normalized == base or normalized.startswith(base + "/"):
            return True
    return False


def classify_route(path: str, config: RouteConfig = DEFAULT_ROUTES) -> RouteClass:
    if path == "/":
        return RouteClass.AUTH_ONLY
    if matches_routes(path, config.protected):
        return RouteClass.PROTECTED
    if matches_routes(path, config.auth_only):
        return RouteClass.AUTH_ONLY
    # Listed public routes and unlisted paths are treated alike.
    return RouteClass.PUBLIC


def decide(
    route_class: RouteClass,
    authenticated: bool,
    path: str = "",
    config: RouteConfig = DEFAULT_ROUTES,
) -> GuardDecision:
    """Map (route class, session validity) to allow or redirect.

    The login redirect carries next=<path> so the login form can return the
    user afterwards. Only the request path is emitted, never a full URL, so
    next can not point off-site.
    """
    if route_class is RouteClass.PROTECTED and not authenticated:
        location = config.unauthenticated_redirect
        if path.startswith("/") and not path.startswith("//"):
            location = f"{location}?next={quote(path, safe='/')}"
        return GuardDecision(allow=False, location=location)
    if route_class is RouteClass.AUTH_ONLY and authenticated:
        return GuardDecision(allow=False, location=config.authenticated_redirect)
    return GuardDecision(allow=True)


def safe_next(next_url: str | None, default: str = DEFAULT_ROUTES.authenticated_redirect) -> str:
    """Validate a post-login redirect target. Only relative paths pass. [C2]

    Rejects absolute URLs and protocol-relative ones (//attacker.com, and
    /\\attacker.com, which browsers read the same way).
    """
    if next_url and next_url.startswith("/") and not next_url.startswith(("//", "/\\")):
        return next_url
    return default


def has_traversal_segment(path: str) -> bool:
    """True if any path segment is '..' (literal or percent-encoded)."""
    lowered = path.lower().replace("%2e", ".").replace("%2f", "/").replace("\\", "/")
    return any(segment == ".." for segment in lowered.split("/"))
