"""
web/routes.py -- Jinja2 template routes for the page side of the app.

These routes serve server-rendered HTML. Access control is not done here:
the route_guard middleware in api/main.py classifies every page path and
redirects before a handler runs. Handlers only render.

Forms on these pages submit JSON to the /api/auth/* endpoints through the
small script in layout.html, so validation and error messages come from
exactly one place (api/models.py).

Routes:
  GET  /                    -- landing page (authenticated users -> /dashboard)
  GET  /landing             -- landing page, always public
  GET  /login               -- login form
  GET  /signup              -- signup form
  GET  /forgot-password     -- request a reset link
  GET  /reset-password      -- set a new password (?token=)
  GET  /email-verification  -- confirm an email address (?token=)
  GET  /dashboard           -- signed-in home (protected)
  POST /logout              -- revoke session, clear cookie, redirect /login
"""

import logging
from pathlib import Path

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from auth.dependencies import get_request_token, try_get_current_user
from auth.guard import safe_next
from auth.sessions import SessionManager
from auth.tokens import clear_auth_cookie
from security.logger import SecurityEventType, SecurityLogger, Severity

logger = logging.getLogger("authstarter.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
# layout.html calls this to decide whether to show the logout button.
templates.env.globals["try_get_current_user"] = try_get_current_user
router = APIRouter()

# Whitelist for the ?notice= query param. The raw value never reaches a
# template, which rules out reflected XSS through crafted links.
_NOTICES: dict[str, str] = {
    "logged_out": "You have been signed out.",
    "password_reset": "Your password has been reset. Please sign in.",
    "signed_up": "Account created. Check your email to verify your address, then sign in.",
}


def _notice(request: Request) -> str | None:
    return _NOTICES.get(request.query_params.get("notice", ""))


@router.get("/", response_class=HTMLResponse)
@router.get("/landing", response_class=HTMLResponse)
def landing(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(request, "landing.html", {})


@router.get("/login", response_class=HTMLResponse)
def login_form(request: Request) -> HTMLResponse:
    """Render the login form.

    next is validated here and again by the script on submit, so an
    off-site target never becomes a post-login redirect.
    """
    return templates.TemplateResponse(
        request,
        "login.html",
        {
            "notice": _notice(request),
            "next_url": safe_next(request.query_params.get("next")),
        },
    )


@router.get("/signup", response_class=HTMLResponse)
def signup_form(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(request, "signup.html", {})


@router.get("/forgot-password", response_class=HTMLResponse)
def forgot_password_form(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(request, "forgot_password.html", {})


@router.get("/reset-password", response_class=HTMLResponse)
def reset_password_form(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "reset_password.html",
        {"token": request.query_params.get("token", "")},
    )


@router.get("/email-verification", response_class=HTMLResponse)
def email_verification_page(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "email_verification.html",
        {"token": request.query_params.get("token", "")},
    )


@router.get("/dashboard", response_class=HTMLResponse)
def dashboard(request: Request) -> HTMLResponse:
    """Signed-in home page. The route guard has already rejected anonymous users."""
    return templates.TemplateResponse(
        request,
        "dashboard.html",
        {"current_user": try_get_current_user(request)},
    )


@router.post("/logout")
def logout(request: Request) -> RedirectResponse:
    """Revoke the session behind the cookie and redirect to the login page."""
    sessions: SessionManager = request.app.state.sessions
    security: SecurityLogger = request.app.state.security_logger

    token = get_request_token(request)
    user_id = sessions.verify(token)
    if sessions.revoke(token):
        security.log(
            SecurityEventType.SESSION_REVOKED,
            user_id,
            Severity.LOW,
            ip=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )
    resp = RedirectResponse("/login?notice=logged_out", status_code=302)
    clear_auth_cookie(resp)
    return resp
