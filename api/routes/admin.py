"""
api/routes/admin.py -- Admin-only inspection endpoints.

Routes:
  GET /api/admin/security-logs  -- recent security events (admin only)

Events come from the in-memory SecurityLogger, so the view covers the
current process lifetime only.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import SecurityEventResponse, SecurityLogResponse
from auth.dependencies import require_admin
from auth.models import User
from security.logger import SecurityLogger

router = APIRouter()


@router.get("/admin/security-logs", response_model=SecurityLogResponse)
def security_logs(
    request: Request,
    limit: int = Query(default=50, ge=1, le=1000),
    user_id: Optional[str] = Query(default=None, max_length=64),
    current_user: User = Depends(require_admin),
) -> SecurityLogResponse:
    """Return the most recent security events, optionally for one user."""
    security: SecurityLogger = request.app.state.security_logger
    if user_id:
        events = security.get_events_by_user(user_id, limit)
    else:
        events = security.get_recent_events(limit)
    return SecurityLogResponse(
        events=[SecurityEventResponse(**e.to_dict()) for e in events],
        total=len(events),
    )
