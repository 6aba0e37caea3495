import logging
import secrets
from urllib.parse import quote

from fastapi import Depends, HTTPException, Request, status
from fastapi_users import models

from .users import current_active_admin, current_admin_optional

logger = logging.getLogger(__name__)


async def require_admin_user(user: models.UP = Depends(current_active_admin)):
    """JSON admin API guard: 401 without a session, 403 for non-superusers."""
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    if not getattr(user, "is_superuser", False):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user


async def require_admin_html_user(request: Request, user: models.UP = Depends(current_admin_optional)):
    if not user or not getattr(user, "is_superuser", False):
        path = request.url.path or "/"
        query = str(request.url.query or "")
        next_rel = f"{path}?{query}" if query else path
        raise HTTPException(
            status_code=status.HTTP_303_SEE_OTHER,
            headers={"Location": f"/admin/login?next={quote(next_rel, safe='')}"},
        )
    return user


def client_ip(request: Request) -> str:
    """Rate-limit key: first X-Forwarded-For hop, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for") or ""
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


def new_session_id() -> str:
    return secrets.token_urlsafe(18)
