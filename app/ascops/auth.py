from __future__ import annotations

import uuid

from flask import current_app, g, request, session
from sqlalchemy.exc import SQLAlchemyError

from app.ascops.db import db_session
from app.ascops.models import User

# Sessions are issued by the platform's sign-in service; this app only reads them.
PUBLIC_PATH_PREFIXES = ("/static/", "/health", "/healthz")


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    if request.path.startswith(PUBLIC_PATH_PREFIXES):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
    except (SQLAlchemyError, TypeError, ValueError) as e:
        current_app.logger.error("load_current_user failed (clearing session): %s", e)
        session.pop("user_id", None)
        g.current_user = None
        return

    if not user or not user.is_active:
        session.pop("user_id", None)
        g.current_user = None
        return
    g.current_user = user
