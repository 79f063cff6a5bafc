from flask import Blueprint, current_app

from app.ascops.db import db_session, ping

bp = Blueprint("routes", __name__)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON; verifies the database answers."""
    try:
        db_ok = ping(db_session())
    except Exception:
        current_app.logger.exception("Health check: database ping failed")
        return {"ok": False, "database": "unavailable"}, 503
    return {"ok": db_ok, "database": "ok" if db_ok else "unavailable"}, (200 if db_ok else 503)


@bp.get("/healthz")
def healthz():
    """
    Fast liveness probe. No DB access, minimal overhead.
    """
    return "ok", 200
