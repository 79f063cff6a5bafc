import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, request

from app.ascops.auth import PUBLIC_PATH_PREFIXES, load_current_user
from app.ascops.config import load_config
from app.ascops.db import init_db, teardown_db_session
from app.ascops.errors import register_error_handlers
from app.ascops.modules.case_cards.admin import bp as case_cards_bp
from app.ascops.routes import bp as routes_bp


def create_app(config_overrides: dict | None = None) -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    if config_overrides:
        app.config.update(config_overrides)
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.json.sort_keys = False

    logging.basicConfig(level=app.config.get("LOG_LEVEL") or "INFO")
    app.logger.setLevel(app.config.get("LOG_LEVEL") or "INFO")

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    register_error_handlers(app)
    app.register_blueprint(routes_bp)
    app.register_blueprint(case_cards_bp, url_prefix="/api/case-cards")

    def _load_user_wrapper():
        if request.path.startswith(PUBLIC_PATH_PREFIXES):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    @app.after_request
    def _echo_request_id(response):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        if rid:
            response.headers["X-Request-ID"] = rid
        return response

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
