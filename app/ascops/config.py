import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str
    db_lock_timeout_ms: int

    case_card_lock_timeout_minutes: int
    case_card_require_lock_for_edit: bool


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).") from e
    if value <= 0:
        raise RuntimeError(f"{name} must be positive (got {value}).")
    return value


def _getenv_bool(name: str, default: bool = False) -> bool:
    raw = _getenv(name).lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///ascops.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        db_lock_timeout_ms=_getenv_int("DB_LOCK_TIMEOUT_MS", 5000),
        case_card_lock_timeout_minutes=_getenv_int("CASE_CARD_LOCK_TIMEOUT_MINUTES", 30),
        case_card_require_lock_for_edit=_getenv_bool("CASE_CARD_REQUIRE_LOCK_FOR_EDIT", False),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "DB_LOCK_TIMEOUT_MS": s.db_lock_timeout_ms,
        "CASE_CARD_LOCK_TIMEOUT_MINUTES": s.case_card_lock_timeout_minutes,
        "CASE_CARD_REQUIRE_LOCK_FOR_EDIT": s.case_card_require_lock_for_edit,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
    }
