"""
Release-phase helper.

Runs before the web process starts:
- refuse to run without DATABASE_URL (or against SQLite in production),
- upgrade the schema with alembic,
- check that the one-active-card index exists (the migration owns it and
  nothing else would notice if it went missing),
- seed the first facility and admin user (idempotent).

Usage:
  python scripts/release.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from sqlalchemy import create_engine, inspect


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

ONE_ACTIVE_INDEX = "uq_case_cards_one_active"


def _require_env(name: str) -> str:
    v = (os.environ.get(name) or "").strip()
    if not v:
        raise RuntimeError(f"Missing required environment variable {name}.")
    return v


def migrate(db_url: str) -> None:
    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(cfg, "head")


def verify_schema(db_url: str) -> None:
    engine = create_engine(db_url)
    try:
        names = {ix["name"] for ix in inspect(engine).get_indexes("case_cards")}
    finally:
        engine.dispose()
    if ONE_ACTIVE_INDEX not in names:
        raise RuntimeError(f"Index {ONE_ACTIVE_INDEX} is missing after migration; refusing to start.")


def run_release() -> None:
    db_url = _require_env("DATABASE_URL")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and db_url.startswith("sqlite"):
        raise RuntimeError("Refusing to run release on sqlite DATABASE_URL in production. Set DATABASE_URL to Postgres.")

    print(f"=== case cards release (ENV={env or '(unset)'}) ===", flush=True)

    print("Upgrading schema...", flush=True)
    migrate(db_url)
    verify_schema(db_url)
    print(f"Schema at head; {ONE_ACTIVE_INDEX} present.", flush=True)

    from scripts import init_db

    print("Seeding facility and admin (idempotent)...", flush=True)
    init_db.seed_only(database_url=db_url)
    print("=== release done ===", flush=True)


if __name__ == "__main__":
    run_release()
