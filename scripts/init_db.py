import os
import sys
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.ascops.constants import ROLE_ADMIN
from app.ascops.models import Facility, User


@contextmanager
def _session_scope(database_url: str):
    engine = create_engine(database_url, future=True)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed the first facility and its administrator in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    facility_name = (os.environ.get("FACILITY_NAME") or "Main Surgery Center").strip()
    admin_username = (os.environ.get("ADMIN_USERNAME") or "admin").strip().lower()
    admin_name = (os.environ.get("ADMIN_NAME") or "Administrator").strip()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///ascops.db").strip()

    # Direct engine/session so this can run during release without building the Flask app.
    with _session_scope(db_url) as s:
        facility = s.scalars(select(Facility).where(Facility.name == facility_name)).one_or_none()
        if not facility:
            facility = Facility(name=facility_name)
            s.add(facility)
            s.flush()

        user = s.scalars(select(User).where(User.username == admin_username)).one_or_none()
        if not user:
            user = User(
                facility_id=facility.id,
                username=admin_username,
                name=admin_name,
                role=ROLE_ADMIN,
                is_active=True,
                password_hash=generate_password_hash(admin_password),
            )
            s.add(user)
        elif user.role != ROLE_ADMIN:
            user.role = ROLE_ADMIN

    print("Initialized database (seed_only).")
    print(f"Facility: {facility_name}")
    print(f"Admin username: {admin_username}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
