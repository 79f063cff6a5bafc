from datetime import date
from types import SimpleNamespace

import pytest

from app.ascops import create_app
from app.ascops.constants import (
    ROLE_ADMIN,
    ROLE_CIRCULATOR,
    ROLE_SCHEDULER,
    ROLE_SURGEON,
)
from app.ascops.db import session_scope
from app.ascops.models import Base, Facility, SurgicalCase, User


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    for k in ("CASE_CARD_LOCK_TIMEOUT_MINUTES", "CASE_CARD_REQUIRE_LOCK_FOR_EDIT", "DB_LOCK_TIMEOUT_MS", "LOG_LEVEL"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    app.config["TESTING"] = True

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    return app


@pytest.fixture()
def world(app):
    """Two facilities and one user per role that the tests need."""
    with session_scope(app) as s:
        main = Facility(name="Main ASC")
        other = Facility(name="Other ASC")
        s.add_all([main, other])
        s.flush()

        def user(username, name, role, facility=main, active=True):
            u = User(facility_id=facility.id, username=username, name=name, role=role, is_active=active)
            s.add(u)
            return u

        admin = user("admin", "Alex Admin", ROLE_ADMIN)
        surgeon = user("dr.smith", "Dr. Alice Smith", ROLE_SURGEON)
        surgeon2 = user("dr.jones", "Dr. Bob Jones", ROLE_SURGEON)
        circulator = user("circ", "Casey Circulator", ROLE_CIRCULATOR)
        scheduler = user("sched", "Sam Scheduler", ROLE_SCHEDULER)
        retired = user("dr.gone", "Dr. Retired", ROLE_SURGEON, active=False)
        outsider = user("other.admin", "Olive Other", ROLE_ADMIN, facility=other)
        s.flush()

        case1 = SurgicalCase(
            facility_id=main.id, surgeon_id=surgeon.id, procedure_name="Knee Arthroscopy", scheduled_date=date(2026, 3, 2)
        )
        case2 = SurgicalCase(
            facility_id=main.id, surgeon_id=surgeon.id, procedure_name="Knee Arthroscopy", scheduled_date=date(2026, 3, 3)
        )
        foreign_case = SurgicalCase(facility_id=other.id, procedure_name="Cataract", scheduled_date=date(2026, 3, 2))
        s.add_all([case1, case2, foreign_case])
        s.flush()

        return SimpleNamespace(
            facility_id=main.id,
            other_facility_id=other.id,
            admin=admin.id,
            surgeon=surgeon.id,
            surgeon2=surgeon2.id,
            circulator=circulator.id,
            scheduler=scheduler.id,
            retired=retired.id,
            outsider=outsider.id,
            case1=case1.id,
            case2=case2.id,
            foreign_case=foreign_case.id,
        )


@pytest.fixture()
def db(app, world):
    sm = app.extensions["sqlalchemy_sessionmaker"]
    s = sm()
    try:
        yield s
    finally:
        s.rollback()
        s.close()


@pytest.fixture()
def client(app, world):
    return app.test_client()


@pytest.fixture()
def login(client):
    def _login(user_id: int) -> None:
        with client.session_transaction() as sess:
            sess["user_id"] = user_id

    return _login
