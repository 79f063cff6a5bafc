from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from app.ascops.utils import utcnow


class Base(DeclarativeBase):
    pass


class Facility(Base):
    __tablename__ = "facilities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)


class User(Base):
    """
    Identity read model. Accounts are provisioned outside this service;
    only the fields the case card engine needs to authorize and attribute
    actions live here.
    """

    __tablename__ = "users"
    __table_args__ = (
        Index("idx_users_facility_role", "facility_id", "role"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    facility_id: Mapped[int] = mapped_column(ForeignKey("facilities.id", ondelete="RESTRICT"), nullable=False)
    username: Mapped[str] = mapped_column(String(150), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False)  # see constants.VALID_ROLES
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)


class SurgicalCase(Base):
    """
    Read model of a scheduled surgical case, owned by the scheduling service.
    Feedback only needs to confirm the case exists in the same facility.
    """

    __tablename__ = "surgical_cases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    facility_id: Mapped[int] = mapped_column(ForeignKey("facilities.id", ondelete="RESTRICT"), nullable=False)
    surgeon_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    procedure_name: Mapped[str] = mapped_column(String(255), nullable=False)
    scheduled_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    case_card_version_id: Mapped[int | None] = mapped_column(
        ForeignKey("case_card_versions.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.ascops.modules.case_cards.models import (  # noqa: E402,F401
    CaseCard,
    CaseCardEditLog,
    CaseCardFeedback,
    CaseCardVersion,
)
