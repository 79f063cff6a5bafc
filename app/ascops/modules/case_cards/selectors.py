"""Read-side queries for case cards. Everything is scoped to one facility."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import or_, select
from sqlalchemy.orm import aliased

from app.ascops.constants import ROLE_SURGEON
from app.ascops.errors import NotFound, ValidationError
from app.ascops.models import User
from app.ascops.modules.case_cards.edit_log import entries_for
from app.ascops.modules.case_cards.locking import refresh_lock
from app.ascops.modules.case_cards.models import (
    STATUS_DELETED,
    VALID_STATUSES,
    CaseCard,
    CaseCardEditLog,
    CaseCardVersion,
)

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.orm import Session


def get_card(
    s: "Session",
    facility_id: int,
    card_id: int,
    *,
    for_update: bool = False,
    message: str = "Case card not found",
) -> CaseCard:
    """
    Load a card in `facility_id` or raise NotFound. A card from another
    facility is indistinguishable from a missing one.

    With `for_update` the row is locked (SELECT ... FOR UPDATE) and reloaded
    from the database, so the caller's checks run against what is stored now.
    """
    stmt = select(CaseCard).where(CaseCard.id == card_id, CaseCard.facility_id == facility_id)
    if for_update:
        # Reloading would otherwise discard unflushed changes to the same row.
        s.flush()
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    card = s.scalars(stmt).one_or_none()
    if card is None:
        raise NotFound(message)
    return card


def view_card(s: "Session", facility_id: int, card_id: int, now: "datetime") -> CaseCard:
    """Detail read. Drops an expired lock on the way, so the caller must commit."""
    card = get_card(s, facility_id, card_id, for_update=True)
    refresh_lock(card, now)
    return card


def list_cards(
    s: "Session",
    facility_id: int,
    *,
    surgeon_id: int | None = None,
    status: str | None = None,
    search: str | None = None,
    include_deleted: bool = False,
) -> list[CaseCard]:
    surgeon = aliased(User)
    stmt = select(CaseCard).join(surgeon, CaseCard.surgeon_id == surgeon.id).where(CaseCard.facility_id == facility_id)

    if not include_deleted:
        stmt = stmt.where(CaseCard.status != STATUS_DELETED)
    if surgeon_id is not None:
        stmt = stmt.where(CaseCard.surgeon_id == surgeon_id)
    if status:
        status = status.strip().upper()
        if status not in VALID_STATUSES:
            raise ValidationError(f"Invalid status filter. Must be one of: {', '.join(VALID_STATUSES)}")
        stmt = stmt.where(CaseCard.status == status)
    if search and search.strip():
        like = f"%{search.strip()}%"
        stmt = stmt.where(or_(CaseCard.procedure_name.ilike(like), surgeon.name.ilike(like)))

    stmt = stmt.order_by(CaseCard.status.asc(), surgeon.name.asc(), CaseCard.procedure_name.asc(), CaseCard.id.asc())
    return list(s.scalars(stmt).all())


def list_surgeons(s: "Session", facility_id: int) -> list[User]:
    return list(
        s.scalars(
            select(User)
            .where(User.facility_id == facility_id, User.role == ROLE_SURGEON, User.is_active.is_(True))
            .order_by(User.name.asc())
        ).all()
    )


def list_versions(s: "Session", facility_id: int, card_id: int) -> list[CaseCardVersion]:
    """Newest first."""
    card = get_card(s, facility_id, card_id)
    return list(
        s.scalars(
            select(CaseCardVersion)
            .where(CaseCardVersion.case_card_id == card.id)
            .order_by(CaseCardVersion.created_at.desc(), CaseCardVersion.id.desc())
        ).all()
    )


def get_version(s: "Session", facility_id: int, card_id: int, version_id: int) -> CaseCardVersion:
    card = get_card(s, facility_id, card_id)
    version = s.scalars(
        select(CaseCardVersion).where(CaseCardVersion.id == version_id, CaseCardVersion.case_card_id == card.id)
    ).one_or_none()
    if version is None:
        raise NotFound("Version not found")
    return version


def edit_log_for(s: "Session", facility_id: int, card_id: int) -> list[CaseCardEditLog]:
    card = get_card(s, facility_id, card_id)
    return entries_for(s, card.id)
