"""
Case card lifecycle: DRAFT -> ACTIVE -> DEPRECATED, and any live status -> DELETED.

Every function here is one unit of work's worth of changes. Callers own the
transaction (``app.ascops.db.unit_of_work``); nothing in this module commits.
Order of checks for a mutation: role gate, card lookup (row locked), lazy
lock expiry, status guard, ownership, lock conflict, then the write and its
single edit-log entry.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from app.ascops.constants import ROLE_SURGEON
from app.ascops.errors import AlreadyInTerminalState, Conflict, NotFound, ValidationError
from app.ascops.models import User
from app.ascops.modules.case_cards import governance, locking, versioning
from app.ascops.modules.case_cards.edit_log import record_edit
from app.ascops.modules.case_cards.models import (
    ACTION_ACTIVATE,
    ACTION_CREATE,
    ACTION_DEACTIVATE,
    ACTION_DELETE,
    ACTION_REVERT,
    ACTION_UPDATE,
    STATUS_ACTIVE,
    STATUS_DELETED,
    STATUS_DEPRECATED,
    STATUS_DRAFT,
    CaseCard,
    CaseCardVersion,
)
from app.ascops.modules.case_cards.selectors import get_card
from app.ascops.utils import clean_str, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.ascops.modules.case_cards.schemas import (
        CloneCaseCard,
        CreateCaseCard,
        DeactivateCaseCard,
        DeleteCaseCard,
        RevertCaseCard,
        UpdateCaseCard,
    )

logger = logging.getLogger(__name__)


def _resolve_surgeon(s: "Session", facility_id: int, surgeon_id: int, *, target: bool = False) -> User:
    surgeon = s.scalars(
        select(User).where(User.id == surgeon_id, User.facility_id == facility_id, User.is_active.is_(True))
    ).one_or_none()
    if surgeon is None:
        raise ValidationError("Target surgeon not found" if target else "Surgeon not found")
    if surgeon.role != ROLE_SURGEON:
        raise ValidationError("Target user is not a surgeon" if target else "Selected user is not a surgeon")
    return surgeon


def _name_taken(s: "Session", facility_id: int, surgeon_id: int, procedure_name: str) -> bool:
    existing = s.scalars(
        select(CaseCard.id).where(
            CaseCard.facility_id == facility_id,
            CaseCard.surgeon_id == surgeon_id,
            func.lower(CaseCard.procedure_name) == procedure_name.lower(),
        )
    ).first()
    return existing is not None


def _ensure_editable(card: CaseCard, verb: str = "edit") -> None:
    if not card.is_read_only:
        return
    if verb != "edit":
        raise ValidationError(f"Cannot {verb} a read-only case card")
    label = "Deprecated" if card.status == STATUS_DEPRECATED else "Deleted"
    raise ValidationError(f"{label} case cards are read-only")


def _flush_or_conflict(s: "Session", message: str) -> None:
    try:
        s.flush()
    except IntegrityError as e:
        logger.warning("case_card integrity conflict: %s", e.orig)
        raise Conflict(message) from None


# ---------------------------------------------------------------------------
# Create / clone
# ---------------------------------------------------------------------------


def create_case_card(s: "Session", actor: User, cmd: "CreateCaseCard", *, now: datetime | None = None) -> CaseCard:
    governance.ensure_can_edit(actor, "create")
    now = now or utcnow()

    _resolve_surgeon(s, actor.facility_id, cmd.surgeon_id)
    if _name_taken(s, actor.facility_id, cmd.surgeon_id, cmd.procedure_name):
        raise ValidationError("Case card with this procedure name already exists for this surgeon")

    card = CaseCard(
        facility_id=actor.facility_id,
        surgeon_id=cmd.surgeon_id,
        procedure_name=cmd.procedure_name,
        procedure_codes=list(cmd.procedure_codes),
        case_type=cmd.case_type,
        default_duration_minutes=cmd.default_duration_minutes,
        turnover_notes=clean_str(cmd.turnover_notes),
        status=STATUS_DRAFT,
        created_by_user_id=actor.id,
        created_at=now,
        updated_at=now,
    )
    s.add(card)
    s.flush()

    version = versioning.create_initial_version(s, card, cmd.content(), actor, now=now)
    record_edit(
        s,
        card=card,
        actor=actor,
        action_type=ACTION_CREATE,
        change_summary="Case card created",
        reason=clean_str(cmd.reason_for_change) or "Initial creation",
        new_version_id=version.id,
        at=now,
    )
    logger.info("case_card created id=%s surgeon=%s by=%s", card.id, card.surgeon_id, actor.id)
    return card


def clone_case_card(
    s: "Session", actor: User, card_id: int, cmd: "CloneCaseCard", *, now: datetime | None = None
) -> CaseCard:
    """
    Seed a new DRAFT card for another (or the same) surgeon from a source card's
    current content. Works from any source status, tombstones included. The new
    card keeps no reference to the source beyond the edit-log summary.
    """
    governance.ensure_can_edit(actor, "clone")
    now = now or utcnow()

    source = get_card(s, actor.facility_id, card_id, message="Source case card not found")
    _resolve_surgeon(s, actor.facility_id, cmd.target_surgeon_id, target=True)
    procedure_name = cmd.procedure_name or source.procedure_name
    if _name_taken(s, actor.facility_id, cmd.target_surgeon_id, procedure_name):
        raise ValidationError("Case card with this procedure name already exists for the target surgeon")

    card = CaseCard(
        facility_id=actor.facility_id,
        surgeon_id=cmd.target_surgeon_id,
        procedure_name=procedure_name,
        procedure_codes=list(source.procedure_codes or []),
        case_type=source.case_type,
        default_duration_minutes=source.default_duration_minutes,
        turnover_notes=source.turnover_notes,
        status=STATUS_DRAFT,
        created_by_user_id=actor.id,
        created_at=now,
        updated_at=now,
    )
    s.add(card)
    s.flush()

    version = versioning.create_clone_version(s, card, source.current_version, actor, now=now)
    source_surgeon = source.surgeon.name if source.surgeon else "Unknown"
    record_edit(
        s,
        card=card,
        actor=actor,
        action_type=ACTION_CREATE,
        change_summary=f"Case card created (seeded from {source_surgeon}'s card #{source.id})",
        reason=clean_str(cmd.reason) or "Seeded from existing card",
        new_version_id=version.id,
        at=now,
    )
    logger.info("case_card cloned source=%s new=%s by=%s", source.id, card.id, actor.id)
    return card


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------


def _lock_key_group(s: "Session", card: CaseCard) -> list[CaseCard]:
    # Same (facility, surgeon, name) group, locked in id order so concurrent
    # activations cannot deadlock.
    s.flush()
    stmt = (
        select(CaseCard)
        .where(
            CaseCard.facility_id == card.facility_id,
            CaseCard.surgeon_id == card.surgeon_id,
            func.lower(CaseCard.procedure_name) == card.procedure_name.lower(),
        )
        .order_by(CaseCard.id.asc())
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return list(s.scalars(stmt).all())


def activate_case_card(s: "Session", actor: User, card_id: int, *, now: datetime | None = None) -> CaseCard:
    governance.ensure_can_edit(actor, "activate")
    now = now or utcnow()

    card = get_card(s, actor.facility_id, card_id, for_update=True)
    locking.refresh_lock(card, now)
    if card.status == STATUS_ACTIVE:
        raise AlreadyInTerminalState("Case card is already active")
    if card.status == STATUS_DEPRECATED:
        raise ValidationError("Cannot activate deprecated case card")
    if card.status == STATUS_DELETED:
        raise AlreadyInTerminalState("Cannot activate a deleted case card")

    superseded = [c for c in _lock_key_group(s, card) if c.id != card.id and c.status == STATUS_ACTIVE]
    for other in superseded:
        other.status = STATUS_DEPRECATED
        other.updated_at = now
        logger.info("case_card superseded id=%s by activation of id=%s", other.id, card.id)
    # The partial unique index is checked per statement: the old holder must be
    # written as DEPRECATED before this card becomes ACTIVE.
    _flush_or_conflict(s, "Another case card for this surgeon and procedure is already active")

    card.status = STATUS_ACTIVE
    card.updated_at = now
    _flush_or_conflict(s, "Another case card for this surgeon and procedure is already active")

    summary = "Status changed to ACTIVE"
    if superseded:
        ids = ", ".join(f"#{c.id}" for c in superseded)
        summary += f" (superseded {len(superseded)} previously active card{'s' if len(superseded) > 1 else ''}: {ids})"
    record_edit(
        s,
        card=card,
        actor=actor,
        action_type=ACTION_ACTIVATE,
        change_summary=summary,
        reason="Activated",
        at=now,
    )
    logger.info("case_card activated id=%s by=%s superseded=%s", card.id, actor.id, [c.id for c in superseded])
    return card


def deactivate_case_card(
    s: "Session", actor: User, card_id: int, cmd: "DeactivateCaseCard", *, now: datetime | None = None
) -> CaseCard:
    now = now or utcnow()
    card = get_card(s, actor.facility_id, card_id, for_update=True)
    locking.refresh_lock(card, now)

    governance.ensure_can_deactivate(actor, card)
    if card.status == STATUS_DEPRECATED:
        raise AlreadyInTerminalState("Case card is already deactivated")
    if card.status == STATUS_DELETED:
        raise ValidationError("Cannot deactivate a deleted case card")

    previous = card.status
    card.status = STATUS_DEPRECATED
    card.updated_at = now
    locking.clear_lock(card)
    record_edit(
        s,
        card=card,
        actor=actor,
        action_type=ACTION_DEACTIVATE,
        change_summary="Status changed to DEPRECATED (deactivated)",
        reason=cmd.reason,
        at=now,
    )
    logger.info("case_card deactivated id=%s from=%s by=%s", card.id, previous, actor.id)
    return card


def delete_case_card(
    s: "Session", actor: User, card_id: int, cmd: "DeleteCaseCard", *, now: datetime | None = None
) -> CaseCard:
    """Soft delete. The row, its versions and its edit log all stay."""
    now = now or utcnow()
    card = get_card(s, actor.facility_id, card_id, for_update=True)
    locking.refresh_lock(card, now)

    governance.ensure_can_delete(actor, card)
    if card.status == STATUS_DELETED:
        raise AlreadyInTerminalState("Case card is already deleted")

    card.status = STATUS_DELETED
    card.deleted_at = now
    card.deleted_by_user_id = actor.id
    card.delete_reason = cmd.reason
    card.updated_at = now
    locking.clear_lock(card)
    record_edit(
        s,
        card=card,
        actor=actor,
        action_type=ACTION_DELETE,
        change_summary="Case card soft-deleted (tombstone)",
        reason=cmd.reason,
        at=now,
    )
    logger.info("case_card deleted id=%s by=%s", card.id, actor.id)
    return card


# ---------------------------------------------------------------------------
# Content edits
# ---------------------------------------------------------------------------


def update_case_card(
    s: "Session",
    actor: User,
    card_id: int,
    cmd: "UpdateCaseCard",
    *,
    now: datetime | None = None,
    require_lock_holder: bool = False,
) -> CaseCard:
    governance.ensure_can_edit(actor)
    now = now or utcnow()

    card = get_card(s, actor.facility_id, card_id, for_update=True)
    locking.refresh_lock(card, now)
    _ensure_editable(card)
    locking.ensure_not_locked_by_other(card, actor, now, require_holder=require_lock_holder)

    previous_version_id = card.current_version_id

    # Header metadata: absent means unchanged.
    if cmd.procedure_name is not None:
        card.procedure_name = cmd.procedure_name
    if cmd.procedure_codes is not None:
        card.procedure_codes = list(cmd.procedure_codes)
    if cmd.case_type is not None:
        card.case_type = cmd.case_type
    if cmd.default_duration_minutes is not None:
        card.default_duration_minutes = cmd.default_duration_minutes
    if cmd.turnover_notes is not None:
        card.turnover_notes = clean_str(cmd.turnover_notes)
    card.updated_at = now
    _flush_or_conflict(s, "Another case card for this surgeon and procedure is already active")

    version = versioning.create_next_version(s, card, cmd.content(), actor, bump=cmd.version_bump, now=now)
    record_edit(
        s,
        card=card,
        actor=actor,
        action_type=ACTION_UPDATE,
        change_summary=cmd.change_summary,
        reason=clean_str(cmd.reason_for_change),
        previous_version_id=previous_version_id,
        new_version_id=version.id,
        at=now,
    )
    logger.info("case_card updated id=%s version=%s by=%s", card.id, card.version, actor.id)
    return card


def revert_case_card(
    s: "Session",
    actor: User,
    card_id: int,
    version_id: int,
    cmd: "RevertCaseCard",
    *,
    now: datetime | None = None,
    require_lock_holder: bool = False,
) -> CaseCard:
    """
    Restore an earlier version's content as a new patch version. History is
    never rewritten: the target stays where it is and a copy goes on top.
    """
    governance.ensure_can_edit(actor, "revert")
    now = now or utcnow()

    card = get_card(s, actor.facility_id, card_id, for_update=True)
    locking.refresh_lock(card, now)
    _ensure_editable(card, "revert")
    locking.ensure_not_locked_by_other(card, actor, now, require_holder=require_lock_holder)

    target = s.scalars(
        select(CaseCardVersion).where(CaseCardVersion.id == version_id, CaseCardVersion.case_card_id == card.id)
    ).one_or_none()
    if target is None:
        raise NotFound("Target version not found")

    previous_version_id = card.current_version_id
    card.updated_at = now
    version = versioning.create_revert_version(s, card, target, actor, now=now)
    record_edit(
        s,
        card=card,
        actor=actor,
        action_type=ACTION_REVERT,
        change_summary=f"Reverted to version {target.version_number}",
        reason=cmd.reason,
        previous_version_id=previous_version_id,
        new_version_id=version.id,
        at=now,
    )
    logger.info(
        "case_card reverted id=%s to=%s new_version=%s by=%s", card.id, target.version_number, card.version, actor.id
    )
    return card


# ---------------------------------------------------------------------------
# Soft lock
# ---------------------------------------------------------------------------


def lock_case_card(
    s: "Session",
    actor: User,
    card_id: int,
    *,
    now: datetime | None = None,
    timeout: timedelta = locking.DEFAULT_LOCK_TIMEOUT,
) -> CaseCard:
    governance.ensure_can_edit(actor, "lock")
    now = now or utcnow()

    card = get_card(s, actor.facility_id, card_id, for_update=True)
    locking.refresh_lock(card, now)
    if card.is_read_only:
        raise ValidationError("Cannot lock a read-only case card")
    locking.acquire_lock(card, actor, now, timeout)
    return card


def unlock_case_card(s: "Session", actor: User, card_id: int, *, now: datetime | None = None) -> CaseCard:
    now = now or utcnow()
    card = get_card(s, actor.facility_id, card_id, for_update=True)
    locking.release_lock(card, actor, now)
    return card
