"""
Advisory, time-boxed edit lock for case cards.

The lock is a value (``LockState``) with pure transitions; the card row only
stores it. There is no background expiry: every read or write of a card
calls ``refresh_lock`` first, which drops a lock whose window has passed.

A lock blocks *other* users from saving. It does not, by default, require
the saving user to hold it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy.orm import object_session

from app.ascops.errors import Conflict, Forbidden
from app.ascops.utils import isoformat

if TYPE_CHECKING:
    from app.ascops.models import User
    from app.ascops.modules.case_cards.models import CaseCard

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = timedelta(minutes=30)


@dataclass(frozen=True)
class LockState:
    holder_user_id: int | None = None
    locked_at: datetime | None = None
    expires_at: datetime | None = None

    @property
    def is_held(self) -> bool:
        return self.holder_user_id is not None

    def is_expired(self, now: datetime) -> bool:
        # Strict: a lock expiring exactly at `now` is still live.
        if self.expires_at is None:
            return True
        return now > self.expires_at

    def is_active(self, now: datetime) -> bool:
        return self.is_held and not self.is_expired(now)

    def blocks(self, user_id: int, now: datetime) -> bool:
        return self.is_active(now) and self.holder_user_id != user_id


UNLOCKED = LockState()


class LockHeld(Conflict):
    def __init__(self, state: LockState, holder_name: str | None = None, message: str | None = None) -> None:
        super().__init__(
            message or "Case card is locked by another user",
            details={
                "lockedByUserId": state.holder_user_id,
                "lockedByName": holder_name,
                "lockExpiresAt": isoformat(state.expires_at),
            },
        )
        self.state = state


def clear_expired(state: LockState, now: datetime) -> LockState:
    if state.is_held and state.is_expired(now):
        return UNLOCKED
    return state


def acquire(state: LockState, user_id: int, now: datetime, timeout: timedelta = DEFAULT_LOCK_TIMEOUT) -> LockState:
    """
    Take or refresh the lock. Re-acquiring as the current holder restarts the
    window from `now`.
    """
    if state.blocks(user_id, now):
        raise LockHeld(state, message="Case card is already locked by another user")
    return LockState(holder_user_id=user_id, locked_at=now, expires_at=now + timeout)


def release(state: LockState, user_id: int, now: datetime) -> LockState:
    state = clear_expired(state, now)
    if not state.is_held:
        return UNLOCKED
    if state.holder_user_id != user_id:
        raise Forbidden("Only the lock holder can release the lock")
    return UNLOCKED


# ---------------------------------------------------------------------------
# Persistence on the CaseCard row
# ---------------------------------------------------------------------------


def lock_state_of(card: "CaseCard") -> LockState:
    return LockState(
        holder_user_id=card.locked_by_user_id,
        locked_at=card.locked_at,
        expires_at=card.lock_expires_at,
    )


def store_lock_state(card: "CaseCard", state: LockState) -> None:
    card.locked_by_user_id = state.holder_user_id
    card.locked_at = state.locked_at
    card.lock_expires_at = state.expires_at


def holder_name(card: "CaseCard", state: LockState) -> str | None:
    from app.ascops.models import User

    s = object_session(card)
    if s is None or state.holder_user_id is None:
        return None
    holder = s.get(User, state.holder_user_id)
    return holder.name if holder else None


def refresh_lock(card: "CaseCard", now: datetime) -> LockState:
    """Lazily drop an expired lock. Returns the live state."""
    before = lock_state_of(card)
    after = clear_expired(before, now)
    if after != before:
        logger.info("case_card lock expired card_id=%s holder=%s", card.id, before.holder_user_id)
        store_lock_state(card, after)
    return after


def ensure_not_locked_by_other(
    card: "CaseCard", actor: "User", now: datetime, *, require_holder: bool = False
) -> None:
    state = lock_state_of(card)
    if state.blocks(actor.id, now):
        logger.warning(
            "case_card edit blocked by lock card_id=%s actor=%s holder=%s",
            card.id,
            actor.id,
            state.holder_user_id,
        )
        raise LockHeld(state, holder_name(card, state))
    if require_holder and not state.is_active(now):
        raise Conflict("Acquire the edit lock before saving changes")


def acquire_lock(card: "CaseCard", actor: "User", now: datetime, timeout: timedelta = DEFAULT_LOCK_TIMEOUT) -> LockState:
    current = refresh_lock(card, now)
    try:
        state = acquire(current, actor.id, now, timeout)
    except LockHeld as e:
        logger.warning("case_card lock denied card_id=%s actor=%s holder=%s", card.id, actor.id, e.state.holder_user_id)
        raise LockHeld(e.state, holder_name(card, e.state) or "Unknown", message=e.message) from None
    store_lock_state(card, state)
    logger.info("case_card lock acquired card_id=%s holder=%s expires_at=%s", card.id, actor.id, state.expires_at)
    return state


def release_lock(card: "CaseCard", actor: "User", now: datetime) -> LockState:
    state = release(lock_state_of(card), actor.id, now)
    store_lock_state(card, state)
    logger.info("case_card lock released card_id=%s by=%s", card.id, actor.id)
    return state


def clear_lock(card: "CaseCard") -> None:
    store_lock_state(card, UNLOCKED)
