from datetime import datetime, timedelta

import pytest

from app.ascops.errors import Forbidden
from app.ascops.modules.case_cards.locking import (
    UNLOCKED,
    LockHeld,
    LockState,
    acquire,
    clear_expired,
    release,
)

T0 = datetime(2026, 3, 2, 8, 0, 0)
TIMEOUT = timedelta(minutes=30)


def test_acquire_on_free_card_opens_window():
    state = acquire(UNLOCKED, 1, T0, TIMEOUT)
    assert state == LockState(holder_user_id=1, locked_at=T0, expires_at=T0 + TIMEOUT)
    assert state.is_active(T0)


def test_expiry_boundary_is_strict():
    state = acquire(UNLOCKED, 1, T0, TIMEOUT)
    assert not state.is_expired(T0 + TIMEOUT)
    assert state.blocks(2, T0 + TIMEOUT)
    assert state.is_expired(T0 + TIMEOUT + timedelta(microseconds=1))
    assert not state.blocks(2, T0 + TIMEOUT + timedelta(seconds=1))


def test_reacquire_by_holder_extends_window():
    first = acquire(UNLOCKED, 1, T0, TIMEOUT)
    later = T0 + timedelta(minutes=10)
    second = acquire(first, 1, later, TIMEOUT)
    assert second.holder_user_id == 1
    assert second.expires_at > first.expires_at
    assert second.locked_at == later


def test_acquire_held_by_other_conflicts():
    held = acquire(UNLOCKED, 1, T0, TIMEOUT)
    with pytest.raises(LockHeld) as exc:
        acquire(held, 2, T0 + timedelta(minutes=5), TIMEOUT)
    assert exc.value.status_code == 409
    assert exc.value.details["lockedByUserId"] == 1
    assert exc.value.details["lockExpiresAt"] == (T0 + TIMEOUT).isoformat() + "Z"


def test_acquire_after_expiry_takes_over():
    held = acquire(UNLOCKED, 1, T0, TIMEOUT)
    later = T0 + TIMEOUT + timedelta(seconds=1)
    state = acquire(held, 2, later, TIMEOUT)
    assert state.holder_user_id == 2


def test_release():
    held = acquire(UNLOCKED, 1, T0, TIMEOUT)
    assert release(held, 1, T0) == UNLOCKED
    assert release(UNLOCKED, 2, T0) == UNLOCKED
    with pytest.raises(Forbidden):
        release(held, 2, T0)
    # Nobody holds an expired lock, so anyone may "release" it.
    assert release(held, 2, T0 + TIMEOUT + timedelta(minutes=1)) == UNLOCKED


def test_clear_expired_is_identity_for_live_locks():
    held = acquire(UNLOCKED, 1, T0, TIMEOUT)
    assert clear_expired(held, T0 + TIMEOUT) is held
    assert clear_expired(held, T0 + TIMEOUT + timedelta(seconds=1)) == UNLOCKED
    assert clear_expired(UNLOCKED, T0) is UNLOCKED
