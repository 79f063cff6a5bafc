"""
Who may do what to a case card.

Checks here never touch state; callers run them before any mutation so a
denied request leaves nothing to roll back.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from app.ascops.constants import (
    ROLE_ADMIN,
    ROLE_CIRCULATOR,
    ROLE_INVENTORY_TECH,
    ROLE_SCRUB,
    ROLE_SURGEON,
)
from app.ascops.errors import Forbidden

if TYPE_CHECKING:
    from app.ascops.models import User
    from app.ascops.modules.case_cards.models import CaseCard

logger = logging.getLogger(__name__)

# SCHEDULER is deliberately absent: scheduling staff read cards but never change them.
CASE_CARD_EDITOR_ROLES = frozenset({ROLE_ADMIN, ROLE_INVENTORY_TECH, ROLE_CIRCULATOR, ROLE_SCRUB, ROLE_SURGEON})


def _is_active(actor: "User | None") -> bool:
    return actor is not None and bool(actor.is_active)


def can_edit(actor: "User | None") -> bool:
    return _is_active(actor) and actor.role in CASE_CARD_EDITOR_ROLES


def is_owner(actor: "User | None", card: "CaseCard") -> bool:
    return _is_active(actor) and actor.id == card.surgeon_id


def can_deactivate(actor: "User | None", card: "CaseCard") -> bool:
    return is_owner(actor, card) or (_is_active(actor) and actor.role == ROLE_ADMIN)


def can_delete(actor: "User | None", card: "CaseCard") -> bool:
    # Owner only; ADMIN alone is not enough to tombstone a surgeon's card.
    return is_owner(actor, card)


def can_review_feedback(actor: "User | None") -> bool:
    return _is_active(actor) and actor.role == ROLE_ADMIN


def _deny(actor: "User | None", action: str, message: str) -> Forbidden:
    logger.warning(
        "case_card policy denied action=%s user_id=%s role=%s",
        action,
        getattr(actor, "id", None),
        getattr(actor, "role", None),
    )
    return Forbidden(message)


def ensure_can_edit(actor: "User | None", action: str = "edit") -> None:
    if not can_edit(actor):
        raise _deny(actor, action, f"Your role does not have permission to {action} case cards")


def ensure_can_deactivate(actor: "User | None", card: "CaseCard") -> None:
    if not can_deactivate(actor, card):
        raise _deny(
            actor,
            "deactivate",
            "Only the case card owner (surgeon) or an administrator can deactivate this card",
        )


def ensure_can_delete(actor: "User | None", card: "CaseCard") -> None:
    if not can_delete(actor, card):
        raise _deny(actor, "delete", "Only the case card owner (surgeon) can delete this card")


def ensure_can_review_feedback(actor: "User | None") -> None:
    if not can_review_feedback(actor):
        raise _deny(actor, "review_feedback", "Only administrators can review feedback")
