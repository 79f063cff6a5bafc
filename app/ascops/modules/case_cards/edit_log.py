from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.ascops.audit import AppendOnlyLog
from app.ascops.modules.case_cards.models import ACTION_TYPES, CaseCardEditLog
from app.ascops.utils import utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.ascops.models import User
    from app.ascops.modules.case_cards.models import CaseCard


def edit_log(s: "Session") -> AppendOnlyLog[CaseCardEditLog]:
    return AppendOnlyLog(s, CaseCardEditLog)


def record_edit(
    s: "Session",
    *,
    card: "CaseCard",
    actor: "User",
    action_type: str,
    change_summary: str,
    reason: str | None = None,
    previous_version_id: int | None = None,
    new_version_id: int | None = None,
    at: datetime | None = None,
) -> CaseCardEditLog:
    """
    Append the single audit entry for a mutating case card operation:
    who (id/name/role), what (action + summary), why (reason), before/after versions.
    """
    if action_type not in ACTION_TYPES:
        raise ValueError(f"Unknown edit log action_type {action_type!r}")
    return edit_log(s).append(
        case_card_id=card.id,
        facility_id=card.facility_id,
        editor_user_id=actor.id,
        editor_name=actor.name,
        editor_role=actor.role,
        action_type=action_type,
        change_summary=change_summary,
        reason_for_change=reason,
        previous_version_id=previous_version_id,
        new_version_id=new_version_id,
        edited_at=at or utcnow(),
    )


def entries_for(s: "Session", card_id: int) -> list[CaseCardEditLog]:
    """Newest first."""
    return edit_log(s).list(
        CaseCardEditLog.case_card_id == card_id,
        order_by=(CaseCardEditLog.edited_at.desc(), CaseCardEditLog.id.desc()),
    )
