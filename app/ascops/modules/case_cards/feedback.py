"""
Post-case feedback on a case card.

Staff submit at most one feedback per (card, surgical case); an
administrator reviews it exactly once. Review never edits the card itself:
APPLIED only records that someone made the change through a normal update.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from app.ascops.errors import AlreadyInTerminalState, NotFound, ValidationError
from app.ascops.models import SurgicalCase
from app.ascops.modules.case_cards import governance
from app.ascops.modules.case_cards.models import CaseCardFeedback
from app.ascops.modules.case_cards.selectors import get_card
from app.ascops.utils import clean_str, ordered_unique, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.ascops.models import User
    from app.ascops.modules.case_cards.schemas import ReviewFeedback, SubmitFeedback

logger = logging.getLogger(__name__)

FILTER_PENDING = "pending"
FILTER_REVIEWED = "reviewed"


@dataclass(frozen=True)
class FeedbackSummary:
    total: int
    pending: int
    reviewed: int


def submit_feedback(
    s: "Session", actor: "User", card_id: int, cmd: "SubmitFeedback", *, now: datetime | None = None
) -> CaseCardFeedback:
    now = now or utcnow()
    card = get_card(s, actor.facility_id, card_id)

    surgical_case = s.scalars(
        select(SurgicalCase).where(
            SurgicalCase.id == cmd.surgical_case_id, SurgicalCase.facility_id == actor.facility_id
        )
    ).one_or_none()
    if surgical_case is None:
        raise NotFound("Surgical case not found")

    existing = s.scalars(
        select(CaseCardFeedback.id).where(
            CaseCardFeedback.case_card_id == card.id,
            CaseCardFeedback.surgical_case_id == surgical_case.id,
        )
    ).first()
    if existing is not None:
        raise ValidationError("Feedback already submitted for this case")

    fb = CaseCardFeedback(
        case_card_id=card.id,
        surgical_case_id=surgical_case.id,
        facility_id=actor.facility_id,
        items_unused=ordered_unique(cmd.items_unused),
        items_missing=ordered_unique(cmd.items_missing),
        setup_issues=clean_str(cmd.setup_issues),
        staff_comments=clean_str(cmd.staff_comments),
        suggested_edits=clean_str(cmd.suggested_edits),
        submitted_by_user_id=actor.id,
        submitted_by=actor,
        created_at=now,
    )
    s.add(fb)
    try:
        s.flush()
    except IntegrityError:
        # Lost a race with a concurrent submission for the same case.
        raise ValidationError("Feedback already submitted for this case") from None

    logger.info("case_card feedback submitted card_id=%s case_id=%s by=%s", card.id, surgical_case.id, actor.id)
    return fb


def review_feedback(
    s: "Session",
    actor: "User",
    card_id: int,
    feedback_id: int,
    cmd: "ReviewFeedback",
    *,
    now: datetime | None = None,
) -> CaseCardFeedback:
    governance.ensure_can_review_feedback(actor)
    now = now or utcnow()

    fb = s.scalars(
        select(CaseCardFeedback)
        .where(
            CaseCardFeedback.id == feedback_id,
            CaseCardFeedback.case_card_id == card_id,
            CaseCardFeedback.facility_id == actor.facility_id,
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    ).one_or_none()
    if fb is None:
        raise NotFound("Feedback not found")
    if fb.is_reviewed:
        raise AlreadyInTerminalState("Feedback has already been reviewed")

    fb.reviewed_at = now
    fb.reviewed_by_user_id = actor.id
    fb.reviewed_by = actor
    fb.review_action = cmd.action
    fb.review_notes = clean_str(cmd.notes)
    s.flush()

    logger.info("case_card feedback reviewed id=%s action=%s by=%s", fb.id, fb.review_action, actor.id)
    return fb


def list_feedback(
    s: "Session", facility_id: int, card_id: int, status: str | None = None
) -> tuple[list[CaseCardFeedback], FeedbackSummary]:
    """
    Feedback for a card, newest first. `status` narrows the list to pending
    or reviewed items; the summary always counts all of the card's feedback.
    """
    card = get_card(s, facility_id, card_id)
    if status and status not in (FILTER_PENDING, FILTER_REVIEWED):
        raise ValidationError("Invalid status filter. Must be pending or reviewed")

    rows = list(
        s.scalars(
            select(CaseCardFeedback)
            .where(CaseCardFeedback.case_card_id == card.id, CaseCardFeedback.facility_id == facility_id)
            .order_by(CaseCardFeedback.created_at.desc(), CaseCardFeedback.id.desc())
        ).all()
    )
    reviewed = sum(1 for fb in rows if fb.is_reviewed)
    summary = FeedbackSummary(total=len(rows), pending=len(rows) - reviewed, reviewed=reviewed)

    if status == FILTER_PENDING:
        rows = [fb for fb in rows if not fb.is_reviewed]
    elif status == FILTER_REVIEWED:
        rows = [fb for fb in rows if fb.is_reviewed]
    return rows, summary
