from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from flask import Blueprint, current_app, jsonify, request

from app.ascops.constants import ROLE_ADMIN
from app.ascops.db import db_session, unit_of_work
from app.ascops.modules.case_cards import feedback as feedback_service
from app.ascops.modules.case_cards import lifecycle, selectors
from app.ascops.modules.case_cards.governance import CASE_CARD_EDITOR_ROLES
from app.ascops.modules.case_cards.locking import holder_name, lock_state_of
from app.ascops.modules.case_cards.models import CaseCard, CaseCardEditLog, CaseCardFeedback, CaseCardVersion
from app.ascops.modules.case_cards.schemas import parse_command
from app.ascops.rbac import current_user, require_login, require_role
from app.ascops.utils import isoformat, utcnow

bp = Blueprint("case_cards", __name__)


def _editors_only(action: str):
    return require_role(*CASE_CARD_EDITOR_ROLES, message=f"Your role does not have permission to {action} case cards")


def _lock_timeout() -> timedelta:
    return timedelta(minutes=int(current_app.config.get("CASE_CARD_LOCK_TIMEOUT_MINUTES") or 30))


def _require_lock_holder() -> bool:
    return bool(current_app.config.get("CASE_CARD_REQUIRE_LOCK_FOR_EDIT"))


def _body() -> Any:
    return request.get_json(silent=True)


# ---------------------------------------------------------------------------
# Serializers (camelCase, matching request bodies)
# ---------------------------------------------------------------------------


def _lock_json(card: CaseCard, now: datetime) -> dict[str, Any] | None:
    state = lock_state_of(card)
    if not state.is_active(now):
        return None
    return {
        "lockedByUserId": state.holder_user_id,
        "lockedByName": holder_name(card, state),
        "lockedAt": isoformat(state.locked_at),
        "expiresAt": isoformat(state.expires_at),
    }


def card_json(card: CaseCard, now: datetime, *, detail: bool = False) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": card.id,
        "surgeonId": card.surgeon_id,
        "surgeonName": card.surgeon.name if card.surgeon else None,
        "procedureName": card.procedure_name,
        "procedureCodes": list(card.procedure_codes or []),
        "caseType": card.case_type,
        "defaultDurationMinutes": card.default_duration_minutes,
        "status": card.status,
        "version": card.version,
        "currentVersionId": card.current_version_id,
        "createdAt": isoformat(card.created_at),
        "updatedAt": isoformat(card.updated_at),
        "createdByName": card.created_by.name if card.created_by else None,
        "lock": _lock_json(card, now),
        "deleted": (
            {
                "deletedAt": isoformat(card.deleted_at),
                "deletedByUserId": card.deleted_by_user_id,
                "reason": card.delete_reason,
            }
            if card.deleted_at
            else None
        ),
    }
    if detail:
        out["turnoverNotes"] = card.turnover_notes
    return out


def version_json(v: CaseCardVersion, *, with_content: bool = True) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": v.id,
        "versionNumber": v.version_number,
        "createdAt": isoformat(v.created_at),
        "createdByUserId": v.created_by_user_id,
        "createdByName": v.created_by.name if v.created_by else None,
    }
    if with_content:
        out.update(
            {
                "headerInfo": v.header_info,
                "patientFlags": v.patient_flags,
                "instrumentation": v.instrumentation,
                "equipment": v.equipment,
                "supplies": v.supplies,
                "medications": v.medications,
                "setupPositioning": v.setup_positioning,
                "surgeonNotes": v.surgeon_notes,
            }
        )
    return out


def edit_log_json(e: CaseCardEditLog) -> dict[str, Any]:
    return {
        "id": e.id,
        "actionType": e.action_type,
        "editorUserId": e.editor_user_id,
        "editorName": e.editor_name,
        "editorRole": e.editor_role,
        "changeSummary": e.change_summary,
        "reasonForChange": e.reason_for_change,
        "previousVersionId": e.previous_version_id,
        "newVersionId": e.new_version_id,
        "editedAt": isoformat(e.edited_at),
    }


def feedback_json(fb: CaseCardFeedback) -> dict[str, Any]:
    sc = fb.surgical_case
    return {
        "id": fb.id,
        "surgicalCaseId": fb.surgical_case_id,
        "procedureName": sc.procedure_name if sc else None,
        "scheduledDate": sc.scheduled_date.isoformat() if sc and sc.scheduled_date else None,
        "itemsUnused": list(fb.items_unused or []),
        "itemsMissing": list(fb.items_missing or []),
        "setupIssues": fb.setup_issues,
        "staffComments": fb.staff_comments,
        "suggestedEdits": fb.suggested_edits,
        "submittedByUserId": fb.submitted_by_user_id,
        "submittedByName": fb.submitted_by.name if fb.submitted_by else None,
        "reviewedAt": isoformat(fb.reviewed_at),
        "reviewedByUserId": fb.reviewed_by_user_id,
        "reviewedByName": fb.reviewed_by.name if fb.reviewed_by else None,
        "reviewAction": fb.review_action,
        "reviewNotes": fb.review_notes,
        "createdAt": isoformat(fb.created_at),
    }


def _card_response(card: CaseCard, now: datetime) -> dict[str, Any]:
    current = card.current_version
    return {
        "card": card_json(card, now, detail=True),
        "currentVersion": version_json(current) if current is not None else None,
    }


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@bp.get("/")
@require_login
def list_case_cards():
    s = db_session()
    actor = current_user()
    now = utcnow()
    cards = selectors.list_cards(
        s,
        actor.facility_id,
        surgeon_id=request.args.get("surgeonId", type=int),
        status=request.args.get("status"),
        search=request.args.get("search"),
        include_deleted=(request.args.get("includeDeleted") or "").lower() == "true",
    )
    return jsonify({"cards": [card_json(c, now) for c in cards]})


@bp.get("/surgeons")
@require_login
def list_surgeons():
    s = db_session()
    actor = current_user()
    surgeons = selectors.list_surgeons(s, actor.facility_id)
    return jsonify({"surgeons": [{"id": u.id, "name": u.name} for u in surgeons]})


@bp.get("/<int:card_id>")
@require_login
def get_case_card(card_id: int):
    s = db_session()
    actor = current_user()
    now = utcnow()
    with unit_of_work(s):
        card = selectors.view_card(s, actor.facility_id, card_id, now)
    return jsonify(_card_response(card, now))


@bp.get("/<int:card_id>/versions")
@require_login
def list_versions(card_id: int):
    s = db_session()
    actor = current_user()
    versions = selectors.list_versions(s, actor.facility_id, card_id)
    return jsonify({"versions": [version_json(v, with_content=False) for v in versions]})


@bp.get("/<int:card_id>/versions/<int:version_id>")
@require_login
def get_version(card_id: int, version_id: int):
    s = db_session()
    actor = current_user()
    v = selectors.get_version(s, actor.facility_id, card_id, version_id)
    return jsonify({"version": version_json(v)})


@bp.get("/<int:card_id>/edit-log")
@require_login
def edit_log(card_id: int):
    s = db_session()
    actor = current_user()
    entries = selectors.edit_log_for(s, actor.facility_id, card_id)
    return jsonify({"editLog": [edit_log_json(e) for e in entries]})


# ---------------------------------------------------------------------------
# Card mutations
# ---------------------------------------------------------------------------


@bp.post("/")
@_editors_only("create")
def create_case_card():
    s = db_session()
    actor = current_user()
    cmd = parse_command("create", _body())
    now = utcnow()
    with unit_of_work(s):
        card = lifecycle.create_case_card(s, actor, cmd, now=now)
    return jsonify(_card_response(card, now)), 201


@bp.put("/<int:card_id>")
@_editors_only("edit")
def update_case_card(card_id: int):
    s = db_session()
    actor = current_user()
    cmd = parse_command("update", _body())
    now = utcnow()
    with unit_of_work(s):
        card = lifecycle.update_case_card(s, actor, card_id, cmd, now=now, require_lock_holder=_require_lock_holder())
    return jsonify(_card_response(card, now))


@bp.post("/<int:card_id>/activate")
@_editors_only("activate")
def activate_case_card(card_id: int):
    s = db_session()
    actor = current_user()
    now = utcnow()
    with unit_of_work(s):
        card = lifecycle.activate_case_card(s, actor, card_id, now=now)
    return jsonify({"success": True, "status": card.status, "card": card_json(card, now)})


@bp.post("/<int:card_id>/deactivate")
@require_login
def deactivate_case_card(card_id: int):
    s = db_session()
    actor = current_user()
    cmd = parse_command("deactivate", _body())
    now = utcnow()
    with unit_of_work(s):
        card = lifecycle.deactivate_case_card(s, actor, card_id, cmd, now=now)
    return jsonify({"success": True, "status": card.status, "card": card_json(card, now)})


@bp.post("/<int:card_id>/delete")
@require_login
def delete_case_card(card_id: int):
    s = db_session()
    actor = current_user()
    cmd = parse_command("delete", _body())
    now = utcnow()
    with unit_of_work(s):
        card = lifecycle.delete_case_card(s, actor, card_id, cmd, now=now)
    return jsonify({"success": True, "status": card.status, "card": card_json(card, now)})


@bp.post("/<int:card_id>/clone")
@_editors_only("clone")
def clone_case_card(card_id: int):
    s = db_session()
    actor = current_user()
    cmd = parse_command("clone", _body())
    now = utcnow()
    with unit_of_work(s):
        card = lifecycle.clone_case_card(s, actor, card_id, cmd, now=now)
    return jsonify(_card_response(card, now)), 201


@bp.post("/<int:card_id>/lock")
@_editors_only("edit")
def lock_case_card(card_id: int):
    s = db_session()
    actor = current_user()
    now = utcnow()
    with unit_of_work(s):
        card = lifecycle.lock_case_card(s, actor, card_id, now=now, timeout=_lock_timeout())
    return jsonify({"success": True, "lock": _lock_json(card, now)})


@bp.post("/<int:card_id>/unlock")
@require_login
def unlock_case_card(card_id: int):
    s = db_session()
    actor = current_user()
    now = utcnow()
    with unit_of_work(s):
        lifecycle.unlock_case_card(s, actor, card_id, now=now)
    return jsonify({"success": True})


@bp.post("/<int:card_id>/revert/<int:version_id>")
@_editors_only("edit")
def revert_case_card(card_id: int, version_id: int):
    s = db_session()
    actor = current_user()
    cmd = parse_command("revert", _body())
    now = utcnow()
    with unit_of_work(s):
        card = lifecycle.revert_case_card(
            s, actor, card_id, version_id, cmd, now=now, require_lock_holder=_require_lock_holder()
        )
    return jsonify(_card_response(card, now))


# ---------------------------------------------------------------------------
# Feedback
# ---------------------------------------------------------------------------


@bp.post("/<int:card_id>/feedback")
@require_login
def submit_feedback(card_id: int):
    s = db_session()
    actor = current_user()
    cmd = parse_command("submit_feedback", _body())
    with unit_of_work(s):
        fb = feedback_service.submit_feedback(s, actor, card_id, cmd)
    return jsonify({"feedback": feedback_json(fb)}), 201


@bp.get("/<int:card_id>/feedback")
@require_login
def list_feedback(card_id: int):
    s = db_session()
    actor = current_user()
    rows, summary = feedback_service.list_feedback(s, actor.facility_id, card_id, request.args.get("status"))
    return jsonify(
        {
            "feedback": [feedback_json(fb) for fb in rows],
            "summary": {"total": summary.total, "pending": summary.pending, "reviewed": summary.reviewed},
        }
    )


@bp.post("/<int:card_id>/feedback/<int:feedback_id>/review")
@require_role(ROLE_ADMIN, message="Only administrators can review feedback")
def review_feedback(card_id: int, feedback_id: int):
    s = db_session()
    actor = current_user()
    cmd = parse_command("review_feedback", _body())
    with unit_of_work(s):
        fb = feedback_service.review_feedback(s, actor, card_id, feedback_id, cmd)
    return jsonify({"success": True, "feedback": feedback_json(fb)})
