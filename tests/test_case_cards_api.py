import pytest

from app.ascops.db import session_scope
from app.ascops.modules.case_cards.models import CaseCard

BASE = "/api/case-cards"


def _create(client, world, **extra):
    body = {
        "surgeonId": world.surgeon,
        "procedureName": "Knee Arthroscopy",
        "procedureCodes": ["29881"],
        "equipment": {"items": [{"name": "Arthroscopy tower"}]},
    }
    body.update(extra)
    return client.post(f"{BASE}/", json=body)


@pytest.fixture()
def card_id(client, login, world):
    login(world.admin)
    r = _create(client, world)
    assert r.status_code == 201, r.json
    return r.json["card"]["id"]


def test_create_returns_201_with_card_and_version(client, login, world):
    login(world.circulator)
    r = _create(client, world, caseType="TRAUMA", defaultDurationMinutes=90)
    assert r.status_code == 201
    card = r.json["card"]
    assert card["status"] == "DRAFT"
    assert card["version"] == "1.0.0"
    assert card["surgeonName"] == "Dr. Alice Smith"
    assert card["caseType"] == "TRAUMA"
    assert card["defaultDurationMinutes"] == 90
    assert card["lock"] is None
    assert card["deleted"] is None
    assert r.json["currentVersion"]["versionNumber"] == "1.0.0"
    assert r.json["currentVersion"]["equipment"] == {"items": [{"name": "Arthroscopy tower"}]}
    assert r.json["currentVersion"]["surgeonNotes"] == {}


def test_scheduler_is_forbidden_before_validation(client, login, world):
    login(world.scheduler)
    r = client.post(f"{BASE}/", json={"nonsense": True})
    assert r.status_code == 403
    assert r.json["error"]["code"] == "forbidden"
    assert r.json["error"]["message"] == "Your role does not have permission to create case cards"


def test_unknown_fields_are_rejected(client, login, world):
    login(world.admin)
    r = _create(client, world, surgeonName="Dr. Smith")
    assert r.status_code == 400
    err = r.json["error"]
    assert err["code"] == "validation_error"
    assert err["details"][0]["type"] == "extra_forbidden"


def test_non_object_body_rejected(client, login, world):
    login(world.admin)
    r = client.post(f"{BASE}/", json=["not", "an", "object"])
    assert r.status_code == 400


def test_lock_conflict_returns_holder(client, login, world, card_id):
    login(world.circulator)
    r = client.post(f"{BASE}/{card_id}/lock")
    assert r.status_code == 200
    assert r.json["lock"]["lockedByUserId"] == world.circulator

    login(world.surgeon)
    r = client.put(f"{BASE}/{card_id}", json={"changeSummary": "Add shaver", "equipment": {}})
    assert r.status_code == 409
    err = r.json["error"]
    assert err["code"] == "conflict"
    assert err["details"]["lockedByUserId"] == world.circulator
    assert err["details"]["lockedByName"] == "Casey Circulator"
    assert err["details"]["lockExpiresAt"].endswith("Z")

    r = client.post(f"{BASE}/{card_id}/unlock")
    assert r.status_code == 403

    login(world.circulator)
    assert client.post(f"{BASE}/{card_id}/unlock").status_code == 200
    login(world.surgeon)
    r = client.put(f"{BASE}/{card_id}", json={"changeSummary": "Add shaver", "versionBump": "minor"})
    assert r.status_code == 200
    assert r.json["card"]["version"] == "1.1.0"


def test_detail_shows_live_lock(client, login, world, card_id):
    login(world.circulator)
    client.post(f"{BASE}/{card_id}/lock")
    login(world.scheduler)
    r = client.get(f"{BASE}/{card_id}")
    assert r.status_code == 200
    assert r.json["card"]["lock"]["lockedByName"] == "Casey Circulator"


def test_lock_timeout_comes_from_config(app, client, login, world, card_id):
    app.config["CASE_CARD_LOCK_TIMEOUT_MINUTES"] = 5
    login(world.circulator)
    r = client.post(f"{BASE}/{card_id}/lock")
    lock = r.json["lock"]
    from datetime import datetime

    locked_at = datetime.fromisoformat(lock["lockedAt"].rstrip("Z"))
    expires_at = datetime.fromisoformat(lock["expiresAt"].rstrip("Z"))
    assert (expires_at - locked_at).total_seconds() == 5 * 60


def test_strict_lock_mode(app, client, login, world, card_id):
    app.config["CASE_CARD_REQUIRE_LOCK_FOR_EDIT"] = True
    login(world.admin)
    r = client.put(f"{BASE}/{card_id}", json={"changeSummary": "Tweak"})
    assert r.status_code == 409
    client.post(f"{BASE}/{card_id}/lock")
    r = client.put(f"{BASE}/{card_id}", json={"changeSummary": "Tweak"})
    assert r.status_code == 200


def test_activate_deactivate_delete_flow(client, login, world, card_id):
    login(world.admin)
    r = client.post(f"{BASE}/{card_id}/activate")
    assert r.status_code == 200
    assert r.json["status"] == "ACTIVE"

    r = client.post(f"{BASE}/{card_id}/activate")
    assert r.status_code == 400
    assert r.json["error"]["code"] == "invalid_state"

    r = client.post(f"{BASE}/{card_id}/deactivate", json={})
    assert r.status_code == 400

    login(world.circulator)
    r = client.post(f"{BASE}/{card_id}/deactivate", json={"reason": "Old"})
    assert r.status_code == 403

    login(world.admin)
    r = client.post(f"{BASE}/{card_id}/deactivate", json={"reason": "Technique retired"})
    assert r.status_code == 200
    assert r.json["status"] == "DEPRECATED"

    r = client.post(f"{BASE}/{card_id}/delete", json={"reason": "Cleanup"})
    assert r.status_code == 403

    login(world.surgeon)
    r = client.post(f"{BASE}/{card_id}/delete", json={"reason": "Cleanup"})
    assert r.status_code == 200
    assert r.json["card"]["deleted"]["reason"] == "Cleanup"

    login(world.admin)
    listed = client.get(f"{BASE}/").json["cards"]
    assert card_id not in [c["id"] for c in listed]
    listed = client.get(f"{BASE}/?includeDeleted=true").json["cards"]
    assert card_id in [c["id"] for c in listed]

    log = client.get(f"{BASE}/{card_id}/edit-log").json["editLog"]
    assert [e["actionType"] for e in log] == ["DELETE", "DEACTIVATE", "ACTIVATE", "CREATE"]


def test_versions_and_revert(client, login, world, card_id):
    login(world.admin)
    client.put(
        f"{BASE}/{card_id}",
        json={"changeSummary": "Swap tower", "equipment": {"items": [{"name": "Other tower"}]}},
    )
    versions = client.get(f"{BASE}/{card_id}/versions").json["versions"]
    assert [v["versionNumber"] for v in versions] == ["1.0.1", "1.0.0"]
    assert "equipment" not in versions[0]

    first = versions[-1]["id"]
    r = client.get(f"{BASE}/{card_id}/versions/{first}")
    assert r.json["version"]["equipment"] == {"items": [{"name": "Arthroscopy tower"}]}

    r = client.post(f"{BASE}/{card_id}/revert/{first}", json={"reason": "Back to original"})
    assert r.status_code == 200
    assert r.json["card"]["version"] == "1.0.2"
    assert r.json["currentVersion"]["equipment"] == {"items": [{"name": "Arthroscopy tower"}]}

    assert client.post(f"{BASE}/{card_id}/revert/{first}", json={}).status_code == 400
    assert client.get(f"{BASE}/{card_id}/versions/999999").status_code == 404


def test_clone_returns_201(client, login, world, card_id):
    login(world.circulator)
    r = client.post(f"{BASE}/{card_id}/clone", json={"targetSurgeonId": world.surgeon2})
    assert r.status_code == 201
    assert r.json["card"]["surgeonId"] == world.surgeon2
    assert r.json["card"]["id"] != card_id

    r = client.post(f"{BASE}/{card_id}/clone", json={"targetSurgeonId": world.surgeon2})
    assert r.status_code == 400


def test_list_filters_and_surgeons(client, login, world, card_id):
    login(world.admin)
    _create(client, world, surgeonId=world.surgeon2, procedureName="Rotator Cuff Repair")

    cards = client.get(f"{BASE}/?search=rotator").json["cards"]
    assert [c["procedureName"] for c in cards] == ["Rotator Cuff Repair"]
    cards = client.get(f"{BASE}/?search=smith").json["cards"]
    assert [c["id"] for c in cards] == [card_id]
    cards = client.get(f"{BASE}/?surgeonId={world.surgeon2}").json["cards"]
    assert len(cards) == 1
    assert client.get(f"{BASE}/?status=active").json["cards"] == []
    assert client.get(f"{BASE}/?status=bogus").status_code == 400

    surgeons = client.get(f"{BASE}/surgeons").json["surgeons"]
    assert [s["name"] for s in surgeons] == ["Dr. Alice Smith", "Dr. Bob Jones"]


def test_other_facility_sees_nothing(client, login, world, card_id):
    login(world.outsider)
    assert client.get(f"{BASE}/{card_id}").status_code == 404
    assert client.get(f"{BASE}/").json["cards"] == []
    assert client.post(f"{BASE}/{card_id}/activate").status_code == 404


def test_feedback_endpoints(client, login, world, card_id):
    login(world.circulator)
    r = client.post(
        f"{BASE}/{card_id}/feedback",
        json={"surgicalCaseId": world.case1, "itemsMissing": ["Shaver blade", "Shaver blade"]},
    )
    assert r.status_code == 201
    fb = r.json["feedback"]
    assert fb["itemsMissing"] == ["Shaver blade"]
    assert fb["procedureName"] == "Knee Arthroscopy"
    assert fb["scheduledDate"] == "2026-03-02"

    r = client.post(f"{BASE}/{card_id}/feedback", json={"surgicalCaseId": world.case1})
    assert r.status_code == 400

    r = client.post(f"{BASE}/{card_id}/feedback/{fb['id']}/review", json={"action": "ACKNOWLEDGED"})
    assert r.status_code == 403
    assert r.json["error"]["message"] == "Only administrators can review feedback"

    login(world.admin)
    r = client.post(f"{BASE}/{card_id}/feedback/{fb['id']}/review", json={"action": "DISMISSED", "notes": "n/a"})
    assert r.status_code == 200
    assert r.json["feedback"]["reviewAction"] == "DISMISSED"
    assert r.json["feedback"]["reviewedByName"] == "Alex Admin"

    r = client.post(f"{BASE}/{card_id}/feedback/{fb['id']}/review", json={"action": "APPLIED"})
    assert r.status_code == 400
    assert "already been reviewed" in r.json["error"]["message"]
    assert r.json["error"]["code"] == "invalid_state"

    r = client.get(f"{BASE}/{card_id}/feedback?status=reviewed")
    assert r.status_code == 200
    assert r.json["summary"] == {"total": 1, "pending": 0, "reviewed": 1}
    assert len(r.json["feedback"]) == 1


def test_failed_request_leaves_no_partial_state(app, client, login, world):
    login(world.admin)
    r = _create(client, world, surgeonId=world.circulator)
    assert r.status_code == 400
    with session_scope(app) as s:
        assert s.query(CaseCard).count() == 0
