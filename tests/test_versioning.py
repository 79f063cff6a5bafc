import pytest

from app.ascops.errors import ValidationError
from app.ascops.modules.case_cards.models import CONTENT_SECTIONS
from app.ascops.modules.case_cards.versioning import INITIAL_VERSION, SemVer, snapshot_content


def test_initial_version_is_1_0_0():
    assert str(INITIAL_VERSION) == "1.0.0"


@pytest.mark.parametrize(
    "kind,expected",
    [
        ("major", "3.0.0"),
        ("minor", "2.5.0"),
        ("patch", "2.4.8"),
    ],
)
def test_bump_table(kind, expected):
    assert str(SemVer(2, 4, 7).bump(kind)) == expected


def test_patch_never_touches_major_minor():
    v = SemVer(4, 2, 0)
    for _ in range(5):
        nxt = v.bump("patch")
        assert (nxt.major, nxt.minor) == (4, 2)
        assert nxt > v
        v = nxt
    assert str(v) == "4.2.5"


def test_unknown_bump_rejected():
    with pytest.raises(ValidationError):
        SemVer(1, 0, 0).bump("huge")


def test_parse():
    assert SemVer.parse("10.0.3") == SemVer(10, 0, 3)
    with pytest.raises(ValueError):
        SemVer.parse("1.0")


def test_ordering_is_numeric_not_lexical():
    assert SemVer.parse("1.10.0") > SemVer.parse("1.9.9")


def test_snapshot_fills_missing_sections_and_copies():
    equipment = {"items": [{"name": "C-arm"}]}
    snap = snapshot_content({"equipment": equipment, "surgeon_notes": None})

    assert tuple(snap) == CONTENT_SECTIONS
    assert snap["equipment"] == equipment
    assert snap["surgeon_notes"] == {}
    assert snap["header_info"] == {}

    equipment["items"].append({"name": "Tourniquet"})
    assert snap["equipment"] == {"items": [{"name": "C-arm"}]}
