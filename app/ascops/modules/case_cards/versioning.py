"""
Semantic versions and immutable content snapshots for case cards.

Bump rules:
- major: (M+1, 0, 0)
- minor: (M, m+1, 0)
- patch: (M, m, p+1)

Reverts are always a patch bump on top of the current version, so history
only ever moves forward.
"""

from __future__ import annotations

import copy
import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.ascops.errors import ValidationError
from app.ascops.modules.case_cards.models import CONTENT_SECTIONS, CaseCardVersion
from app.ascops.utils import utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.ascops.models import User
    from app.ascops.modules.case_cards.models import CaseCard


BUMP_MAJOR = "major"
BUMP_MINOR = "minor"
BUMP_PATCH = "patch"
VALID_BUMPS = (BUMP_MAJOR, BUMP_MINOR, BUMP_PATCH)

_SEMVER_RE = re.compile(r"(\d+)\.(\d+)\.(\d+)")


@dataclass(frozen=True, order=True)
class SemVer:
    major: int
    minor: int
    patch: int

    @classmethod
    def parse(cls, value: str) -> "SemVer":
        m = _SEMVER_RE.fullmatch((value or "").strip())
        if not m:
            raise ValueError(f"Unsupported version format: {value!r}")
        return cls(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    @classmethod
    def of(cls, card: "CaseCard") -> "SemVer":
        return cls(card.version_major, card.version_minor, card.version_patch)

    def bump(self, kind: str = BUMP_PATCH) -> "SemVer":
        if kind == BUMP_MAJOR:
            return SemVer(self.major + 1, 0, 0)
        if kind == BUMP_MINOR:
            return SemVer(self.major, self.minor + 1, 0)
        if kind == BUMP_PATCH:
            return SemVer(self.major, self.minor, self.patch + 1)
        raise ValidationError(f"Invalid version bump {kind!r}. Must be one of: {', '.join(VALID_BUMPS)}")

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


INITIAL_VERSION = SemVer(1, 0, 0)


def snapshot_content(sections: Mapping[str, Any] | None) -> dict[str, dict[str, Any]]:
    """
    Full copy of all eight content sections; anything not supplied is empty.
    Callers resend unchanged sections, there is no merge with the previous version.
    """
    sections = sections or {}
    return {name: copy.deepcopy(sections.get(name) or {}) for name in CONTENT_SECTIONS}


def content_of(version: CaseCardVersion | None) -> dict[str, dict[str, Any]]:
    if version is None:
        return snapshot_content(None)
    return snapshot_content({name: getattr(version, name) for name in CONTENT_SECTIONS})


def _append_version(
    s: "Session",
    card: "CaseCard",
    number: SemVer,
    content: Mapping[str, Any] | None,
    actor: "User",
    now: datetime | None,
) -> CaseCardVersion:
    v = CaseCardVersion(
        case_card_id=card.id,
        version_number=str(number),
        created_by_user_id=actor.id,
        created_at=now or utcnow(),
        **snapshot_content(content),
    )
    s.add(v)
    s.flush()

    card.version_major, card.version_minor, card.version_patch = number.major, number.minor, number.patch
    card.current_version_id = v.id
    card.current_version = v
    return v


def create_initial_version(
    s: "Session",
    card: "CaseCard",
    content: Mapping[str, Any] | None,
    actor: "User",
    *,
    now: datetime | None = None,
) -> CaseCardVersion:
    return _append_version(s, card, INITIAL_VERSION, content, actor, now)


def create_next_version(
    s: "Session",
    card: "CaseCard",
    content: Mapping[str, Any] | None,
    actor: "User",
    bump: str = BUMP_PATCH,
    *,
    now: datetime | None = None,
) -> CaseCardVersion:
    number = SemVer.of(card).bump(bump)
    return _append_version(s, card, number, content, actor, now)


def create_revert_version(
    s: "Session", card: "CaseCard", target: CaseCardVersion, actor: "User", *, now: datetime | None = None
) -> CaseCardVersion:
    # Patch-only on top of *current*; the row itself does not point back at target.
    number = SemVer.of(card).bump(BUMP_PATCH)
    return _append_version(s, card, number, content_of(target), actor, now)


def create_clone_version(
    s: "Session",
    new_card: "CaseCard",
    source_version: CaseCardVersion | None,
    actor: "User",
    *,
    now: datetime | None = None,
) -> CaseCardVersion:
    return _append_version(s, new_card, INITIAL_VERSION, content_of(source_version), actor, now)
