"""Request schemas for case card commands.

Every mutating endpoint accepts exactly one command shape. Commands form a
tagged union on ``op`` so a body can never be read as the wrong operation,
and unknown fields are rejected instead of silently ignored.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from app.ascops.errors import ValidationError
from app.ascops.utils import ordered_unique

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
ProcedureName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]
CaseType = Literal["ELECTIVE", "ADD_ON", "TRAUMA", "REVISION"]
VersionBump = Literal["major", "minor", "patch"]
ReviewAction = Literal["ACKNOWLEDGED", "APPLIED", "DISMISSED"]
Section = dict[str, Any]


class _Command(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
        str_strip_whitespace=True,
    )


class _ContentSections(_Command):
    """The eight content sections; always sent in full. null reads as an empty section."""

    header_info: Section = Field(default_factory=dict)
    patient_flags: Section = Field(default_factory=dict)
    instrumentation: Section = Field(default_factory=dict)
    equipment: Section = Field(default_factory=dict)
    supplies: Section = Field(default_factory=dict)
    medications: Section = Field(default_factory=dict)
    setup_positioning: Section = Field(default_factory=dict)
    surgeon_notes: Section = Field(default_factory=dict)

    @field_validator(
        "header_info",
        "patient_flags",
        "instrumentation",
        "equipment",
        "supplies",
        "medications",
        "setup_positioning",
        "surgeon_notes",
        mode="before",
    )
    @classmethod
    def _null_section(cls, v: Any) -> Any:
        return {} if v is None else v

    def content(self) -> dict[str, Section]:
        return {
            "header_info": self.header_info,
            "patient_flags": self.patient_flags,
            "instrumentation": self.instrumentation,
            "equipment": self.equipment,
            "supplies": self.supplies,
            "medications": self.medications,
            "setup_positioning": self.setup_positioning,
            "surgeon_notes": self.surgeon_notes,
        }


class CreateCaseCard(_ContentSections):
    op: Literal["create"] = "create"
    surgeon_id: int
    procedure_name: ProcedureName
    procedure_codes: list[str] = Field(default_factory=list)
    case_type: CaseType = "ELECTIVE"
    default_duration_minutes: Optional[int] = Field(default=None, gt=0)
    turnover_notes: Optional[str] = None
    reason_for_change: Optional[str] = None

    @field_validator("procedure_codes")
    @classmethod
    def _codes(cls, v: list[str]) -> list[str]:
        return ordered_unique(v)


class UpdateCaseCard(_ContentSections):
    """Header fields left out keep their current value; content sections do not."""

    op: Literal["update"] = "update"
    change_summary: NonEmptyStr
    reason_for_change: Optional[str] = None
    version_bump: VersionBump = "patch"

    procedure_name: Optional[ProcedureName] = None
    procedure_codes: Optional[list[str]] = None
    case_type: Optional[CaseType] = None
    default_duration_minutes: Optional[int] = Field(default=None, gt=0)
    turnover_notes: Optional[str] = None

    @field_validator("procedure_codes")
    @classmethod
    def _codes(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        return None if v is None else ordered_unique(v)


class DeactivateCaseCard(_Command):
    op: Literal["deactivate"] = "deactivate"
    reason: NonEmptyStr


class DeleteCaseCard(_Command):
    op: Literal["delete"] = "delete"
    reason: NonEmptyStr


class RevertCaseCard(_Command):
    op: Literal["revert"] = "revert"
    reason: NonEmptyStr


class CloneCaseCard(_Command):
    op: Literal["clone"] = "clone"
    target_surgeon_id: int
    procedure_name: Optional[ProcedureName] = None
    reason: Optional[str] = None


class SubmitFeedback(_Command):
    op: Literal["submit_feedback"] = "submit_feedback"
    surgical_case_id: int
    items_unused: list[str] = Field(default_factory=list)
    items_missing: list[str] = Field(default_factory=list)
    setup_issues: Optional[str] = None
    staff_comments: Optional[str] = None
    suggested_edits: Optional[str] = None

    @field_validator("items_unused", "items_missing")
    @classmethod
    def _items(cls, v: list[str]) -> list[str]:
        return ordered_unique(v)


class ReviewFeedback(_Command):
    op: Literal["review_feedback"] = "review_feedback"
    action: ReviewAction
    notes: Optional[str] = None


CaseCardCommand = Annotated[
    Union[
        CreateCaseCard,
        UpdateCaseCard,
        DeactivateCaseCard,
        DeleteCaseCard,
        RevertCaseCard,
        CloneCaseCard,
        SubmitFeedback,
        ReviewFeedback,
    ],
    Field(discriminator="op"),
]

_command_adapter: TypeAdapter[Any] = TypeAdapter(CaseCardCommand)


def _first_message(op: str, errors: list[dict[str, Any]]) -> str:
    if not errors:
        return "Invalid request body."
    err = errors[0]
    loc = [str(p) for p in err["loc"]]
    if loc and loc[0] == op:
        loc = loc[1:]
    return f"{'.'.join(loc)}: {err['msg']}" if loc else err["msg"]


def parse_command(op: str, payload: Any) -> Any:
    """Validate a JSON body as the command for `op`, or raise ValidationError (400)."""
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object.")
    data = dict(payload)
    data["op"] = op
    try:
        return _command_adapter.validate_python(data)
    except PydanticValidationError as e:
        errors = e.errors(include_url=False, include_context=False)
        raise ValidationError(
            _first_message(op, errors),
            details=[{"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]} for err in errors],
        ) from None
