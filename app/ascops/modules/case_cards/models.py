from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    DDL,
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.ascops.audit import register_append_only
from app.ascops.models import Base, SurgicalCase, User
from app.ascops.utils import utcnow

JSONType = JSON().with_variant(JSONB(), "postgresql")

# DRAFT -> ACTIVE -> DEPRECATED; any non-deleted status -> DELETED (tombstone)
STATUS_DRAFT = "DRAFT"
STATUS_ACTIVE = "ACTIVE"
STATUS_DEPRECATED = "DEPRECATED"
STATUS_DELETED = "DELETED"
VALID_STATUSES = (STATUS_DRAFT, STATUS_ACTIVE, STATUS_DEPRECATED, STATUS_DELETED)
READ_ONLY_STATUSES = frozenset({STATUS_DEPRECATED, STATUS_DELETED})

ACTION_CREATE = "CREATE"
ACTION_UPDATE = "UPDATE"
ACTION_ACTIVATE = "ACTIVATE"
ACTION_DEACTIVATE = "DEACTIVATE"
ACTION_DELETE = "DELETE"
ACTION_REVERT = "REVERT"
ACTION_TYPES = (ACTION_CREATE, ACTION_UPDATE, ACTION_ACTIVATE, ACTION_DEACTIVATE, ACTION_DELETE, ACTION_REVERT)

# Order matters: it is the order sections are serialized and compared in.
CONTENT_SECTIONS = (
    "header_info",
    "patient_flags",
    "instrumentation",
    "equipment",
    "supplies",
    "medications",
    "setup_positioning",
    "surgeon_notes",
)


class CaseCard(Base):
    __tablename__ = "case_cards"
    __table_args__ = (
        Index("idx_case_cards_facility_status", "facility_id", "status"),
        Index("idx_case_cards_surgeon", "surgeon_id"),
        Index("idx_case_cards_locked_by", "locked_by_user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    facility_id: Mapped[int] = mapped_column(ForeignKey("facilities.id", ondelete="RESTRICT"), nullable=False)
    surgeon_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)

    # Header information (flat metadata, edited in place)
    procedure_name: Mapped[str] = mapped_column(String(255), nullable=False)
    procedure_codes: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    case_type: Mapped[str] = mapped_column(String(16), nullable=False, default="ELECTIVE")
    default_duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    turnover_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_DRAFT)
    version_major: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    version_minor: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version_patch: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_version_id: Mapped[int | None] = mapped_column(
        ForeignKey("case_card_versions.id", ondelete="RESTRICT", use_alter=True, name="fk_case_cards_current_version"),
        nullable=True,
    )

    # Soft lock (advisory, expires lazily)
    locked_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    lock_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    # Tombstone
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    deleted_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    delete_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, default=utcnow, onupdate=utcnow
    )
    created_by_user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)

    surgeon: Mapped[User] = relationship(User, foreign_keys=[surgeon_id], lazy="selectin")
    created_by: Mapped[User] = relationship(User, foreign_keys=[created_by_user_id], lazy="selectin")

    current_version: Mapped["CaseCardVersion | None"] = relationship(
        "CaseCardVersion",
        foreign_keys=[current_version_id],
        lazy="selectin",
        post_update=True,
    )

    @property
    def version(self) -> str:
        return f"{self.version_major}.{self.version_minor}.{self.version_patch}"

    @property
    def is_read_only(self) -> bool:
        return self.status in READ_ONLY_STATUSES


# Single ACTIVE card per (facility, surgeon, procedure). Activation deprecates
# the previous holder first; this index rejects anything that slips past that.
Index(
    "uq_case_cards_one_active",
    CaseCard.facility_id,
    CaseCard.surgeon_id,
    func.lower(CaseCard.procedure_name),
    unique=True,
    postgresql_where=text("status = 'ACTIVE'"),
    sqlite_where=text("status = 'ACTIVE'"),
)


@register_append_only
class CaseCardVersion(Base):
    """
    Immutable full snapshot of a card's content. A new version is always a
    complete copy of all eight sections, never a diff.
    """

    __tablename__ = "case_card_versions"
    __table_args__ = (
        UniqueConstraint("case_card_id", "version_number", name="uq_case_card_version_number"),
        Index("idx_case_card_versions_card", "case_card_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    case_card_id: Mapped[int] = mapped_column(ForeignKey("case_cards.id", ondelete="RESTRICT"), nullable=False)
    version_number: Mapped[str] = mapped_column(String(20), nullable=False)  # MAJOR.MINOR.PATCH

    header_info: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    patient_flags: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    instrumentation: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    equipment: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    supplies: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    medications: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    setup_positioning: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    surgeon_notes: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    created_by_user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)

    created_by: Mapped[User] = relationship(User, foreign_keys=[created_by_user_id], lazy="selectin")


@register_append_only
class CaseCardEditLog(Base):
    """
    Append-only compliance trail: one row per successful mutating operation.
    """

    __tablename__ = "case_card_edit_log"
    __table_args__ = (
        Index("idx_case_card_edit_log_card", "case_card_id"),
        Index("idx_case_card_edit_log_facility", "facility_id"),
        Index("idx_case_card_edit_log_editor", "editor_user_id"),
        Index("idx_case_card_edit_log_date", "edited_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    case_card_id: Mapped[int] = mapped_column(ForeignKey("case_cards.id", ondelete="RESTRICT"), nullable=False)
    facility_id: Mapped[int] = mapped_column(ForeignKey("facilities.id", ondelete="RESTRICT"), nullable=False)

    editor_user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    editor_name: Mapped[str] = mapped_column(String(255), nullable=False)
    editor_role: Mapped[str] = mapped_column(String(32), nullable=False)

    action_type: Mapped[str] = mapped_column(String(32), nullable=False)
    change_summary: Mapped[str] = mapped_column(Text, nullable=False)
    reason_for_change: Mapped[str | None] = mapped_column(Text, nullable=True)

    previous_version_id: Mapped[int | None] = mapped_column(
        ForeignKey("case_card_versions.id", ondelete="RESTRICT"), nullable=True
    )
    new_version_id: Mapped[int | None] = mapped_column(
        ForeignKey("case_card_versions.id", ondelete="RESTRICT"), nullable=True
    )

    edited_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)


class CaseCardFeedback(Base):
    __tablename__ = "case_card_feedback"
    __table_args__ = (
        UniqueConstraint("case_card_id", "surgical_case_id", name="uq_case_card_feedback_case"),
        Index("idx_case_card_feedback_card", "case_card_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    case_card_id: Mapped[int] = mapped_column(ForeignKey("case_cards.id", ondelete="RESTRICT"), nullable=False)
    surgical_case_id: Mapped[int] = mapped_column(ForeignKey("surgical_cases.id", ondelete="RESTRICT"), nullable=False)
    facility_id: Mapped[int] = mapped_column(ForeignKey("facilities.id", ondelete="RESTRICT"), nullable=False)

    items_unused: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    items_missing: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    setup_issues: Mapped[str | None] = mapped_column(Text, nullable=True)
    staff_comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    suggested_edits: Mapped[str | None] = mapped_column(Text, nullable=True)

    submitted_by_user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    # One-shot review
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    reviewed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    review_action: Mapped[str | None] = mapped_column(String(20), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    submitted_by: Mapped[User] = relationship(User, foreign_keys=[submitted_by_user_id], lazy="selectin")
    reviewed_by: Mapped[User | None] = relationship(User, foreign_keys=[reviewed_by_user_id], lazy="selectin")
    surgical_case: Mapped[SurgicalCase] = relationship(SurgicalCase, lazy="selectin")

    @property
    def is_reviewed(self) -> bool:
        return self.reviewed_at is not None


# Storage-level write-once enforcement for tables created via metadata.create_all
# (the Alembic migration installs the same triggers on Postgres).
_PG_PREVENT_MODIFICATION = DDL(
    """
    CREATE OR REPLACE FUNCTION prevent_append_only_modification()
    RETURNS TRIGGER AS $$
    BEGIN
        RAISE EXCEPTION '%% not allowed on append-only table %%', TG_OP, TG_TABLE_NAME;
    END;
    $$ LANGUAGE plpgsql;
    """
)


def _install_write_once_triggers(table_name: str) -> None:
    table = Base.metadata.tables[table_name]
    event.listen(table, "after_create", _PG_PREVENT_MODIFICATION.execute_if(dialect="postgresql"))
    event.listen(
        table,
        "after_create",
        DDL(
            f"CREATE TRIGGER {table_name}_no_modify BEFORE UPDATE OR DELETE ON {table_name} "
            "FOR EACH ROW EXECUTE FUNCTION prevent_append_only_modification()"
        ).execute_if(dialect="postgresql"),
    )
    for op in ("UPDATE", "DELETE"):
        event.listen(
            table,
            "after_create",
            DDL(
                f"CREATE TRIGGER {table_name}_no_{op.lower()} BEFORE {op} ON {table_name} "
                f"BEGIN SELECT RAISE(ABORT, '{op} not allowed on append-only table {table_name}'); END"
            ).execute_if(dialect="sqlite"),
        )


_install_write_once_triggers(CaseCardVersion.__tablename__)
_install_write_once_triggers(CaseCardEditLog.__tablename__)
