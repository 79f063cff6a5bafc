"""Case card core: facilities, users, surgical cases, case cards, versions, edit log, feedback.

Revision ID: c4a5e1d2b3f0
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "c4a5e1d2b3f0"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

APPEND_ONLY_TABLES = ("case_card_versions", "case_card_edit_log")


def _json() -> sa.types.TypeEngine:
    return sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "facilities",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("facility_id", sa.Integer(), nullable=False),
        sa.Column("username", sa.String(150), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("role", sa.String(32), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["facility_id"], ["facilities.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("username"),
    )
    op.create_index("idx_users_facility_role", "users", ["facility_id", "role"])

    op.create_table(
        "case_cards",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("facility_id", sa.Integer(), nullable=False),
        sa.Column("surgeon_id", sa.Integer(), nullable=False),
        sa.Column("procedure_name", sa.String(255), nullable=False),
        sa.Column("procedure_codes", _json(), nullable=False),
        sa.Column("case_type", sa.String(16), nullable=False, server_default="ELECTIVE"),
        sa.Column("default_duration_minutes", sa.Integer(), nullable=True),
        sa.Column("turnover_notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="DRAFT"),
        sa.Column("version_major", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("version_minor", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version_patch", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_version_id", sa.Integer(), nullable=True),
        sa.Column("locked_by_user_id", sa.Integer(), nullable=True),
        sa.Column("locked_at", sa.DateTime(), nullable=True),
        sa.Column("lock_expires_at", sa.DateTime(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.Column("deleted_by_user_id", sa.Integer(), nullable=True),
        sa.Column("delete_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("created_by_user_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["facility_id"], ["facilities.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["surgeon_id"], ["users.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["locked_by_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["deleted_by_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"], ondelete="RESTRICT"),
        sa.CheckConstraint(
            "status IN ('DRAFT', 'ACTIVE', 'DEPRECATED', 'DELETED')", name="ck_case_cards_status"
        ),
    )
    op.create_index("idx_case_cards_facility_status", "case_cards", ["facility_id", "status"])
    op.create_index("idx_case_cards_surgeon", "case_cards", ["surgeon_id"])
    op.create_index("idx_case_cards_locked_by", "case_cards", ["locked_by_user_id"])
    op.create_index(
        "uq_case_cards_one_active",
        "case_cards",
        ["facility_id", "surgeon_id", sa.text("lower(procedure_name)")],
        unique=True,
        postgresql_where=sa.text("status = 'ACTIVE'"),
        sqlite_where=sa.text("status = 'ACTIVE'"),
    )

    op.create_table(
        "case_card_versions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("case_card_id", sa.Integer(), nullable=False),
        sa.Column("version_number", sa.String(20), nullable=False),
        sa.Column("header_info", _json(), nullable=False),
        sa.Column("patient_flags", _json(), nullable=False),
        sa.Column("instrumentation", _json(), nullable=False),
        sa.Column("equipment", _json(), nullable=False),
        sa.Column("supplies", _json(), nullable=False),
        sa.Column("medications", _json(), nullable=False),
        sa.Column("setup_positioning", _json(), nullable=False),
        sa.Column("surgeon_notes", _json(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("created_by_user_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["case_card_id"], ["case_cards.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("case_card_id", "version_number", name="uq_case_card_version_number"),
    )
    op.create_index("idx_case_card_versions_card", "case_card_versions", ["case_card_id"])

    # SQLite cannot add a constraint to an existing table; the column stays a plain integer there.
    if op.get_bind().dialect.name != "sqlite":
        op.create_foreign_key(
            "fk_case_cards_current_version",
            "case_cards",
            "case_card_versions",
            ["current_version_id"],
            ["id"],
            ondelete="RESTRICT",
        )

    op.create_table(
        "case_card_edit_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("case_card_id", sa.Integer(), nullable=False),
        sa.Column("facility_id", sa.Integer(), nullable=False),
        sa.Column("editor_user_id", sa.Integer(), nullable=False),
        sa.Column("editor_name", sa.String(255), nullable=False),
        sa.Column("editor_role", sa.String(32), nullable=False),
        sa.Column("action_type", sa.String(32), nullable=False),
        sa.Column("change_summary", sa.Text(), nullable=False),
        sa.Column("reason_for_change", sa.Text(), nullable=True),
        sa.Column("previous_version_id", sa.Integer(), nullable=True),
        sa.Column("new_version_id", sa.Integer(), nullable=True),
        sa.Column("edited_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["case_card_id"], ["case_cards.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["facility_id"], ["facilities.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["editor_user_id"], ["users.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["previous_version_id"], ["case_card_versions.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["new_version_id"], ["case_card_versions.id"], ondelete="RESTRICT"),
        sa.CheckConstraint(
            "action_type IN ('CREATE', 'UPDATE', 'ACTIVATE', 'DEACTIVATE', 'DELETE', 'REVERT')",
            name="ck_case_card_edit_log_action",
        ),
    )
    op.create_index("idx_case_card_edit_log_card", "case_card_edit_log", ["case_card_id"])
    op.create_index("idx_case_card_edit_log_facility", "case_card_edit_log", ["facility_id"])
    op.create_index("idx_case_card_edit_log_editor", "case_card_edit_log", ["editor_user_id"])
    op.create_index("idx_case_card_edit_log_date", "case_card_edit_log", ["edited_at"])

    op.create_table(
        "surgical_cases",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("facility_id", sa.Integer(), nullable=False),
        sa.Column("surgeon_id", sa.Integer(), nullable=True),
        sa.Column("procedure_name", sa.String(255), nullable=False),
        sa.Column("scheduled_date", sa.Date(), nullable=True),
        sa.Column("case_card_version_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["facility_id"], ["facilities.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["surgeon_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["case_card_version_id"], ["case_card_versions.id"], ondelete="SET NULL"),
    )

    op.create_table(
        "case_card_feedback",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("case_card_id", sa.Integer(), nullable=False),
        sa.Column("surgical_case_id", sa.Integer(), nullable=False),
        sa.Column("facility_id", sa.Integer(), nullable=False),
        sa.Column("items_unused", _json(), nullable=False),
        sa.Column("items_missing", _json(), nullable=False),
        sa.Column("setup_issues", sa.Text(), nullable=True),
        sa.Column("staff_comments", sa.Text(), nullable=True),
        sa.Column("suggested_edits", sa.Text(), nullable=True),
        sa.Column("submitted_by_user_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("reviewed_at", sa.DateTime(), nullable=True),
        sa.Column("reviewed_by_user_id", sa.Integer(), nullable=True),
        sa.Column("review_action", sa.String(20), nullable=True),
        sa.Column("review_notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["case_card_id"], ["case_cards.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["surgical_case_id"], ["surgical_cases.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["facility_id"], ["facilities.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["submitted_by_user_id"], ["users.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["reviewed_by_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("case_card_id", "surgical_case_id", name="uq_case_card_feedback_case"),
        sa.CheckConstraint(
            "review_action IS NULL OR review_action IN ('ACKNOWLEDGED', 'APPLIED', 'DISMISSED')",
            name="ck_case_card_feedback_review_action",
        ),
    )
    op.create_index("idx_case_card_feedback_card", "case_card_feedback", ["case_card_id"])

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        op.execute(
            """
            CREATE OR REPLACE FUNCTION prevent_append_only_modification()
            RETURNS TRIGGER AS $$
            BEGIN
                RAISE EXCEPTION '% not allowed on append-only table %', TG_OP, TG_TABLE_NAME;
            END;
            $$ LANGUAGE plpgsql;
            """
        )
        for table in APPEND_ONLY_TABLES:
            op.execute(
                f"CREATE TRIGGER {table}_no_modify BEFORE UPDATE OR DELETE ON {table} "
                "FOR EACH ROW EXECUTE FUNCTION prevent_append_only_modification()"
            )
    elif bind.dialect.name == "sqlite":
        for table in APPEND_ONLY_TABLES:
            for verb in ("UPDATE", "DELETE"):
                op.execute(
                    f"CREATE TRIGGER {table}_no_{verb.lower()} BEFORE {verb} ON {table} "
                    f"BEGIN SELECT RAISE(ABORT, '{verb} not allowed on append-only table {table}'); END"
                )


def downgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for table in APPEND_ONLY_TABLES:
            op.execute(f"DROP TRIGGER IF EXISTS {table}_no_modify ON {table}")
        op.execute("DROP FUNCTION IF EXISTS prevent_append_only_modification()")
    elif bind.dialect.name == "sqlite":
        for table in APPEND_ONLY_TABLES:
            for verb in ("update", "delete"):
                op.execute(f"DROP TRIGGER IF EXISTS {table}_no_{verb}")

    op.drop_index("idx_case_card_feedback_card", table_name="case_card_feedback")
    op.drop_table("case_card_feedback")
    op.drop_table("surgical_cases")
    op.drop_index("idx_case_card_edit_log_date", table_name="case_card_edit_log")
    op.drop_index("idx_case_card_edit_log_editor", table_name="case_card_edit_log")
    op.drop_index("idx_case_card_edit_log_facility", table_name="case_card_edit_log")
    op.drop_index("idx_case_card_edit_log_card", table_name="case_card_edit_log")
    op.drop_table("case_card_edit_log")
    if bind.dialect.name != "sqlite":
        op.drop_constraint("fk_case_cards_current_version", "case_cards", type_="foreignkey")
    op.drop_index("idx_case_card_versions_card", table_name="case_card_versions")
    op.drop_table("case_card_versions")
    op.drop_index("uq_case_cards_one_active", table_name="case_cards")
    op.drop_index("idx_case_cards_locked_by", table_name="case_cards")
    op.drop_index("idx_case_cards_surgeon", table_name="case_cards")
    op.drop_index("idx_case_cards_facility_status", table_name="case_cards")
    op.drop_table("case_cards")
    op.drop_index("idx_users_facility_role", table_name="users")
    op.drop_table("users")
    op.drop_table("facilities")
