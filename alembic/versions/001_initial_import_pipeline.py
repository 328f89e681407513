"""Initial migration: tenants, users, prospects and the CSV import pipeline tables.

Revision ID: 001
Revises: None
Create Date: 2026-10-17
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSON_TYPE = sa.JSON().with_variant(JSONB(), "postgresql")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "clients",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default="true"),
        *_timestamps(),
        sa.UniqueConstraint("name", name="uq_clients_name"),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column(
            "client_id",
            sa.Uuid,
            sa.ForeignKey("clients.id", ondelete="CASCADE", name="fk_users_client_id_clients"),
            nullable=False,
        ),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("username", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("phone_code", sa.String(5), nullable=True),
        sa.Column("first_name", sa.String(255), nullable=True),
        sa.Column("last_name", sa.String(255), nullable=True),
        sa.Column("codigo", sa.String(100), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="standard"),
        sa.Column(
            "manager_id",
            sa.Uuid,
            sa.ForeignKey("users.id", ondelete="SET NULL", name="fk_users_manager_id_users"),
            nullable=True,
        ),
        sa.Column("custom_fields", JSON_TYPE, nullable=True),
        sa.Column("import_id", sa.Uuid, nullable=True),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default="true"),
        *_timestamps(),
        sa.UniqueConstraint("client_id", "email", name="uq_users_client_email"),
        sa.UniqueConstraint("client_id", "phone", name="uq_users_client_phone"),
    )
    op.create_index("ix_users_client_id", "users", ["client_id"])
    op.create_index("ix_users_import_id", "users", ["import_id"])
    op.create_index("ix_users_email", "users", ["email"])

    op.create_table(
        "prospects",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column(
            "client_id",
            sa.Uuid,
            sa.ForeignKey("clients.id", ondelete="CASCADE", name="fk_prospects_client_id_clients"),
            nullable=False,
        ),
        sa.Column(
            "manager_id",
            sa.Uuid,
            sa.ForeignKey("users.id", ondelete="SET NULL", name="fk_prospects_manager_id_users"),
            nullable=True,
        ),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(20), nullable=False),
        sa.Column("phone_code", sa.String(5), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("upgraded_to_user", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("import_id", sa.Uuid, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("client_id", "phone", name="uq_prospects_client_phone"),
    )
    op.create_index("ix_prospects_client_id", "prospects", ["client_id"])
    op.create_index("ix_prospects_import_id", "prospects", ["import_id"])

    op.create_table(
        "imports",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column(
            "client_id",
            sa.Uuid,
            sa.ForeignKey("clients.id", ondelete="CASCADE", name="fk_imports_client_id_clients"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            sa.Uuid,
            sa.ForeignKey("users.id", ondelete="SET NULL", name="fk_imports_user_id_users"),
            nullable=True,
        ),
        sa.Column("import_type", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("file_name", sa.String(255), nullable=True),
        sa.Column("file_data", JSON_TYPE, nullable=True),
        sa.Column("total_records", sa.Integer, nullable=False, server_default="0"),
        sa.Column("valid_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("invalid_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("progress", sa.Integer, nullable=False, server_default="0"),
        sa.Column("records_created", sa.Integer, nullable=False, server_default="0"),
        sa.Column("records_failed", sa.Integer, nullable=False, server_default="0"),
        sa.Column("error_summary", sa.Text, nullable=True),
        sa.Column("error_log", JSON_TYPE, nullable=True),
        sa.Column("unmatched_columns", JSON_TYPE, nullable=True),
        sa.Column("column_mapping", JSON_TYPE, nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_imports_client_id", "imports", ["client_id"])
    op.create_index("ix_imports_user_id", "imports", ["user_id"])
    op.create_index("ix_imports_status", "imports", ["status"])
    op.create_index("ix_imports_client_created", "imports", ["client_id", "created_at"])

    op.create_table(
        "temp_import_users",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column(
            "import_id",
            sa.Uuid,
            sa.ForeignKey("imports.id", ondelete="CASCADE", name="fk_temp_import_users_import_id_imports"),
            nullable=False,
        ),
        sa.Column("row_number", sa.Integer, nullable=False),
        sa.Column("phone_order", sa.Integer, nullable=True),
        sa.Column("codigo", sa.String(100), nullable=True),
        sa.Column("first_name", sa.String(255), nullable=True),
        sa.Column("last_name", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("phone_code", sa.String(5), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("manager_email", sa.String(255), nullable=True),
        sa.Column("role", sa.String(20), nullable=True),
        sa.Column("custom_fields", JSON_TYPE, nullable=True),
        sa.Column("crm_fields", JSON_TYPE, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("processed", sa.Boolean, nullable=False, server_default="false"),
        *_timestamps(),
    )
    op.create_index("ix_temp_import_users_import_row", "temp_import_users", ["import_id", "row_number"])
    op.create_index("ix_temp_import_users_import_phone", "temp_import_users", ["import_id", "phone"])
    op.create_index("ix_temp_import_users_import_email", "temp_import_users", ["import_id", "email"])

    op.create_table(
        "import_mapping_templates",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column(
            "client_id",
            sa.Uuid,
            sa.ForeignKey("clients.id", ondelete="CASCADE", name="fk_import_mapping_templates_client_id_clients"),
            nullable=False,
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_foh", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("column_mapping", JSON_TYPE, nullable=False),
        sa.Column("headers", JSON_TYPE, nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("client_id", "name", name="uq_import_mapping_templates_client_name"),
    )
    op.create_index("ix_import_mapping_templates_client_id", "import_mapping_templates", ["client_id"])

    op.create_table(
        "custom_field_settings",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column(
            "client_id",
            sa.Uuid,
            sa.ForeignKey("clients.id", ondelete="CASCADE", name="fk_custom_field_settings_client_id_clients"),
            nullable=False,
        ),
        sa.Column("label", sa.String(255), nullable=False),
        sa.Column("position", sa.Integer, nullable=False, server_default="0"),
        sa.Column("is_visible", sa.Boolean, nullable=False, server_default="true"),
        *_timestamps(),
        sa.UniqueConstraint("client_id", "label", name="uq_custom_field_settings_client_label"),
    )
    op.create_index("ix_custom_field_settings_client_id", "custom_field_settings", ["client_id"])


def downgrade() -> None:
    op.drop_table("custom_field_settings")
    op.drop_table("import_mapping_templates")
    op.drop_table("temp_import_users")
    op.drop_table("imports")
    op.drop_table("prospects")
    op.drop_table("users")
    op.drop_table("clients")
