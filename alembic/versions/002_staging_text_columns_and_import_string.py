"""Unbounded staging columns and users.import_string for FOH agent references.

Revision ID: 002
Revises: 001
Create Date: 2026-10-17
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "002"
down_revision: str | None = "001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

# column -> width before this revision
STAGING_WIDTHS = {
    "codigo": 100,
    "first_name": 255,
    "last_name": 255,
    "phone": 20,
    "phone_code": 5,
    "email": 255,
    "manager_email": 255,
    "role": 20,
}


def upgrade() -> None:
    with op.batch_alter_table("temp_import_users") as batch_op:
        for column, width in STAGING_WIDTHS.items():
            batch_op.alter_column(column, type_=sa.Text(), existing_type=sa.String(width), existing_nullable=True)

    op.add_column("users", sa.Column("import_string", sa.String(255), nullable=True))
    op.create_index("ix_users_client_import_string", "users", ["client_id", "import_string"])


def downgrade() -> None:
    op.drop_index("ix_users_client_import_string", table_name="users")
    op.drop_column("users", "import_string")

    with op.batch_alter_table("temp_import_users") as batch_op:
        for column, width in STAGING_WIDTHS.items():
            batch_op.alter_column(column, type_=sa.String(width), existing_type=sa.Text(), existing_nullable=True)
