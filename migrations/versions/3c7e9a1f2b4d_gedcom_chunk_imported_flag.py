"""Track which GEDCOM chunks have been turned into records

Revision ID: 3c7e9a1f2b4d
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "3c7e9a1f2b4d"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("gedcom_chunks") as batch_op:
        batch_op.add_column(
            sa.Column(
                "imported",
                sa.Boolean(),
                nullable=False,
                server_default=sa.false(),
            )
        )
    op.create_index(
        "idx_gedcom_chunks_tree_imported",
        "gedcom_chunks",
        ["tree_id", "imported"],
        unique=False,
        if_not_exists=True,
    )
    # Chunks left over from before the flag existed belong to finished imports
    op.execute(sa.text(
        "UPDATE gedcom_chunks SET imported = 1 WHERE tree_id IN "
        "(SELECT tree_id FROM tree_settings WHERE setting_name = 'imported' AND setting_value = '1')"
    ))
    with op.batch_alter_table("gedcom_chunks") as batch_op:
        batch_op.alter_column("imported", server_default=None)


def downgrade() -> None:
    op.drop_index("idx_gedcom_chunks_tree_imported", table_name="gedcom_chunks")
    with op.batch_alter_table("gedcom_chunks") as batch_op:
        batch_op.drop_column("imported")
