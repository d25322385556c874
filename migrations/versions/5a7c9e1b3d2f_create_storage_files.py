"""Create the storage_files registry table."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "5a7c9e1b3d2f"
down_revision = None
branch_labels = None
depends_on = None


BIGINT = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    op.create_table(
        "storage_files",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("original_name", sa.String(length=255), nullable=False),
        sa.Column("stored_filename", sa.String(length=320), nullable=False),
        sa.Column("folder", sa.String(length=100), nullable=False),
        sa.Column("relative_path", sa.String(length=512), nullable=False),
        sa.Column("provider_path", sa.String(length=1024), nullable=False),
        sa.Column("size", BIGINT, nullable=False),
        sa.Column("mime_type", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("uploaded_by", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_storage_files_provider_path", "storage_files", ["provider_path"], unique=True)
    op.create_index("ix_storage_files_folder", "storage_files", ["folder"])


def downgrade() -> None:
    op.drop_index("ix_storage_files_folder", table_name="storage_files")
    op.drop_index("ix_storage_files_provider_path", table_name="storage_files")
    op.drop_table("storage_files")
