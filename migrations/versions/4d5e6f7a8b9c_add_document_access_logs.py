"""Add document_access_logs for signed-link fetches.

Revision ID: 4d5e6f7a8b9c
Revises: 3c4d5e6f7a8b
Create Date: 2026-10-06
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "4d5e6f7a8b9c"
down_revision: Union[str, Sequence[str], None] = "3c4d5e6f7a8b"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "document_access_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("document_id", sa.String(64), nullable=True),
        sa.Column("application_id", sa.Integer(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("user_email", sa.String(320), nullable=True),
        sa.Column("user_role", sa.String(64), nullable=True),
        sa.Column("access_status", sa.String(32), nullable=False),
        sa.Column("access_method", sa.String(32), nullable=False, server_default="signed_url"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("referrer", sa.String(512), nullable=True),
        sa.Column("response_time_ms", sa.Integer(), nullable=True),
        sa.Column("document_type", sa.String(128), nullable=True),
        sa.Column("file_name", sa.String(255), nullable=True),
        sa.Column("accessed_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("idx_document_access_logs_document", "document_access_logs", ["document_id"])
    op.create_index("idx_document_access_logs_status", "document_access_logs", ["access_status"])
    op.create_index("idx_document_access_logs_accessed_at", "document_access_logs", ["accessed_at"])


def downgrade() -> None:
    op.drop_index("idx_document_access_logs_accessed_at", table_name="document_access_logs")
    op.drop_index("idx_document_access_logs_status", table_name="document_access_logs")
    op.drop_index("idx_document_access_logs_document", table_name="document_access_logs")
    op.drop_table("document_access_logs")
