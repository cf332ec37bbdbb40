"""Applications, document types, uploads and the original rejection history.

Revision ID: 2b3c4d5e6f7a
Revises: 1a2b3c4d5e6f
Create Date: 2026-09-01
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "2b3c4d5e6f7a"
down_revision: Union[str, Sequence[str], None] = "1a2b3c4d5e6f"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _outcome_columns() -> list:
    return [
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("application_id", sa.Integer(), nullable=False),
        sa.Column("document_type_id", sa.Integer(), nullable=False),
        sa.Column("document_upload_id", sa.Integer(), nullable=False),
        sa.Column("storage_key", sa.String(512), nullable=False),
        sa.Column("original_filename", sa.String(255), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=True),
        sa.Column("file_type", sa.String(128), nullable=True),
        sa.Column("specific_issues", sa.JSON(), nullable=False),
        sa.Column("attempt_number", sa.Integer(), nullable=False),
        sa.Column("was_replaced", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("replaced_at", sa.DateTime(), nullable=True),
        sa.Column("replacement_upload_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("notification_sent", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("notification_sent_at", sa.DateTime(), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.ForeignKeyConstraint(["application_id"], ["applications.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["document_type_id"], ["document_types.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["document_upload_id"], ["document_uploads.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["replacement_upload_id"], ["document_uploads.id"], ondelete="SET NULL"),
    ]


def upgrade() -> None:
    op.create_table(
        "applications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("application_type", sa.String(32), nullable=False, server_default="New"),
        sa.Column("job_category", sa.String(128), nullable=True),
        sa.Column("status", sa.String(64), nullable=False, server_default="Submitted"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="RESTRICT"),
    )
    op.create_index("idx_applications_user", "applications", ["user_id"])
    op.create_index("idx_applications_status", "applications", ["status"])

    op.create_table(
        "document_types",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(64), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("is_medical", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.UniqueConstraint("key"),
    )

    op.create_table(
        "document_uploads",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("application_id", sa.Integer(), nullable=False),
        sa.Column("document_type_id", sa.Integer(), nullable=False),
        sa.Column("storage_key", sa.String(512), nullable=False),
        sa.Column("original_filename", sa.String(255), nullable=False),
        sa.Column("content_type", sa.String(128), nullable=False, server_default="application/octet-stream"),
        sa.Column("size_bytes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sha256", sa.String(64), nullable=True),
        sa.Column("uploaded_at", sa.DateTime(), nullable=False),
        sa.Column("uploaded_by_user_id", sa.Integer(), nullable=True),
        sa.Column("review_status", sa.String(16), nullable=False, server_default="Pending"),
        sa.Column("admin_remarks", sa.Text(), nullable=True),
        sa.Column("reviewed_by_user_id", sa.Integer(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(), nullable=True),
        sa.Column("is_current", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("superseded_at", sa.DateTime(), nullable=True),
        sa.Column("superseded_by_upload_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["application_id"], ["applications.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["document_type_id"], ["document_types.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["uploaded_by_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["reviewed_by_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["superseded_by_upload_id"], ["document_uploads.id"], ondelete="SET NULL"),
    )
    op.create_index("idx_document_uploads_slot", "document_uploads", ["application_id", "document_type_id"])
    op.create_index("idx_document_uploads_status", "document_uploads", ["review_status"])

    op.create_table(
        "document_rejection_history",
        *_outcome_columns(),
        sa.Column("rejection_category", sa.String(32), nullable=False, server_default="other"),
        sa.Column("rejection_reason", sa.Text(), nullable=False),
        sa.Column("rejected_by_user_id", sa.Integer(), nullable=True),
        sa.Column("rejected_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["rejected_by_user_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index(
        "idx_rejection_history_slot", "document_rejection_history", ["application_id", "document_type_id"]
    )
    op.create_index("idx_rejection_history_replaced", "document_rejection_history", ["was_replaced"])


def downgrade() -> None:
    op.drop_index("idx_rejection_history_replaced", table_name="document_rejection_history")
    op.drop_index("idx_rejection_history_slot", table_name="document_rejection_history")
    op.drop_table("document_rejection_history")
    op.drop_index("idx_document_uploads_status", table_name="document_uploads")
    op.drop_index("idx_document_uploads_slot", table_name="document_uploads")
    op.drop_table("document_uploads")
    op.drop_table("document_types")
    op.drop_index("idx_applications_status", table_name="applications")
    op.drop_index("idx_applications_user", table_name="applications")
    op.drop_table("applications")
