"""Add document_referral_history (issue taxonomy + medical referral detail).

New outcomes are written here only. document_rejection_history stays read-only
until a backfill moves its rows over.

Revision ID: 3c4d5e6f7a8b
Revises: 2b3c4d5e6f7a
Create Date: 2026-09-22
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3c4d5e6f7a8b"
down_revision: Union[str, Sequence[str], None] = "2b3c4d5e6f7a"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "document_referral_history",
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
        sa.Column("issue_type", sa.String(32), nullable=False),
        sa.Column("medical_referral_category", sa.String(64), nullable=True),
        sa.Column("document_issue_category", sa.String(64), nullable=True),
        sa.Column("referral_reason", sa.Text(), nullable=False),
        sa.Column("doctor_name", sa.String(255), nullable=True),
        sa.Column("clinic_address", sa.String(512), nullable=True),
        sa.Column("finding_description", sa.Text(), nullable=True),
        sa.Column("referred_by_user_id", sa.Integer(), nullable=True),
        sa.Column("referred_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["application_id"], ["applications.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["document_type_id"], ["document_types.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["document_upload_id"], ["document_uploads.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["replacement_upload_id"], ["document_uploads.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["referred_by_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("application_id", "document_type_id", "attempt_number", name="uq_referral_slot_attempt"),
    )
    op.create_index(
        "idx_referral_history_slot", "document_referral_history", ["application_id", "document_type_id"]
    )
    op.create_index("idx_referral_history_replaced", "document_referral_history", ["was_replaced"])


def downgrade() -> None:
    op.drop_index("idx_referral_history_replaced", table_name="document_referral_history")
    op.drop_index("idx_referral_history_slot", table_name="document_referral_history")
    op.drop_table("document_referral_history")
