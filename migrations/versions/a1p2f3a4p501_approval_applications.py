"""Approval applications: headers, steps, origin links, id sequences

Revision ID: a1p2f3a4p501
Revises:
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa

revision = "a1p2f3a4p501"
down_revision = None
branch_labels = None
depends_on = None


def _audit_columns():
    return [
        sa.Column("del_yn", sa.String(1), nullable=False, server_default="N"),
        sa.Column("guid", sa.String(38), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("created_by", sa.String(32)),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_by", sa.String(32)),
    ]


def upgrade():
    op.create_table(
        "applications",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="PENDING"),
        sa.Column("title", sa.String(200)),
        sa.Column("detail_document", sa.Text()),
        sa.Column("requester_id", sa.String(32)),
        sa.Column("request_date", sa.Date()),
        sa.Column("requester_opinion", sa.String(1000)),
        sa.Column("version", sa.Integer(), nullable=False),
        *_audit_columns(),
    )
    op.create_index("ix_applications_status", "applications", ["status"])
    op.create_index("ix_applications_requester_id", "applications", ["requester_id"])

    op.create_table(
        "approval_steps",
        sa.Column("application_id", sa.String(32), sa.ForeignKey("applications.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("sequence", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("approver_id", sa.String(32), nullable=False),
        sa.Column("decision_kind", sa.String(16), nullable=False, server_default="NONE"),
        sa.Column("decision_date", sa.Date()),
        sa.Column("opinion", sa.String(1000)),
        sa.Column("outcome", sa.String(16)),
        sa.Column("is_final", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_audit_columns(),
    )
    op.create_index("ix_approval_steps_approver_id", "approval_steps", ["approver_id"])

    op.create_table(
        "application_origins",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("application_id", sa.String(32), sa.ForeignKey("applications.id", ondelete="CASCADE"), nullable=False),
        sa.Column("origin_table", sa.String(10), nullable=False),
        sa.Column("origin_pk", sa.String(32), nullable=False),
        sa.Column("origin_sno", sa.Integer()),
        *_audit_columns(),
    )
    op.create_index("ix_application_origins_application_id", "application_origins", ["application_id"])
    op.create_index("ix_application_origin", "application_origins", ["origin_table", "origin_pk", "origin_sno"])

    op.create_table(
        "id_sequences",
        sa.Column("name", sa.String(40), primary_key=True),
        sa.Column("last_value", sa.BigInteger(), nullable=False, server_default="0"),
    )


def downgrade():
    op.drop_table("id_sequences")
    op.drop_index("ix_application_origin", table_name="application_origins")
    op.drop_index("ix_application_origins_application_id", table_name="application_origins")
    op.drop_table("application_origins")
    op.drop_index("ix_approval_steps_approver_id", table_name="approval_steps")
    op.drop_table("approval_steps")
    op.drop_index("ix_applications_requester_id", table_name="applications")
    op.drop_index("ix_applications_status", table_name="applications")
    op.drop_table("applications")
