"""Create admin profiles, applications, documents, KYC, approvals and audit tables"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_review_engine"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "admin_profiles",
        sa.Column("id", sa.String(length=128), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("department", sa.String(length=120), nullable=True),
        sa.Column("role", sa.String(length=32), nullable=False, server_default="viewer"),
        sa.Column("approval_limit", sa.Numeric(18, 2), nullable=True),
        sa.Column("unlimited_approval", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("permissions", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("specializations", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("current_workload", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_workload", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_by", sa.String(length=128), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_admin_profiles_email"),
        sa.CheckConstraint(
            "role IN ('viewer', 'reviewer', 'approver', 'manager', 'super_admin')", name="ck_admin_profiles_role"
        ),
        sa.CheckConstraint("approval_limit IS NULL OR approval_limit >= 0", name="ck_admin_profiles_limit_nonneg"),
        sa.CheckConstraint("current_workload >= 0", name="ck_admin_profiles_workload_nonneg"),
        sa.CheckConstraint("max_workload >= 0", name="ck_admin_profiles_max_workload_nonneg"),
        sa.CheckConstraint("version >= 1", name="ck_admin_profiles_version_positive"),
    )
    op.create_index("ix_admin_profiles_role", "admin_profiles", ["role"])
    op.create_index("ix_admin_profiles_is_active", "admin_profiles", ["is_active"])

    op.create_table(
        "applications",
        sa.Column("id", sa.String(length=160), nullable=False),
        sa.Column("owner_id", sa.String(length=128), nullable=False),
        sa.Column("business_name", sa.String(length=255), nullable=False),
        sa.Column("contract_type", sa.String(length=64), nullable=False),
        sa.Column("funding_purpose", sa.Text(), nullable=True),
        sa.Column("funding_duration_months", sa.Integer(), nullable=False),
        sa.Column("requested_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("bvn", sa.LargeBinary(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("rejection_reason", sa.String(length=64), nullable=True),
        sa.Column("rejection_allows_resubmit", sa.Boolean(), nullable=True),
        sa.Column("admin_message", sa.Text(), nullable=True),
        sa.Column("documents_status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("documents_submitted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("assigned_to", sa.String(length=128), nullable=True),
        sa.Column("reviewed_by", sa.String(length=128), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by", sa.String(length=128), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resubmitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resubmission_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('pending', 'review', 'more-info', 'approved', 'rejected')", name="ck_applications_status"
        ),
        sa.CheckConstraint(
            "documents_status IN ('pending', 'in-review', 'verified', 'rejected')",
            name="ck_applications_documents_status",
        ),
        sa.CheckConstraint("requested_amount > 0", name="ck_applications_amount_positive"),
        sa.CheckConstraint("funding_duration_months > 0", name="ck_applications_duration_positive"),
        sa.CheckConstraint("resubmission_count >= 0", name="ck_applications_resubmission_nonneg"),
        sa.CheckConstraint("version >= 1", name="ck_applications_version_positive"),
    )
    op.create_index("ix_applications_owner_id", "applications", ["owner_id"])
    op.create_index("ix_applications_status", "applications", ["status"])
    op.create_index("ix_applications_assigned_to", "applications", ["assigned_to"])

    op.create_table(
        "documents",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("owner_id", sa.String(length=128), nullable=False),
        sa.Column("subject_type", sa.String(length=20), nullable=False, server_default="business"),
        sa.Column("application_id", sa.String(length=160), nullable=True),
        sa.Column("document_type", sa.String(length=64), nullable=False),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("storage_url", sa.String(length=1024), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("expiry_date", sa.Date(), nullable=True),
        sa.Column("verified_by", sa.String(length=128), nullable=True),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.String(length=500), nullable=True),
        sa.Column("superseded_by_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["application_id"], ["applications.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("status IN ('pending', 'verified', 'rejected')", name="ck_documents_status"),
        sa.CheckConstraint("subject_type IN ('business', 'investor')", name="ck_documents_subject_type"),
        sa.CheckConstraint("version >= 1", name="ck_documents_version_positive"),
    )
    op.create_index("ix_documents_owner_id", "documents", ["owner_id"])
    op.create_index("ix_documents_application_id", "documents", ["application_id"])
    op.create_index("ix_documents_status", "documents", ["status"])

    op.create_table(
        "kyc_profiles",
        sa.Column("id", sa.String(length=128), nullable=False),
        sa.Column("subject_type", sa.String(length=20), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=False),
        sa.Column("kyc_status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("kyc_documents_uploaded", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("kyc_reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "kyc_status IN ('pending', 'in-review', 'verified', 'rejected')", name="ck_kyc_profiles_status"
        ),
        sa.CheckConstraint("subject_type IN ('business', 'investor')", name="ck_kyc_profiles_subject_type"),
        sa.CheckConstraint("version >= 1", name="ck_kyc_profiles_version_positive"),
    )
    op.create_index("ix_kyc_profiles_kyc_status", "kyc_profiles", ["kyc_status"])

    op.create_table(
        "dual_authorizations",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("application_id", sa.String(length=160), nullable=False),
        sa.Column("requested_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("primary_approver_id", sa.String(length=128), nullable=False),
        sa.Column("primary_approved_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("primary_notes", sa.Text(), nullable=True),
        sa.Column("secondary_approver_id", sa.String(length=128), nullable=True),
        sa.Column("secondary_approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("secondary_notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending_secondary"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["application_id"], ["applications.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('pending_secondary', 'approved', 'rejected', 'superseded')", name="ck_dual_authorizations_status"
        ),
        sa.CheckConstraint("version >= 1", name="ck_dual_authorizations_version_positive"),
    )
    op.create_index("ix_dual_authorizations_application_id", "dual_authorizations", ["application_id"])
    op.create_index("ix_dual_authorizations_status", "dual_authorizations", ["status"])

    op.create_table(
        "assignments",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("application_id", sa.String(length=160), nullable=False),
        sa.Column("assigned_to", sa.String(length=128), nullable=False),
        sa.Column("assigned_by", sa.String(length=128), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("priority", sa.String(length=10), nullable=False, server_default="medium"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["application_id"], ["applications.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["assigned_to"], ["admin_profiles.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('pending', 'in_review', 'completed', 'reassigned')", name="ck_assignments_status"
        ),
        sa.CheckConstraint("priority IN ('low', 'medium', 'high', 'urgent')", name="ck_assignments_priority"),
    )
    op.create_index("ix_assignments_application_id", "assignments", ["application_id"])
    op.create_index("ix_assignments_assigned_to", "assignments", ["assigned_to"])
    op.create_index("ix_assignments_status", "assignments", ["status"])

    op.create_table(
        "notifications",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("recipient_id", sa.String(length=128), nullable=True),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("application_id", sa.String(length=160), nullable=True),
        sa.Column("document_id", sa.String(length=64), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notifications_recipient_id", "notifications", ["recipient_id"])
    op.create_index("ix_notifications_application_id", "notifications", ["application_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("actor_id", sa.String(length=128), nullable=False),
        sa.Column("actor_role", sa.String(length=32), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("target_type", sa.String(length=64), nullable=False),
        sa.Column("target_id", sa.String(length=160), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("error_reason", sa.String(length=255), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("old_value", sa.JSON(), nullable=True),
        sa.Column("new_value", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_target_id", "audit_logs", ["target_id"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])

    # audit rows are append-only at the database level as well
    op.execute(
        """
        CREATE OR REPLACE FUNCTION audit_logs_append_only() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'audit_logs is append-only';
        END;
        $$ LANGUAGE plpgsql
        """
    )
    op.execute(
        """
        CREATE TRIGGER trg_audit_logs_append_only
        BEFORE UPDATE OR DELETE ON audit_logs
        FOR EACH ROW EXECUTE FUNCTION audit_logs_append_only()
        """
    )


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_audit_logs_append_only ON audit_logs")
    op.execute("DROP FUNCTION IF EXISTS audit_logs_append_only()")
    op.drop_table("audit_logs")
    op.drop_table("notifications")
    op.drop_table("assignments")
    op.drop_table("dual_authorizations")
    op.drop_table("kyc_profiles")
    op.drop_table("documents")
    op.drop_table("applications")
    op.drop_table("admin_profiles")
