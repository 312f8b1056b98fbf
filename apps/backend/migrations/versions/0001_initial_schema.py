"""Initial schema for the case portal."""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    application_type_enum = sa.Enum(
        "visa_application",
        "work_permit",
        "permanent_residence",
        "citizenship",
        "family_reunification",
        "student_visa",
        "asylum",
        "visa_extension",
        name="application_type_enum",
    )
    application_status_enum = sa.Enum(
        "draft",
        "submitted",
        "under_review",
        "additional_info_required",
        "interview_scheduled",
        "decision_pending",
        "approved",
        "rejected",
        "withdrawn",
        "on_hold",
        "appealed",
        "expired",
        name="application_status_enum",
    )
    priority_enum = sa.Enum("low", "normal", "high", "urgent", "emergency", name="priority_enum")
    document_type_enum = sa.Enum(
        "passport",
        "birth_certificate",
        "marriage_certificate",
        "employment_letter",
        "bank_statement",
        "photo",
        "police_clearance",
        "medical_report",
        "education_certificate",
        "other",
        name="document_type_enum",
    )
    scan_status_enum = sa.Enum("pending", "clean", "infected", "error", name="scan_status_enum")
    sync_action_enum = sa.Enum("push", "pull", "full_sync", name="sync_action_enum")

    op.create_table(
        "applications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("application_number", sa.String(length=32), nullable=False, unique=True),
        sa.Column("applicant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("assigned_officer_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("application_type", application_type_enum, nullable=False),
        sa.Column("status", application_status_enum, nullable=False),
        sa.Column("priority", priority_enum, nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("decision_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("form_data", postgresql.JSONB(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_applications_applicant_id", "applications", ["applicant_id"])
    op.create_index("ix_applications_status", "applications", ["status"])

    op.create_table(
        "documents",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "application_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("applications.id"),
            nullable=False,
        ),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=False),
        sa.Column("mime_type", sa.String(length=127), nullable=False),
        sa.Column("document_type", document_type_enum, nullable=False),
        sa.Column("storage_key", sa.String(length=512), nullable=True),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("version_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "previous_version_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("documents.id"),
            nullable=True,
        ),
        sa.Column("is_current_version", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("external_dms_id", sa.String(length=255), nullable=True),
        sa.Column("external_system", sa.String(length=64), nullable=True),
        sa.Column("external_url", sa.String(length=1024), nullable=True),
        sa.Column("dms_metadata", postgresql.JSONB(), nullable=False),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("needs_resync", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("conflict_flagged", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("scan_status", scan_status_enum, nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("external_system", "external_dms_id", name="uq_documents_external_ref"),
    )
    op.create_index("ix_documents_application_id", "documents", ["application_id"])
    op.create_index("ix_documents_external_dms_id", "documents", ["external_dms_id"])
    # Candidate scan for push: live current versions that are unsynced or dirty
    op.create_index(
        "ix_documents_needs_sync",
        "documents",
        ["created_at"],
        postgresql_where=sa.text(
            "deleted_at IS NULL AND is_current_version AND "
            "(external_dms_id IS NULL OR needs_resync)"
        ),
    )

    op.create_table(
        "sync_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("action", sync_action_enum, nullable=False),
        sa.Column("external_system", sa.String(length=64), nullable=False),
        sa.Column("successful_count", sa.Integer(), nullable=False),
        sa.Column("failed_count", sa.Integer(), nullable=False),
        sa.Column("total_count", sa.Integer(), nullable=False),
        sa.Column("results", postgresql.JSONB(), nullable=False),
        sa.Column("cancelled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_sync_logs_external_system", "sync_logs", ["external_system"])
    op.create_index("ix_sync_logs_created_at", "sync_logs", ["created_at"])

    op.create_table(
        "audit_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("actor", sa.String(length=128), nullable=False),
        sa.Column("details", postgresql.JSONB(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_events_entity_id", "audit_events", ["entity_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_events_entity_id", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_index("ix_sync_logs_created_at", table_name="sync_logs")
    op.drop_index("ix_sync_logs_external_system", table_name="sync_logs")
    op.drop_table("sync_logs")
    op.drop_index("ix_documents_needs_sync", table_name="documents")
    op.drop_index("ix_documents_external_dms_id", table_name="documents")
    op.drop_index("ix_documents_application_id", table_name="documents")
    op.drop_table("documents")
    op.drop_index("ix_applications_status", table_name="applications")
    op.drop_index("ix_applications_applicant_id", table_name="applications")
    op.drop_table("applications")

    bind = op.get_bind()
    for enum_name in (
        "sync_action_enum",
        "scan_status_enum",
        "document_type_enum",
        "priority_enum",
        "application_status_enum",
        "application_type_enum",
    ):
        sa.Enum(name=enum_name).drop(bind, checkfirst=True)
