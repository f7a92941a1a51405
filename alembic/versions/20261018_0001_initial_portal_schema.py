"""initial contractor portal schema

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261018_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _index_exists(inspector: sa.Inspector, table_name: str, index_name: str) -> bool:
    return index_name in {index["name"] for index in inspector.get_indexes(table_name)}


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not _table_exists(inspector, "users"):
        op.create_table(
            "users",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("first_name", sa.String(length=100), nullable=True),
            sa.Column("last_name", sa.String(length=100), nullable=True),
            sa.Column("hashed_password", sa.String(length=255), nullable=False),
            sa.Column("is_temporary_password", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_active", sa.Boolean(), nullable=True, server_default=sa.true()),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
        )
        op.create_index("ix_users_email", "users", ["email"], unique=False)
        op.create_index("ux_users_email_lower", "users", [sa.text("lower(email)")], unique=True)

    if not _table_exists(inspector, "companies"):
        op.create_table(
            "companies",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("is_contractor", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "company_memberships"):
        op.create_table(
            "company_memberships",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("company_id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="team_member"),
            sa.Column("permission_level", sa.String(length=20), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("removed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("removed_by_user_id", sa.String(length=36), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["company_id"], ["companies.id"]),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.ForeignKeyConstraint(["removed_by_user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_company_memberships_company_id", "company_memberships", ["company_id"])
        op.create_index("ix_company_memberships_user_id", "company_memberships", ["user_id"])
        op.create_index(
            "ux_company_memberships_company_user",
            "company_memberships",
            ["company_id", "user_id"],
            unique=True,
        )
        op.create_index(
            "ix_company_memberships_user_active_created_at",
            "company_memberships",
            ["user_id", "is_active", "created_at"],
        )
        op.create_index(
            "ux_company_memberships_active_user",
            "company_memberships",
            ["user_id"],
            unique=True,
            postgresql_where=sa.text("is_active"),
            sqlite_where=sa.text("is_active"),
        )
        op.create_index(
            "ux_company_memberships_active_owner",
            "company_memberships",
            ["company_id"],
            unique=True,
            postgresql_where=sa.text("is_active AND role IN ('individual', 'account_owner')"),
            sqlite_where=sa.text("is_active AND role IN ('individual', 'account_owner')"),
        )

    if not _table_exists(inspector, "team_invitations"):
        op.create_table(
            "team_invitations",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("company_id", sa.String(length=36), nullable=False),
            sa.Column("invited_by_user_id", sa.String(length=36), nullable=False),
            sa.Column("accepted_by_user_id", sa.String(length=36), nullable=True),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("first_name", sa.String(length=100), nullable=False),
            sa.Column("last_name", sa.String(length=100), nullable=False),
            sa.Column("permission_level", sa.String(length=20), nullable=False, server_default="viewer"),
            sa.Column("issuance_mode", sa.String(length=20), nullable=False, server_default="token"),
            sa.Column("token_hash", sa.String(length=128), nullable=False),
            sa.Column("credential_hash", sa.String(length=255), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["company_id"], ["companies.id"]),
            sa.ForeignKeyConstraint(["invited_by_user_id"], ["users.id"]),
            sa.ForeignKeyConstraint(["accepted_by_user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_team_invitations_company_id", "team_invitations", ["company_id"])
        op.create_index("ix_team_invitations_invited_by_user_id", "team_invitations", ["invited_by_user_id"])
        op.create_index("ix_team_invitations_accepted_by_user_id", "team_invitations", ["accepted_by_user_id"])
        op.create_index("ix_team_invitations_token_hash", "team_invitations", ["token_hash"], unique=True)
        op.create_index(
            "ix_team_invites_company_status_expires",
            "team_invitations",
            ["company_id", "status", "expires_at"],
        )

    if not _table_exists(inspector, "contractor_join_requests"):
        op.create_table(
            "contractor_join_requests",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("requested_company_id", sa.String(length=36), nullable=False),
            sa.Column(
                "requested_permission_level",
                sa.String(length=20),
                nullable=False,
                server_default="editor",
            ),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("assigned_permission_level", sa.String(length=20), nullable=True),
            sa.Column("reviewed_by_user_id", sa.String(length=36), nullable=True),
            sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("review_notes", sa.Text(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.ForeignKeyConstraint(["requested_company_id"], ["companies.id"]),
            sa.ForeignKeyConstraint(["reviewed_by_user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_contractor_join_requests_user_id", "contractor_join_requests", ["user_id"])
        op.create_index(
            "ix_contractor_join_requests_requested_company_id",
            "contractor_join_requests",
            ["requested_company_id"],
        )
        op.create_index(
            "ix_join_requests_company_status",
            "contractor_join_requests",
            ["requested_company_id", "status"],
        )

    if not _table_exists(inspector, "documents"):
        op.create_table(
            "documents",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("company_id", sa.String(length=36), nullable=False),
            sa.Column("application_id", sa.Integer(), nullable=True),
            sa.Column("uploaded_by_user_id", sa.String(length=36), nullable=False),
            sa.Column("original_name", sa.String(length=255), nullable=False),
            sa.Column("mime_type", sa.String(length=100), nullable=False),
            sa.Column("size", sa.Integer(), nullable=False),
            sa.Column("document_type", sa.String(length=30), nullable=False, server_default="supporting"),
            sa.Column("file_path", sa.String(length=500), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.ForeignKeyConstraint(["company_id"], ["companies.id"]),
            sa.ForeignKeyConstraint(["uploaded_by_user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("file_path"),
        )
        op.create_index("ix_documents_company_id", "documents", ["company_id"])
        op.create_index("ix_documents_application_id", "documents", ["application_id"])
        op.create_index("ix_documents_uploaded_by_user_id", "documents", ["uploaded_by_user_id"])
        op.create_index("ix_documents_company_created_at", "documents", ["company_id", "created_at"])

    if not _table_exists(inspector, "audit_logs"):
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("company_id", sa.String(length=36), nullable=False),
            sa.Column("actor_user_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=100), nullable=False),
            sa.Column("target_type", sa.String(length=100), nullable=False),
            sa.Column("target_id", sa.String(length=36), nullable=True),
            sa.Column("metadata_json", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.ForeignKeyConstraint(["company_id"], ["companies.id"]),
            sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_audit_logs_company_id", "audit_logs", ["company_id"])
        op.create_index("ix_audit_logs_actor_user_id", "audit_logs", ["actor_user_id"])
        op.create_index("ix_audit_logs_target_id", "audit_logs", ["target_id"])
        op.create_index("ix_audit_logs_company_created_at", "audit_logs", ["company_id", "created_at"])
        op.create_index(
            "ix_audit_logs_company_action_created_at",
            "audit_logs",
            ["company_id", "action", "created_at"],
        )

    # Partial unique indexes close the duplicate pending invite / request races.
    inspector = sa.inspect(bind)
    if not _index_exists(inspector, "team_invitations", "ux_team_invites_company_email_pending"):
        op.create_index(
            "ux_team_invites_company_email_pending",
            "team_invitations",
            ["company_id", "email"],
            unique=True,
            postgresql_where=sa.text("status = 'pending'"),
            sqlite_where=sa.text("status = 'pending'"),
        )
    if not _index_exists(inspector, "contractor_join_requests", "ux_join_requests_user_company_pending"):
        op.create_index(
            "ux_join_requests_user_company_pending",
            "contractor_join_requests",
            ["user_id", "requested_company_id"],
            unique=True,
            postgresql_where=sa.text("status = 'pending'"),
            sqlite_where=sa.text("status = 'pending'"),
        )


def downgrade() -> None:
    for table_name in (
        "audit_logs",
        "documents",
        "contractor_join_requests",
        "team_invitations",
        "company_memberships",
        "companies",
        "users",
    ):
        op.drop_table(table_name)
