"""create tickets, sync_logs and attachments

Revision ID: 0001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # -----------------------------------------------------------------------
    # tickets: ClickUpタスクのローカルミラー
    # -----------------------------------------------------------------------
    op.create_table(
        "tickets",
        sa.Column("id", sa.String(64), primary_key=True, comment="Remote task ID"),
        sa.Column("ticket_code", sa.String(255), nullable=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(100), nullable=False),
        sa.Column("priority", sa.String(50), nullable=False, server_default="normal"),
        sa.Column("user_email", sa.String(320), nullable=False),
        sa.Column("business_unit", sa.String(255), nullable=True),
        sa.Column("jira_status", sa.String(255), nullable=True),
        sa.Column("jira_assignee", sa.String(255), nullable=True),
        sa.Column("jira_url", sa.Text(), nullable=True),
        sa.Column("release_notes", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("due_date", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("remote_created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("remote_updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("synced_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_tickets_user_email", "tickets", ["user_email"])
    op.create_index("ix_tickets_remote_created_at", "tickets", ["remote_created_at"])

    # -----------------------------------------------------------------------
    # sync_logs: 同期ジョブ記録（running は高々1行）
    # -----------------------------------------------------------------------
    op.create_table(
        "sync_logs",
        sa.Column(
            "id",
            sa.BigInteger().with_variant(sa.Integer(), "sqlite"),
            primary_key=True,
            autoincrement=True,
        ),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("started_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("tickets_synced", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tickets_total", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.CheckConstraint(
            "status IN ('running', 'completed', 'failed')",
            name="ck_sync_logs_status",
        ),
    )
    op.create_index("ix_sync_logs_started_at", "sync_logs", ["started_at"])
    op.create_index(
        "uq_sync_logs_single_running",
        "sync_logs",
        ["status"],
        unique=True,
        postgresql_where=sa.text("status = 'running'"),
        sqlite_where=sa.text("status = 'running'"),
    )

    # -----------------------------------------------------------------------
    # attachments: 詳細表示時に遅延キャッシュする添付ファイル
    # -----------------------------------------------------------------------
    op.create_table(
        "attachments",
        sa.Column("id", sa.String(128), primary_key=True, comment="Remote attachment ID"),
        sa.Column(
            "ticket_id",
            sa.String(64),
            sa.ForeignKey("tickets.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("extension", sa.String(32), nullable=True),
        sa.Column("size", sa.BigInteger(), nullable=True),
        sa.Column("date_added", sa.TIMESTAMP(timezone=True), nullable=True),
    )
    op.create_index("ix_attachments_ticket_id", "attachments", ["ticket_id"])


def downgrade() -> None:
    op.drop_index("ix_attachments_ticket_id", table_name="attachments")
    op.drop_table("attachments")
    op.drop_index("uq_sync_logs_single_running", table_name="sync_logs")
    op.drop_index("ix_sync_logs_started_at", table_name="sync_logs")
    op.drop_table("sync_logs")
    op.drop_index("ix_tickets_remote_created_at", table_name="tickets")
    op.drop_index("ix_tickets_user_email", table_name="tickets")
    op.drop_table("tickets")
