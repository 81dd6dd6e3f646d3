"""create job lifecycle tables

Revision ID: 20261016_job_lifecycle_tables
Revises:
Create Date: 2026-10-16
"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "20261016_job_lifecycle_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "pending_jobs",
        sa.Column("task_id", sa.String(length=128), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("job_type", sa.String(length=16), nullable=False),
        sa.Column("provider", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("result_url", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("device_token", sa.String(length=255), nullable=True),
        sa.Column("notification_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("provider IN ('runware', 'wavespeed', 'falai')", name="ck_pending_jobs_provider"),
        sa.CheckConstraint("job_type IN ('image', 'video')", name="ck_pending_jobs_job_type"),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_pending_jobs_status",
        ),
    )
    op.create_index("ix_pending_jobs_user_id", "pending_jobs", ["user_id"])
    op.create_index("ix_pending_jobs_status", "pending_jobs", ["status"])
    op.create_index("ix_pending_jobs_created_at", "pending_jobs", ["created_at"])
    op.create_index("ix_pending_jobs_user_created", "pending_jobs", ["user_id", "created_at"])

    op.create_table(
        "user_media",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("task_id", sa.String(length=128), nullable=True, unique=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("media_type", sa.String(length=16), nullable=False),
        sa.Column("media_url", sa.Text(), nullable=False, server_default=""),
        sa.Column("file_extension", sa.String(length=8), nullable=False, server_default="jpg"),
        sa.Column("model", sa.String(length=255), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=True),
        sa.Column("prompt", sa.Text(), nullable=True),
        sa.Column("aspect_ratio", sa.String(length=16), nullable=True),
        sa.Column("resolution", sa.String(length=16), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=True),
        sa.Column("cost", sa.Float(), nullable=True),
        sa.Column("type", sa.String(length=64), nullable=True),
        sa.Column("endpoint", sa.String(length=255), nullable=True),
        sa.Column("provider", sa.String(length=32), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("archived_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_user_media_user_id", "user_media", ["user_id"])
    op.create_index("ix_user_media_status", "user_media", ["status"])
    op.create_index("ix_user_media_created_at", "user_media", ["created_at"])

    op.create_table(
        "notification_links",
        sa.Column("notification_id", sa.String(length=64), primary_key=True),
        sa.Column("task_id", sa.String(length=128), nullable=True, unique=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("model_name", sa.String(length=255), nullable=True),
        sa.Column("prompt", sa.Text(), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=True),
        sa.Column("job_type", sa.String(length=16), nullable=False, server_default="image"),
        sa.Column("aspect_ratio", sa.String(length=16), nullable=True),
        sa.Column("cost", sa.Float(), nullable=True),
        sa.Column("state", sa.String(length=16), nullable=False, server_default="in_progress"),
        sa.Column("progress", sa.Float(), nullable=False, server_default="0"),
        sa.Column("message", sa.String(length=255), nullable=True),
        sa.Column("can_cancel", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("result_url", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_notification_links_user_id", "notification_links", ["user_id"])
    op.create_index("ix_notification_links_state_model", "notification_links", ["state", "model_name"])

    op.create_table(
        "job_poll_states",
        sa.Column("task_id", sa.String(length=128), primary_key=True),
        sa.Column("provider", sa.String(length=32), nullable=False),
        sa.Column("handle", sa.JSON(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="120"),
        sa.Column("interval_seconds", sa.Float(), nullable=False, server_default="5"),
        sa.Column("next_poll_at", sa.DateTime(), nullable=False),
        sa.Column("last_status", sa.String(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_job_poll_states_next_poll_at", "job_poll_states", ["next_poll_at"])


def downgrade():
    op.drop_index("ix_job_poll_states_next_poll_at", table_name="job_poll_states")
    op.drop_table("job_poll_states")
    op.drop_index("ix_notification_links_state_model", table_name="notification_links")
    op.drop_index("ix_notification_links_user_id", table_name="notification_links")
    op.drop_table("notification_links")
    op.drop_index("ix_user_media_created_at", table_name="user_media")
    op.drop_index("ix_user_media_status", table_name="user_media")
    op.drop_index("ix_user_media_user_id", table_name="user_media")
    op.drop_table("user_media")
    op.drop_index("ix_pending_jobs_user_created", table_name="pending_jobs")
    op.drop_index("ix_pending_jobs_created_at", table_name="pending_jobs")
    op.drop_index("ix_pending_jobs_status", table_name="pending_jobs")
    op.drop_index("ix_pending_jobs_user_id", table_name="pending_jobs")
    op.drop_table("pending_jobs")
