"""create repositories and jobs tables

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        "repositories",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("svn_url", sa.Text(), nullable=False),
        sa.Column("auth_type", sa.String(length=20), nullable=False),
        sa.Column("username", sa.String(length=255), nullable=True),
        sa.Column("password", sa.Text(), nullable=True),
        sa.Column("migration_method", sa.String(length=30), nullable=False),
        sa.Column("svn_structure", sa.JSON(), nullable=True),
        sa.Column("authors_mapping", sa.JSON(), nullable=True),
        sa.Column("ignore_patterns", sa.Text(), nullable=True),
        sa.Column("large_file_handling", sa.String(length=20), nullable=False),
        sa.Column("gitlab_project_id", sa.Integer(), nullable=True),
        sa.Column("local_git_path", sa.Text(), nullable=True),
        sa.Column("latest_revision", sa.Integer(), nullable=True),
        sa.Column("last_synced_revision", sa.Integer(), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(), nullable=True),
        sa.Column("enable_incremental_sync", sa.Boolean(), nullable=False),
    )
    op.create_table(
        "jobs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("repository_id", sa.String(length=36), sa.ForeignKey("repositories.id"), nullable=False),
        sa.Column("parent_job_id", sa.String(length=36), nullable=True),
        sa.Column("job_type", sa.String(length=30), nullable=False),
        sa.Column("parameters", sa.JSON(), nullable=False),
        sa.Column("task_id", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=30), nullable=False),
        sa.Column("phase", sa.String(length=30), nullable=False),
        sa.Column("phase_details", sa.JSON(), nullable=False),
        sa.Column("resumable", sa.Boolean(), nullable=False),
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("start_revision", sa.Integer(), nullable=True),
        sa.Column("end_revision", sa.Integer(), nullable=True),
        sa.Column("current_revision", sa.Integer(), nullable=True),
        sa.Column("total_revisions", sa.Integer(), nullable=True),
        sa.Column("progress", sa.Integer(), nullable=False),
        sa.Column("processing_speed", sa.Float(), nullable=True),
        sa.Column("eta_seconds", sa.Integer(), nullable=True),
        sa.Column("checkpoint_data", sa.JSON(), nullable=False),
        sa.Column("output_log", sa.Text(), nullable=False),
        sa.Column("error_log", sa.Text(), nullable=False),
        sa.Column("result_url", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_jobs_repository_id", "jobs", ["repository_id"])
    op.create_index("ix_jobs_parent_job_id", "jobs", ["parent_job_id"])
    op.create_index("ix_jobs_status", "jobs", ["status"])

def downgrade():
    op.drop_index("ix_jobs_status", table_name="jobs")
    op.drop_index("ix_jobs_parent_job_id", table_name="jobs")
    op.drop_index("ix_jobs_repository_id", table_name="jobs")
    op.drop_table("jobs")
    op.drop_table("repositories")
