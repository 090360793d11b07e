"""initial models

Batch analysis jobs, per-image results, error and security logs.

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
import sqlmodel  # noqa: F401


revision: str = "0001_initial_models"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "batch_image_analysis",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("field_id", sa.String(), nullable=True),
        sa.Column("analysis_type", sa.String(), nullable=False),
        sa.Column("total_images", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("results_summary", sa.JSON(), nullable=True),
        sa.Column("error_message", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_batch_image_analysis_user_id", "batch_image_analysis", ["user_id"])
    op.create_index("ix_batch_image_analysis_field_id", "batch_image_analysis", ["field_id"])
    op.create_index("ix_batch_image_analysis_status", "batch_image_analysis", ["status"])

    op.create_table(
        "advanced_image_results",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("batch_id", sa.String(), sa.ForeignKey("batch_image_analysis.id"), nullable=False),
        sa.Column("image_index", sa.Integer(), nullable=False),
        sa.Column("image_url", sa.String(), nullable=False),
        sa.Column("crop_health", sa.JSON(), nullable=True),
        sa.Column("disease_analysis", sa.JSON(), nullable=True),
        sa.Column("pest_analysis", sa.JSON(), nullable=True),
        sa.Column("growth_stage", sa.JSON(), nullable=True),
        sa.Column("soil_quality", sa.JSON(), nullable=True),
        sa.Column("overall_score", sa.Float(), nullable=True),
        sa.Column("recommendations", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("error_message", sa.String(), nullable=True),
        sa.Column("analysis_timestamp", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("batch_id", "image_index", name="uq_advanced_image_results_batch_image"),
    )
    op.create_index("ix_advanced_image_results_batch_id", "advanced_image_results", ["batch_id"])

    op.create_table(
        "error_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("endpoint", sa.String(), nullable=True),
        sa.Column("method", sa.String(), nullable=True),
        sa.Column("error_message", sa.String(), nullable=True),
        sa.Column("stack_trace", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_error_logs_user_id", "error_logs", ["user_id"])

    op.create_table(
        "security_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("ip", sa.String(), nullable=True),
        sa.Column("endpoint", sa.String(), nullable=True),
        sa.Column("detail", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_security_logs_event", "security_logs", ["event"])
    op.create_index("ix_security_logs_user_id", "security_logs", ["user_id"])


def downgrade() -> None:
    op.drop_table("security_logs")
    op.drop_table("error_logs")
    op.drop_table("advanced_image_results")
    op.drop_table("batch_image_analysis")
