"""Initial pipeline schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _request_log_columns():
    return [
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("ef_log_id", sa.Text),
        sa.Column("narrative_project_id", UUID(as_uuid=True)),
        sa.Column("request_key", sa.Text),
        sa.Column("call_logic_key", sa.Text),
        sa.Column("request_purpose", sa.Text),
        sa.Column("provider", sa.Text),
        sa.Column("run_type", sa.Text),
        sa.Column("model", sa.Text),
        sa.Column("url", sa.Text),
        sa.Column("method", sa.Text),
        sa.Column("request_payload", JSONB),
        sa.Column("response_raw", JSONB),
        sa.Column("error", JSONB),
        sa.Column("status_code", sa.Integer),
        sa.Column("duration_ms", sa.Integer),
        sa.Column("thread_id", sa.Text),
        sa.Column("run_id", sa.Text),
        sa.Column("message_id", sa.Text),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = inspector.get_table_names()

    if "wf_assistant_automation_control" in existing_tables:
        # Tables already exist, skip migration
        return

    # Create narrative_projects table
    op.create_table(
        "narrative_projects",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("module_triggers", JSONB),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )

    # Reference configuration
    op.create_table(
        "http_request_mapping_warehouse",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("request_key", sa.Text, nullable=False),
        sa.Column("call_logic_key", sa.Text, nullable=False),
        sa.Column("run_type", sa.Text, nullable=False),
        sa.Column("request_purpose", sa.Text),
        sa.Column("provider", sa.Text),
        sa.Column("request_method", sa.Text, nullable=False, server_default="POST"),
        sa.Column("request_url", sa.Text, nullable=False),
        sa.Column("content_type", sa.Text),
        sa.Column("model", sa.Text),
        sa.Column("temperature", sa.Float),
    )
    op.create_index(
        "idx_http_mapping_lookup",
        "http_request_mapping_warehouse",
        ["request_key", "call_logic_key", "run_type"],
        unique=True,
    )

    op.create_table(
        "wf_script_mapping_warehouse",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("wf_assistant_name", sa.Text, nullable=False, unique=True),
        sa.Column("assistant_id", sa.Text),
        sa.Column("script_mapping_result_parsing", JSONB),
    )

    op.create_table(
        "wf_assistant_prompt_warehouse",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("assistant_name", sa.Text, nullable=False, unique=True),
        sa.Column("primary_prompt", sa.Text),
        sa.Column("batch_style", sa.Text),
        sa.Column("next_batch_prompt", sa.Text),
        sa.Column("resend_prompt", sa.Text),
        sa.Column("no_modules_prompt", sa.Text),
        sa.Column("module_plugins", JSONB),
    )

    # Create control table
    op.create_table(
        "wf_assistant_automation_control",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("status", sa.Text),
        sa.Column("wf_assistant_name", sa.Text, nullable=False),
        sa.Column(
            "narrative_project_id",
            UUID(as_uuid=True),
            sa.ForeignKey("narrative_projects.id", ondelete="SET NULL"),
        ),
        sa.Column("gpt_prompt", sa.Text),
        sa.Column("gpt_json", sa.Text),
        sa.Column("iteration_json", sa.Text),
        sa.Column("concatenated_json", sa.Text),
        sa.Column("final_json", sa.Text),
        sa.Column("retry_count", sa.Integer, server_default="0"),
        sa.Column("thread_id", sa.Text),
        sa.Column("run_id", sa.Text),
        sa.Column("message_id", sa.Text),
        sa.Column("version", sa.Integer, nullable=False, server_default="0"),
        sa.Column("testing_router_block", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("resume_attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("idx_wf_control_status", "wf_assistant_automation_control", ["status"])

    # Telemetry tables
    op.create_table(
        "wf_assistant_activity_log",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("wf_control_id", UUID(as_uuid=True)),
        sa.Column("ef_log_id", sa.Text),
        sa.Column("event", sa.Text, nullable=False),
        sa.Column("details", sa.Text),
        sa.Column("assistant_name", sa.Text),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("idx_activity_log_control", "wf_assistant_activity_log", ["wf_control_id"])

    op.create_table("llm_request_tracking", *_request_log_columns())
    op.create_table("llm_polling_request_tracking", *_request_log_columns())


def downgrade() -> None:
    op.drop_table("llm_polling_request_tracking")
    op.drop_table("llm_request_tracking")
    op.drop_table("wf_assistant_activity_log")
    op.drop_table("wf_assistant_automation_control")
    op.drop_table("wf_assistant_prompt_warehouse")
    op.drop_table("wf_script_mapping_warehouse")
    op.drop_table("http_request_mapping_warehouse")
    op.drop_table("narrative_projects")
