"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-17
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
  op.create_table(
    "users",
    sa.Column("id", sa.String(length=36), primary_key=True),
    sa.Column("email", sa.String(), nullable=False),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("timezone", sa.String(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_users_email", "users", ["email"], unique=True)

  op.create_table(
    "api_tokens",
    sa.Column("id", sa.String(length=36), primary_key=True),
    sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("token_hash", sa.String(), nullable=False),
    sa.Column("token_hint", sa.String(), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
  )
  op.create_index("ix_api_tokens_user_id", "api_tokens", ["user_id"])
  op.create_index("ix_api_tokens_token_hash", "api_tokens", ["token_hash"], unique=True)

  op.create_table(
    "boards",
    sa.Column("id", sa.String(length=36), primary_key=True),
    sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("description", sa.Text(), nullable=True),
    sa.Column("space", sa.String(), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_boards_user_id", "boards", ["user_id"])
  op.create_index("ix_boards_space", "boards", ["space"])

  op.create_table(
    "columns",
    sa.Column("id", sa.String(length=36), primary_key=True),
    sa.Column("board_id", sa.String(length=36), sa.ForeignKey("boards.id"), nullable=False),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("wip_limit", sa.Integer(), nullable=True),
    sa.Column("position", sa.Integer(), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_columns_board_id", "columns", ["board_id"])

  op.create_table(
    "tasks",
    sa.Column("id", sa.String(length=36), primary_key=True),
    sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("board_id", sa.String(length=36), sa.ForeignKey("boards.id"), nullable=False),
    sa.Column("column_id", sa.String(length=36), sa.ForeignKey("columns.id"), nullable=False),
    sa.Column("title", sa.String(), nullable=False),
    sa.Column("description", sa.Text(), nullable=True),
    sa.Column("priority", sa.String(), nullable=True),
    sa.Column("labels", sa.JSON(), nullable=False),
    sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_tasks_user_id", "tasks", ["user_id"])
  op.create_index("ix_tasks_board_id", "tasks", ["board_id"])
  op.create_index("ix_tasks_column_id", "tasks", ["column_id"])
  op.create_index("ix_tasks_due_date", "tasks", ["due_date"])

  op.create_table(
    "audit_events",
    sa.Column("id", sa.String(length=36), primary_key=True),
    sa.Column("board_id", sa.String(length=36), nullable=True),
    sa.Column("task_id", sa.String(length=36), nullable=True),
    sa.Column("actor_id", sa.String(length=36), nullable=True),
    sa.Column("event_type", sa.String(), nullable=False),
    sa.Column("entity_type", sa.String(), nullable=False),
    sa.Column("entity_id", sa.String(), nullable=True),
    sa.Column("payload", sa.JSON(), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_audit_events_board_id", "audit_events", ["board_id"])
  op.create_index("ix_audit_events_task_id", "audit_events", ["task_id"])


def downgrade() -> None:
  op.drop_table("audit_events")
  op.drop_table("tasks")
  op.drop_table("columns")
  op.drop_table("boards")
  op.drop_table("api_tokens")
  op.drop_table("users")
