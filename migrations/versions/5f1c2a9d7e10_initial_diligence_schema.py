"""initial_diligence_schema

Create users, deals, tasks, task templates / items, activity log and
taxonomy extension tables.

Revision ID: 5f1c2a9d7e10
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "5f1c2a9d7e10"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("username", sa.String(length=150), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("role", sa.String(length=30), nullable=False, server_default="functional_lead"),
            sa.Column("specialization", sa.String(length=50), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("username"),
        )

    if "deals" not in existing_tables:
        op.create_table(
            "deals",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="active"),
            sa.Column("start_date", sa.Date(), nullable=True),
            sa.Column("end_date", sa.Date(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )

    if "tasks" not in existing_tables:
        op.create_table(
            "tasks",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("deal_id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("phase", sa.String(length=100), nullable=False),
            sa.Column("category", sa.String(length=100), nullable=False),
            sa.Column("status", sa.String(length=100), nullable=False, server_default="not_started"),
            sa.Column("due_date", sa.Date(), nullable=True),
            sa.Column("assigned_to", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["deal_id"], ["deals.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["assigned_to"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_tasks_deal_id", "tasks", ["deal_id"])
        op.create_index("ix_tasks_assigned_to", "tasks", ["assigned_to"])
        op.create_index("ix_tasks_deal_phase", "tasks", ["deal_id", "phase"])

    if "task_templates" not in existing_tables:
        op.create_table(
            "task_templates",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_by", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )

    if "task_template_items" not in existing_tables:
        op.create_table(
            "task_template_items",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("template_id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("phase", sa.String(length=100), nullable=False),
            sa.Column("category", sa.String(length=100), nullable=False),
            sa.Column("days_from_start", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("assigned_to", sa.Integer(), nullable=True),
            sa.ForeignKeyConstraint(["template_id"], ["task_templates.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["assigned_to"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_task_template_items_template_id", "task_template_items", ["template_id"])

    if "activity_logs" not in existing_tables:
        op.create_table(
            "activity_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("deal_id", sa.Integer(), nullable=True),
            sa.Column("user_id", sa.Integer(), nullable=True),
            sa.Column("action", sa.String(length=30), nullable=False),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.Integer(), nullable=False),
            sa.Column("details", sa.Text(), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["deal_id"], ["deals.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_activity_logs_deal_id", "activity_logs", ["deal_id"])
        op.create_index("idx_activity_entity", "activity_logs", ["entity_type", "entity_id"])
        op.create_index("idx_activity_ts", "activity_logs", ["timestamp"])

    if "taxonomy_extensions" not in existing_tables:
        op.create_table(
            "taxonomy_extensions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("scope", sa.String(length=100), nullable=False, server_default="global"),
            sa.Column("namespace", sa.String(length=20), nullable=False),
            sa.Column("values", sa.JSON(), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("scope", "namespace", name="uq_taxonomy_scope_namespace"),
        )


def downgrade():
    for table in (
        "taxonomy_extensions",
        "activity_logs",
        "task_template_items",
        "task_templates",
        "tasks",
        "deals",
        "users",
    ):
        op.drop_table(table)
