"""create accounts, teams, sessions, projects and feedback items

Revision ID: 4d1e7a2c9b30
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = "4d1e7a2c9b30"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=False),
            nullable=False,
            server_default=sa.func.current_timestamp(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=False),
            nullable=False,
            server_default=sa.func.current_timestamp(),
        ),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    insp = inspect(bind)
    existing_tables = set(insp.get_table_names())

    if "accounts" not in existing_tables:
        op.create_table(
            "accounts",
            sa.Column("id", sa.String(36), primary_key=True, nullable=False),
            sa.Column("email", sa.String(320), nullable=False),
            sa.Column("name", sa.String(128), nullable=False, server_default=""),
            sa.Column("password_hash", sa.String(255), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
            sa.UniqueConstraint("email", name="uq_accounts_email"),
        )

    if "teams" not in existing_tables:
        op.create_table(
            "teams",
            sa.Column("id", sa.String(64), primary_key=True, nullable=False),
            sa.Column("name", sa.String(128), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
        )

    if "team_memberships" not in existing_tables:
        op.create_table(
            "team_memberships",
            sa.Column("team_id", sa.String(64), primary_key=True, nullable=False),
            sa.Column("user_id", sa.String(36), primary_key=True, nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
            sa.ForeignKeyConstraint(["team_id"], ["teams.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["user_id"], ["accounts.id"], ondelete="CASCADE"),
        )

    if "auth_sessions" not in existing_tables:
        op.create_table(
            "auth_sessions",
            sa.Column("id", sa.String(36), primary_key=True, nullable=False),
            sa.Column("user_id", sa.String(36), nullable=False),
            sa.Column("secret", sa.String(128), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
            sa.Column("expires_at", sa.DateTime(timezone=False), nullable=False),
            sa.ForeignKeyConstraint(["user_id"], ["accounts.id"], ondelete="CASCADE"),
            sa.UniqueConstraint("secret", name="uq_auth_sessions_secret"),
        )

    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            sa.Column("id", sa.String(36), primary_key=True, nullable=False),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=False, server_default=""),
            *_timestamps(),
        )

    if "feedback_items" not in existing_tables:
        op.create_table(
            "feedback_items",
            sa.Column("id", sa.String(36), primary_key=True, nullable=False),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=False, server_default=""),
            sa.Column("type", sa.String(32), nullable=False),
            sa.Column("status", sa.String(32), nullable=False, server_default="open"),
            sa.Column("project_id", sa.String(36), nullable=False),
            sa.Column("submitted_by", sa.String(36), nullable=False),
            sa.Column("submitted_by_name", sa.String(128), nullable=False, server_default=""),
            sa.Column("screenshot_id", sa.String(36), nullable=True),
            *_timestamps(),
        )
        op.create_index("ix_feedback_items_project_id", "feedback_items", ["project_id"])
        op.create_index("ix_feedback_items_submitted_by", "feedback_items", ["submitted_by"])


def downgrade() -> None:
    op.drop_index("ix_feedback_items_submitted_by", table_name="feedback_items")
    op.drop_index("ix_feedback_items_project_id", table_name="feedback_items")
    op.drop_table("feedback_items")
    op.drop_table("projects")
    op.drop_table("auth_sessions")
    op.drop_table("team_memberships")
    op.drop_table("teams")
    op.drop_table("accounts")
