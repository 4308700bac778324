"""Initial schema: users, categories, habits, completions, atoms, votes, settings

Revision ID: 0a1f3c5e7b91
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0a1f3c5e7b91"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("username", sa.String(50), nullable=False, unique=True),
        sa.Column("total_karma", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_users_total_karma", "users", ["total_karma"])

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("icon", sa.String(50), nullable=True),
        sa.Column("is_default", sa.Boolean(), server_default=sa.false()),
        sa.Column(
            "user_id", sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=True,
        ),
    )

    op.create_table(
        "habits",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column(
            "user_id", sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "category_id", sa.Integer(),
            sa.ForeignKey("categories.id", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", sa.String(20), nullable=False, server_default="Personal"),
        sa.Column("occurrence", sa.String(20), nullable=False, server_default="daily"),
        sa.Column("slot", sa.String(20), nullable=False, server_default="Morning"),
        sa.Column("start_date", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "title", name="uq_habits_user_title"),
    )
    op.create_index("ix_habits_category", "habits", ["category_id"])

    op.create_table(
        "habit_completions",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column(
            "habit_id", sa.Integer(),
            sa.ForeignKey("habits.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "user_id", sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "completed_at", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=False,
        ),
        sa.Column("image", sa.String(500), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("is_published", sa.Boolean(), server_default=sa.false()),
        sa.Column("window_key", sa.String(40), nullable=True),
        sa.Column("window_slot", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint(
            "habit_id", "window_key", "window_slot",
            name="uq_completions_habit_window",
        ),
    )
    op.create_index(
        "ix_completions_habit_time", "habit_completions", ["habit_id", "completed_at"],
    )
    op.create_index(
        "ix_completions_user_time", "habit_completions", ["user_id", "completed_at"],
    )

    op.create_table(
        "atoms",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column(
            "completion_id", sa.Integer(),
            sa.ForeignKey("habit_completions.id", ondelete="CASCADE"),
            nullable=False, unique=True,
        ),
        sa.Column(
            "habit_id", sa.Integer(),
            sa.ForeignKey("habits.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "user_id", sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("image", sa.String(500), nullable=False),
        sa.Column("caption", sa.Text(), nullable=False),
        sa.Column("habit_title", sa.String(100), nullable=False),
        sa.Column("habit_type", sa.String(20), nullable=False),
        sa.Column("completion_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("upvotes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("downvotes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("net_votes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_atoms_user_time", "atoms", ["user_id", "created_at"])
    op.create_index("ix_atoms_net_votes", "atoms", ["net_votes"])

    op.create_table(
        "atom_votes",
        sa.Column(
            "atom_id", sa.Integer(),
            sa.ForeignKey("atoms.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column(
            "user_id", sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("vote_type", sa.String(10), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_atom_votes_user_time", "atom_votes", ["user_id", "created_at"])

    op.create_table(
        "settings",
        sa.Column("key", sa.String(100), primary_key=True),
        sa.Column("value_json", sa.Text(), nullable=False),
        sa.Column("category", sa.String(50), nullable=False, server_default="general"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_settings_category", "settings", ["category"])


def downgrade() -> None:
    op.drop_index("ix_settings_category", table_name="settings")
    op.drop_table("settings")
    op.drop_index("ix_atom_votes_user_time", table_name="atom_votes")
    op.drop_table("atom_votes")
    op.drop_index("ix_atoms_net_votes", table_name="atoms")
    op.drop_index("ix_atoms_user_time", table_name="atoms")
    op.drop_table("atoms")
    op.drop_index("ix_completions_user_time", table_name="habit_completions")
    op.drop_index("ix_completions_habit_time", table_name="habit_completions")
    op.drop_table("habit_completions")
    op.drop_index("ix_habits_category", table_name="habits")
    op.drop_table("habits")
    op.drop_table("categories")
    op.drop_index("ix_users_total_karma", table_name="users")
    op.drop_table("users")
