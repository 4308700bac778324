"""
habitat.database.models — SQLAlchemy 2.0 Data Models
=====================================================

Tables:
- users            — Members with the monotonic ``total_karma`` counter
- categories       — Habit categories (defaults + user-defined)
- habits           — Habit definitions with recurrence rule and type
- habit_completions — One row per completed eligibility window
- atoms            — Shareable posts built from completions, with vote tallies
- atom_votes       — At most one active vote per (atom, user)
- settings         — Scoring tuning key-value store
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Habitat ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class HabitType(enum.StrEnum):
    """Whether completions of a habit may be published as atoms."""
    PERSONAL = "Personal"
    SHAREABLE = "Shareable"


class Occurrence(enum.StrEnum):
    """Recurrence rules understood by the occurrence resolver."""
    DAILY = "daily"
    WEEKLY = "weekly"
    WEEKDAYS = "weekdays"
    WEEKENDS = "weekends"
    ONCE_WEEKLY = "once_weekly"
    BIWEEKLY = "biweekly"
    TWICE_WEEKLY = "twice_weekly"


class Slot(enum.StrEnum):
    """Time-of-day tag.  Cosmetic — never used for eligibility."""
    MORNING = "Morning"
    AFTERNOON = "Afternoon"
    EVENING = "Evening"
    NIGHT = "Night"


class VoteType(enum.StrEnum):
    UPVOTE = "upvote"
    DOWNVOTE = "downvote"


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    total_karma: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    habits: Mapped[list[Habit]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_users_total_karma", "total_karma"),
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} name={self.username!r} karma={self.total_karma}>"


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------
class Category(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    icon: Mapped[str | None] = mapped_column(String(50), default=None)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    user_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True
    )

    def __repr__(self) -> str:
        return f"<Category id={self.id} name={self.name!r}>"


# ---------------------------------------------------------------------------
# Habits
# ---------------------------------------------------------------------------
class Habit(Base):
    __tablename__ = "habits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    category_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("categories.id", ondelete="RESTRICT"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=HabitType.PERSONAL.value
    )
    occurrence: Mapped[str] = mapped_column(
        String(20), nullable=False, default=Occurrence.DAILY.value
    )
    slot: Mapped[str] = mapped_column(
        String(20), nullable=False, default=Slot.MORNING.value
    )
    start_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    user: Mapped[User] = relationship(back_populates="habits")
    category: Mapped[Category] = relationship()
    completions: Mapped[list[HabitCompletion]] = relationship(
        back_populates="habit", cascade="all, delete-orphan"
    )
    atoms: Mapped[list[Atom]] = relationship(
        back_populates="habit", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "title", name="uq_habits_user_title"),
        Index("ix_habits_category", "category_id"),
    )

    def __repr__(self) -> str:
        return f"<Habit id={self.id} title={self.title!r} occurrence={self.occurrence}>"


# ---------------------------------------------------------------------------
# HabitCompletion: one row per occupied eligibility window
# ---------------------------------------------------------------------------
class HabitCompletion(Base):
    """A completed habit.

    ``window_key`` names the aligned occurrence window the completion
    occupies (``daily:2026-10-18``, ``week:2026-10-12``) and ``window_slot``
    its position inside it (0, or 0/1 for ``twice_weekly``).  The unique
    constraint makes a second completion in a full window impossible even
    under concurrent writers.  Sliding windows (``biweekly``) store NULL and
    rely on the habit row lock taken by the completion service.
    """
    __tablename__ = "habit_completions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    habit_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("habits.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    image: Mapped[str | None] = mapped_column(String(500), default=None)
    notes: Mapped[str | None] = mapped_column(Text, default=None)
    is_published: Mapped[bool] = mapped_column(Boolean, default=False)
    window_key: Mapped[str | None] = mapped_column(String(40), nullable=True)
    window_slot: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    habit: Mapped[Habit] = relationship(back_populates="completions")
    atom: Mapped[Atom | None] = relationship(
        back_populates="completion", uselist=False, cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint(
            "habit_id", "window_key", "window_slot",
            name="uq_completions_habit_window",
        ),
        Index("ix_completions_habit_time", "habit_id", "completed_at"),
        Index("ix_completions_user_time", "user_id", "completed_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<HabitCompletion id={self.id} habit={self.habit_id} "
            f"at={self.completed_at}>"
        )


# ---------------------------------------------------------------------------
# Atom: shareable post with vote tallies
# ---------------------------------------------------------------------------
class Atom(Base):
    """A published completion.

    ``habit_title``/``habit_type``/``completion_time`` are a snapshot taken
    at creation so later habit edits never alter historical posts.  The vote
    counters are written only by
    :func:`habitat.services.vote_service.apply_vote_delta`.
    """
    __tablename__ = "atoms"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    completion_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("habit_completions.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    habit_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("habits.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    image: Mapped[str] = mapped_column(String(500), nullable=False)
    caption: Mapped[str] = mapped_column(Text, nullable=False)
    habit_title: Mapped[str] = mapped_column(String(100), nullable=False)
    habit_type: Mapped[str] = mapped_column(String(20), nullable=False)
    completion_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    upvotes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    downvotes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    net_votes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    habit: Mapped[Habit] = relationship(back_populates="atoms")
    completion: Mapped[HabitCompletion] = relationship(back_populates="atom")
    votes: Mapped[list[AtomVote]] = relationship(
        back_populates="atom", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_atoms_user_time", "user_id", "created_at"),
        Index("ix_atoms_net_votes", "net_votes"),
    )

    def __repr__(self) -> str:
        return (
            f"<Atom id={self.id} up={self.upvotes} down={self.downvotes} "
            f"net={self.net_votes}>"
        )


# ---------------------------------------------------------------------------
# AtomVote: one active vote per (atom, user)
# ---------------------------------------------------------------------------
class AtomVote(Base):
    __tablename__ = "atom_votes"

    atom_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("atoms.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    vote_type: Mapped[str] = mapped_column(String(10), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    atom: Mapped[Atom] = relationship(back_populates="votes")

    __table_args__ = (
        Index("ix_atom_votes_user_time", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AtomVote atom={self.atom_id} user={self.user_id} type={self.vote_type}>"


# ---------------------------------------------------------------------------
# Setting: scoring key-value store
# ---------------------------------------------------------------------------
class Setting(Base):
    """Key-value configuration store.

    Scoring knobs (points per completion, streak bonus, vote points, ...)
    live here so they can change without a redeploy.  Values are stored as
    JSON strings; typed accessors live in
    :class:`~habitat.engine.cache.ConfigCache`.
    """
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value_json: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    description: Mapped[str | None] = mapped_column(Text, default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_settings_category", "category"),
    )

    def __repr__(self) -> str:
        return f"<Setting key={self.key!r} category={self.category!r}>"
