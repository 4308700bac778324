"""
habitat.services.feed_service — Trending atoms
===============================================

Atoms created in the last ``TRENDING_WINDOW_DAYS`` days with a positive
net score, best first (``net_votes`` desc, then newest).  Each entry
carries its author, its habit and category, the caller's own vote and the
number of votes cast on it.
"""

from __future__ import annotations

import logging
import math
from datetime import UTC, datetime, timedelta

from sqlalchemy import Engine, func, select
from sqlalchemy.orm import Session

from habitat import constants
from habitat.database.models import Atom, AtomVote, Category, Habit, User

logger = logging.getLogger(__name__)


def _atom_entry(atom: Atom, user: User, habit: Habit, category: Category,
                user_vote: str | None, vote_count: int) -> dict:
    return {
        "id": atom.id,
        "image": atom.image,
        "caption": atom.caption,
        "habit_title": atom.habit_title,
        "habit_type": atom.habit_type,
        "completion_time": atom.completion_time.isoformat(),
        "upvotes": atom.upvotes,
        "downvotes": atom.downvotes,
        "net_votes": atom.net_votes,
        "is_completed": atom.is_completed,
        "created_at": atom.created_at.isoformat() if atom.created_at else None,
        "user": {"id": user.id, "username": user.username, "total_karma": user.total_karma},
        "habit": {
            "id": habit.id,
            "title": habit.title,
            "category": {"name": category.name, "icon": category.icon},
        },
        "user_vote": user_vote,
        "vote_count": vote_count,
    }


def get_trending_atoms(
    engine: Engine,
    *,
    user_id: int | None = None,
    page: int = 1,
    limit: int = constants.DEFAULT_PAGE_SIZE,
    now: datetime | None = None,
) -> dict:
    """One page of trending atoms plus ``pagination`` totals."""
    now = now or datetime.now(UTC)
    page = max(1, int(page))
    limit = max(1, min(int(limit), constants.MAX_PAGE_SIZE))
    since = now - timedelta(days=constants.TRENDING_WINDOW_DAYS)
    trending = (Atom.created_at >= since, Atom.net_votes > 0)

    with Session(engine) as session:
        total = session.scalar(
            select(func.count()).select_from(Atom).where(*trending)
        ) or 0
        rows = session.execute(
            select(Atom, User, Habit, Category)
            .join(User, User.id == Atom.user_id)
            .join(Habit, Habit.id == Atom.habit_id)
            .join(Category, Category.id == Habit.category_id)
            .where(*trending)
            .order_by(Atom.net_votes.desc(), Atom.created_at.desc(), Atom.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()

        atom_ids = [atom.id for atom, *_ in rows]
        vote_counts: dict[int, int] = {}
        my_votes: dict[int, str] = {}
        if atom_ids:
            vote_counts = dict(session.execute(
                select(AtomVote.atom_id, func.count())
                .where(AtomVote.atom_id.in_(atom_ids))
                .group_by(AtomVote.atom_id)
            ).all())
            if user_id is not None:
                my_votes = dict(session.execute(
                    select(AtomVote.atom_id, AtomVote.vote_type).where(
                        AtomVote.user_id == user_id,
                        AtomVote.atom_id.in_(atom_ids),
                    )
                ).all())

        atoms = [
            _atom_entry(
                atom, user, habit, category,
                my_votes.get(atom.id), vote_counts.get(atom.id, 0),
            )
            for atom, user, habit, category in rows
        ]

    logger.debug("Trending page %d: %d of %d atoms", page, len(atoms), total)
    return {
        "atoms": atoms,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit),
        },
    }
