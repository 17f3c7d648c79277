"""Shared database fixtures for the Arena tests."""
from __future__ import annotations

from datetime import UTC, datetime, timedelta
from itertools import count

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from arena.models import Base, Evaluation, Idea, Rating
from arena.utils import to_json


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture()
def session_factory(engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def session(session_factory):
    sess = session_factory()
    try:
        yield sess
    finally:
        sess.close()


@pytest.fixture()
def make_idea(session: Session):
    """Factory for ideas with an evaluation and, optionally, a rating.

    Ideas are created one second apart so creation order is deterministic.
    """
    seq = count()
    base = datetime(2025, 1, 1, tzinfo=UTC)

    def _make(
        text: str = "A marketplace for used lab equipment",
        *,
        elo: int | None = 1500,
        matches: int = 0,
        viability: int = 72,
        excellence: int = 65,
        category: str | None = "Marketplace",
        user_id: str | None = None,
        is_public: bool = False,
        ai_summary: str | None = None,
        evaluated: bool = True,
    ) -> Idea:
        idea = Idea(
            text=text, category=category, user_id=user_id, is_public=is_public,
            ai_summary=ai_summary, created_at=base + timedelta(seconds=next(seq)),
        )
        session.add(idea)
        session.flush()
        if evaluated:
            session.add(Evaluation(
                idea_id=idea.id, viability=viability, excellence=excellence,
                decision="Go" if viability >= 60 else "Drop", uncertainty="Med",
                top_risks_json=to_json(["Competition"]), key_enablers_json=to_json(["Timing"]),
            ))
        if elo is not None:
            session.add(Rating(idea_id=idea.id, elo_score=elo, match_count=matches))
        session.commit()
        return idea

    return _make
