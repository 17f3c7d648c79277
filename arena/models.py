from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from arena.utils import utc_now


class Base(DeclarativeBase):
    pass


def _new_id() -> str:
    return str(uuid.uuid4())


class Idea(Base):
    __tablename__ = "ideas"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str | None] = mapped_column(String(200), nullable=True)
    stage: Mapped[str | None] = mapped_column(String(100), nullable=True)
    user_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    conversation_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_public: Mapped[bool] = mapped_column(Boolean, default=False)
    ai_summary: Mapped[str | None] = mapped_column(Text, nullable=True)  # only set when is_public
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

    rating: Mapped[Rating | None] = relationship("Rating", back_populates="idea", uselist=False)


class Evaluation(Base):
    """Judge verdict for one idea. Append-only; the highest id per idea is current."""
    __tablename__ = "evaluations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    idea_id: Mapped[str] = mapped_column(String(36), ForeignKey("ideas.id"), nullable=False, index=True)
    viability: Mapped[int] = mapped_column(Integer, nullable=False)
    excellence: Mapped[int] = mapped_column(Integer, nullable=False)
    decision: Mapped[str] = mapped_column(String(30), nullable=False)  # Go | Conditional Go | Drop
    uncertainty: Mapped[str] = mapped_column(String(10), nullable=False)  # Low | Med | High
    top_risks_json: Mapped[str] = mapped_column(Text, default="[]")
    key_enablers_json: Mapped[str] = mapped_column(Text, default="[]")
    llm_model: Mapped[str] = mapped_column(String(100), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)


class Rating(Base):
    __tablename__ = "ratings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    idea_id: Mapped[str] = mapped_column(String(36), ForeignKey("ideas.id"), nullable=False, unique=True)
    elo_score: Mapped[int] = mapped_column(Integer, nullable=False, default=1500, index=True)
    match_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_updated: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)

    idea: Mapped[Idea] = relationship("Idea", back_populates="rating")


class Match(Base):
    """Append-only head-to-head record. The same pair may appear more than once."""
    __tablename__ = "matches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    idea_a_id: Mapped[str] = mapped_column(String(36), ForeignKey("ideas.id"), nullable=False, index=True)
    idea_b_id: Mapped[str] = mapped_column(String(36), ForeignKey("ideas.id"), nullable=False, index=True)
    winner: Mapped[str] = mapped_column(String(5), nullable=False)  # A | B | Tie
    reasons_json: Mapped[str] = mapped_column(Text, default="[]")
    confidence: Mapped[str] = mapped_column(String(10), nullable=False)  # Low | Med | High
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
