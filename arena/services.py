"""Ranking engine business logic shared by the web API, the MCP server and the auto-matcher."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from arena.badges import MIN_RANKED_MATCHES, calculate_badge, percentile_rank
from arena.elo import STARTING_ELO, calculate_new_elo, outcome_for
from arena.judge import Anonymizer, Comparator, Contender, Judge, Verdict
from arena.models import Evaluation, Idea, Match, Rating
from arena.utils import json_parse, to_json, utc_now

if TYPE_CHECKING:
    from arena.matcher import AutoMatcher

log = logging.getLogger(__name__)

ELIGIBILITY_THRESHOLD = 60
TARGET_MATCHES = 5
MIN_IDEA_LENGTH = 10


class RankingError(Exception):
    """Base class for errors the caller can act on."""


class InvalidInput(RankingError):
    pass


class IdeaNotFound(RankingError):
    pass


class NotEligible(RankingError):
    """Precondition failure: an idea lacks an evaluation or a rating."""


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def get_idea(session: Session, idea_id: str) -> Idea | None:
    return session.get(Idea, idea_id)


def current_evaluation(session: Session, idea_id: str) -> Evaluation | None:
    return session.execute(
        select(Evaluation).where(Evaluation.idea_id == idea_id)
        .order_by(Evaluation.id.desc()).limit(1)
    ).scalars().first()


def get_rating(session: Session, idea_id: str) -> Rating | None:
    return session.execute(select(Rating).where(Rating.idea_id == idea_id)).scalars().first()


def is_eligible(evaluation: Evaluation | None) -> bool:
    return evaluation is not None and evaluation.viability >= ELIGIBILITY_THRESHOLD


def opponents_faced(session: Session, idea_id: str) -> set[str]:
    rows = session.execute(
        select(Match.idea_a_id, Match.idea_b_id)
        .where((Match.idea_a_id == idea_id) | (Match.idea_b_id == idea_id))
    ).all()
    return {b if a == idea_id else a for a, b in rows}


def _ranked_rows():
    """Ratings joined with their idea and current evaluation, eligible ideas only."""
    latest = (
        select(Evaluation.idea_id, func.max(Evaluation.id).label("evaluation_id"))
        .group_by(Evaluation.idea_id)
        .subquery()
    )
    return (
        select(Rating, Idea, Evaluation)
        .join(Idea, Idea.id == Rating.idea_id)
        .join(latest, latest.c.idea_id == Rating.idea_id)
        .join(Evaluation, Evaluation.id == latest.c.evaluation_id)
        .where(Evaluation.viability >= ELIGIBILITY_THRESHOLD)
    )


def ideas_near_elo(
    session: Session, target_elo: int, exclude: set[str], limit: int,
) -> list[Contender]:
    """Rated ideas closest to *target_elo*, any category, nearest first."""
    stmt = _ranked_rows()
    if exclude:
        stmt = stmt.where(Rating.idea_id.not_in(sorted(exclude)))
    stmt = stmt.order_by(
        func.abs(Rating.elo_score - target_elo), Idea.created_at, Idea.id,
    ).limit(limit)
    return [
        Contender(idea=idea, evaluation=ev, elo=rating.elo_score, match_count=rating.match_count)
        for rating, idea, ev in session.execute(stmt).all()
    ]


def top_rated(session: Session, limit: int) -> list[tuple[Rating, Idea, Evaluation]]:
    # Equal Elo: the older idea ranks first.
    stmt = (
        _ranked_rows()
        .where(Rating.match_count >= MIN_RANKED_MATCHES)
        .order_by(Rating.elo_score.desc(), Idea.created_at, Idea.id)
        .limit(limit)
    )
    return [tuple(row) for row in session.execute(stmt).all()]  # type: ignore[misc]


def ideas_below_target(session: Session, target: int = TARGET_MATCHES) -> list[str]:
    stmt = _ranked_rows().where(Rating.match_count < target).order_by(Idea.created_at, Idea.id)
    return [rating.idea_id for rating, _, _ in session.execute(stmt).all()]


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def evaluation_payload(idea_id: str, ev: Evaluation) -> dict[str, Any]:
    return {
        "idea_id": idea_id,
        "viability": ev.viability,
        "excellence": ev.excellence,
        "decision": ev.decision,
        "uncertainty": ev.uncertainty,
        "top_risks": json_parse(ev.top_risks_json, []),
        "key_enablers": json_parse(ev.key_enablers_json, []),
        "eligible_for_ranking": is_eligible(ev),
    }


def display_text(idea: Idea, rank: int, viewer_id: str | None) -> tuple[str, bool, bool]:
    """Pick what a viewer may see of an idea: ``(text, is_own, is_anonymized)``."""
    is_own = bool(viewer_id) and idea.user_id == viewer_id
    if is_own:
        return idea.text, True, False
    if idea.is_public and idea.ai_summary:
        return idea.ai_summary, False, True
    return f"{idea.category or 'Startup'} #{rank:03d}", False, True


# ---------------------------------------------------------------------------
# Evaluation pipeline
# ---------------------------------------------------------------------------


async def evaluate_idea(
    session: Session,
    judge: Judge,
    *,
    text: str,
    idea_id: str | None = None,
    category: str | None = None,
    stage: str | None = None,
    user_id: str | None = None,
    conversation_id: str | None = None,
    is_public: bool = False,
    language: str = "zh",
    anonymizer: Anonymizer | None = None,
    matcher: AutoMatcher | None = None,
    min_length: int = MIN_IDEA_LENGTH,
) -> dict[str, Any]:
    """Judge an idea, store the verdict and enter it into the ranking if viable.

    A new Idea is created unless *idea_id* names an existing one, in which case
    its stored text is re-judged and a new Evaluation is appended. Nothing is
    written if the judge fails. Matching is scheduled on *matcher* after the
    commit and never awaited here.
    """
    text = (text or "").strip()
    if len(text) < min_length:
        raise InvalidInput(f"Idea description must be at least {min_length} characters")
    if is_public and not idea_id and anonymizer is None:
        raise InvalidInput("Public ideas need an anonymizer")

    idea: Idea | None = None
    if idea_id:
        idea = get_idea(session, idea_id)
        if idea is None:
            raise IdeaNotFound(f"Idea {idea_id} not found")
        text = idea.text
        category = category or idea.category
        stage = stage or idea.stage

    result = await judge.evaluate(text, category, stage)

    summary = None
    if idea is None and is_public:
        anonymized = await anonymizer.anonymize(text, language)
        summary, category = anonymized.summary, anonymized.category

    try:
        if idea is None:
            idea = Idea(
                text=text, category=category or None, stage=stage or None,
                user_id=user_id or None, conversation_id=conversation_id or None,
                is_public=is_public, ai_summary=summary,
            )
            session.add(idea)
            session.flush()
        evaluation = Evaluation(
            idea_id=idea.id,
            viability=result.viability,
            excellence=result.excellence,
            decision=result.decision,
            uncertainty=result.uncertainty,
            top_risks_json=to_json(result.top_risks),
            key_enablers_json=to_json(result.key_enablers),
            llm_model=result.model,
        )
        session.add(evaluation)
        eligible = is_eligible(evaluation)
        if eligible and idea.rating is None:
            idea.rating = Rating(elo_score=STARTING_ELO, match_count=0)
        session.commit()
    except Exception:
        session.rollback()
        raise

    log.info("Evaluated idea %s: viability=%d excellence=%d eligible=%s",
             idea.id, evaluation.viability, evaluation.excellence, eligible)
    if eligible and matcher is not None:
        matcher.submit(idea.id, TARGET_MATCHES)
    return evaluation_payload(idea.id, evaluation)


# ---------------------------------------------------------------------------
# Comparison engine
# ---------------------------------------------------------------------------


@dataclass
class MatchResult:
    verdict: Verdict
    old_a: int
    new_a: int
    old_b: int
    new_b: int

    def elo_changes(self) -> dict[str, dict[str, int]]:
        return {
            "idea_a": {"old": self.old_a, "new": self.new_a, "change": self.new_a - self.old_a},
            "idea_b": {"old": self.old_b, "new": self.new_b, "change": self.new_b - self.old_b},
        }


def _store_rating(session: Session, idea_id: str, elo: int, match_count: int) -> None:
    session.execute(
        update(Rating).where(Rating.idea_id == idea_id)
        .values(elo_score=elo, match_count=match_count, last_updated=utc_now())
    )


async def play_match(
    session: Session, a: Contender, b: Contender, comparator: Comparator,
) -> MatchResult:
    """Run one comparison, move both ratings and append the Match (commits).

    The Elo inputs are the ratings carried by the contenders, not a fresh
    read. Two unrelated matches touching the same idea at once can overwrite
    each other's rating update (last write wins); ranking tolerates that.
    """
    verdict = await comparator.compare(a, b)
    new_a, new_b = calculate_new_elo(a.elo, b.elo, outcome_for(verdict.winner))
    try:
        _store_rating(session, a.idea.id, new_a, a.match_count + 1)
        _store_rating(session, b.idea.id, new_b, b.match_count + 1)
        session.flush()
        session.add(Match(
            idea_a_id=a.idea.id, idea_b_id=b.idea.id, winner=verdict.winner,
            reasons_json=to_json(verdict.reasons), confidence=verdict.confidence,
        ))
        session.commit()
    except Exception:
        session.rollback()
        raise
    return MatchResult(verdict=verdict, old_a=a.elo, new_a=new_a, old_b=b.elo, new_b=new_b)


async def compare_ideas(
    session: Session, comparator: Comparator, idea_a_id: str, idea_b_id: str,
) -> dict[str, Any]:
    if idea_a_id == idea_b_id:
        raise NotEligible("An idea cannot be compared with itself")

    idea_a, idea_b = get_idea(session, idea_a_id), get_idea(session, idea_b_id)
    if idea_a is None or idea_b is None:
        raise IdeaNotFound("One or both ideas not found")

    ev_a, ev_b = current_evaluation(session, idea_a_id), current_evaluation(session, idea_b_id)
    if ev_a is None or ev_b is None:
        raise NotEligible("Both ideas must be evaluated first")

    rating_a, rating_b = idea_a.rating, idea_b.rating
    if rating_a is None or rating_b is None or not (is_eligible(ev_a) and is_eligible(ev_b)):
        raise NotEligible(
            f"Both ideas must be ranked first (viability >= {ELIGIBILITY_THRESHOLD} required)"
        )

    result = await play_match(
        session,
        Contender(idea_a, ev_a, rating_a.elo_score, rating_a.match_count),
        Contender(idea_b, ev_b, rating_b.elo_score, rating_b.match_count),
        comparator,
    )
    log.info("Compared %s vs %s -> %s", idea_a_id, idea_b_id, result.verdict.winner)
    return {
        "winner": result.verdict.winner,
        "reasons": result.verdict.reasons,
        "confidence": result.verdict.confidence,
        "elo_changes": result.elo_changes(),
    }


# ---------------------------------------------------------------------------
# Leaderboard
# ---------------------------------------------------------------------------


def leaderboard(session: Session, limit: int = 20, viewer_id: str | None = None) -> dict[str, Any]:
    """Top ideas by Elo with badges, filtered per viewer. Never writes."""
    entries = []
    for rank, (rating, idea, ev) in enumerate(top_rated(session, limit), start=1):
        badge = calculate_badge(rating.elo_score, rating.match_count)
        text, is_own, is_anonymized = display_text(idea, rank, viewer_id)
        entries.append({
            "rank": rank,
            "idea_id": idea.id,
            "text": text,
            "category": idea.category,
            "stage": idea.stage,
            "elo_score": rating.elo_score,
            "match_count": rating.match_count,
            "viability_score": ev.viability,
            "excellence_score": ev.excellence,
            "decision": ev.decision,
            "badge": badge.badge,
            "badge_color": badge.color,
            "badge_description": badge.description,
            "is_own": is_own,
            "is_anonymized": is_anonymized,
            "is_public": idea.is_public,
            "percentile": percentile_rank(rating.elo_score),
        })
    return {"total": len(entries), "ideas": entries}


def compute_stats(session: Session) -> dict[str, Any]:
    total_ideas = session.scalar(select(func.count()).select_from(Idea)) or 0
    total_evaluations = session.scalar(select(func.count()).select_from(Evaluation)) or 0
    total_matches = session.scalar(select(func.count()).select_from(Match)) or 0
    latest = (
        select(func.max(Evaluation.id).label("evaluation_id"))
        .group_by(Evaluation.idea_id)
        .subquery()
    )
    ranked = session.scalar(
        select(func.count()).select_from(Evaluation)
        .join(latest, Evaluation.id == latest.c.evaluation_id)
        .where(Evaluation.viability >= ELIGIBILITY_THRESHOLD)
    ) or 0
    return {
        "total_ideas": total_ideas,
        "total_evaluations": total_evaluations,
        "total_matches": total_matches,
        "ranked_ideas": ranked,
        "ranking_participation_rate": round(ranked / total_ideas * 100) if total_ideas else 0,
    }
