"""Pydantic request/response schemas for the Arena API."""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator


class EvaluateRequest(BaseModel):
    idea_id: str | None = None
    text: str = Field(min_length=1)
    category: str | None = None
    stage: str | None = None
    user_id: str | None = None
    conversation_id: str | None = None
    is_public: bool = False
    language: Literal["zh", "en"] = "zh"

    @field_validator("text")
    @classmethod
    def text_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("text must not be blank")
        return v


class EvaluateResponse(BaseModel):
    idea_id: str
    viability: int
    excellence: int
    decision: str
    uncertainty: str
    top_risks: list[str]
    key_enablers: list[str]
    eligible_for_ranking: bool


class CompareRequest(BaseModel):
    idea_a_id: str
    idea_b_id: str


class EloChange(BaseModel):
    old: int
    new: int
    change: int


class EloChanges(BaseModel):
    idea_a: EloChange
    idea_b: EloChange


class CompareResponse(BaseModel):
    winner: Literal["A", "B", "Tie"]
    reasons: list[str]
    confidence: Literal["Low", "Med", "High"]
    elo_changes: EloChanges


class LeaderboardEntry(BaseModel):
    rank: int
    idea_id: str
    text: str
    category: str | None = None
    stage: str | None = None
    elo_score: int
    match_count: int
    viability_score: int | None = None
    excellence_score: int | None = None
    decision: str | None = None
    badge: str | None = None
    badge_color: str
    badge_description: str
    is_own: bool
    is_anonymized: bool
    is_public: bool
    percentile: int


class LeaderboardOut(BaseModel):
    total: int
    ideas: list[LeaderboardEntry]


class StatsOut(BaseModel):
    total_ideas: int
    total_evaluations: int
    total_matches: int
    ranked_ideas: int
    ranking_participation_rate: int


class MatcherStatusOut(BaseModel):
    running: bool
    workers: int
    pending: int
    completed: int
    failed: int
    matches_played: int
