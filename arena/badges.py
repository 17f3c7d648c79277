"""Display-only tier badges and percentile estimates for ranked ideas.

Nothing here touches storage; the leaderboard calls these at read time.
"""
from __future__ import annotations

from dataclasses import dataclass

MIN_RANKED_MATCHES = 3


@dataclass(frozen=True)
class BadgeTier:
    name: str
    min_elo: int
    min_matches: int
    color: str
    description: str


@dataclass(frozen=True)
class BadgeInfo:
    badge: str | None
    color: str
    description: str


# Highest first; the first tier whose Elo and match floors are both met wins.
BADGE_TIERS: tuple[BadgeTier, ...] = (
    BadgeTier("Legendary", 1700, 10, "#9333ea", "Top 1% - Exceptional breakthrough potential"),
    BadgeTier("Platinum", 1650, 8, "#0891b2", "Elite tier - Outstanding market potential"),
    BadgeTier("Gold", 1600, 6, "#f59e0b", "Excellent - Strong competitive advantage"),
    BadgeTier("Silver", 1550, 5, "#6b7280", "Very Good - Solid execution potential"),
    BadgeTier("Bronze", 1500, 4, "#b45309", "Good - Proven viability"),
    BadgeTier("Emerging", 1450, 3, "#16a34a", "Rising - Shows promise"),
)

NOT_RANKED = BadgeInfo(badge=None, color="gray", description="Not yet ranked")
NEEDS_EVALUATION = BadgeInfo(badge=None, color="gray", description="Needs more evaluation")


def calculate_badge(elo_score: int, match_count: int) -> BadgeInfo:
    if match_count < MIN_RANKED_MATCHES:
        return NOT_RANKED
    for tier in BADGE_TIERS:
        if elo_score >= tier.min_elo and match_count >= tier.min_matches:
            return BadgeInfo(badge=tier.name, color=tier.color, description=tier.description)
    return NEEDS_EVALUATION


_PERCENTILE_MEAN = 1500
_PERCENTILE_STD = 50

# (minimum z-score, percentile), checked top down.
_PERCENTILE_STEPS: tuple[tuple[float, int], ...] = (
    (2.5, 99), (2.0, 98), (1.5, 93), (1.0, 84), (0.5, 69),
    (0.0, 50), (-0.5, 31), (-1.0, 16), (-1.5, 7), (-2.0, 2),
)


def percentile_rank(elo_score: float) -> int:
    """Approximate percentile for an Elo score.

    This is a display heuristic, not a fitted model: it pretends ratings are
    normally distributed around 1500 with a standard deviation of 50 and
    snaps the z-score onto a coarse step table.
    """
    z = (elo_score - _PERCENTILE_MEAN) / _PERCENTILE_STD
    for threshold, percentile in _PERCENTILE_STEPS:
        if z >= threshold:
            return percentile
    return 1
