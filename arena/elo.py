"""Elo rating math for head-to-head idea matches.

Standard logistic expectation with a fixed K-factor. Ratings are integers:
both sides are rounded after every update.
"""
from __future__ import annotations

STARTING_ELO = 1500
K_FACTOR = 24

OUTCOMES = {"A": 1.0, "B": 0.0, "Tie": 0.5}


def expected_score(rating: float, opponent: float) -> float:
    """Probability that *rating* beats *opponent*."""
    return 1 / (1 + 10 ** ((opponent - rating) / 400))


def outcome_for(winner: str) -> float:
    """Score of the first-named idea for a comparator verdict."""
    try:
        return OUTCOMES[winner]
    except KeyError:
        raise ValueError(f"Unknown winner {winner!r}") from None


def calculate_new_elo(
    rating_a: int, rating_b: int, outcome_a: float, k: int = K_FACTOR,
) -> tuple[int, int]:
    """Return ``(new_a, new_b)`` after a match where A scored *outcome_a*."""
    expected_a = expected_score(rating_a, rating_b)
    expected_b = expected_score(rating_b, rating_a)
    new_a = rating_a + k * (outcome_a - expected_a)
    new_b = rating_b + k * ((1 - outcome_a) - expected_b)
    return round(new_a), round(new_b)
