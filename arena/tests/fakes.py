"""Deterministic stand-ins for the LLM collaborators and the auto-matcher."""
from __future__ import annotations

from arena.judge import Anonymization, Contender, EvaluationResult, LLMCallError, Verdict


class FakeJudge:
    """Returns a fixed verdict (or raises) and records what it was asked."""

    def __init__(self, viability: int = 72, excellence: int = 65, error: Exception | None = None):
        self.viability = viability
        self.excellence = excellence
        self.error = error
        self.calls: list[tuple[str, str | None, str | None]] = []

    async def evaluate(self, text, category=None, stage=None):
        self.calls.append((text, category, stage))
        if self.error:
            raise self.error
        return EvaluationResult(
            viability=self.viability, excellence=self.excellence,
            decision="Go" if self.viability >= 60 else "Conditional Go",
            uncertainty="Med", top_risks=["Logistics"], key_enablers=["Niche community"],
            model="fake-judge",
        )


class ScriptedComparator:
    """Answers with scripted winners; opponents listed in ``fail_for`` raise."""

    def __init__(self, winners: list[str] | str = "A", fail_for: set[str] | None = None):
        self._winners = [winners] if isinstance(winners, str) else list(winners)
        self.fail_for = fail_for or set()
        self.calls: list[tuple[str, str, int, int]] = []

    async def compare(self, a: Contender, b: Contender) -> Verdict:
        self.calls.append((a.idea.id, b.idea.id, a.elo, b.elo))
        if b.idea.id in self.fail_for:
            raise LLMCallError("comparator unavailable", retryable=True)
        winner = self._winners[(len(self.calls) - 1) % len(self._winners)]
        return Verdict(winner=winner, reasons=[f"{winner} is stronger"], confidence="Med")


class FakeAnonymizer:
    def __init__(self):
        self.calls: list[tuple[str, str]] = []

    async def anonymize(self, text, language="zh"):
        self.calls.append((text, language))
        return Anonymization(summary="Niche subscription commerce", category="E-commerce")


class RecordingMatcher:
    """Stands in for AutoMatcher where background runs are not under test."""

    def __init__(self):
        self.submitted: list[tuple[str, int]] = []
        self.started = False

    async def start(self):
        self.started = True

    async def stop(self):
        self.started = False

    def submit(self, idea_id, target=5):
        self.submitted.append((idea_id, target))
        return True

    def resume(self, session):
        return 0

    def status(self):
        return {"running": self.started, "workers": 0, "pending": 0,
                "completed": 0, "failed": 0, "matches_played": 0}
