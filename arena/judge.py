"""LLM-backed collaborators: the judge, the pairwise comparator and the anonymizer.

The engine only depends on the three small protocols below. Production code
wires the ``LLM*`` implementations around a single ``LLMClient`` built at
startup; tests inject deterministic fakes.
"""
from __future__ import annotations

import asyncio
import json
import logging
import math
import os
import re
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from arena.models import Evaluation, Idea
from arena.utils import json_parse, str_list

log = logging.getLogger(__name__)

DECISIONS = ("Go", "Conditional Go", "Drop")
LEVELS = ("Low", "Med", "High")
WINNERS = ("A", "B", "Tie")


class LLMCallError(Exception):
    """LLM call failed or returned unparseable output."""
    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


# ---------------------------------------------------------------------------
# LLM Client
# ---------------------------------------------------------------------------


class LLMClient:
    """Unified async LLM client supporting Anthropic and OpenAI."""

    def __init__(
        self,
        provider: str | None = None,
        model: str | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 30.0,
    ):
        self.provider = provider or os.environ.get("LLM_PROVIDER", "anthropic")
        self.model = model or os.environ.get("LLM_MODEL", "")
        self.timeout = timeout
        self._api_key = api_key
        self._base_url = base_url
        self._client: Any = None
        self._init_client()

    def _init_client(self) -> None:
        http_timeout = httpx.Timeout(self.timeout, connect=min(10.0, self.timeout))
        if self.provider == "anthropic":
            import anthropic
            self.model = self.model or "claude-haiku-4-5-20251001"
            self._client = anthropic.AsyncAnthropic(
                api_key=self._api_key or os.environ.get("ANTHROPIC_API_KEY"),
                timeout=http_timeout,
                max_retries=1,
            )
        elif self.provider in ("openai", "openai_compatible"):
            import openai
            self.model = self.model or "gpt-4o-mini"
            kwargs: dict[str, Any] = {"timeout": http_timeout, "max_retries": 1}
            key = self._api_key or os.environ.get("OPENAI_API_KEY")
            if key:
                kwargs["api_key"] = key
            url = self._base_url or os.environ.get("OPENAI_BASE_URL")
            if url:
                kwargs["base_url"] = url
            self._client = openai.AsyncOpenAI(**kwargs)
        else:
            raise ValueError(f"Unknown LLM provider: {self.provider!r}")

    async def _complete(self, system: str, user: str, temperature: float) -> str:
        if self.provider == "anthropic":
            response = await self._client.messages.create(
                model=self.model,
                max_tokens=1024,
                temperature=temperature,
                system=system,
                messages=[{"role": "user", "content": user}],
            )
            text = response.content[0].text.strip()
            m = re.search(r'```(?:json)?\s*(\{.*\})\s*```', text, re.DOTALL)
            return m.group(1) if m else text
        response = await self._client.chat.completions.create(
            model=self.model,
            max_tokens=1024,
            temperature=temperature,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        )
        return response.choices[0].message.content or "{}"

    async def call(self, system: str, user: str, temperature: float = 0.3) -> dict[str, Any]:
        """Send system+user message to the LLM, return parsed JSON."""
        try:
            text = await asyncio.wait_for(self._complete(system, user, temperature), self.timeout)
        except TimeoutError as exc:
            raise LLMCallError(f"LLM call timed out after {self.timeout}s", retryable=True) from exc
        except Exception as exc:
            raise LLMCallError(f"LLM API call failed: {exc}", retryable=True) from exc

        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise LLMCallError(f"LLM returned invalid JSON: {text[:200]}", retryable=False) from exc
        if not isinstance(data, dict):
            raise LLMCallError(f"LLM returned non-object JSON: {text[:200]}", retryable=False)
        return data


# ---------------------------------------------------------------------------
# Collaborator contracts
# ---------------------------------------------------------------------------


@dataclass
class EvaluationResult:
    viability: int
    excellence: int
    decision: str
    uncertainty: str
    top_risks: list[str] = field(default_factory=list)
    key_enablers: list[str] = field(default_factory=list)
    model: str = ""


@dataclass
class Verdict:
    winner: str  # "A" | "B" | "Tie", from the first-named idea's side
    reasons: list[str]
    confidence: str


@dataclass
class Anonymization:
    summary: str
    category: str


@dataclass
class Contender:
    """An idea as it enters a match: its current evaluation and rating state."""
    idea: Idea
    evaluation: Evaluation
    elo: int
    match_count: int


class Judge(Protocol):
    async def evaluate(
        self, text: str, category: str | None = None, stage: str | None = None,
    ) -> EvaluationResult: ...


class Comparator(Protocol):
    async def compare(self, a: Contender, b: Contender) -> Verdict: ...


class Anonymizer(Protocol):
    async def anonymize(self, text: str, language: str = "zh") -> Anonymization: ...


# ---------------------------------------------------------------------------
# Judge
# ---------------------------------------------------------------------------

JUDGE_SYSTEM_PROMPT = """\
You are a strict startup evaluator. Use the full 0-100 range: only the top 5% \
of ideas score 90+, average ideas cluster around 50, ideas lacking feasibility \
or innovation score below 30. Reference point: "An online platform for renting \
private parking spaces in cities." scores 80.

Score two dimensions:
- VIABILITY: technical and commercial feasibility, path to market, unit economics.
- EXCELLENCE: market size, defensibility, expected value.

Decision: "Drop" if viability < 40 or excellence < 30; "Go" if viability >= 60 \
and excellence >= 50; otherwise "Conditional Go".
Uncertainty: "High" (unproven market, novel tech), "Med" (partial validation), \
"Low" (clear precedents).

Respond with ONLY valid JSON:
{
  "viability_score": <0-100>,
  "excellence_score": <0-100>,
  "decision": "<Go|Conditional Go|Drop>",
  "uncertainty": "<Low|Med|High>",
  "top_risks": ["<risk>", "<risk>", "<risk>"],
  "key_enablers": ["<enabler>", "<enabler>", "<enabler>"]
}
"""


def _score(raw: dict[str, Any], key: str) -> int:
    val = raw.get(key)
    if isinstance(val, bool):
        raise LLMCallError(f"Judge returned non-numeric {key}: {val!r}")
    try:
        num = float(val)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise LLMCallError(f"Judge returned non-numeric {key}: {val!r}") from exc
    if not math.isfinite(num):
        raise LLMCallError(f"Judge returned non-finite {key}: {val!r}")
    return max(0, min(100, round(num)))


def derive_decision(viability: int, excellence: int) -> str:
    """Deterministic fallback when the judge's decision tag is unusable."""
    if viability < 40 or excellence < 30:
        return "Drop"
    if viability >= 60 and excellence >= 50:
        return "Go"
    return "Conditional Go"


def parse_evaluation(raw: dict[str, Any]) -> EvaluationResult:
    """Validate and normalize a judge response. Raises LLMCallError if unusable."""
    viability = _score(raw, "viability_score")
    excellence = _score(raw, "excellence_score")

    decision = str(raw.get("decision", "")).strip()
    by_lower = {d.lower(): d for d in DECISIONS}
    if decision.lower() in by_lower:
        decision = by_lower[decision.lower()]
    else:
        log.warning("Unrecognizable decision %r, deriving from scores", raw.get("decision"))
        decision = derive_decision(viability, excellence)

    uncertainty = _level(raw.get("uncertainty"), "Med")

    return EvaluationResult(
        viability=viability,
        excellence=excellence,
        decision=decision,
        uncertainty=uncertainty,
        top_risks=str_list(raw.get("top_risks")),
        key_enablers=str_list(raw.get("key_enablers")),
    )


def _level(val: Any, default: str) -> str:
    g = str(val or "").strip().capitalize()
    if g == "Medium":
        g = "Med"
    return g if g in LEVELS else default


class LLMJudge:
    def __init__(self, client: LLMClient):
        self.client = client

    async def evaluate(
        self, text: str, category: str | None = None, stage: str | None = None,
    ) -> EvaluationResult:
        lines = [f"IDEA: {text}"]
        if category:
            lines.append(f"CATEGORY: {category}")
        if stage:
            lines.append(f"STAGE: {stage}")
        raw = await self.client.call(JUDGE_SYSTEM_PROMPT, "\n".join(lines), temperature=0.3)
        result = parse_evaluation(raw)
        result.model = self.client.model
        return result


# ---------------------------------------------------------------------------
# Comparator
# ---------------------------------------------------------------------------

COMPARATOR_SYSTEM_PROMPT = """\
You are an expert startup evaluator comparing two ideas on viability, \
excellence, execution clarity and breakthrough potential. Be objective and \
decisive; ignore the order in which the ideas are presented.

"A" or "B" for a clearly superior idea, "Tie" when too close to call.
Confidence: "High" (decisive advantage), "Med" (trade-offs), "Low" (marginal).

Respond with ONLY valid JSON:
{
  "winner": "<A|B|Tie>",
  "reasons": ["<reason>", "<reason>", "<reason>"],
  "confidence": "<High|Med|Low>"
}
"""


def build_contender_dossier(label: str, c: Contender) -> str:
    ev = c.evaluation
    return "\n".join([
        f"IDEA {label}:",
        f"Text: {c.idea.text}",
        f"Category: {c.idea.category or 'N/A'}",
        f"Stage: {c.idea.stage or 'N/A'}",
        f"Viability Score: {ev.viability}/100",
        f"Excellence Score: {ev.excellence}/100",
        f"Decision: {ev.decision}",
        f"Uncertainty: {ev.uncertainty}",
        f"Top Risks: {', '.join(json_parse(ev.top_risks_json, []))}",
        f"Key Enablers: {', '.join(json_parse(ev.key_enablers_json, []))}",
    ])


def parse_verdict(raw: dict[str, Any]) -> Verdict:
    winner = str(raw.get("winner", "")).strip()
    by_lower = {w.lower(): w for w in WINNERS}
    if winner.lower() not in by_lower:
        raise LLMCallError(f"Comparator returned unknown winner: {raw.get('winner')!r}")
    return Verdict(
        winner=by_lower[winner.lower()],
        reasons=str_list(raw.get("reasons")),
        confidence=_level(raw.get("confidence"), "Low"),
    )


class LLMComparator:
    def __init__(self, client: LLMClient):
        self.client = client

    async def compare(self, a: Contender, b: Contender) -> Verdict:
        user = "\n\n".join([
            "Compare these two startup ideas:",
            build_contender_dossier("A", a),
            build_contender_dossier("B", b),
            "Which idea is better overall?",
        ])
        raw = await self.client.call(COMPARATOR_SYSTEM_PROMPT, user, temperature=0.2)
        return parse_verdict(raw)


# ---------------------------------------------------------------------------
# Anonymizer
# ---------------------------------------------------------------------------

ANONYMIZER_SYSTEM_PROMPT = """\
You turn startup ideas into short anonymous summaries for a public leaderboard. \
Remove product names, company names, locations and specific technical details; \
keep the domain and value proposition. One or two sentences, at most 50 words. \
Also name the main category (e.g. "AI Health", "FinTech", "EdTech").

Write both fields in {language}.

Respond with ONLY valid JSON:
{{"summary": "<anonymous summary>", "category": "<category>"}}
"""

_LANGUAGE_NAMES = {"zh": "Simplified Chinese", "en": "English"}
FALLBACK_ANONYMIZATION = {
    "zh": Anonymization(summary="创业项目", category="其他"),
    "en": Anonymization(summary="Startup Project", category="Other"),
}


class LLMAnonymizer:
    def __init__(self, client: LLMClient):
        self.client = client

    async def anonymize(self, text: str, language: str = "zh") -> Anonymization:
        fallback = FALLBACK_ANONYMIZATION.get(language, FALLBACK_ANONYMIZATION["en"])
        system = ANONYMIZER_SYSTEM_PROMPT.format(language=_LANGUAGE_NAMES.get(language, "English"))
        try:
            raw = await self.client.call(system, text, temperature=0.3)
        except LLMCallError as exc:
            log.warning("Anonymization failed, using fallback summary: %s", exc)
            return fallback
        return Anonymization(
            summary=str(raw.get("summary") or "").strip() or fallback.summary,
            category=str(raw.get("category") or "").strip() or fallback.category,
        )
