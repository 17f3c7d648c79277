import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import Context, FastMCP

from arena import services
from arena.config import configure_logging, get_settings
from arena.db import session_scope
from arena.judge import LLMCallError
from arena.runtime import Runtime, build_runtime, running

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def arena_lifespan(server: FastMCP) -> AsyncIterator[Runtime]:
    async with running(build_runtime(get_settings())) as runtime:
        yield runtime


mcp = FastMCP(
    "Arena",
    instructions=(
        "Arena ranks startup ideas. evaluate_idea() scores an idea on viability "
        "and excellence; viable ideas (viability >= 60) are matched in the "
        "background against nearby-Elo ideas. compare_ideas() runs one extra "
        "match. get_leaderboard() shows the top ideas with badges."
    ),
    lifespan=arena_lifespan,
    json_response=True,
)


def _runtime(ctx: Context) -> Runtime:
    return ctx.request_context.lifespan_context


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("arena://overview")
def arena_overview() -> str:
    """Overview of Arena: data model, ranking rules, and badge tiers."""
    from arena.badges import BADGE_TIERS
    return json.dumps({
        "system": "Arena: Elo ranking for startup ideas",
        "data_model": {
            "idea": "Immutable idea text with optional category, stage, owner and public flag.",
            "evaluation": "Judge verdict: viability and excellence (0-100), decision, uncertainty, risks, enablers.",
            "rating": f"Elo score (starts at 1500) and match count. Exists only when viability >= {services.ELIGIBILITY_THRESHOLD}.",
            "match": "Append-only record of one pairwise comparison.",
        },
        "workflow": [
            "1. evaluate_idea(text) - judge an idea; viable ideas get a rating and background matches.",
            "2. compare_ideas(a, b) - run one more head-to-head match between two ranked ideas.",
            "3. get_leaderboard(limit) - ideas with at least 3 matches, highest Elo first.",
            "4. get_stats() - coverage of the ranking.",
        ],
        "badges": [
            {"badge": t.name, "min_elo": t.min_elo, "min_matches": t.min_matches}
            for t in BADGE_TIERS
        ],
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool()
async def evaluate_idea(
    text: str, ctx: Context, category: str | None = None, stage: str | None = None,
    is_public: bool = False, language: str = "en", idea_id: str | None = None,
) -> dict:
    """Evaluate a startup idea. Viable ideas are ranked and matched in the background.

    Args:
        text: The idea description (at least 10 characters).
        category: Optional category, e.g. "SaaS", "Hardware".
        stage: Optional stage, e.g. "Concept", "MVP".
        is_public: Publish an anonymized summary on the leaderboard.
        language: Summary language, "zh" or "en".
        idea_id: Re-evaluate an existing idea instead of creating one.
    """
    rt = _runtime(ctx)
    with session_scope(rt.session_factory) as session:
        try:
            return await services.evaluate_idea(
                session, rt.judge, text=text, idea_id=idea_id, category=category,
                stage=stage, is_public=is_public, language=language,
                anonymizer=rt.anonymizer, matcher=rt.matcher,
                min_length=rt.settings.min_idea_length,
            )
        except services.RankingError as exc:
            return {"error": str(exc)}
        except LLMCallError as exc:
            return {"error": f"Evaluation failed: {exc}"}


@mcp.tool()
async def compare_ideas(idea_a_id: str, idea_b_id: str, ctx: Context) -> dict:
    """Compare two ranked ideas head to head and update both Elo ratings."""
    rt = _runtime(ctx)
    with session_scope(rt.session_factory) as session:
        try:
            return await services.compare_ideas(session, rt.comparator, idea_a_id, idea_b_id)
        except services.RankingError as exc:
            return {"error": str(exc)}
        except LLMCallError as exc:
            return {"error": f"Comparison failed: {exc}"}


@mcp.tool()
def get_leaderboard(ctx: Context, limit: int = 20, viewer_id: str | None = None) -> dict:
    """Top-ranked ideas with badges and percentiles.

    Args:
        limit: Number of ideas (1-100).
        viewer_id: Show full text for ideas owned by this user id.
    """
    rt = _runtime(ctx)
    with session_scope(rt.session_factory) as session:
        return services.leaderboard(session, limit=max(1, min(limit, 100)), viewer_id=viewer_id)


@mcp.tool()
def get_stats(ctx: Context) -> dict:
    """Counts of ideas, evaluations, matches and ranked ideas, plus matcher status."""
    rt = _runtime(ctx)
    with session_scope(rt.session_factory) as session:
        stats = services.compute_stats(session)
    stats["matcher"] = rt.matcher.status()
    return stats


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the Arena MCP server over stdio."""
    configure_logging(get_settings().log_level)
    mcp.run()


if __name__ == "__main__":
    main()
