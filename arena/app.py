from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Generator

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from sqlalchemy.orm import Session, sessionmaker

from arena import services
from arena.config import Settings, configure_logging, get_settings
from arena.judge import Anonymizer, Comparator, Judge, LLMCallError
from arena.runtime import Runtime, build_runtime, running
from arena.schemas import (
    CompareRequest,
    CompareResponse,
    EvaluateRequest,
    EvaluateResponse,
    LeaderboardOut,
    MatcherStatusOut,
    StatsOut,
)

log = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    session_factory: sessionmaker[Session] | None = None,
    judge: Judge | None = None,
    comparator: Comparator | None = None,
    anonymizer: Anonymizer | None = None,
    matcher: Any = None,
) -> FastAPI:
    """Build the API. Collaborators not passed in are created at startup from *settings*."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        runtime = build_runtime(
            settings, session_factory=session_factory, judge=judge,
            comparator=comparator, anonymizer=anonymizer, matcher=matcher,
        )
        app.state.runtime = runtime
        async with running(runtime):
            yield

    app = FastAPI(
        title="Arena",
        version="0.1.0",
        description=(
            "Idea ranking engine. Startup ideas are scored by an LLM judge, "
            "refined through pairwise Elo matches, and published on a "
            "privacy-aware leaderboard. Pass X-User-Id to identify the viewer."
        ),
        lifespan=lifespan,
        openapi_tags=[
            {"name": "Ranking", "description": "Evaluate and compare ideas. Requires an LLM API key."},
            {"name": "Leaderboard", "description": "Top ideas with badges and percentiles."},
            {"name": "Stats", "description": "Aggregate statistics and matcher health."},
        ],
    )
    _register_routes(app)
    return app


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def db_session(runtime: Runtime = Depends(get_runtime)) -> Generator[Session, None, None]:
    session = runtime.session_factory()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def viewer_id(x_user_id: str | None = Header(default=None)) -> str | None:
    return (x_user_id or "").strip() or None


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


def _register_routes(app: FastAPI) -> None:

    @app.post("/api/evaluate", response_model=EvaluateResponse,
              tags=["Ranking"], summary="Evaluate an idea and enter it into the ranking if viable")
    async def evaluate(
        body: EvaluateRequest,
        runtime: Runtime = Depends(get_runtime),
        session: Session = Depends(db_session),
        viewer: str | None = Depends(viewer_id),
    ):
        try:
            return await services.evaluate_idea(
                session, runtime.judge,
                text=body.text, idea_id=body.idea_id, category=body.category,
                stage=body.stage, user_id=viewer or body.user_id,
                conversation_id=body.conversation_id, is_public=body.is_public,
                language=body.language, anonymizer=runtime.anonymizer,
                matcher=runtime.matcher, min_length=runtime.settings.min_idea_length,
            )
        except services.InvalidInput as exc:
            raise HTTPException(422, str(exc)) from exc
        except services.IdeaNotFound as exc:
            raise HTTPException(404, str(exc)) from exc
        except LLMCallError as exc:
            log.warning("Evaluation failed: %s", exc)
            raise HTTPException(502, "Evaluation failed, please try again") from exc

    @app.post("/api/compare", response_model=CompareResponse,
              tags=["Ranking"], summary="Compare two ranked ideas and update their Elo ratings")
    async def compare(
        body: CompareRequest,
        runtime: Runtime = Depends(get_runtime),
        session: Session = Depends(db_session),
    ):
        try:
            return await services.compare_ideas(session, runtime.comparator, body.idea_a_id, body.idea_b_id)
        except services.IdeaNotFound as exc:
            raise HTTPException(404, str(exc)) from exc
        except services.NotEligible as exc:
            raise HTTPException(400, str(exc)) from exc
        except LLMCallError as exc:
            log.warning("Comparison %s vs %s failed: %s", body.idea_a_id, body.idea_b_id, exc)
            raise HTTPException(502, "Comparison failed, please try again") from exc

    @app.get("/api/top", response_model=LeaderboardOut,
             tags=["Leaderboard"], summary="Top-ranked ideas (at least 3 matches), privacy filtered")
    async def top(
        limit: int = Query(20, ge=1, le=100),
        session: Session = Depends(db_session),
        viewer: str | None = Depends(viewer_id),
    ):
        return services.leaderboard(session, limit=limit, viewer_id=viewer)

    @app.get("/api/stats", response_model=StatsOut,
             tags=["Stats"], summary="Idea, evaluation, match and ranking counts")
    async def stats(session: Session = Depends(db_session)):
        return services.compute_stats(session)

    @app.get("/api/matcher", response_model=MatcherStatusOut,
             tags=["Stats"], summary="Background auto-matcher status")
    async def matcher_status(runtime: Runtime = Depends(get_runtime)):
        return runtime.matcher.status()


app = create_app()


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run("arena.app:app", host="127.0.0.1", port=8001)


if __name__ == "__main__":
    main()
