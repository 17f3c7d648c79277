"""Background auto-matching for newly rated ideas.

``run_auto_match`` drives one idea toward its match budget by playing it
against the nearest-Elo opponents it has not met yet, one round at a time.
``AutoMatcher`` runs those jobs off the request path on a bounded
``asyncio.Queue`` drained by a fixed set of worker tasks.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from arena import services
from arena.db import session_scope
from arena.judge import Comparator, Contender

log = logging.getLogger(__name__)

CANDIDATE_FACTOR = 2  # over-fetch opponents so failed rounds can be skipped


async def run_auto_match(
    session: Session,
    idea_id: str,
    comparator: Comparator,
    target: int = services.TARGET_MATCHES,
) -> int:
    """Play *idea_id* until it has *target* matches or runs out of opponents.

    Returns the number of matches played. Rounds run strictly in order: the
    anchor's Elo and match count are carried forward locally from each round
    into the next instead of being re-read. A failed round is logged and
    skipped; its opponent is not retried.
    """
    rating = services.get_rating(session, idea_id)
    if rating is None:
        log.info("Idea %s not eligible for auto-matching (no rating)", idea_id)
        return 0
    idea = services.get_idea(session, idea_id)
    evaluation = services.current_evaluation(session, idea_id)
    if idea is None or not services.is_eligible(evaluation):
        log.info("Idea %s missing data for auto-matching", idea_id)
        return 0
    if rating.match_count >= target:
        log.info("Idea %s already has %d matches", idea_id, rating.match_count)
        return 0

    needed = target - rating.match_count
    exclude = {idea_id} | services.opponents_faced(session, idea_id)
    candidates = services.ideas_near_elo(session, rating.elo_score, exclude, needed * CANDIDATE_FACTOR)
    if not candidates:
        log.info("No matching candidates found for idea %s", idea_id)
        return 0

    anchor = Contender(idea=idea, evaluation=evaluation, elo=rating.elo_score,  # type: ignore[arg-type]
                       match_count=rating.match_count)
    log.info("Auto-matching idea %s against up to %d of %d candidates",
             idea_id, needed, len(candidates))

    played = 0
    for opponent in candidates:
        if played >= needed:
            break
        try:
            result = await services.play_match(session, anchor, opponent, comparator)
        except Exception as exc:
            log.warning("Match failed for %s vs %s: %s", idea_id, opponent.idea.id, exc)
            continue
        played += 1
        log.info("Match %d/%d: %s vs %s -> %s (Elo %d -> %d)", played, needed,
                 idea_id, opponent.idea.id, result.verdict.winner, anchor.elo, result.new_a)
        anchor = replace(anchor, elo=result.new_a, match_count=anchor.match_count + 1)

    log.info("Auto-matching complete: %d matches played for idea %s", played, idea_id)
    return played


class AutoMatcher:
    """Queue of auto-match jobs processed by background worker tasks.

    ``submit`` never blocks and never raises into the caller. Crashed jobs are
    logged with their traceback and counted in ``status()``.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        comparator: Comparator,
        workers: int = 1,
        queue_size: int = 256,
    ):
        self._session_factory = session_factory
        self._comparator = comparator
        self._worker_count = workers
        self._queue: asyncio.Queue[tuple[str, int]] = asyncio.Queue(maxsize=queue_size)
        self._tasks: list[asyncio.Task[None]] = []
        self._scheduled: set[str] = set()  # queued or running; one job per idea at a time
        self.completed = 0
        self.failed = 0
        self.matches_played = 0

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    async def start(self) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._worker(), name=f"auto-matcher-{n}")
            for n in range(self._worker_count)
        ]
        log.info("Auto-matcher started with %d worker(s)", self._worker_count)

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        log.info("Auto-matcher stopped (%d job(s) still queued)", self._queue.qsize())

    def submit(self, idea_id: str, target: int = services.TARGET_MATCHES) -> bool:
        """Enqueue a job for *idea_id*. Returns False if it was not queued."""
        if idea_id in self._scheduled:
            return False
        try:
            self._queue.put_nowait((idea_id, target))
        except asyncio.QueueFull:
            log.warning("Auto-match queue full, dropping idea %s", idea_id)
            return False
        self._scheduled.add(idea_id)
        return True

    def resume(self, session: Session, target: int = services.TARGET_MATCHES) -> int:
        """Re-queue every ranked idea still short of *target* matches."""
        queued = sum(self.submit(idea_id, target) for idea_id in services.ideas_below_target(session, target))
        if queued:
            log.info("Resumed auto-matching for %d idea(s)", queued)
        return queued

    async def join(self) -> None:
        await self._queue.join()

    def status(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "workers": self._worker_count,
            "pending": self._queue.qsize(),
            "completed": self.completed,
            "failed": self.failed,
            "matches_played": self.matches_played,
        }

    async def _worker(self) -> None:
        while True:
            idea_id, target = await self._queue.get()
            try:
                await self._run_job(idea_id, target)
            finally:
                self._scheduled.discard(idea_id)
                self._queue.task_done()

    async def _run_job(self, idea_id: str, target: int) -> None:
        try:
            with session_scope(self._session_factory) as session:
                played = await run_auto_match(session, idea_id, self._comparator, target)
        except Exception:
            self.failed += 1
            log.exception("Auto-matching crashed for idea %s", idea_id)
            return
        self.completed += 1
        self.matches_played += played
