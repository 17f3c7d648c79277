"""Composition root: builds the collaborators once per process and wires them together."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator

from sqlalchemy.orm import Session, sessionmaker

from arena.config import Settings
from arena.db import init_db, session_scope
from arena.judge import Anonymizer, Comparator, Judge, LLMAnonymizer, LLMClient, LLMComparator, LLMJudge
from arena.matcher import AutoMatcher

log = logging.getLogger(__name__)


@dataclass
class Runtime:
    settings: Settings
    session_factory: sessionmaker[Session]
    judge: Judge
    comparator: Comparator
    anonymizer: Anonymizer
    matcher: AutoMatcher


def build_runtime(
    settings: Settings,
    *,
    session_factory: sessionmaker[Session] | None = None,
    judge: Judge | None = None,
    comparator: Comparator | None = None,
    anonymizer: Anonymizer | None = None,
    matcher: Any = None,
) -> Runtime:
    """Fill in whatever the caller did not inject.

    A single ``LLMClient`` is shared by all three LLM collaborators and is only
    created if at least one of them is missing.
    """
    if session_factory is None:
        session_factory = init_db(settings.database_path)
    if judge is None or comparator is None or anonymizer is None:
        client = LLMClient(
            provider=settings.llm_provider,
            model=settings.llm_model or None,
            timeout=settings.llm_timeout_seconds,
        )
        log.info("Using %s model %s", client.provider, client.model)
        judge = judge or LLMJudge(client)
        comparator = comparator or LLMComparator(client)
        anonymizer = anonymizer or LLMAnonymizer(client)
    if matcher is None:
        matcher = AutoMatcher(
            session_factory, comparator,
            workers=settings.matcher_workers, queue_size=settings.matcher_queue_size,
        )
    return Runtime(settings, session_factory, judge, comparator, anonymizer, matcher)


@asynccontextmanager
async def running(runtime: Runtime) -> AsyncIterator[Runtime]:
    """Start the auto-matcher (and resume unfinished runs) for the lifetime of the block."""
    await runtime.matcher.start()
    if runtime.settings.resume_matching:
        with session_scope(runtime.session_factory) as session:
            runtime.matcher.resume(session)
    try:
        yield runtime
    finally:
        await runtime.matcher.stop()
