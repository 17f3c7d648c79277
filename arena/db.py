from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from arena.config import get_settings
from arena.models import Base

_lock = threading.Lock()
_engine = None


def init_db(db_path: str | Path | None = None) -> sessionmaker[Session]:
    """Create (or reopen) the SQLite database and return its session factory."""
    global _engine
    with _lock:
        if _engine is not None:
            _engine.dispose()
        if db_path is None:
            db_path = get_settings().database_path
        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        _engine = create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})
        Base.metadata.create_all(_engine)
        return sessionmaker(bind=_engine, autoflush=False, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Context manager providing a transactional session scope.

    Usage (MCP server, auto-matcher jobs)::

        with session_scope(runtime.session_factory) as session:
            ...
    """
    session = factory()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
