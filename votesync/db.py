from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from votesync.models import Base, SyncRun
from votesync.utils import utc_now

log = logging.getLogger(__name__)


class Database:
    """The local store: one engine plus a session factory.

    Created once at process start, handed to the scheduler, the ingestion
    pipeline and the API, and closed at shutdown::

        db = Database.for_path(settings.database_path)
        db.open()
        try:
            with db.session_scope() as session:
                ...
        finally:
            db.close()
    """

    def __init__(self, url: str):
        self.url = url
        self._lock = threading.Lock()
        self._engine: Engine | None = None
        self._factory: sessionmaker[Session] | None = None

    @classmethod
    def for_path(cls, db_path: str | Path) -> Database:
        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return cls(f"sqlite:///{db_path}")

    @classmethod
    def in_memory(cls) -> Database:
        return cls("sqlite:///:memory:")

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    def open(self) -> Database:
        with self._lock:
            if self._engine is not None:
                return self
            kwargs: dict = {}
            if self.url.startswith("sqlite"):
                kwargs["connect_args"] = {"check_same_thread": False}
                if ":memory:" in self.url:
                    # Every connection must see the same in-memory database.
                    kwargs["poolclass"] = StaticPool
            engine = create_engine(self.url, **kwargs)
            Base.metadata.create_all(engine)
            self._engine = engine
            self._factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        log.info("Opened store %s", self.url)
        return self

    def close(self) -> None:
        with self._lock:
            if self._engine is None:
                return
            self._engine.dispose()
            self._engine = None
            self._factory = None
        log.info("Closed store %s", self.url)

    def get_session(self) -> Session:
        with self._lock:
            if self._factory is None:
                raise RuntimeError("Database.open() has not been called")
            factory = self._factory
        return factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Transactional scope: commits on success, rolls back on any error."""
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def session_generator(self) -> Generator[Session, None, None]:
        """Read-only session suitable for FastAPI ``Depends()``."""
        session = self.get_session()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def __enter__(self) -> Database:
        return self.open()

    def __exit__(self, *exc_info) -> None:
        self.close()


def start_sync_run(session: Session, trigger: str) -> SyncRun:
    run = SyncRun(trigger=trigger, status="running", started_at=utc_now())
    session.add(run)
    session.flush()
    return run


def finish_sync_run(
    session: Session,
    run: SyncRun,
    *,
    status: str,
    counters: dict[str, int | None] | None = None,
    error_message: str = "",
) -> SyncRun:
    run.status = status
    for key, value in (counters or {}).items():
        if value is not None:
            setattr(run, key, value)
    run.error_message = error_message
    run.finished_at = utc_now()
    session.add(run)
    return run
