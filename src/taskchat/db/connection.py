"""
Local store connection management for TaskChat.

Provides session management, atomic transactions, a single background write
context, and change notifications for observers of the local store.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass
from itertools import chain
from pathlib import Path
from typing import Any, Callable, Generator, Optional, TypeVar

from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from taskchat.config import Settings, settings as default_settings
from taskchat.models.db import Base

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CHANGES_KEY = "taskchat_changed_tables"


@dataclass(frozen=True)
class StoreChange:
    """Tables touched by one committed transaction."""

    tables: frozenset[str]

    def touches(self, *tables: str) -> bool:
        """Whether any of the given tables changed."""
        return any(table in self.tables for table in tables)


StoreListener = Callable[[StoreChange], None]


def create_store_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine for the local store.

    SQLite in-memory databases share a single connection (StaticPool) so that
    the background writer and readers see the same data. File databases get
    their parent directory created.

    Args:
        database_url: SQLAlchemy database URL
        echo: Log emitted SQL

    Returns:
        Engine: Configured SQLAlchemy engine
    """
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, echo=echo, pool_pre_ping=True)

    url = make_url(database_url)
    kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if url.database in (None, "", ":memory:"):
        kwargs["poolclass"] = StaticPool
    else:
        Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(database_url, echo=echo, **kwargs)

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):  # pragma: no cover - driver hook
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def _record_changes(session: Session, flush_context: Any) -> None:
    """after_flush hook: remember which tables this session wrote to."""
    changed = session.info.setdefault(_CHANGES_KEY, set())
    for obj in chain(session.new, session.dirty, session.deleted):
        table = getattr(obj, "__tablename__", None)
        if table:
            changed.add(table)


class LocalStore:
    """
    Transactional object store backing the messaging core.

    All writes should be issued through :meth:`submit`, which runs them one at
    a time on a dedicated worker thread, so inbound sync and outbound
    optimistic writes never touch the same rows concurrently. Reads may use
    :meth:`read_session` from any thread.

    Example:
        >>> store = LocalStore("sqlite:///:memory:")
        >>> store.init_schema()
        >>> with store.transaction() as session:
        >>>     session.add(User(display_name="Ada"))
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        engine: Optional[Engine] = None,
        echo: bool = False,
    ):
        """
        Initialize the local store.

        Args:
            database_url: SQLAlchemy URL (ignored when ``engine`` is given)
            engine: Pre-built engine to use
            echo: Log emitted SQL
        """
        if engine is None:
            engine = create_store_engine(
                database_url or default_settings.database_url, echo=echo
            )
        self.engine = engine
        self._session_factory = sessionmaker(
            bind=self.engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )
        event.listen(self._session_factory, "after_flush", _record_changes)

        # A StaticPool engine hands every thread the same DBAPI connection,
        # so sessions on it must not overlap.
        self._access_lock = (
            threading.RLock() if isinstance(self.engine.pool, StaticPool) else nullcontext()
        )

        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="taskchat-store"
        )
        self._listeners: list[StoreListener] = []
        self._listeners_lock = threading.Lock()
        self._closed = False

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "LocalStore":
        """Build a store from application settings."""
        config = config or default_settings
        return cls(config.database_url, echo=False)

    def init_schema(self) -> None:
        """Create all tables that do not exist yet."""
        Base.metadata.create_all(bind=self.engine)

    def check_connection(self) -> bool:
        """
        Check if the store is reachable.

        Returns:
            bool: True if a trivial query succeeds, False otherwise
        """
        try:
            with self.read_session() as session:
                session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Local store connection failed: {e}")
            return False

    @contextmanager
    def read_session(self) -> Generator[Session, None, None]:
        """
        Short-lived session for queries.

        Objects loaded here stay usable after the block exits (column
        attributes only; relationships must be eager-loaded).
        """
        with self._access_lock:
            session = self._session_factory()
            try:
                yield session
            finally:
                session.close()

    @contextmanager
    def transaction(self) -> Generator[Session, None, None]:
        """
        Atomic multi-object commit.

        Commits on success, rolls back on any exception, then notifies
        listeners of the tables that changed.
        """
        committed = False
        changed: set[str] = set()
        try:
            with self._access_lock:
                session = self._session_factory()
                try:
                    yield session
                    session.commit()
                    committed = True
                except Exception:
                    session.rollback()
                    raise
                finally:
                    changed = session.info.pop(_CHANGES_KEY, set())
                    session.close()
        finally:
            # Listeners run outside the session so they can open their own
            if committed and changed:
                self._notify(StoreChange(frozenset(changed)))

    def submit(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> "Future[T]":
        """
        Queue work on the store's write context.

        Args:
            fn: Callable to run on the writer thread
            *args: Positional arguments for ``fn``
            **kwargs: Keyword arguments for ``fn``

        Returns:
            Future resolving to the callable's result
        """
        return self._executor.submit(fn, *args, **kwargs)

    def drain(self, timeout: Optional[float] = None) -> None:
        """Block until every write queued so far has finished."""
        self.submit(lambda: None).result(timeout)

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """
        Register a change listener.

        Listeners run on the thread that committed, after the commit.

        Returns:
            Callable that removes the listener
        """
        with self._listeners_lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._listeners_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, change: StoreChange) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(change)
            except Exception as e:
                logger.error(f"Store listener failed: {e}", exc_info=True)

    def close(self) -> None:
        """Finish queued writes and release the engine."""
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=True)
        self.engine.dispose()
