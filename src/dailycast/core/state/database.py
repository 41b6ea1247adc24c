# src/dailycast/core/state/database.py
"""SQLAlchemy engine ownership for the run state store.

File-backed SQLite is the single-host default; any SQLAlchemy URL
(PostgreSQL for shared deployments) works unchanged because the store
only issues Core statements.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Self

from sqlalchemy import Connection, create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import StaticPool

from dailycast.core.state.schema import metadata

MEMORY_URL = "sqlite:///:memory:"

SQLITE_PRAGMAS: tuple[str, ...] = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA foreign_keys=ON",
    "PRAGMA busy_timeout=5000",
)


class StateDB:
    """Owns the engine every store (runs, queue, incidents, spend) writes through.

    Example:
        with StateDB.from_url("sqlite:///./state/dailycast.db") as db:
            store = RunStateStore(db)
    """

    def __init__(self, url: str, *, create_tables: bool = True) -> None:
        self.url = url
        self._engine: Engine | None = self._build_engine(url)
        if create_tables:
            metadata.create_all(self._engine)

    @staticmethod
    def _build_engine(url: str) -> Engine:
        parsed = make_url(url)
        if parsed.get_backend_name() != "sqlite":
            return create_engine(url)

        kwargs: dict[str, Any] = {}
        if parsed.database in (None, "", ":memory:"):
            # One shared connection, otherwise each checkout sees an empty database
            kwargs = {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
        engine = create_engine(url, **kwargs)

        @event.listens_for(engine, "connect")
        def apply_pragmas(dbapi_connection: Any, connection_record: object) -> None:
            cursor = dbapi_connection.cursor()
            for pragma in SQLITE_PRAGMAS:
                cursor.execute(pragma)
            cursor.close()

        return engine

    @classmethod
    def in_memory(cls) -> Self:
        """Private in-memory SQLite database with tables created (tests)."""
        return cls(MEMORY_URL)

    @classmethod
    def from_url(cls, url: str, *, create_tables: bool = True) -> Self:
        """Open a database, creating the parent directory of a SQLite file."""
        parsed = make_url(url)
        if parsed.get_backend_name() == "sqlite" and parsed.database not in (None, "", ":memory:"):
            Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)
        return cls(url, create_tables=create_tables)

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError(f"StateDB for {self.url} is closed")
        return self._engine

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    @contextmanager
    def connection(self) -> Iterator[Connection]:
        """Transactional connection: commit on clean exit, roll back on error."""
        with self.engine.begin() as conn:
            yield conn

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
