"""Connection management for the libreta store.

Owns one SQLite database file and every connection onto it.  All public
methods are async-friendly, wrapping synchronous sqlite3 calls via
:func:`anyio.to_thread.run_sync`.

Connection strategy:
    - Exactly one write connection, guarded by a ``threading.Lock``.  Every
      mutation runs inside ``BEGIN IMMEDIATE`` on that connection, so writes
      are serialised process-wide.  Waiting for the lock is bounded by the
      busy timeout; past it :class:`~libreta.errors.ContentionTimeout` is
      raised.
    - A pool of at most ``read_pool_size`` read-only connections.  A read
      takes an idle connection from the pool (opening one while the pool is
      below capacity) and hands it back when done; concurrent readers are
      bounded by a capacity limiter of the same size.
    - WAL mode lets readers see a consistent snapshot alongside the writer.

Cancellation:
    Transaction callbacks may call :func:`checkpoint` between statements.
    If the awaiting task has been cancelled, the cancellation is raised
    inside the worker thread, the transaction is rolled back and the
    cancellation propagates to the caller.

Usage::

    from libreta.storage import Storage

    store = Storage(data_dir)
    await store.initialize()
    rows = await store.execute("SELECT id FROM node")
"""

from __future__ import annotations

import logging
import queue
import sqlite3
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager, suppress
from pathlib import Path
from typing import Callable, TypeVar

import anyio
import anyio.from_thread
import anyio.to_thread

from libreta.config import LibretaConfig, get_config
from libreta.errors import (
    ContentionTimeout,
    IOFailure,
    StorageError,
    translate_sqlite_error,
)
from libreta.schema import ensure_schema, get_schema_version, is_text_mimetype

_T = TypeVar("_T")

log = logging.getLogger(__name__)

_MIN_SQLITE_VERSION = (3, 37, 0)  # STRICT tables


def checkpoint() -> None:
    """Raise the awaiting task's cancellation inside a worker thread.

    Outside an anyio worker thread there is no awaiting task, and this is
    a no-op.
    """
    try:
        anyio.from_thread.check_cancelled()
    except RuntimeError:
        return


@contextmanager
def _translate_errors() -> Iterator[None]:
    """Re-raise sqlite3/OS failures as :class:`~libreta.errors.StorageError`."""
    try:
        yield
    except StorageError:
        raise
    except (sqlite3.Error, OSError) as exc:
        raise translate_sqlite_error(exc) from exc


class Storage:
    """Async-friendly SQLite connection manager.

    Parameters
    ----------
    data_dir:
        Directory holding the database file.  Created during
        :meth:`initialize` when missing.  Defaults to the configured
        ``data_dir``.
    config:
        Explicit configuration; defaults to :func:`~libreta.config.get_config`.
    """

    def __init__(
        self,
        data_dir: Path | None = None,
        config: LibretaConfig | None = None,
    ) -> None:
        cfg = config or get_config()
        self._config = cfg
        self._data_dir: Path = Path(data_dir) if data_dir is not None else cfg.data_dir
        self._db_path: Path = self._data_dir / cfg.db_filename
        self._busy_timeout_s: float = cfg.sqlite.busy_timeout_ms / 1000.0
        self._slow_query_s: float = cfg.slow_query_ms / 1000.0
        self._read_pool_size: int = cfg.sqlite.effective_read_pool_size()

        self._write_lock = threading.Lock()
        self._write_conn: sqlite3.Connection | None = None
        self._read_pool: queue.LifoQueue[sqlite3.Connection] = queue.LifoQueue()
        self._read_connections: list[sqlite3.Connection] = []  # every open reader
        self._connections_lock = threading.Lock()  # guards _read_connections
        self._read_limiter: anyio.CapacityLimiter | None = None
        self._schema_version = 0
        self._initialized = False

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def db_path(self) -> Path:
        """Filesystem path of the SQLite database."""
        return self._db_path

    @property
    def schema_version(self) -> int:
        """Schema version verified during :meth:`initialize`."""
        return self._schema_version

    @property
    def read_pool_size(self) -> int:
        return self._read_pool_size

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------

    async def initialize(self, allow_upgrade: bool | None = None) -> None:
        """Open the database and verify (or create) its schema.

        Idempotent.  On a fresh file the full schema is created and
        stamped; a file stamped with an unknown version raises
        :class:`~libreta.errors.SchemaMismatch` and leaves the store closed.
        """
        if self._initialized:
            return
        if allow_upgrade is None:
            allow_upgrade = self._config.allow_schema_upgrade
        if self._read_limiter is None:
            self._read_limiter = anyio.CapacityLimiter(self._read_pool_size)

        await anyio.to_thread.run_sync(lambda: self._initialize_sync(allow_upgrade))
        self._initialized = True
        log.info(
            "Storage opened at %s (schema=%d, readers=%d)",
            self._db_path,
            self._schema_version,
            self._read_pool_size,
        )

    def _initialize_sync(self, allow_upgrade: bool) -> None:
        """Synchronous initialisation run inside a worker thread."""
        sqlite_version = tuple(int(x) for x in sqlite3.sqlite_version.split("."))
        if sqlite_version < _MIN_SQLITE_VERSION:
            raise RuntimeError(
                f"SQLite {sqlite3.sqlite_version} is too old; libreta requires "
                ">= 3.37.0 (needed for STRICT tables)"
            )

        try:
            self._data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise IOFailure(f"cannot create data directory {self._data_dir}: {exc}") from exc

        with _translate_errors():
            conn = self._open_write_connection()
            try:
                self._schema_version = ensure_schema(conn, allow_upgrade)
            except BaseException:
                conn.close()
                raise
        self._write_conn = conn

    # ------------------------------------------------------------------
    # Connection factory
    # ------------------------------------------------------------------

    def _configure(self, conn: sqlite3.Connection) -> sqlite3.Connection:
        """Apply the pragmas and SQL functions shared by every connection."""
        conn.row_factory = sqlite3.Row
        conn.create_function("is_text_mimetype", 1, is_text_mimetype, deterministic=True)
        sqlite_cfg = self._config.sqlite
        conn.execute(f"PRAGMA synchronous={sqlite_cfg.synchronous}")
        conn.execute(f"PRAGMA cache_size={int(sqlite_cfg.cache_size)}")
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute(f"PRAGMA busy_timeout={int(sqlite_cfg.busy_timeout_ms)}")
        return conn

    def _open_write_connection(self) -> sqlite3.Connection:
        """Open the single read-write connection, creating the file if needed.

        ``isolation_level=None`` disables the sqlite3 module's implicit
        transactions; write paths issue ``BEGIN IMMEDIATE`` themselves.
        """
        conn = sqlite3.connect(
            str(self._db_path),
            timeout=self._busy_timeout_s,
            isolation_level=None,
            check_same_thread=False,
        )
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            self._configure(conn)
        except BaseException:
            conn.close()
            raise
        log.debug("Opened write connection to %s", self._db_path)
        return conn

    def _open_read_connection(self) -> sqlite3.Connection:
        """Open a read-only connection onto the existing database file."""
        uri = self._db_path.resolve().as_uri() + "?mode=ro"
        conn = sqlite3.connect(
            uri,
            uri=True,
            timeout=self._busy_timeout_s,
            isolation_level=None,
            check_same_thread=False,
        )
        try:
            self._configure(conn)
        except BaseException:
            conn.close()
            raise
        log.debug("Opened read connection to %s", self._db_path)
        return conn

    def _acquire_read_connection(self) -> sqlite3.Connection:
        """Take an idle read connection, opening one while under capacity.

        Raises
        ------
        ContentionTimeout
            If every pooled connection stays busy past the busy timeout.
        """
        with suppress(queue.Empty):
            return self._read_pool.get_nowait()
        with self._connections_lock:
            if len(self._read_connections) < self._read_pool_size:
                conn = self._open_read_connection()
                self._read_connections.append(conn)
                return conn
        try:
            return self._read_pool.get(timeout=self._busy_timeout_s)
        except queue.Empty:
            raise ContentionTimeout(
                f"no read connection free within {self._busy_timeout_s:.1f}s"
            ) from None

    def _release_read_connection(self, conn: sqlite3.Connection) -> None:
        self._read_pool.put_nowait(conn)

    def _require_open(self) -> None:
        if not self._initialized or self._write_conn is None:
            raise RuntimeError(
                "Storage not initialized. Call await storage.initialize() first."
            )

    @contextmanager
    def _timed(self, label: str) -> Iterator[None]:
        """Log a warning when the wrapped block exceeds ``slow_query_ms``."""
        started = time.perf_counter()
        try:
            yield
        finally:
            elapsed = time.perf_counter() - started
            if elapsed > self._slow_query_s:
                log.warning("Slow %s: %.1f ms", label, elapsed * 1000.0)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def execute(
        self,
        sql: str,
        params: tuple | dict = (),
    ) -> list[sqlite3.Row]:
        """Execute a read-only query and return all rows.

        Parameters
        ----------
        sql:
            SQL SELECT statement.
        params:
            Bind parameters (positional tuple or named dict).
        """
        return await self.read(lambda conn: conn.execute(sql, params).fetchall())

    async def read(self, fn: Callable[[sqlite3.Connection], _T]) -> _T:
        """Run *fn* against a read-only connection inside one read transaction.

        All statements issued by *fn* see the same snapshot of the database.
        """
        self._require_open()
        return await anyio.to_thread.run_sync(
            lambda: self._read_sync(fn),
            limiter=self._read_limiter,
        )

    def _read_sync(self, fn: Callable[[sqlite3.Connection], _T]) -> _T:
        with self._timed("read"), _translate_errors():
            conn = self._acquire_read_connection()
            try:
                conn.execute("BEGIN")
                try:
                    return fn(conn)
                finally:
                    conn.rollback()
            finally:
                self._release_read_connection(conn)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def execute_write(
        self,
        sql: str,
        params: tuple | dict = (),
    ) -> int:
        """Execute a single write statement in its own transaction.

        Returns
        -------
        int
            The number of rows changed.
        """
        return await self.execute_transaction(
            lambda conn: conn.execute(sql, params).rowcount
        )

    async def execute_transaction(self, fn: Callable[[sqlite3.Connection], _T]) -> _T:
        """Run *fn* on the write connection inside ``BEGIN IMMEDIATE``.

        Holds the write lock from before ``BEGIN`` until after ``COMMIT``.
        *fn* may call :func:`checkpoint` between statements.  Any exception
        raised by *fn*, cancellation included, rolls the transaction back
        and is re-raised.

        Parameters
        ----------
        fn:
            Synchronous callable taking the write connection; its return
            value is returned once the transaction commits.  It must not
            open other connections onto the database.

        Raises
        ------
        ContentionTimeout
            If the write lock is not free within the busy timeout.
        """
        self._require_open()
        return await anyio.to_thread.run_sync(
            lambda: self._execute_transaction_sync(fn),
        )

    def _execute_transaction_sync(self, fn: Callable[[sqlite3.Connection], _T]) -> _T:
        if not self._write_lock.acquire(timeout=self._busy_timeout_s):
            raise ContentionTimeout(
                f"write lock not acquired within {self._busy_timeout_s:.1f}s"
            )
        try:
            conn = self._write_conn
            assert conn is not None
            with self._timed("write transaction"), _translate_errors():
                checkpoint()
                conn.execute("BEGIN IMMEDIATE")
                try:
                    result = fn(conn)
                    checkpoint()
                    conn.commit()
                    return result
                except BaseException:
                    conn.rollback()
                    raise
        finally:
            self._write_lock.release()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    async def get_schema_version(self) -> int:
        """Read the stamped schema version (``0`` when never stamped)."""
        return await self.read(get_schema_version)

    # ------------------------------------------------------------------
    # Maintenance operations
    # ------------------------------------------------------------------

    async def optimize(self) -> None:
        """Refresh planner statistics, compact the FTS index, check health.

        Runs ``ANALYZE``, the FTS5 ``optimize`` command (merges index
        segments) and ``PRAGMA integrity_check``, in one write transaction.
        A result other than ``ok`` is logged as a warning.
        """
        def _do_optimize(conn: sqlite3.Connection) -> str:
            conn.execute("ANALYZE")
            conn.execute("INSERT INTO node_fts_idx(node_fts_idx) VALUES ('optimize')")
            rows = conn.execute("PRAGMA integrity_check(1)").fetchall()
            return rows[0][0] if rows else "unknown"

        status = await self.execute_transaction(_do_optimize)
        if status != "ok":
            log.warning("Integrity check returned: %s", status)
        else:
            log.debug("Optimize complete, integrity check: ok")

    async def table_counts(self) -> dict[str, int]:
        """Return row counts for the core tables in one round-trip."""
        rows = await self.execute(
            """
            SELECT 'node_content'   AS tbl, COUNT(*) AS cnt FROM node_content
            UNION ALL
            SELECT 'node',                  COUNT(*)        FROM node
            UNION ALL
            SELECT 'node_attribute',        COUNT(*)        FROM node_attribute
            UNION ALL
            SELECT 'edge',                  COUNT(*)        FROM edge
            """
        )
        return {row["tbl"]: row["cnt"] for row in rows}

    # ------------------------------------------------------------------
    # Context manager support
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Close the write connection and every read connection."""
        with self._connections_lock:
            conns = list(self._read_connections)
            self._read_connections.clear()
            self._read_pool = queue.LifoQueue()

        with self._write_lock:
            if self._write_conn is not None:
                conns.append(self._write_conn)
                self._write_conn = None

        for conn in conns:
            try:
                conn.close()
            except sqlite3.Error as exc:
                log.warning("Failed to close connection: %s", exc)

        self._initialized = False
        log.info("Storage closed (%d connections released)", len(conns))

    async def __aenter__(self) -> Storage:
        await self.initialize()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()
