"""Bounded SQLite connection pool.

Every physical connection is opened with the same durability and concurrency
pragmas (WAL journal, NORMAL sync, foreign keys, busy timeout). The pool caps
the number of open connections, keeps a bounded set of idle ones for reuse and
retires connections that sat idle too long or lived past their lifetime.

Example:
    pool = open_pool("data/walstore.db", PoolConfig(max_open=5))

    with pool.connection() as conn:
        rows = conn.execute("SELECT name FROM migrations").fetchall()

    pool.close()
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from collections import deque
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

from walstore.db.errors import CloseError, OpenError, PoolClosedError, PoolTimeoutError

logger = logging.getLogger(__name__)

# Upper bound on the reaper sleep between sweeps (seconds)
_MAX_REAP_INTERVAL = 60.0


@dataclass(frozen=True)
class PoolConfig:
    """Pool bounds and pragma settings. Fixed once the pool is built."""

    max_open: int = 25
    max_idle: int = 25
    conn_max_idle_time: timedelta = timedelta(minutes=5)
    conn_max_lifetime: timedelta = timedelta(hours=2)
    busy_timeout_ms: int = 5000
    # Set when an external replication agent owns WAL checkpointing
    disable_autocheckpoint: bool = False

    @property
    def idle_limit(self) -> int:
        """Effective number of idle connections kept for reuse."""
        if self.max_idle <= 0:
            return 0
        if self.max_open > 0:
            return min(self.max_idle, self.max_open)
        return self.max_idle

    @property
    def busy_timeout(self) -> float:
        return self.busy_timeout_ms / 1000


@dataclass
class _PooledConnection:
    conn: sqlite3.Connection
    created_at: float = field(default_factory=time.monotonic)
    returned_at: float = field(default_factory=time.monotonic)

    def expiry_reason(self, config: PoolConfig, now: float) -> str | None:
        """Return the stats counter to bump if this connection must be retired."""
        lifetime = config.conn_max_lifetime.total_seconds()
        if lifetime > 0 and now - self.created_at >= lifetime:
            return "max_lifetime_closed"
        idle_time = config.conn_max_idle_time.total_seconds()
        if idle_time > 0 and now - self.returned_at >= idle_time:
            return "max_idle_time_closed"
        return None


def _pragmas(config: PoolConfig) -> list[tuple[str, str]]:
    """Ordered (step, statement) pairs applied to every new connection."""
    steps = [
        # WAL lets readers run alongside a single writer.
        ("enable wal", "PRAGMA journal_mode = WAL"),
        # Safe in WAL mode: fsync only happens on checkpoint.
        # https://www.sqlite.org/pragma.html#pragma_synchronous
        ("synchronous", "PRAGMA synchronous = NORMAL"),
        ("foreign keys", "PRAGMA foreign_keys = ON"),
        # A writer blocked by another writer retries instead of failing at once.
        ("busy timeout", f"PRAGMA busy_timeout = {int(config.busy_timeout_ms)}"),
    ]
    if config.disable_autocheckpoint:
        # The replication agent decides when the WAL is merged into the main file.
        steps.append(("disable autocheckpoint", "PRAGMA wal_autocheckpoint = 0"))
    return steps


def connect(dsn: str, config: PoolConfig) -> sqlite3.Connection:
    """Open one configured connection, or raise OpenError naming the failed step.

    Connections run in autocommit mode; callers issue BEGIN/COMMIT themselves.
    """
    uri = dsn.startswith("file:")
    try:
        if not uri and dsn != ":memory:":
            Path(dsn).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            dsn,
            timeout=config.busy_timeout,
            isolation_level=None,
            check_same_thread=False,
            uri=uri,
        )
    except (OSError, sqlite3.Error) as exc:
        raise OpenError("open", f"{dsn}: {exc}") from exc

    conn.row_factory = sqlite3.Row
    for step, statement in _pragmas(config):
        try:
            conn.execute(statement).fetchall()
        except sqlite3.Error as exc:
            conn.close()
            raise OpenError(step, str(exc)) from exc
    return conn


class ConnectionPool:
    """Thread-safe pool handing out at most ``max_open`` connections.

    Callers beyond the bound wait for a release, up to the busy timeout by
    default, then get PoolTimeoutError.
    """

    def __init__(self, dsn: str, config: PoolConfig | None = None):
        self.dsn = dsn
        self.config = config or PoolConfig()

        self._cond = threading.Condition()
        self._idle: deque[_PooledConnection] = deque()
        self._in_use: dict[int, _PooledConnection] = {}
        self._num_open = 0
        self._closed = False

        # Set by close(); stops the reaper thread
        self._stop = threading.Event()
        self._reaper: threading.Thread | None = None

        self._stats = {
            "wait_count": 0,
            "wait_duration": 0.0,
            "max_idle_closed": 0,
            "max_idle_time_closed": 0,
            "max_lifetime_closed": 0,
        }

    @property
    def closed(self) -> bool:
        return self._closed

    def acquire(self, timeout: float | None = None) -> sqlite3.Connection:
        """Take a connection from the pool, opening one if below the bound."""
        if timeout is None:
            timeout = self.config.busy_timeout
        deadline = time.monotonic() + timeout
        waited_since: float | None = None
        pooled: _PooledConnection | None = None

        with self._cond:
            while True:
                if self._closed:
                    raise PoolClosedError("connection pool is closed")
                pooled = self._take_idle()
                if pooled is not None:
                    break
                if self.config.max_open <= 0 or self._num_open < self.config.max_open:
                    # Reserve the slot; the connection is opened outside the lock
                    self._num_open += 1
                    break
                now = time.monotonic()
                if waited_since is None:
                    waited_since = now
                    self._stats["wait_count"] += 1
                remaining = deadline - now
                if remaining <= 0:
                    self._stats["wait_duration"] += now - waited_since
                    raise PoolTimeoutError(
                        f"no connection available within {timeout:.3f}s "
                        f"(max_open={self.config.max_open})"
                    )
                self._cond.wait(remaining)

            if waited_since is not None:
                self._stats["wait_duration"] += time.monotonic() - waited_since
            if pooled is not None:
                self._in_use[id(pooled.conn)] = pooled
                return pooled.conn

        try:
            conn = connect(self.dsn, self.config)
        except BaseException:
            with self._cond:
                self._num_open -= 1
                self._cond.notify()
            raise

        with self._cond:
            if self._closed:
                self._num_open -= 1
                conn.close()
                raise PoolClosedError("connection pool closed while connecting")
            self._in_use[id(conn)] = _PooledConnection(conn)
        return conn

    def release(self, conn: sqlite3.Connection) -> None:
        """Return a connection; it is kept idle or closed depending on limits."""
        with self._cond:
            pooled = self._in_use.pop(id(conn), None)
        if pooled is None:
            raise ValueError("connection does not belong to this pool")

        broken = False
        if conn.in_transaction:
            try:
                conn.rollback()
            except sqlite3.Error as exc:
                logger.warning("Rollback on release failed, discarding connection: %s", exc)
                broken = True

        now = time.monotonic()
        with self._cond:
            pooled.returned_at = now
            reason = "max_idle_closed"
            keep = not (self._closed or broken)
            if keep:
                expired = pooled.expiry_reason(self.config, now)
                if expired is not None:
                    keep, reason = False, expired
                elif len(self._idle) >= self.config.idle_limit:
                    keep = False
            if keep:
                self._idle.append(pooled)
            else:
                self._num_open -= 1
                if not (self._closed or broken):
                    self._stats[reason] += 1
            self._cond.notify()

        if not keep:
            _discard(conn)

    @contextmanager
    def connection(self, timeout: float | None = None) -> Generator[sqlite3.Connection, None, None]:
        """Borrow a connection for the duration of the block."""
        conn = self.acquire(timeout)
        try:
            yield conn
        finally:
            self.release(conn)

    def stats(self) -> dict[str, Any]:
        with self._cond:
            return {
                "max_open": self.config.max_open,
                "open": self._num_open,
                "in_use": len(self._in_use),
                "idle": len(self._idle),
                **self._stats,
            }

    def close(self) -> None:
        """Close idle connections and stop background eviction.

        Safe to call more than once. Connections still checked out are closed
        when they are released; callers should drain in-flight work first.
        """
        with self._cond:
            if self._closed:
                return
            self._closed = True
            idle = list(self._idle)
            self._idle.clear()
            self._num_open -= len(idle)
            self._cond.notify_all()

        self._stop.set()
        if self._reaper is not None and self._reaper is not threading.current_thread():
            self._reaper.join()

        errors: list[BaseException] = []
        for pooled in idle:
            try:
                pooled.conn.close()
            except sqlite3.Error as exc:
                errors.append(exc)
        if errors:
            raise CloseError(
                f"failed to close {len(errors)} of {len(idle)} connections", errors
            ) from errors[0]
        logger.debug("Connection pool for %s closed", self.dsn)

    def _take_idle(self) -> _PooledConnection | None:
        """Pop a reusable idle connection, retiring expired ones. Lock must be held."""
        now = time.monotonic()
        while self._idle:
            pooled = self._idle.pop()
            reason = pooled.expiry_reason(self.config, now)
            if reason is None:
                return pooled
            self._num_open -= 1
            self._stats[reason] += 1
            _discard(pooled.conn)
        return None

    def _start_reaper(self) -> None:
        limits = [
            d.total_seconds()
            for d in (self.config.conn_max_idle_time, self.config.conn_max_lifetime)
            if d.total_seconds() > 0
        ]
        if not limits:
            return
        interval = min(min(limits) / 2, _MAX_REAP_INTERVAL)
        self._reaper = threading.Thread(
            target=self._reap_loop,
            args=(interval,),
            name="walstore-pool-reaper",
            daemon=True,
        )
        self._reaper.start()

    def _reap_loop(self, interval: float) -> None:
        while not self._stop.wait(interval):
            self.reap_expired()

    def reap_expired(self) -> int:
        """Close idle connections past their idle time or lifetime."""
        now = time.monotonic()
        expired: list[_PooledConnection] = []
        with self._cond:
            keep: deque[_PooledConnection] = deque()
            for pooled in self._idle:
                reason = pooled.expiry_reason(self.config, now)
                if reason is None:
                    keep.append(pooled)
                else:
                    expired.append(pooled)
                    self._stats[reason] += 1
            self._idle = keep
            self._num_open -= len(expired)
            if expired:
                self._cond.notify_all()

        for pooled in expired:
            _discard(pooled.conn)
        if expired:
            logger.debug("Evicted %d expired idle connections", len(expired))
        return len(expired)


def _discard(conn: sqlite3.Connection) -> None:
    try:
        conn.close()
    except sqlite3.Error as exc:
        logger.warning("Error closing connection: %s", exc)


def open_pool(dsn: str, config: PoolConfig | None = None) -> ConnectionPool:
    """Open the database at ``dsn`` and return a configured pool.

    One connection is opened eagerly so a bad path or a failing pragma aborts
    construction with OpenError instead of surfacing on the first query.
    """
    pool = ConnectionPool(dsn, config)
    try:
        with pool.connection() as conn:
            mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
    except BaseException:
        pool.close()
        raise

    if str(mode).lower() != "wal":
        logger.warning("Journal mode for %s is %r, not WAL", dsn, mode)

    pool._start_reaper()
    logger.info(
        "Opened database %s (max_open=%d, max_idle=%d, busy_timeout=%dms)",
        dsn,
        pool.config.max_open,
        pool.config.idle_limit,
        pool.config.busy_timeout_ms,
    )
    return pool
