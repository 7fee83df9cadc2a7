"""Bounded pool of SQLite connections shared across request threads."""
import logging
import sqlite3
import threading
from contextlib import contextmanager
from queue import Empty, LifoQueue
from typing import Iterator, List

logger = logging.getLogger(__name__)

BUSY_TIMEOUT_MS = 5000


class SQLiteConnectionPool:
    """Hands out at most ``max_connections`` connections to one database file.

    FastAPI runs sync handlers (and streaming workers) on separate threads,
    so connections are opened with ``check_same_thread=False`` and each one
    is used by a single borrower at a time. Every connection enforces
    foreign keys; the schema's cascading deletes depend on it.
    """

    def __init__(self, database: str, max_connections: int = 5):
        self.database = database
        self.max_connections = max_connections
        self._idle: "LifoQueue[sqlite3.Connection]" = LifoQueue(maxsize=max_connections)
        self._opened: List[sqlite3.Connection] = []
        self._guard = threading.Lock()

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.database, check_same_thread=False, timeout=BUSY_TIMEOUT_MS / 1000)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        self._opened.append(conn)
        logger.debug("Opened SQLite connection %d/%d to %s", len(self._opened), self.max_connections, self.database)
        return conn

    def _acquire(self) -> sqlite3.Connection:
        try:
            return self._idle.get_nowait()
        except Empty:
            pass
        with self._guard:
            if len(self._opened) < self.max_connections:
                return self._open()
        return self._idle.get()

    def _release(self, conn: sqlite3.Connection) -> None:
        try:
            # drop anything the borrower left uncommitted
            conn.rollback()
        except sqlite3.Error as exc:
            logger.error("Discarding broken SQLite connection: %s", exc)
            with self._guard:
                self._opened.remove(conn)
            conn.close()
            return
        self._idle.put(conn)

    @contextmanager
    def get_connection(self) -> Iterator[sqlite3.Connection]:
        """Borrow a connection for the duration of a ``with`` block."""
        conn = self._acquire()
        try:
            yield conn
        finally:
            self._release(conn)

    def close_all(self) -> None:
        """Close every idle connection."""
        while True:
            try:
                conn = self._idle.get_nowait()
            except Empty:
                break
            with self._guard:
                if conn in self._opened:
                    self._opened.remove(conn)
            conn.close()
