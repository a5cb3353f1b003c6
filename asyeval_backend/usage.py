from __future__ import annotations

import logging
import sqlite3
import threading

from .errors import UsageCounterError


logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY,
    evals INTEGER NOT NULL DEFAULT 0
);
"""


class UsageCounter:
    """Per-identity compilation counter in a sqlite database.

    One connection shared by all requests; the lock serialises access to it.
    """

    def __init__(self, database_path: str):
        self.database_path = database_path
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(database_path, timeout=5.0, check_same_thread=False)
            self._conn.executescript(_SCHEMA)
        except sqlite3.Error as exc:
            raise UsageCounterError(f"cannot open database {database_path}: {exc}") from exc

    def healthcheck(self) -> None:
        with self._lock:
            try:
                self._conn.execute("select 1;").fetchone()
            except sqlite3.Error as exc:
                raise UsageCounterError(f"database healthcheck failed: {exc}") from exc

    def increment(self, identity: int) -> None:
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(
                        "INSERT INTO users (id, evals) VALUES (?, 1) "
                        "ON CONFLICT(id) DO UPDATE SET evals = evals + 1",
                        (identity,),
                    )
            except sqlite3.Error as exc:
                raise UsageCounterError(f"increment failed: {exc}") from exc

    def count(self, identity: int) -> int:
        with self._lock:
            try:
                row = self._conn.execute("SELECT evals FROM users WHERE id = ?", (identity,)).fetchone()
            except sqlite3.Error as exc:
                raise UsageCounterError(f"count failed: {exc}") from exc
        return int(row[0]) if row else 0

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def record_compilation(counter: UsageCounter, identity: int, request_id: int) -> None:
    """Best-effort increment; failures are logged and swallowed."""
    try:
        counter.increment(identity)
    except UsageCounterError:
        logger.exception("increment compilations failed", extra={"rid": request_id, "uid": identity})
