from __future__ import annotations

import sqlite3

from ..errors import TransientStoreError

# sqlite reports contention and I/O trouble as OperationalError, alongside schema errors we must not mask.
_TRANSIENT_MARKERS = ("locked", "busy", "unable to open", "disk i/o", "timeout")


class SqliteRepository:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            return self.conn.execute(sql, params)
        except sqlite3.OperationalError as exc:
            text = str(exc).lower()
            if any(marker in text for marker in _TRANSIENT_MARKERS):
                raise TransientStoreError(f"store unavailable: {exc}") from exc
            raise

    def _fetchone(self, sql: str, params: tuple = ()):
        return self._execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params: tuple = ()) -> list:
        return self._execute(sql, params).fetchall()
