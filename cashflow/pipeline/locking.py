import sqlite3
from datetime import datetime, timedelta

from ..utils import now_utc


def acquire_lock(
    conn: sqlite3.Connection,
    name: str,
    owner: str,
    ttl_seconds: int = 7200,
    now: datetime | None = None,
) -> bool:
    """Take the named lease unless another owner holds an unexpired one."""
    now = now or now_utc()
    exp = now + timedelta(seconds=ttl_seconds)
    # single statement so two processes racing for an expired lease cannot both win
    conn.execute(
        """
        INSERT INTO locks(name, owner, acquired_at_utc, expires_at_utc) VALUES(?,?,?,?)
        ON CONFLICT(name) DO UPDATE SET
          owner=excluded.owner,
          acquired_at_utc=excluded.acquired_at_utc,
          expires_at_utc=excluded.expires_at_utc
        WHERE locks.expires_at_utc < excluded.acquired_at_utc
        """,
        (name, owner, now.isoformat(), exp.isoformat()),
    )
    row = conn.execute("SELECT owner FROM locks WHERE name=?", (name,)).fetchone()
    return bool(row) and row[0] == owner


def release_lock(conn: sqlite3.Connection, name: str, owner: str):
    conn.execute("DELETE FROM locks WHERE name=? AND owner=?", (name, owner))


def lock_holder(conn: sqlite3.Connection, name: str) -> dict | None:
    row = conn.execute(
        "SELECT owner, acquired_at_utc, expires_at_utc FROM locks WHERE name=?", (name,)
    ).fetchone()
    if not row:
        return None
    return {"owner": row[0], "acquired_at_utc": row[1], "expires_at_utc": row[2]}
