from __future__ import annotations

from datetime import datetime, timezone

from ..models import ACTIVE_PROJECT_STATUSES, Project
from ..utils import iso_or_none, now_utc_iso, parse_iso
from .base import SqliteRepository

_COLUMNS = "id, name, status, customer_id, currency, created_at_utc, updated_at_utc, completed_at_utc"


def _row_to_project(row) -> Project:
    return Project(
        id=row[0],
        name=row[1],
        status=row[2],
        customer_id=row[3],
        currency=row[4],
        created_at=parse_iso(row[5]),
        updated_at=parse_iso(row[6]),
        completed_at=parse_iso(row[7]),
    )


class ProjectRepository(SqliteRepository):
    def get(self, project_id: str) -> Project | None:
        row = self._fetchone(f"SELECT {_COLUMNS} FROM projects WHERE id=?", (project_id,))
        return _row_to_project(row) if row else None

    def exists(self, project_id: str) -> bool:
        return self._fetchone("SELECT 1 FROM projects WHERE id=?", (project_id,)) is not None

    def list_by_status(self, statuses=ACTIVE_PROJECT_STATUSES) -> list[Project]:
        marks = ",".join("?" for _ in statuses)
        rows = self._fetchall(
            f"SELECT {_COLUMNS} FROM projects WHERE status IN ({marks}) ORDER BY created_at_utc, id",
            tuple(statuses),
        )
        return [_row_to_project(row) for row in rows]

    def list_for_finalization(self, completed_since: datetime) -> list[Project]:
        """Active/construction projects plus those completed at or after the `completed_since` instant."""
        marks = ",".join("?" for _ in ACTIVE_PROJECT_STATUSES)
        rows = self._fetchall(
            f"""
            SELECT {_COLUMNS} FROM projects
            WHERE status IN ({marks})
               OR (status='completed' AND COALESCE(completed_at_utc, updated_at_utc) >= ?)
            ORDER BY created_at_utc, id
            """,
            (*ACTIVE_PROJECT_STATUSES, completed_since.astimezone(timezone.utc).isoformat()),
        )
        return [_row_to_project(row) for row in rows]

    def save(self, project: Project) -> Project:
        now = now_utc_iso()
        self._execute(
            f"""
            INSERT INTO projects({_COLUMNS}) VALUES(?,?,?,?,?,?,?,?)
            ON CONFLICT(id) DO UPDATE SET
              name=excluded.name,
              status=excluded.status,
              customer_id=excluded.customer_id,
              currency=excluded.currency,
              updated_at_utc=excluded.updated_at_utc,
              completed_at_utc=excluded.completed_at_utc
            """,
            (
                project.id,
                project.name,
                project.status,
                project.customer_id,
                project.currency,
                iso_or_none(project.created_at) or now,
                iso_or_none(project.updated_at) or now,
                iso_or_none(project.completed_at),
            ),
        )
        return self.get(project.id)
