"""Automation schedule, execution, and job persistence."""

from __future__ import annotations

import json
import sqlite3
from typing import Any

from pressroom.automation.types import (
    AutomationExecution,
    AutomationJob,
    AutomationSchedule,
    JobQueueStats,
    ScheduleStats,
)
from pressroom.infrastructure.clock import make_id, now_iso

_SCHEDULE_COLUMNS = (
    "site_id", "feed_url", "topic", "name", "description", "kind", "recurrence", "timezone", "due_at",
    "auto_publish", "publish_state", "max_items_per_run", "is_active", "next_run",
)


class ScheduleRepository:
    def __init__(self, db: sqlite3.Connection) -> None:
        self._db = db

    def create(self, schedule: AutomationSchedule) -> None:
        s = schedule
        self._db.execute(
            """INSERT INTO automation_schedules
               (id, owner, site_id, feed_url, topic, name, description, kind, recurrence, timezone, due_at,
                auto_publish, publish_state, max_items_per_run, is_active, next_run, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                s.id, s.owner, s.site_id, s.feed_url, s.topic, s.name, s.description, s.kind, s.recurrence,
                s.timezone, s.due_at, int(s.auto_publish), s.publish_state, s.max_items_per_run,
                int(s.is_active), s.next_run, s.created_at,
            ),
        )
        self._db.commit()

    def get_by_id(self, id: str) -> AutomationSchedule | None:
        row = self._db.execute("SELECT * FROM automation_schedules WHERE id = ?", (id,)).fetchone()
        if not row:
            return None
        return self._row_to_schedule(row)

    def list_for_owner(
        self,
        owner: str,
        site_id: str | None = None,
        is_active: bool | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[AutomationSchedule], int]:
        where = ["owner = ?"]
        params: list[object] = [owner]
        if site_id:
            where.append("site_id = ?")
            params.append(site_id)
        if is_active is not None:
            where.append("is_active = ?")
            params.append(int(is_active))
        clause = " AND ".join(where)
        total = self._db.execute(f"SELECT COUNT(*) FROM automation_schedules WHERE {clause}", params).fetchone()[0]
        rows = self._db.execute(
            f"SELECT * FROM automation_schedules WHERE {clause} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            [*params, limit, offset],
        ).fetchall()
        return [self._row_to_schedule(row) for row in rows], total

    def get_active(self) -> list[AutomationSchedule]:
        rows = self._db.execute(
            "SELECT * FROM automation_schedules WHERE is_active = 1 ORDER BY created_at"
        ).fetchall()
        return [self._row_to_schedule(row) for row in rows]

    def update(self, id: str, fields: dict[str, Any]) -> None:
        """Write the given columns. ``None`` values are written as NULL."""
        unknown = set(fields) - set(_SCHEDULE_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown schedule columns: {sorted(unknown)}")
        if not fields:
            return
        assignments = ", ".join(f"{key} = ?" for key in fields)
        values = [int(v) if isinstance(v, bool) else v for v in fields.values()]
        self._db.execute(f"UPDATE automation_schedules SET {assignments} WHERE id = ?", [*values, id])
        self._db.commit()

    def record_run(self, id: str, succeeded: bool, next_run: str | None, deactivate: bool = False) -> None:
        """Bump the run counters after an execution closes.

        A schedule paused while the execution ran keeps ``next_run`` NULL.
        """
        self._db.execute(
            """UPDATE automation_schedules
               SET total_runs = total_runs + 1,
                   successful_runs = successful_runs + ?,
                   failed_runs = failed_runs + ?,
                   last_run = ?,
                   is_active = CASE WHEN ? THEN 0 ELSE is_active END,
                   next_run = CASE WHEN ? OR is_active = 0 THEN NULL ELSE ? END
               WHERE id = ?""",
            (int(succeeded), int(not succeeded), now_iso(), int(deactivate), int(deactivate), next_run, id),
        )
        self._db.commit()

    def delete(self, id: str) -> None:
        """Remove the schedule together with its execution and job history."""
        self._db.execute("DELETE FROM automation_jobs WHERE schedule_id = ?", (id,))
        self._db.execute("DELETE FROM automation_executions WHERE schedule_id = ?", (id,))
        self._db.execute("DELETE FROM automation_schedules WHERE id = ?", (id,))
        self._db.commit()

    def stats_for_owner(self, owner: str, site_id: str | None = None) -> ScheduleStats:
        sql = """SELECT COUNT(*) AS total,
                        COALESCE(SUM(is_active), 0) AS active,
                        COALESCE(SUM(total_runs), 0) AS runs,
                        COALESCE(SUM(successful_runs), 0) AS ok,
                        COALESCE(SUM(failed_runs), 0) AS failed
                 FROM automation_schedules WHERE owner = ?"""
        params: list[object] = [owner]
        if site_id:
            sql += " AND site_id = ?"
            params.append(site_id)
        row = self._db.execute(sql, params).fetchone()
        runs = row["runs"]
        return ScheduleStats(
            total_schedules=row["total"],
            active_schedules=row["active"],
            total_runs=runs,
            successful_runs=row["ok"],
            failed_runs=row["failed"],
            success_rate=round(row["ok"] / runs * 100) if runs else 0,
        )

    def _row_to_schedule(self, row: sqlite3.Row) -> AutomationSchedule:
        return AutomationSchedule(
            id=row["id"],
            owner=row["owner"],
            site_id=row["site_id"],
            feed_url=row["feed_url"],
            topic=row["topic"],
            name=row["name"],
            description=row["description"],
            kind=row["kind"],
            recurrence=row["recurrence"],
            timezone=row["timezone"],
            due_at=row["due_at"],
            auto_publish=bool(row["auto_publish"]),
            publish_state=row["publish_state"],
            max_items_per_run=row["max_items_per_run"],
            is_active=bool(row["is_active"]),
            last_run=row["last_run"],
            next_run=row["next_run"],
            total_runs=row["total_runs"],
            successful_runs=row["successful_runs"],
            failed_runs=row["failed_runs"],
            created_at=row["created_at"],
        )


class ExecutionRepository:
    def __init__(self, db: sqlite3.Connection) -> None:
        self._db = db

    def open(self, execution: AutomationExecution) -> bool:
        """Insert a RUNNING execution. False if the schedule already has one running."""
        try:
            self._db.execute(
                """INSERT INTO automation_executions (id, schedule_id, status, triggered_by, started_at)
                   VALUES (?, ?, 'RUNNING', ?, ?)""",
                (execution.id, execution.schedule_id, execution.trigger, execution.started_at),
            )
        except sqlite3.IntegrityError:
            self._db.rollback()
            return False
        self._db.commit()
        return True

    def get_by_id(self, id: str) -> AutomationExecution | None:
        row = self._db.execute("SELECT * FROM automation_executions WHERE id = ?", (id,)).fetchone()
        if not row:
            return None
        return self._row_to_execution(row)

    def get_running(self, schedule_id: str) -> AutomationExecution | None:
        row = self._db.execute(
            "SELECT * FROM automation_executions WHERE schedule_id = ? AND status = 'RUNNING'", (schedule_id,)
        ).fetchone()
        if not row:
            return None
        return self._row_to_execution(row)

    def record_progress(
        self, id: str, job_ids: list[str], generated: int, published: int, failed: int
    ) -> None:
        self._db.execute(
            """UPDATE automation_executions
               SET job_ids = ?, generated_count = ?, published_count = ?, failed_count = ?
               WHERE id = ? AND status = 'RUNNING'""",
            (json.dumps(job_ids), generated, published, failed, id),
        )
        self._db.commit()

    def close(self, id: str, status: str, error: str | None = None) -> bool:
        """RUNNING -> COMPLETED | FAILED. A closed execution is never written again."""
        result = self._db.execute(
            """UPDATE automation_executions SET status = ?, completed_at = ?, error = ?
               WHERE id = ? AND status = 'RUNNING'""",
            (status, now_iso(), error, id),
        )
        self._db.commit()
        return result.rowcount > 0

    def record_failure(self, schedule_id: str, trigger: str, error: str) -> AutomationExecution:
        """Audit a firing that failed before (or instead of) running normally."""
        now = now_iso()
        execution = AutomationExecution(
            id=make_id("exec"),
            schedule_id=schedule_id,
            status="FAILED",
            trigger=trigger,  # type: ignore[arg-type]
            started_at=now,
            completed_at=now,
            error=error,
        )
        self._db.execute(
            """INSERT INTO automation_executions (id, schedule_id, status, triggered_by, started_at, completed_at, error)
               VALUES (?, ?, 'FAILED', ?, ?, ?, ?)""",
            (execution.id, schedule_id, trigger, now, now, error),
        )
        self._db.commit()
        return execution

    def list_for_schedule(
        self, schedule_id: str, limit: int = 20, offset: int = 0
    ) -> tuple[list[AutomationExecution], int]:
        total = self._db.execute(
            "SELECT COUNT(*) FROM automation_executions WHERE schedule_id = ?", (schedule_id,)
        ).fetchone()[0]
        rows = self._db.execute(
            """SELECT * FROM automation_executions WHERE schedule_id = ?
               ORDER BY started_at DESC, id DESC LIMIT ? OFFSET ?""",
            (schedule_id, limit, offset),
        ).fetchall()
        return [self._row_to_execution(row) for row in rows], total

    def close_stale_running(self) -> int:
        """Close executions a previous process left RUNNING."""
        result = self._db.execute(
            """UPDATE automation_executions SET status = 'FAILED', completed_at = ?, error = 'Interrupted'
               WHERE status = 'RUNNING'""",
            (now_iso(),),
        )
        self._db.commit()
        return result.rowcount

    def _row_to_execution(self, row: sqlite3.Row) -> AutomationExecution:
        return AutomationExecution(
            id=row["id"],
            schedule_id=row["schedule_id"],
            status=row["status"],
            trigger=row["triggered_by"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            generated_count=row["generated_count"],
            published_count=row["published_count"],
            failed_count=row["failed_count"],
            job_ids=json.loads(row["job_ids"]),
            error=row["error"],
        )


class JobRepository:
    def __init__(self, db: sqlite3.Connection) -> None:
        self._db = db

    def create(self, job: AutomationJob) -> None:
        self._db.execute(
            """INSERT INTO automation_jobs
               (id, schedule_id, execution_id, owner, site_id, source_type, feed_url, source_url, source_title,
                auto_publish, publish_state, status, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                job.id, job.schedule_id, job.execution_id, job.owner, job.site_id, job.source_type,
                job.feed_url, job.source_url, job.source_title, int(job.auto_publish), job.publish_state,
                job.status, job.created_at, job.updated_at,
            ),
        )
        self._db.commit()

    def get_by_id(self, id: str) -> AutomationJob | None:
        row = self._db.execute("SELECT * FROM automation_jobs WHERE id = ?", (id,)).fetchone()
        if not row:
            return None
        return self._row_to_job(row)

    def list_for_execution(self, execution_id: str) -> list[AutomationJob]:
        rows = self._db.execute(
            "SELECT * FROM automation_jobs WHERE execution_id = ? ORDER BY created_at, rowid", (execution_id,)
        ).fetchall()
        return [self._row_to_job(row) for row in rows]

    def update_status(self, id: str, status: str, **fields: str | int | None) -> None:
        assignments = ["status = ?", "updated_at = ?"]
        values: list[object] = [status, now_iso()]
        for key, value in fields.items():
            if key not in ("generated_title", "remote_id", "error"):
                raise ValueError(f"Unknown job column: {key}")
            assignments.append(f"{key} = ?")
            values.append(value)
        values.append(id)
        self._db.execute(f"UPDATE automation_jobs SET {', '.join(assignments)} WHERE id = ?", values)
        self._db.commit()

    def exists_for_source(self, owner: str, feed_url: str, source_url: str) -> bool:
        """Any earlier job, whatever its status, for this item of this feed."""
        row = self._db.execute(
            "SELECT 1 FROM automation_jobs WHERE owner = ? AND feed_url = ? AND source_url = ? LIMIT 1",
            (owner, feed_url, source_url),
        ).fetchone()
        return row is not None

    def claim_next_pending(self) -> AutomationJob | None:
        """Oldest submitted job still PENDING, moved to GENERATING. Schedule jobs are never returned."""
        row = self._db.execute(
            """SELECT id FROM automation_jobs
               WHERE status = 'PENDING' AND execution_id IS NULL
               ORDER BY created_at, rowid LIMIT 1"""
        ).fetchone()
        if not row:
            return None
        result = self._db.execute(
            "UPDATE automation_jobs SET status = 'GENERATING', updated_at = ? WHERE id = ? AND status = 'PENDING'",
            (now_iso(), row["id"]),
        )
        self._db.commit()
        if result.rowcount != 1:
            return None
        return self.get_by_id(row["id"])

    def fail_interrupted(self) -> int:
        """Close jobs a previous process left mid-flight. Submitted PENDING jobs stay queued."""
        result = self._db.execute(
            """UPDATE automation_jobs SET status = 'FAILED', error = 'Interrupted', updated_at = ?
               WHERE status IN ('GENERATING', 'PUBLISHING')
                  OR (status = 'PENDING' AND execution_id IS NOT NULL)""",
            (now_iso(),),
        )
        self._db.commit()
        return result.rowcount

    def queue_stats(self, owner: str | None = None) -> JobQueueStats:
        query = "SELECT status, COUNT(*) AS n FROM automation_jobs"
        params: tuple[str, ...] = ()
        if owner is not None:
            query += " WHERE owner = ?"
            params = (owner,)
        counts = {row["status"]: row["n"] for row in self._db.execute(query + " GROUP BY status", params)}
        return JobQueueStats(
            pending=counts.get("PENDING", 0),
            generating=counts.get("GENERATING", 0),
            generated=counts.get("GENERATED", 0),
            publishing=counts.get("PUBLISHING", 0),
            published=counts.get("PUBLISHED", 0),
            failed=counts.get("FAILED", 0),
            total=sum(counts.values()),
        )

    def _row_to_job(self, row: sqlite3.Row) -> AutomationJob:
        return AutomationJob(
            id=row["id"],
            schedule_id=row["schedule_id"],
            execution_id=row["execution_id"],
            owner=row["owner"],
            site_id=row["site_id"],
            source_type=row["source_type"],
            feed_url=row["feed_url"],
            source_url=row["source_url"],
            source_title=row["source_title"],
            auto_publish=bool(row["auto_publish"]),
            publish_state=row["publish_state"],
            status=row["status"],
            generated_title=row["generated_title"],
            remote_id=row["remote_id"],
            error=row["error"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
