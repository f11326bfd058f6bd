"""SQLite job store schema and the AppDatabase composition root."""

from __future__ import annotations

import sqlite3
from pathlib import Path

from pressroom.infrastructure.config import DB_PATH
from pressroom.infrastructure.logger import logger


def create_schema(db: sqlite3.Connection) -> None:
    """Create all tables and indexes. Safe to call multiple times (IF NOT EXISTS)."""
    db.executescript("""
        CREATE TABLE IF NOT EXISTS bulk_operations (
            id TEXT PRIMARY KEY,
            owner TEXT NOT NULL,
            site_id TEXT NOT NULL,
            kind TEXT NOT NULL,
            target_type TEXT NOT NULL,
            target_ids TEXT NOT NULL,
            payload TEXT,
            status TEXT NOT NULL DEFAULT 'PENDING',
            total_items INTEGER NOT NULL,
            processed_items INTEGER NOT NULL DEFAULT 0,
            success_count INTEGER NOT NULL DEFAULT 0,
            failure_count INTEGER NOT NULL DEFAULT 0,
            errors TEXT NOT NULL DEFAULT '[]',
            cancel_requested INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            started_at TEXT,
            completed_at TEXT,
            CHECK (processed_items = success_count + failure_count),
            CHECK (processed_items <= total_items)
        );
        CREATE INDEX IF NOT EXISTS idx_bulk_owner ON bulk_operations(owner, created_at);
        CREATE INDEX IF NOT EXISTS idx_bulk_status ON bulk_operations(status);

        CREATE TABLE IF NOT EXISTS scheduled_posts (
            id TEXT PRIMARY KEY,
            owner TEXT NOT NULL,
            site_id TEXT NOT NULL,
            draft_id TEXT,
            title TEXT NOT NULL,
            body TEXT NOT NULL,
            excerpt TEXT,
            categories TEXT NOT NULL DEFAULT '[]',
            tags TEXT NOT NULL DEFAULT '[]',
            featured_media_id INTEGER,
            due_at TEXT NOT NULL,
            timezone TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'PENDING',
            remote_id INTEGER,
            remote_url TEXT,
            published_at TEXT,
            attempts INTEGER NOT NULL DEFAULT 0,
            last_error TEXT,
            created_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_posts_owner ON scheduled_posts(owner, due_at);
        CREATE INDEX IF NOT EXISTS idx_posts_due ON scheduled_posts(status, due_at);

        CREATE TABLE IF NOT EXISTS automation_schedules (
            id TEXT PRIMARY KEY,
            owner TEXT NOT NULL,
            site_id TEXT NOT NULL,
            feed_url TEXT,
            topic TEXT,
            name TEXT NOT NULL,
            description TEXT,
            kind TEXT NOT NULL,
            recurrence TEXT,
            timezone TEXT NOT NULL,
            due_at TEXT,
            auto_publish INTEGER NOT NULL DEFAULT 0,
            publish_state TEXT NOT NULL DEFAULT 'draft',
            max_items_per_run INTEGER,
            is_active INTEGER NOT NULL DEFAULT 1,
            last_run TEXT,
            next_run TEXT,
            total_runs INTEGER NOT NULL DEFAULT 0,
            successful_runs INTEGER NOT NULL DEFAULT 0,
            failed_runs INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_schedules_owner ON automation_schedules(owner, created_at);
        CREATE INDEX IF NOT EXISTS idx_schedules_active ON automation_schedules(is_active, next_run);

        CREATE TABLE IF NOT EXISTS automation_executions (
            id TEXT PRIMARY KEY,
            schedule_id TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'RUNNING',
            triggered_by TEXT NOT NULL DEFAULT 'timer',
            started_at TEXT NOT NULL,
            completed_at TEXT,
            generated_count INTEGER NOT NULL DEFAULT 0,
            published_count INTEGER NOT NULL DEFAULT 0,
            failed_count INTEGER NOT NULL DEFAULT 0,
            job_ids TEXT NOT NULL DEFAULT '[]',
            error TEXT,
            FOREIGN KEY (schedule_id) REFERENCES automation_schedules(id)
        );
        CREATE INDEX IF NOT EXISTS idx_executions_schedule ON automation_executions(schedule_id, started_at);
        CREATE UNIQUE INDEX IF NOT EXISTS idx_executions_one_running
            ON automation_executions(schedule_id) WHERE status = 'RUNNING';

        CREATE TABLE IF NOT EXISTS automation_jobs (
            id TEXT PRIMARY KEY,
            schedule_id TEXT,
            execution_id TEXT,
            owner TEXT NOT NULL,
            site_id TEXT NOT NULL,
            source_type TEXT NOT NULL,
            feed_url TEXT,
            source_url TEXT,
            source_title TEXT NOT NULL,
            auto_publish INTEGER NOT NULL DEFAULT 0,
            publish_state TEXT NOT NULL DEFAULT 'draft',
            status TEXT NOT NULL DEFAULT 'PENDING',
            generated_title TEXT,
            remote_id INTEGER,
            error TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_jobs_execution ON automation_jobs(execution_id);
        CREATE INDEX IF NOT EXISTS idx_jobs_source ON automation_jobs(owner, feed_url, source_url);
        CREATE INDEX IF NOT EXISTS idx_jobs_status ON automation_jobs(status, created_at);
    """)


class AppDatabase:
    """Composition root that opens the job store and exposes repositories."""

    def __init__(self) -> None:
        self._db: sqlite3.Connection | None = None
        # Repositories are set after init
        self.bulk_repo: BulkOperationRepository | None = None  # type: ignore[assignment]
        self.post_repo: ScheduledPostRepository | None = None  # type: ignore[assignment]
        self.schedule_repo: ScheduleRepository | None = None  # type: ignore[assignment]
        self.execution_repo: ExecutionRepository | None = None  # type: ignore[assignment]
        self.job_repo: JobRepository | None = None  # type: ignore[assignment]

    @property
    def db(self) -> sqlite3.Connection:
        assert self._db is not None, "Database not initialized. Call init() first."
        return self._db

    def init(self, db_path: Path = DB_PATH) -> None:
        """Open (or create) the job store file."""
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(str(db_path))
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._init_repos()
        logger.info("Job store opened", path=str(db_path))

    def _init_test(self) -> None:
        """For tests only. Creates a fresh in-memory database."""
        self._db = sqlite3.connect(":memory:")
        self._db.row_factory = sqlite3.Row
        self._init_repos()

    def close(self) -> None:
        if self._db is not None:
            self._db.close()
            self._db = None

    def _init_repos(self) -> None:
        assert self._db is not None
        self._db.execute("PRAGMA foreign_keys=ON")
        create_schema(self._db)

        # Import here to avoid circular imports
        from pressroom.automation.repository import ExecutionRepository, JobRepository, ScheduleRepository
        from pressroom.bulk.repository import BulkOperationRepository
        from pressroom.posts.repository import ScheduledPostRepository

        self.bulk_repo = BulkOperationRepository(self._db)
        self.post_repo = ScheduledPostRepository(self._db)
        self.schedule_repo = ScheduleRepository(self._db)
        self.execution_repo = ExecutionRepository(self._db)
        self.job_repo = JobRepository(self._db)
