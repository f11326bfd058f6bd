"""Tests for database initialization and schema."""

import sqlite3

import pytest

from pressroom.infrastructure.database import AppDatabase


class TestAppDatabase:
    def test_init_creates_schema(self, db):
        tables = db.db.execute("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name").fetchall()
        table_names = [row[0] for row in tables]
        assert "bulk_operations" in table_names
        assert "scheduled_posts" in table_names
        assert "automation_schedules" in table_names
        assert "automation_executions" in table_names
        assert "automation_jobs" in table_names

    def test_repos_initialized(self, db):
        assert db.bulk_repo is not None
        assert db.post_repo is not None
        assert db.schedule_repo is not None
        assert db.execution_repo is not None
        assert db.job_repo is not None

    def test_multiple_init_is_safe(self):
        db = AppDatabase()
        db._init_test()
        db._init_test()  # Should not raise

    def test_init_file_database(self, tmp_path):
        db = AppDatabase()
        db.init(tmp_path / "nested" / "store.db")
        assert (tmp_path / "nested" / "store.db").exists()
        db.close()

    def test_db_property_requires_init(self):
        with pytest.raises(AssertionError):
            AppDatabase().db


class TestSchemaConstraints:
    def _insert_bulk(self, db, processed, success, failure, total=3):
        db.db.execute(
            """INSERT INTO bulk_operations
               (id, owner, site_id, kind, target_type, target_ids, status, total_items,
                processed_items, success_count, failure_count, created_at)
               VALUES ('b1', 'u1', 'site-1', 'PUBLISH', 'POST', '[1,2,3]', 'PROCESSING', ?, ?, ?, ?, '2024')""",
            (total, processed, success, failure),
        )

    def test_progress_must_add_up(self, db):
        with pytest.raises(sqlite3.IntegrityError):
            self._insert_bulk(db, processed=2, success=2, failure=1)

    def test_processed_cannot_exceed_total(self, db):
        with pytest.raises(sqlite3.IntegrityError):
            self._insert_bulk(db, processed=4, success=4, failure=0)

    def test_one_running_execution_per_schedule(self, db):
        db.db.execute(
            """INSERT INTO automation_schedules (id, owner, site_id, name, kind, timezone, created_at)
               VALUES ('s1', 'u1', 'site-1', 'n', 'DAILY', 'UTC', '2024')"""
        )
        db.db.execute(
            "INSERT INTO automation_executions (id, schedule_id, started_at) VALUES ('e1', 's1', '2024')"
        )
        with pytest.raises(sqlite3.IntegrityError):
            db.db.execute(
                "INSERT INTO automation_executions (id, schedule_id, started_at) VALUES ('e2', 's1', '2024')"
            )
        # A closed execution does not block a new one
        db.db.execute("UPDATE automation_executions SET status = 'COMPLETED' WHERE id = 'e1'")
        db.db.execute(
            "INSERT INTO automation_executions (id, schedule_id, started_at) VALUES ('e3', 's1', '2024')"
        )
