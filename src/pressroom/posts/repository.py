"""Scheduled post persistence, due selection, and the atomic publish claim."""

from __future__ import annotations

import json
import sqlite3

from pressroom.collaborators.types import ContentSnapshot
from pressroom.infrastructure.clock import now_iso
from pressroom.posts.types import ScheduledPost


class ScheduledPostRepository:
    def __init__(self, db: sqlite3.Connection) -> None:
        self._db = db

    def create(self, post: ScheduledPost) -> None:
        c = post.content
        self._db.execute(
            """INSERT INTO scheduled_posts
               (id, owner, site_id, draft_id, title, body, excerpt, categories, tags, featured_media_id,
                due_at, timezone, status, attempts, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                post.id, post.owner, post.site_id, post.draft_id,
                c.title, c.body_html, c.excerpt, json.dumps(c.categories), json.dumps(c.tags), c.featured_media_id,
                post.due_at, post.timezone, post.status, post.attempts, post.created_at,
            ),
        )
        self._db.commit()

    def get_by_id(self, id: str) -> ScheduledPost | None:
        row = self._db.execute("SELECT * FROM scheduled_posts WHERE id = ?", (id,)).fetchone()
        if not row:
            return None
        return self._row_to_post(row)

    def list_for_owner(
        self,
        owner: str,
        site_id: str | None = None,
        status: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[ScheduledPost], int]:
        where = ["owner = ?"]
        params: list[object] = [owner]
        if site_id:
            where.append("site_id = ?")
            params.append(site_id)
        if status:
            where.append("status = ?")
            params.append(status)
        clause = " AND ".join(where)
        total = self._db.execute(f"SELECT COUNT(*) FROM scheduled_posts WHERE {clause}", params).fetchone()[0]
        rows = self._db.execute(
            f"SELECT * FROM scheduled_posts WHERE {clause} ORDER BY due_at ASC LIMIT ? OFFSET ?",
            [*params, limit, offset],
        ).fetchall()
        return [self._row_to_post(row) for row in rows], total

    def update_pending(self, id: str, content: ContentSnapshot | None, due_at: str | None, timezone: str | None) -> bool:
        """Rewrite content and/or due time, only while the row is still PENDING."""
        fields: list[str] = []
        values: list[object] = []
        if content is not None:
            fields += ["title = ?", "body = ?", "excerpt = ?", "categories = ?", "tags = ?", "featured_media_id = ?"]
            values += [
                content.title, content.body_html, content.excerpt,
                json.dumps(content.categories), json.dumps(content.tags), content.featured_media_id,
            ]
        if due_at is not None:
            fields.append("due_at = ?")
            values.append(due_at)
        if timezone is not None:
            fields.append("timezone = ?")
            values.append(timezone)
        if not fields:
            return True
        values.append(id)
        result = self._db.execute(
            f"UPDATE scheduled_posts SET {', '.join(fields)} WHERE id = ? AND status = 'PENDING'", values
        )
        self._db.commit()
        return result.rowcount > 0

    def cancel(self, id: str) -> bool:
        result = self._db.execute(
            "UPDATE scheduled_posts SET status = 'CANCELLED' WHERE id = ? AND status = 'PENDING'", (id,)
        )
        self._db.commit()
        return result.rowcount > 0

    def delete(self, id: str) -> bool:
        result = self._db.execute("DELETE FROM scheduled_posts WHERE id = ? AND status != 'PUBLISHING'", (id,))
        self._db.commit()
        return result.rowcount > 0

    # --- Due-item publishing ---

    def get_due(self, now: str) -> list[ScheduledPost]:
        rows = self._db.execute(
            "SELECT * FROM scheduled_posts WHERE status = 'PENDING' AND due_at <= ? ORDER BY due_at",
            (now,),
        ).fetchall()
        return [self._row_to_post(row) for row in rows]

    def claim(self, id: str) -> bool:
        """PENDING -> PUBLISHING. Only one caller can win for a given row."""
        result = self._db.execute(
            "UPDATE scheduled_posts SET status = 'PUBLISHING' WHERE id = ? AND status = 'PENDING'",
            (id,),
        )
        self._db.commit()
        return result.rowcount > 0

    def mark_published(self, id: str, remote_id: int, remote_url: str) -> None:
        self._db.execute(
            """UPDATE scheduled_posts
               SET status = 'PUBLISHED', remote_id = ?, remote_url = ?, published_at = ?, last_error = NULL
               WHERE id = ? AND status = 'PUBLISHING'""",
            (remote_id, remote_url, now_iso(), id),
        )
        self._db.commit()

    def record_failure(self, id: str, error: str, max_attempts: int) -> str | None:
        """Count a failed attempt. Returns the resulting status (PENDING to retry, FAILED at the cap)."""
        self._db.execute(
            """UPDATE scheduled_posts
               SET attempts = attempts + 1,
                   last_error = ?,
                   status = CASE WHEN attempts + 1 >= ? THEN 'FAILED' ELSE 'PENDING' END
               WHERE id = ? AND status = 'PUBLISHING'""",
            (error, max_attempts, id),
        )
        self._db.commit()
        row = self._db.execute("SELECT status FROM scheduled_posts WHERE id = ?", (id,)).fetchone()
        return row[0] if row else None

    def release_stale_claims(self, max_attempts: int) -> int:
        """Return rows stuck in PUBLISHING (process died mid-publish), counting the lost attempt."""
        result = self._db.execute(
            """UPDATE scheduled_posts
               SET attempts = attempts + 1,
                   last_error = 'Interrupted while publishing',
                   status = CASE WHEN attempts + 1 >= ? THEN 'FAILED' ELSE 'PENDING' END
               WHERE status = 'PUBLISHING'""",
            (max_attempts,),
        )
        self._db.commit()
        return result.rowcount

    def _row_to_post(self, row: sqlite3.Row) -> ScheduledPost:
        return ScheduledPost(
            id=row["id"],
            owner=row["owner"],
            site_id=row["site_id"],
            draft_id=row["draft_id"],
            content=ContentSnapshot(
                title=row["title"],
                body_html=row["body"],
                excerpt=row["excerpt"] or "",
                categories=json.loads(row["categories"]),
                tags=json.loads(row["tags"]),
                featured_media_id=row["featured_media_id"],
            ),
            due_at=row["due_at"],
            timezone=row["timezone"],
            status=row["status"],
            remote_id=row["remote_id"],
            remote_url=row["remote_url"],
            published_at=row["published_at"],
            attempts=row["attempts"],
            last_error=row["last_error"],
            created_at=row["created_at"],
        )
