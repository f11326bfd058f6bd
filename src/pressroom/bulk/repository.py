"""Bulk operation persistence, conditional status transitions, and progress writes."""

from __future__ import annotations

import json
import sqlite3

from pressroom.bulk.types import BulkItemError, BulkOperation
from pressroom.infrastructure.clock import now_iso


class BulkOperationRepository:
    def __init__(self, db: sqlite3.Connection) -> None:
        self._db = db

    def create(self, op: BulkOperation) -> None:
        self._db.execute(
            """INSERT INTO bulk_operations
               (id, owner, site_id, kind, target_type, target_ids, payload, status, total_items, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                op.id, op.owner, op.site_id, op.kind, op.target_type,
                json.dumps(op.target_ids),
                json.dumps(op.payload) if op.payload is not None else None,
                op.status, op.total_items, op.created_at,
            ),
        )
        self._db.commit()

    def get_by_id(self, id: str) -> BulkOperation | None:
        row = self._db.execute("SELECT * FROM bulk_operations WHERE id = ?", (id,)).fetchone()
        if not row:
            return None
        return self._row_to_operation(row)

    def list_for_owner(
        self,
        owner: str,
        site_id: str | None = None,
        status: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[BulkOperation], int]:
        where = ["owner = ?"]
        params: list[object] = [owner]
        if site_id:
            where.append("site_id = ?")
            params.append(site_id)
        if status:
            where.append("status = ?")
            params.append(status)
        clause = " AND ".join(where)
        total = self._db.execute(f"SELECT COUNT(*) FROM bulk_operations WHERE {clause}", params).fetchone()[0]
        rows = self._db.execute(
            f"SELECT * FROM bulk_operations WHERE {clause} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            [*params, limit, offset],
        ).fetchall()
        return [self._row_to_operation(row) for row in rows], total

    def get_unfinished(self) -> list[BulkOperation]:
        rows = self._db.execute(
            "SELECT * FROM bulk_operations WHERE status IN ('PENDING', 'PROCESSING') ORDER BY created_at"
        ).fetchall()
        return [self._row_to_operation(row) for row in rows]

    # --- Transitions (all conditional on the current status) ---

    def claim(self, id: str) -> bool:
        """PENDING -> PROCESSING. False if someone else moved it first."""
        result = self._db.execute(
            "UPDATE bulk_operations SET status = 'PROCESSING', started_at = ? WHERE id = ? AND status = 'PENDING'",
            (now_iso(), id),
        )
        self._db.commit()
        return result.rowcount > 0

    def cancel_pending(self, id: str) -> bool:
        result = self._db.execute(
            "UPDATE bulk_operations SET status = 'CANCELLED', completed_at = ? WHERE id = ? AND status = 'PENDING'",
            (now_iso(), id),
        )
        self._db.commit()
        return result.rowcount > 0

    def request_cancel(self, id: str) -> bool:
        result = self._db.execute(
            "UPDATE bulk_operations SET cancel_requested = 1 WHERE id = ? AND status = 'PROCESSING'",
            (id,),
        )
        self._db.commit()
        return result.rowcount > 0

    def is_cancel_requested(self, id: str) -> bool:
        row = self._db.execute("SELECT cancel_requested FROM bulk_operations WHERE id = ?", (id,)).fetchone()
        return bool(row and row[0])

    def record_item(self, id: str, target_id: int, error: str | None) -> None:
        """Count one processed item and persist it before the next one starts."""
        params: tuple[object, ...]
        if error is None:
            sql = """UPDATE bulk_operations
                     SET processed_items = processed_items + 1, success_count = success_count + 1
                     WHERE id = ? AND status = 'PROCESSING'"""
            params = (id,)
        else:
            row = self._db.execute("SELECT errors FROM bulk_operations WHERE id = ?", (id,)).fetchone()
            errors = json.loads(row["errors"]) if row else []
            errors.append({"target_id": target_id, "message": error})
            sql = """UPDATE bulk_operations
                     SET processed_items = processed_items + 1, failure_count = failure_count + 1, errors = ?
                     WHERE id = ? AND status = 'PROCESSING'"""
            params = (json.dumps(errors), id)
        result = self._db.execute(sql, params)
        self._db.commit()
        if result.rowcount == 0:
            raise RuntimeError(f"Bulk operation {id} is not PROCESSING; progress not recorded")

    def finish(self, id: str, status: str) -> bool:
        """PROCESSING -> COMPLETED | CANCELLED."""
        result = self._db.execute(
            "UPDATE bulk_operations SET status = ?, completed_at = ? WHERE id = ? AND status = 'PROCESSING'",
            (status, now_iso(), id),
        )
        self._db.commit()
        return result.rowcount > 0

    def fail(self, id: str, message: str) -> bool:
        """Mark the whole operation FAILED with one synthetic error appended."""
        row = self._db.execute("SELECT errors FROM bulk_operations WHERE id = ?", (id,)).fetchone()
        if not row:
            return False
        errors = json.loads(row["errors"])
        errors.append({"target_id": None, "message": message})
        result = self._db.execute(
            """UPDATE bulk_operations SET status = 'FAILED', completed_at = ?, errors = ?
               WHERE id = ? AND status IN ('PENDING', 'PROCESSING')""",
            (now_iso(), json.dumps(errors), id),
        )
        self._db.commit()
        return result.rowcount > 0

    def _row_to_operation(self, row: sqlite3.Row) -> BulkOperation:
        return BulkOperation(
            id=row["id"],
            owner=row["owner"],
            site_id=row["site_id"],
            kind=row["kind"],
            target_type=row["target_type"],
            target_ids=json.loads(row["target_ids"]),
            payload=json.loads(row["payload"]) if row["payload"] else None,
            status=row["status"],
            total_items=row["total_items"],
            processed_items=row["processed_items"],
            success_count=row["success_count"],
            failure_count=row["failure_count"],
            errors=[BulkItemError(**e) for e in json.loads(row["errors"])],
            cancel_requested=bool(row["cancel_requested"]),
            created_at=row["created_at"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
        )
