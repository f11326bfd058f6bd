"""Bulk operation submission and status polling."""

from __future__ import annotations

from typing import Any

from pressroom.bulk.queue import BulkQueue
from pressroom.bulk.repository import BulkOperationRepository
from pressroom.bulk.types import BULK_KINDS, TARGET_TYPES, BulkOperation
from pressroom.collaborators.registry import Collaborators
from pressroom.infrastructure.clock import make_id, now_iso
from pressroom.infrastructure.errors import NotFoundError, ValidationError
from pressroom.infrastructure.logger import logger


class BulkOperationService:
    def __init__(self, repo: BulkOperationRepository, queue: BulkQueue, collaborators: Collaborators) -> None:
        self._repo = repo
        self._queue = queue
        self._collaborators = collaborators

    # --- Submission ---

    def submit(
        self,
        owner: str,
        site_id: str,
        kind: str,
        target_ids: list[int],
        payload: dict[str, Any] | None = None,
        target_type: str = "POST",
    ) -> str:
        """Record the operation as PENDING, queue it, and return its id immediately."""
        self._validate(site_id, kind, target_ids, payload, target_type)

        op = BulkOperation(
            id=make_id("bulk"),
            owner=owner,
            site_id=site_id,
            kind=kind,  # type: ignore[arg-type]
            target_type=target_type,  # type: ignore[arg-type]
            target_ids=list(target_ids),
            payload=payload if kind == "UPDATE_METADATA" else None,
            status="PENDING",
            total_items=len(target_ids),
            created_at=now_iso(),
        )
        self._repo.create(op)
        self._queue.enqueue(op.id)
        logger.info(
            f"Bulk {kind.lower()} operation queued for {len(target_ids)} items",
            operation_id=op.id,
            owner=owner,
            site_id=site_id,
        )
        return op.id

    def _validate(
        self,
        site_id: str,
        kind: str,
        target_ids: list[int],
        payload: dict[str, Any] | None,
        target_type: str,
    ) -> None:
        if kind not in BULK_KINDS:
            raise ValidationError(f"Unknown bulk operation kind: {kind}", {"kind": kind})
        if target_type not in TARGET_TYPES:
            raise ValidationError(f"Unknown target type: {target_type}", {"target_type": target_type})
        if not target_ids:
            raise ValidationError("Target list is empty")
        if any(isinstance(t, bool) or not isinstance(t, int) for t in target_ids):
            raise ValidationError("Target ids must be integers")
        if kind == "UPDATE_METADATA" and not payload:
            raise ValidationError("UPDATE_METADATA requires a non-empty payload")
        if not self._collaborators.has_site(site_id):
            raise ValidationError(f"Site not found: {site_id}", {"site_id": site_id})

    # --- Queries ---

    def status(self, owner: str, operation_id: str) -> BulkOperation:
        op = self._repo.get_by_id(operation_id)
        if not op or op.owner != owner:
            raise NotFoundError(f"Operation not found: {operation_id}")
        return op

    def list_for_owner(
        self,
        owner: str,
        site_id: str | None = None,
        status: str | None = None,
        page: int = 1,
        per_page: int = 20,
    ) -> tuple[list[BulkOperation], int]:
        page = max(1, page)
        per_page = max(1, per_page)
        return self._repo.list_for_owner(owner, site_id, status, limit=per_page, offset=(page - 1) * per_page)

    # --- Lifecycle ---

    def cancel(self, owner: str, operation_id: str) -> BulkOperation:
        """Stop un-started items. An in-flight item still finishes."""
        op = self.status(owner, operation_id)
        if op.is_terminal:
            raise ValidationError(f"Operation already {op.status.lower()}", {"operation_id": operation_id})

        if self._repo.cancel_pending(operation_id):
            logger.info("Bulk operation cancelled before start", operation_id=operation_id)
        elif self._repo.request_cancel(operation_id):
            logger.info("Bulk operation cancellation requested", operation_id=operation_id)
        else:
            # Finished between the read and the write.
            logger.debug("Bulk operation reached a terminal state before cancel", operation_id=operation_id)
        return self.status(owner, operation_id)

    def recover(self) -> int:
        """Re-queue operations left PENDING or PROCESSING by a previous process."""
        unfinished = self._repo.get_unfinished()
        for op in unfinished:
            self._queue.enqueue(op.id)
        if unfinished:
            logger.info("Recovered unfinished bulk operations", count=len(unfinished))
        return len(unfinished)
