"""Executes one bulk operation item by item against the site's publisher."""

from __future__ import annotations

import asyncio

from pressroom.bulk.repository import BulkOperationRepository
from pressroom.bulk.types import BulkOperation
from pressroom.collaborators.calls import call_collaborator
from pressroom.collaborators.registry import Collaborators
from pressroom.collaborators.types import Publisher
from pressroom.infrastructure.config import BULK_ITEM_CONCURRENCY, BULK_ITEM_DELAY
from pressroom.infrastructure.errors import ValidationError
from pressroom.infrastructure.logger import logger


class BulkOperationProcessor:
    """Processes items in submitted order with at most ``item_concurrency`` in flight.

    Every item outcome is written to the job store before the slot is given
    to the next item. A failure outside the per-item boundary (e.g. the store
    itself) fails the whole operation.
    """

    def __init__(
        self,
        repo: BulkOperationRepository,
        collaborators: Collaborators,
        item_delay_s: float = BULK_ITEM_DELAY,
        item_concurrency: int = BULK_ITEM_CONCURRENCY,
    ) -> None:
        self._repo = repo
        self._collaborators = collaborators
        self._item_delay = item_delay_s
        self._item_concurrency = max(1, item_concurrency)

    async def process(self, operation_id: str) -> None:
        op = self._repo.get_by_id(operation_id)
        if not op:
            logger.error("Bulk operation not found", operation_id=operation_id)
            return

        if op.status == "PENDING":
            if not self._repo.claim(operation_id):
                logger.debug("Bulk operation claimed elsewhere, skipping", operation_id=operation_id)
                return
        elif op.status == "PROCESSING":
            logger.info("Resuming bulk operation", operation_id=operation_id, processed=op.processed_items)
        else:
            logger.debug("Bulk operation already terminal", operation_id=operation_id, status=op.status)
            return

        log = logger.bind(operation_id=operation_id, kind=op.kind, site_id=op.site_id)
        log.info("Bulk operation started", total=op.total_items)

        tasks: list[asyncio.Task[None]] = []
        try:
            publisher = self._collaborators.publisher_for(op.site_id)
            if publisher is None:
                raise ValidationError(f"Site not found: {op.site_id}")

            slots = asyncio.Semaphore(self._item_concurrency)
            cancelled = False
            for target_id in op.target_ids[op.processed_items :]:
                await slots.acquire()
                if self._repo.is_cancel_requested(operation_id):
                    slots.release()
                    cancelled = True
                    break
                tasks.append(asyncio.create_task(self._run_item(op, publisher, target_id, slots)))

            if tasks:
                await asyncio.gather(*tasks)

            status = "CANCELLED" if cancelled else "COMPLETED"
            self._repo.finish(operation_id, status)
            final = self._repo.get_by_id(operation_id)
            log.info(
                "Bulk operation finished",
                status=status,
                success=final.success_count if final else None,
                failed=final.failure_count if final else None,
            )
        except asyncio.CancelledError:
            raise
        except Exception as err:
            log.exception("Bulk operation failed")
            self._repo.fail(operation_id, str(err) or type(err).__name__)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

    async def _run_item(
        self,
        op: BulkOperation,
        publisher: Publisher,
        target_id: int,
        slots: asyncio.Semaphore,
    ) -> None:
        try:
            error: str | None = None
            try:
                await self._apply(op, publisher, target_id)
            except asyncio.CancelledError:
                raise
            except Exception as err:
                error = str(err) or type(err).__name__
                logger.warning("Bulk item failed", operation_id=op.id, target_id=target_id, error=error)

            self._repo.record_item(op.id, target_id, error)

            if self._item_delay > 0:
                await asyncio.sleep(self._item_delay)
        finally:
            slots.release()

    async def _apply(self, op: BulkOperation, publisher: Publisher, target_id: int) -> None:
        timeout = self._collaborators.timeouts.for_collaborator("publisher")
        if op.kind == "PUBLISH":
            call = publisher.update_post(target_id, {"status": "publish"}, op.target_type)
        elif op.kind == "UNPUBLISH":
            call = publisher.update_post(target_id, {"status": "draft"}, op.target_type)
        elif op.kind == "DELETE":
            call = publisher.delete_post(target_id, op.target_type)
        elif op.kind == "UPDATE_METADATA":
            call = publisher.update_post(target_id, dict(op.payload or {}), op.target_type)
        else:
            raise ValueError(f"Unsupported bulk operation kind: {op.kind}")
        await call_collaborator("publisher", call, timeout)
