"""Execution pipeline for one schedule firing.

Each item runs the steps in order over one ``ItemContext``. A step reports
its outcome as a ``StepResult``; the first failure stops that item only, and
the loop moves on to the next item.
"""

from __future__ import annotations

import asyncio
import html
import re
from dataclasses import dataclass, field
from typing import Literal, Protocol

from structlog.typing import FilteringBoundLogger as BoundLogger

from pressroom.automation.recurrence import compute_next_run
from pressroom.automation.repository import ExecutionRepository, JobRepository, ScheduleRepository
from pressroom.automation.types import (
    AutomationExecution,
    AutomationJob,
    AutomationSchedule,
    ExecutionStatus,
    JobStatus,
)
from pressroom.collaborators.calls import call_collaborator
from pressroom.collaborators.payload import parse_image_phrases, parse_metadata
from pressroom.collaborators.registry import Collaborators
from pressroom.collaborators.types import ArticleMetadata, ContentSnapshot, GeneratedContent, Image, PublishResult
from pressroom.infrastructure.clock import make_id, now_iso, utcnow
from pressroom.infrastructure.config import (
    DEFAULT_MAX_ITEMS_PER_RUN,
    IMAGES_PER_PHRASE,
    MAX_IMAGE_PHRASES,
    MAX_INLINE_IMAGES,
)
from pressroom.infrastructure.errors import ValidationError
from pressroom.infrastructure.logger import logger


@dataclass
class StepResult:
    """Outcome of one step for one item."""

    status: Literal["ok", "fail", "skip"]
    error: str | None = None
    reason: str | None = None

    @classmethod
    def ok(cls) -> StepResult:
        return cls("ok")

    @classmethod
    def fail(cls, error: str) -> StepResult:
        return cls("fail", error=error)

    @classmethod
    def skip(cls, reason: str) -> StepResult:
        return cls("skip", reason=reason)

    @property
    def failed(self) -> bool:
        return self.status == "fail"


@dataclass
class ItemSource:
    title: str
    url: str | None = None


@dataclass
class PublishTarget:
    """Where a generated item goes, and whether it is published there."""

    site_id: str
    auto_publish: bool = False
    publish_state: str = "draft"


@dataclass
class ItemContext:
    target: PublishTarget
    source: ItemSource
    job_id: str
    content: GeneratedContent | None = None
    metadata: ArticleMetadata | None = None
    images: list[Image] = field(default_factory=list)
    body_html: str = ""
    published: PublishResult | None = None


class Step(Protocol):
    name: str
    job_status: JobStatus | None

    def applies(self, ctx: ItemContext) -> bool: ...
    async def run(self, ctx: ItemContext) -> StepResult: ...


class _BaseStep:
    name = "step"
    job_status: JobStatus | None = None

    def __init__(self, collaborators: Collaborators) -> None:
        self._collaborators = collaborators

    def applies(self, ctx: ItemContext) -> bool:
        return True

    def _timeout(self, collaborator: str) -> float:
        return self._collaborators.timeouts.for_collaborator(collaborator)


class GenerateContent(_BaseStep):
    name = "content"
    job_status: JobStatus | None = "GENERATING"

    async def run(self, ctx: ItemContext) -> StepResult:
        content = await call_collaborator(
            "content", self._collaborators.content.generate(ctx.source.title), self._timeout("content")
        )
        if not content.title.strip() or not content.body_html.strip():
            return StepResult.fail("Generator returned an empty article")
        ctx.content = content
        ctx.body_html = content.body_html
        return StepResult.ok()


class GenerateMetadata(_BaseStep):
    name = "metadata"

    async def run(self, ctx: ItemContext) -> StepResult:
        assert ctx.content is not None
        raw = await call_collaborator(
            "metadata",
            self._collaborators.metadata.generate_metadata(ctx.content.title, ctx.content.body_html),
            self._timeout("metadata"),
        )
        ctx.metadata, _ = parse_metadata(raw, ctx.content.title)
        return StepResult.ok()


class SelectImages(_BaseStep):
    name = "images"

    async def run(self, ctx: ItemContext) -> StepResult:
        assert ctx.content is not None
        phrases = await self._phrases(ctx)
        seen: set[str] = set()
        for phrase in phrases[:MAX_IMAGE_PHRASES]:
            try:
                found = await call_collaborator(
                    "images",
                    self._collaborators.images.search(phrase, IMAGES_PER_PHRASE),
                    self._timeout("images"),
                )
            except asyncio.CancelledError:
                raise
            except Exception as err:
                logger.warning("Image search failed, skipping phrase", phrase=phrase, error=str(err))
                continue
            for image in found:
                if image.url not in seen:
                    seen.add(image.url)
                    ctx.images.append(image)

        if not ctx.images:
            return StepResult.skip("no images found")
        ctx.body_html = insert_inline_images(ctx.body_html, ctx.images[1 : 1 + MAX_INLINE_IMAGES])
        return StepResult.ok()

    async def _phrases(self, ctx: ItemContext) -> list[str]:
        assert ctx.content is not None
        try:
            raw = await call_collaborator(
                "metadata",
                self._collaborators.metadata.generate_image_phrases(ctx.content.title, ctx.content.body_html),
                self._timeout("metadata"),
            )
            phrases = parse_image_phrases(raw)
        except asyncio.CancelledError:
            raise
        except Exception as err:
            logger.warning("Image phrase generation failed, falling back", error=str(err))
            phrases = None
        if phrases:
            return phrases
        if ctx.metadata and ctx.metadata.seo_keywords:
            return ctx.metadata.seo_keywords
        return [ctx.content.title]


class Publish(_BaseStep):
    name = "publish"
    job_status: JobStatus | None = "PUBLISHING"

    def applies(self, ctx: ItemContext) -> bool:
        return ctx.target.auto_publish

    async def run(self, ctx: ItemContext) -> StepResult:
        assert ctx.content is not None
        target = ctx.target
        publisher = self._collaborators.publisher_for(target.site_id)
        if publisher is None:
            return StepResult.fail(f"Site not found: {target.site_id}")

        metadata = ctx.metadata or ArticleMetadata()
        timeout = self._timeout("publisher")
        category_ids: list[int] = []
        tag_ids: list[int] = []
        if metadata.categories:
            category_ids = await call_collaborator(
                "publisher", publisher.ensure_taxonomy_terms("category", metadata.categories), timeout
            )
        if metadata.tags:
            tag_ids = await call_collaborator(
                "publisher", publisher.ensure_taxonomy_terms("post_tag", metadata.tags), timeout
            )

        featured_media_id = await self._upload_featured(ctx)
        ctx.published = await call_collaborator(
            "publisher",
            publisher.publish(
                ContentSnapshot(
                    title=ctx.content.title,
                    body_html=ctx.body_html,
                    excerpt=ctx.content.excerpt,
                    categories=category_ids,
                    tags=tag_ids,
                    featured_media_id=featured_media_id,
                    seo_description=metadata.seo_description,
                ),
                target.publish_state,
            ),
            timeout,
        )
        return StepResult.ok()

    async def _upload_featured(self, ctx: ItemContext) -> int | None:
        if not ctx.images:
            return None
        featured = ctx.images[0]
        publisher = self._collaborators.publisher_for(ctx.target.site_id)
        assert publisher is not None
        try:
            data = await call_collaborator(
                "images", self._collaborators.images.fetch(featured.url), self._timeout("images")
            )
            filename = featured.url.rsplit("/", 1)[-1].split("?", 1)[0] or "featured.jpg"
            return await call_collaborator("media", publisher.upload_media(data, filename), self._timeout("media"))
        except asyncio.CancelledError:
            raise
        except Exception as err:
            logger.warning("Featured image upload failed, publishing without it", url=featured.url, error=str(err))
            return None


_PARAGRAPH_END = re.compile(r"</p\s*>", re.IGNORECASE)


def insert_inline_images(body_html: str, images: list[Image]) -> str:
    """Place images after paragraph boundaries, spread evenly through the body."""
    if not images:
        return body_html
    figures = [
        f'<figure><img src="{html.escape(img.url)}" alt="{html.escape(img.title)}" /></figure>' for img in images
    ]
    ends = [m.end() for m in _PARAGRAPH_END.finditer(body_html)]
    if not ends:
        return body_html + "".join(figures)

    step = max(1, len(ends) // (len(figures) + 1))
    positions = [ends[min(len(ends) - 1, step * (i + 1) - 1)] for i in range(len(figures))]
    out: list[str] = []
    last = 0
    for pos, figure in zip(positions, figures):
        out.append(body_html[last:pos])
        out.append(figure)
        last = pos
    out.append(body_html[last:])
    return "".join(out)


def default_steps(collaborators: Collaborators) -> list[Step]:
    return [
        GenerateContent(collaborators),
        GenerateMetadata(collaborators),
        SelectImages(collaborators),
        Publish(collaborators),
    ]


class ItemRunner:
    """Runs the steps over one item and keeps its job row current.

    Shared by scheduled executions and individually submitted jobs.
    """

    def __init__(self, jobs: JobRepository, steps: list[Step]) -> None:
        self._jobs = jobs
        self._steps = steps

    async def run(self, ctx: ItemContext, log: BoundLogger | None = None) -> bool:
        """True when the item was generated (and published, if asked to)."""
        log = (log or logger).bind(job_id=ctx.job_id)
        for step in self._steps:
            if not step.applies(ctx):
                continue
            if step.job_status:
                self._jobs.update_status(ctx.job_id, step.job_status)
            try:
                result = await step.run(ctx)
            except asyncio.CancelledError:
                raise
            except Exception as err:
                result = StepResult.fail(str(err) or type(err).__name__)

            if result.failed:
                log.warning("Item failed", step=step.name, error=result.error)
                self._jobs.update_status(ctx.job_id, "FAILED", error=f"{step.name}: {result.error}")
                return False
            if result.status == "skip":
                log.debug("Step skipped", step=step.name, reason=result.reason)

        title = ctx.content.title if ctx.content else None
        if ctx.published:
            self._jobs.update_status(
                ctx.job_id, "PUBLISHED", generated_title=title, remote_id=ctx.published.remote_id
            )
        else:
            self._jobs.update_status(ctx.job_id, "GENERATED", generated_title=title)
        return True


class ExecutionPipeline:
    def __init__(
        self,
        schedules: ScheduleRepository,
        executions: ExecutionRepository,
        jobs: JobRepository,
        collaborators: Collaborators,
        steps: list[Step] | None = None,
    ) -> None:
        self._schedules = schedules
        self._executions = executions
        self._jobs = jobs
        self._collaborators = collaborators
        self._runner = ItemRunner(jobs, steps if steps is not None else default_steps(collaborators))

    @property
    def runner(self) -> ItemRunner:
        return self._runner

    async def run(self, schedule: AutomationSchedule, trigger: str = "timer") -> AutomationExecution | None:
        """Run one firing. Returns None when the schedule already has a RUNNING execution.

        Once the execution is open this only raises on cancellation: every
        other failure closes the execution and books the run before returning.
        """
        execution = AutomationExecution(
            id=make_id("exec"),
            schedule_id=schedule.id,
            trigger=trigger,  # type: ignore[arg-type]
            started_at=now_iso(),
        )
        if not self._executions.open(execution):
            logger.warning("Schedule already running, skipping firing", schedule_id=schedule.id, trigger=trigger)
            return None

        log = logger.bind(schedule_id=schedule.id, execution_id=execution.id)
        log.info("Execution started", name=schedule.name, trigger=trigger)

        try:
            status, error, succeeded = await self._execute(schedule, execution.id, log)
        except asyncio.CancelledError:
            self._abandon(execution.id, log)
            raise
        except Exception as err:
            log.exception("Execution aborted")
            status, error, succeeded = "FAILED", str(err) or type(err).__name__, False

        status, error = self._finish(schedule, execution.id, status, error, succeeded, log)
        try:
            stored = self._executions.get_by_id(execution.id)
        except Exception:
            log.exception("Could not reload execution")
            stored = None
        return stored or execution.model_copy(update={"status": status, "error": error})

    async def _execute(
        self, schedule: AutomationSchedule, execution_id: str, log: BoundLogger
    ) -> tuple[ExecutionStatus, str | None, bool]:
        """Acquire sources and run every item. Returns (status, error, succeeded)."""
        try:
            sources = await self._acquire_sources(schedule)
        except asyncio.CancelledError:
            raise
        except Exception as err:
            error = str(err) or type(err).__name__
            log.error("Source acquisition failed", error=error)
            return "FAILED", error, False

        job_ids: list[str] = []
        generated = published = failed = 0
        for index, source in enumerate(sources, start=1):
            ctx = self._start_item(schedule, execution_id, source)
            job_ids.append(ctx.job_id)
            log.info(f"[{index}/{len(sources)}] Processing item", job_id=ctx.job_id, title=source.title)
            if await self._runner.run(ctx, log):
                generated += 1
                if ctx.published:
                    published += 1
            else:
                failed += 1
            self._executions.record_progress(execution_id, job_ids, generated, published, failed)

        log.info(
            "Execution completed",
            items=len(sources),
            generated=generated,
            published=published,
            failed=failed,
        )
        return "COMPLETED", None, generated > 0 or not sources

    # --- Source acquisition ---

    async def _acquire_sources(self, schedule: AutomationSchedule) -> list[ItemSource]:
        if schedule.feed_url:
            items = await call_collaborator(
                "feed",
                self._collaborators.feeds.fetch_items(schedule.feed_url),
                self._collaborators.timeouts.for_collaborator("feed"),
            )
            limit = schedule.max_items_per_run
            if not limit or limit <= 0:
                limit = DEFAULT_MAX_ITEMS_PER_RUN
            sources: list[ItemSource] = []
            seen: set[str] = set()
            for item in items[:limit]:
                if item.link:
                    if item.link in seen or self._jobs.exists_for_source(schedule.owner, schedule.feed_url, item.link):
                        logger.debug("Feed item already has a job, skipping", link=item.link)
                        continue
                    seen.add(item.link)
                sources.append(ItemSource(title=item.title, url=item.link))
            logger.info("Feed fetched", schedule_id=schedule.id, found=len(items), new=len(sources))
            return sources

        if schedule.topic:
            return [ItemSource(title=schedule.topic)]
        raise ValidationError("Schedule has neither a feed nor a topic")

    # --- Per item ---

    def _start_item(self, schedule: AutomationSchedule, execution_id: str, source: ItemSource) -> ItemContext:
        now = now_iso()
        job = AutomationJob(
            id=make_id("job"),
            schedule_id=schedule.id,
            execution_id=execution_id,
            owner=schedule.owner,
            site_id=schedule.site_id,
            source_type="feed" if schedule.feed_url else "topic",
            feed_url=schedule.feed_url,
            source_url=source.url,
            source_title=source.title,
            auto_publish=schedule.auto_publish,
            publish_state=schedule.publish_state,
            created_at=now,
            updated_at=now,
        )
        self._jobs.create(job)
        target = PublishTarget(schedule.site_id, schedule.auto_publish, schedule.publish_state)
        return ItemContext(target=target, source=source, job_id=job.id)

    # --- Closure ---

    def _finish(
        self,
        schedule: AutomationSchedule,
        execution_id: str,
        status: ExecutionStatus,
        error: str | None,
        succeeded: bool,
        log: BoundLogger,
    ) -> tuple[ExecutionStatus, str | None]:
        """Close the execution, then book the run on the schedule.

        A RUNNING row left behind turns away every later firing of the
        schedule, so a close that raises is retried once as FAILED. Booking
        the run is retried once as well.
        """
        try:
            self._executions.close(execution_id, status, error)
        except Exception as err:
            log.exception("Could not close execution, retrying as FAILED", status=status)
            status, error, succeeded = "FAILED", str(err) or type(err).__name__, False
            try:
                self._executions.close(execution_id, status, error)
            except Exception:
                log.exception("Execution left RUNNING")

        for attempt in (1, 2):
            try:
                self._close_schedule(schedule, succeeded)
                break
            except Exception:
                log.exception("Could not record run on schedule", attempt=attempt)
        return status, error

    def _abandon(self, execution_id: str, log: BoundLogger) -> None:
        try:
            self._executions.close(execution_id, "FAILED", "Cancelled")
        except Exception:
            log.exception("Could not close cancelled execution")

    def _close_schedule(self, schedule: AutomationSchedule, succeeded: bool) -> None:
        next_run = None
        if not schedule.is_one_shot:
            next_run = compute_next_run(schedule.kind, schedule.recurrence, schedule.timezone, after=utcnow())
        self._schedules.record_run(schedule.id, succeeded, next_run, deactivate=schedule.is_one_shot)
