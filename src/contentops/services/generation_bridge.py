"""
Two-Phase Generation Bridge.

Drives claimed items to a terminal state. Synchronous kinds (text) are
processed inline; slow kinds (image, blog) are submitted to their external
generator, parked in PROCESSING with the correlation id, and completed later
by the poll sweep.

Every fact the bridge needs lives in the job_items row, so a restarted
worker resumes polling where the previous one stopped and never submits an
item twice.
"""

import logging

from opentelemetry import trace
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from contentops import config
from contentops import metrics
from contentops.errors import GenerationFailure
from contentops.models.job import ItemStatus, JobItem, JobKind
from contentops.repositories.job_repository import JobRepository
from contentops.services.job_kinds import capabilities_for
from contentops.services.providers.base import (
    GenerationProvider,
    PollStatus,
    SyncProcessor,
)
from contentops.utils.clock import utcnow

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class GenerationBridge:
    """Connects claimed job items to generation providers."""

    def __init__(
        self,
        db: Session,
        providers: dict[JobKind, GenerationProvider],
        processor: SyncProcessor | None = None,
    ):
        self.db = db
        self.providers = providers
        self.processor = processor

    async def process_claimed(self, item: JobItem) -> None:
        """
        Advance one freshly claimed (RUNNING) item.

        Generation failures are recorded on the item; they never abort the
        job or propagate to the caller.
        """
        item_id = item.id
        kind = JobKind(item.kind)
        caps = capabilities_for(kind)

        with tracer.start_as_current_span("bridge.process_claimed") as span:
            span.set_attribute("item.id", item_id)
            span.set_attribute("job.kind", kind.value)

            try:
                if caps.two_phase:
                    await self.submit(item)
                else:
                    await self._process_sync(item)
            except GenerationFailure as e:
                span.set_attribute("item.failed", True)
                logger.warning("Generation failed for item %s: %s", item_id, e)
                self._fail(item_id, kind, str(e))

    async def _process_sync(self, item: JobItem) -> None:
        if self.processor is None:
            raise GenerationFailure(f"No processor configured for {item.kind}")

        item_id = item.id
        kind = item.kind
        payload = {**item.payload, "tenant_id": item.tenant_id}

        result = await self.processor.process(payload)

        if JobRepository.complete_item(self.db, item_id, result):
            metrics.items_finished_total.labels(kind=kind, status=ItemStatus.DONE).inc()
        self.db.commit()

    async def submit(self, item: JobItem) -> bool:
        """
        Phase one: send the item to its external generator.

        Only a RUNNING item without a correlation id is submitted; anything
        else has already been submitted (or finished) and is left alone.
        Returns True if the item moved to PROCESSING.
        """
        item_id = item.id
        row = self.db.execute(
            select(JobItem.status, JobItem.external_id, JobItem.kind, JobItem.payload)
            .where(JobItem.id == item_id)
        ).first()

        if row is None or row.status != ItemStatus.RUNNING or row.external_id:
            logger.info("Item %s not submittable (status=%s), skipping", item_id, row and row.status)
            return False

        kind = JobKind(row.kind)
        provider = self.providers.get(kind)
        if provider is None:
            raise GenerationFailure(f"No generation provider configured for {kind.value}")

        with tracer.start_as_current_span("bridge.submit") as span:
            span.set_attribute("item.id", item_id)

            correlation_id = await provider.submit(row.payload)
            metrics.generation_submits_total.labels(kind=kind.value).inc()
            span.set_attribute("external_id", correlation_id)

            moved = JobRepository.mark_processing(self.db, item_id, correlation_id)
            self.db.commit()

        if not moved:
            logger.warning(
                "Item %s left RUNNING before its submission %s was recorded",
                item_id,
                correlation_id,
            )
        else:
            logger.info("Item %s submitted as %s", item_id, correlation_id)
        return moved

    async def poll_processing(self, limit: int | None = None) -> dict:
        """
        Phase two: ask the providers about PROCESSING items.

        Items still running are left untouched. A poll error leaves the item
        in PROCESSING for the next sweep (and the stale-claim report).
        """
        limit = limit or config.POLL_BATCH_SIZE
        stats = {"checked": 0, "completed": 0, "failed": 0, "errors": 0}

        with tracer.start_as_current_span("bridge.poll_processing") as span:
            rows = self.db.execute(
                select(JobItem.id, JobItem.kind, JobItem.external_id)
                .where(JobItem.status == ItemStatus.PROCESSING)
                .order_by(
                    JobItem.last_polled_at.asc().nulls_first(),
                    JobItem.claimed_at,
                    JobItem.id,
                )
                .limit(limit)
            ).all()
            if rows:
                # Rotate: items polled now go to the back of the next sweep
                self.db.execute(
                    update(JobItem)
                    .where(JobItem.id.in_([row.id for row in rows]))
                    .values(last_polled_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
            # End the transaction before awaiting providers
            self.db.commit()

            for row in rows:
                stats["checked"] += 1
                provider = self.providers.get(JobKind(row.kind))
                if provider is None:
                    logger.error("No provider for PROCESSING item %s (%s)", row.id, row.kind)
                    stats["errors"] += 1
                    continue

                try:
                    poll = await provider.poll(row.external_id)
                except Exception:
                    logger.exception("Polling %s for item %s failed", row.external_id, row.id)
                    stats["errors"] += 1
                    continue

                if poll.status == PollStatus.SUCCEEDED:
                    if JobRepository.complete_item(self.db, row.id, poll.result or {}):
                        stats["completed"] += 1
                        metrics.items_finished_total.labels(kind=row.kind, status=ItemStatus.DONE).inc()
                    self.db.commit()
                elif poll.status == PollStatus.FAILED:
                    if JobRepository.fail_item(self.db, row.id, poll.error or "Generation failed"):
                        stats["failed"] += 1
                        metrics.items_finished_total.labels(kind=row.kind, status=ItemStatus.FAILED).inc()
                    self.db.commit()

            span.set_attribute("poll.checked", stats["checked"])

        if stats["checked"]:
            logger.info(
                "Poll sweep: %d checked, %d completed, %d failed, %d errors",
                stats["checked"],
                stats["completed"],
                stats["failed"],
                stats["errors"],
            )
        return stats

    def _fail(self, item_id: int, kind: JobKind, error: str) -> None:
        self.db.rollback()
        if JobRepository.fail_item(self.db, item_id, error):
            metrics.items_finished_total.labels(kind=kind.value, status=ItemStatus.FAILED).inc()
        self.db.commit()
