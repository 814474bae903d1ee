# src/contentops/services/worker.py

"""
Background worker.

One pass claims a fair batch of PENDING items and drives each one through
the generation bridge, then runs the periodic sweeps: polling PROCESSING
items, spawning due campaign entries, syncing entry statuses and resetting
billing cycles. Items are processed one after another; throughput comes
from running more worker processes against the same database.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Callable

from opentelemetry import trace
from sqlalchemy.orm import Session

from contentops import config
from contentops import metrics
from contentops.db.database import SessionLocal
from contentops.models.job import ItemStatus, JobKind
from contentops.repositories.job_repository import JobRepository
from contentops.services import campaign_service, credit_ledger
from contentops.services.claim_scheduler import claim_batch
from contentops.services.generation_bridge import GenerationBridge
from contentops.services.providers import (
    AnthropicBlogGenerator,
    CatalogClient,
    ReplicateImageGenerator,
    TextOptimizer,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass
class PassStats:
    claimed: int = 0
    failed: int = 0
    polled: int = 0
    entries_spawned: int = 0
    entries_synced: int = 0
    cycles_reset: int = 0

    @property
    def idle(self) -> bool:
        return not (self.claimed or self.polled or self.entries_spawned)


def default_providers(catalog: CatalogClient) -> tuple[dict, TextOptimizer]:
    providers = {
        JobKind.IMAGE_OPTIMIZATION: ReplicateImageGenerator(),
        JobKind.BLOG_GENERATION: AnthropicBlogGenerator(),
    }
    return providers, TextOptimizer(catalog)


class Worker:

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        providers: dict | None = None,
        processor=None,
        batch_size: int | None = None,
        poll_interval: float | None = None,
    ):
        self.session_factory = session_factory
        if providers is None or processor is None:
            default_map, default_processor = default_providers(CatalogClient())
            providers = providers if providers is not None else default_map
            processor = processor if processor is not None else default_processor
        self.providers = providers
        self.processor = processor
        self.batch_size = batch_size or config.CLAIM_BATCH_SIZE
        self.poll_interval = poll_interval if poll_interval is not None else config.WORKER_POLL_INTERVAL
        self._stopping = False

    async def run_once(self) -> PassStats:
        stats = PassStats()
        db = self.session_factory()

        try:
            with tracer.start_as_current_span("worker.run_once") as span:
                bridge = GenerationBridge(db, self.providers, self.processor)

                for item in claim_batch(db, self.batch_size):
                    stats.claimed += 1
                    item_id, kind = item.id, item.kind
                    try:
                        await bridge.process_claimed(item)
                    except Exception as e:
                        # Unexpected errors fail the item; it is never re-claimed
                        logger.exception("Processing item %s crashed", item_id)
                        db.rollback()
                        if JobRepository.fail_item(db, item_id, f"{type(e).__name__}: {e}"):
                            metrics.items_finished_total.labels(kind=kind, status=ItemStatus.FAILED).inc()
                            stats.failed += 1
                        db.commit()

                poll_stats = await bridge.poll_processing()
                stats.polled = poll_stats["completed"] + poll_stats["failed"]

                stats.entries_spawned = campaign_service.process_due_entries(db)
                stats.entries_synced = campaign_service.sync_entry_statuses(db)
                stats.cycles_reset = credit_ledger.reset_due_cycles(db)

                for name, value in asdict(stats).items():
                    span.set_attribute(f"worker.{name}", value)
        finally:
            db.close()

        if not stats.idle:
            logger.info("Worker pass: %s", asdict(stats))
        return stats

    async def run_forever(self) -> None:
        logger.info(
            "Worker started (batch=%d, interval=%ss)",
            self.batch_size,
            self.poll_interval,
        )
        while not self._stopping:
            try:
                stats = await self.run_once()
            except Exception:
                logger.exception("Worker pass failed")
                stats = PassStats()

            if stats.idle and not self._stopping:
                await asyncio.sleep(self.poll_interval)

        logger.info("Worker stopped")

    def stop(self) -> None:
        self._stopping = True
