"""
Publish Reconciler.

Pushes DONE items to the tenant's catalog exactly once. The PublishRecord is
committed as PENDING_PUSH before the external push, so no lock or open
transaction is held while the catalog call is awaited. A second publish of
the same item hits the unique constraint and is reported as already
published instead of pushing again. A failed push deletes the record so the
item can be retried; a PENDING_PUSH record left behind by a crashed
publisher is taken over once it is older than PUBLISH_CLAIM_TIMEOUT_SECONDS.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta

from opentelemetry import trace
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from contentops import config
from contentops import metrics
from contentops.errors import NotFound, NotReady, PublishConflict, PublishFailed
from contentops.models.job import ItemStatus, JobItem
from contentops.models.publish_record import PublishRecord, PublishStatus
from contentops.repositories.job_repository import JobRepository
from contentops.services.providers.base import CatalogPublisher
from contentops.utils.clock import utcnow

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class PublishOutcome:
    PUBLISHED = "published"
    ALREADY_PUBLISHED = "already_published"
    NOT_READY = "not_ready"
    NOT_FOUND = "not_found"
    FAILED = "failed"


@dataclass
class PublishResult:
    item_id: int
    outcome: str
    external_ref: str | None = None
    error: str | None = None


def _claim_record(db: Session, item: JobItem) -> int:
    """
    Commit a PENDING_PUSH record for the item and return its id.

    Raises PublishConflict if the item is already published or another
    publisher holds a live claim on it.
    """
    item_id = item.id
    record = PublishRecord(
        job_item_id=item_id,
        tenant_id=item.tenant_id,
        applied_value=item.result,
        status=PublishStatus.PENDING_PUSH,
        claimed_at=utcnow(),
    )
    db.add(record)
    try:
        db.flush()
        record_id = record.id
        db.commit()
    except IntegrityError:
        db.rollback()
        return _take_over_abandoned(db, item_id)
    return record_id


def _take_over_abandoned(db: Session, item_id: int) -> int:
    existing = db.execute(
        select(PublishRecord.id, PublishRecord.status)
        .where(PublishRecord.job_item_id == item_id)
    ).first()
    if existing is None or existing.status != PublishStatus.PENDING_PUSH:
        raise PublishConflict(f"Item {item_id} already has a publish record")

    cutoff = utcnow() - timedelta(seconds=config.PUBLISH_CLAIM_TIMEOUT_SECONDS)
    taken = db.execute(
        update(PublishRecord)
        .where(
            PublishRecord.id == existing.id,
            PublishRecord.status == PublishStatus.PENDING_PUSH,
            PublishRecord.claimed_at < cutoff,
        )
        .values(claimed_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if taken.rowcount != 1:
        db.rollback()
        raise PublishConflict(f"Item {item_id} is being published by another request")

    db.commit()
    logger.warning("Took over abandoned publish record %s for item %s", existing.id, item_id)
    return existing.id


def _release_record(db: Session, record_id: int) -> None:
    db.rollback()
    db.execute(
        delete(PublishRecord)
        .where(
            PublishRecord.id == record_id,
            PublishRecord.status == PublishStatus.PENDING_PUSH,
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()


def _mark_pushed(db: Session, record_id: int, item_id: int, external_ref: str) -> None:
    db.execute(
        update(PublishRecord)
        .where(PublishRecord.id == record_id)
        .values(
            status=PublishStatus.PUSHED,
            external_ref=external_ref,
            published_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    db.execute(
        update(JobItem)
        .where(JobItem.id == item_id)
        .values(published=True)
        .execution_options(synchronize_session=False)
    )
    db.commit()


async def publish(
    db: Session,
    catalog: CatalogPublisher,
    tenant_id: str,
    item_id: int,
) -> PublishResult:
    """
    Publish one item.

    Raises NotFound, NotReady or PublishFailed. Publishing an item that was
    already published, or is being published concurrently, succeeds without
    contacting the catalog.
    """
    with tracer.start_as_current_span("service.publish") as span:
        span.set_attribute("item.id", item_id)
        span.set_attribute("tenant_id", tenant_id)

        item = JobRepository.get_item(db, item_id, tenant_id)
        if item is None:
            raise NotFound(f"Item {item_id} not found")
        if item.status != ItemStatus.DONE:
            raise NotReady(item_id, item.status)

        kind, payload, result = item.kind, item.payload, item.result

        try:
            record_id = _claim_record(db, item)
        except PublishConflict as e:
            span.set_attribute("publish.duplicate", True)
            metrics.publish_total.labels(outcome=PublishOutcome.ALREADY_PUBLISHED).inc()
            logger.info("Skipping push for item %s: %s", item_id, e)
            return PublishResult(item_id=item_id, outcome=PublishOutcome.ALREADY_PUBLISHED)

        try:
            external_ref = await catalog.push_result(kind, payload, result, tenant_id)
        except Exception as e:
            # Drop the record so a later retry can publish
            _release_record(db, record_id)
            metrics.publish_total.labels(outcome=PublishOutcome.FAILED).inc()
            logger.error("Publishing item %s failed: %s", item_id, e)
            raise PublishFailed(f"Catalog rejected item {item_id}: {e}") from e

        _mark_pushed(db, record_id, item_id, external_ref)

    metrics.publish_total.labels(outcome=PublishOutcome.PUBLISHED).inc()
    logger.info("Published item %s -> %s", item_id, external_ref)
    return PublishResult(
        item_id=item_id,
        outcome=PublishOutcome.PUBLISHED,
        external_ref=external_ref,
    )


async def publish_many(
    db: Session,
    catalog: CatalogPublisher,
    tenant_id: str,
    item_ids: list[int],
) -> list[PublishResult]:
    """Publish each item independently; one failure does not stop the rest."""
    results = []
    for item_id in dict.fromkeys(item_ids):
        try:
            results.append(await publish(db, catalog, tenant_id, item_id))
        except NotFound as e:
            results.append(PublishResult(item_id, PublishOutcome.NOT_FOUND, error=str(e)))
        except NotReady as e:
            results.append(PublishResult(item_id, PublishOutcome.NOT_READY, error=str(e)))
        except PublishFailed as e:
            results.append(PublishResult(item_id, PublishOutcome.FAILED, error=str(e)))

    logger.info(
        "Publish batch tenant=%s: %d/%d published",
        tenant_id,
        sum(r.outcome == PublishOutcome.PUBLISHED for r in results),
        len(results),
    )
    return results
