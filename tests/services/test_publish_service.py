"""
Tests for exactly-once publishing.
"""
import asyncio
from datetime import timedelta

import pytest
from unittest.mock import AsyncMock

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from contentops import config
from contentops.db.database import Base
from contentops.errors import NotFound, NotReady, PublishFailed
from contentops.models.job import JobKind
from contentops.models.publish_record import PublishRecord, PublishStatus
from contentops.models.tenant import Tenant
from contentops.repositories.job_repository import JobRepository
from contentops.services.claim_scheduler import claim_next
from contentops.services.publish_service import PublishOutcome, publish, publish_many
from contentops.utils.clock import utcnow

# Configure anyio for async tests
pytestmark = pytest.mark.anyio


def _done_item(db, tenant_id, result=None):
    job = JobRepository.create_job(
        db,
        tenant_id=tenant_id,
        kind=JobKind.TEXT_OPTIMIZATION,
        payloads=[{"product_id": "p1", "attribute": "name"}],
        credits_per_item=1,
    )
    db.commit()
    item = claim_next(db)
    JobRepository.complete_item(db, item.id, result or {"before": "Old", "after": "New"})
    db.commit()
    return job.items[0].id


def _records(db, item_id):
    return db.query(PublishRecord).filter(PublishRecord.job_item_id == item_id).all()


async def test_publish_pushes_and_records(db, tenant, fake_catalog):
    item_id = _done_item(db, tenant.id)

    result = await publish(db, fake_catalog, tenant.id, item_id)

    assert result.outcome == PublishOutcome.PUBLISHED
    assert result.external_ref == "ext-ref-1"
    fake_catalog.push_result.assert_awaited_once_with(
        "text_optimization",
        {"product_id": "p1", "attribute": "name"},
        {"before": "Old", "after": "New"},
        tenant.id,
    )
    records = _records(db, item_id)
    assert len(records) == 1
    assert records[0].external_ref == "ext-ref-1"
    assert records[0].status == PublishStatus.PUSHED
    assert records[0].published_at is not None
    assert records[0].applied_value == {"before": "Old", "after": "New"}
    assert JobRepository.get_item(db, item_id).published is True


async def test_publishing_twice_pushes_once(db, tenant, fake_catalog):
    item_id = _done_item(db, tenant.id)

    first = await publish(db, fake_catalog, tenant.id, item_id)
    second = await publish(db, fake_catalog, tenant.id, item_id)

    assert first.outcome == PublishOutcome.PUBLISHED
    assert second.outcome == PublishOutcome.ALREADY_PUBLISHED
    assert fake_catalog.push_result.await_count == 1
    assert len(_records(db, item_id)) == 1


async def test_failed_push_leaves_no_record_and_can_retry(db, tenant, fake_catalog):
    item_id = _done_item(db, tenant.id)
    fake_catalog.push_result = AsyncMock(side_effect=[RuntimeError("503 from catalog"), "ext-ref-2"])

    with pytest.raises(PublishFailed):
        await publish(db, fake_catalog, tenant.id, item_id)

    assert _records(db, item_id) == []
    assert JobRepository.get_item(db, item_id).published is False

    result = await publish(db, fake_catalog, tenant.id, item_id)

    assert result.outcome == PublishOutcome.PUBLISHED
    assert result.external_ref == "ext-ref-2"
    assert len(_records(db, item_id)) == 1


async def test_only_done_items_can_be_published(db, tenant, fake_catalog):
    job = JobRepository.create_job(
        db,
        tenant_id=tenant.id,
        kind=JobKind.IMAGE_OPTIMIZATION,
        payloads=[{"product_id": "p1", "image_url": "https://img/1.jpg"}],
        credits_per_item=15,
    )
    db.commit()

    with pytest.raises(NotReady):
        await publish(db, fake_catalog, tenant.id, job.items[0].id)

    fake_catalog.push_result.assert_not_awaited()


async def test_publish_is_tenant_scoped(db, make_tenant, fake_catalog):
    make_tenant("owner")
    make_tenant("other")
    item_id = _done_item(db, "owner")

    with pytest.raises(NotFound):
        await publish(db, fake_catalog, "other", item_id)


async def test_publish_many_reports_each_outcome(db, tenant, fake_catalog):
    published = _done_item(db, tenant.id)
    failing = _done_item(db, tenant.id, {"before": "a", "after": "b"})
    already = _done_item(db, tenant.id, {"before": "c", "after": "d"})
    await publish(db, fake_catalog, tenant.id, already)

    async def push(kind, payload, result, tenant_id=None):
        if result == {"before": "a", "after": "b"}:
            raise RuntimeError("rejected")
        return "ext-ok"

    fake_catalog.push_result = AsyncMock(side_effect=push)

    results = await publish_many(db, fake_catalog, tenant.id, [published, failing, already, published, 9999])

    outcomes = {r.item_id: r.outcome for r in results}
    assert len(results) == 4
    assert outcomes == {
        published: PublishOutcome.PUBLISHED,
        failing: PublishOutcome.FAILED,
        already: PublishOutcome.ALREADY_PUBLISHED,
        9999: PublishOutcome.NOT_FOUND,
    }


def _pending_record(db, tenant_id, item_id, age_seconds):
    db.add(
        PublishRecord(
            job_item_id=item_id,
            tenant_id=tenant_id,
            applied_value={"before": "Old", "after": "New"},
            status=PublishStatus.PENDING_PUSH,
            claimed_at=utcnow() - timedelta(seconds=age_seconds),
        )
    )
    db.commit()


async def test_publish_in_progress_elsewhere_does_not_push(db, tenant, fake_catalog):
    item_id = _done_item(db, tenant.id)
    _pending_record(db, tenant.id, item_id, age_seconds=1)

    result = await publish(db, fake_catalog, tenant.id, item_id)

    assert result.outcome == PublishOutcome.ALREADY_PUBLISHED
    fake_catalog.push_result.assert_not_awaited()
    assert _records(db, item_id)[0].status == PublishStatus.PENDING_PUSH


async def test_abandoned_publish_is_taken_over(db, tenant, fake_catalog):
    item_id = _done_item(db, tenant.id)
    _pending_record(db, tenant.id, item_id, age_seconds=config.PUBLISH_CLAIM_TIMEOUT_SECONDS + 60)

    result = await publish(db, fake_catalog, tenant.id, item_id)

    assert result.outcome == PublishOutcome.PUBLISHED
    fake_catalog.push_result.assert_awaited_once()
    db.expire_all()
    records = _records(db, item_id)
    assert len(records) == 1
    assert records[0].status == PublishStatus.PUSHED
    assert records[0].external_ref == "ext-ref-1"
    assert JobRepository.get_item(db, item_id).published is True


async def test_concurrent_publishes_push_once(tmp_path, fake_catalog):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'publish.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, autoflush=False)

    setup = Session()
    setup.add(Tenant(id="t1", name="t1", credits_total=100))
    setup.commit()
    item_id = _done_item(setup, "t1")
    setup.close()

    async def slow_push(kind, payload, result, tenant_id=None):
        await asyncio.sleep(0.05)
        return "ext-ref-1"

    fake_catalog.push_result = AsyncMock(side_effect=slow_push)
    first, second = Session(), Session()

    results = await asyncio.gather(
        publish(first, fake_catalog, "t1", item_id),
        publish(second, fake_catalog, "t1", item_id),
    )
    first.close()
    second.close()

    check = Session()
    records = _records(check, item_id)
    check.close()
    engine.dispose()

    assert sorted(r.outcome for r in results) == [
        PublishOutcome.ALREADY_PUBLISHED,
        PublishOutcome.PUBLISHED,
    ]
    assert fake_catalog.push_result.await_count == 1
    assert len(records) == 1
    assert records[0].status == PublishStatus.PUSHED
