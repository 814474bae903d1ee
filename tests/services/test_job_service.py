"""
Tests for job creation, source expansion and cancellation.
"""
import pytest
from unittest.mock import AsyncMock

from contentops.errors import InsufficientCredits, InvalidRequest, NotFound, StateConflict
from contentops.models.credit_transaction import CreditEntryType
from contentops.models.job import ItemStatus, Job, JobKind, JobStatus
from contentops.repositories.job_repository import JobRepository
from contentops.services import credit_ledger, job_service
from contentops.services.claim_scheduler import claim_batch


def _image_units(count):
    return job_service.build_image_units(
        [{"product_id": f"p{i}", "image_url": f"https://img/{i}.jpg"} for i in range(count)]
    )


class TestCreateJob:

    def test_reserves_cost_and_creates_items(self, db, make_tenant):
        make_tenant("t", credits_total=1000, credits_used=100)

        job = job_service.create_job(db, "t", JobKind.IMAGE_OPTIMIZATION, _image_units(10))

        assert job.total_items == 10
        assert job.credits_per_item == 15
        assert job.credits_reserved == 150
        balance = credit_ledger.balance(db, "t")
        assert balance.credits_used == 250
        reserve = credit_ledger.list_transactions(db, "t")[0]
        assert (reserve.entry_type, reserve.amount, reserve.job_id) == (CreditEntryType.RESERVE, 150, job.id)

    def test_insufficient_credits_creates_nothing(self, db, make_tenant):
        make_tenant("t", credits_total=100, credits_used=0)

        with pytest.raises(InsufficientCredits):
            job_service.create_job(db, "t", JobKind.BLOG_GENERATION, [{"idea": f"post {i}"} for i in range(5)])

        assert db.query(Job).count() == 0
        assert credit_ledger.balance(db, "t").credits_used == 0

    def test_empty_units_rejected(self, db, tenant):
        with pytest.raises(InvalidRequest):
            job_service.create_job(db, tenant.id, JobKind.TEXT_OPTIMIZATION, [])

    def test_caller_owned_transaction_is_not_committed(self, db, make_tenant):
        make_tenant("t", credits_total=100)

        job_service.create_job(db, "t", JobKind.TEXT_OPTIMIZATION, [{"product_id": "p", "attribute": "name"}], commit=False)
        db.rollback()

        assert db.query(Job).count() == 0
        assert credit_ledger.balance(db, "t").credits_used == 0


class TestUnits:

    def test_text_units_are_products_times_attributes(self):
        units = job_service.build_text_units(["p1", "p2"], ["name", "seoTitle", "name"], "de", "formal")

        assert len(units) == 4
        assert {(u["product_id"], u["attribute"]) for u in units} == {
            ("p1", "name"), ("p1", "seoTitle"), ("p2", "name"), ("p2", "seoTitle"),
        }
        assert all(u["target_lang"] == "de" and u["user_prompt"] == "formal" for u in units)

    def test_text_units_reject_unknown_attribute(self):
        with pytest.raises(InvalidRequest):
            job_service.build_text_units(["p1"], ["price"])

    def test_image_units_require_source_image(self):
        with pytest.raises(InvalidRequest):
            job_service.build_image_units([{"product_id": "p1"}])

    def test_blog_units_one_per_post(self):
        units = job_service.build_blog_units([{"idea": "a"}, {"title": "b"}], target_lang="fr")

        assert len(units) == 2
        assert units[1]["title"] == "b"
        assert units[1]["target_lang"] == "fr"

    def test_blog_units_require_idea_or_title(self):
        with pytest.raises(InvalidRequest):
            job_service.build_blog_units([{"product_id": "p1"}])


class TestExpandSources:

    @pytest.mark.anyio
    async def test_products_are_deduplicated(self):
        catalog = AsyncMock()

        ids = await job_service.expand_sources(catalog, "products", ["a", "b", "a"])

        assert ids == ["a", "b"]
        catalog.list_collection_products.assert_not_called()

    @pytest.mark.anyio
    async def test_collections_expand_with_dedupe(self):
        catalog = AsyncMock()
        catalog.list_collection_products = AsyncMock(side_effect=[["p1", "p2"], ["p2", "p3"]])

        ids = await job_service.expand_sources(catalog, "collections", ["c1", "c2"], tenant_id="t")

        assert ids == ["p1", "p2", "p3"]
        catalog.list_collection_products.assert_any_await("c1", "t")

    @pytest.mark.anyio
    async def test_collection_expansion_never_exceeds_cap(self):
        catalog = AsyncMock()
        catalog.list_collection_products = AsyncMock(
            side_effect=[[f"a{i}" for i in range(30)], [f"b{i}" for i in range(30)]]
        )

        ids = await job_service.expand_sources(catalog, "collections", ["c1", "c2"], cap=40)

        assert len(ids) == 40
        assert ids[-1] == "b9"

    @pytest.mark.anyio
    async def test_unknown_scope_rejected(self):
        with pytest.raises(InvalidRequest):
            await job_service.expand_sources(AsyncMock(), "tags", ["x"])

    @pytest.mark.anyio
    async def test_empty_collections_rejected(self):
        catalog = AsyncMock()
        catalog.list_collection_products = AsyncMock(return_value=[])

        with pytest.raises(InvalidRequest):
            await job_service.expand_sources(catalog, "collections", ["empty"])


class TestCancelJob:

    def test_cancel_refunds_only_unclaimed_items(self, db, make_tenant):
        make_tenant("t", credits_total=1000)
        job = job_service.create_job(db, "t", JobKind.IMAGE_OPTIMIZATION, _image_units(10))
        claim_batch(db, 4)

        canceled, refunded = job_service.cancel_job(db, "t", job.id)

        assert refunded == 6
        assert canceled.status == JobStatus.CANCELED
        assert canceled.failed_items == 6
        # 150 reserved, 90 returned for the six items that never ran
        assert credit_ledger.balance(db, "t").credits_used == 60
        statuses = [i.status for i in JobRepository.get_items(db, job.id, "t")]
        assert statuses.count(ItemStatus.RUNNING) == 4
        assert statuses.count(ItemStatus.FAILED) == 6
        assert claim_batch(db, 10) == []

    def test_in_flight_items_finish_after_cancel(self, db, make_tenant):
        make_tenant("t", credits_total=1000)
        job = job_service.create_job(db, "t", JobKind.IMAGE_OPTIMIZATION, _image_units(2))
        running = claim_batch(db, 1)[0]
        job_service.cancel_job(db, "t", job.id)

        assert JobRepository.complete_item(db, running.id, {"image_url": "x"}) is True
        db.commit()

        db.refresh(job)
        assert job.status == JobStatus.CANCELED
        assert job.completed_items == 1

    def test_cancel_unknown_job(self, db, tenant):
        with pytest.raises(NotFound):
            job_service.cancel_job(db, tenant.id, 999)

    def test_cancel_finished_job_rejected(self, db, make_tenant):
        make_tenant("t", credits_total=1000)
        job = job_service.create_job(db, "t", JobKind.IMAGE_OPTIMIZATION, _image_units(1))
        job_service.cancel_job(db, "t", job.id)

        with pytest.raises(StateConflict):
            job_service.cancel_job(db, "t", job.id)


def test_image_job_scenario_partial_failure(db, make_tenant):
    """Ten images: 150 credits reserved, seven succeed, job ends DONE 7/3."""
    make_tenant("t", credits_total=1000, credits_used=0)

    job = job_service.create_job(db, "t", JobKind.IMAGE_OPTIMIZATION, _image_units(10))
    assert credit_ledger.balance(db, "t").credits_used == 150

    items = claim_batch(db, 10)
    for n, item in enumerate(items):
        if n < 7:
            JobRepository.complete_item(db, item.id, {"image_url": f"https://out/{n}.jpg"})
        else:
            JobRepository.fail_item(db, item.id, "provider error")
    db.commit()

    db.refresh(job)
    assert job.status == JobStatus.DONE
    assert (job.completed_items, job.failed_items) == (7, 3)
    # Failed items are not refunded automatically
    assert credit_ledger.balance(db, "t").credits_used == 150
