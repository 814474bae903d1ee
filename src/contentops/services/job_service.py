# src/contentops/services/job_service.py

"""
Job creation and cancellation.

Creating a job is one unit of work: the credit reservation, the Job row and
its items either all commit or none do, so a failed creation can never
leave credits debited without a job to show for them.
"""

from __future__ import annotations

import logging
from typing import Iterable

from opentelemetry import trace
from sqlalchemy.orm import Session

from contentops import config
from contentops.errors import InvalidRequest, NotFound, StateConflict
from contentops.models.job import Job, JobKind
from contentops.repositories.job_repository import JobRepository
from contentops.services import credit_ledger
from contentops.services.job_kinds import TEXT_ATTRIBUTES, capabilities_for
from contentops.services.providers.base import CatalogPublisher

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

JOB_CANCELED = "Job canceled"

SOURCE_PRODUCTS = "products"
SOURCE_COLLECTIONS = "collections"


def create_job(
    db: Session,
    tenant_id: str,
    kind: JobKind | str,
    units: Iterable[dict],
    params: dict | None = None,
    *,
    commit: bool = True,
) -> Job:
    """
    Reserve credits and create the job with one item per unit.

    With ``commit=False`` the caller owns the transaction (used when the job
    must land together with another row); on error the caller rolls back.
    """
    kind = JobKind(kind)
    units = list(units)
    if not units:
        raise InvalidRequest("A job needs at least one item")

    caps = capabilities_for(kind)
    cost = caps.credits_per_item * len(units)

    with tracer.start_as_current_span("service.create_job") as span:
        span.set_attribute("tenant_id", tenant_id)
        span.set_attribute("job.kind", kind.value)
        span.set_attribute("job.cost", cost)

        try:
            job = JobRepository.create_job(
                db,
                tenant_id=tenant_id,
                kind=kind,
                payloads=units,
                credits_per_item=caps.credits_per_item,
                params=params,
            )
            credit_ledger.reserve(db, tenant_id, cost, job_id=job.id)
            if commit:
                db.commit()
                db.refresh(job)
        except Exception:
            if commit:
                db.rollback()
            raise

    logger.info(
        "%s job %s created: %d items, %d credits reserved tenant=%s",
        caps.label,
        job.id,
        len(units),
        cost,
        tenant_id,
    )
    return job


async def expand_sources(
    catalog: CatalogPublisher,
    source_scope: str,
    source_ids: list[str],
    cap: int | None = None,
    tenant_id: str | None = None,
) -> list[str]:
    """
    Resolve a tenant's selection into a de-duplicated list of product ids.

    Collections are expanded through the catalog and the total is capped so a
    single request cannot reserve an unbounded number of items.
    """
    cap = cap or config.COLLECTION_PRODUCT_CAP
    if not source_ids:
        raise InvalidRequest("No products or collections selected")

    if source_scope == SOURCE_PRODUCTS:
        return list(dict.fromkeys(source_ids))

    if source_scope != SOURCE_COLLECTIONS:
        raise InvalidRequest(f"Unknown source scope: {source_scope}")

    with tracer.start_as_current_span("service.expand_collections") as span:
        span.set_attribute("collections", len(source_ids))

        product_ids: dict[str, None] = {}
        for collection_id in dict.fromkeys(source_ids):
            for product_id in await catalog.list_collection_products(collection_id, tenant_id):
                product_ids.setdefault(product_id, None)
                if len(product_ids) >= cap:
                    logger.warning(
                        "Collection expansion hit the %d product cap at collection %s",
                        cap,
                        collection_id,
                    )
                    return list(product_ids)

        span.set_attribute("products", len(product_ids))

    if not product_ids:
        raise InvalidRequest("Selected collections contain no products")
    return list(product_ids)


def build_text_units(
    product_ids: list[str],
    attributes: list[str],
    target_lang: str = "en",
    user_prompt: str = "",
) -> list[dict]:
    """One unit per product and attribute."""
    unknown = [a for a in attributes if a not in TEXT_ATTRIBUTES]
    if unknown:
        raise InvalidRequest(f"Unknown attributes: {', '.join(unknown)}")
    if not attributes:
        raise InvalidRequest("Select at least one attribute")

    return [
        {
            "product_id": product_id,
            "attribute": attribute,
            "target_lang": target_lang,
            "user_prompt": user_prompt,
        }
        for product_id in product_ids
        for attribute in dict.fromkeys(attributes)
    ]


def build_image_units(images: list[dict], user_prompt: str = "") -> list[dict]:
    units = []
    for image in images:
        if not image.get("product_id") or not image.get("image_url"):
            raise InvalidRequest("Each image needs product_id and image_url")
        units.append({**image, "user_prompt": user_prompt})
    return units


def build_blog_units(posts: list[dict], target_lang: str = "en", user_prompt: str = "") -> list[dict]:
    """One unit per requested blog post."""
    units = []
    for post in posts:
        if not (post.get("idea") or post.get("title")):
            raise InvalidRequest("Each blog post needs an idea or title")
        units.append({"target_lang": target_lang, "user_prompt": user_prompt, **post})
    return units


def cancel_job(db: Session, tenant_id: str, job_id: int) -> tuple[Job, int]:
    """
    Cancel an open job.

    Items nobody has claimed yet are failed and their credits returned;
    items already in flight finish normally and stay charged. Returns the job
    and the number of items refunded.
    """
    with tracer.start_as_current_span("service.cancel_job") as span:
        span.set_attribute("job.id", job_id)
        span.set_attribute("tenant_id", tenant_id)

        job = JobRepository.get_job(db, job_id, tenant_id)
        if not job:
            raise NotFound(f"Job {job_id} not found")

        if not JobRepository.cancel_job(db, job_id, tenant_id):
            db.rollback()
            raise StateConflict(f"Job {job_id} already finished")

        try:
            refunded = JobRepository.fail_pending_items(db, job_id, JOB_CANCELED)
            credit_ledger.release(
                db,
                tenant_id,
                refunded * job.credits_per_item,
                job_id=job_id,
                note=JOB_CANCELED,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

        span.set_attribute("items.refunded", refunded)
        db.refresh(job)

    logger.info("Job %s canceled, %d unclaimed item(s) refunded", job_id, refunded)
    return job, refunded
