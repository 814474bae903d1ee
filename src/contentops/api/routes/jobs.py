"""
API routes for bulk content jobs.

Endpoints:
- POST /jobs/text - Optimize product text attributes
- POST /jobs/images - Optimize product images
- POST /jobs/blogs - Generate blog posts
- GET /jobs - List the tenant's jobs
- GET /jobs/{id} - Job progress
- GET /jobs/{id}/items - Per-item results
- POST /jobs/{id}/cancel - Cancel an open job, refunding unclaimed items
"""

from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from opentelemetry import trace
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from contentops.api.dependencies.errors import to_http_error
from contentops.api.dependencies.providers import get_catalog
from contentops.api.dependencies.tenant import get_current_tenant
from contentops.db.database import get_db
from contentops.errors import ContentOpsError
from contentops.models.job import JobKind
from contentops.models.tenant import Tenant
from contentops.repositories.job_repository import JobRepository
from contentops.services import job_service
from contentops.services.providers import CatalogClient

router = APIRouter(prefix="/jobs", tags=["jobs"])
tracer = trace.get_tracer(__name__)


# Request/Response Models

class TextJobRequest(BaseModel):
    """Optimize selected attributes of products or whole collections."""
    source_scope: str = "products"  # products | collections
    source_ids: List[str]
    attributes: List[str]
    target_lang: str = "en"
    user_prompt: str = ""

    class Config:
        json_schema_extra = {
            "example": {
                "source_scope": "products",
                "source_ids": ["prod-1", "prod-2"],
                "attributes": ["name", "seoTitle"],
                "target_lang": "en",
            }
        }


class ImageIn(BaseModel):
    product_id: str
    image_url: str
    media_id: Optional[str] = None


class ImageJobRequest(BaseModel):
    images: List[ImageIn] = Field(min_length=1)
    user_prompt: str = ""


class BlogPostIn(BaseModel):
    idea: Optional[str] = None
    title: Optional[str] = None
    product_id: Optional[str] = None
    product_name: Optional[str] = None


class BlogJobRequest(BaseModel):
    posts: List[BlogPostIn] = Field(min_length=1)
    target_lang: str = "en"
    user_prompt: str = ""


class JobResponse(BaseModel):
    id: int
    kind: str
    status: str
    total_items: int
    completed_items: int
    failed_items: int
    credits_per_item: int
    credits_reserved: int
    params: Optional[dict] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class JobItemResponse(BaseModel):
    id: int
    job_id: int
    kind: str
    status: str
    payload: dict
    result: Optional[Any] = None
    error: Optional[str] = None
    published: bool
    claimed_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CancelJobResponse(BaseModel):
    job: JobResponse
    refunded_items: int
    refunded_credits: int


# Endpoints

@router.post("/text", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
async def create_text_job(
    request: TextJobRequest,
    tenant: Tenant = Depends(get_current_tenant),
    catalog: CatalogClient = Depends(get_catalog),
    db: Session = Depends(get_db),
):
    """
    Reserve credits and queue one item per product and attribute.

    Collections are expanded into their products (capped) before the cost is
    computed.
    """
    with tracer.start_as_current_span("create_text_job"):
        try:
            product_ids = await job_service.expand_sources(
                catalog,
                request.source_scope,
                request.source_ids,
                tenant_id=tenant.id,
            )
            units = job_service.build_text_units(
                product_ids,
                request.attributes,
                request.target_lang,
                request.user_prompt,
            )
            return job_service.create_job(
                db,
                tenant.id,
                JobKind.TEXT_OPTIMIZATION,
                units,
                params={
                    "source_scope": request.source_scope,
                    "source_ids": request.source_ids,
                    "attributes": request.attributes,
                    "target_lang": request.target_lang,
                    "user_prompt": request.user_prompt,
                },
            )
        except ContentOpsError as e:
            raise to_http_error(e) from e


@router.post("/images", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
def create_image_job(
    request: ImageJobRequest,
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
):
    with tracer.start_as_current_span("create_image_job"):
        try:
            units = job_service.build_image_units(
                [image.model_dump(exclude_none=True) for image in request.images],
                request.user_prompt,
            )
            return job_service.create_job(
                db,
                tenant.id,
                JobKind.IMAGE_OPTIMIZATION,
                units,
                params={"user_prompt": request.user_prompt},
            )
        except ContentOpsError as e:
            raise to_http_error(e) from e


@router.post("/blogs", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
def create_blog_job(
    request: BlogJobRequest,
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
):
    """One item (and one charge) per requested blog post."""
    with tracer.start_as_current_span("create_blog_job"):
        try:
            units = job_service.build_blog_units(
                [post.model_dump(exclude_none=True) for post in request.posts],
                request.target_lang,
                request.user_prompt,
            )
            return job_service.create_job(
                db,
                tenant.id,
                JobKind.BLOG_GENERATION,
                units,
                params={"target_lang": request.target_lang, "user_prompt": request.user_prompt},
            )
        except ContentOpsError as e:
            raise to_http_error(e) from e


@router.get("", response_model=List[JobResponse])
def list_jobs(
    job_status: Optional[str] = Query(None, alias="status"),
    kind: Optional[str] = None,
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
):
    """List the tenant's jobs, newest first. Optional ?status=&kind= filters."""
    with tracer.start_as_current_span("list_jobs"):
        return JobRepository.list_jobs(db, tenant.id, status=job_status, kind=kind)


@router.get("/{job_id}", response_model=JobResponse)
def get_job(
    job_id: int,
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
):
    with tracer.start_as_current_span("get_job"):
        job = JobRepository.get_job(db, job_id, tenant.id)
        if not job:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Job not found"
            )
        return job


@router.get("/{job_id}/items", response_model=List[JobItemResponse])
def get_job_items(
    job_id: int,
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
):
    with tracer.start_as_current_span("get_job_items"):
        if not JobRepository.get_job(db, job_id, tenant.id):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Job not found"
            )
        return JobRepository.get_items(db, job_id, tenant.id)


@router.post("/{job_id}/cancel", response_model=CancelJobResponse)
def cancel_job(
    job_id: int,
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
):
    """
    Cancel an open job.

    Items not yet picked up by a worker are failed and refunded; items
    already running finish and are charged.
    """
    with tracer.start_as_current_span("cancel_job"):
        try:
            job, refunded = job_service.cancel_job(db, tenant.id, job_id)
        except ContentOpsError as e:
            raise to_http_error(e) from e

        return CancelJobResponse(
            job=JobResponse.model_validate(job),
            refunded_items=refunded,
            refunded_credits=refunded * job.credits_per_item,
        )
