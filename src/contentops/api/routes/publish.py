"""
API routes for publishing finished items to the tenant's catalog.

Endpoints:
- POST /publish - Publish several items, one outcome per item
- POST /publish/{item_id} - Publish a single item
"""

from typing import List, Optional

from fastapi import APIRouter, Depends
from opentelemetry import trace
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from contentops.api.dependencies.errors import to_http_error
from contentops.api.dependencies.providers import get_catalog
from contentops.api.dependencies.tenant import get_tenant_id
from contentops.db.database import get_db
from contentops.errors import ContentOpsError
from contentops.services import publish_service
from contentops.services.providers import CatalogClient

router = APIRouter(prefix="/publish", tags=["publish"])
tracer = trace.get_tracer(__name__)


class PublishRequest(BaseModel):
    item_ids: List[int] = Field(min_length=1)


class PublishResultOut(BaseModel):
    item_id: int
    outcome: str  # published | already_published | not_ready | not_found | failed
    external_ref: Optional[str] = None
    error: Optional[str] = None


class PublishResponse(BaseModel):
    results: List[PublishResultOut]
    published: int
    failed: int


@router.post("", response_model=PublishResponse)
async def publish_items(
    request: PublishRequest,
    tenant_id: str = Depends(get_tenant_id),
    catalog: CatalogClient = Depends(get_catalog),
    db: Session = Depends(get_db),
):
    """
    Publish DONE items. Items already published are reported as such and are
    not pushed again.
    """
    with tracer.start_as_current_span("publish_items"):
        results = await publish_service.publish_many(db, catalog, tenant_id, request.item_ids)

        return PublishResponse(
            results=[PublishResultOut(**vars(r)) for r in results],
            published=sum(r.outcome == publish_service.PublishOutcome.PUBLISHED for r in results),
            failed=sum(r.outcome == publish_service.PublishOutcome.FAILED for r in results),
        )


@router.post("/{item_id}", response_model=PublishResultOut)
async def publish_item(
    item_id: int,
    tenant_id: str = Depends(get_tenant_id),
    catalog: CatalogClient = Depends(get_catalog),
    db: Session = Depends(get_db),
):
    with tracer.start_as_current_span("publish_item"):
        try:
            result = await publish_service.publish(db, catalog, tenant_id, item_id)
        except ContentOpsError as e:
            raise to_http_error(e) from e

        return PublishResultOut(**vars(result))
