"""
API routes for scheduled blog campaigns.

Endpoints:
- POST /campaigns - Create a campaign
- GET /campaigns - List campaigns (archived ones with ?include_archived=true)
- POST /campaigns/{id}/archive - Archive a campaign
- POST /campaigns/{id}/entries - Schedule a blog post
- GET /campaigns/{id}/entries - List scheduled posts
- DELETE /campaigns/{id}/entries/{entry_id} - Cancel a scheduled post
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from opentelemetry import trace
from pydantic import BaseModel
from sqlalchemy.orm import Session

from contentops.api.dependencies.errors import to_http_error
from contentops.api.dependencies.tenant import get_current_tenant
from contentops.db.database import get_db
from contentops.errors import ContentOpsError
from contentops.models.tenant import Tenant
from contentops.services import campaign_service

router = APIRouter(prefix="/campaigns", tags=["campaigns"])
tracer = trace.get_tracer(__name__)


class CreateCampaignRequest(BaseModel):
    name: str


class CampaignResponse(BaseModel):
    id: int
    name: str
    status: str
    created_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CreateEntryRequest(BaseModel):
    """A blog post to generate at scheduled_at."""
    scheduled_at: datetime
    idea: Optional[str] = None
    title: Optional[str] = None
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    target_lang: str = "en"
    user_prompt: str = ""


class EntryResponse(BaseModel):
    id: int
    campaign_id: int
    payload: dict
    scheduled_at: datetime
    status: str
    job_id: Optional[int] = None
    error: Optional[str] = None
    executed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


@router.post("", response_model=CampaignResponse, status_code=status.HTTP_201_CREATED)
def create_campaign(
    request: CreateCampaignRequest,
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
):
    with tracer.start_as_current_span("create_campaign"):
        try:
            return campaign_service.create_campaign(db, tenant.id, request.name)
        except ContentOpsError as e:
            raise to_http_error(e) from e


@router.get("", response_model=List[CampaignResponse])
def list_campaigns(
    include_archived: bool = False,
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
):
    with tracer.start_as_current_span("list_campaigns"):
        return campaign_service.list_campaigns(db, tenant.id, include_archived)


@router.post("/{campaign_id}/archive", response_model=CampaignResponse)
def archive_campaign(
    campaign_id: int,
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
):
    """Archive a campaign; posts that have not run yet are cancelled."""
    with tracer.start_as_current_span("archive_campaign"):
        try:
            return campaign_service.archive_campaign(db, tenant.id, campaign_id)
        except ContentOpsError as e:
            raise to_http_error(e) from e


@router.post("/{campaign_id}/entries", response_model=EntryResponse, status_code=status.HTTP_201_CREATED)
def add_entry(
    campaign_id: int,
    request: CreateEntryRequest,
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
):
    with tracer.start_as_current_span("add_campaign_entry"):
        payload = request.model_dump(exclude={"scheduled_at"}, exclude_none=True)
        try:
            return campaign_service.add_entry(
                db,
                tenant.id,
                campaign_id,
                payload,
                request.scheduled_at,
            )
        except ContentOpsError as e:
            raise to_http_error(e) from e


@router.get("/{campaign_id}/entries", response_model=List[EntryResponse])
def list_entries(
    campaign_id: int,
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
):
    with tracer.start_as_current_span("list_campaign_entries"):
        try:
            return campaign_service.list_entries(db, tenant.id, campaign_id)
        except ContentOpsError as e:
            raise to_http_error(e) from e


@router.delete("/{campaign_id}/entries/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
def cancel_entry(
    campaign_id: int,
    entry_id: int,
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
):
    with tracer.start_as_current_span("cancel_campaign_entry"):
        try:
            campaign_service.cancel_entry(db, tenant.id, campaign_id, entry_id)
        except ContentOpsError as e:
            raise to_http_error(e) from e
