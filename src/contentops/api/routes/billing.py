"""
API routes for credits and billing.

Endpoints:
- GET /credits - Current balance of the tenant
- POST /billing/events - Verified billing events from the webhook layer
- POST /billing/reconcile - Operator repair of a tenant's plan (audited)
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
from contentops.services import billing_service, credit_ledger
from contentops.services.billing_service import BillingEventIn

router = APIRouter(tags=["billing"])
tracer = trace.get_tracer(__name__)


class CreditsResponse(BaseModel):
    tenant_id: str
    plan_id: str
    credits_total: int
    credits_used: int
    credits_available: int
    next_billing_at: Optional[datetime] = None


class CreditTransactionOut(BaseModel):
    id: int
    entry_type: str
    amount: int
    job_id: Optional[int] = None
    reference: Optional[str] = None
    note: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BillingEventAck(BaseModel):
    event_id: str
    applied: bool


class ReconcileRequest(BaseModel):
    tenant_id: str
    plan_id: str
    actor: str
    confirm: bool = False


def _credits_out(balance: credit_ledger.CreditBalance) -> CreditsResponse:
    return CreditsResponse(
        tenant_id=balance.tenant_id,
        plan_id=balance.plan_id,
        credits_total=balance.credits_total,
        credits_used=balance.credits_used,
        credits_available=balance.available,
        next_billing_at=balance.next_billing_at,
    )


@router.get("/credits", response_model=CreditsResponse)
def get_credits(
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
):
    with tracer.start_as_current_span("get_credits"):
        return _credits_out(credit_ledger.balance(db, tenant.id))


@router.get("/credits/transactions", response_model=List[CreditTransactionOut])
def get_credit_transactions(
    limit: int = 100,
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
):
    with tracer.start_as_current_span("get_credit_transactions"):
        return credit_ledger.list_transactions(db, tenant.id, limit=min(limit, 500))


@router.post("/billing/events", response_model=BillingEventAck, status_code=status.HTTP_200_OK)
def receive_billing_event(
    event: BillingEventIn,
    db: Session = Depends(get_db),
):
    """
    Apply a billing event that the webhook layer already verified.

    Redelivery of the same event_id is acknowledged with applied=false.
    """
    with tracer.start_as_current_span("receive_billing_event"):
        try:
            applied = billing_service.handle_event(db, event)
        except ContentOpsError as e:
            raise to_http_error(e) from e

        return BillingEventAck(event_id=event.event_id, applied=applied)


@router.post("/billing/reconcile", response_model=CreditsResponse)
def reconcile_plan(
    request: ReconcileRequest,
    db: Session = Depends(get_db),
):
    """
    Set a tenant's plan after a missed billing event.

    Refused unless confirm is true. Tops up only the shortfall to one full
    allotment and never lowers the balance.
    """
    with tracer.start_as_current_span("reconcile_plan"):
        try:
            balance = credit_ledger.reconcile_plan(
                db,
                request.tenant_id,
                request.plan_id,
                actor=request.actor,
                confirm=request.confirm,
            )
            db.commit()
        except ContentOpsError as e:
            db.rollback()
            raise to_http_error(e) from e

        return _credits_out(balance)
