"""
Billing event handling.

Events arrive already verified by the billing webhook layer. Each event id is
recorded in billing_events before anything else happens, so a redelivered
webhook is acknowledged without touching the balance a second time.
"""

import logging
from datetime import timedelta
from typing import Optional

from opentelemetry import trace
from pydantic import BaseModel
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from contentops import config
from contentops.errors import InvalidRequest
from contentops.models.billing_event import BillingEvent
from contentops.models.tenant import Tenant
from contentops.services import credit_ledger
from contentops.services.plans import FREE_PLAN_ID, is_known_plan, plan_allotment
from contentops.services.tenant_service import get_or_create_tenant
from contentops.utils.clock import utcnow

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class BillingEventType:
    PLAN_PURCHASED = "plan_purchased"
    PLAN_UPGRADED = "plan_upgraded"
    PLAN_DOWNGRADED = "plan_downgraded"
    INVOICE_PAID = "invoice_paid"
    PLAN_CANCELLED = "plan_cancelled"
    CYCLE_ELAPSED = "cycle_elapsed"

    ALL = (
        PLAN_PURCHASED,
        PLAN_UPGRADED,
        PLAN_DOWNGRADED,
        INVOICE_PAID,
        PLAN_CANCELLED,
        CYCLE_ELAPSED,
    )
    NEEDS_PLAN = (PLAN_PURCHASED, PLAN_UPGRADED, PLAN_DOWNGRADED)


class BillingEventIn(BaseModel):
    """A verified billing event."""
    event_id: str
    tenant_id: str
    event_type: str
    plan_id: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "event_id": "evt_01HZX3",
                "tenant_id": "store-123",
                "event_type": "plan_upgraded",
                "plan_id": "pro",
            }
        }


def _set_plan(db: Session, tenant: Tenant, plan_id: str, start_clock: bool) -> None:
    if start_clock:
        now = utcnow()
        # Guarded on the stored plan so only one event leaving free restarts the clock
        started = db.execute(
            update(Tenant)
            .where(Tenant.id == tenant.id, Tenant.plan_id == FREE_PLAN_ID)
            .values(
                plan_id=plan_id,
                subscription_start=now,
                next_billing_at=now + timedelta(days=config.BILLING_CYCLE_DAYS),
            )
            .execution_options(synchronize_session=False)
        )
        if started.rowcount == 1:
            return
        logger.info("Tenant %s already left the free plan, keeping its billing clock", tenant.id)

    db.execute(
        update(Tenant)
        .where(Tenant.id == tenant.id)
        .values(plan_id=plan_id)
        .execution_options(synchronize_session=False)
    )


def handle_event(db: Session, event: BillingEventIn) -> bool:
    """
    Apply one verified billing event.

    Returns False if the event id was seen before (nothing is applied).
    Raises InvalidRequest for unknown event types or plans.
    """
    if event.event_type not in BillingEventType.ALL:
        raise InvalidRequest(f"Unknown billing event type: {event.event_type}")
    if event.event_type in BillingEventType.NEEDS_PLAN and not is_known_plan(event.plan_id or ""):
        raise InvalidRequest(f"Unknown plan: {event.plan_id}")

    with tracer.start_as_current_span("billing.handle_event") as span:
        span.set_attribute("billing.event_id", event.event_id)
        span.set_attribute("billing.event_type", event.event_type)
        span.set_attribute("tenant_id", event.tenant_id)

        tenant = get_or_create_tenant(db, event.tenant_id)
        previous_plan = tenant.plan_id

        db.add(
            BillingEvent(
                event_id=event.event_id,
                tenant_id=event.tenant_id,
                event_type=event.event_type,
                plan_id=event.plan_id,
            )
        )
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            span.set_attribute("billing.duplicate", True)
            logger.info("Duplicate billing event %s ignored", event.event_id)
            return False

        try:
            _apply(db, tenant, previous_plan, event)
            db.commit()
        except Exception:
            db.rollback()
            raise

    logger.info(
        "Applied billing event %s (%s) tenant=%s",
        event.event_id,
        event.event_type,
        event.tenant_id,
    )
    return True


def _apply(db: Session, tenant: Tenant, previous_plan: str, event: BillingEventIn) -> None:
    event_type = event.event_type

    if event_type in (BillingEventType.PLAN_PURCHASED, BillingEventType.PLAN_UPGRADED):
        # First paid plan starts the subscription clock
        _set_plan(db, tenant, event.plan_id, start_clock=previous_plan == FREE_PLAN_ID)
        credit_ledger.top_up(
            db,
            tenant.id,
            plan_allotment(event.plan_id),
            reference=event.event_id,
            note=f"{event_type}: {previous_plan} -> {event.plan_id}",
        )

    elif event_type == BillingEventType.PLAN_DOWNGRADED:
        _set_plan(db, tenant, event.plan_id, start_clock=False)
        logger.info(
            "Tenant %s downgraded %s -> %s, balance kept",
            tenant.id,
            previous_plan,
            event.plan_id,
        )

    elif event_type == BillingEventType.INVOICE_PAID:
        credit_ledger.top_up(
            db,
            tenant.id,
            plan_allotment(previous_plan),
            reference=event.event_id,
            note=f"renewal: {previous_plan}",
        )

    elif event_type == BillingEventType.PLAN_CANCELLED:
        logger.info("Tenant %s cancelled plan %s, balance kept", tenant.id, previous_plan)

    elif event_type == BillingEventType.CYCLE_ELAPSED:
        credit_ledger.cycle_reset(db, tenant.id)
