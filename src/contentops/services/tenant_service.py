from datetime import timedelta
import logging

from sqlalchemy.orm import Session

from contentops import config
from contentops.errors import NotFound
from contentops.models.tenant import Tenant
from contentops.services.plans import FREE_PLAN_ID, plan_allotment
from contentops.utils.clock import utcnow

logger = logging.getLogger(__name__)


def get_tenant(db: Session, tenant_id: str) -> Tenant:
    tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()
    if not tenant:
        raise NotFound(f"Tenant {tenant_id} not found")
    return tenant


def get_or_create_tenant(
    db: Session,
    tenant_id: str,  # validated id supplied by the auth resolver
    name: str | None = None,
) -> Tenant:
    """
    Get existing tenant or create a new one on the free plan.

    A new tenant's billing clock starts now; its first cycle reset happens
    one cycle length later, independent of any calendar boundary.
    """
    tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()

    if tenant:
        logger.debug(f"Found existing tenant: {tenant.id}")
        return tenant

    now = utcnow()
    tenant = Tenant(
        id=tenant_id,
        name=name or f"Store {tenant_id[:8]}",
        plan_id=FREE_PLAN_ID,
        credits_total=plan_allotment(FREE_PLAN_ID),
        credits_used_this_cycle=0,
        subscription_start=now,
        next_billing_at=now + timedelta(days=config.BILLING_CYCLE_DAYS),
    )

    db.add(tenant)
    db.commit()
    db.refresh(tenant)

    logger.info(f"Created new tenant: {tenant.id} ({tenant.name}) with {tenant.credits_total} credits")
    return tenant
