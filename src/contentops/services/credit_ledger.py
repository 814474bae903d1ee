# src/contentops/services/credit_ledger.py

"""
Credit Ledger.

Per-tenant credit accounting. Every mutation is a single conditional UPDATE
evaluated by the database and is paired with an append-only
CreditTransaction row in the same transaction.

The only mutators of ``credits_total`` are ``top_up`` (additive, driven by a
verified billing event) and ``reconcile_plan`` (explicit, audited, opt-in).
There is deliberately no function that resets a tenant to a plan default, and
nothing in the process lifecycle calls into this module on startup.

Functions here do not commit; the caller decides the transaction boundary.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from opentelemetry import trace
from sqlalchemy import case, select, update
from sqlalchemy.orm import Session

from contentops import config
from contentops import metrics
from contentops.errors import (
    InsufficientCredits,
    InvalidRequest,
    NotFound,
    ReconciliationRefused,
)
from contentops.models.credit_transaction import CreditEntryType, CreditTransaction
from contentops.models.tenant import Tenant
from contentops.services.plans import is_known_plan, plan_allotment
from contentops.utils.clock import utcnow

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass
class CreditBalance:
    tenant_id: str
    plan_id: str
    credits_total: int
    credits_used: int
    next_billing_at: datetime | None

    @property
    def available(self) -> int:
        return self.credits_total - self.credits_used


def balance(db: Session, tenant_id: str) -> CreditBalance:
    row = db.execute(
        select(
            Tenant.plan_id,
            Tenant.credits_total,
            Tenant.credits_used_this_cycle,
            Tenant.next_billing_at,
        ).where(Tenant.id == tenant_id)
    ).first()
    if row is None:
        raise NotFound(f"Tenant {tenant_id} not found")

    return CreditBalance(
        tenant_id=tenant_id,
        plan_id=row.plan_id,
        credits_total=row.credits_total,
        credits_used=row.credits_used_this_cycle,
        next_billing_at=row.next_billing_at,
    )


def reserve(db: Session, tenant_id: str, amount: int, *, job_id: int | None = None) -> None:
    """
    Atomically debit ``amount`` if the tenant can afford it.

    Raises InsufficientCredits (and changes nothing) otherwise.
    """
    if amount <= 0:
        raise InvalidRequest("Reservation amount must be positive")

    with tracer.start_as_current_span("credits.reserve") as span:
        span.set_attribute("tenant_id", tenant_id)
        span.set_attribute("credits.amount", amount)

        result = db.execute(
            update(Tenant)
            .where(
                Tenant.id == tenant_id,
                Tenant.credits_total - Tenant.credits_used_this_cycle >= amount,
            )
            .values(credits_used_this_cycle=Tenant.credits_used_this_cycle + amount)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            current = balance(db, tenant_id)
            span.set_attribute("credits.insufficient", True)
            metrics.insufficient_credits_total.inc()
            logger.info(
                "Reservation denied tenant=%s required=%d available=%d",
                tenant_id,
                amount,
                current.available,
            )
            raise InsufficientCredits(tenant_id, amount, current.available)

        _record(db, tenant_id, CreditEntryType.RESERVE, amount, job_id=job_id)

    metrics.credits_reserved_total.inc(amount)
    logger.debug("Reserved %d credits tenant=%s job=%s", amount, tenant_id, job_id)


def release(
    db: Session,
    tenant_id: str,
    amount: int,
    *,
    job_id: int | None = None,
    note: str | None = None,
) -> None:
    """Compensate a reservation; usage never drops below zero."""
    if amount <= 0:
        return

    with tracer.start_as_current_span("credits.release") as span:
        span.set_attribute("tenant_id", tenant_id)
        span.set_attribute("credits.amount", amount)

        used = Tenant.credits_used_this_cycle
        result = db.execute(
            update(Tenant)
            .where(Tenant.id == tenant_id)
            .values(credits_used_this_cycle=case((used >= amount, used - amount), else_=0))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFound(f"Tenant {tenant_id} not found")

        _record(db, tenant_id, CreditEntryType.RELEASE, amount, job_id=job_id, note=note)

    logger.info("Released %d credits tenant=%s job=%s", amount, tenant_id, job_id)


def top_up(
    db: Session,
    tenant_id: str,
    amount: int,
    *,
    reference: str,
    note: str | None = None,
) -> None:
    """
    Additive credit increase: ``credits_total += amount``.

    Only billing events and explicit reconciliation may call this.
    """
    if amount <= 0:
        raise InvalidRequest("Top-up amount must be positive")

    with tracer.start_as_current_span("credits.top_up") as span:
        span.set_attribute("tenant_id", tenant_id)
        span.set_attribute("credits.amount", amount)

        result = db.execute(
            update(Tenant)
            .where(Tenant.id == tenant_id)
            .values(credits_total=Tenant.credits_total + amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFound(f"Tenant {tenant_id} not found")

        _record(db, tenant_id, CreditEntryType.TOP_UP, amount, reference=reference, note=note)

    logger.info("Topped up %d credits tenant=%s ref=%s", amount, tenant_id, reference)


def cycle_reset(db: Session, tenant_id: str, now: datetime | None = None) -> bool:
    """
    Start the tenant's next billing cycle if its own next_billing_at passed.

    Zeroes credits_used_this_cycle and moves next_billing_at forward by one
    cycle; credits_total is untouched. The update is a compare-and-swap on the
    old next_billing_at, so two sweeps racing on the same tenant reset once.
    Returns True if a reset happened.
    """
    now = now or utcnow()

    with tracer.start_as_current_span("credits.cycle_reset") as span:
        span.set_attribute("tenant_id", tenant_id)

        row = db.execute(
            select(Tenant.next_billing_at, Tenant.credits_used_this_cycle).where(
                Tenant.id == tenant_id,
                Tenant.next_billing_at.is_not(None),
                Tenant.next_billing_at <= now,
            )
        ).first()
        if row is None:
            return False

        previous_billing_at = row.next_billing_at
        result = db.execute(
            update(Tenant)
            .where(
                Tenant.id == tenant_id,
                Tenant.next_billing_at == previous_billing_at,
            )
            .values(
                credits_used_this_cycle=0,
                next_billing_at=previous_billing_at + timedelta(days=config.BILLING_CYCLE_DAYS),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            span.set_attribute("credits.reset_raced", True)
            return False

        _record(
            db,
            tenant_id,
            CreditEntryType.CYCLE_RESET,
            row.credits_used_this_cycle,
            note=f"cycle ending {previous_billing_at.isoformat()}",
        )

    logger.info(
        "Billing cycle reset tenant=%s (cleared %d used credits)",
        tenant_id,
        row.credits_used_this_cycle,
    )
    return True


def reset_due_cycles(db: Session, now: datetime | None = None) -> int:
    """Reset every tenant whose own billing date has passed. Commits per tenant."""
    now = now or utcnow()

    tenant_ids = db.execute(
        select(Tenant.id).where(
            Tenant.next_billing_at.is_not(None),
            Tenant.next_billing_at <= now,
        )
    ).scalars().all()

    reset_count = 0
    for tenant_id in tenant_ids:
        if cycle_reset(db, tenant_id, now):
            reset_count += 1
        db.commit()

    if reset_count:
        logger.info("Reset billing cycles for %d tenant(s)", reset_count)
    return reset_count


def reconcile_plan(
    db: Session,
    tenant_id: str,
    plan_id: str,
    *,
    actor: str,
    confirm: bool = False,
) -> CreditBalance:
    """
    Operator repair for a missed billing event.

    Sets the plan and guarantees at least one full allotment is available,
    topping up only the shortfall. It never lowers credits_total, so it is
    safe against accumulated balances, but it is still refused unless the
    caller passes ``confirm=True`` and is recorded with the actor's name.
    """
    if not confirm:
        raise ReconciliationRefused("Plan reconciliation requires explicit confirmation")
    if not is_known_plan(plan_id):
        raise InvalidRequest(f"Unknown plan: {plan_id}")

    with tracer.start_as_current_span("credits.reconcile_plan") as span:
        span.set_attribute("tenant_id", tenant_id)
        span.set_attribute("plan_id", plan_id)

        current = balance(db, tenant_id)
        shortfall = max(plan_allotment(plan_id) - current.available, 0)

        result = db.execute(
            update(Tenant)
            .where(
                Tenant.id == tenant_id,
                Tenant.credits_total == current.credits_total,
                Tenant.credits_used_this_cycle == current.credits_used,
            )
            .values(plan_id=plan_id, credits_total=Tenant.credits_total + shortfall)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ReconciliationRefused("Balance changed during reconciliation, retry")

        _record(
            db,
            tenant_id,
            CreditEntryType.RECONCILE,
            shortfall,
            reference=actor,
            note=f"plan {current.plan_id} -> {plan_id}",
        )

    logger.warning(
        "Reconciled tenant=%s plan %s -> %s by %s (+%d credits)",
        tenant_id,
        current.plan_id,
        plan_id,
        actor,
        shortfall,
    )
    return balance(db, tenant_id)


def list_transactions(db: Session, tenant_id: str, limit: int = 100) -> list[CreditTransaction]:
    return (
        db.query(CreditTransaction)
        .filter(CreditTransaction.tenant_id == tenant_id)
        .order_by(CreditTransaction.id.desc())
        .limit(limit)
        .all()
    )


def _record(
    db: Session,
    tenant_id: str,
    entry_type: str,
    amount: int,
    *,
    job_id: int | None = None,
    reference: str | None = None,
    note: str | None = None,
) -> None:
    db.add(
        CreditTransaction(
            tenant_id=tenant_id,
            entry_type=entry_type,
            amount=amount,
            job_id=job_id,
            reference=reference,
            note=note,
        )
    )
