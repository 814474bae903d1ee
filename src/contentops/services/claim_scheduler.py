# src/contentops/services/claim_scheduler.py

"""
Fair Claim Scheduler.

Hands PENDING items to workers one at a time. Fairness across tenants is
approximated as "the tenant with the fewest in-flight items goes first, ties
broken by the oldest pending item"; within one tenant items are claimed in
creation order.

There is no global lock. Each candidate is taken with a conditional UPDATE
(``... WHERE id = :id AND status = 'PENDING'``) and a worker owns the item
only if that UPDATE changed exactly one row. Losing the race is a
ClaimConflict, which only means "try the next candidate".
"""

import logging
from datetime import timedelta

from opentelemetry import trace
from sqlalchemy import and_, func, select, update
from sqlalchemy.orm import Session

from contentops import config
from contentops import metrics
from contentops.errors import ClaimConflict
from contentops.models.job import ItemStatus, Job, JobItem, JobStatus
from contentops.repositories.job_repository import JobRepository
from contentops.utils.clock import utcnow

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# Rounds of re-ranking when every candidate of a round was taken by others
MAX_CLAIM_ROUNDS = 5


def _candidate_query(limit: int, max_in_flight: int):
    """
    Oldest claimable item per tenant, ordered by the tenant's in-flight load.

    Only the head of each tenant's queue is a candidate, so one tenant with a
    huge backlog contributes a single row and cannot crowd out the others.
    """
    heads = (
        select(
            JobItem.tenant_id.label("tenant_id"),
            func.min(JobItem.id).label("head_id"),
        )
        .join(Job, Job.id == JobItem.job_id)
        .where(
            JobItem.status == ItemStatus.PENDING,
            Job.status != JobStatus.CANCELED,
        )
        .group_by(JobItem.tenant_id)
        .subquery("heads")
    )

    in_flight = (
        select(
            JobItem.tenant_id.label("tenant_id"),
            func.count(JobItem.id).label("n"),
        )
        .where(JobItem.status.in_(ItemStatus.IN_FLIGHT))
        .group_by(JobItem.tenant_id)
        .subquery("in_flight")
    )

    load = func.coalesce(in_flight.c.n, 0)

    query = (
        select(heads.c.head_id, heads.c.tenant_id, load.label("in_flight"))
        .select_from(heads)
        .outerjoin(in_flight, in_flight.c.tenant_id == heads.c.tenant_id)
    )
    if max_in_flight > 0:
        query = query.where(load < max_in_flight)

    return query.order_by(load.asc(), heads.c.head_id.asc()).limit(limit)


def _try_claim(db: Session, item_id: int) -> int:
    """
    Flip one PENDING item to RUNNING. Returns its job id.

    Raises ClaimConflict if another worker (or a cancellation) got there first.
    """
    now = utcnow()
    not_canceled = select(Job.id).where(
        Job.id == JobItem.job_id,
        Job.status != JobStatus.CANCELED,
    ).exists()

    result = db.execute(
        update(JobItem)
        .where(
            and_(
                JobItem.id == item_id,
                JobItem.status == ItemStatus.PENDING,
                not_canceled,
            )
        )
        .values(status=ItemStatus.RUNNING, claimed_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ClaimConflict(item_id)

    return db.execute(
        select(JobItem.job_id).where(JobItem.id == item_id)
    ).scalar_one()


def claim_next(db: Session) -> JobItem | None:
    """
    Claim exactly one PENDING item for the calling worker, or None if there
    is nothing claimable. Commits on success.
    """
    with tracer.start_as_current_span("claim.next") as span:
        for _round in range(MAX_CLAIM_ROUNDS):
            candidates = db.execute(
                _candidate_query(config.CLAIM_CANDIDATES, config.MAX_IN_FLIGHT_PER_TENANT)
            ).all()

            if not candidates:
                # Release the read snapshot so the next poll sees fresh rows
                db.rollback()
                span.set_attribute("claim.empty", True)
                return None

            for candidate in candidates:
                try:
                    job_id = _try_claim(db, candidate.head_id)
                except ClaimConflict as conflict:
                    metrics.claim_conflicts_total.inc()
                    logger.debug("%s, trying next candidate", conflict)
                    continue

                JobRepository.mark_job_started(db, job_id)
                db.commit()

                metrics.items_claimed_total.inc()
                span.set_attribute("item.id", candidate.head_id)
                span.set_attribute("tenant_id", candidate.tenant_id)
                logger.debug(
                    "Claimed item %s tenant=%s (in-flight before claim: %s)",
                    candidate.head_id,
                    candidate.tenant_id,
                    candidate.in_flight,
                )
                return db.get(JobItem, candidate.head_id)

            # Every candidate went to another worker; rank again
            db.rollback()

        span.set_attribute("claim.exhausted", True)
        logger.info("Lost every claim race for %d rounds, backing off", MAX_CLAIM_ROUNDS)
        return None


def claim_batch(db: Session, limit: int | None = None) -> list[JobItem]:
    """
    Claim up to ``limit`` items. Fairness is recomputed for every claim, so a
    batch interleaves tenants instead of draining one queue.
    """
    limit = limit or config.CLAIM_BATCH_SIZE
    claimed: list[JobItem] = []

    while len(claimed) < limit:
        item = claim_next(db)
        if item is None:
            break
        claimed.append(item)

    if claimed:
        logger.info("Claimed %d item(s)", len(claimed))
    return claimed


def find_stale_items(db: Session, threshold_seconds: int | None = None) -> list[JobItem]:
    """In-flight items claimed longer ago than the threshold."""
    threshold_seconds = threshold_seconds or config.STALE_CLAIM_SECONDS
    cutoff = utcnow() - timedelta(seconds=threshold_seconds)

    return (
        db.query(JobItem)
        .filter(
            JobItem.status.in_(ItemStatus.IN_FLIGHT),
            JobItem.claimed_at.is_not(None),
            JobItem.claimed_at < cutoff,
        )
        .order_by(JobItem.claimed_at)
        .all()
    )


def report_stale_claims(db: Session, threshold_seconds: int | None = None) -> list[JobItem]:
    """
    Publish the stale-claim gauge and log the offenders.

    Stale items are surfaced to operators, never re-queued automatically: a
    worker may still be holding them.
    """
    stale = find_stale_items(db, threshold_seconds)
    metrics.stale_claims.set(len(stale))

    for item in stale:
        logger.warning(
            "Stale claim: item=%s job=%s tenant=%s status=%s claimed_at=%s",
            item.id,
            item.job_id,
            item.tenant_id,
            item.status,
            item.claimed_at,
        )
    return stale
