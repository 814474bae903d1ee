# src/contentops/services/campaign_service.py

"""
Scheduled blog campaigns.

A campaign is a list of blog posts to generate at future times. When an
entry comes due, the worker's schedule sweep spawns exactly one single-item
blog job for it; the entry follows that job to COMPLETED or FAILED.
"""

from __future__ import annotations

import logging
from datetime import datetime

from opentelemetry import trace
from sqlalchemy import and_, select, update
from sqlalchemy.orm import Session

from contentops.errors import ContentOpsError, InvalidRequest, NotFound, StateConflict
from contentops.models.job import Job, JobKind, JobStatus
from contentops.models.scheduled_campaign import (
    CampaignStatus,
    EntryStatus,
    ScheduledCampaign,
    ScheduledEntry,
)
from contentops.services import job_service
from contentops.utils.clock import utcnow

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

JOB_MISSING = "Job no longer exists"


def create_campaign(db: Session, tenant_id: str, name: str) -> ScheduledCampaign:
    if not name or not name.strip():
        raise InvalidRequest("Campaign name is required")

    campaign = ScheduledCampaign(
        tenant_id=tenant_id,
        name=name.strip(),
        status=CampaignStatus.ACTIVE,
    )
    db.add(campaign)
    db.commit()
    db.refresh(campaign)

    logger.info("Created campaign %s tenant=%s", campaign.id, tenant_id)
    return campaign


def list_campaigns(db: Session, tenant_id: str, include_archived: bool = False) -> list[ScheduledCampaign]:
    query = db.query(ScheduledCampaign).filter(ScheduledCampaign.tenant_id == tenant_id)
    if not include_archived:
        query = query.filter(ScheduledCampaign.status != CampaignStatus.ARCHIVED)
    return query.order_by(ScheduledCampaign.created_at.desc(), ScheduledCampaign.id.desc()).all()


def get_campaign(db: Session, tenant_id: str, campaign_id: int) -> ScheduledCampaign:
    campaign = (
        db.query(ScheduledCampaign)
        .filter(
            ScheduledCampaign.id == campaign_id,
            ScheduledCampaign.tenant_id == tenant_id,
        )
        .first()
    )
    if not campaign:
        raise NotFound(f"Campaign {campaign_id} not found")
    return campaign


def archive_campaign(db: Session, tenant_id: str, campaign_id: int) -> ScheduledCampaign:
    """Archive a campaign; entries that have not run yet are cancelled."""
    campaign = get_campaign(db, tenant_id, campaign_id)
    if campaign.status == CampaignStatus.ARCHIVED:
        return campaign

    campaign.status = CampaignStatus.ARCHIVED
    campaign.archived_at = utcnow()
    cancelled = db.execute(
        update(ScheduledEntry)
        .where(
            ScheduledEntry.campaign_id == campaign_id,
            ScheduledEntry.status == EntryStatus.SCHEDULED,
        )
        .values(status=EntryStatus.CANCELLED)
        .execution_options(synchronize_session=False)
    ).rowcount
    db.commit()
    db.refresh(campaign)

    logger.info("Archived campaign %s (%d pending entries cancelled)", campaign_id, cancelled)
    return campaign


def add_entry(
    db: Session,
    tenant_id: str,
    campaign_id: int,
    payload: dict,
    scheduled_at: datetime,
) -> ScheduledEntry:
    campaign = get_campaign(db, tenant_id, campaign_id)
    if campaign.status == CampaignStatus.ARCHIVED:
        raise StateConflict(f"Campaign {campaign_id} is archived")

    # Validates the blog source the same way an ad-hoc blog job would
    job_service.build_blog_units([payload])

    entry = ScheduledEntry(
        campaign_id=campaign_id,
        tenant_id=tenant_id,
        payload=payload,
        scheduled_at=scheduled_at,
        status=EntryStatus.SCHEDULED,
    )
    db.add(entry)
    campaign.status = CampaignStatus.ACTIVE
    db.commit()
    db.refresh(entry)
    return entry


def list_entries(db: Session, tenant_id: str, campaign_id: int) -> list[ScheduledEntry]:
    get_campaign(db, tenant_id, campaign_id)
    return (
        db.query(ScheduledEntry)
        .filter(ScheduledEntry.campaign_id == campaign_id)
        .order_by(ScheduledEntry.scheduled_at, ScheduledEntry.id)
        .all()
    )


def cancel_entry(db: Session, tenant_id: str, campaign_id: int, entry_id: int) -> None:
    """Cancel an entry that has not run yet."""
    result = db.execute(
        update(ScheduledEntry)
        .where(
            ScheduledEntry.id == entry_id,
            ScheduledEntry.campaign_id == campaign_id,
            ScheduledEntry.tenant_id == tenant_id,
            ScheduledEntry.status == EntryStatus.SCHEDULED,
        )
        .values(status=EntryStatus.CANCELLED)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        db.commit()
        return

    db.rollback()
    entry = (
        db.query(ScheduledEntry)
        .filter(
            ScheduledEntry.id == entry_id,
            ScheduledEntry.campaign_id == campaign_id,
            ScheduledEntry.tenant_id == tenant_id,
        )
        .first()
    )
    if not entry:
        raise NotFound(f"Entry {entry_id} not found")
    raise StateConflict(f"Entry {entry_id} is {entry.status} and can no longer be cancelled")


def process_due_entries(db: Session, now: datetime | None = None) -> int:
    """
    Spawn a blog job for every due SCHEDULED entry of an active campaign.

    The entry claim, the job, the credit reservation and the link are one
    transaction, so a due entry yields exactly one job even with several
    workers sweeping at once. Entries whose job cannot be created (for
    example for lack of credits) are marked FAILED.
    """
    now = now or utcnow()

    with tracer.start_as_current_span("campaigns.process_due_entries") as span:
        due = db.execute(
            select(ScheduledEntry.id, ScheduledEntry.tenant_id, ScheduledEntry.payload, ScheduledEntry.campaign_id)
            .join(ScheduledCampaign, ScheduledCampaign.id == ScheduledEntry.campaign_id)
            .where(
                ScheduledEntry.status == EntryStatus.SCHEDULED,
                ScheduledEntry.scheduled_at <= now,
                ScheduledCampaign.status == CampaignStatus.ACTIVE,
            )
            .order_by(ScheduledEntry.scheduled_at, ScheduledEntry.id)
        ).all()
        db.rollback()

        spawned = 0
        for entry in due:
            claimed = db.execute(
                update(ScheduledEntry)
                .where(
                    ScheduledEntry.id == entry.id,
                    ScheduledEntry.status == EntryStatus.SCHEDULED,
                )
                .values(status=EntryStatus.PROCESSING, executed_at=now)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                db.rollback()
                continue

            try:
                job = job_service.create_job(
                    db,
                    entry.tenant_id,
                    JobKind.BLOG_GENERATION,
                    job_service.build_blog_units([entry.payload]),
                    params={"campaign_id": entry.campaign_id, "entry_id": entry.id},
                    commit=False,
                )
                db.execute(
                    update(ScheduledEntry)
                    .where(ScheduledEntry.id == entry.id)
                    .values(job_id=job.id)
                    .execution_options(synchronize_session=False)
                )
                db.commit()
                spawned += 1
                logger.info("Scheduled entry %s spawned job %s", entry.id, job.id)
            except ContentOpsError as e:
                db.rollback()
                _fail_scheduled_entry(db, entry.id, str(e), now)

        span.set_attribute("campaigns.spawned", spawned)

    return spawned


def _fail_scheduled_entry(db: Session, entry_id: int, error: str, now: datetime) -> None:
    db.execute(
        update(ScheduledEntry)
        .where(
            ScheduledEntry.id == entry_id,
            ScheduledEntry.status == EntryStatus.SCHEDULED,
        )
        .values(status=EntryStatus.FAILED, error=error, executed_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    logger.warning("Scheduled entry %s failed: %s", entry_id, error)


def sync_entry_statuses(db: Session) -> int:
    """
    Move PROCESSING entries to the outcome of their job, then complete
    campaigns that have nothing left to run. Returns the entries updated.
    """
    updated = 0

    finished = db.execute(
        select(ScheduledEntry.id, Job.status, Job.error)
        .join(Job, Job.id == ScheduledEntry.job_id)
        .where(
            ScheduledEntry.status == EntryStatus.PROCESSING,
            Job.status.in_((JobStatus.DONE, JobStatus.FAILED, JobStatus.CANCELED)),
        )
    ).all()

    for entry_id, job_status, job_error in finished:
        if job_status == JobStatus.DONE:
            values = {"status": EntryStatus.COMPLETED}
        else:
            values = {"status": EntryStatus.FAILED, "error": job_error or f"Job {job_status.lower()}"}

        updated += db.execute(
            update(ScheduledEntry)
            .where(
                ScheduledEntry.id == entry_id,
                ScheduledEntry.status == EntryStatus.PROCESSING,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        ).rowcount

    # Job row deleted out from under the entry (job_id was SET NULL)
    updated += db.execute(
        update(ScheduledEntry)
        .where(
            ScheduledEntry.status == EntryStatus.PROCESSING,
            ScheduledEntry.job_id.is_(None),
        )
        .values(status=EntryStatus.FAILED, error=JOB_MISSING)
        .execution_options(synchronize_session=False)
    ).rowcount

    open_entries = (
        select(ScheduledEntry.id)
        .where(
            ScheduledEntry.campaign_id == ScheduledCampaign.id,
            ScheduledEntry.status.not_in(EntryStatus.TERMINAL),
        )
        .exists()
    )
    any_entries = (
        select(ScheduledEntry.id)
        .where(ScheduledEntry.campaign_id == ScheduledCampaign.id)
        .exists()
    )
    completed = db.execute(
        update(ScheduledCampaign)
        .where(
            and_(
                ScheduledCampaign.status == CampaignStatus.ACTIVE,
                any_entries,
                ~open_entries,
            )
        )
        .values(status=CampaignStatus.COMPLETED)
        .execution_options(synchronize_session=False)
    ).rowcount

    db.commit()

    if updated or completed:
        logger.info("Synced %d scheduled entries, completed %d campaign(s)", updated, completed)
    return updated
