# src/contentops/repositories/job_repository.py

"""
Job Ledger.

Durable Job/JobItem records and their state machine. Every transition is a
conditional UPDATE guarded on the current status, and every aggregate counter
is incremented in SQL, so concurrent workers completing items of the same job
never lose an update.

Nothing here commits: callers own the transaction so that an item transition,
its counter increment and the job finalization land together.
"""

import logging
from typing import Iterable

from opentelemetry import trace
from sqlalchemy import case, select, update
from sqlalchemy.orm import Session

from contentops.models.job import ItemStatus, Job, JobItem, JobKind, JobStatus
from contentops.utils.clock import utcnow

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

ALL_ITEMS_FAILED = "All items failed"


class JobRepository:

    @staticmethod
    def create_job(
        db: Session,
        *,
        tenant_id: str,
        kind: JobKind,
        payloads: Iterable[dict],
        credits_per_item: int,
        params: dict | None = None,
    ) -> Job:
        """Insert a Job and one PENDING JobItem per payload (flush only)."""
        payloads = list(payloads)

        with tracer.start_as_current_span("db.create_job") as span:
            span.set_attribute("tenant_id", tenant_id)
            span.set_attribute("job.kind", kind.value)
            span.set_attribute("job.total_items", len(payloads))

            job = Job(
                tenant_id=tenant_id,
                kind=kind.value,
                status=JobStatus.PENDING,
                total_items=len(payloads),
                completed_items=0,
                failed_items=0,
                credits_per_item=credits_per_item,
                credits_reserved=credits_per_item * len(payloads),
                params=params or {},
            )
            db.add(job)
            db.flush()

            db.add_all(
                JobItem(
                    job_id=job.id,
                    tenant_id=tenant_id,
                    kind=kind.value,
                    payload=payload,
                    status=ItemStatus.PENDING,
                    published=False,
                )
                for payload in payloads
            )
            db.flush()

        logger.info(
            "Created %s job id=%s with %d items tenant=%s",
            kind.value,
            job.id,
            len(payloads),
            tenant_id,
        )
        return job

    @staticmethod
    def get_job(db: Session, job_id: int, tenant_id: str) -> Job | None:
        with tracer.start_as_current_span("db.get_job") as span:
            span.set_attribute("job.id", job_id)
            span.set_attribute("tenant_id", tenant_id)

            return (
                db.query(Job)
                .filter(Job.id == job_id, Job.tenant_id == tenant_id)
                .first()
            )

    @staticmethod
    def list_jobs(
        db: Session,
        tenant_id: str,
        status: str | None = None,
        kind: str | None = None,
    ) -> list[Job]:
        with tracer.start_as_current_span("db.list_jobs") as span:
            span.set_attribute("tenant_id", tenant_id)

            query = db.query(Job).filter(Job.tenant_id == tenant_id)
            if status:
                query = query.filter(Job.status == status.upper())
            if kind:
                query = query.filter(Job.kind == kind)

            results = query.order_by(Job.created_at.desc(), Job.id.desc()).all()

        logger.debug("Listed %d jobs tenant=%s", len(results), tenant_id)
        return results

    @staticmethod
    def get_items(db: Session, job_id: int, tenant_id: str) -> list[JobItem]:
        with tracer.start_as_current_span("db.get_job_items") as span:
            span.set_attribute("job.id", job_id)
            span.set_attribute("tenant_id", tenant_id)

            return (
                db.query(JobItem)
                .filter(JobItem.job_id == job_id, JobItem.tenant_id == tenant_id)
                .order_by(JobItem.id)
                .all()
            )

    @staticmethod
    def get_item(db: Session, item_id: int, tenant_id: str | None = None) -> JobItem | None:
        query = db.query(JobItem).filter(JobItem.id == item_id)
        if tenant_id is not None:
            query = query.filter(JobItem.tenant_id == tenant_id)
        return query.first()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    @staticmethod
    def mark_job_started(db: Session, job_id: int) -> bool:
        """PENDING -> RUNNING on the first claim; started_at is set once."""
        result = db.execute(
            update(Job)
            .where(Job.id == job_id, Job.status == JobStatus.PENDING)
            .values(status=JobStatus.RUNNING, started_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def mark_processing(db: Session, item_id: int, external_id: str) -> bool:
        """RUNNING -> PROCESSING, storing the external correlation id."""
        with tracer.start_as_current_span("db.mark_item_processing") as span:
            span.set_attribute("item.id", item_id)

            result = db.execute(
                update(JobItem)
                .where(
                    JobItem.id == item_id,
                    JobItem.status == ItemStatus.RUNNING,
                    JobItem.external_id.is_(None),
                )
                .values(
                    status=ItemStatus.PROCESSING,
                    external_id=external_id,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
        return result.rowcount == 1

    @staticmethod
    def complete_item(db: Session, item_id: int, result: dict) -> bool:
        """
        In-flight -> DONE with the result payload.

        Returns False without touching the job if the item is not in flight
        (already terminal, or never claimed).
        """
        return JobRepository._finish_item(
            db, item_id, ItemStatus.DONE, result=result, error=None
        )

    @staticmethod
    def fail_item(db: Session, item_id: int, error: str) -> bool:
        return JobRepository._finish_item(
            db, item_id, ItemStatus.FAILED, result=None, error=error
        )

    @staticmethod
    def _finish_item(
        db: Session,
        item_id: int,
        new_status: str,
        *,
        result: dict | None,
        error: str | None,
    ) -> bool:
        with tracer.start_as_current_span("db.finish_job_item") as span:
            span.set_attribute("item.id", item_id)
            span.set_attribute("item.new_status", new_status)

            job_id = db.execute(
                select(JobItem.job_id).where(JobItem.id == item_id)
            ).scalar_one_or_none()
            if job_id is None:
                logger.warning("Cannot finish missing item %s", item_id)
                return False

            now = utcnow()
            values = {
                "status": new_status,
                "finished_at": now,
                "updated_at": now,
                "error": error,
            }
            if result is not None:
                values["result"] = result

            changed = db.execute(
                update(JobItem)
                .where(
                    JobItem.id == item_id,
                    JobItem.status.in_(ItemStatus.IN_FLIGHT),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if changed.rowcount != 1:
                span.set_attribute("item.noop", True)
                logger.debug("Item %s already terminal, skipping %s", item_id, new_status)
                return False

            if new_status == ItemStatus.DONE:
                counter = {"completed_items": Job.completed_items + 1}
            else:
                counter = {"failed_items": Job.failed_items + 1}

            db.execute(
                update(Job)
                .where(Job.id == job_id)
                .values(**counter)
                .execution_options(synchronize_session=False)
            )
            JobRepository.finalize_job(db, job_id)

        logger.debug("Item %s -> %s (job %s)", item_id, new_status, job_id)
        return True

    @staticmethod
    def finalize_job(db: Session, job_id: int) -> bool:
        """
        Flip an open job to DONE/FAILED once every item is terminal.

        DONE if at least one item succeeded (partial failure is DONE with
        failed_items > 0), FAILED if every item failed. CANCELED jobs are
        never rewritten.
        """
        result = db.execute(
            update(Job)
            .where(
                Job.id == job_id,
                Job.status.in_(JobStatus.OPEN),
                Job.completed_items + Job.failed_items >= Job.total_items,
            )
            .values(
                status=case(
                    (Job.completed_items > 0, JobStatus.DONE),
                    else_=JobStatus.FAILED,
                ),
                error=case(
                    (Job.completed_items > 0, Job.error),
                    else_=ALL_ITEMS_FAILED,
                ),
                finished_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        finished = result.rowcount == 1
        if finished:
            logger.info("Job %s finished", job_id)
        return finished

    @staticmethod
    def cancel_job(db: Session, job_id: int, tenant_id: str) -> bool:
        """Open job -> CANCELED. Returns False if it already finished."""
        result = db.execute(
            update(Job)
            .where(
                Job.id == job_id,
                Job.tenant_id == tenant_id,
                Job.status.in_(JobStatus.OPEN),
            )
            .values(status=JobStatus.CANCELED, finished_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def fail_pending_items(db: Session, job_id: int, error: str) -> int:
        """
        PENDING -> FAILED for every unclaimed item of a job.

        Rows a worker claims concurrently are skipped by the status guard, so
        the returned count is exactly the number of items that never ran.
        """
        now = utcnow()
        result = db.execute(
            update(JobItem)
            .where(JobItem.job_id == job_id, JobItem.status == ItemStatus.PENDING)
            .values(
                status=ItemStatus.FAILED,
                error=error,
                finished_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        count = result.rowcount or 0
        if count:
            db.execute(
                update(Job)
                .where(Job.id == job_id)
                .values(failed_items=Job.failed_items + count)
                .execution_options(synchronize_session=False)
            )
        return count
