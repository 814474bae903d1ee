"""
Job and JobItem models.

A Job is one bulk request scoped to a tenant; it exclusively owns its items.
Job aggregate counters are only ever changed with SQL expressions
(``completed_items = completed_items + 1``) by the job repository.
"""
import enum

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, JSON, String, Text, text
from sqlalchemy.orm import relationship

from contentops.db.database import Base
from contentops.models.base_model import bigint_fk, bigint_pk, tenant_fk, timestamp_created
from contentops.models.mixins import TimestampMixin


class JobKind(str, enum.Enum):
    TEXT_OPTIMIZATION = "text_optimization"
    IMAGE_OPTIMIZATION = "image_optimization"
    BLOG_GENERATION = "blog_generation"


class JobStatus:
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    DONE = "DONE"
    FAILED = "FAILED"
    CANCELED = "CANCELED"

    OPEN = (PENDING, RUNNING)


class ItemStatus:
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    PROCESSING = "PROCESSING"
    DONE = "DONE"
    FAILED = "FAILED"

    IN_FLIGHT = (RUNNING, PROCESSING)
    TERMINAL = (DONE, FAILED)


class Job(Base):
    __tablename__ = "jobs"

    id = bigint_pk()
    tenant_id = tenant_fk()

    kind = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default=JobStatus.PENDING)

    total_items = Column(Integer, nullable=False, default=0)
    completed_items = Column(Integer, nullable=False, default=0)
    failed_items = Column(Integer, nullable=False, default=0)

    credits_per_item = Column(Integer, nullable=False, default=0)
    credits_reserved = Column(Integer, nullable=False, default=0)

    # target language, user prompt, source scope/ids
    params = Column(JSON, nullable=True)

    created_at = timestamp_created()
    started_at = Column(DateTime(timezone=True), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    error = Column(Text, nullable=True)

    tenant = relationship("Tenant", back_populates="jobs")
    items = relationship(
        "JobItem",
        back_populates="job",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="JobItem.id",
    )

    __table_args__ = (
        Index("ix_jobs_tenant_status", "tenant_id", "status"),
    )

    def __repr__(self):
        return (
            f"<Job(id={self.id}, kind={self.kind}, status={self.status}, "
            f"{self.completed_items}+{self.failed_items}/{self.total_items})>"
        )


_ACTIVE_ITEM_STATUSES = "status IN ('PENDING', 'RUNNING', 'PROCESSING')"
_PENDING_ONLY = "status = 'PENDING'"


class JobItem(Base, TimestampMixin):
    __tablename__ = "job_items"

    id = bigint_pk()
    job_id = bigint_fk("jobs", nullable=False)
    # Denormalized from the job so fair claiming never joins per row
    tenant_id = tenant_fk()
    kind = Column(String(50), nullable=False)

    payload = Column(JSON, nullable=False)
    status = Column(String(20), nullable=False, default=ItemStatus.PENDING)

    # Correlation id returned by the external generator on submit
    external_id = Column(String(255), nullable=True)
    result = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    published = Column(Boolean, nullable=False, default=False)

    claimed_at = Column(DateTime(timezone=True), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    # Set on every poll of a PROCESSING item; the sweep visits least recently polled first
    last_polled_at = Column(DateTime(timezone=True), nullable=True)

    job = relationship("Job", back_populates="items")
    publish_record = relationship(
        "PublishRecord",
        back_populates="job_item",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index(
            "ix_job_items_tenant_status_id",
            "tenant_id", "status", "id",
            postgresql_where=text(_ACTIVE_ITEM_STATUSES),
            sqlite_where=text(_ACTIVE_ITEM_STATUSES),
        ),
        Index(
            "ix_job_items_status_id",
            "status", "id",
            postgresql_where=text(_PENDING_ONLY),
            sqlite_where=text(_PENDING_ONLY),
        ),
        Index("ix_job_items_status_claimed_at", "status", "claimed_at"),
        Index("ix_job_items_status_last_polled_at", "status", "last_polled_at"),
    )

    def __repr__(self):
        return f"<JobItem(id={self.id}, job={self.job_id}, status={self.status})>"
