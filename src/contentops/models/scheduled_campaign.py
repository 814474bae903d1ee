"""
Scheduled blog campaigns.

A campaign is a tenant-defined list of future blog generation jobs. Each
entry spawns exactly one Job when its scheduled time arrives.
"""
from sqlalchemy import Column, DateTime, Index, JSON, String, Text
from sqlalchemy.orm import relationship

from contentops.db.database import Base
from contentops.models.base_model import bigint_fk, bigint_pk, tenant_fk, timestamp_created
from contentops.models.mixins import TimestampMixin


class CampaignStatus:
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    ARCHIVED = "ARCHIVED"


class EntryStatus:
    SCHEDULED = "SCHEDULED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    TERMINAL = (COMPLETED, FAILED, CANCELLED)


class ScheduledCampaign(Base, TimestampMixin):
    __tablename__ = "scheduled_campaigns"

    id = bigint_pk()
    tenant_id = tenant_fk()
    name = Column(String(500), nullable=False)
    status = Column(String(20), nullable=False, default=CampaignStatus.ACTIVE)
    archived_at = Column(DateTime(timezone=True), nullable=True)

    entries = relationship(
        "ScheduledEntry",
        back_populates="campaign",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ScheduledEntry.scheduled_at",
    )

    def __repr__(self):
        return f"<ScheduledCampaign(id={self.id}, name={self.name}, status={self.status})>"


class ScheduledEntry(Base):
    __tablename__ = "scheduled_entries"

    id = bigint_pk()
    campaign_id = bigint_fk("scheduled_campaigns", nullable=False)
    tenant_id = tenant_fk()

    # blog source (product / keyword) and an optional pre-selected idea
    payload = Column(JSON, nullable=False)
    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(20), nullable=False, default=EntryStatus.SCHEDULED)

    job_id = bigint_fk("jobs", nullable=True, ondelete="SET NULL")
    error = Column(Text, nullable=True)
    created_at = timestamp_created()
    executed_at = Column(DateTime(timezone=True), nullable=True)

    campaign = relationship("ScheduledCampaign", back_populates="entries")
    job = relationship("Job")

    __table_args__ = (
        Index("ix_scheduled_entries_status_scheduled_at", "status", "scheduled_at"),
    )

    def __repr__(self):
        return f"<ScheduledEntry(id={self.id}, at={self.scheduled_at}, status={self.status})>"
