"""
PublishRecord: proof that a JobItem's result was pushed to the catalog.

The unique constraint on job_item_id is what makes publishing idempotent.
A record is committed as PENDING_PUSH before the catalog is contacted and
becomes PUSHED once the push succeeded; a failed push deletes it again.
"""
from sqlalchemy import Column, DateTime, JSON, String, UniqueConstraint
from sqlalchemy.orm import relationship

from contentops.db.database import Base
from contentops.models.base_model import bigint_fk, bigint_pk, tenant_fk
from contentops.utils.clock import utcnow


class PublishStatus:
    PENDING_PUSH = "PENDING_PUSH"
    PUSHED = "PUSHED"


class PublishRecord(Base):
    __tablename__ = "publish_records"

    id = bigint_pk()
    job_item_id = bigint_fk("job_items", nullable=False)
    tenant_id = tenant_fk()

    status = Column(String(20), nullable=False, default=PublishStatus.PENDING_PUSH)
    applied_value = Column(JSON, nullable=True)
    external_ref = Column(String(255), nullable=True)
    # When the current publisher took the record; a stale PENDING_PUSH can be taken over
    claimed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    published_at = Column(DateTime(timezone=True), nullable=True)

    job_item = relationship("JobItem", back_populates="publish_record")

    __table_args__ = (
        UniqueConstraint("job_item_id", name="uq_publish_records_job_item"),
    )

    def __repr__(self):
        return f"<PublishRecord(item={self.job_item_id}, status={self.status}, ref={self.external_ref})>"
