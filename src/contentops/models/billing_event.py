"""
BillingEvent: verified billing webhook events already applied.

The unique event_id makes redelivered webhooks a no-op.
"""
from sqlalchemy import Column, String

from contentops.db.database import Base
from contentops.models.base_model import bigint_pk, tenant_fk, timestamp_created


class BillingEvent(Base):
    __tablename__ = "billing_events"

    id = bigint_pk()
    event_id = Column(String(255), nullable=False, unique=True)
    tenant_id = tenant_fk()
    event_type = Column(String(50), nullable=False)
    plan_id = Column(String(50), nullable=True)
    received_at = timestamp_created()
