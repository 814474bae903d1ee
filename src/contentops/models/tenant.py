"""
Tenant model: one connected store/account.

Credit invariants:
- credits_used_this_cycle only grows inside a billing cycle; it is zeroed by
  the cycle reset when the tenant's own next_billing_at passes.
- credits_total only grows (top-ups) except through the explicit, audited
  plan reconciliation, which never lowers the available balance.
"""
from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from contentops.db.database import Base
from contentops.models.mixins import TimestampMixin


class Tenant(Base, TimestampMixin):
    __tablename__ = "tenants"

    id = Column(String(255), primary_key=True)
    name = Column(String, nullable=False)
    plan_id = Column(String(50), nullable=False, default="free")

    credits_total = Column(Integer, nullable=False, default=0)
    credits_used_this_cycle = Column(Integer, nullable=False, default=0)

    subscription_start = Column(DateTime(timezone=True), nullable=True)
    next_billing_at = Column(DateTime(timezone=True), nullable=True, index=True)

    jobs = relationship("Job", back_populates="tenant", passive_deletes=True)

    @property
    def credits_available(self) -> int:
        return (self.credits_total or 0) - (self.credits_used_this_cycle or 0)

    def __repr__(self):
        return f"<Tenant(id={self.id}, plan={self.plan_id}, available={self.credits_available})>"
