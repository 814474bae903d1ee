from sqlalchemy import Column, Integer, String, Text

from contentops.db.database import Base
from contentops.models.base_model import BigIntId, bigint_pk, tenant_fk, timestamp_created


class CreditEntryType:
    RESERVE = "reserve"
    RELEASE = "release"
    TOP_UP = "top_up"
    CYCLE_RESET = "cycle_reset"
    RECONCILE = "reconcile"


class CreditTransaction(Base):
    """Append-only audit trail of every credit mutation."""
    __tablename__ = "credit_transactions"

    id = bigint_pk()
    tenant_id = tenant_fk()
    entry_type = Column(String(20), nullable=False)
    amount = Column(Integer, nullable=False)
    # Not a foreign key: audit rows outlive deleted jobs
    job_id = Column(BigIntId, nullable=True, index=True)
    # Billing event id or the operator that triggered the mutation
    reference = Column(String(255), nullable=True)
    note = Column(Text, nullable=True)
    created_at = timestamp_created()

    def __repr__(self):
        return f"<CreditTransaction(tenant={self.tenant_id}, {self.entry_type} {self.amount})>"
