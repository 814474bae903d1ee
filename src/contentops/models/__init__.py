from contentops.db.database import Base

# Import all models so Alembic and create_all can discover them
from .tenant import Tenant
from .job import Job, JobItem, JobKind, JobStatus, ItemStatus
from .publish_record import PublishRecord
from .credit_transaction import CreditTransaction, CreditEntryType
from .billing_event import BillingEvent
from .scheduled_campaign import ScheduledCampaign, ScheduledEntry, CampaignStatus, EntryStatus
