from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from contentops.db.database import get_db
from contentops.models.tenant import Tenant
from contentops.services.tenant_service import get_or_create_tenant


def get_tenant_id(x_tenant_id: Optional[str] = Header(None)):
    """
    Extract tenant ID from X-Tenant-ID header.
    The upstream auth layer has already validated it.
    """
    if not x_tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-ID header is required"
        )

    return x_tenant_id


def get_current_tenant(
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> Tenant:
    """Tenant row for the request; first contact provisions the free plan."""
    return get_or_create_tenant(db, tenant_id)
