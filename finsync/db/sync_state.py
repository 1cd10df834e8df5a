"""
Sync state management for report syncs.

Records the outcome of the latest sync per (tenant, domain) so operators can
see when a tenant last synced successfully and why the last run failed.
"""

import json
import logging
from datetime import datetime
from typing import Any

from sqlalchemy import Column, DateTime, Index, Integer, Text, func
from sqlalchemy.orm import Session

from .models import Base
from .upserts import dialect_insert
from finsync.utils.time_windows import ensure_utc, utc_now

logger = logging.getLogger(__name__)


class SyncState(Base):
    """
    Latest sync outcome for one tenant and sync domain.

    ``domain`` names the kind of sync, e.g. ``quickbooks_reports``.
    """

    __tablename__ = "sync_state"

    tenant_id = Column(Text, primary_key=True)
    domain = Column(Text, primary_key=True)
    last_synced_at = Column(DateTime(timezone=True))
    status = Column(Text, default="success")  # success, running, error
    error_count = Column(Integer, default=0)  # Consecutive error count
    error_message = Column(Text)
    sync_metadata = Column(Text)  # JSON metadata (counts, period label)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (Index("ix_sync_state_status", "status"),)


def update_sync_state(
    session: Session,
    tenant_id: str,
    domain: str,
    status: str,
    last_synced_at: datetime | None = None,
    error_message: str | None = None,
    sync_metadata: dict[str, Any] | None = None,
) -> None:
    """
    Upsert sync state for a tenant and domain.

    Consecutive errors increment error_count; a success resets it.
    last_synced_at only moves on success, so it marks the last good sync.
    """
    if status == "success":
        last_synced_at = ensure_utc(last_synced_at or utc_now())
    else:
        last_synced_at = None
    metadata_json = json.dumps(sync_metadata, default=str) if sync_metadata else None

    stmt = dialect_insert(session, SyncState.__table__).values(
        tenant_id=tenant_id,
        domain=domain,
        last_synced_at=last_synced_at,
        status=status,
        error_count=1 if status == "error" else 0,
        error_message=error_message,
        sync_metadata=metadata_json,
        updated_at=utc_now(),
    )

    if status == "error":
        error_count = SyncState.__table__.c.error_count + 1
    elif status == "success":
        error_count = 0
    else:
        error_count = SyncState.__table__.c.error_count

    if status == "success":
        synced_at = stmt.excluded.last_synced_at
    else:
        synced_at = SyncState.__table__.c.last_synced_at

    stmt = stmt.on_conflict_do_update(
        index_elements=["tenant_id", "domain"],
        set_={
            "last_synced_at": synced_at,
            "status": stmt.excluded.status,
            "error_count": error_count,
            "error_message": stmt.excluded.error_message,
            "sync_metadata": stmt.excluded.sync_metadata,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    session.execute(stmt)

    logger.debug(f"Updated sync state for {tenant_id}/{domain}: {status}")


def get_sync_state(session: Session, tenant_id: str, domain: str) -> SyncState | None:
    """Get full sync state for a tenant and domain."""
    return session.get(SyncState, (tenant_id, domain))


def delete_sync_states(session: Session, tenant_id: str) -> int:
    """Remove every sync state row for a tenant."""
    return session.query(SyncState).filter(SyncState.tenant_id == tenant_id).delete()
