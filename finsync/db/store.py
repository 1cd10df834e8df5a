"""
Store handle for connections, periods, reports, metrics and sync state.

Every public method is its own committed unit of work. Components receive a
FinancialStore in their constructor instead of reaching for a global client,
so tests can hand them a store bound to an in-memory database.
"""

import json
import logging
from collections.abc import Callable, Generator, Iterable, Sequence
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .deps import get_session
from .models import (
    CONNECTION_STATUSES,
    METRIC_KEYS,
    REPORT_TYPES,
    FinancialMetric,
    FinancialReport,
    QuickBooksConnection,
    ReportPeriod,
)
from .sync_state import SyncState, delete_sync_states, get_sync_state, update_sync_state
from .upserts import exec_upsert
from finsync.utils.time_windows import utc_now

logger = logging.getLogger(__name__)

CONNECTION_UPDATE_COLS = [
    "realm_id",
    "access_token",
    "refresh_token",
    "access_expires_at",
    "refresh_expires_at",
    "scope",
    "status",
    "last_refresh_error",
    "updated_at",
]


def _check_allowed(kind: str, value: Any, allowed: Sequence[str]) -> None:
    if value not in allowed:
        raise ValueError(f"Unknown {kind} {value!r}; expected one of {allowed}")


def normalize_raw_json(raw: Any) -> dict[str, Any]:
    """Coerce a provider payload into a JSON-serializable object for a JSON column."""
    if raw is None:
        return {}
    try:
        parsed = json.loads(json.dumps(raw))
    except (TypeError, ValueError):
        return {"value": str(raw)}
    if isinstance(parsed, dict):
        return parsed
    return {"value": parsed}


class FinancialStore:
    """Read/write operations the connector and sync engine need from the database."""

    def __init__(self, session_factory: Callable[[], Session] | None = None):
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        with get_session(self._session_factory) as session:
            yield session

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def get_connection(self, tenant_id: str) -> QuickBooksConnection | None:
        with self._session() as session:
            return session.get(QuickBooksConnection, tenant_id)

    def save_connection(
        self,
        tenant_id: str,
        realm_id: str,
        access_token: str,
        refresh_token: str,
        access_expires_at: datetime | None,
        refresh_expires_at: datetime | None,
        scope: str | None,
        status: str = "connected",
    ) -> None:
        """Insert or replace a tenant's connection, clearing any previous error."""
        _check_allowed("connection status", status, CONNECTION_STATUSES)
        row = {
            "tenant_id": tenant_id,
            "realm_id": realm_id,
            "access_token": access_token,
            "refresh_token": refresh_token,
            "access_expires_at": access_expires_at,
            "refresh_expires_at": refresh_expires_at,
            "scope": scope,
            "status": status,
            "last_refresh_error": None,
            "updated_at": utc_now(),
        }
        with self._session() as session:
            exec_upsert(
                session,
                QuickBooksConnection.__table__,
                [row],
                conflict_cols=["tenant_id"],
                update_cols=CONNECTION_UPDATE_COLS,
            )

    def update_connection(self, tenant_id: str, **fields: Any) -> bool:
        """Update connection columns; returns False when the tenant has no connection."""
        if "status" in fields:
            _check_allowed("connection status", fields["status"], CONNECTION_STATUSES)
        fields["updated_at"] = utc_now()
        with self._session() as session:
            result = session.execute(
                update(QuickBooksConnection)
                .where(QuickBooksConnection.tenant_id == tenant_id)
                .values(**fields)
            )
            return result.rowcount > 0

    def swap_connection_tokens(
        self, tenant_id: str, expected_access_expires_at: datetime | None, **fields: Any
    ) -> bool:
        """
        Conditionally update a connection after a refresh.

        The write only applies if the stored access expiry still equals the
        value the caller read before refreshing. Returns False when another
        refresh already replaced the credentials.
        """
        if "status" in fields:
            _check_allowed("connection status", fields["status"], CONNECTION_STATUSES)
        fields["updated_at"] = utc_now()
        column = QuickBooksConnection.access_expires_at
        if expected_access_expires_at is None:
            expiry_matches = column.is_(None)
        else:
            expiry_matches = column == expected_access_expires_at

        with self._session() as session:
            result = session.execute(
                update(QuickBooksConnection)
                .where(QuickBooksConnection.tenant_id == tenant_id, expiry_matches)
                .values(**fields)
            )
            return result.rowcount > 0

    def delete_connection(self, tenant_id: str) -> bool:
        """Delete a tenant's connection and sync state. Reports and metrics are kept."""
        with self._session() as session:
            deleted = (
                session.query(QuickBooksConnection)
                .filter(QuickBooksConnection.tenant_id == tenant_id)
                .delete()
            )
            delete_sync_states(session, tenant_id)
            return deleted > 0

    def list_connections(self) -> list[QuickBooksConnection]:
        with self._session() as session:
            return list(session.scalars(select(QuickBooksConnection)))

    def list_tenants_expiring_before(self, cutoff: datetime) -> list[str]:
        """Tenant ids of connected connections whose access token expires at or before cutoff."""
        with self._session() as session:
            stmt = (
                select(QuickBooksConnection.tenant_id)
                .where(
                    QuickBooksConnection.status == "connected",
                    QuickBooksConnection.access_expires_at.is_not(None),
                    QuickBooksConnection.access_expires_at <= cutoff,
                )
                .order_by(QuickBooksConnection.access_expires_at)
            )
            return list(session.scalars(stmt))

    # ------------------------------------------------------------------
    # Periods
    # ------------------------------------------------------------------

    def _find_period_id(
        self, tenant_id: str, period_type: str, start_date: date, end_date: date
    ) -> int | None:
        with self._session() as session:
            return session.scalar(
                select(ReportPeriod.id).where(
                    ReportPeriod.tenant_id == tenant_id,
                    ReportPeriod.period_type == period_type,
                    ReportPeriod.start_date == start_date,
                    ReportPeriod.end_date == end_date,
                )
            )

    def ensure_period(
        self,
        tenant_id: str,
        period_type: str,
        start_date: date,
        end_date: date,
        label: str,
    ) -> int:
        """
        Return the id of the period for this range, creating it if needed.

        Select-then-insert; a unique-constraint conflict from a concurrent
        insert falls back to selecting the winner's row.
        """
        existing = self._find_period_id(tenant_id, period_type, start_date, end_date)
        if existing is not None:
            return existing

        try:
            with self._session() as session:
                period = ReportPeriod(
                    tenant_id=tenant_id,
                    period_type=period_type,
                    start_date=start_date,
                    end_date=end_date,
                    label=label,
                )
                session.add(period)
                session.flush()
                return period.id
        except IntegrityError as e:
            after_conflict = self._find_period_id(tenant_id, period_type, start_date, end_date)
            if after_conflict is not None:
                return after_conflict
            raise RuntimeError(f"Failed to ensure period {label}: {e}") from e

    def count_periods(self, tenant_id: str) -> int:
        with self._session() as session:
            return session.query(ReportPeriod).filter(ReportPeriod.tenant_id == tenant_id).count()

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def save_report(
        self, tenant_id: str, report_type: str, period_id: int, raw_json: Any
    ) -> None:
        """Upsert a raw report payload and refresh its synced_at timestamp."""
        _check_allowed("report type", report_type, REPORT_TYPES)
        row = {
            "tenant_id": tenant_id,
            "report_type": report_type,
            "period_id": period_id,
            "source": "quickbooks",
            "raw_json": normalize_raw_json(raw_json),
            "synced_at": utc_now(),
        }
        with self._session() as session:
            exec_upsert(
                session,
                FinancialReport.__table__,
                [row],
                conflict_cols=["tenant_id", "report_type", "period_id"],
                update_cols=["source", "raw_json", "synced_at"],
            )

    def get_reports_for_period(
        self, tenant_id: str, period_id: int, report_types: Iterable[str] | None = None
    ) -> dict[str, dict[str, Any]]:
        """Stored payloads for a period keyed by report type."""
        with self._session() as session:
            stmt = select(FinancialReport.report_type, FinancialReport.raw_json).where(
                FinancialReport.tenant_id == tenant_id,
                FinancialReport.period_id == period_id,
            )
            if report_types is not None:
                stmt = stmt.where(FinancialReport.report_type.in_(list(report_types)))
            return {report_type: raw for report_type, raw in session.execute(stmt)}

    def count_reports(self, tenant_id: str, period_id: int | None = None) -> int:
        with self._session() as session:
            query = session.query(FinancialReport).filter(FinancialReport.tenant_id == tenant_id)
            if period_id is not None:
                query = query.filter(FinancialReport.period_id == period_id)
            return query.count()

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def save_metrics(
        self, tenant_id: str, period_id: int, entries: Sequence[dict[str, Any]]
    ) -> int:
        """Upsert metric entries ({metric_key, value, unit}) for a period."""
        for entry in entries:
            _check_allowed("metric key", entry["metric_key"], METRIC_KEYS)
        rows = [
            {
                "tenant_id": tenant_id,
                "period_id": period_id,
                "metric_key": entry["metric_key"],
                "value": entry["value"],
                "unit": entry["unit"],
                "updated_at": utc_now(),
            }
            for entry in entries
        ]
        with self._session() as session:
            return exec_upsert(
                session,
                FinancialMetric.__table__,
                rows,
                conflict_cols=["tenant_id", "period_id", "metric_key"],
                update_cols=["value", "unit", "updated_at"],
            )

    def get_metrics(self, tenant_id: str, period_id: int) -> dict[str, Decimal]:
        with self._session() as session:
            stmt = select(FinancialMetric.metric_key, FinancialMetric.value).where(
                FinancialMetric.tenant_id == tenant_id,
                FinancialMetric.period_id == period_id,
            )
            return {key: value for key, value in session.execute(stmt)}

    # ------------------------------------------------------------------
    # Sync state
    # ------------------------------------------------------------------

    def record_sync_state(
        self,
        tenant_id: str,
        domain: str,
        status: str,
        error_message: str | None = None,
        sync_metadata: dict[str, Any] | None = None,
    ) -> None:
        with self._session() as session:
            update_sync_state(
                session,
                tenant_id,
                domain,
                status,
                error_message=error_message,
                sync_metadata=sync_metadata,
            )

    def get_sync_state(self, tenant_id: str, domain: str) -> SyncState | None:
        with self._session() as session:
            return get_sync_state(session, tenant_id, domain)
