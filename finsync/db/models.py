"""
SQLAlchemy models for the finsync store.

Tables:
- quickbooks_connections: one OAuth connection per tenant (encrypted credentials)
- financial_report_periods: de-duplicated date ranges reports are grouped by
- financial_reports: raw QuickBooks report payloads per (tenant, type, period)
- financial_metrics: normalized metrics derived from reports
"""

from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()

CONNECTION_STATUSES = ("connected", "needs_reauth", "error", "disconnected", "pending")
REPORT_TYPES = (
    "profit_and_loss",
    "balance_sheet",
    "cash_flow",
    "ar_aging",
    "ap_aging",
    "chart_of_accounts",
)
METRIC_KEYS = (
    "revenue",
    "expenses",
    "net_income",
    "profit_margin_pct",
    "cash",
    "accounts_receivable",
    "accounts_payable",
)


class QuickBooksConnection(Base):
    """
    Stored OAuth credential state linking a tenant to one QuickBooks company.

    access_token/refresh_token hold ``enc:v1:`` ciphertext, never plaintext.
    """

    __tablename__ = "quickbooks_connections"

    tenant_id = Column(Text, primary_key=True)
    realm_id = Column(Text, nullable=False)
    access_token = Column(Text)
    refresh_token = Column(Text)
    access_expires_at = Column(DateTime(timezone=True))
    refresh_expires_at = Column(DateTime(timezone=True))
    scope = Column(Text)
    status = Column(Text, nullable=False, default="pending")
    last_refresh_error = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("ix_quickbooks_connections_status_expiry", "status", "access_expires_at"),
    )


class ReportPeriod(Base):
    """Named date range scoped to a tenant."""

    __tablename__ = "financial_report_periods"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Text, nullable=False)
    period_type = Column(Text, nullable=False)  # 'month' | 'quarter'
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    label = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "period_type",
            "start_date",
            "end_date",
            name="uq_financial_report_periods_range",
        ),
        Index("ix_financial_report_periods_tenant", "tenant_id"),
    )


class FinancialReport(Base):
    """Raw QuickBooks report payload for one (tenant, report_type, period)."""

    __tablename__ = "financial_reports"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Text, nullable=False)
    report_type = Column(Text, nullable=False)
    period_id = Column(
        Integer, ForeignKey("financial_report_periods.id", ondelete="CASCADE"), nullable=False
    )
    source = Column(Text, nullable=False, default="quickbooks")
    raw_json = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False)
    synced_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "report_type", "period_id", name="uq_financial_reports_type_period"
        ),
        Index("ix_financial_reports_period", "period_id"),
    )


class FinancialMetric(Base):
    """Normalized numeric fact derived from reports."""

    __tablename__ = "financial_metrics"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Text, nullable=False)
    period_id = Column(
        Integer, ForeignKey("financial_report_periods.id", ondelete="CASCADE"), nullable=False
    )
    metric_key = Column(Text, nullable=False)
    value = Column(Numeric(18, 2), nullable=False)
    unit = Column(Text, nullable=False)  # 'currency' | 'ratio'
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "period_id", "metric_key", name="uq_financial_metrics_period_key"
        ),
    )
