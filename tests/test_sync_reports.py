"""
Tests for the report sync orchestrator.

The API client is mocked; periods, reports, metrics and sync state are
written to the in-memory store.
"""

from decimal import Decimal
from unittest.mock import Mock, patch

import pytest

from finsync.adapters.quickbooks import QuickBooksClient
from finsync.common.errors import NeedsReauthError, NoConnectionError, QuickBooksApiError
from finsync.jobs.sync_reports import (
    SYNC_DOMAIN,
    ReportSyncService,
    SyncFailure,
    SyncSuccess,
    configured_report_types,
)
from finsync.utils.time_windows import get_single_date_range
from finsync.utils.tokens import AccessTokenResult, TokenManager


@pytest.fixture
def reports(profit_and_loss_report, balance_sheet_report):
    return {
        "profit_and_loss": profit_and_loss_report,
        "balance_sheet": balance_sheet_report,
        "cash_flow": {"Header": {"ReportName": "CashFlow"}, "Rows": {"Row": []}},
        "ar_aging": {"Header": {"ReportName": "AgedReceivables"}},
        "ap_aging": {"Header": {"ReportName": "AgedPayables"}},
        "chart_of_accounts": {"Header": {"ReportName": "AccountList"}},
    }


@pytest.fixture
def mock_token_manager():
    manager = Mock(spec=TokenManager)
    manager.get_valid_access_token.return_value = AccessTokenResult("access", "realm")
    return manager


@pytest.fixture
def client(reports):
    client = Mock(spec=QuickBooksClient)
    client.fetch_report.side_effect = lambda tenant_id, report_type, start, end: reports[report_type]
    return client


@pytest.fixture
def service(store, client, mock_token_manager):
    return ReportSyncService(store, client, mock_token_manager)


def _only_period_id(store, tenant_id="tenant-1"):
    from sqlalchemy import select

    from finsync.db.models import ReportPeriod

    with store._session() as session:
        return session.scalars(select(ReportPeriod.id).where(ReportPeriod.tenant_id == tenant_id)).one()


class TestSyncReports:
    """Test report sync orchestration."""

    def test_full_sync(self, service, store, client):
        result = service.sync_reports("tenant-1", "3m", "month", include_optional=True)

        assert isinstance(result, SyncSuccess)
        assert result.ok is True
        assert result.periods_processed == 1
        assert result.reports_saved == 6
        assert result.errors == []
        assert result.period == get_single_date_range("3m")
        assert client.fetch_report.call_count == 6
        assert store.count_reports("tenant-1") == 6

        state = store.get_sync_state("tenant-1", SYNC_DOMAIN)
        assert state.status == "success"
        assert state.error_count == 0

    def test_required_only(self, service, client, store):
        result = service.sync_reports("tenant-1", "6m", "month", include_optional=False)

        assert result.reports_saved == 2
        fetched = [c.args[1] for c in client.fetch_report.call_args_list]
        assert fetched == ["profit_and_loss", "balance_sheet"]

    def test_fetches_single_range(self, service, client):
        service.sync_reports("tenant-1", "12m", "month", include_optional=False)

        period = get_single_date_range("12m")
        for c in client.fetch_report.call_args_list:
            assert c.args[2:] == (period.start_date, period.end_date)

    def test_metrics_derived(self, service, store):
        service.sync_reports("tenant-1", "3m", "month", include_optional=False)

        metrics = store.get_metrics("tenant-1", _only_period_id(store))
        assert metrics["revenue"] == Decimal("100000.00")
        assert metrics["net_income"] == Decimal("15000.00")
        assert metrics["profit_margin_pct"] == Decimal("15.00")
        assert metrics["cash"] == Decimal("8000.00")
        assert len(metrics) == 7

    def test_no_connection_writes_nothing(self, store, client, token_manager):
        """A tenant without a connection fails before any write."""
        service = ReportSyncService(store, client, token_manager)

        with pytest.raises(NoConnectionError):
            service.sync_reports("tenant-1", "3m", "month", include_optional=False)

        client.fetch_report.assert_not_called()
        assert store.count_periods("tenant-1") == 0
        assert store.count_reports("tenant-1") == 0
        assert store.get_sync_state("tenant-1", SYNC_DOMAIN) is None

    def test_resync_is_idempotent(self, service, store, reports):
        """Running twice keeps one period and one report per type."""
        service.sync_reports("tenant-1", "3m", "month", include_optional=False)
        reports["profit_and_loss"]["Header"]["Time"] = "second-run"
        result = service.sync_reports("tenant-1", "3m", "month", include_optional=False)

        assert result.ok is True
        assert store.count_periods("tenant-1") == 1
        assert store.count_reports("tenant-1") == 2
        stored = store.get_reports_for_period("tenant-1", _only_period_id(store))
        assert stored["profit_and_loss"]["Header"]["Time"] == "second-run"

    def test_quarter_range_uses_quarter_period(self, service, store):
        service.sync_reports("tenant-1", "4q", "month", include_optional=False)
        service.sync_reports("tenant-1", "4q", "quarter", include_optional=False)

        assert store.count_periods("tenant-1") == 1

    def test_optional_report_failure_is_collected(self, service, client, reports, store):
        """One optional report failing does not stop the others."""

        def fetch(tenant_id, report_type, start, end):
            if report_type == "cash_flow":
                raise QuickBooksApiError("Permission Denied Error", 403, code="5020")
            return reports[report_type]

        client.fetch_report.side_effect = fetch

        result = service.sync_reports("tenant-1", "3m", "month", include_optional=True)

        assert isinstance(result, SyncSuccess)
        assert result.reports_saved == 5
        assert result.errors == ["Last 3 Months cash_flow: Permission Denied Error"]
        assert store.get_sync_state("tenant-1", SYNC_DOMAIN).error_message == (
            "Last 3 Months cash_flow: Permission Denied Error"
        )

    def test_all_reports_fail(self, service, client, store):
        client.fetch_report.side_effect = QuickBooksApiError("Service unavailable", 503)

        result = service.sync_reports("tenant-1", "3m", "month", include_optional=False)

        assert isinstance(result, SyncFailure)
        assert result.ok is False
        assert result.reports_saved == 0
        assert len(result.errors) == 2
        assert "No reports saved" in result.reason
        state = store.get_sync_state("tenant-1", SYNC_DOMAIN)
        assert state.status == "error"
        assert state.error_count == 1

    def test_needs_reauth_mid_sync_continues(self, service, client, reports, store):
        """A 401 on one report is collected; later reports and metrics still run."""

        def fetch(tenant_id, report_type, start, end):
            if report_type == "balance_sheet":
                raise NeedsReauthError("QuickBooks rejected the access token (401)")
            return reports[report_type]

        client.fetch_report.side_effect = fetch

        result = service.sync_reports("tenant-1", "3m", "month", include_optional=True)

        assert isinstance(result, SyncSuccess)
        assert result.needs_reauth is True
        assert result.reports_saved == 5
        assert result.errors == [
            "Last 3 Months balance_sheet: QuickBooks rejected the access token (401)"
        ]
        assert client.fetch_report.call_count == 6
        metrics = store.get_metrics("tenant-1", _only_period_id(store))
        assert set(metrics) == {"revenue", "expenses", "net_income", "profit_margin_pct"}
        assert '"needs_reauth": true' in store.get_sync_state("tenant-1", SYNC_DOMAIN).sync_metadata

    def test_needs_reauth_on_every_report(self, service, client, store):
        client.fetch_report.side_effect = NeedsReauthError("QuickBooks rejected the access token (401)")

        result = service.sync_reports("tenant-1", "3m", "month", include_optional=False)

        assert isinstance(result, SyncFailure)
        assert result.needs_reauth is True
        assert client.fetch_report.call_count == 2
        assert "re-authorization" in result.reason
        assert store.get_sync_state("tenant-1", SYNC_DOMAIN).status == "error"

    def test_needs_reauth_flag_clear_by_default(self, service):
        result = service.sync_reports("tenant-1", "3m", "month", include_optional=False)

        assert result.needs_reauth is False

    def test_metric_failure_keeps_reports(self, service, store):
        with patch("finsync.jobs.sync_reports.derive_metrics", side_effect=ValueError("bad tree")):
            result = service.sync_reports("tenant-1", "3m", "month", include_optional=False)

        assert result.ok is True
        assert result.errors == ["Metrics: bad tree"]
        assert store.count_reports("tenant-1") == 2

    def test_period_failure(self, service, store, client):
        with patch.object(store, "ensure_period", side_effect=RuntimeError("db down")):
            result = service.sync_reports("tenant-1", "3m", "month")

        assert isinstance(result, SyncFailure)
        assert result.periods_processed == 0
        assert "db down" in result.reason
        client.fetch_report.assert_not_called()

    @pytest.mark.parametrize("range_key,period_type", [("1y", "month"), ("3m", "week")])
    def test_invalid_arguments(self, service, range_key, period_type):
        with pytest.raises(ValueError):
            service.sync_reports("tenant-1", range_key, period_type)


class TestDeriveAndSaveMetrics:
    """Test metric recomputation from stored reports."""

    def test_no_reports_no_metrics(self, service, store):
        period_id = store.ensure_period("tenant-1", "month", *_range())

        assert service.derive_and_save_metrics("tenant-1", period_id) == 0

    def test_balance_sheet_only(self, service, store, balance_sheet_report):
        period_id = store.ensure_period("tenant-1", "month", *_range())
        store.save_report("tenant-1", "balance_sheet", period_id, balance_sheet_report)

        assert service.derive_and_save_metrics("tenant-1", period_id) == 3
        assert set(store.get_metrics("tenant-1", period_id)) == {
            "cash",
            "accounts_receivable",
            "accounts_payable",
        }


def _range():
    period = get_single_date_range("3m")
    return period.start_date, period.end_date, period.label


class TestConfiguredReportTypes:
    def test_required_only(self):
        assert configured_report_types(False) == ["profit_and_loss", "balance_sheet"]

    def test_with_optional(self):
        assert configured_report_types(True) == [
            "profit_and_loss",
            "balance_sheet",
            "cash_flow",
            "ar_aging",
            "ap_aging",
            "chart_of_accounts",
        ]
