#!/usr/bin/env python3
"""
QuickBooks Reports Sync Job

Fetches financial reports for one tenant over a range preset, stores the raw
payloads against a single period covering the whole range, and derives the
dashboard metrics from the stored Profit and Loss and Balance Sheet.

Usage:
    python -m finsync.jobs.sync_reports --tenant TENANT [--range 3m|6m|12m|4q]
        [--period-type month|quarter] [--required-only]
"""

import argparse
import logging
from dataclasses import dataclass, field
from typing import Union

from finsync.adapters.quickbooks import QuickBooksClient
from finsync.common.errors import DerivationError, NeedsReauthError
from finsync.config.loader import cfg
from finsync.db.store import FinancialStore
from finsync.reports.metrics import derive_metrics, to_metric_entries
from finsync.utils.time_windows import (
    VALID_PERIOD_TYPES,
    VALID_RANGES,
    PeriodInfo,
    get_single_date_range,
    period_type_for_range,
)
from finsync.utils.tokens import TokenManager

logger = logging.getLogger(__name__)

SYNC_DOMAIN = "quickbooks_reports"
REQUIRED_REPORTS = ("profit_and_loss", "balance_sheet")
OPTIONAL_REPORTS = ("cash_flow", "ar_aging", "ap_aging", "chart_of_accounts")


@dataclass(frozen=True)
class SyncSuccess:
    """
    At least one report was saved; ``errors`` lists what else went wrong.

    ``needs_reauth`` is set when QuickBooks rejected the access token for
    some report, so the tenant has to reconnect before the next sync.
    """

    period: PeriodInfo
    periods_processed: int
    reports_saved: int
    errors: list[str] = field(default_factory=list)
    needs_reauth: bool = False

    ok = True


@dataclass(frozen=True)
class SyncFailure:
    """Nothing usable was saved; ``reason`` summarizes why."""

    period: PeriodInfo
    periods_processed: int
    reports_saved: int
    errors: list[str]
    reason: str
    needs_reauth: bool = False

    ok = False


SyncResult = Union[SyncSuccess, SyncFailure]


def configured_report_types(include_optional: bool) -> list[str]:
    """Report types to fetch, from app.yaml with built-in fallbacks."""
    required = list(cfg("quickbooks.reports.required", None) or REQUIRED_REPORTS)
    if not include_optional:
        return required
    optional = list(cfg("quickbooks.reports.optional", None) or OPTIONAL_REPORTS)
    return required + [r for r in optional if r not in required]


class ReportSyncService:
    """Runs report syncs for tenants against an injected store and API client."""

    def __init__(
        self,
        store: FinancialStore,
        client: QuickBooksClient,
        token_manager: TokenManager,
    ):
        self.store = store
        self.client = client
        self.token_manager = token_manager

    def sync_reports(
        self,
        tenant_id: str,
        range_key: str = "3m",
        period_type: str = "month",
        include_optional: bool = True,
    ) -> SyncResult:
        """
        Sync reports for one tenant over a range preset.

        Args:
            tenant_id: Tenant to sync
            range_key: One of 3m, 6m, 12m, 4q
            period_type: month or quarter; the stored period type follows the range
            include_optional: Also fetch cash flow, aging and chart of accounts

        Raises:
            ValueError: Unknown range or period type
            NoConnectionError / NeedsReauthError / ConfigurationError: Pre-flight
                token check failed; nothing was written
        """
        if range_key not in VALID_RANGES:
            raise ValueError(f"Unsupported range {range_key!r}; expected one of {VALID_RANGES}")
        if period_type not in VALID_PERIOD_TYPES:
            raise ValueError(
                f"Unsupported period type {period_type!r}; expected one of {VALID_PERIOD_TYPES}"
            )

        # Fail fast on connection problems before touching the store.
        self.token_manager.get_valid_access_token(tenant_id)

        period = get_single_date_range(range_key)
        effective_type = period_type_for_range(range_key)
        if effective_type != period_type:
            logger.warning(
                f"Range {range_key} is stored as a {effective_type} period "
                f"(requested {period_type})"
            )

        report_types = configured_report_types(include_optional)
        logger.info(
            f"Starting report sync for tenant {tenant_id}: {period.label} "
            f"({period.start_date} to {period.end_date}), {len(report_types)} report types"
        )
        self.store.record_sync_state(
            tenant_id, SYNC_DOMAIN, "running", sync_metadata={"range": range_key}
        )

        try:
            period_id = self.store.ensure_period(
                tenant_id, effective_type, period.start_date, period.end_date, period.label
            )
        except Exception as e:
            message = f"Failed to ensure period {period.label}: {e}"
            logger.error(message)
            self.store.record_sync_state(tenant_id, SYNC_DOMAIN, "error", error_message=message)
            return SyncFailure(
                period=period, periods_processed=0, reports_saved=0, errors=[message], reason=message
            )

        errors: list[str] = []
        reports_saved = 0
        needs_reauth = False

        for report_type in report_types:
            try:
                raw = self.client.fetch_report(
                    tenant_id, report_type, period.start_date, period.end_date
                )
                self.store.save_report(tenant_id, report_type, period_id, raw)
                reports_saved += 1
                logger.info(f"Saved {report_type} for tenant {tenant_id} ({period.label})")
            except Exception as e:
                if isinstance(e, NeedsReauthError):
                    needs_reauth = True
                logger.error(
                    f"Failed to sync {report_type} for tenant {tenant_id} ({period.label}): {e}"
                )
                errors.append(f"{period.label} {report_type}: {e}")

        try:
            metrics_saved = self.derive_and_save_metrics(tenant_id, period_id)
            logger.info(f"Saved {metrics_saved} metrics for tenant {tenant_id} ({period.label})")
        except DerivationError as e:
            logger.error(f"Metric derivation failed for tenant {tenant_id}: {e}")
            errors.append(f"Metrics: {e}")

        metadata = {
            "range": range_key,
            "period": period.label,
            "reports_saved": reports_saved,
            "errors": len(errors),
            "needs_reauth": needs_reauth,
        }
        if needs_reauth:
            logger.warning(f"QuickBooks connection for tenant {tenant_id} needs re-authorization")

        if reports_saved == 0:
            if needs_reauth:
                reason = f"QuickBooks connection needs re-authorization; no reports saved for {period.label}"
            else:
                reason = f"No reports saved for {period.label}"
            if errors:
                reason += f": {errors[0]}"
            self.store.record_sync_state(
                tenant_id, SYNC_DOMAIN, "error", error_message=reason, sync_metadata=metadata
            )
            return SyncFailure(
                period=period,
                periods_processed=1,
                reports_saved=0,
                errors=errors,
                reason=reason,
                needs_reauth=needs_reauth,
            )

        self.store.record_sync_state(
            tenant_id,
            SYNC_DOMAIN,
            "success",
            error_message="; ".join(errors) or None,
            sync_metadata=metadata,
        )
        logger.info(
            f"Report sync complete for tenant {tenant_id}: {reports_saved} saved, "
            f"{len(errors)} errors"
        )
        return SyncSuccess(
            period=period,
            periods_processed=1,
            reports_saved=reports_saved,
            errors=errors,
            needs_reauth=needs_reauth,
        )

    def derive_and_save_metrics(self, tenant_id: str, period_id: int) -> int:
        """
        Recompute metrics for a period from its stored P&L and Balance Sheet.

        Raises:
            DerivationError: Extraction or the metric upsert failed
        """
        try:
            reports = self.store.get_reports_for_period(
                tenant_id, period_id, report_types=REQUIRED_REPORTS
            )
            if not reports:
                logger.info(f"No P&L or Balance Sheet stored for period {period_id}; skipping metrics")
                return 0

            metrics = derive_metrics(
                profit_and_loss=reports.get("profit_and_loss"),
                balance_sheet=reports.get("balance_sheet"),
            )
            return self.store.save_metrics(tenant_id, period_id, to_metric_entries(metrics))
        except Exception as e:
            raise DerivationError(str(e)) from e


def create_sync_service() -> ReportSyncService:
    """Wire the production store, cipher, OAuth manager, token manager and client."""
    from finsync.config.loader import QuickBooksConfig
    from finsync.utils.crypto import TokenEncryption
    from finsync.utils.oauth import OAuthManager

    config = QuickBooksConfig.from_env()
    store = FinancialStore()
    token_manager = TokenManager(store, OAuthManager(config), TokenEncryption())
    client = QuickBooksClient(token_manager, config)
    return ReportSyncService(store, client, token_manager)


def main():
    """CLI entry point for the QuickBooks reports sync job."""
    parser = argparse.ArgumentParser(description="QuickBooks Reports Sync Job")
    parser.add_argument("--tenant", required=True, help="Tenant id to sync")
    parser.add_argument("--range", dest="range_key", default="3m", choices=VALID_RANGES)
    parser.add_argument("--period-type", default="month", choices=VALID_PERIOD_TYPES)
    parser.add_argument(
        "--required-only", action="store_true", help="Only fetch P&L and Balance Sheet"
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level")

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        result = create_sync_service().sync_reports(
            args.tenant,
            range_key=args.range_key,
            period_type=args.period_type,
            include_optional=not args.required_only,
        )
    except Exception as e:
        logger.error(f"Report sync failed for tenant {args.tenant}: {e}")
        return 1

    print(f"Reports Sync Result: {result}")
    return 0 if result.ok else 1


if __name__ == "__main__":
    exit(main())
