#!/usr/bin/env python3
"""
QuickBooks Token Refresh Job

Refreshes access tokens for every connected tenant whose token expires within
the refresh horizon, so scheduled syncs start with fresh credentials.

Usage:
    python -m finsync.jobs.refresh_tokens [--horizon-minutes 10]
"""

import argparse
import logging
from datetime import timedelta
from typing import Any

from finsync.config.loader import cfg
from finsync.db.store import FinancialStore
from finsync.utils.tokens import TokenManager
from finsync.utils.time_windows import utc_now

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_HORIZON_MINUTES = 10


def horizon_from_minutes(minutes: int | None) -> timedelta | None:
    """CLI minutes to a refresh horizon; None means use the configured default."""
    if minutes is None:
        return None
    return timedelta(minutes=minutes)


def refresh_expiring_connections(
    store: FinancialStore,
    token_manager: TokenManager,
    horizon: timedelta | None = None,
) -> list[dict[str, Any]]:
    """
    Refresh connections whose access token expires within ``horizon``.

    Tenants are processed one at a time; a failure is recorded in the result
    and the loop continues.

    Returns:
        One ``{"tenant_id", "ok", "error"}`` dict per tenant attempted
    """
    if horizon is None:
        horizon = timedelta(
            minutes=int(cfg("quickbooks.tokens.refresh_horizon_minutes", DEFAULT_REFRESH_HORIZON_MINUTES))
        )

    cutoff = utc_now() + horizon
    tenant_ids = store.list_tenants_expiring_before(cutoff)
    logger.info(f"Found {len(tenant_ids)} QuickBooks connections expiring before {cutoff.isoformat()}")

    results = []
    for tenant_id in tenant_ids:
        try:
            token_manager.get_valid_access_token(tenant_id, force_refresh=True)
            results.append({"tenant_id": tenant_id, "ok": True, "error": None})
        except Exception as e:
            logger.error(f"Token refresh failed for tenant {tenant_id}: {e}")
            results.append({"tenant_id": tenant_id, "ok": False, "error": str(e)})

    refreshed = sum(1 for r in results if r["ok"])
    logger.info(f"Token refresh complete: {refreshed}/{len(results)} refreshed")
    return results


def main():
    """CLI entry point for the token refresh job."""
    parser = argparse.ArgumentParser(description="QuickBooks Token Refresh Job")
    parser.add_argument("--horizon-minutes", type=int, default=None, help="Refresh window in minutes")
    parser.add_argument("--log-level", default="INFO", help="Logging level")

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    from finsync.config.loader import QuickBooksConfig
    from finsync.utils.crypto import TokenEncryption
    from finsync.utils.oauth import OAuthManager

    try:
        store = FinancialStore()
        token_manager = TokenManager(
            store, OAuthManager(QuickBooksConfig.from_env()), TokenEncryption()
        )
        results = refresh_expiring_connections(
            store, token_manager, horizon_from_minutes(args.horizon_minutes)
        )
    except Exception as e:
        logger.error(f"Token refresh job failed: {e}")
        return 1

    print(f"Token Refresh Result: {results}")
    return 0 if all(r["ok"] for r in results) else 1


if __name__ == "__main__":
    exit(main())
