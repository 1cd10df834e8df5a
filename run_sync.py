#!/usr/bin/env python3
"""
finsync Runner

Command-line entry point for report syncs and proactive token refresh.
Meant to be called by an external scheduler (cron, systemd timer, CI job).

Usage:
    python run_sync.py sync --tenant acme --range 3m              # Sync one tenant
    python run_sync.py sync --tenant acme --range 4q --required-only
    python run_sync.py refresh                                    # Refresh expiring tokens
    python run_sync.py status --tenant acme                       # Show connection status
"""

import argparse
import logging
import sys

from finsync.config.loader import cfg, validate_config
from finsync.utils.time_windows import VALID_PERIOD_TYPES, VALID_RANGES


def setup_logging() -> None:
    """Configure logging from app.yaml (global.log_level, global.log_format)."""
    log_level = cfg("global.log_level", "INFO")
    log_format = cfg("global.log_format", "text")

    if log_format == "json":
        import structlog

        shared_processors = [
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
        ]
        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                *shared_processors,
                structlog.stdlib.PositionalArgumentsFormatter(),
                structlog.processors.format_exc_info,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

        # Render stdlib records from every finsync module as JSON too.
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=structlog.processors.JSONRenderer(),
                foreign_pre_chain=shared_processors,
            )
        )
        logging.basicConfig(level=getattr(logging, log_level.upper()), handlers=[handler])
    else:
        logging.basicConfig(
            level=getattr(logging, log_level.upper()),
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            handlers=[logging.StreamHandler(sys.stdout)]
        )


logger = logging.getLogger(__name__)


def run_sync(args: argparse.Namespace) -> int:
    from finsync.jobs.sync_reports import create_sync_service

    result = create_sync_service().sync_reports(
        args.tenant,
        range_key=args.range_key,
        period_type=args.period_type,
        include_optional=not args.required_only,
    )

    if result.ok:
        logger.info(
            f"Sync succeeded for tenant {args.tenant}: {result.reports_saved} reports saved"
        )
    else:
        logger.error(f"Sync failed for tenant {args.tenant}: {result.reason}")
    for error in result.errors:
        logger.warning(f"  {error}")
    return 0 if result.ok else 1


def run_refresh(args: argparse.Namespace) -> int:
    from finsync.config.loader import QuickBooksConfig
    from finsync.db.store import FinancialStore
    from finsync.jobs.refresh_tokens import horizon_from_minutes, refresh_expiring_connections
    from finsync.utils.crypto import TokenEncryption
    from finsync.utils.oauth import OAuthManager
    from finsync.utils.tokens import TokenManager

    store = FinancialStore()
    token_manager = TokenManager(store, OAuthManager(QuickBooksConfig.from_env()), TokenEncryption())
    results = refresh_expiring_connections(
        store, token_manager, horizon_from_minutes(args.horizon_minutes)
    )
    failed = [r for r in results if not r["ok"]]
    for r in failed:
        logger.error(f"Refresh failed for tenant {r['tenant_id']}: {r['error']}")
    return 1 if failed else 0


def run_status(args: argparse.Namespace) -> int:
    from finsync.config.loader import QuickBooksConfig
    from finsync.db.store import FinancialStore
    from finsync.utils.crypto import TokenEncryption
    from finsync.utils.oauth import OAuthManager
    from finsync.utils.tokens import TokenManager

    token_manager = TokenManager(
        FinancialStore(), OAuthManager(QuickBooksConfig.from_env()), TokenEncryption()
    )
    status = token_manager.connection_status(args.tenant)
    if status is None:
        print(f"No QuickBooks connection for tenant {args.tenant}")
        return 1

    for key, value in status.items():
        print(f"{key}: {value}")
    return 0 if status["connected"] else 1


def main() -> int:
    parser = argparse.ArgumentParser(description="finsync QuickBooks connector runner")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync_parser = subparsers.add_parser("sync", help="Sync reports for a tenant")
    sync_parser.add_argument("--tenant", required=True, help="Tenant id")
    sync_parser.add_argument("--range", dest="range_key", default="3m", choices=VALID_RANGES)
    sync_parser.add_argument("--period-type", default="month", choices=VALID_PERIOD_TYPES)
    sync_parser.add_argument(
        "--required-only", action="store_true", help="Only fetch P&L and Balance Sheet"
    )
    sync_parser.set_defaults(handler=run_sync)

    refresh_parser = subparsers.add_parser("refresh", help="Refresh tokens expiring soon")
    refresh_parser.add_argument("--horizon-minutes", type=int, default=None)
    refresh_parser.set_defaults(handler=run_refresh)

    status_parser = subparsers.add_parser("status", help="Show a tenant's connection status")
    status_parser.add_argument("--tenant", required=True, help="Tenant id")
    status_parser.set_defaults(handler=run_status)

    args = parser.parse_args()

    setup_logging()

    try:
        validate_config()
    except Exception as e:
        logger.error(f"Configuration invalid: {e}")
        return 1

    try:
        return args.handler(args)
    except Exception as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
