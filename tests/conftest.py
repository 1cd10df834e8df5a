"""
Shared fixtures for finsync tests.

The store runs against an in-memory SQLite database; HTTP is mocked.
"""

from datetime import timedelta
from unittest.mock import Mock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from finsync.config.loader import QuickBooksConfig
from finsync.db.config import make_session_factory
from finsync.db.models import Base
from finsync.db.store import FinancialStore
from finsync.db.sync_state import SyncState  # noqa: F401  (registers the table)
from finsync.utils.crypto import TokenEncryption
from finsync.utils.oauth import OAuthManager
from finsync.utils.time_windows import utc_now
from finsync.utils.tokens import TokenManager

TEST_KEY = bytes(range(32))


@pytest.fixture
def engine():
    """In-memory SQLite engine shared across sessions."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    """Store bound to the in-memory database."""
    return FinancialStore(make_session_factory(engine))


@pytest.fixture
def cipher():
    """Cipher with a fixed test key."""
    return TokenEncryption(TEST_KEY)


@pytest.fixture
def qb_config():
    """Sandbox QuickBooks configuration."""
    return QuickBooksConfig(
        client_id="test_client_id",
        client_secret="test_client_secret",
        redirect_uri="https://app.example.com/api/quickbooks/callback",
        environment="sandbox",
    )


@pytest.fixture
def oauth():
    """OAuth manager double."""
    return Mock(spec=OAuthManager)


@pytest.fixture
def token_manager(store, oauth, cipher):
    """Token manager with a 120 second skew window."""
    return TokenManager(store, oauth, cipher, skew_seconds=120)


@pytest.fixture
def connect_tenant(store, cipher):
    """Store a connected tenant whose access token expires after ``expires_in``."""

    def _connect(
        tenant_id="tenant-1",
        expires_in=timedelta(hours=1),
        access_token="access-old",
        refresh_token="refresh-old",
        realm_id="9130350000000000",
        status="connected",
    ):
        store.save_connection(
            tenant_id=tenant_id,
            realm_id=realm_id,
            access_token=cipher.encrypt(access_token) if access_token else None,
            refresh_token=cipher.encrypt(refresh_token) if refresh_token else None,
            access_expires_at=utc_now() + expires_in,
            refresh_expires_at=utc_now() + timedelta(days=100),
            scope="com.intuit.quickbooks.accounting",
            status=status,
        )
        return store.get_connection(tenant_id)

    return _connect


def _cols(*values):
    return {"ColData": [{"value": v} for v in values]}


@pytest.fixture
def profit_and_loss_report():
    """Profit and Loss with Total Income 100000 and Net Income 15000."""
    return {
        "Header": {"ReportName": "ProfitAndLoss", "Currency": "USD"},
        "Columns": {"Column": [{"ColTitle": "", "ColType": "Account"}, {"ColTitle": "Total", "ColType": "Money"}]},
        "Rows": {
            "Row": [
                {
                    "Header": _cols("Income", ""),
                    "Rows": {
                        "Row": [
                            {"ColData": [{"value": "Sales", "id": "1"}, {"value": "100000.00"}], "type": "Data"},
                        ]
                    },
                    "Summary": _cols("Total Income", "100000.00"),
                    "type": "Section",
                    "group": "Income",
                },
                {
                    "Summary": _cols("Gross Profit", "100000.00"),
                    "type": "Section",
                    "group": "GrossProfit",
                },
                {
                    "Header": _cols("Expenses", ""),
                    "Rows": {
                        "Row": [
                            {"ColData": [{"value": "Rent", "id": "2"}, {"value": "60000.00"}], "type": "Data"},
                            {"ColData": [{"value": "Utilities", "id": "3"}, {"value": "25000.00"}], "type": "Data"},
                        ]
                    },
                    "Summary": _cols("Total Expenses", "85000.00"),
                    "type": "Section",
                    "group": "Expenses",
                },
                {
                    "Summary": _cols("Net Operating Income", "15000.00"),
                    "type": "Section",
                    "group": "NetOperatingIncome",
                },
                {
                    "Summary": _cols("Net Income", "15000.00"),
                    "type": "Section",
                    "group": "NetIncome",
                },
            ]
        },
    }


@pytest.fixture
def balance_sheet_report():
    """Balance Sheet with bank 7500, undeposited 500, A/R 3000, A/P 1200."""
    return {
        "Header": {"ReportName": "BalanceSheet", "Currency": "USD"},
        "Rows": {
            "Row": [
                {
                    "Header": _cols("ASSETS", ""),
                    "Rows": {
                        "Row": [
                            {
                                "Header": _cols("Current Assets", ""),
                                "Rows": {
                                    "Row": [
                                        {
                                            "Header": _cols("Bank Accounts", ""),
                                            "Rows": {
                                                "Row": [
                                                    {"ColData": [{"value": "Checking"}, {"value": "5000.00"}], "type": "Data"},
                                                    {"ColData": [{"value": "Savings"}, {"value": "2500.00"}], "type": "Data"},
                                                ]
                                            },
                                            "Summary": _cols("Total Bank Accounts", "7500.00"),
                                            "type": "Section",
                                            "group": "BankAccounts",
                                        },
                                        {
                                            "Header": _cols("Accounts Receivable", ""),
                                            "Rows": {
                                                "Row": [
                                                    {"ColData": [{"value": "Accounts Receivable (A/R)"}, {"value": "3000.00"}], "type": "Data"},
                                                ]
                                            },
                                            "Summary": _cols("Total Accounts Receivable", "3000.00"),
                                            "type": "Section",
                                            "group": "AR",
                                        },
                                        {
                                            "Header": _cols("Other Current Assets", ""),
                                            "Rows": {
                                                "Row": [
                                                    {"ColData": [{"value": "Undeposited Funds"}, {"value": "500.00"}], "type": "Data"},
                                                ]
                                            },
                                            "Summary": _cols("Total Other Current Assets", "500.00"),
                                            "type": "Section",
                                            "group": "OtherCurrentAssets",
                                        },
                                    ]
                                },
                                "Summary": _cols("Total Current Assets", "11000.00"),
                                "type": "Section",
                                "group": "CurrentAssets",
                            },
                        ]
                    },
                    "Summary": _cols("TOTAL ASSETS", "11000.00"),
                    "type": "Section",
                    "group": "TotalAssets",
                },
                {
                    "Header": _cols("LIABILITIES AND EQUITY", ""),
                    "Rows": {
                        "Row": [
                            {
                                "Header": _cols("Accounts Payable", ""),
                                "Rows": {
                                    "Row": [
                                        {"ColData": [{"value": "Accounts Payable (A/P)"}, {"value": "1200.00"}], "type": "Data"},
                                    ]
                                },
                                "Summary": _cols("Total Accounts Payable", "1200.00"),
                                "type": "Section",
                                "group": "AP",
                            },
                        ]
                    },
                    "Summary": _cols("TOTAL LIABILITIES AND EQUITY", "1200.00"),
                    "type": "Section",
                    "group": "TotalLiabilitiesAndEquity",
                },
            ]
        },
    }
