"""
Derive normalized financial metrics from QuickBooks reports.

Labels are matched against a declarative rule table. For each metric the
LAST matching row wins, since report trees put totals after their detail lines.

Profit and Loss:
    revenue            = "Total Income"
    expenses           = "Total Expenses" (not Other Expenses)
    net_income         = "Net Income"
    profit_margin_pct  = net_income / |revenue| * 100, one decimal, 0 when revenue is 0

Balance Sheet:
    cash                 = "Total Bank Accounts" + "Undeposited Funds"
    accounts_receivable  = "Total Accounts Receivable (A/R)"
    accounts_payable     = "Total Accounts Payable (A/P)"
"""

import logging
import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from .flatten import FlatRow, flatten, humanize_label

logger = logging.getLogger(__name__)

METRIC_UNITS = {
    "revenue": "currency",
    "expenses": "currency",
    "net_income": "currency",
    "profit_margin_pct": "ratio",
    "cash": "currency",
    "accounts_receivable": "currency",
    "accounts_payable": "currency",
}

ZERO = Decimal("0")
ONE_DECIMAL = Decimal("0.1")

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class MetricRule:
    name: str
    patterns: tuple[str, ...]
    exclude: tuple[str, ...] = ()


REVENUE = MetricRule(
    "revenue",
    ("total income", "income", "total revenue", "revenue", "gross sales", "sales"),
    ("net", "other", "operating", "gross", "cost"),
)
EXPENSES = MetricRule("expenses", ("total expenses", "expenses"), ("other", "net"))
NET_INCOME = MetricRule(
    "net_income",
    ("net income", "net income (loss)", "net profit"),
    ("gross", "operating", "other", "ordinary"),
)
BANK_ACCOUNTS = MetricRule("bank_accounts", ("total bank accounts", "bank accounts", "total bank"))
UNDEPOSITED_FUNDS = MetricRule("undeposited_funds", ("undeposited funds",))
ACCOUNTS_RECEIVABLE = MetricRule(
    "accounts_receivable",
    (
        "total accounts receivable (a/r)",
        "accounts receivable (a/r)",
        "total accounts receivable",
        "accounts receivable",
    ),
    ("payable",),
)
ACCOUNTS_PAYABLE = MetricRule(
    "accounts_payable",
    (
        "total accounts payable (a/p)",
        "accounts payable (a/p)",
        "total accounts payable",
        "accounts payable",
    ),
    ("receivable",),
)


def normalize_label(label: str) -> str:
    """Split camelCase boundaries, case-fold, collapse whitespace."""
    return _WHITESPACE.sub(" ", humanize_label(label).lower()).strip()


def _matches(label: str, rule: MetricRule) -> bool:
    if any(normalize_label(ex) in label for ex in rule.exclude):
        return False
    for pattern in rule.patterns:
        pattern = normalize_label(pattern)
        if pattern in label or label in pattern:
            return True
    return False


def find_value(rows: list[FlatRow], rule: MetricRule) -> Decimal:
    """Amount of the last row matching ``rule``; 0 when nothing matches."""
    value = ZERO
    for row in rows:
        if row.amount is None:
            continue
        label = normalize_label(row.label)
        if not label:
            continue
        if _matches(label, rule):
            value = row.amount
    return value


def profit_margin(net_income: Decimal, revenue: Decimal) -> Decimal:
    if revenue == 0:
        return Decimal("0.0")
    margin = net_income / abs(revenue) * 100
    return margin.quantize(ONE_DECIMAL, rounding=ROUND_HALF_UP)


def derive_from_profit_and_loss(report: Any) -> dict[str, Decimal]:
    rows = flatten(report)
    revenue = find_value(rows, REVENUE)
    expenses = find_value(rows, EXPENSES)
    net_income = find_value(rows, NET_INCOME)
    return {
        "revenue": revenue,
        "expenses": expenses,
        "net_income": net_income,
        "profit_margin_pct": profit_margin(net_income, revenue),
    }


def derive_from_balance_sheet(report: Any) -> dict[str, Decimal]:
    rows = flatten(report)
    cash = find_value(rows, BANK_ACCOUNTS) + find_value(rows, UNDEPOSITED_FUNDS)
    return {
        "cash": cash,
        "accounts_receivable": find_value(rows, ACCOUNTS_RECEIVABLE),
        "accounts_payable": find_value(rows, ACCOUNTS_PAYABLE),
    }


def derive_metrics(
    profit_and_loss: Any | None = None, balance_sheet: Any | None = None
) -> dict[str, Decimal]:
    """
    Merge metrics from whichever reports are available.

    Balance sheet keys are applied after profit and loss keys.
    """
    metrics: dict[str, Decimal] = {}
    if profit_and_loss is not None:
        metrics.update(derive_from_profit_and_loss(profit_and_loss))
    if balance_sheet is not None:
        metrics.update(derive_from_balance_sheet(balance_sheet))
    return metrics


def to_metric_entries(metrics: dict[str, Decimal]) -> list[dict[str, Any]]:
    """Store rows ``{metric_key, value, unit}`` for derived metrics."""
    return [
        {"metric_key": key, "value": value, "unit": METRIC_UNITS[key]}
        for key, value in metrics.items()
    ]
