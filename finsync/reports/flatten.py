"""
Flatten QuickBooks report trees into ordered display rows.

QuickBooks reports nest ``Rows.Row[]`` arbitrarily deep. Each row is one of a
few shapes, which ``parse_rows`` converts into a small tagged union before
``flatten`` walks it:

- DataRow: leaf line with ``ColData`` (label first, amounts after)
- HeaderOnlyRow: named line with no children (e.g. ``GrossProfit`` summary rows)
- GroupWithSummary: section with children and a total line
- GroupWithoutSummary: section with children and no total line

Cell values may use either ``value`` or ``Value``; ``Summary`` may be an
object or a one-element list.
"""

import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Union

logger = logging.getLogger(__name__)

MISSING_VALUE = "—"

_CAMEL_LOWER_UPPER = re.compile(r"([a-z])([A-Z])")
_CAMEL_ACRONYM = re.compile(r"([A-Z])([A-Z][a-z])")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class FlatRow:
    label: str
    value: str
    depth: int
    is_bold: bool
    amount: Decimal | None = None


@dataclass(frozen=True, slots=True)
class DataRow:
    cells: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class HeaderOnlyRow:
    label: str
    summary_cells: tuple[str, ...]
    header_cells: tuple[str, ...]
    cells: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class GroupWithSummary:
    name: str
    header_cells: tuple[str, ...]
    children: tuple["ReportNode", ...]
    summary_cells: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class GroupWithoutSummary:
    name: str
    header_cells: tuple[str, ...]
    children: tuple["ReportNode", ...]


ReportNode = Union[DataRow, HeaderOnlyRow, GroupWithSummary, GroupWithoutSummary]


def humanize_label(label: str) -> str:
    """Split QuickBooks camelCase names into words: ``TotalAssets`` -> ``Total Assets``."""
    if not label or not label.strip():
        return ""
    label = _CAMEL_LOWER_UPPER.sub(r"\1 \2", label)
    label = _CAMEL_ACRONYM.sub(r"\1 \2", label)
    return _WHITESPACE.sub(" ", label).strip()


def parse_amount(raw: str | None) -> Decimal | None:
    """
    Parse a report cell into a Decimal.

    Strips ``$`` and thousands separators; ``(123.45)`` is negative.
    Returns None for blank, ``-`` or non-numeric cells. Zero is a valid amount.
    """
    if raw is None:
        return None
    cleaned = raw.strip().replace("$", "").replace(",", "")
    if cleaned in ("", "-", MISSING_VALUE):
        return None

    negative = False
    if cleaned.startswith("(") and cleaned.endswith(")"):
        cleaned = cleaned[1:-1].strip()
        negative = True

    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return -abs(amount) if negative else amount


def format_amount(amount: Decimal | None) -> str:
    """Render an amount as ``$1,234.50`` / ``-$1,234.50``; absent amounts as the sentinel."""
    if amount is None:
        return MISSING_VALUE
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


# ----------------------------------------------------------------------
# Boundary parsing
# ----------------------------------------------------------------------


def _cell_text(cell: Any) -> str:
    if not isinstance(cell, dict):
        return ""
    value = cell.get("value")
    if value is None:
        value = cell.get("Value")
    if isinstance(value, bool) or value is None:
        return ""
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, str):
        return value.strip()
    return ""


def _cells(container: Any) -> tuple[str, ...]:
    if isinstance(container, list):
        container = container[0] if container else None
    if not isinstance(container, dict):
        return ()
    col_data = container.get("ColData")
    if not isinstance(col_data, list):
        return ()
    return tuple(_cell_text(cell) for cell in col_data)


def _parse_row(row: Any) -> ReportNode | None:
    if not isinstance(row, dict):
        return None

    header_cells = _cells(row.get("Header"))
    summary_cells = _cells(row.get("Summary"))
    group = row.get("group") if isinstance(row.get("group"), str) else ""

    nested = row.get("Rows")
    if isinstance(nested, dict):
        name = (header_cells[0] if header_cells else "") or humanize_label(group)
        children = tuple(parse_rows(nested))
        if summary_cells:
            return GroupWithSummary(name, header_cells, children, summary_cells)
        return GroupWithoutSummary(name, header_cells, children)

    col_data = row.get("ColData")
    if row.get("type") == "Data" and isinstance(col_data, list):
        return DataRow(tuple(_cell_text(cell) for cell in col_data))

    label = (
        (header_cells[0] if header_cells else "")
        or (summary_cells[0] if summary_cells else "")
        or humanize_label(group)
    )
    if not label:
        return None
    return HeaderOnlyRow(label, summary_cells, header_cells, _cells(row))


def parse_rows(rows: Any) -> list[ReportNode]:
    """Convert a provider ``Rows`` object into report nodes, dropping unrecognized shapes."""
    if not isinstance(rows, dict):
        return []
    row_list = rows.get("Row")
    if not isinstance(row_list, list):
        return []

    nodes = []
    for row in row_list:
        node = _parse_row(row)
        if node is None:
            logger.debug(f"Skipping unrecognized report row: {str(row)[:200]}")
            continue
        nodes.append(node)
    return nodes


# ----------------------------------------------------------------------
# Flattening
# ----------------------------------------------------------------------


def _pick_value(cells: tuple[str, ...]) -> str:
    # The first column is the row label when there is more than one column.
    candidates = cells[1:] if len(cells) > 1 else cells
    for cell in candidates:
        if parse_amount(cell) is not None:
            return cell
    return candidates[-1] if candidates else ""


def _first_value(*cell_groups: tuple[str, ...]) -> str:
    for cells in cell_groups:
        value = _pick_value(cells)
        if value:
            return value
    return ""


def _flat(label: str, raw_value: str, depth: int, is_bold: bool) -> FlatRow:
    amount = parse_amount(raw_value)
    return FlatRow(
        label=label, value=format_amount(amount), depth=depth, is_bold=is_bold, amount=amount
    )


def _flatten_nodes(nodes: list[ReportNode] | tuple[ReportNode, ...], depth: int) -> list[FlatRow]:
    result: list[FlatRow] = []
    for node in nodes:
        if isinstance(node, DataRow):
            label = node.cells[0] if node.cells else ""
            result.append(_flat(label, _pick_value(node.cells), depth, False))

        elif isinstance(node, HeaderOnlyRow):
            value = _first_value(node.summary_cells, node.header_cells, node.cells)
            result.append(_flat(node.label, value, depth, True))

        elif isinstance(node, (GroupWithSummary, GroupWithoutSummary)):
            child_depth = depth
            if node.name:
                result.append(_flat(node.name, _pick_value(node.header_cells), depth, True))
                child_depth = depth + 1
            result.extend(_flatten_nodes(node.children, child_depth))

            if isinstance(node, GroupWithSummary):
                label = node.summary_cells[0] or f"Total {node.name}".strip()
                value = _first_value(node.summary_cells, node.header_cells)
                result.append(_flat(label, value, depth, True))

    return result


def flatten(report: Any) -> list[FlatRow]:
    """
    Flatten a report into depth-first display rows.

    Accepts a full report (``{"Header": ..., "Rows": ...}``) or its ``Rows``
    object. Group headers and totals are bold; totals sit at the group's own
    depth, children one level deeper when the group is named.
    """
    if isinstance(report, dict) and "Row" not in report:
        report = report.get("Rows")
    return _flatten_nodes(parse_rows(report), 0)
