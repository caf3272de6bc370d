"""Value references: ``sheet:<name>!<A1>`` pointers used by KPI widgets.

A value reference names one cell of one sheet among a set of sheets,
e.g. ``sheet:main!B3``.  Resolution evaluates that sheet in a fresh
session and returns the cell's value.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable

from sheetcalc.cell_graph import evaluate_sheet
from sheetcalc.sheet import Sheet

_VALUE_REF_RE = re.compile(r"^sheet:([^!]+)!([A-Za-z]+\d+)$")


@dataclass(frozen=True)
class ValueRef:
    sheet_name: str
    cell: str

    def __str__(self) -> str:
        return f"sheet:{self.sheet_name}!{self.cell}"


def parse_value_ref(ref: str) -> ValueRef | None:
    """Parse ``"sheet:main!b3"`` -> ``ValueRef("main", "B3")``; ``None`` if malformed."""
    m = _VALUE_REF_RE.match(ref.strip())
    if not m:
        return None
    return ValueRef(sheet_name=m.group(1), cell=m.group(2).upper())


def find_sheet(sheets: Iterable[Sheet], name: str) -> Sheet | None:
    """First sheet called *name*, or ``None``."""
    for sheet in sheets:
        if sheet.name == name:
            return sheet
    return None


def resolve_value_ref(ref: str | ValueRef, sheets: Iterable[Sheet]) -> Any:
    """Resolve a value reference against *sheets*.

    Returns:
        The referenced cell's value, or ``None`` when *ref* is malformed or
        names a sheet that is not present.
    """
    parsed = parse_value_ref(ref) if isinstance(ref, str) else ref
    if parsed is None:
        return None
    sheet = find_sheet(sheets, parsed.sheet_name)
    if sheet is None:
        return None
    return evaluate_sheet(sheet).get(parsed.cell)


def format_kpi_value(value: Any) -> str:
    """Format a value for a KPI tile.

    Magnitudes of 1000 and above render as whole dollars (``$12,345``);
    smaller numbers keep up to three decimals.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        if abs(value) >= 1000:
            sign = "-" if value < 0 else ""
            return f"{sign}${abs(value):,.0f}"
        text = f"{value:,.3f}".rstrip("0").rstrip(".")
        return "0" if text in ("", "-0") else text
    return str(value)
