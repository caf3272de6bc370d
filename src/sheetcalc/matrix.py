"""Dense projection of an evaluated sheet.

Turns the sparse cell map into a ``rows x cols`` grid of display values,
which is what grid widgets, CSV export and the CLI table view consume.
"""

from __future__ import annotations

from typing import Any

import polars as pl

from sheetcalc.a1 import col_index_to_letters
from sheetcalc.cell_graph import SheetEvaluation, evaluate_sheet
from sheetcalc.formulas.parser import is_formula
from sheetcalc.sheet import Sheet, literal_value, sheet_cell_key_from_row_col

DEFAULT_ERROR_MARKER = "#ERR"


def build_matrix(
    sheet: Sheet,
    *,
    error_marker: str = DEFAULT_ERROR_MARKER,
    evaluation: SheetEvaluation | None = None,
) -> list[list[Any]]:
    """Project *sheet* onto a dense grid.

    Formula cells show their computed value, literal cells their raw
    literal (empty cells ``""``), and every cell with a recorded error shows
    *error_marker* instead of its 0 placeholder.

    Args:
        sheet: The sheet to project.
        error_marker: Text shown for cells present in ``errors``.
        evaluation: Session to reuse; a fresh one is started when omitted.

    Returns:
        ``sheet.rows`` lists of ``sheet.cols`` values each.
    """
    ev = evaluation if evaluation is not None else evaluate_sheet(sheet)
    matrix: list[list[Any]] = []
    for r in range(sheet.rows):
        row: list[Any] = []
        for c in range(sheet.cols):
            label = sheet_cell_key_from_row_col(r, c)
            raw = sheet.cells.get(label)
            value = ev.get(label) if is_formula(raw) else literal_value(raw)
            if label in ev.errors:
                row.append(error_marker)
            else:
                row.append("" if value is None else value)
        matrix.append(row)
    return matrix


def display_value(value: Any, precision: int = 10) -> str:
    """Get a display-friendly string for a cell value."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float):
        # Format floats cleanly
        if value.is_integer():
            return str(int(value))
        return f"{value:.{precision}g}"
    return str(value)


def matrix_to_frame(matrix: list[list[Any]], precision: int = 10) -> pl.DataFrame:
    """Convert a projected grid into a string-typed DataFrame with A, B, ... headers."""
    n_cols = max((len(row) for row in matrix), default=0)
    columns: dict[str, list[str]] = {}
    for c in range(n_cols):
        columns[col_index_to_letters(c)] = [
            display_value(row[c] if c < len(row) else None, precision) for row in matrix
        ]
    return pl.DataFrame(columns, schema={name: pl.Utf8 for name in columns})
