"""sheetcalc -- spreadsheet-style formula evaluation engine.

Usage::

    from sheetcalc import Sheet, evaluate_sheet

    sheet = Sheet(rows=3, cols=1, cells={"A1": 2, "A2": 3, "A3": "=SUM(A1:A2)"})
    ev = evaluate_sheet(sheet)
    ev.get("A3")   # 5
    ev.errors      # {}
"""

__version__ = "0.3.0"

from sheetcalc.a1 import (
    a1_to_row_col,
    col_index_to_letters,
    expand_a1_range,
    letters_to_col_index,
    row_col_to_a1,
)
from sheetcalc.cell_graph import SheetEvaluation, evaluate_sheet
from sheetcalc.formulas.errors import (
    CYCLE,
    FormulaError,
    FormulaSyntaxError,
    FormulaValueError,
    InvalidReference,
    OutOfBounds,
)
from sheetcalc.matrix import build_matrix
from sheetcalc.refs import parse_value_ref, resolve_value_ref
from sheetcalc.sheet import (
    Sheet,
    SheetLoadError,
    clamp_sheet_key,
    load_sheet,
    sheet_cell_key_from_row_col,
    update_sheet_from_matrix,
)

__all__ = [
    "__version__",
    "CYCLE",
    "FormulaError",
    "FormulaSyntaxError",
    "FormulaValueError",
    "InvalidReference",
    "OutOfBounds",
    "Sheet",
    "SheetEvaluation",
    "SheetLoadError",
    "a1_to_row_col",
    "build_matrix",
    "clamp_sheet_key",
    "col_index_to_letters",
    "evaluate_sheet",
    "expand_a1_range",
    "letters_to_col_index",
    "load_sheet",
    "parse_value_ref",
    "resolve_value_ref",
    "row_col_to_a1",
    "sheet_cell_key_from_row_col",
    "update_sheet_from_matrix",
]
