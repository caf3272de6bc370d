"""Sheet formula tokenizing, parsing and evaluation.

Public API::

    from sheetcalc.formulas import tokenize, parse_formula, evaluate_formula
"""

from sheetcalc.formulas.errors import (
    CYCLE,
    ENGINE_ERRORS,
    FormulaError,
    FormulaSyntaxError,
    FormulaValueError,
    InvalidReference,
    OutOfBounds,
)
from sheetcalc.formulas.evaluator import (
    SUPPORTED_FUNCTIONS,
    CellResolver,
    eager_refs,
    evaluate_formula,
    flatten_numbers,
    to_number,
)
from sheetcalc.formulas.nodes import extract_refs
from sheetcalc.formulas.parser import is_formula, parse_expression, parse_formula, tokenize

__all__ = [
    "CYCLE",
    "ENGINE_ERRORS",
    "SUPPORTED_FUNCTIONS",
    "CellResolver",
    "FormulaError",
    "FormulaSyntaxError",
    "FormulaValueError",
    "InvalidReference",
    "OutOfBounds",
    "eager_refs",
    "evaluate_formula",
    "extract_refs",
    "flatten_numbers",
    "is_formula",
    "parse_expression",
    "parse_formula",
    "to_number",
    "tokenize",
]
