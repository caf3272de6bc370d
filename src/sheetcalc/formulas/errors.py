"""Error types for formula parsing, reference handling and evaluation."""

from __future__ import annotations

# Per-cell diagnostic recorded for circular references.  Not an exception:
# the cell resolves to 0 and evaluation of the rest of the sheet continues.
CYCLE = "#CYCLE!"


class FormulaError(Exception):
    """Base class for all formula-related errors."""


class FormulaSyntaxError(FormulaError):
    """The tokenizer or parser could not derive an expression tree.

    Attributes:
        position: Character position (0-based, within the formula body)
            where the error was detected, when known.
    """

    def __init__(self, message: str, position: int | None = None) -> None:
        self.position = position
        full = f"Formula syntax error: {message}"
        if position is not None:
            full += f" (at position {position})"
        super().__init__(full)


class InvalidReference(FormulaError):
    """Malformed A1 label or range.

    Attributes:
        ref: The offending reference text.
    """

    def __init__(self, ref: str, message: str | None = None) -> None:
        self.ref = ref
        super().__init__(message or f"Invalid reference: {ref!r}")


class OutOfBounds(FormulaError):
    """A label lies outside the sheet dimensions (write path only)."""

    def __init__(self, ref: str, rows: int, cols: int) -> None:
        self.ref = ref
        self.rows = rows
        self.cols = cols
        super().__init__(f"Out of bounds: {ref!r} (sheet is {rows} rows x {cols} cols)")


class FormulaValueError(FormulaError):
    """A value was used where its kind is not allowed (e.g. a range as a scalar)."""


# Everything a single formula cell may raise while resolving; caught at the
# cell boundary and recorded as that cell's error.
ENGINE_ERRORS = (FormulaError, ArithmeticError, ValueError, TypeError, RecursionError)
