"""Sheet model, loading, and the write path.

A sheet is a rectangular grid with a sparse cell map keyed by A1 labels.
Each cell holds a literal (``str | int | float | bool | None``) or a
formula string starting with ``=``.  The dashboard wire shape
``{"v": literal, "f": "=..."}`` is accepted on input and produced by
:func:`sheet_to_wire`.

Literal text that itself starts with ``=`` is stored with a leading
apostrophe (``"'=1+1"``), the usual spreadsheet escape, and reads back
without it.  Only ``f`` ever holds a formula.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from sheetcalc.a1 import a1_to_row_col, row_col_to_a1
from sheetcalc.formulas.errors import OutOfBounds
from sheetcalc.formulas.parser import is_formula

CellValue = Union[bool, int, float, str, None]

_LABEL_RE = re.compile(r"^[A-Za-z]+\d+$")

_TEXT_ESCAPE = "'"


class SheetLoadError(Exception):
    """A sheet file could not be read or does not describe a valid sheet."""


def _escaped(value: CellValue) -> bool:
    return isinstance(value, str) and is_formula(value.lstrip(_TEXT_ESCAPE))


def quote_literal(value: CellValue) -> CellValue:
    """Escape literal text that would otherwise be read as a formula.

    Text already wearing the escape gets one more, so ``"'=1"`` survives
    a round trip as itself.
    """
    if _escaped(value):
        return _TEXT_ESCAPE + value
    return value


def literal_value(raw: CellValue) -> CellValue:
    """The value a literal cell reads as: ``"'=1+1"`` -> ``"=1+1"``."""
    if _escaped(raw) and raw.startswith(_TEXT_ESCAPE):
        return raw[1:]
    return raw


def _normalise_cell(raw: Any) -> CellValue:
    """Collapse the ``{"v", "f"}`` wire shape into a single cell value."""
    if isinstance(raw, dict):
        formula = raw.get("f")
        if is_formula(formula):
            return formula.strip()
        return quote_literal(raw.get("v"))
    return raw


class Sheet(BaseModel):
    """A rectangular grid of cells.

    The engine never mutates a sheet; :meth:`set_cell` returns a new one.
    """

    model_config = ConfigDict(frozen=True)

    name: str = "main"
    rows: int = Field(gt=0)
    cols: int = Field(gt=0)
    cells: dict[str, CellValue] = Field(default_factory=dict)

    @field_validator("cells", mode="before")
    @classmethod
    def _normalise_cells(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        cells: dict[str, Any] = {}
        for key, raw in value.items():
            label = str(key).strip().upper()
            if not _LABEL_RE.match(label):
                raise ValueError(f"Invalid cell key: {key!r}")
            cells[label] = _normalise_cell(raw)
        return cells

    def get_cell(self, label: str) -> CellValue:
        """Raw cell content (literal or formula text), ``None`` when empty."""
        return self.cells.get(label.strip().upper())

    def set_cell(self, label: str, value: CellValue) -> Sheet:
        """Return a copy with *label* set to *value*.

        ``None`` and ``""`` clear the cell.

        Raises:
            OutOfBounds: If *label* lies outside the sheet.
            InvalidReference: If *label* is malformed.
        """
        key = clamp_sheet_key(self, label)
        cells = dict(self.cells)
        if value is None or value == "":
            cells.pop(key, None)
        else:
            cells[key] = value.strip() if is_formula(value) else value
        return self.model_copy(update={"cells": cells})


# ---------------------------------------------------------------------------
# Grid <-> key helpers
# ---------------------------------------------------------------------------


def sheet_cell_key_from_row_col(row: int, col: int) -> str:
    """Cell-map key for a dense grid position (0-based)."""
    return row_col_to_a1(row, col)


def clamp_sheet_key(sheet: Sheet, label: str) -> str:
    """Validate that *label* lies inside *sheet* and return it uppercased.

    Used before writes; reads of out-of-range labels simply see empty cells.

    Raises:
        OutOfBounds: If the row or column falls outside ``[0, rows) x [0, cols)``.
    """
    row, col = a1_to_row_col(label)
    if row < 0 or row >= sheet.rows or col < 0 or col >= sheet.cols:
        raise OutOfBounds(label, sheet.rows, sheet.cols)
    return label.strip().upper()


# ---------------------------------------------------------------------------
# Loading / serialisation
# ---------------------------------------------------------------------------


def sheet_from_dict(data: Any) -> Sheet:
    """Build a sheet from a decoded mapping.

    Raises:
        SheetLoadError: If *data* does not describe a valid sheet.
    """
    if not isinstance(data, dict):
        raise SheetLoadError(f"Sheet must be a mapping, got {type(data).__name__}")
    try:
        return Sheet.model_validate(data)
    except ValidationError as exc:
        raise SheetLoadError(f"Invalid sheet: {exc}") from exc


def load_sheet(path: Path) -> Sheet:
    """Load a sheet from a ``.json``, ``.yaml`` or ``.yml`` file.

    Raises:
        SheetLoadError: If the file cannot be read or parsed.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise SheetLoadError(f"Cannot read sheet file {path}: {exc}") from exc

    try:
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise SheetLoadError(f"Cannot parse sheet file {path}: {exc}") from exc

    return sheet_from_dict(data)


def sheet_to_wire(sheet: Sheet) -> dict[str, Any]:
    """Serialise to the dashboard wire shape (``{"f": ...}`` / ``{"v": ...}`` cells)."""
    cells: dict[str, dict[str, Any]] = {}
    for label, value in sheet.cells.items():
        if is_formula(value):
            cells[label] = {"f": value}
        else:
            cells[label] = {"v": literal_value(value)}
    return {"name": sheet.name, "rows": sheet.rows, "cols": sheet.cols, "cells": cells}


def update_sheet_from_matrix(sheet: Sheet, matrix: list[list[Any]]) -> Sheet:
    """Rebuild the cell map from an edited dense grid.

    Empty entries (``""``/``None``) and positions missing from *matrix* are
    dropped; strings starting with ``=`` become formulas; anything else is
    stored as a literal.  Returns a new sheet.
    """
    cells: dict[str, CellValue] = {}
    for r in range(sheet.rows):
        row = matrix[r] if r < len(matrix) else []
        for c in range(sheet.cols):
            raw = row[c] if c < len(row) else None
            if raw is None or raw == "":
                continue
            label = sheet_cell_key_from_row_col(r, c)
            cells[label] = raw.strip() if is_formula(raw) else raw
    return sheet.model_copy(update={"cells": cells})
