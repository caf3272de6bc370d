"""Tests for the sheet model, loading and the write path."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from sheetcalc.cell_graph import evaluate_sheet
from sheetcalc.formulas.errors import InvalidReference, OutOfBounds
from sheetcalc.sheet import (
    Sheet,
    SheetLoadError,
    clamp_sheet_key,
    literal_value,
    load_sheet,
    quote_literal,
    sheet_cell_key_from_row_col,
    sheet_from_dict,
    sheet_to_wire,
    update_sheet_from_matrix,
)


# ────────────────────────────────────────────────────────────────
# Model
# ────────────────────────────────────────────────────────────────


class TestSheetModel:
    def test_defaults(self) -> None:
        sheet = Sheet(rows=2, cols=3)
        assert sheet.name == "main"
        assert sheet.cells == {}

    def test_keys_uppercased(self) -> None:
        sheet = Sheet(rows=2, cols=2, cells={"a1": 1, " b2 ": "=A1"})
        assert sheet.cells == {"A1": 1, "B2": "=A1"}

    def test_literal_types_preserved(self) -> None:
        sheet = Sheet(rows=4, cols=1, cells={"A1": 1, "A2": 2.5, "A3": True, "A4": "1"})
        assert type(sheet.cells["A1"]) is int
        assert type(sheet.cells["A2"]) is float
        assert sheet.cells["A3"] is True
        assert sheet.cells["A4"] == "1"

    def test_invalid_key_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Sheet(rows=1, cols=1, cells={"1A": 2})

    @pytest.mark.parametrize("rows, cols", [(0, 1), (1, 0), (-1, 3)])
    def test_dimensions_must_be_positive(self, rows: int, cols: int) -> None:
        with pytest.raises(ValidationError):
            Sheet(rows=rows, cols=cols)

    def test_frozen(self) -> None:
        sheet = Sheet(rows=1, cols=1)
        with pytest.raises(ValidationError):
            sheet.rows = 5

    def test_wire_shape_normalised(self) -> None:
        sheet = Sheet(
            rows=3,
            cols=1,
            cells={
                "A1": {"v": 3},
                "A2": {"f": " =A1*2 ", "v": 6},
                "A3": {"f": "oops", "v": 1},
            },
        )
        assert sheet.cells == {"A1": 3, "A2": "=A1*2", "A3": 1}

    def test_wire_text_value_stays_literal(self) -> None:
        sheet = Sheet(rows=2, cols=1, cells={"A1": {"v": "=1+1"}, "A2": "=A1+1"})
        assert sheet.cells["A1"] == "'=1+1"
        ev = evaluate_sheet(sheet)
        assert ev.get("A1") == "=1+1"
        assert ev.get("A2") == 1
        assert ev.errors == {}

    @pytest.mark.parametrize(
        "value, quoted",
        [
            ("=1+1", "'=1+1"),
            (" =A1", "' =A1"),
            ("'tis", "'tis"),
            ("'=1", "''=1"),
            ("plain", "plain"),
            (3, 3),
            (None, None),
        ],
    )
    def test_quote_literal(self, value, quoted) -> None:
        assert quote_literal(value) == quoted
        assert literal_value(quoted) == value

    def test_apostrophe_text_unchanged(self) -> None:
        assert literal_value("'tis") == "'tis"
        assert literal_value("='") == "='"
        assert literal_value("' 1") == "' 1"

    def test_get_cell(self) -> None:
        sheet = Sheet(rows=2, cols=2, cells={"B2": "=1"})
        assert sheet.get_cell("b2") == "=1"
        assert sheet.get_cell("A1") is None


# ────────────────────────────────────────────────────────────────
# Write path
# ────────────────────────────────────────────────────────────────


class TestWritePath:
    def test_set_cell_returns_new_sheet(self) -> None:
        sheet = Sheet(rows=2, cols=2, cells={"A1": 1})
        updated = sheet.set_cell("b1", "  =A1*2 ")
        assert updated.cells == {"A1": 1, "B1": "=A1*2"}
        assert sheet.cells == {"A1": 1}

    def test_set_cell_clears(self) -> None:
        sheet = Sheet(rows=2, cols=2, cells={"A1": 1, "A2": 2})
        assert sheet.set_cell("A1", None).cells == {"A2": 2}
        assert sheet.set_cell("A2", "").cells == {"A1": 1}

    def test_set_cell_out_of_bounds(self) -> None:
        sheet = Sheet(rows=2, cols=2)
        with pytest.raises(OutOfBounds) as exc_info:
            sheet.set_cell("C1", 5)
        assert exc_info.value.rows == 2
        assert exc_info.value.cols == 2
        with pytest.raises(OutOfBounds):
            sheet.set_cell("A3", 5)

    def test_set_cell_malformed_label(self) -> None:
        with pytest.raises(InvalidReference):
            Sheet(rows=2, cols=2).set_cell("1A", 5)

    def test_clamp_sheet_key(self) -> None:
        sheet = Sheet(rows=2, cols=2)
        assert clamp_sheet_key(sheet, " b2 ") == "B2"

    def test_key_from_row_col(self) -> None:
        assert sheet_cell_key_from_row_col(0, 0) == "A1"
        assert sheet_cell_key_from_row_col(4, 27) == "AB5"

    def test_update_from_matrix(self) -> None:
        sheet = Sheet(name="s", rows=2, cols=2, cells={"B2": 9})
        updated = update_sheet_from_matrix(sheet, [["1", ""], [" =A1*2", None]])
        assert updated.cells == {"A1": "1", "A2": "=A1*2"}
        assert updated.name == "s"
        assert sheet.cells == {"B2": 9}

    def test_update_from_matrix_ignores_overflow(self) -> None:
        sheet = Sheet(rows=1, cols=1)
        updated = update_sheet_from_matrix(sheet, [[1, 2], [3, 4]])
        assert updated.cells == {"A1": 1}

    def test_update_from_short_matrix(self) -> None:
        sheet = Sheet(rows=3, cols=3, cells={"C3": 1})
        assert update_sheet_from_matrix(sheet, [[5]]).cells == {"A1": 5}


# ────────────────────────────────────────────────────────────────
# Loading / serialisation
# ────────────────────────────────────────────────────────────────


class TestLoading:
    def test_load_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "s.yaml"
        path.write_text(yaml.dump({"name": "calc", "rows": 2, "cols": 1, "cells": {"A1": 2, "A2": "=A1*2"}}))
        sheet = load_sheet(path)
        assert sheet.name == "calc"
        assert sheet.cells == {"A1": 2, "A2": "=A1*2"}

    def test_load_json_wire_shape(self, tmp_path: Path) -> None:
        path = tmp_path / "s.json"
        path.write_text(json.dumps({"rows": 1, "cols": 2, "cells": {"A1": {"v": 4}, "B1": {"f": "=A1+1"}}}))
        sheet = load_sheet(path)
        assert sheet.cells == {"A1": 4, "B1": "=A1+1"}

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(SheetLoadError, match="Cannot read"):
            load_sheet(tmp_path / "nope.yaml")

    def test_unparseable_json(self, tmp_path: Path) -> None:
        path = tmp_path / "s.json"
        path.write_text("{not json")
        with pytest.raises(SheetLoadError, match="Cannot parse"):
            load_sheet(path)

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "s.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(SheetLoadError, match="mapping"):
            load_sheet(path)

    def test_invalid_shape(self) -> None:
        with pytest.raises(SheetLoadError, match="Invalid sheet"):
            sheet_from_dict({"rows": 0, "cols": 1})

    def test_to_wire(self) -> None:
        sheet = Sheet(name="w", rows=1, cols=2, cells={"A1": 3, "B1": "=A1"})
        assert sheet_to_wire(sheet) == {
            "name": "w",
            "rows": 1,
            "cols": 2,
            "cells": {"A1": {"v": 3}, "B1": {"f": "=A1"}},
        }

    def test_wire_reloads(self) -> None:
        sheet = Sheet(name="w", rows=1, cols=2, cells={"A1": 3, "B1": "=A1"})
        assert sheet_from_dict(sheet_to_wire(sheet)) == sheet

    def test_escaped_text_round_trips_as_value(self) -> None:
        sheet = sheet_from_dict({"rows": 1, "cols": 1, "cells": {"A1": {"v": "=1+1"}}})
        assert sheet_to_wire(sheet)["cells"] == {"A1": {"v": "=1+1"}}
        assert sheet_from_dict(sheet_to_wire(sheet)) == sheet
