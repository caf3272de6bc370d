"""Tests for ``sheet:<name>!<A1>`` value references and KPI formatting."""

from __future__ import annotations

import pytest

from sheetcalc.refs import ValueRef, find_sheet, format_kpi_value, parse_value_ref, resolve_value_ref
from sheetcalc.sheet import Sheet


@pytest.fixture
def sheets() -> list[Sheet]:
    return [
        Sheet(name="main", rows=3, cols=2, cells={"A1": 10, "A2": 5, "B1": "=A1*A2", "B2": "=1+"}),
        Sheet(name="other", rows=1, cols=1, cells={"A1": "=12345.6"}),
    ]


class TestParseValueRef:
    def test_parse(self) -> None:
        assert parse_value_ref("sheet:main!b3") == ValueRef("main", "B3")

    def test_sheet_name_with_spaces(self) -> None:
        assert parse_value_ref("sheet:Revenue Q1!A1") == ValueRef("Revenue Q1", "A1")

    @pytest.mark.parametrize("bad", ["main!B3", "sheet:!B3", "sheet:main!3B", "sheet:main!", "sheet:main", "sheet:a!b!C1"])
    def test_malformed(self, bad: str) -> None:
        assert parse_value_ref(bad) is None

    def test_str(self) -> None:
        assert str(ValueRef("main", "B3")) == "sheet:main!B3"


class TestResolveValueRef:
    def test_resolves_formula(self, sheets: list[Sheet]) -> None:
        assert resolve_value_ref("sheet:main!B1", sheets) == 50

    def test_resolves_parsed_ref(self, sheets: list[Sheet]) -> None:
        assert resolve_value_ref(ValueRef("other", "A1"), sheets) == 12345.6

    def test_error_cell_reads_zero(self, sheets: list[Sheet]) -> None:
        assert resolve_value_ref("sheet:main!B2", sheets) == 0

    def test_empty_cell_reads_zero(self, sheets: list[Sheet]) -> None:
        assert resolve_value_ref("sheet:main!B3", sheets) == 0

    def test_missing_sheet(self, sheets: list[Sheet]) -> None:
        assert resolve_value_ref("sheet:nope!A1", sheets) is None

    def test_malformed(self, sheets: list[Sheet]) -> None:
        assert resolve_value_ref("B1", sheets) is None

    def test_find_sheet_first_match(self) -> None:
        a = Sheet(name="x", rows=1, cols=1, cells={"A1": 1})
        b = Sheet(name="x", rows=1, cols=1, cells={"A1": 2})
        assert find_sheet([a, b], "x") is a
        assert find_sheet([a, b], "y") is None


class TestFormatKpiValue:
    @pytest.mark.parametrize(
        "value, expected",
        [
            (12345.6, "$12,346"),
            (1000, "$1,000"),
            (-1500, "-$1,500"),
            (3.14159, "3.142"),
            (2.0, "2"),
            (0.5, "0.5"),
            (0, "0"),
            (-0.0001, "0"),
            (True, "TRUE"),
            (False, "FALSE"),
            (None, ""),
            ("n/a", "n/a"),
        ],
    )
    def test_format(self, value: object, expected: str) -> None:
        assert format_kpi_value(value) == expected
