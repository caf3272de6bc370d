"""Command-line interface for sheetcalc."""

from __future__ import annotations

import json
import sys
import time
from pathlib import Path
from typing import Any

import click

from sheetcalc import __version__


@click.group()
@click.version_option(version=__version__, prog_name="sheetcalc")
def main() -> None:
    """sheetcalc -- spreadsheet formula evaluation engine.

    Evaluate sheets, check them for formula errors, and resolve
    ``sheet:<name>!<A1>`` value references.
    """


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------


def _open_project(directory: str) -> tuple[Path, dict[str, Any]]:
    """Attach the event sink and load config for *directory*."""
    from sheetcalc.logging.events import set_project_dir
    from sheetcalc.project import load_project_config

    project_dir = Path(directory)
    try:
        cfg = load_project_config(project_dir)
    except (OSError, ValueError) as exc:
        raise click.ClickException(f"Invalid project config: {exc}") from exc
    set_project_dir(project_dir)
    return project_dir, cfg


def _load_checked_sheet(path: str, cfg: dict[str, Any]):
    """Load a sheet file and enforce the configured size limits."""
    from sheetcalc.logging.events import (
        SHEET_LOAD_FAILED,
        SHEET_TOO_LARGE,
        EventType,
        emit_error,
    )
    from sheetcalc.sheet import SheetLoadError, load_sheet

    try:
        sheet = load_sheet(Path(path))
    except SheetLoadError as exc:
        emit_error(
            EventType.sheet_rejected,
            str(exc),
            {"path": str(path)},
            error_code=SHEET_LOAD_FAILED,
        )
        raise click.ClickException(str(exc)) from exc

    max_rows = int(cfg["max_rows"])
    max_cols = int(cfg["max_cols"])
    if sheet.rows > max_rows or sheet.cols > max_cols:
        msg = (
            f"Sheet {sheet.name!r} is {sheet.rows}x{sheet.cols}; "
            f"limit is {max_rows}x{max_cols} (max_rows/max_cols in sheetcalc.yaml)"
        )
        emit_error(
            EventType.sheet_rejected,
            msg,
            {"sheet_name": sheet.name, "path": str(path)},
            error_code=SHEET_TOO_LARGE,
        )
        raise click.ClickException(msg)
    return sheet


def _count_formulas(sheet) -> int:
    from sheetcalc.formulas import is_formula

    return sum(1 for raw in sheet.cells.values() if is_formula(raw))


def _echo_errors(errors: dict[str, str]) -> None:
    if not errors:
        return
    click.echo(f"{len(errors)} cell error(s):", err=True)
    for label, msg in sorted(errors.items()):
        click.echo(f"  {label}: {msg}", err=True)


# ---------------------------------------------------------------------------
# New
# ---------------------------------------------------------------------------


@main.command()
@click.argument("directory", type=click.Path())
def new(directory: str) -> None:
    """Create a new project in DIRECTORY with a demo sheet."""
    from sheetcalc.project import scaffold_project

    try:
        project_dir = scaffold_project(Path(directory))
    except FileExistsError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Created project at {project_dir}")
    click.echo(f"Try:  sheetcalc eval {project_dir / 'sheets' / 'main.yaml'} --project {project_dir}")


# ---------------------------------------------------------------------------
# Eval
# ---------------------------------------------------------------------------


@main.command("eval")
@click.argument("sheet_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--project", "directory", default=".", type=click.Path(exists=True, file_okay=False), help="Project directory.")
@click.option("--cell", "cells", multiple=True, help="Only print these cells (repeatable).")
@click.option(
    "--format",
    "fmt",
    default="table",
    type=click.Choice(["table", "csv", "json"]),
    help="Output format.",
)
def eval_cmd(sheet_file: str, directory: str, cells: tuple[str, ...], fmt: str) -> None:
    """Evaluate SHEET_FILE and print computed values."""
    from sheetcalc.a1 import a1_to_row_col
    from sheetcalc.cell_graph import evaluate_sheet
    from sheetcalc.formulas.errors import InvalidReference
    from sheetcalc.logging.events import report_evaluation
    from sheetcalc.matrix import build_matrix, display_value, matrix_to_frame

    _, cfg = _open_project(directory)
    sheet = _load_checked_sheet(sheet_file, cfg)
    precision = int(cfg["display_precision"])

    start = time.perf_counter()
    ev = evaluate_sheet(sheet)
    values: dict[str, Any] = {}
    matrix: list[list[Any]] = []
    if cells:
        for label in cells:
            try:
                a1_to_row_col(label)
            except InvalidReference as exc:
                raise click.ClickException(str(exc)) from exc
            values[label.strip().upper()] = ev.get(label)
    else:
        matrix = build_matrix(sheet, error_marker=str(cfg["error_marker"]), evaluation=ev)
    duration_ms = (time.perf_counter() - start) * 1000

    report_evaluation(
        sheet.name,
        ev.errors,
        formula_cells=_count_formulas(sheet),
        duration_ms=duration_ms,
    )

    if fmt == "json":
        payload: dict[str, Any] = {"sheet": sheet.name, "errors": dict(ev.errors)}
        if cells:
            payload["values"] = values
        else:
            payload["matrix"] = matrix
        click.echo(json.dumps(payload, indent=2, default=str))
        return

    if cells:
        marker = str(cfg["error_marker"])
        for label, value in values.items():
            shown = marker if label in ev.errors else display_value(value, precision)
            if fmt == "csv":
                click.echo(f"{label},{shown}")
            else:
                click.echo(f"{label} = {shown}")
    else:
        frame = matrix_to_frame(matrix, precision)
        if fmt == "csv":
            click.echo(frame.write_csv(), nl=False)
        else:
            click.echo(str(frame))

    _echo_errors(ev.errors)


# ---------------------------------------------------------------------------
# Check
# ---------------------------------------------------------------------------


@main.command()
@click.argument("sheet_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--project", "directory", default=".", type=click.Path(exists=True, file_okay=False), help="Project directory.")
@click.option("--json", "as_json", is_flag=True, help="Output report as JSON.")
def check(sheet_file: str, directory: str, as_json: bool) -> None:
    """Evaluate every formula in SHEET_FILE; exit 2 if any cell errors."""
    from sheetcalc.cell_graph import evaluate_sheet
    from sheetcalc.formulas import FormulaSyntaxError, extract_refs, parse_formula
    from sheetcalc.logging.events import report_evaluation

    _, cfg = _open_project(directory)
    sheet = _load_checked_sheet(sheet_file, cfg)

    ev = evaluate_sheet(sheet)
    results = ev.evaluate_all()
    report_evaluation(sheet.name, ev.errors, formula_cells=len(results))

    status = "fail" if ev.errors else "pass"
    if as_json:
        entries = []
        for label, value in results.items():
            formula = sheet.cells[label]
            try:
                refs = extract_refs(parse_formula(formula))
            except FormulaSyntaxError:
                refs = []
            entries.append(
                {
                    "cell": label,
                    "formula": formula,
                    "value": value,
                    "refs": refs,
                    "error": ev.errors.get(label),
                }
            )
        report = {"sheet": sheet.name, "status": status, "cells": entries}
        click.echo(json.dumps(report, indent=2, default=str))
    else:
        click.echo(f"Check sheet: {sheet.name}")
        click.echo(f"Formula cells: {len(results)}")
        click.echo(f"Status: {status.upper()}")
        if ev.errors:
            for label, msg in sorted(ev.errors.items()):
                click.echo(f"  FAIL: {label}: {msg}")
        else:
            click.echo("  All formulas evaluated cleanly.")

    if ev.errors:
        raise SystemExit(2)


# ---------------------------------------------------------------------------
# KPI value references
# ---------------------------------------------------------------------------


@main.command()
@click.argument("ref")
@click.argument("sheet_files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--project", "directory", default=".", type=click.Path(exists=True, file_okay=False), help="Project directory.")
@click.option("--raw", is_flag=True, help="Print the raw value instead of the KPI format.")
def kpi(ref: str, sheet_files: tuple[str, ...], directory: str, raw: bool) -> None:
    """Resolve REF (``sheet:<name>!<A1>``) against SHEET_FILES."""
    from sheetcalc.logging.events import (
        VALUE_REF_INVALID,
        EventType,
        emit_info,
        emit_warning,
    )
    from sheetcalc.matrix import display_value
    from sheetcalc.refs import format_kpi_value, parse_value_ref, resolve_value_ref

    _, cfg = _open_project(directory)
    sheets = [_load_checked_sheet(path, cfg) for path in sheet_files]

    parsed = parse_value_ref(ref)
    value = resolve_value_ref(parsed, sheets) if parsed is not None else None
    if value is None:
        reason = "malformed reference" if parsed is None else f"no sheet named {parsed.sheet_name!r}"
        emit_warning(
            EventType.value_ref_unresolved,
            f"Could not resolve {ref}: {reason}",
            {"value_ref": ref},
            error_code=VALUE_REF_INVALID,
        )
        click.echo(f"Could not resolve {ref}: {reason}", err=True)
        raise SystemExit(2)

    emit_info(
        EventType.value_ref_resolved,
        f"Resolved {parsed}",
        {"value_ref": str(parsed), "sheet_name": parsed.sheet_name, "cell": parsed.cell},
    )
    if raw:
        click.echo(display_value(value, int(cfg["display_precision"])))
    else:
        click.echo(format_kpi_value(value))


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@main.command("events")
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.option("--level", default=None, type=click.Choice(["info", "warning", "error"]), help="Filter by level.")
@click.option("--type", "event_type", default=None, help="Filter by event type.")
@click.option("--sheet", default=None, help="Filter by sheet name.")
@click.option("--cell", default=None, help="Filter by cell label (e.g. B3).")
@click.option("--limit", default=100, type=int, help="Maximum events to show.")
def events_cmd(
    directory: str,
    level: str | None,
    event_type: str | None,
    sheet: str | None,
    cell: str | None,
    limit: int,
) -> None:
    """Show structured event log for DIRECTORY."""
    from sheetcalc.logging.sink import EventSink

    sink = EventSink(Path(directory))
    events = sink.read_global(
        level=level,
        event_type=event_type,
        sheet=sheet,
        cell=cell,
        limit=limit,
    )

    if not events:
        click.echo("No events found.")
        return

    for evt in events:
        ts = evt.get("ts", "")
        lvl = evt.get("level", "").upper()
        etype = evt.get("event_type", "")
        msg = evt.get("message", "")
        err = evt.get("error_code")
        line = f"[{ts}] {lvl:7s} {etype}: {msg}"
        if err:
            line += f"  ({err})"
        click.echo(line)


if __name__ == "__main__":
    sys.exit(main())
