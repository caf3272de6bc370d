"""Tests for the sheetcalc structured event logging system."""

from __future__ import annotations

import json
from pathlib import Path

import pytest


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """Create a minimal project directory."""
    (tmp_path / "logs").mkdir()
    return tmp_path


@pytest.fixture
def sink(project_dir: Path):
    from sheetcalc.logging.sink import EventSink

    return EventSink(project_dir)


@pytest.fixture(autouse=True)
def _detach_sink():
    from sheetcalc.logging.events import reset_sink

    reset_sink()
    yield
    reset_sink()


def _read_lines(project_dir: Path) -> list[dict]:
    log_path = project_dir / "logs" / "events.ndjson"
    return [json.loads(line) for line in log_path.read_text().strip().splitlines()]


# ---------------------------------------------------------------------------
# A) Event schema
# ---------------------------------------------------------------------------


class TestSheetcalcEvent:
    def test_event_defaults(self):
        from sheetcalc.logging.events import EventLevel, EventType, SheetcalcEvent

        evt = SheetcalcEvent(
            level=EventLevel.info,
            event_type=EventType.sheet_evaluated,
            message="hello",
        )
        assert evt.schema_version == 1
        assert evt.ts.endswith("Z")
        assert evt.level == "info"
        assert evt.event_type == "sheet_evaluated"
        assert evt.context == {}
        assert evt.error_code is None

    def test_event_serialization(self):
        from sheetcalc.logging.events import EventLevel, EventType, SheetcalcEvent

        evt = SheetcalcEvent(
            level=EventLevel.warning,
            event_type=EventType.cell_cycle,
            message="loop",
            context={"sheet_name": "main", "cell": "A1"},
        )
        d = evt.model_dump(mode="json")
        assert d["level"] == "warning"
        assert d["event_type"] == "cell_cycle"
        assert d["context"]["cell"] == "A1"

    def test_all_event_types_exist(self):
        from sheetcalc.logging.events import EventType

        assert {e.value for e in EventType} == {
            "sheet_evaluated",
            "sheet_rejected",
            "cell_error",
            "cell_cycle",
            "value_ref_resolved",
            "value_ref_unresolved",
        }

    def test_unknown_event_type_rejected(self):
        from pydantic import ValidationError

        from sheetcalc.logging.events import EventLevel, SheetcalcEvent

        with pytest.raises(ValidationError):
            SheetcalcEvent(level=EventLevel.info, event_type="run_started")


# ---------------------------------------------------------------------------
# B) Redaction and attribution
# ---------------------------------------------------------------------------


class TestRedaction:
    def test_long_strings_truncated(self):
        from sheetcalc.logging.events import redact_context

        ctx = redact_context({"formula": "=" + "A1+" * 200, "cell": "B2"})
        assert ctx["formula"].endswith("...[truncated]")
        assert len(ctx["formula"]) == 256 + len("...[truncated]")
        assert ctx["cell"] == "B2"

    def test_nested_values(self):
        from sheetcalc.logging.events import redact_context

        ctx = redact_context({"outer": {"inner": "x" * 300}, "items": ["y" * 300, 1]})
        assert ctx["outer"]["inner"].endswith("...[truncated]")
        assert ctx["items"][0].endswith("...[truncated]")
        assert ctx["items"][1] == 1

    def test_input_not_mutated(self):
        from sheetcalc.logging.events import redact_context

        original = {"formula": "z" * 300}
        redact_context(original)
        assert len(original["formula"]) == 300


class TestAttribution:
    def test_missing_keys_downgrade_to_warning(self, project_dir):
        from sheetcalc.logging.events import EventType, emit_error, set_project_dir

        set_project_dir(project_dir)
        emit_error(EventType.cell_error, "boom", {"sheet_name": "main"})

        (parsed,) = _read_lines(project_dir)
        assert parsed["level"] == "warning"
        assert parsed["context"]["_missing_attribution"] == ["cell"]

    def test_complete_attribution_kept(self, project_dir):
        from sheetcalc.logging.events import EventType, emit_error, set_project_dir

        set_project_dir(project_dir)
        emit_error(EventType.cell_error, "boom", {"sheet_name": "main", "cell": "A1"})

        (parsed,) = _read_lines(project_dir)
        assert parsed["level"] == "error"
        assert "_missing_attribution" not in parsed["context"]

    def test_sheet_rejected_needs_no_attribution(self, project_dir):
        from sheetcalc.logging.events import EventType, emit_error, set_project_dir

        set_project_dir(project_dir)
        emit_error(EventType.sheet_rejected, "bad file", error_code="sheet_load_failed")

        (parsed,) = _read_lines(project_dir)
        assert parsed["level"] == "error"


# ---------------------------------------------------------------------------
# C) Sink
# ---------------------------------------------------------------------------


class TestEventSink:
    def _event(self, message: str = "m", level: str = "info", **context):
        from sheetcalc.logging.events import EventType, SheetcalcEvent

        return SheetcalcEvent(
            level=level,
            event_type=EventType.sheet_evaluated,
            message=message,
            context=context,
        )

    def test_write_creates_global_log(self, sink, project_dir):
        sink.write(self._event(sheet_name="main"))
        assert (project_dir / "logs" / "events.ndjson").exists()

    def test_sink_creates_logs_dir(self, tmp_path):
        from sheetcalc.logging.sink import EventSink

        EventSink(tmp_path / "fresh")
        assert (tmp_path / "fresh" / "logs").is_dir()

    def test_json_sort_keys(self, sink, project_dir):
        sink.write(self._event())
        line = (project_dir / "logs" / "events.ndjson").read_text().strip()
        keys = list(json.loads(line).keys())
        assert keys == sorted(keys)

    def test_append_mode(self, sink, project_dir):
        for i in range(3):
            sink.write(self._event(f"eval {i}"))
        assert len(_read_lines(project_dir)) == 3

    def test_read_global_returns_most_recent_first(self, sink):
        for i in range(3):
            sink.write(self._event(f"eval {i}"))
        events = sink.read_global()
        assert [e["message"] for e in events] == ["eval 2", "eval 1", "eval 0"]

    def test_read_global_filters(self, sink):
        sink.write(self._event("a", level="info", sheet_name="main"))
        sink.write(self._event("b", level="warning", sheet_name="other"))
        sink.write(self._event("c", level="info", sheet_name="other"))

        assert [e["message"] for e in sink.read_global(level="warning")] == ["b"]
        assert [e["message"] for e in sink.read_global(sheet="other")] == ["c", "b"]
        assert sink.read_global(event_type="cell_error") == []
        assert len(sink.read_global(event_type="sheet_evaluated")) == 3

    def test_read_global_cell_filter(self, sink):
        sink.write(self._event("a", sheet_name="main", cell="A1"))
        sink.write(self._event("b", sheet_name="main", cell="B2"))
        sink.write(self._event("c", sheet_name="other", cell="B2"))
        sink.write(self._event("summary", sheet_name="main"))

        assert [e["message"] for e in sink.read_global(cell="b2")] == ["c", "b"]
        assert [e["message"] for e in sink.read_global(cell="B2", sheet="main")] == ["b"]
        assert sink.read_global(cell="Z9") == []

    def test_read_global_limit(self, sink):
        for i in range(10):
            sink.write(self._event(f"eval {i}"))
        events = sink.read_global(limit=3)
        assert [e["message"] for e in events] == ["eval 9", "eval 8", "eval 7"]

    def test_read_skips_corrupt_lines(self, sink, project_dir):
        sink.write(self._event("ok"))
        with open(project_dir / "logs" / "events.ndjson", "a") as f:
            f.write("{not json\n")
        assert [e["message"] for e in sink.read_global()] == ["ok"]

    def test_tail_read_drops_partial_line(self, project_dir):
        from sheetcalc.logging.sink import EventSink

        sink = EventSink(project_dir, tail_bytes=400)
        for i in range(20):
            sink.write(self._event(f"eval {i}"))
        events = sink.read_global()
        assert events
        assert events[0]["message"] == "eval 19"
        assert len(events) < 20

    def test_tail_window_on_line_boundary_keeps_first_line(self, sink, project_dir):
        from sheetcalc.logging.sink import EventSink

        for i in range(5):
            sink.write(self._event(f"eval {i}"))
        raw = (project_dir / "logs" / "events.ndjson").read_bytes()
        last_two = raw.splitlines(keepends=True)[-2:]
        tail = EventSink(project_dir, tail_bytes=sum(len(line) for line in last_two))
        assert [e["message"] for e in tail.read_global()] == ["eval 4", "eval 3"]

    def test_read_missing_log_returns_empty(self, sink):
        assert sink.read_global() == []


# ---------------------------------------------------------------------------
# D) Emit helpers
# ---------------------------------------------------------------------------


class TestEmitHelpers:
    def test_emit_without_project_dir_is_noop(self, project_dir):
        from sheetcalc.logging.events import EventType, emit_info

        emit_info(EventType.sheet_evaluated, "test", {"sheet_name": "main"})
        assert not (project_dir / "logs" / "events.ndjson").exists()

    def test_set_project_dir_enables_logging(self, project_dir):
        from sheetcalc.logging.events import EventType, emit_info, set_project_dir

        set_project_dir(project_dir)
        emit_info(EventType.sheet_evaluated, "hello from test", {"sheet_name": "main"})

        lines = _read_lines(project_dir)
        assert len(lines) == 1
        assert lines[0]["message"] == "hello from test"

    def test_logging_disabled_in_config(self, project_dir):
        from sheetcalc.logging.events import EventType, emit_info, set_project_dir

        (project_dir / "sheetcalc.yaml").write_text("logging_enabled: false\n")
        set_project_dir(project_dir)
        emit_info(EventType.sheet_evaluated, "dropped", {"sheet_name": "main"})
        assert not (project_dir / "logs" / "events.ndjson").exists()

    def test_emit_warning_sets_error_code(self, project_dir):
        from sheetcalc.logging.events import EventType, emit_warning, set_project_dir

        set_project_dir(project_dir)
        emit_warning(
            EventType.value_ref_unresolved,
            "no such sheet",
            {"value_ref": "sheet:x!A1"},
            error_code="value_ref_invalid",
        )

        (parsed,) = _read_lines(project_dir)
        assert parsed["level"] == "warning"
        assert parsed["error_code"] == "value_ref_invalid"

    def test_emit_never_raises(self, capsys):
        import sheetcalc.logging.events as mod
        from sheetcalc.logging.events import EventType, emit_info

        class _BrokenSink:
            def write(self, event):
                raise OSError("disk full")

        mod._sink = _BrokenSink()
        mod._last_stderr_ts = 0.0
        emit_info(EventType.sheet_evaluated, "x", {"sheet_name": "main"})
        assert "logging failed" in capsys.readouterr().err


# ---------------------------------------------------------------------------
# E) Evaluation reporting
# ---------------------------------------------------------------------------


class TestReportEvaluation:
    def test_summary_and_cell_events(self, project_dir):
        from sheetcalc.formulas.errors import CYCLE
        from sheetcalc.logging.events import report_evaluation, set_project_dir

        set_project_dir(project_dir)
        report_evaluation(
            "main",
            {"A1": CYCLE, "B2": "Formula syntax error: Unexpected end of formula"},
            formula_cells=4,
            duration_ms=1.23456,
        )

        events = _read_lines(project_dir)
        assert [e["event_type"] for e in events] == ["cell_cycle", "cell_error", "sheet_evaluated"]
        assert events[0]["error_code"] == "formula_cycle"
        assert events[0]["context"] == {"sheet_name": "main", "cell": "A1"}
        assert events[1]["error_code"] == "formula_eval_error"
        summary = events[2]
        assert summary["level"] == "info"
        assert summary["context"]["formula_cells"] == 4
        assert summary["context"]["error_cells"] == 2
        assert summary["context"]["duration_ms"] == 1.235

    def test_clean_evaluation(self, project_dir):
        from sheetcalc.logging.events import report_evaluation, set_project_dir

        set_project_dir(project_dir)
        report_evaluation("main", {}, formula_cells=2)

        (summary,) = _read_lines(project_dir)
        assert summary["event_type"] == "sheet_evaluated"
        assert "duration_ms" not in summary["context"]
