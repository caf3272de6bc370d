"""Unified event schema and module-level emit helpers.

All timestamps use UTC ISO-8601 with ``Z`` suffix.  The ``emit()``
family of functions is safe to call from any context -- failures are
swallowed and printed to stderr.
"""

from __future__ import annotations

import sys
import time
import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from sheetcalc.formulas.errors import CYCLE


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class EventLevel(str, Enum):
    info = "info"
    warning = "warning"
    error = "error"


class EventType(str, Enum):
    # Sheet lifecycle
    sheet_evaluated = "sheet_evaluated"
    sheet_rejected = "sheet_rejected"

    # Per-cell diagnostics
    cell_error = "cell_error"
    cell_cycle = "cell_cycle"

    # Value references
    value_ref_resolved = "value_ref_resolved"
    value_ref_unresolved = "value_ref_unresolved"


# ---------------------------------------------------------------------------
# Error codes
# ---------------------------------------------------------------------------

FORMULA_EVAL_ERROR = "formula_eval_error"
FORMULA_CYCLE = "formula_cycle"
SHEET_TOO_LARGE = "sheet_too_large"
SHEET_LOAD_FAILED = "sheet_load_failed"
VALUE_REF_INVALID = "value_ref_invalid"


# ---------------------------------------------------------------------------
# Context truncation
# ---------------------------------------------------------------------------

_MAX_VALUE_LEN = 256


def redact_context(context: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of *context* safe to persist.

    String values longer than 256 chars are truncated (formulas can be
    arbitrarily long); nested dicts and lists are handled recursively.
    """
    return _redact_dict(context)


def _redact_dict(d: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in d.items():
        if isinstance(v, dict):
            out[k] = _redact_dict(v)
        elif isinstance(v, list):
            out[k] = [_redact_value(item) for item in v]
        else:
            out[k] = _redact_value(v)
    return out


def _redact_value(v: Any) -> Any:
    if isinstance(v, dict):
        return _redact_dict(v)
    if isinstance(v, str) and len(v) > _MAX_VALUE_LEN:
        return v[:_MAX_VALUE_LEN] + "...[truncated]"
    return v


# ---------------------------------------------------------------------------
# Attribution invariants
# ---------------------------------------------------------------------------

_SHEET_EVENT_REQUIRED = {"sheet_name"}
_CELL_EVENT_REQUIRED = {"sheet_name", "cell"}

_EVENT_REQUIRED_KEYS: dict[str, set[str]] = {
    EventType.sheet_evaluated.value: _SHEET_EVENT_REQUIRED,
    EventType.sheet_rejected.value: set(),  # sheet may not have loaded
    EventType.cell_error.value: _CELL_EVENT_REQUIRED,
    EventType.cell_cycle.value: _CELL_EVENT_REQUIRED,
    EventType.value_ref_resolved.value: {"value_ref"},
    EventType.value_ref_unresolved.value: {"value_ref"},
}


def _validate_attribution(event: SheetcalcEvent) -> SheetcalcEvent:
    """Check required context keys; downgrade to warning if missing."""
    required = _EVENT_REQUIRED_KEYS.get(_event_type_value(event.event_type), set())
    if not required:
        return event
    missing = required - set(event.context.keys())
    if missing:
        ctx = dict(event.context)
        ctx["_missing_attribution"] = sorted(missing)
        return event.model_copy(update={"level": EventLevel.warning, "context": ctx})
    return event


def _event_type_value(event_type: EventType | str) -> str:
    return event_type.value if isinstance(event_type, EventType) else event_type


# ---------------------------------------------------------------------------
# Event model
# ---------------------------------------------------------------------------


def _utc_now() -> str:
    """Return current UTC timestamp in ISO-8601 with Z suffix."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class SheetcalcEvent(BaseModel):
    """A single structured log event."""

    schema_version: int = 1
    ts: str = Field(default_factory=_utc_now)
    level: EventLevel
    event_type: EventType
    context: dict[str, Any] = Field(default_factory=dict)
    message: str = ""
    error_code: str | None = None


# ---------------------------------------------------------------------------
# Module-level sink reference
# ---------------------------------------------------------------------------

# Lazily initialised when ``set_project_dir`` is called.
_sink: Any = None  # EventSink | None


def set_project_dir(project_dir: Any) -> None:
    """Configure the module-level event sink for a project directory.

    This should be called early in a CLI command.  If it is never called,
    or the project config sets ``logging_enabled: false``, ``emit()``
    silently discards events.

    Reads ``logging_fsync`` and ``logging_tail_bytes`` from the project
    config (``sheetcalc.yaml``) to configure the sink.
    """
    global _sink
    from pathlib import Path

    from sheetcalc.logging.sink import EventSink
    from sheetcalc.project import DEFAULT_CONFIG, load_project_config

    try:
        cfg = load_project_config(Path(project_dir))
    except (OSError, ValueError) as exc:
        _stderr_warning(f"could not read project config, using defaults: {exc}")
        cfg = dict(DEFAULT_CONFIG)

    if not cfg.get("logging_enabled", True):
        _sink = None
        return

    tail_bytes = cfg.get("logging_tail_bytes")
    _sink = EventSink(
        Path(project_dir),
        fsync=bool(cfg.get("logging_fsync", False)),
        tail_bytes=int(tail_bytes) if tail_bytes is not None else None,
    )


def reset_sink() -> None:
    """Detach the module-level sink (events are discarded afterwards)."""
    global _sink
    _sink = None


def _get_sink() -> Any:
    """Return the module-level sink, or None."""
    return _sink


# ---------------------------------------------------------------------------
# Rate-limited stderr warnings
# ---------------------------------------------------------------------------

_last_stderr_ts: float = 0.0
_STDERR_INTERVAL_SECS = 60.0


def _stderr_warning(msg: str) -> None:
    """Print a warning to stderr, rate-limited to one per 60 seconds."""
    global _last_stderr_ts
    now = time.monotonic()
    if _last_stderr_ts and now - _last_stderr_ts < _STDERR_INTERVAL_SECS:
        return
    _last_stderr_ts = now
    try:
        print(f"[sheetcalc] {msg}", file=sys.stderr)
    except Exception:
        pass


# ---------------------------------------------------------------------------
# Safe emit helpers
# ---------------------------------------------------------------------------


def emit(event: SheetcalcEvent) -> None:
    """Write an event to the project event log.

    **Never raises.**  On failure, prints a rate-limited warning to stderr.

    Applies context truncation and attribution validation before writing.
    """
    try:
        sink = _get_sink()
        if sink is None:
            return
        event = event.model_copy(update={"context": redact_context(event.context)})
        event = _validate_attribution(event)
        sink.write(event)
    except Exception:
        _stderr_warning(f"logging failed: {traceback.format_exc()}")


def emit_info(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
) -> None:
    """Convenience: emit an info-level event."""
    emit(
        SheetcalcEvent(
            level=EventLevel.info,
            event_type=event_type,
            message=message,
            context=context or {},
        )
    )


def emit_warning(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
    *,
    error_code: str | None = None,
) -> None:
    """Convenience: emit a warning-level event."""
    emit(
        SheetcalcEvent(
            level=EventLevel.warning,
            event_type=event_type,
            message=message,
            context=context or {},
            error_code=error_code,
        )
    )


def emit_error(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
    *,
    error_code: str | None = None,
) -> None:
    """Convenience: emit an error-level event."""
    emit(
        SheetcalcEvent(
            level=EventLevel.error,
            event_type=event_type,
            message=message,
            context=context or {},
            error_code=error_code,
        )
    )


# ---------------------------------------------------------------------------
# Evaluation reporting
# ---------------------------------------------------------------------------


def report_evaluation(
    sheet_name: str,
    errors: dict[str, str],
    *,
    formula_cells: int,
    duration_ms: float | None = None,
) -> None:
    """Emit the events for one finished evaluation session.

    One ``sheet_evaluated`` summary plus one warning per failed cell
    (``cell_cycle`` for circular references, ``cell_error`` otherwise).
    """
    for cell, message in sorted(errors.items()):
        ctx = {"sheet_name": sheet_name, "cell": cell}
        if message == CYCLE:
            emit_warning(
                EventType.cell_cycle,
                f"Circular reference at {sheet_name}!{cell}",
                ctx,
                error_code=FORMULA_CYCLE,
            )
        else:
            emit_warning(
                EventType.cell_error,
                message,
                ctx,
                error_code=FORMULA_EVAL_ERROR,
            )

    summary: dict[str, Any] = {
        "sheet_name": sheet_name,
        "formula_cells": formula_cells,
        "error_cells": len(errors),
    }
    if duration_ms is not None:
        summary["duration_ms"] = round(duration_ms, 3)
    emit_info(
        EventType.sheet_evaluated,
        f"Evaluated {formula_cells} formula cell(s) in {sheet_name!r}, {len(errors)} error(s)",
        summary,
    )
