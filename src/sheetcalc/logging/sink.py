"""Filesystem NDJSON event sink with concurrency-safe appends.

Events are appended as one JSON line per event to ``logs/events.ndjson``
under the project directory.  Writes use ``json.dumps(sort_keys=True)``
for deterministic output.

Concurrency safety:

- Each append acquires an exclusive ``fcntl.flock`` on the log file.
- Reads acquire a shared lock.
- Lock duration is kept minimal (single write/read per lock).
- On platforms without ``fcntl`` (Windows), locking is skipped with a
  stderr warning.
"""

from __future__ import annotations

import json
import os
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Any, Iterator

from sheetcalc.logging.events import SheetcalcEvent

# Try to import fcntl for file locking (Unix only)
try:
    import fcntl

    _HAS_FCNTL = True
except ImportError:
    _HAS_FCNTL = False
    print(
        "[sheetcalc] fcntl not available; log file locking disabled",
        file=sys.stderr,
    )

# Default tail-read size (2 MB)
_DEFAULT_TAIL_BYTES = 2 * 1024 * 1024

_MAX_READ_LIMIT = 2000


@contextmanager
def _locked(f: IO[bytes], *, exclusive: bool) -> Iterator[IO[bytes]]:
    """Hold an ``flock`` on *f* for the duration of the block (no-op without fcntl)."""
    if not _HAS_FCNTL:
        yield f
        return
    fcntl.flock(f.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
    try:
        yield f
    finally:
        fcntl.flock(f.fileno(), fcntl.LOCK_UN)


class EventSink:
    """Append-only NDJSON event log for one sheetcalc project."""

    def __init__(self, project_dir: Path, *, fsync: bool = False, tail_bytes: int | None = None) -> None:
        self.logs_dir = Path(project_dir) / "logs"
        self._fsync = fsync
        self._tail_bytes = tail_bytes if tail_bytes is not None else _DEFAULT_TAIL_BYTES
        self.logs_dir.mkdir(parents=True, exist_ok=True)

    @property
    def global_path(self) -> Path:
        return self.logs_dir / "events.ndjson"

    def write(self, event: SheetcalcEvent) -> None:
        """Append *event* as one line of ``logs/events.ndjson``."""
        line = json.dumps(event.model_dump(mode="json"), sort_keys=True, default=str) + "\n"
        self.logs_dir.mkdir(parents=True, exist_ok=True)
        with open(self.global_path, "ab") as f, _locked(f, exclusive=True):
            f.write(line.encode("utf-8"))
            f.flush()
            if self._fsync:
                os.fsync(f.fileno())

    # ------------------------------------------------------------------
    # Query helpers (used by ``sheetcalc events``)
    # ------------------------------------------------------------------

    def read_global(
        self,
        *,
        level: str | None = None,
        event_type: str | None = None,
        sheet: str | None = None,
        cell: str | None = None,
        limit: int = 200,
    ) -> list[dict[str, Any]]:
        """Read events most-recent-first, filtered by level, type, sheet and cell.

        *sheet* and *cell* match the ``sheet_name`` / ``cell`` attribution
        carried by evaluation events; *cell* is case-insensitive.  Only the
        tail of the log is read (``logging_tail_bytes``).
        """
        limit = min(limit, _MAX_READ_LIMIT)
        want_cell = cell.strip().upper() if cell else None

        matched: list[dict[str, Any]] = []
        for event in reversed(self._read_events()):
            ctx = event.get("context") or {}
            if level and event.get("level") != level:
                continue
            if event_type and event.get("event_type") != event_type:
                continue
            if sheet and ctx.get("sheet_name") != sheet:
                continue
            if want_cell and str(ctx.get("cell", "")).upper() != want_cell:
                continue
            matched.append(event)
            if len(matched) >= limit:
                break
        return matched

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _read_events(self) -> list[dict[str, Any]]:
        """Decode the tail of the log, oldest first; corrupt lines are skipped."""
        if not self.global_path.exists():
            return []
        events: list[dict[str, Any]] = []
        for line in self._read_tail().splitlines():
            if not line.strip():
                continue
            try:
                events.append(json.loads(line))
            except json.JSONDecodeError:
                continue
        return events

    def _read_tail(self) -> str:
        """Last ``tail_bytes`` of the log, starting at a line boundary."""
        with open(self.global_path, "rb") as f, _locked(f, exclusive=False):
            size = os.fstat(f.fileno()).st_size
            if size <= self._tail_bytes:
                return f.read().decode("utf-8", errors="replace")
            # One byte before the window tells whether it opens on a line start
            f.seek(size - self._tail_bytes - 1)
            data = f.read()
        cut = data.find(b"\n")
        data = data[cut + 1:] if cut >= 0 else b""
        return data.decode("utf-8", errors="replace")
