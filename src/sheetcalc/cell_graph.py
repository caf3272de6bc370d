"""On-demand memoized cell formula evaluator.

Evaluates sheet cell formulas lazily: a cell is computed only when
requested or referenced, and the result is cached for the duration of one
evaluation session.  Circular references are detected with an in-progress
set and recorded as ``#CYCLE!`` against the cell that closed the loop.

Dependency chains are resolved bottom-up with an explicit stack before a
cell's own formula runs, so the depth of a chain (a running total down a
thousand rows, say) never turns into Python recursion depth.  Only refs
inside ``IF`` branches are resolved on demand, to keep the untaken branch
untouched.

Errors never escape a session: every failure while resolving one formula
cell is recorded under that cell's label and the cell reads as 0, so
sibling and dependent cells keep evaluating.
"""

from __future__ import annotations

from typing import Any, Iterator

from sheetcalc.a1 import expand_a1_range
from sheetcalc.formulas.errors import (
    CYCLE,
    ENGINE_ERRORS,
    FormulaSyntaxError,
    FormulaValueError,
    InvalidReference,
)
from sheetcalc.formulas.evaluator import eager_refs, evaluate_formula
from sheetcalc.formulas.nodes import Node
from sheetcalc.formulas.parser import is_formula, parse_formula
from sheetcalc.sheet import Sheet, literal_value


class SheetEvaluation:
    """One evaluation session over a sheet.

    Usage::

        ev = evaluate_sheet(sheet)
        value = ev.get("B3")
        if ev.errors:
            ...

    Parameters
    ----------
    sheet : Sheet
        The grid to evaluate.  Never mutated.
    """

    def __init__(self, sheet: Sheet) -> None:
        self.sheet = sheet
        self._cache: dict[str, Any] = {}
        self._trees: dict[str, Node] = {}
        self._in_progress: set[str] = set()
        self._errors: dict[str, str] = {}

    # ------------------------------------------------------------------
    # CellResolver protocol implementation
    # ------------------------------------------------------------------

    def resolve_cell(self, label: str) -> Any:
        """Resolve a referenced cell, triggering recursive evaluation if needed."""
        return self.get(label)

    def resolve_range(self, start: str, end: str) -> list[Any]:
        """Resolve a rectangular range to a flat list of values (row-major)."""
        return [self.get(label) for label in expand_a1_range(f"{start}:{end}")]

    # ------------------------------------------------------------------
    # Core evaluation
    # ------------------------------------------------------------------

    def get(self, label: str) -> Any:
        """Evaluate a single cell, with memoization and cycle detection.

        Args:
            label: A1 label (case-insensitive).

        Returns:
            The resolved value.  Empty cells, cells that errored and cells
            caught in a cycle all read as 0.
        """
        key = label.strip().upper()

        # Already computed?
        if key in self._cache:
            return self._cache[key]

        # Cycle detection
        if key in self._in_progress:
            self._errors[key] = CYCLE
            return 0

        raw = self.sheet.cells.get(key)

        if not is_formula(raw):
            # Literal value (or empty cell)
            value = 0 if raw is None else literal_value(raw)
            self._cache[key] = value
            return value

        self._in_progress.add(key)
        try:
            self._resolve_dependencies(key)
            return self._evaluate_cell(key, raw)
        finally:
            self._in_progress.discard(key)

    def _resolve_dependencies(self, root: str) -> None:
        """Evaluate the pending formula cells *root* depends on, deepest first.

        Walks the eager dependency graph with an explicit stack.  Every cell
        pushed is marked in progress, exactly as a nested ``get`` would mark
        it, so a ref back into the current path is left for the formula
        itself to hit and record as ``#CYCLE!``.
        """
        stack: list[tuple[str, Iterator[str]]] = [(root, iter(self._dependencies(root)))]
        try:
            while stack:
                label, deps = stack[-1]
                dep = next(deps, None)
                if dep is None:
                    stack.pop()
                    if label != root:
                        try:
                            self._evaluate_cell(label, self.sheet.cells[label])
                        finally:
                            self._in_progress.discard(label)
                    continue
                if dep in self._cache or dep in self._in_progress:
                    continue
                if not is_formula(self.sheet.cells.get(dep)):
                    continue
                self._in_progress.add(dep)
                stack.append((dep, iter(self._dependencies(dep))))
        finally:
            for label, _ in stack:
                if label != root:
                    self._in_progress.discard(label)

    def _dependencies(self, key: str) -> list[str]:
        """Cells the formula at *key* always reads; ranges expanded."""
        try:
            tree = self._tree(key)
        except FormulaSyntaxError:
            return []
        labels: list[str] = []
        for ref in eager_refs(tree):
            if ":" not in ref:
                labels.append(ref)
                continue
            try:
                labels.extend(expand_a1_range(ref))
            except InvalidReference:
                # Recorded against the cell when its formula runs.
                continue
        return labels

    def _tree(self, key: str) -> Node:
        tree = self._trees.get(key)
        if tree is None:
            tree = parse_formula(self.sheet.cells[key])
            self._trees[key] = tree
        return tree

    def _evaluate_cell(self, key: str, raw: str) -> Any:
        """Run the formula at *key* (already marked in progress) and memoize it."""
        try:
            result = evaluate_formula(self._tree(key), self)
            if isinstance(result, list):
                raise FormulaValueError(
                    f"Range cannot be used as a cell value: {raw.strip()[1:].strip()}"
                )
            # A cycle closed on this cell while it was resolving
            if key in self._errors:
                result = 0
        except ENGINE_ERRORS as exc:
            self._errors[key] = str(exc)
            result = 0
        self._cache[key] = result
        return result

    @property
    def errors(self) -> dict[str, str]:
        """Errors recorded so far in this session: label -> message.

        Live view; grows as more cells are resolved.
        """
        return self._errors

    def evaluate_all(self) -> dict[str, Any]:
        """Evaluate every formula cell.

        Returns:
            Dict of label -> computed value for formula cells, in cell-map order.
        """
        return {
            label: self.get(label)
            for label, raw in self.sheet.cells.items()
            if is_formula(raw)
        }


def evaluate_sheet(sheet: Sheet) -> SheetEvaluation:
    """Start a fresh evaluation session for *sheet*.

    Each call gets its own memo, error map and cycle set; nothing is shared
    between sessions, so separate sessions may run concurrently.
    """
    return SheetEvaluation(sheet)
