"""Tree-walking evaluator for parsed formula expressions.

Values flowing through the evaluator are scalars (``int``, ``float``,
``bool``, ``str``, ``None``) or, for range references, lists of numbers.
Operators and functions coerce their operands with :func:`to_number`, so
evaluation never fails on a type mismatch: text that is not numeric, empty
cells and ranges used as operands all read as 0.
"""

from __future__ import annotations

import math
import re
from typing import Any, Callable, Protocol

from sheetcalc.formulas.errors import FormulaError
from sheetcalc.formulas.nodes import BinaryOp, Call, CellRef, Negate, Node, Number, RangeRef


# ---------------------------------------------------------------------------
# Resolver protocol: supplies cell values (may trigger recursive evaluation)
# ---------------------------------------------------------------------------


class CellResolver(Protocol):
    """Protocol for resolving cell references during evaluation."""

    def resolve_cell(self, label: str) -> Any:
        """Resolve a cell value (may trigger recursive evaluation)."""
        ...

    def resolve_range(self, start: str, end: str) -> list[Any]:
        """Resolve a rectangular range to a flat list of values (row-major)."""
        ...


def evaluate_formula(node: Node, resolver: CellResolver) -> Any:
    """Evaluate an expression tree.

    Args:
        node: Root from ``parse_formula()``.
        resolver: Supplies the value of every referenced cell.

    Returns:
        The computed value; a list only when *node* is a bare range.
    """
    return _eval(node, resolver)


# ---------- Coercion ----------


_DECIMAL_RE = re.compile(r"^[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?$")
_PREFIXED_RE = re.compile(r"^0([xXoObB])([0-9A-Za-z]+)$")
_RADIX = {"x": 16, "o": 8, "b": 2}


def to_number(value: Any) -> int | float:
    """Coerce a value to a number.

    number -> itself, bool -> 1/0, numeric text -> its value, everything
    else (``None``, empty or non-numeric text, non-finite text, lists) -> 0.

    Numeric text is signed decimal with an optional exponent (``"-1.5e3"``)
    or an unsigned ``0x`` / ``0o`` / ``0b`` integer.  Python-only spellings
    such as ``"1_000"``, ``"inf"`` or ``"nan"`` are not numeric.
    """
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (int, float)):
        return value
    if not isinstance(value, str):
        return 0
    text = value.strip()
    if _DECIMAL_RE.match(text):
        n = float(text)
        return n if math.isfinite(n) else 0
    m = _PREFIXED_RE.match(text)
    if m:
        try:
            return float(int(m.group(2), _RADIX[m.group(1).lower()]))
        except ValueError:
            return 0
    return 0


def flatten_numbers(values: Any) -> list[int | float]:
    """Recursively flatten nested lists and coerce every leaf with ``to_number``."""
    if isinstance(values, (list, tuple)):
        out: list[int | float] = []
        for v in values:
            out.extend(flatten_numbers(v))
        return out
    return [to_number(values)]


# ---------- Tree walk ----------


def _eval(node: Node, resolver: CellResolver) -> Any:
    """Recursively evaluate a tree node."""
    if isinstance(node, Number):
        return node.value

    if isinstance(node, CellRef):
        return resolver.resolve_cell(node.label)

    if isinstance(node, RangeRef):
        return [to_number(v) for v in resolver.resolve_range(node.start, node.end)]

    if isinstance(node, Negate):
        return -to_number(_eval(node.operand, resolver))

    if isinstance(node, BinaryOp):
        left = to_number(_eval(node.left, resolver))
        right = to_number(_eval(node.right, resolver))
        return _binary_op(node.op, left, right)

    if isinstance(node, Call):
        return _eval_func(node, resolver)

    raise FormulaError(f"Unknown node type: {type(node).__name__}")


def _binary_op(op: str, left: int | float, right: int | float) -> Any:
    """Apply an arithmetic or comparison operator to coerced operands."""
    if op == "+":
        return left + right
    if op == "-":
        return left - right
    if op == "*":
        return left * right
    if op == "/":
        # Division by zero reads as 0, never inf or an error.
        if right == 0:
            return 0
        return left / right
    if op == "=":
        return left == right
    if op == "!=":
        return left != right
    if op == ">":
        return left > right
    if op == ">=":
        return left >= right
    if op == "<":
        return left < right
    if op == "<=":
        return left <= right
    raise FormulaError(f"Unknown operator: {op!r}")


# ---------- Function dispatch ----------

_ZERO = Number(0)


def _eval_func(node: Call, resolver: CellResolver) -> Any:
    """Evaluate a function call node."""
    func_name = node.name.upper()

    # Lazy functions receive unevaluated nodes
    if func_name in _LAZY_FUNCTIONS:
        return _LAZY_FUNCTIONS[func_name](node.args, resolver)

    # Arguments are evaluated even for unknown functions so that their
    # cycles and errors are still recorded.
    evaluated_args = [_eval(arg, resolver) for arg in node.args]

    fn = _FUNC_TABLE.get(func_name)
    if fn is None:
        return 0
    return fn(evaluated_args)


def _fn_sum(args: list) -> int | float:
    return sum(flatten_numbers(args))


def _fn_average(args: list) -> int | float:
    nums = flatten_numbers(args)
    if not nums:
        return 0
    return sum(nums) / len(nums)


def _fn_min(args: list) -> int | float:
    nums = flatten_numbers(args)
    return min(nums) if nums else 0


def _fn_max(args: list) -> int | float:
    nums = flatten_numbers(args)
    return max(nums) if nums else 0


def _fn_round(args: list) -> int | float:
    """ROUND(value [, digits]) -- half-up rounding, digits clamped to 0..10."""
    x = to_number(args[0] if args else None)
    raw_digits = to_number(args[1] if len(args) > 1 else None)
    if math.isnan(raw_digits):
        raw_digits = 0
    digits = max(0, min(10, math.floor(raw_digits) if math.isfinite(raw_digits) else raw_digits))
    factor = 10 ** int(digits)
    scaled = x * factor
    if not math.isfinite(scaled):
        return x
    return math.floor(scaled + 0.5) / factor


def _fn_if(raw_args: tuple[Node, ...], resolver: CellResolver) -> Any:
    """IF(condition, then_value, else_value) -- only the chosen branch is evaluated."""
    condition = raw_args[0] if len(raw_args) > 0 else _ZERO
    then_node = raw_args[1] if len(raw_args) > 1 else _ZERO
    else_node = raw_args[2] if len(raw_args) > 2 else _ZERO
    if _truthy(_eval(condition, resolver)):
        return _eval(then_node, resolver)
    return _eval(else_node, resolver)


def _truthy(value: Any) -> bool:
    if isinstance(value, float) and math.isnan(value):
        return False
    # Ranges test true even when empty.
    if isinstance(value, list):
        return True
    return bool(value)


_FUNC_TABLE: dict[str, Callable[[list], Any]] = {
    "SUM": _fn_sum,
    "AVERAGE": _fn_average,
    "MIN": _fn_min,
    "MAX": _fn_max,
    "ROUND": _fn_round,
}

_LAZY_FUNCTIONS: dict[str, Callable[[tuple[Node, ...], CellResolver], Any]] = {
    "IF": _fn_if,
}

SUPPORTED_FUNCTIONS = frozenset(_FUNC_TABLE) | frozenset(_LAZY_FUNCTIONS)

# Leading arguments a lazy function always evaluates (IF: the condition).
_LAZY_EAGER_ARGS: dict[str, int] = {"IF": 1}


# ---------- Dependencies ----------


def eager_refs(node: Node) -> list[str]:
    """References that evaluating *node* resolves whatever branches are taken.

    Like :func:`~sheetcalc.formulas.nodes.extract_refs` (source order, no
    duplicates, ranges as ``"A1:B3"``) but skips the branches of lazy
    functions, so resolving these refs ahead of time never touches a cell
    that ``IF`` would leave alone.
    """
    seen: dict[str, None] = {}
    stack: list[Node] = [node]
    while stack:
        current = stack.pop()
        if isinstance(current, CellRef):
            seen.setdefault(current.label)
        elif isinstance(current, RangeRef):
            seen.setdefault(current.text)
        elif isinstance(current, Negate):
            stack.append(current.operand)
        elif isinstance(current, BinaryOp):
            stack.append(current.right)
            stack.append(current.left)
        elif isinstance(current, Call):
            name = current.name.upper()
            args = current.args
            if name in _LAZY_FUNCTIONS:
                args = args[: _LAZY_EAGER_ARGS.get(name, 0)]
            stack.extend(reversed(args))
    return list(seen)
