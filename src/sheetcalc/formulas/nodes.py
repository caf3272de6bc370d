"""Expression tree for parsed formulas.

One frozen dataclass per node kind; ``Node`` is their union.  Trees are
built once per formula per evaluation session and never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

ARITHMETIC_OPS = frozenset({"+", "-", "*", "/"})
COMPARISON_OPS = frozenset({"=", "!=", ">", ">=", "<", "<="})


@dataclass(frozen=True)
class Number:
    value: int | float


@dataclass(frozen=True)
class CellRef:
    label: str


@dataclass(frozen=True)
class RangeRef:
    start: str
    end: str

    @property
    def text(self) -> str:
        return f"{self.start}:{self.end}"


@dataclass(frozen=True)
class Negate:
    operand: Node


@dataclass(frozen=True)
class BinaryOp:
    """Arithmetic (``+ - * /``) or comparison (``= != > >= < <=``) operator."""

    op: str
    left: Node
    right: Node


@dataclass(frozen=True)
class Call:
    name: str
    args: tuple[Node, ...] = ()


Node = Union[Number, CellRef, RangeRef, Negate, BinaryOp, Call]


def extract_refs(node: Node) -> list[str]:
    """Return every single-cell label and range text referenced by *node*.

    Ranges are reported as ``"A1:B3"``; labels keep source order and
    duplicates are dropped.
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
            stack.extend(reversed(current.args))
    return list(seen)
