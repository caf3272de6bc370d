"""A1-style coordinate codec.

Columns use bijective base-26 letters (A=1 ... Z=26, AA=27, no zero digit),
rows are 1-based in labels and 0-based everywhere else::

    >>> row_col_to_a1(2, 0)
    'A3'
    >>> a1_to_row_col("AA10")
    (9, 26)
"""

from __future__ import annotations

import re

from sheetcalc.formulas.errors import InvalidReference

_ADDR_RE = re.compile(r"^([A-Za-z]+)(\d+)$")

_A_CODE = ord("A")


def col_index_to_letters(index: int) -> str:
    """Convert 0-based column index to letter(s).  0=A, 25=Z, 26=AA."""
    if index < 0:
        raise InvalidReference(str(index), f"Invalid column index: {index}")
    result = ""
    n = index + 1
    while n > 0:
        n, rem = divmod(n - 1, 26)
        result = chr(_A_CODE + rem) + result
    return result


def letters_to_col_index(letters: str) -> int:
    """Convert column letter(s) to 0-based index.  A=0, B=1, ..., Z=25, AA=26.

    Raises:
        InvalidReference: If *letters* is empty or contains anything outside A-Z.
    """
    if not letters:
        raise InvalidReference(letters, "Invalid column letters: ''")
    idx = 0
    for ch in letters.upper():
        v = ord(ch) - _A_CODE + 1
        if v < 1 or v > 26:
            raise InvalidReference(letters, f"Invalid column letters: {letters!r}")
        idx = idx * 26 + v
    return idx - 1


def row_col_to_a1(row: int, col: int) -> str:
    """Build an A1 label from 0-based row/col."""
    if row < 0:
        raise InvalidReference(str(row), f"Invalid row index: {row}")
    return f"{col_index_to_letters(col)}{row + 1}"


def a1_to_row_col(label: str) -> tuple[int, int]:
    """Parse ``'A1'`` -> ``(row_0based, col_0based)``.

    Raises:
        InvalidReference: On a malformed label or a row number below 1.
    """
    m = _ADDR_RE.match(label.strip())
    if not m:
        raise InvalidReference(label, f"Invalid A1 ref: {label!r}")
    col = letters_to_col_index(m.group(1))
    row = int(m.group(2)) - 1
    if row < 0:
        raise InvalidReference(label, f"Invalid A1 row: {label!r}")
    return row, col


def expand_a1_range(range_ref: str) -> list[str]:
    """Expand a rectangular range (e.g. ``A1:C3``) into labels, row-major.

    Corners may be given in any order; both axes are normalised so the
    result always walks from the top-left to the bottom-right corner.
    """
    parts = range_ref.split(":")
    if len(parts) != 2 or not parts[0].strip() or not parts[1].strip():
        raise InvalidReference(range_ref, f"Invalid range: {range_ref!r}")
    r0, c0 = a1_to_row_col(parts[0])
    r1, c1 = a1_to_row_col(parts[1])
    if r0 > r1:
        r0, r1 = r1, r0
    if c0 > c1:
        c0, c1 = c1, c0
    labels: list[str] = []
    for r in range(r0, r1 + 1):
        for c in range(c0, c1 + 1):
            labels.append(row_col_to_a1(r, c))
    return labels
