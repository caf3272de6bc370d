"""Lark-based tokenizer and parser for sheet formulas.

Supports:
- Numeric literals: ``42``, ``3.5``, ``.25``, ``1.``
- Cell references: ``A1``, ``aa10`` (normalised to uppercase)
- Rectangular ranges: ``A1:B3``
- Arithmetic ``+ - * /``, unary minus, comparisons ``= != > >= < <=``
- Function calls: ``SUM(A1:A3, 2)``; a bare identifier evaluates to 0
"""

from __future__ import annotations

import re

from lark import Lark, Token, Transformer
from lark.exceptions import LarkError, UnexpectedCharacters, UnexpectedInput, UnexpectedToken

from sheetcalc.formulas.errors import FormulaSyntaxError
from sheetcalc.formulas.nodes import BinaryOp, Call, CellRef, Negate, Node, Number, RangeRef

# LALR(1) grammar over the formula body (the text after the leading ``=``).
# Operator precedence (lowest to highest):
#   1. Comparison: = != > >= < <=  (left-assoc, chainable: a=b=c is (a=b)=c)
#   2. Addition/subtraction: + -
#   3. Multiplication/division: * /
#   4. Unary minus
#   5. Atoms: number, cell, range, function call, bare identifier, (expr)
GRAMMAR = r"""
?start: comparison

?comparison: add
    | comparison (EQ | NE | GT | GE | LT | LE) add  -> binary

?add: mul
    | add (PLUS | MINUS) mul  -> binary

?mul: unary
    | mul (STAR | SLASH) unary  -> binary

?unary: primary
    | "-" unary  -> negate

?primary: NUMBER              -> number
    | CELL                    -> cell_ref
    | CELL ":" CELL           -> range_ref
    | IDENT "(" args ")"      -> call
    | IDENT                   -> bare_ident
    | "(" comparison ")"

args: comparison ("," comparison)*
    |

GE: ">="
LE: "<="
NE: "!="
GT: ">"
LT: "<"
EQ: "="
PLUS: "+"
MINUS: "-"
STAR: "*"
SLASH: "/"
LPAR: "("
RPAR: ")"
COMMA: ","
COLON: ":"

// Letters immediately followed by digits: a cell reference (A1, AA10).
CELL.2: /[A-Za-z]+[0-9]+/

// Letters alone: a function name candidate.
IDENT.1: /[A-Za-z]+/

// Digits and dots; validated by _check_number so "1.2.3" is rejected here.
NUMBER: /\.?[0-9][0-9.]*/

%import common.WS
%ignore WS
"""

_VALID_NUMBER_RE = re.compile(r"^([0-9]+\.?[0-9]*|\.[0-9]+)$")


def _check_number(token: Token) -> Token:
    if not _VALID_NUMBER_RE.match(token):
        raise FormulaSyntaxError(f"Invalid number: {str(token)!r}", position=token.start_pos)
    return token


def _upper(token: Token) -> Token:
    return token.update(value=token.upper())


def _parse_number(token: Token) -> int | float:
    """Parse a NUMBER token to int or float."""
    s = str(token)
    if "." in s:
        return float(s)
    return int(s)


class _TreeBuilder(Transformer):
    """Builds the dataclass expression tree while parsing."""

    def number(self, children: list) -> Number:
        return Number(_parse_number(children[0]))

    def cell_ref(self, children: list) -> CellRef:
        return CellRef(str(children[0]))

    def range_ref(self, children: list) -> RangeRef:
        return RangeRef(str(children[0]), str(children[1]))

    def negate(self, children: list) -> Negate:
        return Negate(children[0])

    def binary(self, children: list) -> BinaryOp:
        left, op, right = children
        return BinaryOp(str(op), left, right)

    def call(self, children: list) -> Call:
        name, args = children
        return Call(str(name), tuple(args))

    def args(self, children: list) -> list:
        return list(children)

    def bare_ident(self, children: list) -> Number:
        # Bare names are not supported; they read as 0.
        return Number(0)


_lexer_callbacks = {"NUMBER": _check_number, "CELL": _upper, "IDENT": _upper}

_parser = Lark(
    GRAMMAR,
    parser="lalr",
    lexer="basic",
    start="start",
    transformer=_TreeBuilder(),
    lexer_callbacks=_lexer_callbacks,
)


def _syntax_error(exc: LarkError, body: str) -> FormulaSyntaxError:
    """Translate a Lark exception into a FormulaSyntaxError with position."""
    if isinstance(exc, UnexpectedCharacters):
        ch = body[exc.pos_in_stream] if exc.pos_in_stream < len(body) else ""
        return FormulaSyntaxError(f"Unexpected character: {ch!r}", position=exc.pos_in_stream)
    if isinstance(exc, UnexpectedToken):
        token = exc.token
        if token.type == "$END":
            return FormulaSyntaxError("Unexpected end of formula", position=len(body))
        return FormulaSyntaxError(f"Unexpected token: {str(token)!r}", position=token.start_pos)
    if isinstance(exc, UnexpectedInput):
        return FormulaSyntaxError(str(exc), position=getattr(exc, "pos_in_stream", None))
    return FormulaSyntaxError(str(exc))


def tokenize(body: str) -> list[Token]:
    """Split a formula body into a flat list of typed tokens.

    Token types: ``NUMBER``, ``CELL``, ``IDENT``, the operators ``PLUS``,
    ``MINUS``, ``STAR``, ``SLASH``, ``EQ``, ``NE``, ``GT``, ``GE``, ``LT``,
    ``LE`` and the punctuation ``LPAR``, ``RPAR``, ``COMMA``, ``COLON``.

    Raises:
        FormulaSyntaxError: On an unknown character or malformed number.
    """
    try:
        return list(_parser.lex(body))
    except FormulaSyntaxError:
        raise
    except LarkError as exc:
        raise _syntax_error(exc, body) from exc


def parse_expression(body: str) -> Node:
    """Parse a formula body (without the leading ``=``) into an expression tree.

    Raises:
        FormulaSyntaxError: If the body has invalid syntax.
    """
    if not body.strip():
        raise FormulaSyntaxError("Unexpected end of formula", position=0)
    try:
        return _parser.parse(body)
    except FormulaSyntaxError:
        raise
    except LarkError as exc:
        raise _syntax_error(exc, body) from exc


def parse_formula(text: str) -> Node:
    """Parse a formula string (must start with ``=``) into an expression tree.

    Args:
        text: The formula text, e.g. ``"=SUM(A1:A3) * 2"``.

    Returns:
        The root node of the expression tree.

    Raises:
        FormulaSyntaxError: If the formula has invalid syntax.
    """
    text = text.strip()
    if not text.startswith("="):
        raise FormulaSyntaxError("Formula must start with '='", position=0)
    return parse_expression(text[1:])


def is_formula(value: object) -> bool:
    """True when *value* is a string whose first non-blank character is ``=``."""
    return isinstance(value, str) and value.strip().startswith("=")
