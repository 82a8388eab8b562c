"""
Expression language for the derive-column step.

A small grammar: arithmetic over decimals and string
concatenation over named columns and literals.  There is no function
call, attribute access or name lookup outside the row being evaluated,
so evaluation is pure and deterministic::

    expr   := concat
    concat := sum ('&' sum)*
    sum    := term (('+' | '-') term)*
    term   := unary (('*' | '/') unary)*
    unary  := '-' unary | atom
    atom   := NUMBER | STRING | IDENT | '[' column name ']' | '(' expr ')'

Semantics
---------
* Arithmetic requires ``Decimal`` operands; ``None`` propagates to ``None``.
* ``&`` joins the text form of both operands; ``None`` reads as ``""``.
* Division by zero raises ``ZeroDivisionError`` which the executor turns
  into a null cell plus a diagnostic.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import FrozenSet, List, Mapping, Tuple, Union

from recon_engine.errors import StepConfigError, ValueTypeError
from recon_engine.table import Value


# ---------------------------------------------------------------------------
# AST
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Literal:
    value: Value

    def evaluate(self, row: Mapping[str, Value]) -> Value:
        return self.value


@dataclass(frozen=True)
class ColumnRef:
    name: str

    def evaluate(self, row: Mapping[str, Value]) -> Value:
        return row[self.name]


@dataclass(frozen=True)
class Negate:
    operand: "Node"

    def evaluate(self, row: Mapping[str, Value]) -> Value:
        value = self.operand.evaluate(row)
        if value is None:
            return None
        return -_require_decimal(value, "-")


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: "Node"
    right: "Node"

    def evaluate(self, row: Mapping[str, Value]) -> Value:
        lhs = self.left.evaluate(row)
        rhs = self.right.evaluate(row)

        if self.op == "&":
            return _text(lhs) + _text(rhs)

        if lhs is None or rhs is None:
            return None
        a = _require_decimal(lhs, self.op)
        b = _require_decimal(rhs, self.op)
        if self.op == "+":
            return a + b
        if self.op == "-":
            return a - b
        if self.op == "*":
            return a * b
        if b == 0:
            raise ZeroDivisionError("division by zero")
        return a / b


Node = Union[Literal, ColumnRef, Negate, BinaryOp]


def _require_decimal(value: Value, op: str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    raise ValueTypeError(
        f"Operator {op!r} needs a number, got {type(value).__name__} {value!r}; "
        f"normalize the column to an amount first"
    )


def _text(value: Value) -> str:
    if value is None:
        return ""
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, date):
        return value.isoformat()
    return value


# ---------------------------------------------------------------------------
# Tokeniser / parser
# ---------------------------------------------------------------------------

_TOKEN_RE = re.compile(
    r"""
    \s*(?:
        (?P<number>\d+(?:\.\d+)?|\.\d+)
      | (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
      | (?P<bracket>\[[^\]]+\])
      | (?P<ident>[A-Za-z_][A-Za-z0-9_]*)
      | (?P<op>[-+*/&()])
    )
    """,
    re.VERBOSE,
)

Token = Tuple[str, str]


def _tokenize(text: str) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    stripped_end = len(text.rstrip())
    while pos < stripped_end:
        m = _TOKEN_RE.match(text, pos)
        if m is None or m.end() == pos:
            raise StepConfigError(
                f"Unexpected character {text[pos:pos + 1]!r} at offset {pos} "
                f"in expression {text!r}"
            )
        kind = m.lastgroup
        tokens.append((kind, m.group(kind)))
        pos = m.end()
    return tokens


class _Parser:
    def __init__(self, text: str) -> None:
        self._text = text
        self._tokens = _tokenize(text)
        self._pos = 0

    def parse(self) -> Node:
        if not self._tokens:
            raise StepConfigError("Expression is empty")
        node = self._concat()
        if self._pos != len(self._tokens):
            raise StepConfigError(
                f"Unexpected token {self._tokens[self._pos][1]!r} in expression {self._text!r}"
            )
        return node

    def _peek(self) -> Token:
        if self._pos < len(self._tokens):
            return self._tokens[self._pos]
        return ("eof", "")

    def _advance(self) -> Token:
        tok = self._peek()
        self._pos += 1
        return tok

    def _binary(self, ops: str, operand) -> Node:
        node = operand()
        while self._peek()[0] == "op" and self._peek()[1] in ops:
            op = self._advance()[1]
            node = BinaryOp(op, node, operand())
        return node

    def _concat(self) -> Node:
        return self._binary("&", self._sum)

    def _sum(self) -> Node:
        return self._binary("+-", self._term)

    def _term(self) -> Node:
        return self._binary("*/", self._unary)

    def _unary(self) -> Node:
        if self._peek() == ("op", "-"):
            self._advance()
            return Negate(self._unary())
        return self._atom()

    def _atom(self) -> Node:
        kind, text = self._advance()
        if kind == "number":
            return Literal(Decimal(text))
        if kind == "string":
            body = text[1:-1]
            return Literal(re.sub(r"\\(.)", r"\1", body))
        if kind == "bracket":
            return ColumnRef(text[1:-1].strip())
        if kind == "ident":
            return ColumnRef(text)
        if (kind, text) == ("op", "("):
            node = self._concat()
            if self._advance() != ("op", ")"):
                raise StepConfigError(f"Missing ')' in expression {self._text!r}")
            return node
        if kind == "eof":
            raise StepConfigError(f"Expression {self._text!r} ends unexpectedly")
        raise StepConfigError(f"Unexpected token {text!r} in expression {self._text!r}")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Expression:
    """A parsed derive-column expression."""

    text: str
    root: Node

    @property
    def columns(self) -> FrozenSet[str]:
        """Every column name the expression reads."""
        found: set[str] = set()
        stack: List[Node] = [self.root]
        while stack:
            node = stack.pop()
            if isinstance(node, ColumnRef):
                found.add(node.name)
            elif isinstance(node, Negate):
                stack.append(node.operand)
            elif isinstance(node, BinaryOp):
                stack.extend((node.left, node.right))
        return frozenset(found)

    def evaluate(self, row: Mapping[str, Value]) -> Value:
        return self.root.evaluate(row)


def compile_expression(text: str) -> Expression:
    """Parse ``text``; raises ``StepConfigError`` on a syntax error."""
    if not isinstance(text, str):
        raise StepConfigError(f"Expression must be a string, got {type(text).__name__}")
    return Expression(text=text, root=_Parser(text).parse())
