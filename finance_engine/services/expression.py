"""
HERA Finance Engine - Outcome Expression Evaluator

Small, explicitly scoped boolean language used by `auto_post_if` and
`approval_required_if`. Expressions are compiled once when the rule registry
is built and evaluated per event against a fixed set of event fields.

Grammar:
    expr       := or_expr
    or_expr    := and_expr (("OR" | "||") and_expr)*
    and_expr   := not_expr (("AND" | "&&") not_expr)*
    not_expr   := ("NOT" | "!") not_expr | comparison
    comparison := operand (("==" | "=" | "!=" | ">=" | "<=" | ">" | "<") operand)?
    operand    := "(" expr ")" | NUMBER | STRING | true | false | null | IDENTIFIER

Identifiers: ai_confidence, amount, total_amount, currency, smart_code,
source_system, module, line_count, action, metadata.<key>[.<key>...]
"""

import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from finance_engine.schemas.finance_event import UniversalFinanceEvent
from finance_engine.utils.error_handling import ExpressionError

logger = logging.getLogger(__name__)


EVENT_FIELDS = frozenset({
    "ai_confidence",
    "amount",
    "total_amount",
    "currency",
    "smart_code",
    "source_system",
    "module",
    "line_count",
    "action",
})

_TOKEN_PATTERN = re.compile(
    r"""
    \s*(?:
        (?P<number>-?\d+(?:\.\d+)?)
      | (?P<string>'[^']*'|"[^"]*")
      | (?P<op>>=|<=|==|!=|&&|\|\||[<>=!()])
      | (?P<name>[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z0-9_]+)*)
    )
    """,
    re.VERBOSE,
)

_KEYWORDS = {"and": "AND", "or": "OR", "not": "NOT", "true": "TRUE", "false": "FALSE", "null": "NULL"}

_COMPARISONS = {">=", "<=", ">", "<", "==", "=", "!="}

Node = Callable[[Mapping[str, Any]], Any]


# =============================================================================
# VALUE COMPARISON
# =============================================================================

def _as_decimal(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation:
            return None
    return None


def compare(operator: str, left: Any, right: Any) -> bool:
    """Compare two values; numbers as Decimal, anything against null is false except (in)equality."""
    if operator == "=":
        operator = "=="

    if left is None or right is None:
        if operator == "==":
            return left is None and right is None
        if operator == "!=":
            return (left is None) != (right is None)
        return False

    left_num, right_num = _as_decimal(left), _as_decimal(right)
    if left_num is not None and right_num is not None:
        left, right = left_num, right_num
    elif isinstance(left, str) and isinstance(right, str):
        pass
    elif operator not in ("==", "!="):
        return False

    if operator == "==":
        return left == right
    if operator == "!=":
        return left != right
    if operator == ">=":
        return left >= right
    if operator == "<=":
        return left <= right
    if operator == ">":
        return left > right
    return left < right


def lookup(context: Mapping[str, Any], name: str) -> Any:
    """Resolve an identifier (possibly dotted) in the evaluation context; missing keys are None."""
    value: Any = context
    for segment in name.split("."):
        if not isinstance(value, Mapping):
            return None
        value = value.get(segment)
        if value is None:
            return None
    return value


# =============================================================================
# PARSER
# =============================================================================

def _tokenize(source: str) -> List[Tuple[str, str]]:
    tokens = []
    position = 0
    source = source.rstrip()
    while position < len(source):
        match = _TOKEN_PATTERN.match(source, position)
        if not match or match.end() == position:
            raise ExpressionError(f"Unexpected character at position {position}", expression=source)
        position = match.end()
        kind = match.lastgroup
        text = match.group(kind)
        if kind == "name" and text.lower() in _KEYWORDS:
            tokens.append(("keyword", _KEYWORDS[text.lower()]))
        else:
            tokens.append((kind, text))
    return tokens


class _Parser:
    """Recursive descent parser producing a tree of closures."""

    def __init__(self, source: str):
        self.source = source
        self.tokens = _tokenize(source)
        self.position = 0
        self.identifiers: List[str] = []

    def parse(self) -> Node:
        if not self.tokens:
            raise ExpressionError("Expression is empty", expression=self.source)
        node = self._or()
        if self.position != len(self.tokens):
            raise ExpressionError(
                f"Unexpected token {self.tokens[self.position][1]!r}", expression=self.source
            )
        return node

    def _peek(self) -> Optional[Tuple[str, str]]:
        if self.position < len(self.tokens):
            return self.tokens[self.position]
        return None

    def _accept(self, *values: str) -> Optional[str]:
        token = self._peek()
        if token and token[0] in ("op", "keyword") and token[1] in values:
            self.position += 1
            return token[1]
        return None

    def _or(self) -> Node:
        node = self._and()
        while self._accept("OR", "||"):
            left, right = node, self._and()
            node = lambda ctx, l=left, r=right: bool(l(ctx)) or bool(r(ctx))
        return node

    def _and(self) -> Node:
        node = self._not()
        while self._accept("AND", "&&"):
            left, right = node, self._not()
            node = lambda ctx, l=left, r=right: bool(l(ctx)) and bool(r(ctx))
        return node

    def _not(self) -> Node:
        if self._accept("NOT", "!"):
            inner = self._not()
            return lambda ctx: not inner(ctx)
        return self._comparison()

    def _comparison(self) -> Node:
        left = self._operand()
        operator = self._accept(*_COMPARISONS)
        if operator is None:
            return left
        right = self._operand()
        return lambda ctx: compare(operator, left(ctx), right(ctx))

    def _operand(self) -> Node:
        token = self._peek()
        if token is None:
            raise ExpressionError("Unexpected end of expression", expression=self.source)
        kind, text = token
        self.position += 1

        if kind == "op" and text == "(":
            node = self._or()
            if not self._accept(")"):
                raise ExpressionError("Missing closing parenthesis", expression=self.source)
            return node
        if kind == "number":
            value = Decimal(text)
            return lambda ctx: value
        if kind == "string":
            value = text[1:-1]
            return lambda ctx: value
        if kind == "keyword" and text in ("TRUE", "FALSE", "NULL"):
            value = {"TRUE": True, "FALSE": False, "NULL": None}[text]
            return lambda ctx: value
        if kind == "name":
            if text not in EVENT_FIELDS and not text.startswith("metadata."):
                raise ExpressionError(f"Unknown identifier '{text}'", expression=self.source)
            self.identifiers.append(text)
            return lambda ctx: lookup(ctx, text)

        raise ExpressionError(f"Unexpected token {text!r}", expression=self.source)


class Expression:
    """A compiled outcome expression."""

    def __init__(self, source: str, node: Node, identifiers: List[str]):
        self.source = source
        self.identifiers = tuple(identifiers)
        self._node = node

    def evaluate(self, context: Mapping[str, Any]) -> bool:
        return bool(self._node(context))

    def __repr__(self) -> str:
        return f"Expression({self.source!r})"


def compile_expression(source: str) -> Expression:
    """Parse an expression, raising ExpressionError on any syntax problem or unknown identifier."""
    if not isinstance(source, str):
        raise ExpressionError("Expression must be a string")
    parser = _Parser(source)
    node = parser.parse()
    return Expression(source, node, parser.identifiers)


def event_expression_context(event: UniversalFinanceEvent) -> Dict[str, Any]:
    """Fixed set of event fields visible to outcome expressions."""
    total = event.total_debit
    return {
        "ai_confidence": event.ai_confidence,
        "amount": total,
        "total_amount": total,
        "currency": event.currency,
        "smart_code": event.smart_code,
        "source_system": event.source_system,
        "module": event.module,
        "line_count": len(event.lines),
        "action": event.action,
        "metadata": dict(event.metadata),
    }
