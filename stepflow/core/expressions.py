"""
Boolean expressions for ``condition`` steps and ``while`` loops.

The expression is split into clauses and operands before any placeholder is
resolved, so a variable's value is always a single operand and never adds
operators of its own::

    {{title}} === "Welcome"
    {{count}} > 5 && ready
    !done || {{url}} contains a.test
"""

from __future__ import annotations

import re
from typing import Any, Callable, List, Optional, Tuple

from .errors import ValidationError
from .variables import render_value

_SYMBOL_OPS = ("===", "!==", "==", "!=", ">=", "<=", ">", "<")
_WORD_OPS = ("contains", "startsWith", "endsWith", "matches")
_FALSY = {"", "false", "0", "null", "undefined"}

Resolver = Callable[[str], str]


def _split_outside_quotes(text: str, sep: str) -> List[str]:
    parts: List[str] = []
    quote: Optional[str] = None
    start = 0
    idx = 0
    while idx < len(text):
        ch = text[idx]
        if quote:
            if ch == "\\":
                idx += 2
                continue
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif text.startswith(sep, idx):
            parts.append(text[start:idx])
            idx += len(sep)
            start = idx
            continue
        idx += 1
    parts.append(text[start:])
    return parts


def _find_operator(text: str) -> Optional[Tuple[int, str]]:
    quote: Optional[str] = None
    idx = 0
    while idx < len(text):
        ch = text[idx]
        if quote:
            if ch == "\\":
                idx += 2
                continue
            if ch == quote:
                quote = None
            idx += 1
            continue
        if ch in ("'", '"'):
            quote = ch
            idx += 1
            continue
        for op in _SYMBOL_OPS:
            if text.startswith(op, idx):
                return idx, op
        if idx > 0 and text[idx - 1].isspace():
            for op in _WORD_OPS:
                end = idx + len(op)
                if text.startswith(op, idx) and end < len(text) and text[end].isspace():
                    return idx, op
        idx += 1
    return None


def _literal(raw: str) -> Any:
    token = raw.strip()
    if len(token) >= 2 and token[0] == token[-1] and token[0] in ("'", '"'):
        body = token[1:-1]
        return re.sub(r"\\(.)", r"\1", body)
    lowered = token.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if lowered in ("null", "undefined"):
        return None
    try:
        return float(token)
    except ValueError:
        return token


def _as_number(value: Any, expression: str) -> float:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"Cannot compare non-numeric value {value!r} in {expression!r}") from None


def _as_text(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return render_value(value)


def _equal(left: Any, right: Any) -> bool:
    if isinstance(left, float) and isinstance(right, float):
        return left == right
    return _as_text(left) == _as_text(right)


def _truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, float):
        return value != 0
    return str(value).strip().lower() not in _FALSY


def _compare(left: Any, op: str, right: Any, expression: str) -> bool:
    if op in ("===", "=="):
        return _equal(left, right)
    if op in ("!==", "!="):
        return not _equal(left, right)
    if op in (">", ">=", "<", "<="):
        a = _as_number(left, expression)
        b = _as_number(right, expression)
        if op == ">":
            return a > b
        if op == ">=":
            return a >= b
        if op == "<":
            return a < b
        return a <= b
    a_text, b_text = _as_text(left), _as_text(right)
    if op == "contains":
        return b_text in a_text
    if op == "startsWith":
        return a_text.startswith(b_text)
    if op == "endsWith":
        return a_text.endswith(b_text)
    try:
        return re.search(b_text, a_text) is not None
    except re.error as exc:
        raise ValidationError(f"Invalid pattern {b_text!r} in {expression!r}: {exc}") from None


def _operand(raw: str, resolve: Optional[Resolver]) -> Any:
    value = _literal(raw)
    if resolve is not None and isinstance(value, str):
        value = resolve(value)
    return value


def _evaluate_clause(clause: str, expression: str, resolve: Optional[Resolver]) -> bool:
    text = clause.strip()
    negate = False
    while text.startswith("!") and not text.startswith("!="):
        negate = not negate
        text = text[1:].strip()
    if not text:
        raise ValidationError(f"Empty operand in condition {expression!r}")
    found = _find_operator(text)
    if found is None:
        result = _truthy(_operand(text, resolve))
    else:
        idx, op = found
        left = _operand(text[:idx], resolve)
        right = _operand(text[idx + len(op):], resolve)
        result = _compare(left, op, right, expression)
    return not result if negate else result


def evaluate_condition(expression: str, resolve: Optional[Resolver] = None) -> bool:
    """
    Evaluate an expression; malformed input raises ValidationError.

    ``resolve`` fills placeholders inside each operand once the expression
    has been parsed. Clauses short-circuit like ``&&``/``||`` do, so an
    operand in a clause that is never reached is not resolved.
    """
    if expression is None or not str(expression).strip():
        raise ValidationError("Condition is empty")
    text = str(expression)
    return any(
        all(_evaluate_clause(clause, text, resolve) for clause in _split_outside_quotes(branch, "&&"))
        for branch in _split_outside_quotes(text, "||")
    )
