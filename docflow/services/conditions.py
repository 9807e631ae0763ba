"""
Auto-approve conditions.

A condition is a single comparison written as ``<field> <op> <value>``:

    amount < 1000
    category in invoice,receipt
    confidential == false
    tags contains legal
    meta.region != "EU"

Values are read as JSON literals when they parse (numbers, booleans, null,
quoted strings) and as bare strings otherwise. ``in`` takes a comma
separated list. Dotted field names walk nested document attributes.
A missing field never satisfies a condition.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from docflow.core.exceptions import ValidationError

_EXPRESSION = re.compile(
    r"^\s*(?P<field>[A-Za-z_][\w.]*)"
    r"(?:\s*(?P<symbol>==|!=|>=|<=|>|<)|\s+(?P<word>contains|in)\s)"
    r"\s*(?P<value>.+?)\s*$"
)

_MISSING = object()


def _literal(raw: str) -> Any:
    raw = raw.strip()
    if len(raw) >= 2 and raw[0] == raw[-1] == "'":
        return raw[1:-1]
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass(frozen=True)
class Condition:
    field: str
    operator: str
    value: Any

    def lookup(self, attributes: dict | None) -> Any:
        current: Any = attributes or {}
        for part in self.field.split("."):
            if not isinstance(current, dict) or part not in current:
                return _MISSING
            current = current[part]
        return current

    def evaluate(self, attributes: dict | None) -> bool:
        actual = self.lookup(attributes)
        if actual is _MISSING:
            return False

        op = self.operator
        if op == "==":
            return actual == self.value
        if op == "!=":
            return actual != self.value
        if op == "in":
            return actual in self.value
        if op == "contains":
            if isinstance(actual, str):
                return str(self.value) in actual
            if isinstance(actual, (list, tuple, set)):
                return self.value in actual
            return False

        # Ordering comparisons only between numbers or between strings
        comparable = (
            (_is_number(actual) and _is_number(self.value))
            or (isinstance(actual, str) and isinstance(self.value, str))
        )
        if not comparable:
            return False
        if op == ">":
            return actual > self.value
        if op == ">=":
            return actual >= self.value
        if op == "<":
            return actual < self.value
        return actual <= self.value

    def __str__(self):
        return f"{self.field} {self.operator} {self.value!r}"


def parse_condition(expression: str) -> Condition:
    """Parse an expression or raise ValidationError."""
    match = _EXPRESSION.match(expression or "")
    if not match:
        raise ValidationError(
            f"Invalid condition '{expression}'",
            details={"auto_approve_condition": "expected '<field> <op> <value>'"},
        )
    operator = match.group("symbol") or match.group("word")
    raw_value = match.group("value")
    if operator == "in":
        value: Any = tuple(_literal(part) for part in raw_value.split(",") if part.strip())
    else:
        value = _literal(raw_value)
    return Condition(field=match.group("field"), operator=operator, value=value)


def evaluate_condition(expression: str | None, attributes: dict | None) -> bool:
    if not expression:
        return False
    return parse_condition(expression).evaluate(attributes)
