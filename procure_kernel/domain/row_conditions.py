"""
Row-level action conditions.

A condition narrows an otherwise granted action to specific records.  It is
stored as JSON on the action permission row::

    {"field": "created_by_id", "operator": "equals", "value": "current_user"}

Operators (aliases in parentheses):
    equals (=, ==), not_equals (!=, <>), in, not_in, greater_than (>),
    less_than (<), is_null, is_not_null

``in``/``not_in`` take a JSON array or a comma-separated string.  The value
token ``current_user`` is replaced with the acting user's id.  Comparison is
on string forms, except ``>``/``<`` which compare numerically when both sides
parse as decimals.  NaN or infinity on either side denies.

Anything unparseable evaluates to deny.  Conditions are data: nothing here is
ever executed as code.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from procure_kernel.logging_config import get_logger

logger = get_logger("domain.row_conditions")

CURRENT_USER_TOKEN = "current_user"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    IN = "in"
    NOT_IN = "not_in"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"


_ALIASES: dict[str, ConditionOperator] = {
    "=": ConditionOperator.EQUALS,
    "==": ConditionOperator.EQUALS,
    "!=": ConditionOperator.NOT_EQUALS,
    "<>": ConditionOperator.NOT_EQUALS,
    ">": ConditionOperator.GREATER_THAN,
    "<": ConditionOperator.LESS_THAN,
}


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _as_decimal(value: str | None) -> Decimal | None:
    if value is None:
        return None
    try:
        return Decimal(value)
    except InvalidOperation:
        return None


@dataclass(frozen=True)
class RowCondition:
    """A parsed, valid row condition."""

    field: str
    operator: ConditionOperator
    value: Any = None

    def evaluate(self, record: Mapping[str, Any], user_id: Any) -> bool:
        actual = _as_text(record.get(self.field))
        op = self.operator

        if op is ConditionOperator.IS_NULL:
            return actual is None
        if op is ConditionOperator.IS_NOT_NULL:
            return actual is not None

        expected = self._expected(user_id)

        if op in (ConditionOperator.IN, ConditionOperator.NOT_IN):
            members = {_as_text(v) for v in expected} if isinstance(expected, list) else set()
            contained = actual is not None and actual in members
            return contained if op is ConditionOperator.IN else not contained

        expected_text = _as_text(expected)
        if op is ConditionOperator.EQUALS:
            return actual is not None and actual == expected_text
        if op is ConditionOperator.NOT_EQUALS:
            return actual != expected_text

        # greater_than / less_than
        if actual is None or expected_text is None:
            return False
        left, right = _as_decimal(actual), _as_decimal(expected_text)
        if any(n is not None and not n.is_finite() for n in (left, right)):
            return False
        if left is not None and right is not None:
            return left > right if op is ConditionOperator.GREATER_THAN else left < right
        if op is ConditionOperator.GREATER_THAN:
            return actual > expected_text
        return actual < expected_text

    def _expected(self, user_id: Any) -> Any:
        value = self.value
        if self.operator in (ConditionOperator.IN, ConditionOperator.NOT_IN):
            if isinstance(value, str):
                value = [part.strip() for part in value.split(",") if part.strip()]
            if isinstance(value, list):
                return [
                    str(user_id) if v == CURRENT_USER_TOKEN else v for v in value
                ]
            return value
        if value == CURRENT_USER_TOKEN:
            return str(user_id)
        return value


@dataclass(frozen=True)
class InvalidRowCondition:
    """A condition that failed to parse; always denies."""

    raw: str
    reason: str

    def evaluate(self, record: Mapping[str, Any], user_id: Any) -> bool:
        return False


def parse_row_condition(raw: str | Mapping[str, Any] | None) -> RowCondition | InvalidRowCondition | None:
    """
    Parse a stored condition.

    Returns None when there is no condition (the action is unconditionally
    allowed), ``InvalidRowCondition`` when the text cannot be understood.
    """
    if raw is None:
        return None
    if isinstance(raw, str):
        if not raw.strip():
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return _invalid(raw, "malformed_json")
    else:
        data = raw

    if not isinstance(data, Mapping):
        return _invalid(str(raw), "not_an_object")

    field = data.get("field")
    if not isinstance(field, str) or not field:
        return _invalid(str(raw), "missing_field")

    op_text = str(data.get("operator", "")).strip().lower()
    operator = _ALIASES.get(op_text)
    if operator is None:
        try:
            operator = ConditionOperator(op_text)
        except ValueError:
            return _invalid(str(raw), "unknown_operator")

    return RowCondition(field=field, operator=operator, value=data.get("value"))


def _invalid(raw: str, reason: str) -> InvalidRowCondition:
    logger.warning("row_condition_invalid", extra={"reason": reason, "condition": raw[:200]})
    return InvalidRowCondition(raw=raw, reason=reason)
