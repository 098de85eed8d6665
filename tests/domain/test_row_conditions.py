"""
Tests for row-level action conditions.

Validates:
- Every operator and its aliases
- current_user substitution
- Numeric vs string comparison for greater/less than
- NaN and infinity deny instead of raising
- Unparseable conditions always deny
"""

import json
from uuid import uuid4

import pytest

from procure_kernel.domain.row_conditions import (
    ConditionOperator,
    InvalidRowCondition,
    RowCondition,
    parse_row_condition,
)

USER = uuid4()
OTHER = uuid4()


def cond(field, operator, value=None):
    return parse_row_condition(json.dumps({"field": field, "operator": operator, "value": value}))


class TestParsing:
    """Stored text to condition objects."""

    def test_none_and_blank_mean_unconditional(self):
        assert parse_row_condition(None) is None
        assert parse_row_condition("   ") is None

    def test_valid_condition(self):
        parsed = cond("status", "equals", "draft")

        assert parsed == RowCondition("status", ConditionOperator.EQUALS, "draft")

    def test_mapping_accepted(self):
        parsed = parse_row_condition({"field": "status", "operator": "in", "value": ["a"]})

        assert parsed.operator is ConditionOperator.IN

    @pytest.mark.parametrize(
        "alias, expected",
        [
            ("=", ConditionOperator.EQUALS),
            ("==", ConditionOperator.EQUALS),
            ("!=", ConditionOperator.NOT_EQUALS),
            ("<>", ConditionOperator.NOT_EQUALS),
            (">", ConditionOperator.GREATER_THAN),
            ("<", ConditionOperator.LESS_THAN),
            ("EQUALS", ConditionOperator.EQUALS),
        ],
    )
    def test_aliases(self, alias, expected):
        assert cond("x", alias, "1").operator is expected

    @pytest.mark.parametrize(
        "raw, reason",
        [
            ("{not json", "malformed_json"),
            ("[1, 2]", "not_an_object"),
            ('{"operator": "equals", "value": 1}', "missing_field"),
            ('{"field": "x", "operator": "matches", "value": 1}', "unknown_operator"),
            ('{"field": "x", "operator": "__import__(\'os\')"}', "unknown_operator"),
        ],
    )
    def test_invalid(self, raw, reason):
        parsed = parse_row_condition(raw)

        assert isinstance(parsed, InvalidRowCondition)
        assert parsed.reason == reason
        assert parsed.evaluate({"x": 1}, USER) is False


class TestEvaluation:
    """Operators against record values."""

    def test_equals_current_user(self):
        rule = cond("created_by_id", "equals", "current_user")

        assert rule.evaluate({"created_by_id": USER}, USER) is True
        assert rule.evaluate({"created_by_id": OTHER}, USER) is False

    def test_equals_missing_field_denies(self):
        assert cond("owner", "equals", "x").evaluate({}, USER) is False

    def test_not_equals(self):
        rule = cond("status", "not_equals", "paid")

        assert rule.evaluate({"status": "approved"}, USER) is True
        assert rule.evaluate({"status": "paid"}, USER) is False

    def test_in_list(self):
        rule = cond("status", "in", ["draft", "submitted"])

        assert rule.evaluate({"status": "draft"}, USER) is True
        assert rule.evaluate({"status": "approved"}, USER) is False

    def test_in_comma_string(self):
        rule = cond("status", "in", "draft, submitted")

        assert rule.evaluate({"status": "submitted"}, USER) is True

    def test_in_with_current_user(self):
        rule = cond("approver_id", "in", ["current_user", str(OTHER)])

        assert rule.evaluate({"approver_id": USER}, USER) is True

    def test_not_in(self):
        rule = cond("status", "not_in", ["cancelled"])

        assert rule.evaluate({"status": "draft"}, USER) is True
        assert rule.evaluate({"status": "cancelled"}, USER) is False
        assert rule.evaluate({}, USER) is True

    def test_numeric_comparison(self):
        rule = cond("total_amount", "less_than", "1000")

        assert rule.evaluate({"total_amount": "999.99"}, USER) is True
        assert rule.evaluate({"total_amount": "10000"}, USER) is False

    def test_greater_than_missing_denies(self):
        assert cond("total_amount", ">", "0").evaluate({"total_amount": None}, USER) is False

    @pytest.mark.parametrize("value", ["NaN", "nan", "sNaN", "Infinity", "-inf"])
    @pytest.mark.parametrize("operator", ["greater_than", "less_than"])
    def test_non_finite_number_denies(self, operator, value):
        rule = cond("total_amount", operator, "100")

        assert rule.evaluate({"total_amount": value}, USER) is False
        assert cond("total_amount", operator, value).evaluate({"total_amount": "100"}, USER) is False

    def test_string_comparison_fallback(self):
        rule = cond("po_number", "greater_than", "PO-2024-00010")

        assert rule.evaluate({"po_number": "PO-2024-00011"}, USER) is True

    def test_null_checks(self):
        assert cond("approved_by_id", "is_null").evaluate({"approved_by_id": None}, USER) is True
        assert cond("approved_by_id", "is_not_null").evaluate({"approved_by_id": OTHER}, USER) is True

    def test_boolean_values_compare_as_text(self):
        assert cond("is_active", "equals", True).evaluate({"is_active": True}, USER) is True
