"""
Unit tests for the context helpers.

Covers field path resolution, parameter descriptors, deadlines, the
comparison operator table and recursive context merging.
"""

from datetime import UTC, datetime, timedelta

import pytest

from workflow_engine.core.context import (
    compare_values,
    merge_context,
    parse_deadline,
    resolve_field_path,
    resolve_param_value,
    resolve_params,
)

CONTEXT = {
    "trigger": {"memberId": 7, "officeId": "10"},
    "entity": {"status": "active", "tags": ["a", "b"]},
    "nodes": {"create_officer": {"result": {"officerId": 3}}},
    "approvers": [{"id": 20}, {"id": 21}],
}


# ============================================================================
# FIELD PATHS
# ============================================================================


@pytest.mark.unit
class TestResolveFieldPath:
    """Tests for dot path lookups."""

    def test_nested_path(self):
        """Should walk nested dicts."""
        assert resolve_field_path(CONTEXT, "nodes.create_officer.result.officerId") == 3

    def test_dollar_prefix_is_stripped(self):
        """Should accept the $. prefix."""
        assert resolve_field_path(CONTEXT, "$.trigger.memberId") == 7

    def test_list_index(self):
        """Should index lists with integer segments."""
        assert resolve_field_path(CONTEXT, "approvers.1.id") == 21

    def test_missing_segment_returns_none(self):
        """Should return None instead of raising on a missing segment."""
        assert resolve_field_path(CONTEXT, "trigger.missing.deeper") is None
        assert resolve_field_path(CONTEXT, "approvers.9.id") is None
        assert resolve_field_path(CONTEXT, "entity.status.length") is None

    def test_empty_path(self):
        """Should return None for an empty path and the root for $."""
        assert resolve_field_path(CONTEXT, "") is None
        assert resolve_field_path(CONTEXT, "$") is CONTEXT


# ============================================================================
# PARAMETERS
# ============================================================================


@pytest.mark.unit
class TestResolveParams:
    """Tests for parameter descriptors."""

    def test_literals_pass_through(self):
        """Should return literals unchanged."""
        assert resolve_param_value("Seneschal", CONTEXT) == "Seneschal"
        assert resolve_param_value(5, CONTEXT) == 5
        assert resolve_param_value(True, CONTEXT) is True

    def test_context_reference(self):
        """Should resolve $. references against the context."""
        assert resolve_param_value("$.trigger.officeId", CONTEXT) == "10"

    def test_descriptors(self):
        """Should resolve fixed, context and setting descriptors."""
        settings = {"Officers.Mail": "officers@example.org"}

        assert resolve_param_value({"type": "fixed", "value": 42}, CONTEXT) == 42
        assert resolve_param_value({"type": "context", "path": "trigger.memberId"}, CONTEXT) == 7
        assert resolve_param_value({"type": "setting", "key": "Officers.Mail"}, CONTEXT, settings) == (
            "officers@example.org"
        )
        assert resolve_param_value({"type": "setting", "key": "Missing", "default": "x"}, CONTEXT, settings) == "x"

    def test_resolve_params_maps_every_key(self):
        """Should resolve every value of a params dict."""
        # Arrange
        params = {"memberId": "$.trigger.memberId", "reason": "Warrant not approved"}

        # Act
        resolved = resolve_params(params, CONTEXT)

        # Assert
        assert resolved == {"memberId": 7, "reason": "Warrant not approved"}

    def test_resolve_params_none(self):
        """Should return an empty dict for missing params."""
        assert resolve_params(None, CONTEXT) == {}


# ============================================================================
# DEADLINES
# ============================================================================


@pytest.mark.unit
class TestParseDeadline:
    """Tests for deadline specifications."""

    NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)

    @pytest.mark.parametrize(
        "spec,delta",
        [
            ("14d", timedelta(days=14)),
            ("24h", timedelta(hours=24)),
            ("30m", timedelta(minutes=30)),
            (" 2D ", timedelta(days=2)),
        ],
    )
    def test_relative_specs(self, spec, delta):
        """Should add the duration to now."""
        assert parse_deadline(spec, self.NOW) == self.NOW + delta

    def test_iso_datetime_is_utc(self):
        """Should treat naive ISO datetimes as UTC."""
        assert parse_deadline("2025-04-01T00:00:00", self.NOW) == datetime(2025, 4, 1, tzinfo=UTC)

    def test_empty_spec(self):
        """Should return None when no deadline is configured."""
        assert parse_deadline(None) is None
        assert parse_deadline("") is None

    def test_invalid_spec_raises(self):
        """Should raise ValueError for an unparseable spec."""
        with pytest.raises(ValueError, match="Invalid deadline"):
            parse_deadline("two weeks", self.NOW)


# ============================================================================
# COMPARISONS
# ============================================================================


@pytest.mark.unit
class TestCompareValues:
    """Tests for the operator table."""

    @pytest.mark.parametrize(
        "actual,operator,expected,result",
        [
            (5, "eq", "5", True),
            ("5", "gt", 4, True),
            (5, "neq", 6, True),
            (5, "lte", 5.0, True),
            ("active", "in", ["active", "pending"], True),
            ("closed", "not_in", ["active", "pending"], True),
            (["a", "b"], "contains", "b", True),
            ("Seneschal", "starts_with", "Sen", True),
            ("Seneschal", "ends_with", "chal", True),
            (True, "eq", "true", True),
            ("abc", "gt", 5, False),
        ],
    )
    def test_operators(self, actual, operator, expected, result):
        """Should apply each operator with numeric and boolean normalization."""
        assert compare_values(actual, operator, expected) is result

    def test_none_only_satisfies_is_empty(self):
        """Should treat a missing value as empty and fail every other operator."""
        assert compare_values(None, "is_empty") is True
        assert compare_values(None, "is_set") is False
        assert compare_values(None, "eq", None) is False
        assert compare_values(None, "neq", 1) is False

    def test_unknown_operator(self):
        """Should return False for an unknown operator."""
        assert compare_values(1, "between", [0, 2]) is False


# ============================================================================
# MERGE
# ============================================================================


@pytest.mark.unit
class TestMergeContext:
    """Tests for recursive context merging."""

    def test_nested_merge_does_not_mutate_base(self):
        """Should merge recursively and leave the base untouched."""
        # Arrange
        base = {"variables": {"a": 1}, "trigger": {"memberId": 7}}

        # Act
        merged = merge_context(base, {"variables": {"b": 2}, "warrantRosterId": 4})

        # Assert
        assert merged == {"variables": {"a": 1, "b": 2}, "trigger": {"memberId": 7}, "warrantRosterId": 4}
        assert base == {"variables": {"a": 1}, "trigger": {"memberId": 7}}

    def test_non_dict_values_replace(self):
        """Should replace scalars and lists instead of merging them."""
        merged = merge_context({"notes": [1], "variables": {"a": 1}}, {"notes": [2], "variables": 3})
        assert merged == {"notes": [2], "variables": 3}
