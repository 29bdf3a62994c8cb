"""
Unit tests for the core condition types and the rule evaluator.
"""

from datetime import UTC, datetime, timedelta

import pytest

from workflow_engine.conditions import RuleEvaluator, register_core_conditions
from workflow_engine.core.exceptions import UnknownConditionError
from workflow_engine.registry import ConditionRegistry


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def rules() -> RuleEvaluator:
    conditions = ConditionRegistry()
    register_core_conditions(conditions)
    conditions.freeze()
    return RuleEvaluator(conditions)


@pytest.fixture
def context() -> dict:
    """Evaluation context as the engine builds it."""
    return {
        "trigger": {"memberId": 7, "officeId": 10, "amount": 150},
        "entity": {"status": "active", "member_id": 7, "requester_id": 12, "expires_on": "2025-01-01T00:00:00"},
        "user_id": 12,
        "user_permissions": ["Officers.Manage"],
        "user_roles": ["Kingdom Secretary"],
        "instance": {"context": {"warrant_required": True, "variables": {"count": 3}}},
        "approval_gates": {"warrant_approval": {"is_met": True}, "second_gate": {"is_met": False}},
        "state_entered_at": datetime(2025, 3, 1, tzinfo=UTC),
        "now": datetime(2025, 3, 16, tzinfo=UTC),
    }


# ============================================================================
# CORE CONDITIONS
# ============================================================================


@pytest.mark.unit
class TestFieldCondition:
    """Tests for field comparisons."""

    def test_context_field(self, rules, context):
        """Should compare a context field."""
        assert rules.evaluate({"field": "trigger.amount", "operator": "gt", "value": 100}, context) is True

    def test_entity_fallback(self, rules, context):
        """Should fall back to entity.<path> when the root path is missing."""
        assert rules.evaluate({"field": "status", "operator": "eq", "value": "active"}, context) is True

    def test_value_reference(self, rules, context):
        """Should resolve a $. reference on the expected side."""
        rule = {"field": "entity.member_id", "operator": "eq", "value": "$.trigger.memberId"}
        assert rules.evaluate(rule, context) is True

    def test_missing_field_is_false(self, rules, context):
        """Should fail for a missing field."""
        assert rules.evaluate({"field": "entity.nope", "operator": "eq", "value": 1}, context) is False


@pytest.mark.unit
class TestAccessConditions:
    """Tests for ownership, permission and role conditions."""

    def test_permission_and_role(self, rules, context):
        """Should check the user's permissions and roles."""
        assert rules.evaluate({"permission": "Officers.Manage"}, context) is True
        assert rules.evaluate({"permission": "Officers.Warrant"}, context) is False
        assert rules.evaluate({"role": "Kingdom Secretary"}, context) is True

    def test_ownership(self, rules, context):
        """Should match the requester and reject the recipient relationship."""
        assert rules.evaluate({"ownership": "requester"}, context) is True
        assert rules.evaluate({"ownership": "recipient"}, context) is False
        assert rules.evaluate({"ownership": "any"}, context) is True

    def test_ownership_without_user(self, rules, context):
        """Should fail when no user is acting."""
        context["user_id"] = None
        assert rules.evaluate({"ownership": "any"}, context) is False


@pytest.mark.unit
class TestWorkflowConditions:
    """Tests for gate, workflow context, time and expression conditions."""

    def test_approval_gate(self, rules, context):
        """Should read the gate summary; unknown gates never match."""
        assert rules.evaluate({"approval_gate": "warrant_approval"}, context) is True
        assert rules.evaluate({"approval_gate": "second_gate", "status": "not_met"}, context) is True
        assert rules.evaluate({"approval_gate": "unknown"}, context) is False

    def test_workflow_context(self, rules, context):
        """Should compare keys of the instance context."""
        assert rules.evaluate({"workflow_context": "warrant_required", "value": True}, context) is True
        rule = {"workflow_context": "variables.count", "operator": "gte", "value": 3}
        assert rules.evaluate(rule, context) is True

    def test_state_duration(self, rules, context):
        """Should measure time since the state was entered against the pinned clock."""
        rule = {"time": "state_duration", "operator": "gte", "value": 14, "unit": "days"}
        assert rules.evaluate(rule, context) is True

        context["now"] = context["state_entered_at"] + timedelta(days=2)
        assert rules.evaluate(rule, context) is False

    def test_field_date(self, rules, context):
        """Should compare a date field against now."""
        rule = {"time": "field_date", "field": "entity.expires_on", "operator": "lt", "value": "now"}
        assert rules.evaluate(rule, context) is True

    @pytest.mark.parametrize(
        "expression,expected",
        [
            ("trigger.amount > 100", True),
            ("entity.status == 'active'", True),
            ("entity.status in ['active', 'pending']", True),
            ("entity.status not in ['active']", False),
            ("trigger.amount <= 100", False),
            ("not an expression", False),
        ],
    )
    def test_expression(self, rules, context, expression, expected):
        """Should parse field-operator-value strings."""
        assert rules.evaluate(expression, context) is expected


# ============================================================================
# RULE EVALUATOR
# ============================================================================


@pytest.mark.unit
class TestRuleEvaluator:
    """Tests for composition and type detection."""

    def test_empty_rules_pass(self, rules, context):
        """Should pass empty rules and empty lists."""
        assert rules.evaluate(None, context) is True
        assert rules.evaluate({}, context) is True
        assert rules.evaluate_all([], context) is True

    def test_all_any_not(self, rules, context):
        """Should compose nested rules."""
        rule = {
            "all": [
                {"permission": "Officers.Manage"},
                {"any": [{"role": "Reeve"}, {"role": "Kingdom Secretary"}]},
                {"not": {"field": "entity.status", "operator": "eq", "value": "closed"}},
            ]
        }
        assert rules.evaluate(rule, context) is True

    def test_explicit_type(self, rules, context):
        """Should use the type key and pass the remaining keys as params."""
        assert rules.evaluate({"type": "permission", "permission": "Officers.Manage"}, context) is True

    def test_time_detected_before_field(self, rules, context):
        """Should detect a time condition even though it carries a field key."""
        rule = {"time": "field_date", "field": "entity.expires_on", "operator": "lt", "value": "now"}
        assert rules.detect_type(rule) == "time"

    def test_unrecognizable_rule_is_false(self, rules, context):
        """Should fail a rule without a recognizable type."""
        assert rules.evaluate({"something": 1}, context) is False

    def test_unknown_type_raises(self, rules, context):
        """Should raise for a type that no plugin registered."""
        with pytest.raises(UnknownConditionError):
            rules.evaluate({"type": "Officers.Unknown"}, context)

    def test_referenced_types(self, rules):
        """Should list every type referenced in a nested rule."""
        rule = {"all": [{"permission": "x"}, {"not": {"type": "Officers.OfficeRequiresWarrant"}}, "a > 1"]}
        assert rules.referenced_types(rule) == ["permission", "Officers.OfficeRequiresWarrant", "expression"]
