"""
Core condition types.

Each condition is a pure function (params, context) -> bool registered under
a string key. Plugins add their own through ConditionRegistry.add.
"""

from workflow_engine.registry.conditions import ConditionRegistry

from .access import evaluate_permission, evaluate_role
from .approval_gate import evaluate_approval_gate
from .expression import evaluate_expression
from .field import evaluate_field
from .ownership import evaluate_ownership
from .rule_evaluator import RuleEvaluator
from .time_based import evaluate_time
from .workflow_context import evaluate_workflow_context

_OPERATOR_ENUM = ["eq", "neq", "gt", "gte", "lt", "lte"]


def register_core_conditions(conditions: ConditionRegistry) -> None:
    conditions.add(
        "field",
        evaluate_field,
        label="Field comparison",
        description="Compares a context or entity field against a value",
        params_schema={
            "field": {"type": "string", "required": True},
            "operator": {
                "type": "string",
                "enum": [
                    *_OPERATOR_ENUM,
                    "in",
                    "not_in",
                    "is_set",
                    "is_empty",
                    "contains",
                    "starts_with",
                    "ends_with",
                ],
            },
            "value": {"type": "mixed"},
        },
    )
    conditions.add(
        "ownership",
        evaluate_ownership,
        label="Ownership",
        description="Checks the user's relationship to the entity",
        params_schema={
            "ownership": {"type": "string", "required": True, "enum": ["requester", "recipient", "parent_of_minor", "any"]}
        },
    )
    conditions.add(
        "permission",
        evaluate_permission,
        label="Has permission",
        params_schema={"permission": {"type": "string", "required": True}},
    )
    conditions.add(
        "role",
        evaluate_role,
        label="Has role",
        params_schema={"role": {"type": "string", "required": True}},
    )
    conditions.add(
        "approval_gate",
        evaluate_approval_gate,
        label="Approval gate met",
        description="Checks if an approval gate threshold is met or not met",
        params_schema={
            "approval_gate": {"type": "string", "required": True},
            "status": {"type": "string", "enum": ["met", "not_met"]},
        },
    )
    conditions.add(
        "workflow_context",
        evaluate_workflow_context,
        label="Workflow context value",
        params_schema={
            "workflow_context": {"type": "string", "required": True},
            "operator": {"type": "string"},
            "value": {"type": "mixed"},
        },
    )
    conditions.add(
        "time",
        evaluate_time,
        label="Time",
        description="State duration or date field comparisons",
        params_schema={
            "time": {"type": "string", "required": True, "enum": ["state_duration", "field_date"]},
            "operator": {"type": "string", "enum": _OPERATOR_ENUM},
            "value": {"type": "mixed", "required": True},
            "unit": {"type": "string", "enum": ["seconds", "minutes", "hours", "days"]},
            "field": {"type": "string"},
        },
    )
    conditions.add(
        "expression",
        evaluate_expression,
        label="Expression",
        description="'field op value' expression",
        params_schema={"expression": {"type": "string", "required": True}},
    )


__all__ = ["RuleEvaluator", "register_core_conditions"]
