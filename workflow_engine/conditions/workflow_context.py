"""
Workflow context condition: compares a key of the instance context.

    {"workflow_context": "warrant_required", "operator": "eq", "value": true}
"""

from typing import Any

from workflow_engine.core.context import compare_values, resolve_field_path


def evaluate_workflow_context(params: dict[str, Any], context: dict[str, Any]) -> bool:
    key = params.get("workflow_context")
    if key is None:
        return False
    instance_context = resolve_field_path(context, "instance.context") or {}
    actual = resolve_field_path(instance_context, key)
    return compare_values(actual, params.get("operator", "eq"), params.get("value"))
