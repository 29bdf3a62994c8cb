"""
Field comparison condition.

    {"field": "entity.status", "operator": "eq", "value": "active"}

The path is looked up from the context root, falling back to the same path
under "entity". The expected value may itself be a "$.path" reference.
"""

from typing import Any

from workflow_engine.core.context import compare_values, resolve_field_path, resolve_param_value


def resolve_with_entity_fallback(context: dict[str, Any], path: str) -> Any:
    value = resolve_field_path(context, path)
    if value is None:
        stripped = path[2:] if path.startswith("$.") else path
        if not stripped.startswith("entity."):
            value = resolve_field_path(context, f"entity.{stripped}")
    return value


def evaluate_field(params: dict[str, Any], context: dict[str, Any]) -> bool:
    path = params.get("field")
    if not path:
        return False
    actual = resolve_with_entity_fallback(context, path)
    expected = resolve_param_value(params.get("value"), context)
    return compare_values(actual, params.get("operator", "eq"), expected)
