"""
Expression condition: "field op value" strings.

    "entity.amount > 100"
    "trigger.requiresWarrant == true"
    "entity.status in ['active', 'pending']"
"""

import json
import re
from typing import Any

from workflow_engine.core.context import compare_values

from .field import resolve_with_entity_fallback

_EXPRESSION = re.compile(
    r"^\s*(?P<field>[\w.$\[\]]+)\s*(?P<op>==|!=|>=|<=|>|<|\bnot in\b|\bin\b|\bcontains\b)\s*(?P<value>.+?)\s*$"
)

_OPERATORS = {
    "==": "eq",
    "!=": "neq",
    ">": "gt",
    ">=": "gte",
    "<": "lt",
    "<=": "lte",
    "in": "in",
    "not in": "not_in",
    "contains": "contains",
}


def parse_literal(raw: str) -> Any:
    text = raw.strip()
    if text.lower() in ("null", "none"):
        return None
    if text.lower() in ("true", "false"):
        return text.lower() == "true"
    try:
        return json.loads(text.replace("'", '"'))
    except ValueError:
        return text.strip("'\"")


def evaluate_expression(params: dict[str, Any], context: dict[str, Any]) -> bool:
    expression = params.get("expression")
    if not isinstance(expression, str):
        return False
    match = _EXPRESSION.match(expression)
    if not match:
        return False
    actual = resolve_with_entity_fallback(context, match.group("field"))
    return compare_values(actual, _OPERATORS[match.group("op")], parse_literal(match.group("value")))
