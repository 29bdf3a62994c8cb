"""
Rule Evaluator - evaluates condition refs through the condition registry.

A condition ref is one of:
    {"all": [ref, ...]}               every ref passes
    {"any": [ref, ...]}               at least one ref passes
    {"not": ref}                      ref fails
    {"type": "<registry key>", ...}   registered condition, remaining keys are params
    {"field": ..., ...}               type inferred from a characteristic key
    "entity.amount > 100"             expression string

Evaluation is pure; a ref naming an unregistered type raises
UnknownConditionError rather than silently failing.
"""

import logging
from typing import Any

from workflow_engine.registry.conditions import ConditionRegistry

logger = logging.getLogger(__name__)

# Order matters: a time condition carries a "field" key too
CHARACTERISTIC_KEYS: tuple[str, ...] = (
    "permission",
    "role",
    "ownership",
    "approval_gate",
    "time",
    "workflow_context",
    "expression",
    "field",
)


class RuleEvaluator:
    """Evaluates nested condition rules against a runtime context."""

    def __init__(self, conditions: ConditionRegistry):
        self.conditions = conditions

    @staticmethod
    def detect_type(rule: dict[str, Any]) -> str | None:
        if "type" in rule:
            return rule["type"]
        for key in CHARACTERISTIC_KEYS:
            if key in rule:
                return key
        return None

    def referenced_types(self, rule: Any) -> list[str]:
        """Condition types referenced anywhere inside a rule (used by graph validation)."""
        if isinstance(rule, str):
            return ["expression"]
        if not isinstance(rule, dict):
            return []
        if "all" in rule or "any" in rule:
            found: list[str] = []
            for child in rule.get("all") or rule.get("any") or []:
                found.extend(self.referenced_types(child))
            return found
        if "not" in rule:
            return self.referenced_types(rule["not"])
        detected = self.detect_type(rule)
        return [detected] if detected else []

    def evaluate(self, rule: Any, context: dict[str, Any]) -> bool:
        if rule is None or rule == {}:
            return True
        if isinstance(rule, bool):
            return rule
        if isinstance(rule, str):
            return self._evaluate_registered("expression", {"expression": rule}, context)
        if isinstance(rule, list):
            return self.evaluate_all(rule, context)
        if not isinstance(rule, dict):
            logger.warning(f"Ignoring malformed condition rule of type {type(rule).__name__}")
            return False

        if "all" in rule:
            return all(self.evaluate(child, context) for child in rule["all"] or [])
        if "any" in rule:
            return any(self.evaluate(child, context) for child in rule["any"] or [])
        if "not" in rule:
            return not self.evaluate(rule["not"], context)

        condition_type = self.detect_type(rule)
        if condition_type is None:
            logger.warning(f"Condition rule has no recognizable type: {sorted(rule)}")
            return False
        params = {key: value for key, value in rule.items() if key != "type"}
        return self._evaluate_registered(condition_type, params, context)

    def evaluate_all(self, rules: list[Any] | None, context: dict[str, Any]) -> bool:
        """AND semantics over an ordered list; an empty list passes."""
        return all(self.evaluate(rule, context) for rule in rules or [])

    def _evaluate_registered(self, condition_type: str, params: dict[str, Any], context: dict[str, Any]) -> bool:
        definition = self.conditions.get(condition_type)
        result = bool(definition.evaluator(params, context))
        logger.debug(f"Condition '{condition_type}' evaluated to {result}")
        return result
