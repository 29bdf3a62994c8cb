"""
Condition Registry - condition type to pure evaluator.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from workflow_engine.core.exceptions import UnknownConditionError

from .base import Registry

ConditionEvaluator = Callable[[dict[str, Any], dict[str, Any]], bool]


@dataclass(frozen=True)
class ConditionDefinition:
    """Registered condition type; evaluator is called as (params, context)."""

    key: str
    evaluator: ConditionEvaluator
    label: str = ""
    description: str = ""
    params_schema: dict[str, Any] = field(default_factory=dict)
    plugin: str = "core"

    def to_designer(self) -> dict[str, Any]:
        return {
            "condition": self.key,
            "label": self.label or self.key,
            "description": self.description,
            "paramsSchema": self.params_schema,
            "plugin": self.plugin,
        }


class ConditionRegistry(Registry[ConditionDefinition]):
    name = "condition"
    not_found_error = UnknownConditionError

    def add(
        self,
        key: str,
        evaluator: ConditionEvaluator,
        *,
        label: str = "",
        description: str = "",
        params_schema: dict[str, Any] | None = None,
        plugin: str = "core",
    ) -> ConditionDefinition:
        return self.register(
            key,
            ConditionDefinition(
                key=key,
                evaluator=evaluator,
                label=label,
                description=description,
                params_schema=params_schema or {},
                plugin=plugin,
            ),
        )

    def for_designer(self) -> list[dict[str, Any]]:
        return [entry.to_designer() for entry in self.values()]
