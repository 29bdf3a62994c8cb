"""
Action Executor - runs registered actions against a context.

Parameters are resolved ("$.path", descriptors) before the handler runs.
Handler failures are wrapped in ActionExecutionError carrying the instance
and node ids.
"""

import copy
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any

from workflow_engine.core.context import merge_context, resolve_params
from workflow_engine.core.exceptions import ActionExecutionError, DomainException
from workflow_engine.graph.schemas import ActionRef
from workflow_engine.registry.actions import ActionDefinition, ActionRegistry

logger = logging.getLogger(__name__)


@dataclass
class ActionResult:
    action: str
    params: dict[str, Any]
    output: dict[str, Any] = field(default_factory=dict)
    context_updates: dict[str, Any] = field(default_factory=dict)


class ActionExecutor:
    def __init__(self, actions: ActionRegistry, app_settings: dict[str, Any] | None = None):
        self.actions = actions
        self.app_settings = app_settings or {}

    def definition(self, action_key: str) -> ActionDefinition:
        return self.actions.get(action_key)

    def resolve(self, params: dict[str, Any] | None, context: dict[str, Any]) -> dict[str, Any]:
        return resolve_params(params, context, self.app_settings)

    async def execute(
        self,
        action_key: str,
        params: dict[str, Any] | None,
        context: dict[str, Any],
        *,
        instance_id: int | None = None,
        node_id: str | None = None,
        resolved: bool = False,
    ) -> ActionResult:
        definition = self.actions.get(action_key)
        resolved_params = dict(params or {}) if resolved else self.resolve(params, context)

        try:
            result = definition.handler(copy.deepcopy(context), resolved_params)
            if inspect.isawaitable(result):
                result = await result
        except DomainException:
            raise
        except Exception as e:
            logger.error(f"Action '{action_key}' failed at node '{node_id}' (instance {instance_id}): {e}")
            raise ActionExecutionError(instance_id, node_id, action_key, str(e)) from e

        output = dict(result or {})
        updates = output.pop("context_updates", None) or {}
        return ActionResult(action=action_key, params=resolved_params, output=output, context_updates=updates)

    async def run_refs(
        self,
        refs: list[ActionRef],
        context: dict[str, Any],
        *,
        instance_id: int | None = None,
        node_id: str | None = None,
    ) -> tuple[dict[str, Any], list[ActionResult]]:
        """Run action refs in order, merging each one's updates before the next runs."""
        results = []
        for ref in refs:
            result = await self.execute(ref.action, ref.params, context, instance_id=instance_id, node_id=node_id)
            if result.context_updates:
                context = merge_context(context, result.context_updates)
            results.append(result)
        return context, results
