"""
Workflow registries.

Every piece of graph vocabulary (triggers, actions, conditions, entities,
approver resolvers) is looked up by string key in a WorkflowRegistries
container. The container is built once at boot, populated by core and by
plugins, frozen, and injected into the engine and its collaborators.

Usage:
    registries = build_registries(OfficersPlugin(directory))
    engine = WorkflowEngine(session_factory, registries)
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from .actions import ActionDefinition, ActionRegistry
from .base import Registry
from .conditions import ConditionDefinition, ConditionRegistry
from .entities import EntityDefinition, EntityRegistry
from .resolvers import PERMISSION_RESOLVER, ROLE_RESOLVER, ResolverDefinition, ResolverRegistry
from .triggers import TriggerDefinition, TriggerRegistry

logger = logging.getLogger(__name__)


class WorkflowPlugin(Protocol):
    """A plugin contributes registry entries once at boot."""

    name: str

    def register(self, registries: "WorkflowRegistries") -> None: ...


@dataclass
class WorkflowRegistries:
    actions: ActionRegistry = field(default_factory=ActionRegistry)
    conditions: ConditionRegistry = field(default_factory=ConditionRegistry)
    triggers: TriggerRegistry = field(default_factory=TriggerRegistry)
    entities: EntityRegistry = field(default_factory=EntityRegistry)
    resolvers: ResolverRegistry = field(default_factory=ResolverRegistry)

    def all(self) -> list[Registry]:
        return [self.actions, self.conditions, self.triggers, self.entities, self.resolvers]

    def install(self, plugin: WorkflowPlugin) -> None:
        plugin.register(self)
        logger.info(f"Workflow plugin '{plugin.name}' registered")

    def freeze(self) -> "WorkflowRegistries":
        for registry in self.all():
            registry.freeze()
        return self

    @property
    def frozen(self) -> bool:
        return all(registry.frozen for registry in self.all())

    def debug_info(self) -> dict[str, Any]:
        return {
            "actions": self.actions.keys(),
            "conditions": self.conditions.keys(),
            "triggers": self.triggers.keys(),
            "entities": self.entities.keys(),
            "resolvers": self.resolvers.keys(),
            "frozen": self.frozen,
        }


def build_registries(
    *plugins: WorkflowPlugin,
    include_core: bool = True,
    notifier: Any = None,
    webhook_timeout: float = 30.0,
) -> WorkflowRegistries:
    """Create registries with core vocabulary plus the given plugins, then freeze them."""
    registries = WorkflowRegistries()
    if include_core:
        from workflow_engine.actions.core_actions import register_core_actions
        from workflow_engine.conditions import register_core_conditions

        register_core_conditions(registries.conditions)
        register_core_actions(registries.actions, notifier=notifier, webhook_timeout=webhook_timeout)

    for plugin in plugins:
        registries.install(plugin)

    return registries.freeze()


__all__ = [
    "ActionDefinition",
    "ActionRegistry",
    "ConditionDefinition",
    "ConditionRegistry",
    "EntityDefinition",
    "EntityRegistry",
    "PERMISSION_RESOLVER",
    "ROLE_RESOLVER",
    "Registry",
    "ResolverDefinition",
    "ResolverRegistry",
    "TriggerDefinition",
    "TriggerRegistry",
    "WorkflowPlugin",
    "WorkflowRegistries",
    "build_registries",
]
