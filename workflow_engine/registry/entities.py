"""
Entity Registry - entity type to field schema and optional loader.

The loader, when present, is awaited with the entity id at start and its
result is placed in context["entity"] for conditions such as ownership.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from workflow_engine.core.exceptions import UnknownEntityError

from .base import Registry

EntityLoader = Callable[[str], Awaitable[dict[str, Any] | None]]


@dataclass(frozen=True)
class EntityDefinition:
    entity_type: str
    label: str = ""
    fields: dict[str, dict[str, Any]] = field(default_factory=dict)
    loader: EntityLoader | None = None
    plugin: str = "core"

    def to_designer(self) -> dict[str, Any]:
        return {
            "entityType": self.entity_type,
            "label": self.label or self.entity_type,
            "fields": self.fields,
            "plugin": self.plugin,
        }


class EntityRegistry(Registry[EntityDefinition]):
    name = "entity"
    not_found_error = UnknownEntityError

    def add(self, definition: EntityDefinition) -> EntityDefinition:
        return self.register(definition.entity_type, definition)

    async def load(self, entity_type: str | None, entity_id: str | None) -> dict[str, Any] | None:
        if not entity_type or entity_id is None or entity_type not in self:
            return None
        loader = self.get(entity_type).loader
        if loader is None:
            return None
        return await loader(entity_id)
