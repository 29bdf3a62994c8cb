"""
Trigger Registry - event name to payload schema.

Payload schemas are pydantic models; a payload that fails validation is
rejected with InvalidPayload before any instance is created.
"""

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ValidationError

from workflow_engine.core.exceptions import InvalidPayload, UnknownTriggerError

from .base import Registry


@dataclass(frozen=True)
class TriggerDefinition:
    """
    Registered trigger event.

    Attributes:
        event: Event name (e.g., "Officers.HireRequested").
        payload_model: Pydantic model describing the payload, or None for free-form.
        entity_type: Entity type instances started by this event advance.
        entity_id_field: Payload field holding the entity id.
    """

    event: str
    label: str = ""
    description: str = ""
    payload_model: type[BaseModel] | None = None
    entity_type: str | None = None
    entity_id_field: str | None = None
    plugin: str = "core"

    def validate_payload(self, payload: dict[str, Any]) -> dict[str, Any]:
        if self.payload_model is None:
            return dict(payload)
        try:
            model = self.payload_model.model_validate(payload)
        except ValidationError as e:
            raise InvalidPayload(
                f"Payload for trigger '{self.event}' is invalid",
                {"event": self.event, "errors": e.errors(include_url=False, include_context=False)},
            ) from e
        return {**payload, **model.model_dump(mode="json", by_alias=True)}

    def to_designer(self) -> dict[str, Any]:
        return {
            "event": self.event,
            "label": self.label or self.event,
            "description": self.description,
            "payloadSchema": self.payload_model.model_json_schema() if self.payload_model else {},
            "entityType": self.entity_type,
            "entityIdField": self.entity_id_field,
            "plugin": self.plugin,
        }


class TriggerRegistry(Registry[TriggerDefinition]):
    name = "trigger"
    not_found_error = UnknownTriggerError

    def add(self, definition: TriggerDefinition) -> TriggerDefinition:
        return self.register(definition.event, definition)

    def for_designer(self) -> list[dict[str, Any]]:
        return [entry.to_designer() for entry in self.values()]
