"""
Action Registry - action key to executor, I/O schema and async flag.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from workflow_engine.core.exceptions import UnknownActionError

from .base import Registry

ActionHandler = Callable[[dict[str, Any], dict[str, Any]], Awaitable[dict[str, Any]] | dict[str, Any]]


@dataclass(frozen=True)
class ActionDefinition:
    """
    Registered action.

    The handler receives (context, params) and returns an output fragment
    that the engine stores under context["nodes"][node_id]["result"].
    Asynchronous actions are not run inline: the engine enqueues a resume
    job and the resume task invokes the handler out of band.
    """

    key: str
    handler: ActionHandler
    label: str = ""
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)
    output_schema: dict[str, Any] = field(default_factory=dict)
    is_async: bool = False
    plugin: str = "core"

    def to_designer(self) -> dict[str, Any]:
        return {
            "action": self.key,
            "label": self.label or self.key,
            "description": self.description,
            "inputSchema": self.input_schema,
            "outputSchema": self.output_schema,
            "isAsync": self.is_async,
            "plugin": self.plugin,
        }


class ActionRegistry(Registry[ActionDefinition]):
    name = "action"
    not_found_error = UnknownActionError

    def add(
        self,
        key: str,
        handler: ActionHandler,
        *,
        label: str = "",
        description: str = "",
        input_schema: dict[str, Any] | None = None,
        output_schema: dict[str, Any] | None = None,
        is_async: bool = False,
        plugin: str = "core",
    ) -> ActionDefinition:
        return self.register(
            key,
            ActionDefinition(
                key=key,
                handler=handler,
                label=label,
                description=description,
                input_schema=input_schema or {},
                output_schema=output_schema or {},
                is_async=is_async,
                plugin=plugin,
            ),
        )

    def for_designer(self) -> list[dict[str, Any]]:
        return [entry.to_designer() for entry in self.values()]
