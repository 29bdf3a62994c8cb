"""
Core actions available to every workflow.

Handlers take (context, params) with params already resolved, and return an
output fragment. A "context_updates" key in the output is merged into the
instance context; everything else is stored as the node result.
"""

import logging
from datetime import UTC, datetime
from typing import Any

import httpx

from workflow_engine.registry.actions import ActionRegistry
from workflow_engine.services.notifications import LoggingNotifier, Notifier

logger = logging.getLogger(__name__)


def _nested(path: str, value: Any) -> dict[str, Any]:
    result: dict[str, Any] = {}
    current = result
    parts = path.split(".")
    for part in parts[:-1]:
        current = current.setdefault(part, {})
    current[parts[-1]] = value
    return result


def set_variable(context: dict[str, Any], params: dict[str, Any]) -> dict[str, Any]:
    name = params.get("name")
    if not name:
        raise ValueError("set_variable requires 'name'")
    value = params.get("value")
    return {"name": name, "value": value, "context_updates": {"variables": {name: value}}}


def set_context(context: dict[str, Any], params: dict[str, Any]) -> dict[str, Any]:
    key = params.get("key")
    if not key:
        raise ValueError("set_context requires 'key'")
    value = params.get("value")
    return {"key": key, "value": value, "context_updates": _nested(key, value)}


def create_note(context: dict[str, Any], params: dict[str, Any]) -> dict[str, Any]:
    note = {
        "subject": params.get("subject", ""),
        "body": params.get("body", ""),
        "author_id": params.get("author_id", context.get("triggeredBy")),
        "created_at": datetime.now(UTC).isoformat(),
    }
    notes = list(context.get("notes") or []) + [note]
    return {"note": note, "context_updates": {"notes": notes}}


def update_entity(context: dict[str, Any], params: dict[str, Any]) -> dict[str, Any]:
    fields = params.get("fields") or {}
    if not isinstance(fields, dict):
        raise ValueError("update_entity 'fields' must be an object")
    return {"updated_fields": sorted(fields), "context_updates": {"entity": fields}}


class SendEmailAction:
    """Hands an email to the notifier; delivery happens outside the engine."""

    def __init__(self, notifier: Notifier):
        self.notifier = notifier

    async def __call__(self, context: dict[str, Any], params: dict[str, Any]) -> dict[str, Any]:
        recipient = params.get("to")
        template = params.get("template")
        if recipient is None or not template:
            raise ValueError("send_email requires 'to' and 'template'")
        await self.notifier.send(recipient, template, params.get("vars") or {})
        return {"sent": True, "to": recipient, "template": template}


class WebhookAction:
    """POSTs a JSON payload to an external URL. Registered as asynchronous."""

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout

    async def __call__(self, context: dict[str, Any], params: dict[str, Any]) -> dict[str, Any]:
        url = params.get("url")
        if not url:
            raise ValueError("webhook requires 'url'")
        method = str(params.get("method", "POST")).upper()
        payload = params.get("payload", {"trigger": context.get("trigger"), "nodes": context.get("nodes")})

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.request(method, url, json=payload, headers=params.get("headers") or {})
            response.raise_for_status()

        logger.info(f"Webhook {method} {url} -> {response.status_code}")
        try:
            body: Any = response.json() if response.text.strip() else {}
        except ValueError:
            body = response.text
        return {"status_code": response.status_code, "body": body}


def register_core_actions(
    actions: ActionRegistry,
    notifier: Notifier | None = None,
    webhook_timeout: float = 30.0,
) -> None:
    actions.add(
        "set_variable",
        set_variable,
        label="Set variable",
        description="Stores a value under context.variables",
        input_schema={"name": {"type": "string", "required": True}, "value": {"type": "mixed"}},
        output_schema={"name": {"type": "string"}, "value": {"type": "mixed"}},
    )
    actions.add(
        "set_context",
        set_context,
        label="Set context value",
        description="Writes a value at a dot path of the instance context",
        input_schema={"key": {"type": "string", "required": True}, "value": {"type": "mixed"}},
    )
    actions.add(
        "create_note",
        create_note,
        label="Create note",
        input_schema={"subject": {"type": "string"}, "body": {"type": "string"}},
        output_schema={"note": {"type": "object"}},
    )
    actions.add(
        "update_entity",
        update_entity,
        label="Update entity",
        description="Merges fields into context.entity",
        input_schema={"fields": {"type": "object", "required": True}},
    )
    actions.add(
        "send_email",
        SendEmailAction(notifier or LoggingNotifier()),
        label="Send email",
        input_schema={
            "to": {"type": "mixed", "required": True},
            "template": {"type": "string", "required": True},
            "vars": {"type": "object"},
        },
        output_schema={"sent": {"type": "boolean"}},
    )
    actions.add(
        "webhook",
        WebhookAction(webhook_timeout),
        label="Webhook",
        description="Calls an external HTTP endpoint out of band",
        input_schema={
            "url": {"type": "string", "required": True},
            "method": {"type": "string"},
            "payload": {"type": "object"},
            "headers": {"type": "object"},
        },
        output_schema={"status_code": {"type": "integer"}, "body": {"type": "mixed"}},
        is_async=True,
    )
