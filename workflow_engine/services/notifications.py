"""
Notification boundary.

The engine never renders or delivers messages itself; the send_email action
and the "notify" escalation hand them to a Notifier supplied by the host.
"""

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def send(self, recipient: Any, template: str, variables: dict[str, Any]) -> None: ...


class LoggingNotifier:
    """Default notifier: logs and remembers what would have been sent."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    async def send(self, recipient: Any, template: str, variables: dict[str, Any]) -> None:
        self.sent.append({"recipient": recipient, "template": template, "variables": variables})
        logger.info(f"Notification '{template}' queued for {recipient}")
