"""
Approver Resolver Registry - resolver key to async callable returning member ids.

Permission and role approver rules are resolved through the keys
`core.permission` and `core.role`; the host application registers those
against its own member directory. Dynamic rules name any other key.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from workflow_engine.core.exceptions import UnknownResolverError

from .base import Registry

ApproverResolver = Callable[[dict[str, Any], dict[str, Any]], Awaitable[list[int]]]

PERMISSION_RESOLVER = "core.permission"
ROLE_RESOLVER = "core.role"


@dataclass(frozen=True)
class ResolverDefinition:
    key: str
    resolver: ApproverResolver
    label: str = ""
    description: str = ""
    plugin: str = "core"


class ResolverRegistry(Registry[ResolverDefinition]):
    name = "resolver"
    not_found_error = UnknownResolverError

    def add(
        self,
        key: str,
        resolver: ApproverResolver,
        *,
        label: str = "",
        description: str = "",
        plugin: str = "core",
    ) -> ResolverDefinition:
        return self.register(
            key, ResolverDefinition(key=key, resolver=resolver, label=label, description=description, plugin=plugin)
        )

    async def resolve(self, key: str, config: dict[str, Any], context: dict[str, Any]) -> list[int]:
        members = await self.get(key).resolver(config, context)
        # Order preserved for chain approvals, duplicates dropped
        return list(dict.fromkeys(int(member_id) for member_id in members))
