"""
Officers plugin: registers the officer hiring vocabulary.

Triggers, actions, conditions, the Officers.Officers entity and the
Officers.WarrantApprovers resolver are all backed by an OfficerDirectory.
"""

import logging
from typing import Any

from workflow_engine.core.context import resolve_param_value
from workflow_engine.registry import (
    PERMISSION_RESOLVER,
    ROLE_RESOLVER,
    EntityDefinition,
    TriggerDefinition,
    WorkflowRegistries,
)
from workflow_engine.services.notifications import LoggingNotifier, Notifier

from .actions import OfficerActions
from .conditions import OfficerConditions
from .directory import OfficerDirectory
from .schemas import HireRequestedPayload, ReleasedPayload, WarrantRequiredPayload

logger = logging.getLogger(__name__)

PLUGIN_NAME = "Officers"
OFFICER_ENTITY = "Officers.Officers"
MEMBER_ENTITY = "Officers.Members"
WARRANT_APPROVERS_RESOLVER = "Officers.WarrantApprovers"

_OFFICE_PARAM = {"officeId": {"type": "integer", "required": True}}


class OfficersPlugin:
    """
    Args:
        directory: Officer directory the vocabulary reads and writes
        notifier: Delivers Officers.SendHireNotification
        register_access_resolvers: Also register core.permission / core.role
            against the directory's members
    """

    name = PLUGIN_NAME

    def __init__(
        self,
        directory: OfficerDirectory,
        notifier: Notifier | None = None,
        register_access_resolvers: bool = True,
    ):
        self.directory = directory
        self.notifier = notifier or LoggingNotifier()
        self.register_access_resolvers = register_access_resolvers
        self.actions = OfficerActions(directory, self.notifier)
        self.conditions = OfficerConditions(directory)

    def register(self, registries: WorkflowRegistries) -> None:
        self._register_triggers(registries)
        self._register_actions(registries)
        self._register_conditions(registries)
        self._register_resolvers(registries)
        registries.entities.add(
            EntityDefinition(
                entity_type=OFFICER_ENTITY,
                label="Officer",
                fields={
                    "member_id": {"type": "integer"},
                    "office_id": {"type": "integer"},
                    "branch_id": {"type": "integer"},
                    "status": {"type": "string"},
                    "start_on": {"type": "datetime"},
                    "expires_on": {"type": "datetime"},
                },
                loader=self.load_officer,
                plugin=PLUGIN_NAME,
            )
        )
        registries.entities.add(
            EntityDefinition(
                entity_type=MEMBER_ENTITY,
                label="Member",
                fields={
                    "sca_name": {"type": "string"},
                    "email_address": {"type": "string"},
                    "warrantable": {"type": "boolean"},
                },
                loader=self.load_member,
                plugin=PLUGIN_NAME,
            )
        )

    def _register_triggers(self, registries: WorkflowRegistries) -> None:
        registries.triggers.add(
            TriggerDefinition(
                event="Officers.HireRequested",
                label="Officer hire requested",
                description="A member is nominated for an office",
                payload_model=HireRequestedPayload,
                entity_type=MEMBER_ENTITY,
                entity_id_field="memberId",
                plugin=PLUGIN_NAME,
            )
        )
        registries.triggers.add(
            TriggerDefinition(
                event="Officers.Released",
                label="Officer released",
                payload_model=ReleasedPayload,
                entity_type=OFFICER_ENTITY,
                entity_id_field="officerId",
                plugin=PLUGIN_NAME,
            )
        )
        registries.triggers.add(
            TriggerDefinition(
                event="Officers.WarrantRequired",
                label="Warrant required",
                payload_model=WarrantRequiredPayload,
                entity_type=OFFICER_ENTITY,
                entity_id_field="officerId",
                plugin=PLUGIN_NAME,
            )
        )

    def _register_actions(self, registries: WorkflowRegistries) -> None:
        actions = registries.actions
        actions.add(
            "Officers.CreateOfficerRecord",
            self.actions.create_officer_record,
            label="Create officer record",
            input_schema={
                "memberId": {"type": "integer", "required": True},
                "officeId": {"type": "integer", "required": True},
                "branchId": {"type": "integer", "required": True},
                "startOn": {"type": "datetime"},
                "expiresOn": {"type": "datetime"},
                "emailAddress": {"type": "string"},
            },
            output_schema={"officerId": {"type": "integer"}, "status": {"type": "string"}},
            plugin=PLUGIN_NAME,
        )
        actions.add(
            "Officers.ReleaseOfficer",
            self.actions.release_officer,
            label="Release officer",
            input_schema={"officerId": {"type": "integer", "required": True}, "reason": {"type": "string"}},
            output_schema={"released": {"type": "boolean"}},
            plugin=PLUGIN_NAME,
        )
        actions.add(
            "Officers.SendHireNotification",
            self.actions.send_hire_notification,
            label="Send hire notification",
            input_schema={"officerId": {"type": "integer", "required": True}},
            output_schema={"sent": {"type": "boolean"}},
            is_async=True,
            plugin=PLUGIN_NAME,
        )
        actions.add(
            "Officers.RequestWarrantRoster",
            self.actions.request_warrant_roster,
            label="Request warrant roster",
            input_schema={"officerId": {"type": "integer", "required": True}},
            output_schema={"rosterId": {"type": "integer"}},
            plugin=PLUGIN_NAME,
        )

    def _register_conditions(self, registries: WorkflowRegistries) -> None:
        conditions = registries.conditions
        conditions.add(
            "Officers.OfficeRequiresWarrant",
            self.conditions.office_requires_warrant,
            label="Office requires warrant",
            params_schema=_OFFICE_PARAM,
            plugin=PLUGIN_NAME,
        )
        conditions.add(
            "Officers.IsOnlyOnePerBranch",
            self.conditions.is_only_one_per_branch,
            label="Office allows one officer per branch",
            params_schema=_OFFICE_PARAM,
            plugin=PLUGIN_NAME,
        )
        conditions.add(
            "Officers.IsMemberWarrantable",
            self.conditions.is_member_warrantable,
            label="Member is warrantable",
            params_schema={"memberId": {"type": "integer", "required": True}},
            plugin=PLUGIN_NAME,
        )

    def _register_resolvers(self, registries: WorkflowRegistries) -> None:
        registries.resolvers.add(
            WARRANT_APPROVERS_RESOLVER,
            self.resolve_warrant_approvers,
            label="Warrant approvers of the office",
            plugin=PLUGIN_NAME,
        )
        if not self.register_access_resolvers:
            return
        registries.resolvers.add(
            PERMISSION_RESOLVER, self.resolve_permission, label="Members with permission", plugin=PLUGIN_NAME
        )
        registries.resolvers.add(ROLE_RESOLVER, self.resolve_role, label="Members with role", plugin=PLUGIN_NAME)

    # ========================================================================
    # RESOLVERS / LOADERS
    # ========================================================================

    async def resolve_warrant_approvers(self, config: dict[str, Any], context: dict[str, Any]) -> list[int]:
        office_ref = config.get("officeId", "$.trigger.officeId")
        office = self.directory.get_office(resolve_param_value(office_ref, context))
        if office is None:
            logger.warning(f"Warrant approvers requested for unknown office {office_ref}")
            return []
        return list(office.warrant_approver_ids)

    async def resolve_permission(self, config: dict[str, Any], context: dict[str, Any]) -> list[int]:
        return self.directory.members_with_permission(config["permission"])

    async def resolve_role(self, config: dict[str, Any], context: dict[str, Any]) -> list[int]:
        return self.directory.members_with_role(config["role"])

    async def load_officer(self, entity_id: str) -> dict[str, Any] | None:
        officer = self.directory.get_officer(entity_id)
        return officer.model_dump(mode="json") if officer else None

    async def load_member(self, entity_id: str) -> dict[str, Any] | None:
        member = self.directory.get_member(entity_id)
        if member is None:
            return None
        # Ownership conditions read member_id off the entity
        return {**member.model_dump(mode="json"), "member_id": member.id}
