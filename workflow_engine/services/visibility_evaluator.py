"""
Visibility Evaluator

Answers "can this user view/edit the entity or a field" for the state an
instance currently sits in.

Entity rules target "*": no rules means allowed, otherwise any rule whose
condition passes (rules without a condition always pass) allows access.
Field rules target a field name: no rules means every field ("*"),
otherwise the fields of the rules whose condition passes.
"""

import copy
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from workflow_engine.conditions.rule_evaluator import RuleEvaluator
from workflow_engine.core.exceptions import InstanceNotFound
from workflow_engine.database import session_scope
from workflow_engine.models.db.workflow import WorkflowInstance, WorkflowVisibilityRule
from workflow_engine.models.db.workflow.constants import VisibilityRuleType
from workflow_engine.registry import WorkflowRegistries
from workflow_engine.repositories import WorkflowRepository

logger = logging.getLogger(__name__)

ALL_FIELDS = "*"


class VisibilityEvaluator:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], registries: WorkflowRegistries):
        self.session_factory = session_factory
        self.registries = registries
        self.rules = RuleEvaluator(registries.conditions)

    async def can_view_entity(
        self, instance_id: int, user_id: int | None = None, user_context: dict[str, Any] | None = None
    ) -> bool:
        return await self._entity_access(VisibilityRuleType.CAN_VIEW_ENTITY, instance_id, user_id, user_context)

    async def can_edit_entity(
        self, instance_id: int, user_id: int | None = None, user_context: dict[str, Any] | None = None
    ) -> bool:
        return await self._entity_access(VisibilityRuleType.CAN_EDIT_ENTITY, instance_id, user_id, user_context)

    async def get_visible_fields(
        self, instance_id: int, user_id: int | None = None, user_context: dict[str, Any] | None = None
    ) -> list[str]:
        return await self._fields(VisibilityRuleType.CAN_VIEW_FIELD, instance_id, user_id, user_context)

    async def get_editable_fields(
        self, instance_id: int, user_id: int | None = None, user_context: dict[str, Any] | None = None
    ) -> list[str]:
        return await self._fields(VisibilityRuleType.CAN_EDIT_FIELD, instance_id, user_id, user_context)

    async def can_view_field(
        self,
        instance_id: int,
        field_name: str,
        user_id: int | None = None,
        user_context: dict[str, Any] | None = None,
    ) -> bool:
        fields = await self.get_visible_fields(instance_id, user_id, user_context)
        return ALL_FIELDS in fields or field_name in fields

    async def can_edit_field(
        self,
        instance_id: int,
        field_name: str,
        user_id: int | None = None,
        user_context: dict[str, Any] | None = None,
    ) -> bool:
        fields = await self.get_editable_fields(instance_id, user_id, user_context)
        return ALL_FIELDS in fields or field_name in fields

    async def _entity_access(
        self, rule_type: str, instance_id: int, user_id: int | None, user_context: dict[str, Any] | None
    ) -> bool:
        instance, rules = await self._load_rules(rule_type, instance_id)
        rules = [rule for rule in rules if rule.target == ALL_FIELDS]
        if not rules:
            return True

        evaluation = await self._build_context(instance, user_id, user_context)
        # Rules are ordered by priority; the first passing rule grants access
        return any(not rule.condition or self.rules.evaluate(rule.condition, evaluation) for rule in rules)

    async def _fields(
        self, rule_type: str, instance_id: int, user_id: int | None, user_context: dict[str, Any] | None
    ) -> list[str]:
        instance, rules = await self._load_rules(rule_type, instance_id)
        rules = [rule for rule in rules if rule.target != ALL_FIELDS]
        if not rules:
            return [ALL_FIELDS]

        evaluation = await self._build_context(instance, user_id, user_context)
        fields = [
            rule.target
            for rule in rules
            if not rule.condition or self.rules.evaluate(rule.condition, evaluation)
        ]
        return list(dict.fromkeys(fields))

    async def _load_rules(
        self, rule_type: str, instance_id: int
    ) -> tuple[WorkflowInstance, list[WorkflowVisibilityRule]]:
        async with session_scope(self.session_factory) as session:
            repo = WorkflowRepository(session)
            instance = await repo.get_instance(instance_id)
            if instance is None:
                raise InstanceNotFound(instance_id)
            if instance.current_state_id is None:
                return instance, []
            return instance, await repo.get_visibility_rules(instance.current_state_id, [rule_type])

    async def _build_context(
        self, instance: WorkflowInstance, user_id: int | None, user_context: dict[str, Any] | None
    ) -> dict[str, Any]:
        evaluation: dict[str, Any] = {
            **copy.deepcopy(instance.context),
            "user_id": user_id,
            "user_permissions": [],
            "user_roles": [],
            **(user_context or {}),
            "entity_type": instance.entity_type,
            "instance": {**instance.to_dict(), "context": copy.deepcopy(instance.context)},
            "state_entered_at": instance.state_entered_at,
        }
        entity = await self.registries.entities.load(instance.entity_type, instance.entity_id)
        if entity is not None:
            evaluation["entity"] = entity
        return evaluation
