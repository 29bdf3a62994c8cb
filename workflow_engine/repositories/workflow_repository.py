"""
Workflow Repository

Data access for definitions, versions, graph rows, instances, approvals and
audit logs. The repository never commits: the calling service owns the
transaction (see database.session_scope).
"""

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from workflow_engine.models.db.workflow import (
    WorkflowApproval,
    WorkflowApprovalGate,
    WorkflowApprovalResponse,
    WorkflowDefinition,
    WorkflowExecutionLog,
    WorkflowInstance,
    WorkflowState,
    WorkflowTransition,
    WorkflowTransitionLog,
    WorkflowVersion,
    WorkflowVisibilityRule,
)
from workflow_engine.models.db.workflow.constants import (
    ApprovalStatus,
    ExecutionStatus,
    InstanceStatus,
    TERMINAL_INSTANCE_STATUSES,
    VersionStatus,
)

logger = logging.getLogger(__name__)

ACTIVE_INSTANCE_STATUSES = (InstanceStatus.PENDING, InstanceStatus.RUNNING, InstanceStatus.WAITING)


class WorkflowRepository:
    """
    SQLAlchemy repository for the workflow engine.

    Row-locking reads (`for_update=True`) use SELECT ... FOR UPDATE and
    refresh the identity map so the caller sees the committed row.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize repository.

        Args:
            session: SQLAlchemy async session
        """
        self.session = session

    # ------------------------------------------------------------------
    # Definitions and versions
    # ------------------------------------------------------------------

    async def get_definition(self, definition_id: int) -> WorkflowDefinition | None:
        return await self.session.get(WorkflowDefinition, definition_id)

    async def get_definition_by_slug(self, slug: str) -> WorkflowDefinition | None:
        result = await self.session.execute(select(WorkflowDefinition).where(WorkflowDefinition.slug == slug))
        return result.scalar_one_or_none()

    async def list_active_definitions(self) -> list[WorkflowDefinition]:
        result = await self.session.execute(
            select(WorkflowDefinition).where(WorkflowDefinition.is_active.is_(True)).order_by(WorkflowDefinition.id)
        )
        return list(result.scalars().all())

    async def get_version(self, version_id: int, for_update: bool = False) -> WorkflowVersion | None:
        stmt = select(WorkflowVersion).where(WorkflowVersion.id == version_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_versions(self, definition_id: int) -> list[WorkflowVersion]:
        result = await self.session.execute(
            select(WorkflowVersion)
            .where(WorkflowVersion.workflow_definition_id == definition_id)
            .order_by(WorkflowVersion.version_number)
        )
        return list(result.scalars().all())

    async def get_published_version(self, definition: WorkflowDefinition) -> WorkflowVersion | None:
        if definition.current_version_id:
            version = await self.get_version(definition.current_version_id)
            if version and version.status == VersionStatus.PUBLISHED:
                return version
        result = await self.session.execute(
            select(WorkflowVersion)
            .where(
                WorkflowVersion.workflow_definition_id == definition.id,
                WorkflowVersion.status == VersionStatus.PUBLISHED,
            )
            .order_by(WorkflowVersion.version_number.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def next_version_number(self, definition_id: int) -> int:
        result = await self.session.execute(
            select(func.max(WorkflowVersion.version_number)).where(
                WorkflowVersion.workflow_definition_id == definition_id
            )
        )
        return (result.scalar() or 0) + 1

    # ------------------------------------------------------------------
    # Materialized graph
    # ------------------------------------------------------------------

    async def get_state(self, state_id: int | None) -> WorkflowState | None:
        if state_id is None:
            return None
        return await self.session.get(WorkflowState, state_id)

    async def get_states(self, version_id: int) -> dict[str, WorkflowState]:
        result = await self.session.execute(
            select(WorkflowState).where(WorkflowState.workflow_version_id == version_id)
        )
        return {state.node_id: state for state in result.scalars().all()}

    async def get_state_by_node(self, version_id: int, node_id: str) -> WorkflowState | None:
        result = await self.session.execute(
            select(WorkflowState).where(
                WorkflowState.workflow_version_id == version_id,
                WorkflowState.node_id == node_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_transitions_from(self, state_id: int) -> list[WorkflowTransition]:
        result = await self.session.execute(
            select(WorkflowTransition)
            .where(WorkflowTransition.from_state_id == state_id)
            .order_by(WorkflowTransition.priority, WorkflowTransition.id)
        )
        return list(result.scalars().all())

    async def get_transitions(self, version_id: int) -> dict[str, WorkflowTransition]:
        result = await self.session.execute(
            select(WorkflowTransition).where(WorkflowTransition.workflow_version_id == version_id)
        )
        return {transition.edge_id: transition for transition in result.scalars().all()}

    async def get_gate_for_state(self, state_id: int) -> WorkflowApprovalGate | None:
        result = await self.session.execute(
            select(WorkflowApprovalGate).where(WorkflowApprovalGate.workflow_state_id == state_id)
        )
        return result.scalar_one_or_none()

    async def get_visibility_rules(self, state_id: int, rule_types: Iterable[str]) -> list[WorkflowVisibilityRule]:
        result = await self.session.execute(
            select(WorkflowVisibilityRule)
            .where(
                WorkflowVisibilityRule.workflow_state_id == state_id,
                WorkflowVisibilityRule.rule_type.in_(list(rule_types)),
            )
            .order_by(WorkflowVisibilityRule.priority.desc(), WorkflowVisibilityRule.id)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Instances
    # ------------------------------------------------------------------

    async def get_instance(self, instance_id: int, for_update: bool = False) -> WorkflowInstance | None:
        stmt = select(WorkflowInstance).where(WorkflowInstance.id == instance_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_active_instance(
        self, definition_id: int, entity_type: str | None, entity_id: str | None
    ) -> WorkflowInstance | None:
        if entity_id is None:
            return None
        result = await self.session.execute(
            select(WorkflowInstance)
            .where(
                WorkflowInstance.workflow_definition_id == definition_id,
                WorkflowInstance.entity_type == entity_type,
                WorkflowInstance.entity_id == entity_id,
                WorkflowInstance.status.not_in([str(status) for status in TERMINAL_INSTANCE_STATUSES]),
                WorkflowInstance.status != InstanceStatus.FAILED,
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def count_active_instances(self) -> int:
        result = await self.session.execute(
            select(func.count(WorkflowInstance.id)).where(
                WorkflowInstance.status.in_([str(status) for status in ACTIVE_INSTANCE_STATUSES])
            )
        )
        return int(result.scalar() or 0)

    async def waiting_instance_ids(self) -> list[int]:
        result = await self.session.execute(
            select(WorkflowInstance.id)
            .where(WorkflowInstance.status == InstanceStatus.WAITING)
            .order_by(WorkflowInstance.id)
        )
        return list(result.scalars().all())

    async def list_instances_for_entity(self, entity_type: str, entity_id: str) -> list[WorkflowInstance]:
        result = await self.session.execute(
            select(WorkflowInstance)
            .where(WorkflowInstance.entity_type == entity_type, WorkflowInstance.entity_id == entity_id)
            .order_by(WorkflowInstance.id)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Audit logs
    # ------------------------------------------------------------------

    async def next_attempt_number(self, instance_id: int, node_id: str) -> int:
        result = await self.session.execute(
            select(func.max(WorkflowExecutionLog.attempt_number)).where(
                WorkflowExecutionLog.workflow_instance_id == instance_id,
                WorkflowExecutionLog.node_id == node_id,
            )
        )
        return (result.scalar() or 0) + 1

    async def add(self, row: Any) -> Any:
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_execution_logs(self, instance_id: int, limit: int | None = None) -> list[WorkflowExecutionLog]:
        stmt = (
            select(WorkflowExecutionLog)
            .where(WorkflowExecutionLog.workflow_instance_id == instance_id)
            .order_by(WorkflowExecutionLog.id.desc() if limit else WorkflowExecutionLog.id)
        )
        if limit:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_waiting_log(self, instance_id: int, node_id: str) -> WorkflowExecutionLog | None:
        result = await self.session.execute(
            select(WorkflowExecutionLog)
            .where(
                WorkflowExecutionLog.workflow_instance_id == instance_id,
                WorkflowExecutionLog.node_id == node_id,
                WorkflowExecutionLog.status == ExecutionStatus.WAITING,
            )
            .order_by(WorkflowExecutionLog.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_transition_logs(self, instance_id: int) -> list[WorkflowTransitionLog]:
        result = await self.session.execute(
            select(WorkflowTransitionLog)
            .where(WorkflowTransitionLog.workflow_instance_id == instance_id)
            .order_by(WorkflowTransitionLog.id)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Approvals
    # ------------------------------------------------------------------

    async def get_approval(self, approval_id: int, for_update: bool = False) -> WorkflowApproval | None:
        stmt = select(WorkflowApproval).where(WorkflowApproval.id == approval_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_open_approval(self, instance_id: int, node_id: str) -> WorkflowApproval | None:
        result = await self.session.execute(
            select(WorkflowApproval)
            .where(
                WorkflowApproval.workflow_instance_id == instance_id,
                WorkflowApproval.node_id == node_id,
                WorkflowApproval.status == ApprovalStatus.PENDING,
            )
            .order_by(WorkflowApproval.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_approvals_for_instance(
        self, instance_id: int, status: str | None = None
    ) -> list[WorkflowApproval]:
        stmt = select(WorkflowApproval).where(WorkflowApproval.workflow_instance_id == instance_id)
        if status:
            stmt = stmt.where(WorkflowApproval.status == status)
        result = await self.session.execute(stmt.order_by(WorkflowApproval.id))
        return list(result.scalars().all())

    async def find_overdue_approval_ids(self, now: datetime) -> list[int]:
        result = await self.session.execute(
            select(WorkflowApproval.id)
            .where(
                WorkflowApproval.status == ApprovalStatus.PENDING,
                WorkflowApproval.deadline.is_not(None),
                WorkflowApproval.deadline < now,
            )
            .order_by(WorkflowApproval.deadline, WorkflowApproval.id)
        )
        return list(result.scalars().all())

    async def get_response(self, approval_id: int, member_id: int) -> WorkflowApprovalResponse | None:
        result = await self.session.execute(
            select(WorkflowApprovalResponse).where(
                WorkflowApprovalResponse.workflow_approval_id == approval_id,
                WorkflowApprovalResponse.member_id == member_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_responses(self, approval_id: int) -> list[WorkflowApprovalResponse]:
        result = await self.session.execute(
            select(WorkflowApprovalResponse)
            .where(WorkflowApprovalResponse.workflow_approval_id == approval_id)
            .order_by(WorkflowApprovalResponse.id)
        )
        return list(result.scalars().all())
