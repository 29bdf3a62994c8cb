"""
Approval Manager

Opens, tracks and resolves approval gates.

- open_gate: idempotent per instance + node; resolves the approver pool and
  the required count, stores a pending WorkflowApproval with its deadline
- record_response: one response per member, counts updated under a row
  lock, gate evaluated per approval type
- escalate: deadline behavior (auto_approve, auto_reject, reassign, notify,
  expire)

Methods take the caller's session; the engine owns the transaction.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from workflow_engine.core.context import resolve_param_value
from workflow_engine.core.exceptions import (
    ApprovalError,
    ApprovalNotFound,
    ApprovalNotPending,
    DuplicateResponse,
    NotEligibleApprover,
)
from workflow_engine.graph.schemas import (
    ApprovalGateConfig,
    ApproverRule,
    AutoApprove,
    AutoReject,
    DynamicApprovers,
    MemberApprover,
    Notify,
    PermissionApprovers,
    Reassign,
    RoleApprovers,
    StaticApprovers,
    parse_escalation,
)
from workflow_engine.models.db.workflow import WorkflowApproval, WorkflowApprovalResponse, WorkflowInstance
from workflow_engine.models.db.workflow.constants import ApprovalStatus, ApprovalType, Decision, Port
from workflow_engine.registry import WorkflowRegistries
from workflow_engine.registry.resolvers import PERMISSION_RESOLVER, ROLE_RESOLVER
from workflow_engine.repositories import WorkflowRepository
from workflow_engine.services.notifications import LoggingNotifier, Notifier

logger = logging.getLogger(__name__)

GATE_PENDING = "pending"
GATE_SATISFIED = "satisfied"
GATE_DENIED = "denied"

_PORT_BY_GATE_STATUS = {
    GATE_PENDING: None,
    GATE_SATISFIED: Port.APPROVED,
    GATE_DENIED: Port.REJECTED,
}


@dataclass
class GateOutcome:
    """Result of recording a response or opening a gate."""

    approval: WorkflowApproval
    status: str
    port: str | None

    @property
    def resolved(self) -> bool:
        return self.status != GATE_PENDING


@dataclass
class EscalationOutcome:
    approval: WorkflowApproval
    action: str
    port: str | None

    @property
    def resumes(self) -> bool:
        return self.port is not None


class ApprovalManager:
    """Creates, tracks and resolves approval gates."""

    def __init__(
        self,
        registries: WorkflowRegistries,
        notifier: Notifier | None = None,
        reassign_extend_hours: int = 24,
    ):
        self.registries = registries
        self.notifier = notifier or LoggingNotifier()
        self.reassign_extend_hours = reassign_extend_hours

    # ------------------------------------------------------------------
    # Approver pool
    # ------------------------------------------------------------------

    async def resolve_approvers(self, rule: ApproverRule, context: dict[str, Any]) -> list[int]:
        """Eligible member ids for a rule, in order (order matters for chains)."""
        if isinstance(rule, StaticApprovers):
            return list(dict.fromkeys(rule.member_ids))
        if isinstance(rule, MemberApprover):
            member_id = resolve_param_value(rule.member_id, context)
            return [int(member_id)] if member_id is not None else []
        if isinstance(rule, PermissionApprovers):
            return await self.registries.resolvers.resolve(
                PERMISSION_RESOLVER, {"permission": rule.permission, **rule.scope}, context
            )
        if isinstance(rule, RoleApprovers):
            return await self.registries.resolvers.resolve(ROLE_RESOLVER, {"role": rule.role, **rule.scope}, context)
        if isinstance(rule, DynamicApprovers):
            return await self.registries.resolvers.resolve(rule.resolver, rule.config, context)
        raise ApprovalError(f"Unsupported approver rule {rule!r}", "UNSUPPORTED_APPROVER_RULE")

    @staticmethod
    def _approver_config(rule: ApproverRule, pool: list[int], approval_type: str) -> dict[str, Any]:
        config: dict[str, Any] = {
            "rule": rule.model_dump(mode="json", by_alias=True),
            "pool": pool,
        }
        if approval_type == ApprovalType.CHAIN:
            config["approval_chain"] = pool
            config["current_approver_id"] = pool[0] if pool else None
            config["completed_approvers"] = []
        return config

    def is_eligible(self, approval: WorkflowApproval, member_id: int) -> bool:
        config = approval.approver_config or {}
        if member_id in (config.get("exclude_member_ids") or []):
            return False
        if approval.approval_type == ApprovalType.CHAIN:
            return config.get("current_approver_id") == member_id
        return member_id in approval.approver_pool

    async def get_eligible_approvers(self, session: AsyncSession, approval_id: int) -> list[int]:
        """Members who may still respond to a pending gate."""
        repo = WorkflowRepository(session)
        approval = await repo.get_approval(approval_id)
        if approval is None:
            raise ApprovalNotFound(approval_id)
        if not approval.is_pending:
            return []
        responded = {response.member_id for response in await repo.get_responses(approval_id)}
        return [
            member_id
            for member_id in approval.approver_pool
            if member_id not in responded and self.is_eligible(approval, member_id)
        ]

    # ------------------------------------------------------------------
    # Open
    # ------------------------------------------------------------------

    async def open_gate(
        self,
        session: AsyncSession,
        instance: WorkflowInstance,
        node_id: str,
        gate_config: ApprovalGateConfig | dict[str, Any],
        context: dict[str, Any],
        *,
        approval_gate_id: int | None = None,
        execution_log_id: int | None = None,
        now: datetime | None = None,
    ) -> GateOutcome:
        """
        Open the gate for `instance` at `node_id`, or return the pending one.

        Returns the gate with its current evaluation, so a gate that cannot
        be satisfied (empty pool) resolves immediately.
        """
        repo = WorkflowRepository(session)
        existing = await repo.find_open_approval(instance.id, node_id)
        if existing is not None:
            logger.debug(f"Approval gate already open for instance {instance.id} at '{node_id}' ({existing.id})")
            status, port = self.evaluate(existing)
            return GateOutcome(existing, status, port)

        config = (
            gate_config
            if isinstance(gate_config, ApprovalGateConfig)
            else ApprovalGateConfig.model_validate(gate_config)
        )
        now = now or datetime.now(UTC)
        pool = await self.resolve_approvers(config.approver, context)
        if not pool:
            logger.warning(f"Approval gate at '{node_id}' (instance {instance.id}) resolved no approvers")

        approval = WorkflowApproval(
            workflow_instance_id=instance.id,
            node_id=node_id,
            approval_gate_id=approval_gate_id,
            execution_log_id=execution_log_id,
            approver_type=config.approver.type,
            approver_config=self._approver_config(config.approver, pool, config.approval_type),
            approval_type=str(config.approval_type),
            required_count=config.compute_required(len(pool)),
            approved_count=0,
            rejected_count=0,
            status=ApprovalStatus.PENDING,
            deadline=config.compute_deadline(now),
            escalation_config=config.escalation,
        )
        await repo.add(approval)
        logger.info(
            f"Opened {approval.approval_type} approval {approval.id} for instance {instance.id} at '{node_id}' "
            f"(pool={len(pool)}, required={approval.required_count})"
        )

        status, port = self.evaluate(approval)
        if status != GATE_PENDING:
            self._close(approval, status, now)
        return GateOutcome(approval, status, port)

    # ------------------------------------------------------------------
    # Evaluate
    # ------------------------------------------------------------------

    def evaluate(self, approval: WorkflowApproval) -> tuple[str, str | None]:
        """
        Gate status (pending, satisfied, denied) and the port it maps to.

        Any response consumes a pool member; a gate is denied once the
        members still undecided can no longer carry it to its count.
        """
        if approval.status == ApprovalStatus.APPROVED:
            return GATE_SATISFIED, Port.APPROVED
        if approval.status == ApprovalStatus.REJECTED:
            return GATE_DENIED, Port.REJECTED
        if approval.status == ApprovalStatus.EXPIRED:
            return GATE_DENIED, Port.EXPIRED

        pool = approval.approver_pool
        responded = set((approval.approver_config or {}).get("responded") or [])
        undecided = len([member_id for member_id in pool if member_id not in responded])
        approved = approval.approved_count
        rejected = approval.rejected_count
        required = approval.required_count

        if approval.approval_type == ApprovalType.UNANIMOUS or approval.approval_type == ApprovalType.CHAIN:
            if pool and approved >= len(pool):
                status = GATE_SATISFIED
            elif not pool or rejected > 0 or approved + undecided < len(pool):
                status = GATE_DENIED
            else:
                status = GATE_PENDING
        elif approval.approval_type == ApprovalType.ANY_ONE:
            if approved >= 1:
                status = GATE_SATISFIED
            elif undecided == 0:
                status = GATE_DENIED
            else:
                status = GATE_PENDING
        else:
            if approved >= required:
                status = GATE_SATISFIED
            elif approved + undecided < required:
                status = GATE_DENIED
            else:
                status = GATE_PENDING

        return status, _PORT_BY_GATE_STATUS[status]

    @staticmethod
    def _close(approval: WorkflowApproval, gate_status: str, now: datetime) -> None:
        approval.status = ApprovalStatus.APPROVED if gate_status == GATE_SATISFIED else ApprovalStatus.REJECTED
        approval.resolved_at = now

    # ------------------------------------------------------------------
    # Respond
    # ------------------------------------------------------------------

    async def record_response(
        self,
        session: AsyncSession,
        approval_id: int,
        member_id: int,
        decision: str,
        comment: str | None = None,
        now: datetime | None = None,
    ) -> GateOutcome:
        """
        Record one approver decision and re-evaluate the gate.

        Raises:
            ApprovalNotFound: Unknown approval id
            ApprovalNotPending: Gate already resolved
            DuplicateResponse: Member already responded; counts untouched
            NotEligibleApprover: Member outside the pool (or not the current chain approver)
        """
        repo = WorkflowRepository(session)
        approval = await repo.get_approval(approval_id, for_update=True)
        if approval is None:
            raise ApprovalNotFound(approval_id)
        if not approval.is_pending:
            raise ApprovalNotPending(approval_id, approval.status)

        try:
            decision = Decision(decision)
        except ValueError:
            raise ApprovalError(
                f"Unknown decision '{decision}'",
                "INVALID_DECISION",
                {"approval_id": approval_id, "decision": decision},
            ) from None

        if await repo.get_response(approval_id, member_id) is not None:
            raise DuplicateResponse(approval_id, member_id)
        if not self.is_eligible(approval, member_id):
            raise NotEligibleApprover(approval_id, member_id)

        now = now or datetime.now(UTC)
        config = dict(approval.approver_config or {})
        config["responded"] = [*(config.get("responded") or []), member_id]
        approval.approver_config = config
        await repo.add(
            WorkflowApprovalResponse(
                workflow_approval_id=approval.id,
                member_id=member_id,
                decision=str(decision),
                comment=comment,
                responded_at=now,
            )
        )

        if decision == Decision.APPROVE:
            approval.approved_count += 1
            if approval.approval_type == ApprovalType.CHAIN:
                self._advance_chain(approval, member_id)
        elif decision == Decision.REJECT:
            approval.rejected_count += 1

        status, port = self.evaluate(approval)
        if status != GATE_PENDING:
            self._close(approval, status, now)
        await session.flush()

        logger.info(
            f"Approval {approval.id}: member {member_id} -> {decision} "
            f"({approval.approved_count} approved, {approval.rejected_count} rejected, gate {status})"
        )
        return GateOutcome(approval, status, port)

    @staticmethod
    def _advance_chain(approval: WorkflowApproval, member_id: int) -> None:
        config = dict(approval.approver_config or {})
        chain = list(config.get("approval_chain") or [])
        position = chain.index(member_id) + 1 if member_id in chain else len(chain)
        config["completed_approvers"] = [*(config.get("completed_approvers") or []), member_id]
        config["current_approver_id"] = chain[position] if position < len(chain) else None
        approval.approver_config = config

    # ------------------------------------------------------------------
    # Escalate / cancel
    # ------------------------------------------------------------------

    async def escalate(
        self,
        session: AsyncSession,
        approval: WorkflowApproval,
        context: dict[str, Any],
        now: datetime | None = None,
    ) -> EscalationOutcome:
        """Apply the gate's escalation rule to an overdue pending approval."""
        if not approval.is_pending:
            raise ApprovalNotPending(approval.id, approval.status)

        now = now or datetime.now(UTC)
        rule = parse_escalation(approval.escalation_config)

        if isinstance(rule, AutoApprove):
            approval.status = ApprovalStatus.APPROVED
            port = Port.APPROVED
        elif isinstance(rule, AutoReject):
            approval.status = ApprovalStatus.REJECTED
            port = Port.REJECTED
        elif isinstance(rule, Reassign):
            await self._reassign(session, approval, rule, context, now)
            status, port = self.evaluate(approval)
            if status != GATE_PENDING:
                self._close(approval, status, now)
        else:
            if isinstance(rule, Notify):
                for recipient in rule.recipients or approval.approver_pool:
                    await self.notifier.send(
                        recipient,
                        rule.template,
                        {
                            "approval_id": approval.id,
                            "instance_id": approval.workflow_instance_id,
                            "node_id": approval.node_id,
                        },
                    )
            approval.status = ApprovalStatus.EXPIRED
            port = Port.EXPIRED

        if port is not None:
            approval.resolved_at = now
        await session.flush()
        logger.info(f"Approval {approval.id} escalated after deadline: {rule.action} -> {approval.status}")
        return EscalationOutcome(approval, rule.action, port)

    async def _reassign(
        self,
        session: AsyncSession,
        approval: WorkflowApproval,
        rule: Reassign,
        context: dict[str, Any],
        now: datetime,
    ) -> None:
        previous = approval.approver_config or {}
        recorded = [response.member_id for response in await WorkflowRepository(session).get_responses(approval.id)]
        responded = list(dict.fromkeys([*(previous.get("responded") or []), *recorded]))
        candidates = await self.resolve_approvers(rule.approver, context)
        pool = [member_id for member_id in candidates if member_id not in responded]

        approval.approver_type = rule.approver.type
        approval.approver_config = {
            **self._approver_config(rule.approver, pool, approval.approval_type),
            "responded": responded,
            "reassigned_at": now.isoformat(),
            "previous_rule": previous.get("rule"),
        }
        if approval.approval_type in (ApprovalType.UNANIMOUS, ApprovalType.CHAIN):
            approval.required_count = max(len(pool), 1)
            approval.approved_count = 0
        approval.deadline = now + timedelta(hours=rule.extend_hours or self.reassign_extend_hours)
        logger.info(f"Approval {approval.id} reassigned to {len(pool)} approvers, new deadline {approval.deadline}")

    async def cancel_pending_for_instance(self, session: AsyncSession, instance_id: int) -> int:
        approvals = await WorkflowRepository(session).get_approvals_for_instance(instance_id, ApprovalStatus.PENDING)
        now = datetime.now(UTC)
        for approval in approvals:
            approval.status = ApprovalStatus.CANCELLED
            approval.resolved_at = now
        await session.flush()
        return len(approvals)

    async def find_overdue(self, session: AsyncSession, now: datetime | None = None) -> list[int]:
        return await WorkflowRepository(session).find_overdue_approval_ids(now or datetime.now(UTC))

    async def gate_summary(self, session: AsyncSession, instance_id: int) -> dict[str, dict[str, Any]]:
        """Per-node gate status for condition evaluation (latest gate per node wins)."""
        summary: dict[str, dict[str, Any]] = {}
        for approval in await WorkflowRepository(session).get_approvals_for_instance(instance_id):
            summary[approval.node_id] = {
                "approval_id": approval.id,
                "status": approval.status,
                "is_met": approval.status == ApprovalStatus.APPROVED,
                "approved_count": approval.approved_count,
                "rejected_count": approval.rejected_count,
                "required_count": approval.required_count,
            }
        return summary
