"""
Workflow Engine

Orchestrates workflow instances: starts them from a trigger, drives node
execution until a suspend point (approval, delay, asynchronous action) or an
end node, and resumes suspended instances.

Each public operation runs in one transaction (session_scope) and holds the
instance row lock plus an in-process keyed lock for the whole drive.
Failures that leave an instance in a recorded state (failed action, no
matching edge, cycle guard) are committed first and raised afterwards.

Usage:
    engine = WorkflowEngine(session_factory, registries, resume_queue=queue)
    instance_id = await engine.start_workflow("officer-hire", "Officers.HireRequested", payload, triggered_by=7)
    await engine.record_approval_response(approval_id, member_id=12, decision="approve")
"""

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from workflow_engine.actions.executor import ActionExecutor, ActionResult
from workflow_engine.conditions.rule_evaluator import RuleEvaluator
from workflow_engine.config import Settings, get_settings
from workflow_engine.core.context import merge_context, resolve_field_path
from workflow_engine.core.exceptions import (
    ActionExecutionError,
    ApprovalNotFound,
    ApprovalNotPending,
    DefinitionNotFound,
    DomainException,
    DuplicateInstance,
    InstanceAlreadyCompleted,
    InstanceNotFound,
    InstanceNotRetryable,
    NodeMismatch,
    NoMatchingTransition,
    NoPublishedVersion,
    WorkflowCycleDetected,
)
from workflow_engine.core.logger import get_instance_logger
from workflow_engine.database import session_scope
from workflow_engine.graph.schemas import EdgeDefinition, NodeDefinition, WorkflowGraph, normalize_port
from workflow_engine.models.db.workflow import (
    WorkflowExecutionLog,
    WorkflowInstance,
    WorkflowState,
    WorkflowTransition,
    WorkflowTransitionLog,
    WorkflowVersion,
)
from workflow_engine.models.db.workflow.constants import (
    ApprovalStatus,
    ExecutionStatus,
    InstanceStatus,
    NodeType,
    Port,
    TERMINAL_INSTANCE_STATUSES,
    TriggerType,
)
from workflow_engine.registry import WorkflowRegistries
from workflow_engine.repositories import WorkflowRepository
from workflow_engine.services.approval_manager import ApprovalManager, EscalationOutcome, GateOutcome
from workflow_engine.services.locks import KeyedLock
from workflow_engine.services.notifications import Notifier
from workflow_engine.tasks.queue import ResumeJob, ResumeQueue

logger = logging.getLogger(__name__)

_CYCLE_CODE = "WORKFLOW_CYCLE_DETECTED"


@dataclass
class ScheduledRunResult:
    """Outcome of one process_scheduled_transitions run."""

    processed: int = 0
    escalated: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"processed": self.processed, "escalated": self.escalated, "errors": self.errors}


@dataclass
class _NodeOutcome:
    port: str | None = Port.DEFAULT
    stop: bool = False
    error: DomainException | None = None


@dataclass
class _DriveContext:
    """Everything one drive needs, loaded once per transaction."""

    session: AsyncSession
    repo: WorkflowRepository
    instance: WorkflowInstance
    version: WorkflowVersion
    graph: WorkflowGraph
    states: dict[str, WorkflowState]
    transitions: dict[str, WorkflowTransition]
    triggered_by: int | None = None
    jobs: list[ResumeJob] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.node_by_state_id = {state.id: node_id for node_id, state in self.states.items()}

    @property
    def current_node_id(self) -> str | None:
        return self.node_by_state_id.get(self.instance.current_state_id)


class WorkflowEngine:
    """
    Drives workflow instances through their published graphs.

    Args:
        session_factory: async_sessionmaker; every public call opens its own transaction
        registries: Frozen WorkflowRegistries
        settings: Settings (max steps, app settings, reassign extension)
        resume_queue: Receives ResumeJob for asynchronous actions
        notifier: Used by escalation "notify"
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registries: WorkflowRegistries,
        settings: Settings | None = None,
        resume_queue: ResumeQueue | None = None,
        notifier: Notifier | None = None,
    ):
        self.session_factory = session_factory
        self.registries = registries
        self.settings = settings or get_settings()
        self.resume_queue = resume_queue
        self.max_steps = self.settings.WORKFLOW_MAX_EXECUTION_STEPS

        self.executor = ActionExecutor(registries.actions, self.settings.APP_SETTINGS)
        self.rules = RuleEvaluator(registries.conditions)
        self.approvals = ApprovalManager(
            registries,
            notifier=notifier,
            reassign_extend_hours=self.settings.WORKFLOW_DEFAULT_ESCALATION_EXTEND_HOURS,
        )

        self._instance_locks = KeyedLock()
        self._graphs: dict[int, WorkflowGraph] = {}

        if not registries.frozen:
            logger.warning("WorkflowEngine created with unfrozen registries")

    # ========================================================================
    # START
    # ========================================================================

    async def start_workflow(
        self,
        definition_slug: str,
        trigger_event: str | None,
        payload: dict[str, Any] | None,
        triggered_by: int | None = None,
    ) -> int:
        """
        Start a new instance of the published version of `definition_slug`.

        Returns:
            New instance id

        Raises:
            DefinitionNotFound: Unknown or inactive definition
            NoPublishedVersion: Definition has no published version
            InvalidPayload: Payload rejected by the trigger schema
            DuplicateInstance: A non-terminal instance already runs for the entity
        """
        error: DomainException | None = None
        jobs: list[ResumeJob] = []

        async with session_scope(self.session_factory) as session:
            repo = WorkflowRepository(session)
            definition = await repo.get_definition_by_slug(definition_slug)
            if definition is None or not definition.is_active:
                raise DefinitionNotFound(definition_slug)
            version = await repo.get_published_version(definition)
            if version is None:
                raise NoPublishedVersion(definition_slug)

            graph = self._graph(version)
            trigger_node_id = graph.trigger_node_id
            trigger_config = graph.node(trigger_node_id).config
            event = trigger_event or trigger_config.get("event") or (definition.trigger_config or {}).get("event")

            trigger = self.registries.triggers.get(event) if event else None
            validated = trigger.validate_payload(payload or {}) if trigger else dict(payload or {})

            entity_type = definition.entity_type or (trigger.entity_type if trigger else None)
            entity_id_field = trigger_config.get("entityIdField") or (trigger.entity_id_field if trigger else None)
            raw_entity_id = resolve_field_path(validated, entity_id_field) if entity_id_field else None
            entity_id = str(raw_entity_id) if raw_entity_id is not None else None

            if entity_id is not None:
                existing = await repo.find_active_instance(definition.id, entity_type, entity_id)
                if existing is not None:
                    raise DuplicateInstance(definition_slug, entity_type, entity_id, existing.id)

            context: dict[str, Any] = {
                "trigger": validated,
                "triggeredBy": triggered_by,
                "event": event,
                "nodes": {},
                "variables": {},
            }
            entity = await self.registries.entities.load(entity_type, entity_id)
            if entity is not None:
                context["entity"] = entity

            states = await repo.get_states(version.id)
            now = datetime.now(UTC)
            instance = WorkflowInstance(
                workflow_definition_id=definition.id,
                workflow_version_id=version.id,
                entity_type=entity_type,
                entity_id=entity_id,
                current_state_id=states[trigger_node_id].id,
                status=InstanceStatus.RUNNING,
                context=context,
                started_by=triggered_by,
                started_at=now,
                state_entered_at=now,
            )
            await repo.add(instance)
            await repo.add(
                WorkflowTransitionLog(
                    workflow_instance_id=instance.id,
                    from_state_id=None,
                    to_state_id=instance.current_state_id,
                    trigger_type=TriggerType.EVENT if event else TriggerType.MANUAL,
                    triggered_by=triggered_by,
                    context_snapshot=copy.deepcopy(context),
                    created_at=now,
                )
            )
            logger.info(
                f"Started workflow '{definition_slug}' v{version.version_number} as instance {instance.id} "
                f"(entity {entity_type}:{entity_id})"
            )

            ctx = await self._load(session, instance, triggered_by, version=version, states=states)
            async with self._instance_locks.hold(instance.id):
                error = await self._drive(ctx, trigger_node_id)
            instance_id = instance.id
            jobs = ctx.jobs

        await self._enqueue(jobs)
        if error is not None:
            raise error
        return instance_id

    async def dispatch_trigger(
        self, event_name: str, payload: dict[str, Any] | None, triggered_by: int | None = None
    ) -> list[int]:
        """Start every active definition listening for `event_name`; failures are logged per definition."""
        async with session_scope(self.session_factory) as session:
            definitions = await WorkflowRepository(session).list_active_definitions()
            slugs = [
                definition.slug
                for definition in definitions
                if (definition.trigger_config or {}).get("event") == event_name
            ]

        started = []
        for slug in slugs:
            try:
                started.append(await self.start_workflow(slug, event_name, payload, triggered_by))
            except DomainException as e:
                logger.error(f"Trigger '{event_name}' could not start '{slug}': {e.message}")
        logger.info(f"Trigger '{event_name}' started {len(started)} of {len(slugs)} workflows")
        return started

    # ========================================================================
    # RESUME
    # ========================================================================

    async def resume_workflow(
        self,
        instance_id: int,
        node_id: str,
        output_port: str = Port.DEFAULT,
        additional_data: dict[str, Any] | None = None,
        triggered_by: int | None = None,
    ) -> None:
        """
        Resume an instance waiting at `node_id` along `output_port`.

        Raises:
            InstanceNotFound: Unknown instance
            InstanceAlreadyCompleted: Instance completed or cancelled
            NodeMismatch: Instance is not waiting at `node_id`
        """
        async with self._instance_locks.hold(instance_id):
            async with session_scope(self.session_factory) as session:
                instance = await self._lock_instance(session, instance_id)
                ctx = await self._load(session, instance, triggered_by)
                error = await self._resume_locked(ctx, node_id, output_port, additional_data or {})
                jobs = ctx.jobs

        await self._enqueue(jobs)
        if error is not None:
            raise error

    async def _resume_locked(
        self,
        ctx: _DriveContext,
        node_id: str,
        output_port: str,
        additional_data: dict[str, Any],
        *,
        cancel_open_gate: bool = True,
    ) -> DomainException | None:
        instance = ctx.instance
        if instance.status in TERMINAL_INSTANCE_STATUSES:
            raise InstanceAlreadyCompleted(instance.id, instance.status)
        if instance.status != InstanceStatus.WAITING or ctx.current_node_id != node_id:
            raise NodeMismatch(instance.id, node_id, ctx.current_node_id, instance.status)

        node = ctx.graph.node(node_id)
        port = normalize_port(output_port)
        if node.type == NodeType.APPROVAL and port == Port.EXPIRED and not ctx.graph.outgoing(node_id, Port.EXPIRED):
            port = Port.REJECTED

        resumed_from_halt = (instance.error_info or {}).get("error") == _CYCLE_CODE

        context = copy.deepcopy(instance.context)
        context["resumeData"] = copy.deepcopy(additional_data)
        updates = additional_data.get("context_updates")
        if updates:
            context = merge_context(context, updates)
        if node.type == NodeType.APPROVAL:
            context.setdefault("nodes", {})[node_id] = {
                "status": port,
                "approvalId": additional_data.get("approval_id"),
                "approverId": additional_data.get("approverId"),
                "decision": additional_data.get("decision"),
                "comment": additional_data.get("comment"),
            }
            if cancel_open_gate:
                await self._cancel_open_gate(ctx, node_id)
        elif "result" in additional_data:
            context.setdefault("nodes", {})[node_id] = {"result": additional_data["result"]}

        instance.context = context
        instance.status = InstanceStatus.RUNNING
        instance.error_info = None

        waiting_log = await ctx.repo.find_waiting_log(instance.id, node_id)
        if waiting_log is not None:
            waiting_log.status = ExecutionStatus.COMPLETED
            waiting_log.output_data = {"port": port, **_loggable(additional_data)}
            waiting_log.completed_at = datetime.now(UTC)

        log = get_instance_logger(__name__, instance.id, node_id=node_id, port=port)
        log.info(f"Resuming instance {instance.id} at '{node_id}' on port '{port}'")

        if resumed_from_halt:
            return await self._drive(ctx, node_id)
        return await self._drive(ctx, node_id, resume_port=port)

    async def _cancel_open_gate(self, ctx: _DriveContext, node_id: str) -> None:
        approval = await ctx.repo.find_open_approval(ctx.instance.id, node_id)
        if approval is not None:
            approval.status = ApprovalStatus.CANCELLED
            approval.resolved_at = datetime.now(UTC)
            await ctx.session.flush()
            logger.info(f"Cancelled open approval {approval.id} at '{node_id}' (instance {ctx.instance.id} resumed)")

    async def fail_async_action(self, instance_id: int, node_id: str, error: DomainException) -> None:
        """Mark an instance failed at an asynchronous action node whose job gave up."""
        async with self._instance_locks.hold(instance_id):
            async with session_scope(self.session_factory) as session:
                instance = await self._lock_instance(session, instance_id)
                ctx = await self._load(session, instance)
                if instance.status != InstanceStatus.WAITING or ctx.current_node_id != node_id:
                    raise NodeMismatch(instance_id, node_id, ctx.current_node_id, instance.status)

                waiting_log = await ctx.repo.find_waiting_log(instance_id, node_id)
                if waiting_log is not None:
                    self._close_log(waiting_log, ExecutionStatus.FAILED, waiting_log.output_data, error=error.message)
                self._fail(ctx, node_id, error)

    async def retry_workflow(self, instance_id: int, triggered_by: int | None = None) -> None:
        """Re-attempt the node a failed instance stopped at."""
        async with self._instance_locks.hold(instance_id):
            async with session_scope(self.session_factory) as session:
                instance = await self._lock_instance(session, instance_id)
                if instance.status != InstanceStatus.FAILED:
                    raise InstanceNotRetryable(instance_id, instance.status)

                ctx = await self._load(session, instance, triggered_by)
                node_id = ctx.current_node_id
                instance.status = InstanceStatus.RUNNING
                instance.error_info = None
                logger.info(f"Retrying instance {instance_id} at '{node_id}'")
                error = await self._drive(ctx, node_id)
                jobs = ctx.jobs

        await self._enqueue(jobs)
        if error is not None:
            raise error

    # ========================================================================
    # APPROVALS
    # ========================================================================

    async def record_approval_response(
        self,
        approval_id: int,
        member_id: int,
        decision: str,
        comment: str | None = None,
    ) -> GateOutcome:
        """
        Record an approver decision; when the gate resolves, resume the
        instance on the resulting port in the same transaction.

        Locks are taken instance first, then approval, like every other
        path that touches the gate.
        """
        instance_id = await self._approval_instance_id(approval_id)
        async with self._instance_locks.hold(instance_id):
            async with session_scope(self.session_factory) as session:
                instance = await self._lock_instance(session, instance_id)
                outcome = await self.approvals.record_response(session, approval_id, member_id, decision, comment)
                error = None
                jobs: list[ResumeJob] = []
                if outcome.resolved:
                    approval = outcome.approval
                    error, jobs = await self._resume_after_gate(
                        session,
                        instance,
                        approval.node_id,
                        outcome.port,
                        {
                            "approval_id": approval.id,
                            "approverId": member_id,
                            "decision": str(decision),
                            "comment": comment,
                        },
                        triggered_by=member_id,
                    )

        await self._enqueue(jobs)
        if error is not None:
            raise error
        return outcome

    async def escalate_approval(self, approval_id: int, now: datetime | None = None) -> EscalationOutcome:
        """Apply the deadline escalation of one overdue approval and resume when it resolves."""
        instance_id = await self._approval_instance_id(approval_id)
        async with self._instance_locks.hold(instance_id):
            async with session_scope(self.session_factory) as session:
                instance = await self._lock_instance(session, instance_id)
                approval = await WorkflowRepository(session).get_approval(approval_id, for_update=True)
                if not approval.is_pending:
                    raise ApprovalNotPending(approval_id, approval.status)

                outcome = await self.approvals.escalate(session, approval, copy.deepcopy(instance.context), now)

                error = None
                jobs: list[ResumeJob] = []
                if outcome.resumes:
                    error, jobs = await self._resume_after_gate(
                        session,
                        instance,
                        approval.node_id,
                        outcome.port,
                        {"approval_id": approval.id, "escalation": outcome.action},
                    )

        await self._enqueue(jobs)
        if error is not None:
            raise error
        return outcome

    async def _approval_instance_id(self, approval_id: int) -> int:
        # Unlocked read; the owning instance of an approval never changes
        async with session_scope(self.session_factory) as session:
            approval = await WorkflowRepository(session).get_approval(approval_id)
            if approval is None:
                raise ApprovalNotFound(approval_id)
            return approval.workflow_instance_id

    async def _resume_after_gate(
        self,
        session: AsyncSession,
        instance: WorkflowInstance,
        node_id: str,
        port: str,
        additional_data: dict[str, Any],
        triggered_by: int | None = None,
    ) -> tuple[DomainException | None, list[ResumeJob]]:
        # Caller holds the instance lock and row lock
        ctx = await self._load(session, instance, triggered_by)
        error = await self._resume_locked(ctx, node_id, port, additional_data, cancel_open_gate=False)
        return error, ctx.jobs

    # ========================================================================
    # SCHEDULED
    # ========================================================================

    async def process_scheduled_transitions(self, now: datetime | None = None) -> ScheduledRunResult:
        """
        Escalate overdue approvals, then follow scheduled edges of waiting
        instances whose conditions pass. Errors are collected per record.
        """
        now = now or datetime.now(UTC)
        result = ScheduledRunResult()

        async with session_scope(self.session_factory) as session:
            overdue = await self.approvals.find_overdue(session, now)

        for approval_id in overdue:
            try:
                await self.escalate_approval(approval_id, now=now)
                result.escalated += 1
                result.processed += 1
            except Exception as e:
                logger.error(f"Error escalating approval {approval_id}: {e}", exc_info=True)
                result.errors.append(_error_entry(e, approval_id=approval_id))

        async with session_scope(self.session_factory) as session:
            waiting = await WorkflowRepository(session).waiting_instance_ids()

        for instance_id in waiting:
            try:
                if await self._advance_scheduled(instance_id, now):
                    result.processed += 1
            except Exception as e:
                logger.error(f"Error processing scheduled transition for instance {instance_id}: {e}", exc_info=True)
                result.errors.append(_error_entry(e, instance_id=instance_id))

        logger.info(
            f"Scheduled run: {result.processed} processed, {result.escalated} escalated, {len(result.errors)} errors"
        )
        return result

    async def _advance_scheduled(self, instance_id: int, now: datetime) -> bool:
        error = None
        async with self._instance_locks.hold(instance_id):
            async with session_scope(self.session_factory) as session:
                instance = await self._lock_instance(session, instance_id)
                if instance.status != InstanceStatus.WAITING:
                    return False

                ctx = await self._load(session, instance)
                node_id = ctx.current_node_id
                candidates = [
                    edge for edge in ctx.graph.outgoing(node_id) if edge.trigger == TriggerType.SCHEDULED
                ]
                if not candidates:
                    return False

                evaluation = await self._evaluation_context(ctx, now)
                edge = next((edge for edge in candidates if self.rules.evaluate_all(edge.conditions, evaluation)), None)
                if edge is None:
                    return False

                instance.status = InstanceStatus.RUNNING
                instance.error_info = None
                waiting_log = await ctx.repo.find_waiting_log(instance.id, node_id)
                if waiting_log is not None:
                    waiting_log.status = ExecutionStatus.COMPLETED
                    waiting_log.output_data = {"scheduled_edge": edge.id}
                    waiting_log.completed_at = now
                if ctx.graph.node(node_id).type == NodeType.APPROVAL:
                    await self._cancel_open_gate(ctx, node_id)

                logger.info(f"Instance {instance_id} leaves '{node_id}' through scheduled edge '{edge.id}'")
                error = await self._drive(ctx, node_id, via_edge=edge)
                jobs = ctx.jobs

        await self._enqueue(jobs)
        if error is not None:
            raise error
        return True

    # ========================================================================
    # CANCEL / QUERY
    # ========================================================================

    async def cancel_workflow(
        self, instance_id: int, cancelled_by: int | None = None, reason: str | None = None
    ) -> None:
        async with self._instance_locks.hold(instance_id):
            async with session_scope(self.session_factory) as session:
                repo = WorkflowRepository(session)
                instance = await self._lock_instance(session, instance_id)
                if instance.status in TERMINAL_INSTANCE_STATUSES:
                    raise InstanceAlreadyCompleted(instance_id, instance.status)

                now = datetime.now(UTC)
                cancelled_approvals = await self.approvals.cancel_pending_for_instance(session, instance_id)
                state = await repo.get_state(instance.current_state_id)
                if state is not None:
                    waiting_log = await repo.find_waiting_log(instance_id, state.node_id)
                    if waiting_log is not None:
                        waiting_log.status = ExecutionStatus.SKIPPED
                        waiting_log.completed_at = now

                instance.status = InstanceStatus.CANCELLED
                instance.completed_at = now
                await repo.add(
                    WorkflowTransitionLog(
                        workflow_instance_id=instance_id,
                        from_state_id=instance.current_state_id,
                        to_state_id=None,
                        trigger_type=TriggerType.MANUAL,
                        triggered_by=cancelled_by,
                        context_snapshot={"reason": reason, "cancelled_approvals": cancelled_approvals},
                        created_at=now,
                    )
                )
        logger.info(f"Instance {instance_id} cancelled by {cancelled_by}: {reason}")

    async def get_instance_state(self, instance_id: int, log_limit: int = 20) -> dict[str, Any]:
        async with session_scope(self.session_factory) as session:
            repo = WorkflowRepository(session)
            instance = await repo.get_instance(instance_id)
            if instance is None:
                raise InstanceNotFound(instance_id)

            state = await repo.get_state(instance.current_state_id)
            pending = await repo.get_approvals_for_instance(instance_id, ApprovalStatus.PENDING)
            logs = await repo.get_execution_logs(instance_id, limit=log_limit)

            return {
                "instance_id": instance.id,
                "status": instance.status,
                "current_node": state.node_id if state else None,
                "current_state": state.to_dict() if state else None,
                "context": instance.context,
                "error_info": instance.error_info,
                "pending_approvals": [approval.to_dict() for approval in pending],
                "recent_logs": [log.to_dict() for log in logs],
                "instance": instance.to_dict(),
            }

    async def get_eligible_approvers(self, approval_id: int) -> list[int]:
        async with session_scope(self.session_factory) as session:
            return await self.approvals.get_eligible_approvers(session, approval_id)

    # ========================================================================
    # DRIVE
    # ========================================================================

    async def _drive(
        self,
        ctx: _DriveContext,
        node_id: str,
        *,
        resume_port: str | None = None,
        via_edge: EdgeDefinition | None = None,
    ) -> DomainException | None:
        """
        Execute nodes from `node_id` until the instance suspends, ends or fails.

        With `resume_port` the node at `node_id` is not executed again; edge
        selection starts on that port. With `via_edge` the given edge is
        followed directly.
        """
        current = node_id
        steps = 0

        while True:
            if via_edge is not None:
                edge, via_edge = via_edge, None
            else:
                if resume_port is not None:
                    port, resume_port = resume_port, None
                else:
                    steps += 1
                    if steps > self.max_steps:
                        return self._halt_cycle(ctx, current)
                    outcome = await self._execute_node(ctx, current, ctx.graph.node(current))
                    if outcome.stop:
                        return outcome.error
                    port = outcome.port

                try:
                    edge = await self._select_edge(ctx, current, port)
                except NoMatchingTransition as e:
                    self._fail(ctx, current, e)
                    return e

            try:
                await self._traverse(ctx, current, edge)
            except DomainException as e:
                self._fail(ctx, current, e)
                return e
            current = edge.target

    async def _execute_node(self, ctx: _DriveContext, node_id: str, node: NodeDefinition) -> _NodeOutcome:
        instance = ctx.instance
        log = await self._open_log(ctx, node_id, node)

        if node.type == NodeType.TRIGGER:
            self._close_log(log, ExecutionStatus.COMPLETED, {"event": instance.context.get("event")})
            return _NodeOutcome()

        if node.type == NodeType.ACTION:
            return await self._execute_action_node(ctx, node_id, node, log)

        if node.type == NodeType.CONDITION:
            if "condition" not in node.config:
                self._close_log(log, ExecutionStatus.COMPLETED, {"branch": True})
                return _NodeOutcome(port=None)
            evaluation = await self._evaluation_context(ctx)
            passed = self.rules.evaluate(node.config["condition"], evaluation)
            port = Port.TRUE if passed else Port.FALSE
            self._set_node_output(instance, node_id, {"result": passed})
            self._close_log(log, ExecutionStatus.COMPLETED, {"result": passed, "port": port})
            return _NodeOutcome(port=port)

        if node.type == NodeType.APPROVAL:
            state = ctx.states[node_id]
            gate = await ctx.repo.get_gate_for_state(state.id)
            outcome = await self.approvals.open_gate(
                ctx.session,
                instance,
                node_id,
                gate.to_config() if gate is not None else node.config,
                await self._evaluation_context(ctx),
                approval_gate_id=gate.id if gate is not None else None,
                execution_log_id=log.id,
            )
            if outcome.resolved:
                self._set_node_output(instance, node_id, {"status": outcome.port, "approvalId": outcome.approval.id})
                self._close_log(log, ExecutionStatus.COMPLETED, {"approval_id": outcome.approval.id, "port": outcome.port})
                return _NodeOutcome(port=outcome.port)
            self._suspend(ctx, node_id, log, {"approval_id": outcome.approval.id})
            return _NodeOutcome(stop=True)

        if node.type == NodeType.DELAY:
            self._suspend(ctx, node_id, log, {})
            return _NodeOutcome(stop=True)

        # End node: on_enter already ran when the instance moved here
        status = node.config.get("status", InstanceStatus.COMPLETED)
        if status not in TERMINAL_INSTANCE_STATUSES:
            status = InstanceStatus.COMPLETED
        now = datetime.now(UTC)
        instance.status = status
        instance.completed_at = now
        self._close_log(log, ExecutionStatus.COMPLETED, {"status": status})
        await ctx.repo.add(
            WorkflowTransitionLog(
                workflow_instance_id=instance.id,
                from_state_id=instance.current_state_id,
                to_state_id=None,
                trigger_type=TriggerType.AUTOMATIC,
                triggered_by=ctx.triggered_by,
                context_snapshot=copy.deepcopy(instance.context),
                created_at=now,
            )
        )
        logger.info(f"Instance {instance.id} reached end node '{node_id}' ({status})")
        return _NodeOutcome(stop=True)

    async def _execute_action_node(
        self, ctx: _DriveContext, node_id: str, node: NodeDefinition, log: WorkflowExecutionLog
    ) -> _NodeOutcome:
        instance = ctx.instance
        action_key = node.config.get("action")
        definition = self.executor.definition(action_key)
        params = self.executor.resolve(node.config.get("params"), instance.context)
        log.input_data = {**log.input_data, "action": action_key, "params": params}

        if definition.is_async:
            ctx.jobs.append(
                ResumeJob(
                    instance_id=instance.id,
                    node_id=node_id,
                    output_port=Port.DEFAULT,
                    additional_data={"async_action": action_key, "params": params},
                )
            )
            self._suspend(ctx, node_id, log, {"async_action": action_key})
            return _NodeOutcome(stop=True)

        max_retries = int(node.config.get("maxRetries", 0) or 0)
        retry_delay = float(node.config.get("retryDelay", 0) or 0)

        for attempt in range(max_retries + 1):
            try:
                result = await self.executor.execute(
                    action_key, params, instance.context, instance_id=instance.id, node_id=node_id, resolved=True
                )
                break
            except DomainException as e:
                error = e
                if not isinstance(error, ActionExecutionError):
                    error = ActionExecutionError(instance.id, node_id, action_key, e.message)
                self._close_log(log, ExecutionStatus.FAILED, None, error=error.message)
                if attempt >= max_retries:
                    self._fail(ctx, node_id, error)
                    return _NodeOutcome(stop=True, error=error)

                delay = retry_delay * 2**attempt
                logger.warning(
                    f"Action '{action_key}' at '{node_id}' failed (attempt {log.attempt_number}), "
                    f"retrying in {delay}s"
                )
                if delay > 0:
                    await asyncio.sleep(delay)
                log = await self._open_log(ctx, node_id, node, {"action": action_key, "params": params})

        self._apply_action_result(instance, node_id, result)
        self._close_log(log, ExecutionStatus.COMPLETED, result.output)
        return _NodeOutcome()

    async def _select_edge(self, ctx: _DriveContext, node_id: str, port: str | None) -> EdgeDefinition:
        """
        First edge on `port` whose conditions all pass, else the default edge.

        A None port (branch node) considers every outgoing edge. Scheduled
        edges are left to process_scheduled_transitions.
        """
        candidates = [
            edge for edge in ctx.graph.outgoing(node_id, port) if edge.trigger != TriggerType.SCHEDULED
        ]
        evaluation = await self._evaluation_context(ctx) if any(edge.conditions for edge in candidates) else {}

        for edge in candidates:
            if not edge.is_default and self.rules.evaluate_all(edge.conditions, evaluation):
                return edge
        for edge in candidates:
            if edge.is_default:
                return edge
        raise NoMatchingTransition(ctx.instance.id, node_id, port or "*")

    async def _traverse(self, ctx: _DriveContext, source_id: str, edge: EdgeDefinition) -> None:
        """Run on_exit, edge actions and on_enter, then move the instance along `edge`."""
        instance = ctx.instance
        source = ctx.graph.node(source_id)
        target = ctx.graph.node(edge.target)

        context = instance.context
        for refs in (source.on_exit, edge.actions, target.on_enter):
            if refs:
                context, _ = await self.executor.run_refs(refs, context, instance_id=instance.id, node_id=source_id)

        from_state = ctx.states[source_id]
        to_state = ctx.states[edge.target]
        transition = ctx.transitions.get(edge.id)
        now = datetime.now(UTC)

        instance.context = context
        instance.previous_state_id = from_state.id
        instance.current_state_id = to_state.id
        instance.state_entered_at = now

        await ctx.repo.add(
            WorkflowTransitionLog(
                workflow_instance_id=instance.id,
                from_state_id=from_state.id,
                to_state_id=to_state.id,
                transition_id=transition.id if transition else None,
                trigger_type=edge.trigger,
                triggered_by=ctx.triggered_by,
                context_snapshot=copy.deepcopy(context),
                created_at=now,
            )
        )
        logger.debug(f"Instance {instance.id}: '{source_id}' -> '{edge.target}' via '{edge.id}'")

    # ========================================================================
    # HELPERS
    # ========================================================================

    async def _lock_instance(self, session: AsyncSession, instance_id: int) -> WorkflowInstance:
        instance = await WorkflowRepository(session).get_instance(instance_id, for_update=True)
        if instance is None:
            raise InstanceNotFound(instance_id)
        return instance

    async def _load(
        self,
        session: AsyncSession,
        instance: WorkflowInstance,
        triggered_by: int | None = None,
        *,
        version: WorkflowVersion | None = None,
        states: dict[str, WorkflowState] | None = None,
    ) -> _DriveContext:
        repo = WorkflowRepository(session)
        version = version or await repo.get_version(instance.workflow_version_id)
        return _DriveContext(
            session=session,
            repo=repo,
            instance=instance,
            version=version,
            graph=self._graph(version),
            states=states if states is not None else await repo.get_states(version.id),
            transitions=await repo.get_transitions(version.id),
            triggered_by=triggered_by,
        )

    def _graph(self, version: WorkflowVersion) -> WorkflowGraph:
        # Published definitions are immutable, so parsed graphs are cached per version
        graph = self._graphs.get(version.id)
        if graph is None:
            graph = WorkflowGraph.from_json(version.definition)
            if version.is_published:
                self._graphs[version.id] = graph
        return graph

    async def _evaluation_context(self, ctx: _DriveContext, now: datetime | None = None) -> dict[str, Any]:
        instance = ctx.instance
        evaluation = copy.deepcopy(instance.context)
        evaluation.setdefault("user_id", instance.context.get("triggeredBy"))
        evaluation["instance"] = {
            "id": instance.id,
            "status": instance.status,
            "current_node": ctx.current_node_id,
            "entity_type": instance.entity_type,
            "entity_id": instance.entity_id,
            "workflow_definition_id": instance.workflow_definition_id,
            "workflow_version_id": instance.workflow_version_id,
            "context": copy.deepcopy(instance.context),
        }
        evaluation["state_entered_at"] = instance.state_entered_at
        evaluation["approval_gates"] = await self.approvals.gate_summary(ctx.session, instance.id)
        if now is not None:
            evaluation["now"] = now
        return evaluation

    async def _open_log(
        self,
        ctx: _DriveContext,
        node_id: str,
        node: NodeDefinition,
        input_data: dict[str, Any] | None = None,
    ) -> WorkflowExecutionLog:
        log = WorkflowExecutionLog(
            workflow_instance_id=ctx.instance.id,
            node_id=node_id,
            node_type=node.type,
            attempt_number=await ctx.repo.next_attempt_number(ctx.instance.id, node_id),
            status=ExecutionStatus.RUNNING,
            input_data=input_data or {"config": copy.deepcopy(node.config)},
            started_at=datetime.now(UTC),
        )
        return await ctx.repo.add(log)

    @staticmethod
    def _close_log(
        log: WorkflowExecutionLog,
        status: str,
        output: dict[str, Any] | None,
        error: str | None = None,
    ) -> None:
        log.status = status
        log.output_data = copy.deepcopy(output) if output is not None else None
        log.error_message = error
        log.completed_at = datetime.now(UTC)

    def _suspend(self, ctx: _DriveContext, node_id: str, log: WorkflowExecutionLog, output: dict[str, Any]) -> None:
        log.status = ExecutionStatus.WAITING
        log.output_data = output
        ctx.instance.status = InstanceStatus.WAITING
        logger.info(f"Instance {ctx.instance.id} waiting at '{node_id}'")

    def _fail(self, ctx: _DriveContext, node_id: str, error: DomainException) -> None:
        instance = ctx.instance
        instance.status = InstanceStatus.FAILED
        instance.error_info = {**error.to_dict(), "node_id": node_id, "failed_at": datetime.now(UTC).isoformat()}
        log = get_instance_logger(__name__, instance.id, node_id=node_id, code=error.code)
        log.error(f"Instance {instance.id} failed at '{node_id}': {error.message}")

    def _halt_cycle(self, ctx: _DriveContext, node_id: str) -> WorkflowCycleDetected:
        error = WorkflowCycleDetected(ctx.instance.id, node_id, self.max_steps)
        ctx.instance.status = InstanceStatus.WAITING
        ctx.instance.error_info = {**error.to_dict(), "node_id": node_id, "failed_at": datetime.now(UTC).isoformat()}
        logger.error(error.message)
        return error

    @staticmethod
    def _set_node_output(instance: WorkflowInstance, node_id: str, value: dict[str, Any]) -> None:
        context = copy.deepcopy(instance.context)
        context.setdefault("nodes", {})[node_id] = value
        instance.context = context

    def _apply_action_result(self, instance: WorkflowInstance, node_id: str, result: ActionResult) -> None:
        if result.context_updates:
            instance.context = merge_context(instance.context, result.context_updates)
        self._set_node_output(instance, node_id, {"result": result.output})

    async def _enqueue(self, jobs: list[ResumeJob]) -> None:
        for job in jobs:
            if self.resume_queue is not None:
                await self.resume_queue.enqueue(job)
                continue
            log = get_instance_logger(__name__, job.instance_id, node_id=job.node_id)
            log.error(f"No resume queue configured; failing instance {job.instance_id}", action=job.async_action)
            await self.fail_async_action(
                job.instance_id,
                job.node_id,
                ActionExecutionError(job.instance_id, job.node_id, job.async_action or "resume", "no resume queue"),
            )


def _loggable(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if key != "context_updates"}


def _error_entry(error: Exception, **ids: Any) -> dict[str, Any]:
    if isinstance(error, DomainException):
        return {**ids, "error": error.message, "code": error.code, "details": error.details}
    return {**ids, "error": str(error), "code": type(error).__name__}
