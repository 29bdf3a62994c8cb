"""
Integration tests for WorkflowEngine against an in-memory database.

The Officer Hire scenario drives the stock officer-hire graph end to end;
the remaining classes cover the error contract of start, resume, retry and
cancel.
"""

import pytest

from workflow_engine.core.exceptions import (
    ActionExecutionError,
    ApprovalError,
    ApprovalNotPending,
    DefinitionNotFound,
    DuplicateInstance,
    DuplicateResponse,
    InstanceAlreadyCompleted,
    InstanceNotFound,
    InstanceNotRetryable,
    InvalidPayload,
    NodeMismatch,
    NoMatchingTransition,
    NotEligibleApprover,
    WorkflowCycleDetected,
)
from workflow_engine.database import session_scope
from workflow_engine.models.db.workflow.constants import ApprovalStatus, ExecutionStatus, InstanceStatus
from workflow_engine.plugins.officers import MEMBER_ENTITY, OFFICER_HIRE_SLUG, officer_hire_graph
from workflow_engine.repositories import WorkflowRepository
from workflow_engine.services.engine import WorkflowEngine

from tests.factories import (
    DEPUTY_OFFICE_ID,
    SENESCHAL_OFFICE_ID,
    execution_logs,
    get_approval,
    hire_payload,
    linear_graph,
    pending_approval_id,
    transition_logs,
)

HIRE_EVENT = "Officers.HireRequested"


@pytest.fixture
async def hire_workflow(versions):
    """officer-hire published with the office's warrant approvers."""
    return await versions.install(OFFICER_HIRE_SLUG, "Officer hire", officer_hire_graph(), plugin_name="Officers")


async def start_hire(engine, member_id: int = 1, office_id: int = SENESCHAL_OFFICE_ID) -> int:
    return await engine.start_workflow(
        OFFICER_HIRE_SLUG, HIRE_EVENT, hire_payload(member_id, office_id), triggered_by=99
    )


# ============================================================================
# OFFICER HIRE SCENARIO
# ============================================================================


@pytest.mark.integration
@pytest.mark.asyncio
class TestOfficerHire:
    """Officer Hire: warranted offices wait for approval, others complete at once."""

    async def test_warranted_office_waits_for_approval(self, engine, hire_workflow, directory):
        """Should create the officer and suspend at the warrant approval."""
        # Act
        instance_id = await start_hire(engine)
        state = await engine.get_instance_state(instance_id)

        # Assert
        assert state["status"] == InstanceStatus.WAITING
        assert state["current_node"] == "warrant_approval"
        assert state["instance"]["entity_type"] == MEMBER_ENTITY
        assert state["instance"]["entity_id"] == "1"
        assert state["context"]["entity"]["sca_name"] == "Aelfric of York"
        assert state["context"]["nodes"]["create_officer"]["result"] == {"officerId": 1, "status": "current"}
        assert state["context"]["nodes"]["needs_warrant"] == {"result": True}

        approvals = state["pending_approvals"]
        assert len(approvals) == 1
        assert approvals[0]["approver_config"]["pool"] == [20, 21]
        assert approvals[0]["required_count"] == 1
        assert approvals[0]["deadline"] is not None
        assert directory.officers[1].approver_id == 99

    async def test_one_approval_completes_hire(self, engine, hire_workflow, directory):
        """Should complete at 'hired' and request the warrant roster on the way."""
        # Arrange
        instance_id = await start_hire(engine)
        approval_id = await pending_approval_id(engine, instance_id)

        # Act
        outcome = await engine.record_approval_response(approval_id, 20, "approve", comment="Vivat")

        # Assert
        assert outcome.resolved
        assert outcome.port == "approved"
        state = await engine.get_instance_state(instance_id)
        assert state["status"] == InstanceStatus.COMPLETED
        assert state["current_node"] == "hired"
        assert state["context"]["warrantRosterId"] == 1
        assert state["context"]["nodes"]["warrant_approval"]["status"] == "approved"
        assert state["context"]["nodes"]["warrant_approval"]["approverId"] == 20
        assert state["pending_approvals"] == []
        assert directory.rosters[1].officer_id == 1

    async def test_rejection_releases_officer(self, engine, hire_workflow, directory):
        """Should stay pending after one rejection and release the officer once denied."""
        # Arrange
        instance_id = await start_hire(engine)
        approval_id = await pending_approval_id(engine, instance_id)

        # Act
        first = await engine.record_approval_response(approval_id, 20, "reject")
        second = await engine.record_approval_response(approval_id, 21, "reject")

        # Assert
        assert not first.resolved
        assert second.port == "rejected"
        state = await engine.get_instance_state(instance_id)
        assert state["status"] == InstanceStatus.COMPLETED
        assert state["current_node"] == "rejected"
        assert directory.officers[1].status == "released"
        assert directory.officers[1].revoked_reason == "Warrant not approved"

    async def test_unwarranted_office_completes_immediately(self, engine, hire_workflow, session_factory):
        """Should skip the approval and record every step."""
        # Act
        instance_id = await start_hire(engine, office_id=DEPUTY_OFFICE_ID)

        # Assert
        state = await engine.get_instance_state(instance_id)
        assert state["status"] == InstanceStatus.COMPLETED
        assert state["current_node"] == "hired"
        assert state["pending_approvals"] == []

        logs = await execution_logs(session_factory, instance_id)
        assert [log.node_id for log in logs] == ["start", "create_officer", "needs_warrant", "hired"]
        assert all(log.status == ExecutionStatus.COMPLETED for log in logs)

        transitions = await transition_logs(session_factory, instance_id)
        assert len(transitions) == 5
        assert transitions[0].from_state_id is None
        assert transitions[-1].to_state_id is None

    async def test_eligible_approvers(self, engine, versions):
        """Should list pool members that have not responded yet."""
        # Arrange
        await versions.install(
            OFFICER_HIRE_SLUG, "Officer hire", officer_hire_graph(approver_ids=[20, 21, 22], required_count=2)
        )
        instance_id = await start_hire(engine)
        approval_id = await pending_approval_id(engine, instance_id)

        # Act
        await engine.record_approval_response(approval_id, 20, "approve")

        # Assert
        assert await engine.get_eligible_approvers(approval_id) == [21, 22]

    async def test_dispatch_trigger_starts_listening_definitions(self, engine, hire_workflow):
        """Should start every active definition listening for the event."""
        started = await engine.dispatch_trigger(HIRE_EVENT, hire_payload(3, DEPUTY_OFFICE_ID), triggered_by=99)

        assert len(started) == 1
        state = await engine.get_instance_state(started[0])
        assert state["status"] == InstanceStatus.COMPLETED

    async def test_dispatch_trigger_logs_failures(self, engine, hire_workflow):
        """Should skip definitions that refuse to start."""
        await start_hire(engine)

        started = await engine.dispatch_trigger(HIRE_EVENT, hire_payload(), triggered_by=99)

        assert started == []

    async def test_fresh_engine_resumes_persisted_instance(
        self, engine, hire_workflow, session_factory, registries, settings
    ):
        """Should resume from persisted state alone, with no in-memory graph cache."""
        # Arrange
        instance_id = await start_hire(engine)
        approval_id = await pending_approval_id(engine, instance_id)
        restarted = WorkflowEngine(session_factory, registries, settings=settings)

        # Act
        await restarted.record_approval_response(approval_id, 21, "approve")

        # Assert
        state = await restarted.get_instance_state(instance_id)
        assert state["status"] == InstanceStatus.COMPLETED
        assert state["current_node"] == "hired"

    async def test_same_input_same_path(self, engine, hire_workflow, session_factory):
        """Should take the same path for the same inputs."""
        first = await start_hire(engine, member_id=1, office_id=DEPUTY_OFFICE_ID)
        second = await start_hire(engine, member_id=3, office_id=DEPUTY_OFFICE_ID)

        first_path = [log.node_id for log in await execution_logs(session_factory, first)]
        second_path = [log.node_id for log in await execution_logs(session_factory, second)]

        assert first_path == second_path


# ============================================================================
# START ERRORS
# ============================================================================


@pytest.mark.integration
@pytest.mark.asyncio
class TestStartErrors:
    """Tests for start_workflow rejections."""

    async def test_invalid_payload_creates_nothing(self, engine, hire_workflow, session_factory):
        """Should reject the payload before any instance exists."""
        with pytest.raises(InvalidPayload):
            await engine.start_workflow(OFFICER_HIRE_SLUG, HIRE_EVENT, {"memberId": 1})

        async with session_scope(session_factory) as session:
            assert await WorkflowRepository(session).count_active_instances() == 0

    async def test_unknown_definition(self, engine):
        """Should raise DefinitionNotFound for an unknown slug."""
        with pytest.raises(DefinitionNotFound):
            await engine.start_workflow("no-such-workflow", None, {})

    async def test_duplicate_instance_for_entity(self, engine, hire_workflow):
        """Should refuse a second active instance for the same member."""
        first = await start_hire(engine)

        with pytest.raises(DuplicateInstance) as exc_info:
            await start_hire(engine)

        assert exc_info.value.details["instance_id"] == first
        assert exc_info.value.details["entity_id"] == "1"

    async def test_completed_instance_allows_new_start(self, engine, hire_workflow):
        """Should allow a new instance once the previous one completed."""
        first = await start_hire(engine, office_id=DEPUTY_OFFICE_ID)
        second = await start_hire(engine, office_id=DEPUTY_OFFICE_ID)

        assert second != first


# ============================================================================
# RESUME ERRORS
# ============================================================================


@pytest.mark.integration
@pytest.mark.asyncio
class TestResumeErrors:
    """Tests for resume_workflow guards."""

    async def test_resume_completed_instance_writes_nothing(self, engine, hire_workflow, session_factory):
        """Should raise InstanceAlreadyCompleted without touching the audit trail."""
        # Arrange
        instance_id = await start_hire(engine, office_id=DEPUTY_OFFICE_ID)
        before = len(await execution_logs(session_factory, instance_id))

        # Act
        with pytest.raises(InstanceAlreadyCompleted):
            await engine.resume_workflow(instance_id, "hired", "default")

        # Assert
        assert len(await execution_logs(session_factory, instance_id)) == before

    async def test_node_mismatch(self, engine, hire_workflow):
        """Should refuse to resume at a node the instance is not waiting at."""
        instance_id = await start_hire(engine)

        with pytest.raises(NodeMismatch) as exc_info:
            await engine.resume_workflow(instance_id, "create_officer")

        assert exc_info.value.actual_node == "warrant_approval"

    async def test_unknown_instance(self, engine):
        """Should raise InstanceNotFound."""
        with pytest.raises(InstanceNotFound):
            await engine.resume_workflow(999, "start")

    async def test_manual_resume_cancels_open_gate(self, engine, hire_workflow, session_factory):
        """Should close the pending approval when an approval node is resumed directly."""
        # Arrange
        instance_id = await start_hire(engine)
        approval_id = await pending_approval_id(engine, instance_id)

        # Act
        await engine.resume_workflow(instance_id, "warrant_approval", "approved", {"decision": "approve"})

        # Assert
        approval = await get_approval(session_factory, approval_id)
        assert approval.status == ApprovalStatus.CANCELLED
        state = await engine.get_instance_state(instance_id)
        assert state["current_node"] == "hired"


# ============================================================================
# APPROVAL RESPONSE ERRORS
# ============================================================================


@pytest.mark.integration
@pytest.mark.asyncio
class TestApprovalResponses:
    """Tests for record_approval_response guards."""

    @pytest.fixture
    async def two_of_three(self, versions):
        return await versions.install(
            OFFICER_HIRE_SLUG, "Officer hire", officer_hire_graph(approver_ids=[20, 21, 22], required_count=2)
        )

    async def test_duplicate_response_leaves_counts(self, engine, two_of_three, session_factory):
        """Should reject a second response from the same member and keep the counters."""
        # Arrange
        instance_id = await start_hire(engine)
        approval_id = await pending_approval_id(engine, instance_id)
        await engine.record_approval_response(approval_id, 20, "approve")

        # Act
        with pytest.raises(DuplicateResponse):
            await engine.record_approval_response(approval_id, 20, "reject")

        # Assert
        approval = await get_approval(session_factory, approval_id)
        assert approval.approved_count == 1
        assert approval.rejected_count == 0
        assert approval.status == ApprovalStatus.PENDING

    async def test_ineligible_member(self, engine, two_of_three):
        """Should refuse members outside the pool."""
        instance_id = await start_hire(engine)
        approval_id = await pending_approval_id(engine, instance_id)

        with pytest.raises(NotEligibleApprover):
            await engine.record_approval_response(approval_id, 30, "approve")

    async def test_unknown_decision(self, engine, two_of_three):
        """Should refuse decisions outside the vocabulary."""
        instance_id = await start_hire(engine)
        approval_id = await pending_approval_id(engine, instance_id)

        with pytest.raises(ApprovalError) as exc_info:
            await engine.record_approval_response(approval_id, 20, "maybe")

        assert exc_info.value.code == "INVALID_DECISION"

    async def test_resolved_gate_refuses_responses(self, engine, two_of_three):
        """Should raise ApprovalNotPending once the gate resolved."""
        instance_id = await start_hire(engine)
        approval_id = await pending_approval_id(engine, instance_id)
        await engine.record_approval_response(approval_id, 20, "approve")
        await engine.record_approval_response(approval_id, 21, "approve")

        with pytest.raises(ApprovalNotPending):
            await engine.record_approval_response(approval_id, 22, "approve")


# ============================================================================
# FAILURES, RETRY AND CYCLES
# ============================================================================


@pytest.mark.integration
@pytest.mark.asyncio
class TestFailureHandling:
    """Tests for failed actions, retries and the cycle guard."""

    async def test_failed_action_then_retry(self, engine, versions, session_factory, flaky_plugin):
        """Should record the failure, then complete on retry_workflow."""
        # Arrange
        await versions.install("flaky", "Flaky", linear_graph({"action": "Testing.Flaky"}))

        # Act
        with pytest.raises(ActionExecutionError) as exc_info:
            await engine.start_workflow("flaky", None, {})

        # Assert
        instance_id = exc_info.value.details["instance_id"]
        state = await engine.get_instance_state(instance_id)
        assert state["status"] == InstanceStatus.FAILED
        assert state["current_node"] == "step"
        assert state["error_info"]["error"] == "ACTION_EXECUTION_FAILED"
        assert state["error_info"]["node_id"] == "step"

        await engine.retry_workflow(instance_id)

        state = await engine.get_instance_state(instance_id)
        assert state["status"] == InstanceStatus.COMPLETED
        assert state["error_info"] is None
        assert state["context"]["variables"]["flaky_done"] is True
        attempts = [
            (log.attempt_number, log.status)
            for log in await execution_logs(session_factory, instance_id)
            if log.node_id == "step"
        ]
        assert attempts == [(1, ExecutionStatus.FAILED), (2, ExecutionStatus.COMPLETED)]
        assert flaky_plugin.calls == 2

    async def test_node_retries(self, engine, versions, session_factory):
        """Should retry inline up to maxRetries before failing the instance."""
        await versions.install("flaky", "Flaky", linear_graph({"action": "Testing.Flaky", "maxRetries": 1}))

        instance_id = await engine.start_workflow("flaky", None, {})

        state = await engine.get_instance_state(instance_id)
        assert state["status"] == InstanceStatus.COMPLETED
        assert state["context"]["nodes"]["step"]["result"] == {"calls": 2}

    async def test_retry_requires_failed_instance(self, engine, hire_workflow):
        """Should refuse to retry an instance that did not fail."""
        instance_id = await start_hire(engine)

        with pytest.raises(InstanceNotRetryable):
            await engine.retry_workflow(instance_id)

    async def test_cycle_guard_halts_drive(self, engine, versions):
        """Should halt a loop of automatic edges and leave the instance resumable."""
        # Arrange
        graph = {
            "nodes": {
                "start": {"type": "trigger"},
                "bump": {"type": "action", "config": {"action": "set_variable", "params": {"name": "n", "value": 1}}},
                "check": {
                    "type": "condition",
                    "config": {"condition": {"field": "variables.stop", "operator": "eq", "value": True}},
                },
                "done": {"type": "end"},
            },
            "edges": [
                {"source": "start", "target": "bump"},
                {"source": "bump", "target": "check"},
                {"source": "check", "target": "done", "port": "true"},
                {"source": "check", "target": "bump", "port": "false"},
            ],
        }
        await versions.install("loop", "Loop", graph)

        # Act
        with pytest.raises(WorkflowCycleDetected) as exc_info:
            await engine.start_workflow("loop", None, {})

        # Assert
        instance_id = exc_info.value.details["instance_id"]
        state = await engine.get_instance_state(instance_id)
        assert state["status"] == InstanceStatus.WAITING
        assert state["error_info"]["error"] == "WORKFLOW_CYCLE_DETECTED"
        assert state["current_node"] == exc_info.value.node_id

        with pytest.raises(WorkflowCycleDetected):
            await engine.resume_workflow(instance_id, state["current_node"])

    async def test_no_matching_transition_fails_instance(self, engine, versions):
        """Should fail the instance when no edge matches."""
        graph = {
            "nodes": {
                "start": {"type": "trigger"},
                "route": {"type": "condition"},
                "done": {"type": "end"},
            },
            "edges": [
                {"source": "start", "target": "route"},
                {
                    "source": "route",
                    "target": "done",
                    "conditions": [{"field": "trigger.amount", "operator": "gt", "value": 100}],
                },
            ],
        }
        await versions.install("route", "Route", graph)

        with pytest.raises(NoMatchingTransition) as exc_info:
            await engine.start_workflow("route", None, {"amount": 5})

        assert exc_info.value.code == "NO_MATCHING_TRANSITION"
        state = await engine.get_instance_state(exc_info.value.details["instance_id"])
        assert state["status"] == InstanceStatus.FAILED


# ============================================================================
# CANCEL
# ============================================================================


@pytest.mark.integration
@pytest.mark.asyncio
class TestCancel:
    """Tests for cancel_workflow."""

    async def test_cancel_waiting_instance(self, engine, hire_workflow, session_factory):
        """Should cancel the instance and its pending approvals."""
        # Arrange
        instance_id = await start_hire(engine)
        approval_id = await pending_approval_id(engine, instance_id)

        # Act
        await engine.cancel_workflow(instance_id, cancelled_by=99, reason="Withdrawn")

        # Assert
        state = await engine.get_instance_state(instance_id)
        assert state["status"] == InstanceStatus.CANCELLED
        approval = await get_approval(session_factory, approval_id)
        assert approval.status == ApprovalStatus.CANCELLED

        with pytest.raises(ApprovalNotPending):
            await engine.record_approval_response(approval_id, 20, "approve")
        with pytest.raises(InstanceAlreadyCompleted):
            await engine.cancel_workflow(instance_id)
        with pytest.raises(InstanceAlreadyCompleted):
            await engine.resume_workflow(instance_id, "warrant_approval", "approved")
