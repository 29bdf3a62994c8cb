"""
Graph builders, payloads and query helpers shared by the test suites.
"""

from typing import Any

from workflow_engine.database import session_scope
from workflow_engine.plugins.officers import OfficerDirectory, OfficersPlugin
from workflow_engine.repositories import WorkflowRepository

SENESCHAL_OFFICE_ID = 10
DEPUTY_OFFICE_ID = 11
MARSHAL_OFFICE_ID = 12


# ============================================================================
# GRAPH BUILDERS
# ============================================================================


def approval_graph(
    approval_type: str = "threshold",
    member_ids: list[int] | None = None,
    required_count: int | None = None,
    deadline: str | None = None,
    escalation: dict[str, Any] | None = None,
    with_expired_edge: bool = True,
) -> dict[str, Any]:
    """start -> gate -> approved / rejected (/ expired) end nodes, core vocabulary only."""
    config: dict[str, Any] = {
        "approvalType": approval_type,
        "approver": {"type": "static", "memberIds": member_ids if member_ids is not None else [20, 21, 22]},
    }
    if required_count is not None:
        config["requiredCount"] = required_count
    if deadline is not None:
        config["deadline"] = deadline
    if escalation is not None:
        config["escalation"] = escalation

    nodes: dict[str, Any] = {
        "start": {"type": "trigger", "config": {}},
        "gate": {"type": "approval", "config": config},
        "approved": {"type": "end", "config": {"status": "completed"}},
        "rejected": {"type": "end", "config": {"status": "completed"}},
    }
    edges: list[dict[str, Any]] = [
        {"id": "start-gate", "source": "start", "target": "gate"},
        {"id": "gate-approved", "source": "gate", "target": "approved", "port": "approved"},
        {
            "id": "gate-rejected",
            "source": "gate",
            "target": "rejected",
            "port": "rejected",
            "actions": [{"action": "set_variable", "params": {"name": "outcome", "value": "rejected"}}],
        },
    ]
    if with_expired_edge:
        nodes["expired"] = {"type": "end", "config": {"status": "completed"}}
        edges.append({"id": "gate-expired", "source": "gate", "target": "expired", "port": "expired"})
    return {"nodes": nodes, "edges": edges}


def linear_graph(action: dict[str, Any]) -> dict[str, Any]:
    """start -> step (action) -> done."""
    return {
        "nodes": {
            "start": {"type": "trigger", "config": {}},
            "step": {"type": "action", "config": action},
            "done": {"type": "end", "config": {}},
        },
        "edges": [
            {"id": "start-step", "source": "start", "target": "step"},
            {"id": "step-done", "source": "step", "target": "done"},
        ],
    }


def hire_payload(member_id: int = 1, office_id: int = SENESCHAL_OFFICE_ID, branch_id: int = 5) -> dict[str, Any]:
    return {"memberId": member_id, "officeId": office_id, "branchId": branch_id}


def officers_plugin():
    """Plugin factory in the "module:factory" shape the CLI loads."""
    return OfficersPlugin(OfficerDirectory())


# ============================================================================
# QUERY HELPERS
# ============================================================================


async def pending_approval_id(engine, instance_id: int) -> int:
    state = await engine.get_instance_state(instance_id)
    return state["pending_approvals"][0]["id"]


async def execution_logs(session_factory, instance_id: int) -> list:
    async with session_scope(session_factory) as session:
        return await WorkflowRepository(session).get_execution_logs(instance_id)


async def transition_logs(session_factory, instance_id: int) -> list:
    async with session_scope(session_factory) as session:
        return await WorkflowRepository(session).get_transition_logs(instance_id)


async def get_approval(session_factory, approval_id: int):
    async with session_scope(session_factory) as session:
        return await WorkflowRepository(session).get_approval(approval_id)
