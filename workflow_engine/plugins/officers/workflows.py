"""
Stock Officers workflow graphs.

officer-hire:
    start -> create_officer -> needs_warrant
        false -> hired
        true  -> warrant_approval
            approved -> hired (requests the warrant roster on the way)
            rejected / expired -> rejected (releases the officer on entry)
"""

from typing import Any

from .plugin import WARRANT_APPROVERS_RESOLVER

OFFICER_HIRE_SLUG = "officer-hire"


def officer_hire_graph(
    approver_ids: list[int] | None = None,
    required_count: int = 1,
    deadline: str = "14d",
    escalation: dict[str, Any] | None = None,
    notify_on_hire: bool = False,
) -> dict[str, Any]:
    """
    Build the officer-hire graph.

    Args:
        approver_ids: Static approver pool; None resolves the office's warrant approvers
        required_count: Approvals needed to grant the warrant
        deadline: Approval deadline ("14d", "24h", ...)
        escalation: Escalation rule applied at the deadline (defaults to expire)
        notify_on_hire: Send the hire notification out of band after the record is created
    """
    if approver_ids is None:
        approver: dict[str, Any] = {
            "type": "dynamic",
            "resolver": WARRANT_APPROVERS_RESOLVER,
            "config": {"officeId": "$.trigger.officeId"},
        }
    else:
        approver = {"type": "static", "memberIds": list(approver_ids)}

    officer_id = "$.nodes.create_officer.result.officerId"
    after_create = "notify_hire" if notify_on_hire else "needs_warrant"

    nodes: dict[str, Any] = {
        "start": {
            "type": "trigger",
            "label": "Hire requested",
            "config": {"event": "Officers.HireRequested", "entityIdField": "memberId"},
        },
        "create_officer": {
            "type": "action",
            "label": "Create officer record",
            "config": {
                "action": "Officers.CreateOfficerRecord",
                "params": {
                    "memberId": "$.trigger.memberId",
                    "officeId": "$.trigger.officeId",
                    "branchId": "$.trigger.branchId",
                    "startOn": "$.trigger.startOn",
                    "expiresOn": "$.trigger.expiresOn",
                    "emailAddress": "$.trigger.emailAddress",
                },
            },
        },
        "needs_warrant": {
            "type": "condition",
            "label": "Office requires warrant?",
            "config": {"condition": {"type": "Officers.OfficeRequiresWarrant", "officeId": "$.trigger.officeId"}},
        },
        "warrant_approval": {
            "type": "approval",
            "label": "Warrant approval",
            "config": {
                "approvalType": "threshold",
                "requiredCount": required_count,
                "approver": approver,
                "deadline": deadline,
                "escalation": escalation or {"action": "expire"},
            },
        },
        "hired": {"type": "end", "label": "Hired", "config": {"status": "completed"}},
        "rejected": {
            "type": "end",
            "label": "Warrant rejected",
            "config": {"status": "completed"},
            "onEnter": [
                {
                    "action": "Officers.ReleaseOfficer",
                    "params": {"officerId": officer_id, "reason": "Warrant not approved"},
                }
            ],
        },
    }

    edges: list[dict[str, Any]] = [
        {"id": "start-create", "source": "start", "target": "create_officer"},
        {"id": "create-next", "source": "create_officer", "target": after_create},
        {"id": "warrant-no", "source": "needs_warrant", "target": "hired", "port": "false"},
        {"id": "warrant-yes", "source": "needs_warrant", "target": "warrant_approval", "port": "true"},
        {
            "id": "approval-approved",
            "source": "warrant_approval",
            "target": "hired",
            "port": "approved",
            "actions": [{"action": "Officers.RequestWarrantRoster", "params": {"officerId": officer_id}}],
        },
        {"id": "approval-rejected", "source": "warrant_approval", "target": "rejected", "port": "rejected"},
        {"id": "approval-expired", "source": "warrant_approval", "target": "rejected", "port": "expired"},
    ]

    if notify_on_hire:
        nodes["notify_hire"] = {
            "type": "action",
            "label": "Send hire notification",
            "config": {"action": "Officers.SendHireNotification", "params": {"officerId": officer_id}},
        }
        edges.append({"id": "notify-next", "source": "notify_hire", "target": "needs_warrant"})

    return {
        "nodes": nodes,
        "edges": edges,
        "visibility": {
            "warrant_approval": [
                {"ruleType": "can_edit_entity", "condition": {"permission": "Officers.Manage"}},
                {"ruleType": "can_view_field", "target": "email_address"},
            ]
        },
    }
