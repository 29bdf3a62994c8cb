"""
Approval gate condition.

    {"approval_gate": "<node_id>", "status": "met" | "not_met"}

Reads context["approval_gates"][node_id]["is_met"]; an unknown gate never
satisfies the condition.
"""

from typing import Any


def evaluate_approval_gate(params: dict[str, Any], context: dict[str, Any]) -> bool:
    gate_name = params.get("approval_gate")
    if gate_name is None:
        return False
    gates = context.get("approval_gates") or {}
    if gate_name not in gates:
        return False
    is_met = bool(gates[gate_name].get("is_met", False))
    return is_met if params.get("status", "met") == "met" else not is_met
