"""
Workflow graph: JSON schema models, gate configs and validation.
"""

from .schemas import (
    ActionRef,
    ApprovalGateConfig,
    EdgeDefinition,
    NodeDefinition,
    WorkflowGraph,
    normalize_port,
    parse_approver_rule,
    parse_escalation,
)
from .validator import validate_graph

__all__ = [
    "ActionRef",
    "ApprovalGateConfig",
    "EdgeDefinition",
    "NodeDefinition",
    "WorkflowGraph",
    "normalize_port",
    "parse_approver_rule",
    "parse_escalation",
    "validate_graph",
]
