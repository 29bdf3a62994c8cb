# ============================================================================
# SCOPE: WORKFLOW
# Description: SQLAlchemy models for the workflow engine.
# ============================================================================
"""
Workflow models package.

- WorkflowDefinition / WorkflowVersion: named workflow and its graph snapshots
- WorkflowState / WorkflowTransition / WorkflowApprovalGate / WorkflowVisibilityRule:
  graph materialized on publish
- WorkflowInstance: entity walking a version
- WorkflowApproval / WorkflowApprovalResponse: gate occurrences and decisions
- WorkflowExecutionLog / WorkflowTransitionLog: append-only audit trails
- WorkflowInstanceMigration: version migration audit
"""

from .approval_gates import WorkflowApprovalGate
from .approvals import WorkflowApproval, WorkflowApprovalResponse
from .definitions import WorkflowDefinition
from .instances import WorkflowInstance
from .logs import WorkflowExecutionLog, WorkflowTransitionLog
from .migrations import WorkflowInstanceMigration
from .states import WorkflowState
from .transitions import WorkflowTransition
from .versions import WorkflowVersion
from .visibility_rules import WorkflowVisibilityRule

__all__ = [
    # Definitions and graph
    "WorkflowDefinition",
    "WorkflowVersion",
    "WorkflowState",
    "WorkflowTransition",
    "WorkflowApprovalGate",
    "WorkflowVisibilityRule",
    # Runtime
    "WorkflowInstance",
    "WorkflowApproval",
    "WorkflowApprovalResponse",
    # Audit
    "WorkflowExecutionLog",
    "WorkflowTransitionLog",
    "WorkflowInstanceMigration",
]
