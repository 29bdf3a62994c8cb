# ============================================================================
# SCOPE: WORKFLOW
# Description: Approval requirements attached to approval states.
# ============================================================================
"""
WorkflowApprovalGate model - Approval configuration of an approval state.

The JSON columns (threshold_config, approver_rule, escalation_config) are
decoded into typed configs by `workflow_engine.graph.schemas` when a gate is
opened.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import Boolean, Float, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..base import Base, JSONType, TimestampMixin
from .constants import ApprovalType

if TYPE_CHECKING:
    from .states import WorkflowState


class WorkflowApprovalGate(Base, TimestampMixin):
    """
    Approval gate definition.

    Attributes:
        id: Unique identifier.
        workflow_state_id: Approval state this gate belongs to.
        approval_type: threshold, unanimous, any_one or chain.
        required_count: Fixed approvals required (threshold).
        threshold_config: Fixed count or percentage of the pool.
        approver_rule: Who may decide (static, permission, role, dynamic).
        timeout_hours: Hours until the gate is overdue.
        timeout_transition_id: Edge followed on expiry.
        on_satisfied_transition_id: Edge followed when approved.
        on_denied_transition_id: Edge followed when rejected.
        escalation_config: Behavior when the deadline passes.
        allow_delegation: Whether approvers may delegate.
    """

    __tablename__ = "workflow_approval_gates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    workflow_state_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("workflow_states.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    approval_type: Mapped[str] = mapped_column(String(20), nullable=False, default=ApprovalType.THRESHOLD)
    required_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    threshold_config: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    approver_rule: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    timeout_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    deadline_spec: Mapped[str | None] = mapped_column(String(50), nullable=True)
    escalation_config: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    timeout_transition_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("workflow_transitions.id", ondelete="SET NULL"), nullable=True
    )
    on_satisfied_transition_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("workflow_transitions.id", ondelete="SET NULL"), nullable=True
    )
    on_denied_transition_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("workflow_transitions.id", ondelete="SET NULL"), nullable=True
    )

    allow_delegation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    state: Mapped["WorkflowState"] = relationship("WorkflowState", back_populates="approval_gate")

    def __repr__(self) -> str:
        return f"<WorkflowApprovalGate(state={self.workflow_state_id}, type='{self.approval_type}')>"

    def to_config(self) -> dict[str, Any]:
        """Gate config in graph-node shape, consumed by ApprovalManager.open_gate."""
        config: dict[str, Any] = {
            "approvalType": self.approval_type,
            "requiredCount": self.required_count,
            "approver": self.approver_rule,
            "escalation": self.escalation_config,
            "allowDelegation": self.allow_delegation,
        }
        if self.threshold_config:
            config["threshold"] = self.threshold_config
        if self.deadline_spec:
            config["deadline"] = self.deadline_spec
        elif self.timeout_hours:
            config["timeoutHours"] = self.timeout_hours
        return config
