# ============================================================================
# SCOPE: WORKFLOW
# Description: Approval gate occurrences and individual decisions.
# ============================================================================
"""
WorkflowApproval / WorkflowApprovalResponse models.

A WorkflowApproval is one gate opened on one instance at one approval node.
Each approver decision is a WorkflowApprovalResponse; the unique constraint
on (approval, member) backs the "one response per member" rule.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ..base import Base, JSONType, TimestampMixin, UTCDateTime, isoformat, utc_now
from .constants import ApprovalStatus, ApprovalType


class WorkflowApproval(Base, TimestampMixin):
    """
    Approval gate occurrence.

    Attributes:
        workflow_instance_id: Instance the gate belongs to.
        node_id: Approval node that opened the gate.
        approval_gate_id: Gate definition, when materialized.
        execution_log_id: Execution log row of the node visit.
        approver_type: static, permission, role, member, dynamic or policy.
        approver_config: Approver rule plus resolved pool and chain pointer.
        approval_type: threshold, unanimous, any_one or chain.
        required_count: Approvals needed.
        approved_count: Running approve count.
        rejected_count: Running reject count.
        status: pending, approved, rejected, expired or cancelled.
        deadline: When the gate becomes overdue.
        escalation_config: Behavior when overdue.
        resolved_at: When the gate left pending.
    """

    __tablename__ = "workflow_approvals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    workflow_instance_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("workflow_instances.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    node_id: Mapped[str] = mapped_column(String(100), nullable=False)

    approval_gate_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("workflow_approval_gates.id", ondelete="SET NULL"),
        nullable=True,
    )

    execution_log_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("workflow_execution_logs.id", ondelete="SET NULL"),
        nullable=True,
    )

    approver_type: Mapped[str] = mapped_column(String(30), nullable=False)
    approver_config: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    approval_type: Mapped[str] = mapped_column(String(20), nullable=False, default=ApprovalType.THRESHOLD)
    required_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    approved_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rejected_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ApprovalStatus.PENDING,
        index=True,
    )

    deadline: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True, index=True)
    escalation_config: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (
        Index("idx_workflow_approvals_instance_node_status", "workflow_instance_id", "node_id", "status"),
        Index("idx_workflow_approvals_status_deadline", "status", "deadline"),
    )

    @property
    def is_pending(self) -> bool:
        return self.status == ApprovalStatus.PENDING

    @property
    def approver_pool(self) -> list[int]:
        return list((self.approver_config or {}).get("pool", []))

    def __repr__(self) -> str:
        return (
            f"<WorkflowApproval(id={self.id}, instance={self.workflow_instance_id}, node='{self.node_id}', "
            f"{self.approved_count}/{self.required_count}, {self.status})>"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workflow_instance_id": self.workflow_instance_id,
            "node_id": self.node_id,
            "approver_type": self.approver_type,
            "approver_config": self.approver_config,
            "approval_type": self.approval_type,
            "required_count": self.required_count,
            "approved_count": self.approved_count,
            "rejected_count": self.rejected_count,
            "status": self.status,
            "deadline": isoformat(self.deadline),
            "escalation_config": self.escalation_config,
            "resolved_at": isoformat(self.resolved_at),
        }


class WorkflowApprovalResponse(Base, TimestampMixin):
    """Single approver decision on a gate."""

    __tablename__ = "workflow_approval_responses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    workflow_approval_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("workflow_approvals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    member_id: Mapped[int] = mapped_column(Integer, nullable=False)
    decision: Mapped[str] = mapped_column(String(20), nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    responded_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utc_now)

    __table_args__ = (UniqueConstraint("workflow_approval_id", "member_id", name="uq_workflow_approval_member"),)

    def __repr__(self) -> str:
        return f"<WorkflowApprovalResponse(approval={self.workflow_approval_id}, member={self.member_id}, {self.decision})>"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workflow_approval_id": self.workflow_approval_id,
            "member_id": self.member_id,
            "decision": self.decision,
            "comment": self.comment,
            "responded_at": isoformat(self.responded_at),
        }
