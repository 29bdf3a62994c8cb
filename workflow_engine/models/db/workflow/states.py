# ============================================================================
# SCOPE: WORKFLOW
# Description: Graph nodes materialized when a version is published.
# ============================================================================
"""
WorkflowState model - One row per node of a published version.

Instances point at states (current_state_id / previous_state_id), so the
transition history can be joined back to node metadata after the graph JSON
has moved on to newer versions.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..base import Base, JSONType, TimestampMixin
from .constants import StateType

if TYPE_CHECKING:
    from .approval_gates import WorkflowApprovalGate
    from .versions import WorkflowVersion
    from .visibility_rules import WorkflowVisibilityRule


class WorkflowState(Base, TimestampMixin):
    """
    Workflow state (graph node).

    Attributes:
        id: Unique identifier.
        workflow_version_id: FK to workflow_versions.
        node_id: Node key inside the graph JSON.
        name: Display label.
        node_type: trigger, action, condition, approval, delay or end.
        state_type: initial, intermediate, approval or terminal.
        on_enter_actions: Action refs run when the state is entered.
        on_exit_actions: Action refs run when the state is left.
        config: Node configuration copied from the graph.
        state_metadata: Free-form metadata.
    """

    __tablename__ = "workflow_states"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    workflow_version_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("workflow_versions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    node_id: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    node_type: Mapped[str] = mapped_column(String(30), nullable=False)

    state_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=StateType.INTERMEDIATE,
    )

    on_enter_actions: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    on_exit_actions: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    config: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    state_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, nullable=False, default=dict)

    version: Mapped["WorkflowVersion"] = relationship("WorkflowVersion", back_populates="states")

    approval_gate: Mapped["WorkflowApprovalGate"] = relationship(
        "WorkflowApprovalGate",
        back_populates="state",
        uselist=False,
        cascade="all, delete-orphan",
    )

    visibility_rules: Mapped[list["WorkflowVisibilityRule"]] = relationship(
        "WorkflowVisibilityRule",
        back_populates="state",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("workflow_version_id", "node_id", name="uq_workflow_state_node"),
        Index("idx_workflow_states_version_type", "workflow_version_id", "state_type"),
    )

    def __repr__(self) -> str:
        return f"<WorkflowState(node='{self.node_id}', type='{self.node_type}')>"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workflow_version_id": self.workflow_version_id,
            "node_id": self.node_id,
            "name": self.name,
            "node_type": self.node_type,
            "state_type": self.state_type,
            "on_enter_actions": self.on_enter_actions,
            "on_exit_actions": self.on_exit_actions,
            "config": self.config,
            "metadata": self.state_metadata,
        }
