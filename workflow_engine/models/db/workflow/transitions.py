# ============================================================================
# SCOPE: WORKFLOW
# Description: Edges between workflow states.
# ============================================================================
"""
WorkflowTransition model - Edge in a published workflow graph.

Edges leaving a state are evaluated by `priority` (declaration order). The
first edge on the chosen port whose conditions all pass is followed; an
edge flagged `is_default` is the fallback.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ..base import Base, JSONType, TimestampMixin
from .constants import Port, TriggerType


class WorkflowTransition(Base, TimestampMixin):
    """
    Transition between workflow states.

    Attributes:
        id: Unique identifier.
        workflow_version_id: FK to workflow_versions.
        edge_id: Edge key inside the graph JSON.
        from_state_id: Source state.
        to_state_id: Target state.
        port: Output port of the source node this edge is bound to.
        trigger_type: manual, automatic, scheduled or event.
        conditions: Ordered condition refs (AND).
        actions: Ordered action refs run while traversing.
        priority: Evaluation order.
        is_default: Fallback edge when no condition matches.
    """

    __tablename__ = "workflow_transitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    workflow_version_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("workflow_versions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    edge_id: Mapped[str] = mapped_column(String(100), nullable=False)

    from_state_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("workflow_states.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    to_state_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("workflow_states.id", ondelete="CASCADE"),
        nullable=False,
    )

    port: Mapped[str] = mapped_column(String(50), nullable=False, default=Port.DEFAULT)

    trigger_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=TriggerType.AUTOMATIC,
    )

    conditions: Mapped[list[Any]] = mapped_column(JSONType, nullable=False, default=list)
    actions: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (Index("idx_workflow_transitions_from_port", "from_state_id", "port"),)

    def __repr__(self) -> str:
        return f"<WorkflowTransition(edge='{self.edge_id}', port='{self.port}', trigger='{self.trigger_type}')>"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "edge_id": self.edge_id,
            "from_state_id": self.from_state_id,
            "to_state_id": self.to_state_id,
            "port": self.port,
            "trigger_type": self.trigger_type,
            "conditions": self.conditions,
            "actions": self.actions,
            "priority": self.priority,
            "is_default": self.is_default,
        }
