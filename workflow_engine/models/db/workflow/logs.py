# ============================================================================
# SCOPE: WORKFLOW
# Description: Append-only audit trails of node executions and transitions.
# ============================================================================
"""
WorkflowExecutionLog / WorkflowTransitionLog models.

Both tables are append-only. An execution log row moves from running to a
final status (completed, failed, skipped, waiting) once and is never written
again after that; a retry appends a new row with the next attempt_number.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..base import Base, JSONType, UTCDateTime, isoformat, utc_now
from .constants import ExecutionStatus


class WorkflowExecutionLog(Base):
    """One node-execution attempt."""

    __tablename__ = "workflow_execution_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    workflow_instance_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("workflow_instances.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    node_id: Mapped[str] = mapped_column(String(100), nullable=False)
    node_type: Mapped[str] = mapped_column(String(30), nullable=False)
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=ExecutionStatus.PENDING)
    input_data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    output_data: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utc_now)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (Index("idx_workflow_execution_logs_instance_node", "workflow_instance_id", "node_id"),)

    def __repr__(self) -> str:
        return f"<WorkflowExecutionLog(node='{self.node_id}', attempt={self.attempt_number}, {self.status})>"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workflow_instance_id": self.workflow_instance_id,
            "node_id": self.node_id,
            "node_type": self.node_type,
            "attempt_number": self.attempt_number,
            "status": self.status,
            "input_data": self.input_data,
            "output_data": self.output_data,
            "error_message": self.error_message,
            "started_at": isoformat(self.started_at),
            "completed_at": isoformat(self.completed_at),
        }


class WorkflowTransitionLog(Base):
    """One state change of an instance."""

    __tablename__ = "workflow_transition_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    workflow_instance_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("workflow_instances.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    from_state_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("workflow_states.id", ondelete="SET NULL"), nullable=True
    )
    to_state_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("workflow_states.id", ondelete="SET NULL"), nullable=True
    )
    transition_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("workflow_transitions.id", ondelete="SET NULL"), nullable=True
    )

    trigger_type: Mapped[str] = mapped_column(String(20), nullable=False)
    triggered_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    context_snapshot: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utc_now)

    def __repr__(self) -> str:
        return f"<WorkflowTransitionLog({self.from_state_id} -> {self.to_state_id}, {self.trigger_type})>"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workflow_instance_id": self.workflow_instance_id,
            "from_state_id": self.from_state_id,
            "to_state_id": self.to_state_id,
            "transition_id": self.transition_id,
            "trigger_type": self.trigger_type,
            "triggered_by": self.triggered_by,
            "created_at": isoformat(self.created_at),
        }
