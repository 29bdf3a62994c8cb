# ============================================================================
# SCOPE: WORKFLOW
# Description: Running (or finished) walks of an entity through a version.
# ============================================================================
"""
WorkflowInstance model - One entity moving through one workflow version.

Mutated exclusively by the workflow engine, under a row lock. Instances are
never deleted; finished ones keep status completed, cancelled or failed.

Usage:
    instance = await session.get(WorkflowInstance, instance_id, with_for_update=True)
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ..base import Base, JSONType, TimestampMixin, UTCDateTime, isoformat, utc_now
from .constants import TERMINAL_INSTANCE_STATUSES, InstanceStatus


class WorkflowInstance(Base, TimestampMixin):
    """
    Workflow instance.

    Attributes:
        id: Unique identifier.
        workflow_definition_id: FK to workflow_definitions.
        workflow_version_id: Version the instance runs on.
        entity_type: Type of the entity being advanced.
        entity_id: Identifier of the entity being advanced.
        current_state_id: State the instance currently sits in.
        previous_state_id: State it came from.
        status: pending, running, waiting, completed, failed or cancelled.
        context: Accumulated data visible to conditions and actions.
        error_info: Last failure (node, message, attempt).
        started_by: Actor that triggered the instance.
        state_entered_at: When current_state_id was entered.
        completed_at: When a terminal node was reached.
    """

    __tablename__ = "workflow_instances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    workflow_definition_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("workflow_definitions.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    workflow_version_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("workflow_versions.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    entity_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    current_state_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("workflow_states.id", ondelete="SET NULL"),
        nullable=True,
    )

    previous_state_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("workflow_states.id", ondelete="SET NULL"),
        nullable=True,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=InstanceStatus.PENDING,
        index=True,
    )

    context: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    error_info: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    started_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utc_now)
    state_entered_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (
        Index("idx_workflow_instances_entity", "entity_type", "entity_id"),
        Index("idx_workflow_instances_definition_status", "workflow_definition_id", "status"),
    )

    @property
    def is_finished(self) -> bool:
        return self.status in TERMINAL_INSTANCE_STATUSES

    def __repr__(self) -> str:
        return f"<WorkflowInstance(id={self.id}, status='{self.status}', state={self.current_state_id})>"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workflow_definition_id": self.workflow_definition_id,
            "workflow_version_id": self.workflow_version_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "current_state_id": self.current_state_id,
            "previous_state_id": self.previous_state_id,
            "status": self.status,
            "context": self.context,
            "error_info": self.error_info,
            "started_by": self.started_by,
            "started_at": isoformat(self.started_at),
            "state_entered_at": isoformat(self.state_entered_at),
            "completed_at": isoformat(self.completed_at),
        }
