# ============================================================================
# SCOPE: WORKFLOW
# Description: Per-state view/edit rules for entities and fields.
# ============================================================================
"""
WorkflowVisibilityRule model - read-only metadata for the visibility evaluator.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..base import Base, JSONType, TimestampMixin

if TYPE_CHECKING:
    from .states import WorkflowState


class WorkflowVisibilityRule(Base, TimestampMixin):
    """
    Visibility rule.

    Attributes:
        workflow_state_id: State the rule applies to.
        rule_type: can_view_entity, can_edit_entity, can_view_field, can_edit_field.
        target: Field name, or "*" for entity rules and wildcard field rules.
        condition: Optional rule evaluated against the user context.
        priority: Higher priority rules are evaluated first.
    """

    __tablename__ = "workflow_visibility_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    workflow_state_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("workflow_states.id", ondelete="CASCADE"),
        nullable=False,
    )

    rule_type: Mapped[str] = mapped_column(String(30), nullable=False)
    target: Mapped[str] = mapped_column(String(100), nullable=False, default="*")
    condition: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    state: Mapped["WorkflowState"] = relationship("WorkflowState", back_populates="visibility_rules")

    __table_args__ = (Index("idx_workflow_visibility_state_type", "workflow_state_id", "rule_type"),)

    def __repr__(self) -> str:
        return f"<WorkflowVisibilityRule(state={self.workflow_state_id}, {self.rule_type} '{self.target}')>"
