# ============================================================================
# SCOPE: WORKFLOW
# Description: Immutable graph snapshots of a workflow definition.
# ============================================================================
"""
WorkflowVersion model - Draft, published or archived graph snapshot.

The `definition` column holds the node/edge graph. Once a version is
published its graph never changes; edits create a new draft.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..base import Base, JSONType, TimestampMixin, UTCDateTime, isoformat
from .constants import VersionStatus

if TYPE_CHECKING:
    from .definitions import WorkflowDefinition
    from .states import WorkflowState


class WorkflowVersion(Base, TimestampMixin):
    """
    Versioned workflow graph.

    Attributes:
        id: Unique identifier.
        workflow_definition_id: FK to workflow_definitions.
        version_number: Sequential number within the definition.
        definition: Graph JSON (nodes, edges, visibility).
        canvas_layout: Editor layout, ignored by the engine.
        status: draft, published or archived.
        published_at: When the version was published.
        published_by: Actor that published it.
        change_notes: Free text describing the change.
    """

    __tablename__ = "workflow_versions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    workflow_definition_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("workflow_definitions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    version_number: Mapped[int] = mapped_column(Integer, nullable=False)

    definition: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment="Graph JSON: nodes, edges, visibility",
    )

    canvas_layout: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=VersionStatus.DRAFT,
        index=True,
    )

    published_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    published_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    change_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    definition_ref: Mapped["WorkflowDefinition"] = relationship(
        "WorkflowDefinition",
        back_populates="versions",
        foreign_keys=[workflow_definition_id],
    )

    states: Mapped[list["WorkflowState"]] = relationship(
        "WorkflowState",
        back_populates="version",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("workflow_definition_id", "version_number", name="uq_workflow_version_number"),
        Index("idx_workflow_versions_definition_status", "workflow_definition_id", "status"),
    )

    @property
    def is_draft(self) -> bool:
        return self.status == VersionStatus.DRAFT

    @property
    def is_published(self) -> bool:
        return self.status == VersionStatus.PUBLISHED

    def __repr__(self) -> str:
        return f"<WorkflowVersion(definition={self.workflow_definition_id}, v{self.version_number}, {self.status})>"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workflow_definition_id": self.workflow_definition_id,
            "version_number": self.version_number,
            "definition": self.definition,
            "status": self.status,
            "published_at": isoformat(self.published_at),
            "published_by": self.published_by,
            "change_notes": self.change_notes,
            "created_at": isoformat(self.created_at),
        }
