# ============================================================================
# SCOPE: WORKFLOW
# Description: Workflow definitions registered by plugins.
#              One definition owns many immutable versions.
# ============================================================================
"""
WorkflowDefinition model - Named workflow bound to an entity type.

A definition is the stable handle a trigger starts ("officer-hire"); the
graph itself lives in WorkflowVersion rows. Exactly one version is current
per active definition.

Usage:
    definition = await session.execute(
        select(WorkflowDefinition).where(
            WorkflowDefinition.slug == "officer-hire",
            WorkflowDefinition.is_active.is_(True),
        )
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..base import Base, JSONType, TimestampMixin, isoformat

if TYPE_CHECKING:
    from .versions import WorkflowVersion


class WorkflowDefinition(Base, TimestampMixin):
    """
    Workflow definition.

    Attributes:
        id: Unique identifier.
        name: Human-readable name.
        slug: Unique key used by triggers and the CLI.
        entity_type: Target entity type (e.g., "Officers.Officers").
        plugin_name: Plugin that contributed the definition.
        version: Counter bumped on every publish.
        current_version_id: Published version new instances start on.
        trigger_config: Trigger metadata (event name, entity id field).
        is_active: Whether new instances may be started.
        is_default: Default workflow for its entity type.
    """

    __tablename__ = "workflow_definitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Human-readable workflow name",
    )

    slug: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
        comment="Unique key (e.g., 'officer-hire')",
    )

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    entity_type: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        index=True,
        comment="Entity type this workflow advances",
    )

    plugin_name: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        comment="Owning plugin",
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Publish counter",
    )

    current_version_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey(
            "workflow_versions.id",
            ondelete="SET NULL",
            use_alter=True,
            name="fk_workflow_definition_current_version",
        ),
        nullable=True,
        comment="Currently published version",
    )

    trigger_config: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment="Trigger metadata (event, entityIdField)",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        index=True,
    )

    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    versions: Mapped[list["WorkflowVersion"]] = relationship(
        "WorkflowVersion",
        back_populates="definition_ref",
        foreign_keys="WorkflowVersion.workflow_definition_id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (Index("idx_workflow_definitions_entity_active", "entity_type", "is_active"),)

    def __repr__(self) -> str:
        return f"<WorkflowDefinition(slug='{self.slug}', version={self.version})>"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "entity_type": self.entity_type,
            "plugin_name": self.plugin_name,
            "version": self.version,
            "current_version_id": self.current_version_id,
            "trigger_config": self.trigger_config,
            "is_active": self.is_active,
            "is_default": self.is_default,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
