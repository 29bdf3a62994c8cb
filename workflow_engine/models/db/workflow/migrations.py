# ============================================================================
# SCOPE: WORKFLOW
# Description: Audit of instances moved between workflow versions.
# ============================================================================
"""
WorkflowInstanceMigration model.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..base import Base, JSONType, TimestampMixin, isoformat
from .constants import MigrationType


class WorkflowInstanceMigration(Base, TimestampMixin):
    """
    Version migration record.

    Attributes:
        workflow_instance_id: Migrated instance.
        from_version_id: Version before migration.
        to_version_id: Version after migration.
        migration_type: automatic, manual or admin.
        node_mapping: Old node id to new node id mapping used.
        migrated_by: Actor that triggered the migration.
        notes: Free text.
    """

    __tablename__ = "workflow_instance_migrations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    workflow_instance_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("workflow_instances.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    from_version_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("workflow_versions.id", ondelete="RESTRICT"), nullable=False
    )
    to_version_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("workflow_versions.id", ondelete="RESTRICT"), nullable=False
    )

    migration_type: Mapped[str] = mapped_column(String(20), nullable=False, default=MigrationType.MANUAL)
    node_mapping: Mapped[dict[str, str]] = mapped_column(JSONType, nullable=False, default=dict)
    migrated_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<WorkflowInstanceMigration(instance={self.workflow_instance_id}, "
            f"{self.from_version_id} -> {self.to_version_id}, {self.migration_type})>"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workflow_instance_id": self.workflow_instance_id,
            "from_version_id": self.from_version_id,
            "to_version_id": self.to_version_id,
            "migration_type": self.migration_type,
            "node_mapping": self.node_mapping,
            "migrated_by": self.migrated_by,
            "created_at": isoformat(self.created_at),
        }
