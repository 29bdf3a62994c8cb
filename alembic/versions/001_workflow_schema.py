"""Workflow engine schema.

Revision ID: 001_workflow_schema
Revises: None
Create Date: 2026-10-19

Creates the workflow tables:
- workflow_definitions / workflow_versions: definitions and immutable published graphs
- workflow_states / workflow_transitions: materialized nodes and edges per version
- workflow_approval_gates / workflow_visibility_rules: per-state configuration
- workflow_instances: running instances
- workflow_execution_logs / workflow_transition_logs: audit trail
- workflow_approvals / workflow_approval_responses: open gates and decisions
- workflow_instance_migrations: version migration audit
"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_workflow_schema"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON = sa.JSON().with_variant(JSONB(), "postgresql")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    """Create workflow tables."""

    # ==========================================================================
    # 1. Definitions and versions
    # ==========================================================================
    op.create_table(
        "workflow_definitions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False, comment="Human-readable workflow name"),
        sa.Column("slug", sa.String(100), nullable=False, unique=True, comment="Unique key (e.g., 'officer-hire')"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("entity_type", sa.String(100), nullable=True, comment="Entity type this workflow advances"),
        sa.Column("plugin_name", sa.String(100), nullable=True, comment="Owning plugin"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0", comment="Publish counter"),
        sa.Column("current_version_id", sa.Integer(), nullable=True, comment="Currently published version"),
        sa.Column("trigger_config", JSON, nullable=False, comment="Trigger metadata (event, entityIdField)"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index("ix_workflow_definitions_entity_type", "workflow_definitions", ["entity_type"])
    op.create_index("ix_workflow_definitions_is_active", "workflow_definitions", ["is_active"])
    op.create_index("idx_workflow_definitions_entity_active", "workflow_definitions", ["entity_type", "is_active"])

    op.create_table(
        "workflow_versions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "workflow_definition_id",
            sa.Integer(),
            sa.ForeignKey("workflow_definitions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("definition", JSON, nullable=False, comment="Graph JSON (nodes, edges, visibility)"),
        sa.Column("canvas_layout", JSON, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("published_by", sa.Integer(), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("change_notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("workflow_definition_id", "version_number", name="uq_workflow_version_number"),
    )
    op.create_index("ix_workflow_versions_workflow_definition_id", "workflow_versions", ["workflow_definition_id"])
    op.create_index("ix_workflow_versions_status", "workflow_versions", ["status"])
    op.create_index(
        "idx_workflow_versions_definition_status", "workflow_versions", ["workflow_definition_id", "status"]
    )
    op.create_foreign_key(
        "fk_workflow_definition_current_version",
        "workflow_definitions",
        "workflow_versions",
        ["current_version_id"],
        ["id"],
        ondelete="SET NULL",
    )

    # ==========================================================================
    # 2. Materialized states, transitions, gates and visibility rules
    # ==========================================================================
    op.create_table(
        "workflow_states",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "workflow_version_id",
            sa.Integer(),
            sa.ForeignKey("workflow_versions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("node_id", sa.String(100), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("node_type", sa.String(30), nullable=False),
        sa.Column("state_type", sa.String(20), nullable=False, server_default="intermediate"),
        sa.Column("on_enter_actions", JSON, nullable=False),
        sa.Column("on_exit_actions", JSON, nullable=False),
        sa.Column("config", JSON, nullable=False),
        sa.Column("metadata", JSON, nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("workflow_version_id", "node_id", name="uq_workflow_state_node"),
    )
    op.create_index("ix_workflow_states_workflow_version_id", "workflow_states", ["workflow_version_id"])
    op.create_index("idx_workflow_states_version_type", "workflow_states", ["workflow_version_id", "state_type"])

    op.create_table(
        "workflow_transitions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "workflow_version_id",
            sa.Integer(),
            sa.ForeignKey("workflow_versions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("edge_id", sa.String(100), nullable=False),
        sa.Column(
            "from_state_id", sa.Integer(), sa.ForeignKey("workflow_states.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column(
            "to_state_id", sa.Integer(), sa.ForeignKey("workflow_states.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("port", sa.String(50), nullable=False, server_default="default"),
        sa.Column("trigger_type", sa.String(20), nullable=False, server_default="automatic"),
        sa.Column("conditions", JSON, nullable=False),
        sa.Column("actions", JSON, nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index("ix_workflow_transitions_workflow_version_id", "workflow_transitions", ["workflow_version_id"])
    op.create_index("ix_workflow_transitions_from_state_id", "workflow_transitions", ["from_state_id"])
    op.create_index("idx_workflow_transitions_from_port", "workflow_transitions", ["from_state_id", "port"])

    op.create_table(
        "workflow_approval_gates",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "workflow_state_id",
            sa.Integer(),
            sa.ForeignKey("workflow_states.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("approval_type", sa.String(20), nullable=False, server_default="threshold"),
        sa.Column("required_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("threshold_config", JSON, nullable=False),
        sa.Column("approver_rule", JSON, nullable=False),
        sa.Column("timeout_hours", sa.Float(), nullable=True),
        sa.Column("deadline_spec", sa.String(50), nullable=True),
        sa.Column("escalation_config", JSON, nullable=False),
        sa.Column(
            "timeout_transition_id",
            sa.Integer(),
            sa.ForeignKey("workflow_transitions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "on_satisfied_transition_id",
            sa.Integer(),
            sa.ForeignKey("workflow_transitions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "on_denied_transition_id",
            sa.Integer(),
            sa.ForeignKey("workflow_transitions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("allow_delegation", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )

    op.create_table(
        "workflow_visibility_rules",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "workflow_state_id",
            sa.Integer(),
            sa.ForeignKey("workflow_states.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("rule_type", sa.String(30), nullable=False),
        sa.Column("target", sa.String(100), nullable=False, server_default="*"),
        sa.Column("condition", JSON, nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index(
        "idx_workflow_visibility_state_type", "workflow_visibility_rules", ["workflow_state_id", "rule_type"]
    )

    # ==========================================================================
    # 3. Instances and audit logs
    # ==========================================================================
    op.create_table(
        "workflow_instances",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "workflow_definition_id",
            sa.Integer(),
            sa.ForeignKey("workflow_definitions.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "workflow_version_id",
            sa.Integer(),
            sa.ForeignKey("workflow_versions.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("entity_type", sa.String(100), nullable=True),
        sa.Column("entity_id", sa.String(100), nullable=True),
        sa.Column(
            "current_state_id", sa.Integer(), sa.ForeignKey("workflow_states.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column(
            "previous_state_id", sa.Integer(), sa.ForeignKey("workflow_states.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("context", JSON, nullable=False),
        sa.Column("error_info", JSON, nullable=True),
        sa.Column("started_by", sa.Integer(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("state_entered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_workflow_instances_workflow_definition_id", "workflow_instances", ["workflow_definition_id"])
    op.create_index("ix_workflow_instances_workflow_version_id", "workflow_instances", ["workflow_version_id"])
    op.create_index("ix_workflow_instances_status", "workflow_instances", ["status"])
    op.create_index("idx_workflow_instances_entity", "workflow_instances", ["entity_type", "entity_id"])
    op.create_index(
        "idx_workflow_instances_definition_status", "workflow_instances", ["workflow_definition_id", "status"]
    )

    op.create_table(
        "workflow_execution_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "workflow_instance_id",
            sa.Integer(),
            sa.ForeignKey("workflow_instances.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("node_id", sa.String(100), nullable=False),
        sa.Column("node_type", sa.String(30), nullable=False),
        sa.Column("attempt_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("input_data", JSON, nullable=False),
        sa.Column("output_data", JSON, nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_workflow_execution_logs_workflow_instance_id", "workflow_execution_logs", ["workflow_instance_id"])
    op.create_index(
        "idx_workflow_execution_logs_instance_node", "workflow_execution_logs", ["workflow_instance_id", "node_id"]
    )

    op.create_table(
        "workflow_transition_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "workflow_instance_id",
            sa.Integer(),
            sa.ForeignKey("workflow_instances.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "from_state_id", sa.Integer(), sa.ForeignKey("workflow_states.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("to_state_id", sa.Integer(), sa.ForeignKey("workflow_states.id", ondelete="SET NULL"), nullable=True),
        sa.Column(
            "transition_id",
            sa.Integer(),
            sa.ForeignKey("workflow_transitions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("trigger_type", sa.String(20), nullable=False),
        sa.Column("triggered_by", sa.Integer(), nullable=True),
        sa.Column("context_snapshot", JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "ix_workflow_transition_logs_workflow_instance_id", "workflow_transition_logs", ["workflow_instance_id"]
    )

    # ==========================================================================
    # 4. Approvals
    # ==========================================================================
    op.create_table(
        "workflow_approvals",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "workflow_instance_id",
            sa.Integer(),
            sa.ForeignKey("workflow_instances.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("node_id", sa.String(100), nullable=False),
        sa.Column(
            "approval_gate_id",
            sa.Integer(),
            sa.ForeignKey("workflow_approval_gates.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "execution_log_id",
            sa.Integer(),
            sa.ForeignKey("workflow_execution_logs.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("approver_type", sa.String(30), nullable=False),
        sa.Column("approver_config", JSON, nullable=False),
        sa.Column("approval_type", sa.String(20), nullable=False, server_default="threshold"),
        sa.Column("required_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("approved_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rejected_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("escalation_config", JSON, nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_workflow_approvals_workflow_instance_id", "workflow_approvals", ["workflow_instance_id"])
    op.create_index("ix_workflow_approvals_status", "workflow_approvals", ["status"])
    op.create_index("ix_workflow_approvals_deadline", "workflow_approvals", ["deadline"])
    op.create_index(
        "idx_workflow_approvals_instance_node_status",
        "workflow_approvals",
        ["workflow_instance_id", "node_id", "status"],
    )
    op.create_index("idx_workflow_approvals_status_deadline", "workflow_approvals", ["status", "deadline"])

    op.create_table(
        "workflow_approval_responses",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "workflow_approval_id",
            sa.Integer(),
            sa.ForeignKey("workflow_approvals.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("member_id", sa.Integer(), nullable=False),
        sa.Column("decision", sa.String(20), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        *_timestamps(),
        sa.UniqueConstraint("workflow_approval_id", "member_id", name="uq_workflow_approval_member"),
    )
    op.create_index(
        "ix_workflow_approval_responses_workflow_approval_id", "workflow_approval_responses", ["workflow_approval_id"]
    )

    # ==========================================================================
    # 5. Migration audit
    # ==========================================================================
    op.create_table(
        "workflow_instance_migrations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "workflow_instance_id",
            sa.Integer(),
            sa.ForeignKey("workflow_instances.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "from_version_id", sa.Integer(), sa.ForeignKey("workflow_versions.id", ondelete="RESTRICT"), nullable=False
        ),
        sa.Column(
            "to_version_id", sa.Integer(), sa.ForeignKey("workflow_versions.id", ondelete="RESTRICT"), nullable=False
        ),
        sa.Column("migration_type", sa.String(20), nullable=False, server_default="manual"),
        sa.Column("node_mapping", JSON, nullable=False),
        sa.Column("migrated_by", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_workflow_instance_migrations_workflow_instance_id",
        "workflow_instance_migrations",
        ["workflow_instance_id"],
    )


def downgrade() -> None:
    """Drop workflow tables."""
    op.drop_table("workflow_instance_migrations")
    op.drop_table("workflow_approval_responses")
    op.drop_table("workflow_approvals")
    op.drop_table("workflow_transition_logs")
    op.drop_table("workflow_execution_logs")
    op.drop_table("workflow_instances")
    op.drop_table("workflow_visibility_rules")
    op.drop_table("workflow_approval_gates")
    op.drop_table("workflow_transitions")
    op.drop_table("workflow_states")
    op.drop_constraint("fk_workflow_definition_current_version", "workflow_definitions", type_="foreignkey")
    op.drop_table("workflow_versions")
    op.drop_table("workflow_definitions")
