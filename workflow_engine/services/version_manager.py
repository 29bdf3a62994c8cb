"""
Version Manager

Draft / publish / archive lifecycle of workflow versions and migration of
running instances between versions.

Publishing validates the graph against the registries and materializes it
into WorkflowState, WorkflowTransition, WorkflowApprovalGate and
WorkflowVisibilityRule rows. A published graph is never edited again;
changes go into a new draft.
"""

import copy
import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from workflow_engine.core.exceptions import (
    InstanceNotFound,
    InvalidWorkflowGraph,
    MigrationError,
    VersionNotEditable,
    VersionNotFound,
    WorkflowDefinitionError,
)
from workflow_engine.database import session_scope
from workflow_engine.graph import WorkflowGraph, validate_graph
from workflow_engine.graph.schemas import ApprovalGateConfig
from workflow_engine.models.db.workflow import (
    WorkflowApprovalGate,
    WorkflowDefinition,
    WorkflowInstanceMigration,
    WorkflowState,
    WorkflowTransition,
    WorkflowTransitionLog,
    WorkflowVersion,
    WorkflowVisibilityRule,
)
from workflow_engine.models.db.workflow.constants import (
    STATE_TYPE_BY_NODE_TYPE,
    ApprovalStatus,
    MigrationType,
    NodeType,
    Port,
    TERMINAL_INSTANCE_STATUSES,
    TriggerType,
    VersionStatus,
)
from workflow_engine.registry import WorkflowRegistries
from workflow_engine.repositories import WorkflowRepository

logger = logging.getLogger(__name__)


class VersionManager:
    """Manages workflow definitions and their versions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], registries: WorkflowRegistries):
        self.session_factory = session_factory
        self.registries = registries

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    async def create_definition(
        self,
        name: str,
        slug: str,
        entity_type: str | None = None,
        plugin_name: str | None = None,
        description: str | None = None,
        is_default: bool = False,
    ) -> WorkflowDefinition:
        async with session_scope(self.session_factory) as session:
            repo = WorkflowRepository(session)
            if await repo.get_definition_by_slug(slug) is not None:
                raise WorkflowDefinitionError(
                    f"Workflow definition '{slug}' already exists", "DEFINITION_EXISTS", {"slug": slug}
                )
            definition = WorkflowDefinition(
                name=name,
                slug=slug,
                entity_type=entity_type,
                plugin_name=plugin_name,
                description=description,
                is_default=is_default,
                is_active=False,
                version=0,
                trigger_config={},
            )
            await repo.add(definition)
            logger.info(f"Created workflow definition '{slug}' ({definition.id})")
            return definition

    async def install(
        self,
        slug: str,
        name: str,
        graph: dict[str, Any],
        *,
        entity_type: str | None = None,
        plugin_name: str | None = None,
        description: str | None = None,
        published_by: int | None = None,
        change_notes: str | None = None,
    ) -> WorkflowVersion:
        """Create the definition when missing, then draft and publish `graph`."""
        async with session_scope(self.session_factory) as session:
            existing = await WorkflowRepository(session).get_definition_by_slug(slug)
            definition_id = existing.id if existing else None

        if definition_id is None:
            definition = await self.create_definition(
                name, slug, entity_type=entity_type, plugin_name=plugin_name, description=description
            )
            definition_id = definition.id

        draft = await self.create_draft(definition_id, graph, created_by=published_by, change_notes=change_notes)
        return await self.publish(draft.id, published_by=published_by)

    # ------------------------------------------------------------------
    # Drafts
    # ------------------------------------------------------------------

    async def create_draft(
        self,
        definition_id: int,
        graph: dict[str, Any],
        created_by: int | None = None,
        change_notes: str | None = None,
        canvas_layout: dict[str, Any] | None = None,
    ) -> WorkflowVersion:
        async with session_scope(self.session_factory) as session:
            repo = WorkflowRepository(session)
            definition = await repo.get_definition(definition_id)
            if definition is None:
                raise WorkflowDefinitionError(
                    f"Workflow definition {definition_id} not found",
                    "DEFINITION_NOT_FOUND",
                    {"definition_id": definition_id},
                )
            version = WorkflowVersion(
                workflow_definition_id=definition_id,
                version_number=await repo.next_version_number(definition_id),
                definition=copy.deepcopy(graph),
                canvas_layout=canvas_layout or {},
                status=VersionStatus.DRAFT,
                created_by=created_by,
                change_notes=change_notes,
            )
            await repo.add(version)
            logger.info(f"Created draft v{version.version_number} of '{definition.slug}'")
            return version

    async def update_draft(
        self,
        version_id: int,
        graph: dict[str, Any],
        canvas_layout: dict[str, Any] | None = None,
        change_notes: str | None = None,
    ) -> WorkflowVersion:
        async with session_scope(self.session_factory) as session:
            version = await self._get_version(session, version_id, for_update=True)
            if not version.is_draft:
                raise VersionNotEditable(version_id, version.status)
            version.definition = copy.deepcopy(graph)
            if canvas_layout is not None:
                version.canvas_layout = canvas_layout
            if change_notes is not None:
                version.change_notes = change_notes
            return version

    def validate_definition(self, graph: dict[str, Any] | WorkflowGraph) -> list[str]:
        return validate_graph(graph, self.registries)

    # ------------------------------------------------------------------
    # Publish / archive
    # ------------------------------------------------------------------

    async def publish(self, version_id: int, published_by: int | None = None) -> WorkflowVersion:
        """
        Validate and publish a draft.

        Archives the previously published version, materializes the graph
        rows, points the definition at the new version and activates it.

        Raises:
            VersionNotFound: Unknown version
            VersionNotEditable: Version is not a draft
            InvalidWorkflowGraph: Validation errors (listed in details)
        """
        async with session_scope(self.session_factory) as session:
            repo = WorkflowRepository(session)
            version = await self._get_version(session, version_id, for_update=True)
            if not version.is_draft:
                raise VersionNotEditable(version_id, version.status)

            errors = self.validate_definition(version.definition)
            if errors:
                logger.warning(f"Version {version_id} failed validation: {errors}")
                raise InvalidWorkflowGraph(errors, version_id)

            graph = WorkflowGraph.from_json(version.definition)
            definition = await repo.get_definition(version.workflow_definition_id)

            for previous in await repo.get_versions(definition.id):
                if previous.id != version.id and previous.status == VersionStatus.PUBLISHED:
                    previous.status = VersionStatus.ARCHIVED
                    logger.info(f"Archived v{previous.version_number} of '{definition.slug}'")

            await self._materialize(session, version, graph)

            now = datetime.now(UTC)
            version.definition = graph.to_json()
            version.status = VersionStatus.PUBLISHED
            version.published_at = now
            version.published_by = published_by

            trigger_config = graph.node(graph.trigger_node_id).config
            definition.current_version_id = version.id
            definition.version = (definition.version or 0) + 1
            definition.is_active = True
            definition.trigger_config = {
                key: trigger_config[key] for key in ("event", "entityIdField") if key in trigger_config
            }
            await session.flush()

            logger.info(f"Published v{version.version_number} of '{definition.slug}' (definition version {definition.version})")
            return version

    async def _materialize(self, session: AsyncSession, version: WorkflowVersion, graph: WorkflowGraph) -> None:
        states: dict[str, WorkflowState] = {}
        for position, (node_id, node) in enumerate(graph.nodes.items()):
            states[node_id] = WorkflowState(
                workflow_version_id=version.id,
                node_id=node_id,
                name=node.label or node_id,
                node_type=node.type,
                state_type=STATE_TYPE_BY_NODE_TYPE[node.type],
                on_enter_actions=[ref.model_dump(mode="json") for ref in node.on_enter],
                on_exit_actions=[ref.model_dump(mode="json") for ref in node.on_exit],
                config=copy.deepcopy(node.config),
                state_metadata={"position": position},
            )
            session.add(states[node_id])
        await session.flush()

        transitions_by_port: dict[tuple[str, str], WorkflowTransition] = {}
        for priority, edge in enumerate(graph.edges):
            transition = WorkflowTransition(
                workflow_version_id=version.id,
                edge_id=edge.id,
                from_state_id=states[edge.source].id,
                to_state_id=states[edge.target].id,
                port=edge.port,
                trigger_type=edge.trigger,
                conditions=copy.deepcopy(edge.conditions),
                actions=[ref.model_dump(mode="json") for ref in edge.actions],
                priority=priority,
                is_default=edge.is_default,
            )
            session.add(transition)
            transitions_by_port.setdefault((edge.source, edge.port), transition)
        await session.flush()

        for node_id, node in graph.nodes.items():
            if node.type != NodeType.APPROVAL:
                continue
            gate = ApprovalGateConfig.model_validate(node.config)

            def transition_id(port: str) -> int | None:
                transition = transitions_by_port.get((node_id, port))
                return transition.id if transition else None

            session.add(
                WorkflowApprovalGate(
                    workflow_state_id=states[node_id].id,
                    approval_type=gate.approval_type,
                    required_count=gate.required_count or 1,
                    threshold_config=gate.threshold.model_dump() if gate.threshold else {},
                    approver_rule=gate.approver.model_dump(mode="json", by_alias=True),
                    timeout_hours=gate.timeout_hours,
                    deadline_spec=gate.deadline,
                    escalation_config=copy.deepcopy(gate.escalation),
                    on_satisfied_transition_id=transition_id(Port.APPROVED),
                    on_denied_transition_id=transition_id(Port.REJECTED),
                    timeout_transition_id=transition_id(Port.EXPIRED),
                    allow_delegation=gate.allow_delegation,
                )
            )

        for node_id, rules in graph.visibility.items():
            for rule in rules:
                session.add(
                    WorkflowVisibilityRule(
                        workflow_state_id=states[node_id].id,
                        rule_type=rule.rule_type,
                        target=rule.target,
                        condition=copy.deepcopy(rule.condition),
                        priority=rule.priority,
                    )
                )
        await session.flush()
        logger.debug(f"Materialized {len(states)} states and {len(graph.edges)} transitions for version {version.id}")

    async def archive(self, version_id: int) -> WorkflowVersion:
        async with session_scope(self.session_factory) as session:
            repo = WorkflowRepository(session)
            version = await self._get_version(session, version_id, for_update=True)
            version.status = VersionStatus.ARCHIVED

            definition = await repo.get_definition(version.workflow_definition_id)
            if definition.current_version_id == version.id:
                definition.current_version_id = None
                definition.is_active = False
                logger.warning(f"Archived the current version of '{definition.slug}'; definition deactivated")
            return version

    # ------------------------------------------------------------------
    # Migration / comparison
    # ------------------------------------------------------------------

    async def migrate_instance(
        self,
        instance_id: int,
        target_version_id: int,
        node_mapping: dict[str, str] | None = None,
        migrated_by: int | None = None,
        migration_type: str = MigrationType.MANUAL,
        notes: str | None = None,
    ) -> WorkflowInstanceMigration:
        """
        Move a running instance onto another published version of its definition.

        Nodes map to equally named nodes unless `node_mapping` says otherwise;
        the current node must map to a node of the target version.
        """
        async with session_scope(self.session_factory) as session:
            repo = WorkflowRepository(session)
            instance = await repo.get_instance(instance_id, for_update=True)
            if instance is None:
                raise InstanceNotFound(instance_id)
            if instance.status in TERMINAL_INSTANCE_STATUSES:
                raise MigrationError(
                    f"Instance {instance_id} is {instance.status} and cannot be migrated",
                    {"instance_id": instance_id, "status": instance.status},
                )

            target = await self._get_version(session, target_version_id)
            details = {"instance_id": instance_id, "to_version_id": target_version_id}
            if not target.is_published:
                raise MigrationError(f"Target version {target_version_id} is not published", details)
            if target.workflow_definition_id != instance.workflow_definition_id:
                raise MigrationError(f"Target version {target_version_id} belongs to another workflow", details)

            source_states = await repo.get_states(instance.workflow_version_id)
            target_states = await repo.get_states(target.id)
            mapping = {node_id: node_id for node_id in source_states if node_id in target_states}
            mapping.update(node_mapping or {})

            current = await repo.get_state(instance.current_state_id)
            new_node = mapping.get(current.node_id) if current else None
            if new_node not in target_states:
                raise MigrationError(
                    f"Current node '{current.node_id if current else None}' has no counterpart in version {target_version_id}",
                    {**details, "node_id": current.node_id if current else None},
                )

            previous = await repo.get_state(instance.previous_state_id)
            previous_node = mapping.get(previous.node_id) if previous else None

            for approval in await repo.get_approvals_for_instance(instance_id, ApprovalStatus.PENDING):
                if target_states[new_node].node_type == NodeType.APPROVAL and approval.node_id == current.node_id:
                    approval.node_id = new_node
                else:
                    approval.status = ApprovalStatus.CANCELLED
                    approval.resolved_at = datetime.now(UTC)

            migration = WorkflowInstanceMigration(
                workflow_instance_id=instance_id,
                from_version_id=instance.workflow_version_id,
                to_version_id=target.id,
                migration_type=migration_type,
                node_mapping=mapping,
                migrated_by=migrated_by,
                notes=notes,
            )
            await repo.add(migration)

            from_state_id = instance.current_state_id
            instance.workflow_version_id = target.id
            instance.current_state_id = target_states[new_node].id
            instance.previous_state_id = target_states[previous_node].id if previous_node in target_states else None
            await repo.add(
                WorkflowTransitionLog(
                    workflow_instance_id=instance_id,
                    from_state_id=from_state_id,
                    to_state_id=instance.current_state_id,
                    trigger_type=TriggerType.MANUAL,
                    triggered_by=migrated_by,
                    context_snapshot={"migration_id": migration.id, "node_mapping": mapping},
                    created_at=datetime.now(UTC),
                )
            )
            logger.info(
                f"Migrated instance {instance_id} to version {target.id} ('{current.node_id}' -> '{new_node}')"
            )
            return migration

    async def compare_versions(self, version_a_id: int, version_b_id: int) -> dict[str, list[str]]:
        """Node ids added, removed and modified going from version A to version B."""
        async with session_scope(self.session_factory) as session:
            version_a = await self._get_version(session, version_a_id)
            version_b = await self._get_version(session, version_b_id)
            graph_a = WorkflowGraph.from_json(version_a.definition)
            graph_b = WorkflowGraph.from_json(version_b.definition)

        def signature(graph: WorkflowGraph, node_id: str) -> dict[str, Any]:
            return {
                "node": graph.node(node_id).model_dump(mode="json"),
                "edges": sorted(
                    (edge.port, edge.target, edge.trigger, repr(edge.conditions))
                    for edge in graph.outgoing(node_id)
                ),
            }

        nodes_a = set(graph_a.nodes)
        nodes_b = set(graph_b.nodes)
        return {
            "added": sorted(nodes_b - nodes_a),
            "removed": sorted(nodes_a - nodes_b),
            "modified": sorted(
                node_id
                for node_id in nodes_a & nodes_b
                if signature(graph_a, node_id) != signature(graph_b, node_id)
            ),
        }

    async def list_versions(self, definition_id: int) -> list[WorkflowVersion]:
        async with session_scope(self.session_factory) as session:
            return await WorkflowRepository(session).get_versions(definition_id)

    async def get_states(self, version_id: int) -> list[WorkflowState]:
        async with session_scope(self.session_factory) as session:
            result = await session.execute(
                select(WorkflowState).where(WorkflowState.workflow_version_id == version_id).order_by(WorkflowState.id)
            )
            return list(result.scalars().all())

    @staticmethod
    async def _get_version(session: AsyncSession, version_id: int, for_update: bool = False) -> WorkflowVersion:
        version = await WorkflowRepository(session).get_version(version_id, for_update=for_update)
        if version is None:
            raise VersionNotFound(version_id)
        return version
