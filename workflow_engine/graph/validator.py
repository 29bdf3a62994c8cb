"""
Graph validation.

Rejects unknown registry keys and structural problems at publish time so
they never surface mid-execution.
"""

from typing import Any

from pydantic import ValidationError

from workflow_engine.conditions.rule_evaluator import RuleEvaluator
from workflow_engine.models.db.workflow.constants import NodeType, Port, VisibilityRuleType
from workflow_engine.registry import WorkflowRegistries
from workflow_engine.registry.resolvers import PERMISSION_RESOLVER, ROLE_RESOLVER

from .schemas import ActionRef, ApprovalGateConfig, DynamicApprovers, PermissionApprovers, RoleApprovers, WorkflowGraph

_CONDITION_PORTS = {Port.TRUE, Port.FALSE}
_APPROVAL_PORTS = {Port.APPROVED, Port.REJECTED, Port.EXPIRED}


def _format_validation_error(prefix: str, error: ValidationError) -> list[str]:
    messages = []
    for item in error.errors(include_url=False):
        location = ".".join(str(part) for part in item["loc"])
        messages.append(f"{prefix}: {location}: {item['msg']}" if location else f"{prefix}: {item['msg']}")
    return messages


def parse_graph(definition: dict[str, Any]) -> tuple[WorkflowGraph | None, list[str]]:
    try:
        return WorkflowGraph.from_json(definition), []
    except ValidationError as e:
        return None, _format_validation_error("graph", e)


def validate_graph(definition: dict[str, Any] | WorkflowGraph, registries: WorkflowRegistries) -> list[str]:
    """Return a list of human-readable problems; empty when the graph is valid."""
    if isinstance(definition, WorkflowGraph):
        graph = definition
    else:
        graph, errors = parse_graph(definition)
        if graph is None:
            return errors

    errors: list[str] = []
    rules = RuleEvaluator(registries.conditions)

    triggers = graph.trigger_node_ids
    if len(triggers) != 1:
        errors.append(f"Workflow must have exactly one trigger node, found {len(triggers)}")
    if not graph.end_node_ids:
        errors.append("Workflow must have at least one end node")

    for edge in graph.edges:
        if edge.source not in graph.nodes:
            errors.append(f"Edge '{edge.id}' starts at unknown node '{edge.source}'")
        if edge.target not in graph.nodes:
            errors.append(f"Edge '{edge.id}' targets unknown node '{edge.target}'")
        errors.extend(_check_conditions(rules, registries, edge.conditions, f"Edge '{edge.id}'"))
        errors.extend(_check_actions(registries, edge.actions, f"Edge '{edge.id}'"))

    if len(triggers) == 1:
        unreachable = set(graph.nodes) - graph.reachable_from(triggers[0])
        for node_id in sorted(unreachable):
            errors.append(f"Node '{node_id}' is not reachable from the trigger")

    for node_id, node in graph.nodes.items():
        label = f"Node '{node_id}'"
        errors.extend(_check_actions(registries, node.on_enter, f"{label} onEnter"))
        errors.extend(_check_actions(registries, node.on_exit, f"{label} onExit"))
        outgoing = graph.outgoing(node_id)

        if node.type != NodeType.END and not outgoing:
            errors.append(f"{label} has no outgoing edge")
        if node.type == NodeType.END and outgoing:
            errors.append(f"{label} is an end node but has outgoing edges")

        if node.type == NodeType.TRIGGER:
            event = node.config.get("event")
            if event and event not in registries.triggers:
                errors.append(f"{label} listens for unknown trigger '{event}'")

        elif node.type == NodeType.ACTION:
            action = node.config.get("action")
            if not action:
                errors.append(f"{label} has no action configured")
            elif action not in registries.actions:
                errors.append(f"{label} uses unknown action '{action}'")

        elif node.type == NodeType.CONDITION:
            if "condition" in node.config:
                errors.extend(_check_conditions(rules, registries, [node.config["condition"]], label))
                for edge in outgoing:
                    if edge.port not in _CONDITION_PORTS:
                        errors.append(f"{label} has edge on port '{edge.port}', expected 'true' or 'false'")
            elif not any(edge.conditions or edge.is_default for edge in outgoing):
                # Branch nodes without a node condition choose among edge conditions
                errors.append(f"{label} has neither a condition nor conditional edges")

        elif node.type == NodeType.APPROVAL:
            errors.extend(_check_approval(registries, node.config, label))
            for edge in outgoing:
                if edge.port not in _APPROVAL_PORTS:
                    errors.append(f"{label} has edge on port '{edge.port}', expected approved, rejected or expired")

        elif node.type == NodeType.DELAY:
            if not any(edge.trigger == "scheduled" for edge in outgoing):
                errors.append(f"{label} is a delay node without a scheduled edge")

    for node_id, visibility_rules in graph.visibility.items():
        if node_id not in graph.nodes:
            errors.append(f"Visibility rules reference unknown node '{node_id}'")
        for rule in visibility_rules:
            if rule.rule_type not in set(VisibilityRuleType):
                errors.append(f"Visibility rule on '{node_id}' has unknown type '{rule.rule_type}'")

    return errors


def _check_actions(registries: WorkflowRegistries, actions: list[ActionRef], label: str) -> list[str]:
    return [
        f"{label} uses unknown action '{action.action}'"
        for action in actions
        if action.action not in registries.actions
    ]


def _check_conditions(
    rules: RuleEvaluator, registries: WorkflowRegistries, conditions: list[Any], label: str
) -> list[str]:
    errors = []
    for condition in conditions:
        referenced = rules.referenced_types(condition)
        if not referenced:
            errors.append(f"{label} has a condition with no recognizable type")
        for condition_type in referenced:
            if condition_type not in registries.conditions:
                errors.append(f"{label} uses unknown condition '{condition_type}'")
    return errors


def _check_approval(registries: WorkflowRegistries, config: dict[str, Any], label: str) -> list[str]:
    try:
        gate = ApprovalGateConfig.model_validate(config)
    except ValidationError as e:
        return _format_validation_error(label, e)

    approver = gate.approver
    resolver_key = None
    if isinstance(approver, DynamicApprovers):
        resolver_key = approver.resolver
    elif isinstance(approver, PermissionApprovers):
        resolver_key = PERMISSION_RESOLVER
    elif isinstance(approver, RoleApprovers):
        resolver_key = ROLE_RESOLVER

    if resolver_key and resolver_key not in registries.resolvers:
        return [f"{label} uses unknown approver resolver '{resolver_key}'"]
    return []
