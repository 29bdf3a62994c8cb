"""
Workflow graph schemas.

Pydantic models for the graph JSON stored on WorkflowVersion.definition, and
the tagged configs of approval nodes (threshold, approver rule, escalation).
Configs are decoded once when a gate is opened instead of being re-parsed at
every call site.

Usage:
    graph = WorkflowGraph.from_json(version.definition)
    trigger = graph.trigger_node_id
    edges = graph.outgoing("needs_warrant", port="true")
"""

import math
from datetime import UTC, datetime, timedelta
from typing import Annotated, Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

from workflow_engine.core.context import parse_deadline
from workflow_engine.models.db.workflow.constants import ApprovalType, NodeType, Port, TriggerType


def normalize_port(port: str | None) -> str:
    """"next", "output-N" and empty ports all mean the default port."""
    if not port or port == "next" or port.startswith("output-"):
        return Port.DEFAULT
    return port


# ============================================================================
# GRAPH
# ============================================================================


class ActionRef(BaseModel):
    """Reference to a registered action with its parameters."""

    model_config = ConfigDict(extra="allow")

    action: str
    params: dict[str, Any] = Field(default_factory=dict)


class NodeOutput(BaseModel):
    port: str = Port.DEFAULT
    target: str

    @field_validator("port", mode="before")
    @classmethod
    def _normalize(cls, value: str | None) -> str:
        return normalize_port(value)


class NodeDefinition(BaseModel):
    """Graph node."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    type: NodeType
    label: str | None = None
    config: dict[str, Any] = Field(default_factory=dict)
    on_enter: list[ActionRef] = Field(default_factory=list, alias="onEnter")
    on_exit: list[ActionRef] = Field(default_factory=list, alias="onExit")
    outputs: list[NodeOutput] = Field(default_factory=list)


class EdgeDefinition(BaseModel):
    """Graph edge; accepts both source/target and from/to spellings."""

    model_config = ConfigDict(populate_by_name=True)

    id: str | None = None
    source: str = Field(validation_alias=AliasChoices("source", "from"))
    target: str = Field(validation_alias=AliasChoices("target", "to"))
    port: str = Field(Port.DEFAULT, validation_alias=AliasChoices("port", "sourcePort", "sourceHandle"))
    trigger: TriggerType = TriggerType.AUTOMATIC
    conditions: list[Any] = Field(default_factory=list)
    actions: list[ActionRef] = Field(default_factory=list)
    is_default: bool = Field(False, validation_alias=AliasChoices("isDefault", "is_default"))

    @field_validator("port", mode="before")
    @classmethod
    def _normalize(cls, value: str | None) -> str:
        return normalize_port(value)


class VisibilityRuleDefinition(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    rule_type: str = Field(validation_alias=AliasChoices("rule_type", "ruleType", "type"))
    target: str = "*"
    condition: dict[str, Any] | None = None
    priority: int = 0


class WorkflowGraph(BaseModel):
    """Complete workflow graph."""

    nodes: dict[str, NodeDefinition]
    edges: list[EdgeDefinition] = Field(default_factory=list)
    visibility: dict[str, list[VisibilityRuleDefinition]] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _fold_outputs_into_edges(self) -> "WorkflowGraph":
        # Node-level "outputs" are shorthand for unconditional edges
        for node_id, node in self.nodes.items():
            for output in node.outputs:
                self.edges.append(EdgeDefinition(source=node_id, target=output.target, port=output.port))
            node.outputs = []
        for index, edge in enumerate(self.edges):
            if not edge.id:
                edge.id = f"{edge.source}:{edge.port}:{index}"
        return self

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "WorkflowGraph":
        return cls.model_validate(data)

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def node(self, node_id: str) -> NodeDefinition:
        return self.nodes[node_id]

    @property
    def trigger_node_ids(self) -> list[str]:
        return [node_id for node_id, node in self.nodes.items() if node.type == NodeType.TRIGGER]

    @property
    def trigger_node_id(self) -> str | None:
        triggers = self.trigger_node_ids
        return triggers[0] if triggers else None

    @property
    def end_node_ids(self) -> list[str]:
        return [node_id for node_id, node in self.nodes.items() if node.type == NodeType.END]

    def outgoing(self, node_id: str, port: str | None = None) -> list[EdgeDefinition]:
        """Edges leaving `node_id` in declaration order, optionally on one port."""
        return [
            edge
            for edge in self.edges
            if edge.source == node_id and (port is None or edge.port == normalize_port(port))
        ]

    def reachable_from(self, start: str) -> set[str]:
        seen = {start}
        stack = [start]
        while stack:
            current = stack.pop()
            for edge in self.outgoing(current):
                if edge.target not in seen:
                    seen.add(edge.target)
                    stack.append(edge.target)
        return seen


# ============================================================================
# APPROVAL GATE CONFIG
# ============================================================================


class FixedThreshold(BaseModel):
    type: Literal["fixed"] = "fixed"
    count: int = Field(1, ge=1)

    def required(self, pool_size: int) -> int:
        return self.count


class PercentageThreshold(BaseModel):
    type: Literal["percentage"] = "percentage"
    percent: float = Field(gt=0, le=100)

    def required(self, pool_size: int) -> int:
        return max(1, math.ceil(self.percent / 100 * pool_size))


ThresholdConfig = Annotated[FixedThreshold | PercentageThreshold, Field(discriminator="type")]


class StaticApprovers(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["static"] = "static"
    member_ids: list[int] = Field(default_factory=list, alias="memberIds")


class MemberApprover(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["member"] = "member"
    member_id: int | str = Field(alias="memberId")


class PermissionApprovers(BaseModel):
    type: Literal["permission"] = "permission"
    permission: str
    scope: dict[str, Any] = Field(default_factory=dict)


class RoleApprovers(BaseModel):
    type: Literal["role"] = "role"
    role: str
    scope: dict[str, Any] = Field(default_factory=dict)


class DynamicApprovers(BaseModel):
    type: Literal["dynamic"] = "dynamic"
    resolver: str
    config: dict[str, Any] = Field(default_factory=dict)


ApproverRule = Annotated[
    StaticApprovers | MemberApprover | PermissionApprovers | RoleApprovers | DynamicApprovers,
    Field(discriminator="type"),
]

_approver_rule_adapter: TypeAdapter = TypeAdapter(ApproverRule)


def parse_approver_rule(data: dict[str, Any]) -> ApproverRule:
    return _approver_rule_adapter.validate_python(data)


class AutoApprove(BaseModel):
    action: Literal["auto_approve"] = "auto_approve"


class AutoReject(BaseModel):
    action: Literal["auto_reject"] = "auto_reject"


class Reassign(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: Literal["reassign"] = "reassign"
    approver: ApproverRule
    extend_hours: int | None = Field(None, alias="extendHours", ge=1)


class Notify(BaseModel):
    action: Literal["notify"] = "notify"
    recipients: list[int] = Field(default_factory=list)
    template: str = "workflow.approval_expired"


class Expire(BaseModel):
    action: Literal["expire"] = "expire"


EscalationRule = AutoApprove | AutoReject | Reassign | Notify | Expire

_ESCALATION_TYPES: dict[str, type[BaseModel]] = {
    "auto_approve": AutoApprove,
    "auto_reject": AutoReject,
    "reassign": Reassign,
    "notify": Notify,
    "expire": Expire,
}


def parse_escalation(data: dict[str, Any] | None) -> EscalationRule:
    """Decode escalation config; absent or unknown actions fall back to Expire."""
    action = (data or {}).get("action")
    model = _ESCALATION_TYPES.get(action or "")
    if model is None:
        return Expire()
    return model.model_validate(data)


class ApprovalGateConfig(BaseModel):
    """Config of an approval node."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    approval_type: ApprovalType = Field(ApprovalType.THRESHOLD, alias="approvalType")
    required_count: int | None = Field(None, alias="requiredCount", ge=1)
    threshold: ThresholdConfig | None = None
    approver: ApproverRule
    deadline: str | None = None
    timeout_hours: float | None = Field(None, alias="timeoutHours", gt=0)
    escalation: dict[str, Any] = Field(default_factory=dict)
    allow_delegation: bool = Field(False, alias="allowDelegation")

    @field_validator("deadline")
    @classmethod
    def _validate_deadline(cls, value: str | None) -> str | None:
        if value:
            parse_deadline(value)
        return value

    @field_validator("escalation", mode="before")
    @classmethod
    def _default_escalation(cls, value: Any) -> dict[str, Any]:
        return value or {}

    @property
    def escalation_rule(self) -> EscalationRule:
        return parse_escalation(self.escalation)

    def compute_required(self, pool_size: int) -> int:
        if self.approval_type == ApprovalType.UNANIMOUS or self.approval_type == ApprovalType.CHAIN:
            return max(pool_size, 1)
        if self.approval_type == ApprovalType.ANY_ONE:
            return 1
        if self.threshold is not None:
            return self.threshold.required(pool_size)
        return self.required_count or 1

    def compute_deadline(self, now: datetime | None = None) -> datetime | None:
        now = now or datetime.now(UTC)
        if self.deadline:
            return parse_deadline(self.deadline, now)
        if self.timeout_hours:
            return now + timedelta(hours=self.timeout_hours)
        return None
