"""
Status and type vocabularies shared by models, engine and approval manager.
"""

from enum import StrEnum


class VersionStatus(StrEnum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class NodeType(StrEnum):
    TRIGGER = "trigger"
    ACTION = "action"
    CONDITION = "condition"
    APPROVAL = "approval"
    DELAY = "delay"
    END = "end"


class StateType(StrEnum):
    INITIAL = "initial"
    INTERMEDIATE = "intermediate"
    APPROVAL = "approval"
    TERMINAL = "terminal"


STATE_TYPE_BY_NODE_TYPE: dict[str, StateType] = {
    NodeType.TRIGGER: StateType.INITIAL,
    NodeType.ACTION: StateType.INTERMEDIATE,
    NodeType.CONDITION: StateType.INTERMEDIATE,
    NodeType.DELAY: StateType.INTERMEDIATE,
    NodeType.APPROVAL: StateType.APPROVAL,
    NodeType.END: StateType.TERMINAL,
}


class TriggerType(StrEnum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"
    SCHEDULED = "scheduled"
    EVENT = "event"


class InstanceStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_INSTANCE_STATUSES = frozenset({InstanceStatus.COMPLETED, InstanceStatus.CANCELLED})


class ApprovalStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class ApprovalType(StrEnum):
    THRESHOLD = "threshold"
    UNANIMOUS = "unanimous"
    ANY_ONE = "any_one"
    CHAIN = "chain"


class Decision(StrEnum):
    APPROVE = "approve"
    REJECT = "reject"
    ABSTAIN = "abstain"
    REQUEST_CHANGES = "request_changes"


class ExecutionStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    WAITING = "waiting"


class MigrationType(StrEnum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"
    ADMIN = "admin"


class VisibilityRuleType(StrEnum):
    CAN_VIEW_ENTITY = "can_view_entity"
    CAN_EDIT_ENTITY = "can_edit_entity"
    CAN_VIEW_FIELD = "can_view_field"
    CAN_EDIT_FIELD = "can_edit_field"


class Port:
    DEFAULT = "default"
    TRUE = "true"
    FALSE = "false"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
