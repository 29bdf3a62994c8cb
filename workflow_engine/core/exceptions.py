"""
Workflow Domain Exceptions

These exceptions represent workflow definition errors, runtime failures and
approval errors. Every exception carries a machine-readable code and a
details dict (instance_id, node_id, ...) so a failure can be diagnosed
without replaying the graph.
"""

from typing import Any


class DomainException(Exception):
    """
    Base exception for all workflow errors.

    Provides a standardized way to communicate rule violations.
    """

    def __init__(self, message: str, code: str | None = None, details: dict[str, Any] | None = None):
        """
        Initialize domain exception.

        Args:
            message: Human-readable error message
            code: Machine-readable error code (e.g., "NODE_MISMATCH")
            details: Additional context about the error
        """
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__.upper()
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


# ============================================================================
# DEFINITION ERRORS
# ============================================================================


class WorkflowDefinitionError(DomainException):
    """Missing, unpublished or malformed workflow definition."""


class DefinitionNotFound(WorkflowDefinitionError):
    def __init__(self, slug: str):
        self.slug = slug
        super().__init__(
            f"Workflow definition '{slug}' not found or inactive",
            "DEFINITION_NOT_FOUND",
            {"slug": slug},
        )


class NoPublishedVersion(WorkflowDefinitionError):
    def __init__(self, slug: str):
        self.slug = slug
        super().__init__(
            f"Workflow definition '{slug}' has no published version",
            "NO_PUBLISHED_VERSION",
            {"slug": slug},
        )


class InvalidWorkflowGraph(WorkflowDefinitionError):
    """Raised when a graph fails validation."""

    def __init__(self, errors: list[str], version_id: int | None = None):
        self.errors = errors
        super().__init__(
            f"Invalid workflow graph: {'; '.join(errors)}",
            "INVALID_WORKFLOW_GRAPH",
            {"errors": errors, "version_id": version_id},
        )


class VersionNotEditable(WorkflowDefinitionError):
    def __init__(self, version_id: int, status: str):
        super().__init__(
            f"Workflow version {version_id} is '{status}' and cannot be modified",
            "VERSION_NOT_EDITABLE",
            {"version_id": version_id, "status": status},
        )


class VersionNotFound(WorkflowDefinitionError):
    def __init__(self, version_id: int):
        super().__init__(
            f"Workflow version {version_id} not found",
            "VERSION_NOT_FOUND",
            {"version_id": version_id},
        )


class RegistryFrozenError(WorkflowDefinitionError):
    def __init__(self, registry: str, key: str):
        super().__init__(
            f"Cannot register '{key}': {registry} registry is frozen",
            "REGISTRY_FROZEN",
            {"registry": registry, "key": key},
        )


class UnknownRegistryKey(WorkflowDefinitionError):
    """Lookup of a key that no plugin registered."""

    registry_name = "registry"

    def __init__(self, key: str):
        self.key = key
        super().__init__(
            f"Unknown {self.registry_name} '{key}'",
            f"UNKNOWN_{self.registry_name.upper()}",
            {"registry": self.registry_name, "key": key},
        )


class UnknownActionError(UnknownRegistryKey):
    registry_name = "action"


class UnknownConditionError(UnknownRegistryKey):
    registry_name = "condition"


class UnknownTriggerError(UnknownRegistryKey):
    registry_name = "trigger"


class UnknownEntityError(UnknownRegistryKey):
    registry_name = "entity"


class UnknownResolverError(UnknownRegistryKey):
    registry_name = "resolver"


# ============================================================================
# RUNTIME ERRORS
# ============================================================================


class WorkflowRuntimeError(DomainException):
    """Failure while starting, driving or resuming an instance."""


class InvalidPayload(WorkflowRuntimeError):
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, "INVALID_PAYLOAD", details)


class InstanceNotFound(WorkflowRuntimeError):
    def __init__(self, instance_id: int):
        self.instance_id = instance_id
        super().__init__(
            f"Workflow instance {instance_id} not found",
            "INSTANCE_NOT_FOUND",
            {"instance_id": instance_id},
        )


class InstanceAlreadyCompleted(WorkflowRuntimeError):
    def __init__(self, instance_id: int, status: str):
        self.instance_id = instance_id
        self.status = status
        super().__init__(
            f"Workflow instance {instance_id} is already {status}",
            "INSTANCE_ALREADY_COMPLETED",
            {"instance_id": instance_id, "status": status},
        )


class NodeMismatch(WorkflowRuntimeError):
    def __init__(self, instance_id: int, expected_node: str, actual_node: str | None, status: str):
        self.instance_id = instance_id
        self.expected_node = expected_node
        self.actual_node = actual_node
        super().__init__(
            f"Instance {instance_id} is not waiting at node '{expected_node}' "
            f"(current node '{actual_node}', status '{status}')",
            "NODE_MISMATCH",
            {
                "instance_id": instance_id,
                "node_id": expected_node,
                "current_node": actual_node,
                "status": status,
            },
        )


class NoMatchingTransition(WorkflowRuntimeError):
    def __init__(self, instance_id: int, node_id: str, port: str):
        self.node_id = node_id
        self.port = port
        super().__init__(
            f"No transition matched from node '{node_id}' on port '{port}' (instance {instance_id})",
            "NO_MATCHING_TRANSITION",
            {"instance_id": instance_id, "node_id": node_id, "port": port},
        )


class WorkflowCycleDetected(WorkflowRuntimeError):
    def __init__(self, instance_id: int, node_id: str, max_steps: int):
        self.node_id = node_id
        super().__init__(
            f"Instance {instance_id} exceeded {max_steps} steps in one drive; halted at node '{node_id}'",
            "WORKFLOW_CYCLE_DETECTED",
            {"instance_id": instance_id, "node_id": node_id, "max_steps": max_steps},
        )


class ActionExecutionError(WorkflowRuntimeError):
    def __init__(self, instance_id: int | None, node_id: str | None, action: str, error: str):
        self.action = action
        super().__init__(
            f"Action '{action}' failed at node '{node_id}' (instance {instance_id}): {error}",
            "ACTION_EXECUTION_FAILED",
            {"instance_id": instance_id, "node_id": node_id, "action": action, "error": error},
        )


class DuplicateInstance(WorkflowRuntimeError):
    def __init__(self, slug: str, entity_type: str, entity_id: Any, existing_id: int):
        super().__init__(
            f"Workflow '{slug}' already running for {entity_type} {entity_id} (instance {existing_id})",
            "DUPLICATE_INSTANCE",
            {
                "slug": slug,
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "instance_id": existing_id,
            },
        )


class InstanceNotRetryable(WorkflowRuntimeError):
    def __init__(self, instance_id: int, status: str):
        super().__init__(
            f"Instance {instance_id} is '{status}', only failed instances can be retried",
            "INSTANCE_NOT_RETRYABLE",
            {"instance_id": instance_id, "status": status},
        )


class MigrationError(WorkflowRuntimeError):
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, "MIGRATION_ERROR", details)


# ============================================================================
# APPROVAL ERRORS
# ============================================================================


class ApprovalError(DomainException):
    """Approval errors are recovered locally and returned to the caller."""


class ApprovalNotFound(ApprovalError):
    def __init__(self, approval_id: int):
        super().__init__(
            f"Approval gate {approval_id} not found",
            "APPROVAL_NOT_FOUND",
            {"approval_id": approval_id},
        )


class ApprovalNotPending(ApprovalError):
    def __init__(self, approval_id: int, status: str):
        super().__init__(
            f"Approval gate {approval_id} is already {status}",
            "APPROVAL_NOT_PENDING",
            {"approval_id": approval_id, "status": status},
        )


class DuplicateResponse(ApprovalError):
    def __init__(self, approval_id: int, member_id: int):
        super().__init__(
            f"Member {member_id} already responded to approval {approval_id}",
            "DUPLICATE_RESPONSE",
            {"approval_id": approval_id, "member_id": member_id},
        )


class NotEligibleApprover(ApprovalError):
    def __init__(self, approval_id: int, member_id: int):
        super().__init__(
            f"Member {member_id} is not an eligible approver for approval {approval_id}",
            "NOT_ELIGIBLE_APPROVER",
            {"approval_id": approval_id, "member_id": member_id},
        )
