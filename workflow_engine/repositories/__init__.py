"""
Repositories - data access layer.
"""

from .workflow_repository import ACTIVE_INSTANCE_STATUSES, WorkflowRepository

__all__ = ["ACTIVE_INSTANCE_STATUSES", "WorkflowRepository"]
