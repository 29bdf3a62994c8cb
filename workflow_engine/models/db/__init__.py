"""
Database models.

Importing this package registers every workflow table on Base.metadata.
"""

from .base import Base, JSONType, TimestampMixin, UTCDateTime
from .workflow import *  # noqa: F401,F403
from .workflow import __all__ as _workflow_models

__all__ = ["Base", "JSONType", "TimestampMixin", "UTCDateTime", *_workflow_models]
