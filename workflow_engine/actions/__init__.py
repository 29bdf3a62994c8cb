"""
Actions: core action handlers and the executor that runs them.
"""

from .core_actions import register_core_actions
from .executor import ActionExecutor, ActionResult

__all__ = ["ActionExecutor", "ActionResult", "register_core_actions"]
