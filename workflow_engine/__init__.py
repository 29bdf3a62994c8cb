"""
Workflow Engine

Versioned state machine that advances business entities through
plugin-defined graphs of states, approvals and transitions.
"""

__version__ = "0.1.0"
