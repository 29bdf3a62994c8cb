"""
Officers plugin - officer hiring and warrant approval.
"""

from .directory import Member, Office, Officer, OfficerDirectory, WarrantRoster
from .plugin import MEMBER_ENTITY, OFFICER_ENTITY, WARRANT_APPROVERS_RESOLVER, OfficersPlugin
from .workflows import OFFICER_HIRE_SLUG, officer_hire_graph

__all__ = [
    "MEMBER_ENTITY",
    "Member",
    "OFFICER_ENTITY",
    "OFFICER_HIRE_SLUG",
    "Office",
    "Officer",
    "OfficerDirectory",
    "OfficersPlugin",
    "WARRANT_APPROVERS_RESOLVER",
    "WarrantRoster",
    "officer_hire_graph",
]
