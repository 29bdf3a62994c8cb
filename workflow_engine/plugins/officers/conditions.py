"""
Officers workflow conditions.

Params may hold "$." context paths; a value that cannot be resolved makes
the condition false.
"""

from typing import Any

from workflow_engine.core.context import resolve_param_value

from .directory import OfficerDirectory


class OfficerConditions:
    def __init__(self, directory: OfficerDirectory):
        self.directory = directory

    def office_requires_warrant(self, params: dict[str, Any], context: dict[str, Any]) -> bool:
        office = self.directory.get_office(resolve_param_value(params.get("officeId"), context))
        return bool(office and office.requires_warrant)

    def is_only_one_per_branch(self, params: dict[str, Any], context: dict[str, Any]) -> bool:
        office = self.directory.get_office(resolve_param_value(params.get("officeId"), context))
        return bool(office and office.only_one_per_branch)

    def is_member_warrantable(self, params: dict[str, Any], context: dict[str, Any]) -> bool:
        member = self.directory.get_member(resolve_param_value(params.get("memberId"), context))
        return bool(member and member.warrantable)
