"""
Officer directory.

In-memory store of offices, members and officer assignments used by the
Officers plugin. A host application replaces it with its own persistence by
implementing the same methods.
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class Office(BaseModel):
    id: int
    name: str
    requires_warrant: bool = False
    only_one_per_branch: bool = False
    term_length_months: int = 0
    grants_role: str | None = None
    warrant_approver_ids: list[int] = Field(default_factory=list)


class Member(BaseModel):
    id: int
    sca_name: str
    email_address: str | None = None
    warrantable: bool = False
    permissions: list[str] = Field(default_factory=list)
    roles: list[str] = Field(default_factory=list)


class Officer(BaseModel):
    """Officer assignment (status: upcoming, current, expired, released, replaced)."""

    id: int
    member_id: int
    office_id: int
    branch_id: int
    status: str
    start_on: datetime
    expires_on: datetime | None = None
    approver_id: int | None = None
    email_address: str | None = None
    revoked_reason: str | None = None


class WarrantRoster(BaseModel):
    id: int
    officer_id: int
    member_id: int
    office_id: int
    status: str = "pending"


class OfficerDirectory:
    def __init__(self, offices: list[Office] | None = None, members: list[Member] | None = None):
        self.offices: dict[int, Office] = {office.id: office for office in offices or []}
        self.members: dict[int, Member] = {member.id: member for member in members or []}
        self.officers: dict[int, Officer] = {}
        self.rosters: dict[int, WarrantRoster] = {}

    def get_office(self, office_id: Any) -> Office | None:
        try:
            return self.offices.get(int(office_id))
        except (TypeError, ValueError):
            return None

    def get_member(self, member_id: Any) -> Member | None:
        try:
            return self.members.get(int(member_id))
        except (TypeError, ValueError):
            return None

    def get_officer(self, officer_id: Any) -> Officer | None:
        try:
            return self.officers.get(int(officer_id))
        except (TypeError, ValueError):
            return None

    def create_officer(
        self,
        member_id: int,
        office_id: int,
        branch_id: int,
        start_on: datetime | None = None,
        expires_on: datetime | None = None,
        approver_id: int | None = None,
        email_address: str | None = None,
    ) -> Officer:
        office = self.get_office(office_id)
        if office is None:
            raise LookupError(f"Office {office_id} not found")
        if self.get_member(member_id) is None:
            raise LookupError(f"Member {member_id} not found")

        now = datetime.now(UTC)
        start_on = start_on or now
        if expires_on is None and office.term_length_months > 0:
            expires_on = start_on + timedelta(days=30 * office.term_length_months)

        status = "current" if start_on <= now else "upcoming"
        if expires_on is not None and expires_on <= now:
            status = "expired"

        if office.only_one_per_branch:
            for existing in self.officers.values():
                if existing.office_id == office.id and existing.branch_id == branch_id and existing.status == "current":
                    existing.status = "replaced"
                    existing.expires_on = start_on
                    existing.revoked_reason = "Replaced by new officer"
                    logger.info(f"Officer {existing.id} replaced in office {office.id}, branch {branch_id}")

        officer = Officer(
            id=len(self.officers) + 1,
            member_id=member_id,
            office_id=office.id,
            branch_id=branch_id,
            status=status,
            start_on=start_on,
            expires_on=expires_on,
            approver_id=approver_id,
            email_address=email_address,
        )
        self.officers[officer.id] = officer
        logger.info(f"Officer {officer.id} created: member {member_id} in office '{office.name}' ({status})")
        return officer

    def release_officer(self, officer_id: int, reason: str = "") -> Officer:
        officer = self.get_officer(officer_id)
        if officer is None:
            raise LookupError(f"Officer {officer_id} not found")
        officer.status = "released"
        officer.expires_on = datetime.now(UTC)
        officer.revoked_reason = reason or None
        return officer

    def create_warrant_roster(self, officer_id: int) -> WarrantRoster:
        officer = self.get_officer(officer_id)
        if officer is None:
            raise LookupError(f"Officer {officer_id} not found")
        roster = WarrantRoster(
            id=len(self.rosters) + 1,
            officer_id=officer.id,
            member_id=officer.member_id,
            office_id=officer.office_id,
        )
        self.rosters[roster.id] = roster
        return roster

    def members_with_permission(self, permission: str) -> list[int]:
        return [member.id for member in self.members.values() if permission in member.permissions]

    def members_with_role(self, role: str) -> list[int]:
        return [member.id for member in self.members.values() if role in member.roles]
