"""
Officers workflow actions.

Handlers take (context, params) with params resolved by the executor and
return an output fragment stored as the node result.
"""

import logging
from typing import Any

from workflow_engine.core.context import to_datetime
from workflow_engine.services.notifications import Notifier

from .directory import OfficerDirectory

logger = logging.getLogger(__name__)


def _required_int(params: dict[str, Any], key: str) -> int:
    value = params.get(key)
    if value is None or value == "":
        raise ValueError(f"'{key}' is required")
    return int(value)


class OfficerActions:
    def __init__(self, directory: OfficerDirectory, notifier: Notifier):
        self.directory = directory
        self.notifier = notifier

    def create_officer_record(self, context: dict[str, Any], params: dict[str, Any]) -> dict[str, Any]:
        officer = self.directory.create_officer(
            member_id=_required_int(params, "memberId"),
            office_id=_required_int(params, "officeId"),
            branch_id=_required_int(params, "branchId"),
            start_on=to_datetime(params.get("startOn")),
            expires_on=to_datetime(params.get("expiresOn")),
            approver_id=params.get("approverId") or context.get("triggeredBy"),
            email_address=params.get("emailAddress"),
        )
        return {"officerId": officer.id, "status": officer.status}

    def release_officer(self, context: dict[str, Any], params: dict[str, Any]) -> dict[str, Any]:
        officer = self.directory.release_officer(_required_int(params, "officerId"), params.get("reason") or "")
        logger.info(f"Officer {officer.id} released: {officer.revoked_reason}")
        return {"released": True, "officerId": officer.id}

    async def send_hire_notification(self, context: dict[str, Any], params: dict[str, Any]) -> dict[str, Any]:
        officer = self.directory.get_officer(params.get("officerId"))
        if officer is None:
            raise LookupError(f"Officer {params.get('officerId')} not found")
        member = self.directory.get_member(officer.member_id)
        office = self.directory.get_office(officer.office_id)

        recipient = (member.email_address if member else None) or officer.email_address
        if not recipient:
            logger.warning(f"Officer {officer.id} has no email address, hire notification not sent")
            return {"sent": False}

        await self.notifier.send(
            recipient,
            "officers.hire_notification",
            {
                "memberScaName": member.sca_name if member else "",
                "officeName": office.name if office else "",
                "startOn": officer.start_on.isoformat(),
                "expiresOn": officer.expires_on.isoformat() if officer.expires_on else None,
            },
        )
        return {"sent": True}

    def request_warrant_roster(self, context: dict[str, Any], params: dict[str, Any]) -> dict[str, Any]:
        roster = self.directory.create_warrant_roster(_required_int(params, "officerId"))
        return {"rosterId": roster.id, "context_updates": {"warrantRosterId": roster.id}}
