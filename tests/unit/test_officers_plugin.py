"""
Unit tests for the Officers plugin: directory, actions, conditions,
resolvers and entity loaders.
"""

from datetime import UTC, datetime, timedelta

import pytest

from workflow_engine.plugins.officers import OfficersPlugin
from workflow_engine.plugins.officers.actions import OfficerActions
from workflow_engine.plugins.officers.conditions import OfficerConditions
from workflow_engine.services.notifications import LoggingNotifier

from tests.factories import DEPUTY_OFFICE_ID, MARSHAL_OFFICE_ID, SENESCHAL_OFFICE_ID


@pytest.fixture
def plugin(directory, notifier) -> OfficersPlugin:
    return OfficersPlugin(directory, notifier)


@pytest.fixture
def actions(directory, notifier) -> OfficerActions:
    return OfficerActions(directory, notifier)


# ============================================================================
# DIRECTORY
# ============================================================================


@pytest.mark.unit
class TestOfficerDirectory:
    """Tests for officer assignments."""

    def test_term_and_status(self, directory):
        """Should compute the term end from the office and start as current."""
        officer = directory.create_officer(member_id=1, office_id=MARSHAL_OFFICE_ID, branch_id=5)

        assert officer.id == 1
        assert officer.status == "current"
        assert officer.expires_on - officer.start_on == timedelta(days=360)

    def test_future_and_past_terms(self, directory):
        """Should mark future starts upcoming and elapsed terms expired."""
        now = datetime.now(UTC)

        upcoming = directory.create_officer(1, DEPUTY_OFFICE_ID, 5, start_on=now + timedelta(days=10))
        expired = directory.create_officer(
            3, DEPUTY_OFFICE_ID, 5, start_on=now - timedelta(days=10), expires_on=now - timedelta(days=1)
        )

        assert upcoming.status == "upcoming"
        assert expired.status == "expired"
        assert expired.id == 2

    def test_one_per_branch_replaces_current(self, directory):
        """Should replace the current holder of a one-per-branch office."""
        first = directory.create_officer(1, SENESCHAL_OFFICE_ID, 5)
        other_branch = directory.create_officer(3, SENESCHAL_OFFICE_ID, 6)

        directory.create_officer(3, SENESCHAL_OFFICE_ID, 5)

        assert first.status == "replaced"
        assert first.revoked_reason == "Replaced by new officer"
        assert other_branch.status == "current"

    def test_unknown_office_or_member(self, directory):
        """Should raise LookupError for unknown references."""
        with pytest.raises(LookupError):
            directory.create_officer(1, 99, 5)
        with pytest.raises(LookupError):
            directory.create_officer(99, DEPUTY_OFFICE_ID, 5)

    def test_release_and_roster(self, directory):
        """Should release officers and open warrant rosters for them."""
        officer = directory.create_officer(1, SENESCHAL_OFFICE_ID, 5)

        roster = directory.create_warrant_roster(officer.id)
        directory.release_officer(officer.id, "Stepped down")

        assert roster.officer_id == officer.id
        assert roster.status == "pending"
        assert officer.status == "released"
        assert officer.revoked_reason == "Stepped down"

    def test_members_by_permission_and_role(self, directory):
        """Should look members up by permission and role."""
        assert directory.members_with_permission("Officers.Warrant") == [20, 21, 22]
        assert directory.members_with_role("Reeve") == [30]


# ============================================================================
# ACTIONS
# ============================================================================


@pytest.mark.unit
@pytest.mark.asyncio
class TestOfficerActions:
    """Tests for the Officers action handlers."""

    async def test_create_officer_record(self, actions, directory):
        """Should create the officer with the triggering member as approver."""
        output = actions.create_officer_record(
            {"triggeredBy": 99}, {"memberId": "1", "officeId": 10, "branchId": 5, "startOn": None}
        )

        assert output == {"officerId": 1, "status": "current"}
        assert directory.officers[1].approver_id == 99

    async def test_create_requires_fields(self, actions):
        """Should fail without a branch."""
        with pytest.raises(ValueError, match="'branchId' is required"):
            actions.create_officer_record({}, {"memberId": 1, "officeId": 10})

    async def test_request_warrant_roster(self, actions, directory):
        """Should expose the roster id as a context update."""
        directory.create_officer(1, SENESCHAL_OFFICE_ID, 5)

        output = actions.request_warrant_roster({}, {"officerId": 1})

        assert output == {"rosterId": 1, "context_updates": {"warrantRosterId": 1}}

    async def test_hire_notification(self, actions, directory, notifier):
        """Should notify the member and skip members without email."""
        directory.create_officer(1, DEPUTY_OFFICE_ID, 5)
        directory.create_officer(2, DEPUTY_OFFICE_ID, 5)

        sent = await actions.send_hire_notification({}, {"officerId": 1})
        skipped = await actions.send_hire_notification({}, {"officerId": 2})

        assert sent == {"sent": True}
        assert skipped == {"sent": False}
        assert len(notifier.sent) == 1
        assert notifier.sent[0]["variables"]["officeName"] == "Deputy Herald"

    async def test_hire_notification_unknown_officer(self, directory):
        """Should raise for an unknown officer."""
        with pytest.raises(LookupError):
            await OfficerActions(directory, LoggingNotifier()).send_hire_notification({}, {"officerId": 5})


# ============================================================================
# CONDITIONS, RESOLVERS, LOADERS
# ============================================================================


@pytest.mark.unit
class TestOfficerConditions:
    """Tests for the Officers condition handlers."""

    def test_conditions_resolve_context_paths(self, directory):
        """Should read office and member ids from the context."""
        conditions = OfficerConditions(directory)
        context = {"trigger": {"officeId": SENESCHAL_OFFICE_ID, "memberId": 2}}

        assert conditions.office_requires_warrant({"officeId": "$.trigger.officeId"}, context) is True
        assert conditions.is_only_one_per_branch({"officeId": DEPUTY_OFFICE_ID}, context) is False
        assert conditions.is_member_warrantable({"memberId": "$.trigger.memberId"}, context) is False
        assert conditions.is_member_warrantable({"memberId": 1}, context) is True

    def test_unknown_reference_is_false(self, directory):
        """Should be false when the reference does not resolve."""
        conditions = OfficerConditions(directory)
        assert conditions.office_requires_warrant({"officeId": "$.trigger.missing"}, {}) is False


@pytest.mark.unit
@pytest.mark.asyncio
class TestResolversAndLoaders:
    """Tests for approver resolvers and entity loaders."""

    async def test_warrant_approvers(self, plugin):
        """Should return the office's warrant approvers."""
        context = {"trigger": {"officeId": SENESCHAL_OFFICE_ID}}

        assert await plugin.resolve_warrant_approvers({}, context) == [20, 21]
        assert await plugin.resolve_warrant_approvers({"officeId": 99}, context) == []

    async def test_access_resolvers(self, plugin):
        """Should resolve members by permission and role."""
        assert await plugin.resolve_permission({"permission": "Officers.Manage"}, {}) == [20]
        assert await plugin.resolve_role({"role": "Kingdom Secretary"}, {}) == [20, 21]

    async def test_member_loader(self, plugin):
        """Should load members with member_id for ownership checks."""
        member = await plugin.load_member("1")

        assert member["sca_name"] == "Aelfric of York"
        assert member["member_id"] == 1
        assert await plugin.load_member("404") is None

    async def test_officer_loader(self, plugin, directory):
        """Should load officers as JSON-ready dicts."""
        directory.create_officer(1, MARSHAL_OFFICE_ID, 5)

        officer = await plugin.load_officer("1")

        assert officer["office_id"] == MARSHAL_OFFICE_ID
        assert isinstance(officer["start_on"], str)
