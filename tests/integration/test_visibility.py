"""
Integration tests for state-scoped visibility rules.
"""

import pytest

from workflow_engine.core.exceptions import InstanceNotFound
from workflow_engine.plugins.officers import OFFICER_HIRE_SLUG, officer_hire_graph

from tests.factories import DEPUTY_OFFICE_ID, hire_payload

MANAGER = {"user_permissions": ["Officers.Manage"]}


@pytest.fixture
async def waiting_instance(engine, versions) -> int:
    """Officer hire waiting at warrant_approval, which carries visibility rules."""
    await versions.install(OFFICER_HIRE_SLUG, "Officer hire", officer_hire_graph())
    return await engine.start_workflow(OFFICER_HIRE_SLUG, "Officers.HireRequested", hire_payload(), triggered_by=99)


@pytest.mark.integration
@pytest.mark.asyncio
class TestEntityAccess:
    """Entity-level view and edit rules."""

    async def test_edit_requires_permission(self, visibility, waiting_instance):
        """Should allow editing only with the permission named by the rule."""
        assert await visibility.can_edit_entity(waiting_instance, user_id=20, user_context=MANAGER) is True
        assert await visibility.can_edit_entity(waiting_instance, user_id=21) is False

    async def test_no_rules_means_allowed(self, visibility, waiting_instance):
        """Should allow viewing when the state has no view rules."""
        assert await visibility.can_view_entity(waiting_instance, user_id=21) is True

    async def test_rules_follow_current_state(self, engine, versions, visibility):
        """Should drop the restriction once the instance left the restricted state."""
        await versions.install(OFFICER_HIRE_SLUG, "Officer hire", officer_hire_graph())
        instance_id = await engine.start_workflow(
            OFFICER_HIRE_SLUG, "Officers.HireRequested", hire_payload(office_id=DEPUTY_OFFICE_ID)
        )

        assert await visibility.can_edit_entity(instance_id, user_id=21) is True

    async def test_unknown_instance(self, visibility):
        """Should raise InstanceNotFound."""
        with pytest.raises(InstanceNotFound):
            await visibility.can_view_entity(404)


@pytest.mark.integration
@pytest.mark.asyncio
class TestFieldAccess:
    """Field-level view and edit rules."""

    async def test_visible_fields(self, visibility, waiting_instance):
        """Should list only the fields named by passing rules."""
        assert await visibility.get_visible_fields(waiting_instance, user_id=21) == ["email_address"]
        assert await visibility.can_view_field(waiting_instance, "email_address", user_id=21) is True
        assert await visibility.can_view_field(waiting_instance, "sca_name", user_id=21) is False

    async def test_no_field_rules_means_every_field(self, visibility, waiting_instance):
        """Should return the wildcard when no edit-field rules exist."""
        assert await visibility.get_editable_fields(waiting_instance, user_id=21) == ["*"]
        assert await visibility.can_edit_field(waiting_instance, "sca_name", user_id=21) is True
