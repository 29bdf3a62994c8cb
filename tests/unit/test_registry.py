"""
Unit tests for the workflow registries and the Officers plugin registration.
"""

import pytest

from workflow_engine.core.exceptions import (
    InvalidPayload,
    RegistryFrozenError,
    UnknownActionError,
    UnknownEntityError,
    UnknownResolverError,
    UnknownTriggerError,
)
from workflow_engine.plugins.officers import MEMBER_ENTITY, OFFICER_ENTITY, WARRANT_APPROVERS_RESOLVER
from workflow_engine.registry import (
    PERMISSION_RESOLVER,
    ROLE_RESOLVER,
    ActionRegistry,
    ResolverRegistry,
    build_registries,
)


# ============================================================================
# REGISTRY BASE
# ============================================================================


@pytest.mark.unit
class TestRegistry:
    """Tests for registration, lookup and freezing."""

    def test_register_and_get(self):
        """Should return the registered entry."""
        # Arrange
        actions = ActionRegistry()

        # Act
        definition = actions.add("Testing.Noop", lambda context, params: {}, label="Noop")

        # Assert
        assert actions.get("Testing.Noop") is definition
        assert "Testing.Noop" in actions
        assert actions.keys() == ["Testing.Noop"]

    def test_unknown_key_raises_specific_error(self):
        """Should raise the registry-specific error with the key in details."""
        actions = ActionRegistry()

        with pytest.raises(UnknownActionError) as exc_info:
            actions.get("Officers.Nope")

        assert exc_info.value.code == "UNKNOWN_ACTION"
        assert exc_info.value.details["key"] == "Officers.Nope"

    def test_duplicate_key_rejected(self):
        """Should refuse to overwrite an existing key."""
        actions = ActionRegistry()
        actions.add("Testing.Noop", lambda context, params: {})

        with pytest.raises(ValueError, match="already registered"):
            actions.add("Testing.Noop", lambda context, params: {})

    def test_frozen_registry_rejects_registration(self):
        """Should raise RegistryFrozenError after freeze."""
        actions = ActionRegistry()
        actions.freeze()

        with pytest.raises(RegistryFrozenError):
            actions.add("Testing.Late", lambda context, params: {})

    @pytest.mark.asyncio
    async def test_resolver_deduplicates_in_order(self):
        """Should keep resolver order and drop duplicates."""
        # Arrange
        resolvers = ResolverRegistry()

        async def resolver(config, context):
            return [3, "1", 3, 2, 1]

        resolvers.add("Testing.Pool", resolver)

        # Act
        members = await resolvers.resolve("Testing.Pool", {}, {})

        # Assert
        assert members == [3, 1, 2]

    @pytest.mark.asyncio
    async def test_unknown_resolver(self):
        """Should raise for an unregistered resolver key."""
        with pytest.raises(UnknownResolverError):
            await ResolverRegistry().resolve("Testing.Missing", {}, {})


# ============================================================================
# BUILD REGISTRIES
# ============================================================================


@pytest.mark.unit
class TestBuildRegistries:
    """Tests for the boot-time container."""

    def test_core_vocabulary_is_frozen(self):
        """Should register core actions and conditions and freeze everything."""
        registries = build_registries()

        assert registries.frozen
        for key in ("set_variable", "set_context", "create_note", "update_entity", "send_email", "webhook"):
            assert key in registries.actions
        for key in ("field", "ownership", "permission", "role", "approval_gate", "workflow_context", "time", "expression"):
            assert key in registries.conditions
        assert registries.actions.get("webhook").is_async is True

        with pytest.raises(RegistryFrozenError):
            registries.conditions.add("late", lambda params, context: True)

    def test_without_core(self):
        """Should leave the registries empty when core is excluded."""
        registries = build_registries(include_core=False)
        assert len(registries.actions) == 0
        assert len(registries.conditions) == 0

    def test_officers_plugin_registration(self, registries):
        """Should expose the Officers vocabulary."""
        info = registries.debug_info()

        assert "Officers.HireRequested" in info["triggers"]
        assert "Officers.CreateOfficerRecord" in info["actions"]
        assert "Officers.OfficeRequiresWarrant" in info["conditions"]
        assert {OFFICER_ENTITY, MEMBER_ENTITY} <= set(info["entities"])
        assert {WARRANT_APPROVERS_RESOLVER, PERMISSION_RESOLVER, ROLE_RESOLVER} <= set(info["resolvers"])
        assert registries.actions.get("Officers.SendHireNotification").is_async is True

    def test_designer_metadata(self, registries):
        """Should describe triggers with their payload schema."""
        designer = {entry["event"]: entry for entry in registries.triggers.for_designer()}

        hire = designer["Officers.HireRequested"]
        assert hire["entityType"] == MEMBER_ENTITY
        assert hire["entityIdField"] == "memberId"
        assert "memberId" in hire["payloadSchema"]["properties"]

    def test_unknown_trigger_and_entity(self, registries):
        """Should raise specific errors for unknown triggers and entities."""
        with pytest.raises(UnknownTriggerError):
            registries.triggers.get("Officers.Nope")
        with pytest.raises(UnknownEntityError):
            registries.entities.get("Officers.Nope")


# ============================================================================
# TRIGGER PAYLOADS
# ============================================================================


@pytest.mark.unit
class TestTriggerPayloads:
    """Tests for trigger payload validation."""

    def test_valid_payload_is_normalized(self, registries):
        """Should coerce values and keep camelCase keys."""
        trigger = registries.triggers.get("Officers.HireRequested")

        payload = trigger.validate_payload({"memberId": "1", "officeId": 10, "branchId": 5, "note": "x"})

        assert payload["memberId"] == 1
        assert payload["officeId"] == 10
        assert payload["note"] == "x"

    def test_invalid_payload_raises(self, registries):
        """Should reject a payload missing required fields."""
        trigger = registries.triggers.get("Officers.HireRequested")

        with pytest.raises(InvalidPayload) as exc_info:
            trigger.validate_payload({"memberId": 1})

        assert exc_info.value.details["event"] == "Officers.HireRequested"
        assert exc_info.value.details["errors"]
