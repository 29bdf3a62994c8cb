"""
Ownership condition: the acting user's relationship to the entity.

    {"ownership": "requester" | "recipient" | "parent_of_minor" | "any"}
"""

from typing import Any

from workflow_engine.core.context import compare_values


def _is_requester(user_id: Any, entity: dict[str, Any]) -> bool:
    return compare_values(entity.get("requester_id"), "eq", user_id) or compare_values(
        entity.get("created_by"), "eq", user_id
    )


def _is_recipient(user_id: Any, entity: dict[str, Any]) -> bool:
    return compare_values(entity.get("member_id"), "eq", user_id)


def _is_parent_of_minor(context: dict[str, Any], entity: dict[str, Any]) -> bool:
    managed_ids = context.get("user_managed_member_ids") or []
    member_id = entity.get("member_id")
    if member_id is None or not managed_ids:
        return False
    return compare_values(member_id, "in", managed_ids)


def evaluate_ownership(params: dict[str, Any], context: dict[str, Any]) -> bool:
    relationship = params.get("ownership")
    user_id = context.get("user_id")
    if relationship is None or user_id is None:
        return False

    entity = context.get("entity") or {}
    if relationship == "requester":
        return _is_requester(user_id, entity)
    if relationship == "recipient":
        return _is_recipient(user_id, entity)
    if relationship == "parent_of_minor":
        return _is_parent_of_minor(context, entity)
    if relationship == "any":
        return (
            _is_requester(user_id, entity)
            or _is_recipient(user_id, entity)
            or _is_parent_of_minor(context, entity)
        )
    return False
