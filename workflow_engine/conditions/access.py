"""
Permission and role membership conditions.

    {"permission": "Officers.hire"}    -> "Officers.hire" in context["user_permissions"]
    {"role": "Kingdom Secretary"}      -> "Kingdom Secretary" in context["user_roles"]
"""

from typing import Any


def evaluate_permission(params: dict[str, Any], context: dict[str, Any]) -> bool:
    permission = params.get("permission")
    if not permission:
        return False
    return permission in (context.get("user_permissions") or [])


def evaluate_role(params: dict[str, Any], context: dict[str, Any]) -> bool:
    role = params.get("role")
    if not role:
        return False
    return role in (context.get("user_roles") or [])
