"""
Context helpers shared by conditions, actions and the engine.

- resolve_field_path: dot-path lookup that returns None on any missing segment
- resolve_param_value / resolve_params: "$.path" and {"type": ...} descriptors
- parse_deadline: "14d" / "24h" / "30m" or ISO datetime
- compare_values: operator table used by every comparing condition
- merge_context: recursive merge of action output into instance context
"""

import copy
import re
from datetime import UTC, datetime, timedelta
from typing import Any

_DURATION_PATTERN = re.compile(r"^\s*(\d+)\s*([dhm])\s*$", re.IGNORECASE)
_DURATION_UNITS = {"d": "days", "h": "hours", "m": "minutes"}

COMPARISON_OPERATORS = frozenset(
    {
        "eq",
        "neq",
        "gt",
        "gte",
        "lt",
        "lte",
        "in",
        "not_in",
        "is_set",
        "is_empty",
        "contains",
        "starts_with",
        "ends_with",
    }
)


def resolve_field_path(data: Any, path: str | None) -> Any:
    """
    Resolve a dot path ("entity.office.requires_warrant") inside nested data.

    An optional "$." prefix is stripped. Lists are indexed by integer
    segments. Returns None when any segment is missing.
    """
    if not path:
        return None
    if path.startswith("$."):
        path = path[2:]
    elif path == "$":
        return data

    current = data
    for segment in path.split("."):
        if isinstance(current, dict):
            if segment not in current:
                return None
            current = current[segment]
        elif isinstance(current, (list, tuple)):
            try:
                current = current[int(segment)]
            except (ValueError, IndexError):
                return None
        else:
            return None
    return current


def resolve_param_value(value: Any, context: dict[str, Any], app_settings: dict[str, Any] | None = None) -> Any:
    """
    Resolve one action/condition parameter.

    Supported forms:
        "literal" / 5 / True       -> returned as is
        "$.trigger.memberId"       -> looked up in context
        {"type": "fixed", "value": x}
        {"type": "context", "path": "trigger.memberId"}
        {"type": "setting", "key": "Officers.Mail", "default": x}
    """
    if isinstance(value, str) and value.startswith("$."):
        return resolve_field_path(context, value)

    if isinstance(value, dict) and "type" in value and len(value) <= 3:
        kind = value["type"]
        if kind == "fixed":
            return value.get("value")
        if kind == "context":
            return resolve_field_path(context, value.get("path"))
        if kind in ("setting", "app_setting"):
            settings = app_settings or {}
            return settings.get(value.get("key"), value.get("default"))

    return value


def resolve_params(
    params: dict[str, Any] | None, context: dict[str, Any], app_settings: dict[str, Any] | None = None
) -> dict[str, Any]:
    return {key: resolve_param_value(value, context, app_settings) for key, value in (params or {}).items()}


def parse_deadline(spec: str | datetime | None, now: datetime | None = None) -> datetime | None:
    """
    Parse a deadline relative to `now`.

    Accepts "14d", "24h", "30m", an ISO-8601 datetime string or a datetime.
    Naive datetimes are taken as UTC. Raises ValueError on anything else.
    """
    if spec is None or spec == "":
        return None
    now = now or datetime.now(UTC)

    if isinstance(spec, datetime):
        deadline = spec
    else:
        match = _DURATION_PATTERN.match(str(spec))
        if match:
            amount, unit = match.groups()
            return now + timedelta(**{_DURATION_UNITS[unit.lower()]: int(amount)})
        try:
            deadline = datetime.fromisoformat(str(spec))
        except ValueError:
            raise ValueError(f"Invalid deadline '{spec}': expected '<n>d', '<n>h', '<n>m' or ISO datetime") from None

    if deadline.tzinfo is None:
        deadline = deadline.replace(tzinfo=UTC)
    return deadline


def to_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    if isinstance(value, str):
        try:
            float(value)
        except ValueError:
            return False
        return True
    return False


def _normalize_pair(actual: Any, expected: Any) -> tuple[Any, Any]:
    # "5" == 5 and 5 == 5.0 compare equal, like form input vs. stored ids
    if _is_number(actual) and _is_number(expected):
        return float(actual), float(expected)
    if isinstance(actual, bool) or isinstance(expected, bool):
        return _as_bool(actual), _as_bool(expected)
    return actual, expected


def _as_bool(value: Any) -> Any:
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    return value


def is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def compare_values(actual: Any, operator: str, expected: Any = None) -> bool:
    """
    Compare `actual` against `expected` with one of COMPARISON_OPERATORS.

    A None actual value satisfies only is_empty; every other operator
    returns False for it. Unknown operators return False.
    """
    if operator == "is_set":
        return actual is not None
    if operator == "is_empty":
        return is_empty(actual)
    if actual is None:
        return False

    if operator in ("in", "not_in"):
        candidates = expected if isinstance(expected, (list, tuple, set)) else [expected]
        found = any(_equals(actual, candidate) for candidate in candidates)
        return found if operator == "in" else not found

    if operator == "contains":
        if isinstance(actual, (list, tuple, set)):
            return any(_equals(item, expected) for item in actual)
        if isinstance(actual, dict):
            return expected in actual
        return str(expected) in str(actual)
    if operator == "starts_with":
        return str(actual).startswith(str(expected))
    if operator == "ends_with":
        return str(actual).endswith(str(expected))

    if operator == "eq":
        return _equals(actual, expected)
    if operator == "neq":
        return not _equals(actual, expected)

    left, right = _normalize_pair(actual, expected)
    try:
        if operator == "gt":
            return left > right
        if operator == "gte":
            return left >= right
        if operator == "lt":
            return left < right
        if operator == "lte":
            return left <= right
    except TypeError:
        return False
    return False


def _equals(actual: Any, expected: Any) -> bool:
    left, right = _normalize_pair(actual, expected)
    return left == right


def merge_context(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    """Return a deep copy of `base` with `updates` merged in recursively."""
    merged = copy.deepcopy(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_context(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged
