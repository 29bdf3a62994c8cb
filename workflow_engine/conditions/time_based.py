"""
Time-based conditions.

    {"time": "state_duration", "operator": "gte", "value": 14, "unit": "days"}
    {"time": "field_date", "field": "entity.expires_on", "operator": "lt", "value": "now"}

state_duration measures the time since context["state_entered_at"];
field_date compares a date field against "now" or a literal date.
"""

from datetime import UTC, datetime
from typing import Any

from workflow_engine.core.context import compare_values, to_datetime

from .field import resolve_with_entity_fallback

_SECONDS_PER_UNIT = {
    "seconds": 1,
    "minutes": 60,
    "hours": 3600,
    "days": 86400,
}

_TIME_OPERATORS = frozenset({"eq", "neq", "gt", "gte", "lt", "lte"})


def _now(context: dict[str, Any]) -> datetime:
    # Tests and replays pin the clock through context["now"]
    return to_datetime(context.get("now")) or datetime.now(UTC)


def _state_duration(params: dict[str, Any], context: dict[str, Any]) -> bool:
    entered_at = to_datetime(context.get("state_entered_at"))
    if entered_at is None:
        return False
    elapsed = (_now(context) - entered_at).total_seconds()
    duration = elapsed / _SECONDS_PER_UNIT.get(params.get("unit", "hours"), 3600)
    try:
        threshold = float(params.get("value", 0))
    except (TypeError, ValueError):
        return False
    return compare_values(duration, params.get("operator", "gt"), threshold)


def _field_date(params: dict[str, Any], context: dict[str, Any]) -> bool:
    path = params.get("field")
    if not path:
        return False
    field_date = to_datetime(resolve_with_entity_fallback(context, path))
    if field_date is None:
        return False

    compare_to = params.get("value", "now")
    compare_date = _now(context) if compare_to == "now" else to_datetime(compare_to)
    if compare_date is None:
        return False
    return compare_values(field_date.timestamp(), params.get("operator", "lt"), compare_date.timestamp())


def evaluate_time(params: dict[str, Any], context: dict[str, Any]) -> bool:
    if params.get("operator", "gt") not in _TIME_OPERATORS:
        return False
    kind = params.get("time")
    if kind == "state_duration":
        return _state_duration(params, context)
    if kind == "field_date":
        return _field_date(params, context)
    return False
