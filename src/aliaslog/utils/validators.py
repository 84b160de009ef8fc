"""Input validation utilities."""

import re
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type

from ..core.models import AggregationQuery, GroupBy, LogLevel, SortBy, SortOrder
from .exceptions import ValidationError

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

REQUEST_FIELDS = {
    "userIds", "aliasNames", "date", "logLevels", "limit", "offset",
    "groupBy", "sortBy", "sortOrder", "includeMetadata", "enableCache",
}


def validate_date_string(value: str) -> date:
    """Parse a YYYY-MM-DD string."""
    if not isinstance(value, str) or not DATE_PATTERN.match(value.strip()):
        raise ValidationError(f"Date must be YYYY-MM-DD, got {value!r}")
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError(f"Invalid calendar date: {value!r}")


def validate_string_list(name: str, value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
        raise ValidationError(f"'{name}' must be a list of strings")
    return [v for v in value if v.strip()]


def validate_int(name: str, value: Any, default: int, minimum: int = 0, maximum: Optional[int] = None) -> int:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"'{name}' must be an integer")
    if value < minimum:
        raise ValidationError(f"'{name}' must be >= {minimum}")
    if maximum is not None and value > maximum:
        raise ValidationError(f"'{name}' must be <= {maximum}")
    return value


def validate_choice(name: str, value: Any, enum_type: Type[Enum], default=None):
    if value is None:
        return default
    if isinstance(value, enum_type):
        return value
    try:
        return enum_type(str(value).strip().lower())
    except ValueError:
        choices = ", ".join(member.value for member in enum_type)
        raise ValidationError(f"'{name}' must be one of: {choices}")


def validate_bool(name: str, value: Any, default: bool) -> bool:
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ValidationError(f"'{name}' must be a boolean")
    return value


def build_query(request: Dict[str, Any], default_limit: int = 1000, max_limit: int = 10000) -> AggregationQuery:
    """
    Validate an aggregation request and convert it to an AggregationQuery.

    Raises:
        ValidationError: unknown fields, wrong types or out-of-range values
    """
    if not isinstance(request, dict):
        raise ValidationError("Aggregation request must be an object")

    unknown = set(request) - REQUEST_FIELDS
    if unknown:
        raise ValidationError(f"Unknown request fields: {', '.join(sorted(unknown))}")

    levels = []
    for name in validate_string_list("logLevels", request.get("logLevels")):
        try:
            levels.append(LogLevel.parse(name))
        except ValueError as e:
            raise ValidationError(str(e))

    raw_date = request.get("date")
    return AggregationQuery(
        user_ids=tuple(validate_string_list("userIds", request.get("userIds"))),
        alias_names=tuple(validate_string_list("aliasNames", request.get("aliasNames"))),
        log_levels=tuple(levels),
        date=validate_date_string(raw_date) if raw_date else None,
        limit=validate_int("limit", request.get("limit"), default_limit, maximum=max_limit),
        offset=validate_int("offset", request.get("offset"), 0),
        group_by=validate_choice("groupBy", request.get("groupBy"), GroupBy),
        sort_by=validate_choice("sortBy", request.get("sortBy"), SortBy, SortBy.TIMESTAMP),
        sort_order=validate_choice("sortOrder", request.get("sortOrder"), SortOrder, SortOrder.DESC),
        include_metadata=validate_bool("includeMetadata", request.get("includeMetadata"), True),
        use_cache=validate_bool("enableCache", request.get("enableCache"), True),
    )


def sanitize_alias_name(alias_name: str) -> str:
    """Keep alphanumerics and common separators; limit length."""
    sanitized = re.sub(r"[^\w\-. ]", "", alias_name.strip())
    return sanitized[:100]
