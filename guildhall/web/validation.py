"""Validation helpers for template data and Discord identifiers."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

SNOWFLAKE_PATTERN = re.compile(r"^\d{17,19}$")


def is_snowflake(value: Any) -> bool:
    """Check whether ``value`` looks like a Discord snowflake ID."""
    return isinstance(value, str) and bool(SNOWFLAKE_PATTERN.match(value))


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string or datetime into an aware UTC datetime.

    Returns:
        The parsed datetime, or None when ``value`` cannot be interpreted.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _is_blank(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip()


def validate_template_data(data: Mapping[str, Any]) -> List[str]:
    """Collect every constraint a template payload violates.

    Args:
        data: Template fields keyed by model attribute name

    Returns:
        List[str]: Human readable violations, empty when the data is valid
    """
    errors: List[str] = []

    if _is_blank(data.get("name")):
        errors.append("Template name is required")

    if _is_blank(data.get("content")):
        errors.append("Template content is required")

    if not is_snowflake(data.get("guild_id")):
        errors.append("Valid guild ID is required")

    if not is_snowflake(data.get("created_by")):
        errors.append("Valid creator ID is required")

    scheduled_for = data.get("scheduled_for")
    if scheduled_for is not None and parse_datetime(scheduled_for) is None:
        errors.append("Invalid scheduled date")

    embeds = data.get("embeds")
    if embeds is not None:
        if isinstance(embeds, list):
            errors.extend(_embed_errors(embeds))
        else:
            errors.append("Embeds must be an array")

    components = data.get("components")
    if components is not None:
        if isinstance(components, list):
            errors.extend(_component_errors(components))
        else:
            errors.append("Components must be an array")

    return errors


def _embed_errors(embeds: List[Any]) -> List[str]:
    errors = []
    for index, embed in enumerate(embeds, start=1):
        if not isinstance(embed, Mapping):
            errors.append(f"Embed {index} must be an object")
            continue
        fields = embed.get("fields")
        if fields is None:
            continue
        if not isinstance(fields, list):
            errors.append(f"Embed {index} fields must be an array")
            continue
        for position, field in enumerate(fields, start=1):
            if not isinstance(field, Mapping):
                errors.append(f"Embed {index} field {position} must be an object")
    return errors


def _component_errors(rows: List[Any]) -> List[str]:
    errors = []
    for index, row in enumerate(rows, start=1):
        if not isinstance(row, Mapping):
            errors.append(f"Component row {index} must be an object")
            continue
        children = row.get("components")
        if children is None:
            continue
        if not isinstance(children, list):
            errors.append(f"Component row {index} components must be an array")
            continue
        for position, child in enumerate(children, start=1):
            if not isinstance(child, Mapping):
                errors.append(f"Component {position} in row {index} must be an object")
            elif child.get("options") is not None and not (
                isinstance(child["options"], list)
                and all(isinstance(option, Mapping) for option in child["options"])
            ):
                errors.append(f"Component {position} in row {index} options must be an array of objects")
    return errors


def requires_premium(data: Mapping[str, Any]) -> bool:
    """Check whether a template uses premium-only features.

    More than one embed, or any component row, needs an active guild
    entitlement.
    """
    embeds = data.get("embeds")
    components = data.get("components")
    # Malformed values are left for validate_template_data to report
    embed_count = len(embeds) if isinstance(embeds, list) else 0
    row_count = len(components) if isinstance(components, list) else 0
    return embed_count > 1 or row_count > 0


def normalize_template_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    """Coerce optional template fields into their stored shapes."""
    normalized = dict(data)
    if normalized.get("embeds") is None:
        normalized["embeds"] = []
    if normalized.get("components") is None:
        normalized["components"] = []
    if normalized.get("scheduled_for") is not None:
        normalized["scheduled_for"] = parse_datetime(normalized["scheduled_for"])
    return normalized
