"""Utility functions for the cluster reconciler."""

import datetime
import uuid
from typing import Any

from models import ConfigurationError

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def is_valid_uuid(value: str) -> bool:
    """Check if a string is a valid UUID."""
    try:
        uuid.UUID(value)
        return True
    except (ValueError, TypeError, AttributeError):
        return False


def normalize_location(location: str) -> str:
    """Normalize a region name for comparison and submission.

    Example: 'East US 2' -> 'eastus2'
    """
    return location.replace(" ", "").lower()


def parse_bool(value: str, name: str) -> bool:
    """Parse a boolean environment value, raising on anything unexpected."""
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {value!r}")


def parse_float(value: str, name: str, minimum: float = 0.0) -> float:
    """Parse a non-negative float environment value."""
    try:
        parsed = float(value)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from e
    if parsed < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {parsed}")
    return parsed


def now_iso() -> str:
    """Return current UTC time in ISO format."""
    return datetime.datetime.now(datetime.UTC).isoformat()


def set_condition(
    status: dict[str, Any],
    condition_type: str,
    condition_status: str,
    reason: str = "",
    message: str = "",
) -> None:
    """Set or update a condition in the status conditions list."""
    conditions: list[dict[str, str]] = status.setdefault("conditions", [])

    for condition in conditions:
        if condition["type"] == condition_type:
            if condition["status"] != condition_status:
                condition["status"] = condition_status
                condition["lastTransitionTime"] = now_iso()
            condition["reason"] = reason
            condition["message"] = message
            return

    conditions.append(
        {
            "type": condition_type,
            "status": condition_status,
            "reason": reason,
            "message": message,
            "lastTransitionTime": now_iso(),
        }
    )
