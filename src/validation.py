"""Field validators and diff-suppression predicates.

Validators take a value and return an error message, or None when the value
is acceptable. They are attached to fields in a schema and run by the generic
validation pass; they never see other fields. Cross-field rules belong in an
adapter's expand step.
"""

import ipaddress
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from utils import is_valid_uuid, normalize_location

Validator = Callable[[Any], str | None]
DiffSuppressor = Callable[[Any, Any], bool]

_AGENT_POOL_NAME = re.compile(r"^[a-z][a-z0-9]{0,11}$")
_RESOURCE_GROUP_NAME = re.compile(r"^[-\w._()]{1,90}$")


def no_empty_strings(value: Any) -> str | None:
    if not isinstance(value, str) or not value.strip():
        return "must not be empty"
    return None


def cidr(value: Any) -> str | None:
    """Accept an IPv4 or IPv6 network in CIDR notation with no host bits set."""
    if not isinstance(value, str) or "/" not in value:
        return f"{value!r} is not a CIDR block"
    try:
        ipaddress.ip_network(value, strict=True)
    except ValueError as e:
        return f"{value!r} is not a valid CIDR block: {e}"
    return None


def uuid_value(value: Any) -> str | None:
    if not is_valid_uuid(value):
        return f"{value!r} is not a valid UUID"
    return None


def uuid_or_empty(value: Any) -> str | None:
    if value == "":
        return None
    return uuid_value(value)


def agent_pool_name(value: Any) -> str | None:
    """Pool names are lowercase alphanumerics, starting with a letter, max 12."""
    if not isinstance(value, str) or not _AGENT_POOL_NAME.match(value):
        return (
            f"{value!r} must start with a lowercase letter, contain only "
            "lowercase letters and digits, and be at most 12 characters"
        )
    return None


def resource_group_name(value: Any) -> str | None:
    if (
        not isinstance(value, str)
        or not _RESOURCE_GROUP_NAME.match(value)
        or value.endswith(".")
    ):
        return f"{value!r} is not a valid resource group name"
    return None


def resource_id(value: Any) -> str | None:
    try:
        parse_resource_id(value)
    except ValueError as e:
        return str(e)
    return None


def int_at_least(minimum: int) -> Validator:
    def validate(value: Any) -> str | None:
        if value < minimum:
            return f"must be at least {minimum}, got {value}"
        return None

    return validate


def string_in(allowed: Iterable[str], ignore_case: bool = False) -> Validator:
    choices = list(allowed)
    normalized = {c.lower() if ignore_case else c for c in choices}

    def validate(value: Any) -> str | None:
        candidate = value.lower() if ignore_case and isinstance(value, str) else value
        if candidate not in normalized:
            return f"{value!r} must be one of {choices}"
        return None

    return validate


# -----------------------------------------------------------------------------
# Diff suppression
# -----------------------------------------------------------------------------


def case_difference(old: Any, new: Any) -> bool:
    """Treat strings differing only in case as equal."""
    if isinstance(old, str) and isinstance(new, str):
        return old.lower() == new.lower()
    return False


def location_difference(old: Any, new: Any) -> bool:
    """Treat 'East US' and 'eastus' as the same region."""
    if isinstance(old, str) and isinstance(new, str):
        return normalize_location(old) == normalize_location(new)
    return False


def map_contains(old: Any, new: Any) -> bool:
    """Treat a map as unchanged when the remote added keys of its own."""
    if isinstance(old, dict) and isinstance(new, dict):
        return all(old.get(k) == v for k, v in new.items())
    return False


# -----------------------------------------------------------------------------
# Resource IDs
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class ResourceID:
    """Parsed ARM-style resource ID."""

    subscription_id: str
    resource_group: str
    provider: str
    path: dict[str, str] = field(default_factory=dict)


def parse_resource_id(value: Any) -> ResourceID:
    """Parse '/subscriptions/{s}/resourceGroups/{rg}/providers/{ns}/{type}/{name}'.

    Raises:
        ValueError: If the ID is malformed.
    """
    if not isinstance(value, str) or not value.startswith("/"):
        raise ValueError(f"{value!r} is not a resource ID")

    components = value.strip("/").split("/")
    if len(components) % 2 != 0:
        raise ValueError(f"resource ID {value!r} has an odd number of segments")

    path: dict[str, str] = {}
    fixed: dict[str, str] = {}
    for i in range(0, len(components), 2):
        key, val = components[i], components[i + 1]
        if not key or not val:
            raise ValueError(f"resource ID {value!r} contains an empty segment")
        # ARM is inconsistent about the casing of these segments
        if key.lower() in ("subscriptions", "resourcegroups", "providers"):
            fixed[key.lower()] = val
        else:
            path[key] = val

    if not fixed.get("subscriptions"):
        raise ValueError(f"resource ID {value!r} has no subscription")
    if not fixed.get("resourcegroups"):
        raise ValueError(f"resource ID {value!r} has no resource group")

    return ResourceID(
        subscription_id=fixed["subscriptions"],
        resource_group=fixed["resourcegroups"],
        provider=fixed.get("providers", ""),
        path=path,
    )
