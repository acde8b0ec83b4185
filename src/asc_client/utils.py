"""
Utility functions for asc-client.

This module provides helper functions for common operations like
identifier validation and query parameter construction.
"""

import re
from typing import Any, Dict, List, Optional

from .exceptions import ValidationError

VALID_PLATFORMS = ["IOS", "MAC_OS", "TV_OS"]

VALID_USER_ROLES = [
    "ADMIN",
    "FINANCE",
    "TECHNICAL",
    "ACCOUNT_HOLDER",
    "READ_ONLY",
    "SALES",
    "MARKETING",
    "APP_MANAGER",
    "DEVELOPER",
    "ACCESS_TO_REPORTS",
    "CUSTOMER_SUPPORT",
]

# Keyword prefixes that map onto bracketed query keys, e.g. fields[apps]
_BRACKETED_PREFIXES = ("fields", "filter", "limit", "exists")


def validate_app_id(app_id: str) -> str:
    """
    Validate an App Store app ID.

    Args:
        app_id: The app ID to validate

    Returns:
        The validated app ID as a string

    Raises:
        ValidationError: If the app ID is invalid
    """
    if not app_id:
        raise ValidationError("App ID cannot be empty")

    app_id_str = str(app_id).strip()

    if not app_id_str.isdigit():
        raise ValidationError(f"App ID must be numeric, got: {app_id_str}")

    return app_id_str


def validate_resource_id(resource_id: str, resource: str = "Resource") -> str:
    """
    Validate an opaque resource identifier (versions, builds, invitations...).

    Raises:
        ValidationError: If the identifier is empty or contains path separators
    """
    if not resource_id:
        raise ValidationError(f"{resource} ID cannot be empty")

    resource_id_str = str(resource_id).strip()

    if not resource_id_str or "/" in resource_id_str or " " in resource_id_str:
        raise ValidationError(f"Invalid {resource} ID: {resource_id!r}")

    return resource_id_str


def validate_version_string(version: str) -> str:
    """
    Validate an app version string.

    Args:
        version: The version string to validate

    Returns:
        The validated version string

    Raises:
        ValidationError: If the version string is invalid
    """
    if not version:
        raise ValidationError("Version string cannot be empty")

    version = version.strip()

    # Basic semantic versioning pattern: X.Y.Z
    if not re.match(r"^\d+\.\d+(\.\d+)?$", version):
        raise ValidationError(
            f"Invalid version format. Expected format: 'X.Y.Z', got: {version}"
        )

    return version


def validate_platform(platform: str) -> str:
    """Validate a platform identifier (IOS, MAC_OS, TV_OS)."""
    if not platform:
        raise ValidationError("Platform cannot be empty")

    platform = platform.upper().strip()

    if platform not in VALID_PLATFORMS:
        raise ValidationError(
            f"Invalid platform. Must be one of: {VALID_PLATFORMS}, got: {platform}"
        )

    return platform


def validate_user_roles(roles: List[str]) -> List[str]:
    """
    Validate a list of user roles for an invitation.

    Args:
        roles: Role names such as 'DEVELOPER' or 'APP_MANAGER'

    Returns:
        The normalized (upper-cased) role names

    Raises:
        ValidationError: If the list is empty or contains an unknown role
    """
    if not roles:
        raise ValidationError("At least one role is required")

    normalized = [str(role).upper().strip() for role in roles]
    unknown = [role for role in normalized if role not in VALID_USER_ROLES]
    if unknown:
        raise ValidationError(
            f"Invalid roles {unknown}. Must be among: {VALID_USER_ROLES}"
        )

    return normalized


def validate_email(email: str) -> str:
    """Validate an email address used for user invitations."""
    if not email:
        raise ValidationError("Email cannot be empty")

    email = email.strip()

    if not re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", email):
        raise ValidationError(f"Invalid email address: {email}")

    return email


def _camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _query_key(name: str) -> str:
    """
    Translate a Python keyword into the API's query key.

    fields_app_store_versions -> fields[appStoreVersions]
    limit_visible_apps -> limit[visibleApps]
    limit -> limit
    """
    for prefix in _BRACKETED_PREFIXES:
        if name.startswith(prefix + "_"):
            return f"{prefix}[{_camel_case(name[len(prefix) + 1:])}]"
    return _camel_case(name)


def build_query_params(**options: Any) -> Dict[str, str]:
    """
    Build query parameters for list/get endpoints.

    List and tuple values are joined with commas, booleans are lowered and
    None values are dropped.

    Example:
        >>> build_query_params(filter_platform=["IOS"], limit=10)
        {'filter[platform]': 'IOS', 'limit': '10'}
    """
    params: Dict[str, str] = {}
    for name, value in options.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            if not value:
                continue
            value = ",".join(str(v) for v in value)
        elif isinstance(value, bool):
            value = "true" if value else "false"
        params[_query_key(name)] = str(value)
    return params


def relationship_data(resource_type: str, resource_id: Optional[str]) -> Dict:
    """Build a JSON:API relationship linkage ({"data": {"type", "id"}})."""
    if resource_id is None:
        return {"data": None}
    return {"data": {"type": resource_type, "id": resource_id}}


def truncate_string(text: str, max_length: int, suffix: str = "...") -> str:
    """
    Truncate a string to a maximum length.

    Args:
        text: The text to truncate
        max_length: Maximum length allowed
        suffix: Suffix to append if truncated

    Returns:
        Truncated string
    """
    if not text or len(text) <= max_length:
        return text

    return text[: max_length - len(suffix)] + suffix
