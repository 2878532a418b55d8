"""Input validation helpers for registration parameters."""
from __future__ import annotations
import re

from .exceptions import InputValidationError

_GUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")
_DOMAIN_RE = re.compile(r"^(?=.{4,253}$)([a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$")
_INVALID_FILE_CHARS = '<>:"/\\|?*'


def validate_application_name(raw: str) -> str:
    """Validate the application display name.

    Args:
        raw: Raw application name input

    Returns:
        Trimmed name

    Raises:
        InputValidationError: If the name is blank or too long
    """
    name = (raw or "").strip()
    if not name:
        raise InputValidationError("ApplicationName is required", parameter="ApplicationName")
    if len(name) > 120:
        raise InputValidationError("ApplicationName must not exceed 120 characters", parameter="ApplicationName")
    return name


def validate_export_name(name: str) -> str:
    """Check that the application name can be used for exported file names.

    Raises:
        InputValidationError: If the name contains path or reserved characters
    """
    if any(char in name for char in _INVALID_FILE_CHARS) or name in {".", ".."}:
        raise InputValidationError(
            f"ApplicationName {name!r} cannot be used as a file name with --out-path",
            parameter="ApplicationName",
        )
    return name


def validate_tenant(raw: str) -> str:
    """Validate a tenant given as a directory id (GUID) or a verified domain.

    Args:
        raw: Tenant input, e.g. "contoso.onmicrosoft.com"

    Returns:
        Lower-cased tenant

    Raises:
        InputValidationError: If the tenant is invalid
    """
    tenant = (raw or "").strip().lower()
    if not tenant:
        raise InputValidationError("Tenant is required", parameter="Tenant")
    if not (_GUID_RE.match(tenant) or _DOMAIN_RE.match(tenant)):
        raise InputValidationError(
            "Tenant must be a directory id or a domain such as contoso.onmicrosoft.com",
            parameter="Tenant",
        )
    return tenant
