"""
Input validation utilities for the risk service.

Reusable checks for values that arrive from HTTP paths, command-line
flags and environment variables.
"""

import re


class ValidationError(ValueError):
    """Raised when input validation fails."""
    pass


_PIE_ID_PATTERN = re.compile(r"[0-9a-f]{32}")
_CRON_FIELD_PATTERN = re.compile(r"[A-Za-z0-9*/,\-]+")

CRON_FIELD_NAMES = ("second", "minute", "hour", "day", "month", "day_of_week")


def validate_pie_id(pie_id: str, field_name: str = "pie_id") -> str:
    """
    Validate a pie ID.

    Pie IDs are 32 lowercase hexadecimal characters (a UUID without
    dashes). Uppercase input is accepted and lowercased.

    Args:
        pie_id: The pie ID to validate
        field_name: Name of the field (for error messages)

    Returns:
        The normalized pie ID

    Raises:
        ValidationError: If the ID is not well formed

    Examples:
        >>> validate_pie_id("4F0C8B5E2A7D4F8D9B8A2B7E6C1D0A93")
        '4f0c8b5e2a7d4f8d9b8a2b7e6c1d0a93'
    """
    if not pie_id or not isinstance(pie_id, str):
        raise ValidationError(f"{field_name} must be a non-empty string")

    pie_id = pie_id.strip().lower()
    if not _PIE_ID_PATTERN.fullmatch(pie_id):
        raise ValidationError(
            f"{field_name} has a bad format. Should be 32 hexadecimal characters"
        )
    return pie_id


def normalize_endpoint(address: str, scheme: str = "http", field_name: str = "endpoint") -> str:
    """
    Normalize a service address into a base URL.

    A bare port (":3001") is expanded to the local host, and a trailing
    slash is removed so paths can be appended with "/".

    Examples:
        >>> normalize_endpoint(":3001")
        'http://localhost:3001'
        >>> normalize_endpoint("http://fhir:3001/")
        'http://fhir:3001'
    """
    if not address or not isinstance(address, str):
        raise ValidationError(f"{field_name} must be a non-empty string")

    address = address.strip()
    if address.startswith(":"):
        address = f"{scheme}://localhost{address}"
    elif "://" not in address:
        address = f"{scheme}://{address}"

    return address.rstrip("/")


def validate_cron_spec(spec: str) -> dict[str, str]:
    """
    Split a six-field cron expression into named fields.

    Format: "second minute hour day month day_of_week", e.g.
    "0 0 22 * * *" for every day at 22:00:00.

    Returns:
        Mapping of field name to field expression

    Raises:
        ValidationError: If the expression does not have six valid fields
    """
    if not spec or not isinstance(spec, str):
        raise ValidationError("cron spec must be a non-empty string")

    fields = spec.split()
    if len(fields) != len(CRON_FIELD_NAMES):
        raise ValidationError(
            f"cron spec '{spec}' must have {len(CRON_FIELD_NAMES)} fields: "
            + " ".join(CRON_FIELD_NAMES)
        )

    for name, value in zip(CRON_FIELD_NAMES, fields):
        if not _CRON_FIELD_PATTERN.fullmatch(value):
            raise ValidationError(f"cron spec field {name} has invalid characters: {value}")

    return dict(zip(CRON_FIELD_NAMES, fields))


def validate_timeout(timeout: float, field_name: str = "timeout") -> float:
    """Validate a positive timeout in seconds."""
    try:
        timeout = float(timeout)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{field_name} must be a number of seconds") from e

    if timeout <= 0:
        raise ValidationError(f"{field_name} must be positive")
    return timeout
