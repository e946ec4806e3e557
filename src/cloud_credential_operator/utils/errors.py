"""Error sanitization utilities to prevent credential leakage in logs and events."""

import re
from typing import Any


# Patterns that might expose credential material
SENSITIVE_PATTERNS = [
    r"(AKIA|ASIA)[A-Z0-9]{16}",
    r"(?<![A-Za-z0-9/+=])[A-Za-z0-9/+=]{40}(?![A-Za-z0-9/+=])",
]

# Fields to redact completely
SENSITIVE_FIELDS = {
    "aws_access_key_id",
    "aws_secret_access_key",
    "access_key_id",
    "secret_access_key",
    "session_token",
    "password",
    "secret",
    "credentials",
    "token",
}


def sanitize_error_message(message: str) -> str:
    """Sanitize error message to remove sensitive information.

    Args:
        message: Original error message

    Returns:
        Sanitized error message with credential-like values redacted
    """
    sanitized = message

    for field in sorted(SENSITIVE_FIELDS, key=len, reverse=True):
        sanitized = re.sub(
            rf"\b{field}\b\s*[=:]\s*([^\s,;\)\]}}]+)",
            f"{field}: [REDACTED]",
            sanitized,
            flags=re.IGNORECASE,
        )

    for pattern in SENSITIVE_PATTERNS:
        sanitized = re.sub(pattern, "[REDACTED]", sanitized)

    return sanitized


def sanitize_exception(error: Exception) -> str:
    """Sanitize exception message.

    Args:
        error: Exception object

    Returns:
        Sanitized error message
    """
    return sanitize_error_message(str(error))


def sanitize_dict(data: dict[str, Any], sensitive_keys: set[str] | None = None) -> dict[str, Any]:
    """Sanitize dictionary by redacting sensitive fields.

    Args:
        data: Dictionary to sanitize
        sensitive_keys: Additional keys to redact (merged with SENSITIVE_FIELDS)

    Returns:
        Sanitized dictionary with sensitive values redacted
    """
    all_sensitive = SENSITIVE_FIELDS | (sensitive_keys or set())
    sanitized: dict[str, Any] = {}

    for key, value in data.items():
        key_lower = key.lower().replace("-", "_")
        if any(sensitive in key_lower for sensitive in all_sensitive):
            sanitized[key] = "[REDACTED]"
        elif isinstance(value, dict):
            sanitized[key] = sanitize_dict(value, sensitive_keys)
        elif isinstance(value, str):
            sanitized[key] = sanitize_error_message(value)
        else:
            sanitized[key] = value

    return sanitized
