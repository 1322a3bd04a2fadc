"""Masking of sensitive values in query results before the model sees them."""

from __future__ import annotations

from typing import Any

REDACTED = "***REDACTED***"
_SECRET_MARKERS = ("password", "token", "secret")


def _mask_part(part: str) -> str:
    if len(part) <= 2:
        return part[:1] + "***"
    return part[0] + "***" + part[-1]


def mask_email(email: str) -> str:
    """Mask an address as ``u***r@e***e.com``. Non-addresses become ``***``."""
    if not email or "@" not in email:
        return "***"
    local, _, domain = email.partition("@")
    domain_name, _, tld = domain.partition(".")
    masked = f"{_mask_part(local)}@{_mask_part(domain_name)}"
    return f"{masked}.{tld}" if tld else masked


def mask_sensitive(data: Any) -> Any:
    """Recursively mask email-like keys and redact credential-like keys."""
    if isinstance(data, list):
        return [mask_sensitive(item) for item in data]

    if isinstance(data, dict):
        masked: dict[str, Any] = {}
        for key, value in data.items():
            lowered = str(key).lower()
            if "email" in lowered:
                masked[key] = mask_email(value) if isinstance(value, str) else value
            elif any(marker in lowered for marker in _SECRET_MARKERS):
                masked[key] = REDACTED
            else:
                masked[key] = mask_sensitive(value)
        return masked

    return data
