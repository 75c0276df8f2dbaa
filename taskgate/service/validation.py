"""Canonical input rules shared by request schemas and the auth service.

Every validator raises ``ValueError`` with a client-facing message so it can
be used both from pydantic ``field_validator`` hooks and directly.
"""

from __future__ import annotations

import re
import unicodedata

from taskgate.service.errors import ValidationError

_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")
_NAME_PATTERN = re.compile(r"^[a-zA-Z\s\-'.]+$")

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128
NAME_MAX_LENGTH = 100
EMAIL_MAX_LENGTH = 254


def normalize_unicode(value: str) -> str:
    """Strip zero-width and bidi override characters, then apply NFKC."""
    zero_width = "\u200b\u200c\u200d\ufeff"
    cleaned = "".join(c for c in value if c not in zero_width)
    bidi_overrides = set(chr(c) for c in range(0x202A, 0x202F))
    bidi_overrides.update(chr(c) for c in range(0x2066, 0x206A))
    cleaned = "".join(c for c in cleaned if c not in bidi_overrides)
    return unicodedata.normalize("NFKC", cleaned)


def normalize_email(value: str) -> str:
    """Lower-case and trim without validating; used for lookups."""
    return normalize_unicode(value.strip().lower())


def validate_email(value: str) -> str:
    if not isinstance(value, str):
        raise ValueError("Please add a valid email")
    normalized = normalize_email(value)
    if len(normalized) > EMAIL_MAX_LENGTH:
        raise ValueError("Email address too long")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain or len(local) > 64:
        raise ValueError("Please add a valid email")
    if not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("Please add a valid email")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("Please add a valid email")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("Please add a valid email")
    return normalized


def validate_name(value: str) -> str:
    if not isinstance(value, str):
        raise ValueError("Name is required")
    cleaned = normalize_unicode(value).strip()
    if not cleaned:
        raise ValueError("Name is required")
    if len(cleaned) > NAME_MAX_LENGTH:
        raise ValueError(f"Name must be at most {NAME_MAX_LENGTH} characters")
    if not _NAME_PATTERN.match(cleaned):
        raise ValueError("Name can only contain letters, spaces, hyphens, apostrophes, and periods")
    return cleaned


def validate_password(value: str) -> str:
    """Single password policy for register, rotation and reset."""
    if not isinstance(value, str):
        raise ValueError("Password is required")
    if len(value) < PASSWORD_MIN_LENGTH:
        raise ValueError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
    if len(value) > PASSWORD_MAX_LENGTH:
        raise ValueError(f"Password must be at most {PASSWORD_MAX_LENGTH} characters")
    if not re.search(r"[a-z]", value) or not re.search(r"[A-Z]", value) or not re.search(r"\d", value):
        raise ValueError(
            "Password must contain at least one lowercase letter, one uppercase letter, and one number"
        )
    return value


def enforce(validator, value):
    """Run a rule and convert its ``ValueError`` into a 400 ``ValidationError``."""
    try:
        return validator(value)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
