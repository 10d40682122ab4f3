"""Input validation for cftunnel.

Provides validators for hostnames, service URLs, API credentials and the
identifier shapes returned by the Cloudflare API. Everything here runs before
any network call is made.
"""

from __future__ import annotations

import re
from urllib.parse import urlparse


class ValidationError(ValueError):
    """Raised when input validation fails."""
    pass


# Cloudflare zone and account identifiers
HEX32_RE = re.compile(r"^[0-9a-f]{32}$")

# Tunnel identifiers
UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")

_LABEL_RE = re.compile(r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?$")

ALLOWED_SERVICE_SCHEMES = ("http", "https")


def resolve_hostname(hostname: str) -> tuple[str, str]:
    """Split a fully-qualified hostname into tunnel name and root domain.

    The leftmost label becomes the tunnel name, the remaining labels the root
    domain (``app.sub.example.com`` -> ``("app", "sub.example.com")``).

    Hostnames need at least three labels.
    Raises ValidationError if invalid.
    """
    if not hostname:
        raise ValidationError("Hostname cannot be empty")

    hostname = hostname.strip().lower().rstrip(".")

    labels = hostname.split(".")
    if len(labels) < 3:
        raise ValidationError(
            f"Hostname '{hostname}' must have at least three labels (e.g., app.example.com)"
        )

    for label in labels:
        if not label:
            raise ValidationError("Hostname labels cannot be empty")
        if len(label) > 63:
            raise ValidationError("Hostname labels must be 63 characters or less")
        if not _LABEL_RE.match(label):
            raise ValidationError(
                f"Invalid hostname label '{label}': must be alphanumeric with optional "
                "hyphens, cannot start/end with hyphen"
            )

    return labels[0], ".".join(labels[1:])


def validate_service_url(url: str) -> str:
    """Validate the local service URL a hostname is routed to.

    Returns the URL stripped of surrounding whitespace, scheme lowercased.
    Raises ValidationError if invalid.
    """
    if not url:
        raise ValidationError("Service URL cannot be empty")

    url = url.strip()
    parsed = urlparse(url)

    if parsed.scheme not in ALLOWED_SERVICE_SCHEMES:
        raise ValidationError("Service URL must use http or https")

    if not parsed.netloc:
        raise ValidationError("Service URL must include a host")

    # urlparse lowercases the scheme, the rest is kept verbatim
    return parsed.scheme + url[len(parsed.scheme):]


def validate_api_token(token: str) -> str:
    if not token or not token.strip():
        raise ValidationError("API token cannot be empty")

    token = token.strip()
    if any(c.isspace() for c in token):
        raise ValidationError("API token cannot contain whitespace")

    return token


def is_hex32(value: str | None) -> bool:
    return bool(value) and bool(HEX32_RE.match(value))


def is_uuid(value: str | None) -> bool:
    return bool(value) and bool(UUID_RE.match(value))


def validate_hex32(value: str, field: str) -> str:
    """Validate a zone or account identifier supplied by the operator."""
    value = (value or "").strip().lower()
    if not is_hex32(value):
        raise ValidationError(f"{field} must be 32 hexadecimal characters")
    return value
