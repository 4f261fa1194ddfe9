"""Audit target validation."""

from typing import Any, List
from urllib.parse import urlsplit

from pydantic import BaseModel, Field

MAX_URL_LENGTH = 2048
_ALLOWED_SCHEMES = ("http", "https")


class UrlValidation(BaseModel):
    is_valid: bool = True
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


def _is_internal_host(host: str) -> bool:
    return (
        host == "localhost"
        or host.startswith("127.")
        or host.startswith("192.168.")
        or host.startswith("10.")
        or host.endswith(".local")
    )


def validate_audit_url(url: Any) -> UrlValidation:
    """Check that ``url`` is an absolute http(s) URL we are willing to audit.

    Internal hosts are allowed but flagged with a warning.
    """
    result = UrlValidation()

    if not url or not isinstance(url, str) or not url.strip():
        result.is_valid = False
        result.errors.append("URL is required")
        return result

    url = url.strip()
    if len(url) > MAX_URL_LENGTH:
        result.is_valid = False
        result.errors.append(f"URL too long (max {MAX_URL_LENGTH} characters)")

    try:
        parts = urlsplit(url)
        host = parts.hostname
        parts.port  # raises ValueError for a malformed port
    except ValueError:
        result.is_valid = False
        result.errors.append("Invalid URL format")
        return result

    if parts.scheme.lower() not in _ALLOWED_SCHEMES:
        result.is_valid = False
        result.errors.append("Invalid protocol. Only HTTP and HTTPS are supported")
    if not host:
        result.is_valid = False
        result.errors.append("URL must include a host")
    elif _is_internal_host(host):
        result.warnings.append("Local/internal URL detected")

    return result
