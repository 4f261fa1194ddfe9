"""Dedup signatures: normalized URL plus canonical options."""

import hashlib
import json
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

_DEFAULT_PORTS = {"http": 80, "https": 443}
_TRACKING_PARAMS = {"gclid", "fbclid", "ref"}


def _is_tracking_param(name: str) -> bool:
    name = name.lower()
    return name.startswith("utm_") or name in _TRACKING_PARAMS


def normalize_url(url: str) -> str:
    """Canonical form of a URL for duplicate detection.

    Lowercases scheme and host, drops default ports, tracking parameters,
    fragments and trailing slashes on non-root paths. Input that does not
    parse is returned stripped but otherwise unchanged.
    """
    url = url.strip()
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return url
    if not parts.scheme or not parts.hostname:
        return url

    scheme = parts.scheme.lower()
    host = parts.hostname.lower()
    if ":" in host:
        host = f"[{host}]"
    if port is not None and port != _DEFAULT_PORTS.get(scheme):
        host = f"{host}:{port}"
    if parts.username or parts.password:
        userinfo = parts.username or ""
        if parts.password:
            userinfo += f":{parts.password}"
        host = f"{userinfo}@{host}"

    path = parts.path or "/"
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/") or "/"

    query = urlencode(
        [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True)
         if not _is_tracking_param(k)]
    )
    return urlunsplit((scheme, host, path, query, ""))


def canonical_options(options: Optional[Dict[str, Any]]) -> str:
    """Key-sorted JSON encoding so equal option bags serialize identically."""
    return json.dumps(
        options or {}, sort_keys=True, separators=(",", ":"), default=str
    )


def dedup_signature(url: str, options: Optional[Dict[str, Any]] = None) -> str:
    payload = f"{normalize_url(url)}\n{canonical_options(options)}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
