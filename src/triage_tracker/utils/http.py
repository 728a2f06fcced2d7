"""Shared HTTP utilities."""

from __future__ import annotations

from urllib.parse import urlparse

_ENDPOINT_ALLOWED_SCHEMES = frozenset({"http", "https"})


def normalize_endpoint_url(value: str) -> str:
    """Validate a remote workflow endpoint URL and strip surrounding whitespace.

    Query strings are preserved since workflow trigger URLs carry their
    signature there.
    """
    candidate = value.strip()
    if not candidate:
        raise ValueError("endpoint URL must not be empty")

    parsed = urlparse(candidate)
    if parsed.scheme.lower() not in _ENDPOINT_ALLOWED_SCHEMES:
        raise ValueError("endpoint URL must use http or https")
    if not parsed.netloc:
        raise ValueError("endpoint URL must include host")
    if parsed.username or parsed.password:
        raise ValueError("endpoint URL must not include userinfo")
    if parsed.fragment:
        raise ValueError("endpoint URL must not include a fragment")
    return candidate


def redact_url(value: str) -> str:
    """Drop the query string (which may carry a signature) for logging."""
    parsed = urlparse(value)
    if not parsed.query:
        return value
    return f"{parsed.scheme}://{parsed.netloc}{parsed.path}?***"
