"""Checksum signing of BigBlueButton API calls.

BBB authenticates a call by recomputing ``sha1(action + query + secret)``
over the query string exactly as it was sent, so parameters are
serialized in insertion order and are never re-encoded here. Values that
need escaping are encoded by the caller before they go in.
"""

from __future__ import annotations

import hashlib
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote, quote_plus

import structlog

logger = structlog.get_logger(__name__)

# Characters encodeURIComponent leaves alone
_URI_COMPONENT_SAFE = "-_.!~*'()"


def encode_component(value: str) -> str:
    """Percent-encode a single query value like encodeURIComponent."""
    return quote(value, safe=_URI_COMPONENT_SAFE)


def form_encode(value: str) -> str:
    """RFC 1866 form encoding: spaces become ``+`` and ``!'()*`` are escaped."""
    return quote_plus(value)


def _format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def serialize_params(params: Mapping[str, Any]) -> str:
    """Join params as ``k1=v1&k2=v2`` in insertion order, without encoding."""
    return "&".join(f"{key}={_format_value(value)}" for key, value in params.items())


def checksum(action: str, query: str, secret: str) -> str:
    """Hex SHA-1 over action, serialized query and shared secret."""
    return hashlib.sha1(f"{action}{query}{secret}".encode("utf-8")).hexdigest()


def hash_meeting_id(resource_id: str, secret: str) -> str:
    """External meetingID for a resource: never the raw internal id."""
    return hashlib.sha1(f"{resource_id}{secret}".encode("utf-8")).hexdigest()


def sign_action_url(endpoint: str, action: str, secret: str, params: Mapping[str, Any]) -> str:
    """Build ``{endpoint}api/{action}?{query}&checksum={sha1}``.

    Args:
        endpoint: Normalized BBB base URL (always ends in ``/``).
        action: API action name, e.g. ``getMeetingInfo``.
        secret: Tenant BBB shared secret.
        params: Ordered query parameters.

    Returns:
        The fully signed action URL.
    """
    query = serialize_params(params)
    separator = "&" if query else ""
    url = f"{endpoint}api/{action}?{query}{separator}checksum={checksum(action, query, secret)}"
    logger.debug("bbb.url_signed", action=action, url=url)
    return url


def sign_form_body(action: str, secret: str, params: Mapping[str, Any]) -> str:
    """Signed ``application/x-www-form-urlencoded`` body for POST actions."""
    query = serialize_params(params)
    return f"{query}&checksum={checksum(action, query, secret)}"
