"""Outbound HTTP proxy for BigBlueButton API calls.

Issues a single GET or POST, buffers the whole body and then decodes the
XML ``<response>`` element into a dict. The body is never parsed
chunk-by-chunk. There is no retry here; callers that need one (the
meeting-start poll) wrap their own.
"""

from __future__ import annotations

from enum import Enum
from typing import Any
from urllib.parse import urlsplit
from xml.parsers.expat import ExpatError

import httpx
import structlog

from src.bbb_meetings.bbb.xmlcodec import XMLCodec, response_codec
from src.bbb_meetings.core.errors import ProxyError
from src.bbb_meetings.core.monitoring import track_bbb_call

logger = structlog.get_logger(__name__)


class ResponseMode(str, Enum):
    XML = "xml"
    RAW = "raw"


def _action_from_url(url: str) -> str:
    return urlsplit(url).path.rstrip("/").rsplit("/", 1)[-1] or "unknown"


class BBBProxy:
    """Executes signed BBB URLs and returns decoded responses.

    Args:
        codec: XML codec used for ``ResponseMode.XML`` calls.
        timeout: Per-request timeout in seconds.
    """

    def __init__(self, codec: XMLCodec | None = None, timeout: float = 10.0) -> None:
        self._codec = codec or response_codec
        self._timeout = timeout

    def _client(self, timeout: float | None = None) -> httpx.AsyncClient:
        """Create a new httpx client; connections are not pooled across calls."""
        return httpx.AsyncClient(timeout=timeout or self._timeout)

    async def call(self, url: str, timeout: float | None = None) -> dict[str, Any]:
        """GET ``url`` and return the decoded ``<response>`` mapping."""
        return await self.call_extended(url, timeout=timeout)

    async def call_extended(
        self,
        url: str,
        response_mode: ResponseMode = ResponseMode.XML,
        method: str = "GET",
        body: str | None = None,
        content_type: str | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Perform one call with full control over method, body and decoding.

        Args:
            url: Fully signed action URL.
            response_mode: XML to decode ``<response>``, RAW for the body text.
            method: HTTP method, GET or POST.
            body: Request body for POST.
            content_type: Content-Type header for the body.
            timeout: Overrides the proxy default timeout.

        Returns:
            Decoded response mapping, or the raw body string in RAW mode.

        Raises:
            ProxyError: On connection failure, HTTP error status, or
                unparseable XML.
        """
        action = _action_from_url(url)
        headers = {"Content-Type": content_type} if content_type else None

        try:
            with track_bbb_call(action):
                async with self._client(timeout) as client:
                    if method.upper() == "POST":
                        response = await client.post(url, content=body, headers=headers)
                    else:
                        response = await client.get(url, headers=headers)
                    response.raise_for_status()
                    text = response.text
        except httpx.HTTPError as exc:
            logger.error("bbb.call_failed", action=action, error=str(exc))
            raise ProxyError() from exc

        if response_mode == ResponseMode.RAW:
            return text

        try:
            result = self._codec.decode(text, root="response")
        except (ExpatError, KeyError) as exc:
            logger.error("bbb.response_unparseable", action=action, error=str(exc))
            raise ProxyError() from exc

        logger.debug(
            "bbb.call_completed",
            action=action,
            returncode=result.get("returncode"),
            message_key=result.get("messageKey"),
        )
        return result
