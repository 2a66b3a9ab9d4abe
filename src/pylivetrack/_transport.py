"""HTTP transport for the upstream JSON APIs."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from pylivetrack._constants import USER_AGENT
from pylivetrack.exceptions import TrackingTransportError

_logger = logging.getLogger(__name__)


class HttpTransport(Protocol):
    """Structural transport interface used by the API modules.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (:class:`AiohttpTransport`) concrete.
    """

    async def get_json(self, url: str, params: Mapping[str, Any] | None = None) -> Any:
        ...


def _redact_params(params: Mapping[str, Any] | None) -> dict[str, Any]:
    if not params:
        return {}
    return {key: ("***" if key == "access_token" else value) for key, value in params.items()}


class AiohttpTransport:
    """GET-and-decode-JSON over a shared :class:`aiohttp.ClientSession`."""

    def __init__(self, http_session: aiohttp.ClientSession, *, timeout: float = 10.0) -> None:
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def get_json(self, url: str, params: Mapping[str, Any] | None = None) -> Any:
        """GET *url* and return the decoded JSON body.

        Raises
        ------
        TrackingTransportError
            On network failure, timeout, non-200 status or a non-JSON body.
        """
        headers = {
            "accept": "application/json",
            "user-agent": USER_AGENT,
        }
        query = {key: value for key, value in (params or {}).items() if value is not None}

        _logger.debug("GET %s params=%s", url, _redact_params(query))

        try:
            async with self._http.get(url, params=query, headers=headers, timeout=self._timeout) as resp:
                text = await resp.text()
                if resp.status != 200:
                    raise TrackingTransportError(
                        f"HTTP {resp.status} from {url}: {text[:200]}",
                        status_code=resp.status,
                        endpoint=url,
                    )
        except TrackingTransportError:
            raise
        except asyncio.TimeoutError as exc:
            raise TrackingTransportError(f"Request to {url} timed out", endpoint=url) from exc
        except aiohttp.ClientError as exc:
            raise TrackingTransportError(f"Request to {url} failed: {exc}", endpoint=url) from exc

        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise TrackingTransportError(
                f"Invalid JSON from {url}: {text[:200]}",
                status_code=200,
                endpoint=url,
            ) from exc
