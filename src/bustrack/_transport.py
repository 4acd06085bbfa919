"""HTTP transport with bearer-token auth and JSON decoding."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from bustrack._constants import USER_AGENT
from bustrack.config import TransitConfig
from bustrack.exceptions import TransitAuthenticationError, TransitTransportError

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by endpoint modules.

    Having a protocol here makes it easy to pass test doubles/mocks while
    keeping the production implementation (`HttpTransport`) concrete.
    """

    async def get_json(self, endpoint: str) -> Any:
        ...

    async def put_json(self, endpoint: str, payload: Mapping[str, Any] | None = None) -> Any:
        ...


class HttpTransport:
    """aiohttp-backed transport for the REST API."""

    def __init__(self, config: TransitConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {
            "accept": "application/json",
            "user-agent": USER_AGENT,
        }
        if self._config.access_token:
            headers["authorization"] = f"Bearer {self._config.access_token}"
        return headers

    async def _request(
        self,
        method: str,
        endpoint: str,
        payload: Mapping[str, Any] | None = None,
    ) -> Any:
        url = f"{self._config.base_url.rstrip('/')}{endpoint}"
        headers = self._headers()
        body: str | None = None
        if payload is not None:
            headers["content-type"] = "application/json; charset=UTF-8"
            body = json.dumps(payload, separators=(",", ":"))

        _logger.debug("%s %s", method, url)

        try:
            async with self._http.request(method, url, data=body, headers=headers, timeout=self._timeout) as resp:
                text = await resp.text()
                if resp.status in (401, 403):
                    raise TransitAuthenticationError(
                        f"HTTP {resp.status} from {endpoint}",
                        status_code=resp.status,
                        endpoint=endpoint,
                    )
                if not 200 <= resp.status < 300:
                    raise TransitTransportError(
                        f"HTTP {resp.status} from {endpoint}: {text[:200]}",
                        status_code=resp.status,
                        endpoint=endpoint,
                    )
        except TransitTransportError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise TransitTransportError(
                f"Request to {endpoint} failed: {exc}",
                endpoint=endpoint,
            ) from exc

        if not text.strip():
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise TransitTransportError(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                endpoint=endpoint,
            ) from exc

    async def get_json(self, endpoint: str) -> Any:
        return await self._request("GET", endpoint)

    async def put_json(self, endpoint: str, payload: Mapping[str, Any] | None = None) -> Any:
        return await self._request("PUT", endpoint, payload)
