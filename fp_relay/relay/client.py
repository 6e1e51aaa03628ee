"""
Fingerprint Relay — Identification API client.

One POST per relayed request. The underlying httpx client is
connection-pooled and shared across requests.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
from fastapi import Depends

from fp_relay.config import Settings, get_settings
from fp_relay.relay.errors import UpstreamError

logger = logging.getLogger("fp_relay.relay.client")

_identification_client: Optional["IdentificationClient"] = None


@dataclass
class UpstreamResult:
    """Parsed reply from the identification API."""

    data: dict[str, Any]
    cookies: list[str] = field(default_factory=list)


class IdentificationClient:
    """Thin async wrapper around the identification endpoint."""

    def __init__(
        self,
        url: str,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            transport=transport,
            follow_redirects=True,
            limits=httpx.Limits(
                max_connections=100,
                max_keepalive_connections=20,
            ),
        )

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    async def send(self, payload: dict[str, Any], api_key: str) -> UpstreamResult:
        """
        POST the payload and return the parsed reply.

        Raises UpstreamError on transport failures and non-2xx replies.
        """
        try:
            resp = await self._client.post(
                self.url,
                json=payload,
                headers={
                    "Content-Type": "application/json",
                    "Auth-API-Key": api_key,
                },
            )
        except httpx.RequestError as exc:
            logger.error("Identification API unreachable: %s", exc)
            raise UpstreamError(None, str(exc)) from exc

        if not resp.is_success:
            raise UpstreamError(resp.status_code, resp.text)

        data = resp.json()
        logger.debug("Identification API → %d", resp.status_code)
        return UpstreamResult(
            data=data if isinstance(data, dict) else {},
            cookies=resp.headers.get_list("set-cookie"),
        )

    async def close(self) -> None:
        await self._client.aclose()


def get_identification_client(
    cfg: Settings = Depends(get_settings),
) -> IdentificationClient:
    """Lazily initialise the shared identification client."""
    global _identification_client
    if _identification_client is None or _identification_client.is_closed:
        _identification_client = IdentificationClient(
            url=cfg.upstream_url,
            timeout=cfg.upstream_timeout,
        )
    return _identification_client


async def close_identification_client() -> None:
    """Close the shared client on application shutdown."""
    global _identification_client
    if _identification_client is not None:
        await _identification_client.close()
        _identification_client = None
