"""
Fingerprint Relay — Identification relay endpoint.

Receives fingerprint telemetry (directly from the browser or bundled by
an earlier hop), forwards it to the identification API and returns the
visitor id, bot verdict and cumulative backend latency. Cookies set by
the identification API are passed back to the caller.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from fp_relay.config import Settings, get_settings
from fp_relay.relay.client import (
    IdentificationClient,
    UpstreamResult,
    get_identification_client,
)
from fp_relay.relay.context import parse_inbound, resolve_context
from fp_relay.relay.errors import ConfigurationError, RelayError, ValidationError

logger = logging.getLogger("fp_relay.relay")

router = APIRouter(tags=["Identification"])

_MISSING = object()


def _dig(data: Any, path: tuple[str, ...]) -> Any:
    """Walk nested dicts, returning _MISSING on the first absent key."""
    node = data
    for key in path:
        if not isinstance(node, dict) or key not in node:
            return _MISSING
        node = node[key]
    return node


def build_response_body(result: UpstreamResult, backend_latency: float) -> dict:
    """Distil the upstream reply; absent fields are left out."""
    data = result.data
    body = {
        "success": True,
        "visitorId": _dig(data, ("products", "identification", "data", "visitorId")),
        "agentData": _dig(data, ("agentData",)),
        "backendLatency": backend_latency,
        "botd": _dig(data, ("products", "botd", "data")),
        "requestId": _dig(data, ("requestId",)),
    }
    return {k: v for k, v in body.items() if v is not _MISSING}


async def _read_body(request: Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError("Request body must be valid JSON") from exc


@router.post("/fingerprint")
async def relay_fingerprint(
    request: Request,
    cfg: Settings = Depends(get_settings),
    client: IdentificationClient = Depends(get_identification_client),
) -> JSONResponse:
    """
    Relay one fingerprint payload to the identification API.

    Pipeline:
      1. Resolve the input mode (chained bundle or direct payload)
      2. Normalize client IP / host / user agent / tracking cookie
      3. POST to the identification API, timing the round trip
      4. Reshape the reply and forward its Set-Cookie headers
    """
    try:
        mode = parse_inbound(await _read_body(request), request.headers)
    except ValidationError as exc:
        logger.info("Rejected relay request: %s", exc.message)
        return JSONResponse({"error": exc.message}, status_code=exc.status_code)

    try:
        ctx = resolve_context(mode, fallback_ip=cfg.fallback_ip)

        api_key = cfg.api_key
        if not api_key:
            raise ConfigurationError("Configuration error: Missing API key")

        start = time.perf_counter()
        result = await client.send(ctx.to_payload(), api_key)
        elapsed_ms = (time.perf_counter() - start) * 1000

        backend_latency = ctx.prior_latency + elapsed_ms
        logger.debug(
            "Relayed fingerprint for %s (%.1fms, cumulative %.1fms)",
            ctx.client_ip, elapsed_ms, backend_latency,
        )
        # Renders eagerly; raises ValueError on NaN/Infinity
        response = JSONResponse(build_response_body(result, backend_latency))
    except RelayError as exc:
        logger.error("Fingerprint relay failed: %s", exc.message)
        return JSONResponse({"error": exc.message}, status_code=exc.status_code)
    except Exception as exc:
        logger.exception("Fingerprint relay failed")
        return JSONResponse({"error": str(exc)}, status_code=500)

    for cookie in result.cookies:
        response.headers.append("set-cookie", cookie)
    return response
