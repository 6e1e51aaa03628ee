"""
Fingerprint Relay — Request context resolution.

Turns an inbound body plus request headers into the fields the
identification API needs: client IP, host, user agent, the ``_iidt``
tracking cookie and the full header map.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Union

from pydantic import BaseModel, field_validator

from fp_relay.relay.errors import ValidationError

logger = logging.getLogger("fp_relay.relay.context")

TRACKING_COOKIE = "_iidt"

_IPV4_PATTERN = re.compile(r"([0-9]{1,3})\.([0-9]{1,3})\.([0-9]{1,3})\.([0-9]{1,3})")
# Fully expanded form only, "::" shorthand is rejected
_IPV6_PATTERN = re.compile(r"(?:[0-9a-fA-F]{1,4}:){7}[0-9a-fA-F]{1,4}")
_COOKIE_PATTERN = re.compile(TRACKING_COOKIE + r"=([^;]+)")


class _Absent:
    """Marker for bundle fields that were never sent."""

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "<absent>"


ABSENT: Any = _Absent()

# (bundle key, ResolvedContext attribute)
_BUNDLE_FIELDS = (
    ("fingerprintData", "fingerprint_payload"),
    ("clientIP", "client_ip"),
    ("clientHost", "client_host"),
    ("clientUserAgent", "client_user_agent"),
    ("clientCookie", "client_cookie"),
    ("clientHeaders", "client_headers"),
)


# ── Inbound schemas ──────────────────────────────────────


class BackendData(BaseModel):
    """Bundle assembled by an earlier hop."""

    collectedData: Optional[dict[str, Any]] = None
    backendLatency: float = 0.0

    model_config = {"extra": "allow"}

    @field_validator("collectedData", mode="before")
    @classmethod
    def drop_non_object(cls, v: Any) -> Any:
        return v if isinstance(v, dict) else None

    @field_validator("backendLatency", mode="before")
    @classmethod
    def coerce_latency(cls, v: Any) -> float:
        """Anything but a finite number counts as no prior latency."""
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            return 0.0
        return float(v) if math.isfinite(v) else 0.0


class InboundRequest(BaseModel):
    """Raw JSON body accepted by the relay endpoint."""

    fingerprintData: Any = None
    backendData: Optional[BackendData] = None

    model_config = {"extra": "allow"}

    @field_validator("backendData", mode="before")
    @classmethod
    def drop_non_object(cls, v: Any) -> Any:
        return v if isinstance(v, dict) else None


# ── Input modes ──────────────────────────────────────────


@dataclass(frozen=True)
class Direct:
    """Context must be derived from the live request."""

    fingerprint_data: Any
    headers: dict[str, str]


@dataclass(frozen=True)
class Chained:
    """Context was already collected upstream of this hop."""

    collected_data: dict[str, Any]
    backend_latency: float = 0.0


InputMode = Union[Direct, Chained]


@dataclass(frozen=True)
class ResolvedContext:
    """
    Normalized client metadata for a single upstream call.

    Fields left at ABSENT were missing from a chained bundle and are not
    sent upstream; explicit nulls are sent as-is.
    """

    fingerprint_payload: Any = ABSENT
    client_ip: Optional[str] = ABSENT
    client_host: Optional[str] = ABSENT
    client_user_agent: Optional[str] = ABSENT
    client_cookie: Optional[str] = ABSENT
    client_headers: Optional[dict[str, Any]] = ABSENT
    prior_latency: float = 0.0

    def to_payload(self) -> dict[str, Any]:
        """Wire body for the identification API."""
        payload: dict[str, Any] = {
            "fingerprintData": self.fingerprint_payload,
            "clientIP": self.client_ip,
            "clientHost": self.client_host,
            "clientUserAgent": self.client_user_agent,
        }
        if self.client_cookie:
            payload["clientCookie"] = self.client_cookie
        payload["clientHeaders"] = self.client_headers
        return {k: v for k, v in payload.items() if v is not ABSENT}


# ── Helpers ──────────────────────────────────────────────


def is_set(value: Any) -> bool:
    """Browser-side truthiness: empty objects and arrays still count."""
    if isinstance(value, (dict, list)):
        return True
    return bool(value) and value == value


def merge_headers(items: Iterable[tuple[str, str]]) -> dict[str, str]:
    """Lower-case header names, joining repeated headers with ", "."""
    merged: dict[str, str] = {}
    for key, value in items:
        key = key.lower()
        merged[key] = f"{merged[key]}, {value}" if key in merged else value
    return merged


def is_valid_ip(ip: str) -> bool:
    """Dotted-quad IPv4 with octets 0-255, or 8-group hex IPv6."""
    match = _IPV4_PATTERN.fullmatch(ip)
    if match:
        return all(0 <= int(octet) <= 255 for octet in match.groups())
    return _IPV6_PATTERN.fullmatch(ip) is not None


def get_client_ip(headers: Mapping[str, str]) -> Optional[str]:
    """First address from X-Forwarded-For, else X-Real-IP."""
    ip = headers.get("x-forwarded-for") or headers.get("x-real-ip")
    if ip and "," in ip:
        ip = ip.split(",")[0].strip()
    return ip


def extract_tracking_cookie(cookie_header: Optional[str]) -> Optional[str]:
    """Value of the ``_iidt`` cookie, or None when it is not set."""
    if not cookie_header:
        return None
    match = _COOKIE_PATTERN.search(cookie_header)
    return match.group(1) if match else None


# ── Resolution ───────────────────────────────────────────


def parse_inbound(body: Any, headers: Mapping[str, str]) -> InputMode:
    """
    Pick the input mode for a request body.

    A ``backendData.collectedData`` bundle wins over ``fingerprintData``.
    A malformed ``backendData`` is ignored rather than rejected.
    Raises ValidationError when neither mode is usable.

    ``headers.items()`` may yield a name more than once (Starlette does
    for repeated headers); the values are merged.
    """
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    inbound = InboundRequest.model_validate(body)

    backend = inbound.backendData
    if backend is not None and backend.collectedData is not None:
        return Chained(
            collected_data=backend.collectedData,
            backend_latency=backend.backendLatency,
        )
    if is_set(inbound.fingerprintData):
        return Direct(
            fingerprint_data=inbound.fingerprintData,
            headers=merge_headers(headers.items()),
        )
    raise ValidationError("Missing fingerprint data or backend data")


def resolve_context(mode: InputMode, fallback_ip: str) -> ResolvedContext:
    """Build the ResolvedContext for either input mode."""
    if isinstance(mode, Chained):
        collected = mode.collected_data
        fields = {
            attr: collected[key] for key, attr in _BUNDLE_FIELDS if key in collected
        }
        return ResolvedContext(prior_latency=mode.backend_latency, **fields)

    headers = mode.headers
    client_ip = get_client_ip(headers)
    if not client_ip or not is_valid_ip(client_ip):
        logger.info(
            "Client IP %r missing or malformed, using fallback %s",
            client_ip, fallback_ip,
        )
        client_ip = fallback_ip

    return ResolvedContext(
        fingerprint_payload=mode.fingerprint_data,
        client_ip=client_ip,
        client_host=headers.get("host") or "localhost",
        client_user_agent=headers.get("user-agent") or "",
        client_cookie=extract_tracking_cookie(headers.get("cookie")),
        client_headers=dict(headers),
    )
