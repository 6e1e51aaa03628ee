"""
Fingerprint Relay — Error taxonomy.

Every error raised inside the relay carries the HTTP status the handler
boundary turns it into.
"""

from __future__ import annotations

from typing import Optional


class RelayError(Exception):
    """Base class for relay failures."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(RelayError):
    """Neither input mode could be satisfied."""

    status_code = 400


class ConfigurationError(RelayError):
    """The relay is missing configuration it needs to call upstream."""

    status_code = 500


class UpstreamError(RelayError):
    """The identification API failed or answered with a non-2xx status."""

    status_code = 500

    def __init__(self, status: Optional[int], body: str) -> None:
        if status is None:
            message = f"Fingerprint API unreachable: {body}"
        else:
            message = f"Fingerprint API error: {status}, {body}"
        super().__init__(message)
        self.upstream_status = status
        self.body = body
