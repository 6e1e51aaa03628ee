"""
Tests for request context resolution.
"""

import logging

import pytest
from starlette.datastructures import Headers

from fp_relay.relay.context import (
    ABSENT,
    Chained,
    Direct,
    ResolvedContext,
    extract_tracking_cookie,
    get_client_ip,
    is_set,
    is_valid_ip,
    merge_headers,
    parse_inbound,
    resolve_context,
)
from fp_relay.relay.errors import ValidationError

FALLBACK = "8.8.8.8"


@pytest.mark.parametrize("ip", [
    "1.2.3.4",
    "0.0.0.0",
    "255.255.255.255",
    "2001:0db8:85a3:0000:0000:8a2e:0370:7334",
    "fe80:0:0:0:202:b3ff:fe1e:8329",
])
def test_valid_ips(ip):
    assert is_valid_ip(ip)


@pytest.mark.parametrize("ip", [
    "999.1.1.1",
    "1.2.3",
    "1.2.3.4.5",
    "",
    "localhost",
    "::1",
    "2001:db8::1",
    " 1.2.3.4",
    "1.2.3.4\n",
])
def test_invalid_ips(ip):
    """Compressed IPv6 and out-of-range octets are rejected."""
    assert not is_valid_ip(ip)


def test_client_ip_takes_first_forwarded():
    assert get_client_ip({"x-forwarded-for": "1.2.3.4, 5.6.7.8"}) == "1.2.3.4"


def test_client_ip_falls_back_to_real_ip():
    assert get_client_ip({"x-real-ip": "9.9.9.9"}) == "9.9.9.9"
    assert get_client_ip({"x-forwarded-for": "", "x-real-ip": "9.9.9.9"}) == "9.9.9.9"


def test_client_ip_missing():
    assert get_client_ip({}) is None


def test_tracking_cookie():
    assert extract_tracking_cookie("_iidt=abc123; other=xyz") == "abc123"
    assert extract_tracking_cookie("first=1; _iidt=Zx9+/w==") == "Zx9+/w=="
    assert extract_tracking_cookie("other=xyz") is None
    assert extract_tracking_cookie(None) is None


def test_parse_prefers_collected_data():
    body = {
        "fingerprintData": "direct",
        "backendData": {"collectedData": {"fingerprintData": "bundle"}, "backendLatency": 42},
    }
    mode = parse_inbound(body, {"host": "example.com"})
    assert isinstance(mode, Chained)
    assert mode.backend_latency == 42
    assert mode.collected_data["fingerprintData"] == "bundle"


def test_parse_null_latency_defaults_to_zero():
    body = {"backendData": {"collectedData": {}, "backendLatency": None}}
    mode = parse_inbound(body, {})
    assert isinstance(mode, Chained)
    assert mode.backend_latency == 0.0


def test_parse_direct_lowercases_headers():
    mode = parse_inbound({"fingerprintData": {"v": 1}}, {"User-Agent": "UA", "Host": "h"})
    assert isinstance(mode, Direct)
    assert mode.headers == {"user-agent": "UA", "host": "h"}


@pytest.mark.parametrize("body", [
    {},
    {"fingerprintData": None},
    {"fingerprintData": ""},
    {"backendData": {"backendLatency": 5}},
    {"backendData": None},
    {"fingerprintData": 0},
    {"fingerprintData": False},
])
def test_parse_rejects_missing_inputs(body):
    with pytest.raises(ValidationError) as exc_info:
        parse_inbound(body, {})
    assert exc_info.value.status_code == 400


@pytest.mark.parametrize("body", [[1, 2], "text", None])
def test_parse_rejects_non_object(body):
    with pytest.raises(ValidationError):
        parse_inbound(body, {})


def test_parse_malformed_backend_data_without_fingerprint():
    with pytest.raises(ValidationError):
        parse_inbound({"backendData": "oops"}, {})


def test_resolve_direct_defaults():
    ctx = resolve_context(Direct(fingerprint_data="blob", headers={}), FALLBACK)
    assert ctx.client_ip == FALLBACK
    assert ctx.client_host == "localhost"
    assert ctx.client_user_agent == ""
    assert ctx.client_cookie is None
    assert ctx.client_headers == {}
    assert ctx.prior_latency == 0.0


def test_resolve_direct_keeps_valid_ip():
    headers = {"x-forwarded-for": "203.0.113.7", "host": "shop.example.com"}
    ctx = resolve_context(Direct(fingerprint_data="blob", headers=headers), FALLBACK)
    assert ctx.client_ip == "203.0.113.7"
    assert ctx.client_host == "shop.example.com"
    assert ctx.client_headers == headers


def test_resolve_fallback_is_logged(caplog):
    with caplog.at_level(logging.INFO, logger="fp_relay.relay.context"):
        resolve_context(
            Direct(fingerprint_data="blob", headers={"x-forwarded-for": "999.1.1.1"}),
            FALLBACK,
        )
    assert "fallback" in caplog.text


def test_resolve_chained_is_verbatim():
    collected = {
        "fingerprintData": "blob",
        "clientIP": "garbage",
        "clientHost": "h",
        "clientUserAgent": "ua",
        "clientCookie": None,
        "clientHeaders": {"a": "b"},
    }
    ctx = resolve_context(Chained(collected_data=collected, backend_latency=7.5), FALLBACK)
    assert ctx.client_ip == "garbage"
    assert ctx.client_cookie is None
    assert ctx.prior_latency == 7.5


def test_payload_includes_cookie_only_when_set():
    base = dict(
        fingerprint_payload="blob",
        client_ip="1.2.3.4",
        client_host="h",
        client_user_agent="ua",
        client_headers={},
    )
    assert "clientCookie" not in ResolvedContext(**base).to_payload()
    payload = ResolvedContext(client_cookie="abc", **base).to_payload()
    assert payload["clientCookie"] == "abc"
    assert list(payload) == [
        "fingerprintData", "clientIP", "clientHost",
        "clientUserAgent", "clientCookie", "clientHeaders",
    ]


def test_context_is_immutable():
    ctx = resolve_context(Direct(fingerprint_data="blob", headers={}), FALLBACK)
    with pytest.raises(AttributeError):
        ctx.client_ip = "1.1.1.1"


@pytest.mark.parametrize("body", [
    {"fingerprintData": "blob", "backendData": "x"},
    {"fingerprintData": "blob", "backendData": {"backendLatency": "n/a"}},
    {"fingerprintData": "blob", "backendData": {"collectedData": [1, 2]}},
])
def test_parse_ignores_malformed_backend_data(body):
    mode = parse_inbound(body, {})
    assert isinstance(mode, Direct)
    assert mode.fingerprint_data == "blob"


@pytest.mark.parametrize("latency", ["n/a", True, float("inf"), float("nan"), [1]])
def test_parse_non_finite_latency_is_zero(latency):
    body = {"backendData": {"collectedData": {}, "backendLatency": latency}}
    mode = parse_inbound(body, {})
    assert isinstance(mode, Chained)
    assert mode.backend_latency == 0.0


@pytest.mark.parametrize("value, expected", [
    ({}, True),
    ([], True),
    ("blob", True),
    (1, True),
    (0, False),
    (False, False),
    ("", False),
    (None, False),
    (float("nan"), False),
])
def test_is_set(value, expected):
    assert is_set(value) is expected


def test_merge_headers_joins_repeated_values():
    headers = Headers(raw=[
        (b"x-forwarded-for", b"1.2.3.4"),
        (b"x-forwarded-for", b"10.0.0.1"),
        (b"host", b"shop.example.com"),
    ])
    merged = merge_headers(headers.items())
    assert merged == {
        "x-forwarded-for": "1.2.3.4, 10.0.0.1",
        "host": "shop.example.com",
    }


def test_parse_direct_merges_repeated_headers():
    headers = Headers(raw=[
        (b"x-forwarded-for", b"1.2.3.4"),
        (b"x-forwarded-for", b"10.0.0.1"),
    ])
    mode = parse_inbound({"fingerprintData": "blob"}, headers)
    ctx = resolve_context(mode, FALLBACK)
    assert ctx.client_ip == "1.2.3.4"


def test_resolve_chained_distinguishes_null_from_missing():
    collected = {"fingerprintData": "blob", "clientHost": None}
    ctx = resolve_context(Chained(collected_data=collected), FALLBACK)
    assert ctx.client_host is None
    assert ctx.client_ip is ABSENT
    assert ctx.to_payload() == {"fingerprintData": "blob", "clientHost": None}
