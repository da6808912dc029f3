"""Tests for checked upstream JSON requests."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from app.services.results import FailureReason
from app.utils import http_helpers


def _run(handler: httpx.MockTransport) -> object:
    async def call() -> object:
        async with httpx.AsyncClient(transport=handler) as client:
            return await http_helpers.request_json(
                client, "GET", "https://example.test/api"
            )

    return asyncio.run(call())


def test_request_json_returns_body() -> None:
    transport = httpx.MockTransport(
        lambda request: httpx.Response(200, json={"elements": []})
    )
    assert _run(transport) == {"elements": []}


def test_request_json_http_status() -> None:
    """Test that non-2xx responses carry the status code."""
    transport = httpx.MockTransport(lambda request: httpx.Response(429))
    with pytest.raises(http_helpers.UpstreamError) as excinfo:
        _run(transport)
    assert excinfo.value.reason is FailureReason.HTTP_STATUS
    assert excinfo.value.status_code == 429


def test_request_json_malformed_body() -> None:
    transport = httpx.MockTransport(
        lambda request: httpx.Response(200, text="<html>busy</html>")
    )
    with pytest.raises(http_helpers.UpstreamError) as excinfo:
        _run(transport)
    assert excinfo.value.reason is FailureReason.MALFORMED


def test_request_json_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(http_helpers.UpstreamError) as excinfo:
        _run(httpx.MockTransport(handler))
    assert excinfo.value.reason is FailureReason.TRANSPORT
    assert excinfo.value.status_code is None
