"""Tests for the reasoning-service client (HTTP mocked with httpx.MockTransport)."""

import asyncio
import json

import httpx
import pytest

from stageline.contracts import TransformRequest
from stageline.service import client as client_module
from stageline.service.client import (
    ReasoningClient,
    ReasoningServiceError,
    ReasoningServiceHTTPError,
    ReasoningServiceResponseError,
)

URL = "http://reasoning.test/api/transform"

OK_BODY = {
    "sql": "SELECT region, SUM(amount) AS total FROM orders GROUP BY region",
    "chartType": "bar",
    "xAxis": "region",
    "yAxis": "total",
    "explanation": "Totals per region",
}


def _request():
    return TransformRequest(schema=[{"name": "region", "type": "VARCHAR"}], userPrompt="Group by region", apiKey="sk-test")


def _client(handler, **kwargs):
    transport = httpx.MockTransport(handler)
    return ReasoningClient(base_url=URL, transport=transport, async_transport=transport, **kwargs)


def test_transform_posts_wire_body():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["method"] = request.method
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=OK_BODY)

    response = _client(handler).transform(_request())

    assert seen["url"] == URL
    assert seen["method"] == "POST"
    assert seen["body"] == {
        "schema": [{"column_name": "region", "column_type": "VARCHAR"}],
        "userPrompt": "Group by region",
        "apiKey": "sk-test",
    }
    assert response.sql == OK_BODY["sql"]
    assert response.chart().type == "bar"


def test_http_error_carries_service_message():
    def handler(request):
        return httpx.Response(401, json={"error": "Invalid API key"})

    with pytest.raises(ReasoningServiceHTTPError) as excinfo:
        _client(handler).transform(_request())
    assert excinfo.value.status_code == 401
    assert excinfo.value.message == "Invalid API key"
    assert "Invalid API key" in str(excinfo.value)


def test_http_error_without_json_body():
    def handler(request):
        return httpx.Response(502, text="Bad gateway")

    with pytest.raises(ReasoningServiceHTTPError) as excinfo:
        _client(handler).transform(_request())
    assert excinfo.value.status_code == 502
    assert excinfo.value.message == "Bad gateway"


@pytest.mark.parametrize("response", [
    httpx.Response(200, json={"chartType": "bar"}),
    httpx.Response(200, text="not json"),
])
def test_malformed_body(response):
    with pytest.raises(ReasoningServiceResponseError):
        _client(lambda request: response).transform(_request())


def test_transport_errors_are_retried_with_backoff(monkeypatch):
    sleeps = []
    monkeypatch.setattr(client_module.time, "sleep", sleeps.append)
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) < 3:
            raise httpx.ConnectError("connection refused")
        return httpx.Response(200, json=OK_BODY)

    response = _client(handler, max_attempts=3).transform(_request())
    assert response.explanation == "Totals per region"
    assert len(calls) == 3
    assert sleeps == [1, 2]


def test_transport_errors_give_up_after_max_attempts(monkeypatch):
    sleeps = []
    monkeypatch.setattr(client_module.time, "sleep", sleeps.append)

    def handler(request):
        raise httpx.ConnectError("connection refused")

    with pytest.raises(ReasoningServiceError) as excinfo:
        _client(handler, max_attempts=2).transform(_request())
    assert not isinstance(excinfo.value, ReasoningServiceHTTPError)
    assert sleeps == [1]


def test_http_errors_are_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500, json={"error": "Failed to transform data"})

    with pytest.raises(ReasoningServiceHTTPError):
        _client(handler, max_attempts=3).transform(_request())
    assert len(calls) == 1


def test_defaults_come_from_settings(monkeypatch):
    from stageline.config import settings

    monkeypatch.setattr(settings, "SERVICE_URL", "http://configured.test/transform")
    monkeypatch.setattr(settings, "MAX_ATTEMPTS", 5)
    client = ReasoningClient()
    assert client.base_url == "http://configured.test/transform"
    assert client.max_attempts == 5
    assert ReasoningClient(max_attempts=0).max_attempts == 1


def test_transform_async():
    def handler(request):
        return httpx.Response(200, json=OK_BODY)

    response = asyncio.run(_client(handler).transform_async(_request()))
    assert response.sql == OK_BODY["sql"]


def test_transform_async_retries(monkeypatch):
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    monkeypatch.setattr(client_module.asyncio, "sleep", fake_sleep)
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ReadTimeout("timed out")
        return httpx.Response(200, json=OK_BODY)

    response = asyncio.run(_client(handler, max_attempts=2).transform_async(_request()))
    assert response.chart().x_axis == "region"
    assert sleeps == [1]
