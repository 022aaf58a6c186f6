"""
Tests — Resource Status API client (httpx.MockTransport, no network)
"""
import httpx
import pytest
from tenacity import wait_none

from backend.status_api import ResourceStatusClient, StatusApiError


def _client(handler) -> ResourceStatusClient:
    return ResourceStatusClient(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


@pytest.fixture(autouse=True)
def _no_retry_wait(monkeypatch):
    monkeypatch.setattr(ResourceStatusClient._get.retry, "wait", wait_none())


class TestFetchHistory:

    @pytest.mark.asyncio
    async def test_success_returns_raw_records(self, make_record):
        records = [make_record(100), make_record(101, php_version="8.1")]
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = str(request.url)
            seen["key"] = request.headers.get("x-api-key")
            return httpx.Response(200, json={"success": True, "data": records})

        client = _client(handler)
        result = await client.fetch_history("https://status.example.com/api/", "k-123")

        assert result == records
        assert seen["url"] == "https://status.example.com/api/resource-usage/history"
        assert seen["key"] == "k-123"

    @pytest.mark.asyncio
    async def test_non_2xx_raises(self):
        client = _client(lambda request: httpx.Response(503, text="maintenance"))
        with pytest.raises(StatusApiError) as exc_info:
            await client.fetch_history("https://status.example.com/api", "k")
        assert exc_info.value.status_code == 503
        assert "Status: 503" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_success_false_raises(self):
        client = _client(lambda request: httpx.Response(200, json={"success": False, "data": []}))
        with pytest.raises(StatusApiError, match="success=false"):
            await client.fetch_history("https://status.example.com/api", "k")

    @pytest.mark.asyncio
    async def test_invalid_json_raises(self):
        client = _client(lambda request: httpx.Response(200, content=b"<html>oops</html>"))
        with pytest.raises(StatusApiError, match="invalid JSON"):
            await client.fetch_history("https://status.example.com/api", "k")

    @pytest.mark.asyncio
    async def test_unexpected_payload_raises(self):
        body = {"success": True, "data": [{"disk_usage_mb": 10}]}
        client = _client(lambda request: httpx.Response(200, json=body))
        with pytest.raises(StatusApiError, match="unexpected payload"):
            await client.fetch_history("https://status.example.com/api", "k")

    @pytest.mark.asyncio
    async def test_transport_error_is_retried(self, make_record):
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            if calls["n"] < 3:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"success": True, "data": [make_record(1)]})

        client = _client(handler)
        result = await client.fetch_history("https://status.example.com/api", "k")
        assert calls["n"] == 3
        assert [r["id"] for r in result] == [1]

    @pytest.mark.asyncio
    async def test_transport_error_exhausted(self):
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(handler)
        with pytest.raises(StatusApiError, match="Failed to reach status API"):
            await client.fetch_history("https://status.example.com/api", "k")
        assert calls["n"] == 3

    @pytest.mark.asyncio
    async def test_close_keeps_injected_client_open(self):
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        client = ResourceStatusClient(client=http)
        await client.close()
        assert not http.is_closed
        await http.aclose()
