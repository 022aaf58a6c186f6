"""
Resource Status API client.

Each shared-hosting service exposes its own status API:
    GET {res_status_api_url}/resource-usage/history
    x-api-key: {res_status_api_key}
    → {"success": true, "data": [{id, disk_usage_mb, ..., checked_at}, ...]}

The client returns the raw record dicts so values are persisted exactly as
received; each record is validated against SharedHostingHistoryData.
"""
from __future__ import annotations

import structlog
from typing import Any, Optional

import httpx
from pydantic import ValidationError
from tenacity import (
    retry, retry_if_exception_type, stop_after_attempt, wait_exponential,
)

from models.schemas import SharedHostingHistoryResponse

logger = structlog.get_logger()

HISTORY_PATH = "/resource-usage/history"


class StatusApiError(Exception):
    """The status API could not be reached or returned an unusable response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ResourceStatusClient:
    """
    Fetches usage history from a service's resource-status API.

    Transport errors are retried a couple of times in-process; anything that
    still fails surfaces as StatusApiError and the job queue takes over.
    """

    def __init__(self, timeout: float = 30.0, client: Optional[httpx.AsyncClient] = None):
        self.timeout = timeout
        self.client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self.client is None or self.client.is_closed:
            self.client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self.client

    async def close(self):
        if self.client and self._owns_client and not self.client.is_closed:
            await self.client.aclose()

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, max=5),
        reraise=True,
    )
    async def _get(self, url: str, api_key: str) -> httpx.Response:
        client = await self._get_client()
        return await client.get(url, headers={"x-api-key": api_key})

    async def fetch_history(self, base_url: str, api_key: str) -> list[dict[str, Any]]:
        url = base_url.rstrip("/") + HISTORY_PATH
        try:
            response = await self._get(url, api_key)
        except httpx.HTTPError as e:
            raise StatusApiError(f"Failed to reach status API at {url}: {e}") from e

        if not response.is_success:
            raise StatusApiError(
                f"Failed to fetch history from status API. Status: {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise StatusApiError(f"Status API returned invalid JSON: {e}") from e

        try:
            parsed = SharedHostingHistoryResponse.model_validate(body)
        except ValidationError as e:
            raise StatusApiError(f"Status API returned an unexpected payload: {e}") from e

        if not parsed.success:
            raise StatusApiError("Failed to fetch history from status API: API returned success=false")

        records = body.get("data") or []
        logger.debug("status_history_fetched", url=url, count=len(records))
        return records
