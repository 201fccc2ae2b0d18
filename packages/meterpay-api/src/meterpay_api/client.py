"""
Meterpay HTTP client.

Example usage:
    ```python
    from meterpay_api.client import MeterpayClient

    async with MeterpayClient("http://localhost:3000") as client:
        quote = await client.get_quote("summarize", tokens=2000)
        result = await client.paycall(
            quote["quote_id"],
            spend_blob="c3BlbmRibG9iMTIz",
            proof="cHJvb2ZkYXRhMTIz",
            endpoint="summarize",
            args={"text": "..."},
            idempotency_key="order-42",
        )
    ```
"""
from __future__ import annotations

import asyncio
from typing import Any, Optional

import httpx


class MeterpayAPIError(Exception):
    """Error response from the Meterpay API."""

    def __init__(
        self,
        status_code: int,
        error: str,
        message: str,
        details: Any = None,
    ) -> None:
        super().__init__(f"{status_code} {error}: {message}")
        self.status_code = status_code
        self.error = error
        self.message = message
        self.details = details

    @classmethod
    def from_response(cls, response: httpx.Response) -> "MeterpayAPIError":
        try:
            body = response.json()
        except ValueError:
            body = {"message": response.text}
        if not isinstance(body, dict):
            body = {"message": str(body)}
        return cls(
            status_code=response.status_code,
            error=body.get("error", "http_error"),
            message=body.get("message", ""),
            details=body.get("details"),
        )


class MeterpayClient:
    """
    Async client for the quote, paycall, jobs and health routes.

    Transport failures are retried with exponential backoff for reads and for
    paycalls carrying an idempotency key; anything else is raised at once.

    Args:
        base_url: Meterpay API base URL
        timeout: Request timeout in seconds (default: 30)
        max_retries: Attempts for retryable requests (default: 3)
        transport: Optional httpx transport (e.g. ``httpx.ASGITransport``)
    """

    DEFAULT_BASE_URL = "http://localhost:3000"
    DEFAULT_TIMEOUT = 30
    DEFAULT_MAX_RETRIES = 3

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers={"User-Agent": "meterpay-client-python/0.1.0"},
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
        retryable: bool = True,
    ) -> httpx.Response:
        client = await self._get_client()
        attempts = self._max_retries if retryable else 1

        for attempt in range(attempts):
            try:
                response = await client.request(method, path, params=params, json=json, headers=headers)
            except (httpx.TimeoutException, httpx.TransportError):
                if attempt < attempts - 1:
                    await asyncio.sleep(2 ** attempt * 0.1)
                    continue
                raise

            if response.status_code >= 400:
                raise MeterpayAPIError.from_response(response)
            return response

        raise RuntimeError("Unexpected error in request retry loop")

    async def get_quote(self, endpoint: str, **units: float) -> dict[str, Any]:
        """Request a quote; keyword arguments are unit counts (``tokens=2000``)."""
        response = await self._request("GET", "/v1/quote", params={"endpoint": endpoint, **units})
        return response.json()

    async def paycall(
        self,
        quote_id: str,
        *,
        spend_blob: str,
        proof: str,
        endpoint: str,
        args: Optional[dict[str, Any]] = None,
        sender: str = "",
        idempotency_key: Optional[str] = None,
    ) -> dict[str, Any]:
        """Settle a quote and return the success body.

        Raises:
            MeterpayAPIError: any non-2xx response, including
                ``job_execution_failed`` with the receipt ids in ``details``.
        """
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        response = await self._request(
            "POST",
            "/v1/paycall",
            json={
                "quote_id": quote_id,
                "payment_claim": {"spend_blob": spend_blob, "proof": proof, "sender": sender},
                "request": {"endpoint": endpoint, "args": args or {}},
            },
            headers=headers,
            retryable=idempotency_key is not None,
        )
        return response.json()

    async def get_job(self, job_id: str) -> dict[str, Any]:
        response = await self._request("GET", f"/v1/jobs/{job_id}")
        return response.json()

    async def health(self) -> dict[str, Any]:
        response = await self._request("GET", "/health")
        return response.json()

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "MeterpayClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
