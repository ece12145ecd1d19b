from __future__ import annotations

from typing import Any
import asyncio

import httpx

from sharespace.core.errors import ServiceUnavailableError


RESEND_BASE_URL = "https://api.resend.com"


class ResendApiError(ServiceUnavailableError):
    pass


class ResendClient:
    """Small client for the Resend transactional email API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = RESEND_BASE_URL,
        timeout: float = 20.0,
        max_tries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._max_tries = max(1, int(max_tries))
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout),
            headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
            transport=transport,
        )

    async def aclose(self):
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        # Simple retry on 429 and transient 5xx.
        for attempt in range(1, self._max_tries + 1):
            resp = await self._client.request(method, url, **kwargs)
            if resp.status_code == 429:
                retry = resp.headers.get("Retry-After")
                sleep_s = int(float(retry)) if retry else 1
                await asyncio.sleep(min(max(sleep_s, 1), 10))
                continue
            if resp.status_code >= 500:
                await asyncio.sleep(min(2 ** (attempt - 1), 10))
                continue
            return resp
        raise ResendApiError(f"Resend request failed after retries: {method} {url}")

    async def send_email(self, *, sender: str, to: list[str], subject: str, html: str) -> dict:
        payload: dict[str, Any] = {"from": sender, "to": to, "subject": subject, "html": html}
        resp = await self._request("POST", "/emails", json=payload)
        if resp.status_code not in (200, 201, 202):
            raise ResendApiError("Resend send failed", resp.status_code, resp.text)
        data = resp.json()
        if not isinstance(data, dict):
            raise ResendApiError("Resend send: unexpected payload", resp.status_code, data)
        return data
