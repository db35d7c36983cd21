"""
Outbound HTTP to peers. Every call is one awaited attempt with its own
timeout; failures come back as a SendResult, never as an exception.

Depends on: config, models
"""

import asyncio
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

import httpx

from agentconnect.config import MESSAGE_TIMEOUT
from agentconnect.models import DeliveryOutcome


@dataclass
class SendResult:
    """Result of one outbound call."""
    success: bool
    outcome: DeliveryOutcome
    status_code: Optional[int] = None
    error: Optional[str] = None
    response: Optional[dict] = None

    def to_dict(self) -> dict:
        data = {"success": self.success, "outcome": self.outcome.value}
        if self.status_code is not None:
            data["status_code"] = self.status_code
        if self.error:
            data["error"] = self.error
        return data


def not_paired(name: str) -> SendResult:
    return SendResult(success=False, outcome=DeliveryOutcome.NOT_PAIRED,
                      error=f"Not paired with {name}")


def endpoint_url(base_url: str, path: str) -> str:
    """Resolve an absolute path against a peer's advertised origin."""
    parts = urlsplit(base_url.strip())
    return f"{parts.scheme}://{parts.netloc}{path}"


class PeerTransport:
    """Posts JSON to peer endpoints.

    An httpx transport may be injected so whole meshes can run in-process.
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport

    async def post(self, base_url: str, path: str, payload: dict,
                   token: Optional[str] = None,
                   timeout: float = MESSAGE_TIMEOUT) -> SendResult:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        url = endpoint_url(base_url, path)
        try:
            resp = await asyncio.wait_for(self._post(url, payload, headers, timeout), timeout)
        except asyncio.TimeoutError:
            return SendResult(success=False, outcome=DeliveryOutcome.NETWORK_ERROR,
                              error=f"Timed out after {timeout:g}s")
        except httpx.HTTPError as e:
            return SendResult(success=False, outcome=DeliveryOutcome.NETWORK_ERROR,
                              error=str(e) or type(e).__name__)

        try:
            body = resp.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = {"raw": resp.text[:500]}

        if resp.status_code == 200:
            return SendResult(success=True, outcome=DeliveryOutcome.DELIVERED,
                              status_code=resp.status_code, response=body)
        return SendResult(success=False, outcome=DeliveryOutcome.REJECTED,
                          status_code=resp.status_code, response=body,
                          error=body.get("error") or f"HTTP {resp.status_code}")

    async def _post(self, url: str, payload: dict, headers: dict, timeout: float) -> httpx.Response:
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            return await client.post(url, json=payload, headers=headers)
