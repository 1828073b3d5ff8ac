"""Single-attempt HTTP transport for identify and state batches."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import uuid4

import httpx

from functionary.core.config import DEFAULT_BASE_URL
from functionary.core.logs import DebugLog
from functionary.errors import (
    ClientRequestError,
    NetworkError,
    ServerRequestError,
    TransportError,
)

IDENTIFY_ENDPOINT = "identify"
DEFAULT_TIMEOUT_S = 9.0
SOURCE_HEADER = "functionary-python"


@dataclass(slots=True)
class DeliveryResult:
    """Outcome of one POST; failures are terminal for the payload."""

    endpoint: str
    ok: bool
    status_code: int | None = None
    body: Any = None
    error: TransportError | None = None
    stubbed: bool = False


class Transport:
    """POST payloads to the collection endpoint and classify the outcome.

    There is exactly one attempt per payload. ``deliver``/``adeliver`` never
    raise: rejections are logged (client errors with the response body,
    server errors without it) and returned as failed results.
    """

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        state_endpoint: str = "state",
        timeout_s: float = DEFAULT_TIMEOUT_S,
        stub: bool = False,
        log: DebugLog | None = None,
    ) -> None:
        self._api_key = api_key.strip()
        self._base_url = base_url if base_url.endswith("/") else f"{base_url}/"
        self._state_endpoint = state_endpoint
        self._timeout_s = timeout_s
        self._stub = stub
        self._log = log or DebugLog()

    @property
    def state_endpoint(self) -> str:
        return self._state_endpoint

    def url(self, endpoint: str) -> str:
        return f"{self._base_url}{endpoint}"

    def send_identify(self, payload: dict[str, Any]) -> DeliveryResult:
        return self.deliver(IDENTIFY_ENDPOINT, payload)

    def send_states(self, batch: list[dict[str, Any]]) -> DeliveryResult:
        return self.deliver(self._state_endpoint, batch)

    async def asend_identify(self, payload: dict[str, Any]) -> DeliveryResult:
        return await self.adeliver(IDENTIFY_ENDPOINT, payload)

    async def asend_states(self, batch: list[dict[str, Any]]) -> DeliveryResult:
        return await self.adeliver(self._state_endpoint, batch)

    def deliver(self, endpoint: str, payload: Any) -> DeliveryResult:
        """Blocking delivery, used at exit and from hosts without an event loop."""
        if self._stub:
            return self._canned(endpoint)
        try:
            try:
                with httpx.Client(timeout=httpx.Timeout(self._timeout_s)) as client:
                    response = client.post(self.url(endpoint), headers=self.headers(), json=payload)
            except httpx.HTTPError as exc:
                raise NetworkError(f"{endpoint} request failed: {exc}") from exc
            return self._accept(endpoint, response)
        except TransportError as exc:
            return self._reject(endpoint, exc)

    async def adeliver(self, endpoint: str, payload: Any) -> DeliveryResult:
        if self._stub:
            return self._canned(endpoint)
        try:
            try:
                timeout = httpx.Timeout(self._timeout_s)
                async with httpx.AsyncClient(timeout=timeout) as client:
                    response = await client.post(
                        self.url(endpoint), headers=self.headers(), json=payload
                    )
            except httpx.HTTPError as exc:
                raise NetworkError(f"{endpoint} request failed: {exc}") from exc
            return self._accept(endpoint, response)
        except TransportError as exc:
            return self._reject(endpoint, exc)

    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "X-Request-Id": str(uuid4()),
            "X-Timezone-Offset": str(timezone_offset_minutes()),
            "X-Source": SOURCE_HEADER,
        }

    def _accept(self, endpoint: str, response: httpx.Response) -> DeliveryResult:
        status_code = response.status_code
        if status_code >= 500:
            raise ServerRequestError(
                f"{endpoint} failed on the server (status={status_code})",
                status_code=status_code,
            )
        if not response.is_success:
            body = _extract_response_excerpt(response.text, limit=500)
            raise ClientRequestError(
                f"{endpoint} rejected (status={status_code}, body={body!r})",
                status_code=status_code,
                body=body,
            )
        body = _parse_body(response)
        self._log.info("%s delivered status=%s body=%s", endpoint, status_code, body)
        return DeliveryResult(endpoint=endpoint, ok=True, status_code=status_code, body=body)

    def _reject(self, endpoint: str, exc: TransportError) -> DeliveryResult:
        self._log.error("%s", exc)
        return DeliveryResult(
            endpoint=endpoint,
            ok=False,
            status_code=exc.status_code,
            body=exc.body or None,
            error=exc,
        )

    def _canned(self, endpoint: str) -> DeliveryResult:
        self._log.info("%s stubbed, no request sent", endpoint)
        return DeliveryResult(
            endpoint=endpoint,
            ok=True,
            status_code=200,
            body={"success": True},
            stubbed=True,
        )


def timezone_offset_minutes(now: datetime | None = None) -> int:
    """Minutes the host clock is behind UTC, the way browsers report it."""
    current = now or datetime.now().astimezone()
    offset = current.utcoffset()
    if offset is None:
        return 0
    return -int(offset.total_seconds() // 60)


def _parse_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return _extract_response_excerpt(response.text, limit=500)


def _extract_response_excerpt(raw_text: str, *, limit: int) -> str:
    """Normalize body text and keep only a short excerpt for safe diagnostics."""
    compact = re.sub(r"\s+", " ", raw_text).strip()
    if not compact:
        return "<empty>"
    return compact[:limit]
