from __future__ import annotations

from collections.abc import Iterator
from typing import Any

import httpx
import pytest

from functionary.cache.batching import CacheHub
from functionary.core.config import FunctionarySettings
from functionary.surface.base import ExitHooks
from functionary.surface.memory import MemorySurfaceDelegate
from functionary.transport.client import DeliveryResult


class RecordingSender:
    """Sender double keeping every payload it was asked to deliver."""

    def __init__(self) -> None:
        self.identify_calls: list[dict[str, Any]] = []
        self.state_calls: list[list[dict[str, Any]]] = []

    def send_identify(self, payload: dict[str, Any]) -> DeliveryResult:
        self.identify_calls.append(payload)
        return DeliveryResult(endpoint="identify", ok=True, status_code=200)

    def send_states(self, batch: list[dict[str, Any]]) -> DeliveryResult:
        self.state_calls.append(batch)
        return DeliveryResult(endpoint="state", ok=True, status_code=200)

    async def asend_identify(self, payload: dict[str, Any]) -> DeliveryResult:
        return self.send_identify(payload)

    async def asend_states(self, batch: list[dict[str, Any]]) -> DeliveryResult:
        return self.send_states(batch)


@pytest.fixture
def exit_hooks() -> ExitHooks:
    return ExitHooks(install_atexit=False)


@pytest.fixture
def surface(exit_hooks: ExitHooks) -> MemorySurfaceDelegate:
    return MemorySurfaceDelegate(exit_hooks=exit_hooks, signals=())


@pytest.fixture
def hub() -> Iterator[CacheHub]:
    created = CacheHub.create()
    yield created
    created.identify.scheduler.cancel_pending()
    created.state.scheduler.cancel_pending()


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def settings() -> FunctionarySettings:
    return FunctionarySettings(api_key="test-key", fire_on_instantiation=False)


@pytest.fixture
def posted(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    """Capture every HTTP POST made through httpx and answer 200."""
    calls: list[dict[str, Any]] = []

    def fake_post(self, url, *, headers, json):  # type: ignore[no-untyped-def]
        del self
        calls.append({"url": url, "headers": headers, "json": json})
        return httpx.Response(
            status_code=200,
            request=httpx.Request("POST", url),
            json={"success": True},
        )

    async def fake_async_post(self, url, *, headers, json):  # type: ignore[no-untyped-def]
        return fake_post(self, url, headers=headers, json=json)

    monkeypatch.setattr("httpx.Client.post", fake_post)
    monkeypatch.setattr("httpx.AsyncClient.post", fake_async_post)
    return calls
