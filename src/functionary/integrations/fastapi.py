"""FastAPI binding: one shared cache hub per app, one facade per request."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager

from fastapi import FastAPI, Request, Response

from functionary.cache.batching import CacheHub
from functionary.client import Functionary
from functionary.core.config import FunctionarySettings
from functionary.core.logs import DebugLog
from functionary.surface.base import ExitHooks
from functionary.surface.cookie import CookieSurfaceDelegate


def functionary_lifespan(
    hub: CacheHub,
) -> Callable[[FastAPI], AbstractAsyncContextManager[None]]:
    """Lifespan that exposes ``hub`` on ``app.state`` and flushes it on shutdown."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.functionary_hub = hub
        try:
            yield
        finally:
            await hub.aflush()

    return lifespan


class FunctionaryDependency:
    """Callable dependency building a cookie-backed facade for each request.

    The identified customer travels in ``functionary_client_*`` cookies, so a
    visitor who logged in on one request is in context on the next one.
    """

    def __init__(
        self,
        hub: CacheHub,
        settings: FunctionarySettings | None = None,
    ) -> None:
        self.hub = hub
        self.settings = settings or FunctionarySettings()
        # the lifespan flushes on shutdown; atexit covers apps served without it
        self.exit_hooks = ExitHooks()

    def __call__(self, request: Request, response: Response) -> Functionary:
        surface = CookieSurfaceDelegate(request.cookies, response, exit_hooks=self.exit_hooks)
        # a facade per request would otherwise flush the shared hub on every request
        return Functionary(
            surface,
            hub=self.hub,
            settings=self.settings,
            fire_on_first_call=False,
        )


def build_hub(settings: FunctionarySettings) -> CacheHub:
    return CacheHub.create(
        delay_s=settings.flush_delay_s,
        max_records=settings.max_cached_records,
        log=DebugLog(settings.debug),
    )

