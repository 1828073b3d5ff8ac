"""Cookie-backed persistence for code running inside a web request."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol

from functionary.surface.base import ExitHooks, FlushCallback

ONE_YEAR_S = 365 * 24 * 60 * 60


class CookieWriter(Protocol):
    """The subset of a Starlette ``Response`` used to emit cookies."""

    def set_cookie(
        self,
        key: str,
        value: str = "",
        max_age: int | None = None,
        *,
        samesite: str = "lax",
    ) -> None: ...

    def delete_cookie(self, key: str) -> None: ...


class CookieSurfaceDelegate:
    """Reads the visitor's cookies and writes changes back on the response.

    Values set during the request are visible to later reads in the same
    request. ``clear`` only touches cookies carrying this delegate's prefix.
    """

    surface = "persistent"

    def __init__(
        self,
        cookies: Mapping[str, str],
        response: CookieWriter | None = None,
        *,
        prefix: str = "functionary_client_",
        exit_hooks: ExitHooks | None = None,
    ) -> None:
        self._prefix = prefix
        self._values = {key: value for key, value in cookies.items() if key.startswith(prefix)}
        self._response = response
        self._exit_hooks = exit_hooks if exit_hooks is not None else ExitHooks()

    def get(self, key: str) -> str | None:
        return self._values.get(self._key(key))

    def set(self, key: str, value: str) -> None:
        prefixed = self._key(key)
        self._values[prefixed] = value
        if self._response is not None:
            self._response.set_cookie(prefixed, value, max_age=ONE_YEAR_S, samesite="lax")

    def remove(self, key: str) -> None:
        prefixed = self._key(key)
        self._values.pop(prefixed, None)
        if self._response is not None:
            self._response.delete_cookie(prefixed)

    def clear(self) -> None:
        for prefixed in list(self._values):
            self._values.pop(prefixed)
            if self._response is not None:
                self._response.delete_cookie(prefixed)

    def on_exit(self, flush: FlushCallback) -> None:
        self._exit_hooks.register(flush)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"
