"""Public tracking facade.

Every public operation is fire-and-forget: failures are reported on the
debug log stream and never raised into the host application.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from functionary.cache.batching import BatchingCache, CacheHub
from functionary.context.store import EntityContextStore
from functionary.core.config import FunctionarySettings
from functionary.core.contracts import PayloadContracts
from functionary.core.logs import DebugLog
from functionary.core.types import (
    CHILD_MODEL,
    PARENT_MODEL,
    SUPPORTED_MODELS,
    ByContext,
    ByEntity,
    Entity,
    IdentifyRecord,
    StateRecord,
    Target,
)
from functionary.errors import (
    ConfigurationError,
    FunctionaryError,
    MissingContextError,
    RecordValidationError,
)
from functionary.surface.base import SurfaceDelegate
from functionary.surface.factory import build_surface
from functionary.transport.client import Transport

API_KEY_KEY = "apiKey"
BASE_URL_KEY = "baseURL"


class Functionary:
    """Identify entities and record states against them.

    ``hub`` is shared by reference: facades built over the same hub batch into
    the same outbound queues. The first identify/event call of a facade is
    flushed immediately when ``fire_on_instantiation`` is set; later calls
    wait for the trailing timer, the record cap or process exit.
    """

    def __init__(
        self,
        surface: SurfaceDelegate,
        *,
        hub: CacheHub | None = None,
        settings: FunctionarySettings | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        debug: bool | None = None,
        set_to_context_by_default: bool | None = None,
        fire_on_first_call: bool | None = None,
        contracts: PayloadContracts | None = None,
    ) -> None:
        self._settings = settings or FunctionarySettings()
        self._log = DebugLog(self._settings.debug if debug is None else debug)
        self._surface = surface
        self._hub = hub or CacheHub.create(
            delay_s=self._settings.flush_delay_s,
            max_records=self._settings.max_cached_records,
            log=self._log,
        )
        self._context = EntityContextStore(surface, self._log)
        self._contracts = contracts or PayloadContracts()
        self._api_key = api_key or self._settings.api_key
        self._base_url = base_url or self._settings.base_url
        if fire_on_first_call is None:
            fire_on_first_call = self._settings.fire_on_instantiation
        self._fire_next_call = fire_on_first_call
        self._transport: Transport | None = None
        if set_to_context_by_default is None:
            set_to_context_by_default = surface.surface == "persistent"
        self.set_to_context_by_default = set_to_context_by_default
        for model in SUPPORTED_MODELS:
            self._context.restore_entity_context(model)

    @classmethod
    def from_settings(
        cls,
        settings: FunctionarySettings | None = None,
        *,
        hub: CacheHub | None = None,
    ) -> Functionary:
        """Build a facade over the delegate named by ``settings.persistent_type``."""
        settings = settings or FunctionarySettings()
        facade = cls(build_surface(settings), hub=hub, settings=settings)
        facade.setup_from_surface_delegate()
        return facade

    # configuration

    @property
    def debug(self) -> bool:
        return self._log.enabled

    @debug.setter
    def debug(self, enabled: bool) -> None:
        self._log.enabled = enabled

    @property
    def hub(self) -> CacheHub:
        return self._hub

    @property
    def context(self) -> EntityContextStore:
        return self._context

    @property
    def api_key(self) -> str | None:
        if self._api_key:
            return self._api_key
        stored = self._surface.get(API_KEY_KEY)
        if stored:
            self._api_key = stored
        return self._api_key

    @property
    def base_url(self) -> str:
        return self._base_url

    def set_api_key(self, api_key: str) -> None:
        self._api_key = api_key
        self._transport = None
        self._surface.set(API_KEY_KEY, api_key)

    def set_base_url(self, base_url: str) -> None:
        """Point deliveries at another collector, e.g. ``http://localhost:3000/api/v1/``."""
        self._base_url = base_url
        self._transport = None
        self._surface.set(BASE_URL_KEY, base_url)

    def setup_from_env(self) -> None:
        """Re-read API key and debug flag from the environment."""
        loaded = FunctionarySettings()
        if loaded.api_key:
            self._api_key = loaded.api_key
            self._transport = None
        self.debug = loaded.debug

    def setup_from_surface_delegate(self) -> None:
        """Adopt an API key or base URL persisted by an earlier session."""
        stored_key = self._surface.get(API_KEY_KEY)
        if stored_key and not self._api_key:
            self._api_key = stored_key
            self._transport = None
        stored_url = self._surface.get(BASE_URL_KEY)
        if stored_url:
            self._base_url = stored_url
            self._transport = None

    @property
    def transport(self) -> Transport:
        if self._transport is None:
            self._transport = Transport(
                api_key=self.api_key or "",
                base_url=self._base_url,
                state_endpoint=self._settings.state_endpoint,
                timeout_s=self._settings.timeout_s,
                stub=self._settings.stubbed,
                log=self._log,
            )
        return self._transport

    # public operations

    def identify(
        self,
        entity: Entity,
        *,
        properties: Mapping[str, Any] | None = None,
        display_name: str | None = None,
        set_to_context: bool | None = None,
    ) -> None:
        """Assert an entity's identity, optionally making it the current context."""
        with self._reporting("identify"):
            self._require_api_key()
            _check_entity(entity)
            record = IdentifyRecord(
                model=entity.model,
                ids=entity.str_ids(),
                display_name=display_name,
                properties=dict(properties) if properties else None,
            )
            self._contracts.check_identify(record.to_payload())
            if self.set_to_context_by_default if set_to_context is None else set_to_context:
                self._context.set_entity_context(entity)
            self._enqueue(self._hub.identify, record, entity)

    def event(
        self,
        name: str,
        properties: Mapping[str, Any] | None = None,
        *,
        target: Target | None = None,
    ) -> None:
        """Record a named state against the target (the context customer by default)."""
        with self._reporting("event"):
            self._require_api_key()
            entity = self._resolve(target)
            record = StateRecord(name=name, properties=dict(properties) if properties else None)
            self._contracts.check_state(_state_contract(record))
            self._enqueue(self._hub.state, record, entity)

    def assign(self, child: Target | None, parent: Entity) -> None:
        """Attach a customer to an organization; the latest parent wins."""
        with self._reporting("assign"):
            self._require_api_key()
            entity = self._resolve(child)
            if entity.model != CHILD_MODEL:
                raise RecordValidationError(
                    f"only a {CHILD_MODEL} can be assigned, got {entity.model}"
                )
            _check_entity(parent)
            if parent.model != PARENT_MODEL:
                raise RecordValidationError(
                    f"only an {PARENT_MODEL} can be a parent, got {parent.model}"
                )
            record = IdentifyRecord(model=entity.model, ids=entity.str_ids(), parent=parent)
            self._contracts.check_identify(record.to_payload())
            self._enqueue(self._hub.identify, record, entity)

    def add_properties(self, properties: Mapping[str, Any], target: Target | None = None) -> None:
        """Merge properties into the target entity; later keys overwrite earlier ones."""
        with self._reporting("add_properties"):
            self._require_api_key()
            entity = self._resolve(target)
            record = IdentifyRecord(
                model=entity.model, ids=entity.str_ids(), properties=dict(properties)
            )
            self._contracts.check_identify(record.to_payload())
            self._enqueue(self._hub.identify, record, entity)

    def reset_context(self, models: Iterable[str] | None = None) -> None:
        """Forget the entities in context (all supported models by default)."""
        with self._reporting("reset_context"):
            self._context.reset_context(SUPPORTED_MODELS if models is None else models)

    def flush(self) -> None:
        """Send both caches now, blocking outside an event loop."""
        with self._reporting("flush"):
            self._hub.flush()

    async def aflush(self) -> None:
        with self._reporting("flush"):
            await self._hub.aflush()

    # internals

    def _require_api_key(self) -> str:
        api_key = self.api_key
        if not api_key:
            raise ConfigurationError(
                "API key not set; call set_api_key() or set FUNCTIONARY_API_KEY"
            )
        return api_key

    def _resolve(self, target: Target | None) -> Entity:
        if target is None:
            target = ByContext()
        if isinstance(target, ByEntity):
            _check_entity(target.entity)
            return target.entity
        if isinstance(target, ByContext):
            if target.model not in SUPPORTED_MODELS:
                raise RecordValidationError(f"unsupported model {target.model!r}")
            reference = self._context.get_entity_context(target.model)
            if reference is None:
                raise MissingContextError(
                    f"no {target.model} in context; identify one with set_to_context=True"
                )
            return Entity(target.model, (reference,))
        raise RecordValidationError(f"unsupported target {target!r}")

    def _enqueue(
        self,
        cache: BatchingCache[Any],
        record: IdentifyRecord | StateRecord,
        entity: Entity,
    ) -> None:
        force = self._fire_next_call
        self._fire_next_call = False
        cache.cache_or_send(
            record,
            entity,
            sender=self.transport,
            surface=self._surface,
            force=force,
        )

    @contextmanager
    def _reporting(self, operation: str) -> Iterator[None]:
        try:
            yield
        except FunctionaryError as exc:
            self._log.error("%s skipped: %s", operation, exc)
        except Exception as exc:  # pragma: no cover
            self._log.error("%s failed unexpectedly: %r", operation, exc)


def _check_entity(entity: Entity) -> None:
    if entity.model not in SUPPORTED_MODELS:
        raise RecordValidationError(f"unsupported model {entity.model!r}")
    if not entity.ids:
        raise RecordValidationError(f"{entity.model} needs at least one id")


def _state_contract(record: StateRecord) -> dict[str, Any]:
    payload: dict[str, Any] = {"name": record.name}
    if record.properties:
        payload["properties"] = record.properties
    return payload
