"""Entity context: the currently identified entity per model."""

from __future__ import annotations

from collections.abc import Iterable

from functionary.core.logs import DebugLog
from functionary.core.types import SUPPORTED_MODELS, Entity
from functionary.surface.base import SurfaceDelegate


def reference_key(model: str) -> str:
    """Delegate key holding the reference id for ``model``."""
    return f"{model}ReferenceId"


class EntityContextStore:
    """Write-through cache of reference ids in front of a persistence delegate."""

    def __init__(self, surface: SurfaceDelegate, log: DebugLog | None = None) -> None:
        self._surface = surface
        self._log = log or DebugLog()
        self._references: dict[str, str] = {}

    def set_entity_context(self, entity: Entity) -> bool:
        """Remember ``entity.ids[0]`` as the reference id for its model."""
        if not entity.ids:
            self._log.error("cannot set context for %s without ids", entity.model)
            return False
        reference = str(entity.ids[0])
        self._references[entity.model] = reference
        self._surface.set(reference_key(entity.model), reference)
        return True

    def get_entity_context(self, model: str) -> str | None:
        cached = self._references.get(model)
        if cached:
            return cached
        stored = self._surface.get(reference_key(model))
        if stored:
            self._references[model] = stored
            return stored
        return None

    def revoke_entity_context(self, model: str) -> None:
        self._references.pop(model, None)
        self._surface.remove(reference_key(model))

    def restore_entity_context(self, model: str) -> bool:
        """Hydrate the in-memory reference for ``model`` from the delegate."""
        stored = self._surface.get(reference_key(model))
        if not stored:
            return False
        self._references[model] = stored
        return True

    def reset_context(self, models: Iterable[str] = SUPPORTED_MODELS) -> None:
        """Forget the context of every listed model, e.g. on logout."""
        for model in models:
            self.revoke_entity_context(model)
