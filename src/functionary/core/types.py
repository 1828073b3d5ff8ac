"""Canonical domain types shared across functionary layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

EntityId = str | int

CUSTOMER = "customer"
ORGANIZATION = "organization"
SUPPORTED_MODELS: tuple[str, ...] = (CUSTOMER, ORGANIZATION)

# Only customers can be assigned to a parent, only organizations can be parents.
CHILD_MODEL = CUSTOMER
PARENT_MODEL = ORGANIZATION

SurfaceKind = Literal["server", "persistent"]


@dataclass(frozen=True, slots=True)
class Entity:
    """A trackable subject referenced by one or more aliased ids."""

    model: str
    ids: tuple[EntityId, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "ids", tuple(self.ids))

    def str_ids(self) -> list[str]:
        unique: list[str] = []
        for value in self.ids:
            text = str(value)
            if text not in unique:
                unique.append(text)
        return unique

    def same_subject(self, other: Entity) -> bool:
        return self.model == other.model and set(self.str_ids()) == set(other.str_ids())

    def to_payload(self) -> dict[str, Any]:
        return {"model": self.model, "ids": self.str_ids()}


@dataclass(slots=True)
class IdentifyRecord:
    """Pending mutation to an entity's identity, properties or relationships."""

    model: str
    ids: list[str]
    display_name: str | None = None
    properties: dict[str, Any] | None = None
    parent: Entity | None = None
    children: list[Entity] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"model": self.model, "ids": list(self.ids)}
        if self.display_name is not None:
            payload["displayName"] = self.display_name
        if self.properties:
            payload["properties"] = dict(self.properties)
        if self.parent is not None:
            payload["parent"] = self.parent.to_payload()
        if self.children:
            payload["children"] = [child.to_payload() for child in self.children]
        return payload


@dataclass(slots=True)
class StateRecord:
    """Timestamped named occurrence; ts is creation time, not send time."""

    name: str
    properties: dict[str, Any] | None = None
    ts: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"name": self.name, "ts": self.ts.isoformat()}
        if self.properties:
            payload["properties"] = dict(self.properties)
        return payload


@dataclass(slots=True)
class CacheEntry:
    """One merged subject inside a batching cache."""

    model: str
    ids: list[str]
    identify: IdentifyRecord | None = None
    states: list[StateRecord] = field(default_factory=list)

    def matches(self, model: str, ids: list[str]) -> bool:
        return self.model == model and not set(self.ids).isdisjoint(ids)

    def merge_ids(self, ids: list[str]) -> None:
        """Union in first-seen order; the first id stays the reference id."""
        for value in ids:
            if value not in self.ids:
                self.ids.append(value)


@dataclass(frozen=True, slots=True)
class ByContext:
    """Target the entity currently held in context for ``model``."""

    model: str = CUSTOMER


@dataclass(frozen=True, slots=True)
class ByEntity:
    """Target an explicitly referenced entity."""

    entity: Entity


Target = ByContext | ByEntity
