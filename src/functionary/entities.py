"""Per-model convenience handles over a facade."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from functionary.client import Functionary
from functionary.core.types import CUSTOMER, ORGANIZATION, ByContext, ByEntity, Entity, EntityId


class EntityHandle:
    """Bind facade calls to one model.

    ``identify`` falls back to the facade's surface default for context:
    persistent surfaces keep the identified entity, server surfaces do not.
    """

    model: str = ""

    def __init__(self, functionary: Functionary) -> None:
        self.functionary = functionary

    def identify(
        self,
        ids: list[EntityId],
        *,
        properties: Mapping[str, Any] | None = None,
        display_name: str | None = None,
        set_to_context: bool | None = None,
    ) -> None:
        self.functionary.identify(
            Entity(self.model, ids),
            properties=properties,
            display_name=display_name,
            set_to_context=set_to_context,
        )

    def track(
        self,
        name: str,
        properties: Mapping[str, Any] | None = None,
        *,
        ids: list[EntityId] | None = None,
    ) -> None:
        """Record ``name`` against ``ids`` or, without ids, the entity in context."""
        self.functionary.event(name, properties, target=self._target(ids))

    def set(self, properties: Mapping[str, Any]) -> None:
        self.functionary.add_properties(properties, ByContext(self.model))

    def reset(self) -> None:
        self.functionary.reset_context([self.model])

    def _target(self, ids: list[EntityId] | None) -> ByContext | ByEntity:
        if ids:
            return ByEntity(Entity(self.model, ids))
        return ByContext(self.model)


class Customer(EntityHandle):
    model = CUSTOMER

    def join(
        self,
        organization_ids: list[EntityId],
        customer_ids: list[EntityId] | None = None,
    ) -> None:
        """Identify the organization and assign the customer to it."""
        organization = Entity(ORGANIZATION, organization_ids)
        self.functionary.identify(organization, set_to_context=False)
        self.functionary.assign(self._target(customer_ids), organization)


class Organization(EntityHandle):
    model = ORGANIZATION
