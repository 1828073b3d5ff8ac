"""Client-side tracking SDK: identify entities and batch their states."""

from functionary.cache.batching import CacheHub, IdentifyCache, StateCache
from functionary.client import Functionary
from functionary.core.config import FunctionarySettings
from functionary.core.types import (
    CUSTOMER,
    ORGANIZATION,
    SUPPORTED_MODELS,
    ByContext,
    ByEntity,
    Entity,
)
from functionary.entities import Customer, Organization
from functionary.surface.cookie import CookieSurfaceDelegate
from functionary.surface.memory import MemorySurfaceDelegate
from functionary.surface.sql import SqlSurfaceDelegate

__all__ = [
    "CUSTOMER",
    "ORGANIZATION",
    "SUPPORTED_MODELS",
    "ByContext",
    "ByEntity",
    "CacheHub",
    "CookieSurfaceDelegate",
    "Customer",
    "Entity",
    "Functionary",
    "FunctionarySettings",
    "IdentifyCache",
    "MemorySurfaceDelegate",
    "Organization",
    "SqlSurfaceDelegate",
    "StateCache",
]
