"""Explicit delegate selection from settings."""

from __future__ import annotations

from functionary.core.config import FunctionarySettings
from functionary.surface.base import SurfaceDelegate
from functionary.surface.memory import MemorySurfaceDelegate
from functionary.surface.sql import SqlSurfaceDelegate


def build_surface(settings: FunctionarySettings) -> SurfaceDelegate:
    """Create the delegate named by ``settings.persistent_type``."""
    if settings.persistent_type == "sqlite":
        return SqlSurfaceDelegate(settings.sqlite_url)
    return MemorySurfaceDelegate()
