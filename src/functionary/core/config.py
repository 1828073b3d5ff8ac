"""Functionary runtime configuration definitions."""

from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_BASE_URL = "https://functionary.run/api/v1/"


class FunctionarySettings(BaseSettings):
    """SDK settings loaded from env and .env files.

    Public (``NEXT_PUBLIC_``) variables win over server-only ones so one
    ``.env`` can serve both a web front-end build and a backend process.
    """

    api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("NEXT_PUBLIC_FUNCTIONARY_API_KEY", "FUNCTIONARY_API_KEY"),
    )
    debug: bool = Field(
        default=False,
        validation_alias=AliasChoices("NEXT_PUBLIC_FUNCTIONARY_DEBUG", "FUNCTIONARY_DEBUG"),
    )
    base_url: str = DEFAULT_BASE_URL
    on: bool = True
    stub: bool = False
    fire_on_instantiation: bool = True
    persistent_type: Literal["memory", "sqlite"] = "memory"
    sqlite_url: str = "sqlite:///./functionary_state.db"
    state_endpoint: Literal["state", "event"] = "state"
    flush_delay_s: float = Field(default=10.0, gt=0)
    max_cached_records: int = Field(default=300, gt=0)
    timeout_s: float = Field(default=9.0, gt=0)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="FUNCTIONARY_",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def stubbed(self) -> bool:
        """True when transport calls must short-circuit to a canned success."""
        return self.stub or not self.on
