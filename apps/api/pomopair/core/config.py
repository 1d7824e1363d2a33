"""Application configuration for the rendezvous server and call client."""
from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    app_env: str = Field(default="development")
    cors_allow_origins: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["*"])
    log_level: str = Field(default="INFO")

    signaling_url: str = Field(default="ws://localhost:8000/ws")
    ice_servers: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["stun:stun.l.google.com:19302"])
    invite_url_prefix: str = Field(default="https://85-214-6-146.nip.io/join/")

    # Free a room slot when its occupant's socket closes.
    prune_on_disconnect: bool = Field(default=True)

    timer_default_seconds: float = Field(default=30 * 60, gt=0)
    timer_adjust_step: float = Field(default=5 * 60, gt=0)
    timer_tick_seconds: float = Field(default=1.0, gt=0)

    @field_validator("cors_allow_origins", "ice_servers", mode="before")
    @classmethod
    def _split_csv(cls, value: object) -> object:
        """Allow comma-separated env values for list settings."""

        if isinstance(value, str):
            parts = [item.strip() for item in value.split(",") if item.strip()]
            return parts
        return value


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


settings = get_settings()
