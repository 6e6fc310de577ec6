"""Lobby server configuration via environment variables."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from shared.validators import OriginListEnvSettingsSource, parse_origin_list

if TYPE_CHECKING:
    from pydantic_settings.sources.base import PydanticBaseSettingsSource


class LobbyServerSettings(BaseSettings):
    model_config = {"env_prefix": "LOBBY_"}

    database_path: str = Field(default="backend/data/priorities.db", min_length=1)
    log_dir: str = Field(default="backend/logs/lobby", min_length=1)
    max_players_per_room: int = Field(default=10, ge=2)
    cors_origins: list[str] = []

    @field_validator("cors_origins", mode="before")
    @classmethod
    def validate_cors_origins(cls, v: str | list[str]) -> list[str]:
        return parse_origin_list(v)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (init_settings, OriginListEnvSettingsSource(settings_cls), dotenv_settings, file_secret_settings)
