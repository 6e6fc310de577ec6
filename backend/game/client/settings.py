"""Client session configuration via environment variables."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings


class ClientSettings(BaseSettings):
    model_config = {"env_prefix": "PRIORITIES_"}

    heartbeat_interval_seconds: float = Field(default=30.0, gt=0)
    identity_path: Path = Path("backend/data/identity.json")
    deck_path: Path | None = None  # None uses the bundled deck
