"""Configuration management for escapeweb.

Loads settings from a YAML configuration file with environment variable
overrides (``ESCAPEWEB_`` prefix, ``__`` between nested keys). Supports
.env files. Settings are assembled once at startup and are read-only
afterwards.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/escapeweb.yaml")


class ServerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000, ge=1, le=65535)
    max_upload_bytes: int = Field(
        default=50 * 1024 * 1024, ge=0,
        description="Largest accepted upload; 0 disables the limit",
    )


class TransformerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    interpreter: str = Field(default="perl")
    script: str = Field(default="escape_excel.pl")
    working_dir: Path | None = Field(default=None)
    timeout: float | None = Field(default=60.0, gt=0)
    kill_grace: float = Field(default=2.0, gt=0)
    chunk_size: int = Field(default=64 * 1024, gt=0)


class LoggingConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: str = Field(default="INFO")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    file: str | None = Field(default=None)


class Settings(BaseSettings):
    """Root configuration for the escapeweb service.

    Loads from YAML file and supports environment variable overrides.
    Reads .env files automatically.
    """

    model_config = {
        "env_prefix": "ESCAPEWEB_",
        "env_nested_delimiter": "__",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "frozen": True,
    }

    server: ServerConfig = Field(default_factory=ServerConfig)
    transformer: TransformerConfig = Field(default_factory=TransformerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # YAML values arrive as init kwargs and must lose to the environment
        return env_settings, dotenv_settings, init_settings, file_secret_settings


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from YAML + .env + environment variables.

    Priority: env vars > .env file > YAML file > defaults
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    yaml_data = {}
    if path.exists():
        with open(path) as f:
            yaml_data = yaml.safe_load(f) or {}
        logger.info("Loaded configuration from %s", path)
    else:
        logger.warning("Config file %s not found, using defaults + env vars", path)

    return Settings(**yaml_data)
