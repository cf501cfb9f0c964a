"""Configuration management for FLUX Studio.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the FLUXSTUDIO_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (FLUXSTUDIO_* prefix)
2. .env file in the project root
3. Default values defined in FluxStudioConfig

Example .env file:
    FLUXSTUDIO_OLLAMA_URL=http://localhost:11434
    FLUXSTUDIO_DEFAULT_MODEL=x/flux2-klein
    FLUXSTUDIO_DATA_DIR=data
    FLUXSTUDIO_SERVER_PORT=3001

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
It is the default used by :func:`fluxstudio.api.main.create_app`; tests build
their own instance pointing at temporary directories.

Usage Example
-------------
    from fluxstudio.core.config import config

    print(config.ollama_url)
    print(config.gallery_db)
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from fluxstudio.core.generation_client import DEFAULT_IMAGE_MODEL_MARKERS


class FluxStudioConfig(BaseSettings):
    """Main configuration for FLUX Studio.

    Attributes
    ----------
    Upstream Settings:
        ollama_url : str
            Base URL of the generative model service
        default_model : str
            Model used when a generate request does not name one
        image_model_markers : list[str]
            Substrings that identify image-capable models in ``/api/tags``
        request_timeout : float
            Read timeout in seconds for generation calls (streams included)
        connect_timeout : float
            Connection timeout in seconds

    Paths:
        data_dir : Path
            Directory holding ``gallery.json``
        images_dir : Path
            Directory holding generated image files

    Server Settings:
        server_host : str
            Bind address for uvicorn
        server_port : int
            Port for uvicorn (1024-65535)
        cors_origins : list[str]
            Allowed CORS origins
        log_level : str
            Root logging level used by ``main()``

    Notes
    -----
    - Directories are created automatically if they don't exist
    - To modify config, set environment variables and restart the application
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="FLUXSTUDIO_",
        case_sensitive=False,
    )

    # Upstream model service
    ollama_url: str = Field(
        default="http://localhost:11434",
        description="Base URL of the Ollama-compatible model service",
    )
    default_model: str = Field(
        default="x/flux2-klein",
        description="Model used when a request omits 'model'",
    )
    image_model_markers: list[str] = Field(
        default_factory=lambda: list(DEFAULT_IMAGE_MODEL_MARKERS),
        description="Name substrings that mark a model as image-capable",
    )
    request_timeout: float = Field(
        default=600.0,
        description="Read timeout (seconds) for generation requests",
        gt=0,
    )
    connect_timeout: float = Field(
        default=10.0,
        description="Connect timeout (seconds) for upstream requests",
        gt=0,
    )

    # Paths
    data_dir: Path = Field(
        default=Path("data"),
        description="Directory holding the gallery index",
    )
    images_dir: Path = Field(
        default=Path("data/images"),
        description="Directory holding generated images",
    )

    # Server settings
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address (0.0.0.0 for local network)",
    )
    server_port: int = Field(
        default=3001,
        description="Server port",
        ge=1024,
        le=65535,
    )
    cors_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Origins allowed by the CORS middleware",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Root logging level",
    )

    def __init__(self, **kwargs):
        """Initialize configuration and create required directories.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.images_dir.mkdir(parents=True, exist_ok=True)

    @property
    def gallery_db(self) -> Path:
        """Path to the gallery index document."""
        return self.data_dir / "gallery.json"


# Global configuration instance
# Loads values from environment variables (FLUXSTUDIO_* prefix) and .env file.
config = FluxStudioConfig()
