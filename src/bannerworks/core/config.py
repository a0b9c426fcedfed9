"""Configuration management for the Bannerworks banner generator.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the BANNERWORKS_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (BANNERWORKS_* prefix)
2. .env file in the project root
3. Default values defined in BannerworksConfig

Example .env file:
    BANNERWORKS_OPENAI_API_KEY=sk-...
    BANNERWORKS_IMAGE_API_KEY=...
    BANNERWORKS_MAX_CONCURRENCY=3
    BANNERWORKS_DATABASE_PATH=data/bannerworks.db

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
The API layer reads it once during startup; the core components receive
their settings as constructor arguments so they can be tested in isolation.

Usage Example
-------------
    from bannerworks.core.config import config

    print(config.image_api_base_url)
    print(config.max_concurrency)

Generation Limits
-----------------
- max_concurrency bounds how many image backend calls a single batch keeps
  in flight at once (1-16, default 3).
- retention_hours is the age after which unsaved images are swept (23).
- retry_base_delay is the wait before the single adapter-level retry.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Package-relative default for the bundled template catalogue.
_PACKAGE_DIR = Path(__file__).resolve().parent.parent


class BannerworksConfig(BaseSettings):
    """Main configuration for the Bannerworks banner generator.

    Values are loaded from environment variables with the BANNERWORKS_ prefix,
    with fallback to defaults defined here.

    Attributes
    ----------
    Language Model Settings:
        openai_api_key : str | None
            API key for the structured-completion provider
        llm_model : str
            Chat model used for idea generation

    Image Backend Settings:
        image_api_key : str | None
            API key sent in the ``Api-Key`` header
        image_api_base_url : str
            Base URL of the image generation service
        image_model : str
            Backend model identifier
        magic_prompt_option : str
            Backend prompt-rewriting switch (kept OFF so composed prompts
            reach the model verbatim)
        image_request_timeout : float
            Per-request timeout in seconds

    Orchestration Settings:
        max_concurrency : int
            Fan-out limit for one generation batch
        retry_base_delay : float
            Seconds to wait before the single retry of a transient failure
        shutdown_grace_seconds : float
            Wait for in-flight generations when the server stops

    Retention Settings:
        retention_hours : int
            Age after which unsaved images are deleted
        retention_interval_seconds : int
            Period between sweeper runs
        enable_retention_sweeper : bool
            Start the sweeper with the API server

    Paths:
        data_dir : Path
            Directory holding ``templates.json``
        database_path : Path
            SQLite database file

    Server Settings:
        server_host : str
        server_port : int

    Notes
    -----
    - The parent directory of database_path is created automatically
    - Configuration is immutable after initialization
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="BANNERWORKS_",
        case_sensitive=False,
    )

    # Language model settings
    openai_api_key: str | None = Field(
        default=None,
        description="API key for the structured-completion provider",
    )
    llm_model: str = Field(
        default="gpt-4o",
        description="Chat model used for idea generation",
    )

    # Image backend settings
    image_api_key: str | None = Field(
        default=None,
        description="API key for the image generation backend",
    )
    image_api_base_url: str = Field(
        default="https://api.ideogram.ai",
        description="Base URL of the image generation backend",
    )
    image_model: str = Field(
        default="V_2",
        description="Backend model identifier",
    )
    magic_prompt_option: str = Field(
        default="OFF",
        description="Backend prompt rewriting (OFF keeps composed prompts verbatim)",
    )
    image_request_timeout: float = Field(
        default=120.0,
        description="Per-request timeout for backend calls in seconds",
        gt=0,
    )

    # Orchestration settings
    max_concurrency: int = Field(
        default=3,
        description="Maximum concurrent backend calls per generation batch",
        ge=1,
        le=16,
    )
    retry_base_delay: float = Field(
        default=1.5,
        description="Seconds to wait before retrying a transient backend failure",
        ge=0,
    )
    shutdown_grace_seconds: float = Field(
        default=30.0,
        description="Seconds to wait for in-flight generations on shutdown",
        ge=0,
    )

    # Retention settings
    retention_hours: int = Field(
        default=23,
        description="Unsaved images older than this are deleted",
        ge=1,
    )
    retention_interval_seconds: int = Field(
        default=3600,
        description="Seconds between retention sweeps",
        ge=1,
    )
    enable_retention_sweeper: bool = Field(
        default=True,
        description="Run the retention sweeper alongside the API server",
    )

    # Paths
    data_dir: Path = Field(
        default=_PACKAGE_DIR / "data",
        description="Directory containing templates.json",
    )
    database_path: Path = Field(
        default=Path("data") / "bannerworks.db",
        description="SQLite database file",
    )

    # Server settings
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address",
    )
    server_port: int = Field(
        default=8000,
        description="Server port",
        ge=1024,
        le=65535,
    )

    def __init__(self, **kwargs):
        """Initialize configuration and create the database directory.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        self.database_path.parent.mkdir(parents=True, exist_ok=True)


# Global configuration instance
config = BannerworksConfig()
