"""
nio_server/settings.py

Runtime settings loaded from environment variables / .env file.

All variables use the ``NIO_`` prefix, e.g. ``NIO_DATA_DIR=/var/lib/nio`` or
``NIO_DEFAULT_BASE_URL=https://api.deepseek.com``.  The ``default_*`` fields
seed the persisted model configuration the first time the server starts and
are restored by the config reset endpoint.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class NioSettings(BaseSettings):
    """Process configuration for the nio server.

    Attributes:
        data_dir: Directory holding the persisted model configuration.
        config_file: File name of the model configuration inside ``data_dir``.
        experts_file: Optional path to a built-in experts JSON document.  When
            unset the packaged ``data/experts.json`` is used.
        config_cache_seconds: How long a loaded model configuration is served
            from memory before the file is read again.
        default_base_url: Seed value for the endpoint base URL.
        default_api_key: Seed value for the API key (empty means unconfigured).
        default_model_name: Seed value for the model name.
        default_temperature: Seed value for the sampling temperature.
        default_max_tokens: Seed value for the output token limit.
        default_timeout_ms: Seed value for the per-call timeout.
        history_window: Number of trailing history entries sent to experts.
        max_concurrent_experts: Cap on concurrent expert calls per request.
            ``0`` sizes the cap to the number of registered experts.
        api_host: Bind address for the HTTP API.
        api_port: Bind port for the HTTP API.
        log_level: Root logging level name.
    """

    model_config = SettingsConfigDict(
        env_prefix="NIO_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    data_dir: Path = Field(Path("data"), description="Directory for persisted state.")
    config_file: str = Field("global-ai-config.json")
    experts_file: Path | None = Field(
        None,
        description="Override for the built-in experts JSON document.",
    )
    config_cache_seconds: float = Field(60.0, ge=0)

    default_base_url: str = Field("https://api.deepseek.com")
    default_api_key: str = Field("", description="Never logged.")
    default_model_name: str = Field("deepseek-chat")
    default_temperature: float = Field(0.7, ge=0, le=2)
    default_max_tokens: int = Field(2000, gt=0)
    default_timeout_ms: int = Field(30000, gt=0)

    history_window: int = Field(6, ge=0)
    max_concurrent_experts: int = Field(0, ge=0)

    api_host: str = Field("0.0.0.0")
    api_port: int = Field(8300)
    log_level: str = Field("INFO")

    @property
    def config_path(self) -> Path:
        """Full path of the persisted model configuration file."""
        return self.data_dir / self.config_file
