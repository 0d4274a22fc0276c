"""
nio_server/config_store.py

Process-wide model configuration backed by a JSON file.

The configuration is read lazily and served from memory for
``cache_seconds`` before the file is consulted again, so edits made by
another process (or by hand) are picked up without a restart.  All writes go
through :meth:`ConfigService.update`, which merges partial fields, stamps
``updatedAt`` and persists the full record.

File format (camelCase keys, shared with the admin frontend)::

    {"baseUrl": "https://api.deepseek.com", "apiKey": "sk-...",
     "modelName": "deepseek-chat", "temperature": 0.7, "maxTokens": 2000,
     "timeout": 30000, "updatedAt": "2026-01-01T00:00:00+00:00"}
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .errors import ValidationError
from .settings import NioSettings

logger = logging.getLogger("nio-server.config")


class ModelConfig(BaseModel):
    """Connection and sampling defaults for the upstream chat-completions API."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        protected_namespaces=(),
    )

    base_url: str = ""
    api_key: str = ""
    model_name: str = "deepseek-chat"
    temperature: float | None = 0.7
    max_tokens: int | None = 2000
    timeout_ms: int = Field(30000, alias="timeout", gt=0)
    updated_at: str | None = None

    @property
    def is_complete(self) -> bool:
        """Both endpoint and key are present; required before any model call."""
        return bool(self.base_url.strip() and self.api_key.strip())

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


def mask_secret(secret: str) -> str:
    """Return ``secret`` with everything but the first and last 4 chars hidden."""
    if not secret:
        return ""
    if len(secret) <= 8:
        return "*" * len(secret)
    return f"{secret[:4]}{'*' * (len(secret) - 8)}{secret[-4:]}"


def validate_config(config: ModelConfig) -> list[str]:
    """Check a candidate configuration.

    Args:
        config: The configuration to check.

    Returns:
        Human-readable problems; empty when the configuration is usable.
    """
    errors: list[str] = []
    if not config.base_url.strip():
        errors.append("Base URL must not be empty")
    elif not config.base_url.startswith(("http://", "https://")):
        errors.append("Base URL must be an http(s) address")
    if not config.api_key.strip():
        errors.append("API key must not be empty")
    return errors


class ConfigService:
    """Lazily loaded, time-boxed cache over the model configuration file."""

    def __init__(
        self,
        path: Path,
        defaults: ModelConfig,
        *,
        cache_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.path = path
        self.defaults = defaults
        self.cache_seconds = cache_seconds
        self._clock = clock
        self._config: ModelConfig | None = None
        self._loaded_at: float = 0.0

    @classmethod
    def from_settings(cls, settings: NioSettings) -> ConfigService:
        defaults = ModelConfig(
            base_url=settings.default_base_url,
            api_key=settings.default_api_key,
            model_name=settings.default_model_name,
            temperature=settings.default_temperature,
            max_tokens=settings.default_max_tokens,
            timeout_ms=settings.default_timeout_ms,
        )
        return cls(
            settings.config_path,
            defaults,
            cache_seconds=settings.config_cache_seconds,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def current(self) -> ModelConfig:
        """Return the configuration snapshot, reloading it if the cache expired."""
        if self._config is None or self._is_stale():
            return self._reload()
        return self._config

    def refresh_if_stale(self) -> bool:
        """Reload from disk when nothing is cached or the cache has expired.

        Returns:
            ``True`` if the file was (re)read.
        """
        if self._config is not None and not self._is_stale():
            return False
        self._reload()
        return True

    def summary(self) -> dict[str, Any]:
        """Display-safe view of the configuration (no API key)."""
        config = self.current()
        return {
            "baseUrl": config.base_url,
            "modelName": config.model_name,
            "hasApiKey": bool(config.api_key),
            "isConfigured": config.is_complete,
            "updatedAt": config.updated_at,
        }

    def masked(self) -> dict[str, Any]:
        """Full configuration document with the API key masked."""
        document = self.current().to_document()
        document["apiKey"] = mask_secret(document.get("apiKey", ""))
        return document

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def update(self, partial: Mapping[str, Any], *, validate: bool = True) -> ModelConfig:
        """Merge ``partial`` into the current configuration and persist it.

        Keys may be given in camelCase (file format) or snake_case.  ``None``
        values are ignored so callers can pass sparse request bodies.

        Args:
            partial: Fields to change.
            validate: Reject the merged result if :func:`validate_config`
                reports problems.

        Returns:
            The persisted configuration.

        Raises:
            ValidationError: If the merged configuration is invalid.
        """
        merged: dict[str, Any] = self.current().model_dump()
        for key, value in partial.items():
            if value is None:
                continue
            field = _field_name(key)
            if field is not None:
                merged[field] = value
        merged["updated_at"] = datetime.now(timezone.utc).isoformat()

        try:
            candidate = ModelConfig.model_validate(merged)
        except PydanticValidationError as exc:
            raise ValidationError(
                "Config validation failed",
                details=[err["msg"] for err in exc.errors()],
            ) from exc

        if validate:
            problems = validate_config(candidate)
            if problems:
                raise ValidationError("Config validation failed", details=problems)

        self._save(candidate)
        logger.info(
            "[config] updated: base_url=%s model=%s", candidate.base_url, candidate.model_name
        )
        return candidate

    def reset(self) -> ModelConfig:
        """Restore the settings-derived defaults."""
        return self.update(
            self.defaults.model_dump(exclude={"updated_at"}), validate=False
        )

    # ------------------------------------------------------------------
    # File I/O
    # ------------------------------------------------------------------

    def _is_stale(self) -> bool:
        return self._clock() - self._loaded_at >= self.cache_seconds

    def _reload(self) -> ModelConfig:
        config = self._load()
        self._config = config
        self._loaded_at = self._clock()
        return config

    def _load(self) -> ModelConfig:
        if not self.path.exists():
            logger.info("[config] %s not found; writing defaults", self.path)
            try:
                self._save(self.defaults)
            except OSError as exc:
                logger.error("[config] could not write defaults: %s", exc)
            return self.defaults

        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
            config = ModelConfig.model_validate(document)
        except (OSError, json.JSONDecodeError, PydanticValidationError) as exc:
            logger.error("[config] failed to load %s: %s; using defaults", self.path, exc)
            return self.defaults

        if not config.is_complete:
            logger.warning("[config] configuration is incomplete (missing base URL or API key)")
        logger.info("[config] loaded: base_url=%s model=%s", config.base_url, config.model_name)
        return config

    def _save(self, config: ModelConfig) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            json.dumps(config.to_document(), ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
        self._config = config
        self._loaded_at = self._clock()


def _field_name(key: str) -> str | None:
    if key in ModelConfig.model_fields:
        return key
    for name, info in ModelConfig.model_fields.items():
        if info.alias == key:
            return name
    return None
