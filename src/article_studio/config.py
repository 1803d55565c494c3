"""Configuration helpers for the article studio.

Two layers live here:
- ``Settings``: process settings loaded from environment variables / ``.env``.
- ``ProviderConfig``: the user-editable provider configuration that is stored
  by ``article_studio.store`` and threaded explicitly into every pipeline call.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

COMPLETIONS_PATH = "/chat/completions"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    gemini_api_key: str | None = Field(None, alias="GEMINI_API_KEY")
    search_model: str = Field(
        "gemini-2.5-flash", description="Hosted model used for grounded topic search."
    )
    fast_model: str = Field(
        "gemini-2.5-flash",
        description="Fast tier used by every stage except the writer.",
    )
    retry_max_retries: int = Field(
        3, description="Retries after the first attempt for rate-limited/unavailable calls."
    )
    retry_base_delay: float = Field(
        2.0, description="First backoff delay in seconds; doubles on each retry."
    )
    image_candidate_limit: int = Field(10, description="Maximum image candidates returned.")
    visual_excerpt_chars: int = Field(
        500, description="Leading draft characters shown to the visual director."
    )
    topic_target: int = Field(10, description="Number of topics requested from search.")
    data_dir: str | None = Field(
        None,
        alias="DATA_DIR",
        description="Optional override for the local store; defaults to data/ at the repo root.",
    )
    export_author_label: str = Field(
        "AI Newsroom", description="Author label shown in the exported metadata line."
    )


def get_settings() -> Settings:
    """Return a settings instance read from the current environment."""
    return Settings()


class ProviderKind(str, Enum):
    GOOGLE = "google"
    CUSTOM = "custom"


class ProviderConfig(BaseModel):
    """User-editable provider configuration, read (never mutated) by the pipeline."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    provider: ProviderKind = ProviderKind.GOOGLE
    writer_model: str = "gemini-3-pro-preview"
    custom_base_url: str = "https://api.deepseek.com/v1"
    custom_api_key: str = ""
    custom_model: str = "deepseek-chat"
    creativity: float = Field(0.7, ge=0.0, le=1.0)
    global_rules: str = ""

    @field_validator("custom_base_url")
    @classmethod
    def _strip_base_url(cls, value: str) -> str:
        # Stored as the API root; users often paste the full completions URL.
        url = value.strip().rstrip("/")
        if url.endswith(COMPLETIONS_PATH):
            url = url[: -len(COMPLETIONS_PATH)]
        return url

    @property
    def completions_url(self) -> str:
        """Full chat-completions endpoint for the custom provider."""
        return completions_url(self.custom_base_url)

    @property
    def temperature(self) -> float:
        return self.creativity

    def require_ready(self, settings: Settings | None = None) -> None:
        """Raise ConfigurationError when the selected provider cannot be called."""
        if self.provider is ProviderKind.CUSTOM:
            missing = [
                name
                for name, value in (
                    ("customBaseUrl", self.custom_base_url),
                    ("customApiKey", self.custom_api_key),
                    ("customModel", self.custom_model),
                )
                if not value.strip()
            ]
            if missing:
                raise ConfigurationError(
                    f"Custom provider selected but {', '.join(missing)} is not set."
                )
            return
        settings = settings or get_settings()
        if not settings.gemini_api_key:
            raise ConfigurationError(
                "GEMINI_API_KEY is required. Set it in the environment or .env file."
            )


def completions_url(base_url: str) -> str:
    """Append the chat-completions path segment when it is missing."""
    url = base_url.strip().rstrip("/")
    if url.endswith(COMPLETIONS_PATH):
        return url
    return f"{url}{COMPLETIONS_PATH}"


def data_root(settings: Settings | None = None) -> Path:
    """Base directory for the local key-value store (override via DATA_DIR)."""
    settings = settings or get_settings()
    if settings.data_dir:
        return Path(settings.data_dir).expanduser().resolve()
    return Path(__file__).resolve().parents[2] / "data"
