"""
AgriCare Configuration Module

This module manages application settings and environment variables using
pydantic-settings for type-safe configuration management.

Environment variables are loaded from .env file or system environment.
All API keys use SecretStr to prevent accidental logging.

Credentials for the AI dispatcher are collected once, in priority order:
GEMINI_API_KEY, then GEMINI_API_KEY_2, then GEMINI_API_KEY_3.
"""

from functools import lru_cache
from typing import Literal
import logging
import sys

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Pydantic Settings automatically reads from:
    1. Environment variables
    2. .env file in working directory
    3. Default values defined here

    None of the API keys is required. A process without usable keys starts
    normally and the dispatcher reports the problem on first use.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore unknown env vars
    )

    gemini_api_key: SecretStr | None = Field(
        default=None, description="Primary generation API key"
    )

    gemini_api_key_2: SecretStr | None = Field(
        default=None, description="First fallback API key"
    )

    gemini_api_key_3: SecretStr | None = Field(
        default=None, description="Second fallback API key"
    )

    min_credential_length: int = Field(
        default=10,
        ge=1,
        description="Keys shorter than this are treated as placeholders and dropped",
    )

    ai_provider: Literal["gemini", "openai", "groq"] = Field(
        default="gemini", description="Generation endpoint the keys belong to"
    )

    ai_model: str = Field(
        default="gemini-2.5-flash", description="Model name sent to the provider"
    )

    ai_temperature: float = Field(
        default=0.4,
        ge=0.0,
        le=2.0,
        description="Default sampling temperature for advisory prompts",
    )

    dispatch_retries: int = Field(
        default=2,
        ge=0,
        description="Additional attempts allowed after the first failure",
    )

    retry_delay_seconds: float = Field(
        default=0.0,
        ge=0.0,
        description="Flat pause between attempts (0 disables the pause)",
    )

    retry_policy: Literal["classified", "any"] = Field(
        default="classified",
        description="'classified' rotates only on rate-limit/transient errors, "
        "'any' rotates on every failure",
    )

    storage_backend: Literal["memory", "json"] = Field(
        default="memory", description="Farm record persistence backend"
    )

    storage_path: str = Field(
        default="data/agricare.json", description="File used by the json backend"
    )

    region: str = Field(
        default="Bangladesh", description="Agronomic context injected into prompts"
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Application log level"
    )

    host: str = Field(default="0.0.0.0", description="Server bind host")

    port: int = Field(default=8000, description="Server bind port")

    debug: bool = Field(default=False, description="Enable debug mode")

    def credentials(self) -> list[str]:
        """
        Collect usable API keys in priority order.

        Missing, blank and too-short candidates are dropped, surrounding
        whitespace is stripped, and a key repeated in a later slot is
        ignored.

        Returns:
            Ordered list of credential strings (possibly empty).
        """
        candidates = [
            self.gemini_api_key,
            self.gemini_api_key_2,
            self.gemini_api_key_3,
        ]

        keys: list[str] = []
        for candidate in candidates:
            if candidate is None:
                continue
            value = candidate.get_secret_value().strip()
            if len(value) < self.min_credential_length:
                continue
            if value not in keys:
                keys.append(value)
        return keys


@lru_cache
def get_settings() -> Settings:
    """
    Returns cached settings instance.

    Using lru_cache ensures settings are loaded once and reused,
    avoiding repeated file reads and environment parsing.

    Returns:
        Settings: The application settings singleton.
    """
    return Settings()


def mask_credential(value: str) -> str:
    """Short, log-safe label for an API key."""
    if len(value) <= 8:
        return "***"
    return f"{value[:4]}...{value[-3:]}"


def configure_logging(settings: Settings) -> None:
    """
    Configure application logging based on settings.

    Sets up structured logging with timestamps and reduces noise
    from third-party HTTP and SDK libraries.

    Args:
        settings: The application settings instance.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("groq").setLevel(logging.WARNING)
    logging.getLogger("google_genai").setLevel(logging.WARNING)
