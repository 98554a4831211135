"""Application configuration.

Configuration is loaded from environment variables. For local development, you can provide a
`.env` file and set `TRUSTEYE_ENV_FILE` to point to it.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from trusteye.errors import ConfigError


@dataclass(frozen=True)
class GeneratorConfig:
    """Explicit configuration handed to the draft generator at construction time."""

    provider: str
    model: str
    api_key: str | None
    base_url: str | None
    timeout_s: float
    temperature: float = 0.2

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)


@dataclass(frozen=True)
class TrustThresholds:
    """Zone cut-offs. A total `<= unsafe_max` is UNSAFE, `<= caution_max` is CAUTION."""

    unsafe_max: int = 40
    caution_max: int = 65

    def __post_init__(self) -> None:
        if not (0 <= self.unsafe_max < self.caution_max <= 100):
            raise ConfigError(
                "Trust thresholds must satisfy 0 <= unsafe_max < caution_max <= 100 "
                f"(got unsafe_max={self.unsafe_max}, caution_max={self.caution_max})."
            )


class Settings(BaseSettings):
    """TrustEye settings.

    All fields are environment-configurable. Prefix is `TRUSTEYE_`.
    """

    model_config = SettingsConfigDict(
        env_prefix="TRUSTEYE_",
        env_file=None,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    app_env: Literal["dev", "prod"] = Field(default="dev")
    log_level: str = Field(default="INFO")
    database_url: str = Field(default="sqlite:///trusteye.db")

    # LLM
    openai_api_key: str | None = Field(default=None)
    openai_base_url: str | None = Field(default=None)
    openai_model: str = Field(default="gpt-4o-mini")
    # Drafting must never stall a request; anything slower falls back to the synthetic draft.
    openai_timeout_s: float = Field(default=2.5, ge=0.5, le=60.0)

    # Classifier
    impact_min: int = Field(default=55, ge=1, le=100)
    hedging_weak: int = Field(default=70, ge=0, le=100)
    freshness_days: int = Field(default=90, ge=1, le=3650)
    theme_impact_min: int = Field(default=70, ge=1, le=100)
    theme_question_limit: int = Field(default=25, ge=1, le=500)
    question_limit: int = Field(default=60, ge=1, le=1000)
    cap_product: int = Field(default=3, ge=0, le=100)
    cap_blog: int = Field(default=2, ge=0, le=100)
    cap_faq: int = Field(default=7, ge=0, le=100)
    faq_missing_preference: int = Field(default=2, ge=0, le=100)

    # Trust policy
    trust_unsafe_max: int = Field(default=40, ge=0, le=100)
    trust_caution_max: int = Field(default=65, ge=0, le=100)
    trust_default_total: int = Field(default=70, ge=0, le=100)

    # Growth
    growth_suppressed_cap: int = Field(default=200, ge=0, le=10000)

    # Storefront delivery (optional)
    shopify_store_domain: str | None = Field(default=None)
    shopify_admin_token: str | None = Field(default=None)
    shopify_api_version: str = Field(default="2024-01")
    shopify_blog_handle: str = Field(default="news")
    shopify_faq_page_handle: str = Field(default="faq")
    shopify_timeout_s: float = Field(default=10.0, ge=0.5, le=120.0)

    def generator_config(self) -> GeneratorConfig:
        """Build the explicit draft generator configuration."""

        return GeneratorConfig(
            provider="openai",
            model=self.openai_model,
            api_key=self.openai_api_key,
            base_url=self.openai_base_url,
            timeout_s=self.openai_timeout_s,
        )

    def trust_thresholds(
        self, *, unsafe_max: int | None = None, caution_max: int | None = None
    ) -> TrustThresholds:
        """Build validated trust thresholds, applying optional per-tenant overrides."""

        return TrustThresholds(
            unsafe_max=self.trust_unsafe_max if unsafe_max is None else unsafe_max,
            caution_max=self.trust_caution_max if caution_max is None else caution_max,
        )

    @property
    def shopify_enabled(self) -> bool:
        return bool(self.shopify_store_domain and self.shopify_admin_token)


def load_settings() -> Settings:
    """Load settings from env.

    Returns:
        Settings: Parsed settings.
    """

    env_file_override = os.getenv("TRUSTEYE_ENV_FILE")
    if env_file_override:
        env_path = Path(env_file_override)
        return Settings(_env_file=env_path)

    default_env = Path.cwd() / ".env"
    if default_env.exists():
        return Settings(_env_file=default_env)

    return Settings()
