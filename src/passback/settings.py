"""
Central configuration for the passback service.

All settings are read from environment variables with the ``PASSBACK_``
prefix (e.g. ``PASSBACK_ENV=prod``, ``PASSBACK_REDIS_URL=...``).  Pydantic
validates and casts values on startup.

Usage::

    from passback.settings import get_settings
    settings = get_settings()
    print(settings.env, settings.score_maximum)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from ``PASSBACK_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="PASSBACK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Environment ──────────────────────────────────────────────────
    env: Literal["local", "dev", "prod"] = "local"

    # ── Redis ────────────────────────────────────────────────────────
    # PyLTI1p3 nonce/state/launch cache.  Empty string = LTI routes disabled;
    # the update endpoint still works for sessions stored by other means.
    redis_url: str = ""

    # ── Sessions ─────────────────────────────────────────────────────
    session_ttl_seconds: int = 7200  # 2 hours
    session_cookie: str = "passback_session"

    # ── Grading policy ───────────────────────────────────────────────
    score_maximum: float = 100.0
    attempts_maximum: float = 1000.0
    track_attempts: bool = True
    # "cumulative" adds each event's delta; "latest" replaces with the event value.
    score_mode: Literal["cumulative", "latest"] = "cumulative"
    # AGS carries the learner in the token context; some platforms still want userId.
    include_user_id: bool = False
    score_label: str = "Game Score"
    attempts_label: str = "Game Attempts"

    # ── Exercise ─────────────────────────────────────────────────────
    exercise_url: str = "/game/index.html"

    # ── LTI ──────────────────────────────────────────────────────────
    # Values starting with "-----BEGIN" are treated as PEM strings;
    # otherwise they are read as file paths.  Same for platform config:
    # if it starts with "{", it's parsed as JSON directly.
    lti_platform_config: str = "configs/lti/platform.json"
    lti_private_key: str = "configs/lti/private.key"
    lti_public_key: str = "configs/lti/public.key"

    # ── CORS / CSP ───────────────────────────────────────────────────
    cors_origins: list[str] = ["*"]
    csp_frame_ancestors: str = "*"

    # ── Security / Debug ─────────────────────────────────────────────
    debug: bool = False
    log_level: str = "INFO"

    # ── Startup validation ───────────────────────────────────────────

    @model_validator(mode="after")
    def _validate_config(self) -> Settings:
        """
        Fail fast if required settings are missing or misconfigured.

        All errors are collected before raising so a single startup failure
        reveals every bad variable at once rather than one at a time.
        """
        errors: list[str] = []

        if self.score_maximum <= 0:
            errors.append("PASSBACK_SCORE_MAXIMUM must be positive")

        if self.attempts_maximum <= 0:
            errors.append("PASSBACK_ATTEMPTS_MAXIMUM must be positive")

        if self.session_ttl_seconds <= 0:
            errors.append("PASSBACK_SESSION_TTL_SECONDS must be positive")

        # ── Any deployed environment (dev or prod, not local) ─────────
        if self.env != "local":
            if not self.redis_url:
                errors.append(
                    "PASSBACK_REDIS_URL is required in deployed environments "
                    "(LTI launches and grade passback will not function)"
                )

        # ── Production only ───────────────────────────────────────────
        if self.env == "prod":
            if self.debug:
                errors.append("PASSBACK_DEBUG must be false in prod (exposes admin endpoints)")

            if self.cors_origins == ["*"]:
                errors.append("PASSBACK_CORS_ORIGINS must not be ['*'] in prod")

            if not self.lti_private_key.startswith("-----BEGIN"):
                errors.append(
                    "PASSBACK_LTI_PRIVATE_KEY must be a PEM string in prod "
                    "(local file paths don't exist in containers)"
                )

            if not self.lti_public_key.startswith("-----BEGIN"):
                errors.append("PASSBACK_LTI_PUBLIC_KEY must be a PEM string in prod")

        if errors:
            raise ValueError(
                f"[passback env={self.env!r}] Configuration errors, fix before deploying:\n  - "
                + "\n  - ".join(errors)
            )

        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the cached application settings singleton."""
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (for testing)."""
    get_settings.cache_clear()
