"""Service configuration loading and validation.

Reads the environment and returns a validated, immutable ``Settings``
dataclass.  Every collaborator of the callback flow is built from one
``Settings`` instance, so nothing downstream calls ``os.environ`` directly.

Required variables:
  APP_URL                    — Public base URL of the application.
  INSTAGRAM_APP_ID           — Instagram app (client) id.
  INSTAGRAM_APP_SECRET       — Instagram app secret.
  WEBHOOK_VERIFY_TOKEN       — Token handed to the webhook subscription endpoint.
  SUPABASE_URL               — Identity provider base URL.
  SUPABASE_SERVICE_ROLE_KEY  — Identity provider service credential.

Optional variables:
  INSTAGRAM_SCOPES           — Comma-separated scopes requested at /start.
  OAUTH_STATE_SECRET         — HMAC key for CSRF state (default: app secret).
  OAUTH_STATE_TTL_SECONDS    — State lifetime (default 600).
  HTTP_TIMEOUT_SECONDS       — Outbound HTTP timeout (default 10).
  LOG_LEVEL / LOG_FORMAT     — Logging level and ``text``/``json`` format.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

DEFAULT_SCOPES = (
    "instagram_business_basic,"
    "instagram_business_manage_messages,"
    "instagram_business_manage_comments"
)
DEFAULT_STATE_TTL_SECONDS = 600
DEFAULT_HTTP_TIMEOUT_SECONDS = 10.0

CALLBACK_PATH = "/api/auth/instagram/callback"

_REQUIRED = (
    "APP_URL",
    "INSTAGRAM_APP_ID",
    "INSTAGRAM_APP_SECRET",
    "WEBHOOK_VERIFY_TOKEN",
    "SUPABASE_URL",
    "SUPABASE_SERVICE_ROLE_KEY",
)
_LOG_FORMATS = {"text", "json"}


class ConfigError(Exception):
    """Raised when service configuration is missing, malformed, or invalid."""


@dataclass(frozen=True)
class Settings:
    """Parsed and validated service configuration."""

    app_url: str
    instagram_app_id: str
    instagram_app_secret: str
    webhook_verify_token: str
    supabase_url: str
    supabase_service_role_key: str
    instagram_scopes: str = DEFAULT_SCOPES
    state_secret: str = ""
    state_ttl_seconds: int = DEFAULT_STATE_TTL_SECONDS
    http_timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS
    log_level: str = "INFO"
    log_format: str = "text"

    @property
    def redirect_uri(self) -> str:
        """Callback URI registered with Instagram; must match byte-for-byte."""
        return f"{self.app_url}{CALLBACK_PATH}"

    @property
    def webhook_subscribe_url(self) -> str:
        return f"{self.app_url}/functions/v1/instagram-webhook/subscribe"

    @property
    def effective_state_secret(self) -> str:
        return self.state_secret or self.instagram_app_secret

    def __repr__(self) -> str:
        # Secrets are never rendered.
        return (
            f"Settings(app_url={self.app_url!r}, "
            f"instagram_app_id={self.instagram_app_id!r}, "
            f"supabase_url={self.supabase_url!r})"
        )


def _parse_positive_int(name: str, raw: str) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


def _parse_positive_float(name: str, raw: str) -> float:
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build ``Settings`` from the environment.

    Parameters
    ----------
    environ:
        Mapping to read from.  Defaults to ``os.environ``.

    Returns
    -------
    Settings
        The validated configuration.

    Raises
    ------
    ConfigError
        If any required variable is missing or an optional one is malformed.
    """
    env = os.environ if environ is None else environ

    values = {name: env.get(name, "").strip() for name in _REQUIRED}
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise ConfigError(f"Missing required environment variable(s): {', '.join(missing)}")

    log_format = env.get("LOG_FORMAT", "text").strip().lower() or "text"
    if log_format not in _LOG_FORMATS:
        raise ConfigError(f"LOG_FORMAT must be one of {sorted(_LOG_FORMATS)}, got {log_format!r}")

    ttl_raw = env.get("OAUTH_STATE_TTL_SECONDS", "").strip()
    timeout_raw = env.get("HTTP_TIMEOUT_SECONDS", "").strip()

    return Settings(
        app_url=values["APP_URL"].rstrip("/"),
        instagram_app_id=values["INSTAGRAM_APP_ID"],
        instagram_app_secret=values["INSTAGRAM_APP_SECRET"],
        webhook_verify_token=values["WEBHOOK_VERIFY_TOKEN"],
        supabase_url=values["SUPABASE_URL"].rstrip("/"),
        supabase_service_role_key=values["SUPABASE_SERVICE_ROLE_KEY"],
        instagram_scopes=env.get("INSTAGRAM_SCOPES", "").strip() or DEFAULT_SCOPES,
        state_secret=env.get("OAUTH_STATE_SECRET", "").strip(),
        state_ttl_seconds=(
            _parse_positive_int("OAUTH_STATE_TTL_SECONDS", ttl_raw)
            if ttl_raw
            else DEFAULT_STATE_TTL_SECONDS
        ),
        http_timeout_seconds=(
            _parse_positive_float("HTTP_TIMEOUT_SECONDS", timeout_raw)
            if timeout_raw
            else DEFAULT_HTTP_TIMEOUT_SECONDS
        ),
        log_level=env.get("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        log_format=log_format,
    )
