"""YAML configuration loader with env var resolution and Pydantic validation.

Loads config from (priority order):
1. --config <path> CLI flag
2. ./printsync.yaml (working directory)
3. ~/.printsync/config.yaml (user home)

Environment variables override YAML:
- PRINTFUL_API_TOKEN, PRINTFUL_STORE_ID, PRINTFUL_API_BASE and
  DATABASE_URL set the top-level fields.
- PRINTSYNC_<SECTION>_<KEY> sets a nested field, e.g.
  PRINTSYNC_RETRY_MAX_RETRIES=5.
${VAR} references in YAML values resolve from environment at load time.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")
_INLINE_COMMENT = re.compile(r"\s+#")

DEFAULT_API_BASE = "https://api.printful.com"

# Flat env vars mapped onto top-level FulfillmentConfig fields.
_TOP_LEVEL_ENV = {
    "PRINTFUL_API_TOKEN": "api_token",
    "PRINTFUL_STORE_ID": "store_id",
    "PRINTFUL_API_BASE": "api_base",
    "DATABASE_URL": "database_url",
}


def strip_inline_comment(value: str | None) -> str | None:
    """Drop a trailing shell-style comment from an env value.

    dotenv files do not strip inline comments, so ``17644007  # my store``
    would otherwise end up in an HTTP header.

    Args:
        value: Raw environment value.

    Returns:
        The value with everything from the first whitespace+# removed.
    """
    if not value:
        return value
    match = _INLINE_COMMENT.search(value)
    return value[: match.start()].strip() if match else value.strip()


def resolve_env_vars(value: str) -> str:
    """Resolve ${VAR} references in a string from environment variables.

    Args:
        value: String potentially containing ${VAR} references.

    Returns:
        String with all ${VAR} references replaced by their env values.
        Missing env vars resolve to empty string.
    """
    def _replace(match: re.Match) -> str:
        return os.environ.get(match.group(1), "")

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _resolve_env_vars_recursive(data: Any) -> Any:
    """Recursively resolve ${VAR} references in a nested data structure."""
    if isinstance(data, str):
        return resolve_env_vars(data)
    elif isinstance(data, dict):
        return {k: _resolve_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_resolve_env_vars_recursive(item) for item in data]
    return data


class RetryConfig(BaseModel):
    """Bounded exponential backoff for a single provider call.

    Delays are in seconds.
    """

    max_retries: int = Field(default=3, ge=0)
    initial_delay: float = Field(default=0.5, ge=0)
    max_delay: float = Field(default=5.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)
    retryable_statuses: frozenset[int] = frozenset({408, 429, 500, 502, 503, 504})

    def backoff_delay(self, attempt: int) -> float:
        """Delay before the attempt following ``attempt`` (0-based)."""
        return min(self.initial_delay * self.backoff_multiplier ** attempt, self.max_delay)


class RateLimitSettings(BaseModel):
    """Fixed-window quota for outbound provider calls."""

    max_requests: int = Field(default=120, ge=1)
    window_seconds: float = Field(default=60.0, gt=0)
    # Slack added to the computed wait so the provider's window has really rolled.
    reset_buffer_seconds: float = Field(default=0.1, ge=0)


class CacheSettings(BaseModel):
    """TTL for the catalog lookup cache."""

    ttl_seconds: float = Field(default=3600.0, gt=0)


class PollerSettings(BaseModel):
    """Backoff schedule for mockup task polling.

    Bounded by attempt count only; with the defaults the worst case is
    roughly 100 seconds of waiting per task.
    """

    initial_delay: float = Field(default=2.0, ge=0)
    backoff_multiplier: float = Field(default=1.5, ge=1)
    max_delay: float = Field(default=10.0, ge=0)
    max_attempts: int = Field(default=12, ge=1)


class FulfillmentConfig(BaseModel):
    """Top-level configuration for the fulfillment sync core."""

    api_token: str | None = None
    store_id: str | None = None
    api_base: str = DEFAULT_API_BASE
    database_url: str | None = None
    api_timeout: float = 30.0

    retry: RetryConfig = RetryConfig()
    rate_limit: RateLimitSettings = RateLimitSettings()
    cache: CacheSettings = CacheSettings()
    poller: PollerSettings = PollerSettings()

    @field_validator("api_token", "store_id", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = strip_inline_comment(value)
            return value or None
        return value

    @field_validator("api_base")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def is_configured(self) -> bool:
        """True when a non-blank API token is present."""
        return bool(self.api_token and self.api_token.strip())


def _find_config_file() -> Path | None:
    """Search for config file in standard locations.

    Returns:
        Path to config file if found, None otherwise.
    """
    candidates = [
        Path.cwd() / "printsync.yaml",
        Path.cwd() / "printsync.yml",
        Path.home() / ".printsync" / "config.yaml",
        Path.home() / ".printsync" / "config.yml",
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def _coerce(value: str) -> Any:
    """Coerce an env string to int, float, bool, or leave it as a string."""
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    if value.lower() in ("true", "false"):
        return value.lower() == "true"
    return value


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply provider env vars and PRINTSYNC_<SECTION>_<KEY> overrides.

    Section names are matched longest-first so ``rate_limit`` wins over
    a hypothetical ``rate`` section.

    Args:
        data: Parsed YAML config dict.

    Returns:
        Config dict with env var overrides applied.
    """
    for env_name, field_name in _TOP_LEVEL_ENV.items():
        raw = strip_inline_comment(os.environ.get(env_name))
        if raw:
            data[field_name] = raw

    prefix = "PRINTSYNC_"
    nested_sections = sorted(
        (
            name
            for name, info in FulfillmentConfig.model_fields.items()
            if isinstance(info.default, BaseModel)
        ),
        key=len,
        reverse=True,
    )
    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue
        suffix = key[len(prefix):].lower()
        for section in nested_sections:
            section_prefix = section + "_"
            if suffix.startswith(section_prefix) and len(suffix) > len(section_prefix):
                section_data = data.setdefault(section, {})
                if isinstance(section_data, dict):
                    field = suffix[len(section_prefix):]
                    section_data[field] = _coerce(strip_inline_comment(value) or "")
                break
    return data


def load_config(config_path: str | None = None) -> FulfillmentConfig:
    """Load fulfillment configuration from YAML and the environment.

    Unlike a missing token (which leaves the integration "not configured"),
    an explicit ``config_path`` that does not exist is an error.

    Args:
        config_path: Explicit path to config file. If None, searches
            standard locations (cwd, then ~/.printsync/).

    Returns:
        Validated FulfillmentConfig. Always returns a config; a missing
        token shows up as ``is_configured == False``.

    Raises:
        FileNotFoundError: If ``config_path`` is given but missing.
    """
    data: dict[str, Any] = {}
    path: Path | None
    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        path = _find_config_file()

    if path is not None:
        logger.info("Loading config from %s", path)
        with open(path) as f:
            raw_data = yaml.safe_load(f) or {}
        data = _resolve_env_vars_recursive(raw_data)

    data = _apply_env_overrides(data)
    config = FulfillmentConfig(**data)

    if config.is_configured:
        logger.info(
            "Fulfillment provider configured base=%s store=%s",
            config.api_base,
            config.store_id or "(token default store)",
        )
    else:
        logger.warning("Fulfillment provider not configured; integration disabled")
    return config
