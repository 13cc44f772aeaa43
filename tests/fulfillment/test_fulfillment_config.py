"""Tests for fulfillment configuration loading and validation."""

import pytest
import yaml

from src.fulfillment.config import (
    DEFAULT_API_BASE,
    FulfillmentConfig,
    RetryConfig,
    load_config,
    resolve_env_vars,
    strip_inline_comment,
)


class TestFulfillmentConfig:
    """Tests for model defaults and validators."""

    def test_defaults(self):
        cfg = FulfillmentConfig()
        assert cfg.api_base == DEFAULT_API_BASE
        assert cfg.api_token is None
        assert not cfg.is_configured
        assert cfg.retry.max_retries == 3
        assert cfg.rate_limit.max_requests == 120
        assert cfg.rate_limit.window_seconds == 60
        assert cfg.cache.ttl_seconds == 3600
        assert cfg.poller.max_attempts == 12

    def test_blank_token_is_not_configured(self):
        assert not FulfillmentConfig(api_token="   ").is_configured
        assert FulfillmentConfig(api_token="tok").is_configured

    def test_store_id_inline_comment_stripped(self):
        assert FulfillmentConfig(store_id="17644007  # main store").store_id == "17644007"

    def test_trailing_slash_removed(self):
        assert FulfillmentConfig(api_base="https://api.printful.com/").api_base == "https://api.printful.com"

    def test_invalid_retry_rejected(self):
        with pytest.raises(ValueError):
            RetryConfig(max_retries=-1)


class TestHelpers:
    """Tests for env resolution helpers."""

    def test_strip_inline_comment(self):
        assert strip_inline_comment("abc # note") == "abc"
        assert strip_inline_comment("abc#not-a-comment") == "abc#not-a-comment"
        assert strip_inline_comment(None) is None

    def test_resolve_env_vars(self, monkeypatch):
        monkeypatch.setenv("PF_TOKEN", "secret-value")
        assert resolve_env_vars("${PF_TOKEN}") == "secret-value"
        assert resolve_env_vars("${MISSING_VAR_XYZ}") == ""


class TestLoadConfig:
    """Tests for YAML + environment loading."""

    def test_no_file_no_env(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path))
        cfg = load_config()
        assert not cfg.is_configured

    def test_explicit_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "nope.yaml"))

    def test_yaml_with_env_reference(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MY_PF_TOKEN", "tok-123")
        path = tmp_path / "printsync.yaml"
        path.write_text(yaml.safe_dump({
            "api_token": "${MY_PF_TOKEN}",
            "store_id": "42",
            "retry": {"max_retries": 5},
            "poller": {"max_attempts": 4},
        }))

        cfg = load_config(str(path))

        assert cfg.api_token == "tok-123"
        assert cfg.store_id == "42"
        assert cfg.retry.max_retries == 5
        assert cfg.poller.max_attempts == 4

    def test_env_overrides_yaml(self, tmp_path, monkeypatch):
        path = tmp_path / "printsync.yaml"
        path.write_text(yaml.safe_dump({"api_token": "from-yaml", "store_id": "1"}))
        monkeypatch.setenv("PRINTFUL_API_TOKEN", "from-env")
        monkeypatch.setenv("PRINTFUL_STORE_ID", "17644007 # comment")
        monkeypatch.setenv("DATABASE_URL", "sqlite:///./other.db")

        cfg = load_config(str(path))

        assert cfg.api_token == "from-env"
        assert cfg.store_id == "17644007"
        assert cfg.database_url == "sqlite:///./other.db"

    def test_nested_env_overrides(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path))
        monkeypatch.setenv("PRINTSYNC_RETRY_MAX_RETRIES", "7")
        monkeypatch.setenv("PRINTSYNC_RATE_LIMIT_MAX_REQUESTS", "60")
        monkeypatch.setenv("PRINTSYNC_CACHE_TTL_SECONDS", "12.5")

        cfg = load_config()

        assert cfg.retry.max_retries == 7
        assert cfg.rate_limit.max_requests == 60
        assert cfg.cache.ttl_seconds == 12.5

    def test_discovers_file_in_cwd(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "printsync.yaml").write_text(yaml.safe_dump({"api_token": "cwd-token"}))
        assert load_config().api_token == "cwd-token"
