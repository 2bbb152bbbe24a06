"""Tests for Configuration Manager."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from capturedesk.core.config import Config, get_config, load_config, reset_config
from capturedesk.core.exceptions import ConfigurationError


class TestConfigDefaults:
    """Test Config default values."""

    def test_config_has_correct_defaults(self):
        """Config should have sensible defaults for optional fields."""
        config = Config()

        assert config.state_file == Path("data/captures.json")
        assert config.github_branch == "main"
        assert config.content_dir == "src/content"
        assert config.image_dir == "public/images/captures"
        assert config.content_root == Path("src/content")
        assert config.log_level == "INFO"
        assert config.port == 8766
        assert config.capture_api_key is None
        assert config.admin_password is None

    def test_config_accepts_string_paths(self):
        """Config should convert string paths to Path objects."""
        config = Config(
            state_file="/custom/captures.json",  # type: ignore[arg-type]
            content_root="/custom/content",  # type: ignore[arg-type]
        )

        assert isinstance(config.state_file, Path)
        assert isinstance(config.content_root, Path)
        assert config.content_root == Path("/custom/content")

    def test_config_strips_repository_dirs_and_site_url(self):
        config = Config(
            content_dir="/src/content/",
            image_dir="public/images/",
            site_url="https://example.com/",
        )
        assert config.content_dir == "src/content"
        assert config.image_dir == "public/images"
        assert config.site_url == "https://example.com"


class TestConfigValidation:
    """Test Config validation."""

    def test_config_validates_log_level(self):
        """Config should reject invalid log levels."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(log_level="INVALID")

        assert "Invalid LOG_LEVEL" in str(exc_info.value)

    def test_config_normalizes_log_level_case(self):
        config = Config(log_level="debug")
        assert config.log_level == "DEBUG"

    def test_config_rejects_bad_port(self):
        with pytest.raises(ConfigurationError):
            Config(port=0)

    def test_config_rejects_empty_branch(self):
        with pytest.raises(ConfigurationError):
            Config(github_branch="")


class TestRequireHelpers:
    """Credentials are optional at load time and checked on use."""

    def test_require_github_raises_when_missing(self):
        with pytest.raises(ConfigurationError) as exc_info:
            Config(github_token="t").require_github()
        assert "GITHUB_REPO" in str(exc_info.value)

    def test_require_github_passes_when_set(self):
        Config(github_token="t", github_repo="o/r").require_github()

    def test_require_resend_needs_key_and_audience(self):
        with pytest.raises(ConfigurationError):
            Config(resend_api_key="k").require_resend()
        Config(resend_api_key="k", resend_audience_id="a").require_resend()

    def test_require_admin_and_ingest_key(self):
        config = Config()
        with pytest.raises(ConfigurationError):
            config.require_admin()
        with pytest.raises(ConfigurationError):
            config.require_ingest_key()

    def test_configured_properties(self):
        config = Config(anthropic_api_key="k", upstash_url="https://u", upstash_token="t")
        assert config.ai_configured is True
        assert config.upstash_configured is True
        assert config.github_configured is False


class TestLoadConfig:
    """Test loading configuration from the environment."""

    def test_load_config_reads_environment(self):
        env = {
            "CAPTURE_API_KEY": "key",
            "ADMIN_PASSWORD": "pw",
            "GITHUB_TOKEN": "gh",
            "GITHUB_REPO": "o/r",
            "GITHUB_BRANCH": "content",
            "CAPTURE_PORT": "9000",
            "LOG_LEVEL": "warning",
            "SITE_URL": "https://example.com/",
        }
        with patch.dict(os.environ, env, clear=True):
            config = load_config()

        assert config.capture_api_key == "key"
        assert config.admin_password == "pw"
        assert config.github_branch == "content"
        assert config.port == 9000
        assert config.log_level == "WARNING"
        assert config.site_url == "https://example.com"

    def test_load_config_treats_empty_values_as_unset(self):
        with patch.dict(os.environ, {"ANTHROPIC_API_KEY": ""}, clear=True):
            config = load_config()
        assert config.anthropic_api_key is None
        assert config.ai_configured is False

    def test_load_config_rejects_non_integer_port(self):
        with patch.dict(os.environ, {"CAPTURE_PORT": "abc"}, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                load_config()
        assert "CAPTURE_PORT" in str(exc_info.value)


class TestGetConfig:
    """Test the cached global instance."""

    def test_get_config_caches_instance(self):
        with patch.dict(os.environ, {}, clear=True):
            first = get_config()
            second = get_config()
        assert first is second

    def test_reset_config_forces_reload(self):
        with patch.dict(os.environ, {}, clear=True):
            first = get_config()
            reset_config()
            second = get_config()
        assert first is not second
