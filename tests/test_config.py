"""Tests for mindmap_sync.config: env-var config loading and validation.

NOT to be confused with test_config_loader.py (hierarchical YAML config)
or test_config_schema.py (Pydantic models). This tests the standalone
server bootstrap path: validate_config() and load_config().
"""

import logging

import pytest

from mindmap_sync.config import Config, load_config, validate_config

ENV_VARS = (
    "MINDMAP_SYNC_URL",
    "MINDMAP_SYNC_API_KEY",
    "MINDMAP_SYNC_BACKEND",
    "MINDMAP_SYNC_INSECURE",
    "MINDMAP_SYNC_DEBUG",
    "MINDMAP_SYNC_MAX_PARALLEL_REQUESTS",
    "MINDMAP_SYNC_POLL_INTERVAL",
    "MINDMAP_SYNC_STATE_DIR",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def rest_env(monkeypatch):
    monkeypatch.setenv("MINDMAP_SYNC_URL", "https://project.example.com")
    monkeypatch.setenv("MINDMAP_SYNC_API_KEY", "secret")


# -------------------------------------------------------------------------
# validate_config()
# -------------------------------------------------------------------------


class TestValidateConfig:
    """Tests for validate_config(): backend kind, URL format and key checks."""

    def test_valid_config(self):
        config = Config(backend_url="https://project.example.com", api_key="k")
        validate_config(config)  # should not raise

    def test_memory_backend_needs_nothing(self):
        validate_config(Config(backend_kind="memory"))

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Invalid backend 'sqlite'"):
            validate_config(Config(backend_kind="sqlite"))

    def test_non_positive_poll_interval(self):
        with pytest.raises(ValueError, match="must be positive"):
            validate_config(Config(backend_kind="memory", poll_interval=0))

    def test_invalid_url_no_scheme(self):
        config = Config(backend_url="example.com", api_key="k")
        with pytest.raises(
            ValueError, match="must start with http:// or https://"
        ):
            validate_config(config)

    def test_empty_host(self):
        config = Config(backend_url="https://", api_key="k")
        with pytest.raises(ValueError, match="must include a hostname"):
            validate_config(config)

    def test_empty_api_key(self):
        config = Config(backend_url="https://project.example.com", api_key="  ")
        with pytest.raises(ValueError, match="API key cannot be empty"):
            validate_config(config)

    def test_url_normalised(self):
        config = Config(
            backend_url="  https://project.example.com/  ", api_key="k"
        )
        validate_config(config)
        assert config.backend_url == "https://project.example.com"

    def test_insecure_logs_warning(self, caplog):
        config = Config(
            backend_url="https://project.example.com",
            api_key="k",
            insecure=True,
        )
        with caplog.at_level(logging.WARNING, logger="mindmap_sync.config"):
            validate_config(config)
        assert "SSL verification disabled" in caplog.text


# -------------------------------------------------------------------------
# load_config()
# -------------------------------------------------------------------------


class TestLoadConfig:
    """Tests for load_config(): precedence, required values, number parsing."""

    def test_load_from_env_vars(self, rest_env):
        config = load_config()

        assert config.backend_url == "https://project.example.com"
        assert config.api_key == "secret"
        assert config.backend_kind == "rest"
        assert config.max_parallel_requests == 5
        assert config.poll_interval == 2.0
        assert config.state_dir is None

    def test_cli_args_override_env(self, rest_env):
        config = load_config(url="https://cli.example.com", api_key="cli-key")

        assert config.backend_url == "https://cli.example.com"
        assert config.api_key == "cli-key"

    def test_yaml_fallbacks_used_last(self, monkeypatch):
        monkeypatch.setenv("MINDMAP_SYNC_API_KEY", "env-key")
        config = load_config(
            yaml_fallbacks={
                "url": "https://yaml.example.com",
                "api_key": "yaml-key",
                "poll_interval": 5,
                "state_dir": "/var/lib/mindmap-sync",
            }
        )

        assert config.backend_url == "https://yaml.example.com"
        assert config.api_key == "env-key"
        assert config.poll_interval == 5.0
        assert config.state_dir == "/var/lib/mindmap-sync"

    def test_missing_url_raises(self):
        with pytest.raises(ValueError, match="Backend URL not found"):
            load_config()

    def test_missing_api_key_raises(self, monkeypatch):
        monkeypatch.setenv("MINDMAP_SYNC_URL", "https://project.example.com")
        with pytest.raises(ValueError, match="Backend API key not found"):
            load_config()

    def test_memory_backend_from_env(self, monkeypatch):
        monkeypatch.setenv("MINDMAP_SYNC_BACKEND", "memory")
        config = load_config()
        assert config.backend_kind == "memory"
        assert config.backend_url == ""

    @pytest.mark.parametrize("value", ["true", "1", "yes", "on", "TRUE"])
    def test_insecure_truthy_values(self, rest_env, monkeypatch, value):
        monkeypatch.setenv("MINDMAP_SYNC_INSECURE", value)
        assert load_config().insecure is True

    def test_insecure_env_beats_yaml(self, rest_env, monkeypatch):
        monkeypatch.setenv("MINDMAP_SYNC_INSECURE", "false")
        config = load_config(yaml_fallbacks={"insecure": True})
        assert config.insecure is False

    def test_debug_cli_flag(self, rest_env):
        assert load_config(debug=True).debug is True

    def test_max_parallel_from_env(self, rest_env, monkeypatch):
        monkeypatch.setenv("MINDMAP_SYNC_MAX_PARALLEL_REQUESTS", "12")
        assert load_config().max_parallel_requests == 12

    @pytest.mark.parametrize("value", ["0", "101", "many"])
    def test_max_parallel_invalid(self, rest_env, monkeypatch, value):
        monkeypatch.setenv("MINDMAP_SYNC_MAX_PARALLEL_REQUESTS", value)
        with pytest.raises(ValueError, match="must be a number between 1 and 100"):
            load_config()

    def test_poll_interval_from_env(self, rest_env, monkeypatch):
        monkeypatch.setenv("MINDMAP_SYNC_POLL_INTERVAL", "0.5")
        assert load_config().poll_interval == 0.5
