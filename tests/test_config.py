"""
Configuration Tests

Test Categories:
1. Defaults and environment variables
2. YAML overrides
3. Rejected values
"""

import logging

import pytest

from transcript_learning.config import ENV_VARS, Settings, load_settings
from transcript_learning.errors import ValidationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in list(ENV_VARS) + ["LEARNING_CONFIG_FILE"]:
        monkeypatch.delenv(name, raising=False)


# =============================================================================
# 1. Defaults and Environment
# =============================================================================

class TestEnvironment:

    def test_defaults(self):
        settings = load_settings()
        assert settings == Settings()
        assert settings.utc_offset_hours == 9
        assert settings.store_timeout_seconds == 5.0

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("LEARNING_DB_PATH", "/tmp/elsewhere.db")
        monkeypatch.setenv("LEARNING_RETRY_ATTEMPTS", "5")
        monkeypatch.setenv("LEARNING_STORE_TIMEOUT", "1.5")
        settings = load_settings()
        assert settings.db_path == "/tmp/elsewhere.db"
        assert settings.retry_attempts == 5
        assert settings.store_timeout_seconds == 1.5

    def test_memory_url(self):
        assert Settings(db_path=":memory:").db_url == "sqlite://"
        assert Settings(db_path="data/x.db").db_url == "sqlite:///data/x.db"


# =============================================================================
# 2. YAML Overrides
# =============================================================================

class TestYamlFile:

    def test_yaml_wins_over_environment(self, monkeypatch, temp_dir):
        monkeypatch.setenv("LEARNING_SEARCH_LIMIT", "50")
        config = temp_dir / "learning.yaml"
        config.write_text("default_search_limit: 10\nlog_level: DEBUG\n")
        settings = load_settings(config)
        assert settings.default_search_limit == 10
        assert settings.log_level == "DEBUG"

    def test_config_file_from_environment(self, monkeypatch, temp_dir):
        config = temp_dir / "learning.yaml"
        config.write_text("stats_cache_ttl_seconds: 60\n")
        monkeypatch.setenv("LEARNING_CONFIG_FILE", str(config))
        assert load_settings().stats_cache_ttl_seconds == 60

    def test_unknown_keys_are_ignored(self, temp_dir, caplog):
        config = temp_dir / "learning.yaml"
        config.write_text("colour: blue\n")
        with caplog.at_level(logging.WARNING, logger="learning_config"):
            settings = load_settings(config)
        assert settings == Settings()
        assert "colour" in caplog.text

    def test_missing_file(self, temp_dir):
        with pytest.raises(FileNotFoundError):
            load_settings(temp_dir / "absent.yaml")


# =============================================================================
# 3. Rejected Values
# =============================================================================

class TestRejectedValues:

    def test_non_numeric_environment(self, monkeypatch):
        monkeypatch.setenv("LEARNING_RETRY_ATTEMPTS", "many")
        with pytest.raises(ValidationError) as exc:
            load_settings()
        assert exc.value.field == "retry_attempts"

    def test_non_positive_timeout(self, temp_dir):
        config = temp_dir / "learning.yaml"
        config.write_text("store_timeout_seconds: 0\n")
        with pytest.raises(ValidationError):
            load_settings(config)

    def test_zero_retries(self, monkeypatch):
        monkeypatch.setenv("LEARNING_RETRY_ATTEMPTS", "0")
        with pytest.raises(ValidationError):
            load_settings()

    def test_non_mapping_yaml(self, temp_dir):
        config = temp_dir / "learning.yaml"
        config.write_text("- a\n- b\n")
        with pytest.raises(ValidationError):
            load_settings(config)
