"""Tests for configuration management."""

import pytest

from offline_layer.config import AppConfig, ConfigError, load_config


class TestLoadConfig:
    def test_load_valid_config(self, test_config_dir):
        config = load_config(str(test_config_dir))
        assert config.connectivity.probe_url == "http://probe.test/generate_204"
        assert config.connectivity.probe_timeout_seconds == 2
        assert config.cache.max_age_seconds == 3600
        assert config.queue.key == "test-queue"
        assert config.sync.max_retries == 5
        assert config.storage.backend == "sqlite"
        assert config.logging.level == "DEBUG"

    def test_unspecified_sections_use_defaults(self, test_config_dir):
        config = load_config(str(test_config_dir))
        assert config.queue.namespace == "sync-queue"
        assert config.maintenance.interval_seconds == 24 * 60 * 60

    def test_missing_config_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(str(tmp_path / "nonexistent"))

    def test_non_mapping_document(self, tmp_path):
        (tmp_path / "settings.yaml").write_text("- just\n- a list\n")
        with pytest.raises(ConfigError):
            load_config(str(tmp_path))

    def test_unknown_keys_ignored(self, tmp_path):
        (tmp_path / "settings.yaml").write_text("cache:\n  max_age_seconds: 10\n  color: blue\n")
        config = load_config(str(tmp_path))
        assert config.cache.max_age_seconds == 10

    def test_invalid_values_rejected(self, tmp_path):
        (tmp_path / "settings.yaml").write_text("sync:\n  max_retries: 0\n")
        with pytest.raises(ConfigError):
            load_config(str(tmp_path))

    def test_unknown_backend_rejected(self, tmp_path):
        (tmp_path / "settings.yaml").write_text("storage:\n  backend: redis\n")
        with pytest.raises(ConfigError):
            load_config(str(tmp_path))

    def test_defaults(self):
        config = AppConfig()
        assert config.connectivity.probe_timeout_seconds == 5.0
        assert config.connectivity.probe_interval_seconds == 30.0
        assert config.cache.max_age_seconds == 24 * 60 * 60
        assert config.sync.max_retries == 3
        assert config.sync.retry_delay_seconds == 2.0

    def test_frozen(self):
        config = AppConfig()
        with pytest.raises(AttributeError):
            config.sync = None
