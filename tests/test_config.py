# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Tests for layered configuration.
"""

from pathlib import Path

import pytest

from rtcstats.shared.config import ENV_OVERRIDES, Config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Make sure no override from the developer's shell leaks in."""
    for name in ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)


class TestConfigDefaults:
    """Test built-in defaults."""

    def test_defaults_without_file(self, tmp_path):
        config = Config(config_dir=str(tmp_path))
        assert config.get("server.port") == 3000
        assert config.get("paths.work_dir") == "temp"
        assert config.get("extraction.capacity") is None
        assert config.get("metrics.enabled") is False
        assert config.get("server.metrics_port") is None
        assert config.get("server.ssl.certificate") is None
        assert config.get("server.ssl.key") is None

    def test_missing_key_returns_default(self, tmp_path):
        config = Config(config_dir=str(tmp_path))
        assert config.get("server.nope", "fallback") == "fallback"
        assert config.get("server.port.deeper", 1) == 1


class TestConfigFile:
    """Test config.yaml loading."""

    def test_file_overrides_defaults(self, tmp_path):
        (tmp_path / "config.yaml").write_text(
            "server:\n"
            "  port: 8080\n"
            "extraction:\n"
            "  capacity: 2\n"
            "  worker_command: python -m my.worker\n"
        )
        config = Config(config_dir=str(tmp_path))
        assert config.get("server.port") == 8080
        # Untouched keys in the same section keep their defaults
        assert config.get("server.host") == "0.0.0.0"
        assert config.get("extraction.capacity") == 2
        assert config.get("extraction.worker_command") == "python -m my.worker"

    def test_invalid_section_ignored(self, tmp_path):
        (tmp_path / "config.yaml").write_text("server: 9000\nlogging:\n  level: DEBUG\n")
        config = Config(config_dir=str(tmp_path))
        assert config.get("server.port") == 3000
        assert config.get("logging.level") == "DEBUG"

    def test_unparseable_file_ignored(self, tmp_path):
        (tmp_path / "config.yaml").write_text("server: [unclosed\n")
        config = Config(config_dir=str(tmp_path))
        assert config.get("server.port") == 3000

    def test_non_mapping_file_ignored(self, tmp_path):
        (tmp_path / "config.yaml").write_text("- a\n- b\n")
        config = Config(config_dir=str(tmp_path))
        assert config.get("server.port") == 3000


class TestConfigEnvironment:
    """Test environment variable overrides."""

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        (tmp_path / "config.yaml").write_text("server:\n  port: 8080\n")
        monkeypatch.setenv("RTCSTATS_PORT", "9090")
        monkeypatch.setenv("RTCSTATS_WORK_DIR", "/var/tmp/rtcstats")
        config = Config(config_dir=str(tmp_path))
        assert config.get("server.port") == 9090
        assert config.get_path("paths.work_dir") == Path("/var/tmp/rtcstats")

    def test_invalid_env_value_ignored(self, tmp_path, monkeypatch):
        monkeypatch.setenv("RTCSTATS_PORT", "not-a-port")
        config = Config(config_dir=str(tmp_path))
        assert config.get("server.port") == 3000


class TestConfigAccessors:
    """Test set/get_path/redis helpers."""

    def test_set_creates_sections(self, tmp_path):
        config = Config(config_dir=str(tmp_path))
        config.set("new.section.key", 5)
        assert config.get("new.section.key") == 5

    def test_get_path_expands_home(self, tmp_path):
        config = Config(config_dir=str(tmp_path))
        path = config.get_path("paths.store_dir")
        assert path == Path.home() / ".rtcstats" / "store"
        assert config.get_path("paths.unknown") is None

    def test_redis_settings(self, tmp_path, monkeypatch):
        monkeypatch.setenv("RTCSTATS_REDIS_HOST", "redis.internal")
        (tmp_path / "config.yaml").write_text("redis:\n  port: '6380'\n")
        redis_config = Config(config_dir=str(tmp_path)).redis
        assert redis_config.host == "redis.internal"
        assert redis_config.port == 6380
        assert redis_config.db == 0
