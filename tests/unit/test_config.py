"""Unit tests for configuration loading."""

from pathlib import Path

import pytest

from siteforge.config.settings import (
    DATA_DIR_ENV,
    OrchestratorSettings,
    RetryConfig,
    load_settings,
)


@pytest.fixture(autouse=True)
def no_env_override(monkeypatch):
    monkeypatch.delenv(DATA_DIR_ENV, raising=False)


class TestLoadSettings:
    """Tests for load_settings."""

    def test_defaults_without_config_dir(self, tmp_path):
        """A missing config directory yields documented defaults."""
        settings = load_settings(tmp_path / "missing").unwrap()

        assert settings.ports.range_start == 3001
        assert settings.ports.range_end == 3999
        assert settings.runtime.image == "node:20-alpine"
        assert settings.runtime.targets == ["app-visitor"]
        assert settings.timeouts.stage == 120.0
        assert settings.retry.max_attempts == 3
        assert settings.paths.templates_dir is None

    def test_packaged_defaults_file(self):
        """config/defaults.yaml matches the built-in defaults."""
        config_dir = Path(__file__).resolve().parents[2] / "config"
        assert load_settings(config_dir).unwrap() == OrchestratorSettings()

    def test_local_overlay(self, tmp_path):
        (tmp_path / "defaults.yaml").write_text(
            "ports:\n  range_start: 5000\n  range_end: 5100\nruntime:\n  image: node:20-alpine\n"
        )
        (tmp_path / "local.yaml").write_text("ports:\n  range_end: 5010\n")

        settings = load_settings(tmp_path).unwrap()

        assert settings.ports.range_start == 5000
        assert settings.ports.range_end == 5010

    def test_env_overrides_data_dir(self, tmp_path, monkeypatch):
        monkeypatch.setenv(DATA_DIR_ENV, str(tmp_path / "elsewhere"))
        settings = load_settings(tmp_path).unwrap()
        assert settings.paths.data_dir == tmp_path / "elsewhere"

    def test_invalid_yaml(self, tmp_path):
        (tmp_path / "defaults.yaml").write_text("ports: [unclosed\n")
        error = load_settings(tmp_path).unwrap_err()
        assert error.field == "defaults.yaml"

    def test_non_mapping_yaml(self, tmp_path):
        (tmp_path / "defaults.yaml").write_text("- just\n- a list\n")
        assert load_settings(tmp_path).is_err()

    def test_bad_type(self, tmp_path):
        (tmp_path / "defaults.yaml").write_text("ports:\n  range_start: lots\n")
        error = load_settings(tmp_path).unwrap_err()
        assert "Failed to parse configuration" in error.message

    @pytest.mark.parametrize("yaml_text,field", [
        ("ports:\n  range_start: 0\n", "ports.range_start"),
        ("ports:\n  range_start: 4000\n  range_end: 3000\n", "ports.range_end"),
        ("runtime:\n  targets: []\n", "runtime.targets"),
        ("timeouts:\n  stage: 0\n", "timeouts.stage"),
        ("retries:\n  max_attempts: 0\n", "retry.max_attempts"),
        ("retries:\n  backoff_factor: 0.5\n", "retry.backoff_factor"),
        ("validation:\n  max_depth: 0\n", "validation.max_depth"),
        ("history_size: 0\n", "history_size"),
    ])
    def test_validation_errors(self, tmp_path, yaml_text, field):
        (tmp_path / "defaults.yaml").write_text(yaml_text)
        error = load_settings(tmp_path).unwrap_err()
        assert error.field == field


class TestOrchestratorSettings:
    """Tests for OrchestratorSettings."""

    def test_from_yaml_missing_file(self, tmp_path):
        error = OrchestratorSettings.from_yaml(tmp_path / "nope.yaml").unwrap_err()
        assert error.field == "path"

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("notifications:\n  webhook_url: https://hooks.example.com/x\n")
        settings = OrchestratorSettings.from_yaml(path).unwrap()
        assert settings.notifications.webhook_url == "https://hooks.example.com/x"
        assert settings.notifications.log_events

    def test_with_data_dir_copies(self):
        settings = OrchestratorSettings()
        moved = settings.with_data_dir(Path("/srv/siteforge"))
        assert moved.paths.data_dir == Path("/srv/siteforge")
        assert settings.paths.data_dir == Path("./data")

    def test_retry_backoff(self):
        retry = RetryConfig(base_delay=0.5, backoff_factor=2.0, max_backoff=3.0)
        assert [retry.delay_for(n) for n in (1, 2, 3, 4)] == [0.5, 1.0, 2.0, 3.0]
