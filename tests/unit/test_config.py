"""Unit tests for configuration management."""

import pytest
import tempfile
from pathlib import Path

import yaml

from src.lib.config import (
    ConfigManager,
    ConfigurationError,
    apply_env_overrides,
    create_default_config_file,
    deep_merge,
    load_config_from_file,
    load_default_config,
    save_config_to_file,
    validate_config_dict,
)
from src.lib.config.validation import create_config_schema, generate_example_config
from src.models import MonitorConfiguration


def write_yaml(path: Path, data) -> Path:
    with open(path, 'w', encoding='utf-8') as f:
        yaml.safe_dump(data, f)
    return path


class TestConfigurationLoading:
    """Test configuration loading functionality."""

    def test_load_default_config(self, monkeypatch):
        """Defaults apply when no environment overrides are set."""
        monkeypatch.delenv("POWER_MONITOR_BROKER_URL", raising=False)
        config = load_default_config()

        assert isinstance(config, MonitorConfiguration)
        assert config.broker.topic == "r04nx"
        assert config.history.window_size == 60

    def test_load_config_from_file(self, tmp_path):
        path = write_yaml(tmp_path / "config.yaml", {
            "broker": {"url": "mqtt://localhost:1883", "topic": "lab/power"},
            "history": {"window_size": 120}
        })

        config = load_config_from_file(path)

        assert config.broker.host == "localhost"
        assert config.broker.topic == "lab/power"
        assert config.history.window_size == 120
        assert len(config.rules) == 10

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        config = load_config_from_file(path)

        assert config == MonitorConfiguration()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config_from_file(tmp_path / "missing.yaml")

    def test_invalid_values_rejected(self, tmp_path):
        path = write_yaml(tmp_path / "bad.yaml", {"history": {"window_size": 0}})

        with pytest.raises(ConfigurationError):
            load_config_from_file(path)

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ConfigurationError):
            load_config_from_file(path)

    def test_unknown_keys_ignored_when_not_strict(self, tmp_path):
        path = write_yaml(tmp_path / "extra.yaml", {"legacy_option": 1, "api_port": 6000})

        config = load_config_from_file(path)

        assert config.api_port == 6000

    def test_save_and_reload(self):
        config = MonitorConfiguration(
            broker={"url": "mqtts://broker.local", "topic": "plant/ups"},
            notifications={"sound_enabled": False}
        )

        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "nested" / "config.yaml"
            save_config_to_file(config, path)

            assert path.read_text(encoding="utf-8").startswith("# Power Sensor Monitor Configuration")
            assert load_config_from_file(path) == config

    def test_create_default_config_file(self, tmp_path):
        path = tmp_path / "default.yaml"
        create_default_config_file(path)

        assert path.exists()
        assert load_config_from_file(path) == MonitorConfiguration()


class TestEnvironmentOverrides:
    """Test POWER_MONITOR_* environment overrides."""

    def test_overrides_applied(self, monkeypatch):
        monkeypatch.setenv("POWER_MONITOR_BROKER_URL", "mqtt://10.0.0.5:1883")
        monkeypatch.setenv("POWER_MONITOR_WINDOW_SIZE", "30")
        monkeypatch.setenv("POWER_MONITOR_SOUND", "off")

        data = apply_env_overrides({"broker": {"topic": "keep"}})

        assert data == {
            "broker": {"topic": "keep", "url": "mqtt://10.0.0.5:1883"},
            "history": {"window_size": 30},
            "notifications": {"sound_enabled": False}
        }

    def test_input_not_mutated(self, monkeypatch):
        monkeypatch.setenv("POWER_MONITOR_TOPIC", "other")
        original = {"broker": {"topic": "mine"}}

        apply_env_overrides(original)

        assert original == {"broker": {"topic": "mine"}}

    def test_invalid_number(self, monkeypatch):
        monkeypatch.setenv("POWER_MONITOR_API_PORT", "not-a-port")

        with pytest.raises(ConfigurationError):
            apply_env_overrides({})

    def test_file_values_overridden(self, tmp_path, monkeypatch):
        path = write_yaml(tmp_path / "config.yaml", {"broker": {"topic": "from-file"}})
        monkeypatch.setenv("POWER_MONITOR_TOPIC", "from-env")

        assert load_config_from_file(path).broker.topic == "from-env"


class TestConfigManager:
    """Test ConfigManager."""

    def test_merge_config(self, tmp_path):
        path = write_yaml(tmp_path / "config.yaml", {"history": {"window_size": 10}})
        manager = ConfigManager(path)
        manager.load_config()

        merged = manager.merge_config({"broker": {"topic": "merged"}})

        assert merged.history.window_size == 10
        assert merged.broker.topic == "merged"

    def test_export_requires_loaded_config(self, tmp_path):
        manager = ConfigManager(tmp_path / "config.yaml")

        with pytest.raises(ConfigurationError):
            manager.export_config_yaml()

    def test_stale_detection(self, tmp_path):
        path = write_yaml(tmp_path / "config.yaml", {})
        manager = ConfigManager(path)

        assert manager.is_config_stale() is True
        manager.load_config()
        assert manager.is_config_stale() is False

    def test_error_callback(self, tmp_path):
        errors = []
        manager = ConfigManager(tmp_path / "missing.yaml")
        manager.on_config_error = errors.append

        with pytest.raises(ConfigurationError):
            manager.load_config()

        assert len(errors) == 1

    def test_context_manager(self, tmp_path):
        path = write_yaml(tmp_path / "config.yaml", {})

        with ConfigManager(path) as manager:
            assert manager.load_config() is not None


class TestConfigValidation:
    """Test configuration validation."""

    def test_default_config_valid(self):
        result = validate_config_dict(generate_example_config())

        assert result.is_valid
        assert result.errors == []

    def test_strict_mode_rejects_unknown_keys(self):
        assert validate_config_dict({"unknown": 1}).is_valid
        assert not validate_config_dict({"unknown": 1}, strict=True).is_valid

    def test_pydantic_errors_carry_path(self):
        result = validate_config_dict({"broker": {"url": "ftp://example.com"}})

        assert not result.is_valid
        assert result.errors[0].path.startswith("broker.url")

    def test_empty_rule_table_warns(self):
        result = validate_config_dict({"rules": []})

        assert result.is_valid
        assert any("No threshold rules" in warning for warning in result.warnings)

    def test_duplicate_condition_warns(self):
        rule = generate_example_config()["rules"][0]
        duplicate = dict(rule, name="copy")

        result = validate_config_dict({"rules": [rule, duplicate]})

        assert any("duplicates the condition" in warning for warning in result.warnings)

    def test_credentials_without_tls_warn(self):
        result = validate_config_dict({
            "broker": {"url": "mqtt://localhost", "username": "u", "password": "p"}
        })

        assert any("without TLS" in warning for warning in result.warnings)

    def test_missing_archive_directory_is_error(self, tmp_path):
        result = validate_config_dict({
            "archive": {"in_memory": False, "database_path": str(tmp_path / "no" / "such" / "db.sqlite")}
        })

        assert not result.is_valid

    def test_summary(self):
        summary = validate_config_dict({}).get_summary()

        assert summary["valid"] is True
        assert summary["error_count"] == 0

    def test_schema(self):
        schema = create_config_schema()

        assert "broker" in schema["properties"]
        assert "rules" in schema["properties"]


def test_deep_merge():
    base = {"a": {"b": 1, "c": 2}, "d": 3}
    override = {"a": {"c": 20}, "e": {"f": 4}}

    merged = deep_merge(base, override)

    assert merged == {"a": {"b": 1, "c": 20}, "d": 3, "e": {"f": 4}}
    assert base == {"a": {"b": 1, "c": 2}, "d": 3}
