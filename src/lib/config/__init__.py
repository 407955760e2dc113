"""Configuration management library with YAML support and hot-reload.

This library provides configuration management for the power sensor
monitor, including:

- YAML file loading and saving
- Configuration validation and schema checking
- Hot-reload capability with file watching
- Environment variable overrides (``POWER_MONITOR_*``)
- Configuration merging and defaults

Usage:
    from src.lib.config import ConfigManager

    # Basic usage
    config_manager = ConfigManager("config.yaml")
    config = config_manager.load_config()

    # With hot-reload
    config_manager = ConfigManager("config.yaml", hot_reload=True)
    config_manager.on_config_changed = my_callback
    config = config_manager.load_config()
"""

import os
import time
from pathlib import Path
from typing import Dict, Any, List, Optional, Callable, Union
from datetime import datetime
from threading import Thread, Event
from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler

import yaml

from ...models import MonitorConfiguration
from .validation import (
    ConfigValidationError,
    ConfigValidator,
    ValidationResult,
    create_config_schema,
    generate_example_config,
    validate_config_dict,
    validate_config_file,
)


ENV_PREFIX = "POWER_MONITOR_"

# Environment variable suffix -> (config path, converter)
ENV_MAPPINGS: Dict[str, tuple] = {
    "BROKER_URL": (["broker", "url"], str),
    "TOPIC": (["broker", "topic"], str),
    "CLIENT_ID": (["broker", "client_id"], str),
    "USERNAME": (["broker", "username"], str),
    "PASSWORD": (["broker", "password"], str),
    "WINDOW_SIZE": (["history", "window_size"], int),
    "SOUND": (["notifications", "sound_enabled"], "bool"),
    "DESKTOP_NOTIFICATIONS": (["notifications", "desktop_enabled"], "bool"),
    "ARCHIVE_PATH": (["archive", "database_path"], str),
    "API_PORT": (["api_port"], int),
    "DEBUG": (["enable_debug_logging"], "bool"),
}


class ConfigurationError(Exception):
    """Exception raised for configuration-related errors."""
    pass


class ConfigChangeHandler(FileSystemEventHandler):
    """File system event handler for configuration hot-reload."""

    def __init__(self, config_manager: 'ConfigManager'):
        super().__init__()
        self.config_manager = config_manager

    def on_modified(self, event):
        """Handle file modification events."""
        if event.is_directory:
            return

        if Path(event.src_path).resolve() == self.config_manager.config_path.resolve():
            self.config_manager._trigger_reload()


class ConfigManager:
    """Configuration manager with YAML support and validation."""

    def __init__(
        self,
        config_path: Union[str, Path],
        validate: bool = True,
        strict_validation: bool = False,
        hot_reload: bool = False,
        create_if_missing: bool = False
    ):
        self.config_path = Path(config_path)
        self.validate = validate
        self.strict_validation = strict_validation
        self.hot_reload = hot_reload
        self.create_if_missing = create_if_missing

        # State
        self._current_config: Optional[MonitorConfiguration] = None
        self._last_loaded: Optional[datetime] = None
        self._last_validation: Optional[ValidationResult] = None

        # Hot-reload components
        self._observer: Optional[Observer] = None
        self._reload_event = Event()
        self._reload_thread: Optional[Thread] = None
        self._shutdown_event = Event()

        # Callbacks
        self.on_config_changed: Optional[Callable[[MonitorConfiguration], None]] = None
        self.on_config_error: Optional[Callable[[Exception], None]] = None
        self.on_validation_warning: Optional[Callable[[ValidationResult], None]] = None

        self.env_prefix = ENV_PREFIX

        if self.create_if_missing and not self.config_path.exists():
            self._create_default_config()

        if self.hot_reload:
            self._start_hot_reload()

    def load_config(self) -> MonitorConfiguration:
        """Load and return the current configuration."""
        try:
            config_data = self._load_yaml_file()
            config_data = apply_env_overrides(config_data, self.env_prefix)

            if self.validate:
                validation_result = self._validate_config(config_data)
                self._last_validation = validation_result

                if not validation_result.is_valid:
                    raise ConfigurationError(
                        f"Configuration validation failed: {validation_result.errors[0]}"
                    )

                if validation_result.warnings and self.on_validation_warning:
                    self.on_validation_warning(validation_result)

            # Unknown keys only produce warnings in non-strict mode
            known = {
                key: value for key, value in config_data.items()
                if key in ConfigValidator.KNOWN_SECTIONS
            }
            self._current_config = MonitorConfiguration(**known)
            self._last_loaded = datetime.now()

            return self._current_config

        except Exception as e:
            if self.on_config_error:
                self.on_config_error(e)
            raise

    def save_config(self, config: MonitorConfiguration) -> None:
        """Save configuration to YAML file."""
        try:
            self._save_yaml_file(config.export_dict())
            self._current_config = config
            self._last_loaded = datetime.now()

        except Exception as e:
            if self.on_config_error:
                self.on_config_error(e)
            raise

    def reload_config(self) -> MonitorConfiguration:
        """Force reload configuration from file."""
        return self.load_config()

    def get_current_config(self) -> Optional[MonitorConfiguration]:
        """Get the currently loaded configuration without reloading."""
        return self._current_config

    def is_config_stale(self) -> bool:
        """Check if the file changed since it was last loaded."""
        if not self._last_loaded:
            return True

        try:
            file_mtime = datetime.fromtimestamp(self.config_path.stat().st_mtime)
            return file_mtime > self._last_loaded
        except OSError:
            return True

    def get_validation_result(self) -> Optional[ValidationResult]:
        return self._last_validation

    def validate_current_config(self) -> ValidationResult:
        """Validate the current configuration."""
        if not self._current_config:
            raise ConfigurationError("No configuration loaded")

        return self._validate_config(self._current_config.export_dict())

    def export_config_yaml(self, output_path: Optional[Path] = None) -> str:
        """Export current configuration to YAML string or file."""
        if not self._current_config:
            raise ConfigurationError("No configuration loaded")

        yaml_content = dict_to_yaml(self._current_config.export_dict())

        if output_path:
            with open(output_path, 'w', encoding='utf-8') as f:
                f.write(yaml_content)

        return yaml_content

    def merge_config(self, override_data: Dict[str, Any]) -> MonitorConfiguration:
        """Merge override data with current configuration."""
        if not self._current_config:
            base_data = generate_example_config()
        else:
            base_data = self._current_config.export_dict()

        merged_data = deep_merge(base_data, override_data)

        if self.validate:
            validation_result = self._validate_config(merged_data)
            if not validation_result.is_valid:
                raise ConfigurationError(
                    f"Merged configuration validation failed: {validation_result.errors[0]}"
                )

        return MonitorConfiguration(**merged_data)

    def _load_yaml_file(self) -> Dict[str, Any]:
        """Load YAML configuration file."""
        if not self.config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"YAML parsing error: {e}")
        except OSError as e:
            raise ConfigurationError(f"Error reading config file: {e}")

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration file must contain a mapping")
        return data

    def _save_yaml_file(self, config_data: Dict[str, Any]) -> None:
        """Save configuration data to YAML file."""
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, 'w', encoding='utf-8') as f:
                f.write(dict_to_yaml(config_data))

        except OSError as e:
            raise ConfigurationError(f"Error writing config file: {e}")

    def _validate_config(self, config_data: Dict[str, Any]) -> ValidationResult:
        validator = ConfigValidator(strict_mode=self.strict_validation)
        return validator.validate_config(config_data)

    def _create_default_config(self) -> None:
        self._save_yaml_file(generate_example_config())

    def _start_hot_reload(self) -> None:
        """Start hot-reload file watching."""
        if not self.config_path.exists():
            return

        try:
            self._observer = Observer()
            handler = ConfigChangeHandler(self)

            # Watch the directory containing the config file
            watch_dir = self.config_path.parent
            self._observer.schedule(handler, str(watch_dir), recursive=False)
            self._observer.start()

            self._reload_thread = Thread(target=self._reload_worker, daemon=True)
            self._reload_thread.start()

        except Exception as e:
            if self.on_config_error:
                self.on_config_error(e)

    def _reload_worker(self) -> None:
        """Background worker for handling config reloads."""
        while not self._shutdown_event.is_set():
            if self._reload_event.wait(timeout=1.0):
                self._reload_event.clear()

                try:
                    # Let the writer finish
                    time.sleep(0.1)

                    new_config = self.load_config()

                    if self.on_config_changed:
                        self.on_config_changed(new_config)

                except Exception as e:
                    if self.on_config_error:
                        self.on_config_error(e)

    def _trigger_reload(self) -> None:
        self._reload_event.set()

    def shutdown(self) -> None:
        """Shutdown configuration manager and cleanup resources."""
        self._shutdown_event.set()

        if self._observer:
            self._observer.stop()
            self._observer.join()

        if self._reload_thread:
            self._reload_thread.join(timeout=5.0)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()


def apply_env_overrides(config_data: Dict[str, Any], prefix: str = ENV_PREFIX) -> Dict[str, Any]:
    """Apply ``POWER_MONITOR_*`` environment overrides to configuration data."""
    modified_data = deep_merge({}, config_data)

    for suffix, (path, converter) in ENV_MAPPINGS.items():
        env_value = os.getenv(f"{prefix}{suffix}")
        if env_value is None:
            continue
        try:
            converted = _convert_env_value(env_value, converter)
        except ValueError as e:
            raise ConfigurationError(f"Invalid value for {prefix}{suffix}: {e}")
        _set_nested_value(modified_data, path, converted)

    return modified_data


def _convert_env_value(value: str, converter: Any) -> Any:
    if converter == "bool":
        return value.lower() in ('true', '1', 'yes', 'on')
    return converter(value)


def _set_nested_value(data: Dict[str, Any], path: List[str], value: Any) -> None:
    current = data
    for key in path[:-1]:
        if not isinstance(current.get(key), dict):
            current[key] = {}
        current = current[key]
    current[path[-1]] = value


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries without mutating either."""
    result = dict(base)

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        elif isinstance(value, dict):
            result[key] = deep_merge({}, value)
        else:
            result[key] = value

    return result


def dict_to_yaml(data: Dict[str, Any]) -> str:
    """Convert dictionary to formatted YAML with a header comment."""
    header = f"""# Power Sensor Monitor Configuration
# Generated: {datetime.now().isoformat()}
#
# Payload on the broker topic: voltage,current1,current2,current3,temperature,humidity
# Rules are evaluated in order; every matching rule fires.

"""

    yaml_content = yaml.dump(
        data,
        default_flow_style=False,
        indent=2,
        sort_keys=False,
        allow_unicode=True
    )

    return header + yaml_content


# Convenience functions
def load_config_from_file(
    config_path: Union[str, Path],
    validate: bool = True
) -> MonitorConfiguration:
    """Load configuration from YAML file (convenience function)."""
    manager = ConfigManager(config_path, validate=validate)
    return manager.load_config()


def load_default_config() -> MonitorConfiguration:
    """Defaults with environment overrides applied."""
    return MonitorConfiguration(**apply_env_overrides({}))


def save_config_to_file(
    config: MonitorConfiguration,
    config_path: Union[str, Path]
) -> None:
    """Save configuration to YAML file (convenience function)."""
    manager = ConfigManager(config_path, validate=False)
    manager.save_config(config)


def create_default_config_file(config_path: Union[str, Path]) -> None:
    """Create default configuration file (convenience function)."""
    ConfigManager(config_path, create_if_missing=True, validate=False)


__all__ = [
    "ConfigManager",
    "ConfigurationError",
    "ConfigValidationError",
    "ConfigValidator",
    "ValidationResult",
    "ENV_PREFIX",
    "apply_env_overrides",
    "deep_merge",
    "dict_to_yaml",
    "load_config_from_file",
    "load_default_config",
    "save_config_to_file",
    "create_default_config_file",
    "create_config_schema",
    "generate_example_config",
    "validate_config_dict",
    "validate_config_file",
]
