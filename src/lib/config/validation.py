"""Configuration validation utilities for YAML config files.

This module provides validation for power monitor configuration files,
including schema validation, value range checks and logical consistency
checks across the broker, rule and archive sections.
"""

from pathlib import Path
from typing import Dict, List, Any, Optional, Union

import yaml
from pydantic import ValidationError

from ...models import MonitorConfiguration, DEFAULT_RULES


PUBLIC_TEST_BROKERS = {"test.mosquitto.org", "broker.hivemq.com", "broker.emqx.io"}


class ConfigValidationError(Exception):
    """Custom exception for configuration validation errors."""

    def __init__(self, message: str, path: str = "", details: Optional[Dict] = None):
        self.message = message
        self.path = path
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.path:
            return f"Config validation error at '{self.path}': {self.message}"
        return f"Config validation error: {self.message}"


class ValidationResult:
    """Result of configuration validation."""

    def __init__(self):
        self.is_valid = True
        self.errors: List[ConfigValidationError] = []
        self.warnings: List[str] = []
        self.info: List[str] = []

    def add_error(self, error: ConfigValidationError) -> None:
        """Add validation error."""
        self.errors.append(error)
        self.is_valid = False

    def add_warning(self, message: str, path: str = "") -> None:
        """Add validation warning."""
        warning_msg = f"Warning at '{path}': {message}" if path else f"Warning: {message}"
        self.warnings.append(warning_msg)

    def add_info(self, message: str) -> None:
        self.info.append(message)

    def get_summary(self) -> Dict[str, Any]:
        """Get validation summary."""
        return {
            "valid": self.is_valid,
            "error_count": len(self.errors),
            "warning_count": len(self.warnings),
            "info_count": len(self.info),
            "errors": [str(error) for error in self.errors],
            "warnings": self.warnings,
            "info": self.info
        }

    def print_results(self, verbose: bool = True) -> None:
        """Print validation results to console."""
        if self.is_valid:
            print("✓ Configuration validation passed")
        else:
            print("✗ Configuration validation failed")

        if self.errors:
            print(f"\nErrors ({len(self.errors)}):")
            for error in self.errors:
                print(f"  • {error}")

        if self.warnings and verbose:
            print(f"\nWarnings ({len(self.warnings)}):")
            for warning in self.warnings:
                print(f"  • {warning}")

        if self.info and verbose:
            print(f"\nInfo ({len(self.info)}):")
            for info in self.info:
                print(f"  • {info}")


class ConfigValidator:
    """Power monitor configuration validator."""

    KNOWN_SECTIONS = {
        "broker", "reconnect", "history", "notifications", "archive",
        "rules", "enable_debug_logging", "api_port"
    }

    def __init__(self, strict_mode: bool = False):
        self.strict_mode = strict_mode
        self.result = ValidationResult()

    def validate_config(self, config_data: Dict[str, Any]) -> ValidationResult:
        """Validate complete configuration dictionary."""
        self.result = ValidationResult()

        if not isinstance(config_data, dict):
            self.result.add_error(ConfigValidationError(
                "Configuration must be a mapping"
            ))
            return self.result

        try:
            self._validate_structure(config_data)

            # Unknown keys were already reported; the model forbids extras
            known = {key: value for key, value in config_data.items() if key in self.KNOWN_SECTIONS}
            config_obj = self._validate_pydantic_model(known)

            if config_obj:
                self._validate_rules(config_obj)
                self._validate_broker(config_obj)
                self._validate_retention(config_obj)

        except Exception as e:
            self.result.add_error(ConfigValidationError(
                f"Unexpected validation error: {str(e)}"
            ))

        return self.result

    def validate_yaml_file(self, file_path: Union[str, Path]) -> ValidationResult:
        """Validate YAML configuration file."""
        self.result = ValidationResult()
        file_path = Path(file_path)

        if not file_path.exists():
            self.result.add_error(ConfigValidationError(
                f"Configuration file does not exist: {file_path}"
            ))
            return self.result

        if not file_path.is_file():
            self.result.add_error(ConfigValidationError(
                f"Path is not a file: {file_path}"
            ))
            return self.result

        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                config_data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            self.result.add_error(ConfigValidationError(
                f"YAML parsing error: {str(e)}"
            ))
            return self.result

        return self.validate_config(config_data)

    def _validate_structure(self, config: Dict[str, Any]) -> None:
        """Report unknown top-level keys; every section is optional."""
        unknown_keys = set(config.keys()) - self.KNOWN_SECTIONS

        if unknown_keys:
            if self.strict_mode:
                for key in sorted(unknown_keys):
                    self.result.add_error(ConfigValidationError(
                        f"Unknown configuration key: {key}",
                        path=key
                    ))
            else:
                self.result.add_warning(
                    f"Unknown configuration keys (will be ignored): {', '.join(sorted(unknown_keys))}"
                )

    def _validate_pydantic_model(self, config: Dict[str, Any]) -> Optional[MonitorConfiguration]:
        """Validate using Pydantic model."""
        try:
            config_obj = MonitorConfiguration(**config)
            self.result.add_info("Pydantic model validation passed")
            return config_obj

        except ValidationError as e:
            for error in e.errors():
                field_path = ".".join(str(x) for x in error['loc'])
                self.result.add_error(ConfigValidationError(
                    error['msg'],
                    path=field_path,
                    details={"type": error['type'], "input": error.get('input')}
                ))
            return None

    def _validate_rules(self, config: MonitorConfiguration) -> None:
        """Check the threshold table for gaps and redundancy."""
        if not config.rules:
            self.result.add_warning(
                "No threshold rules configured - no alerts will be raised",
                path="rules"
            )
            return

        seen = {}
        for index, rule in enumerate(config.rules):
            key = (rule.channel, rule.operator, rule.threshold, rule.severity)
            if key in seen:
                self.result.add_warning(
                    f"Rule '{rule.name}' duplicates the condition of '{seen[key]}'",
                    path=f"rules.{index}"
                )
            else:
                seen[key] = rule.name

        if [rule.model_dump() for rule in config.rules] != [rule.model_dump() for rule in DEFAULT_RULES]:
            self.result.add_info("Using a customized threshold table")

        monitored = {rule.channel for rule in config.rules}
        for channel in ("current2", "current3"):
            if channel not in monitored:
                self.result.add_info(f"No threshold rule monitors {channel}")

    def _validate_broker(self, config: MonitorConfiguration) -> None:
        """Check broker security settings."""
        broker = config.broker

        if broker.username and not broker.use_tls:
            self.result.add_warning(
                "Broker credentials are sent without TLS",
                path="broker.url"
            )

        if broker.host in PUBLIC_TEST_BROKERS:
            self.result.add_info(
                f"Using public test broker {broker.host} - readings are visible to anyone"
            )

        if config.reconnect.backoff_multiplier == 1.0:
            self.result.add_warning(
                "Backoff multiplier of 1.0 retries at a constant rate",
                path="reconnect.backoff_multiplier"
            )

    def _validate_retention(self, config: MonitorConfiguration) -> None:
        """Check history and archive growth."""
        if config.history.window_size > 10000:
            self.result.add_warning(
                f"Large history window ({config.history.window_size}) slows dashboard refresh",
                path="history.window_size"
            )

        archive = config.archive
        if archive.enabled and archive.in_memory and archive.retention_hours is None:
            self.result.add_warning(
                "In-memory archive without retention grows for the whole session",
                path="archive.retention_hours"
            )

        if archive.enabled and not archive.in_memory:
            parent = Path(archive.database_path).parent
            if not parent.exists():
                self.result.add_error(ConfigValidationError(
                    f"Archive directory does not exist: {parent}",
                    path="archive.database_path"
                ))

        if not config.notifications.sound_enabled and not config.notifications.desktop_enabled:
            self.result.add_warning(
                "Sound and desktop notifications are both disabled",
                path="notifications"
            )


def validate_config_dict(config_data: Dict[str, Any], strict: bool = False) -> ValidationResult:
    """Validate configuration dictionary (convenience function)."""
    validator = ConfigValidator(strict_mode=strict)
    return validator.validate_config(config_data)


def validate_config_file(file_path: Union[str, Path], strict: bool = False) -> ValidationResult:
    """Validate configuration YAML file (convenience function)."""
    validator = ConfigValidator(strict_mode=strict)
    return validator.validate_yaml_file(file_path)


def create_config_schema() -> Dict[str, Any]:
    """JSON schema for the configuration file."""
    return MonitorConfiguration.model_json_schema()


def generate_example_config() -> Dict[str, Any]:
    """Generate example configuration dictionary."""
    return MonitorConfiguration().export_dict()
