"""Command-line interface for configuration management.

Provides CLI tools for validating, creating, exporting and inspecting power
monitor configuration files.

Usage:
    python -m src.lib.config [COMMAND] [OPTIONS]

Commands:
    validate    - Validate configuration file
    export      - Export configuration to YAML or JSON
    create      - Create new configuration file
    merge       - Merge configuration files
    schema      - Export configuration JSON schema
    info        - Summarize a configuration file

Examples:
    # Validate configuration
    python -m src.lib.config validate config.yaml

    # Create a configuration for a local broker
    python -m src.lib.config create --output config.yaml --template local
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict

import yaml

# Add project root to path for imports
project_root = Path(__file__).parent.parent.parent.parent
sys.path.insert(0, str(project_root))

from src.lib.config import (
    ConfigManager,
    ConfigurationError,
    deep_merge,
    dict_to_yaml,
    load_config_from_file,
    save_config_to_file,
)
from src.lib.config.validation import (
    validate_config_file,
    create_config_schema,
    generate_example_config
)
from src.models import MonitorConfiguration


TEMPLATES: Dict[str, Dict[str, Any]] = {
    "minimal": {
        "broker": {"url": "wss://test.mosquitto.org:8081", "topic": "r04nx"}
    },
    "local": {
        "broker": {"url": "mqtt://localhost:1883", "topic": "r04nx"},
        "archive": {"in_memory": False, "database_path": "power_monitor_readings.db",
                    "retention_hours": 168},
        "notifications": {"desktop_enabled": False}
    }
}


def create_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""
    parser = argparse.ArgumentParser(
        description="Power Sensor Monitor Configuration Management",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output"
    )

    subparsers = parser.add_subparsers(
        dest="command",
        help="Available commands",
        metavar="COMMAND"
    )

    validate_parser = subparsers.add_parser("validate", help="Validate configuration file")
    validate_parser.add_argument("config_file", type=Path, help="Configuration file to validate")
    validate_parser.add_argument("--strict", action="store_true",
                                 help="Treat unknown keys as errors")
    validate_parser.add_argument("--format", choices=["text", "json"], default="text",
                                 help="Output format for validation results")

    export_parser = subparsers.add_parser("export", help="Export configuration")
    export_parser.add_argument("config_file", type=Path, help="Configuration file to export")
    export_parser.add_argument("--output", "-o", type=Path, help="Output file (default: stdout)")
    export_parser.add_argument("--format", choices=["yaml", "json"], default="yaml",
                               help="Export format")
    export_parser.add_argument("--validate", action="store_true", help="Validate before exporting")

    create_parser = subparsers.add_parser("create", help="Create new configuration file")
    create_parser.add_argument("--output", "-o", type=Path, required=True, help="Output file path")
    create_parser.add_argument("--template", choices=["default", "minimal", "local"],
                               default="default", help="Configuration template")
    create_parser.add_argument("--overwrite", action="store_true", help="Overwrite existing file")

    merge_parser = subparsers.add_parser("merge", help="Merge configuration files")
    merge_parser.add_argument("base_config", type=Path, help="Base configuration file")
    merge_parser.add_argument("override_config", type=Path, help="Override configuration file")
    merge_parser.add_argument("--output", "-o", type=Path, required=True,
                              help="Output merged configuration file")

    schema_parser = subparsers.add_parser("schema", help="Export configuration schema")
    schema_parser.add_argument("--output", "-o", type=Path, help="Output file (default: stdout)")
    schema_parser.add_argument("--format", choices=["json", "yaml"], default="json",
                               help="Schema format")

    info_parser = subparsers.add_parser("info", help="Show configuration information")
    info_parser.add_argument("config_file", type=Path, help="Configuration file")

    return parser


def _write_output(content: str, output: Path, what: str) -> None:
    if output:
        with open(output, 'w', encoding='utf-8') as f:
            f.write(content)
        print(f"{what} exported to: {output}")
    else:
        print(content)


def cmd_validate(args) -> int:
    """Handle validate command."""
    print(f"Validating configuration: {args.config_file}")

    result = validate_config_file(args.config_file, strict=args.strict)

    if args.format == "json":
        print(json.dumps(result.get_summary(), indent=2, default=str))
    else:
        result.print_results(verbose=args.verbose)

    return 0 if result.is_valid else 1


def cmd_export(args) -> int:
    """Handle export command."""
    try:
        config = load_config_from_file(args.config_file, validate=args.validate)
    except ConfigurationError as e:
        print(f"Export error: {e}", file=sys.stderr)
        return 1

    if args.format == "json":
        content = json.dumps(config.export_dict(), indent=2, ensure_ascii=False)
    else:
        content = dict_to_yaml(config.export_dict())

    _write_output(content, args.output, "Configuration")
    return 0


def cmd_create(args) -> int:
    """Handle create command."""
    if args.output.exists() and not args.overwrite:
        print(f"File already exists: {args.output}", file=sys.stderr)
        print("Use --overwrite to replace existing file")
        return 1

    if args.template == "default":
        config_data = generate_example_config()
    else:
        config_data = deep_merge(generate_example_config(), TEMPLATES[args.template])

    config = MonitorConfiguration(**config_data)
    save_config_to_file(config, args.output)

    print(f"Created configuration file: {args.output}")
    print(f"Template: {args.template}")
    return 0


def cmd_merge(args) -> int:
    """Handle merge command."""
    try:
        base_manager = ConfigManager(args.base_config)
        base_manager.load_config()

        with open(args.override_config, 'r', encoding='utf-8') as f:
            override_data = yaml.safe_load(f) or {}

        merged_config = base_manager.merge_config(override_data)
    except (ConfigurationError, OSError, yaml.YAMLError) as e:
        print(f"Merge error: {e}", file=sys.stderr)
        return 1

    save_config_to_file(merged_config, args.output)

    print(f"Merged configuration saved to: {args.output}")
    print(f"Base: {args.base_config}")
    print(f"Override: {args.override_config}")
    return 0


def cmd_schema(args) -> int:
    """Handle schema command."""
    schema = create_config_schema()

    if args.format == "yaml":
        content = yaml.dump(schema, default_flow_style=False, indent=2, allow_unicode=True)
    else:
        content = json.dumps(schema, indent=2, sort_keys=True, ensure_ascii=False)

    _write_output(content, args.output, "Schema")
    return 0


def cmd_info(args) -> int:
    """Handle info command."""
    try:
        config = load_config_from_file(args.config_file, validate=True)
    except ConfigurationError as e:
        print(f"Info error: {e}", file=sys.stderr)
        return 1

    print(f"Configuration File: {args.config_file}")
    print(f"\nBroker: {config.broker.url} (transport={config.broker.transport}, "
          f"tls={config.broker.use_tls})")
    print(f"Topic: {config.broker.topic}")
    print(f"History window: {config.history.window_size} readings")
    print(f"Archive: {'enabled' if config.archive.enabled else 'disabled'}"
          f" ({'memory' if config.archive.in_memory else config.archive.database_path})")
    print(f"API Port: {config.api_port}")
    print(f"\nThreshold rules ({len(config.rules)}):")
    for rule in config.rules:
        print(f"  {rule.name:<24} {rule.describe():<22} {rule.severity:<8} {rule.message}")

    return 0


def main() -> int:
    """Main entry point for the configuration CLI."""
    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "validate": cmd_validate,
        "export": cmd_export,
        "create": cmd_create,
        "merge": cmd_merge,
        "schema": cmd_schema,
        "info": cmd_info
    }

    try:
        return commands[args.command](args)
    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        return 1
    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
