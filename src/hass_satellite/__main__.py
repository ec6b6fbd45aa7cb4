#!/usr/bin/env python3
"""
HASS Satellite CLI.

Runs the command service and offers small maintenance commands around the
stored command list.
"""

import argparse
import logging
from pathlib import Path
import sys
import threading
import time

import yaml

from .commands_manager import CommandsManager
from .config import Config
from .models import CommandType, MqttStatus
from .mqtt_manager import MqttManager
from .service_support import install_signal_handlers
from .stored_commands import CommandFactory, StoredCommands, parse_configured_commands

DEFAULT_CONFIG_PATH = "config/config.yaml"


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all CLI commands."""
    parser = argparse.ArgumentParser(
        prog="hass-satellite",
        description="HASS Satellite: expose host commands to Home Assistant over MQTT",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  hass-satellite service                 # Run the command service
  hass-satellite commands                # List stored commands
  hass-satellite types lock              # Describe a command type
  hass-satellite apply commands.yaml     # Add/update commands from a file
  hass-satellite apply --replace c.yaml  # ...and remove the ones not listed
  hass-satellite reset-ids               # Regenerate all command ids
  hass-satellite validate-config         # Check the configuration
        """,
    )

    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {_get_version()}"
    )
    parser.add_argument(
        "--config",
        type=str,
        default=DEFAULT_CONFIG_PATH,
        help="path to configuration file",
    )
    parser.add_argument("--debug", action="store_true", help="enable debug output")

    subparsers = parser.add_subparsers(
        dest="command", help="available commands", required=False
    )

    subparsers.add_parser("service", help="run the command service until stopped")

    commands_parser = subparsers.add_parser("commands", help="list stored commands")
    commands_parser.add_argument(
        "--json", action="store_true", help="print the stored list as JSON"
    )

    types_parser = subparsers.add_parser("types", help="describe command types")
    types_parser.add_argument("type", nargs="?", help="command type to describe")

    subparsers.add_parser("reset-ids", help="give every stored command a new id")

    apply_parser = subparsers.add_parser(
        "apply", help="reconcile stored and published commands with a YAML/JSON list"
    )
    apply_parser.add_argument("file", help="YAML or JSON file with a list of commands")
    apply_parser.add_argument(
        "--replace",
        action="store_true",
        help="remove stored commands that are not in the file",
    )
    apply_parser.add_argument(
        "--timeout",
        type=float,
        default=10.0,
        help="seconds to wait for the MQTT connection",
    )

    subparsers.add_parser("validate-config", help="validate the configuration")

    return parser


def _get_version() -> str:
    """Get the package version."""
    try:
        from hass_satellite import __version__

        return __version__
    except ImportError:
        return "0.0.0-dev"


def _setup_logging(debug: bool = False) -> None:
    """Setup logging configuration."""
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _load_config(config_path: str) -> Config:
    if config_path == DEFAULT_CONFIG_PATH and not Path(config_path).exists():
        logging.info("no %s found, using defaults", config_path)
        return Config.from_defaults()
    return Config.from_file(config_path)


def build_engine(config: Config) -> tuple[MqttManager, CommandsManager]:
    """Wire gateway, conversion, storage and the commands manager together."""
    gateway = MqttManager(config)
    factory = CommandFactory(config, gateway)
    store = StoredCommands(config.commands_file, factory)
    manager = CommandsManager(gateway, factory, store, config=config)
    factory.publish_all_hook = manager.force_state_publish
    gateway.on_command_message = manager.dispatch_command_message
    gateway.on_desired_state = manager.handle_desired_state_message
    return gateway, manager


def _wait_for_connection(gateway: MqttManager, timeout: float) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        status = gateway.status()
        if status == MqttStatus.CONNECTED:
            return True
        if status in (MqttStatus.ERROR, MqttStatus.CONFIG_MISSING):
            return False
        time.sleep(0.25)
    return gateway.status() == MqttStatus.CONNECTED


def cmd_service(config: Config, args) -> int:
    """Run the command service until SIGINT/SIGTERM."""
    if not config.mqtt_enabled:
        print("❌ MQTT must be enabled for service mode")
        return 1

    gateway, manager = build_engine(config)
    count = manager.load_stored_commands()
    stop_event = threading.Event()

    if not gateway.start():
        print("❌ Cannot start MQTT client, check the mqtt section of the config")
        return 1
    manager.initialize()
    print(f"🚀 Service started with {count} command(s) device={config.device_name}")

    with install_signal_handlers(stop_event.set):
        try:
            while not stop_event.is_set():
                stop_event.wait(1.0)
        except KeyboardInterrupt:  # pragma: no cover
            print("Stopping service...")
        finally:
            manager.shutdown(timeout=5.0)
            gateway.stop()
    return 0


def cmd_commands(config: Config, args) -> int:
    """Print the stored commands without connecting."""
    factory = CommandFactory(config, MqttManager(config))
    specs = StoredCommands(config.commands_file, factory).load_configured()
    if getattr(args, "json", False):
        import json

        print(json.dumps([s.to_dict() for s in specs], indent=2))
        return 0
    if not specs:
        print(f"No commands stored in {config.commands_file}")
        return 0
    print(f"\n📋 Stored commands ({len(specs)})")
    for spec in specs:
        extra = spec.command or spec.key_code
        print(f"  • {spec.name} [{spec.type.value}/{spec.entity_type.value}] id={spec.id}")
        if extra:
            print(f"     {extra}")
    return 0


def cmd_types(config: Config, args) -> int:
    """Describe one or all command types."""
    _, manager = build_engine(config)
    manager.initialize_command_info()
    if args.type:
        print(manager.describe_command_type(args.type))
        return 0
    for command_type in CommandType:
        first_line = manager.describe_command_type(command_type).splitlines()[0]
        print(f"  • {command_type.value}: {first_line}")
    return 0


def cmd_reset_ids(config: Config, args) -> int:
    """Regenerate the id of every stored command (offline)."""
    _, manager = build_engine(config)
    count = manager.load_stored_commands()
    if not count:
        print("No commands stored, nothing to reset")
        return 0
    manager.reset_command_ids()
    print(f"✅ Reset ids of {count} command(s)")
    return 0


def cmd_apply(config: Config, args) -> int:
    """Reconcile the stored commands with a file and publish the result."""
    path = Path(args.file)
    if not path.exists():
        print(f"❌ File not found: {path}")
        return 1
    with open(path) as f:
        desired = parse_configured_commands(yaml.safe_load(f) or [])

    gateway, manager = build_engine(config)
    manager.load_stored_commands()
    if not gateway.start() or not _wait_for_connection(gateway, args.timeout):
        print("❌ Could not connect to the MQTT broker")
        gateway.stop()
        return 1
    try:
        removals = []
        if args.replace:
            desired_ids = {c.id for c in desired if c.id}
            removals = [
                spec
                for spec in (manager.factory.to_configured(c) for c in manager.commands)
                if spec is not None and spec.id not in desired_ids
            ]
        ok = manager.apply_desired_state(desired, removals)
    finally:
        gateway.stop()
    if not ok:
        print("❌ Applying commands failed, see log for details")
        return 1
    print(f"✅ Applied {len(desired)} command(s), removed {len(removals)}")
    return 0


def cmd_validate_config(config: Config, args) -> int:
    """Validate the configuration file."""
    print("🔍 Validating configuration...")
    problems = config.validate()
    if problems:
        print("\n❌ Configuration errors:")
        for problem in problems:
            print(f"  - {problem}")
        return 1
    print("\n✅ Configuration validation passed!")
    print("\n📋 Active Configuration:")
    print(f"  Device: {config.device_name}")
    print(f"  Broker: {config.mqtt_broker}:{config.mqtt_port}")
    print(f"  Discovery prefix: {config.discovery_prefix}")
    print(f"  Commands file: {config.commands_file}")
    return 0


def main() -> int:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args()

    _setup_logging(args.debug)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        config = _load_config(args.config)

        if args.command == "service":
            return cmd_service(config, args)
        elif args.command == "commands":
            return cmd_commands(config, args)
        elif args.command == "types":
            return cmd_types(config, args)
        elif args.command == "reset-ids":
            return cmd_reset_ids(config, args)
        elif args.command == "apply":
            return cmd_apply(config, args)
        elif args.command == "validate-config":
            return cmd_validate_config(config, args)
        else:
            print(f"❌ Unknown command: {args.command}")
            return 1

    except Exception as e:
        print(f"❌ Error: {e}")
        if args.debug:
            import traceback

            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
