"""
Command-line interface for the domain rotator.

This module provides the main CLI entry point with commands for:
- run / sweep: scheduled rotation of due records
- rotate: on-demand rotation of one record
- records / domains: inspection and pool management
- set-interval / set-port-range: rotation settings, persisted to the config file
- init-db / reconcile / self-test / config: maintenance
"""

import argparse
import asyncio
import json
import os
import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from . import __version__
from .audit_logger import AuditLogger
from .config import (
    AuthConfig,
    DatabaseConfig,
    KindConfig,
    LoggingConfig,
    RetryConfig,
    RotationConfig,
    SchedulerConfig,
    SeedConfig,
    SystemConfig,
    validate_interval,
    validate_port_range,
)
from .exceptions import ConfigError, RotatorError
from .self_test import run_self_test
from .service import RotatorService

ENV_CONFIG_PATH = "DOMAIN_ROTATOR_CONFIG"
ENV_DATABASE_PATH = "DOMAIN_ROTATOR_DB"
ENV_AUTH_USERNAME = "DOMAIN_ROTATOR_AUTH_USERNAME"
ENV_AUTH_PASSWORD = "DOMAIN_ROTATOR_AUTH_PASSWORD"

DEFAULT_HOME = Path.home() / ".domain_rotator"

DEFAULT_KINDS = [
    KindConfig(kind="vless", table="v2_server_vless"),
    KindConfig(kind="shadowsocks", table="v2_server_shadowsocks"),
    KindConfig(kind="vmess", table="v2_server_vmess"),
]

DEFAULT_SEED_DOMAINS = [
    "domain1.com",
    "domain2.com",
    "domain3.com",
    "domain4.com",
    "321sds.com",
]


def default_config_path() -> Path:
    return Path(os.environ.get(ENV_CONFIG_PATH) or DEFAULT_HOME / "config.json")


def create_default_config(database_path: Optional[Path] = None) -> SystemConfig:
    """
    Create a default system configuration.

    Args:
        database_path: SQLite database file (defaults to ~/.domain_rotator/rotator.db)
    """
    if database_path is None:
        database_path = DEFAULT_HOME / "rotator.db"

    return SystemConfig(
        database=DatabaseConfig(path=database_path),
        kinds=[replace(k) for k in DEFAULT_KINDS],
        rotation=RotationConfig(),
        retry=RetryConfig(),
        scheduler=SchedulerConfig(),
        auth=AuthConfig(),
        logging=LoggingConfig(level="info", output_format="text"),
        seed=SeedConfig(domains=list(DEFAULT_SEED_DOMAINS)),
    )


def load_config_from_file(config_path: Path) -> SystemConfig:
    """
    Load configuration from a JSON file. Missing sections take their defaults.

    Raises:
        ConfigError: If the file is missing or malformed
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        defaults = create_default_config()

        database_data = data.get("database", {})
        database = DatabaseConfig(
            path=Path(database_data.get("path") or defaults.database.path),
            busy_timeout_ms=database_data.get("busy_timeout_ms", 5000),
        )

        kinds = [
            KindConfig(kind=kind_data["kind"], table=kind_data["table"])
            for kind_data in data.get("kinds", [])
        ]
        if not kinds:
            kinds = defaults.kinds

        rotation_data = data.get("rotation", {})
        rotation = RotationConfig(
            update_interval_hours=rotation_data.get("update_interval_hours", 24),
            port_min=rotation_data.get("port_min", 10000),
            port_max=rotation_data.get("port_max", 60000),
            cooldown_seconds=rotation_data.get("cooldown_seconds", defaults.rotation.cooldown_seconds),
        )

        retry_data = data.get("retry", {})
        retry = RetryConfig(
            max_attempts=retry_data.get("max_attempts", 3),
            base_delay_seconds=retry_data.get("base_delay_seconds", 0.0),
            max_delay_seconds=retry_data.get("max_delay_seconds", 0.0),
        )

        scheduler = SchedulerConfig(
            sweep_cron=data.get("scheduler", {}).get("sweep_cron", "*/5 * * * *"),
        )

        auth_data = data.get("auth", {})
        auth = AuthConfig(
            username=auth_data.get("username", "admin"),
            password=auth_data.get("password", ""),
        )

        logging_data = data.get("logging", {})
        logging_config = LoggingConfig(
            level=logging_data.get("level", "info"),
            output_format=logging_data.get("output_format", "text"),
        )

        seed_data = data.get("seed", {})
        seed = SeedConfig(
            domains=list(seed_data.get("domains", defaults.seed.domains)),
            sample_record_id=seed_data.get("sample_record_id", 4),
            sample_port=seed_data.get("sample_port", 8080),
        )

        return SystemConfig(
            database=database,
            kinds=kinds,
            rotation=rotation,
            retry=retry,
            scheduler=scheduler,
            auth=auth,
            logging=logging_config,
            seed=seed,
        )

    except FileNotFoundError:
        raise ConfigError(
            message=f"Configuration file not found: {config_path}",
            details={"path": str(config_path)},
        ) from None
    except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
        raise ConfigError(
            message=f"Error loading config: {e}",
            details={"path": str(config_path)},
        ) from e


def save_config_to_file(config: SystemConfig, config_path: Path) -> None:
    """
    Save configuration to a JSON file.

    Raises:
        ConfigError: If the file cannot be written
    """
    data = {
        "database": {
            "path": str(config.database.path),
            "busy_timeout_ms": config.database.busy_timeout_ms,
        },
        "kinds": [{"kind": k.kind, "table": k.table} for k in config.kinds],
        "rotation": {
            "update_interval_hours": config.rotation.update_interval_hours,
            "port_min": config.rotation.port_min,
            "port_max": config.rotation.port_max,
            "cooldown_seconds": config.rotation.cooldown_seconds,
        },
        "retry": {
            "max_attempts": config.retry.max_attempts,
            "base_delay_seconds": config.retry.base_delay_seconds,
            "max_delay_seconds": config.retry.max_delay_seconds,
        },
        "scheduler": {"sweep_cron": config.scheduler.sweep_cron},
        "auth": {
            "username": config.auth.username,
            "password": config.auth.password,
        },
        "logging": {
            "level": config.logging.level,
            "output_format": config.logging.output_format,
        },
        "seed": {
            "domains": config.seed.domains,
            "sample_record_id": config.seed.sample_record_id,
            "sample_port": config.seed.sample_port,
        },
    }

    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
    except (OSError, TypeError) as e:
        raise ConfigError(
            message=f"Error saving config: {e}",
            details={"path": str(config_path)},
        ) from e


def apply_environment(config: SystemConfig) -> SystemConfig:
    """Override database path and credentials from the environment."""
    database_path = os.environ.get(ENV_DATABASE_PATH)
    if database_path:
        config = replace(config, database=replace(config.database, path=Path(database_path)))

    username = os.environ.get(ENV_AUTH_USERNAME)
    password = os.environ.get(ENV_AUTH_PASSWORD)
    if username or password:
        config = replace(
            config,
            auth=AuthConfig(
                username=username or config.auth.username,
                password=password or config.auth.password,
            ),
        )
    return config


def load_stored_config(args: argparse.Namespace) -> tuple[SystemConfig, Path]:
    """
    Load the config file named on the command line, or the default one if it
    exists, or fall back to built-in defaults. Returns the config as stored,
    without environment overrides, and the path settings changes are
    persisted to.
    """
    if args.config:
        config_path = Path(args.config)
        config = load_config_from_file(config_path)
    else:
        config_path = default_config_path()
        if config_path.exists():
            config = load_config_from_file(config_path)
        else:
            config = create_default_config()
    return config, config_path


def resolve_config(args: argparse.Namespace) -> tuple[SystemConfig, Path]:
    """The stored config with environment overrides applied, and its path."""
    stored, config_path = load_stored_config(args)
    return apply_environment(stored), config_path


def build_service(args: argparse.Namespace) -> RotatorService:
    stored, config_path = load_stored_config(args)
    config = apply_environment(stored)
    config.database.path.parent.mkdir(parents=True, exist_ok=True)

    level = "debug" if args.verbose else config.logging.level
    logger = AuditLogger(output_format=config.logging.output_format, level=level)

    def persist(rotation: RotationConfig) -> None:
        # Environment overrides stay out of the file
        save_config_to_file(replace(stored, rotation=rotation), config_path)

    return RotatorService(config, logger=logger, on_settings_change=persist)


def _format_time(timestamp: int) -> str:
    if not timestamp:
        return "-"
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S")


def _print_error(error: RotatorError) -> int:
    print(f"Error [{error.code}]: {error.message}", file=sys.stderr)
    return 1


def cmd_run(args: argparse.Namespace) -> int:
    """Handle the 'run' command."""
    try:
        service = build_service(args)
        service.prepare()
    except RotatorError as e:
        return _print_error(e)

    try:
        asyncio.run(service.run_forever())
    except KeyboardInterrupt:
        print("Stopped.")
    return 0


def cmd_sweep(args: argparse.Namespace) -> int:
    """Handle the 'sweep' command."""
    try:
        service = build_service(args)
        service.migrate()
        report = asyncio.run(service.sweep())
    except RotatorError as e:
        return _print_error(e)

    for outcome in report.outcomes:
        status = "✓" if outcome.success else "✗"
        print(f"  {status} [{outcome.kind}/{outcome.record_id}] {outcome.status_text} "
              f"(attempts: {outcome.attempts})")
    for kind, error in report.kind_errors.items():
        print(f"  ✗ [{kind}] {error}")
    print(f"\nSummary: {report.succeeded} rotated, {report.failed} failed")
    return 0 if report.failed == 0 and not report.kind_errors else 1


def cmd_rotate(args: argparse.Namespace) -> int:
    """Handle the 'rotate' command."""
    try:
        service = build_service(args)
        outcome = asyncio.run(service.rotate_now(args.kind, args.id))
    except RotatorError as e:
        return _print_error(e)

    if not outcome.success:
        return _print_error(outcome.error) if isinstance(outcome.error, RotatorError) else 1

    print(f"Rotated {args.kind}/{args.id}: {outcome.host}:{outcome.port}")
    print(f"  Next update: {_format_time(outcome.next_update_time)}")
    return 0


def cmd_records(args: argparse.Namespace) -> int:
    """Handle the 'records' command."""
    try:
        service = build_service(args)
        summaries = service.list_records()
    except RotatorError as e:
        return _print_error(e)

    if not summaries:
        print("No records found.")
        return 0

    print(f"{'KIND':<12} {'ID':>5}  {'HOST':<30} {'PORT':>6}  {'POOL':>7}  {'PHASE':<9} {'NEXT UPDATE':<19}  STATUS")
    for summary in summaries:
        record = summary.record
        print(
            f"{record.kind:<12} {record.id:>5}  {record.host or '-':<30} {record.port or '-':>6}  "
            f"{str(summary.pool):>7}  {summary.phase.value:<9} "
            f"{_format_time(record.next_update_time):<19}  {record.last_update_status or '-'}"
        )
    return 0


def cmd_domains(args: argparse.Namespace) -> int:
    """Handle the 'domains' command."""
    try:
        service = build_service(args)

        if args.action == "list":
            entries = service.list_domains(args.kind, args.id)
            if not entries:
                print(f"No domains in the pool of {args.kind}/{args.id}.")
            for entry in entries:
                state = "in use" if entry.in_use else "idle"
                print(f"  {entry.id:>5}  {entry.domain:<40} {state:<7} "
                      f"order={entry.order:<4} last used: {_format_time(entry.last_used_time)}")

        elif args.action == "add":
            entry, stats = service.add_domain(args.kind, args.id, args.domain)
            print(f"Added {entry.domain} (id {entry.id}) to {args.kind}/{args.id}. Pool: {stats}")

        elif args.action == "remove":
            entry, stats = service.remove_domain(args.kind, args.id, args.domain_id)
            print(f"Removed {entry.domain} from {args.kind}/{args.id}. Pool: {stats}")

        elif args.action == "all":
            print(json.dumps([e.to_dict() for e in service.list_all_domains()], indent=2))

    except RotatorError as e:
        return _print_error(e)
    return 0


def cmd_set_interval(args: argparse.Namespace) -> int:
    """Handle the 'set-interval' command."""
    try:
        service = build_service(args)
        rotation = service.set_interval(args.hours)
    except RotatorError as e:
        return _print_error(e)

    print(f"Update interval set to {rotation.update_interval_hours}h; all records rescheduled.")
    return 0


def cmd_set_port_range(args: argparse.Namespace) -> int:
    """Handle the 'set-port-range' command."""
    try:
        service = build_service(args)
        rotation = service.set_port_range(args.min, args.max)
    except RotatorError as e:
        return _print_error(e)

    print(f"Port range set to {rotation.port_min}-{rotation.port_max}.")
    return 0


def cmd_init_db(args: argparse.Namespace) -> int:
    """Handle the 'init-db' command."""
    try:
        service = build_service(args)
        service.migrate(create_tables=True)
        inserted = service.seed_domains(sample_records=args.sample)
        marked = service.reconcile()
    except RotatorError as e:
        return _print_error(e)

    print(f"Database initialized at {service.database.path}")
    print(f"  Seeded domain entries: {inserted}")
    print(f"  Entries in use: {marked}")
    return 0


def cmd_reconcile(args: argparse.Namespace) -> int:
    """Handle the 'reconcile' command."""
    try:
        service = build_service(args)
        marked = service.reconcile()
    except RotatorError as e:
        return _print_error(e)

    print(f"Pool usage reconciled; {marked} entries in use.")
    return 0


def cmd_self_test(args: argparse.Namespace) -> int:
    """Handle the 'self-test' command."""
    try:
        config, _ = resolve_config(args)
    except RotatorError as e:
        return _print_error(e)

    result = asyncio.run(run_self_test(config=config, print_output=True))
    return 0 if result.success else 1


def cmd_config(args: argparse.Namespace) -> int:
    """Handle the 'config' command."""
    config_path = Path(args.path) if args.path else default_config_path()

    if args.action == "show":
        if not config_path.exists():
            print(f"No configuration found at: {config_path}")
            print("Use 'config init' to create a default configuration.")
            return 1
        try:
            config = apply_environment(load_config_from_file(config_path))
        except RotatorError as e:
            return _print_error(e)

        print(f"Configuration from: {config_path}")
        print(f"  Database: {config.database.path}")
        print(f"  Kinds: {', '.join(f'{k.kind}={k.table}' for k in config.kinds)}")
        print(f"  Update interval: {config.rotation.update_interval_hours}h")
        print(f"  Port range: {config.rotation.port_min}-{config.rotation.port_max}")
        print(f"  Cooldown: {config.rotation.cooldown_seconds}s")
        print(f"  Sweep schedule: {config.scheduler.sweep_cron}")
        print(f"  Retry attempts: {config.retry.max_attempts}")
        print(f"  Panel user: {config.auth.username}")
        print(f"  Log level: {config.logging.level}")
        return 0

    elif args.action == "init":
        if config_path.exists() and not args.force:
            print(f"Configuration already exists at: {config_path}")
            print("Use --force to overwrite.")
            return 1
        try:
            save_config_to_file(create_default_config(), config_path)
        except RotatorError as e:
            return _print_error(e)
        print(f"Configuration created at: {config_path}")
        return 0

    elif args.action == "validate":
        try:
            config = load_config_from_file(config_path)
            validate_interval(config.rotation.update_interval_hours)
            validate_port_range(config.rotation.port_min, config.rotation.port_max)
        except RotatorError as e:
            return _print_error(e)
        print(f"Configuration at {config_path} is valid.")
        return 0

    return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="domain-rotator",
        description="Port and domain rotation for managed proxy endpoints",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config", "-c",
        help=f"Path to configuration file (default: ${ENV_CONFIG_PATH} or ~/.domain_rotator/config.json)",
    )
    common.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser(
        "run", parents=[common], help="Reconcile, then rotate due records on the sweep schedule",
    )
    run_parser.set_defaults(func=cmd_run)

    sweep_parser = subparsers.add_parser(
        "sweep", parents=[common], help="Rotate all due records once",
    )
    sweep_parser.set_defaults(func=cmd_sweep)

    rotate_parser = subparsers.add_parser(
        "rotate", parents=[common], help="Rotate one record now",
    )
    rotate_parser.add_argument("kind", help="Record kind (e.g., vless)")
    rotate_parser.add_argument("id", type=int, help="Record id")
    rotate_parser.set_defaults(func=cmd_rotate)

    records_parser = subparsers.add_parser(
        "records", parents=[common], help="List records with pool counts and rotation phase",
    )
    records_parser.set_defaults(func=cmd_records)

    domains_parser = subparsers.add_parser(
        "domains", help="Domain pool management",
    )
    domain_actions = domains_parser.add_subparsers(dest="action", required=True)

    list_parser = domain_actions.add_parser("list", parents=[common], help="List a record's pool")
    list_parser.add_argument("kind")
    list_parser.add_argument("id", type=int)

    add_parser = domain_actions.add_parser("add", parents=[common], help="Add a domain to a record's pool")
    add_parser.add_argument("kind")
    add_parser.add_argument("id", type=int)
    add_parser.add_argument("domain", help="Domain to add (e.g., cdn.example.com)")

    remove_parser = domain_actions.add_parser(
        "remove", parents=[common], help="Remove an idle domain from a record's pool",
    )
    remove_parser.add_argument("kind")
    remove_parser.add_argument("id", type=int)
    remove_parser.add_argument("domain_id", type=int, help="Pool entry id (see 'domains list')")

    domain_actions.add_parser("all", parents=[common], help="Dump every pool entry as JSON")
    domains_parser.set_defaults(func=cmd_domains)

    interval_parser = subparsers.add_parser(
        "set-interval", parents=[common], help="Change the rotation interval and reschedule all records",
    )
    interval_parser.add_argument("hours", type=int, help="Interval in hours (> 0)")
    interval_parser.set_defaults(func=cmd_set_interval)

    port_range_parser = subparsers.add_parser(
        "set-port-range", parents=[common], help="Change the port range for new ports",
    )
    port_range_parser.add_argument("min", type=int, help="Lowest port (> 0)")
    port_range_parser.add_argument("max", type=int, help="Highest port (> min)")
    port_range_parser.set_defaults(func=cmd_set_port_range)

    init_db_parser = subparsers.add_parser(
        "init-db", parents=[common], help="Create tables, seed empty pools and reconcile usage",
    )
    init_db_parser.add_argument(
        "--sample",
        action="store_true",
        help="Insert a sample record into empty record tables",
    )
    init_db_parser.set_defaults(func=cmd_init_db)

    reconcile_parser = subparsers.add_parser(
        "reconcile", parents=[common], help="Rebuild pool usage from the records' current hosts",
    )
    reconcile_parser.set_defaults(func=cmd_reconcile)

    self_test_parser = subparsers.add_parser(
        "self-test", parents=[common], help="Validate configuration, database and current hosts",
    )
    self_test_parser.set_defaults(func=cmd_self_test)

    config_parser = subparsers.add_parser(
        "config", help="Configuration management",
    )
    config_parser.add_argument(
        "action",
        choices=["show", "init", "validate"],
        help="Configuration action",
    )
    config_parser.add_argument(
        "--path", "-p",
        help="Path to configuration file",
    )
    config_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Force overwrite existing configuration",
    )
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    load_dotenv()

    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
