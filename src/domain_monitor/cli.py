"""
Command-line interface for the domain monitor.

Commands:
- add / list / verify / remove / archive / instructions: tracked domains
- worker / sweep: auto-verify polling and the re-verification sweep
- revalidate: refresh one section of a domain report
- serve: cron trigger endpoint
- preferences / override: notification settings
- config: configuration management
"""

import argparse
import asyncio
import json
import os
import signal
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from . import __version__
from .audit_logger import AuditLogger
from .config import (
    AutoVerifyConfig,
    CronConfig,
    EmailConfig,
    LoggingConfig,
    NotificationConfig,
    PersistenceConfig,
    RdapConfig,
    RetryConfig,
    SweepConfig,
    SystemConfig,
    VerificationConfig,
)
from .enums import NotificationCategory, Section
from .exceptions import DomainMonitorError
from .models import NotificationToggle, TrackedDomain
from .services import MonitorServices, create_logger, create_services
from .verification import build_verification_instructions

DEFAULT_HOME = Path.home() / ".domain_monitor"
DEFAULT_HMAC_SECRET = "default-secret-change-me"


def create_default_config(
    simulation_mode: bool = False,
    state_file: Optional[Path] = None,
    hmac_secret: str = DEFAULT_HMAC_SECRET,
) -> SystemConfig:
    if state_file is None:
        state_file = DEFAULT_HOME / "state.json"

    return SystemConfig(
        persistence=PersistenceConfig(
            state_file_path=state_file,
            hmac_secret=hmac_secret,
        ),
        logging=LoggingConfig(
            level="info",
            output_format="text",
        ),
        simulation_mode=simulation_mode,
    )


def _section(data: dict, key: str) -> dict:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise TypeError(f"'{key}' must be an object")
    return value


def load_config_from_file(config_path: Path) -> Optional[SystemConfig]:
    """
    Load configuration from a JSON file. Missing keys take their defaults.

    Returns:
        SystemConfig if successful, None otherwise
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        persistence_data = _section(data, "persistence")
        state_file_path = persistence_data.get("state_file_path")
        persistence = PersistenceConfig(
            state_file_path=Path(state_file_path) if state_file_path else DEFAULT_HOME / "state.json",
            hmac_secret=persistence_data.get("hmac_secret", DEFAULT_HMAC_SECRET),
        )

        logging_data = _section(data, "logging")
        logging_config = LoggingConfig(
            level=logging_data.get("level", "info"),
            audit_mode=logging_data.get("audit_mode", False),
            audit_signing_key=logging_data.get("audit_signing_key"),
            output_format=logging_data.get("output_format", "text"),
        )

        verification = VerificationConfig(**_section(data, "verification"))
        auto_verify = AutoVerifyConfig(**_section(data, "auto_verify"))
        sweep = SweepConfig(**_section(data, "sweep"))
        retry = RetryConfig(**_section(data, "retry"))
        cron = CronConfig(**_section(data, "cron"))
        rdap = RdapConfig(**_section(data, "rdap"))

        notifications_data = _section(data, "notifications")
        notifications = NotificationConfig(
            dedup_window_days=notifications_data.get("dedup_window_days", 30),
        )
        email_data = notifications_data.get("email") or {}
        if email_data.get("enabled") and email_data.get("smtp_host"):
            notifications.email = EmailConfig(
                smtp_host=email_data["smtp_host"],
                smtp_port=email_data.get("smtp_port", 587),
                username=email_data.get("username", ""),
                password=email_data.get("password", ""),
                from_address=email_data.get("from_address", ""),
                to_addresses=email_data.get("to_addresses", []),
            )

        return SystemConfig(
            persistence=persistence,
            logging=logging_config,
            verification=verification,
            auto_verify=auto_verify,
            sweep=sweep,
            retry=retry,
            notifications=notifications,
            cron=cron,
            rdap=rdap,
            simulation_mode=data.get("simulation_mode", False),
        )

    except (json.JSONDecodeError, KeyError, TypeError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return None
    except FileNotFoundError:
        return None


def save_config_to_file(config: SystemConfig, config_path: Path) -> bool:
    """
    Save configuration to a JSON file.

    Returns:
        True if successful, False otherwise
    """
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)

        email = config.notifications.email
        data = {
            "persistence": {
                "state_file_path": str(config.persistence.state_file_path),
                "hmac_secret": config.persistence.hmac_secret,
            },
            "logging": asdict(config.logging),
            "verification": asdict(config.verification),
            "auto_verify": asdict(config.auto_verify),
            "sweep": asdict(config.sweep),
            "retry": asdict(config.retry),
            "notifications": {
                "dedup_window_days": config.notifications.dedup_window_days,
                "email": dict(asdict(email), enabled=True) if email else {"enabled": False},
            },
            "cron": asdict(config.cron),
            "rdap": asdict(config.rdap),
            "simulation_mode": config.simulation_mode,
        }

        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

        return True

    except (OSError, TypeError) as e:
        print(f"Error saving config: {e}", file=sys.stderr)
        return False


def apply_env_overrides(
    config: SystemConfig,
    environ: Optional[Mapping[str, str]] = None,
) -> SystemConfig:
    """
    Apply environment overrides on top of ``config`` (in place).

    Raises:
        ValueError: If VERIFICATION_GRACE_PERIOD_DAYS is not an integer
    """
    env = os.environ if environ is None else environ

    if env.get("CRON_SECRET"):
        config.cron.secret = env["CRON_SECRET"]
    if env.get("VERIFICATION_GRACE_PERIOD_DAYS"):
        config.sweep.grace_period_days = int(env["VERIFICATION_GRACE_PERIOD_DAYS"])
    if env.get("DOMAIN_MONITOR_STATE_FILE"):
        config.persistence.state_file_path = Path(env["DOMAIN_MONITOR_STATE_FILE"])
    if env.get("DOMAIN_MONITOR_HMAC_SECRET"):
        config.persistence.hmac_secret = env["DOMAIN_MONITOR_HMAC_SECRET"]
    if env.get("EXTERNAL_USER_AGENT"):
        config.verification.user_agent = env["EXTERNAL_USER_AGENT"]
    return config


def resolve_config(args: argparse.Namespace) -> Optional[SystemConfig]:
    """Config file (or defaults), then .env/environment, then --dry-run."""
    load_dotenv()

    config = None
    if args.config:
        config = load_config_from_file(Path(args.config))
        if config is None:
            print(f"Error: Could not load config from {args.config}", file=sys.stderr)
            return None
    if config is None:
        config = create_default_config()

    try:
        apply_env_overrides(config)
    except ValueError as e:
        print(f"Error: Invalid environment override: {e}", file=sys.stderr)
        return None

    if getattr(args, "dry_run", False):
        config.simulation_mode = True
    return config


def build_services(args: argparse.Namespace, long_running: bool = False) -> Optional[MonitorServices]:
    config = resolve_config(args)
    if config is None:
        return None

    logger = None
    if getattr(args, "verbose", False):
        logger = AuditLogger(output_format="text")
    elif long_running:
        logger = create_logger(config)

    return create_services(config, logger=logger)


def _print_domain(domain: TrackedDomain) -> None:
    status = domain.verification_status.value
    if domain.archived_at:
        status += ", archived"
    method = f" via {domain.verification_method.value}" if domain.verification_method else ""
    print(f"{domain.id}  {domain.domain_name}  [{status}{method}]")


def _print_instructions(domain: TrackedDomain, services: MonitorServices) -> None:
    instructions = build_verification_instructions(
        domain.domain_name,
        domain.verification_token or "",
        services.config.verification,
    )
    print(f"Verify ownership of {domain.domain_name} with any one of:")
    print(f"  DNS TXT   {instructions.dns_host}  ->  {instructions.dns_value}")
    print(f"            (or on {instructions.dns_legacy_host})")
    print(f"  HTML file {instructions.html_file_url}")
    print(f"            containing: {instructions.html_file_content}")
    print(f"  Meta tag  {instructions.meta_tag}")


def _parse_toggle(value: Optional[str], current: bool) -> bool:
    if value is None:
        return current
    return value == "on"


def cmd_add(args: argparse.Namespace) -> int:
    services = build_services(args)
    if services is None:
        return 1

    try:
        domain_name = services.validator.require_valid(args.domain)
        domain = services.store.add_tracked_domain(args.user, domain_name)
    except DomainMonitorError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    record = services.scheduler.schedule(domain.id)
    print(f"Tracking {domain.domain_name} (id {domain.id})")
    _print_instructions(domain, services)
    print(f"Automatic verification starts at {record.next_due_at} (run 'worker' to process it).")
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    services = build_services(args)
    if services is None:
        return 1

    domains = services.store.list_tracked_domains(args.user)
    if args.json:
        print(json.dumps(
            [
                {
                    "id": d.id,
                    "domain": d.domain_name,
                    "verified": d.verified,
                    "status": d.verification_status.value,
                    "method": d.verification_method.value if d.verification_method else None,
                    "archived_at": d.archived_at,
                }
                for d in domains
            ],
            indent=2,
        ))
        return 0

    if not domains:
        print("No tracked domains.")
        return 0
    for domain in domains:
        _print_domain(domain)
    return 0


async def _verify_now(services: MonitorServices, tracked_domain_id: str, method: Optional[str]) -> int:
    domain = services.store.require_tracked_domain(tracked_domain_id)
    if domain.verified:
        print(f"{domain.domain_name} is already verified.")
        return 0

    result = await services.engine.verify(domain.domain_name, domain.verification_token or "", method)
    if result.is_validation_failure:
        print(f"Error: {result.error.message}", file=sys.stderr)
        return 2
    if not result.verified:
        print(f"{domain.domain_name} could not be verified yet.")
        return 1

    services.store.verify_tracked_domain(domain.id, result.method, expected_version=domain.version)
    print(f"{domain.domain_name} verified via {result.method.value}.")
    await services.change_monitor.initialize_snapshot(domain)
    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    services = build_services(args)
    if services is None:
        return 1
    try:
        return asyncio.run(_verify_now(services, args.id, args.method))
    except DomainMonitorError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1


def cmd_remove(args: argparse.Namespace) -> int:
    services = build_services(args)
    if services is None:
        return 1
    if not services.store.delete_tracked_domain(args.id):
        print(f"Error: No tracked domain with id {args.id}", file=sys.stderr)
        return 1
    print(f"Removed {args.id}")
    return 0


def cmd_archive(args: argparse.Namespace) -> int:
    services = build_services(args)
    if services is None:
        return 1
    try:
        if args.undo:
            domain = services.store.unarchive_tracked_domain(args.id)
        else:
            domain = services.store.archive_tracked_domain(args.id)
    except DomainMonitorError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    _print_domain(domain)
    return 0


def cmd_instructions(args: argparse.Namespace) -> int:
    services = build_services(args)
    if services is None:
        return 1
    try:
        domain = services.store.require_tracked_domain(args.id)
    except DomainMonitorError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    _print_instructions(domain, services)
    return 0


async def _run_worker(services: MonitorServices) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # not available on Windows event loops
            pass
    await services.scheduler.run_worker(stop)


def cmd_worker(args: argparse.Namespace) -> int:
    services = build_services(args, long_running=not args.once)
    if services is None:
        return 1

    if args.once:
        report = asyncio.run(services.scheduler.poll_due())
        print(json.dumps(report.to_dict(), indent=2))
        return 0 if report.failed == 0 else 1

    asyncio.run(_run_worker(services))
    return 0


def cmd_sweep(args: argparse.Namespace) -> int:
    services = build_services(args)
    if services is None:
        return 1
    report = asyncio.run(services.sweep.run())
    print(json.dumps(report.to_dict(), indent=2))
    return 0 if report.failed == 0 else 1


def cmd_revalidate(args: argparse.Namespace) -> int:
    services = build_services(args)
    if services is None:
        return 1
    result = asyncio.run(services.dispatcher.revalidate(args.domain, args.section))
    print(json.dumps(result.to_dict(), indent=2))
    if args.verbose and result.data is not None:
        print(json.dumps(asdict(result.data) if hasattr(result.data, "__dataclass_fields__") else result.data,
                         indent=2, default=str))
    return 0 if result.success else 1


def cmd_serve(args: argparse.Namespace) -> int:
    from .cron import create_app

    services = build_services(args, long_running=True)
    if services is None:
        return 1
    if not services.config.cron.secret:
        print("Error: CRON_SECRET is not set; every request would be rejected.", file=sys.stderr)
        return 1

    app = create_app(services)
    app.run(
        host=args.host or services.config.cron.host,
        port=args.port or services.config.cron.port,
    )
    return 0


def cmd_preferences(args: argparse.Namespace) -> int:
    services = build_services(args)
    if services is None:
        return 1

    if args.category:
        category = NotificationCategory(args.category)
        current = services.store.get_user_preference(args.user, category)
        services.store.set_user_preference(
            args.user,
            category,
            NotificationToggle(
                email=_parse_toggle(args.email, current.email),
                in_app=_parse_toggle(args.in_app, current.in_app),
            ),
        )

    for category in NotificationCategory:
        toggle = services.store.get_user_preference(args.user, category)
        print(f"{category.value:<22} email={'on' if toggle.email else 'off':<3} in_app={'on' if toggle.in_app else 'off'}")
    return 0


def cmd_override(args: argparse.Namespace) -> int:
    services = build_services(args)
    if services is None:
        return 1

    category = NotificationCategory(args.category) if args.category else None
    try:
        if args.reset:
            services.store.reset_notification_overrides(args.id, category)
        else:
            if category is None:
                print("Error: --category is required unless --reset is given", file=sys.stderr)
                return 1
            domain = services.store.require_tracked_domain(args.id)
            base = domain.notification_overrides.get(category.value) or services.store.get_user_preference(
                domain.owner_user_id, category
            )
            services.store.set_notification_override(
                args.id,
                category,
                NotificationToggle(
                    email=_parse_toggle(args.email, base.email),
                    in_app=_parse_toggle(args.in_app, base.in_app),
                ),
            )
        domain = services.store.require_tracked_domain(args.id)
    except DomainMonitorError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    if not domain.notification_overrides:
        print(f"{domain.domain_name}: no overrides (global preferences apply)")
    for key, toggle in sorted(domain.notification_overrides.items()):
        print(f"{key:<22} email={'on' if toggle.email else 'off':<3} in_app={'on' if toggle.in_app else 'off'}")
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    """Handle the 'config' command."""
    config_path = Path(args.path) if args.path else DEFAULT_HOME / "config.json"

    if args.action == "show":
        config = load_config_from_file(config_path)
        if config is None:
            print(f"No configuration found at: {config_path}")
            print("Use 'config init' to create a default configuration.")
            return 1

        print(f"Configuration from: {config_path}")
        print(f"  Simulation mode: {config.simulation_mode}")
        print(f"  State file: {config.persistence.state_file_path}")
        print(f"  Log level: {config.logging.level}")
        print(f"  Audit mode: {config.logging.audit_mode}")
        print(f"  Auto-verify delays: {config.auto_verify.delays_seconds}")
        print(f"  Sweep batch size: {config.sweep.batch_size}")
        print(f"  Grace period: {config.sweep.grace_period_days} days")
        print(f"  Email notifications: {'on' if config.notifications.email else 'off'}")
        print(f"  Cron secret set: {bool(config.cron.secret)}")
        return 0

    elif args.action == "init":
        if config_path.exists() and not args.force:
            print(f"Configuration already exists at: {config_path}")
            print("Use --force to overwrite.")
            return 1

        if save_config_to_file(create_default_config(), config_path):
            print(f"Configuration created at: {config_path}")
            return 0
        return 1

    elif args.action == "validate":
        config = load_config_from_file(config_path)
        if config is None:
            print(f"Error: Could not load config from {config_path}", file=sys.stderr)
            return 1
        if config.sweep.batch_size < 1 or not config.auto_verify.delays_seconds:
            print("Error: sweep.batch_size must be >= 1 and auto_verify.delays_seconds non-empty", file=sys.stderr)
            return 1

        print(f"Configuration at {config_path} is valid.")
        return 0

    return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="domain-monitor",
        description="Domain ownership verification and change monitoring",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", "-c", help="Path to configuration file")
    common.add_argument("--verbose", "-v", action="store_true", help="Enable verbose output")
    common.add_argument("--dry-run", action="store_true", help="Simulation mode - no email or RDAP traffic")

    user = argparse.ArgumentParser(add_help=False)
    user.add_argument(
        "--user", "-u",
        default=os.environ.get("DOMAIN_MONITOR_USER", "local"),
        help="Owning user id (default: $DOMAIN_MONITOR_USER or 'local')",
    )

    toggles = argparse.ArgumentParser(add_help=False)
    toggles.add_argument("--category", choices=[c.value for c in NotificationCategory])
    toggles.add_argument("--email", choices=["on", "off"])
    toggles.add_argument("--in-app", choices=["on", "off"])

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    add_parser = subparsers.add_parser("add", parents=[common, user], help="Track a domain")
    add_parser.add_argument("domain", help="Domain to track (e.g., example.com)")
    add_parser.set_defaults(func=cmd_add)

    list_parser = subparsers.add_parser("list", parents=[common, user], help="List tracked domains")
    list_parser.add_argument("--json", action="store_true", help="Print JSON")
    list_parser.set_defaults(func=cmd_list)

    verify_parser = subparsers.add_parser("verify", parents=[common], help="Verify a tracked domain now")
    verify_parser.add_argument("id", help="Tracked domain id")
    verify_parser.add_argument("--method", help="dns_txt, html_file or meta_tag (default: try all)")
    verify_parser.set_defaults(func=cmd_verify)

    remove_parser = subparsers.add_parser("remove", parents=[common], help="Stop tracking a domain")
    remove_parser.add_argument("id", help="Tracked domain id")
    remove_parser.set_defaults(func=cmd_remove)

    archive_parser = subparsers.add_parser("archive", parents=[common], help="Archive a tracked domain")
    archive_parser.add_argument("id", help="Tracked domain id")
    archive_parser.add_argument("--undo", action="store_true", help="Unarchive instead")
    archive_parser.set_defaults(func=cmd_archive)

    instructions_parser = subparsers.add_parser(
        "instructions", parents=[common], help="Show verification instructions",
    )
    instructions_parser.add_argument("id", help="Tracked domain id")
    instructions_parser.set_defaults(func=cmd_instructions)

    worker_parser = subparsers.add_parser("worker", parents=[common], help="Run the auto-verify worker")
    worker_parser.add_argument("--once", action="store_true", help="Process due slots once and exit")
    worker_parser.set_defaults(func=cmd_worker)

    sweep_parser = subparsers.add_parser("sweep", parents=[common], help="Run one re-verification sweep")
    sweep_parser.set_defaults(func=cmd_sweep)

    revalidate_parser = subparsers.add_parser(
        "revalidate", parents=[common], help="Refresh one section of a domain report",
    )
    revalidate_parser.add_argument("domain", help="Domain name")
    revalidate_parser.add_argument("section", choices=[s.value for s in Section])
    revalidate_parser.set_defaults(func=cmd_revalidate)

    serve_parser = subparsers.add_parser("serve", parents=[common], help="Serve the cron trigger endpoints")
    serve_parser.add_argument("--host", help="Bind address")
    serve_parser.add_argument("--port", type=int, help="Port")
    serve_parser.set_defaults(func=cmd_serve)

    preferences_parser = subparsers.add_parser(
        "preferences", parents=[common, user, toggles], help="Show or set global notification preferences",
    )
    preferences_parser.set_defaults(func=cmd_preferences)

    override_parser = subparsers.add_parser(
        "override", parents=[common, toggles], help="Per-domain notification overrides",
    )
    override_parser.add_argument("id", help="Tracked domain id")
    override_parser.add_argument("--reset", action="store_true", help="Remove overrides (one category or all)")
    override_parser.set_defaults(func=cmd_override)

    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_parser.add_argument("action", choices=["show", "init", "validate"], help="Configuration action")
    config_parser.add_argument("--path", "-p", help="Path to configuration file")
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

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
