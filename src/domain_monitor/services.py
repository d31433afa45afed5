"""
Wiring for the domain monitor.

Builds every component from a SystemConfig and hands them out together, so
the CLI and the cron app share one construction path. Tests pass an httpx
transport and a host resolver to keep everything offline.
"""

from dataclasses import dataclass
from typing import Optional

import httpx

from .audit_logger import AuditLogger
from .auto_verify import AutoVerifyScheduler
from .config import SystemConfig
from .dns_resolver import DohResolver
from .domain_validator import DomainValidator
from .expiry import ExpiryMonitor
from .fetchers import LiveSnapshotSource, SectionFetchers
from .monitoring import ChangeMonitor
from .notifications import EmailChannel, NotificationService
from .rdap_client import RDAPClient
from .reverification import ReverificationSweep
from .revalidation import SectionRevalidateDispatcher
from .safe_fetch import GuardedFetcher, HostResolver
from .state_store import StateStore
from .verification import VerificationEngine
from .workflow import Clock, SystemClock


@dataclass
class MonitorServices:
    """Every long-lived component, built from one configuration."""

    config: SystemConfig
    store: StateStore
    validator: DomainValidator
    engine: VerificationEngine
    scheduler: AutoVerifyScheduler
    notifier: NotificationService
    change_monitor: ChangeMonitor
    sweep: ReverificationSweep
    dispatcher: SectionRevalidateDispatcher
    logger: Optional[AuditLogger] = None


def create_logger(config: SystemConfig) -> AuditLogger:
    logger = AuditLogger.from_level_name(
        config.logging.level,
        output_format=config.logging.output_format,
    )
    if config.logging.audit_mode and config.logging.audit_signing_key:
        logger.enable_audit_mode(config.logging.audit_signing_key)
    return logger


def create_services(
    config: SystemConfig,
    logger: Optional[AuditLogger] = None,
    clock: Optional[Clock] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    resolve_host: Optional[HostResolver] = None,
) -> MonitorServices:
    """
    Build the component graph for ``config``.

    Raises:
        NotificationError: If an email channel is configured but incomplete
    """
    clock = clock or SystemClock()
    config.persistence.state_file_path.parent.mkdir(parents=True, exist_ok=True)

    store = StateStore(
        file_path=config.persistence.state_file_path,
        hmac_secret=config.persistence.hmac_secret,
        clock=clock,
    )
    fetcher = GuardedFetcher(transport=transport, resolve_host=resolve_host, logger=logger)
    resolver = DohResolver(
        timeout_ms=config.verification.dns_timeout_ms,
        transport=transport,
        logger=logger,
    )
    engine = VerificationEngine(fetcher, resolver, config.verification, logger)

    notifier = NotificationService(
        store,
        retry_config=config.retry,
        clock=clock,
        dedup_window_days=config.notifications.dedup_window_days,
        logger=logger,
    )
    if config.notifications.email:
        notifier.register_channel(EmailChannel(config.notifications.email, config.simulation_mode))

    rdap = RDAPClient(
        base_url=config.rdap.base_url,
        timeout=config.rdap.timeout_seconds,
        transport=transport,
        simulation_mode=config.simulation_mode,
        logger=logger,
    )
    fetchers = SectionFetchers(
        resolver,
        fetcher,
        rdap,
        config=config.verification,
        resolve_host=resolve_host,
        logger=logger,
    )
    validator = DomainValidator()
    change_monitor = ChangeMonitor(
        store,
        LiveSnapshotSource(fetchers, store=store, logger=logger),
        notifier=notifier,
        clock=clock,
        logger=logger,
    )

    return MonitorServices(
        config=config,
        store=store,
        validator=validator,
        engine=engine,
        scheduler=AutoVerifyScheduler(
            store, engine, config.auto_verify, clock, logger, change_monitor=change_monitor,
        ),
        notifier=notifier,
        change_monitor=change_monitor,
        sweep=ReverificationSweep(
            store,
            engine,
            notifier=notifier,
            change_monitor=change_monitor,
            config=config.sweep,
            clock=clock,
            logger=logger,
            expiry_monitor=ExpiryMonitor(store, notifier, clock=clock, logger=logger),
        ),
        dispatcher=SectionRevalidateDispatcher(fetchers, validator, logger),
        logger=logger,
    )
