"""
Configuration dataclasses for the domain monitor system.

This module defines all configuration structures used throughout the system,
including verification checks, the auto-verify backoff schedule, the
re-verification sweep, notifications, persistence, and logging.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


@dataclass
class VerificationConfig:
    """Ownership-proof conventions and per-check limits."""

    dns_prefix: str = "domainstack-verify="
    dns_legacy_host: str = "_domainstack-verify"
    html_dir: str = "/.well-known/domainstack-verify"
    html_legacy_path: str = "/.well-known/domainstack-verify.html"
    html_content_prefix: str = "domainstack-verify: "
    meta_tag_name: str = "domainstack-verify"
    file_timeout_ms: int = 5000
    file_max_bytes: int = 1024
    file_max_redirects: int = 3
    meta_timeout_ms: int = 10000
    meta_max_bytes: int = 512 * 1024
    meta_max_redirects: int = 5
    dns_timeout_ms: int = 5000
    user_agent: str = "domain-monitor/0.1 (+ownership-verification)"


@dataclass
class AutoVerifyConfig:
    """Backoff schedule for automatic verification after a domain is added."""

    # 1m, 3m, 10m, 30m, 1h
    delays_seconds: list[int] = field(
        default_factory=lambda: [60, 180, 600, 1800, 3600]
    )
    poll_interval_seconds: float = 15.0


@dataclass
class SweepConfig:
    """Periodic re-verification sweep settings."""

    batch_size: int = 25
    grace_period_days: int = 7
    include_pending: bool = True


@dataclass
class RetryConfig:
    """Retry behavior configuration for notification delivery."""

    max_retries: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 60.0


@dataclass
class EmailConfig:
    """Email notification channel configuration."""

    smtp_host: str
    smtp_port: int
    username: str
    password: str
    from_address: str
    to_addresses: list[str] = field(default_factory=list)


@dataclass
class NotificationConfig:
    """Notification channels configuration."""

    email: Optional[EmailConfig] = None
    dedup_window_days: int = 30


@dataclass
class PersistenceConfig:
    """Persistence and state storage configuration."""

    state_file_path: Path
    hmac_secret: str


@dataclass
class LoggingConfig:
    """Logging and audit configuration."""

    level: str = "info"
    audit_mode: bool = False
    audit_signing_key: Optional[str] = None
    output_format: str = "both"  # 'json', 'text', 'both'


@dataclass
class CronConfig:
    """Cron trigger endpoint configuration."""

    secret: Optional[str] = None
    host: str = "127.0.0.1"
    port: int = 8080


@dataclass
class RdapConfig:
    """RDAP lookups used by the registration section."""

    base_url: str = "https://rdap.org"
    timeout_seconds: float = 10.0


@dataclass
class SystemConfig:
    """Main system configuration combining all sub-configurations."""

    persistence: PersistenceConfig
    logging: LoggingConfig
    verification: VerificationConfig = field(default_factory=VerificationConfig)
    auto_verify: AutoVerifyConfig = field(default_factory=AutoVerifyConfig)
    sweep: SweepConfig = field(default_factory=SweepConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    cron: CronConfig = field(default_factory=CronConfig)
    rdap: RdapConfig = field(default_factory=RdapConfig)
    simulation_mode: bool = False
