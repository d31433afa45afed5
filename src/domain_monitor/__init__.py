"""
Domain Monitor - ownership verification and change monitoring for tracked domains.

Users prove ownership of a domain with a DNS TXT record, an HTML file or a
meta tag. Verified domains are re-checked periodically, and their
registration, certificate and provider data is watched for changes.
"""

__version__ = "0.1.0"
__author__ = "Domain Monitor Team"

from domain_monitor.exceptions import (
    DomainMonitorError,
    ValidationError,
    AuthorizationError,
    NotFoundError,
    TransientNetworkError,
    SafeFetchError,
    ConcurrencyConflict,
    PersistentFailure,
    PersistenceError,
    TamperingError,
    NotificationError,
)
from domain_monitor.enums import (
    LogLevel,
    VerificationMethod,
    VerificationStatus,
    FailureAction,
    NotificationCategory,
    NotificationType,
    Section,
    WorkflowState,
    CancelReason,
    UnitOutcome,
    FetchErrorKind,
    DomainValidationErrorCode,
    RDAPErrorCode,
)
from domain_monitor.config import (
    VerificationConfig,
    AutoVerifyConfig,
    SweepConfig,
    RetryConfig,
    EmailConfig,
    NotificationConfig,
    PersistenceConfig,
    LoggingConfig,
    CronConfig,
    RdapConfig,
    SystemConfig,
)
from domain_monitor.models import (
    NotificationToggle,
    TrackedDomain,
    VerificationFailure,
    VerificationResult,
    RegistrationSnapshot,
    CertificateSnapshot,
    ProviderSnapshot,
    Snapshot,
    WorkflowRecord,
    Notification,
)
from domain_monitor.audit_logger import AuditLogger, ComponentLogger, LogEntry
from domain_monitor.workflow import (
    Clock,
    SystemClock,
    ManualClock,
    WorkflowRun,
    WorkflowStarter,
)
from domain_monitor.domain_validator import (
    DomainValidator,
    DomainValidationResult,
    DomainValidationError,
)
from domain_monitor.state_store import StateStore, generate_verification_token
from domain_monitor.safe_fetch import GuardedFetcher, FetchResult
from domain_monitor.dns_resolver import DohResolver, DohProvider, provider_order_for_lookup
from domain_monitor.verification import (
    VerificationEngine,
    VerificationInstructions,
    build_verification_instructions,
)
from domain_monitor.change_detection import (
    ChangeRecord,
    RegistrationChanges,
    CertificateChanges,
    ProviderChanges,
    detect_changes,
    normalize_status,
    select_leaf_certificate,
)
from domain_monitor.retry_manager import RetryManager, RetryResult
from domain_monitor.notifications import (
    NotificationPayload,
    NotificationChannel,
    EmailChannel,
    NotificationChannelResolver,
    NotificationService,
    DeliveryReport,
)
from domain_monitor.auto_verify import AutoVerifyScheduler, AutoVerifyResult, PollReport
from domain_monitor.monitoring import ChangeMonitor, SnapshotSource
from domain_monitor.reverification import ReverificationSweep, SweepReport, PendingReport
from domain_monitor.rdap_client import RDAPClient, RDAPResponse, RDAPParsedFields
from domain_monitor.fetchers import SectionFetchers, LiveSnapshotSource
from domain_monitor.revalidation import SectionRevalidateDispatcher, SectionResult
from domain_monitor.services import MonitorServices, create_services
from domain_monitor.cli import (
    main as cli_main,
    create_parser,
    create_default_config,
    load_config_from_file,
    save_config_to_file,
)

__all__ = [
    # Version
    "__version__",
    # Exceptions
    "DomainMonitorError",
    "ValidationError",
    "AuthorizationError",
    "NotFoundError",
    "TransientNetworkError",
    "SafeFetchError",
    "ConcurrencyConflict",
    "PersistentFailure",
    "PersistenceError",
    "TamperingError",
    "NotificationError",
    # Enums
    "LogLevel",
    "VerificationMethod",
    "VerificationStatus",
    "FailureAction",
    "NotificationCategory",
    "NotificationType",
    "Section",
    "WorkflowState",
    "CancelReason",
    "UnitOutcome",
    "FetchErrorKind",
    "DomainValidationErrorCode",
    "RDAPErrorCode",
    # Config
    "VerificationConfig",
    "AutoVerifyConfig",
    "SweepConfig",
    "RetryConfig",
    "EmailConfig",
    "NotificationConfig",
    "PersistenceConfig",
    "LoggingConfig",
    "CronConfig",
    "RdapConfig",
    "SystemConfig",
    # Models
    "NotificationToggle",
    "TrackedDomain",
    "VerificationFailure",
    "VerificationResult",
    "RegistrationSnapshot",
    "CertificateSnapshot",
    "ProviderSnapshot",
    "Snapshot",
    "WorkflowRecord",
    "Notification",
    # Logging
    "AuditLogger",
    "ComponentLogger",
    "LogEntry",
    # Workflow
    "Clock",
    "SystemClock",
    "ManualClock",
    "WorkflowRun",
    "WorkflowStarter",
    # Domain Validator
    "DomainValidator",
    "DomainValidationResult",
    "DomainValidationError",
    # State Store
    "StateStore",
    "generate_verification_token",
    # Network
    "GuardedFetcher",
    "FetchResult",
    "DohResolver",
    "DohProvider",
    "provider_order_for_lookup",
    "RDAPClient",
    "RDAPResponse",
    "RDAPParsedFields",
    # Verification
    "VerificationEngine",
    "VerificationInstructions",
    "build_verification_instructions",
    # Change Detection
    "ChangeRecord",
    "RegistrationChanges",
    "CertificateChanges",
    "ProviderChanges",
    "detect_changes",
    "normalize_status",
    "select_leaf_certificate",
    # Retry Manager
    "RetryManager",
    "RetryResult",
    # Notifications
    "NotificationPayload",
    "NotificationChannel",
    "EmailChannel",
    "NotificationChannelResolver",
    "NotificationService",
    "DeliveryReport",
    # Scheduling and Sweep
    "AutoVerifyScheduler",
    "AutoVerifyResult",
    "PollReport",
    "ChangeMonitor",
    "SnapshotSource",
    "ReverificationSweep",
    "SweepReport",
    "PendingReport",
    # Sections
    "SectionFetchers",
    "LiveSnapshotSource",
    "SectionRevalidateDispatcher",
    "SectionResult",
    # Wiring and CLI
    "MonitorServices",
    "create_services",
    "cli_main",
    "create_parser",
    "create_default_config",
    "load_config_from_file",
    "save_config_to_file",
]
