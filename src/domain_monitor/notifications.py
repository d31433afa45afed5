"""
Notification delivery for the domain monitor system.

Resolves which channels a notification may use, records in-app
notifications (which double as the deduplication ledger), and delivers email
through registered channels with exponential-backoff retries.
"""

import asyncio
import smtplib
import ssl
import uuid
from abc import abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, Protocol, runtime_checkable

from .config import EmailConfig, RetryConfig
from .enums import LogLevel, NotificationCategory, NotificationType
from .exceptions import NotificationError
from .models import Notification, NotificationToggle
from .retry_manager import RetryManager
from .workflow import Clock, SystemClock, to_iso

if TYPE_CHECKING:
    from .audit_logger import AuditLogger
    from .state_store import StateStore


@dataclass
class NotificationPayload:
    """A message about one tracked domain."""

    tracked_domain_id: str
    user_id: str
    domain: str
    category: NotificationCategory
    type: NotificationType
    title: str
    message: str
    data: dict = field(default_factory=dict)


@dataclass
class NotificationResult:
    """Result of a notification delivery attempt on one channel."""

    channel: str
    success: bool
    error: Optional[str] = None
    attempts: int = 1


@dataclass
class DeliveryReport:
    """What happened to one notify() call."""

    skipped_reason: Optional[str] = None  # 'disabled', 'duplicate'
    in_app: bool = False
    email_results: list[NotificationResult] = field(default_factory=list)

    @property
    def delivered(self) -> bool:
        return self.skipped_reason is None and (
            self.in_app or any(r.success for r in self.email_results)
        )


@runtime_checkable
class NotificationChannel(Protocol):
    """Protocol defining the interface for email-style notification channels."""

    @abstractmethod
    async def send(self, payload: NotificationPayload) -> bool:
        """Deliver ``payload``; True on success."""
        ...

    @abstractmethod
    def get_name(self) -> str:
        ...


class EmailChannel:
    """Email notification channel using SMTP."""

    def __init__(
        self, config: EmailConfig, simulation_mode: bool = False
    ) -> None:
        """
        Args:
            config: Email configuration with SMTP settings
            simulation_mode: If True, no real network requests are made
        """
        if not config.smtp_host or not config.from_address:
            raise NotificationError(
                code="email_not_configured",
                message="Email channel needs smtp_host and from_address",
                details={"smtp_host": config.smtp_host},
            )
        self._config = config
        self._simulation_mode = simulation_mode

    async def send(self, payload: NotificationPayload) -> bool:
        if self._simulation_mode:
            return True

        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._send_sync, payload)
        except (OSError, smtplib.SMTPException):
            return False

    def _send_sync(self, payload: NotificationPayload) -> bool:
        msg = self._format_email(payload)
        context = ssl.create_default_context()
        with smtplib.SMTP(self._config.smtp_host, self._config.smtp_port, timeout=30) as server:
            server.starttls(context=context)
            if self._config.username:
                server.login(self._config.username, self._config.password)
            server.sendmail(
                self._config.from_address,
                self._config.to_addresses,
                msg.as_string(),
            )
        return True

    def get_name(self) -> str:
        return "email"

    def _format_email(self, payload: NotificationPayload) -> MIMEMultipart:
        lines = [payload.message, "", f"Domain: {payload.domain}"]
        for key, value in payload.data.items():
            lines.append(f"{key}: {value}")

        msg = MIMEMultipart()
        msg["From"] = self._config.from_address
        msg["To"] = ", ".join(self._config.to_addresses)
        msg["Subject"] = payload.title
        msg.attach(MIMEText("\n".join(lines) + "\n", "plain"))
        return msg


class NotificationChannelResolver:
    """
    Effective email/in-app flags for a tracked domain and category.

    A per-domain override replaces the user's global preference for that
    category outright; the two are never merged field by field.
    """

    def __init__(self, store: "StateStore") -> None:
        self._store = store

    def resolve(
        self,
        tracked_domain_id: str,
        category: NotificationCategory,
    ) -> NotificationToggle:
        domain = self._store.find_tracked_domain_by_id(tracked_domain_id)
        if domain is None:
            # unknown domain: send nothing
            return NotificationToggle(email=False, in_app=False)

        override = domain.notification_overrides.get(category.value)
        if override is not None:
            return NotificationToggle(email=override.email, in_app=override.in_app)

        return self._store.get_user_preference(domain.owner_user_id, category)


class NotificationService:
    """
    Resolves channels, deduplicates and delivers notifications.

    In-app notifications are written to the store. Email goes to every
    registered channel, each with its own retry budget.
    """

    def __init__(
        self,
        store: "StateStore",
        retry_config: Optional[RetryConfig] = None,
        resolver: Optional[NotificationChannelResolver] = None,
        clock: Optional[Clock] = None,
        dedup_window_days: int = 30,
        logger: Optional["AuditLogger"] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._resolver = resolver or NotificationChannelResolver(store)
        self._retry = RetryManager(retry_config or RetryConfig(), sleep=sleep)
        self._clock = clock or SystemClock()
        self._dedup_window = timedelta(days=dedup_window_days)
        self._logger = logger
        self._channels: list[NotificationChannel] = []

    def register_channel(self, channel: NotificationChannel) -> None:
        self._channels.append(channel)

    @property
    def channels(self) -> list[NotificationChannel]:
        return self._channels.copy()

    async def notify(
        self,
        payload: NotificationPayload,
        dedupe: bool = True,
    ) -> DeliveryReport:
        """
        Deliver ``payload`` on the channels its category allows.

        Args:
            payload: The notification
            dedupe: Skip if the same type was sent for this domain within
                the dedup window

        Returns:
            DeliveryReport describing what was sent
        """
        toggle = self._resolver.resolve(payload.tracked_domain_id, payload.category)
        if not toggle.email and not toggle.in_app:
            return DeliveryReport(skipped_reason="disabled")

        now = self._clock.now()
        if dedupe and self._store.has_recent_notification(
            payload.tracked_domain_id,
            payload.type.value,
            since=now - self._dedup_window,
        ):
            return DeliveryReport(skipped_reason="duplicate")

        self._store.record_notification(Notification(
            id=uuid.uuid4().hex,
            user_id=payload.user_id,
            tracked_domain_id=payload.tracked_domain_id,
            type=payload.type.value,
            category=payload.category,
            title=payload.title,
            message=payload.message,
            created_at=to_iso(now),
            data=dict(payload.data, in_app=toggle.in_app, email=toggle.email),
        ))

        report = DeliveryReport(in_app=toggle.in_app)
        if toggle.email:
            for channel in self._channels:
                report.email_results.append(await self._send_with_retry(channel, payload))
        return report

    def list_in_app(self, user_id: str) -> list[Notification]:
        """The user's in-app feed, newest first."""
        return [
            n for n in self._store.list_notifications(user_id)
            if n.data.get("in_app", True)
        ]

    async def _send_with_retry(
        self,
        channel: NotificationChannel,
        payload: NotificationPayload,
    ) -> NotificationResult:
        channel_name = channel.get_name()

        async def attempt() -> bool:
            if not await channel.send(payload):
                raise NotificationError(
                    code="channel_failure",
                    message="Channel returned failure",
                    details={"channel": channel_name},
                )
            return True

        outcome = await self._retry.execute_with_retry(attempt)
        if outcome.success:
            return NotificationResult(channel=channel_name, success=True, attempts=outcome.attempts)

        self._log_all_retries_failed(channel_name, payload, outcome.errors)
        return NotificationResult(
            channel=channel_name,
            success=False,
            error=str(outcome.last_error) if outcome.last_error else None,
            attempts=outcome.attempts,
        )

    def _log_all_retries_failed(
        self,
        channel_name: str,
        payload: NotificationPayload,
        errors: list[str],
    ) -> None:
        if self._logger is None:
            return

        self._logger.log(
            level=LogLevel.ERROR,
            component="NotificationService",
            message=f"All notification retries failed for channel '{channel_name}'",
            data={
                "channel": channel_name,
                "domain": payload.domain,
                "tracked_domain_id": payload.tracked_domain_id,
                "type": payload.type.value,
                "total_attempts": len(errors),
                "attempts": [
                    {"attempt": i + 1, "error": error}
                    for i, error in enumerate(errors)
                ],
            },
        )
