"""
Audit logger for the domain monitor system.

Structured log entries written as JSON lines, human-readable text, or both.
Sensitive values (verification tokens, secrets, credentials) are masked
before an entry is stored or written, and audit mode signs every entry with
HMAC-SHA256 so a log file can be checked for tampering.

There is no module-level logger: an AuditLogger instance is created once by
the caller and handed to every component that logs.
"""

import hashlib
import hmac
import json
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional, TextIO

from domain_monitor.enums import LogLevel


_LEVEL_ORDER = {
    LogLevel.DEBUG: 0,
    LogLevel.INFO: 1,
    LogLevel.WARN: 2,
    LogLevel.ERROR: 3,
}


@dataclass
class LogEntry:
    """One structured log record. ``data`` is already masked."""

    timestamp: str
    level: LogLevel
    component: str
    message: str
    data: dict = field(default_factory=dict)
    signature: Optional[str] = None

    def payload(self) -> dict:
        """Fields covered by the audit signature, in JSON form."""
        return {
            "timestamp": self.timestamp,
            "level": self.level.value,
            "component": self.component,
            "message": self.message,
            "data": self.data,
        }


def format_json(entry: LogEntry) -> str:
    obj = entry.payload()
    if entry.signature:
        obj["signature"] = entry.signature
    return json.dumps(obj, ensure_ascii=False, default=str)


def format_text(entry: LogEntry) -> str:
    # [2025-01-01T00:00:00+00:00] WARN [ReverificationSweep] message {"k": "v"}
    text = f"[{entry.timestamp}] {entry.level.value.upper()} [{entry.component}] {entry.message}"
    if entry.data:
        text += " " + json.dumps(entry.data, ensure_ascii=False, default=str)
    if entry.signature:
        text += f" [sig:{entry.signature[:16]}...]"
    return text


_FORMATTERS: dict[str, tuple[Callable[[LogEntry], str], ...]] = {
    "json": (format_json,),
    "text": (format_text,),
    "both": (format_json, format_text),
}


def _mask(value: Any, is_sensitive: Callable[[str], bool], replacement: str) -> Any:
    if isinstance(value, dict):
        return {
            key: replacement if is_sensitive(str(key)) else _mask(item, is_sensitive, replacement)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_mask(item, is_sensitive, replacement) for item in value]
    return value


class AuditLogger:
    """
    Writes structured entries to a stream and keeps them in memory.

    Entries below ``min_level`` are still recorded in ``entries`` but are not
    written to the output stream.
    """

    # Substrings; any key containing one of these is masked
    SENSITIVE_KEYS = frozenset({
        "token", "secret", "password", "api_key", "auth",
        "credential", "private_key", "signing_key", "cookie",
    })

    MASK_VALUE = "***MASKED***"

    def __init__(
        self,
        output_format: str = "both",
        output_stream: Optional[TextIO] = None,
        min_level: LogLevel = LogLevel.DEBUG,
    ):
        """
        Args:
            output_format: 'json', 'text', or 'both' (JSON line first)
            output_stream: Where entries are written (defaults to sys.stderr)
            min_level: Lowest level written to the stream
        """
        if output_format not in _FORMATTERS:
            raise ValueError(f"Invalid output_format: {output_format}")

        self._formatters = _FORMATTERS[output_format]
        self._stream = output_stream or sys.stderr
        self._min_order = _LEVEL_ORDER[min_level]
        self._signing_key: Optional[bytes] = None
        self._entries: list[LogEntry] = []

    @classmethod
    def from_level_name(
        cls,
        level: str,
        output_format: str = "both",
        output_stream: Optional[TextIO] = None,
    ) -> "AuditLogger":
        """Build a logger from a configured level name such as 'info'."""
        try:
            min_level = LogLevel(level.lower())
        except ValueError:
            raise ValueError(f"Invalid log level: {level}")
        return cls(output_format, output_stream, min_level)

    @property
    def audit_mode(self) -> bool:
        return self._signing_key is not None

    @property
    def entries(self) -> list[LogEntry]:
        """All logged entries, including those filtered from output."""
        return list(self._entries)

    def enable_audit_mode(self, signing_key: str) -> None:
        """Sign every subsequent entry with HMAC-SHA256 under ``signing_key``."""
        if not signing_key:
            raise ValueError("Signing key cannot be empty")
        self._signing_key = signing_key.encode("utf-8")

    def log(
        self,
        level: LogLevel,
        component: str,
        message: str,
        data: Optional[dict] = None,
    ) -> LogEntry:
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            level=level,
            component=component,
            message=message,
            data=self.mask_sensitive_data(data or {}),
        )
        if self._signing_key is not None:
            entry.signature = self._signature(entry)

        self._entries.append(entry)
        if _LEVEL_ORDER[level] >= self._min_order:
            for formatter in self._formatters:
                self._stream.write(formatter(entry) + "\n")
            self._stream.flush()
        return entry

    def log_error(
        self,
        component: str,
        message: str,
        error: Optional[Exception] = None,
        request_url: Optional[str] = None,
        response_status_code: Optional[int] = None,
        additional_data: Optional[dict] = None,
    ) -> LogEntry:
        """
        Log at ERROR with the exception's type and message.

        DomainMonitorError subclasses also contribute their ``code``.
        """
        data = dict(additional_data or {})
        if error is not None:
            data["error_message"] = str(error)
            data["error_type"] = type(error).__name__
            code = getattr(error, "code", None)
            if isinstance(code, str):
                data["error_code"] = code
        if request_url is not None:
            data["request_url"] = request_url
        if response_status_code is not None:
            data["response_status_code"] = response_status_code

        return self.log(LogLevel.ERROR, component, message, data)

    def _is_sensitive(self, key: str) -> bool:
        key = key.lower()
        return any(marker in key for marker in self.SENSITIVE_KEYS)

    def mask_sensitive_data(self, data: dict) -> dict:
        """Copy of ``data`` with sensitive values masked, inside nested dicts and lists too."""
        return _mask(data, self._is_sensitive, self.MASK_VALUE)

    def _signature(self, entry: LogEntry) -> str:
        content = json.dumps(entry.payload(), sort_keys=True, ensure_ascii=False, default=str)
        return hmac.new(self._signing_key, content.encode("utf-8"), hashlib.sha256).hexdigest()

    def verify_signature(self, entry: LogEntry) -> bool:
        """Check an entry's signature against the current signing key."""
        if not entry.signature or self._signing_key is None:
            return False
        return hmac.compare_digest(entry.signature, self._signature(entry))


class ComponentLogger:
    """
    Thin per-component view over an optional AuditLogger.

    Components hold one of these so that logging stays a no-op when no
    logger was passed in.
    """

    def __init__(self, logger: Optional[AuditLogger], component: str) -> None:
        self._logger = logger
        self._component = component

    @property
    def logger(self) -> Optional[AuditLogger]:
        return self._logger

    def _log(self, level: LogLevel, message: str, data: Optional[dict]) -> None:
        if self._logger:
            self._logger.log(level, self._component, message, data)

    def debug(self, message: str, data: Optional[dict] = None) -> None:
        self._log(LogLevel.DEBUG, message, data)

    def info(self, message: str, data: Optional[dict] = None) -> None:
        self._log(LogLevel.INFO, message, data)

    def warn(self, message: str, data: Optional[dict] = None) -> None:
        self._log(LogLevel.WARN, message, data)

    def error(
        self,
        message: str,
        error: Optional[Exception] = None,
        request_url: Optional[str] = None,
        data: Optional[dict] = None,
    ) -> None:
        if self._logger:
            self._logger.log_error(
                self._component,
                message,
                error=error,
                request_url=request_url,
                additional_data=data,
            )
