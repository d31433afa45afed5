"""
State Store module: the HMAC-protected repository for all monitor records.

Tracked domains, snapshots, notification preferences, auto-verify workflow
records and notifications live in one JSON document. The document carries an
HMAC-SHA256 over its content so tampering is detected on load.

Every operation re-reads the file, so readers always see the latest persisted
state and several processes can share one store. Each write holds an OS file
lock (``<state file>.lock``) from load to replace, so concurrent writers
never drop each other's records. On top of that, writes to a tracked domain
are either identical to the stored record (no-op) or guarded by the version
the caller last read.
"""

import hashlib
import hmac
import json
import os
import secrets
import tempfile
import uuid
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Optional, TypeVar

from filelock import FileLock, Timeout

from .enums import (
    NotificationCategory,
    VerificationMethod,
    VerificationStatus,
    WorkflowState,
)
from .exceptions import (
    ConcurrencyConflict,
    NotFoundError,
    PersistenceError,
    TamperingError,
    ValidationError,
)
from .models import (
    CertificateSnapshot,
    Notification,
    NotificationToggle,
    ProviderSnapshot,
    RegistrationSnapshot,
    Snapshot,
    TrackedDomain,
    WorkflowRecord,
)
from .workflow import Clock, SystemClock, from_iso, to_iso

T = TypeVar("T")

COLLECTIONS = ("tracked_domains", "snapshots", "preferences", "workflows", "notifications")


def generate_verification_token() -> str:
    """Fresh 32-hex-character ownership token."""
    return secrets.token_hex(16)


def _domain_to_dict(domain: TrackedDomain) -> dict:
    data = asdict(domain)
    data["verification_status"] = domain.verification_status.value
    data["verification_method"] = (
        domain.verification_method.value if domain.verification_method else None
    )
    return data


def _domain_from_dict(data: dict) -> TrackedDomain:
    method = data.get("verification_method")
    return TrackedDomain(
        id=data["id"],
        domain_name=data["domain_name"],
        owner_user_id=data["owner_user_id"],
        verification_token=data.get("verification_token"),
        verified=data.get("verified", False),
        verification_status=VerificationStatus(data.get("verification_status", "unverified")),
        verification_method=VerificationMethod(method) if method else None,
        verification_failed_at=data.get("verification_failed_at"),
        archived_at=data.get("archived_at"),
        notification_overrides={
            category: NotificationToggle(**toggle)
            for category, toggle in data.get("notification_overrides", {}).items()
        },
        created_at=data.get("created_at", ""),
        version=data.get("version", 0),
    )


def _snapshot_from_dict(data: dict) -> Snapshot:
    certificate = data.get("certificate")
    return Snapshot(
        tracked_domain_id=data["tracked_domain_id"],
        registration=RegistrationSnapshot(**data.get("registration", {})),
        certificate=CertificateSnapshot(**certificate) if certificate else None,
        providers=ProviderSnapshot(**data.get("providers", {})),
        created_at=data.get("created_at", ""),
    )


def _workflow_to_dict(record: WorkflowRecord) -> dict:
    data = asdict(record)
    data["state"] = record.state.value
    return data


def _workflow_from_dict(data: dict) -> WorkflowRecord:
    return WorkflowRecord(
        workflow_id=data["workflow_id"],
        tracked_domain_id=data["tracked_domain_id"],
        attempt_index=data["attempt_index"],
        next_due_at=data["next_due_at"],
        state=WorkflowState(data.get("state", "scheduled")),
        created_at=data.get("created_at", ""),
        updated_at=data.get("updated_at", ""),
        result=data.get("result"),
    )


def _notification_to_dict(notification: Notification) -> dict:
    data = asdict(notification)
    data["category"] = notification.category.value
    return data


def _notification_from_dict(data: dict) -> Notification:
    return Notification(
        id=data["id"],
        user_id=data["user_id"],
        tracked_domain_id=data["tracked_domain_id"],
        type=data["type"],
        category=NotificationCategory(data["category"]),
        title=data["title"],
        message=data["message"],
        created_at=data["created_at"],
        data=data.get("data", {}),
        read_at=data.get("read_at"),
    )


class StateStore:
    """
    Persistent repository with HMAC protection.

    All public methods read the document fresh from disk. Mutations are
    applied to that fresh copy and written back atomically.
    """

    VERSION = 2

    def __init__(
        self,
        file_path: Path,
        hmac_secret: str,
        clock: Optional[Clock] = None,
        lock_timeout: float = 30.0,
    ) -> None:
        """
        Initialize the state store.

        Args:
            file_path: Path to the state file (JSON format)
            hmac_secret: Secret key for HMAC computation
            clock: Time source for created/updated timestamps
            lock_timeout: Seconds a write waits for the file lock
        """
        self._file_path = Path(file_path)
        self._hmac_secret = hmac_secret.encode("utf-8")
        self._clock = clock or SystemClock()
        self._lock = FileLock(f"{self._file_path}.lock", timeout=lock_timeout)

    @property
    def file_path(self) -> Path:
        return self._file_path

    # ------------------------------------------------------------------
    # Document I/O
    # ------------------------------------------------------------------

    def load(self) -> dict:
        """
        Load all collections from file and validate the HMAC.

        Returns:
            Mapping of collection name to records; empty collections when the
            file does not exist yet

        Raises:
            TamperingError: If HMAC validation fails
            PersistenceError: If the file cannot be read or parsed
        """
        if not self._file_path.exists():
            return {name: {} for name in COLLECTIONS}

        try:
            with open(self._file_path, "r", encoding="utf-8") as f:
                raw_data = json.load(f)
        except json.JSONDecodeError as e:
            raise PersistenceError(
                code="parse_error",
                message=f"Failed to parse state file: {e}",
                details={"file_path": str(self._file_path)},
            )
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to read state file: {e}",
                details={"file_path": str(self._file_path)},
            )

        stored_hmac = raw_data.get("hmac", "")
        computed_hmac = self.compute_hmac({
            "version": raw_data.get("version"),
            "data": raw_data.get("data", {}),
            "last_updated": raw_data.get("last_updated"),
        })

        if not self.validate_hmac(stored_hmac, computed_hmac):
            raise TamperingError(
                code="hmac_mismatch",
                message="HMAC validation failed - data may have been tampered with",
                details={"file_path": str(self._file_path)},
            )

        data = raw_data.get("data", {})
        return {name: data.get(name, {}) for name in COLLECTIONS}

    def save(self, collections: dict) -> None:
        """
        Write all collections with a fresh HMAC.

        The document is written to a temporary file in the same directory
        and moved into place, so readers never observe a partial write.

        Raises:
            PersistenceError: If the file cannot be written
        """
        now = to_iso(self._clock.now())
        body = {
            "version": self.VERSION,
            "data": {name: collections.get(name, {}) for name in COLLECTIONS},
            "last_updated": now,
        }
        output_data = dict(body, hmac=self.compute_hmac(body))

        self._file_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            fd, tmp_path = tempfile.mkstemp(
                dir=str(self._file_path.parent),
                prefix=f".{self._file_path.name}.",
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(output_data, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self._file_path)
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to write state file: {e}",
                details={"file_path": str(self._file_path)},
            )

    def compute_hmac(self, data: dict) -> str:
        """Compute HMAC-SHA256 over the canonical JSON serialization of ``data``."""
        serialized = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hmac.new(
            self._hmac_secret,
            serialized.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def validate_hmac(self, stored_hmac: str, computed_hmac: str) -> bool:
        """Validate HMAC using constant-time comparison."""
        return hmac.compare_digest(stored_hmac, computed_hmac)

    def _mutate(self, change: Callable[[dict], T]) -> T:
        """Apply ``change`` to a fresh copy under the write lock and save it."""
        self._file_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with self._lock:
                collections = self.load()
                result = change(collections)
                self.save(collections)
        except Timeout:
            raise PersistenceError(
                code="lock_timeout",
                message=f"Timed out waiting for the lock on {self._file_path}",
                details={"file_path": str(self._file_path), "lock_file": self._lock.lock_file},
            )
        return result

    def _now(self) -> str:
        return to_iso(self._clock.now())

    # ------------------------------------------------------------------
    # Tracked domains
    # ------------------------------------------------------------------

    def add_tracked_domain(self, owner_user_id: str, domain_name: str) -> TrackedDomain:
        """Create an unverified tracked domain with a fresh token."""

        def change(collections: dict) -> TrackedDomain:
            for existing in collections["tracked_domains"].values():
                if (
                    existing["owner_user_id"] == owner_user_id
                    and existing["domain_name"] == domain_name
                ):
                    raise ValidationError(
                        code="already_tracked",
                        message=f"{domain_name} is already tracked by this user",
                        details={"domain": domain_name, "tracked_domain_id": existing["id"]},
                    )

            domain = TrackedDomain(
                id=uuid.uuid4().hex,
                domain_name=domain_name,
                owner_user_id=owner_user_id,
                verification_token=generate_verification_token(),
                created_at=self._now(),
            )
            collections["tracked_domains"][domain.id] = _domain_to_dict(domain)
            return domain

        return self._mutate(change)

    def find_tracked_domain_by_id(self, tracked_domain_id: str) -> Optional[TrackedDomain]:
        record = self.load()["tracked_domains"].get(tracked_domain_id)
        return _domain_from_dict(record) if record else None

    def require_tracked_domain(self, tracked_domain_id: str) -> TrackedDomain:
        """Like ``find_tracked_domain_by_id`` but raises NotFoundError."""
        domain = self.find_tracked_domain_by_id(tracked_domain_id)
        if domain is None:
            raise NotFoundError(
                code="tracked_domain_not_found",
                message=f"Tracked domain {tracked_domain_id} does not exist",
                details={"tracked_domain_id": tracked_domain_id},
            )
        return domain

    def list_tracked_domains(self, owner_user_id: Optional[str] = None) -> list[TrackedDomain]:
        domains = [
            _domain_from_dict(record)
            for record in self.load()["tracked_domains"].values()
        ]
        if owner_user_id is not None:
            domains = [d for d in domains if d.owner_user_id == owner_user_id]
        return sorted(domains, key=lambda d: (d.created_at, d.domain_name))

    def get_verified_tracked_domain_ids(self) -> list[str]:
        """IDs of verified domains that are not archived."""
        return [
            domain.id
            for domain in self.list_tracked_domains()
            if domain.verified and domain.archived_at is None
        ]

    def get_pending_tracked_domain_ids(self) -> list[str]:
        """IDs of unverified, non-archived domains that still hold a token."""
        return [
            domain.id
            for domain in self.list_tracked_domains()
            if not domain.verified
            and domain.archived_at is None
            and domain.verification_token
        ]

    def _update_domain(
        self,
        tracked_domain_id: str,
        apply: Callable[[TrackedDomain], None],
        expected_version: Optional[int] = None,
    ) -> TrackedDomain:
        """
        Apply a single-record update.

        An update that leaves the record unchanged is a no-op and never
        conflicts. Otherwise, when ``expected_version`` is given it must match
        the stored version.
        """

        def change(collections: dict) -> TrackedDomain:
            record = collections["tracked_domains"].get(tracked_domain_id)
            if record is None:
                raise NotFoundError(
                    code="tracked_domain_not_found",
                    message=f"Tracked domain {tracked_domain_id} does not exist",
                    details={"tracked_domain_id": tracked_domain_id},
                )

            current = _domain_from_dict(record)
            updated = _domain_from_dict(record)
            apply(updated)
            if _domain_to_dict(updated) == _domain_to_dict(current):
                return current

            if expected_version is not None and current.version != expected_version:
                raise ConcurrencyConflict(
                    code="version_mismatch",
                    message=f"Tracked domain {tracked_domain_id} changed concurrently",
                    details={
                        "tracked_domain_id": tracked_domain_id,
                        "expected_version": expected_version,
                        "actual_version": current.version,
                    },
                )

            updated.version = current.version + 1
            collections["tracked_domains"][tracked_domain_id] = _domain_to_dict(updated)
            return updated

        return self._mutate(change)

    def verify_tracked_domain(
        self,
        tracked_domain_id: str,
        method: VerificationMethod,
        expected_version: Optional[int] = None,
    ) -> TrackedDomain:
        """Mark verified via ``method`` and clear any failing state. Idempotent."""

        def apply(domain: TrackedDomain) -> None:
            domain.verified = True
            domain.verification_status = VerificationStatus.VERIFIED
            domain.verification_method = method
            domain.verification_failed_at = None

        return self._update_domain(tracked_domain_id, apply, expected_version)

    def mark_verification_successful(
        self,
        tracked_domain_id: str,
        expected_version: Optional[int] = None,
    ) -> TrackedDomain:
        """Recovery after a passing re-check: back to verified, failure time cleared."""

        def apply(domain: TrackedDomain) -> None:
            domain.verified = True
            domain.verification_status = VerificationStatus.VERIFIED
            domain.verification_failed_at = None

        return self._update_domain(tracked_domain_id, apply, expected_version)

    def mark_verification_failing(
        self,
        tracked_domain_id: str,
        at: datetime,
        expected_version: Optional[int] = None,
    ) -> TrackedDomain:
        """Move to failing; the first failure time is kept if already set."""

        def apply(domain: TrackedDomain) -> None:
            domain.verification_status = VerificationStatus.FAILING
            if domain.verification_failed_at is None:
                domain.verification_failed_at = to_iso(at)

        return self._update_domain(tracked_domain_id, apply, expected_version)

    def revoke_verification(
        self,
        tracked_domain_id: str,
        expected_version: Optional[int] = None,
    ) -> TrackedDomain:
        def apply(domain: TrackedDomain) -> None:
            domain.verified = False
            domain.verification_status = VerificationStatus.UNVERIFIED
            domain.verification_method = None
            domain.verification_failed_at = None

        return self._update_domain(tracked_domain_id, apply, expected_version)

    def archive_tracked_domain(self, tracked_domain_id: str) -> TrackedDomain:
        now = self._now()

        def apply(domain: TrackedDomain) -> None:
            if domain.archived_at is None:
                domain.archived_at = now

        return self._update_domain(tracked_domain_id, apply)

    def unarchive_tracked_domain(self, tracked_domain_id: str) -> TrackedDomain:
        def apply(domain: TrackedDomain) -> None:
            domain.archived_at = None

        return self._update_domain(tracked_domain_id, apply)

    def delete_tracked_domain(self, tracked_domain_id: str) -> bool:
        """Remove a tracked domain and its snapshot. Workflow records are kept."""

        def change(collections: dict) -> bool:
            removed = collections["tracked_domains"].pop(tracked_domain_id, None)
            collections["snapshots"].pop(tracked_domain_id, None)
            return removed is not None

        return self._mutate(change)

    # ------------------------------------------------------------------
    # Notification preferences
    # ------------------------------------------------------------------

    def set_notification_override(
        self,
        tracked_domain_id: str,
        category: NotificationCategory,
        toggle: NotificationToggle,
    ) -> TrackedDomain:
        def apply(domain: TrackedDomain) -> None:
            domain.notification_overrides[category.value] = NotificationToggle(
                email=toggle.email, in_app=toggle.in_app
            )

        return self._update_domain(tracked_domain_id, apply)

    def reset_notification_overrides(
        self,
        tracked_domain_id: str,
        category: Optional[NotificationCategory] = None,
    ) -> TrackedDomain:
        """Drop one override, or all of them when ``category`` is None."""

        def apply(domain: TrackedDomain) -> None:
            if category is None:
                domain.notification_overrides = {}
            else:
                domain.notification_overrides.pop(category.value, None)

        return self._update_domain(tracked_domain_id, apply)

    def get_user_preference(
        self, user_id: str, category: NotificationCategory
    ) -> NotificationToggle:
        """Global preference for a category; everything enabled by default."""
        stored = self.load()["preferences"].get(user_id, {}).get(category.value)
        if stored is None:
            return NotificationToggle()
        return NotificationToggle(**stored)

    def set_user_preference(
        self,
        user_id: str,
        category: NotificationCategory,
        toggle: NotificationToggle,
    ) -> None:
        def change(collections: dict) -> None:
            user_prefs = collections["preferences"].setdefault(user_id, {})
            user_prefs[category.value] = asdict(toggle)

        self._mutate(change)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def get_snapshot(self, tracked_domain_id: str) -> Optional[Snapshot]:
        record = self.load()["snapshots"].get(tracked_domain_id)
        return _snapshot_from_dict(record) if record else None

    def replace_snapshot(self, snapshot: Snapshot) -> None:
        """Store ``snapshot`` as the only snapshot for its domain (latest wins)."""

        def change(collections: dict) -> None:
            collections["snapshots"][snapshot.tracked_domain_id] = asdict(snapshot)

        self._mutate(change)

    # ------------------------------------------------------------------
    # Workflow records
    # ------------------------------------------------------------------

    def save_workflow(
        self,
        record: WorkflowRecord,
        expected_attempt_index: Optional[int] = None,
    ) -> WorkflowRecord:
        """
        Persist a workflow record.

        With ``expected_attempt_index`` the write only succeeds while the
        stored record is still scheduled at that slot, so two workers that
        pick up the same due slot cannot both advance it.
        """

        def change(collections: dict) -> WorkflowRecord:
            existing = collections["workflows"].get(record.workflow_id)
            if expected_attempt_index is not None and existing is not None:
                stored = _workflow_from_dict(existing)
                if (
                    stored.state != WorkflowState.SCHEDULED
                    or stored.attempt_index != expected_attempt_index
                ):
                    raise ConcurrencyConflict(
                        code="workflow_advanced",
                        message=f"Workflow {record.workflow_id} was advanced by another worker",
                        details={
                            "workflow_id": record.workflow_id,
                            "expected_attempt_index": expected_attempt_index,
                            "actual_attempt_index": stored.attempt_index,
                            "state": stored.state.value,
                        },
                    )
            record.updated_at = self._now()
            collections["workflows"][record.workflow_id] = _workflow_to_dict(record)
            return record

        return self._mutate(change)

    def get_workflow(self, workflow_id: str) -> Optional[WorkflowRecord]:
        record = self.load()["workflows"].get(workflow_id)
        return _workflow_from_dict(record) if record else None

    def find_active_workflow(self, tracked_domain_id: str) -> Optional[WorkflowRecord]:
        for record in self.load()["workflows"].values():
            workflow = _workflow_from_dict(record)
            if (
                workflow.tracked_domain_id == tracked_domain_id
                and workflow.state == WorkflowState.SCHEDULED
            ):
                return workflow
        return None

    def list_due_workflows(self, now: datetime) -> list[WorkflowRecord]:
        """Scheduled records whose due time has passed, oldest first."""
        due = [
            workflow
            for workflow in (
                _workflow_from_dict(record)
                for record in self.load()["workflows"].values()
            )
            if workflow.state == WorkflowState.SCHEDULED
            and from_iso(workflow.next_due_at) <= now
        ]
        return sorted(due, key=lambda w: from_iso(w.next_due_at))

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def record_notification(self, notification: Notification) -> None:
        def change(collections: dict) -> None:
            collections["notifications"][notification.id] = _notification_to_dict(notification)

        self._mutate(change)

    def has_recent_notification(
        self,
        tracked_domain_id: str,
        notification_type: str,
        since: datetime,
    ) -> bool:
        for record in self.load()["notifications"].values():
            if (
                record["tracked_domain_id"] == tracked_domain_id
                and record["type"] == notification_type
                and from_iso(record["created_at"]) >= since
            ):
                return True
        return False

    def clear_notifications(self, tracked_domain_id: str, notification_types: Iterable[str]) -> int:
        """Delete a domain's notifications of the given types. Returns how many went."""
        types = set(notification_types)

        def change(collections: dict) -> int:
            notifications = collections["notifications"]
            doomed = [
                notification_id
                for notification_id, record in notifications.items()
                if record["tracked_domain_id"] == tracked_domain_id and record["type"] in types
            ]
            for notification_id in doomed:
                del notifications[notification_id]
            return len(doomed)

        return self._mutate(change)

    def list_notifications(self, user_id: str) -> list[Notification]:
        notifications = [
            _notification_from_dict(record)
            for record in self.load()["notifications"].values()
            if record["user_id"] == user_id
        ]
        return sorted(notifications, key=lambda n: n.created_at, reverse=True)
