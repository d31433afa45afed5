"""
Property-based tests for snapshot monitoring.

The snapshot source is scripted, so each check compares exactly the data the
test hands it.
"""

import asyncio
import tempfile
from pathlib import Path

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from domain_monitor.enums import NotificationCategory, VerificationMethod
from domain_monitor.exceptions import TransientNetworkError
from domain_monitor.fetchers import DnsRecords, HeadersResult, HostingResult, LiveSnapshotSource
from domain_monitor.models import (
    CertificateSnapshot,
    ProviderSnapshot,
    RegistrationSnapshot,
    Snapshot,
)
from domain_monitor.monitoring import ChangeMonitor, describe_changes
from domain_monitor.notifications import NotificationService
from domain_monitor.state_store import StateStore
from domain_monitor.workflow import ManualClock


class ScriptedSource:
    """Returns queued snapshots in order."""

    def __init__(self, snapshots: list[Snapshot]) -> None:
        self.snapshots = list(snapshots)

    async def build_snapshot(self, domain) -> Snapshot:
        return self.snapshots.pop(0)


def snapshot(registrar: str = "cloudflare", dns: str = "cloudflare", issuer: str = "R3") -> Snapshot:
    return Snapshot(
        tracked_domain_id="",
        registration=RegistrationSnapshot(
            registrar_provider_id=registrar,
            nameservers=["kim.ns.cloudflare.com", "bob.ns.cloudflare.com"],
            transfer_lock=True,
            statuses=["clientTransferProhibited"],
        ),
        certificate=CertificateSnapshot(ca_provider_id="letsencrypt", issuer=issuer),
        providers=ProviderSnapshot(dns_provider_id=dns, hosting_provider_id="vercel"),
    )


def setup(tmpdir: str, snapshots: list[Snapshot]):
    clock = ManualClock()
    store = StateStore(Path(tmpdir) / "state.json", "secret", clock=clock)
    domain = store.add_tracked_domain("user-1", "example.com")
    domain = store.verify_tracked_domain(domain.id, VerificationMethod.DNS_TXT)
    notifier = NotificationService(store, clock=clock)
    monitor = ChangeMonitor(store, ScriptedSource(snapshots), notifier=notifier, clock=clock)
    return store, domain, monitor


class TestChangeMonitorProperty:
    """First check is a silent baseline; later checks notify per category."""

    def test_first_check_is_a_baseline(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store, domain, monitor = setup(tmpdir, [snapshot()])
            record = asyncio.run(monitor.check(domain))

            assert record.baseline
            assert store.get_snapshot(domain.id).tracked_domain_id == domain.id
            assert store.list_notifications("user-1") == []

    def test_changes_notify_once_per_category(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store, domain, monitor = setup(tmpdir, [
                snapshot(),
                snapshot(registrar="godaddy", dns="aws-route53", issuer="DigiCert TLS RSA SHA256 2020 CA1"),
            ])
            asyncio.run(monitor.check(domain))
            record = asyncio.run(monitor.check(domain))

            assert record.registration.registrar_changed
            assert record.registration.previous_registrar == "cloudflare"
            assert record.registration.new_registrar == "godaddy"
            categories = sorted(n.category.value for n in store.list_notifications("user-1"))
            assert categories == ["certificate_changes", "provider_changes", "registration_changes"]
            assert store.get_snapshot(domain.id).registration.registrar_provider_id == "godaddy"

    @given(repeats=st.integers(min_value=1, max_value=3))
    @settings(max_examples=3, deadline=None)
    def test_unchanged_data_never_notifies(self, repeats: int) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store, domain, monitor = setup(tmpdir, [snapshot() for _ in range(repeats + 1)])
            for _ in range(repeats + 1):
                record = asyncio.run(monitor.check(domain))
            assert not record.has_changes
            assert store.list_notifications("user-1") == []

    def test_describe_changes_lines(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            _, domain, monitor = setup(tmpdir, [snapshot(), snapshot(issuer="E1")])
            asyncio.run(monitor.check(domain))
            record = asyncio.run(monitor.check(domain))

            assert describe_changes(record, NotificationCategory.CERTIFICATE_CHANGES) == ["Issuer: R3 -> E1"]
            assert describe_changes(record, NotificationCategory.PROVIDER_CHANGES) == []


class FakeFetchers:
    """SectionFetchers double; steps named in ``failing`` raise."""

    def __init__(self, failing: set[str]) -> None:
        self.failing = failing

    def _maybe_fail(self, name: str) -> None:
        if name in self.failing:
            raise TransientNetworkError(code="timeout", message=f"{name} timed out")

    async def fetch_registration(self, domain: str) -> RegistrationSnapshot:
        self._maybe_fail("registration")
        return RegistrationSnapshot(registrar_provider_id="namecheap")

    async def fetch_certificates(self, domain: str) -> list[CertificateSnapshot]:
        self._maybe_fail("certificates")
        return [
            CertificateSnapshot(issuer="ISRG Root X1", valid_to="2035-06-04T11:04:38+00:00"),
            CertificateSnapshot(ca_provider_id="letsencrypt", issuer="E5", valid_to="2025-04-01T00:00:00+00:00"),
        ]

    async def fetch_dns(self, domain: str) -> DnsRecords:
        self._maybe_fail("dns")
        return DnsRecords(domain=domain)

    async def fetch_headers(self, domain: str) -> HeadersResult:
        return HeadersResult(domain=domain, status=200, final_url=f"https://{domain}/")

    async def fetch_hosting(self, domain: str, dns, headers) -> HostingResult:
        return HostingResult(domain, "namecheap", "netlify", None)


class TestLiveSnapshotSourceProperty:
    """Failed parts are carried over from the stored snapshot."""

    def test_all_parts_fetched(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store, domain, _ = setup(tmpdir, [])
            source = LiveSnapshotSource(FakeFetchers(set()), store=store)
            built = asyncio.run(source.build_snapshot(domain))

            assert built.registration.registrar_provider_id == "namecheap"
            assert built.certificate.issuer == "E5"
            assert built.providers.hosting_provider_id == "netlify"

    def test_failed_part_is_carried_over(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store, domain, _ = setup(tmpdir, [])
            stored = snapshot()
            stored.tracked_domain_id = domain.id
            store.replace_snapshot(stored)

            source = LiveSnapshotSource(FakeFetchers({"certificates", "dns"}), store=store)
            built = asyncio.run(source.build_snapshot(domain))

            assert built.registration.registrar_provider_id == "namecheap"
            assert built.certificate == stored.certificate
            assert built.providers == stored.providers

    def test_every_part_failing_raises(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store, domain, _ = setup(tmpdir, [])
            source = LiveSnapshotSource(FakeFetchers({"registration", "certificates", "dns"}), store=store)
            with pytest.raises(TransientNetworkError):
                asyncio.run(source.build_snapshot(domain))

    def test_partial_first_snapshot_is_not_stored(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store, domain, _ = setup(tmpdir, [])
            source = LiveSnapshotSource(FakeFetchers({"registration"}), store=store)

            with pytest.raises(TransientNetworkError) as exc_info:
                asyncio.run(source.build_snapshot(domain))

            assert exc_info.value.code == "incomplete_baseline"
            assert exc_info.value.details["parts"] == ["registration"]

    def test_recovered_part_after_failed_baseline_is_not_a_change(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store, domain, _ = setup(tmpdir, [])
            notifier = NotificationService(store)
            fetchers = FakeFetchers({"registration"})
            monitor = ChangeMonitor(store, LiveSnapshotSource(fetchers, store=store), notifier=notifier)

            assert asyncio.run(monitor.initialize_snapshot(domain)) is None
            assert store.get_snapshot(domain.id) is None

            fetchers.failing = set()
            first = asyncio.run(monitor.check(domain))
            second = asyncio.run(monitor.check(domain))

            assert first.baseline
            assert store.get_snapshot(domain.id).registration.registrar_provider_id == "namecheap"
            assert not second.registration.has_changes
            assert not second.has_changes
            assert store.list_notifications("user-1") == []
