"""
Live data fetchers for the named domain sections.

Each fetcher performs the outbound reads for one section and raises
TransientNetworkError when the section cannot be fetched. LiveSnapshotSource
composes registration, certificate and provider data into the Snapshot the
change monitor compares.
"""

import asyncio
import hashlib
import ssl
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from bs4 import BeautifulSoup

from .audit_logger import AuditLogger, ComponentLogger
from .change_detection import select_leaf_certificate
from .config import VerificationConfig
from .dns_resolver import DohResolver
from .exceptions import TransientNetworkError
from .models import (
    CertificateSnapshot,
    ProviderSnapshot,
    RegistrationSnapshot,
    Snapshot,
    TrackedDomain,
)
from .providers import (
    detect_ca_provider,
    detect_dns_provider,
    detect_email_provider,
    detect_hosting_provider,
)
from .rdap_client import RDAPClient, provider_id_from_name
from .safe_fetch import (
    GuardedFetcher,
    HostResolver,
    is_disallowed_address,
    resolve_with_system_dns,
)
from .workflow import to_iso

if TYPE_CHECKING:
    from .state_store import StateStore

DNS_RECORD_TYPES = ("A", "AAAA", "MX", "NS", "TXT")


@dataclass
class DnsRecords:
    domain: str
    records: dict[str, list[str]] = field(default_factory=dict)

    @property
    def mx_hosts(self) -> list[str]:
        # MX data is "<preference> <host>"
        hosts = []
        for value in self.records.get("MX", []):
            parts = value.split()
            if parts:
                hosts.append(parts[-1].rstrip(".").lower())
        return hosts

    @property
    def ns_hosts(self) -> list[str]:
        return [v.rstrip(".").lower() for v in self.records.get("NS", [])]


@dataclass
class HeadersResult:
    domain: str
    status: int
    final_url: str
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class HostingResult:
    domain: str
    dns_provider_id: Optional[str]
    hosting_provider_id: Optional[str]
    email_provider_id: Optional[str]

    def to_snapshot(self) -> ProviderSnapshot:
        return ProviderSnapshot(
            dns_provider_id=self.dns_provider_id,
            hosting_provider_id=self.hosting_provider_id,
            email_provider_id=self.email_provider_id,
        )


@dataclass
class SeoResult:
    domain: str
    title: Optional[str] = None
    description: Optional[str] = None
    robots: Optional[str] = None
    canonical: Optional[str] = None


def parse_seo(domain: str, html: str) -> SeoResult:
    soup = BeautifulSoup(html, "html.parser")

    def meta(name: str) -> Optional[str]:
        tag = soup.find("meta", attrs={"name": name})
        content = tag.get("content") if tag else None
        return content.strip() if isinstance(content, str) else None

    canonical = None
    link = soup.find("link", attrs={"rel": "canonical"})
    if link is not None and isinstance(link.get("href"), str):
        canonical = link["href"].strip()

    title = soup.title.get_text(strip=True) if soup.title else None
    return SeoResult(
        domain=domain,
        title=title or None,
        description=meta("description"),
        robots=meta("robots"),
        canonical=canonical,
    )


def _name_attr(pairs: tuple, key: str) -> Optional[str]:
    # peercert subject/issuer: ((("organizationName", "X"),), (("commonName", "Y"),))
    for rdn in pairs or ():
        for name, value in rdn:
            if name == key:
                return value
    return None


def certificate_from_peercert(cert: dict, der: Optional[bytes] = None) -> CertificateSnapshot:
    """Convert ``SSLSocket.getpeercert()`` output to a snapshot."""
    issuer = _name_attr(cert.get("issuer", ()), "organizationName") or _name_attr(
        cert.get("issuer", ()), "commonName"
    )
    valid_to = None
    not_after = cert.get("notAfter")
    if not_after:
        valid_to = to_iso(datetime.fromtimestamp(ssl.cert_time_to_seconds(not_after), tz=timezone.utc))
    return CertificateSnapshot(
        ca_provider_id=detect_ca_provider(issuer),
        issuer=issuer,
        valid_to=valid_to,
        fingerprint=hashlib.sha256(der).hexdigest() if der else None,
    )


class SectionFetchers:
    """The outbound step behind each named section."""

    def __init__(
        self,
        resolver: DohResolver,
        fetcher: GuardedFetcher,
        rdap: RDAPClient,
        config: Optional[VerificationConfig] = None,
        resolve_host: Optional[HostResolver] = None,
        tls_timeout_seconds: float = 10.0,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._resolver = resolver
        self._fetcher = fetcher
        self._rdap = rdap
        self._config = config or VerificationConfig()
        self._resolve_host = resolve_host or resolve_with_system_dns
        self._tls_timeout = tls_timeout_seconds
        self._log = ComponentLogger(logger, "SectionFetchers")

    async def fetch_dns(self, domain: str) -> DnsRecords:
        """
        Look up every record type in parallel.

        Raises:
            TransientNetworkError: If every lookup failed
        """
        results = await asyncio.gather(
            *(self._resolver.resolve(domain, record_type) for record_type in DNS_RECORD_TYPES),
            return_exceptions=True,
        )
        records = DnsRecords(domain=domain)
        errors = []
        for record_type, result in zip(DNS_RECORD_TYPES, results):
            if isinstance(result, TransientNetworkError):
                errors.append(result)
                continue
            if isinstance(result, BaseException):
                raise result
            records.records[record_type] = [answer.data for answer in result]
        if len(errors) == len(DNS_RECORD_TYPES):
            raise errors[0]
        return records

    async def fetch_headers(self, domain: str) -> HeadersResult:
        result = await self._fetcher.fetch(
            f"https://{domain}/",
            allowed_hosts=[domain, f"www.{domain}"],
            timeout_ms=self._config.meta_timeout_ms,
            max_bytes=self._config.meta_max_bytes,
            max_redirects=self._config.meta_max_redirects,
            user_agent=self._config.user_agent,
            method="HEAD",
        )
        return HeadersResult(
            domain=domain,
            status=result.status,
            final_url=result.final_url,
            headers=dict(result.headers),
        )

    async def fetch_hosting(
        self,
        domain: str,
        dns: DnsRecords,
        headers: HeadersResult,
    ) -> HostingResult:
        """Provider detection; needs the dns and headers sections first."""
        return HostingResult(
            domain=domain,
            dns_provider_id=detect_dns_provider(dns.ns_hosts),
            hosting_provider_id=detect_hosting_provider(headers.headers),
            email_provider_id=detect_email_provider(dns.mx_hosts),
        )

    async def fetch_certificates(self, domain: str) -> list[CertificateSnapshot]:
        """
        Read the certificate the server presents on port 443.

        Raises:
            TransientNetworkError: On connection, TLS or timeout failures, or
                when the host resolves to a disallowed address
        """
        try:
            addresses = await self._resolve_host(domain)
        except (OSError, UnicodeError) as e:
            raise TransientNetworkError(
                code="dns_error",
                message=f"Could not resolve {domain}",
                details={"domain": domain, "error": str(e)},
            )
        if not addresses or any(is_disallowed_address(ip) for ip in addresses):
            raise TransientNetworkError(
                code="private_ip",
                message=f"Refusing TLS connection to {domain}",
                details={"domain": domain, "addresses": addresses},
            )

        context = ssl.create_default_context()
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(addresses[0], 443, ssl=context, server_hostname=domain),
                timeout=self._tls_timeout,
            )
        except asyncio.TimeoutError:
            raise TransientNetworkError(
                code="timeout",
                message=f"TLS handshake with {domain} timed out",
                details={"domain": domain},
            )
        except (ssl.SSLError, OSError) as e:
            raise TransientNetworkError(
                code="tls_error",
                message=f"TLS connection to {domain} failed: {e}",
                details={"domain": domain},
            )

        try:
            ssl_object = writer.get_extra_info("ssl_object")
            cert = ssl_object.getpeercert() if ssl_object else None
            der = ssl_object.getpeercert(binary_form=True) if ssl_object else None
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except (ssl.SSLError, OSError):
                pass

        if not cert:
            return []
        return [certificate_from_peercert(cert, der)]

    async def fetch_seo(self, domain: str) -> SeoResult:
        result = await self._fetcher.fetch(
            f"https://{domain}/",
            allowed_hosts=[domain, f"www.{domain}"],
            timeout_ms=self._config.meta_timeout_ms,
            max_bytes=self._config.meta_max_bytes,
            max_redirects=self._config.meta_max_redirects,
            user_agent=self._config.user_agent,
        )
        if not result.ok:
            raise TransientNetworkError(
                code="response_error",
                message=f"Home page returned HTTP {result.status}",
                details={"domain": domain, "status": result.status},
            )
        return parse_seo(domain, result.text())

    async def fetch_registration(self, domain: str) -> RegistrationSnapshot:
        parsed = await self._rdap.lookup(domain)
        return RegistrationSnapshot(
            registrar_provider_id=provider_id_from_name(parsed.registrar),
            nameservers=sorted(set(parsed.nameservers)),
            transfer_lock=parsed.transfer_lock,
            statuses=list(parsed.statuses),
            expiration_date=parsed.expiration_date,
        )


class LiveSnapshotSource:
    """
    Builds a Snapshot from live registration, certificate and provider data.

    A part that cannot be fetched is carried over from the stored snapshot
    so a transient failure never reads as a change. If every part fails, or
    a part fails while there is no stored snapshot to take it from, the
    snapshot is not built.
    """

    def __init__(
        self,
        fetchers: SectionFetchers,
        store: Optional["StateStore"] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._fetchers = fetchers
        self._store = store
        self._log = ComponentLogger(logger, "LiveSnapshotSource")

    async def build_snapshot(self, domain: TrackedDomain) -> Snapshot:
        name = domain.domain_name
        registration, certificates, providers = await asyncio.gather(
            self._fetchers.fetch_registration(name),
            self._fetchers.fetch_certificates(name),
            self._fetch_providers(name),
            return_exceptions=True,
        )
        parts = {"registration": registration, "certificate": certificates, "providers": providers}
        for part, value in parts.items():
            if isinstance(value, BaseException) and not isinstance(value, TransientNetworkError):
                raise value

        failed = [part for part, value in parts.items() if isinstance(value, TransientNetworkError)]
        if len(failed) == len(parts):
            raise registration
        if failed:
            self._log.warn(
                "Snapshot parts unavailable, keeping stored values",
                {"tracked_domain_id": domain.id, "domain": name, "parts": failed},
            )

        previous = self._store.get_snapshot(domain.id) if (failed and self._store) else None
        if failed and previous is None:
            # an empty part in a baseline would read as a change on the next check
            raise TransientNetworkError(
                code="incomplete_baseline",
                message=f"Cannot store a baseline for {name} without {', '.join(failed)}",
                details={"tracked_domain_id": domain.id, "parts": failed},
            )

        snapshot = Snapshot(tracked_domain_id=domain.id)

        if "registration" in failed:
            snapshot.registration = previous.registration
        else:
            snapshot.registration = registration

        if "certificate" in failed:
            snapshot.certificate = previous.certificate
        else:
            snapshot.certificate = select_leaf_certificate(certificates)

        if "providers" in failed:
            snapshot.providers = previous.providers
        else:
            snapshot.providers = providers

        return snapshot

    async def _fetch_providers(self, name: str) -> ProviderSnapshot:
        dns, headers = await asyncio.gather(
            self._fetchers.fetch_dns(name),
            self._fetchers.fetch_headers(name),
        )
        hosting = await self._fetchers.fetch_hosting(name, dns, headers)
        return hosting.to_snapshot()
