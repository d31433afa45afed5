"""
Domain ownership verification.

Three proofs are accepted, attempted in a fixed order:

1. dns_txt   - a TXT record ``domainstack-verify=<token>`` on the apex, or on
               the legacy ``_domainstack-verify.<domain>`` host
2. html_file - ``/.well-known/domainstack-verify/<token>.html`` (or the legacy
               single file) whose trimmed body is ``domainstack-verify: <token>``
3. meta_tag  - ``<meta name="domainstack-verify" content="<token>">`` on the
               home page

Every check is a single attempt with a tight timeout and byte cap. Network
failures count as "not verified"; retrying is the caller's job.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol, Union

from bs4 import BeautifulSoup

from .audit_logger import AuditLogger, ComponentLogger
from .config import VerificationConfig
from .enums import VerificationMethod
from .exceptions import TransientNetworkError
from .models import VerificationFailure, VerificationResult
from .safe_fetch import FetchResult

METHOD_ORDER = (
    VerificationMethod.DNS_TXT,
    VerificationMethod.HTML_FILE,
    VerificationMethod.META_TAG,
)

NOT_VERIFIED = VerificationResult(verified=False, method=None)


class Fetcher(Protocol):
    """The guarded fetch contract the engine relies on."""

    async def fetch(
        self,
        url: str,
        allowed_hosts: Optional[list[str]] = None,
        allow_http: bool = False,
        timeout_ms: int = 5000,
        max_bytes: int = 1024 * 1024,
        max_redirects: int = 3,
        user_agent: Optional[str] = None,
    ) -> FetchResult:
        ...


class TxtLookup(Protocol):
    async def resolve_txt(self, name: str) -> list[str]:
        ...


@dataclass
class VerificationInstructions:
    """What a user has to publish to prove ownership, per method."""

    domain: str
    dns_host: str
    dns_legacy_host: str
    dns_value: str
    html_file_url: str
    html_file_content: str
    meta_tag: str


def build_verification_instructions(
    domain: str,
    token: str,
    config: Optional[VerificationConfig] = None,
) -> VerificationInstructions:
    config = config or VerificationConfig()
    return VerificationInstructions(
        domain=domain,
        dns_host=domain,
        dns_legacy_host=f"{config.dns_legacy_host}.{domain}",
        dns_value=f"{config.dns_prefix}{token}",
        html_file_url=f"https://{domain}{config.html_dir}/{token}.html",
        html_file_content=f"{config.html_content_prefix}{token}",
        meta_tag=f'<meta name="{config.meta_tag_name}" content="{token}">',
    )


def parse_method(value: Union[VerificationMethod, str, None]) -> Optional[VerificationMethod]:
    """
    Coerce a requested method.

    Raises:
        ValueError: If ``value`` is not one of the recognised methods
    """
    if value is None or isinstance(value, VerificationMethod):
        return value
    return VerificationMethod(value)


class VerificationEngine:
    """
    Tries ownership proofs against a domain and reports the first success.

    The engine performs outbound reads only; it never writes state.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        resolver: TxtLookup,
        config: Optional[VerificationConfig] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._fetcher = fetcher
        self._resolver = resolver
        self._config = config or VerificationConfig()
        self._log = ComponentLogger(logger, "VerificationEngine")
        self._method_checks: dict[VerificationMethod, Callable[[str, str], Awaitable[bool]]] = {
            VerificationMethod.DNS_TXT: self.verify_by_dns,
            VerificationMethod.HTML_FILE: self.verify_by_html_file,
            VerificationMethod.META_TAG: self.verify_by_meta_tag,
        }

    async def verify(
        self,
        domain: str,
        token: str,
        method: Union[VerificationMethod, str, None] = None,
    ) -> VerificationResult:
        """
        Verify ownership of ``domain`` with ``token``.

        Args:
            domain: Canonical domain name
            token: The tracked domain's verification token
            method: Restrict to one method; None tries all in order

        Returns:
            The first successful result, ``{verified: False, method: None}``
            when nothing matched, or a result carrying ``error`` when
            ``method`` is not a recognised method
        """
        try:
            requested = parse_method(method)
        except ValueError:
            self._log.warn("Unknown verification method requested", {"domain": domain, "method": str(method)})
            return VerificationResult(
                verified=False,
                method=None,
                error=VerificationFailure(
                    code="unknown_method",
                    message=f"Unknown verification method: {method}",
                    details={"method": str(method), "allowed": [m.value for m in METHOD_ORDER]},
                ),
            )

        methods = (requested,) if requested else METHOD_ORDER
        for candidate in methods:
            if await self._method_checks[candidate](domain, token):
                self._log.info("Domain verified", {"domain": domain, "method": candidate.value})
                return VerificationResult(verified=True, method=candidate)

        self._log.debug("Domain not verified", {"domain": domain, "methods": [m.value for m in methods]})
        return NOT_VERIFIED

    async def verify_by_dns(self, domain: str, token: str) -> bool:
        expected = f"{self._config.dns_prefix}{token}"
        hosts = [domain, f"{self._config.dns_legacy_host}.{domain}"]

        for host in hosts:
            try:
                values = await self._resolver.resolve_txt(host)
            except TransientNetworkError as e:
                self._log.warn("DNS verification lookup failed", {"domain": domain, "host": host, "error": e.message})
                continue
            if any(value.strip() == expected for value in values):
                return True
        return False

    async def verify_by_html_file(self, domain: str, token: str) -> bool:
        expected = f"{self._config.html_content_prefix}{token}"
        paths = [
            f"{self._config.html_dir}/{token}.html",
            self._config.html_legacy_path,
        ]

        for path in paths:
            for scheme in ("https", "http"):
                body = await self._fetch_text(
                    f"{scheme}://{domain}{path}",
                    domain,
                    timeout_ms=self._config.file_timeout_ms,
                    max_bytes=self._config.file_max_bytes,
                    max_redirects=self._config.file_max_redirects,
                )
                if body is not None and body.strip() == expected:
                    return True
        return False

    async def verify_by_meta_tag(self, domain: str, token: str) -> bool:
        for scheme in ("https", "http"):
            html = await self._fetch_text(
                f"{scheme}://{domain}/",
                domain,
                timeout_ms=self._config.meta_timeout_ms,
                max_bytes=self._config.meta_max_bytes,
                max_redirects=self._config.meta_max_redirects,
            )
            if html is None:
                continue

            soup = BeautifulSoup(html, "html.parser")
            # several users may track the same domain, each with their own tag
            for tag in soup.find_all("meta", attrs={"name": self._config.meta_tag_name}):
                content = tag.get("content")
                if isinstance(content, str) and content.strip() == token:
                    return True
        return False

    async def _fetch_text(
        self,
        url: str,
        domain: str,
        timeout_ms: int,
        max_bytes: int,
        max_redirects: int,
    ) -> Optional[str]:
        """Body of a successful response, or None on any failure."""
        try:
            result = await self._fetcher.fetch(
                url,
                allowed_hosts=[domain, f"www.{domain}"],
                allow_http=True,
                timeout_ms=timeout_ms,
                max_bytes=max_bytes,
                max_redirects=max_redirects,
                user_agent=self._config.user_agent,
            )
        except TransientNetworkError as e:
            self._log.debug("Verification fetch failed", {"domain": domain, "error_code": e.code})
            return None

        if not result.ok:
            return None
        return result.text()
