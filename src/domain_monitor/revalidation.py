"""
On-demand revalidation of a single named section of a domain report.

Every Section has exactly one handler. The table is checked when this module
is imported, so a Section added without a handler fails at import time
rather than on the first request for it.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

from .audit_logger import AuditLogger, ComponentLogger
from .domain_validator import DomainValidator
from .enums import Section
from .exceptions import DomainMonitorError


class SectionSource(Protocol):
    """The fetch steps the dispatcher drives (see SectionFetchers)."""

    async def fetch_dns(self, domain: str) -> Any: ...

    async def fetch_headers(self, domain: str) -> Any: ...

    async def fetch_hosting(self, domain: str, dns: Any, headers: Any) -> Any: ...

    async def fetch_certificates(self, domain: str) -> Any: ...

    async def fetch_seo(self, domain: str) -> Any: ...

    async def fetch_registration(self, domain: str) -> Any: ...


Handler = Callable[[SectionSource, str], Awaitable[Any]]


@dataclass
class SectionResult:
    """Outcome of revalidating one section."""

    success: bool
    domain: str
    section: str
    error: Optional[str] = None
    data: Any = None

    def to_dict(self) -> dict:
        result = {"success": self.success, "domain": self.domain, "section": self.section}
        if self.error is not None:
            result["error"] = self.error
        return result


async def _dns(source: SectionSource, domain: str) -> Any:
    return await source.fetch_dns(domain)


async def _headers(source: SectionSource, domain: str) -> Any:
    return await source.fetch_headers(domain)


async def _hosting(source: SectionSource, domain: str) -> Any:
    dns, headers = await asyncio.gather(
        source.fetch_dns(domain),
        source.fetch_headers(domain),
        return_exceptions=True,
    )
    # both prerequisites must succeed; report the first failure in order
    for prerequisite in (dns, headers):
        if isinstance(prerequisite, BaseException):
            raise prerequisite
    return await source.fetch_hosting(domain, dns, headers)


async def _certificates(source: SectionSource, domain: str) -> Any:
    return await source.fetch_certificates(domain)


async def _seo(source: SectionSource, domain: str) -> Any:
    return await source.fetch_seo(domain)


async def _registration(source: SectionSource, domain: str) -> Any:
    return await source.fetch_registration(domain)


SECTION_HANDLERS: dict[Section, Handler] = {
    Section.DNS: _dns,
    Section.HEADERS: _headers,
    Section.HOSTING: _hosting,
    Section.CERTIFICATES: _certificates,
    Section.SEO: _seo,
    Section.REGISTRATION: _registration,
}


def assert_exhaustive(handlers: dict[Section, Handler]) -> None:
    """
    Raises:
        RuntimeError: If any Section has no handler
    """
    missing = [section.value for section in Section if section not in handlers]
    if missing:
        raise RuntimeError(f"No revalidation handler for sections: {', '.join(missing)}")


assert_exhaustive(SECTION_HANDLERS)


class SectionRevalidateDispatcher:
    """Runs the fetch step for a named section and reports the outcome."""

    def __init__(
        self,
        source: SectionSource,
        validator: Optional[DomainValidator] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._source = source
        self._validator = validator or DomainValidator()
        self._log = ComponentLogger(logger, "SectionRevalidateDispatcher")

    async def revalidate(self, domain: str, section: Union[Section, str]) -> SectionResult:
        section_name = section.value if isinstance(section, Section) else str(section)
        try:
            section = Section(section_name)
        except ValueError:
            return SectionResult(False, domain, section_name, error=f"Unknown section: {section_name}")

        validation = self._validator.validate(domain)
        if not validation.valid:
            return SectionResult(False, domain, section.value, error=validation.error.message)
        canonical = validation.canonical_domain

        try:
            data = await SECTION_HANDLERS[section](self._source, canonical)
        except DomainMonitorError as e:
            self._log.warn(
                "Section revalidation failed",
                {"domain": canonical, "section": section.value, "error_code": e.code},
            )
            return SectionResult(False, canonical, section.value, error=e.message)

        self._log.info("Section revalidated", {"domain": canonical, "section": section.value})
        return SectionResult(True, canonical, section.value, data=data)
