"""
Property-based tests for section revalidation.

A recording section source replaces the live fetchers; sections listed in
``failing`` raise a transient network error.
"""

import asyncio
from typing import Optional

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from domain_monitor.enums import Section
from domain_monitor.exceptions import TransientNetworkError
from domain_monitor.fetchers import DnsRecords, HeadersResult, HostingResult
from domain_monitor.revalidation import (
    SECTION_HANDLERS,
    SectionRevalidateDispatcher,
    assert_exhaustive,
)


class RecordingSource:
    """Section source double that records which fetch steps ran."""

    def __init__(self, failing: Optional[set[str]] = None) -> None:
        self.failing = failing or set()
        self.calls: list[str] = []

    def _step(self, name: str, domain: str):
        self.calls.append(name)
        if name in self.failing:
            raise TransientNetworkError(code="timeout", message=f"{name} timed out for {domain}")

    async def fetch_dns(self, domain: str) -> DnsRecords:
        self._step("dns", domain)
        return DnsRecords(domain=domain, records={"NS": ["kim.ns.cloudflare.com."], "MX": ["1 aspmx.l.google.com."]})

    async def fetch_headers(self, domain: str) -> HeadersResult:
        self._step("headers", domain)
        return HeadersResult(domain=domain, status=200, final_url=f"https://{domain}/", headers={"x-vercel-id": "x"})

    async def fetch_hosting(self, domain: str, dns: DnsRecords, headers: HeadersResult) -> HostingResult:
        self._step("hosting", domain)
        return HostingResult(domain, "cloudflare", "vercel", "google-workspace")

    async def fetch_certificates(self, domain: str) -> list:
        self._step("certificates", domain)
        return []

    async def fetch_seo(self, domain: str) -> dict:
        self._step("seo", domain)
        return {"title": "Example"}

    async def fetch_registration(self, domain: str) -> dict:
        self._step("registration", domain)
        return {"registrar": "cloudflare"}


class TestExhaustivenessProperty:
    """Every section has exactly one handler."""

    def test_table_covers_every_section(self) -> None:
        assert set(SECTION_HANDLERS) == set(Section)
        assert_exhaustive(SECTION_HANDLERS)

    @given(section=st.sampled_from(list(Section)))
    @settings(max_examples=20)
    def test_missing_handler_is_detected(self, section: Section) -> None:
        partial = {s: h for s, h in SECTION_HANDLERS.items() if s != section}
        with pytest.raises(RuntimeError) as excinfo:
            assert_exhaustive(partial)
        assert section.value in str(excinfo.value)


class TestDispatchProperty:
    """A section runs its own fetch step and reports the outcome."""

    @given(section=st.sampled_from([s for s in Section if s != Section.HOSTING]))
    @settings(max_examples=20)
    def test_simple_sections_call_one_step(self, section: Section) -> None:
        source = RecordingSource()
        result = asyncio.run(SectionRevalidateDispatcher(source).revalidate("Example.com", section.value))

        assert result.success
        assert result.domain == "example.com"
        assert result.section == section.value
        assert source.calls == [section.value]
        assert result.to_dict() == {"success": True, "domain": "example.com", "section": section.value}

    def test_hosting_runs_prerequisites_first(self) -> None:
        source = RecordingSource()
        result = asyncio.run(SectionRevalidateDispatcher(source).revalidate("example.com", Section.HOSTING))

        assert result.success
        assert sorted(source.calls[:2]) == ["dns", "headers"]
        assert source.calls[2] == "hosting"
        assert result.data.hosting_provider_id == "vercel"

    @pytest.mark.parametrize("failing", ["dns", "headers"])
    def test_hosting_prerequisite_failure_skips_hosting(self, failing: str) -> None:
        source = RecordingSource(failing={failing})
        result = asyncio.run(SectionRevalidateDispatcher(source).revalidate("example.com", "hosting"))

        assert not result.success
        assert failing in result.error
        assert "hosting" not in source.calls

    @given(section=st.sampled_from(list(Section)))
    @settings(max_examples=20)
    def test_fetch_failure_is_reported(self, section: Section) -> None:
        source = RecordingSource(failing={section.value})
        result = asyncio.run(SectionRevalidateDispatcher(source).revalidate("example.com", section))

        assert result.success is False
        assert result.error.endswith("timed out for example.com")
        assert result.to_dict()["error"] == result.error

    def test_unknown_section(self) -> None:
        source = RecordingSource()
        result = asyncio.run(SectionRevalidateDispatcher(source).revalidate("example.com", "whois"))
        assert not result.success
        assert result.error == "Unknown section: whois"
        assert source.calls == []

    def test_invalid_domain(self) -> None:
        source = RecordingSource()
        result = asyncio.run(SectionRevalidateDispatcher(source).revalidate("not a domain", "dns"))
        assert not result.success
        assert result.error
        assert source.calls == []
