"""
Property-based tests for the guarded fetch.

Requests go through httpx.MockTransport and host resolution is injected,
so the SSRF guards are exercised without touching the network.
"""

import asyncio

import httpx
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from domain_monitor.enums import FetchErrorKind
from domain_monitor.exceptions import SafeFetchError, TransientNetworkError
from domain_monitor.safe_fetch import GuardedFetcher, is_disallowed_address


PUBLIC_IP = "93.184.216.34"


def resolver_for(mapping: dict[str, list[str]]):
    async def resolve(host: str) -> list[str]:
        if host not in mapping:
            raise OSError(f"unknown host {host}")
        return mapping[host]
    return resolve


async def public_resolver(host: str) -> list[str]:
    return [PUBLIC_IP]


def fetcher_with(handler, resolve=public_resolver) -> GuardedFetcher:
    return GuardedFetcher(transport=httpx.MockTransport(handler), resolve_host=resolve)


def fetch_error(coro) -> SafeFetchError:
    with pytest.raises(SafeFetchError) as excinfo:
        asyncio.run(coro)
    return excinfo.value


private_ip_strategy = st.one_of(
    st.builds(lambda a, b, c: f"10.{a}.{b}.{c}", *(st.integers(0, 255),) * 3),
    st.builds(lambda b, c: f"192.168.{b}.{c}", st.integers(0, 255), st.integers(0, 255)),
    st.builds(lambda a, b, c: f"172.{a}.{b}.{c}", st.integers(16, 31), st.integers(0, 255), st.integers(0, 255)),
    st.builds(lambda b, c: f"127.0.{b}.{c}", st.integers(0, 255), st.integers(1, 254)),
    st.builds(lambda b, c: f"169.254.{b}.{c}", st.integers(0, 255), st.integers(0, 255)),
    st.sampled_from(["::1", "fe80::1", "fd00::1", "0.0.0.0", "::ffff:10.0.0.1"]),
)


class TestAddressGuardProperty:
    """Private, loopback and link-local targets are refused before any request."""

    @given(ip=private_ip_strategy)
    @settings(max_examples=100)
    def test_private_addresses_are_disallowed(self, ip: str) -> None:
        assert is_disallowed_address(ip)

    @pytest.mark.parametrize("ip", [PUBLIC_IP, "1.1.1.1", "2606:4700:4700::1111"])
    def test_public_addresses_are_allowed(self, ip: str) -> None:
        assert not is_disallowed_address(ip)

    @given(ip=private_ip_strategy)
    @settings(max_examples=30)
    def test_host_resolving_privately_is_refused(self, ip: str) -> None:
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, text="ok")

        fetcher = fetcher_with(handler, resolver_for({"example.com": [PUBLIC_IP, ip]}))
        error = fetch_error(fetcher.fetch("https://example.com/"))

        assert error.kind == FetchErrorKind.PRIVATE_IP
        assert requests == []

    def test_ip_literal_is_checked(self) -> None:
        fetcher = fetcher_with(lambda r: httpx.Response(200))
        assert fetch_error(fetcher.fetch("https://127.0.0.1/")).kind == FetchErrorKind.PRIVATE_IP

    @pytest.mark.parametrize("url", ["https://localhost/", "https://printer.local/", "https://db.internal/"])
    def test_blocked_hostnames(self, url: str) -> None:
        fetcher = fetcher_with(lambda r: httpx.Response(200))
        assert fetch_error(fetcher.fetch(url)).kind == FetchErrorKind.HOST_BLOCKED

    def test_unresolvable_host(self) -> None:
        fetcher = fetcher_with(lambda r: httpx.Response(200), resolver_for({}))
        error = fetch_error(fetcher.fetch("https://nowhere.example/"))
        assert error.kind == FetchErrorKind.DNS_ERROR
        assert isinstance(error, TransientNetworkError)


class TestProtocolProperty:
    """Only https, plus http when explicitly allowed."""

    @pytest.mark.parametrize("url", ["ftp://example.com/", "file:///etc/passwd", "gopher://example.com/"])
    def test_other_schemes_refused(self, url: str) -> None:
        fetcher = fetcher_with(lambda r: httpx.Response(200))
        kind = fetch_error(fetcher.fetch(url, allow_http=True)).kind
        assert kind in (FetchErrorKind.PROTOCOL_NOT_ALLOWED, FetchErrorKind.INVALID_URL)

    def test_http_needs_opt_in(self) -> None:
        fetcher = fetcher_with(lambda r: httpx.Response(200, text="hello"))
        assert fetch_error(fetcher.fetch("http://example.com/")).kind == FetchErrorKind.PROTOCOL_NOT_ALLOWED
        result = asyncio.run(fetcher.fetch("http://example.com/", allow_http=True))
        assert result.ok and result.text() == "hello"


class TestRedirectProperty:
    """Every redirect hop is re-checked against the same guards."""

    def test_redirect_off_allowlist_is_refused(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(302, headers={"location": "https://evil.example/steal"})

        fetcher = fetcher_with(handler)
        error = fetch_error(fetcher.fetch(
            "https://example.com/",
            allowed_hosts=["example.com", "www.example.com"],
        ))
        assert error.kind == FetchErrorKind.HOST_NOT_ALLOWED

    def test_redirect_to_www_is_followed(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "example.com":
                return httpx.Response(301, headers={"location": "https://www.example.com/"})
            return httpx.Response(200, text="home", headers={"X-Vercel-Id": "fra1::abc"})

        fetcher = fetcher_with(handler)
        result = asyncio.run(fetcher.fetch(
            "https://example.com/",
            allowed_hosts=["example.com", "www.example.com"],
        ))
        assert result.final_url == "https://www.example.com/"
        assert result.text() == "home"
        assert result.headers["x-vercel-id"] == "fra1::abc"

    def test_redirect_to_private_address_is_refused(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(302, headers={"location": "http://169.254.169.254/latest/meta-data"})

        fetcher = fetcher_with(handler)
        error = fetch_error(fetcher.fetch("https://example.com/", allow_http=True))
        assert error.kind == FetchErrorKind.PRIVATE_IP

    @given(max_redirects=st.integers(min_value=0, max_value=4))
    @settings(max_examples=5)
    def test_redirect_limit(self, max_redirects: int) -> None:
        hops = []

        def handler(request: httpx.Request) -> httpx.Response:
            hops.append(str(request.url))
            return httpx.Response(302, headers={"location": f"/hop{len(hops)}"})

        fetcher = fetcher_with(handler)
        error = fetch_error(fetcher.fetch("https://example.com/", max_redirects=max_redirects))

        assert error.kind == FetchErrorKind.REDIRECT_LIMIT
        assert len(hops) == max_redirects + 1


class TestSizeCapProperty:
    """Bodies larger than the cap are rejected, smaller ones returned intact."""

    @given(size=st.integers(min_value=0, max_value=4096), cap=st.integers(min_value=1, max_value=4096))
    @settings(max_examples=50)
    def test_size_cap(self, size: int, cap: int) -> None:
        body = b"x" * size
        fetcher = fetcher_with(lambda r: httpx.Response(200, content=body))

        if size > cap:
            error = fetch_error(fetcher.fetch("https://example.com/", max_bytes=cap))
            assert error.kind == FetchErrorKind.SIZE_EXCEEDED
        else:
            result = asyncio.run(fetcher.fetch("https://example.com/", max_bytes=cap))
            assert result.buffer == body

    def test_non_2xx_is_returned_not_raised(self) -> None:
        fetcher = fetcher_with(lambda r: httpx.Response(404, text="missing"))
        result = asyncio.run(fetcher.fetch("https://example.com/x"))
        assert result.ok is False
        assert result.status == 404

    def test_transport_failure_is_a_response_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        fetcher = fetcher_with(handler)
        assert fetch_error(fetcher.fetch("https://example.com/")).kind == FetchErrorKind.RESPONSE_ERROR
