"""
Guarded HTTP fetch for probing user-controlled hosts.

Verification fetches URLs on domains chosen by users, so every request is
checked before it leaves the process: scheme, blocked hostnames, an optional
host allowlist (re-applied on every redirect hop) and private/reserved
address ranges. Bodies are read with a hard byte cap.
"""

import asyncio
import ipaddress
import socket
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional
from urllib.parse import urljoin, urlsplit

import httpx

from .audit_logger import AuditLogger, ComponentLogger
from .enums import FetchErrorKind
from .exceptions import SafeFetchError

BLOCKED_HOSTNAMES = frozenset({"localhost"})
BLOCKED_SUFFIXES = (".local", ".internal", ".localhost")
REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})

HostResolver = Callable[[str], Awaitable[list[str]]]


@dataclass
class FetchResult:
    """Outcome of a guarded fetch that reached a final (non-redirect) response."""

    ok: bool
    status: int
    buffer: bytes
    content_type: Optional[str]
    final_url: str
    headers: dict[str, str] = field(default_factory=dict)
    response_time_ms: float = 0.0

    def text(self, encoding: str = "utf-8") -> str:
        return self.buffer.decode(encoding, errors="replace")


async def resolve_with_system_dns(host: str) -> list[str]:
    """Resolve ``host`` to its IP addresses with the system resolver."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    return sorted({info[4][0] for info in infos})


def is_disallowed_address(ip: str) -> bool:
    """True for private, loopback, link-local, reserved, multicast or unspecified IPs."""
    address = ipaddress.ip_address(ip)
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
        address = address.ipv4_mapped
    return (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_reserved
        or address.is_multicast
        or address.is_unspecified
    )


def _normalize_host(host: str) -> str:
    return host.strip().rstrip(".").lower()


def _ip_literal(host: str) -> Optional[str]:
    try:
        return str(ipaddress.ip_address(host.strip("[]")))
    except ValueError:
        return None


class GuardedFetcher:
    """
    SSRF-aware HTTP client built on httpx.

    Redirects are followed manually so each hop goes through the same checks
    as the original URL.
    """

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        resolve_host: Optional[HostResolver] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Args:
            transport: Optional httpx transport (tests pass httpx.MockTransport)
            resolve_host: Coroutine mapping a hostname to its IPs
            logger: Optional audit logger
        """
        self._transport = transport
        self._resolve_host = resolve_host or resolve_with_system_dns
        self._log = ComponentLogger(logger, "GuardedFetcher")

    async def fetch(
        self,
        url: str,
        allowed_hosts: Optional[list[str]] = None,
        allow_http: bool = False,
        timeout_ms: int = 5000,
        max_bytes: int = 1024 * 1024,
        max_redirects: int = 3,
        user_agent: Optional[str] = None,
        method: str = "GET",
    ) -> FetchResult:
        """
        Fetch ``url`` under the given guards.

        Raises:
            SafeFetchError: When a guard rejects the request, the redirect
                limit is hit, the body is too large, or the request fails
        """
        start_time = time.perf_counter()
        allowlist = (
            {_normalize_host(h) for h in allowed_hosts} if allowed_hosts else None
        )
        headers = {"Accept": "*/*"}
        if user_agent:
            headers["User-Agent"] = user_agent

        current_url = url
        async with httpx.AsyncClient(
            transport=self._transport,
            timeout=httpx.Timeout(timeout_ms / 1000),
            follow_redirects=False,
        ) as client:
            for hop in range(max_redirects + 1):
                await self._check_url(current_url, allowlist, allow_http)

                try:
                    async with client.stream(method, current_url, headers=headers) as response:
                        location = response.headers.get("location")
                        if response.status_code in REDIRECT_STATUSES and location:
                            if hop >= max_redirects:
                                raise SafeFetchError(
                                    FetchErrorKind.REDIRECT_LIMIT,
                                    f"Too many redirects fetching {url}",
                                    {"url": url, "max_redirects": max_redirects},
                                )
                            current_url = urljoin(current_url, location)
                            continue

                        body = await self._read_capped(response, max_bytes, current_url)
                        return FetchResult(
                            ok=200 <= response.status_code < 300,
                            status=response.status_code,
                            buffer=body,
                            content_type=response.headers.get("content-type"),
                            final_url=current_url,
                            headers={k.lower(): v for k, v in response.headers.items()},
                            response_time_ms=(time.perf_counter() - start_time) * 1000,
                        )
                except httpx.TimeoutException as e:
                    raise SafeFetchError(
                        FetchErrorKind.RESPONSE_ERROR,
                        f"Request timed out after {timeout_ms}ms",
                        {"url": current_url, "reason": "timeout", "error": str(e)},
                    )
                except httpx.HTTPError as e:
                    raise SafeFetchError(
                        FetchErrorKind.RESPONSE_ERROR,
                        f"Request failed: {e}",
                        {"url": current_url, "reason": type(e).__name__},
                    )

        # unreachable: the loop either returns or raises
        raise SafeFetchError(
            FetchErrorKind.REDIRECT_LIMIT,
            f"Too many redirects fetching {url}",
            {"url": url, "max_redirects": max_redirects},
        )

    async def _check_url(
        self,
        url: str,
        allowlist: Optional[set[str]],
        allow_http: bool,
    ) -> None:
        try:
            parts = urlsplit(url)
            host = parts.hostname
        except ValueError:
            host = None
            parts = None

        if parts is None or not host:
            raise SafeFetchError(FetchErrorKind.INVALID_URL, f"Invalid URL: {url}", {"url": url})

        scheme = parts.scheme.lower()
        if scheme != "https" and not (allow_http and scheme == "http"):
            raise SafeFetchError(
                FetchErrorKind.PROTOCOL_NOT_ALLOWED,
                f"Protocol not allowed: {scheme}",
                {"url": url, "scheme": scheme},
            )

        host = _normalize_host(host)
        if host in BLOCKED_HOSTNAMES or host.endswith(BLOCKED_SUFFIXES):
            raise SafeFetchError(
                FetchErrorKind.HOST_BLOCKED,
                f"Host is blocked: {host}",
                {"url": url, "host": host},
            )

        if allowlist is not None and host not in allowlist:
            raise SafeFetchError(
                FetchErrorKind.HOST_NOT_ALLOWED,
                f"Host not in allowlist: {host}",
                {"url": url, "host": host},
            )

        literal = _ip_literal(host)
        if literal is not None:
            addresses = [literal]
        else:
            try:
                addresses = await self._resolve_host(host)
            except (OSError, UnicodeError) as e:
                raise SafeFetchError(
                    FetchErrorKind.DNS_ERROR,
                    f"Could not resolve {host}",
                    {"url": url, "host": host, "error": str(e)},
                )
            if not addresses:
                raise SafeFetchError(
                    FetchErrorKind.DNS_ERROR,
                    f"No addresses for {host}",
                    {"url": url, "host": host},
                )

        blocked = [ip for ip in addresses if is_disallowed_address(ip)]
        if blocked:
            self._log.warn("Refusing private address", {"url": url, "host": host, "addresses": blocked})
            raise SafeFetchError(
                FetchErrorKind.PRIVATE_IP,
                f"Host resolves to a private address: {host}",
                {"url": url, "host": host, "addresses": blocked},
            )

    async def _read_capped(
        self,
        response: httpx.Response,
        max_bytes: int,
        url: str,
    ) -> bytes:
        declared = response.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > max_bytes:
            raise SafeFetchError(
                FetchErrorKind.SIZE_EXCEEDED,
                f"Response declares {declared} bytes, limit is {max_bytes}",
                {"url": url, "max_bytes": max_bytes},
            )

        chunks: list[bytes] = []
        total = 0
        async for chunk in response.aiter_bytes():
            total += len(chunk)
            if total > max_bytes:
                raise SafeFetchError(
                    FetchErrorKind.SIZE_EXCEEDED,
                    f"Response exceeded {max_bytes} bytes",
                    {"url": url, "max_bytes": max_bytes},
                )
            chunks.append(chunk)
        return b"".join(chunks)
