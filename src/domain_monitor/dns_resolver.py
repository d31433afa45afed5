"""
DNS-over-HTTPS resolver.

Queries public DoH JSON endpoints instead of the system resolver so freshly
published TXT records are visible without waiting on local caches. Providers
are tried in an order derived from the queried domain, spreading load
deterministically across providers.
"""

import time
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from .audit_logger import AuditLogger, ComponentLogger
from .exceptions import TransientNetworkError

RECORD_TYPES = {
    "A": 1,
    "NS": 2,
    "CNAME": 5,
    "MX": 15,
    "TXT": 16,
    "AAAA": 28,
}


@dataclass(frozen=True)
class DohProvider:
    """A DNS-over-HTTPS JSON endpoint."""

    key: str
    url: str


DEFAULT_PROVIDERS = (
    DohProvider(key="cloudflare", url="https://cloudflare-dns.com/dns-query"),
    DohProvider(key="google", url="https://dns.google/resolve"),
)


@dataclass
class DnsAnswer:
    """One answer record from a DoH response."""

    name: str
    type: str
    ttl: int
    data: str


class TxtResolver(Protocol):
    """Anything that can look up TXT records by name."""

    async def resolve_txt(self, name: str) -> list[str]:
        ...


def simple_hash(value: str) -> int:
    """Small deterministic string hash (31-multiplier, 32-bit)."""
    h = 0
    for ch in value:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    return h


def provider_order_for_lookup(
    domain: str,
    providers: tuple[DohProvider, ...] = DEFAULT_PROVIDERS,
) -> list[DohProvider]:
    """Rotate ``providers`` by a hash of ``domain``; same domain, same order."""
    if not providers:
        return []
    start = simple_hash(domain.lower()) % len(providers)
    return list(providers[start:]) + list(providers[:start])


def strip_txt_quotes(value: str) -> str:
    """Join quoted TXT character-strings and trim whitespace."""
    value = value.strip()
    if value.startswith('"') and value.endswith('"') and len(value) >= 2:
        # multi-string records arrive as "part1" "part2"
        parts = [p for p in value[1:-1].split('" "')]
        value = "".join(parts)
    return value.strip()


class DohResolver:
    """Resolve records over DoH, falling back across providers."""

    def __init__(
        self,
        providers: tuple[DohProvider, ...] = DEFAULT_PROVIDERS,
        timeout_ms: int = 5000,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._providers = providers
        self._timeout = timeout_ms / 1000
        self._transport = transport
        self._log = ComponentLogger(logger, "DohResolver")

    async def resolve(self, name: str, record_type: str = "A") -> list[DnsAnswer]:
        """
        Look up ``record_type`` records for ``name``.

        Each provider gets one attempt. The first provider that answers wins,
        including an empty answer (NXDOMAIN or no data).

        Raises:
            TransientNetworkError: If no provider produced a usable response
        """
        record_type = record_type.upper()
        type_code = RECORD_TYPES.get(record_type)
        if type_code is None:
            raise ValueError(f"Unsupported record type: {record_type}")

        errors: dict[str, str] = {}
        async with httpx.AsyncClient(
            transport=self._transport,
            timeout=httpx.Timeout(self._timeout),
        ) as client:
            for provider in provider_order_for_lookup(name, self._providers):
                start_time = time.perf_counter()
                try:
                    response = await client.get(
                        provider.url,
                        params={"name": name, "type": record_type},
                        headers={"Accept": "application/dns-json"},
                    )
                    if response.status_code != 200:
                        errors[provider.key] = f"HTTP {response.status_code}"
                        continue
                    payload = response.json()
                except (httpx.HTTPError, ValueError) as e:
                    errors[provider.key] = f"{type(e).__name__}: {e}"
                    self._log.debug(
                        "DoH provider failed",
                        {"provider": provider.key, "name": name, "type": record_type, "error": str(e)},
                    )
                    continue

                answers = [
                    DnsAnswer(
                        name=str(item.get("name", "")).rstrip("."),
                        type=record_type,
                        ttl=int(item.get("TTL", 0)),
                        data=str(item.get("data", "")),
                    )
                    for item in payload.get("Answer", []) or []
                    if item.get("type") == type_code
                ]
                self._log.debug(
                    "DoH lookup complete",
                    {
                        "provider": provider.key,
                        "name": name,
                        "type": record_type,
                        "answers": len(answers),
                        "response_time_ms": round((time.perf_counter() - start_time) * 1000, 1),
                    },
                )
                return answers

        raise TransientNetworkError(
            code="dns_error",
            message=f"All DoH providers failed for {name} {record_type}",
            details={"name": name, "type": record_type, "errors": errors},
        )

    async def resolve_txt(self, name: str) -> list[str]:
        return [strip_txt_quotes(a.data) for a in await self.resolve(name, "TXT")]
