"""
RDAP client for registration data.

Queries an RDAP bootstrap service (rdap.org by default, which redirects to the
registry's server) and extracts the registrar, nameservers, EPP statuses,
transfer lock and expiration date used by the registration section, change
detection and expiry alerts.
"""

import re
import time
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urlparse

import httpx

from .audit_logger import AuditLogger, ComponentLogger
from .change_detection import normalize_status
from .enums import RDAPErrorCode
from .exceptions import TransientNetworkError

TRANSFER_LOCK_STATUSES = frozenset({
    normalize_status("client transfer prohibited"),
    normalize_status("server transfer prohibited"),
})


@dataclass
class RDAPParsedFields:
    """
    Parsed RDAP domain object.

    Only the fields below are extracted; everything else is ignored.
    """

    domain_name: str
    registrar: Optional[str]
    statuses: list[str] = field(default_factory=list)
    nameservers: list[str] = field(default_factory=list)
    expiration_date: Optional[str] = None

    @property
    def transfer_lock(self) -> Optional[bool]:
        """True when any transfer-prohibited status is set; None without statuses."""
        if not self.statuses:
            return None
        return any(normalize_status(s) in TRANSFER_LOCK_STATUSES for s in self.statuses)


@dataclass
class RDAPError:
    """Error information from an RDAP query."""

    code: RDAPErrorCode
    message: str
    http_status_code: Optional[int] = None


@dataclass
class RDAPResponse:
    """Complete RDAP query response."""

    http_status_code: int
    parsed_fields: Optional[RDAPParsedFields]
    error: Optional[RDAPError]
    response_time_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.parsed_fields is not None and self.error is None


def provider_id_from_name(name: Optional[str]) -> Optional[str]:
    """Stable provider id for a display name: ``"GoDaddy.com, LLC"`` -> ``"godaddy-com-llc"``."""
    if not name:
        return None
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or None


def _vcard_fn(entity: dict) -> Optional[str]:
    vcard = entity.get("vcardArray")
    if not isinstance(vcard, list) or len(vcard) < 2 or not isinstance(vcard[1], list):
        return None
    for prop in vcard[1]:
        if isinstance(prop, list) and len(prop) >= 4 and prop[0] == "fn":
            value = prop[3]
            return str(value) if value else None
    return None


def _event_date(json_data: dict, action: str) -> Optional[str]:
    for event in json_data.get("events", []) or []:
        if isinstance(event, dict) and event.get("eventAction") == action and event.get("eventDate"):
            return str(event["eventDate"])
    return None


def parse_domain_object(json_data: Any) -> Optional[RDAPParsedFields]:
    """
    Extract the fields we track from an RDAP domain object.

    Returns None when ``json_data`` is not a domain object.
    """
    if not isinstance(json_data, dict):
        return None
    domain_name = json_data.get("ldhName") or json_data.get("unicodeName")
    if not domain_name:
        return None

    statuses = json_data.get("status", [])
    if not isinstance(statuses, list):
        statuses = [statuses] if statuses else []

    nameservers = []
    for ns in json_data.get("nameservers", []) or []:
        if isinstance(ns, dict):
            ns_name = ns.get("ldhName") or ns.get("unicodeName")
            if ns_name:
                nameservers.append(str(ns_name).lower().rstrip("."))

    registrar = None
    for entity in json_data.get("entities", []) or []:
        if isinstance(entity, dict) and "registrar" in (entity.get("roles") or []):
            registrar = _vcard_fn(entity) or entity.get("handle")
            break

    return RDAPParsedFields(
        domain_name=str(domain_name).lower(),
        registrar=registrar,
        statuses=[str(s) for s in statuses],
        nameservers=nameservers,
        expiration_date=_event_date(json_data, "expiration"),
    )


class RDAPClient:
    """Async RDAP client. TLS is required for the bootstrap endpoint."""

    def __init__(
        self,
        base_url: str = "https://rdap.org",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        simulation_mode: bool = False,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        parsed = urlparse(base_url)
        if parsed.scheme.lower() != "https":
            raise ValueError(f"RDAP endpoint must use HTTPS: {base_url}")
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._simulation_mode = simulation_mode
        self._log = ComponentLogger(logger, "RDAPClient")

    async def query(self, domain: str) -> RDAPResponse:
        """Query RDAP for ``domain``. Errors are returned, never raised."""
        start_time = time.perf_counter()

        if self._simulation_mode:
            return RDAPResponse(
                http_status_code=200,
                parsed_fields=RDAPParsedFields(domain_name=domain, registrar=None, statuses=["active"]),
                error=None,
                response_time_ms=self._elapsed_ms(start_time),
            )

        url = f"{self._base_url}/domain/{domain}"
        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
            ) as client:
                response = await client.get(
                    url,
                    headers={"Accept": "application/rdap+json, application/json"},
                )
        except httpx.TimeoutException:
            return self._error(RDAPErrorCode.TIMEOUT, f"RDAP request timed out after {self._timeout}s", start_time)
        except httpx.HTTPError as e:
            return self._error(RDAPErrorCode.NETWORK_ERROR, f"Connection error: {e}", start_time)

        status = response.status_code
        if status == 404:
            return self._error(RDAPErrorCode.NOT_FOUND, "Domain not found in RDAP", start_time, status)
        if status >= 500 or status == 429:
            return self._error(RDAPErrorCode.SERVER_ERROR, f"RDAP server error: {status}", start_time, status)
        if status != 200:
            return self._error(RDAPErrorCode.SERVER_ERROR, f"Unexpected HTTP status: {status}", start_time, status)

        try:
            parsed = parse_domain_object(response.json())
        except ValueError as e:
            return self._error(RDAPErrorCode.PARSE_ERROR, f"Failed to parse RDAP response: {e}", start_time, status)
        if parsed is None:
            return self._error(
                RDAPErrorCode.PARSE_ERROR, "Response does not contain valid domain object", start_time, status
            )

        self._log.debug(
            "RDAP lookup complete",
            {"domain": domain, "registrar": parsed.registrar, "response_time_ms": self._elapsed_ms(start_time)},
        )
        return RDAPResponse(
            http_status_code=status,
            parsed_fields=parsed,
            error=None,
            response_time_ms=self._elapsed_ms(start_time),
        )

    async def lookup(self, domain: str) -> RDAPParsedFields:
        """
        Like ``query`` but raising on failure.

        Raises:
            TransientNetworkError: If the lookup did not produce a domain object
        """
        response = await self.query(domain)
        if not response.ok:
            error = response.error
            raise TransientNetworkError(
                code=error.code.value if error else RDAPErrorCode.PARSE_ERROR.value,
                message=error.message if error else "RDAP lookup failed",
                details={"domain": domain, "http_status_code": response.http_status_code},
            )
        return response.parsed_fields

    def _error(
        self,
        code: RDAPErrorCode,
        message: str,
        start_time: float,
        http_status_code: int = 0,
    ) -> RDAPResponse:
        return RDAPResponse(
            http_status_code=http_status_code,
            parsed_fields=None,
            error=RDAPError(code=code, message=message, http_status_code=http_status_code or None),
            response_time_ms=self._elapsed_ms(start_time),
        )

    def _elapsed_ms(self, start_time: float) -> float:
        return round((time.perf_counter() - start_time) * 1000, 1)
