"""
Property-based tests for provider detection and RDAP parsing.

RDAP traffic goes through httpx.MockTransport, so nothing leaves the process.
"""

import asyncio
import json

import httpx
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from domain_monitor.enums import RDAPErrorCode
from domain_monitor.exceptions import TransientNetworkError
from domain_monitor.fetchers import DnsRecords, certificate_from_peercert, parse_seo
from domain_monitor.providers import (
    detect_ca_provider,
    detect_dns_provider,
    detect_email_provider,
    detect_hosting_provider,
    registrable_domain,
)
from domain_monitor.rdap_client import RDAPClient, parse_domain_object, provider_id_from_name


RDAP_DOMAIN = {
    "objectClassName": "domain",
    "ldhName": "EXAMPLE.COM",
    "status": ["client transfer prohibited", "active"],
    "nameservers": [
        {"objectClassName": "nameserver", "ldhName": "A.IANA-SERVERS.NET."},
        {"objectClassName": "nameserver", "ldhName": "b.iana-servers.net"},
    ],
    "entities": [
        {"roles": ["technical"], "handle": "TECH-1"},
        {
            "roles": ["registrar"],
            "handle": "376",
            "vcardArray": ["vcard", [["version", {}, "text", "4.0"], ["fn", {}, "text", "RESERVED-Internet Assigned Numbers Authority"]]],
        },
    ],
}

label = st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789", min_size=1, max_size=12)


class TestProviderDetectionProperty:
    """Catalog matches first, then the registrable-domain fallback."""

    @pytest.mark.parametrize("ns, expected", [
        (["amy.ns.cloudflare.com", "bob.ns.cloudflare.com"], "cloudflare"),
        (["NS1.DOMAINCONTROL.COM."], "godaddy"),
        (["ns-123.awsdns-12.org", "ns-456.awsdns-40.net"], "aws-route53"),
        (["ns2.example-dns.co.uk", "ns1.example-dns.co.uk"], "example-dns.co.uk"),
        ([], None),
    ])
    def test_dns_provider(self, ns, expected) -> None:
        assert detect_dns_provider(ns) == expected

    @pytest.mark.parametrize("headers, expected", [
        ({"Server": "Vercel", "X-Vercel-Id": "fra1::abc"}, "vercel"),
        ({"CF-RAY": "8a1b2c3d4e5f-FRA"}, "cloudflare"),
        ({"X-GitHub-Request-Id": "ABCD:1234"}, "github-pages"),
        ({"Server": "nginx"}, None),
        ({}, None),
    ])
    def test_hosting_provider(self, headers, expected) -> None:
        assert detect_hosting_provider(headers) == expected

    @pytest.mark.parametrize("mx, expected", [
        (["aspmx.l.google.com", "alt1.aspmx.l.google.com"], "google-workspace"),
        (["example-com.mail.protection.outlook.com"], "microsoft-365"),
        (["mx1.mailhost.com."], "mailhost.com"),
        ([], None),
    ])
    def test_email_provider(self, mx, expected) -> None:
        assert detect_email_provider(mx) == expected

    @pytest.mark.parametrize("issuer, expected", [
        ("Let's Encrypt", "letsencrypt"),
        ("DigiCert Inc", "digicert"),
        ("COMODO CA Limited", "sectigo"),
        ("Acme Trust CA", "acme-trust-ca"),
        (None, None),
        ("", None),
    ])
    def test_ca_provider(self, issuer, expected) -> None:
        assert detect_ca_provider(issuer) == expected

    @given(labels=st.lists(label, min_size=0, max_size=3), sld=label, tld=st.sampled_from(["com", "net", "io", "dev"]))
    @settings(max_examples=100)
    def test_registrable_domain_keeps_last_two_labels(self, labels, sld, tld) -> None:
        host = ".".join(labels + [sld, tld])
        assert registrable_domain(host) == f"{sld}.{tld}"

    @given(labels=st.lists(label, min_size=0, max_size=3), sld=label)
    @settings(max_examples=50)
    def test_registrable_domain_two_label_suffix(self, labels, sld) -> None:
        host = ".".join(labels + [sld, "co", "uk"])
        assert registrable_domain(host) == f"{sld}.co.uk"

    @pytest.mark.parametrize("host", ["localhost", "co.uk", "", "."])
    def test_registrable_domain_none(self, host: str) -> None:
        assert registrable_domain(host) is None


class TestRdapParsingProperty:
    """Only the tracked fields come out of a domain object."""

    def test_parse_domain_object(self) -> None:
        parsed = parse_domain_object(RDAP_DOMAIN)

        assert parsed.domain_name == "example.com"
        assert parsed.registrar == "RESERVED-Internet Assigned Numbers Authority"
        assert parsed.nameservers == ["a.iana-servers.net", "b.iana-servers.net"]
        assert parsed.statuses == ["client transfer prohibited", "active"]
        assert parsed.transfer_lock is True
        assert parsed.expiration_date is None

    def test_expiration_event(self) -> None:
        data = dict(RDAP_DOMAIN, events=[
            {"eventAction": "registration", "eventDate": "1995-08-14T04:00:00Z"},
            {"eventAction": "expiration", "eventDate": "2026-08-13T04:00:00Z"},
            {"eventAction": "last changed", "eventDate": "2025-08-14T07:01:38Z"},
        ])
        assert parse_domain_object(data).expiration_date == "2026-08-13T04:00:00Z"

    def test_registrar_falls_back_to_handle(self) -> None:
        data = dict(RDAP_DOMAIN, entities=[{"roles": ["registrar"], "handle": "292"}])
        assert parse_domain_object(data).registrar == "292"

    @pytest.mark.parametrize("statuses, expected", [
        (["active"], False),
        (["serverTransferProhibited"], True),
        ([], None),
    ])
    def test_transfer_lock(self, statuses, expected) -> None:
        data = dict(RDAP_DOMAIN, status=statuses)
        assert parse_domain_object(data).transfer_lock is expected

    @pytest.mark.parametrize("data", [None, [], "domain", {"objectClassName": "entity"}])
    def test_not_a_domain_object(self, data) -> None:
        assert parse_domain_object(data) is None

    @pytest.mark.parametrize("name, expected", [
        ("GoDaddy.com, LLC", "godaddy-com-llc"),
        ("  Cloudflare, Inc. ", "cloudflare-inc"),
        ("!!!", None),
        ("", None),
        (None, None),
    ])
    def test_provider_id_from_name(self, name, expected) -> None:
        assert provider_id_from_name(name) == expected

    @given(name=st.text(max_size=40))
    @settings(max_examples=100)
    def test_provider_id_alphabet(self, name: str) -> None:
        slug = provider_id_from_name(name)
        if slug is not None:
            assert slug == slug.strip("-")
            assert all(c in "abcdefghijklmnopqrstuvwxyz0123456789-" for c in slug)


def rdap_client(handler) -> RDAPClient:
    return RDAPClient(base_url="https://rdap.example.test", transport=httpx.MockTransport(handler))


class TestRdapClientProperty:
    """HTTP outcomes map onto RDAP error codes; nothing is raised from query()."""

    def test_success(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, json=RDAP_DOMAIN)

        response = asyncio.run(rdap_client(handler).query("example.com"))

        assert response.ok
        assert response.parsed_fields.registrar.startswith("RESERVED")
        assert seen == ["https://rdap.example.test/domain/example.com"]

    @pytest.mark.parametrize("status, code", [
        (404, RDAPErrorCode.NOT_FOUND),
        (429, RDAPErrorCode.SERVER_ERROR),
        (503, RDAPErrorCode.SERVER_ERROR),
        (400, RDAPErrorCode.SERVER_ERROR),
    ])
    def test_http_errors(self, status: int, code: RDAPErrorCode) -> None:
        response = asyncio.run(rdap_client(lambda request: httpx.Response(status)).query("example.com"))

        assert not response.ok
        assert response.error.code == code
        assert response.error.http_status_code == status

    def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        response = asyncio.run(rdap_client(handler).query("example.com"))
        assert response.error.code == RDAPErrorCode.TIMEOUT

    def test_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        response = asyncio.run(rdap_client(handler).query("example.com"))
        assert response.error.code == RDAPErrorCode.NETWORK_ERROR

    @pytest.mark.parametrize("body", [b"{not json", json.dumps({"objectClassName": "entity"}).encode()])
    def test_parse_errors(self, body: bytes) -> None:
        response = asyncio.run(rdap_client(lambda request: httpx.Response(200, content=body)).query("example.com"))
        assert response.error.code == RDAPErrorCode.PARSE_ERROR

    def test_lookup_raises(self) -> None:
        with pytest.raises(TransientNetworkError) as excinfo:
            asyncio.run(rdap_client(lambda request: httpx.Response(404)).lookup("example.com"))
        assert excinfo.value.code == "not_found"

    def test_simulation_mode_makes_no_requests(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(500)

        client = RDAPClient(
            base_url="https://rdap.example.test",
            transport=httpx.MockTransport(handler),
            simulation_mode=True,
        )
        response = asyncio.run(client.query("example.com"))

        assert response.ok
        assert calls == []

    @pytest.mark.parametrize("base_url", ["http://rdap.org", "ftp://rdap.org", "rdap.org"])
    def test_https_required(self, base_url: str) -> None:
        with pytest.raises(ValueError):
            RDAPClient(base_url=base_url)


class TestSectionHelpersProperty:
    """Parsing helpers used by the section fetchers."""

    def test_parse_seo(self) -> None:
        html = """
        <html><head>
          <title> Example Domain </title>
          <meta name="description" content=" An example. ">
          <meta name="robots" content="noindex">
          <link rel="canonical" href="https://example.com/">
        </head><body></body></html>
        """
        seo = parse_seo("example.com", html)

        assert seo.title == "Example Domain"
        assert seo.description == "An example."
        assert seo.robots == "noindex"
        assert seo.canonical == "https://example.com/"

    def test_parse_seo_empty_page(self) -> None:
        seo = parse_seo("example.com", "<html></html>")
        assert (seo.title, seo.description, seo.robots, seo.canonical) == (None, None, None, None)

    def test_certificate_from_peercert(self) -> None:
        cert = {
            "issuer": ((("countryName", "US"),), (("organizationName", "Let's Encrypt"),), (("commonName", "R3"),)),
            "notAfter": "Jan  1 00:00:00 2026 GMT",
        }
        snapshot = certificate_from_peercert(cert, der=b"certificate-bytes")

        assert snapshot.issuer == "Let's Encrypt"
        assert snapshot.ca_provider_id == "letsencrypt"
        assert snapshot.valid_to == "2026-01-01T00:00:00+00:00"
        assert len(snapshot.fingerprint) == 64

    def test_certificate_issuer_falls_back_to_common_name(self) -> None:
        cert = {"issuer": ((("commonName", "Internal CA"),),)}
        snapshot = certificate_from_peercert(cert)

        assert snapshot.issuer == "Internal CA"
        assert snapshot.valid_to is None
        assert snapshot.fingerprint is None

    def test_dns_record_hosts(self) -> None:
        records = DnsRecords(
            domain="example.com",
            records={
                "MX": ["10 ASPMX.L.GOOGLE.COM.", "20 alt1.aspmx.l.google.com."],
                "NS": ["AMY.NS.CLOUDFLARE.COM.", "bob.ns.cloudflare.com"],
            },
        )
        assert records.mx_hosts == ["aspmx.l.google.com", "alt1.aspmx.l.google.com"]
        assert records.ns_hosts == ["amy.ns.cloudflare.com", "bob.ns.cloudflare.com"]
        assert DnsRecords(domain="example.com").mx_hosts == []
