"""
Provider detection.

Matches DNS, hosting, email and certificate providers against a small
built-in catalog of rules. When nothing in the catalog matches, DNS and
email fall back to the registrable domain of the first NS or MX host.
"""

from dataclasses import dataclass, field
from typing import Optional

from .rdap_client import provider_id_from_name

# Public suffixes with two labels that show up in NS/MX hostnames
_TWO_LABEL_SUFFIXES = frozenset({
    "co.uk", "org.uk", "ac.uk", "gov.uk",
    "com.au", "net.au", "org.au",
    "co.jp", "ne.jp", "or.jp",
    "com.br", "com.cn", "co.nz", "co.za", "com.mx", "com.tr",
})


@dataclass(frozen=True)
class ProviderRule:
    """
    One catalog entry.

    A rule matches when any of its conditions matches.
    """

    provider_id: str
    name: str
    ns_suffixes: tuple[str, ...] = ()
    mx_suffixes: tuple[str, ...] = ()
    headers_present: tuple[str, ...] = ()
    # (header name, substring) pairs, both lowercase
    header_includes: tuple[tuple[str, str], ...] = ()
    issuer_includes: tuple[str, ...] = ()


DNS_PROVIDERS = (
    ProviderRule("cloudflare", "Cloudflare", ns_suffixes=("ns.cloudflare.com",)),
    ProviderRule("google-cloud-dns", "Google Cloud DNS", ns_suffixes=("googledomains.com",)),
    ProviderRule("azure-dns", "Azure DNS", ns_suffixes=("azure-dns.com", "azure-dns.net", "azure-dns.org")),
    ProviderRule("godaddy", "GoDaddy", ns_suffixes=("domaincontrol.com",)),
    ProviderRule("namecheap", "Namecheap", ns_suffixes=("registrar-servers.com",)),
    ProviderRule("digitalocean", "DigitalOcean", ns_suffixes=("digitalocean.com",)),
    ProviderRule("vercel", "Vercel", ns_suffixes=("vercel-dns.com",)),
    ProviderRule("ns1", "NS1", ns_suffixes=("nsone.net",)),
)

HOSTING_PROVIDERS = (
    ProviderRule("vercel", "Vercel", headers_present=("x-vercel-id",), header_includes=(("server", "vercel"),)),
    ProviderRule("netlify", "Netlify", headers_present=("x-nf-request-id",), header_includes=(("server", "netlify"),)),
    ProviderRule("github-pages", "GitHub Pages", headers_present=("x-github-request-id",)),
    ProviderRule("cloudflare", "Cloudflare", headers_present=("cf-ray",), header_includes=(("server", "cloudflare"),)),
    ProviderRule("fastly", "Fastly", header_includes=(("x-served-by", "cache-"), ("via", "varnish"))),
    ProviderRule("aws-cloudfront", "Amazon CloudFront", headers_present=("x-amz-cf-id",)),
    ProviderRule("google-cloud", "Google Cloud", header_includes=(("server", "gws"), ("via", "google"))),
    ProviderRule("fly-io", "Fly.io", headers_present=("fly-request-id",)),
    ProviderRule("render", "Render", headers_present=("rndr-id",)),
)

EMAIL_PROVIDERS = (
    ProviderRule("google-workspace", "Google Workspace", mx_suffixes=("google.com", "googlemail.com")),
    ProviderRule("microsoft-365", "Microsoft 365", mx_suffixes=("outlook.com",)),
    ProviderRule("zoho-mail", "Zoho Mail", mx_suffixes=("zoho.com", "zoho.eu")),
    ProviderRule("fastmail", "Fastmail", mx_suffixes=("messagingengine.com",)),
    ProviderRule("proton-mail", "Proton Mail", mx_suffixes=("protonmail.ch",)),
    ProviderRule("icloud-mail", "iCloud Mail", mx_suffixes=("icloud.com",)),
)

CA_PROVIDERS = (
    ProviderRule("letsencrypt", "Let's Encrypt", issuer_includes=("let's encrypt",)),
    ProviderRule("google-trust-services", "Google Trust Services", issuer_includes=("google trust services",)),
    ProviderRule("digicert", "DigiCert", issuer_includes=("digicert",)),
    ProviderRule("sectigo", "Sectigo", issuer_includes=("sectigo", "comodo")),
    ProviderRule("amazon", "Amazon", issuer_includes=("amazon",)),
    ProviderRule("zerossl", "ZeroSSL", issuer_includes=("zerossl",)),
    ProviderRule("globalsign", "GlobalSign", issuer_includes=("globalsign",)),
)


@dataclass
class DetectionContext:
    headers: dict[str, str] = field(default_factory=dict)
    ns: list[str] = field(default_factory=list)
    mx: list[str] = field(default_factory=list)
    issuer: Optional[str] = None


def _clean_host(host: str) -> str:
    return host.strip().lower().rstrip(".")


def _any_suffix(hosts: list[str], suffix: str) -> bool:
    return any(h == suffix or h.endswith(f".{suffix}") for h in hosts)


def registrable_domain(host: str) -> Optional[str]:
    """``ns1.dns.example.co.uk`` -> ``example.co.uk``."""
    labels = [label for label in _clean_host(host).split(".") if label]
    if len(labels) < 2:
        return None
    keep = 3 if ".".join(labels[-2:]) in _TWO_LABEL_SUFFIXES else 2
    if len(labels) < keep:
        return None
    return ".".join(labels[-keep:])


def make_context(
    headers: Optional[dict[str, str]] = None,
    ns: Optional[list[str]] = None,
    mx: Optional[list[str]] = None,
    issuer: Optional[str] = None,
) -> DetectionContext:
    return DetectionContext(
        headers={k.lower(): v.strip().lower() for k, v in (headers or {}).items()},
        ns=[_clean_host(h) for h in ns or []],
        mx=[_clean_host(h) for h in mx or []],
        issuer=issuer.lower() if issuer else None,
    )


def rule_matches(rule: ProviderRule, ctx: DetectionContext) -> bool:
    if any(_any_suffix(ctx.ns, s) for s in rule.ns_suffixes):
        return True
    if any(_any_suffix(ctx.mx, s) for s in rule.mx_suffixes):
        return True
    if any(name in ctx.headers for name in rule.headers_present):
        return True
    if any(sub in ctx.headers.get(name, "") for name, sub in rule.header_includes):
        return True
    if ctx.issuer and any(sub in ctx.issuer for sub in rule.issuer_includes):
        return True
    return False


def _first_match(rules: tuple[ProviderRule, ...], ctx: DetectionContext) -> Optional[str]:
    for rule in rules:
        if rule_matches(rule, ctx):
            return rule.provider_id
    return None


def detect_dns_provider(ns_hosts: list[str]) -> Optional[str]:
    ctx = make_context(ns=ns_hosts)
    found = _first_match(DNS_PROVIDERS, ctx)
    if found or not ctx.ns:
        return found
    # awsdns hosts are numbered (awsdns-12.org, awsdns-40.net, ...)
    if any(".awsdns-" in h for h in ctx.ns):
        return "aws-route53"
    return registrable_domain(sorted(ctx.ns)[0])


def detect_hosting_provider(headers: dict[str, str]) -> Optional[str]:
    return _first_match(HOSTING_PROVIDERS, make_context(headers=headers))


def detect_email_provider(mx_hosts: list[str]) -> Optional[str]:
    ctx = make_context(mx=mx_hosts)
    found = _first_match(EMAIL_PROVIDERS, ctx)
    if found or not ctx.mx:
        return found
    return registrable_domain(ctx.mx[0])


def detect_ca_provider(issuer: Optional[str]) -> Optional[str]:
    if not issuer:
        return None
    return _first_match(CA_PROVIDERS, make_context(issuer=issuer)) or provider_id_from_name(issuer)
