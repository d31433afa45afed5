"""
Property-based tests for change detection.

Change detection is a pure function of two snapshots, so these tests drive it
directly with generated registration, certificate and provider data.
"""

from hypothesis import given, settings
from hypothesis import strategies as st

from domain_monitor.change_detection import (
    detect_changes,
    detect_certificate_changes,
    detect_provider_changes,
    detect_registration_changes,
    hosts_equal,
    normalize_status,
    select_leaf_certificate,
    statuses_equal,
)
from domain_monitor.enums import NotificationCategory
from domain_monitor.models import (
    CertificateSnapshot,
    ProviderSnapshot,
    RegistrationSnapshot,
    Snapshot,
)


EPP_WORDS = [
    ["client", "transfer", "prohibited"],
    ["server", "delete", "prohibited"],
    ["client", "update", "prohibited"],
    ["active"],
    ["pending", "transfer"],
    ["redemption", "period"],
]


@st.composite
def status_spelling_strategy(draw, words: list[str]) -> str:
    """One EPP status in camelCase, spaced, snake_case or kebab-case form."""
    style = draw(st.sampled_from(["camel", "space", "snake", "kebab", "upper"]))
    if style == "camel":
        return words[0] + "".join(w.capitalize() for w in words[1:])
    if style == "space":
        return " ".join(words)
    if style == "snake":
        return "_".join(words)
    if style == "kebab":
        return "-".join(words)
    return " ".join(words).upper()


host_strategy = st.from_regex(r"ns[0-9]\.[a-z]{3,8}\.(com|net|org)", fullmatch=True)
provider_id_strategy = st.one_of(st.none(), st.sampled_from(["cloudflare", "aws-route53", "vercel", "netlify"]))


@st.composite
def registration_strategy(draw) -> RegistrationSnapshot:
    return RegistrationSnapshot(
        registrar_provider_id=draw(provider_id_strategy),
        nameservers=draw(st.lists(host_strategy, max_size=4, unique=True)),
        transfer_lock=draw(st.one_of(st.none(), st.booleans())),
        statuses=[" ".join(words) for words in draw(st.lists(st.sampled_from(EPP_WORDS), max_size=3))],
    )


@st.composite
def snapshot_strategy(draw) -> Snapshot:
    return Snapshot(
        tracked_domain_id="td-1",
        registration=draw(registration_strategy()),
        certificate=draw(st.one_of(
            st.none(),
            st.builds(
                CertificateSnapshot,
                ca_provider_id=provider_id_strategy,
                issuer=st.one_of(st.none(), st.sampled_from(["R3", "E1", "DigiCert TLS RSA SHA256 2020 CA1"])),
            ),
        )),
        providers=draw(st.builds(
            ProviderSnapshot,
            dns_provider_id=provider_id_strategy,
            hosting_provider_id=provider_id_strategy,
            email_provider_id=provider_id_strategy,
        )),
    )


class TestStatusNormalizationProperty:
    """Status sets compare equal modulo case, spacing, underscores and hyphens."""

    @given(data=st.data(), picks=st.lists(st.sampled_from(EPP_WORDS), min_size=1, max_size=4))
    @settings(max_examples=100)
    def test_spellings_and_order_do_not_matter(self, data, picks: list[list[str]]) -> None:
        first = [data.draw(status_spelling_strategy(words)) for words in picks]
        second = [data.draw(status_spelling_strategy(words)) for words in picks]
        second = data.draw(st.permutations(second))

        assert statuses_equal(first, second), (
            f"{first!r} and {second!r} should normalize to the same set"
        )

    def test_documented_equivalences(self) -> None:
        assert statuses_equal(
            ["active", "clientTransferProhibited"],
            ["client transfer prohibited", "active"],
        )
        assert normalize_status("client_transfer_prohibited") == normalize_status("clientTransferProhibited")

    def test_different_statuses_are_not_equal(self) -> None:
        assert not statuses_equal(["clientTransferProhibited"], ["serverTransferProhibited"])


class TestHostSetProperty:
    """Nameserver comparisons ignore order, case and trailing dots."""

    @given(hosts=st.lists(host_strategy, min_size=1, max_size=5, unique=True), data=st.data())
    @settings(max_examples=100)
    def test_order_independent(self, hosts: list[str], data) -> None:
        shuffled = data.draw(st.permutations(hosts))
        decorated = [h.upper() + "." for h in shuffled]
        assert hosts_equal(hosts, shuffled)
        assert hosts_equal(hosts, decorated)

    def test_added_nameserver_is_a_change(self) -> None:
        previous = RegistrationSnapshot(nameservers=["a.ns.com"])
        current = RegistrationSnapshot(nameservers=["a.ns.com", "b.ns.com"])
        changes = detect_registration_changes(previous, current)
        assert changes.nameservers_changed
        assert changes.new_nameservers == ["a.ns.com", "b.ns.com"]


class TestChangeRecordProperty:
    """Flags, values and categories of a ChangeRecord."""

    @given(snapshot=snapshot_strategy())
    @settings(max_examples=100)
    def test_identical_snapshots_have_no_changes(self, snapshot: Snapshot) -> None:
        record = detect_changes(snapshot, snapshot)
        assert not record.has_changes
        assert record.changed_categories() == []
        assert not record.baseline

    @given(previous=snapshot_strategy(), current=snapshot_strategy())
    @settings(max_examples=100)
    def test_true_flags_carry_both_values(self, previous: Snapshot, current: Snapshot) -> None:
        record = detect_changes(previous, current)
        reg = record.registration
        if reg.registrar_changed:
            assert reg.previous_registrar == previous.registration.registrar_provider_id
            assert reg.new_registrar == current.registration.registrar_provider_id
            assert reg.previous_registrar != reg.new_registrar
        prov = record.providers
        if prov.email_provider_changed:
            assert prov.previous_email_provider_id == previous.providers.email_provider_id
            assert prov.new_email_provider_id == current.providers.email_provider_id

    @given(previous=snapshot_strategy(), current=snapshot_strategy())
    @settings(max_examples=100)
    def test_categories_match_flags(self, previous: Snapshot, current: Snapshot) -> None:
        record = detect_changes(previous, current)
        categories = set(record.changed_categories())
        assert (NotificationCategory.REGISTRATION_CHANGES in categories) == record.registration.has_changes
        assert (NotificationCategory.PROVIDER_CHANGES in categories) == record.providers.has_changes
        assert (NotificationCategory.CERTIFICATE_CHANGES in categories) == record.certificate.has_changes

    @given(current=snapshot_strategy())
    @settings(max_examples=50)
    def test_no_previous_snapshot_is_a_baseline(self, current: Snapshot) -> None:
        record = detect_changes(None, current)
        assert record.baseline
        assert not record.has_changes

    def test_same_registrar_is_not_a_change(self) -> None:
        changes = detect_registration_changes(
            RegistrationSnapshot(registrar_provider_id="Cloudflare"),
            RegistrationSnapshot(registrar_provider_id="Cloudflare"),
        )
        assert changes.registrar_changed is False

    def test_issuer_change_populates_both_values(self) -> None:
        changes = detect_certificate_changes(
            CertificateSnapshot(ca_provider_id="letsencrypt", issuer="R3"),
            CertificateSnapshot(ca_provider_id="letsencrypt", issuer="DigiCert TLS RSA SHA256 2020 CA1"),
        )
        assert changes.issuer_changed is True
        assert changes.previous_issuer == "R3"
        assert changes.new_issuer == "DigiCert TLS RSA SHA256 2020 CA1"
        assert changes.ca_provider_changed is False

    def test_two_nulls_are_equal(self) -> None:
        changes = detect_provider_changes(ProviderSnapshot(), ProviderSnapshot())
        assert not changes.has_changes
        assert not detect_certificate_changes(None, None).has_changes

    def test_each_provider_flag_is_independent(self) -> None:
        changes = detect_provider_changes(
            ProviderSnapshot(dns_provider_id="cloudflare", hosting_provider_id="vercel", email_provider_id=None),
            ProviderSnapshot(dns_provider_id="cloudflare", hosting_provider_id="netlify", email_provider_id=None),
        )
        assert not changes.dns_provider_changed
        assert changes.hosting_provider_changed
        assert not changes.email_provider_changed


class TestLeafCertificateProperty:
    """The earliest-expiring certificate is the one compared."""

    def test_earliest_expiry_wins(self) -> None:
        chain = [
            CertificateSnapshot(issuer="ISRG Root X1", valid_to="2035-06-04T11:04:38+00:00"),
            CertificateSnapshot(issuer="R3", valid_to="2025-03-01T00:00:00+00:00"),
            CertificateSnapshot(issuer="R10", valid_to="2027-09-15T16:00:00+00:00"),
        ]
        assert select_leaf_certificate(chain).issuer == "R3"

    def test_empty_chain(self) -> None:
        assert select_leaf_certificate([]) is None

    def test_intermediate_change_is_ignored(self) -> None:
        leaf = CertificateSnapshot(ca_provider_id="letsencrypt", issuer="R3", valid_to="2025-03-01T00:00:00+00:00")
        before = [leaf, CertificateSnapshot(issuer="ISRG Root X1", valid_to="2035-06-04T11:04:38+00:00")]
        after = [leaf, CertificateSnapshot(issuer="ISRG Root X2", valid_to="2040-09-17T16:00:00+00:00")]
        changes = detect_certificate_changes(select_leaf_certificate(before), select_leaf_certificate(after))
        assert not changes.has_changes
