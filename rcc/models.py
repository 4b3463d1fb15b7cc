"""Data models: netmask entries, whois/geo records, channel config, decisions."""

import ipaddress
from dataclasses import dataclass, field
from typing import Literal

Source = Literal["geo", "whois", "fallback", "last-resort"]

UNALLOCATED = "unallocated"


@dataclass(frozen=True)
class NetmaskEntry:
    """One line of the netmask table.

    Attributes:
        network: The CIDR prefix.
        whois_server: Authoritative whois server hostname, or
            ``"unallocated"``.
        order: Position in the source table; lower values were loaded first
            and win prefix-length ties.
    """

    network: ipaddress.IPv4Network | ipaddress.IPv6Network
    whois_server: str
    order: int = 0

    @property
    def prefixlen(self) -> int:
        return self.network.prefixlen

    @property
    def is_unallocated(self) -> bool:
        return self.whois_server == UNALLOCATED


@dataclass
class WhoisRecord:
    """Fields extracted from a single whois session.

    Ban-only sessions populate ``country`` and ``fallback_subject``; the
    remaining fields are filled only in verbose mode.

    Attributes:
        subject: The query subject sent to the server.
        server: Whois server that produced this record.
        country: Lowercase 2-6 letter country code, first match wins.
        fallback_subject: ``NET-###-###-###`` handle usable as an alternate
            subject when no country was found.
        source: How the country was obtained (``whois``, ``fallback`` or
            ``last-resort``).
        description_parts: Raw ``descr:`` lines in order.
        description: Final description after finalization.
    """

    subject: str
    server: str = ""
    country: str | None = None
    fallback_subject: str | None = None
    source: Source = "whois"

    # -- Verbose fields --
    net_name: str = ""
    mnt_by: str = ""
    owner: str | None = None
    inet_num: str = ""
    asn: str = ""
    abuse_mail: str = ""
    abuse_phone: str | None = None
    org_name: str | None = None
    street_address: str | None = None
    city: str | None = None
    postal_code: str | None = None
    state_prov: str | None = None
    description_parts: list[str] = field(default_factory=list)
    description: str = ""


@dataclass
class GeoRecord:
    """Result of a geo provider lookup. Missing fields are empty strings."""

    status: str = ""
    ip: str = ""
    country_code: str = ""
    country_name: str = ""
    region_code: str = ""
    region_name: str = ""
    city: str = ""
    zip_postal_code: str = ""
    latitude: str = ""
    longitude: str = ""

    @property
    def is_ok(self) -> bool:
        return self.status.upper() == "OK"

    @property
    def is_reserved(self) -> bool:
        return self.country_name == "Reserved"

    @property
    def map_url(self) -> str:
        return f"http://maps.google.com/maps?q={self.latitude},{self.longitude}&z=7"


@dataclass
class ResolutionResult:
    """A resolved country code and where it came from.

    Attributes:
        country_code: Lowercase country/TLD code.
        source: ``geo``, ``whois``, ``fallback`` or ``last-resort``.
        ip: The address that was resolved.
        record: The raw ``WhoisRecord`` or ``GeoRecord`` behind the answer.
    """

    country_code: str
    source: Source
    ip: str = ""
    record: WhoisRecord | GeoRecord | None = None


@dataclass
class ChannelConfig:
    """Per-channel policy settings.

    Attributes:
        name: Lowercase channel name (e.g. ``"#chan"``).
        tlds: Banned TLDs/country codes, or allowed ones in whitelist mode.
        resolve_domains: Trailing labels to resolve for whois checking;
            ``"*"`` matches everything.
        enabled: Whether join checking is active for the channel.
        whitelist: Invert the TLD list into an allow list.
        topban: Ban hostnames by trailing label without any lookup.
        topchk: Resolve hostnames whose label is in ``resolve_domains``.
        pubcmd: Allow public commands in the channel.
        bantime: Ban duration in minutes (0 means the collaborator default).
    """

    name: str
    tlds: list[str] = field(default_factory=list)
    resolve_domains: list[str] = field(default_factory=list)
    enabled: bool = False
    whitelist: bool = False
    topban: bool = False
    topchk: bool = False
    pubcmd: bool = False
    bantime: int = 0

    def in_resolve_domains(self, label: str) -> bool:
        """Return True if *label* is covered by the resolve-domain patterns."""
        return "*" in self.resolve_domains or label in self.resolve_domains


@dataclass
class Decision:
    """Outcome of a policy evaluation.

    Attributes:
        ban: Whether the host matched the channel policy.
        mask: Ban mask to apply (``*!*@*.tld`` or ``*!*@host``).
        reason: Rendered ban reason.
        code: The TLD or country code that was matched against the list.
        country: Human-readable country name for *code*, possibly empty.
        path: ``topban`` for the top-domain path, ``country`` otherwise.
        source: Resolution source for the country path.
        logged_only: Log-only mode was on; nothing is enforced or counted.
    """

    ban: bool
    mask: str = ""
    reason: str = ""
    code: str = ""
    country: str = ""
    path: Literal["topban", "country"] = "country"
    source: Source | None = None
    logged_only: bool = False


@dataclass
class Outcome:
    """What one pipeline run produced.

    Attributes:
        host: The host or address the pipeline was asked about.
        ip: The resolved address, when resolution got that far.
        notices: User-facing messages, in the order they were produced.
        resolution: The country resolution, if any.
        decision: The policy decision, if the pipeline reached the policy.
        enforced: A ban was handed to the ban sink and counted.
        failed: A lookup step failed; ``notices`` says which.
    """

    host: str
    ip: str = ""
    notices: list[str] = field(default_factory=list)
    resolution: ResolutionResult | None = None
    decision: Decision | None = None
    enforced: bool = False
    failed: bool = False
