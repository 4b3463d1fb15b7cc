"""Netmask registry: CIDR -> whois server table with longest-prefix match."""

import ipaddress
import logging
import re
from collections.abc import Iterable
from pathlib import Path
from typing import TypeVar

from rcc.errors import NetmaskNotFound
from rcc.models import NetmaskEntry

logger = logging.getLogger(__name__)

T = TypeVar("T")
Network = ipaddress.IPv4Network | ipaddress.IPv6Network

_LINE_RE = re.compile(r"^([0-9a-f.:/]+)\s+([a-z0-9.\-]+)", re.IGNORECASE)

# Overrides for netmasks whose whois records carry no country.
LAST_RESORT_MASKS: dict[str, str] = {
    "24.16.0.0/13": "us",
    "24.239.32.0/19": "us",
    "208.151.241.0/24": "us",
    "208.151.242.0/23": "us",
    "208.151.244.0/22": "us",
    "208.151.248.0/21": "us",
}


class NetmaskRegistry:
    """Longest-prefix-match table of netmask entries.

    Entries may overlap; the most specific prefix containing an address wins.
    When two entries share the same prefix length the one loaded first wins.

    Args:
        entries: Netmask entries in load order.
    """

    def __init__(self, entries: Iterable[NetmaskEntry] = ()) -> None:
        self._entries: list[NetmaskEntry] = []
        for entry in entries:
            self.add(entry.network, entry.whois_server)

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, cidr: str | ipaddress.IPv4Network | ipaddress.IPv6Network,
            whois_server: str) -> NetmaskEntry:
        """Append an entry; raises ``ValueError`` on an invalid CIDR."""
        network = ipaddress.ip_network(cidr, strict=False)
        entry = NetmaskEntry(
            network=network,
            whois_server=whois_server.lower(),
            order=len(self._entries),
        )
        self._entries.append(entry)
        return entry

    @classmethod
    def from_file(cls, path: Path | str) -> "NetmaskRegistry":
        """Load a netmask table file.

        Only lines beginning with a digit are considered. Each one holds a
        CIDR prefix followed by whitespace and a whois server name (or
        ``unallocated``). Malformed lines are logged and skipped.

        Args:
            path: Path to the netmask table.

        Raises:
            FileNotFoundError: If *path* does not exist.
        """
        registry = cls()
        p = Path(path).expanduser()
        with p.open(encoding="utf-8") as fh:
            for lineno, line in enumerate(fh, start=1):
                if not line[:1].isdigit():
                    continue
                m = _LINE_RE.match(line)
                if m is None:
                    logger.warning("Skipping malformed netmask line %s:%d", p, lineno)
                    continue
                try:
                    registry.add(m.group(1), m.group(2))
                except ValueError:
                    logger.warning(
                        "Skipping invalid CIDR %r at %s:%d", m.group(1), p, lineno
                    )

        logger.debug("Netmask file %s loaded with %d netmask(s)", p, len(registry))
        return registry

    def match(self, ip: str | ipaddress.IPv4Address | ipaddress.IPv6Address) -> NetmaskEntry:
        """Return the most specific entry containing *ip*.

        Raises:
            NetmaskNotFound: If no entry covers the address.
            ValueError: If *ip* is not a valid address.
        """
        entry = longest_prefix_match(ip, ((e.network, e) for e in self._entries))
        if entry is None:
            raise NetmaskNotFound(str(ip))
        return entry


def longest_prefix_match(
    ip: str | ipaddress.IPv4Address | ipaddress.IPv6Address,
    candidates: Iterable[tuple[Network, T]],
) -> T | None:
    """Pick the value whose network is the longest prefix containing *ip*.

    Ties keep the first candidate seen. Networks of the other address family
    never match.

    Args:
        ip: Address to look up.
        candidates: ``(network, value)`` pairs in load order.

    Raises:
        ValueError: If *ip* is not a valid address.
    """
    addr = ipaddress.ip_address(ip)
    best: T | None = None
    best_len = -1
    for network, value in candidates:
        if network.version != addr.version or addr not in network:
            continue
        if network.prefixlen > best_len:
            best, best_len = value, network.prefixlen
    return best


_LAST_RESORT_NETWORKS: list[tuple[Network, str]] = [
    (ipaddress.ip_network(cidr), country) for cidr, country in LAST_RESORT_MASKS.items()
]


def last_resort_country(ip: str) -> str | None:
    """Look *ip* up in the hardcoded last-resort table.

    Returns:
        A lowercase country code, or ``None`` if no mask covers the address
        (or *ip* is not a literal address).
    """
    try:
        return longest_prefix_match(ip, _LAST_RESORT_NETWORKS)
    except ValueError:
        return None
