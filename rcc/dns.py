"""Host helpers: DNS resolution with a per-call timeout and IP-type classification."""

import ipaddress
import logging
import time

import dns.exception
import dns.resolver

from rcc.errors import ResolveFailure

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0


def resolve_addresses(hostname: str, timeout: float = DEFAULT_TIMEOUT) -> list[str]:
    """Resolve a hostname to its A records followed by its AAAA records.

    Both queries share one deadline of *timeout* seconds.

    Args:
        hostname: The hostname to resolve.
        timeout: Seconds allowed for the whole lookup.

    Returns:
        IPv4 addresses first, then IPv6, without duplicates. Empty when
        the name exists but has no address records.

    Raises:
        dns.resolver.NXDOMAIN: If the name does not exist.
        dns.exception.Timeout: If the deadline passes.
        dns.exception.DNSException: On any other resolver error.
    """
    logger.debug("Resolving %s (timeout=%.1fs)", hostname, timeout)
    resolver = dns.resolver.Resolver()
    resolver.timeout = timeout
    resolver.lifetime = timeout
    deadline = time.monotonic() + timeout

    out: list[str] = []
    for rdtype in ("A", "AAAA"):
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            if out:
                break
            raise dns.exception.Timeout(timeout=timeout)
        try:
            answers = resolver.resolve(hostname, rdtype, lifetime=remaining)
        except dns.resolver.NoAnswer:
            continue
        for rdata in answers:
            if rdata.address not in out:
                out.append(rdata.address)

    logger.debug("Resolved %s → %d unique address(es)", hostname, len(out))
    return out


def resolve_host(host: str, timeout: float = DEFAULT_TIMEOUT) -> str:
    """Resolve *host* to a single address, preferring IPv4.

    A literal address is returned unchanged without touching the network.
    Each call runs its own resolver, so a slow lookup never holds up
    another one.

    Args:
        host: Hostname or literal IP address.
        timeout: Seconds to wait for this lookup.

    Raises:
        ResolveFailure: On resolver errors, timeouts, or an empty answer.
    """
    if is_ip_address(host):
        return host

    try:
        addresses = resolve_addresses(host, timeout)
    except dns.exception.Timeout:
        logger.debug("Resolving %s timed out after %.1fs", host, timeout)
        raise ResolveFailure(host) from None
    except (dns.exception.DNSException, UnicodeError) as exc:
        logger.debug("Resolving %s failed: %s", host, exc)
        raise ResolveFailure(host) from exc

    if not addresses:
        raise ResolveFailure(host)
    return addresses[0]


def is_ip_address(host: str) -> bool:
    """Return True if *host* is a literal IPv4 or IPv6 address."""
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def ip_type(ip: str) -> str:
    """Classify an address.

    Returns one of ``normal``, ``private``, ``loopback``, ``link-local``,
    ``multicast``, ``unspecified`` or ``reserved``. Only ``normal`` addresses
    are worth a lookup.

    Raises:
        ValueError: If *ip* is not a valid address.
    """
    addr = ipaddress.ip_address(ip)
    if addr.is_loopback:
        return "loopback"
    if addr.is_link_local:
        return "link-local"
    if addr.is_multicast:
        return "multicast"
    if addr.is_unspecified:
        return "unspecified"
    if addr.is_reserved:
        return "reserved"
    if addr.is_private:
        return "private"
    if not addr.is_global:
        return "reserved"
    return "normal"


def host_from_userhost(userhost: str) -> str:
    """Return the lowercased host part of ``nick!user@host`` or ``user@host``."""
    _, sep, host = userhost.rpartition("@")
    return (host if sep else userhost).lower()


def top_label(host: str) -> str:
    """Return the trailing label of a hostname (``"a.b.ro"`` → ``"ro"``)."""
    return host.rstrip(".").rsplit(".", 1)[-1].lower()
