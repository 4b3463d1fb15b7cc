"""Country resolution: GeoIP first (optional), whois otherwise."""

import logging
from collections.abc import Callable

from rcc.dns import DEFAULT_TIMEOUT, ip_type, is_ip_address, resolve_host, top_label
from rcc.errors import GeoLookupFailure, PrivateOrReservedRange, ResolveFailure
from rcc.geoip import GeoProvider
from rcc.models import ChannelConfig, ResolutionResult
from rcc.netmask import NetmaskRegistry
from rcc.policy import OptionSource
from rcc.whois import WhoisClient

logger = logging.getLogger(__name__)


class CountryResolver:
    """Resolve a host or address to a country code.

    Global options are read on every call, so ``geoban`` and ``fallback``
    changes apply to the next resolution without rebuilding the resolver.

    Args:
        registry: Netmask table used to pick the whois server.
        whois: Whois client.
        geo: Optional geo provider, used first when ``geoban`` is enabled.
        options: Global options; ``None`` disables geo and fallback.
        timeout: Seconds allowed for hostname resolution.
        resolve: Hostname resolver, ``resolve_host`` by default.
    """

    def __init__(
        self,
        registry: NetmaskRegistry,
        whois: WhoisClient,
        geo: GeoProvider | None = None,
        options: OptionSource | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        resolve: Callable[[str, float], str] = resolve_host,
    ) -> None:
        self.registry = registry
        self.whois = whois
        self.geo = geo
        self.options = options
        self.timeout = timeout
        self._resolve = resolve

    @property
    def geo_primary(self) -> bool:
        return (
            self.geo is not None
            and self.options is not None
            and self.options.is_enabled("geoban")
        )

    def resolve_ip(self, host: str) -> str:
        """Resolve *host* to an address within the configured timeout.

        Raises:
            ResolveFailure: If the host cannot be resolved.
        """
        ip = self._resolve(host, self.timeout)
        if not is_ip_address(ip):
            raise ResolveFailure(host)
        return ip

    def resolve_address(
        self, ip: str, verbose: bool = False, use_geo: bool = True
    ) -> ResolutionResult:
        """Resolve a literal address: geo first if enabled, then whois.

        Args:
            ip: A literal IPv4/IPv6 address.
            verbose: Ask whois for the informational fields too.
            use_geo: Set to False to go straight to whois.

        Raises:
            PrivateOrReservedRange: For non-routable addresses, including a
                geo answer of ``Reserved``.
            LookupFailure: When whois cannot determine a country.
        """
        kind = ip_type(ip)
        if kind != "normal":
            logger.info("'%s' is from a '%s' range. No further action taken.", ip, kind)
            raise PrivateOrReservedRange(ip, kind)

        if use_geo and self.geo_primary:
            result = self._geo_lookup(ip)
            if result is not None:
                return result

        return self._whois(ip, verbose=verbose)

    def resolve_for_channel(
        self, host: str, channel: ChannelConfig
    ) -> ResolutionResult | None:
        """Resolve a joining host under the channel's resolve rules.

        Literal addresses are always resolved. A hostname is sent to whois
        only when ``topchk`` is on and its trailing label is covered by the
        channel's resolve-domain patterns.

        Returns:
            The resolution, or ``None`` when the channel's rules say no lookup
            should happen for this host.

        Raises:
            ResolveFailure: If the hostname doesn't resolve.
            PrivateOrReservedRange: For non-routable addresses.
            LookupFailure: When whois cannot determine a country.
        """
        ip = self.resolve_ip(host)

        kind = ip_type(ip)
        if kind != "normal":
            logger.info("'%s' is from a '%s' range. No further action taken.", ip, kind)
            raise PrivateOrReservedRange(ip, kind)

        if self.geo_primary:
            logger.debug("Using GeoIP (geoban enabled)")
            result = self._geo_lookup(ip)
            if result is not None:
                return result

        if is_ip_address(host):
            logger.debug("Found numeric IP %s ... scanning", host)
            return self._whois(ip)

        if not channel.topchk:
            return None
        if not channel.resolve_domains:
            logger.warning(
                "Top domain resolve check is enabled but '%s' has no resolve domain list!",
                channel.name,
            )
            return None

        label = top_label(host)
        if not channel.in_resolve_domains(label):
            return None
        logger.debug("Matched top resolve domain '%s' for host '%s'", label, host)
        return self._whois(ip)

    def _whois(self, ip: str, verbose: bool = False) -> ResolutionResult:
        fallback = self.options.is_enabled("fallback") if self.options else None
        record = self.whois.lookup(ip, self.registry, verbose=verbose, fallback=fallback)
        return ResolutionResult(
            country_code=record.country or "",
            source=record.source,
            ip=ip,
            record=record,
        )

    def _geo_lookup(self, ip: str) -> ResolutionResult | None:
        """Return a geo resolution, or None to fall back to whois."""
        if self.geo is None:
            return None
        try:
            record = self.geo.lookup(ip)
        except GeoLookupFailure as exc:
            logger.info("GeoIP failed for %s (%s) - using whois fallback", ip, exc.detail)
            return None

        if record.is_reserved:
            logger.info("%s belongs to a reserved net range", ip)
            raise PrivateOrReservedRange(ip, "reserved")
        if not record.country_code:
            logger.info("GeoIP returned no country for %s - using whois fallback", ip)
            return None

        logger.debug("Using GeoIP CountryCode: %s", record.country_code)
        return ResolutionResult(
            country_code=record.country_code.lower(),
            source="geo",
            ip=ip,
            record=record,
        )
