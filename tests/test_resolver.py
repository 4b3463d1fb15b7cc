"""Tests for rcc.resolver — geo/whois ordering and channel resolve rules."""

from unittest.mock import MagicMock, patch

import pytest

from rcc.errors import GeoLookupFailure, NoCountryFound, PrivateOrReservedRange
from rcc.geoip import GeoLookupClient
from rcc.models import ChannelConfig, GeoRecord, WhoisRecord
from rcc.netmask import NetmaskRegistry
from rcc.resolver import CountryResolver
from rcc.whois import WhoisClient


class FakeOptions:
    def __init__(self, **flags: bool) -> None:
        self.flags = flags

    def get_option(self, name: str) -> str | None:
        return "on" if self.flags.get(name) else None

    def is_enabled(self, name: str) -> bool:
        return self.flags.get(name, False)


def _whois(country: str = "ro", source: str = "whois") -> MagicMock:
    whois = MagicMock(spec=WhoisClient)
    whois.lookup.return_value = WhoisRecord(
        subject="x", country=country, source=source
    )
    return whois


def _geo(**fields: str) -> MagicMock:
    geo = MagicMock()
    geo.lookup.return_value = GeoRecord(status="OK", **fields)
    return geo


def _resolver(whois=None, geo=None, options=None, resolve=None) -> CountryResolver:
    return CountryResolver(
        NetmaskRegistry(),
        whois or _whois(),
        geo=geo,
        options=options,
        resolve=resolve or (lambda host, timeout: host),
    )


def _channel(**overrides: object) -> ChannelConfig:
    defaults: dict = {"name": "#chan", "tlds": ["ro"], "enabled": True}
    defaults.update(overrides)
    return ChannelConfig(**defaults)


class TestResolveAddress:
    def test_whois_when_geo_disabled(self) -> None:
        geo = _geo(country_code="DE")
        resolver = _resolver(geo=geo, options=FakeOptions(geoban=False))

        result = resolver.resolve_address("80.97.1.1")

        assert result.country_code == "ro"
        assert result.source == "whois"
        assert result.ip == "80.97.1.1"
        geo.lookup.assert_not_called()

    def test_geo_primary(self) -> None:
        whois = _whois()
        resolver = _resolver(
            whois=whois,
            geo=_geo(country_code="DE", country_name="Germany"),
            options=FakeOptions(geoban=True),
        )

        result = resolver.resolve_address("80.97.1.1")

        assert result.country_code == "de"
        assert result.source == "geo"
        whois.lookup.assert_not_called()

    def test_geo_failure_falls_back_to_whois(self) -> None:
        geo = MagicMock()
        geo.lookup.side_effect = GeoLookupFailure("IP NOT FOUND")
        resolver = _resolver(geo=geo, options=FakeOptions(geoban=True))

        result = resolver.resolve_address("80.97.1.1")

        assert result.source == "whois"

    def test_geo_reserved_raises(self) -> None:
        resolver = _resolver(
            geo=_geo(country_code="RD", country_name="Reserved"),
            options=FakeOptions(geoban=True),
        )

        with pytest.raises(PrivateOrReservedRange):
            resolver.resolve_address("80.97.1.1")

    @patch("rcc.geoip.requests.get")
    def test_geo_reserved_with_error_status_raises(self, mock_get: MagicMock) -> None:
        mock_get.return_value = MagicMock(
            ok=True, text="<Status>ERROR</Status><CountryName>Reserved</CountryName>"
        )
        whois = _whois()
        resolver = _resolver(
            whois=whois, geo=GeoLookupClient(), options=FakeOptions(geoban=True)
        )

        with pytest.raises(PrivateOrReservedRange, match="reserved"):
            resolver.resolve_address("80.97.1.1")
        with pytest.raises(PrivateOrReservedRange):
            resolver.resolve_for_channel("80.97.1.1", _channel())
        whois.lookup.assert_not_called()

    def test_use_geo_false_skips_geo(self) -> None:
        geo = _geo(country_code="DE")
        resolver = _resolver(geo=geo, options=FakeOptions(geoban=True))

        result = resolver.resolve_address("80.97.1.1", verbose=True, use_geo=False)

        assert result.source == "whois"
        geo.lookup.assert_not_called()

    @pytest.mark.parametrize("ip", ["10.0.0.1", "127.0.0.1", "192.168.1.1", "::1"])
    def test_private_ranges_never_looked_up(self, ip: str) -> None:
        whois = _whois()
        resolver = _resolver(whois=whois)

        with pytest.raises(PrivateOrReservedRange, match=f"Sorry but '{ip}'"):
            resolver.resolve_address(ip)

        whois.lookup.assert_not_called()

    def test_fallback_option_forwarded(self) -> None:
        whois = _whois(source="fallback")
        resolver = _resolver(whois=whois, options=FakeOptions(fallback=True))

        result = resolver.resolve_address("80.97.1.1", verbose=True)

        assert result.source == "fallback"
        _, kwargs = whois.lookup.call_args
        assert kwargs == {"verbose": True, "fallback": True}

    def test_whois_failure_propagates(self) -> None:
        whois = MagicMock(spec=WhoisClient)
        whois.lookup.side_effect = NoCountryFound("80.97.1.1")

        with pytest.raises(NoCountryFound):
            _resolver(whois=whois).resolve_address("80.97.1.1")


class TestResolveForChannel:
    def test_numeric_host_always_resolved(self) -> None:
        result = _resolver().resolve_for_channel("80.97.1.1", _channel())

        assert result is not None
        assert result.country_code == "ro"

    def test_hostname_without_topchk(self) -> None:
        whois = _whois()
        resolver = _resolver(whois=whois, resolve=lambda host, timeout: "80.97.1.1")

        assert resolver.resolve_for_channel("host.example.com", _channel()) is None
        whois.lookup.assert_not_called()

    def test_hostname_matching_resolve_domain(self) -> None:
        resolver = _resolver(resolve=lambda host, timeout: "80.97.1.1")
        channel = _channel(topchk=True, resolve_domains=["com"])

        result = resolver.resolve_for_channel("host.example.com", channel)

        assert result is not None
        assert result.ip == "80.97.1.1"

    def test_wildcard_resolve_domain(self) -> None:
        resolver = _resolver(resolve=lambda host, timeout: "80.97.1.1")
        channel = _channel(topchk=True, resolve_domains=["*"])

        assert resolver.resolve_for_channel("host.example.net", channel) is not None

    def test_hostname_not_in_resolve_domains(self) -> None:
        resolver = _resolver(resolve=lambda host, timeout: "80.97.1.1")
        channel = _channel(topchk=True, resolve_domains=["net"])

        assert resolver.resolve_for_channel("host.example.com", channel) is None

    def test_topchk_without_resolve_list(self) -> None:
        resolver = _resolver(resolve=lambda host, timeout: "80.97.1.1")

        assert resolver.resolve_for_channel("h.example.com", _channel(topchk=True)) is None

    def test_geo_applies_to_hostnames(self) -> None:
        resolver = _resolver(
            geo=_geo(country_code="RO"),
            options=FakeOptions(geoban=True),
            resolve=lambda host, timeout: "80.97.1.1",
        )

        result = resolver.resolve_for_channel("host.example.com", _channel())

        assert result is not None
        assert result.source == "geo"

    def test_private_address_after_resolution(self) -> None:
        resolver = _resolver(resolve=lambda host, timeout: "192.168.0.10")

        with pytest.raises(PrivateOrReservedRange):
            resolver.resolve_for_channel("lan.example.com", _channel())

    def test_resolve_timeout_is_passed(self) -> None:
        seen: list[float] = []

        def resolve(host: str, timeout: float) -> str:
            seen.append(timeout)
            return "80.97.1.1"

        resolver = CountryResolver(
            NetmaskRegistry(), _whois(), timeout=1.5, resolve=resolve
        )
        resolver.resolve_for_channel("80.97.1.1", _channel())

        assert seen == [1.5]
