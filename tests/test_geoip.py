"""Tests for the geo providers (rcc.geoip)."""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import geoip2.errors
import pytest
import requests

from rcc.config import RccConfig
from rcc.errors import GeoLookupFailure
from rcc.geoip import (
    GeoLookupClient,
    MaxMindLookupClient,
    build_geo_provider,
    parse_geo_response,
)

OK_BODY = """\
<?xml version="1.0" encoding="UTF-8"?>
<Response>
  <Ip>193.0.6.139</Ip>
  <Status>OK</Status>
  <CountryCode>NL</CountryCode>
  <CountryName>Netherlands</CountryName>
  <RegionCode>07</RegionCode>
  <RegionName>Noord-Holland</RegionName>
  <City>Amsterdam</City>
  <ZipPostalCode></ZipPostalCode>
  <Latitude>52.35</Latitude>
  <Longitude>4.9167</Longitude>
</Response>
"""

RESERVED_BODY = """\
<Response>
  <Ip>10.0.0.1</Ip>
  <Status>OK</Status>
  <CountryCode>RD</CountryCode>
  <CountryName>Reserved</CountryName>
</Response>
"""


def _response(text: str, status: int = 200, reason: str = "OK") -> MagicMock:
    resp = MagicMock()
    resp.text = text
    resp.status_code = status
    resp.reason = reason
    resp.ok = 200 <= status < 400
    return resp


# ---------------------------------------------------------------------------
# Helpers: fake MaxMind response objects
# ---------------------------------------------------------------------------


def _fake_city_response(
    city: str | None = "Frankfurt",
    country: str = "Germany",
    country_code: str = "DE",
    latitude: float | None = 50.11,
    longitude: float | None = 8.68,
) -> SimpleNamespace:
    """Build a minimal object mimicking ``geoip2.models.City``."""
    return SimpleNamespace(
        city=SimpleNamespace(name=city),
        country=SimpleNamespace(name=country, iso_code=country_code),
        subdivisions=SimpleNamespace(
            most_specific=SimpleNamespace(name="Hesse", iso_code="HE")
        ),
        postal=SimpleNamespace(code="60311"),
        location=SimpleNamespace(latitude=latitude, longitude=longitude),
    )


class TestParseGeoResponse:
    def test_all_tags(self) -> None:
        record = parse_geo_response(OK_BODY)

        assert record.status == "OK"
        assert record.ip == "193.0.6.139"
        assert record.country_code == "NL"
        assert record.country_name == "Netherlands"
        assert record.region_name == "Noord-Holland"
        assert record.city == "Amsterdam"
        assert record.latitude == "52.35"
        assert record.longitude == "4.9167"

    def test_empty_and_missing_tags_are_blank(self) -> None:
        record = parse_geo_response(RESERVED_BODY)

        assert record.zip_postal_code == ""
        assert record.city == ""
        assert record.is_reserved

    def test_case_insensitive_tags(self) -> None:
        record = parse_geo_response("<status>OK</status><countrycode>RO</countrycode>")

        assert record.is_ok
        assert record.country_code == "RO"


class TestGeoLookupClient:
    @patch("rcc.geoip.requests.get")
    def test_ok_response(self, mock_get: MagicMock) -> None:
        mock_get.return_value = _response(OK_BODY)
        client = GeoLookupClient("http://geo.example/q", timeout=2.0)

        record = client.lookup("193.0.6.139")

        assert record.country_code == "NL"
        assert record.map_url == "http://maps.google.com/maps?q=52.35,4.9167&z=7"
        mock_get.assert_called_once_with(
            "http://geo.example/q", params={"ip": "193.0.6.139"}, timeout=2.0
        )

    @patch("rcc.geoip.requests.get")
    def test_error_status(self, mock_get: MagicMock) -> None:
        mock_get.return_value = _response("<Status>IP NOT FOUND</Status>")

        with pytest.raises(GeoLookupFailure, match="ERROR: IP NOT FOUND"):
            GeoLookupClient().lookup("1.2.3.4")

    @patch("rcc.geoip.requests.get")
    def test_reserved_with_error_status_is_returned(self, mock_get: MagicMock) -> None:
        mock_get.return_value = _response(
            "<Status>ERROR</Status><CountryName>Reserved</CountryName>"
        )

        record = GeoLookupClient().lookup("10.0.0.1")

        assert record.is_reserved
        assert not record.is_ok

    @patch("rcc.geoip.requests.get")
    def test_reserved_without_status_is_returned(self, mock_get: MagicMock) -> None:
        mock_get.return_value = _response("<CountryName>Reserved</CountryName>")

        assert GeoLookupClient().lookup("10.0.0.1").is_reserved

    @patch("rcc.geoip.requests.get")
    def test_http_error(self, mock_get: MagicMock) -> None:
        mock_get.return_value = _response("", status=503, reason="Service Unavailable")

        with pytest.raises(GeoLookupFailure, match="HTTP 503"):
            GeoLookupClient().lookup("1.2.3.4")

    @patch("rcc.geoip.requests.get")
    def test_timeout(self, mock_get: MagicMock) -> None:
        mock_get.side_effect = requests.Timeout("slow")

        with pytest.raises(GeoLookupFailure, match="timed out"):
            GeoLookupClient(timeout=1.0).lookup("1.2.3.4")

    @patch("rcc.geoip.requests.get")
    def test_connection_error(self, mock_get: MagicMock) -> None:
        mock_get.side_effect = requests.ConnectionError("refused")

        with pytest.raises(GeoLookupFailure, match="refused"):
            GeoLookupClient().lookup("1.2.3.4")

    @patch("rcc.geoip.requests.get")
    def test_empty_body(self, mock_get: MagicMock) -> None:
        mock_get.return_value = _response("")

        with pytest.raises(GeoLookupFailure, match="without replying"):
            GeoLookupClient().lookup("1.2.3.4")

    def test_uses_session_when_given(self) -> None:
        session = MagicMock()
        session.get.return_value = _response(OK_BODY)

        GeoLookupClient(session=session).lookup("193.0.6.139")

        session.get.assert_called_once()


class TestMaxMindLookupClient:
    def test_no_database_configured(self) -> None:
        with pytest.raises(GeoLookupFailure, match="No GeoLite2-City database"):
            MaxMindLookupClient(None).lookup("1.2.3.4")

    @patch("rcc.geoip.geoip2.database.Reader")
    def test_missing_file_is_tolerated(self, mock_reader: MagicMock) -> None:
        mock_reader.side_effect = FileNotFoundError("nope")

        client = MaxMindLookupClient("/nonexistent/GeoLite2-City.mmdb")

        with pytest.raises(GeoLookupFailure):
            client.lookup("1.2.3.4")

    @patch("rcc.geoip.geoip2.database.Reader")
    def test_city_lookup(self, mock_reader: MagicMock) -> None:
        mock_reader.return_value.city.return_value = _fake_city_response()

        record = MaxMindLookupClient("/data/GeoLite2-City.mmdb").lookup("5.9.0.1")

        assert record.is_ok
        assert record.country_code == "DE"
        assert record.country_name == "Germany"
        assert record.region_name == "Hesse"
        assert record.city == "Frankfurt"
        assert record.zip_postal_code == "60311"
        assert record.latitude == "50.11"

    @patch("rcc.geoip.geoip2.database.Reader")
    def test_missing_location_fields(self, mock_reader: MagicMock) -> None:
        mock_reader.return_value.city.return_value = _fake_city_response(
            city=None, latitude=None, longitude=None
        )

        record = MaxMindLookupClient("/data/GeoLite2-City.mmdb").lookup("5.9.0.1")

        assert record.city == ""
        assert record.latitude == ""

    @patch("rcc.geoip.geoip2.database.Reader")
    def test_address_not_found(self, mock_reader: MagicMock) -> None:
        mock_reader.return_value.city.side_effect = geoip2.errors.AddressNotFoundError(
            "not found"
        )

        with pytest.raises(GeoLookupFailure, match="not found"):
            MaxMindLookupClient("/data/GeoLite2-City.mmdb").lookup("5.9.0.1")


class TestBuildGeoProvider:
    def test_http(self) -> None:
        provider = build_geo_provider(RccConfig(geo_url="http://geo.example/q"))

        assert isinstance(provider, GeoLookupClient)
        assert provider.base_url == "http://geo.example/q"

    @patch("rcc.geoip.geoip2.database.Reader")
    def test_maxmind(self, mock_reader: MagicMock) -> None:
        provider = build_geo_provider(
            RccConfig(geo_provider="maxmind", maxmind_city_db="/data/city.mmdb")
        )

        assert isinstance(provider, MaxMindLookupClient)
        mock_reader.assert_called_once_with("/data/city.mmdb")

    def test_unknown(self) -> None:
        with pytest.raises(ValueError, match="Unknown geo provider"):
            build_geo_provider(RccConfig(geo_provider="carrier-pigeon"))
