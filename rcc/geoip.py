"""Geo-IP lookups: HTTP pseudo-XML provider and local MaxMind database."""

from __future__ import annotations

import logging
import os
import re
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import geoip2.database
import geoip2.errors
import requests

from rcc.errors import GeoLookupFailure
from rcc.models import GeoRecord

if TYPE_CHECKING:
    from rcc.config import RccConfig

logger = logging.getLogger(__name__)

DEFAULT_GEO_URL = "http://ipinfodb.com/ip_query.php"
DEFAULT_TIMEOUT = 5.0

# (tag, GeoRecord attribute) in response order.
GEO_TAGS: list[tuple[str, str]] = [
    ("Status", "status"),
    ("Ip", "ip"),
    ("CountryCode", "country_code"),
    ("CountryName", "country_name"),
    ("RegionCode", "region_code"),
    ("RegionName", "region_name"),
    ("City", "city"),
    ("ZipPostalCode", "zip_postal_code"),
    ("Latitude", "latitude"),
    ("Longitude", "longitude"),
]

_TAG_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(rf"<{tag}>([^<>]+)", re.IGNORECASE), attr) for tag, attr in GEO_TAGS
]


def parse_geo_response(body: str) -> GeoRecord:
    """Extract the known tags from a pseudo-XML geo response.

    Tags are matched case-insensitively; a missing or empty tag leaves the
    field as ``""``.
    """
    fields: dict[str, str] = {}
    for pattern, attr in _TAG_PATTERNS:
        m = pattern.search(body)
        fields[attr] = m.group(1).strip() if m else ""
    return GeoRecord(**fields)


class GeoProvider(ABC):
    """A source of ``GeoRecord`` lookups."""

    @abstractmethod
    def lookup(self, ip: str) -> GeoRecord:
        """Look up *ip*.

        Returns:
            A record whose ``status`` is ``"OK"``, or a reserved-range
            record (``CountryName`` of ``Reserved``) whatever its status.

        Raises:
            GeoLookupFailure: If the provider cannot answer.
        """

    def close(self) -> None:
        """Release provider resources."""


class GeoLookupClient(GeoProvider):
    """HTTP geo provider returning one tag per field.

    Args:
        base_url: Provider endpoint; the address is passed as ``?ip=``.
        timeout: Seconds allowed for the request.
        session: Optional ``requests.Session`` to reuse connections.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_GEO_URL,
        timeout: float = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url
        self.timeout = timeout
        self._session = session

    def lookup(self, ip: str) -> GeoRecord:
        getter = self._session.get if self._session is not None else requests.get
        logger.debug("Querying geo provider %s for %s", self.base_url, ip)
        try:
            resp = getter(self.base_url, params={"ip": ip}, timeout=self.timeout)
        except requests.Timeout:
            raise GeoLookupFailure(
                f"Geo lookup timed out after {self.timeout:g}s"
            ) from None
        except requests.RequestException as exc:
            raise GeoLookupFailure(str(exc)) from exc

        if not resp.ok:
            raise GeoLookupFailure(f"HTTP {resp.status_code} {resp.reason}")
        if not resp.text:
            raise GeoLookupFailure("Server closed the connection without replying!")

        record = parse_geo_response(resp.text)
        if record.is_reserved:
            logger.debug("Geo answer for %s: reserved range (status %r)", ip, record.status)
            return record
        if not record.status:
            raise GeoLookupFailure("No status in geo response")
        if not record.is_ok:
            raise GeoLookupFailure(record.status)

        logger.debug(
            "Geo answer for %s: %s (%s)", ip, record.country_code, record.country_name
        )
        return record

    def close(self) -> None:
        if self._session is not None:
            self._session.close()


class MaxMindLookupClient(GeoProvider):
    """Geo provider backed by a local GeoLite2-City database.

    The reader is tolerant of a missing database file: every lookup then
    raises ``GeoLookupFailure``.

    Args:
        city_db_path: Path to ``GeoLite2-City.mmdb``, or ``None``.
    """

    def __init__(self, city_db_path: str | None = None) -> None:
        self._reader: geoip2.database.Reader | None = None
        if city_db_path:
            try:
                self._reader = geoip2.database.Reader(
                    os.path.expanduser(city_db_path)
                )
                logger.debug("Opened GeoLite2-City DB: %s", city_db_path)
            except FileNotFoundError:
                logger.warning(
                    "GeoLite2-City DB not found at %s; geo lookups disabled",
                    city_db_path,
                )

    def lookup(self, ip: str) -> GeoRecord:
        if self._reader is None:
            raise GeoLookupFailure("No GeoLite2-City database configured")
        try:
            resp = self._reader.city(ip)
        except geoip2.errors.AddressNotFoundError:
            raise GeoLookupFailure(f"{ip} not found in GeoLite2-City") from None
        except ValueError as exc:
            raise GeoLookupFailure(str(exc)) from exc

        subdivision = resp.subdivisions.most_specific
        return GeoRecord(
            status="OK",
            ip=ip,
            country_code=resp.country.iso_code or "",
            country_name=resp.country.name or "",
            region_code=subdivision.iso_code or "",
            region_name=subdivision.name or "",
            city=resp.city.name or "",
            zip_postal_code=resp.postal.code or "",
            latitude=_coord(resp.location.latitude),
            longitude=_coord(resp.location.longitude),
        )

    def close(self) -> None:
        if self._reader:
            self._reader.close()


def _coord(value: float | None) -> str:
    return "" if value is None else f"{value:g}"


def build_geo_provider(config: RccConfig) -> GeoProvider:
    """Instantiate the geo provider named by ``config.geo_provider``.

    Raises:
        ValueError: If the provider name is unknown.
    """
    if config.geo_provider == "http":
        return GeoLookupClient(base_url=config.geo_url, timeout=config.timeout)
    if config.geo_provider == "maxmind":
        return MaxMindLookupClient(city_db_path=config.maxmind_city_db)
    raise ValueError(
        f"Unknown geo provider {config.geo_provider!r}. Known providers: http, maxmind"
    )
