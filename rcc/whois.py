"""Whois client: TCP sessions, referral following and record parsing.

A lookup is a sequence of hops. Each hop is one TCP session against one
server: the subject is sent, response lines are read until the peer closes
the stream, and every line is fed through :class:`WhoisParser`. A referral
line ends the hop early and names the next server. Hops never overlap; the
socket of one hop is closed before the next one is opened.

The number of hops per lookup (referrals plus the single experimental fallback
re-query) is bounded by ``max_hops``.
"""

import logging
import re
import socket
from collections.abc import Callable
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

from rcc.errors import (
    ConnectFailure,
    NoCountryFound,
    ReferralLoopFailure,
    ReferralParseFailure,
    TimeoutFailure,
    UnallocatedNetmask,
)
from rcc.models import WhoisRecord
from rcc.netmask import last_resort_country

if TYPE_CHECKING:
    from rcc.netmask import NetmaskRegistry

logger = logging.getLogger(__name__)

WHOIS_PORT = 43
DEFAULT_TIMEOUT = 5.0
DEFAULT_MAX_HOPS = 5

_NETWORK_MARKER_RE = re.compile(r"^network:", re.IGNORECASE)
_REFERRAL_RE = re.compile(r"referralserver:\s*(.*)", re.IGNORECASE)
_REFERRAL_SCHEMES = ("whois", "rwhois")
_COUNTRY_RE = re.compile(r"(?:Country-Code|country):\s*([a-z]{2,6})", re.IGNORECASE)
_FALLBACK_RE = re.compile(r".*\((NET-[0-9]{1,3}-[0-9]{1,3}-[0-9]{1,3}.*)\)")
_DESCR_LINE_RE = re.compile(r"descr:\s.*", re.IGNORECASE)

# Verbose-mode rules, evaluated in order; the first rule that applies to a
# line consumes it. A rule whose field is already set is skipped, so every
# field keeps its first value. ``description_parts`` is the exception: it
# collects lines until the description block ends.
_VERBOSE_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"netname:\s*(.*)", re.IGNORECASE), "net_name"),
    (re.compile(r"descr:\s*(.*)", re.IGNORECASE), "description_parts"),
    (re.compile(r"owner:\s*(.*)", re.IGNORECASE), "owner"),
    (re.compile(r"(?:ownerid|mnt-by):\s*(.*)", re.IGNORECASE), "mnt_by"),
    (re.compile(r"(?:Auth-Area|inetnum):\s*(.*)", re.IGNORECASE), "inet_num"),
    (re.compile(r"origin:\s*(.*)", re.IGNORECASE), "asn"),
    (re.compile(r"Org-Name:\s*(.*)", re.IGNORECASE), "org_name"),
    (re.compile(r"Street-Address:\s*(.*)", re.IGNORECASE), "street_address"),
    (re.compile(r"City:\s*(.*)", re.IGNORECASE), "city"),
    (re.compile(r"Postal-Code:\s*(.*)", re.IGNORECASE), "postal_code"),
    (re.compile(r"State-Prov:\s*(.*)", re.IGNORECASE), "state_prov"),
    (re.compile(r"Abuse-Phone:\s*(.*)", re.IGNORECASE), "abuse_phone"),
    (
        re.compile(r"(?:Abuse-Email|abuse-mailbox|e-mail):\s*(.*)", re.IGNORECASE),
        "abuse_mail",
    ),
]

# Fields joined into a synthesized description when no descr: lines exist.
_ADDRESS_FIELDS = ("org_name", "street_address", "city", "state_prov", "postal_code", "country")


def normalize_line(line: str) -> str:
    """Flatten an rwhois ``network:Key:value`` line into ``Key: value``."""
    if _NETWORK_MARKER_RE.match(line):
        return ": ".join(line.split(":")[1:])
    return line


def parse_referral(url: str, server: str = "") -> tuple[str, int]:
    """Parse a ``whois://host[:port]`` referral URL.

    IPv6 literal hosts must be bracketed (``whois://[2001:db8::1]:4321``).

    Args:
        url: The referral value (after ``ReferralServer:``).
        server: Server that sent the referral, for error reporting.

    Returns:
        ``(host, port)``; the port defaults to 43.

    Raises:
        ReferralParseFailure: If the URL is not a (r)whois URL or the port
            is not a number.
    """
    try:
        parts = urlsplit(url.strip().lower())
        port = parts.port
    except ValueError:
        raise ReferralParseFailure(server, url) from None
    if parts.scheme not in _REFERRAL_SCHEMES or not parts.hostname:
        raise ReferralParseFailure(server, url)
    return parts.hostname, port or WHOIS_PORT


class WhoisParser:
    """Incremental parser for one whois session's line stream.

    Args:
        subject: The query subject of the session.
        server: The server being read.
        verbose: Extract the informational fields as well as the country.
    """

    def __init__(self, subject: str, server: str = "", verbose: bool = False) -> None:
        self.record = WhoisRecord(subject=subject, server=server)
        self.verbose = verbose
        self._desc_done = False
        self._previous = ""

    def feed(self, line: str) -> str | None:
        """Consume one response line.

        Returns:
            The raw referral URL if the line is a referral, else ``None``.
        """
        line = normalize_line(line)
        record = self.record

        m = _REFERRAL_RE.search(line)
        if m:
            return m.group(1).strip()

        if record.country is None and (m := _COUNTRY_RE.search(line)):
            record.country = m.group(1).lower()
            logger.debug("%s answer: %s", record.server, record.country)
        elif record.country is None and (m := _FALLBACK_RE.match(line)):
            record.fallback_subject = m.group(1)

        if self.verbose:
            self._feed_verbose(line)
        return None

    def _feed_verbose(self, line: str) -> None:
        record = self.record
        for pattern, attr in _VERBOSE_RULES:
            if attr == "description_parts":
                if self._desc_done:
                    continue
            elif getattr(record, attr):
                continue
            m = pattern.search(line)
            if m is None:
                continue
            value = m.group(1).strip()
            if attr == "description_parts":
                if not value.startswith("="):
                    record.description_parts.append(value)
            elif attr == "abuse_mail":
                record.abuse_mail = value.lower()
            else:
                setattr(record, attr, value)
            break

        if (
            not self._desc_done
            and _DESCR_LINE_RE.search(self._previous)
            and not _DESCR_LINE_RE.search(line)
        ):
            self._desc_done = True
        self._previous = line

    def finish(self) -> WhoisRecord:
        """Finalize verbose fields and return the record."""
        record = self.record
        if not self.verbose:
            return record

        if record.abuse_phone:
            if record.abuse_mail:
                record.abuse_mail = f"{record.abuse_mail}, {record.abuse_phone}"
            else:
                record.abuse_mail = record.abuse_phone

        parts = list(record.description_parts)
        if not parts:
            parts = [getattr(record, f) for f in _ADDRESS_FIELDS if getattr(record, f)]
        if parts:
            record.description = ", ".join(parts)
        elif record.owner:
            record.description = record.owner
        return record


class WhoisClient:
    """Country lookup over the whois protocol.

    Args:
        timeout: Seconds allowed for each connect and each read.
        max_hops: Maximum number of sessions per lookup, counting the first
            one, referrals and fallback re-queries.
        fallback: Enable the experimental ``NET-`` handle re-query.
        connect: Factory returning a connected socket, with the signature of
            ``socket.create_connection``.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        max_hops: int = DEFAULT_MAX_HOPS,
        fallback: bool = False,
        connect: Callable[..., socket.socket] = socket.create_connection,
    ) -> None:
        self.timeout = timeout
        self.max_hops = max_hops
        self.fallback = fallback
        self._connect = connect

    def lookup(
        self,
        ip: str,
        registry: "NetmaskRegistry",
        verbose: bool = False,
        fallback: bool | None = None,
    ) -> WhoisRecord:
        """Select the authoritative server for *ip* and query it.

        Raises:
            NetmaskNotFound: If the registry has no entry for *ip*.
            UnallocatedNetmask: If the matching entry is ``unallocated``.
            LookupFailure: Any failure raised by :meth:`query`.
        """
        entry = registry.match(ip)
        logger.debug("Matching mask %s using whois DB: %s", entry.network, entry.whois_server)
        if entry.is_unallocated:
            logger.info("Unallocated netmask %s for %s", entry.network, ip)
            raise UnallocatedNetmask(ip, str(entry.network))
        return self.query(ip, entry.whois_server, verbose=verbose, fallback=fallback)

    def query(
        self,
        subject: str,
        server: str,
        port: int = WHOIS_PORT,
        verbose: bool = False,
        fallback: bool | None = None,
    ) -> WhoisRecord:
        """Query *server* for *subject*, following referrals.

        Args:
            subject: Address (or handle) to query.
            server: First whois server to contact.
            port: Port of *server*.
            verbose: Extract informational fields as well as the country.
            fallback: Override the client's ``fallback`` setting for this
                query.

        Returns:
            The record of the last session, with ``country`` set.

        Raises:
            ConnectFailure: A server could not be reached.
            TimeoutFailure: A connect or read timed out.
            ReferralParseFailure: A referral URL could not be parsed.
            ReferralLoopFailure: More than ``max_hops`` sessions were needed.
            NoCountryFound: No country after fallback and last resort.
        """
        use_fallback = self.fallback if fallback is None else fallback
        hops = 0
        query_subject = subject
        source = "whois"
        fallback_used = False

        while True:
            hops += 1
            if hops > self.max_hops:
                if not fallback_used:
                    raise ReferralLoopFailure(subject, self.max_hops)
                # Hop bound hit after the fallback re-query: last resort decides.
                logger.debug("Hop bound reached during fallback for '%s'", subject)
                record = WhoisRecord(subject=subject, server=server)
                break

            record, referral = self._session(query_subject, server, port, verbose)

            if referral is not None:
                server, port = parse_referral(referral, server)
                logger.debug(
                    "Following referral server, new server is '%s', port '%d'",
                    server,
                    port,
                )
                continue

            if (
                record.country is None
                and use_fallback
                and not fallback_used
                and record.fallback_subject
                and record.fallback_subject != query_subject
            ):
                # At most one re-query, against the same server and port.
                logger.debug(
                    "Using fallback method for '%s', original subject was %s",
                    record.fallback_subject,
                    subject,
                )
                query_subject = record.fallback_subject
                source = "fallback"
                fallback_used = True
                continue
            break

        record.subject = subject
        if record.country is not None:
            record.source = source
            return record

        country = last_resort_country(subject)
        if country is not None:
            logger.debug("Got '%s' from last resort masks", country)
            record.country = country
            record.source = "last-resort"
            return record

        logger.info("No country found for '%s'", subject)
        raise NoCountryFound(subject)

    def _session(
        self, subject: str, server: str, port: int, verbose: bool
    ) -> tuple[WhoisRecord, str | None]:
        """Run one TCP session; return the parsed record and any referral."""
        logger.debug("Connecting to %s:%d for '%s'", server, port, subject)
        try:
            sock = self._connect((server, port), timeout=self.timeout)
        except TimeoutError:
            logger.warning("Connection timeout against %s", server)
            raise TimeoutFailure(server) from None
        except OSError as exc:
            logger.warning("Failed to connect to server %s: %s", server, exc)
            raise ConnectFailure(server, str(exc)) from exc

        parser = WhoisParser(subject, server, verbose)
        with sock:
            logger.debug("State 'connected' with '%s'", server)
            try:
                sock.sendall(f"{subject}\r\n".encode())
                with sock.makefile("r", encoding="utf-8", errors="replace") as stream:
                    for raw in stream:
                        referral = parser.feed(raw.rstrip("\r\n"))
                        if referral is not None:
                            logger.debug("Found whois referral server: %s", referral)
                            return parser.record, referral
            except TimeoutError:
                logger.warning("Read timeout against %s", server)
                raise TimeoutFailure(server) from None
            except OSError as exc:
                logger.warning("Connection to %s failed: %s", server, exc)
                raise ConnectFailure(server, str(exc)) from exc

        logger.debug("End of response from %s", server)
        return parser.finish(), None
