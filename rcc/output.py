"""Output renderer: rich tables and JSON for lookups, status and settings."""

import dataclasses
import json
import sys
from collections.abc import Callable
from io import StringIO

from rich.console import Console
from rich.table import Table

from rcc.countries import CountryTable
from rcc.models import ChannelConfig, GeoRecord, Outcome, WhoisRecord

# (header, WhoisRecord attribute) for the info table.
_WHOIS_COLUMNS = [
    ("InetNum", "inet_num"),
    ("Asn", "asn"),
    ("NetName", "net_name"),
    ("MntBy", "mnt_by"),
    ("Country", "country"),
    ("Contact", "abuse_mail"),
    ("Description", "description"),
]

_GEO_COLUMNS = [
    ("IP", "ip"),
    ("CountryName", "country_name"),
    ("RegionName", "region_name"),
    ("City", "city"),
    ("Latitude", "latitude"),
    ("Longitude", "longitude"),
    ("Map", "map_url"),
]

_CHANNEL_FLAG_COLUMNS = ["enabled", "whitelist", "topban", "topchk", "pubcmd"]


def _console(file: object | None, width: int | None) -> Console:
    return Console(file=file or sys.stdout, highlight=False, width=width)


def _fmt(value: object) -> str:
    """Format a field value for table display.

    ``None`` and ``""`` become ``"—"``, everything else is stringified.
    """
    if value is None or value == "":
        return "—"
    return str(value)


def _dump(payload: object, file: object | None) -> None:
    out = file or sys.stdout
    json.dump(payload, out, indent=2, default=str)
    out.write("\n")  # type: ignore[union-attr]


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def render_notices(
    outcome: Outcome,
    fmt: str,
    *,
    file: object | None = None,
    width: int | None = None,
) -> None:
    """Render the notices of a check/test/join pipeline.

    Args:
        outcome: The pipeline outcome.
        fmt: ``"table"`` prints one notice per line, ``"json"`` dumps the
            whole outcome.
        file: Writable file object for output (default: ``sys.stdout``).
        width: Explicit console width (default: auto-detect).

    Raises:
        ValueError: If *fmt* is not ``"table"`` or ``"json"``.
    """
    if fmt == "json":
        _dump(outcome_to_dict(outcome), file)
    elif fmt == "table":
        console = _console(file, width)
        for notice in outcome.notices:
            console.print(notice, markup=False)
    else:
        raise ValueError(f"Unknown output format: {fmt!r}")


def render_whois(
    outcome: Outcome,
    countries: CountryTable,
    fmt: str,
    *,
    file: object | None = None,
    width: int | None = None,
) -> None:
    """Render a verbose whois lookup.

    The Country column shows ``"Name [CC]"`` when the name is known. An
    outcome without a whois record falls back to its notices.

    Raises:
        ValueError: If *fmt* is not ``"table"`` or ``"json"``.
    """
    record = outcome.resolution.record if outcome.resolution else None
    if fmt == "json":
        _dump(outcome_to_dict(outcome), file)
        return
    if fmt != "table":
        raise ValueError(f"Unknown output format: {fmt!r}")
    if not isinstance(record, WhoisRecord):
        render_notices(outcome, fmt, file=file, width=width)
        return

    console = _console(file, width)
    table = Table(title=f"{outcome.host} — whois {record.server}")
    for header, _ in _WHOIS_COLUMNS:
        table.add_column(header)

    row = []
    for _, attr in _WHOIS_COLUMNS:
        value = getattr(record, attr)
        if attr == "country" and value and value in countries:
            value = countries.label(value)
        row.append(_fmt(value))
    table.add_row(*row)
    console.print(table)


def render_geo(
    outcome: Outcome,
    fmt: str,
    *,
    file: object | None = None,
    width: int | None = None,
) -> None:
    """Render a geo lookup with the map link.

    Raises:
        ValueError: If *fmt* is not ``"table"`` or ``"json"``.
    """
    record = outcome.resolution.record if outcome.resolution else None
    if fmt == "json":
        payload = outcome_to_dict(outcome)
        if isinstance(record, GeoRecord):
            payload["map_url"] = record.map_url
        _dump(payload, file)
        return
    if fmt != "table":
        raise ValueError(f"Unknown output format: {fmt!r}")
    if not isinstance(record, GeoRecord):
        render_notices(outcome, fmt, file=file, width=width)
        return

    console = _console(file, width)
    table = Table(title=f"{outcome.host} — geo")
    for header, _ in _GEO_COLUMNS:
        table.add_column(header)

    row = []
    for _, attr in _GEO_COLUMNS:
        value = getattr(record, attr)
        if attr == "country_name" and value and record.country_code:
            value = f"{value} [{record.country_code.upper()}]"
        row.append(_fmt(value))
    table.add_row(*row)
    console.print(table)


# ---------------------------------------------------------------------------
# Status and settings
# ---------------------------------------------------------------------------


def render_status(
    channels: list[ChannelConfig],
    counts: dict[str, int],
    fmt: str,
    *,
    file: object | None = None,
    width: int | None = None,
) -> None:
    """Render ban counts and TLD lists per channel.

    Args:
        channels: Channels to report on.
        counts: Bans set per channel name.
        fmt: ``"table"`` or ``"json"``.
    """
    if fmt == "json":
        _dump(
            [
                {
                    "channel": c.name,
                    "bans": counts.get(c.name, 0),
                    "whitelist": c.whitelist,
                    "tlds": c.tlds,
                    "resolve_domains": c.resolve_domains,
                }
                for c in channels
            ],
            file,
        )
        return
    if fmt != "table":
        raise ValueError(f"Unknown output format: {fmt!r}")

    console = _console(file, width)
    if not channels:
        console.print("  No channels configured.")
        return

    table = Table(title="Status")
    table.add_column("Channel")
    table.add_column("Bans", justify="right")
    table.add_column("Mode")
    table.add_column("TLD(s)")
    table.add_column("Resolve TLD(s)")
    for c in channels:
        table.add_row(
            c.name,
            str(counts.get(c.name, 0)),
            "Allowed" if c.whitelist else "Banned",
            ", ".join(c.tlds) or "No TLD set",
            ", ".join(c.resolve_domains) or "No TLD set",
        )
    console.print(table)


def render_settings(
    channels: list[ChannelConfig],
    options: dict[str, str],
    fmt: str,
    *,
    file: object | None = None,
    width: int | None = None,
) -> None:
    """Render channel flags and global options."""
    if fmt == "json":
        _dump(
            {
                "channels": [dataclasses.asdict(c) for c in channels],
                "options": options,
            },
            file,
        )
        return
    if fmt != "table":
        raise ValueError(f"Unknown output format: {fmt!r}")

    console = _console(file, width)
    table = Table(title="Channels")
    table.add_column("Channel")
    for flag in _CHANNEL_FLAG_COLUMNS:
        table.add_column(flag.capitalize())
    table.add_column("Bantime", justify="right")
    table.add_column("TLD(s)")
    table.add_column("Resolve TLD(s)")
    for c in channels:
        table.add_row(
            c.name,
            *["on" if getattr(c, flag) else "off" for flag in _CHANNEL_FLAG_COLUMNS],
            str(c.bantime),
            ", ".join(c.tlds) or "—",
            ", ".join(c.resolve_domains) or "—",
        )
    console.print(table)

    opts = Table(title="Options")
    opts.add_column("Option")
    opts.add_column("Value")
    for name, value in options.items():
        opts.add_row(name, value)
    if not options:
        opts.add_row("—", "—")
    console.print(opts)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def outcome_to_dict(outcome: Outcome) -> dict:
    """Convert an ``Outcome`` (and its records) to a plain dict."""
    return dataclasses.asdict(outcome)


def render_to_string(
    renderer: Callable[..., None], *args: object, width: int = 200, **kwargs: object
) -> str:
    """Run *renderer* into a string instead of stdout — useful for testing.

    Args:
        renderer: One of the ``render_*`` functions.
        *args: Positional arguments for *renderer*.
        width: Console width for table rendering (default: 200).
        **kwargs: Keyword arguments for *renderer*.

    Returns:
        The rendered output as a string.
    """
    buf = StringIO()
    renderer(*args, file=buf, width=width, **kwargs)
    return buf.getvalue()
