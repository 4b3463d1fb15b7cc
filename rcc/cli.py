"""CLI entry point for the rcc tool."""

import functools
import logging
import sys
from pathlib import Path

import click

from rcc.config import ConfigError, RccConfig, load_config
from rcc.countries import CountryTable
from rcc.errors import InvalidChannelConfig, RccError
from rcc.geoip import GeoProvider, build_geo_provider
from rcc.models import Outcome
from rcc.netmask import NetmaskRegistry
from rcc.output import (
    render_geo,
    render_notices,
    render_settings,
    render_status,
    render_whois,
)
from rcc.pipeline import Checker, JoinDispatcher
from rcc.policy import PolicyEngine
from rcc.resolver import CountryResolver
from rcc.settings import CHANNEL_FLAGS, SettingsStore
from rcc.whois import WhoisClient

logger = logging.getLogger(__name__)

FORMATS = ("table", "json")


class _App:
    """Lazily built components shared by the commands of one invocation.

    Admin commands only touch the settings store; the lookup tables and
    network clients are loaded on first use.
    """

    def __init__(self, cfg: RccConfig) -> None:
        self.cfg = cfg
        self._settings: SettingsStore | None = None
        self._checker: Checker | None = None
        self._geo: GeoProvider | None = None

    @property
    def settings(self) -> SettingsStore:
        if self._settings is None:
            self._settings = SettingsStore(self.cfg.db_path)
        return self._settings

    @property
    def checker(self) -> Checker:
        if self._checker is None:
            cfg = self.cfg
            registry = NetmaskRegistry.from_file(cfg.netmask_file)
            countries = CountryTable.from_file(cfg.tld_file)
            self._geo = build_geo_provider(cfg)
            whois = WhoisClient(timeout=cfg.timeout, max_hops=cfg.max_referral_hops)
            resolver = CountryResolver(
                registry,
                whois,
                geo=self._geo,
                options=self.settings,
                timeout=cfg.timeout,
            )
            policy = PolicyEngine(countries, self.settings)
            self._checker = Checker(resolver, policy, self.settings, countries)
        return self._checker

    def close(self) -> None:
        if self._geo is not None:
            self._geo.close()
        if self._settings is not None:
            self._settings.close()


def _fail(exc: Exception) -> None:
    click.echo(f"Error: {exc}", err=True)
    sys.exit(1)


def _handle_errors(func):
    """Turn rcc and file errors raised by a command into ``Error: ...``."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (RccError, FileNotFoundError, ValueError) as exc:
            _fail(exc)

    return wrapper


_format_option = click.option(
    "--format",
    "-f",
    "output_format",
    default="table",
    type=click.Choice(FORMATS, case_sensitive=False),
    show_default=True,
    help="Output format.",
)


@click.group()
@click.option(
    "--config",
    "-c",
    "config_path",
    default=None,
    type=click.Path(exists=False),
    help="Path to YAML config file (default: ~/.rcc/config.yaml).",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """Resolve hosts to countries and apply per-channel ban policies."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    try:
        cfg = load_config(config_path)
    except (ConfigError, FileNotFoundError) as exc:
        _fail(exc)

    logger.debug("Config loaded: %s", cfg)
    app = _App(cfg)
    ctx.obj = app
    ctx.call_on_close(app.close)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


@main.command()
@click.argument("host")
@_format_option
@click.pass_obj
@_handle_errors
def check(app: _App, host: str, output_format: str) -> None:
    """Show where HOST is located."""
    outcome = app.checker.check(host)
    render_notices(outcome, output_format)
    if outcome.failed:
        sys.exit(1)


@main.command()
@click.argument("host")
@_format_option
@click.pass_obj
@_handle_errors
def info(app: _App, host: str, output_format: str) -> None:
    """Show whois information for HOST."""
    checker = app.checker
    outcome = checker.info(host)
    render_whois(outcome, checker.countries, output_format)
    if outcome.failed:
        sys.exit(1)


@main.command()
@click.argument("host")
@_format_option
@click.pass_obj
@_handle_errors
def geo(app: _App, host: str, output_format: str) -> None:
    """Show geo information and a map link for HOST."""
    outcome = app.checker.geo(host)
    render_geo(outcome, output_format)
    if outcome.failed:
        sys.exit(1)


@main.command("test")
@click.argument("channel")
@click.argument("host")
@click.pass_obj
@_handle_errors
def dry_run(app: _App, channel: str, host: str) -> None:
    """Show whether HOST would get banned on CHANNEL, without banning."""
    outcome = app.checker.test(channel, host)
    render_notices(outcome, "table")


@main.command()
@click.argument("channel")
@click.argument("nick")
@click.argument("userhost")
@click.pass_obj
@_handle_errors
def join(app: _App, channel: str, nick: str, userhost: str) -> None:
    """Run the join check for NICK (USERHOST) on CHANNEL and enforce it."""
    outcome = app.checker.join(channel, nick, userhost)
    _echo_join(channel, nick, outcome)


@main.command()
@click.argument("joins_file", type=click.Path(exists=True, dir_okay=False))
@click.pass_obj
@_handle_errors
def replay(app: _App, joins_file: str) -> None:
    """Run join checks concurrently for every ``CHANNEL NICK USERHOST`` line."""
    joins: list[tuple[str, str, str]] = []
    for lineno, line in enumerate(
        Path(joins_file).read_text(encoding="utf-8").splitlines(), start=1
    ):
        parts = line.split()
        if not parts or parts[0].startswith(";"):
            continue
        if len(parts) != 3:
            logger.warning("Skipping malformed join line %s:%d", joins_file, lineno)
            continue
        joins.append((parts[0], parts[1], parts[2]))

    with JoinDispatcher(app.checker, workers=app.cfg.workers) as dispatcher:
        outcomes = dispatcher.run(joins)

    for (channel, nick, _), outcome in zip(joins, outcomes):
        _echo_join(channel, nick, outcome)


def _echo_join(channel: str, nick: str, outcome: Outcome) -> None:
    for notice in outcome.notices:
        click.echo(f"{nick}@{outcome.host}: {notice}")
    decision = outcome.decision
    if decision is None or not decision.ban:
        click.echo(f"{nick}@{outcome.host}: no action on {channel.lower()}")
    elif outcome.enforced:
        click.echo(f"Banned {decision.mask} on {channel.lower()}: {decision.reason}")
    else:
        click.echo(f"Log mode: would ban {decision.mask} on {channel.lower()}")


# ---------------------------------------------------------------------------
# Channel administration
# ---------------------------------------------------------------------------


@main.command()
@click.argument("action", type=click.Choice(["add", "del"]))
@click.argument("channel")
@click.argument("tld")
@click.pass_obj
@_handle_errors
def topdom(app: _App, action: str, channel: str, tld: str) -> None:
    """Add or remove a top domain on CHANNEL."""
    if action == "add":
        app.settings.add_tld(channel, tld)
        click.echo(f"Domain '{tld.lower()}' added to {channel.lower()}")
    else:
        app.settings.remove_tld(channel, tld)
        click.echo(f"Domain '{tld.lower()}' removed from {channel.lower()}")


@main.command()
@click.argument("action", type=click.Choice(["add", "del"]))
@click.argument("channel")
@click.argument("tld")
@click.pass_obj
@_handle_errors
def topresolv(app: _App, action: str, channel: str, tld: str) -> None:
    """Add or remove a resolve domain (a TLD or ``*``) on CHANNEL."""
    if action == "add":
        app.settings.add_resolve_domain(channel, tld)
        click.echo(f"Top resolve domain '{tld.lower()}' added to {channel.lower()}")
    else:
        app.settings.remove_resolve_domain(channel, tld)
        click.echo(f"Top resolve domain '{tld.lower()}' removed from {channel.lower()}")


@main.command()
@click.argument("channel")
@click.option("--enable/--disable", "enabled", default=None, help="Join checking.")
@click.option("--whitelist/--no-whitelist", default=None, help="Allow-list mode.")
@click.option("--topban/--no-topban", default=None, help="Ban by top domain.")
@click.option("--topchk/--no-topchk", default=None, help="Resolve hostnames.")
@click.option("--pubcmd/--no-pubcmd", default=None, help="Public commands.")
@click.option("--bantime", type=int, default=None, help="Ban time in minutes.")
@click.pass_obj
@_handle_errors
def chanset(app: _App, channel: str, bantime: int | None, **flags: bool | None) -> None:
    """Change the flags of CHANNEL."""
    changed = {k: v for k, v in flags.items() if v is not None}
    config = app.settings.set_channel_flags(channel, bantime=bantime, **changed)
    on = [f for f in CHANNEL_FLAGS if getattr(config, f)]
    click.echo(
        f"{config.name}: {', '.join(on) or 'no flags set'}; bantime {config.bantime}"
    )


@main.command()
@click.argument("name")
@click.argument("value", nargs=-1)
@click.pass_obj
@_handle_errors
def option(app: _App, name: str, value: tuple[str, ...]) -> None:
    """Set a global option to VALUE, or unset it when VALUE is omitted."""
    stored = app.settings.set_option(name, " ".join(value))
    if stored is None:
        click.echo(f"Option '{name.lower()}' unset")
    else:
        click.echo(f"Option '{name.lower()}' set with the value '{stored}'")


@main.command()
@_format_option
@click.pass_obj
@_handle_errors
def settings(app: _App, output_format: str) -> None:
    """List channel settings and global options."""
    store = app.settings
    render_settings(store.channels(), store.options(), output_format)


@main.command()
@click.argument("channel", default="*")
@_format_option
@click.pass_obj
@_handle_errors
def status(app: _App, channel: str, output_format: str) -> None:
    """Show ban counts and TLD lists for CHANNEL, or every channel for ``*``."""
    store = app.settings
    if channel == "*":
        channels = store.channels()
    else:
        config = store.get_channel(channel)
        if config is None:
            raise InvalidChannelConfig(f"Invalid channel {channel}")
        channels = [config]
    counts = {c.name: store.ban_count(c.name) for c in channels}
    render_status(channels, counts, output_format)
