"""Pipelines: join checking, host lookups and concurrent join dispatch.

Pipeline: host → top-domain check → resolve → country → policy → enforce.

Each pipeline catches lookup failures itself and turns them into notices, so
one failing lookup never affects another pipeline running concurrently.
"""

import logging
from collections.abc import Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Protocol

from rcc.countries import CountryTable
from rcc.dns import host_from_userhost
from rcc.errors import (
    ConnectFailure,
    GeoLookupFailure,
    InvalidChannelConfig,
    LookupFailure,
    NoCountryFound,
    PrivateOrReservedRange,
    ReferralLoopFailure,
    ReferralParseFailure,
    RccError,
    ResolveFailure,
    TimeoutFailure,
)
from rcc.models import ChannelConfig, Decision, Outcome, ResolutionResult
from rcc.policy import PolicyEngine
from rcc.resolver import CountryResolver
from rcc.settings import SettingsStore

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = 8


class BanSink(Protocol):
    """Receives ban decisions that should be enforced."""

    def ban(self, channel: str, mask: str, reason: str, minutes: int) -> None: ...


class LoggingBanSink:
    """Ban sink that only logs; used when no chat layer is attached."""

    def ban(self, channel: str, mask: str, reason: str, minutes: int) -> None:
        logger.info(
            "Ban %s on %s for %d minute(s): %s", mask, channel, minutes, reason
        )


def failure_notice(exc: RccError, host: str) -> str:
    """Return the user-facing notice for a failed lookup of *host*."""
    if isinstance(exc, NoCountryFound):
        return f"Whois query failed for '{host}'!"
    if isinstance(
        exc, (ConnectFailure, TimeoutFailure, ReferralParseFailure, ReferralLoopFailure)
    ):
        return f"ERROR: {exc}"
    return str(exc)


class Checker:
    """Runs the join, check, info, geo and test pipelines.

    Args:
        resolver: Country resolver.
        policy: Policy engine.
        settings: Settings store (channel configs and ban counters).
        countries: TLD to country name table.
        sink: Where enforced bans go; defaults to ``LoggingBanSink``.
    """

    def __init__(
        self,
        resolver: CountryResolver,
        policy: PolicyEngine,
        settings: SettingsStore,
        countries: CountryTable,
        sink: BanSink | None = None,
    ) -> None:
        self.resolver = resolver
        self.policy = policy
        self.settings = settings
        self.countries = countries
        self.sink = sink or LoggingBanSink()

    # ------------------------------------------------------------------
    # Join
    # ------------------------------------------------------------------

    def join(self, channel: str, nick: str, userhost: str) -> Outcome:
        """Evaluate a user joining *channel* and enforce a ban if needed.

        Args:
            channel: Channel name.
            nick: Nickname of the joining user.
            userhost: ``user@host`` (or ``nick!user@host``) of the user.
        """
        host = host_from_userhost(userhost)
        outcome = Outcome(host=host)

        config = self.settings.get_channel(channel)
        if config is None or not config.enabled:
            logger.debug("Join checking is not enabled on %s", channel)
            return outcome
        if not config.tlds:
            logger.warning(
                "Ripecheck is enabled but '%s' has no domain list!", config.name
            )
            return outcome

        self._evaluate(config, nick, host, outcome)
        if outcome.decision is not None and outcome.decision.ban:
            outcome.enforced = self._enforce(config, outcome.decision)
        return outcome

    def test(self, channel: str, host: str, nick: str = "test") -> Outcome:
        """Evaluate *host* against *channel* like a join, without enforcing.

        Raises:
            InvalidChannelConfig: If the channel has no settings.
        """
        config = self.settings.get_channel(channel)
        if config is None:
            raise InvalidChannelConfig(f"Invalid channel {channel}")

        host = host.strip().lower()
        outcome = Outcome(host=host)
        self._evaluate(config, nick, host, outcome)

        decision = outcome.decision
        label = f"{host} ({outcome.ip})" if outcome.ip and outcome.ip != host else host
        if decision is None:
            if not outcome.notices:
                outcome.notices.append(
                    f"TEST - Host '{host}' did not match one of the top resolve "
                    "domains, would not get banned."
                )
        elif decision.ban and decision.path == "topban":
            outcome.notices.append(
                f"TEST - Topban matched '{decision.code}' for host '{host}', "
                "host would get banned!"
            )
        elif decision.ban:
            outcome.notices.append(
                f"TEST - Matched country '{decision.code}' for host '{label}' on "
                f"channel '{config.name}', host would get banned!"
            )
        else:
            outcome.notices.append(f"TEST - Host '{label}' would not get banned!")
        return outcome

    def _evaluate(
        self, config: ChannelConfig, nick: str, host: str, outcome: Outcome
    ) -> None:
        decision = self.policy.check_top_domain(host, nick, config)
        if decision is not None:
            outcome.decision = decision
            return

        try:
            result = self.resolver.resolve_for_channel(host, config)
        except ResolveFailure as exc:
            logger.info("Couldn't resolve '%s'. No further action taken.", host)
            outcome.notices.append(str(exc))
            outcome.failed = True
            return
        except PrivateOrReservedRange as exc:
            outcome.ip = exc.ip
            outcome.notices.append(str(exc))
            return
        except LookupFailure as exc:
            logger.warning("Lookup for '%s' on %s failed: %s", host, config.name, exc)
            outcome.notices.append(failure_notice(exc, host))
            outcome.failed = True
            return

        if result is None:
            return
        outcome.ip = result.ip
        outcome.resolution = result
        outcome.decision = self.policy.check_country(result, host, nick, config)

    def _enforce(self, config: ChannelConfig, decision: Decision) -> bool:
        if decision.logged_only:
            logger.info(
                "Log mode enabled, not banning %s on %s", decision.mask, config.name
            )
            return False
        count = self.settings.incr_ban_count(config.name)
        self.sink.ban(config.name, decision.mask, decision.reason, config.bantime)
        logger.debug("Ban count for %s is now %d", config.name, count)
        return True

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def check(self, host: str) -> Outcome:
        """Find out where *host* is located."""
        outcome = self._lookup(host, verbose=False)
        result = outcome.resolution
        if result is not None:
            label = self.countries.label(result.country_code)
            outcome.notices.append(f"{outcome.host} is located in {label}")
        return outcome

    def info(self, host: str) -> Outcome:
        """Run a verbose whois lookup; the record is in ``outcome.resolution``."""
        return self._lookup(host, verbose=True)

    def geo(self, host: str) -> Outcome:
        """Query the geo provider for *host*; the record is in ``outcome.resolution``."""
        host = host.strip().lower()
        outcome = Outcome(host=host)
        geo = self.resolver.geo
        if geo is None:
            outcome.notices.append("ERROR: No geo provider configured")
            outcome.failed = True
            return outcome

        try:
            outcome.ip = self.resolver.resolve_ip(host)
            record = geo.lookup(outcome.ip)
        except (ResolveFailure, GeoLookupFailure) as exc:
            logger.info("Geo lookup for '%s' failed: %s", host, exc)
            outcome.notices.append(str(exc))
            outcome.failed = True
            return outcome

        if record.is_reserved:
            outcome.notices.append(f"{outcome.ip} belongs to a reserved net range")
            return outcome

        outcome.resolution = ResolutionResult(
            country_code=record.country_code.lower(),
            source="geo",
            ip=outcome.ip,
            record=record,
        )
        return outcome

    def _lookup(self, host: str, verbose: bool) -> Outcome:
        host = host.strip().lower()
        outcome = Outcome(host=host)
        try:
            outcome.ip = self.resolver.resolve_ip(host)
            outcome.resolution = self.resolver.resolve_address(
                outcome.ip, verbose=verbose, use_geo=not verbose
            )
        except PrivateOrReservedRange as exc:
            outcome.notices.append(str(exc))
        except LookupFailure as exc:
            logger.warning("Lookup for '%s' failed: %s", host, exc)
            outcome.notices.append(failure_notice(exc, host))
            outcome.failed = True
        return outcome


class JoinDispatcher:
    """Run join pipelines concurrently on a thread pool.

    Pipelines are independent; each network step inside them carries its own
    timeout, so a slow whois server only holds up its own worker.

    Args:
        checker: The checker whose ``join`` pipeline is run.
        workers: Maximum number of concurrent pipelines.
    """

    def __init__(self, checker: Checker, workers: int = DEFAULT_WORKERS) -> None:
        self.checker = checker
        self._pool = ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="rcc-join"
        )

    def submit(self, channel: str, nick: str, userhost: str) -> "Future[Outcome]":
        return self._pool.submit(self._join, channel, nick, userhost)

    def _join(self, channel: str, nick: str, userhost: str) -> Outcome:
        # A rejected join becomes a failed outcome; the rest of the batch runs on.
        try:
            return self.checker.join(channel, nick, userhost)
        except RccError as exc:
            logger.warning("Join of %s on %s rejected: %s", userhost, channel, exc)
            return Outcome(
                host=host_from_userhost(userhost), notices=[str(exc)], failed=True
            )

    def run(self, joins: Iterable[tuple[str, str, str]]) -> list[Outcome]:
        """Dispatch every ``(channel, nick, userhost)`` join and wait for all.

        Returns:
            Outcomes in the order the joins were given. A join rejected with
            an ``RccError`` (such as a bad channel name) yields a failed
            outcome carrying the error as its notice.
        """
        futures = [self.submit(*join) for join in joins]
        return [f.result() for f in futures]

    def close(self) -> None:
        self._pool.shutdown(wait=True)

    def __enter__(self) -> "JoinDispatcher":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
