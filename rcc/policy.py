"""Channel policy: top-domain bans, country bans and ban-reason templates."""

import logging
from typing import Protocol

from rcc.countries import CountryTable
from rcc.dns import is_ip_address, top_label
from rcc.models import ChannelConfig, Decision, GeoRecord, ResolutionResult

logger = logging.getLogger(__name__)

DEFAULT_TOP_REASON = "RIPE Country Check: Top domain .%tld% is banned."
DEFAULT_COUNTRY_REASON = "RIPE Country Check: Matched %country% [%tld%]"


class OptionSource(Protocol):
    """Read access to global options (implemented by ``SettingsStore``)."""

    def get_option(self, name: str) -> str | None: ...

    def is_enabled(self, name: str) -> bool: ...


def template_replace(template: str, subs: dict[str, str]) -> str:
    """Substitute every ``%keyword%`` in *subs* into *template*.

    Replacement is literal; unknown placeholders are left alone.
    """
    text = template
    for placeholder, value in subs.items():
        text = text.replace(placeholder, value)
    return text


def is_listed(channel: ChannelConfig, code: str) -> bool:
    """Return True if *code* should be banned under the channel's list.

    Non-whitelist mode bans listed codes; whitelist mode bans unlisted ones.
    """
    listed = code in channel.tlds
    return not listed if channel.whitelist else listed


class PolicyEngine:
    """Turn a host or a resolved country into a ban decision.

    Args:
        countries: TLD to country name table used for messages.
        options: Global options (``banreason``, ``bantopreason``,
            ``logmode``).
    """

    def __init__(self, countries: CountryTable, options: OptionSource) -> None:
        self.countries = countries
        self.options = options

    def check_top_domain(
        self, host: str, nick: str, channel: ChannelConfig
    ) -> Decision | None:
        """Evaluate the top-domain path for a hostname.

        No network lookup is performed.

        Returns:
            A ban ``Decision`` if the trailing label is banned, otherwise
            ``None`` (the caller continues with country resolution).
        """
        if not channel.topban or is_ip_address(host):
            return None

        tld = top_label(host)
        if channel.whitelist:
            matched = tld not in channel.tlds and not channel.in_resolve_domains(tld)
        else:
            matched = tld in channel.tlds
        if not matched:
            return None

        country = self.countries.name(tld)
        subs = {"%nick%": nick, "%domain%": tld, "%tld%": tld, "%country%": country}
        template = self.options.get_option("bantopreason") or DEFAULT_TOP_REASON
        decision = Decision(
            ban=True,
            mask=f"*!*@*.{tld}",
            reason=template_replace(template, subs),
            code=tld,
            country=country,
            path="topban",
            logged_only=self.options.is_enabled("logmode"),
        )
        logger.info(
            "Matched top domain '%s' banning %s on %s for %d minute(s)",
            tld,
            decision.mask,
            channel.name,
            channel.bantime,
        )
        return decision

    def check_country(
        self,
        result: ResolutionResult,
        host: str,
        nick: str,
        channel: ChannelConfig,
    ) -> Decision:
        """Evaluate a resolved country code against the channel's list."""
        code = result.country_code.lower()
        country = self.countries.name(code)

        reserved = isinstance(result.record, GeoRecord) and result.record.is_reserved
        if reserved or not is_listed(channel, code):
            return Decision(ban=False, code=code, country=country, source=result.source)

        subs = {
            "%nick%": nick,
            "%ripe%": code,
            "%tld%": code,
            "%domain%": code,
            "%country%": country,
        }
        template = self.options.get_option("banreason") or DEFAULT_COUNTRY_REASON
        decision = Decision(
            ban=True,
            mask=f"*!*@{host}",
            reason=template_replace(template, subs),
            code=code,
            country=country,
            path="country",
            source=result.source,
            logged_only=self.options.is_enabled("logmode"),
        )
        logger.info(
            "Matched country %s [%s] banning %s!%s on %s for %d minute(s)",
            country,
            code,
            nick,
            host,
            channel.name,
            channel.bantime,
        )
        return decision
