"""Exception hierarchy for resolution, lookup and configuration failures."""


class RccError(Exception):
    """Base class for every error raised by rcc."""


class LookupFailure(RccError):
    """A network or protocol step failed and no country could be resolved."""


class ConnectFailure(LookupFailure):
    """Connecting to a whois server failed."""

    def __init__(self, server: str, detail: str = "") -> None:
        self.server = server
        self.detail = detail
        msg = f"Failed to connect to '{server}'!"
        if detail:
            msg = f"{msg} ({detail})"
        super().__init__(msg)


class TimeoutFailure(LookupFailure):
    """A whois connection or read did not finish within the timeout."""

    def __init__(self, server: str) -> None:
        self.server = server
        super().__init__(f"Connection timeout using '{server}'!")


class ReferralParseFailure(LookupFailure):
    """A referral line did not contain a usable ``whois://`` URL."""

    def __init__(self, server: str, line: str) -> None:
        self.server = server
        self.line = line
        super().__init__(f"Unknown referral type from '{server}': {line!r}")


class ReferralLoopFailure(LookupFailure):
    """The referral/fallback hop bound was exceeded."""

    def __init__(self, subject: str, max_hops: int) -> None:
        self.subject = subject
        self.max_hops = max_hops
        super().__init__(
            f"Whois referral chain for '{subject}' exceeded {max_hops} hop(s)"
        )


class UnallocatedNetmask(LookupFailure):
    """The matching netmask entry is marked ``unallocated``."""

    def __init__(self, ip: str, network: str) -> None:
        self.ip = ip
        self.network = network
        super().__init__("Unallocated netmask!")


class NetmaskNotFound(LookupFailure):
    """No netmask entry covers the address."""

    def __init__(self, ip: str) -> None:
        self.ip = ip
        super().__init__(f"No netmask entry matches '{ip}'")


class NoCountryFound(LookupFailure):
    """Whois answered but no country could be extracted after all fallbacks."""

    def __init__(self, subject: str) -> None:
        self.subject = subject
        super().__init__(f"Whois query failed for '{subject}'!")


class GeoLookupFailure(LookupFailure):
    """The geo provider could not be reached or returned an error status."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"ERROR: {detail}")


class ResolveFailure(LookupFailure):
    """A hostname could not be resolved to an address."""

    def __init__(self, host: str) -> None:
        self.host = host
        super().__init__(f"Failed to resolve '{host}'!")


class PrivateOrReservedRange(RccError):
    """The address belongs to a non-routable range; no action is taken.

    Not a failure: callers treat it as a definitive "leave alone" outcome.
    """

    def __init__(self, ip: str, ip_type: str) -> None:
        self.ip = ip
        self.ip_type = ip_type
        super().__init__(f"Sorry but '{ip}' is from a '{ip_type}' range")


class InvalidChannelConfig(RccError):
    """An admin action named a bad channel, option or value."""


class ConfigError(RccError):
    """Raised when a configuration file is malformed or unreadable."""
