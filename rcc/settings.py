"""SQLite settings store: channel policies, global options and ban counters."""

import logging
import re
import sqlite3
import threading
from pathlib import Path

from rcc.errors import InvalidChannelConfig
from rcc.models import ChannelConfig

logger = logging.getLogger(__name__)

_SCHEMA_VERSION = 1

_SCHEMA_V1 = """\
CREATE TABLE IF NOT EXISTS channels (
    name       TEXT PRIMARY KEY,
    enabled    INTEGER NOT NULL DEFAULT 0,
    whitelist  INTEGER NOT NULL DEFAULT 0,
    topban     INTEGER NOT NULL DEFAULT 0,
    topchk     INTEGER NOT NULL DEFAULT 0,
    pubcmd     INTEGER NOT NULL DEFAULT 0,
    bantime    INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS channel_tlds (
    channel    TEXT NOT NULL REFERENCES channels (name) ON DELETE CASCADE,
    tld        TEXT NOT NULL,
    UNIQUE (channel, tld)
);

CREATE TABLE IF NOT EXISTS channel_resolve (
    channel    TEXT NOT NULL REFERENCES channels (name) ON DELETE CASCADE,
    pattern    TEXT NOT NULL,
    UNIQUE (channel, pattern)
);

CREATE TABLE IF NOT EXISTS options (
    name       TEXT PRIMARY KEY,
    value      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS ban_counts (
    channel    TEXT PRIMARY KEY,
    count      INTEGER NOT NULL DEFAULT 0
);
"""

STRING_OPTIONS = ("banreason", "bantopreason")
BOOL_OPTIONS = ("msgcmds", "fallback", "geoban", "logmode")

CHANNEL_FLAGS = ("enabled", "whitelist", "topban", "topchk", "pubcmd")

_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off"})

_CHANNEL_RE = re.compile(r"^[#&][^\s,]+$")
_LABEL_RE = re.compile(r"^[a-z0-9][a-z0-9-]*$")


def parse_bool(value: str) -> bool:
    """Parse ``true/false/on/off/yes/no/1/0`` (case-insensitive).

    Raises:
        ValueError: For anything else.
    """
    v = value.strip().lower()
    if v in _TRUE:
        return True
    if v in _FALSE:
        return False
    raise ValueError(value)


def normalize_channel(name: str) -> str:
    """Lowercase and validate a channel name.

    Raises:
        InvalidChannelConfig: If *name* is not a channel name.
    """
    channel = name.strip().lower()
    if not _CHANNEL_RE.match(channel):
        raise InvalidChannelConfig(f"Invalid channel: {name}")
    return channel


def _normalize_label(label: str, *, allow_wildcard: bool = False) -> str:
    value = label.strip().lower().lstrip(".")
    if allow_wildcard and value == "*":
        return value
    if not _LABEL_RE.match(value):
        raise InvalidChannelConfig(f"Invalid top domain: {label!r}")
    return value


class SettingsStore:
    """Thread-safe settings store backed by SQLite.

    All reads and writes go through one lock. Channel configs are returned
    as fresh ``ChannelConfig`` copies, so callers never observe a half
    applied admin change.

    Args:
        db_path: Filesystem path for the database, or ``":memory:"`` for
            an in-memory database (useful in tests).
    """

    def __init__(self, db_path: str) -> None:
        if db_path != ":memory:":
            Path(db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
            db_path = str(Path(db_path).expanduser())
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode = WAL")
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._conn.row_factory = sqlite3.Row
        _migrate(self._conn)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "SettingsStore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    def get_channel(self, name: str) -> ChannelConfig | None:
        """Return a copy of the channel's settings, or None if unknown."""
        channel = normalize_channel(name)
        with self._lock:
            return self._load_channel(channel)

    def channels(self) -> list[ChannelConfig]:
        """Return all configured channels sorted by name."""
        with self._lock:
            names = [
                row["name"]
                for row in self._conn.execute("SELECT name FROM channels ORDER BY name")
            ]
            return [c for c in (self._load_channel(n) for n in names) if c is not None]

    def set_channel_flags(
        self,
        name: str,
        *,
        bantime: int | None = None,
        **flags: bool,
    ) -> ChannelConfig:
        """Update boolean flags and/or the ban time of a channel.

        Creates the channel if it doesn't exist yet.

        Raises:
            InvalidChannelConfig: On an unknown flag or a negative ban time.
        """
        channel = normalize_channel(name)
        unknown = set(flags) - set(CHANNEL_FLAGS)
        if unknown:
            raise InvalidChannelConfig(
                f"Unknown channel flag(s): {', '.join(sorted(unknown))}"
            )
        if bantime is not None and bantime < 0:
            raise InvalidChannelConfig(f"Ban time must be >= 0, got {bantime}")

        updates: dict[str, int] = {k: int(bool(v)) for k, v in flags.items()}
        if bantime is not None:
            updates["bantime"] = bantime

        with self._lock:
            self._ensure_channel(channel)
            if updates:
                assignments = ", ".join(f"{col} = ?" for col in updates)
                self._conn.execute(
                    f"UPDATE channels SET {assignments} WHERE name = ?",
                    (*updates.values(), channel),
                )
            self._conn.commit()
            result = self._load_channel(channel)
        logger.debug("Channel %s flags updated: %s", channel, updates)
        return result  # type: ignore[return-value]

    def add_tld(self, name: str, tld: str) -> None:
        """Add a top domain to the channel's list.

        Raises:
            InvalidChannelConfig: If the channel name or TLD is invalid or the
                TLD is already listed.
        """
        channel = normalize_channel(name)
        label = _normalize_label(tld)
        with self._lock:
            self._ensure_channel(channel)
            try:
                self._conn.execute(
                    "INSERT INTO channel_tlds (channel, tld) VALUES (?, ?)",
                    (channel, label),
                )
            except sqlite3.IntegrityError:
                self._conn.rollback()
                raise InvalidChannelConfig(
                    f"Domain '{label}' already exist on {channel}"
                ) from None
            self._conn.commit()
        logger.info("Top domain '%s' added to %s", label, channel)

    def remove_tld(self, name: str, tld: str) -> None:
        """Remove a top domain from the channel's list.

        Raises:
            InvalidChannelConfig: If the TLD is not listed on the channel.
        """
        channel = normalize_channel(name)
        label = tld.strip().lower().lstrip(".")
        with self._lock:
            cur = self._conn.execute(
                "DELETE FROM channel_tlds WHERE channel = ? AND tld = ?",
                (channel, label),
            )
            if cur.rowcount == 0:
                self._conn.rollback()
                raise InvalidChannelConfig(f"Domain '{label}' doesn't exist on {channel}")
            self._conn.commit()
        logger.info("Top domain '%s' removed from %s", label, channel)

    def add_resolve_domain(self, name: str, pattern: str) -> None:
        """Add a resolve-domain pattern (a label or ``*``).

        Raises:
            InvalidChannelConfig: If the channel has no top domains yet, the
                pattern is invalid, or it is already listed.
        """
        channel = normalize_channel(name)
        label = _normalize_label(pattern, allow_wildcard=True)
        with self._lock:
            (count,) = self._conn.execute(
                "SELECT count(*) FROM channel_tlds WHERE channel = ?", (channel,)
            ).fetchone()
            if count == 0:
                raise InvalidChannelConfig(
                    f"You need to add a top domain for {channel} "
                    "before adding a resolve domain."
                )
            try:
                self._conn.execute(
                    "INSERT INTO channel_resolve (channel, pattern) VALUES (?, ?)",
                    (channel, label),
                )
            except sqlite3.IntegrityError:
                self._conn.rollback()
                raise InvalidChannelConfig(
                    f"Resolve domain '{label}' already exist on {channel}"
                ) from None
            self._conn.commit()
        logger.info("Top resolve domain '%s' added to %s", label, channel)

    def remove_resolve_domain(self, name: str, pattern: str) -> None:
        """Remove a resolve-domain pattern.

        Raises:
            InvalidChannelConfig: If the pattern is not listed on the channel.
        """
        channel = normalize_channel(name)
        label = pattern.strip().lower().lstrip(".")
        with self._lock:
            cur = self._conn.execute(
                "DELETE FROM channel_resolve WHERE channel = ? AND pattern = ?",
                (channel, label),
            )
            if cur.rowcount == 0:
                self._conn.rollback()
                raise InvalidChannelConfig(
                    f"Resolve domain '{label}' doesn't exist on {channel}"
                )
            self._conn.commit()
        logger.info("Resolve domain '%s' removed from %s", label, channel)

    # ------------------------------------------------------------------
    # Global options
    # ------------------------------------------------------------------

    def get_option(self, name: str) -> str | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM options WHERE name = ?", (name,)
            ).fetchone()
        return row["value"] if row else None

    def options(self) -> dict[str, str]:
        with self._lock:
            rows = self._conn.execute("SELECT name, value FROM options ORDER BY name")
            return {row["name"]: row["value"] for row in rows}

    def is_enabled(self, name: str) -> bool:
        """Return True if boolean option *name* is set to a true value."""
        value = self.get_option(name)
        if value is None:
            return False
        try:
            return parse_bool(value)
        except ValueError:
            return False

    def set_option(self, name: str, value: str = "") -> str | None:
        """Set or unset a global option.

        An empty *value* removes the option. Boolean options accept
        ``true/false/on/off/yes/no/1/0``.

        Returns:
            The stored value, or None if the option was unset.

        Raises:
            InvalidChannelConfig: On an unknown option or a non-boolean value
                for a boolean option. Nothing is changed in that case.
        """
        option = name.strip().lower()
        value = value.strip()

        if option in BOOL_OPTIONS:
            value = value.lower()
            if value:
                try:
                    parse_bool(value)
                except ValueError:
                    raise InvalidChannelConfig(
                        f"Value '{value}' is not a boolean, "
                        "should be true|false|on|off|1|0"
                    ) from None
        elif option not in STRING_OPTIONS:
            raise InvalidChannelConfig(
                f"Invalid option '{option}', valid options are: "
                f"{', '.join(STRING_OPTIONS)}, {', '.join(BOOL_OPTIONS)}"
            )

        with self._lock:
            if value:
                self._conn.execute(
                    "INSERT INTO options (name, value) VALUES (?, ?) "
                    "ON CONFLICT (name) DO UPDATE SET value = excluded.value",
                    (option, value),
                )
            else:
                self._conn.execute("DELETE FROM options WHERE name = ?", (option,))
            self._conn.commit()

        if value:
            logger.info("Option '%s' set with the value '%s'", option, value)
            return value
        logger.info("Option '%s' unset", option)
        return None

    # ------------------------------------------------------------------
    # Ban counters
    # ------------------------------------------------------------------

    def incr_ban_count(self, name: str) -> int:
        """Atomically increment the channel's ban counter.

        Returns:
            The new counter value.
        """
        channel = normalize_channel(name)
        with self._lock:
            self._conn.execute(
                "INSERT INTO ban_counts (channel, count) VALUES (?, 1) "
                "ON CONFLICT (channel) DO UPDATE SET count = count + 1",
                (channel,),
            )
            (count,) = self._conn.execute(
                "SELECT count FROM ban_counts WHERE channel = ?", (channel,)
            ).fetchone()
            self._conn.commit()
        return count

    def ban_count(self, name: str) -> int:
        channel = normalize_channel(name)
        with self._lock:
            row = self._conn.execute(
                "SELECT count FROM ban_counts WHERE channel = ?", (channel,)
            ).fetchone()
        return row["count"] if row else 0

    # ------------------------------------------------------------------
    # Internal helpers (caller holds the lock)
    # ------------------------------------------------------------------

    def _ensure_channel(self, channel: str) -> None:
        self._conn.execute(
            "INSERT INTO channels (name) VALUES (?) ON CONFLICT (name) DO NOTHING",
            (channel,),
        )

    def _load_channel(self, channel: str) -> ChannelConfig | None:
        row = self._conn.execute(
            "SELECT * FROM channels WHERE name = ?", (channel,)
        ).fetchone()
        if row is None:
            return None
        tlds = [
            r["tld"]
            for r in self._conn.execute(
                "SELECT tld FROM channel_tlds WHERE channel = ? ORDER BY rowid",
                (channel,),
            )
        ]
        resolve = [
            r["pattern"]
            for r in self._conn.execute(
                "SELECT pattern FROM channel_resolve WHERE channel = ? ORDER BY rowid",
                (channel,),
            )
        ]
        return ChannelConfig(
            name=channel,
            tlds=tlds,
            resolve_domains=resolve,
            enabled=bool(row["enabled"]),
            whitelist=bool(row["whitelist"]),
            topban=bool(row["topban"]),
            topchk=bool(row["topchk"]),
            pubcmd=bool(row["pubcmd"]),
            bantime=row["bantime"],
        )


def _migrate(conn: sqlite3.Connection) -> None:
    """Apply database migrations up to ``_SCHEMA_VERSION``.

    Uses the SQLite ``user_version`` pragma to track the current schema
    version.  Each version bump is applied in order so that databases
    created at any prior version are brought up to date.
    """
    (current,) = conn.execute("PRAGMA user_version").fetchone()

    if current >= _SCHEMA_VERSION:
        return

    if current < 1:
        logger.debug("Applying schema migration v0 → v1")
        conn.executescript(_SCHEMA_V1)

    conn.execute(f"PRAGMA user_version = {_SCHEMA_VERSION}")
    conn.commit()
    logger.debug("Database schema at version %d", _SCHEMA_VERSION)
