"""YAML configuration file loading."""

import logging
from dataclasses import dataclass
from pathlib import Path

import yaml

from rcc.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".rcc"
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.yaml"
DEFAULT_DB_PATH = str(DEFAULT_CONFIG_DIR / "rcc.db")
DEFAULT_NETMASK_FILE = str(DEFAULT_CONFIG_DIR / "iplist.txt")
DEFAULT_TLD_FILE = str(DEFAULT_CONFIG_DIR / "tld_country_list.txt")

__all__ = ["ConfigError", "RccConfig", "load_config"]


@dataclass
class RccConfig:
    """Top-level configuration for the rcc tool.

    Attributes:
        db_path: Path to the SQLite settings database.
        netmask_file: Netmask table (``<CIDR> <whois-server>`` lines).
        tld_file: TLD to country name table.
        timeout: Seconds allowed for each DNS, HTTP and whois operation.
        max_referral_hops: Maximum whois sessions per lookup.
        geo_provider: ``"http"`` or ``"maxmind"``.
        geo_url: Endpoint of the HTTP geo provider.
        maxmind_city_db: Path to GeoLite2-City.mmdb for the ``maxmind``
            provider, or None.
        workers: Number of concurrent resolution pipelines.
    """

    db_path: str = DEFAULT_DB_PATH
    netmask_file: str = DEFAULT_NETMASK_FILE
    tld_file: str = DEFAULT_TLD_FILE
    timeout: float = 5.0
    max_referral_hops: int = 5
    geo_provider: str = "http"
    geo_url: str = "http://ipinfodb.com/ip_query.php"
    maxmind_city_db: str | None = None
    workers: int = 8


# Keys in the YAML file that map to RccConfig fields.
_YAML_KEY_TO_FIELD: dict[str, str] = {
    "db_path": "db_path",
    "netmask_file": "netmask_file",
    "tld_file": "tld_file",
    "timeout": "timeout",
    "max_referral_hops": "max_referral_hops",
    "geo_provider": "geo_provider",
    "geo_url": "geo_url",
    "maxmind_city_db": "maxmind_city_db",
    "workers": "workers",
}

_NUMERIC_FIELDS: dict[str, type] = {
    "timeout": float,
    "max_referral_hops": int,
    "workers": int,
}


def load_config(path: Path | str | None = None) -> RccConfig:
    """Load configuration from a YAML file.

    Args:
        path: Explicit path to a YAML config file.  If ``None``, the
            default location (``~/.rcc/config.yaml``) is tried.  If the
            default file doesn't exist, an ``RccConfig`` with all defaults
            is returned silently.

    Returns:
        A populated ``RccConfig`` instance.

    Raises:
        FileNotFoundError: If an explicit *path* was given but doesn't exist.
        ConfigError: If the file contains invalid YAML, has an unexpected
            top-level structure, or a numeric option is not a positive number.
    """
    resolved = _resolve_path(path)

    if resolved is None:
        logger.debug("No config file found; using defaults")
        return RccConfig()

    logger.debug("Loading config from %s", resolved)
    text = resolved.read_text(encoding="utf-8")

    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {resolved}: {exc}") from exc

    if raw is None:
        # Empty file: all defaults.
        return RccConfig()

    if not isinstance(raw, dict):
        raise ConfigError(
            f"Expected a YAML mapping at the top level in {resolved}, "
            f"got {type(raw).__name__}"
        )

    return _build_config(raw, source=resolved)


# ------------------------------------------------------------------
# Internal helpers
# ------------------------------------------------------------------


def _resolve_path(path: Path | str | None) -> Path | None:
    """Return a concrete ``Path`` to read, or ``None`` if nothing to read.

    Raises:
        FileNotFoundError: If the caller supplied an explicit path that
            doesn't exist on disk.
    """
    if path is not None:
        p = Path(path).expanduser()
        if not p.is_file():
            raise FileNotFoundError(f"Config file not found: {p}")
        return p

    default = DEFAULT_CONFIG_PATH.expanduser()
    if default.is_file():
        return default
    return None


def _build_config(raw: dict, source: Path) -> RccConfig:
    """Map raw YAML dict to an ``RccConfig``, ignoring unknown keys."""
    kwargs: dict[str, object] = {}

    for yaml_key, field_name in _YAML_KEY_TO_FIELD.items():
        if yaml_key in raw:
            kwargs[field_name] = raw[yaml_key]

    for field_name, kind in _NUMERIC_FIELDS.items():
        if field_name not in kwargs:
            continue
        value = kwargs[field_name]
        try:
            number = kind(value)
        except (TypeError, ValueError):
            raise ConfigError(
                f"Option {field_name!r} in {source} must be a number, got {value!r}"
            ) from None
        if number <= 0:
            raise ConfigError(f"Option {field_name!r} in {source} must be positive")
        kwargs[field_name] = number

    unknown = set(raw) - set(_YAML_KEY_TO_FIELD)
    if unknown:
        logger.warning(
            "Ignoring unknown config keys in %s: %s",
            source,
            ", ".join(sorted(unknown)),
        )

    return RccConfig(**kwargs)
