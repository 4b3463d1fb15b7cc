"""TLD -> country name table."""

import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

_LINE_RE = re.compile(r"^([a-z]{2,6})\s+(.*)$", re.IGNORECASE)


class CountryTable:
    """Read-only mapping from TLD / country code to a country name.

    Args:
        names: Initial ``code -> name`` mapping; codes are lowercased.
    """

    def __init__(self, names: dict[str, str] | None = None) -> None:
        self._names = {k.lower(): v for k, v in (names or {}).items()}

    def __len__(self) -> int:
        return len(self._names)

    def __contains__(self, code: object) -> bool:
        return isinstance(code, str) and code.lower() in self._names

    def name(self, code: str | None) -> str:
        """Return the country name for *code*, or ``""`` if unknown."""
        if not code:
            return ""
        return self._names.get(code.lower(), "")

    def label(self, code: str) -> str:
        """Return ``"Name [CC]"``, or just ``"[CC]"`` when the name is unknown."""
        name = self.name(code)
        tag = f"[{code.upper()}]"
        return f"{name} {tag}" if name else tag

    @classmethod
    def from_file(cls, path: Path | str) -> "CountryTable":
        """Load a TLD table file.

        Only lines beginning with a letter are considered:
        ``<tld 2-6 chars><whitespace><country name>``.

        Raises:
            FileNotFoundError: If *path* does not exist.
        """
        names: dict[str, str] = {}
        p = Path(path).expanduser()
        with p.open(encoding="utf-8") as fh:
            for line in fh:
                if not line[:1].isalpha():
                    continue
                m = _LINE_RE.match(line.rstrip("\r\n"))
                if m:
                    names[m.group(1).lower()] = m.group(2).strip()

        logger.debug("TLD country list %s loaded with %d entries", p, len(names))
        return cls(names)
