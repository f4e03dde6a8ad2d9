"""In-memory index of compromised package names and versions."""

import csv
import io
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, FrozenSet, Iterator, List, Optional, Union

from .errors import BlacklistNotFoundError, ParseError
from .extract import parse_blacklist_text

logger = logging.getLogger(__name__)


def normalize_version(version: str) -> str:
    """Strip surrounding whitespace and any leading ``v``.

    ``normalize_version("v1.2.3") == normalize_version("1.2.3") == "1.2.3"``
    """
    return version.strip().lstrip("vV")


@dataclass(frozen=True)
class BlacklistEntry:
    name: str
    compromised_versions: FrozenSet[str]  # empty means any version

    @property
    def any_version(self) -> bool:
        return not self.compromised_versions


class BlacklistIndex:
    """Maps package name -> set of normalized compromised versions."""

    def __init__(self, entries: List[BlacklistEntry]):
        self._entries: Dict[str, BlacklistEntry] = {}
        for entry in entries:
            # First occurrence of a name wins
            self._entries.setdefault(entry.name, entry)

    @classmethod
    def load(cls, raw_entries: Union[list, dict]) -> "BlacklistIndex":
        """Build an index from already-structured blacklist data.

        Accepted shapes:

        * ``[{"name": "pkg", "versions": ["v1.0.0"]}, ...]``
        * ``{"packages": [...same as above...], "metadata": {...}}``
        * ``["pkg", "@scope/other"]`` where every name flags any version

        Raises ParseError for anything else.
        """
        if isinstance(raw_entries, dict):
            if "packages" not in raw_entries:
                raise ParseError("blacklist document has no 'packages' key")
            raw_entries = raw_entries["packages"]

        if not isinstance(raw_entries, list):
            raise ParseError(f"blacklist must be a list, got {type(raw_entries).__name__}")

        entries = []
        for position, raw in enumerate(raw_entries):
            entries.append(cls._parse_entry(raw, position))
        return cls(entries)

    @staticmethod
    def _parse_entry(raw, position: int) -> BlacklistEntry:
        if isinstance(raw, str):
            name, versions = raw, []
        elif isinstance(raw, dict):
            name = raw.get("name")
            versions = raw.get("versions", [])
        else:
            raise ParseError(f"entry {position}: expected an object or a string")

        if not isinstance(name, str) or not name.strip():
            raise ParseError(f"entry {position}: missing package name")
        if not isinstance(versions, list) or not all(isinstance(v, str) for v in versions):
            raise ParseError(f"entry {position} ({name}): versions must be a list of strings")

        if any(not normalize_version(v) for v in versions):
            raise ParseError(f"entry {position} ({name}): blank version string")

        normalized = frozenset(normalize_version(v) for v in versions)
        return BlacklistEntry(name=name.strip(), compromised_versions=normalized)

    def lookup(self, name: str) -> Optional[FrozenSet[str]]:
        entry = self._entries.get(name)
        if entry is None:
            return None
        return entry.compromised_versions

    def is_any_version_flagged(self, name: str) -> bool:
        entry = self._entries.get(name)
        return entry is not None and entry.any_version

    @property
    def names(self) -> List[str]:
        return list(self._entries)

    def __contains__(self, name: str) -> bool:
        return name in self._entries

    def __iter__(self) -> Iterator[BlacklistEntry]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)


def _read_csv(text: str) -> List[dict]:
    """Read the ``package_name,versions`` CSV written by the extract step."""
    reader = csv.DictReader(io.StringIO(text))
    if reader.fieldnames is None or "package_name" not in reader.fieldnames:
        raise ParseError("CSV blacklist must have a 'package_name' column")
    rows = []
    for row in reader:
        versions = row.get("versions") or ""
        rows.append({
            "name": row["package_name"] or "",
            "versions": [v for v in versions.split(";") if v.strip()],
        })
    return rows


def load_blacklist_file(path: Union[str, Path]) -> BlacklistIndex:
    """Load a blacklist from a JSON, CSV or plain text file.

    Raises BlacklistNotFoundError if the file is missing and ParseError if
    it cannot be decoded or holds no entries.
    """
    path = Path(path)
    if not path.is_file():
        raise BlacklistNotFoundError(f"blacklist file not found: {path}")

    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ParseError(f"cannot read {path}: {e}") from e

    suffix = path.suffix.lower()
    if suffix == ".json":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ParseError(f"{path.name} is not valid JSON: {e}") from e
        index = BlacklistIndex.load(data)
    elif suffix == ".csv":
        index = BlacklistIndex.load(_read_csv(text))
    else:
        index = BlacklistIndex.load([pkg.to_dict() for pkg in parse_blacklist_text(text)])

    if not len(index):
        raise ParseError(f"no package entries found in {path}")

    logger.debug("Loaded %d blacklist entries from %s", len(index), path)
    return index
