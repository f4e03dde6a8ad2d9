"""Classification of entries found inside a node_modules directory."""

import re
from enum import Enum
from typing import Optional, Tuple

# pnpm keeps one directory per exact name@version under node_modules/.pnpm
CONTENT_STORE_DIR = ".pnpm"
NESTED_INSTALL_DIR = "node_modules"
MANIFEST_FILE = "package.json"

# "1.2.3_react@18.2.0" or "1.2.3(react@18.2.0)"
_PEER_SUFFIX = re.compile(r"[_(].*$")


class PathKind(Enum):
    SCOPE = "scope"
    CONTENT_STORE = "content_store"
    REGULAR = "regular"


def classify(entry_name: str) -> PathKind:
    """Classify a directory entry name."""
    if entry_name == CONTENT_STORE_DIR:
        return PathKind.CONTENT_STORE
    if entry_name.startswith("@"):
        return PathKind.SCOPE
    return PathKind.REGULAR


def content_store_prefix(package_name: str) -> str:
    """Prefix of the store entries holding any version of package_name.

    ``@scope/name`` is stored as ``@scope+name@<version>``.
    """
    return package_name.replace("/", "+") + "@"


def parse_store_entry(entry_name: str) -> Optional[Tuple[str, str]]:
    """Split a store entry name into (package name, version).

    Returns None when the entry does not look like ``name@version``.
    """
    # The first "@" past the scope marker separates name and version
    at = entry_name.find("@", 1)
    if at <= 0:
        return None
    name = entry_name[:at].replace("+", "/", 1)
    version = _PEER_SUFFIX.sub("", entry_name[at + 1:])
    if not version:
        return None
    return name, version
