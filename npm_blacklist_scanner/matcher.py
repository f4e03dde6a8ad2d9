"""Decides whether an installed (name, version) pair is compromised."""

from typing import FrozenSet

from .blacklist import BlacklistIndex, normalize_version


class Matcher:
    """Exact-version matching against a BlacklistIndex.

    Versions are compared as normalized strings; no semver range logic is
    applied, so ``1.0.1`` is not flagged when only ``1.0.0`` is listed. An
    entry without versions flags every installed version.
    """

    def __init__(self, index: BlacklistIndex):
        self.index = index

    def is_compromised(self, name: str, version: str) -> bool:
        versions = self.index.lookup(name)
        if versions is None:
            return False
        if not versions:
            return True
        return normalize_version(version) in versions

    def matched_versions(self, name: str) -> FrozenSet[str]:
        """The compromised versions recorded for name (empty if any)."""
        return self.index.lookup(name) or frozenset()
