"""Recursive search of a node_modules tree for installed copies of a package.

The walk understands three kinds of entries (see ``paths.classify``):

* ``@scope`` directories, whose children are ``@scope/child`` packages
* the pnpm content store (``.pnpm``), whose entries are named
  ``name@version`` and are matched by prefix instead of being recursed into
* regular package directories

Each package's own ``node_modules`` is searched one level deeper, up to
``max_depth``. The real path of every node_modules directory is recorded
so symlink cycles terminate.
"""

import json
import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import List, Set

from .paths import (
    MANIFEST_FILE,
    NESTED_INSTALL_DIR,
    PathKind,
    classify,
    content_store_prefix,
    parse_store_entry,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 5
UNKNOWN_VERSION = "unknown"


class OriginKind(Enum):
    INSTALLED = "installed"
    PNPM_STORE_HIT = "pnpm-store"


@dataclass
class InstalledPackageRef:
    name: str
    version: str
    path: str
    depth: int
    origin: OriginKind = OriginKind.INSTALLED


def read_manifest_version(package_dir: str) -> str:
    """Return the ``version`` declared in package_dir/package.json.

    Missing or unparsable manifests give ``"unknown"``.
    """
    manifest = os.path.join(package_dir, MANIFEST_FILE)
    try:
        with open(manifest, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return UNKNOWN_VERSION
    except (OSError, ValueError) as e:
        logger.debug("Unreadable manifest %s: %s", manifest, e)
        return UNKNOWN_VERSION

    if not isinstance(data, dict):
        return UNKNOWN_VERSION
    version = data.get("version")
    if not isinstance(version, str) or not version:
        return UNKNOWN_VERSION
    return version


def list_directories(path: str) -> List[os.DirEntry]:
    """Entries of path that are directories or symlinks to directories.

    An unreadable path gives an empty list.
    """
    try:
        with os.scandir(path) as it:
            entries = []
            for entry in it:
                try:
                    if entry.is_dir():
                        entries.append(entry)
                except OSError:
                    continue
    except OSError as e:
        logger.debug("Skipping unreadable directory %s: %s", path, e)
        return []
    return sorted(entries, key=lambda e: e.name)


class TreeWalker:
    """Finds every installed copy of one package below a node_modules root.

    A walker owns its visited set; create a new one for each target name.
    """

    def __init__(self, target_name: str, max_depth: int = DEFAULT_MAX_DEPTH):
        self.target_name = target_name
        self.max_depth = max_depth
        self.store_prefix = content_store_prefix(target_name)
        self.visited: Set[str] = set()
        self._emitted: Set[str] = set()
        self.found: List[InstalledPackageRef] = []

    def walk(self, root: str, depth: int = 0) -> List[InstalledPackageRef]:
        """Search root and return everything found so far."""
        self._walk(root, depth)
        return self.found

    def _walk(self, root: str, depth: int):
        if depth > self.max_depth or not os.path.isdir(root):
            return

        real_root = os.path.realpath(root)
        if real_root in self.visited:
            logger.debug("Already visited %s (via %s)", real_root, root)
            return
        self.visited.add(real_root)

        for entry in list_directories(root):
            kind = classify(entry.name)
            if kind is PathKind.CONTENT_STORE:
                self._match_store(entry.path, depth)
            elif kind is PathKind.SCOPE:
                for child in list_directories(entry.path):
                    self._visit_package(f"{entry.name}/{child.name}", child.path, depth)
            else:
                self._visit_package(entry.name, entry.path, depth)

    def _visit_package(self, name: str, package_dir: str, depth: int):
        if name == self.target_name:
            self._emit(package_dir, read_manifest_version(package_dir), depth, OriginKind.INSTALLED)
        # A different copy may be nested below any package, matching or not
        self._walk(os.path.join(package_dir, NESTED_INSTALL_DIR), depth + 1)

    def _match_store(self, store_dir: str, depth: int):
        """Look up the target directly by its ``name@`` store prefix."""
        for entry in list_directories(store_dir):
            if not entry.name.startswith(self.store_prefix):
                continue
            package_dir = os.path.join(entry.path, NESTED_INSTALL_DIR, self.target_name)
            if not os.path.isdir(package_dir):
                continue

            version = read_manifest_version(package_dir)
            if version == UNKNOWN_VERSION:
                parsed = parse_store_entry(entry.name)
                if parsed is not None:
                    version = parsed[1]
            self._emit(package_dir, version, depth, OriginKind.PNPM_STORE_HIT)

    def _emit(self, package_dir: str, version: str, depth: int, origin: OriginKind):
        real_dir = os.path.realpath(package_dir)
        if real_dir in self._emitted:
            return
        self._emitted.add(real_dir)
        self.found.append(InstalledPackageRef(
            name=self.target_name,
            version=version,
            path=package_dir,
            depth=depth,
            origin=origin,
        ))


def find_instances(
    root: str, target_name: str, max_depth: int = DEFAULT_MAX_DEPTH
) -> List[InstalledPackageRef]:
    """Find every installed copy of target_name below root."""
    return TreeWalker(target_name, max_depth).walk(root)
