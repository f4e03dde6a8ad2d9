"""Checks declared dependencies in package.json files and the lockfile.

Declared ranges are not resolved versions, so manifest checks match by
package name only. The lockfile records resolved versions and goes through
the Matcher.
"""

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Collection, Dict, List, Optional, Set

from .matcher import Matcher
from .paths import (
    MANIFEST_FILE,
    NESTED_INSTALL_DIR,
    PathKind,
    classify,
    parse_store_entry,
)
from .walker import DEFAULT_MAX_DEPTH, list_directories

logger = logging.getLogger(__name__)

DEPENDENCY_GROUPS = (
    "dependencies",
    "devDependencies",
    "peerDependencies",
    "optionalDependencies",
)


@dataclass
class DependencyReference:
    declaring_package: str
    declaring_path: str
    referenced_name: str
    declared_range: str
    depth: int


@dataclass
class ManifestDeclaration:
    name: str
    declared_range: str
    group: str
    manifest_path: str


@dataclass
class LockfileEntry:
    name: str
    version: str
    lockfile_path: str


def read_manifest(path: str) -> Optional[Dict[str, Any]]:
    """Load a JSON object from path, or None if missing or malformed."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as e:
        logger.debug("Skipping malformed manifest %s: %s", path, e)
        return None
    if not isinstance(data, dict):
        logger.debug("Skipping manifest %s: top level is not an object", path)
        return None
    return data


def dependency_group(manifest: Dict[str, Any], group: str) -> Dict[str, str]:
    deps = manifest.get(group)
    if not isinstance(deps, dict):
        return {}
    return {name: str(spec) for name, spec in deps.items()}


def collect_dependencies(manifest: Dict[str, Any]) -> Dict[str, str]:
    """Union of all dependency groups; later groups win on duplicate names."""
    merged: Dict[str, str] = {}
    for group in DEPENDENCY_GROUPS:
        merged.update(dependency_group(manifest, group))
    return merged


class ManifestScanner:
    """Walks a node_modules tree reading every installed package.json."""

    def __init__(self, blacklist_names: Collection[str], max_depth: int = DEFAULT_MAX_DEPTH):
        self.blacklist_names = frozenset(blacklist_names)
        self.max_depth = max_depth
        self.visited: Set[str] = set()
        self._read: Set[str] = set()
        self.references: List[DependencyReference] = []

    def scan(self, root: str, depth: int = 0) -> List[DependencyReference]:
        self._walk(root, depth)
        return self.references

    def _walk(self, root: str, depth: int):
        if depth > self.max_depth or not os.path.isdir(root):
            return

        real_root = os.path.realpath(root)
        if real_root in self.visited:
            return
        self.visited.add(real_root)

        for entry in list_directories(root):
            kind = classify(entry.name)
            if kind is PathKind.CONTENT_STORE:
                self._walk_store(entry.path, depth)
            elif kind is PathKind.SCOPE:
                for child in list_directories(entry.path):
                    self._visit_package(f"{entry.name}/{child.name}", child.path, depth)
            else:
                self._visit_package(entry.name, entry.path, depth)

    def _walk_store(self, store_dir: str, depth: int):
        for entry in list_directories(store_dir):
            if parse_store_entry(entry.name) is None:
                continue
            self._walk(os.path.join(entry.path, NESTED_INSTALL_DIR), depth + 1)

    def _visit_package(self, name: str, package_dir: str, depth: int):
        self._check_manifest(name, package_dir, depth)
        self._walk(os.path.join(package_dir, NESTED_INSTALL_DIR), depth + 1)

    def _check_manifest(self, name: str, package_dir: str, depth: int):
        manifest_path = os.path.join(package_dir, MANIFEST_FILE)
        real_path = os.path.realpath(manifest_path)
        if real_path in self._read:
            return
        self._read.add(real_path)

        manifest = read_manifest(manifest_path)
        if manifest is None:
            return

        for dep_name, declared in collect_dependencies(manifest).items():
            if dep_name in self.blacklist_names:
                self.references.append(DependencyReference(
                    declaring_package=name,
                    declaring_path=package_dir,
                    referenced_name=dep_name,
                    declared_range=declared,
                    depth=depth,
                ))


def scan_manifests(
    root: str, blacklist_names: Collection[str], max_depth: int = DEFAULT_MAX_DEPTH
) -> List[DependencyReference]:
    """Find installed packages whose manifests depend on a blacklisted name."""
    return ManifestScanner(blacklist_names, max_depth).scan(root)


def scan_root_manifest(path: str, blacklist_names: Collection[str]) -> List[ManifestDeclaration]:
    """Check the project's own package.json, group by group."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            manifest = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("Cannot parse %s: %s", path, e)
        return []
    if not isinstance(manifest, dict):
        logger.warning("Cannot parse %s: top level is not an object", path)
        return []

    names = frozenset(blacklist_names)
    declarations = []
    for group in DEPENDENCY_GROUPS:
        for dep_name, declared in dependency_group(manifest, group).items():
            if dep_name in names:
                declarations.append(ManifestDeclaration(
                    name=dep_name,
                    declared_range=declared,
                    group=group,
                    manifest_path=path,
                ))
    return declarations


def _lockfile_versions(lock: Dict[str, Any]) -> Dict[str, List[str]]:
    """Map package name -> resolved versions from a package-lock.json."""
    versions: Dict[str, List[str]] = {}

    # lockfileVersion 1, nested copies sit under each entry's "dependencies"
    pending = [lock.get("dependencies")]
    while pending:
        deps = pending.pop()
        if not isinstance(deps, dict):
            continue
        for name, info in deps.items():
            if isinstance(info, dict):
                versions.setdefault(name, []).append(str(info.get("version") or "unknown"))
                pending.append(info.get("dependencies"))

    # lockfileVersion 2/3: "node_modules/a/node_modules/@scope/b"
    packages = lock.get("packages")
    if isinstance(packages, dict):
        for key, info in packages.items():
            if "node_modules/" not in key or not isinstance(info, dict):
                continue
            name = key.rsplit("node_modules/", 1)[-1]
            versions.setdefault(name, []).append(str(info.get("version") or "unknown"))

    return versions


def scan_lockfile(path: str, matcher: Matcher) -> List[LockfileEntry]:
    """Report each blacklisted package resolved at a compromised version."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            lock = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("Cannot parse %s: %s", path, e)
        return []
    if not isinstance(lock, dict):
        logger.warning("Cannot parse %s: top level is not an object", path)
        return []

    entries = []
    for name, versions in _lockfile_versions(lock).items():
        for version in versions:
            if matcher.is_compromised(name, version):
                entries.append(LockfileEntry(name=name, version=version, lockfile_path=path))
                break
    return entries
