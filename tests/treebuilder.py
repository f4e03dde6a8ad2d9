"""Helpers for laying out node_modules trees in tests."""

import json
import os
from pathlib import Path
from typing import Dict, Optional


def write_json(path: Path, data) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return path


def make_package(
    node_modules: Path,
    name: str,
    version: Optional[str] = "1.0.0",
    dependencies: Optional[Dict[str, str]] = None,
    **groups: Dict[str, str],
) -> Path:
    """Create node_modules/<name>/package.json and return the package dir.

    version=None writes no manifest at all.
    """
    package_dir = node_modules.joinpath(*name.split("/"))
    package_dir.mkdir(parents=True, exist_ok=True)
    if version is None:
        return package_dir
    manifest = {"name": name, "version": version}
    if dependencies:
        manifest["dependencies"] = dependencies
    manifest.update(groups)
    write_json(package_dir / "package.json", manifest)
    return package_dir


def symlink_dir(link: Path, target: Path):
    link.parent.mkdir(parents=True, exist_ok=True)
    os.symlink(target, link, target_is_directory=True)
