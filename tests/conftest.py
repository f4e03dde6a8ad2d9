"""Shared fixtures that build node_modules trees under tmp_path."""

from pathlib import Path

import pytest

from npm_blacklist_scanner.blacklist import BlacklistIndex
from npm_blacklist_scanner.matcher import Matcher

from .treebuilder import write_json


@pytest.fixture
def project(tmp_path) -> Path:
    root = tmp_path / "project"
    (root / "node_modules").mkdir(parents=True)
    return root


@pytest.fixture
def evil_index() -> BlacklistIndex:
    return BlacklistIndex.load([{"name": "evil-pkg", "versions": ["1.0.0"]}])


@pytest.fixture
def evil_matcher(evil_index) -> Matcher:
    return Matcher(evil_index)


@pytest.fixture
def blacklist_file(tmp_path) -> Path:
    return write_json(
        tmp_path / "blacklist.json",
        [{"name": "evil-pkg", "versions": ["v1.0.0"]}],
    )
