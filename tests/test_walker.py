"""Tests for the recursive node_modules search."""

import os

from npm_blacklist_scanner.walker import (
    OriginKind,
    TreeWalker,
    find_instances,
    read_manifest_version,
)

from .treebuilder import make_package, symlink_dir, write_json


def test_finds_top_level_package(project):
    node_modules = project / "node_modules"
    make_package(node_modules, "evil-pkg", "1.0.0")
    make_package(node_modules, "lodash", "4.17.21")

    found = find_instances(str(node_modules), "evil-pkg")

    assert len(found) == 1
    assert found[0].name == "evil-pkg"
    assert found[0].version == "1.0.0"
    assert found[0].depth == 0
    assert found[0].origin is OriginKind.INSTALLED
    assert found[0].path == str(node_modules / "evil-pkg")


def test_finds_nested_copies(project):
    node_modules = project / "node_modules"
    make_package(node_modules, "evil-pkg", "2.0.0")
    parent = make_package(node_modules, "parent", "1.0.0")
    make_package(parent / "node_modules", "evil-pkg", "1.0.0")
    # The match itself may carry another copy further down
    top = node_modules / "evil-pkg"
    make_package(top / "node_modules", "evil-pkg", "0.5.0")

    found = find_instances(str(node_modules), "evil-pkg")

    by_version = {ref.version: ref.depth for ref in found}
    assert by_version == {"2.0.0": 0, "1.0.0": 1, "0.5.0": 1}


def test_scoped_package(project):
    node_modules = project / "node_modules"
    make_package(node_modules, "@scope/evil", "1.0.0")
    make_package(node_modules, "@scope/fine", "1.0.0")
    nested = make_package(node_modules, "@other/lib", "1.0.0")
    make_package(nested / "node_modules", "@scope/evil", "3.0.0")

    found = find_instances(str(node_modules), "@scope/evil")

    assert sorted((ref.version, ref.depth) for ref in found) == [("1.0.0", 0), ("3.0.0", 1)]


def test_missing_or_broken_manifest_gives_unknown(project):
    node_modules = project / "node_modules"
    make_package(node_modules, "evil-pkg", None)
    other = make_package(node_modules, "wrapper", "1.0.0")
    broken = other / "node_modules" / "evil-pkg"
    broken.mkdir(parents=True)
    (broken / "package.json").write_text("{not json", encoding="utf-8")

    found = find_instances(str(node_modules), "evil-pkg")

    assert [ref.version for ref in found] == ["unknown", "unknown"]


def test_read_manifest_version_variants(tmp_path):
    assert read_manifest_version(str(tmp_path)) == "unknown"
    write_json(tmp_path / "package.json", ["not", "an", "object"])
    assert read_manifest_version(str(tmp_path)) == "unknown"
    write_json(tmp_path / "package.json", {"name": "x"})
    assert read_manifest_version(str(tmp_path)) == "unknown"
    write_json(tmp_path / "package.json", {"version": "1.2.3"})
    assert read_manifest_version(str(tmp_path)) == "1.2.3"


def test_plain_files_are_ignored(project):
    node_modules = project / "node_modules"
    (node_modules / "evil-pkg").write_text("not a directory", encoding="utf-8")

    assert find_instances(str(node_modules), "evil-pkg") == []


def test_missing_root_returns_empty(tmp_path):
    assert find_instances(str(tmp_path / "node_modules"), "evil-pkg") == []


def test_symlink_cycle_terminates(project):
    node_modules = project / "node_modules"
    a = make_package(node_modules, "a", "1.0.0")
    b = make_package(a / "node_modules", "b", "1.0.0")
    # a -> b -> back to the top-level node_modules
    symlink_dir(b / "node_modules", node_modules)
    make_package(node_modules, "evil-pkg", "1.0.0")

    walker = TreeWalker("evil-pkg", max_depth=50)
    found = walker.walk(str(node_modules))

    assert len(found) == 1
    real_roots = [os.path.realpath(p) for p in walker.visited]
    assert len(real_roots) == len(set(real_roots))
    assert os.path.realpath(node_modules) in walker.visited


def test_depth_bound(project):
    max_depth = 3
    current = project / "node_modules"
    for level in range(max_depth + 1):
        pkg = make_package(current, f"level{level}", "1.0.0")
        current = pkg / "node_modules"
    # current is at depth max_depth + 1
    make_package(current, "evil-pkg", "1.0.0")

    assert find_instances(str(project / "node_modules"), "evil-pkg", max_depth=max_depth) == []
    found = find_instances(str(project / "node_modules"), "evil-pkg", max_depth=max_depth + 1)
    assert [ref.depth for ref in found] == [max_depth + 1]


def test_found_at_max_depth(project):
    current = project / "node_modules"
    for level in range(2):
        current = make_package(current, f"level{level}", "1.0.0") / "node_modules"
    make_package(current, "evil-pkg", "1.0.0")

    found = find_instances(str(project / "node_modules"), "evil-pkg", max_depth=2)
    assert [ref.depth for ref in found] == [2]


def test_content_store_direct_match(project):
    node_modules = project / "node_modules"
    store = node_modules / ".pnpm"
    entry = store / "@scope+evil@1.0.0"
    make_package(entry / "node_modules", "@scope/evil", "1.0.0")
    make_package(store / "unrelated@2.0.0" / "node_modules", "unrelated", "2.0.0")

    walker = TreeWalker("@scope/evil")
    found = walker.walk(str(node_modules))

    assert len(found) == 1
    assert found[0].origin is OriginKind.PNPM_STORE_HIT
    assert found[0].version == "1.0.0"
    assert found[0].path == str(entry / "node_modules" / "@scope" / "evil")
    # Store entries are matched by name, never walked
    assert walker.visited == {os.path.realpath(node_modules)}


def test_content_store_version_from_entry_name(project):
    node_modules = project / "node_modules"
    entry = node_modules / ".pnpm" / "evil-pkg@1.0.0_peer@2.0.0"
    make_package(entry / "node_modules", "evil-pkg", None)

    found = find_instances(str(node_modules), "evil-pkg")

    assert [ref.version for ref in found] == ["1.0.0"]


def test_content_store_prefix_does_not_match_longer_names(project):
    node_modules = project / "node_modules"
    entry = node_modules / ".pnpm" / "evil-pkg-extra@1.0.0"
    make_package(entry / "node_modules", "evil-pkg-extra", "1.0.0")

    assert find_instances(str(node_modules), "evil-pkg") == []


def test_symlinked_store_package_reported_once(project):
    node_modules = project / "node_modules"
    real = make_package(node_modules / ".pnpm" / "evil-pkg@1.0.0" / "node_modules", "evil-pkg", "1.0.0")
    symlink_dir(node_modules / "evil-pkg", real)

    found = find_instances(str(node_modules), "evil-pkg")

    assert len(found) == 1
