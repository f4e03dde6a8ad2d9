#!/usr/bin/env python3
"""
npm blacklist scanner
Detects known-compromised npm packages installed in a project tree
Usage: npm-blacklist-scan scan <directory_to_scan>
"""

import argparse
import os
import sys
import time
from datetime import datetime
from importlib.resources import as_file, files
from typing import List, Optional

from tqdm import tqdm

from .blacklist import BlacklistIndex, load_blacklist_file
from .config import ScanConfig, default_output_file, setup_logging
from .errors import ScanError, TargetDirectoryError
from .extract import extract_to_directory, extraction_stats
from .manifest import scan_lockfile, scan_manifests, scan_root_manifest
from .matcher import Matcher
from .report import FindingKind, RiskLevel, ScanReport, aggregate, write_report
from .walker import DEFAULT_MAX_DEPTH, InstalledPackageRef, find_instances

BUNDLED_PACKAGE_LIST = "compromised-packages.txt"


# Color codes for output
class Colors:
    RED = '\033[0;31m'
    YELLOW = '\033[1;33m'
    GREEN = '\033[0;32m'
    BLUE = '\033[0;34m'
    MAGENTA = '\033[0;35m'
    CYAN = '\033[0;36m'
    NC = '\033[0m'  # No Color


class BlacklistScanner:
    """Scans one project directory against the compromised package list."""

    def __init__(self, config: ScanConfig):
        self.config = config
        self.target_dir = os.path.abspath(config.target_dir)
        self.node_modules = os.path.join(self.target_dir, "node_modules")
        self.package_json = os.path.join(self.target_dir, "package.json")
        self.package_lock = os.path.join(self.target_dir, "package-lock.json")

        self.index: Optional[BlacklistIndex] = None
        self.matcher: Optional[Matcher] = None
        self.report: Optional[ScanReport] = None
        self.report_path: Optional[str] = None
        self.stats = {
            'packages_checked': 0,
            'instances_found': 0,
            'scan_time_seconds': 0.0
        }

        # Progress tracking
        self.current_step = 0
        self.total_steps = 5

    def _show_progress(self, step_name: str):
        """Display progress information."""
        self.current_step += 1
        print(f"{Colors.BLUE}[{self.current_step}/{self.total_steps}] 🔍 {step_name}...{Colors.NC}")

    def _verbose_log(self, message: str):
        """Log verbose information if verbose mode enabled."""
        if self.config.verbose:
            tqdm.write(f"{Colors.BLUE}  ↳ {message}{Colors.NC}")

    def _relative(self, path: str) -> str:
        return os.path.relpath(path, self.target_dir)

    def _check_target(self):
        if not os.path.exists(self.target_dir):
            raise TargetDirectoryError(f"Target directory not found: {self.target_dir}")
        if not os.path.isdir(self.target_dir):
            raise TargetDirectoryError(f"Target is not a directory: {self.target_dir}")

    def load_blacklist(self) -> BlacklistIndex:
        """Load the configured package list, or the one shipped with the package."""
        if self.config.package_list_file:
            self._verbose_log(f"Loading package list {self.config.package_list_file}")
            return load_blacklist_file(self.config.package_list_file)

        resource = files("npm_blacklist_scanner") / "data" / BUNDLED_PACKAGE_LIST
        with as_file(resource) as path:
            self._verbose_log(f"Loading bundled package list {path}")
            return load_blacklist_file(path)

    def _scan_lockfile(self):
        if not os.path.isfile(self.package_lock):
            print(f"{Colors.YELLOW}  ⚠️  package-lock.json not found{Colors.NC}")
            return []
        entries = scan_lockfile(self.package_lock, self.matcher)
        for entry in entries:
            print(f"{Colors.YELLOW}  ⚠️  {entry.name}@{entry.version}{Colors.NC}")
        if not entries:
            print(f"{Colors.GREEN}  ✅ Nothing found{Colors.NC}")
        return entries

    def _scan_installed(self) -> List[InstalledPackageRef]:
        """Search node_modules for every blacklisted name in turn."""
        compromised: List[InstalledPackageRef] = []
        names = self.index.names

        with tqdm(
            total=len(names),
            desc="Installed packages",
            unit="pkgs",
            leave=False,
            disable=not self.config.show_progress or not sys.stderr.isatty()
        ) as pbar:
            for name in names:
                instances = find_instances(self.node_modules, name, self.config.max_depth)
                hits = [i for i in instances if self.matcher.is_compromised(i.name, i.version)]
                for position, instance in enumerate(hits):
                    depth_info = f" (depth: {instance.depth})" if instance.depth > 0 else ""
                    if position == 0:
                        tqdm.write(f"{Colors.RED}  🚨 {name}@{instance.version}{depth_info}{Colors.NC}")
                    else:
                        tqdm.write(f"{Colors.YELLOW}     ├─ duplicate install: {instance.version}{depth_info}{Colors.NC}")
                    tqdm.write(f"     {Colors.MAGENTA}Path: {self._relative(instance.path)}{Colors.NC}")
                for instance in instances:
                    if instance not in hits:
                        self._verbose_log(
                            f"{name}@{instance.version} installed at {self._relative(instance.path)} is not a listed version"
                        )
                compromised.extend(hits)
                self.stats['packages_checked'] += 1
                pbar.update(1)

        self.stats['instances_found'] = len(compromised)
        if not compromised:
            print(f"{Colors.GREEN}  ✅ No compromised packages installed{Colors.NC}")
        return compromised

    def _scan_dependency_references(self):
        references = scan_manifests(self.node_modules, self.index.names, self.config.max_depth)
        for ref in references:
            print(f"{Colors.YELLOW}  ⚠️  {ref.referenced_name} ({ref.declared_range}) required by {ref.declaring_package}{Colors.NC}")
            print(f"     {Colors.MAGENTA}Path: {self._relative(ref.declaring_path)}{Colors.NC}")
        if not references:
            print(f"{Colors.GREEN}  ✅ No dependency references found{Colors.NC}")
        return references

    def _scan_root_manifest(self):
        if not os.path.isfile(self.package_json):
            print(f"{Colors.YELLOW}  ⚠️  package.json not found{Colors.NC}")
            return []
        declarations = scan_root_manifest(self.package_json, self.index.names)
        for decl in declarations:
            print(f"{Colors.YELLOW}  ⚠️  {decl.name}@{decl.declared_range} ({decl.group}){Colors.NC}")
        if not declarations:
            print(f"{Colors.GREEN}  ✅ Nothing found{Colors.NC}")
        return declarations

    def run(self) -> ScanReport:
        """Validate inputs, scan the target and build the report.

        Raises ScanError subclasses for fatal conditions; nothing is
        scanned in that case.
        """
        start_time = time.time()
        self._check_target()
        self.index = self.load_blacklist()
        self.matcher = Matcher(self.index)

        print(f"{Colors.BLUE}🔍 Scanning {Colors.CYAN}{self.target_dir}{Colors.BLUE} "
              f"against {len(self.index)} compromised packages{Colors.NC}")

        self._show_progress("Checking package-lock.json")
        lockfile_entries = self._scan_lockfile()

        installed, references = [], []
        if os.path.isdir(self.node_modules):
            self._show_progress("Searching node_modules for installed packages")
            installed = self._scan_installed()

            self._show_progress("Checking package.json files inside node_modules")
            references = self._scan_dependency_references()
        else:
            self.current_step += 2
            print(f"{Colors.YELLOW}  ⚠️  node_modules not found: {self.node_modules}{Colors.NC}")

        self._show_progress("Checking package.json")
        declarations = self._scan_root_manifest()

        self._show_progress("Building report")
        self.report = aggregate(
            installed,
            references,
            declarations,
            lockfile_entries,
            matcher=self.matcher,
            target_root=self.target_dir,
        )
        self.stats['scan_time_seconds'] = time.time() - start_time

        if self.config.write_report:
            self._write_report()
        return self.report

    def _write_report(self):
        path = self.config.output_file or default_output_file(datetime.fromisoformat(self.report.timestamp))
        try:
            write_report(self.report, path)
        except OSError as e:
            print(f"{Colors.YELLOW}⚠️  Failed to save report: {e}{Colors.NC}")
            return
        self.report_path = path
        print(f"{Colors.BLUE}📝 Report saved: {path}{Colors.NC}")

    def print_results(self):
        """Print scan results in formatted output."""
        report = self.report
        print(f"\n{Colors.BLUE}📊 Scan Summary:{Colors.NC}")
        print(f"  Target: {report.target_root}")
        print(f"  Packages checked: {self.stats['packages_checked']} of {report.total_checked}")
        print(f"  Installed copies flagged: {self.stats['instances_found']}")
        print(f"  Scan time: {self.stats['scan_time_seconds']:.3f} seconds")

        if report.safe:
            print(f"{Colors.GREEN}✅ No compromised packages detected.{Colors.NC}")
            return

        print(f"{Colors.RED}🚨 {report.total_issues} issues found, "
              f"risk level: {report.risk_level.value.upper()}{Colors.NC}")
        print(f"  {Colors.YELLOW}├─{Colors.NC} package-lock.json: "
              f"{len(report.of_kind(FindingKind.LOCKFILE_ENTRY))}")
        print(f"  {Colors.YELLOW}├─{Colors.NC} node_modules: "
              f"{len(report.of_kind(FindingKind.INSTALLED_INSTANCE, FindingKind.DEPENDENCY_REFERENCE))}")
        print(f"  {Colors.YELLOW}└─{Colors.NC} package.json: "
              f"{len(report.of_kind(FindingKind.MANIFEST_DECLARATION))}")

        packages = sorted({f.package for f in report.findings})
        print("\nPackages detected:")
        for position, package in enumerate(packages):
            symbol = "└─" if position == len(packages) - 1 else "├─"
            print(f"  {Colors.RED}{symbol}{Colors.NC} {package}")

        if report.risk_level is RiskLevel.CRITICAL:
            print(f"\n{Colors.RED}⚠️  Compromised code is installed. Rotate credentials, "
                  f"remove node_modules and reinstall from a clean lockfile.{Colors.NC}")


def _run_scan(args) -> int:
    config = ScanConfig(
        target_dir=args.target,
        package_list_file=args.package_list,
        output_file=args.output,
        max_depth=args.max_depth,
        verbose=args.verbose,
        show_progress=not args.no_progress,
        write_report=not args.no_report,
    )
    scanner = BlacklistScanner(config)
    report = scanner.run()
    scanner.print_results()
    return 0 if report.safe else 1


def _run_extract(args) -> int:
    packages, outputs = extract_to_directory(args.input, args.output_dir)
    stats = extraction_stats(packages)
    print(f"{Colors.GREEN}✅ Extracted {stats['total']} unique packages{Colors.NC}")
    print(f"  Scoped: {stats['scoped']}  Unscoped: {stats['unscoped']}")
    print(f"  With versions: {stats['with_versions']}  Multiple versions: {stats['multiple_versions']}")
    if stats['top_scopes']:
        print("  Top scopes:")
        for scope, count in stats['top_scopes']:
            print(f"    {scope}: {count}")
    for kind, path in outputs.items():
        print(f"{Colors.BLUE}📄 {kind}: {path}{Colors.NC}")
    return 0


def _max_depth(value: str) -> int:
    depth = int(value)
    if depth < 0:
        raise argparse.ArgumentTypeError(f"must be 0 or greater, got {depth}")
    return depth


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="npm-blacklist-scan",
        description="Detect known-compromised npm packages in a project",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    scan = subparsers.add_parser('scan', help='Scan a project directory')
    scan.add_argument('target', nargs='?', default='.',
                      help='Project directory to scan (default: current directory)')
    scan.add_argument('--package-list', default=None,
                      help='Blacklist file (.json, .csv or text); defaults to the bundled list')
    scan.add_argument('--output', default=None,
                      help='Report path (default: reports/security_check_report_<timestamp>.json)')
    scan.add_argument('--max-depth', type=_max_depth, default=DEFAULT_MAX_DEPTH,
                      help='Maximum nested node_modules depth')
    scan.add_argument('--no-report', action='store_true',
                      help='Do not write a JSON report')
    scan.add_argument('--verbose', action='store_true',
                      help='Show detailed progress information')
    scan.add_argument('--no-progress', action='store_true',
                      help='Disable progress bars')
    scan.set_defaults(handler=_run_scan)

    extract = subparsers.add_parser('extract', help='Convert the text blacklist to CSV and JSON')
    extract.add_argument('input', help='Text blacklist, one package per line')
    extract.add_argument('--output-dir', default='.',
                         help='Directory for the generated files')
    extract.set_defaults(handler=_run_extract)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(getattr(args, 'verbose', False))

    try:
        return args.handler(args)
    except TargetDirectoryError as e:
        print(f"{Colors.RED}Error: {e}{Colors.NC}")
        print("Usage: npm-blacklist-scan scan [target_directory]")
        return 1
    except ScanError as e:
        print(f"{Colors.RED}FATAL ERROR: cannot load package list: {e}{Colors.NC}")
        return 1
    except OSError as e:
        print(f"{Colors.RED}Error: {e}{Colors.NC}")
        return 1
    except KeyboardInterrupt:
        print(f"\n{Colors.YELLOW}Scan interrupted by user{Colors.NC}")
        return 130


if __name__ == "__main__":
    sys.exit(main())
