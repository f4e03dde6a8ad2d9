"""Aggregation of scan results into a report with a risk level."""

import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from .manifest import DependencyReference, LockfileEntry, ManifestDeclaration
from .matcher import Matcher
from .walker import InstalledPackageRef


class FindingKind(Enum):
    INSTALLED_INSTANCE = "installed"
    DEPENDENCY_REFERENCE = "dependency-reference"
    MANIFEST_DECLARATION = "manifest-declaration"
    LOCKFILE_ENTRY = "lockfile"


class RiskLevel(Enum):
    NONE = "none"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class ScanFinding:
    package: str
    version: str  # resolved version, or declared range for declarations
    path: str
    kind: FindingKind
    matched_versions: FrozenSet[str] = frozenset()
    depth: Optional[int] = None
    referenced_by: Optional[str] = None
    group: Optional[str] = None
    origin: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "package": self.package,
            "version": self.version,
            "path": self.path,
            "type": self.kind.value,
            "compromisedVersions": sorted(self.matched_versions),
        }
        if self.depth is not None:
            data["depth"] = self.depth
        if self.referenced_by is not None:
            data["referencedBy"] = self.referenced_by
        if self.group is not None:
            data["dependencyType"] = self.group
        if self.origin is not None:
            data["origin"] = self.origin
        return data


@dataclass
class ScanReport:
    timestamp: str
    target_root: str
    total_checked: int
    findings: List[ScanFinding] = field(default_factory=list)
    risk_level: RiskLevel = RiskLevel.NONE

    def of_kind(self, *kinds: FindingKind) -> List[ScanFinding]:
        return [f for f in self.findings if f.kind in kinds]

    @property
    def safe(self) -> bool:
        return not self.findings

    @property
    def total_issues(self) -> int:
        return len(self.findings)

    def to_dict(self) -> Dict[str, Any]:
        """JSON document grouped by where each finding came from."""
        return {
            "timestamp": self.timestamp,
            "targetDirectory": self.target_root,
            "totalChecked": self.total_checked,
            "foundInPackageLock": [
                f.to_dict() for f in self.of_kind(FindingKind.LOCKFILE_ENTRY)
            ],
            "foundInNodeModules": [
                f.to_dict() for f in self.of_kind(
                    FindingKind.INSTALLED_INSTANCE, FindingKind.DEPENDENCY_REFERENCE
                )
            ],
            "foundInPackageJson": [
                f.to_dict() for f in self.of_kind(FindingKind.MANIFEST_DECLARATION)
            ],
            "summary": {
                "safe": self.safe,
                "totalIssues": self.total_issues,
                "criticalLevel": self.risk_level.value,
            },
        }


def compute_risk_level(findings: Iterable[ScanFinding]) -> RiskLevel:
    """Installed or referenced > declared in package.json > lockfile only."""
    kinds = {f.kind for f in findings}
    if kinds & {FindingKind.INSTALLED_INSTANCE, FindingKind.DEPENDENCY_REFERENCE}:
        return RiskLevel.CRITICAL
    if FindingKind.MANIFEST_DECLARATION in kinds:
        return RiskLevel.HIGH
    if FindingKind.LOCKFILE_ENTRY in kinds:
        return RiskLevel.MEDIUM
    return RiskLevel.NONE


def aggregate(
    installed_refs: Iterable[InstalledPackageRef],
    dependency_refs: Iterable[DependencyReference],
    manifest_declarations: Iterable[ManifestDeclaration],
    lockfile_entries: Iterable[LockfileEntry] = (),
    *,
    matcher: Matcher,
    target_root: str,
    timestamp: Optional[str] = None,
) -> ScanReport:
    """Build the final report.

    installed_refs are expected to be already confirmed by the matcher.
    Node_modules findings are deduplicated on (package, path).
    """
    findings: List[ScanFinding] = []

    for entry in lockfile_entries:
        findings.append(ScanFinding(
            package=entry.name,
            version=entry.version,
            path=entry.lockfile_path,
            kind=FindingKind.LOCKFILE_ENTRY,
            matched_versions=matcher.matched_versions(entry.name),
        ))

    seen = set()
    for ref in installed_refs:
        key = (ref.name, ref.path)
        if key in seen:
            continue
        seen.add(key)
        findings.append(ScanFinding(
            package=ref.name,
            version=ref.version,
            path=ref.path,
            kind=FindingKind.INSTALLED_INSTANCE,
            matched_versions=matcher.matched_versions(ref.name),
            depth=ref.depth,
            origin=ref.origin.value,
        ))

    for ref in dependency_refs:
        key = (ref.referenced_name, ref.declaring_path)
        if key in seen:
            continue
        seen.add(key)
        findings.append(ScanFinding(
            package=ref.referenced_name,
            version=ref.declared_range,
            path=ref.declaring_path,
            kind=FindingKind.DEPENDENCY_REFERENCE,
            matched_versions=matcher.matched_versions(ref.referenced_name),
            depth=ref.depth,
            referenced_by=ref.declaring_package,
        ))

    for decl in manifest_declarations:
        findings.append(ScanFinding(
            package=decl.name,
            version=decl.declared_range,
            path=decl.manifest_path,
            kind=FindingKind.MANIFEST_DECLARATION,
            matched_versions=matcher.matched_versions(decl.name),
            group=decl.group,
        ))

    return ScanReport(
        timestamp=timestamp or datetime.now(timezone.utc).isoformat(),
        target_root=target_root,
        total_checked=len(matcher.index),
        findings=findings,
        risk_level=compute_risk_level(findings),
    )


def write_report(report: ScanReport, path: str):
    """Write the report as indented JSON, creating parent directories."""
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(report.to_dict(), f, indent=2)
