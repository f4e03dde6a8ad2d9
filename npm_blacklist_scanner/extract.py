"""Extract structured blacklist entries from the published text list.

The list is line oriented::

    # comment
    ---
    @scope/package (v1.2.3, v1.2.4)
    package (v0.0.7)
    bare-package

and is written out as CSV, a detailed JSON document and a plain JSON
array of names.
"""

import csv
import json
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Tuple, Union

from .errors import BlacklistNotFoundError, ParseError

BLACKLIST_SOURCE = "https://socket.dev/blog/shai-hulud-strikes-again-v2"

OUTPUT_CSV = "compromised_packages.csv"
OUTPUT_JSON = "compromised_packages.json"
OUTPUT_JSON_SIMPLE = "compromised_packages_simple.json"

_WITH_VERSIONS = re.compile(
    r"^(@?[\w-]+/)?([a-z0-9\-_.]+)\s+\((v[\d.]+(?:,\s*v[\d.]+)*)\)", re.IGNORECASE
)
_BARE_NAME = re.compile(r"^(@?[\w-]+/)?([a-z0-9\-_.]+)$", re.IGNORECASE)


@dataclass
class ExtractedPackage:
    name: str
    versions: List[str] = field(default_factory=list)
    line: int = 0

    def to_dict(self) -> Dict[str, object]:
        return {"name": self.name, "versions": list(self.versions)}


def _is_skipped(line: str) -> bool:
    return not line or line.startswith("#") or line.startswith("---")


def parse_blacklist_text(text: str) -> List[ExtractedPackage]:
    """Parse the text list; duplicate names keep their first line."""
    packages: List[ExtractedPackage] = []
    seen = set()

    for line_num, raw_line in enumerate(text.splitlines(), 1):
        line = raw_line.strip()
        if _is_skipped(line):
            continue

        match = _WITH_VERSIONS.match(line)
        if match:
            versions = [v.strip() for v in match.group(3).split(",")]
        else:
            match = _BARE_NAME.match(line)
            if not match:
                continue
            versions = []

        name = (match.group(1) or "") + match.group(2)
        if name in seen:
            continue
        seen.add(name)
        packages.append(ExtractedPackage(name=name, versions=versions, line=line_num))

    return packages


def write_csv(packages: List[ExtractedPackage], path: Union[str, Path]) -> None:
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f, quoting=csv.QUOTE_ALL)
        writer.writerow(["package_name", "versions"])
        for pkg in packages:
            writer.writerow([pkg.name, ";".join(pkg.versions)])


def write_json(packages: List[ExtractedPackage], path: Union[str, Path]) -> None:
    """Write the detailed document with extraction metadata."""
    document = {
        "metadata": {
            "source": BLACKLIST_SOURCE,
            "extractedAt": datetime.now(timezone.utc).isoformat(),
            "totalPackages": len(packages),
        },
        "packages": [pkg.to_dict() for pkg in packages],
    }
    with open(path, "w", encoding="utf-8") as f:
        json.dump(document, f, indent=2)


def write_simple_json(packages: List[ExtractedPackage], path: Union[str, Path]) -> None:
    """Write a bare array of names; loading it flags any installed version."""
    with open(path, "w", encoding="utf-8") as f:
        json.dump([pkg.name for pkg in packages], f, indent=2)


def extraction_stats(packages: List[ExtractedPackage]) -> Dict[str, object]:
    scoped = [p for p in packages if p.name.startswith("@")]
    scopes = Counter(p.name.split("/")[0] for p in scoped)
    return {
        "total": len(packages),
        "scoped": len(scoped),
        "unscoped": len(packages) - len(scoped),
        "with_versions": sum(1 for p in packages if p.versions),
        "multiple_versions": sum(1 for p in packages if len(p.versions) > 1),
        "top_scopes": scopes.most_common(10),
    }


def extract_to_directory(
    input_file: Union[str, Path], output_dir: Union[str, Path]
) -> Tuple[List[ExtractedPackage], Dict[str, Path]]:
    """Parse input_file and write all three output files into output_dir.

    Returns the parsed packages and the written paths keyed by format.
    Raises BlacklistNotFoundError if input_file is not a file and
    ParseError if it cannot be read as UTF-8 text.
    """
    input_file = Path(input_file)
    if not input_file.is_file():
        raise BlacklistNotFoundError(f"blacklist file not found: {input_file}")
    try:
        text = input_file.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ParseError(f"cannot read {input_file}: {e}") from e
    packages = parse_blacklist_text(text)

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    outputs = {
        "csv": output_dir / OUTPUT_CSV,
        "json": output_dir / OUTPUT_JSON,
        "simple": output_dir / OUTPUT_JSON_SIMPLE,
    }
    write_csv(packages, outputs["csv"])
    write_json(packages, outputs["json"])
    write_simple_json(packages, outputs["simple"])
    return packages, outputs
