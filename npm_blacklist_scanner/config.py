"""Scan configuration passed to the scanner entry point."""

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from .walker import DEFAULT_MAX_DEPTH

REPORTS_DIR = "reports"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def default_output_file(now: Optional[datetime] = None) -> str:
    """reports/security_check_report_<timestamp>.json relative to the cwd.

    The timestamp is UTC, like the one recorded inside the report.
    """
    now = now or datetime.now(timezone.utc)
    return os.path.join(REPORTS_DIR, f"security_check_report_{now.strftime('%Y-%m-%dT%H-%M-%S')}.json")


@dataclass
class ScanConfig:
    target_dir: str = "."
    package_list_file: Optional[str] = None  # None: the bundled list
    output_file: Optional[str] = None  # None: default_output_file()
    max_depth: int = DEFAULT_MAX_DEPTH
    verbose: bool = False
    show_progress: bool = True
    write_report: bool = True

    def __post_init__(self):
        if self.max_depth < 0:
            raise ValueError(f"max_depth must be 0 or greater, got {self.max_depth}")


def setup_logging(verbose: bool = False):
    """Send library logging to stderr; DEBUG shows every skipped node."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=LOG_FORMAT,
    )
