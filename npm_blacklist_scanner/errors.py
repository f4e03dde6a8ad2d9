"""Exceptions raised for conditions that abort a scan."""


class ScanError(Exception):
    """Base class for fatal scan errors."""


class ParseError(ScanError):
    """Blacklist data is not a well-formed list of {name, versions}."""


class BlacklistNotFoundError(ScanError):
    """The blacklist data file does not exist."""


class TargetDirectoryError(ScanError):
    """The scan target is missing or is not a directory."""
