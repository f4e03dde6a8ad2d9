"""
npm blacklist scanner
Detects known-compromised npm packages installed in a project tree.
"""

__version__ = "1.0.0"

from .blacklist import BlacklistIndex, load_blacklist_file
from .main import BlacklistScanner, main

__all__ = ["BlacklistIndex", "BlacklistScanner", "load_blacklist_file", "main"]
