"""Directory scanning and reconciliation."""

from .discovery import DirectoryScanner, PathDelta, diff_paths, resolve_scan_dirs
from .scanner import ProjectScanner, ScanOutcome, resolve_root

__all__ = [
    "DirectoryScanner",
    "PathDelta",
    "ProjectScanner",
    "ScanOutcome",
    "diff_paths",
    "resolve_root",
    "resolve_scan_dirs",
]
