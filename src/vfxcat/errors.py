"""Exceptions raised by the index engine."""


class VfxcatError(Exception):
    """Base exception for index engine operations."""


class InvalidRoot(VfxcatError):
    """Raised when a project root is missing or is not a directory."""


class ScanCancelled(VfxcatError):
    """Raised when an in-flight scan is cancelled before reconciliation."""


class WatchSubscriptionFailure(VfxcatError):
    """Raised when a filesystem watch subscription cannot be established."""


class UnrecognizedFormat(VfxcatError):
    """Raised when a filename carries no extension to classify."""


class VersionNotFound(VfxcatError):
    """Raised when a requested version token is absent from a group."""


class GroupNotFound(VfxcatError):
    """Raised when no group matches the requested group key."""


__all__ = [
    "VfxcatError",
    "InvalidRoot",
    "ScanCancelled",
    "WatchSubscriptionFailure",
    "UnrecognizedFormat",
    "VersionNotFound",
    "GroupNotFound",
]
