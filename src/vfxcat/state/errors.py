"""Index mirror errors."""


class StateError(Exception):
    """Base exception for index mirror operations."""


class MissingIndexError(StateError):
    """Raised when no mirror has been written for a project."""
