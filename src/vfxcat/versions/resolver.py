"""Version ordering and selection within a group of records."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable, Sequence

from vfxcat.errors import VersionNotFound

if TYPE_CHECKING:
    from vfxcat.index.models import FileRecord

LOGGER = logging.getLogger(__name__)


def version_sort_key(record: "FileRecord") -> tuple[int, float, str]:
    """Return an ascending key; the greatest key is the current version."""
    return (record.version_number, record.last_modified.timestamp(), record.path)


def order_versions(records: Iterable["FileRecord"]) -> list["FileRecord"]:
    """Order records newest first: ordinal, then modification time, then path."""
    return sorted(records, key=version_sort_key, reverse=True)


def default_version(group: Sequence["FileRecord"]) -> "FileRecord":
    """Return the record with the highest version in ``group``.

    Raises:
        ValueError: If ``group`` is empty.
    """
    if not group:
        raise ValueError("Cannot select a version from an empty group.")
    return max(group, key=version_sort_key)


def resolve(group: Sequence["FileRecord"], requested_token: str) -> "FileRecord":
    """Return the record in ``group`` whose version matches ``requested_token``.

    The token is compared case-insensitively first; failing that, a token
    that parses to the same ordinal matches (``v3`` finds ``v003``). When
    several records share a version, the newest in version order wins.

    Raises:
        VersionNotFound: If no record carries the requested version.
    """
    ordered = order_versions(group)
    wanted = requested_token.strip()
    for record in ordered:
        if record.version.casefold() == wanted.casefold():
            return record

    digits = wanted.lstrip("vV")
    if digits.isdigit():
        number = int(digits)
        for record in ordered:
            if record.version and record.version_number == number:
                return record

    raise VersionNotFound(f"Version {requested_token!r} is not present in this group.")


def resolve_or_default(group: Sequence["FileRecord"], requested_token: str | None) -> "FileRecord":
    """Resolve ``requested_token`` and fall back to the default version when stale."""
    if requested_token is None:
        return default_version(group)
    try:
        return resolve(group, requested_token)
    except VersionNotFound:
        fallback = default_version(group)
        LOGGER.info(
            "Stale version reference %r for %s; using %r instead.",
            requested_token,
            fallback.group_key.as_string(),
            fallback.version,
        )
        return fallback


__all__ = [
    "version_sort_key",
    "order_versions",
    "default_version",
    "resolve",
    "resolve_or_default",
]
