"""Filename classification and include/exclude glob matching."""

from __future__ import annotations

import re
from fnmatch import fnmatchcase
from pathlib import PurePath, PurePosixPath
from typing import Iterable

from vfxcat.errors import UnrecognizedFormat

from .models import Classification, FileType

RECOGNIZED_EXTENSIONS: dict[str, FileType] = {
    "nk": FileType.NUKE,
    "aep": FileType.AFTER_EFFECTS,
}

# "_v003", ".003", "_12" or a bare "v003" glued to the name.
_VERSION_SUFFIX = re.compile(r"(?:[_.](?P<separated>[vV]?\d+)|(?P<glued>[vV]\d+))$")


def split_extension(filename: str) -> tuple[str, str]:
    """Return ``(stem, extension)`` for a filename.

    Raises:
        UnrecognizedFormat: If the name has no extension (including dotfiles
            such as ``.nk`` and names ending in a dot).
    """
    name = PurePosixPath(filename.replace("\\", "/")).name
    stem, dot, extension = name.rpartition(".")
    if not dot or not stem or not extension:
        raise UnrecognizedFormat(f"No extension in filename: {filename!r}")
    return stem, extension


def parse_version(stem: str) -> tuple[str, str, int]:
    """Split a trailing version segment off ``stem``.

    Returns:
        tuple[str, str, int]: Unversioned stem, raw token, and numeric ordinal.
        The token is empty and the ordinal ``0`` when no segment is present.
    """
    match = _VERSION_SUFFIX.search(stem)
    if match is None:
        return stem, "", 0
    token = match.group("separated") or match.group("glued")
    unversioned = stem[: match.start()] or stem
    return unversioned, token, int(token.lstrip("vV"))


def file_type_for(extension: str) -> FileType:
    """Map an extension (with or without a leading dot) to a file type."""
    return RECOGNIZED_EXTENSIONS.get(extension.lstrip(".").lower(), FileType.OTHER)


def classify(filename: str) -> Classification:
    """Classify ``filename`` into a file type and parsed version.

    Raises:
        UnrecognizedFormat: If the filename has no extension.
    """
    stem, extension = split_extension(filename)
    unversioned, token, number = parse_version(stem)
    return Classification(
        file_type=file_type_for(extension),
        stem=stem,
        unversioned_stem=unversioned,
        version_token=token,
        version_number=number,
    )


def classify_or_other(filename: str) -> Classification:
    """Classify ``filename``, recording extension-less names under ``other``."""
    try:
        return classify(filename)
    except UnrecognizedFormat:
        stem = PurePosixPath(filename.replace("\\", "/")).name
        unversioned, token, number = parse_version(stem)
        return Classification(
            file_type=FileType.OTHER,
            stem=stem,
            unversioned_stem=unversioned,
            version_token=token,
            version_number=number,
        )


def _pattern_hits(candidates: tuple[str, ...], patterns: Iterable[str]) -> bool:
    for pattern in patterns:
        folded = pattern.casefold()
        if any(fnmatchcase(candidate, folded) for candidate in candidates):
            return True
    return False


def matches(
    path: str | PurePath,
    include_patterns: Iterable[str],
    exclude_patterns: Iterable[str],
) -> bool:
    """Return whether ``path`` passes the include and exclude globs.

    Patterns are tested case-insensitively against both the POSIX form of
    ``path`` and its final component. An empty include list admits every path;
    exclude patterns always win.
    """
    posix = str(path).replace("\\", "/")
    candidates = (posix.casefold(), PurePosixPath(posix).name.casefold())
    include = list(include_patterns)
    if include and not _pattern_hits(candidates, include):
        return False
    return not _pattern_hits(candidates, exclude_patterns)


__all__ = [
    "RECOGNIZED_EXTENSIONS",
    "split_extension",
    "parse_version",
    "file_type_for",
    "classify",
    "classify_or_other",
    "matches",
]
