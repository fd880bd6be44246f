"""Derive the folder, shot group, and base name used to group versions."""

from __future__ import annotations

import re
from pathlib import PurePath, PurePosixPath

from .models import Classification, GroupingKey
from .patterns import classify_or_other

ROOT_FOLDER = "Root"
OTHER_SHOT_GROUP = "Other"

_SHOT_PREFIX = re.compile(r"^(?P<shot>[A-Za-z0-9]+)_(?P<rest>.+)$")


def top_level_folder(relative_parent_path: str | PurePath) -> str:
    """Return the first component of a relative parent path, or ``"Root"``."""
    posix = str(relative_parent_path).replace("\\", "/")
    parts = [part for part in PurePosixPath(posix).parts if part not in (".", "/")]
    return parts[0] if parts else ROOT_FOLDER


def grouping_for(relative_parent_path: str | PurePath, classification: Classification) -> GroupingKey:
    """Build a grouping key from an already classified filename."""
    stem = classification.unversioned_stem
    match = _SHOT_PREFIX.match(stem)
    if match is None:
        shot_group, base_name = OTHER_SHOT_GROUP, stem
    else:
        shot_group, base_name = match.group("shot").upper(), match.group("rest")
    return GroupingKey(
        folder=top_level_folder(relative_parent_path),
        shot_group=shot_group,
        base_name=base_name,
    )


def group_key(relative_parent_path: str | PurePath, filename: str) -> GroupingKey:
    """Return the grouping key for ``filename`` under ``relative_parent_path``.

    ``BALA_shot010_comp_v003.nk`` under ``comp/nuke`` yields folder ``comp``,
    shot group ``BALA`` and base name ``shot010_comp``. Never raises.
    """
    return grouping_for(relative_parent_path, classify_or_other(filename))


__all__ = ["ROOT_FOLDER", "OTHER_SHOT_GROUP", "top_level_folder", "grouping_for", "group_key"]
