"""Value types produced by filename classification and grouping."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class FileType(str, Enum):
    """Editor format recognized from a file extension."""

    NUKE = "nk"
    AFTER_EFFECTS = "aep"
    OTHER = "other"


class Classification(BaseModel):
    """Parsed view of a single filename.

    Attributes:
        file_type: Format inferred from the extension.
        stem: Filename without its extension.
        unversioned_stem: Stem with the trailing version segment removed.
        version_token: Raw version token as written (``"v007"``), or empty.
        version_number: Numeric ordinal of the token, ``0`` when absent.
    """

    model_config = ConfigDict(frozen=True)

    file_type: FileType
    stem: str
    unversioned_stem: str
    version_token: str = ""
    version_number: int = 0


class GroupingKey(BaseModel):
    """Folder, shot group, and base name derived for one file."""

    model_config = ConfigDict(frozen=True)

    folder: str
    shot_group: str
    base_name: str


__all__ = ["FileType", "Classification", "GroupingKey"]
