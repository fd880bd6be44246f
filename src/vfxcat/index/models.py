"""Data models for indexed project files."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from vfxcat.matching import FileType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Project(BaseModel):
    """A project whose working directory is indexed.

    Attributes:
        id: Project identifier supplied by the caller.
        root: Absolute project root directory.
        client: Optional client label.
        created_at: Creation timestamp.
        updated_at: Last update timestamp.
    """

    id: str
    root: Path
    client: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class ScanConfig(BaseModel):
    """Filters supplied with a scan or watch request.

    Attributes:
        include_patterns: Globs a path must match (empty means everything).
        exclude_patterns: Globs that remove a path.
        scan_dirs: Subdirectories of the root to restrict to (empty means the root).
    """

    model_config = ConfigDict(frozen=True)

    include_patterns: tuple[str, ...] = ()
    exclude_patterns: tuple[str, ...] = ()
    scan_dirs: tuple[str, ...] = ()


class ScanWarning(BaseModel):
    """A directory that could not be read completely during a walk."""

    model_config = ConfigDict(frozen=True)

    path: str
    message: str


class FileObservation(BaseModel):
    """Classified state of one path as seen on disk.

    Attributes:
        path: Absolute path.
        relative_path: POSIX path relative to the project root.
        parent_folder: POSIX path of the parent directory relative to the root.
        file_type: Format inferred from the extension.
        base_name: Artifact name without shot prefix, version, or extension.
        version: Raw version token.
        version_number: Parsed version ordinal.
        folder: Top-level folder used for grouping.
        shot_group: Shot group parsed from the filename prefix.
        last_modified: Modification time.
    """

    model_config = ConfigDict(frozen=True)

    path: str
    relative_path: str
    parent_folder: str
    file_type: FileType
    base_name: str
    version: str
    version_number: int
    folder: str
    shot_group: str
    last_modified: datetime


class FileRecord(FileObservation):
    """An indexed file owned by the index store.

    Attributes:
        id: Identifier assigned by the store; stable while the path is indexed.
        project_id: Owning project.
        first_seen: When the path was first indexed.
    """

    id: int
    project_id: str
    first_seen: datetime

    @property
    def group_key(self) -> "GroupKey":
        """Return the key of the group this record belongs to."""
        return GroupKey(
            file_type=self.file_type,
            folder=self.folder,
            shot_group=self.shot_group,
            base_name=self.base_name,
        )


class GroupKey(BaseModel):
    """Composite key identifying one logical artifact across versions."""

    model_config = ConfigDict(frozen=True)

    file_type: FileType
    folder: str
    shot_group: str
    base_name: str

    def as_string(self) -> str:
        """Return the ``type:folder:shot:base`` composite form."""
        return f"{self.file_type.value}:{self.folder}:{self.shot_group}:{self.base_name}"

    def sort_key(self) -> tuple[str, str, str, str]:
        """Return a tuple that orders keys deterministically."""
        return (self.file_type.value, self.folder, self.shot_group, self.base_name)


class ChangeSet(BaseModel):
    """Record ids touched by one reconciliation or delta."""

    added: List[int] = Field(default_factory=list)
    updated: List[int] = Field(default_factory=list)
    removed: List[int] = Field(default_factory=list)

    @property
    def empty(self) -> bool:
        """Return whether nothing changed."""
        return not (self.added or self.updated or self.removed)


__all__ = [
    "Project",
    "ScanConfig",
    "ScanWarning",
    "FileObservation",
    "FileRecord",
    "GroupKey",
    "ChangeSet",
]
