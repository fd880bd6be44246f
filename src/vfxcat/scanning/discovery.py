"""File discovery and classification for project trees."""

from __future__ import annotations

import logging
import os
import stat
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from vfxcat.errors import ScanCancelled
from vfxcat.index.models import FileObservation, ScanConfig, ScanWarning
from vfxcat.index.store import GroupedIndexView
from vfxcat.matching import classify_or_other, grouping_for, matches

LOGGER = logging.getLogger(__name__)

WHOLE_ROOT_MARKERS = frozenset({".", "*"})


def resolve_scan_dirs(root: Path, scan_dirs: Iterable[str]) -> tuple[list[Path], list[ScanWarning]]:
    """Return the existing directories to scan under ``root``.

    An empty list, ``"."`` or ``"*"`` selects the whole root. Entries that are
    missing, are not directories, or point outside the root are reported as
    warnings. Directories nested inside another selected directory are dropped.
    """
    requested = [entry.strip() for entry in scan_dirs if entry.strip()]
    if not requested or any(entry in WHOLE_ROOT_MARKERS for entry in requested):
        return [root], []

    selected: list[Path] = []
    warnings: list[ScanWarning] = []
    for entry in requested:
        candidate = Path(os.path.normpath(root / entry))
        if candidate != root and root not in candidate.parents:
            warnings.append(ScanWarning(path=str(candidate), message="outside the project root"))
        elif not candidate.exists():
            warnings.append(ScanWarning(path=str(candidate), message="directory does not exist"))
        elif not candidate.is_dir():
            warnings.append(ScanWarning(path=str(candidate), message="not a directory"))
        else:
            selected.append(candidate)

    selected = sorted(set(selected))
    roots = [
        directory
        for directory in selected
        if not any(other in directory.parents for other in selected)
    ]
    return roots, warnings


class DirectoryScanner:
    """Walk and classify the files of one project tree subject to a scan config.

    Both full scans and watch deltas go through :meth:`observe`, so a file is
    classified identically whichever path discovered it.
    """

    def __init__(
        self,
        root: Path,
        config: ScanConfig,
        *,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.root = root
        self.config = config
        self.cancel_event = cancel_event
        self.directories, self.directory_warnings = resolve_scan_dirs(root, config.scan_dirs)
        self.walk_warnings: list[ScanWarning] = []
        for warning in self.directory_warnings:
            LOGGER.warning("Skipping scan directory %s: %s", warning.path, warning.message)

    @property
    def warnings(self) -> list[ScanWarning]:
        """Return directory warnings followed by those of the latest walk."""
        return [*self.directory_warnings, *self.walk_warnings]

    def in_scope(self, path: Path) -> bool:
        """Return whether ``path`` lies within a scanned directory."""
        return any(path == directory or directory in path.parents for directory in self.directories)

    def walk(self) -> list[FileObservation]:
        """Walk every scanned directory and return observations sorted by path.

        Raises:
            ScanCancelled: If the cancel event is set during the walk.
        """
        self.walk_warnings = []
        found: dict[str, FileObservation] = {}
        for directory in self.directories:
            self._walk_directory(directory, found)
        return [found[path] for path in sorted(found)]

    def walk_subtree(self, path: Path) -> list[FileObservation]:
        """Walk the part of the scanned tree that lies at or below ``path``."""
        self.walk_warnings = []
        found: dict[str, FileObservation] = {}
        for directory in self.directories:
            if path == directory or directory in path.parents:
                self._walk_directory(path, found)
            elif path in directory.parents:
                self._walk_directory(directory, found)
        return [found[key] for key in sorted(found)]

    def observe(self, path: Path) -> FileObservation | None:
        """Return the observation for a single path, or ``None`` if not indexed.

        Paths outside the scanned directories, symlinks, non-regular files,
        missing paths, and paths rejected by the include/exclude globs are not
        indexed.
        """
        if not self.in_scope(path):
            return None
        try:
            info = os.lstat(path)
        except OSError:
            return None
        if not stat.S_ISREG(info.st_mode):
            return None
        return self._build(path, info.st_mtime)

    def _walk_directory(self, top: Path, found: dict[str, FileObservation]) -> None:
        stack = [top]
        while stack:
            if self.cancel_event is not None and self.cancel_event.is_set():
                raise ScanCancelled(f"Scan of {self.root} was cancelled.")
            directory = stack.pop()
            try:
                with os.scandir(directory) as iterator:
                    entries = sorted(iterator, key=lambda entry: entry.name)
            except OSError as exc:
                self._warn(directory, exc)
                continue

            for entry in entries:
                try:
                    if entry.is_symlink():
                        continue
                    if entry.is_dir(follow_symlinks=False):
                        stack.append(Path(entry.path))
                        continue
                    if not entry.is_file(follow_symlinks=False):
                        continue
                    mtime = entry.stat(follow_symlinks=False).st_mtime
                except FileNotFoundError:
                    LOGGER.debug("Entry vanished during walk: %s", entry.path)
                    continue
                except OSError as exc:
                    self._warn(Path(entry.path), exc)
                    continue
                observation = self._build(Path(entry.path), mtime)
                if observation is not None:
                    found[observation.path] = observation

    def _build(self, path: Path, mtime: float) -> FileObservation | None:
        try:
            relative = path.relative_to(self.root)
        except ValueError:
            return None
        if not matches(relative.as_posix(), self.config.include_patterns, self.config.exclude_patterns):
            return None

        parent = relative.parent.as_posix()
        parent = "" if parent == "." else parent
        classification = classify_or_other(path.name)
        grouping = grouping_for(parent, classification)
        return FileObservation(
            path=str(path),
            relative_path=relative.as_posix(),
            parent_folder=parent,
            file_type=classification.file_type,
            base_name=grouping.base_name,
            version=classification.version_token,
            version_number=classification.version_number,
            folder=grouping.folder,
            shot_group=grouping.shot_group,
            last_modified=datetime.fromtimestamp(mtime, tz=timezone.utc),
        )

    def _warn(self, path: Path, exc: OSError) -> None:
        message = exc.strerror or exc.__class__.__name__
        LOGGER.warning("Could not read %s: %s", path, message)
        self.walk_warnings.append(ScanWarning(path=str(path), message=message))


@dataclass(slots=True)
class PathDelta:
    """Incremental change computed for a set of touched paths."""

    added: list[FileObservation] = field(default_factory=list)
    updated: list[FileObservation] = field(default_factory=list)
    removed_paths: list[str] = field(default_factory=list)


def diff_paths(view: GroupedIndexView, scanner: DirectoryScanner, paths: Iterable[Path]) -> PathDelta:
    """Compare the on-disk state of ``paths`` with the records of ``view``.

    Each path is re-observed: a directory is walked, a file is classified, and
    a missing path observes nothing. Records at or below a touched path that
    were not observed again are removed, so the result only depends on the
    current filesystem state and not on the order events arrived in.
    """
    fresh: dict[str, FileObservation] = {}
    in_scope: set[str] = set()
    for path in paths:
        in_scope.update(record.path for record in view.under(str(path)))
        try:
            info = os.lstat(path)
        except OSError:
            continue
        if stat.S_ISDIR(info.st_mode):
            for observation in scanner.walk_subtree(path):
                fresh[observation.path] = observation
        else:
            observation = scanner.observe(path)
            if observation is not None:
                fresh[observation.path] = observation

    delta = PathDelta()
    for key in sorted(fresh):
        if view.by_path(key) is None:
            delta.added.append(fresh[key])
        else:
            delta.updated.append(fresh[key])
    delta.removed_paths = sorted(in_scope - fresh.keys())
    return delta


__all__ = [
    "WHOLE_ROOT_MARKERS",
    "resolve_scan_dirs",
    "DirectoryScanner",
    "PathDelta",
    "diff_paths",
]
