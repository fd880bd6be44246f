"""Engine facade exposing scan, index, watch, and version operations."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional

from pydantic import BaseModel, Field
from watchdog.observers import Observer

from vfxcat.config.models import VfxcatConfig
from vfxcat.errors import GroupNotFound
from vfxcat.index.models import ChangeSet, FileRecord, GroupKey, Project, ScanConfig, ScanWarning
from vfxcat.index.store import GroupedIndexView, IndexStore
from vfxcat.matching import FileType
from vfxcat.scanning import ProjectScanner
from vfxcat.state import IndexRepository
from vfxcat.versions import resolve_or_default
from vfxcat.watch import ChangeListener, WatchService, WatchStatus

LOGGER = logging.getLogger(__name__)


class ScanSummary(BaseModel):
    """Result returned to callers of :meth:`IndexEngine.scan`.

    Attributes:
        project_id: Scanned project.
        record_count: Number of records indexed after the scan.
        warnings: Directories that could not be read completely.
        added: Number of records inserted.
        updated: Number of records whose observed state changed.
        removed: Number of records dropped.
        duration_seconds: Wall time of the scan.
    """

    project_id: str
    record_count: int
    warnings: List[ScanWarning] = Field(default_factory=list)
    added: int = 0
    updated: int = 0
    removed: int = 0
    duration_seconds: float = 0.0


class IndexEngine:
    """Own the index store, scanner, and watch service for a set of projects.

    Every operation takes the project id explicitly; the engine keeps no
    module-level state, so independent engines can coexist. Use it as a
    context manager (or call :meth:`shutdown`) to release watch handles.
    """

    def __init__(
        self,
        config: VfxcatConfig | None = None,
        *,
        repository: IndexRepository | None = None,
        observer_factory: Callable[[], Any] = Observer,
        listener: Optional[ChangeListener] = None,
        debounce_override: Optional[float] = None,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Loaded configuration; defaults are used when omitted.
            repository: Index mirror; built from ``config.state`` when omitted
                and persistence is enabled.
            observer_factory: Callable returning a watchdog observer.
            listener: Optional callback receiving watch change sets.
            debounce_override: Optional debounce interval in seconds.
        """
        self._config = config or VfxcatConfig()
        self._store = IndexStore()
        self._scanner = ProjectScanner(self._store)
        self._watcher = WatchService(
            self._store,
            settings=self._config.watch,
            observer_factory=observer_factory,
            listener=self._on_watch_change,
            debounce_override=debounce_override,
        )
        if repository is None and self._config.state.persist:
            repository = IndexRepository(self._config.state.directory)
        self._repository = repository
        self._listeners: list[ChangeListener] = [listener] if listener is not None else []
        self._projects: dict[str, Project] = {}
        self._scan_configs: dict[str, ScanConfig] = {}
        self._lock = threading.Lock()

    def __enter__(self) -> "IndexEngine":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    @property
    def config(self) -> VfxcatConfig:
        return self._config

    @property
    def store(self) -> IndexStore:
        return self._store

    @property
    def repository(self) -> IndexRepository | None:
        return self._repository

    def add_listener(self, listener: ChangeListener) -> None:
        """Register a callback for watch change sets."""
        self._listeners.append(listener)

    def register_project(self, project: Project) -> Project:
        """Record project metadata used when writing the index mirror."""
        with self._lock:
            self._projects[project.id] = project
        return project

    def project(self, project_id: str) -> Project | None:
        with self._lock:
            return self._projects.get(project_id)

    # ------------------------------------------------------------------ #
    # Operations                                                         #
    # ------------------------------------------------------------------ #

    def scan(
        self,
        project_id: str,
        root: str | Path,
        include_patterns: Optional[Iterable[str]] = None,
        exclude_patterns: Optional[Iterable[str]] = None,
        scan_dirs: Optional[Iterable[str]] = None,
    ) -> ScanSummary:
        """Walk ``root`` and reconcile the result into the project's index.

        Filters left as ``None`` fall back to the configured defaults.

        Raises:
            InvalidRoot: If the root is missing or not a directory.
            ScanCancelled: If the project was deleted while scanning.
        """
        defaults = self._config.scan
        config = ScanConfig(
            include_patterns=tuple(defaults.include_patterns if include_patterns is None else include_patterns),
            exclude_patterns=tuple(defaults.exclude_patterns if exclude_patterns is None else exclude_patterns),
            scan_dirs=tuple(defaults.scan_dirs if scan_dirs is None else scan_dirs),
        )
        outcome = self._scanner.scan(project_id, root, config)
        with self._lock:
            self._scan_configs[project_id] = config
            project = self._projects.get(project_id)
            if project is None or project.root != outcome.root:
                project = Project(id=project_id, root=outcome.root)
                self._projects[project_id] = project
        self._persist(project)

        return ScanSummary(
            project_id=project_id,
            record_count=outcome.record_count,
            warnings=outcome.warnings,
            added=len(outcome.changes.added),
            updated=len(outcome.changes.updated),
            removed=len(outcome.changes.removed),
            duration_seconds=outcome.duration_seconds,
        )

    def get_index(self, project_id: str) -> GroupedIndexView:
        """Return the current immutable view of a project's index."""
        return self._store.read(project_id)

    def start_watch(
        self,
        project_id: str,
        root: str | Path,
        scan_dirs: Optional[Iterable[str]] = None,
        include_patterns: Optional[Iterable[str]] = None,
        exclude_patterns: Optional[Iterable[str]] = None,
    ) -> bool:
        """Start keeping a project's index current from filesystem events.

        Filters left as ``None`` reuse the project's last scan filters, then
        the configured defaults.

        Raises:
            WatchSubscriptionFailure: If the subscription cannot be created.
        """
        with self._lock:
            previous = self._scan_configs.get(project_id)
            if project_id not in self._projects:
                self._projects[project_id] = Project(id=project_id, root=Path(root).expanduser())
        defaults = self._config.scan
        config = ScanConfig(
            include_patterns=tuple(
                include_patterns
                if include_patterns is not None
                else (previous.include_patterns if previous else defaults.include_patterns)
            ),
            exclude_patterns=tuple(
                exclude_patterns
                if exclude_patterns is not None
                else (previous.exclude_patterns if previous else defaults.exclude_patterns)
            ),
            scan_dirs=tuple(
                scan_dirs
                if scan_dirs is not None
                else (previous.scan_dirs if previous else defaults.scan_dirs)
            ),
        )
        return self._watcher.start(project_id, root, config)

    def stop_watch(self, project_id: str) -> None:
        """Stop watching a project; safe to call when not watching."""
        self._watcher.stop(project_id)

    def watch_status(self) -> list[WatchStatus]:
        """Return the watch state of every watched project."""
        return self._watcher.status()

    def flush_watch(self, project_id: str) -> ChangeSet:
        """Apply a project's pending watch events without waiting for the debounce window."""
        return self._watcher.flush(project_id)

    def versions(
        self,
        project_id: str,
        file_type: str | FileType,
        folder: str,
        shot_group: str,
        base_name: str,
    ) -> tuple[FileRecord, ...]:
        """Return a group's records ordered newest version first.

        Raises:
            GroupNotFound: If no such group is indexed.
        """
        try:
            key = GroupKey(
                file_type=FileType(file_type),
                folder=folder,
                shot_group=shot_group,
                base_name=base_name,
            )
        except ValueError as exc:
            raise GroupNotFound(f"Unknown file type: {file_type!r}") from exc
        group = self._store.read(project_id).get_group(key)
        if not group:
            raise GroupNotFound(f"No indexed files for {key.as_string()} in project {project_id}.")
        return group

    def resolve_version(
        self,
        project_id: str,
        file_type: str | FileType,
        folder: str,
        shot_group: str,
        base_name: str,
        requested_token: Optional[str] = None,
    ) -> FileRecord:
        """Return the requested version of an artifact, or its current version.

        A token that no longer exists in the group falls back to the default
        version and is logged at INFO level.

        Raises:
            GroupNotFound: If no such group is indexed.
        """
        group = self.versions(project_id, file_type, folder, shot_group, base_name)
        return resolve_or_default(group, requested_token)

    def delete_project(self, project_id: str) -> None:
        """Stop watching, cancel any in-flight scan, and drop a project's index."""
        self._watcher.stop(project_id)
        self._scanner.cancel(project_id)
        self._store.drop(project_id)
        with self._lock:
            self._projects.pop(project_id, None)
            self._scan_configs.pop(project_id, None)
        if self._repository is not None:
            self._repository.delete(project_id)
        LOGGER.info("Deleted project %s from the index", project_id)

    def shutdown(self) -> None:
        """Stop every watch subscription."""
        self._watcher.stop_all()

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #

    def _on_watch_change(self, project_id: str, changes: ChangeSet) -> None:
        project = self.project(project_id)
        if project is not None:
            self._persist(project)
        for listener in list(self._listeners):
            listener(project_id, changes)

    def _persist(self, project: Project) -> None:
        if self._repository is None:
            return
        try:
            self._repository.save(project, self._store.read(project.id))
        except OSError as exc:
            LOGGER.warning("Could not write index mirror for project %s: %s", project.id, exc)


__all__ = ["IndexEngine", "ScanSummary"]
