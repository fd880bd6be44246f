"""Serialized, coalescing project scans that reconcile into the index store."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path

from vfxcat.errors import InvalidRoot, ScanCancelled
from vfxcat.index.models import ChangeSet, FileObservation, ScanConfig, ScanWarning
from vfxcat.index.store import IndexStore

from .discovery import DirectoryScanner

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ScanOutcome:
    """Result of one reconciled project scan.

    Attributes:
        project_id: Scanned project.
        root: Resolved project root.
        config: Filters the scan ran with.
        observations: Every file the walk classified, sorted by path.
        warnings: Directories that could not be read completely.
        changes: Record ids added, updated, and removed by reconciliation.
        duration_seconds: Wall time spent walking and reconciling.
    """

    project_id: str
    root: Path
    config: ScanConfig
    observations: list[FileObservation]
    warnings: list[ScanWarning]
    changes: ChangeSet
    duration_seconds: float = 0.0

    @property
    def record_count(self) -> int:
        return len(self.observations)


@dataclass(slots=True)
class _InflightScan:
    """Bookkeeping for a scan other requests may wait on."""

    root: Path
    config: ScanConfig
    done: threading.Event = field(default_factory=threading.Event)
    cancel: threading.Event = field(default_factory=threading.Event)
    outcome: ScanOutcome | None = None
    error: BaseException | None = None

    def result(self, project_id: str) -> ScanOutcome:
        """Return the finished scan's outcome or re-raise its error.

        Raises:
            ScanCancelled: If the scan finished without producing an outcome.
        """
        if self.error is not None:
            raise self.error
        if self.outcome is None:
            raise ScanCancelled(f"Scan of project {project_id} finished without a result.")
        return self.outcome


def resolve_root(root: str | Path) -> Path:
    """Return the resolved project root.

    Raises:
        InvalidRoot: If the path is missing or is not a directory.
    """
    candidate = Path(root).expanduser()
    if not candidate.exists():
        raise InvalidRoot(f"Project root does not exist: {candidate}")
    if not candidate.is_dir():
        raise InvalidRoot(f"Project root is not a directory: {candidate}")
    return candidate.resolve()


class ProjectScanner:
    """Run full scans and reconcile them into an :class:`IndexStore`.

    A scan holds the project's mutation lock from the start of the walk until
    reconciliation completes, so watch deltas for the same project wait for
    it. A request that arrives while an identical scan of the same project is
    running waits for that scan and returns its outcome.
    """

    def __init__(self, store: IndexStore) -> None:
        self._store = store
        self._lock = threading.Lock()
        self._inflight: dict[str, _InflightScan] = {}

    def scan(self, project_id: str, root: str | Path, config: ScanConfig) -> ScanOutcome:
        """Scan ``root`` and reconcile the result into the project's index.

        Raises:
            InvalidRoot: If the root is missing or not a directory.
            ScanCancelled: If the scan was cancelled before reconciliation.
        """
        root_path = resolve_root(root)
        while True:
            with self._lock:
                running = self._inflight.get(project_id)
                if running is None:
                    ticket = _InflightScan(root=root_path, config=config)
                    self._inflight[project_id] = ticket
                    break
            running.done.wait()
            if running.root == root_path and running.config == config:
                LOGGER.debug("Reusing in-flight scan result for project %s", project_id)
                return running.result(project_id)

        try:
            ticket.outcome = self._run(project_id, ticket)
            return ticket.outcome
        except BaseException as exc:
            ticket.error = exc
            raise
        finally:
            with self._lock:
                if self._inflight.get(project_id) is ticket:
                    del self._inflight[project_id]
            ticket.done.set()

    def cancel(self, project_id: str) -> bool:
        """Ask the in-flight scan of ``project_id`` to stop.

        Returns:
            bool: ``True`` when a scan was running.
        """
        with self._lock:
            running = self._inflight.get(project_id)
        if running is None:
            return False
        running.cancel.set()
        LOGGER.info("Cancelling scan of project %s", project_id)
        return True

    def is_scanning(self, project_id: str) -> bool:
        with self._lock:
            return project_id in self._inflight

    def _run(self, project_id: str, ticket: _InflightScan) -> ScanOutcome:
        started = time.perf_counter()
        LOGGER.info("Starting scan for project %s at %s", project_id, ticket.root)
        with self._store.mutation(project_id):
            scanner = DirectoryScanner(ticket.root, ticket.config, cancel_event=ticket.cancel)
            observations = scanner.walk()
            if ticket.cancel.is_set():
                raise ScanCancelled(f"Scan of project {project_id} was cancelled.")
            changes = self._store.reconcile(
                project_id, observations, baseline=(ticket.root, ticket.config)
            )

        outcome = ScanOutcome(
            project_id=project_id,
            root=ticket.root,
            config=ticket.config,
            observations=observations,
            warnings=scanner.warnings,
            changes=changes,
            duration_seconds=time.perf_counter() - started,
        )
        LOGGER.info(
            "Scan for project %s found %d files (%d warnings) in %.2fs",
            project_id,
            outcome.record_count,
            len(outcome.warnings),
            outcome.duration_seconds,
        )
        return outcome


__all__ = ["ScanOutcome", "ProjectScanner", "resolve_root"]
