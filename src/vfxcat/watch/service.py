"""Filesystem watch service that keeps project indexes current."""

from __future__ import annotations

import logging
import os
import queue
import threading
import time
from pathlib import Path
from typing import Any, Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from vfxcat.config.models import WatchSettings
from vfxcat.errors import WatchSubscriptionFailure
from vfxcat.index.models import ChangeSet, ScanConfig
from vfxcat.index.store import IndexStore, ScanBaseline
from vfxcat.scanning.discovery import DirectoryScanner, diff_paths

from .models import WatchStatus

LOGGER = logging.getLogger(__name__)

ChangeListener = Callable[[str, ChangeSet], None]

_IDLE_POLL_SECONDS = 0.25


class _ProjectSubscription:
    """One project's observer, bounded event queue, and processing thread.

    Paths stamped with their arrival time flow from the observer thread into
    the queue. The processing thread debounces them per path and applies each
    batch of due paths to the index store as a single delta, in the order the
    paths last arrived.
    """

    def __init__(
        self,
        project_id: str,
        scanner: DirectoryScanner,
        store: IndexStore,
        observer: Any,
        *,
        debounce_seconds: float,
        queue_size: int,
        error_backoff_seconds: float,
        listener: Optional[ChangeListener] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.project_id = project_id
        self.scanner = scanner
        self._store = store
        self._observer = observer
        self._debounce = debounce_seconds
        self._backoff = max(0.0, error_backoff_seconds)
        self._listener = listener
        self._clock = clock
        self._queue: queue.Queue[tuple[Path, float] | None] = queue.Queue(maxsize=queue_size)
        self._overflow = threading.Event()
        self._stop_event = threading.Event()
        self._pending: dict[Path, float] = {}
        self._pending_lock = threading.Lock()
        self._intake_lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._thread = threading.Thread(
            target=self._run_loop, name=f"vfxcat-watch-{project_id}", daemon=True
        )
        self._observer_started = False

    @property
    def root(self) -> Path:
        return self.scanner.root

    def schedule(self, handler: FileSystemEventHandler) -> None:
        """Register ``handler`` for every scanned directory."""
        for directory in self.scanner.directories:
            self._observer.schedule(handler, str(directory), recursive=True)

    def start(self) -> None:
        self._observer.start()
        self._observer_started = True
        self._thread.start()

    def stop(self, timeout: float) -> None:
        """Stop the observer and the processing thread, releasing watch handles."""
        self._stop_event.set()
        try:
            self._observer.stop()
            if self._observer_started:
                self._observer.join(timeout)
        finally:
            try:
                self._queue.put_nowait(None)
            except queue.Full:
                pass
            if self._thread.is_alive():
                self._thread.join(timeout)

    def enqueue(self, path: Path) -> None:
        """Queue a touched path stamped with its arrival time.

        A full queue schedules a full resync instead.
        """
        if self._stop_event.is_set():
            return
        try:
            self._queue.put_nowait((path, self._clock()))
        except queue.Full:
            if not self._overflow.is_set():
                LOGGER.warning(
                    "Watch queue for project %s is full; scheduling a full resync.", self.project_id
                )
            self._overflow.set()

    def process_pending(self, *, force: bool = False) -> ChangeSet:
        """Drain queued paths and apply those whose debounce window elapsed.

        Args:
            force: Apply every pending path regardless of its deadline.

        Returns:
            ChangeSet: Changes applied by this call.
        """
        with self._intake_lock:
            now = self._clock()
            self._drain()
        return self._flush(force=force, now=now)

    def _note(self, item: tuple[Path, float]) -> None:
        path, arrived = item
        with self._pending_lock:
            self._pending.pop(path, None)
            self._pending[path] = arrived + self._debounce

    def _drain(self) -> None:
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return
            if item is not None:
                self._note(item)

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            timeout = _IDLE_POLL_SECONDS
            with self._pending_lock:
                next_deadline = min(self._pending.values(), default=None)
            if next_deadline is not None:
                timeout = min(timeout, max(0.0, next_deadline - self._clock()))
            if self._overflow.is_set():
                timeout = 0.0

            # Held from dequeue to pending so a caller-thread flush sees every event.
            with self._intake_lock:
                try:
                    item = self._queue.get(timeout=timeout)
                except queue.Empty:
                    item = None
                # Anything that arrived before ``now`` is already queued, so a
                # path is never applied while a newer event for it waits.
                now = self._clock()
                if item is not None:
                    self._note(item)
                self._drain()

            try:
                self._flush(force=False, now=now)
            except Exception as exc:  # pragma: no cover - keep the watch thread alive
                LOGGER.exception("Failed to apply watch events for project %s: %s", self.project_id, exc)
                self._stop_event.wait(self._backoff)

    def _flush(self, *, force: bool, now: float) -> ChangeSet:
        # Caller-thread flushes and the processing thread take turns.
        with self._flush_lock:
            return self._flush_due(force=force, now=now)

    def _flush_due(self, *, force: bool, now: float) -> ChangeSet:
        if self._overflow.is_set():
            self._overflow.clear()
            with self._pending_lock:
                self._pending.clear()
            return self._resync()

        with self._pending_lock:
            due = [path for path, deadline in self._pending.items() if force or deadline <= now]
            for path in due:
                del self._pending[path]
        if not due:
            return ChangeSet()
        try:
            return self._apply(due)
        except Exception:
            retry_at = self._clock() + self._backoff
            with self._pending_lock:
                for path in due:
                    self._pending.setdefault(path, retry_at)
            raise

    def _apply(self, paths: list[Path]) -> ChangeSet:
        with self._store.mutation(self.project_id):
            delta = diff_paths(self._store.read(self.project_id), self.scanner, paths)
            changes = self._store.apply_delta(
                self.project_id,
                added=delta.added,
                updated=delta.updated,
                removed_paths=delta.removed_paths,
            )
        self._notify(changes, trigger_count=len(paths))
        return changes

    def establish_baseline(self) -> ChangeSet:
        """Reconcile a full walk unless the index already reflects this watch's filters.

        Events only touch the paths they name, so the index must match a full
        walk with the watch's root and filters before deltas are applied to it.

        Returns:
            ChangeSet: Changes made by the walk, empty when none was needed.
        """
        with self._store.mutation(self.project_id):
            if self._store.baseline(self.project_id) == self._baseline:
                return ChangeSet()
            LOGGER.info("Reconciling project %s before watching", self.project_id)
            return self._resync()

    @property
    def _baseline(self) -> ScanBaseline:
        return (self.scanner.root, self.scanner.config)

    def _resync(self) -> ChangeSet:
        with self._store.mutation(self.project_id):
            changes = self._store.reconcile(
                self.project_id, self.scanner.walk(), baseline=self._baseline
            )
        self._notify(changes, trigger_count=0)
        return changes

    def _notify(self, changes: ChangeSet, *, trigger_count: int) -> None:
        if changes.empty:
            return
        LOGGER.info(
            "Watch update for project %s: %d added, %d updated, %d removed (%d paths)",
            self.project_id,
            len(changes.added),
            len(changes.updated),
            len(changes.removed),
            trigger_count,
        )
        if self._listener is not None:
            self._listener(self.project_id, changes)


class WatchService:
    """Manage independent filesystem subscriptions, one per project."""

    def __init__(
        self,
        store: IndexStore,
        *,
        settings: WatchSettings | None = None,
        observer_factory: Callable[[], Any] = Observer,
        listener: Optional[ChangeListener] = None,
        debounce_override: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the watch service.

        Args:
            store: Index store that receives incremental updates.
            settings: Watch settings; defaults are used when omitted.
            observer_factory: Callable returning a watchdog-compatible observer.
            listener: Optional callback invoked with each non-empty change set.
            debounce_override: Optional debounce interval overriding ``settings``.
            clock: Monotonic time source used for debounce deadlines.
        """
        self._store = store
        self._clock = clock
        self._settings = settings or WatchSettings()
        self._observer_factory = observer_factory
        self._listener = listener
        self._debounce_seconds = (
            debounce_override if debounce_override is not None else self._settings.debounce_seconds
        )
        self._subscriptions: dict[str, _ProjectSubscription] = {}
        self._lock = threading.Lock()

    @property
    def debounce_seconds(self) -> float:
        return self._debounce_seconds

    def start(self, project_id: str, root: str | Path, config: ScanConfig) -> bool:
        """Begin watching a project's scanned directories.

        Returns:
            bool: ``True`` once watching, including when already watching.

        Raises:
            WatchSubscriptionFailure: If the root or every scan directory is
                missing, or the OS refuses the subscription.
        """
        with self._lock:
            if project_id in self._subscriptions:
                return True

            root_path = Path(root).expanduser()
            if not root_path.is_dir():
                raise WatchSubscriptionFailure(f"Cannot watch missing project root: {root_path}")
            scanner = DirectoryScanner(root_path.resolve(), config)
            if not scanner.directories:
                raise WatchSubscriptionFailure(
                    f"None of the scan directories exist under {root_path}: {list(config.scan_dirs)}"
                )

            subscription = _ProjectSubscription(
                project_id,
                scanner,
                self._store,
                self._observer_factory(),
                debounce_seconds=self._debounce_seconds,
                queue_size=self._settings.queue_size,
                error_backoff_seconds=self._settings.error_backoff_seconds,
                listener=self._listener,
                clock=self._clock,
            )
            try:
                subscription.schedule(_ProjectEventHandler(subscription))
                subscription.start()
            except OSError as exc:
                subscription.stop(self._settings.stop_timeout_seconds)
                raise WatchSubscriptionFailure(
                    f"Could not watch project {project_id} at {root_path}: {exc}"
                ) from exc

            self._subscriptions[project_id] = subscription
        LOGGER.info(
            "Watching project %s (%d directories)", project_id, len(scanner.directories)
        )
        # Events queued meanwhile are re-observed afterwards, so the walk may
        # run after the observer has started.
        subscription.establish_baseline()
        return True

    def stop(self, project_id: str) -> None:
        """Stop watching ``project_id``; a no-op when it is not watched."""
        with self._lock:
            subscription = self._subscriptions.pop(project_id, None)
        if subscription is None:
            return
        subscription.stop(self._settings.stop_timeout_seconds)
        LOGGER.info("Stopped watching project %s", project_id)

    def stop_all(self) -> None:
        """Stop every active subscription."""
        with self._lock:
            project_ids = list(self._subscriptions)
        for project_id in project_ids:
            self.stop(project_id)

    def is_watching(self, project_id: str) -> bool:
        with self._lock:
            return project_id in self._subscriptions

    def status(self) -> list[WatchStatus]:
        """Return the watch state of every subscribed project."""
        with self._lock:
            return [
                WatchStatus(project_id=project_id, is_watching=True, path=str(subscription.root))
                for project_id, subscription in sorted(self._subscriptions.items())
            ]

    def flush(self, project_id: str) -> ChangeSet:
        """Apply every pending event of ``project_id`` immediately.

        Returns:
            ChangeSet: Changes applied, empty when nothing was pending.
        """
        with self._lock:
            subscription = self._subscriptions.get(project_id)
        if subscription is None:
            return ChangeSet()
        return subscription.process_pending(force=True)


class _ProjectEventHandler(FileSystemEventHandler):
    """Forward filesystem events into a project subscription."""

    def __init__(self, subscription: _ProjectSubscription) -> None:
        self._subscription = subscription

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle a filesystem create event."""
        self._enqueue(event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle a filesystem modify event."""
        # Directory mtime changes are followed by events for the entries themselves.
        if event.is_directory:
            return
        self._enqueue(event.src_path)

    def on_closed(self, event: FileSystemEvent) -> None:
        """Handle a file closed after writing."""
        self._enqueue(event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        """Handle a filesystem delete event."""
        self._enqueue(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        """Handle a move as a removal at the source and an addition at the destination."""
        self._enqueue(event.src_path)
        self._enqueue(event.dest_path)

    def _enqueue(self, raw_path: str | bytes) -> None:
        if not raw_path:
            return
        self._subscription.enqueue(Path(os.fsdecode(raw_path)))


__all__ = ["WatchService", "ChangeListener"]
