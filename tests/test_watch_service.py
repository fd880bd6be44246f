"""Tests for the filesystem watch service."""

from __future__ import annotations

import os
import shutil
import time
from pathlib import Path
from typing import Any, Callable

import pytest
from watchdog.events import (
    DirDeletedEvent,
    DirMovedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)
from watchdog.observers.polling import PollingObserver

from vfxcat.config.models import WatchSettings
from vfxcat.errors import WatchSubscriptionFailure
from vfxcat.index import ChangeSet, IndexStore, ScanConfig
from vfxcat.scanning import ProjectScanner
from vfxcat.watch import WatchService

_CONFIG = ScanConfig(include_patterns=("*.nk", "*.aep"))


class _FakeObserver:
    """Observer stand-in that records calls and exposes the scheduled handler."""

    def __init__(self, *, fail_schedule: bool = False) -> None:
        self.fail_schedule = fail_schedule
        self.handler: Any = None
        self.scheduled: list[tuple[str, bool]] = []
        self.started = False
        self.stopped = False
        self.joined = False

    def schedule(self, handler: Any, path: str, recursive: bool = False) -> None:
        if self.fail_schedule:
            raise OSError("inotify watch limit reached")
        self.handler = handler
        self.scheduled.append((path, recursive))

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    def join(self, timeout: float | None = None) -> None:
        self.joined = True


class _ObserverFactory:
    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.created: list[_FakeObserver] = []

    def __call__(self) -> _FakeObserver:
        observer = _FakeObserver(**self.kwargs)
        self.created.append(observer)
        return observer


def _touch(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("placeholder", encoding="utf-8")
    return path


def _project(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    _touch(root / "comp" / "nuke" / "BALA_shot010_comp_v001.nk")
    _touch(root / "comp" / "nuke" / "BALA_shot010_comp_v002.nk")
    _touch(root / "ae" / "BALA_title_v01.aep")
    return root.resolve()


def _wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll ``predicate`` until it holds or ``timeout`` elapses.

    Args:
        predicate: Condition to evaluate.
        timeout: Maximum number of seconds to wait.

    Returns:
        bool: Final value of the predicate.
    """
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def _fresh_fingerprint(root: Path) -> Any:
    store = IndexStore()
    ProjectScanner(store).scan("fresh", root, _CONFIG)
    return store.read("fresh").fingerprint()


def _watched(
    tmp_path: Path, **settings: Any
) -> tuple[Path, IndexStore, WatchService, _ObserverFactory]:
    root = _project(tmp_path)
    store = IndexStore()
    ProjectScanner(store).scan("demo", root, _CONFIG)
    factory = _ObserverFactory()
    service = WatchService(
        store,
        settings=WatchSettings(debounce_seconds=0.05, **settings),
        observer_factory=factory,
    )
    assert service.start("demo", root, _CONFIG) is True
    return root, store, service, factory


def test_start_is_idempotent_and_reports_status(tmp_path: Path) -> None:
    root, _, service, factory = _watched(tmp_path)
    try:
        assert service.start("demo", root, _CONFIG) is True
        assert len(factory.created) == 1
        observer = factory.created[0]
        assert observer.started
        assert observer.scheduled == [(str(root), True)]
        (status,) = service.status()
        assert status.project_id == "demo"
        assert status.is_watching
        assert status.path == str(root)
    finally:
        service.stop_all()


def test_stop_releases_observer_and_is_a_noop_when_idle(tmp_path: Path) -> None:
    _, _, service, factory = _watched(tmp_path)

    service.stop("demo")
    service.stop("demo")
    service.stop("never-started")

    observer = factory.created[0]
    assert observer.stopped
    assert observer.joined
    assert not service.is_watching("demo")
    assert service.status() == []


def test_start_failures_raise(tmp_path: Path) -> None:
    store = IndexStore()
    root = _project(tmp_path)
    failing = _ObserverFactory(fail_schedule=True)

    with pytest.raises(WatchSubscriptionFailure):
        WatchService(store, observer_factory=_ObserverFactory()).start("demo", tmp_path / "missing", _CONFIG)
    with pytest.raises(WatchSubscriptionFailure):
        WatchService(store, observer_factory=_ObserverFactory()).start(
            "demo", root, ScanConfig(scan_dirs=("renders",))
        )
    service = WatchService(store, observer_factory=failing)
    with pytest.raises(WatchSubscriptionFailure):
        service.start("demo", root, _CONFIG)

    assert failing.created[0].stopped
    assert not service.is_watching("demo")


def test_created_and_modified_files_are_indexed(tmp_path: Path) -> None:
    root, store, service, factory = _watched(tmp_path)
    handler = factory.created[0].handler
    try:
        new_file = _touch(root / "comp" / "nuke" / "BALA_shot010_comp_v003.nk")
        handler.dispatch(FileCreatedEvent(str(new_file)))
        assert _wait_until(lambda: store.read("demo").by_path(str(new_file)) is not None)

        before = store.read("demo").by_path(str(new_file))
        os.utime(new_file, (time.time() + 120, time.time() + 120))
        handler.dispatch(FileModifiedEvent(str(new_file)))
        assert _wait_until(
            lambda: store.read("demo").by_path(str(new_file)).last_modified > before.last_modified
        )
        after = store.read("demo").by_path(str(new_file))
        assert after.id == before.id
        assert after.first_seen == before.first_seen
    finally:
        service.stop_all()


def test_deleted_files_and_directories_are_removed(tmp_path: Path) -> None:
    root, store, service, factory = _watched(tmp_path)
    handler = factory.created[0].handler
    try:
        target = root / "ae" / "BALA_title_v01.aep"
        target.unlink()
        handler.dispatch(FileDeletedEvent(str(target)))
        assert _wait_until(lambda: store.read("demo").by_path(str(target)) is None)

        shutil.rmtree(root / "comp")
        handler.dispatch(DirDeletedEvent(str(root / "comp")))
        assert _wait_until(lambda: len(store.read("demo")) == 0)
    finally:
        service.stop_all()


@pytest.mark.parametrize("remove_first", [True, False])
def test_rename_converges_in_either_event_order(tmp_path: Path, remove_first: bool) -> None:
    """A rename reaches the same index whichever half of it arrives first.

    Args:
        tmp_path: Temporary directory provided by pytest.
        remove_first: Whether the delete event precedes the create event.
    """
    root, store, service, factory = _watched(tmp_path)
    handler = factory.created[0].handler
    try:
        source = root / "comp" / "nuke" / "BALA_shot010_comp_v002.nk"
        destination = root / "comp" / "nuke" / "BALA_shot020_comp_v002.nk"
        source.rename(destination)
        events = [FileDeletedEvent(str(source)), FileCreatedEvent(str(destination))]
        if not remove_first:
            events.reverse()
        for event in events:
            handler.dispatch(event)

        expected = _fresh_fingerprint(root)
        assert _wait_until(lambda: store.read("demo").fingerprint() == expected)
    finally:
        service.stop_all()


def test_moves_converge_with_a_fresh_scan(tmp_path: Path) -> None:
    root, store, service, factory = _watched(tmp_path)
    handler = factory.created[0].handler
    try:
        file_source = root / "comp" / "nuke" / "BALA_shot010_comp_v001.nk"
        file_destination = root / "BALA_shot010_comp_v001.nk"
        file_source.rename(file_destination)
        handler.dispatch(FileMovedEvent(str(file_source), str(file_destination)))

        (root / "ae").rename(root / "ae_archive")
        handler.dispatch(DirMovedEvent(str(root / "ae"), str(root / "ae_archive")))

        _touch(root / "ae_archive" / "BALA_title_v02.aep")
        handler.dispatch(FileCreatedEvent(str(root / "ae_archive" / "BALA_title_v02.aep")))

        expected = _fresh_fingerprint(root)
        assert _wait_until(lambda: store.read("demo").fingerprint() == expected)
        folders = {record.folder for record in store.read("demo")}
        assert folders == {"Root", "comp", "ae_archive"}
    finally:
        service.stop_all()


def test_events_outside_filters_are_ignored(tmp_path: Path) -> None:
    root, store, service, factory = _watched(tmp_path)
    handler = factory.created[0].handler
    try:
        notes = _touch(root / "comp" / "notes.txt")
        handler.dispatch(FileCreatedEvent(str(notes)))
        outside = _touch(tmp_path / "elsewhere" / "BALA_x_v001.nk")
        handler.dispatch(FileCreatedEvent(str(outside)))
        marker = _touch(root / "comp" / "BALA_marker_v001.nk")
        handler.dispatch(FileCreatedEvent(str(marker)))

        assert _wait_until(lambda: store.read("demo").by_path(str(marker)) is not None)
        paths = store.read("demo").paths()
        assert str(notes) not in paths
        assert str(outside) not in paths
    finally:
        service.stop_all()


def test_queue_overflow_triggers_full_resync(tmp_path: Path) -> None:
    root, store, service, factory = _watched(tmp_path, queue_size=1)
    handler = factory.created[0].handler
    try:
        first = _touch(root / "comp" / "BALA_a_v001.nk")
        second = _touch(root / "comp" / "BALA_b_v001.nk")
        third = _touch(root / "comp" / "BALA_c_v001.nk")
        silent = _touch(root / "comp" / "BALA_silent_v001.nk")

        with store.mutation("demo"):
            handler.dispatch(FileCreatedEvent(str(first)))
            time.sleep(0.3)
            handler.dispatch(FileCreatedEvent(str(second)))
            handler.dispatch(FileCreatedEvent(str(third)))

        assert _wait_until(lambda: store.read("demo").by_path(str(silent)) is not None)
        expected = _fresh_fingerprint(root)
        assert _wait_until(lambda: store.read("demo").fingerprint() == expected)
    finally:
        service.stop_all()


def test_flush_applies_pending_events_immediately(tmp_path: Path) -> None:
    root = _project(tmp_path)
    store = IndexStore()
    factory = _ObserverFactory()
    service = WatchService(store, observer_factory=factory, debounce_override=30.0)
    service.start("demo", root, _CONFIG)
    try:
        new_file = _touch(root / "comp" / "BALA_flush_v001.nk")
        factory.created[0].handler.dispatch(FileCreatedEvent(str(new_file)))

        changes = service.flush("demo")

        assert len(changes.added) == 1
        assert store.read("demo").by_path(str(new_file)) is not None
        assert store.read("demo").fingerprint() == _fresh_fingerprint(root)
        assert service.flush("demo").empty
        assert service.flush("unknown").empty
    finally:
        service.stop_all()


def test_watch_without_prior_scan_indexes_existing_files(tmp_path: Path) -> None:
    root = _project(tmp_path)
    store = IndexStore()
    factory = _ObserverFactory()
    service = WatchService(
        store, settings=WatchSettings(debounce_seconds=0.05), observer_factory=factory
    )
    service.start("demo", root, _CONFIG)
    try:
        assert len(store.read("demo")) == 3
        new_file = _touch(root / "comp" / "nuke" / "BALA_shot010_comp_v003.nk")
        factory.created[0].handler.dispatch(FileCreatedEvent(str(new_file)))

        expected = _fresh_fingerprint(root)
        assert _wait_until(lambda: store.read("demo").fingerprint() == expected)
        assert len(store.read("demo")) == 4
    finally:
        service.stop_all()


def test_watch_with_different_filters_rebuilds_index(tmp_path: Path) -> None:
    root = _project(tmp_path)
    store = IndexStore()
    ProjectScanner(store).scan("demo", root, _CONFIG)
    aep_only = ScanConfig(include_patterns=("*.aep",))
    factory = _ObserverFactory()
    service = WatchService(
        store, settings=WatchSettings(debounce_seconds=0.05), observer_factory=factory
    )
    service.start("demo", root, aep_only)
    try:
        assert {record.file_type.value for record in store.read("demo")} == {"aep"}
        assert store.baseline("demo") == (root, aep_only)

        new_file = _touch(root / "ae" / "BALA_title_v02.aep")
        factory.created[0].handler.dispatch(FileCreatedEvent(str(new_file)))

        fresh = IndexStore()
        ProjectScanner(fresh).scan("fresh", root, aep_only)
        expected = fresh.read("fresh").fingerprint()
        assert _wait_until(lambda: store.read("demo").fingerprint() == expected)
    finally:
        service.stop_all()


def test_watch_after_matching_scan_keeps_existing_records(tmp_path: Path) -> None:
    received: list[ChangeSet] = []
    root = _project(tmp_path)
    store = IndexStore()
    ProjectScanner(store).scan("demo", root, _CONFIG)
    before = store.read("demo")
    service = WatchService(
        store,
        observer_factory=_ObserverFactory(),
        listener=lambda _project_id, changes: received.append(changes),
    )
    service.start("demo", root, _CONFIG)
    try:
        assert store.read("demo") is before
        assert received == []
    finally:
        service.stop_all()


def test_listener_receives_change_sets(tmp_path: Path) -> None:
    root = _project(tmp_path)
    store = IndexStore()
    received: list[tuple[str, ChangeSet]] = []
    factory = _ObserverFactory()
    service = WatchService(
        store,
        settings=WatchSettings(debounce_seconds=0.05),
        observer_factory=factory,
        listener=lambda project_id, changes: received.append((project_id, changes)),
    )
    service.start("demo", root, _CONFIG)
    try:
        # The walk that precedes watching reports the existing files.
        assert len(received) == 1
        assert len(received[0][1].added) == 3

        new_file = _touch(root / "comp" / "BALA_listen_v001.nk")
        factory.created[0].handler.dispatch(FileCreatedEvent(str(new_file)))
        assert _wait_until(lambda: len(received) == 2)
        project_id, changes = received[1]
        assert project_id == "demo"
        assert changes.added == [store.read("demo").by_path(str(new_file)).id]
    finally:
        service.stop_all()


class _ManualClock:
    """Monotonic clock that only moves when a test advances it."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _debounced(
    tmp_path: Path, received: list[ChangeSet]
) -> tuple[Path, IndexStore, WatchService, _ManualClock, Any]:
    root = tmp_path / "project"
    root.mkdir()
    root = root.resolve()
    store = IndexStore()
    clock = _ManualClock()
    factory = _ObserverFactory()
    service = WatchService(
        store,
        settings=WatchSettings(debounce_seconds=0.3),
        observer_factory=factory,
        listener=lambda _project_id, changes: received.append(changes),
        clock=clock,
    )
    service.start("demo", root, _CONFIG)
    return root, store, service, clock, factory.created[0].handler


def test_event_waits_for_its_debounce_window(tmp_path: Path) -> None:
    received: list[ChangeSet] = []
    root, store, service, clock, handler = _debounced(tmp_path, received)
    try:
        new_file = _touch(root / "comp" / "BALA_wait_v001.nk")
        handler.dispatch(FileCreatedEvent(str(new_file)))
        clock.advance(0.29)
        time.sleep(0.4)

        assert store.read("demo").by_path(str(new_file)) is None
        assert received == []

        clock.advance(0.02)
        assert _wait_until(lambda: store.read("demo").by_path(str(new_file)) is not None)
    finally:
        service.stop_all()


def test_burst_of_writes_is_applied_once(tmp_path: Path) -> None:
    received: list[ChangeSet] = []
    root, store, service, clock, handler = _debounced(tmp_path, received)
    try:
        target = _touch(root / "comp" / "BALA_burst_v001.nk")
        for _ in range(10):
            handler.dispatch(FileModifiedEvent(str(target)))
            clock.advance(0.05)
        time.sleep(0.4)

        # Each event restarted the window, so nothing is due yet.
        assert received == []

        clock.advance(0.3)
        assert _wait_until(lambda: bool(received))
        assert service.flush("demo").empty
        assert len(received) == 1
        assert len(received[0].added) == 1
        assert store.read("demo").by_path(str(target)) is not None
    finally:
        service.stop_all()


@pytest.mark.integration
def test_polling_observer_keeps_index_current(tmp_path: Path) -> None:
    root = _project(tmp_path)
    store = IndexStore()
    ProjectScanner(store).scan("demo", root, _CONFIG)
    service = WatchService(
        store,
        settings=WatchSettings(debounce_seconds=0.05),
        observer_factory=lambda: PollingObserver(timeout=0.1),
    )
    service.start("demo", root, _CONFIG)
    try:
        created = _touch(root / "comp" / "nuke" / "BALA_shot010_comp_v003.nk")
        (root / "ae" / "BALA_title_v01.aep").unlink()

        expected = _fresh_fingerprint(root)
        assert _wait_until(lambda: store.read("demo").fingerprint() == expected, timeout=10.0)
        assert store.read("demo").by_path(str(created)) is not None
    finally:
        service.stop_all()
    assert service.status() == []
