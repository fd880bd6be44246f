"""In-memory, per-project index of file records."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping, Optional, Tuple

from vfxcat.versions import order_versions

from .models import ChangeSet, FileObservation, FileRecord, GroupKey, ScanConfig

LOGGER = logging.getLogger(__name__)

_OBSERVED_FIELDS = frozenset(FileObservation.model_fields)

# Root and filters of the walk a project's index was last reconciled from.
ScanBaseline = Tuple[Path, ScanConfig]


class GroupedIndexView:
    """Immutable snapshot of one project's index.

    Groups map a :class:`GroupKey` to records ordered newest version first;
    the flat map indexes the same records by id. Both are built together and
    never mutated after construction, so a view can be shared across threads.
    """

    __slots__ = ("_project_id", "_records", "_by_path", "_groups")

    def __init__(self, project_id: str, records: Iterable[FileRecord] = ()) -> None:
        ordered = sorted(records, key=lambda record: record.id)
        self._project_id = project_id
        self._records: Mapping[int, FileRecord] = MappingProxyType(
            {record.id: record for record in ordered}
        )
        self._by_path: Mapping[str, FileRecord] = MappingProxyType(
            {record.path: record for record in ordered}
        )
        buckets: dict[GroupKey, list[FileRecord]] = defaultdict(list)
        for record in ordered:
            buckets[record.group_key].append(record)
        self._groups: Mapping[GroupKey, tuple[FileRecord, ...]] = MappingProxyType(
            {
                key: tuple(order_versions(buckets[key]))
                for key in sorted(buckets, key=GroupKey.sort_key)
            }
        )

    @property
    def project_id(self) -> str:
        return self._project_id

    @property
    def groups(self) -> Mapping[GroupKey, tuple[FileRecord, ...]]:
        """Return groups in deterministic key order."""
        return self._groups

    @property
    def records(self) -> Mapping[int, FileRecord]:
        """Return the flat id-to-record map."""
        return self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[FileRecord]:
        for group in self._groups.values():
            yield from group

    def get_group(self, key: GroupKey) -> tuple[FileRecord, ...]:
        """Return the records of ``key``, or an empty tuple."""
        return self._groups.get(key, ())

    def by_path(self, path: str) -> FileRecord | None:
        """Return the record indexed at ``path`` if any."""
        return self._by_path.get(path)

    def paths(self) -> frozenset[str]:
        """Return every indexed absolute path."""
        return frozenset(self._by_path)

    def under(self, path: str) -> list[FileRecord]:
        """Return records at ``path`` or anywhere beneath it."""
        prefix = path.rstrip("/\\")
        found = []
        for candidate, record in self._by_path.items():
            if candidate == prefix or candidate.startswith((prefix + "/", prefix + "\\")):
                found.append(record)
        return found

    def nested(self) -> dict[str, dict[str, dict[str, dict[str, list[FileRecord]]]]]:
        """Return ``type -> folder -> shot group -> base name -> records``."""
        tree: dict[str, dict[str, dict[str, dict[str, list[FileRecord]]]]] = {}
        for key, group in self._groups.items():
            shots = tree.setdefault(key.file_type.value, {}).setdefault(key.folder, {})
            shots.setdefault(key.shot_group, {})[key.base_name] = list(group)
        return tree

    def to_payload(self) -> list[dict[str, Any]]:
        """Return the flat, JSON-ready record list consumed by UIs."""
        return [record.model_dump(mode="json") for record in self]

    def fingerprint(self) -> tuple[tuple[str, tuple[tuple[str, str, str], ...]], ...]:
        """Return the index content without ids or first-seen times.

        Two views with equal fingerprints hold the same groups with the same
        ordered versions, which is how scan and watch results are compared.
        """
        return tuple(
            (
                key.as_string(),
                tuple((r.path, r.version, r.last_modified.isoformat()) for r in group),
            )
            for key, group in self._groups.items()
        )


class _ProjectSlot:
    """Mutable holder for one project's published view."""

    __slots__ = ("lock", "view", "next_id", "baseline")

    def __init__(self, project_id: str) -> None:
        self.lock = threading.RLock()
        self.view = GroupedIndexView(project_id)
        self.next_id = 1
        self.baseline: Optional[ScanBaseline] = None


class IndexStore:
    """Own the index of every project and serialize writers per project.

    Writers hold the project's re-entrant mutation lock, compute a complete
    replacement view, and publish it with a single assignment. Readers take
    the published view without locking.
    """

    def __init__(self) -> None:
        self._slots: dict[str, _ProjectSlot] = {}
        self._registry_lock = threading.Lock()

    def _slot(self, project_id: str) -> _ProjectSlot:
        with self._registry_lock:
            slot = self._slots.get(project_id)
            if slot is None:
                slot = _ProjectSlot(project_id)
                self._slots[project_id] = slot
            return slot

    @contextmanager
    def mutation(self, project_id: str) -> Iterator[None]:
        """Hold the project's mutation lock for a compound read-modify-write."""
        slot = self._slot(project_id)
        with slot.lock:
            yield

    def read(self, project_id: str) -> GroupedIndexView:
        """Return the currently published view (empty for unknown projects)."""
        with self._registry_lock:
            slot = self._slots.get(project_id)
        if slot is None:
            return GroupedIndexView(project_id)
        return slot.view

    def baseline(self, project_id: str) -> Optional[ScanBaseline]:
        """Return the root and filters of the last full reconciliation, if recorded."""
        with self._registry_lock:
            slot = self._slots.get(project_id)
        return None if slot is None else slot.baseline

    def projects(self) -> list[str]:
        """Return ids of projects that hold an index."""
        with self._registry_lock:
            return sorted(self._slots)

    def drop(self, project_id: str) -> None:
        """Discard a project's index once no writer holds it."""
        with self._registry_lock:
            slot = self._slots.get(project_id)
        if slot is None:
            return
        with slot.lock:
            with self._registry_lock:
                if self._slots.get(project_id) is slot:
                    del self._slots[project_id]
        LOGGER.debug("Dropped index for project %s", project_id)

    def reconcile(
        self,
        project_id: str,
        observations: Iterable[FileObservation],
        *,
        baseline: Optional[ScanBaseline] = None,
    ) -> ChangeSet:
        """Replace a project's index with a full snapshot of observations.

        Paths absent from the snapshot are removed, paths whose observed state
        changed are updated in place (keeping id and first-seen time), and new
        paths are inserted. Applying the same snapshot twice changes nothing.

        Args:
            project_id: Project whose index is replaced.
            observations: Every file the walk observed.
            baseline: Root and filters the walk ran with. ``None`` records that
                the snapshot's origin is unknown.
        """
        snapshot = {observation.path: observation for observation in observations}
        slot = self._slot(project_id)
        with slot.lock:
            slot.baseline = baseline
            current = slot.view
            changes = ChangeSet()
            next_id = slot.next_id
            now = datetime.now(timezone.utc)
            records: list[FileRecord] = []

            for path in sorted(snapshot):
                record, next_id = self._merge(
                    project_id, current.by_path(path), snapshot[path], next_id, now, changes
                )
                records.append(record)
            for path in sorted(current.paths() - snapshot.keys()):
                changes.removed.append(current.by_path(path).id)  # type: ignore[union-attr]

            if not changes.empty:
                self._publish(slot, project_id, records, next_id)
        LOGGER.debug(
            "Reconciled project %s: %d added, %d updated, %d removed",
            project_id,
            len(changes.added),
            len(changes.updated),
            len(changes.removed),
        )
        return changes

    def apply_delta(
        self,
        project_id: str,
        added: Iterable[FileObservation] = (),
        updated: Iterable[FileObservation] = (),
        removed_paths: Iterable[str] = (),
    ) -> ChangeSet:
        """Apply an incremental change without a full snapshot.

        Removals are applied before upserts. Adding a path that is already
        indexed updates it, and removing a path that is not indexed is ignored.
        """
        upserts = {observation.path: observation for observation in [*added, *updated]}
        removals = set(removed_paths)
        slot = self._slot(project_id)
        with slot.lock:
            current = slot.view
            changes = ChangeSet()
            next_id = slot.next_id
            now = datetime.now(timezone.utc)
            kept = {record.path: record for record in current.records.values()}

            for path in sorted(removals):
                record = kept.pop(path, None)
                if record is not None:
                    changes.removed.append(record.id)

            for path in sorted(upserts):
                kept[path], next_id = self._merge(
                    project_id, kept.get(path), upserts[path], next_id, now, changes
                )

            if changes.empty:
                return changes
            self._publish(slot, project_id, kept.values(), next_id)
        return changes

    @staticmethod
    def _merge(
        project_id: str,
        previous: FileRecord | None,
        observation: FileObservation,
        next_id: int,
        now: datetime,
        changes: ChangeSet,
    ) -> tuple[FileRecord, int]:
        if previous is None:
            record = FileRecord(
                **observation.model_dump(), id=next_id, project_id=project_id, first_seen=now
            )
            changes.added.append(record.id)
            return record, next_id + 1
        if previous.model_dump(include=_OBSERVED_FIELDS) == observation.model_dump():
            return previous, next_id
        record = FileRecord(
            **observation.model_dump(),
            id=previous.id,
            project_id=project_id,
            first_seen=previous.first_seen,
        )
        changes.updated.append(record.id)
        return record, next_id

    @staticmethod
    def _publish(
        slot: _ProjectSlot, project_id: str, records: Iterable[FileRecord], next_id: int
    ) -> None:
        view = GroupedIndexView(project_id, records)
        slot.next_id = next_id
        slot.view = view


__all__ = ["GroupedIndexView", "IndexStore", "ScanBaseline"]
