"""JSON mirror of project indexes for inspection between runs.

The mirror is written after scans and watch updates but is never used to
seed the in-memory index: a restarted process rebuilds the index by scanning.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path

from vfxcat.index.models import Project
from vfxcat.index.store import GroupedIndexView

from .errors import MissingIndexError, StateError
from .models import PersistedIndex

LOGGER = logging.getLogger(__name__)

DEFAULT_STATE_DIR = Path("~/.vfxcat/state")

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class IndexRepository:
    """Persist and load per-project index mirrors."""

    def __init__(self, directory: Path | str = DEFAULT_STATE_DIR) -> None:
        """Initialize the repository.

        Args:
            directory: Directory that holds one JSON file per project.
        """
        self._directory = Path(directory).expanduser()

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, project_id: str) -> Path:
        """Return the mirror file used for ``project_id``."""
        safe = _UNSAFE_CHARS.sub("_", project_id).strip("._") or "project"
        return self._directory / f"{safe}.json"

    def save(self, project: Project, view: GroupedIndexView) -> Path:
        """Write the mirror for ``project`` from the given view.

        Returns:
            Path: File the mirror was written to.
        """
        snapshot = PersistedIndex(project=project, records=list(view))
        path = self.path_for(project.id)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(
            json.dumps(snapshot.model_dump(mode="json"), indent=2), encoding="utf-8"
        )
        tmp_path.replace(path)
        LOGGER.debug("Wrote index mirror for project %s to %s", project.id, path)
        return path

    def load(self, project_id: str) -> PersistedIndex:
        """Load the mirror written for ``project_id``.

        Raises:
            MissingIndexError: If no mirror exists.
            StateError: If the mirror cannot be parsed.
        """
        path = self.path_for(project_id)
        if not path.exists():
            raise MissingIndexError(f"No index mirror found at {path}")
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise StateError(f"Invalid index mirror data: {exc}") from exc
        try:
            return PersistedIndex.model_validate(data)
        except ValueError as exc:
            raise StateError(f"Index mirror does not match the expected schema: {exc}") from exc

    def delete(self, project_id: str) -> bool:
        """Remove the mirror for ``project_id``; returns whether one existed."""
        path = self.path_for(project_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def age(self, snapshot: PersistedIndex) -> float:
        """Return how many seconds ago ``snapshot`` was written."""
        return (datetime.now(timezone.utc) - snapshot.saved_at).total_seconds()


__all__ = [
    "IndexRepository",
    "DEFAULT_STATE_DIR",
    "PersistedIndex",
    "StateError",
    "MissingIndexError",
]
