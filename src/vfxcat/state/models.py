"""Serialized form of a project's index mirror."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List

from pydantic import BaseModel, Field

from vfxcat.index.models import FileRecord, Project


class PersistedIndex(BaseModel):
    """Snapshot of one project's records as last written to disk.

    Attributes:
        project: Project the records belong to.
        records: Flat record list in group order.
        saved_at: When the snapshot was written.
    """

    project: Project
    records: List[FileRecord] = Field(default_factory=list)
    saved_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


__all__ = ["PersistedIndex"]
