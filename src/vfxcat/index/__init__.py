"""Per-project file index: records, group keys, and the index store."""

from .models import ChangeSet, FileObservation, FileRecord, GroupKey, Project, ScanConfig, ScanWarning
from .store import GroupedIndexView, IndexStore

__all__ = [
    "ChangeSet",
    "FileObservation",
    "FileRecord",
    "GroupKey",
    "GroupedIndexView",
    "IndexStore",
    "Project",
    "ScanConfig",
    "ScanWarning",
]
