"""Filename classification, glob filtering, and grouping keys."""

from .grouping import OTHER_SHOT_GROUP, ROOT_FOLDER, group_key, grouping_for, top_level_folder
from .models import Classification, FileType, GroupingKey
from .patterns import RECOGNIZED_EXTENSIONS, classify, classify_or_other, matches, parse_version

__all__ = [
    "Classification",
    "FileType",
    "GroupingKey",
    "RECOGNIZED_EXTENSIONS",
    "classify",
    "classify_or_other",
    "matches",
    "parse_version",
    "group_key",
    "grouping_for",
    "top_level_folder",
    "ROOT_FOLDER",
    "OTHER_SHOT_GROUP",
]
