"""Tests for version ordering and resolution."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import pytest

from vfxcat.errors import VersionNotFound
from vfxcat.index import FileRecord
from vfxcat.matching import FileType
from vfxcat.versions import default_version, order_versions, resolve, resolve_or_default

_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _record(
    token: str,
    number: int,
    *,
    record_id: int = 1,
    path: str | None = None,
    minutes: int = 0,
) -> FileRecord:
    """Return a record in the ``nk:comp:BALA:shot010_comp`` group.

    Args:
        token: Raw version token.
        number: Parsed version ordinal.
        record_id: Record identifier.
        path: Absolute path; derived from the token when omitted.
        minutes: Modification time offset from a fixed epoch.

    Returns:
        FileRecord: Record suitable for ordering tests.
    """
    name = f"BALA_shot010_comp_{token}.nk"
    return FileRecord(
        id=record_id,
        project_id="demo",
        path=path or f"/projects/demo/comp/{name}",
        relative_path=f"comp/{name}",
        parent_folder="comp",
        file_type=FileType.NUKE,
        base_name="shot010_comp",
        version=token,
        version_number=number,
        folder="comp",
        shot_group="BALA",
        last_modified=_EPOCH + timedelta(minutes=minutes),
        first_seen=_EPOCH,
    )


def test_numeric_ordering_beats_lexical_ordering() -> None:
    group = [_record("v1", 1, record_id=1), _record("v10", 10, record_id=2), _record("v2", 2, record_id=3)]

    assert [record.version for record in order_versions(group)] == ["v10", "v2", "v1"]
    assert default_version(group).version == "v10"


def test_ties_break_on_modification_time_then_path() -> None:
    older = _record("v3", 3, record_id=1, path="/p/a.nk", minutes=0)
    newer = _record("v003", 3, record_id=2, path="/p/b.nk", minutes=5)
    same_time = _record("v03", 3, record_id=3, path="/p/c.nk", minutes=5)

    ordered = order_versions([older, newer, same_time])

    assert [record.path for record in ordered] == ["/p/c.nk", "/p/b.nk", "/p/a.nk"]


def test_default_version_of_empty_group_raises() -> None:
    with pytest.raises(ValueError):
        default_version([])


def test_resolve_matches_exact_token_case_insensitively() -> None:
    group = [_record("v001", 1, record_id=1), _record("V002", 2, record_id=2)]

    assert resolve(group, "v002").id == 2


def test_resolve_matches_by_ordinal() -> None:
    group = [_record("v003", 3, record_id=1), _record("v004", 4, record_id=2)]

    assert resolve(group, "v3").id == 1


def test_resolve_missing_token_raises() -> None:
    with pytest.raises(VersionNotFound):
        resolve([_record("v001", 1)], "v009")


def test_stale_token_falls_back_to_default(caplog: pytest.LogCaptureFixture) -> None:
    """A vanished version resolves to the current one and is logged.

    Args:
        caplog: Pytest log capture fixture.
    """
    group = [_record("v001", 1, record_id=1), _record("v005", 5, record_id=2)]

    with caplog.at_level(logging.INFO, logger="vfxcat.versions.resolver"):
        record = resolve_or_default(group, "v004")

    assert record.version == "v005"
    assert "Stale version reference" in caplog.text


def test_resolve_or_default_without_token_returns_current() -> None:
    group = [_record("v002", 2, record_id=1), _record("v001", 1, record_id=2)]

    assert resolve_or_default(group, None).version == "v002"
