"""Index mirror repository tests."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from vfxcat.index import FileObservation, IndexStore, Project
from vfxcat.matching import FileType
from vfxcat.state import IndexRepository, MissingIndexError, StateError


def _view(project_id: str = "demo"):
    """Return a view holding a single Nuke script record.

    Args:
        project_id: Project the record belongs to.

    Returns:
        GroupedIndexView: Published view from a fresh store.
    """
    store = IndexStore()
    store.reconcile(
        project_id,
        [
            FileObservation(
                path="/projects/demo/comp/BALA_shot010_comp_v001.nk",
                relative_path="comp/BALA_shot010_comp_v001.nk",
                parent_folder="comp",
                file_type=FileType.NUKE,
                base_name="shot010_comp",
                version="v001",
                version_number=1,
                folder="comp",
                shot_group="BALA",
                last_modified=datetime(2024, 1, 1, tzinfo=timezone.utc),
            )
        ],
    )
    return store.read(project_id)


def test_save_and_load_round_trip(tmp_path: Path) -> None:
    """Ensure save followed by load returns the same records.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    repo = IndexRepository(tmp_path / "state")
    view = _view()

    path = repo.save(Project(id="demo", root=Path("/projects/demo")), view)
    loaded = repo.load("demo")

    assert path == tmp_path / "state" / "demo.json"
    assert loaded.project.root == Path("/projects/demo")
    assert loaded.records == list(view)
    assert repo.age(loaded) >= 0
    assert not path.with_suffix(".json.tmp").exists()


def test_load_missing_mirror_raises(tmp_path: Path) -> None:
    """Loading a project that was never saved raises ``MissingIndexError``.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    with pytest.raises(MissingIndexError):
        IndexRepository(tmp_path).load("demo")


def test_load_invalid_json_raises_state_error(tmp_path: Path) -> None:
    """Corrupted mirrors surface as ``StateError``.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    repo = IndexRepository(tmp_path)
    repo.path_for("demo").write_text("{not json", encoding="utf-8")

    with pytest.raises(StateError):
        repo.load("demo")

    repo.path_for("demo").write_text('{"records": []}', encoding="utf-8")
    with pytest.raises(StateError):
        repo.load("demo")


def test_path_for_sanitizes_project_ids(tmp_path: Path) -> None:
    repo = IndexRepository(tmp_path)

    assert repo.path_for("client/show 01").name == "client_show_01.json"
    assert repo.path_for("..").name == "project.json"


def test_delete_reports_whether_a_mirror_existed(tmp_path: Path) -> None:
    repo = IndexRepository(tmp_path)
    repo.save(Project(id="demo", root=tmp_path), _view())

    assert repo.delete("demo") is True
    assert repo.delete("demo") is False
