import json
from pathlib import Path

import pytest

from conftest import SteppingClock
from scenelink import FileProjectStore, InMemoryProjectStore, ProjectStore


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path: Path, clock: SteppingClock) -> ProjectStore:
    if request.param == "memory":
        return InMemoryProjectStore(clock=clock)
    return FileProjectStore(tmp_path / "projects", clock=clock)


def test_create_and_load_round_trip(store: ProjectStore) -> None:
    created = store.create("  Neon Alley  ", identifier="neon-alley")

    loaded = store.load("neon-alley")
    assert loaded.identifier == created.identifier == "neon-alley"
    assert loaded.project_name == "Neon Alley"
    assert loaded.status == "draft"
    assert loaded.created_at == created.created_at
    assert loaded.scene_group is None
    assert store.list_scenes("neon-alley") == []


def test_create_generates_identifier_and_rejects_duplicates(store: ProjectStore) -> None:
    generated = store.create("First")
    assert len(generated.identifier) == 32

    store.create("Second", identifier="second")
    with pytest.raises(FileExistsError):
        store.create("Again", identifier="second")


@pytest.mark.parametrize("name", ["", "   ", None])
def test_create_requires_a_project_name(store: ProjectStore, name) -> None:
    with pytest.raises(ValueError):
        store.create(name)  # type: ignore[arg-type]


def test_load_validates_identifier(store: ProjectStore) -> None:
    with pytest.raises(ValueError):
        store.load("   ")
    with pytest.raises(ValueError):
        store.load("../escape")
    with pytest.raises(FileNotFoundError):
        store.load("missing")


def test_list_projects_returns_newest_first(store: ProjectStore) -> None:
    store.create("Older", identifier="older")
    store.create("Newer", identifier="newer")

    assert [record.identifier for record in store.list_projects()] == ["newer", "older"]


def test_update_merges_fields_and_stamps_updated_at(store: ProjectStore) -> None:
    created = store.create("Project", identifier="project")

    updated = store.update(
        "project",
        {"status": "review", "scene_group": [{"scene_ids": [1, 2]}], "script": "Hi"},
    )

    assert updated.status == "review"
    assert updated.updated_at > created.updated_at
    reloaded = store.load("project")
    assert reloaded.scene_group == [{"scene_ids": [1, 2]}]
    assert reloaded.fields["script"] == "Hi"
    assert reloaded.created_at == created.created_at


def test_update_rejects_reserved_fields_and_nested_arrays(store: ProjectStore) -> None:
    store.create("Project", identifier="project")

    with pytest.raises(ValueError, match="cannot be updated"):
        store.update("project", {"id": "other"})
    with pytest.raises(ValueError, match="nested array"):
        store.update("project", {"scene_group": [[1, 2], [3]]})

    assert store.load("project").scene_group is None


def test_scenes_are_sorted_by_numeric_id(store: ProjectStore) -> None:
    store.create("Project", identifier="project")
    for scene_id in ["10", 2, "intro", 1]:
        store.save_scene("project", {"id": scene_id})

    assert [scene["id"] for scene in store.list_scenes("project")] == [1, 2, 10, "intro"]


def test_save_scene_replaces_existing_scene(store: ProjectStore) -> None:
    store.create("Project", identifier="project")
    store.save_scene("project", {"id": 1, "location_id": "alley"})
    store.save_scene("project", {"id": "1", "location_id": "roof"})

    assert store.list_scenes("project") == [{"id": 1, "location_id": "roof"}]

    with pytest.raises(ValueError):
        store.save_scene("project", {"location_id": "roof"})


def test_update_and_delete_scene(store: ProjectStore) -> None:
    store.create("Project", identifier="project")
    store.save_scene("project", {"id": 1})
    store.save_scene("project", {"id": 2})

    updated = store.update_scene("project", "2", {"location_id": "alley"})
    assert updated["id"] == 2
    assert updated["location_id"] == "alley"
    assert "updated_at" in updated

    with pytest.raises(ValueError):
        store.update_scene("project", 2, {"id": 3})
    with pytest.raises(FileNotFoundError):
        store.update_scene("project", 9, {"location_id": "alley"})

    store.delete_scene("project", 1)
    assert [scene["id"] for scene in store.list_scenes("project")] == [2]
    with pytest.raises(FileNotFoundError):
        store.delete_scene("project", 1)


def test_delete_removes_project_and_scenes(store: ProjectStore) -> None:
    store.create("Project", identifier="project")
    store.save_scene("project", {"id": 1})

    store.delete("project")

    assert store.list_projects() == []
    with pytest.raises(FileNotFoundError):
        store.load("project")
    with pytest.raises(FileNotFoundError):
        store.delete("project")


def test_file_store_persists_json_documents(tmp_path: Path, clock: SteppingClock) -> None:
    store = FileProjectStore(tmp_path, clock=clock)
    store.create("Project", identifier="project")
    store.save_scene("project", {"id": 1, "location_id": "alley"})
    store.update("project", {"scene_group": [{"scene_ids": [1]}]})

    project_payload = json.loads((tmp_path / "project" / "project.json").read_text("utf-8"))
    scenes_payload = json.loads((tmp_path / "project" / "scenes.json").read_text("utf-8"))

    assert project_payload["id"] == "project"
    assert project_payload["project_name"] == "Project"
    assert project_payload["scene_group"] == [{"scene_ids": [1]}]
    assert scenes_payload == [{"id": 1, "location_id": "alley"}]

    reopened = FileProjectStore(tmp_path, clock=clock)
    assert reopened.load("project").scene_group == [{"scene_ids": [1]}]


def test_file_store_reports_corrupt_documents(tmp_path: Path, clock: SteppingClock) -> None:
    store = FileProjectStore(tmp_path, clock=clock)
    store.create("Project", identifier="project")
    (tmp_path / "project" / "project.json").write_text("{not json", encoding="utf-8")

    with pytest.raises(ValueError):
        store.load("project")
