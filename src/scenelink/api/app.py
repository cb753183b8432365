"""FastAPI application exposing project, scene and scene grouping endpoints."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Mapping, Union

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from ..codec import encode_scene_groups
from ..editor import SceneGroupEditor, WriteResult
from ..grouping import (
    Grouping,
    auto_group_scenes,
    normalize_scene_groups,
    scene_group_info,
    scene_group_signature,
)
from ..persistence import (
    DEFAULT_PROJECT_STATUS,
    FileProjectStore,
    InMemoryProjectStore,
    ProjectRecord,
    ProjectStore,
)
from ..scene_ids import SceneId, normalize_scene_id, scene_key
from .settings import SceneLinkApiSettings

logger = logging.getLogger(__name__)

SceneIdValue = Union[int, str]


class ProjectResource(BaseModel):
    """Metadata describing a video project."""

    id: str = Field(..., description="Stable identifier for the project.")
    project_name: str = Field(..., description="Display name for the project.")
    status: str = Field(..., description="Workflow status such as 'draft'.")
    scene_count: int = Field(
        ..., ge=0, description="Number of scenes currently stored for the project."
    )
    location_count: int | None = Field(
        None,
        description="Requested number of distinct locations, or null for all different.",
    )
    created_at: datetime = Field(..., description="Timestamp when the project was created.")
    updated_at: datetime = Field(
        ..., description="Timestamp when the project was last updated."
    )
    attributes: Dict[str, Any] = Field(
        default_factory=dict,
        description="Remaining project fields exactly as stored.",
    )

    @field_serializer("created_at")
    def _serialise_created_at(self, value: datetime) -> str:
        return value.isoformat()

    @field_serializer("updated_at")
    def _serialise_updated_at(self, value: datetime) -> str:
        return value.isoformat()


class ProjectListResponse(BaseModel):
    """Response envelope describing stored projects."""

    data: List[ProjectResource] = Field(
        default_factory=list,
        description="Projects ordered newest first.",
    )


class ProjectDetailResponse(BaseModel):
    """A project together with its scenes and repaired scene grouping."""

    data: ProjectResource
    scenes: List[Dict[str, Any]] = Field(
        default_factory=list, description="Scenes ordered by scene id."
    )
    scene_groups: List[List[SceneIdValue]] = Field(
        default_factory=list,
        description="Scene grouping normalised against the current scene order.",
    )


class ProjectCreateRequest(BaseModel):
    """Payload for creating a new project."""

    project_name: str = Field(..., description="Display name for the project.")
    status: str | None = Field(
        None, description="Initial workflow status. Defaults to the configured status."
    )

    @field_validator("project_name")
    @classmethod
    def _validate_project_name(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("project_name must be a non-empty string.")
        return trimmed


class ProjectUpdateRequest(BaseModel):
    """Partial update of a project; unknown fields are stored as given."""

    model_config = ConfigDict(extra="allow")

    project_name: str | None = None
    status: str | None = None
    location_count: int | None = Field(
        None, description="Requested number of distinct locations."
    )
    scene_group: Any = Field(
        None,
        description="Scene grouping in stored, legacy or nested-list form.",
    )


class SceneCreateRequest(BaseModel):
    """Payload for adding a scene; the id defaults to the next free number."""

    model_config = ConfigDict(extra="allow")

    id: SceneIdValue | None = None
    location_id: str | None = None


class SceneUpdateRequest(BaseModel):
    """Partial update of a scene."""

    model_config = ConfigDict(extra="allow")

    location_id: str | None = None


class AutoGroupRequest(BaseModel):
    """Derive a grouping from the requested number of locations."""

    location_count: int | None = Field(
        None, description="Number of distinct locations; null means all different."
    )
    scene_count: int | None = Field(
        None,
        description="Scene count to split. Defaults to the project's scene count.",
    )


class ToggleLinkRequest(BaseModel):
    """Link or unlink two adjacent scenes."""

    scene_a: SceneIdValue
    scene_b: SceneIdValue


class SceneGroupingResponse(BaseModel):
    """The stored grouping after an operation."""

    project_id: str
    groups: List[List[SceneIdValue]] = Field(default_factory=list)
    scene_group: List[Dict[str, List[SceneIdValue]]] = Field(
        default_factory=list, description="Storage encoding of ``groups``."
    )
    signature: str = ""
    changed: bool = False


class SceneGroupInfoResponse(BaseModel):
    """Where a scene sits in its group and which location it inherits."""

    project_id: str
    scene_id: SceneIdValue
    leader: SceneIdValue
    is_child: bool
    group: List[SceneIdValue]
    location_id: str | None = Field(
        None,
        description="Location chosen for the group leader, used by every member.",
    )


class ProjectService:
    """Business logic supporting the project endpoints.

    Grouping changes for a project are serialised with a per-project lock
    held across the read, compute and write steps.
    """

    def __init__(
        self,
        store: ProjectStore,
        *,
        default_status: str = DEFAULT_PROJECT_STATUS,
    ) -> None:
        self._store = store
        self._default_status = default_status
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def list_projects(self) -> ProjectListResponse:
        resources = [
            self._build_resource(record) for record in self._store.list_projects()
        ]
        return ProjectListResponse(data=resources)

    def create_project(
        self, *, project_name: str, status: str | None = None
    ) -> ProjectDetailResponse:
        record = self._store.create(
            project_name, status=status or self._default_status
        )
        return self.get_project(record.identifier)

    def get_project(self, project_id: str) -> ProjectDetailResponse:
        record = self._store.load(project_id)
        scenes = self._store.list_scenes(record.identifier)
        groups = normalize_scene_groups(record.scene_group, _scene_order(scenes))
        return ProjectDetailResponse(
            data=self._build_resource(record, scene_count=len(scenes)),
            scenes=scenes,
            scene_groups=groups,
        )

    def update_project(
        self, project_id: str, updates: Dict[str, Any]
    ) -> ProjectDetailResponse:
        changes = dict(updates)
        if "location_mapping" in changes:
            changes["location_mapping"] = _validate_location_mapping(
                changes["location_mapping"]
            )
        with self._project_lock(project_id):
            if "scene_group" in changes:
                scenes = self._store.list_scenes(project_id)
                groups = normalize_scene_groups(
                    changes["scene_group"], _scene_order(scenes)
                )
                changes["scene_group"] = encode_scene_groups(groups)
            self._store.update(project_id, changes)
        return self.get_project(project_id)

    def delete_project(self, project_id: str) -> None:
        with self._project_lock(project_id):
            self._store.delete(project_id)

    def add_scene(self, project_id: str, scene: Dict[str, Any]) -> ProjectDetailResponse:
        with self._project_lock(project_id):
            scenes = self._store.list_scenes(project_id)
            payload = dict(scene)
            if payload.get("id") is None:
                payload["id"] = _next_scene_id(scenes)
            key = scene_key(payload["id"])
            if any(scene_key(existing.get("id")) == key for existing in scenes):
                raise FileExistsError(
                    f"Scene '{key}' already exists in project '{project_id}'."
                )
            self._store.save_scene(project_id, payload)
            self._repair_grouping(project_id)
        return self.get_project(project_id)

    def update_scene(
        self, project_id: str, scene_id: SceneId, updates: Dict[str, Any]
    ) -> Dict[str, Any]:
        return self._store.update_scene(project_id, scene_id, updates)

    def delete_scene(self, project_id: str, scene_id: SceneId) -> ProjectDetailResponse:
        with self._project_lock(project_id):
            self._store.delete_scene(project_id, scene_id)
            self._repair_grouping(project_id)
        return self.get_project(project_id)

    def get_scene_grouping(self, project_id: str) -> SceneGroupingResponse:
        record = self._store.load(project_id)
        scenes = self._store.list_scenes(record.identifier)
        groups = normalize_scene_groups(record.scene_group, _scene_order(scenes))
        return _build_grouping_response(record.identifier, groups, changed=False)

    def auto_group(
        self,
        project_id: str,
        *,
        location_count: int | None,
        scene_count: int | None = None,
    ) -> SceneGroupingResponse:
        with self._project_lock(project_id):
            editor = self.open_editor(
                project_id, extra_fields={"location_count": location_count}
            )
            if scene_count is None:
                changed = editor.auto_group(location_count)
            else:
                changed = editor.replace(auto_group_scenes(scene_count, location_count))
            self._raise_for_failed_write(editor)
            if not changed:
                self._store.update(project_id, {"location_count": location_count})
        return _build_grouping_response(project_id, editor.groups, changed=changed)

    def toggle_link(
        self, project_id: str, scene_a: SceneId, scene_b: SceneId
    ) -> SceneGroupingResponse:
        with self._project_lock(project_id):
            editor = self.open_editor(project_id)
            changed = editor.toggle(scene_a, scene_b)
            self._raise_for_failed_write(editor)
        return _build_grouping_response(project_id, editor.groups, changed=changed)

    def get_scene_group_info(
        self, project_id: str, scene_id: SceneId
    ) -> SceneGroupInfoResponse:
        record = self._store.load(project_id)
        scenes = self._store.list_scenes(record.identifier)
        scenes_by_key = {scene_key(scene.get("id")): scene for scene in scenes}
        if scene_key(scene_id) not in scenes_by_key:
            raise FileNotFoundError(
                f"Scene '{scene_key(scene_id)}' does not exist in project '{record.identifier}'."
            )

        info = scene_group_info(record.scene_group, scene_id, _scene_order(scenes))
        leader_key = scene_key(info.leader)
        location_id = scenes_by_key.get(leader_key, {}).get("location_id")
        if not location_id:
            location_id = record.location_mapping.get(leader_key)

        return SceneGroupInfoResponse(
            project_id=record.identifier,
            scene_id=normalize_scene_id(scene_id),
            leader=info.leader,
            is_child=info.is_child,
            group=list(info.group),
            location_id=str(location_id) if location_id else None,
        )

    def open_editor(
        self, project_id: str, *, extra_fields: Mapping[str, Any] | None = None
    ) -> SceneGroupEditor:
        """Return an editor bound to the project's stored grouping.

        ``extra_fields`` are written in the same update as each grouping.
        """

        record = self._store.load(project_id)
        scenes = self._store.list_scenes(record.identifier)
        return SceneGroupEditor(
            _scene_order(scenes),
            record.scene_group,
            lambda encoded: self.write_scene_group(
                record.identifier, encoded, extra_fields=extra_fields
            ),
        )

    def write_scene_group(
        self,
        project_id: str,
        encoded: List[Dict[str, List[SceneId]]],
        *,
        extra_fields: Mapping[str, Any] | None = None,
    ) -> WriteResult:
        """Persist an encoded grouping, reporting failure instead of raising."""

        updates: Dict[str, Any] = dict(extra_fields or {})
        updates["scene_group"] = encoded
        try:
            self._store.update(project_id, updates)
        except (FileNotFoundError, ValueError, RuntimeError) as exc:
            logger.warning("Failed to save scene grouping for %s: %s", project_id, exc)
            return WriteResult(success=False, error=str(exc))
        logger.info("Saved scene grouping for %s (%d groups)", project_id, len(encoded))
        return WriteResult(success=True)

    def _repair_grouping(self, project_id: str) -> bool:
        record = self._store.load(project_id)
        scenes = self._store.list_scenes(record.identifier)
        repaired = normalize_scene_groups(record.scene_group, _scene_order(scenes))
        encoded = encode_scene_groups(repaired)
        if encoded == record.scene_group:
            return False
        self._store.update(record.identifier, {"scene_group": encoded})
        logger.info("Repaired scene grouping for %s", record.identifier)
        return True

    @contextmanager
    def _project_lock(self, project_id: str) -> Iterator[None]:
        """Hold the project's lock; forget it once the project is gone."""

        key = str(project_id).strip().casefold()
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock

        try:
            with lock:
                yield
        finally:
            if not self._project_exists(key):
                with self._locks_guard:
                    if self._locks.get(key) is lock:
                        del self._locks[key]

    def _project_exists(self, project_id: str) -> bool:
        try:
            self._store.load(project_id)
        except (FileNotFoundError, ValueError):
            return False
        except RuntimeError:
            return True
        return True

    @staticmethod
    def _raise_for_failed_write(editor: SceneGroupEditor) -> None:
        if editor.last_error is not None:
            raise RuntimeError(f"Failed to save scene grouping: {editor.last_error}")

    def _build_resource(
        self, record: ProjectRecord, *, scene_count: int | None = None
    ) -> ProjectResource:
        if scene_count is None:
            scene_count = len(self._store.list_scenes(record.identifier))
        attributes = {
            key: value
            for key, value in record.fields.items()
            if key != "location_count"
        }
        location_count = record.location_count
        return ProjectResource(
            id=record.identifier,
            project_name=record.project_name,
            status=record.status,
            scene_count=scene_count,
            location_count=location_count if isinstance(location_count, int) else None,
            created_at=record.created_at,
            updated_at=record.updated_at,
            attributes=attributes,
        )


def _scene_order(scenes: List[Dict[str, Any]]) -> List[SceneId]:
    return [normalize_scene_id(scene.get("id")) for scene in scenes]


def _validate_location_mapping(value: Any) -> Dict[str, str] | None:
    """Return ``value`` as a leader-key to location-id mapping of strings."""

    if value is None:
        return None
    if not isinstance(value, Mapping):
        raise ValueError("location_mapping must be an object.")
    mapping: Dict[str, str] = {}
    for key, location_id in value.items():
        if not isinstance(location_id, str):
            raise ValueError(
                f"location_mapping[{key!r}] must be a string location id."
            )
        mapping[str(key)] = location_id
    return mapping


def _next_scene_id(scenes: List[Dict[str, Any]]) -> int:
    numeric = [
        normalized
        for normalized in (normalize_scene_id(scene.get("id")) for scene in scenes)
        if isinstance(normalized, int) and not isinstance(normalized, bool)
    ]
    return max(numeric, default=0) + 1


def _build_grouping_response(
    project_id: str, groups: Grouping, *, changed: bool
) -> SceneGroupingResponse:
    return SceneGroupingResponse(
        project_id=project_id,
        groups=groups,
        scene_group=encode_scene_groups(groups),
        signature=scene_group_signature(groups),
        changed=changed,
    )


def create_app(
    project_service: ProjectService | None = None,
    *,
    settings: SceneLinkApiSettings | None = None,
) -> FastAPI:
    """Create a FastAPI app exposing the project endpoints."""

    resolved_settings = settings or SceneLinkApiSettings.from_env()

    service = project_service
    if service is None:
        store: ProjectStore
        if resolved_settings.project_root is not None:
            store = FileProjectStore(resolved_settings.project_root)
        else:
            store = InMemoryProjectStore()
        service = ProjectService(store, default_status=resolved_settings.default_status)

    tags_metadata = [
        {
            "name": "Projects",
            "description": "Create, inspect, update and delete video projects.",
        },
        {
            "name": "Scenes",
            "description": "Manage the ordered scene list of a project.",
        },
        {
            "name": "Scene Groups",
            "description": (
                "Group adjacent scenes that share a location, link or unlink "
                "neighbouring scenes and look up inherited locations."
            ),
        },
    ]

    app = FastAPI(
        title="Scene Link API",
        version="0.1.0",
        description=(
            "HTTP API backing the video generator wizard. The service stores "
            "projects and scenes and keeps each project's scene grouping valid "
            "as scenes are added, removed, linked and unlinked."
        ),
        openapi_tags=tags_metadata,
    )

    @app.get("/api/projects", response_model=ProjectListResponse, tags=["Projects"])
    def list_projects() -> ProjectListResponse:
        try:
            return service.list_projects()
        except ValueError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        except RuntimeError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc

    @app.post(
        "/api/projects",
        response_model=ProjectDetailResponse,
        status_code=201,
        tags=["Projects"],
    )
    def create_project(payload: ProjectCreateRequest) -> ProjectDetailResponse:
        try:
            return service.create_project(
                project_name=payload.project_name, status=payload.status
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except RuntimeError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc

    @app.get(
        "/api/projects/{project_id}",
        response_model=ProjectDetailResponse,
        tags=["Projects"],
    )
    def get_project(project_id: str) -> ProjectDetailResponse:
        try:
            return service.get_project(project_id)
        except FileNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except RuntimeError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc

    @app.patch(
        "/api/projects/{project_id}",
        response_model=ProjectDetailResponse,
        tags=["Projects"],
    )
    def update_project(
        project_id: str, payload: ProjectUpdateRequest
    ) -> ProjectDetailResponse:
        updates = payload.model_dump(exclude_unset=True)
        if not updates:
            raise HTTPException(status_code=400, detail="No project fields were provided.")

        try:
            return service.update_project(project_id, updates)
        except FileNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except RuntimeError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc

    @app.delete("/api/projects/{project_id}", status_code=204, tags=["Projects"])
    def delete_project(project_id: str) -> None:
        try:
            service.delete_project(project_id)
        except FileNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except RuntimeError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc

    @app.post(
        "/api/projects/{project_id}/scenes",
        response_model=ProjectDetailResponse,
        status_code=201,
        tags=["Scenes"],
    )
    def add_scene(project_id: str, payload: SceneCreateRequest) -> ProjectDetailResponse:
        try:
            return service.add_scene(project_id, payload.model_dump(exclude_none=True))
        except FileNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except FileExistsError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except RuntimeError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc

    @app.patch("/api/projects/{project_id}/scenes/{scene_id}", tags=["Scenes"])
    def update_scene(
        project_id: str, scene_id: str, payload: SceneUpdateRequest
    ) -> Dict[str, Any]:
        updates = payload.model_dump(exclude_unset=True)
        try:
            return service.update_scene(project_id, scene_id, updates)
        except FileNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except RuntimeError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc

    @app.delete(
        "/api/projects/{project_id}/scenes/{scene_id}",
        response_model=ProjectDetailResponse,
        tags=["Scenes"],
    )
    def delete_scene(project_id: str, scene_id: str) -> ProjectDetailResponse:
        try:
            return service.delete_scene(project_id, scene_id)
        except FileNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except RuntimeError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc

    @app.get(
        "/api/projects/{project_id}/scene-groups",
        response_model=SceneGroupingResponse,
        tags=["Scene Groups"],
    )
    def get_scene_grouping(project_id: str) -> SceneGroupingResponse:
        try:
            return service.get_scene_grouping(project_id)
        except FileNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except RuntimeError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc

    @app.post(
        "/api/projects/{project_id}/scene-groups/auto",
        response_model=SceneGroupingResponse,
        tags=["Scene Groups"],
    )
    def auto_group(project_id: str, payload: AutoGroupRequest) -> SceneGroupingResponse:
        try:
            return service.auto_group(
                project_id,
                location_count=payload.location_count,
                scene_count=payload.scene_count,
            )
        except FileNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except RuntimeError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc

    @app.post(
        "/api/projects/{project_id}/scene-groups/toggle",
        response_model=SceneGroupingResponse,
        tags=["Scene Groups"],
    )
    def toggle_link(
        project_id: str, payload: ToggleLinkRequest
    ) -> SceneGroupingResponse:
        try:
            return service.toggle_link(project_id, payload.scene_a, payload.scene_b)
        except FileNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except RuntimeError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc

    @app.get(
        "/api/projects/{project_id}/scenes/{scene_id}/group",
        response_model=SceneGroupInfoResponse,
        tags=["Scene Groups"],
    )
    def get_scene_group_info(project_id: str, scene_id: str) -> SceneGroupInfoResponse:
        try:
            return service.get_scene_group_info(project_id, scene_id)
        except FileNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except RuntimeError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc

    return app


__all__ = [
    "AutoGroupRequest",
    "ProjectCreateRequest",
    "ProjectDetailResponse",
    "ProjectListResponse",
    "ProjectResource",
    "ProjectService",
    "ProjectUpdateRequest",
    "SceneGroupInfoResponse",
    "SceneGroupingResponse",
    "ToggleLinkRequest",
    "create_app",
]
