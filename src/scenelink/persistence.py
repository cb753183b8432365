"""Project and scene persistence for the scene grouping service."""

from __future__ import annotations

import json
import logging
import re
import shutil
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping

from .scene_ids import SceneId, normalize_scene_id, scene_key

logger = logging.getLogger(__name__)

_PROJECT_IDENTIFIER_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]*$")
_RESERVED_FIELDS = frozenset({"id", "created_at", "updated_at"})

DEFAULT_PROJECT_STATUS = "draft"


@dataclass
class ProjectRecord:
    """A stored video project.

    Everything apart from the identity, name, status and timestamps lives in
    ``fields`` exactly as it was written, including the encoded
    ``scene_group`` records.
    """

    identifier: str
    project_name: str
    status: str
    created_at: datetime
    updated_at: datetime
    fields: Dict[str, Any] = field(default_factory=dict)

    @property
    def scene_group(self) -> Any:
        return self.fields.get("scene_group")

    @property
    def location_count(self) -> Any:
        return self.fields.get("location_count")

    @property
    def location_mapping(self) -> Dict[str, Any]:
        mapping = self.fields.get("location_mapping")
        if isinstance(mapping, Mapping):
            return {str(key): value for key, value in mapping.items()}
        return {}

    def to_payload(self) -> Dict[str, Any]:
        """Return a JSON-serialisable representation of the project."""

        payload = dict(self.fields)
        payload.update(
            {
                "id": self.identifier,
                "project_name": self.project_name,
                "status": self.status,
                "created_at": self.created_at.isoformat(),
                "updated_at": self.updated_at.isoformat(),
            }
        )
        return payload

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ProjectRecord":
        """Build a record from its stored representation."""

        if not isinstance(payload, Mapping):
            raise ValueError("Invalid project payload: expected an object")

        identifier = payload.get("id")
        if not isinstance(identifier, str) or not identifier.strip():
            raise ValueError("Invalid project payload: missing id")

        project_name = payload.get("project_name")
        status = payload.get("status") or DEFAULT_PROJECT_STATUS
        fields = {
            key: value
            for key, value in payload.items()
            if key not in _RESERVED_FIELDS and key not in ("project_name", "status")
        }

        return cls(
            identifier=identifier,
            project_name=str(project_name) if project_name is not None else "",
            status=str(status),
            created_at=_parse_timestamp(payload.get("created_at")),
            updated_at=_parse_timestamp(payload.get("updated_at")),
            fields=fields,
        )


class ProjectStore(ABC):
    """Shared project and scene logic on top of a raw document backend.

    Subclasses only move documents in and out of their medium; validation,
    timestamps and ordering are handled here.
    """

    def __init__(self, *, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @abstractmethod
    def _read_project(self, project_id: str) -> Dict[str, Any] | None:
        """Return the stored project payload or ``None`` when absent."""

    @abstractmethod
    def _write_project(self, project_id: str, payload: Dict[str, Any]) -> None:
        """Persist the project payload."""

    @abstractmethod
    def _remove_project(self, project_id: str) -> None:
        """Remove the project together with its scenes."""

    @abstractmethod
    def _project_ids(self) -> List[str]:
        """Return the identifiers of every stored project."""

    @abstractmethod
    def _read_scenes(self, project_id: str) -> List[Dict[str, Any]]:
        """Return the stored scene payloads for ``project_id``."""

    @abstractmethod
    def _write_scenes(self, project_id: str, scenes: List[Dict[str, Any]]) -> None:
        """Persist the full scene list for ``project_id``."""

    def create(
        self,
        project_name: str,
        *,
        status: str | None = None,
        identifier: str | None = None,
        fields: Mapping[str, Any] | None = None,
    ) -> ProjectRecord:
        """Create and persist a new project."""

        name = _validate_text(project_name, "Project name")
        project_id = (
            _validate_project_id(identifier) if identifier is not None else uuid.uuid4().hex
        )
        if self._read_project(project_id) is not None:
            raise FileExistsError(f"Project '{project_id}' already exists.")

        extra = dict(fields or {})
        _ensure_storable(extra)
        now = self._clock()
        record = ProjectRecord(
            identifier=project_id,
            project_name=name,
            status=_validate_text(status or DEFAULT_PROJECT_STATUS, "Project status"),
            created_at=now,
            updated_at=now,
            fields=extra,
        )
        self._write_project(project_id, record.to_payload())
        self._write_scenes(project_id, [])
        logger.info("Created project %s", project_id)
        return record

    def load(self, project_id: str) -> ProjectRecord:
        """Return the project identified by ``project_id``.

        Raises:
            FileNotFoundError: If the project does not exist.
        """

        validated = _validate_project_id(project_id)
        payload = self._read_project(validated)
        if payload is None:
            raise FileNotFoundError(f"Project '{validated}' does not exist.")
        return ProjectRecord.from_payload(payload)

    def list_projects(self) -> List[ProjectRecord]:
        """Return every project, newest first."""

        records = []
        for project_id in self._project_ids():
            payload = self._read_project(project_id)
            if payload is not None:
                records.append(ProjectRecord.from_payload(payload))
        return sorted(records, key=lambda record: record.created_at, reverse=True)

    def update(self, project_id: str, updates: Mapping[str, Any]) -> ProjectRecord:
        """Merge ``updates`` into the stored project and stamp ``updated_at``."""

        record = self.load(project_id)
        reserved = sorted(_RESERVED_FIELDS.intersection(updates))
        if reserved:
            raise ValueError(f"Fields {', '.join(reserved)} cannot be updated.")

        changes = dict(updates)
        _ensure_storable(changes)
        if "project_name" in changes:
            record.project_name = _validate_text(changes.pop("project_name"), "Project name")
        if "status" in changes:
            record.status = _validate_text(changes.pop("status"), "Project status")
        record.fields.update(changes)
        record.updated_at = self._clock()

        self._write_project(record.identifier, record.to_payload())
        logger.info("Updated project %s (%s)", record.identifier, ", ".join(sorted(updates)))
        return record

    def delete(self, project_id: str) -> None:
        """Delete the project and all of its scenes."""

        record = self.load(project_id)
        self._remove_project(record.identifier)
        logger.info("Deleted project %s", record.identifier)

    def list_scenes(self, project_id: str) -> List[Dict[str, Any]]:
        """Return the project's scenes ordered by scene id."""

        record = self.load(project_id)
        scenes = [dict(scene) for scene in self._read_scenes(record.identifier)]
        return sorted(scenes, key=lambda scene: scene_sort_key(scene.get("id")))

    def save_scene(self, project_id: str, scene: Mapping[str, Any]) -> Dict[str, Any]:
        """Insert ``scene`` or replace the scene with the same id."""

        record = self.load(project_id)
        if "id" not in scene or scene["id"] is None:
            raise ValueError("Scene payload must include an id.")

        payload = dict(scene)
        payload["id"] = normalize_scene_id(payload["id"])
        _ensure_storable(payload)

        key = scene_key(payload["id"])
        scenes = [
            existing
            for existing in self._read_scenes(record.identifier)
            if scene_key(existing.get("id")) != key
        ]
        scenes.append(payload)
        self._write_scenes(record.identifier, scenes)
        return dict(payload)

    def update_scene(
        self, project_id: str, scene_id: SceneId, updates: Mapping[str, Any]
    ) -> Dict[str, Any]:
        """Merge ``updates`` into a stored scene."""

        record = self.load(project_id)
        if "id" in updates and scene_key(updates["id"]) != scene_key(scene_id):
            raise ValueError("Scene id cannot be changed.")
        changes = dict(updates)
        _ensure_storable(changes)

        scenes = self._read_scenes(record.identifier)
        key = scene_key(scene_id)
        for scene in scenes:
            if scene_key(scene.get("id")) == key:
                scene.update(changes)
                scene["id"] = normalize_scene_id(scene["id"])
                scene["updated_at"] = self._clock().isoformat()
                self._write_scenes(record.identifier, scenes)
                return dict(scene)

        raise FileNotFoundError(
            f"Scene '{key}' does not exist in project '{record.identifier}'."
        )

    def delete_scene(self, project_id: str, scene_id: SceneId) -> None:
        """Remove a scene from the project."""

        record = self.load(project_id)
        key = scene_key(scene_id)
        scenes = self._read_scenes(record.identifier)
        remaining = [scene for scene in scenes if scene_key(scene.get("id")) != key]
        if len(remaining) == len(scenes):
            raise FileNotFoundError(
                f"Scene '{key}' does not exist in project '{record.identifier}'."
            )
        self._write_scenes(record.identifier, remaining)


class InMemoryProjectStore(ProjectStore):
    """Keep projects in local process memory."""

    def __init__(self, *, clock: Callable[[], datetime] | None = None) -> None:
        super().__init__(clock=clock)
        self._projects: Dict[str, Dict[str, Any]] = {}
        self._scenes: Dict[str, List[Dict[str, Any]]] = {}

    def _read_project(self, project_id: str) -> Dict[str, Any] | None:
        payload = self._projects.get(project_id)
        return json.loads(json.dumps(payload)) if payload is not None else None

    def _write_project(self, project_id: str, payload: Dict[str, Any]) -> None:
        self._projects[project_id] = json.loads(json.dumps(payload))

    def _remove_project(self, project_id: str) -> None:
        self._projects.pop(project_id, None)
        self._scenes.pop(project_id, None)

    def _project_ids(self) -> List[str]:
        return sorted(self._projects)

    def _read_scenes(self, project_id: str) -> List[Dict[str, Any]]:
        return json.loads(json.dumps(self._scenes.get(project_id, [])))

    def _write_scenes(self, project_id: str, scenes: List[Dict[str, Any]]) -> None:
        self._scenes[project_id] = json.loads(json.dumps(scenes))


class FileProjectStore(ProjectStore):
    """Persist each project as a directory holding two JSON documents."""

    _PROJECT_FILENAME = "project.json"
    _SCENES_FILENAME = "scenes.json"

    def __init__(
        self, storage_dir: Path, *, clock: Callable[[], datetime] | None = None
    ) -> None:
        super().__init__(clock=clock)
        self.storage_dir = storage_dir
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def _read_project(self, project_id: str) -> Dict[str, Any] | None:
        return self._read_json(self.storage_dir / project_id / self._PROJECT_FILENAME)

    def _write_project(self, project_id: str, payload: Dict[str, Any]) -> None:
        self._write_json(self.storage_dir / project_id / self._PROJECT_FILENAME, payload)

    def _remove_project(self, project_id: str) -> None:
        directory = self.storage_dir / project_id
        try:
            shutil.rmtree(directory)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise RuntimeError(f"Failed to delete project directory '{directory}'.") from exc

    def _project_ids(self) -> List[str]:
        return sorted(
            entry.name
            for entry in self.storage_dir.iterdir()
            if entry.is_dir() and (entry / self._PROJECT_FILENAME).is_file()
        )

    def _read_scenes(self, project_id: str) -> List[Dict[str, Any]]:
        payload = self._read_json(self.storage_dir / project_id / self._SCENES_FILENAME)
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise ValueError(f"Scene list for project '{project_id}' must be an array.")
        return [dict(scene) for scene in payload if isinstance(scene, dict)]

    def _write_scenes(self, project_id: str, scenes: List[Dict[str, Any]]) -> None:
        self._write_json(self.storage_dir / project_id / self._SCENES_FILENAME, scenes)

    @staticmethod
    def _read_json(path: Path) -> Any:
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"File '{path}' does not contain valid JSON.") from exc
        except OSError as exc:
            raise RuntimeError(f"Failed to read '{path}'.") from exc

    @staticmethod
    def _write_json(path: Path, payload: Any) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(
                json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8"
            )
        except OSError as exc:
            raise RuntimeError(f"Failed to write '{path}'.") from exc


def scene_sort_key(scene_id: SceneId) -> tuple[int, int, str]:
    """Order numeric scene ids numerically, ahead of opaque ones."""

    normalized = normalize_scene_id(scene_id)
    if isinstance(normalized, int) and not isinstance(normalized, bool):
        return (0, normalized, "")
    return (1, 0, str(normalized))


def _ensure_storable(value: Any, *, path: str = "document") -> None:
    """Reject lists nested directly inside lists, which the store cannot hold."""

    if isinstance(value, Mapping):
        for key, item in value.items():
            _ensure_storable(item, path=f"{path}.{key}")
    elif isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            if isinstance(item, (list, tuple)):
                raise ValueError(
                    f"Field '{path}' contains a nested array at index {index}; "
                    "wrap inner arrays in an object before storing."
                )
            _ensure_storable(item, path=f"{path}[{index}]")


def _validate_project_id(project_id: str) -> str:
    if not isinstance(project_id, str):
        raise ValueError("Project identifier must be provided as a string.")
    slug = project_id.strip().casefold()
    if not slug:
        raise ValueError("Project identifier must be a non-empty string.")
    if not _PROJECT_IDENTIFIER_PATTERN.fullmatch(slug):
        raise ValueError(
            "Project identifier must only contain lowercase letters, numbers, hyphens, and underscores."
        )
    return slug


def _validate_text(value: Any, label: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{label} must be provided as a string.")
    trimmed = value.strip()
    if not trimmed:
        raise ValueError(f"{label} must be a non-empty string.")
    return trimmed


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValueError(f"Invalid project timestamp: {value!r}") from exc
    else:
        return datetime.fromtimestamp(0, tz=timezone.utc)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


__all__ = [
    "DEFAULT_PROJECT_STATUS",
    "FileProjectStore",
    "InMemoryProjectStore",
    "ProjectRecord",
    "ProjectStore",
    "scene_sort_key",
]
