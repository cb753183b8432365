"""Optimistic, rollback-capable editing of a project's scene grouping."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from .codec import encode_scene_groups
from .grouping import (
    Grouping,
    auto_group_scene_order,
    normalize_scene_groups,
    scene_group_signature,
    toggle_scene_link,
)
from .scene_ids import SceneId

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WriteResult:
    """Outcome reported by a storage writer."""

    success: bool
    error: str | None = None


SceneGroupWriter = Callable[[list[dict[str, list[SceneId]]]], WriteResult]


class SceneGroupBusyError(RuntimeError):
    """Raised when a grouping change is requested while another is being saved."""


class SceneGroupEditor:
    """Hold a local grouping and persist changes through ``writer``.

    Each change is applied locally before ``writer`` is called with the
    encoded grouping. When the writer reports failure the previous grouping
    is restored; when it raises, the grouping is restored and the exception
    propagates. Only one change may be in flight at a time.
    """

    def __init__(
        self,
        scene_order: Sequence[SceneId],
        raw_groups: Any,
        writer: SceneGroupWriter,
    ) -> None:
        self._scene_order = list(scene_order)
        self._groups = normalize_scene_groups(raw_groups, self._scene_order)
        self._writer = writer
        self._write_lock = threading.Lock()
        self.last_error: str | None = None

    @property
    def groups(self) -> Grouping:
        return [list(group) for group in self._groups]

    @property
    def scene_order(self) -> list[SceneId]:
        return list(self._scene_order)

    @property
    def is_saving(self) -> bool:
        return self._write_lock.locked()

    def toggle(self, scene_a: SceneId, scene_b: SceneId) -> bool:
        """Link or unlink two adjacent scenes. Returns ``True`` if saved."""

        return self._apply(
            lambda current: toggle_scene_link(
                current, scene_a, scene_b, self._scene_order
            )
        )

    def auto_group(self, location_count: int | None) -> bool:
        """Replace the grouping with an even split into ``location_count`` runs."""

        return self._apply(
            lambda current: auto_group_scene_order(self._scene_order, location_count)
        )

    def replace(self, raw_groups: Any) -> bool:
        """Replace the grouping with ``raw_groups`` repaired against the scene order."""

        return self._apply(
            lambda current: normalize_scene_groups(raw_groups, self._scene_order)
        )

    def reconcile(self, scene_order: Sequence[SceneId]) -> bool:
        """Repair the local grouping after scenes were added or removed.

        Nothing is written; returns ``True`` when the grouping changed.
        """

        previous = scene_group_signature(self._groups)
        self._scene_order = list(scene_order)
        self._groups = normalize_scene_groups(self._groups, self._scene_order)
        return scene_group_signature(self._groups) != previous

    def _apply(self, transition: Callable[[Grouping], Grouping]) -> bool:
        if not self._write_lock.acquire(blocking=False):
            raise SceneGroupBusyError(
                "A scene grouping change is already being saved."
            )

        try:
            previous = self._groups
            updated = transition(previous)
            if scene_group_signature(updated) == scene_group_signature(previous):
                return False

            self._groups = updated
            try:
                result = self._writer(encode_scene_groups(updated))
            except Exception:
                self._groups = previous
                logger.warning("Scene grouping write raised; local grouping restored")
                raise

            if not result.success:
                self._groups = previous
                self.last_error = result.error
                logger.warning(
                    "Scene grouping write failed; local grouping restored: %s",
                    result.error,
                )
                return False

            self.last_error = None
            return True
        finally:
            self._write_lock.release()


__all__ = [
    "SceneGroupBusyError",
    "SceneGroupEditor",
    "SceneGroupWriter",
    "WriteResult",
]
