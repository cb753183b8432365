"""Canonical handling of scene identifiers."""

from __future__ import annotations

import math
from typing import Hashable, Union

SceneId = Union[int, str, Hashable]


def normalize_scene_id(scene_id: SceneId) -> SceneId:
    """Return ``scene_id`` as an ``int`` when the conversion is lossless.

    Integers, integral finite floats and strings holding an integral number
    (``"3"``, ``" 3 "``, ``"3.0"``) become ``int``. Anything else, including
    booleans, ``None`` and blank strings, is returned unchanged so that the
    function is idempotent.
    """

    if isinstance(scene_id, bool):
        return scene_id

    if isinstance(scene_id, int):
        return scene_id

    if isinstance(scene_id, float):
        if math.isfinite(scene_id) and scene_id.is_integer():
            return int(scene_id)
        return scene_id

    if isinstance(scene_id, str):
        trimmed = scene_id.strip()
        if not trimmed:
            return scene_id
        try:
            return int(trimmed)
        except ValueError:
            pass
        try:
            parsed = float(trimmed)
        except ValueError:
            return scene_id
        if math.isfinite(parsed) and parsed.is_integer():
            return int(parsed)
        return scene_id

    return scene_id


def scene_key(scene_id: SceneId) -> str:
    """Return the comparison key shared by every representation of a scene."""

    return str(normalize_scene_id(scene_id))


__all__ = ["SceneId", "normalize_scene_id", "scene_key"]
