"""Partition an ordered scene list into contiguous location groups.

A *grouping* is a list of groups, each group a list of scene identifiers.
Every function in this module is pure: inputs are never mutated and a new
grouping is returned. The functions that take a ``scene_order`` always
return a grouping in which

* every scene of ``scene_order`` appears in exactly one group,
* no group is empty and no id appears twice,
* members are sorted by their position in ``scene_order``,
* groups are sorted by the position of their first member.

Malformed input never raises; it is repaired instead.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from .codec import decode_scene_groups
from .scene_ids import SceneId, normalize_scene_id, scene_key

Grouping = list[list[SceneId]]


@dataclass(frozen=True)
class SceneGroupInfo:
    """Position of a single scene within its group."""

    leader: SceneId
    is_child: bool
    group: tuple[SceneId, ...]


def _build_order_index(scene_order: Iterable[SceneId] | None) -> dict[str, int]:
    order_index: dict[str, int] = {}
    if scene_order is None:
        return order_index

    for position, scene_id in enumerate(scene_order):
        order_index.setdefault(scene_key(scene_id), position)
    return order_index


def _sort_members(group: Iterable[SceneId], order_index: dict[str, int]) -> list[SceneId]:
    return sorted(group, key=lambda scene_id: order_index[scene_key(scene_id)])


def _sort_groups(groups: Iterable[list[SceneId]], order_index: dict[str, int]) -> Grouping:
    return sorted(
        groups,
        key=lambda group: min(order_index[scene_key(scene_id)] for scene_id in group),
    )


def _find_group(groups: Sequence[Sequence[SceneId]], key: str) -> int | None:
    for index, group in enumerate(groups):
        if any(scene_key(scene_id) == key for scene_id in group):
            return index
    return None


def normalize_scene_groups(raw_groups: Any, scene_order: Sequence[SceneId] | None) -> Grouping:
    """Return a valid grouping of ``scene_order`` derived from ``raw_groups``.

    ``raw_groups`` may be anything :func:`~scenelink.codec.decode_scene_groups`
    understands. Ids that are not part of ``scene_order`` are dropped, the
    first occurrence of a duplicated id wins and scenes that no group
    mentions are appended as singletons. When nothing usable survives, every
    scene becomes its own group.
    """

    order_index = _build_order_index(scene_order)
    if not order_index:
        return []

    seen: set[str] = set()
    groups: Grouping = []
    for raw_group in decode_scene_groups(raw_groups):
        members: list[SceneId] = []
        for scene_id in raw_group:
            key = scene_key(scene_id)
            if key not in order_index or key in seen:
                continue
            seen.add(key)
            members.append(normalize_scene_id(scene_id))
        if members:
            groups.append(_sort_members(members, order_index))

    for scene_id in scene_order or ():
        key = scene_key(scene_id)
        if key in seen:
            continue
        seen.add(key)
        groups.append([normalize_scene_id(scene_id)])

    return _sort_groups(groups, order_index)


def auto_group_scenes(scene_count: Any, location_count: Any = None) -> list[list[int]]:
    """Split scenes ``1..scene_count`` into ``location_count`` contiguous runs.

    ``location_count=None`` means every scene has its own location. Runs are
    as even as possible: the first ``scene_count % location_count`` runs hold
    one extra scene. The result is not normalised against a scene order.
    """

    count = _as_count(scene_count)
    if count is None or count <= 0:
        return []

    locations = _as_count(location_count)
    if locations is None:
        effective = count
    else:
        effective = max(1, min(locations, count))

    scene_ids = list(range(1, count + 1))
    if effective >= count:
        return [[scene_id] for scene_id in scene_ids]
    if effective == 1:
        return [scene_ids]

    base, remainder = divmod(count, effective)
    groups: list[list[int]] = []
    start = 0
    for index in range(effective):
        size = base + 1 if index < remainder else base
        groups.append(scene_ids[start : start + size])
        start += size
    return groups


def auto_group_scene_order(
    scene_order: Sequence[SceneId] | None, location_count: Any = None
) -> Grouping:
    """Apply :func:`auto_group_scenes` to the positions of ``scene_order``.

    Run ``n`` of the even split maps to the ``n``-th scene of the order, so
    projects whose scene ids are not ``1..N`` are grouped the same way.
    """

    ordered = list(scene_order or ())
    runs = auto_group_scenes(len(ordered), location_count)
    positioned = [[ordered[position - 1] for position in run] for run in runs]
    return normalize_scene_groups(positioned, ordered)


def _as_count(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return math.floor(value)
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return None
        if not math.isfinite(parsed):
            return None
        return math.floor(parsed)
    return None


def toggle_scene_link(
    groups: Any,
    scene_a: SceneId,
    scene_b: SceneId,
    scene_order: Sequence[SceneId] | None,
) -> Grouping:
    """Merge the groups of two scenes, or split their shared group between them.

    When both scenes already share a group the group is cut after the earlier
    of the two. A cut that would leave one side empty, or a request naming
    the same scene twice, returns the normalised input unchanged. Callers are
    expected to pass adjacent scenes only.
    """

    normalized = normalize_scene_groups(groups, scene_order)
    order_index = _build_order_index(scene_order)

    key_a = scene_key(scene_a)
    key_b = scene_key(scene_b)
    index_a = _find_group(normalized, key_a)
    index_b = _find_group(normalized, key_b)
    if index_a is None or index_b is None or key_a == key_b:
        return normalized

    if index_a != index_b:
        merged = _sort_members(normalized[index_a] + normalized[index_b], order_index)
        remaining = [
            list(group)
            for index, group in enumerate(normalized)
            if index not in (index_a, index_b)
        ]
        remaining.append(merged)
        return _sort_groups(remaining, order_index)

    members = _sort_members(normalized[index_a], order_index)
    boundary = min(order_index[key_a], order_index[key_b])
    left = [scene_id for scene_id in members if order_index[scene_key(scene_id)] <= boundary]
    right = [scene_id for scene_id in members if order_index[scene_key(scene_id)] > boundary]
    if not left or not right:
        return normalized

    remaining = [list(group) for index, group in enumerate(normalized) if index != index_a]
    remaining.extend([left, right])
    return _sort_groups(remaining, order_index)


def are_scenes_linked(groups: Any, scene_a: SceneId, scene_b: SceneId) -> bool:
    """Return ``True`` when both scenes share a group of ``groups`` as given."""

    key_a = scene_key(scene_a)
    key_b = scene_key(scene_b)
    if key_a == key_b:
        return True

    if not isinstance(groups, (list, tuple)):
        return False

    for group in groups:
        if not isinstance(group, (list, tuple)):
            continue
        keys = {scene_key(scene_id) for scene_id in group}
        if key_a in keys and key_b in keys:
            return True
    return False


def scene_group_info(
    groups: Any, scene_id: SceneId, scene_order: Sequence[SceneId] | None
) -> SceneGroupInfo:
    """Return the leader of ``scene_id``'s group and whether it follows one."""

    normalized = normalize_scene_groups(groups, scene_order)
    key = scene_key(scene_id)
    index = _find_group(normalized, key)
    if index is None:
        orphan = normalize_scene_id(scene_id)
        return SceneGroupInfo(leader=orphan, is_child=False, group=(orphan,))

    group = normalized[index]
    leader = group[0]
    return SceneGroupInfo(
        leader=leader,
        is_child=scene_key(leader) != key,
        group=tuple(group),
    )


def scene_group_signature(groups: Any) -> str:
    """Return an order-sensitive fingerprint used to skip no-op writes."""

    if not isinstance(groups, (list, tuple)):
        return ""

    return "|".join(
        ",".join(scene_key(scene_id) for scene_id in group)
        for group in groups
        if isinstance(group, (list, tuple))
    )


__all__ = [
    "Grouping",
    "SceneGroupInfo",
    "are_scenes_linked",
    "auto_group_scene_order",
    "auto_group_scenes",
    "normalize_scene_groups",
    "scene_group_info",
    "scene_group_signature",
    "toggle_scene_link",
]
