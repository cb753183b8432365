"""Conversion between stored scene group records and in-memory groups.

The document store cannot hold a list directly inside another list, so a
grouping is persisted as a list of single-key records::

    [{"scene_ids": [1, 2]}, {"scene_ids": [3]}]

Older projects were written with different field names, or before the
migration as plain nested lists. :func:`decode_scene_groups` accepts all of
those shapes.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Sequence

from .scene_ids import SceneId

SCENE_GROUP_FIELD = "scene_ids"

_GroupExtractor = Callable[[Any], "list[SceneId] | None"]


def _field_extractor(field_name: str) -> _GroupExtractor:
    def _extract(entry: Any) -> list[SceneId] | None:
        if not isinstance(entry, Mapping):
            return None
        value = entry.get(field_name)
        if isinstance(value, (list, tuple)):
            return list(value)
        return None

    return _extract


def _plain_list_extractor(entry: Any) -> list[SceneId] | None:
    if isinstance(entry, (list, tuple)):
        return list(entry)
    return None


# Tried in order against each stored entry; the first match wins.
_GROUP_EXTRACTORS: tuple[_GroupExtractor, ...] = (
    _plain_list_extractor,
    _field_extractor(SCENE_GROUP_FIELD),
    _field_extractor("sceneIds"),
    _field_extractor("ids"),
)


def decode_scene_groups(raw: Any) -> list[list[SceneId]]:
    """Return the id lists held in ``raw``.

    Entries that match none of the known shapes are dropped. Ids are
    returned exactly as stored; normalisation and membership checks are
    left to :func:`scenelink.grouping.normalize_scene_groups`.
    """

    if not isinstance(raw, (list, tuple)):
        return []

    groups: list[list[SceneId]] = []
    for entry in raw:
        for extractor in _GROUP_EXTRACTORS:
            extracted = extractor(entry)
            if extracted is not None:
                groups.append(extracted)
                break

    return groups


def encode_scene_groups(groups: Sequence[Sequence[SceneId]] | None) -> list[dict[str, list[SceneId]]]:
    """Wrap each non-empty group in a storage record."""

    if not isinstance(groups, (list, tuple)):
        return []

    return [
        {SCENE_GROUP_FIELD: list(group)}
        for group in groups
        if isinstance(group, (list, tuple)) and group
    ]


__all__ = ["SCENE_GROUP_FIELD", "decode_scene_groups", "encode_scene_groups"]
