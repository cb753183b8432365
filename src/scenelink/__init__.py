"""Scene grouping and linking for short-video projects."""

from .codec import SCENE_GROUP_FIELD, decode_scene_groups, encode_scene_groups
from .editor import SceneGroupBusyError, SceneGroupEditor, WriteResult
from .grouping import (
    Grouping,
    SceneGroupInfo,
    are_scenes_linked,
    auto_group_scene_order,
    auto_group_scenes,
    normalize_scene_groups,
    scene_group_info,
    scene_group_signature,
    toggle_scene_link,
)
from .persistence import (
    FileProjectStore,
    InMemoryProjectStore,
    ProjectRecord,
    ProjectStore,
)
from .scene_ids import SceneId, normalize_scene_id, scene_key

__all__ = [
    "SceneId",
    "normalize_scene_id",
    "scene_key",
    "SCENE_GROUP_FIELD",
    "decode_scene_groups",
    "encode_scene_groups",
    "Grouping",
    "SceneGroupInfo",
    "normalize_scene_groups",
    "auto_group_scenes",
    "auto_group_scene_order",
    "toggle_scene_link",
    "are_scenes_linked",
    "scene_group_info",
    "scene_group_signature",
    "SceneGroupEditor",
    "SceneGroupBusyError",
    "WriteResult",
    "ProjectRecord",
    "ProjectStore",
    "InMemoryProjectStore",
    "FileProjectStore",
]
