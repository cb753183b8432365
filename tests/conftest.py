"""Test configuration for the scene grouping project."""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from datetime import datetime, timedelta, timezone
from typing import Any, Sequence

import pytest

from scenelink.scene_ids import scene_key


class SteppingClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


def assert_valid_grouping(groups: Sequence[Sequence[Any]], scene_order: Sequence[Any]) -> None:
    """Assert that ``groups`` is an ordered partition of ``scene_order``."""

    position = {scene_key(scene_id): index for index, scene_id in enumerate(scene_order)}
    seen: list[str] = []
    for group in groups:
        assert group, "groups must not be empty"
        keys = [scene_key(scene_id) for scene_id in group]
        assert all(key in position for key in keys)
        assert [position[key] for key in keys] == sorted(position[key] for key in keys)
        seen.extend(keys)

    assert len(seen) == len(set(seen))
    assert set(seen) == set(position)

    leaders = [position[scene_key(group[0])] for group in groups]
    assert leaders == sorted(leaders)


@pytest.fixture()
def clock() -> SteppingClock:
    return SteppingClock()


__all__ = ["SteppingClock", "assert_valid_grouping", "clock"]
