"""Unit tests for the :mod:`scenelink.scene_ids` module."""

import math

import pytest

from scenelink import normalize_scene_id, scene_key


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (3, 3),
        ("3", 3),
        (" 4 ", 4),
        ("07", 7),
        ("4.0", 4),
        (5.0, 5),
        ("1e3", 1000),
    ],
)
def test_normalize_converts_lossless_integers(raw, expected) -> None:
    normalized = normalize_scene_id(raw)

    assert normalized == expected
    assert isinstance(normalized, int)


@pytest.mark.parametrize("raw", [5.5, "5.5", "intro", "", "   ", None, True, False])
def test_normalize_keeps_other_values_unchanged(raw) -> None:
    assert normalize_scene_id(raw) is raw


def test_normalize_keeps_non_finite_floats() -> None:
    assert math.isnan(normalize_scene_id(float("nan")))
    assert normalize_scene_id(float("inf")) == float("inf")
    assert normalize_scene_id("inf") == "inf"


@pytest.mark.parametrize("raw", [3, "3", " 4 ", 5.0, 5.5, "intro", None, True])
def test_normalize_is_idempotent(raw) -> None:
    once = normalize_scene_id(raw)

    assert normalize_scene_id(once) == once


def test_scene_key_treats_representations_of_a_scene_as_equal() -> None:
    assert scene_key(7) == scene_key("7") == scene_key("7.0") == scene_key(7.0) == "7"
    assert scene_key("intro") == "intro"
    assert scene_key(7) != scene_key("intro")
