"""Configuration helpers for deploying the FastAPI project service."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from ..persistence import DEFAULT_PROJECT_STATUS


def _normalise_path(value: str | None) -> Path | None:
    if value is None:
        return None

    trimmed = value.strip()
    if not trimmed:
        return None

    return Path(trimmed).expanduser()


def _normalise_string(value: str | None, *, default: str) -> str:
    if value is None:
        return default

    trimmed = value.strip()
    return trimmed or default


@dataclass(frozen=True)
class SceneLinkApiSettings:
    """Deployment settings for the FastAPI application.

    Values come from environment variables so the service can be configured
    without code changes. Empty strings are treated as if the variable was
    unset. Without a project root, projects are kept in memory.
    """

    project_root: Path | None = None
    default_status: str = DEFAULT_PROJECT_STATUS

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "SceneLinkApiSettings":
        """Return settings populated from ``environ``.

        Args:
            environ: Optional mapping of environment variables. When omitted,
                :data:`os.environ` is used.
        """

        source = environ if environ is not None else os.environ

        return cls(
            project_root=_normalise_path(source.get("SCENELINK_PROJECT_ROOT")),
            default_status=_normalise_string(
                source.get("SCENELINK_DEFAULT_STATUS"),
                default=DEFAULT_PROJECT_STATUS,
            ),
        )


__all__ = ["SceneLinkApiSettings"]
