"""Command-line entry point for the scene grouping tools."""

from __future__ import annotations

import argparse
import json
import logging
import os
import subprocess
import sys
from pathlib import Path
from typing import Any, Sequence

from scenelink import (
    auto_group_scenes,
    encode_scene_groups,
    normalize_scene_groups,
    scene_group_signature,
    toggle_scene_link,
)
from scenelink.scene_ids import normalize_scene_id

logger = logging.getLogger("scenelink.cli")


def _parse_scene_order(value: str) -> list[Any]:
    """Parse ``"1,2,3"`` or a JSON array into a scene order."""

    trimmed = value.strip()
    if trimmed.startswith("["):
        try:
            parsed = json.loads(trimmed)
        except json.JSONDecodeError as exc:
            raise argparse.ArgumentTypeError(f"Invalid scene order JSON: {exc}") from exc
        if not isinstance(parsed, list):
            raise argparse.ArgumentTypeError("Scene order JSON must be an array.")
        return [normalize_scene_id(item) for item in parsed]

    return [normalize_scene_id(part) for part in trimmed.split(",") if part.strip()]


def _parse_groups(value: str) -> Any:
    try:
        return json.loads(value)
    except json.JSONDecodeError as exc:
        raise argparse.ArgumentTypeError(f"Invalid grouping JSON: {exc}") from exc


def _location_count(value: str) -> int | None:
    trimmed = value.strip().lower()
    if trimmed in ("", "none", "all"):
        return None
    try:
        return int(trimmed)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(
            "Location count must be an integer or 'all'."
        ) from exc


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Scene grouping tools")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: WARNING).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP API with uvicorn.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument(
        "--project-root",
        type=Path,
        help="Directory used to store projects (default: in-memory).",
    )
    serve.add_argument("--reload", action="store_true")

    auto = subparsers.add_parser(
        "auto-group", help="Split N scenes evenly into location groups."
    )
    auto.add_argument("scene_count", type=int)
    auto.add_argument(
        "--locations",
        type=_location_count,
        default=None,
        help="Number of locations, or 'all' for one per scene (default).",
    )

    normalize = subparsers.add_parser(
        "normalize", help="Repair a stored grouping against a scene order."
    )
    normalize.add_argument("--scenes", type=_parse_scene_order, required=True)
    normalize.add_argument("--groups", type=_parse_groups, default=None)

    toggle = subparsers.add_parser(
        "toggle", help="Link or unlink two adjacent scenes."
    )
    toggle.add_argument("scene_a")
    toggle.add_argument("scene_b")
    toggle.add_argument("--scenes", type=_parse_scene_order, required=True)
    toggle.add_argument("--groups", type=_parse_groups, default=None)

    return parser.parse_args(argv)


def _emit(groups: list[list[Any]]) -> None:
    payload = {
        "groups": groups,
        "scene_group": encode_scene_groups(groups),
        "signature": scene_group_signature(groups),
    }
    print(json.dumps(payload))


def _serve(args: argparse.Namespace) -> int:
    command = [
        sys.executable,
        "-m",
        "uvicorn",
        "scenelink.api.app:create_app",
        "--factory",
        "--host",
        args.host,
        "--port",
        str(args.port),
    ]
    if args.reload:
        command.append("--reload")

    env = os.environ.copy()
    if args.project_root is not None:
        env["SCENELINK_PROJECT_ROOT"] = str(args.project_root)

    logger.info("Starting API server on %s:%s", args.host, args.port)
    try:
        return subprocess.call(command, env=env)
    except OSError as exc:
        print(f"Failed to launch API server: {exc}")
        raise SystemExit(2) from exc


def main(argv: Sequence[str] | None = None) -> None:
    """Run the requested scene grouping command."""

    args = _parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "serve":
        exit_code = _serve(args)
        if exit_code:
            raise SystemExit(exit_code)
        return

    if args.command == "auto-group":
        _emit(auto_group_scenes(args.scene_count, args.locations))
        return

    if args.command == "normalize":
        _emit(normalize_scene_groups(args.groups, args.scenes))
        return

    if args.command == "toggle":
        _emit(toggle_scene_link(args.groups, args.scene_a, args.scene_b, args.scenes))
        return


if __name__ == "__main__":  # pragma: no cover - manual invocation
    main()
