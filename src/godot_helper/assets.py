"""Immutable text snapshots of the project's auxiliary assets."""
from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable


RES_SCHEME = "res://"


def content_digest(text: str) -> str:
    """Content identity of a text snapshot."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class TextSnapshot:
    """
    One asset's text, captured before a generation pass starts.

    Equality is content identity: two snapshots of the same path with the
    same digest compare equal, so the cache engine sees them as unchanged.
    """
    path: str
    res_path: str
    digest: str
    text: str = field(compare=False, repr=False)

    @classmethod
    def from_text(cls, path: str | Path, text: str, *, project_root: str | Path) -> "TextSnapshot":
        return cls(
            path=Path(path).as_posix(),
            res_path=to_res_path(path, project_root),
            digest=content_digest(text),
            text=text,
        )

    @classmethod
    def read(cls, path: Path, *, project_root: Path) -> "TextSnapshot":
        return cls.from_text(path, path.read_text(encoding="utf-8", errors="replace"), project_root=project_root)

    @property
    def lines(self) -> list[str]:
        return self.text.splitlines()


def to_res_path(path: str | Path, project_root: str | Path) -> str:
    """
    Map a filesystem path to the engine's `res://` form.

    Paths outside the project root keep their posix form with no scheme.
    """
    raw_path = str(path)
    if raw_path.startswith(RES_SCHEME):
        return raw_path
    absolute_path = os.path.abspath(raw_path)
    absolute_root = os.path.abspath(str(project_root))
    relative_path = os.path.relpath(absolute_path, absolute_root)
    if relative_path == os.curdir or relative_path.startswith(os.pardir):
        return Path(absolute_path).as_posix()
    return RES_SCHEME + Path(relative_path).as_posix()


def is_manifest(path: str | Path, manifest_name: str) -> bool:
    return Path(path).name == manifest_name


def is_scene(path: str | Path, scene_extension: str) -> bool:
    return Path(path).suffix == scene_extension


# Directories never scanned for assets
IGNORED_DIR_NAMES = frozenset({".godot", ".import", ".git", ".mono", "node_modules", "__pycache__"})


def iter_asset_paths(project_root: Path, *, manifest_name: str, scene_extension: str) -> Iterable[Path]:
    """Yield manifest and scene files below the project root, in sorted order."""
    for directory_path, directory_names, file_names in os.walk(project_root):
        directory_names[:] = sorted(name for name in directory_names if name not in IGNORED_DIR_NAMES)
        for file_name in sorted(file_names):
            candidate = Path(directory_path) / file_name
            if is_manifest(candidate, manifest_name) or is_scene(candidate, scene_extension):
                yield candidate


def read_asset_snapshots(project_root: Path, *, manifest_name: str, scene_extension: str) -> list[TextSnapshot]:
    """Capture every relevant asset under the project root."""
    return [
        TextSnapshot.read(asset_path, project_root=project_root)
        for asset_path in iter_asset_paths(project_root, manifest_name=manifest_name, scene_extension=scene_extension)
    ]
