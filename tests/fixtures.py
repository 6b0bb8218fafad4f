"""Shared project fixtures: a small symbol snapshot, a manifest and a scene."""
from __future__ import annotations

import json
from pathlib import Path

from godot_helper.assets import TextSnapshot
from godot_helper.pipeline import GeneratorPipeline
from godot_helper.scanner import (
    ACCESSOR_MARKER,
    EVENT_SIGNAL_MARKER,
    NOTIFY_MARKER,
    REMOTE_CALL_MARKER,
    SINGLETON_MARKER,
)
from godot_helper.symbols import parse_symbol_snapshot


PROJECT_DIR = "/project"

MANIFEST_TEXT = """\
; Engine configuration file.
config_version=5

[application]

config/name="Demo"
run/main_scene="res://main.tscn"

[autoload]

GameState="*res://Autoload/GameState.cs"
Audio="*res://Autoload/audio.gd"

[input]

move_up={
"deadzone": 0.5,
"events": [Object(InputEventKey,"resource_local_to_scene":false,"keycode":0,"physical_keycode":87)]
}
jump={
"deadzone": 0.5,
"events": []
}

[rendering]

renderer/rendering_method="mobile"
"""

SCENE_TEXT = """\
[gd_scene load_steps=3 format=3 uid="uid://cv1"]

[ext_resource type="Script" path="res://Player.cs" id="1_player"]
[ext_resource type="Texture2D" uid="uid://icon" path="res://icon.svg" id="2_icon"]

[node name="Player" type="Node2D"]
script = ExtResource("1_player")

[node name="Button" type="Button" parent="."]
text = "Fire"

[connection signal="pressed" from="Button" to="." method="OnButtonPressed"]
"""


def marker(name: str, *args: object, **named_args: object) -> dict[str, object]:
    return {"name": name, "args": list(args), "named_args": named_args}


def engine_types() -> list[dict[str, object]]:
    return [
        {"name": "GodotObject", "namespace": "Godot", "assembly": "GodotSharp"},
        {"name": "Node", "namespace": "Godot", "assembly": "GodotSharp", "base_type": "Godot.GodotObject"},
        {"name": "Node2D", "namespace": "Godot", "assembly": "GodotSharp", "base_type": "Godot.Node"},
    ]


def player_type() -> dict[str, object]:
    return {
        "name": "Player",
        "namespace": "Game",
        "assembly": "Game",
        "base_type": "Godot.Node2D",
        "source_path": "Player.cs",
        "location": {"path": "Player.cs", "line": 5, "column": 22},
        "members": [
            {
                "kind": "field",
                "name": "_label",
                "type": "global::Godot.Label",
                "markers": [marker(ACCESSOR_MARKER)],
                "location": {"path": "Player.cs", "line": 8, "column": 20},
            },
            {
                "kind": "field",
                "name": "_sprite",
                "type": "global::Godot.Sprite2D",
                "markers": [marker(ACCESSOR_MARKER, "Body/Sprite", False)],
            },
            {
                "kind": "property",
                "name": "Camera",
                "type": "global::Godot.Camera2D",
                "markers": [marker(ACCESSOR_MARKER, "Camera2D")],
            },
            {"kind": "field", "name": "_hp", "type": "int", "markers": [marker(NOTIFY_MARKER)]},
            {
                "kind": "method",
                "name": "Fire",
                "parameters": [{"name": "a", "type": "int"}, {"name": "b", "type": "string"}],
                "markers": [marker(REMOTE_CALL_MARKER)],
            },
            {
                "kind": "delegate",
                "name": "DeathEventHandler",
                "parameters": [{"name": "hp", "type": "int"}],
                "markers": [marker(EVENT_SIGNAL_MARKER)],
            },
            {"kind": "method", "name": "OnButtonPressed"},
        ],
    }


def game_state_type(namespace: str = "Game") -> dict[str, object]:
    return {
        "name": "GameState",
        "namespace": namespace,
        "assembly": "Game",
        "base_type": "Godot.Node",
        "source_path": "Autoload/GameState.cs",
        "markers": [marker(SINGLETON_MARKER)],
        "location": {"path": "Autoload/GameState.cs", "line": 4, "column": 22},
    }


def plain_type() -> dict[str, object]:
    return {
        "name": "Plain",
        "namespace": "Game",
        "assembly": "Game",
        "source_path": "Plain.cs",
        "members": [{"kind": "field", "name": "_score", "type": "int", "markers": [marker(NOTIFY_MARKER)]}],
    }


def symbol_document(*extra_types: dict[str, object]) -> dict[str, object]:
    return {"types": engine_types() + [player_type(), game_state_type(), plain_type(), *extra_types]}


def snapshot(relative_path: str, text: str, project_dir: str = PROJECT_DIR) -> TextSnapshot:
    return TextSnapshot.from_text(f"{project_dir}/{relative_path}", text, project_root=project_dir)


def build_pipeline(
    *,
    document: dict[str, object] | None = None,
    manifest_text: str = MANIFEST_TEXT,
    scenes: dict[str, str] | None = None,
) -> GeneratorPipeline:
    """A pipeline fed entirely from memory, rooted at /project."""
    pipeline = GeneratorPipeline(project_root=PROJECT_DIR)
    scene_texts = {"main.tscn": SCENE_TEXT} if scenes is None else scenes
    pipeline.replace_assets(
        [snapshot("project.godot", manifest_text)]
        + [snapshot(relative_path, text) for relative_path, text in scene_texts.items()]
    )
    pipeline.update_symbols(parse_symbol_snapshot(document or symbol_document()))
    return pipeline


def write_project(project_dir: Path, *, document: dict[str, object] | None = None) -> None:
    """Lay the fixture project out on disk."""
    (project_dir / "project.godot").write_text(MANIFEST_TEXT, encoding="utf-8")
    (project_dir / "main.tscn").write_text(SCENE_TEXT, encoding="utf-8")
    (project_dir / "symbols.json").write_text(json.dumps(document or symbol_document(), indent=2), encoding="utf-8")
