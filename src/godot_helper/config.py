from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(".env", ".godot_helper.env"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Inputs
    project_root: Path = Field(default=Path("."), alias="GODOT_HELPER_PROJECT_ROOT")
    symbols_path: Path = Field(default=Path("symbols.json"), alias="GODOT_HELPER_SYMBOLS")

    # Output
    output_dir: Path = Field(default=Path(".godot/godot_helper"), alias="GODOT_HELPER_OUTPUT_DIR")

    # Asset filters
    manifest_name: str = Field(default="project.godot", alias="GODOT_HELPER_MANIFEST_NAME")
    scene_extension: str = Field(default=".tscn", alias="GODOT_HELPER_SCENE_EXTENSION")
    script_extension: str = Field(default=".cs", alias="GODOT_HELPER_SCRIPT_EXTENSION")

    # Watch mode
    watch_debounce_ms: int = Field(default=300, alias="GODOT_HELPER_WATCH_DEBOUNCE_MS")

    @property
    def resolved_project_root(self) -> Path:
        return self.project_root.expanduser().resolve()

    @property
    def resolved_symbols_path(self) -> Path:
        if self.symbols_path.is_absolute():
            return self.symbols_path
        return self.resolved_project_root / self.symbols_path

    @property
    def resolved_output_dir(self) -> Path:
        if self.output_dir.is_absolute():
            return self.output_dir
        return self.resolved_project_root / self.output_dir
