"""
Read-only snapshot of the compiled program's declared types.

The host build exports its symbol graph as JSON; each `types[]` entry is one
declaration fragment (a partial class contributes one entry per file).
Member and parameter types are display strings exactly as the compiler prints
them (`global::Godot.Button`, `int`), while `base_type` and
`containing_type` are qualified names without the `global::` prefix so the
graph can be walked.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .diagnostics import SourceLocation, SymbolGraphError


GLOBAL_PREFIX = "global::"


class SymbolModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class Location(SymbolModel):
    path: str = ""
    line: int = 0
    column: int = 0

    def to_source_location(self) -> SourceLocation:
        return SourceLocation(path=self.path, line=self.line, column=self.column)


def lookup_name_of(name: str, namespace: str = "", containing_type: Optional[str] = None) -> str:
    if containing_type:
        return f"{containing_type}.{name}"
    if namespace:
        return f"{namespace}.{name}"
    return name


class MarkerData(SymbolModel):
    """One marker (attribute) application with its constructor arguments."""
    name: str
    args: tuple[Any, ...] = ()
    named_args: tuple[tuple[str, Any], ...] = ()

    @field_validator("named_args", mode="before")
    @classmethod
    def _named_args_from_mapping(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return tuple(sorted(value.items(), key=lambda item: item[0]))
        return value

    def positional(self, index: int, default: Any = None) -> Any:
        if index < len(self.args) and self.args[index] is not None:
            return self.args[index]
        return default

    def named(self, key: str, default: Any = None) -> Any:
        for arg_name, arg_value in self.named_args:
            if arg_name == key:
                return arg_value
        return default


class ParameterSymbol(SymbolModel):
    name: str
    type: str


class MemberSymbol(SymbolModel):
    kind: Literal["field", "property", "method", "delegate", "event"]
    name: str
    type: str = "void"
    is_static: bool = False
    is_implicit: bool = False
    method_kind: str = "ordinary"
    parameters: tuple[ParameterSymbol, ...] = ()
    markers: tuple[MarkerData, ...] = ()
    location: Location = Field(default_factory=Location)

    def find_marker(self, marker_name: str) -> Optional[MarkerData]:
        for marker in self.markers:
            if marker.name == marker_name:
                return marker
        return None


class TypeSymbol(SymbolModel):
    name: str
    namespace: str = ""
    containing_type: Optional[str] = None
    assembly: str = ""
    kind: Literal["class", "struct", "interface", "record", "delegate"] = "class"
    type_parameters: tuple[str, ...] = ()
    base_type: Optional[str] = None
    source_paths: tuple[str, ...] = ()
    markers: tuple[MarkerData, ...] = ()
    members: tuple[MemberSymbol, ...] = ()
    location: Location = Field(default_factory=Location)

    @property
    def qualified_name(self) -> str:
        """Fully-qualified name without the `global::` prefix."""
        if self.containing_type:
            return f"{self.containing_type}.{self.name_with_type_parameters}"
        if self.namespace:
            return f"{self.namespace}.{self.name_with_type_parameters}"
        return self.name_with_type_parameters

    @property
    def lookup_name(self) -> str:
        """Qualified name used for graph lookups (type parameters omitted)."""
        return lookup_name_of(self.name, self.namespace, self.containing_type)

    @property
    def identity(self) -> tuple[str, str]:
        return (self.assembly, self.lookup_name)

    @property
    def name_with_type_parameters(self) -> str:
        if self.type_parameters:
            return f"{self.name}<{', '.join(self.type_parameters)}>"
        return self.name

    @property
    def display_name(self) -> str:
        return GLOBAL_PREFIX + self.qualified_name

    def find_marker(self, marker_name: str) -> Optional[MarkerData]:
        for marker in self.markers:
            if marker.name == marker_name:
                return marker
        return None


# ============================================================
# Snapshot document
# ============================================================

class TypeFragment(SymbolModel):
    """One declaration fragment as it appears in the JSON snapshot."""
    name: str
    namespace: str = ""
    containing_type: Optional[str] = None
    assembly: str = ""
    kind: Literal["class", "struct", "interface", "record", "delegate"] = "class"
    type_parameters: tuple[str, ...] = ()
    base_type: Optional[str] = None
    source_path: Optional[str] = None
    markers: tuple[MarkerData, ...] = ()
    members: tuple[MemberSymbol, ...] = ()
    location: Location = Field(default_factory=Location)


class SymbolSnapshot(SymbolModel):
    types: tuple[TypeFragment, ...] = ()


def merge_fragments(fragments: Iterable[TypeFragment]) -> dict[str, TypeSymbol]:
    """
    Merge partial declaration fragments into one symbol per type.

    Returns symbols keyed by lookup name. Fragments are merged when they share
    (assembly, qualified name); the same name in two assemblies is an error.
    """
    merged_fragments: dict[str, list[TypeFragment]] = {}
    assembly_by_name: dict[str, str] = {}

    for fragment in fragments:
        lookup_name = lookup_name_of(fragment.name, fragment.namespace, fragment.containing_type)
        previous_assembly = assembly_by_name.get(lookup_name)
        if previous_assembly is not None and previous_assembly != fragment.assembly:
            raise SymbolGraphError(
                f"Type {lookup_name} is declared in both assembly {previous_assembly!r} and {fragment.assembly!r}."
            )
        assembly_by_name[lookup_name] = fragment.assembly
        merged_fragments.setdefault(lookup_name, []).append(fragment)

    symbols_by_name: dict[str, TypeSymbol] = {}
    for lookup_name, type_fragments in merged_fragments.items():
        first = type_fragments[0]
        base_type = next((f.base_type for f in type_fragments if f.base_type), None)
        source_paths: list[str] = []
        markers: list[MarkerData] = []
        members: list[MemberSymbol] = []
        for fragment in type_fragments:
            if fragment.source_path and fragment.source_path not in source_paths:
                source_paths.append(fragment.source_path)
            markers.extend(marker for marker in fragment.markers if marker not in markers)
            members.extend(fragment.members)
        symbols_by_name[lookup_name] = TypeSymbol(
            name=first.name,
            namespace=first.namespace,
            containing_type=first.containing_type,
            assembly=first.assembly,
            kind=first.kind,
            type_parameters=first.type_parameters,
            base_type=base_type,
            source_paths=tuple(source_paths),
            markers=tuple(markers),
            members=tuple(members),
            location=first.location,
        )
    return symbols_by_name


def parse_symbol_snapshot(document: Any) -> dict[str, TypeSymbol]:
    """Validate a decoded JSON document and merge it into type symbols."""
    try:
        snapshot = SymbolSnapshot.model_validate(document)
    except ValidationError as validation_error:
        raise SymbolGraphError(f"Invalid symbol snapshot:\n{validation_error}") from validation_error
    return merge_fragments(snapshot.types)


def load_symbol_snapshot(path: Path) -> dict[str, TypeSymbol]:
    """Read a JSON symbol snapshot from disk."""
    if not path.is_file():
        raise SymbolGraphError(f"Symbol snapshot not found: {path}")
    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as decode_error:
        raise SymbolGraphError(f"{path}:{decode_error.lineno}:{decode_error.colno} {decode_error.msg}") from decode_error
    return parse_symbol_snapshot(document)
