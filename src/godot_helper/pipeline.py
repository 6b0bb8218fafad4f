"""
Wiring of the generation pass.

Asset snapshots and type symbols enter as input streams; parsers and the
scanner run per item; manifest singleton entries are joined against declared
singleton classes by name, scene connections against declared classes by
script path; the emitters render fragments from those joins and from the
collected aggregates. Every output is reached by pulling on the task graph,
so only the branches touched by changed inputs are recomputed.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from .assets import RES_SCHEME, TextSnapshot, is_manifest, is_scene, read_asset_snapshots, to_res_path
from .cache import CancellationToken, JoinPair, Outcome, TaskGraph
from .config import Settings
from .diagnostics import (
    AMBIGUOUS_SINGLETON,
    DUPLICATE_HINT_NAME,
    UNREGISTERED_SINGLETON,
    Diagnostic,
    SourceLocation,
    sort_diagnostics,
)
from .emitter import (
    EmitterRegistry,
    GeneratedFragment,
    SingletonRegistry,
    SingletonSlot,
    create_default_registry,
    render_class_helpers,
    render_connection_list,
    render_input_actions,
    render_notify_properties,
    render_registry,
    render_singleton_class,
)
from .manifest import EntryKind, ManifestEntry, parse_manifest
from .scanner import MemberKind, ScannedClass, scan_class
from .scene import parse_scene
from .symbols import GLOBAL_PREFIX, TypeSymbol, load_symbol_snapshot


TYPE_ARGUMENTS_REGEX = re.compile(r"<.*>$")


@dataclass(frozen=True)
class GenerationResult:
    fragments: tuple[GeneratedFragment, ...]
    diagnostics: tuple[Diagnostic, ...]

    @property
    def has_errors(self) -> bool:
        return any(diagnostic.is_error for diagnostic in self.diagnostics)

    @property
    def hint_names(self) -> list[str]:
        return [fragment.hint_name for fragment in self.fragments]

    def fragment(self, hint_name: str) -> GeneratedFragment | None:
        for fragment in self.fragments:
            if fragment.hint_name == hint_name:
                return fragment
        return None


class GeneratorPipeline:
    """Incremental generator: feed inputs, then `run()` to pull every fragment."""

    def __init__(
        self,
        *,
        project_root: str | Path = ".",
        manifest_name: str = "project.godot",
        scene_extension: str = ".tscn",
        script_extension: str = ".cs",
        emitter_registry: EmitterRegistry | None = None,
    ) -> None:
        self.project_root = Path(project_root)
        self.manifest_name = manifest_name
        self.scene_extension = scene_extension
        self.script_extension = script_extension
        self.emitter_registry = emitter_registry or create_default_registry()
        self.graph = TaskGraph()
        self._build_graph()

    @classmethod
    def from_settings(cls, settings: Settings) -> "GeneratorPipeline":
        return cls(
            project_root=settings.resolved_project_root,
            manifest_name=settings.manifest_name,
            scene_extension=settings.scene_extension,
            script_extension=settings.script_extension,
        )

    # ============================================================
    # Graph construction
    # ============================================================

    def _build_graph(self) -> None:
        graph = self.graph

        # Inputs
        self.manifest_files = graph.input_stream("manifest_files")
        self.scene_files = graph.input_stream("scene_files")
        self.type_symbols = graph.input_stream("type_symbols")

        # Manifest -> entries
        self.manifest_entries = self.manifest_files.map("manifest_entries", lambda snapshot: parse_manifest(snapshot.lines))
        self.entries = self.manifest_entries.flatten(
            "manifest_entry",
            lambda entries: [((entry.kind.value, entry.name), entry) for entry in entries],
        )
        self.singleton_entries = self.entries.map(
            "singleton_entries",
            lambda entry: entry if entry.kind is EntryKind.SINGLETON else None,
        )
        self.input_action_entries = self.entries.map(
            "input_action_entries",
            lambda entry: entry if entry.kind is EntryKind.INPUT_ACTION else None,
        )
        self.registered_names = self.singleton_entries.collect("singleton_entry_list")

        # Scenes -> connections
        self.scene_assets = self.scene_files.map(
            "scene_assets",
            lambda snapshot: parse_scene(snapshot.res_path, snapshot.lines, script_extension=self.script_extension),
        )
        self.connections = self.scene_assets.flatten("scene_connections", lambda asset: asset.connection_references())

        # Types -> scanned classes
        self.scanned_classes = self.type_symbols.map("scanned_classes", lambda symbol: scan_class(symbol, self.resolve_type))
        self.singleton_classes = self.scanned_classes.map("singleton_classes", lambda scanned: scanned.singleton)
        self.class_records = self.scanned_classes.map(
            "class_records",
            lambda scanned: scanned.class_record if scanned.class_record is not None and scanned.class_record.methods else None,
        )

        # Joins
        self.singleton_pairs = self.singleton_entries.join(
            "singleton_pairs",
            self.singleton_classes,
            left_keys=lambda entry: (entry.name,),
            right_key=lambda record: record.name,
        )
        self.singleton_slots = self.singleton_pairs.map("singleton_slots", self._resolve_slot)
        self.class_connections = self.class_records.join(
            "class_connections",
            self.connections,
            left_keys=lambda record: self.script_res_paths(record.source_paths),
            right_key=lambda connection: connection.script_path,
        )

        # Aggregates
        self.slot_list = self.singleton_slots.collect("singleton_slot_list")
        self.singleton_registry = graph.value("singleton_registry", self._build_registry)
        self.input_action_list = self.input_action_entries.collect("input_action_list")

        # Fragments
        self.registry_fragment = graph.value("registry_fragment", lambda g: render_registry(self.singleton_registry.get()))
        self.input_action_fragment = graph.value(
            "input_action_fragment",
            lambda g: render_input_actions(self._unique_entries(self.input_action_list.values())),
        )
        self.singleton_fragments = self.singleton_slots.map("singleton_fragments", render_singleton_class)
        self.helper_fragments = self.scanned_classes.map(
            "helper_fragments",
            lambda scanned: render_class_helpers(scanned, self.emitter_registry),
        )
        self.notify_fragments = self.scanned_classes.map("notify_fragments", render_notify_properties)
        self.connection_fragments = self.class_connections.map(
            "connection_fragments",
            lambda pair: render_connection_list(pair.left, pair.right) if pair.right else None,
        )
        self.unregistered_singletons = self.scanned_classes.combine(
            "unregistered_singletons",
            self.registered_names,
            self._check_registered,
        )

        self.fragment_streams = (
            self.singleton_fragments,
            self.helper_fragments,
            self.notify_fragments,
            self.connection_fragments,
        )
        self.fragment_lists = tuple(stream.collect(f"{stream.name}.list") for stream in self.fragment_streams)
        self.assembled = graph.value("generated_fragments", self._assemble_fragments)
        self.diagnostics = graph.value("pipeline_diagnostics", self._collect_diagnostics)

    # ============================================================
    # Per-item and aggregate steps
    # ============================================================

    def resolve_type(self, type_name: str) -> Optional[TypeSymbol]:
        """Resolve a base/containing type name through the graph so the read is tracked."""
        lookup_name = type_name[len(GLOBAL_PREFIX):] if type_name.startswith(GLOBAL_PREFIX) else type_name
        lookup_name = TYPE_ARGUMENTS_REGEX.sub("", lookup_name.strip())
        return self.type_symbols.item(lookup_name)

    def script_res_paths(self, source_paths: Iterable[str]) -> tuple[str, ...]:
        """Script paths of a class as scene assets reference them (`res://...`)."""
        resolved_paths: list[str] = []
        for source_path in source_paths:
            if source_path.startswith(RES_SCHEME):
                resolved_paths.append(source_path)
                continue
            candidate = Path(source_path)
            if not candidate.is_absolute():
                candidate = self.project_root / candidate
            resolved_paths.append(to_res_path(candidate, self.project_root))
        return tuple(resolved_paths)

    def _resolve_slot(self, pair: JoinPair) -> Outcome:
        entry: ManifestEntry = pair.left
        if len(pair.right) == 1:
            return Outcome(value=SingletonSlot(name=entry.name, record=pair.right[0]))
        slot = SingletonSlot(name=entry.name)
        if not pair.right:
            return Outcome(value=slot)
        candidates = ", ".join(sorted(record.fully_qualified_name for record in pair.right))
        diagnostic = Diagnostic(
            diagnostic_id=AMBIGUOUS_SINGLETON,
            severity="warning",
            message=f"Singleton '{entry.name}' matches several declared classes ({candidates}); using an untyped slot.",
            location=SourceLocation(path=f"{RES_SCHEME}{self.manifest_name}"),
        )
        return Outcome(value=slot, diagnostics=(diagnostic,))

    def _build_registry(self, graph: TaskGraph) -> SingletonRegistry:
        slots_by_name: dict[str, SingletonSlot] = {}
        for slot in self.slot_list.values():
            slots_by_name.setdefault(slot.name, slot)
        return SingletonRegistry.from_slots(slots_by_name.values())

    @staticmethod
    def _unique_entries(entries: Iterable[ManifestEntry]) -> list[ManifestEntry]:
        entries_by_name: dict[str, ManifestEntry] = {}
        for entry in entries:
            entries_by_name.setdefault(entry.name, entry)
        return list(entries_by_name.values())

    def _check_registered(self, scanned: ScannedClass, registered_entries: tuple) -> Outcome | None:
        if scanned.singleton is None:
            return None
        registered = {entry.name for _key, entry in registered_entries}
        if scanned.singleton.name in registered:
            return None
        singleton_member = scanned.members_of(MemberKind.SINGLETON_CLASS)
        location = singleton_member[0].location if singleton_member else SourceLocation()
        diagnostic = Diagnostic(
            diagnostic_id=UNREGISTERED_SINGLETON,
            severity="info",
            message=f"Class {scanned.qualified_name} is marked as a singleton but {self.manifest_name} does not register it.",
            location=location,
        )
        return Outcome(value=None, diagnostics=(diagnostic,))

    def _assemble_fragments(self, graph: TaskGraph) -> tuple[tuple[GeneratedFragment, ...], tuple[Diagnostic, ...]]:
        """All fragments sorted by hint name; the first of two with the same hint wins."""
        candidates: list[GeneratedFragment] = []
        for single_fragment in (self.registry_fragment.get(), self.input_action_fragment.get()):
            if single_fragment is not None:
                candidates.append(single_fragment)
        for fragment_list in self.fragment_lists:
            candidates.extend(fragment_list.values())

        fragments_by_hint: dict[str, GeneratedFragment] = {}
        duplicate_diagnostics: list[Diagnostic] = []
        for fragment in sorted(candidates, key=lambda candidate: (candidate.hint_name, candidate.text)):
            if fragment.hint_name in fragments_by_hint:
                duplicate_diagnostics.append(
                    Diagnostic(
                        diagnostic_id=DUPLICATE_HINT_NAME,
                        severity="error",
                        message=f"Two generated fragments share the name {fragment.hint_name}; only one was kept.",
                        location=SourceLocation(path=fragment.hint_name),
                    )
                )
                continue
            fragments_by_hint[fragment.hint_name] = fragment
        return tuple(fragments_by_hint.values()), tuple(duplicate_diagnostics)

    def _collect_diagnostics(self, graph: TaskGraph) -> tuple[Diagnostic, ...]:
        collected: list[Diagnostic] = []
        for stream in (
            self.manifest_entries,
            self.scene_assets,
            self.scanned_classes,
            self.singleton_slots,
            self.unregistered_singletons,
            *self.fragment_streams,
        ):
            collected.extend(stream.diagnostics())
        _fragments, duplicate_diagnostics = self.assembled.get()
        collected.extend(duplicate_diagnostics)
        return sort_diagnostics(collected)

    # ============================================================
    # Inputs
    # ============================================================

    def update_assets(self, snapshots: Iterable[TextSnapshot], removed_paths: Iterable[str] = ()) -> set:
        """Apply changed asset snapshots; paths are matched by their posix form."""
        changed_manifests: dict[str, TextSnapshot] = {}
        changed_scenes: dict[str, TextSnapshot] = {}
        for snapshot in snapshots:
            if is_manifest(snapshot.path, self.manifest_name):
                changed_manifests[snapshot.path] = snapshot
            elif is_scene(snapshot.path, self.scene_extension):
                changed_scenes[snapshot.path] = snapshot

        removed = [Path(path).as_posix() for path in removed_paths]
        changed_keys = set(self.manifest_files.update(changed_manifests, [p for p in removed if is_manifest(p, self.manifest_name)]))
        changed_keys |= self.scene_files.update(changed_scenes, [p for p in removed if is_scene(p, self.scene_extension)])
        return changed_keys

    def replace_assets(self, snapshots: Iterable[TextSnapshot]) -> set:
        """Make the asset inputs hold exactly these snapshots."""
        manifests: dict[str, TextSnapshot] = {}
        scenes: dict[str, TextSnapshot] = {}
        for snapshot in snapshots:
            if is_manifest(snapshot.path, self.manifest_name):
                manifests[snapshot.path] = snapshot
            elif is_scene(snapshot.path, self.scene_extension):
                scenes[snapshot.path] = snapshot
        return self.manifest_files.replace_all(manifests) | self.scene_files.replace_all(scenes)

    def update_symbols(self, symbols_by_name: dict[str, TypeSymbol]) -> set:
        """Replace the symbol snapshot; only types whose declaration changed are marked dirty."""
        return self.type_symbols.replace_all(symbols_by_name)

    def load_project(self, symbols_path: Path) -> None:
        """Read every asset below the project root plus the symbol snapshot."""
        self.replace_assets(
            read_asset_snapshots(self.project_root, manifest_name=self.manifest_name, scene_extension=self.scene_extension)
        )
        self.update_symbols(load_symbol_snapshot(symbols_path))

    # ============================================================
    # Evaluation
    # ============================================================

    def run(self, token: CancellationToken | None = None) -> GenerationResult:
        """Pull every fragment and diagnostic for the current inputs."""
        with self.graph.generation_pass(token):
            fragments, _duplicates = self.assembled.get()
            diagnostics = self.diagnostics.get()
        return GenerationResult(fragments=fragments, diagnostics=diagnostics)

    def scanned(self) -> list[ScannedClass]:
        return [scanned for _key, scanned in self.scanned_classes.items()]
