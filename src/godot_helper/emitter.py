"""Render generated C# fragments from scanned, joined and aggregated data."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable

from .diagnostics import DUPLICATE_ACCESSOR_PATH, SIGNAL_NAME_SUFFIX, DeclarationError, Diagnostic
from .manifest import ManifestEntry
from .scanner import DeclaredMember, MemberKind, ScannedClass, SingletonRecord, ClassRecord, include_global
from .scene import ConnectionReference


# ============================================================
# Naming rules
# ============================================================

REGISTRY_HINT_NAME = "HelperGenerator_AutoLoad.g.cs"
INPUT_ACTION_HINT_NAME = "HelperGenerator_InputActionName.g.cs"
HELPER_HINT_SUFFIX = "_GodotHelper.g.cs"
CONNECTION_HINT_SUFFIX = "_GodotHelper_ConnectionTscn.g.cs"
NOTIFY_HINT_SUFFIX = "_GodotHelperNotify.g.cs"

REGISTRY_CLASS_NAME = "AutoLoad"
INPUT_ACTION_CLASS_NAME = "InputActionName"
GENERIC_SLOT_TYPE = "Node"

REMOTE_CALL_PREFIX = "Rpc"
EVENT_EMIT_PREFIX = "Emit"
EVENT_HANDLER_SUFFIX = "EventHandler"

INDENT = "    "

IDENTIFIER_INVALID_CHARS_REGEX = re.compile(r"[^0-9A-Za-z_]")
CSHARP_KEYWORDS = frozenset({
    "abstract", "as", "base", "bool", "break", "byte", "case", "catch", "char", "checked", "class",
    "const", "continue", "decimal", "default", "delegate", "do", "double", "else", "enum", "event",
    "explicit", "extern", "false", "finally", "fixed", "float", "for", "foreach", "goto", "if",
    "implicit", "in", "int", "interface", "internal", "is", "lock", "long", "namespace", "new", "null",
    "object", "operator", "out", "override", "params", "private", "protected", "public", "readonly",
    "ref", "return", "sbyte", "sealed", "short", "sizeof", "stackalloc", "static", "string", "struct",
    "switch", "this", "throw", "true", "try", "typeof", "uint", "ulong", "unchecked", "unsafe",
    "ushort", "using", "virtual", "void", "volatile", "while",
})


def to_pascal_case(text: str) -> str:
    """Convert a field-like name (`_hp`, `max_hp`, `hpMax`) into PascalCase."""
    normalized = re.sub(r"[^0-9a-zA-Z_]+", "_", text)
    parts = [part for part in normalized.split("_") if part]
    return "".join(part[:1].upper() + part[1:] for part in parts)


def sanitize_identifier(name: str) -> str:
    """Turn an arbitrary action name into a valid C# identifier."""
    identifier = IDENTIFIER_INVALID_CHARS_REGEX.sub("_", name) or "_"
    if identifier[0].isdigit():
        identifier = "_" + identifier
    if identifier in CSHARP_KEYWORDS:
        identifier = "@" + identifier
    return identifier


def string_literal(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def event_signal_name(delegate_name: str) -> str | None:
    if not delegate_name.endswith(EVENT_HANDLER_SUFFIX) or delegate_name == EVENT_HANDLER_SUFFIX:
        return None
    return delegate_name[: -len(EVENT_HANDLER_SUFFIX)]


def file_scoped_namespace_lines(namespace: str) -> list[str]:
    if not namespace:
        return []
    return [f"namespace {namespace};", ""]


def fragment_text(output_lines: list[str]) -> str:
    return "\n".join(output_lines).rstrip() + "\n"


# ============================================================
# Emitted values
# ============================================================

@dataclass(frozen=True)
class GeneratedFragment:
    hint_name: str
    text: str


@dataclass(frozen=True)
class SingletonSlot:
    """One manifest singleton entry with the declared class it resolved to (if any)."""
    name: str
    record: SingletonRecord | None = None

    @property
    def is_typed(self) -> bool:
        return self.record is not None

    @property
    def slot_type(self) -> str:
        return self.record.fully_qualified_name if self.record is not None else GENERIC_SLOT_TYPE


@dataclass(frozen=True)
class SingletonRegistry:
    """
    Every singleton slot of one generation pass, ordered by slot name.

    Built once per pass from the joined manifest/class data and handed to the
    emitters; nothing about it is stored globally.
    """
    slots: tuple[SingletonSlot, ...] = ()

    @classmethod
    def from_slots(cls, slots: Iterable[SingletonSlot]) -> "SingletonRegistry":
        return cls(slots=tuple(sorted(slots, key=lambda slot: slot.name)))

    @property
    def typed_slots(self) -> tuple[SingletonSlot, ...]:
        return tuple(slot for slot in self.slots if slot.is_typed)

    @property
    def generic_slots(self) -> tuple[SingletonSlot, ...]:
        return tuple(slot for slot in self.slots if not slot.is_typed)


# ============================================================
# Per-class helper state + member handlers
# ============================================================

@dataclass
class HelperFragmentState:
    """Lines gathered for one class's helper fragment."""
    scanned: ScannedClass
    accessor_field_lines: list[str] = field(default_factory=list)
    accessor_property_lines: list[str] = field(default_factory=list)
    wrapper_lines: list[str] = field(default_factory=list)
    members_by_path: dict[str, DeclaredMember] = field(default_factory=dict)

    @property
    def has_accessors(self) -> bool:
        return bool(self.accessor_field_lines or self.accessor_property_lines)

    @property
    def is_empty(self) -> bool:
        return not self.has_accessors and not self.wrapper_lines


MemberHandler = Callable[[DeclaredMember, HelperFragmentState], None]


def handle_accessor(member: DeclaredMember, state: HelperFragmentState) -> None:
    """One lookup statement; two members may not target the same path."""
    node_path = member.node_path
    previous_member = state.members_by_path.get(node_path)
    if previous_member is not None:
        raise DeclarationError(
            Diagnostic(
                diagnostic_id=DUPLICATE_ACCESSOR_PATH,
                severity="error",
                message=(
                    f"Members '{previous_member.name}' and '{member.name}' of {member.owner} "
                    f"both resolve to node path '{node_path}'."
                ),
                location=member.location,
            )
        )
    state.members_by_path[node_path] = member

    lookup_call = "GetNode" if member.not_null else "GetNodeOrNull"
    statement = f"{INDENT * 2}{member.name} = {lookup_call}<{member.type}>({string_literal(node_path)});"
    if member.symbol_kind == "property":
        state.accessor_property_lines.append(statement)
    else:
        state.accessor_field_lines.append(statement)


def handle_remote_call(member: DeclaredMember, state: HelperFragmentState) -> None:
    """Broadcast and peer-directed wrappers with the method's parameters in order."""
    parameter_list = ", ".join(f"{parameter_type} {parameter_name}" for parameter_name, parameter_type in member.parameters)
    forwarded_args = "".join(f", {parameter_name}" for parameter_name, _ in member.parameters)
    directed_parameters = "long peerId" + (f", {parameter_list}" if parameter_list else "")

    state.wrapper_lines.extend([
        f'{INDENT}/// <inheritdoc cref="{member.name}"/>',
        f"{INDENT}public void {REMOTE_CALL_PREFIX}{member.name}({parameter_list})",
        f"{INDENT}{{",
        f"{INDENT * 2}Rpc(MethodName.{member.name}{forwarded_args});",
        f"{INDENT}}}",
        "",
        f'{INDENT}/// <inheritdoc cref="{member.name}"/>',
        f"{INDENT}public void {REMOTE_CALL_PREFIX}{member.name}({directed_parameters})",
        f"{INDENT}{{",
        f"{INDENT * 2}RpcId(peerId, MethodName.{member.name}{forwarded_args});",
        f"{INDENT}}}",
        "",
    ])


def handle_event_emit(member: DeclaredMember, state: HelperFragmentState) -> None:
    signal_name = event_signal_name(member.name)
    if signal_name is None:
        raise DeclarationError(
            Diagnostic(
                diagnostic_id=SIGNAL_NAME_SUFFIX,
                severity="error",
                message=f"Signal delegate '{member.name}' must end with '{EVENT_HANDLER_SUFFIX}'.",
                location=member.location,
            )
        )
    parameter_list = ", ".join(f"{parameter_type} {parameter_name}" for parameter_name, parameter_type in member.parameters)
    forwarded_args = "".join(f", {parameter_name}" for parameter_name, _ in member.parameters)

    state.wrapper_lines.extend([
        f'{INDENT}/// <inheritdoc cref="{include_global(f"{member.owner}.{member.name}")}"/>',
        f"{INDENT}public void {EVENT_EMIT_PREFIX}{signal_name}({parameter_list})",
        f"{INDENT}{{",
        f"{INDENT * 2}EmitSignal(SignalName.{signal_name}{forwarded_args});",
        f"{INDENT}}}",
        "",
    ])


@dataclass
class EmitterRegistry:
    """Member handlers for the per-class helper fragment, keyed by member kind."""
    member_handlers: dict[MemberKind, MemberHandler] = field(default_factory=dict)

    def add_member_handler(self, member_kind: MemberKind, handler: MemberHandler) -> None:
        self.member_handlers[member_kind] = handler

    def handle(self, member: DeclaredMember, state: HelperFragmentState) -> None:
        handler = self.member_handlers.get(member.kind)
        if handler is not None:
            handler(member, state)


def create_default_registry() -> EmitterRegistry:
    """Singleton classes and notify fields get fragments of their own."""
    registry = EmitterRegistry()
    registry.add_member_handler(MemberKind.ACCESSOR, handle_accessor)
    registry.add_member_handler(MemberKind.REMOTE_CALL, handle_remote_call)
    registry.add_member_handler(MemberKind.EVENT_EMIT, handle_event_emit)
    return registry


# ============================================================
# Fragment renderers
# ============================================================

def render_class_helpers(scanned: ScannedClass, registry: EmitterRegistry | None = None) -> GeneratedFragment | None:
    """Accessor body, remote-call wrappers and event-emit wrappers for one class."""
    if not scanned.derives_from_root:
        return None
    registry = registry or create_default_registry()

    state = HelperFragmentState(scanned=scanned)
    for member in scanned.members:
        registry.handle(member, state)
    if state.is_empty:
        return None

    output_lines = ["using Godot;", "using Godot.NativeInterop;", ""]
    if scanned.namespace:
        output_lines.extend([f"namespace {scanned.namespace} {{", ""])
    for keyword, containing_name in scanned.containing_declarations:
        output_lines.extend([f"partial {keyword} {containing_name}", "{"])
    output_lines.extend([f"partial class {scanned.name_with_type_parameters}", "{"])

    if state.has_accessors:
        output_lines.extend([f"{INDENT}public void GetNodes()", f"{INDENT}{{"])
        output_lines.extend(state.accessor_field_lines)
        if state.accessor_field_lines and state.accessor_property_lines:
            output_lines.append("")
        output_lines.extend(state.accessor_property_lines)
        output_lines.extend([f"{INDENT}}}", ""])

    output_lines.extend(state.wrapper_lines)
    while output_lines and output_lines[-1] == "":
        output_lines.pop()

    output_lines.append("}")
    output_lines.extend("}" for _ in scanned.containing_declarations)
    if scanned.namespace:
        output_lines.extend(["", "}"])
    return GeneratedFragment(hint_name=f"{scanned.hint_name}{HELPER_HINT_SUFFIX}", text=fragment_text(output_lines))


def render_registry(registry: SingletonRegistry) -> GeneratedFragment | None:
    """
    The `AutoLoad` slot class; generic slots are filled by name from the scene root.

    Only typed singleton classes call `ResolveOthers`, so a registry without
    one is not emitted.
    """
    if not registry.typed_slots:
        return None

    output_lines = ["using Godot;", "using System;", "", f"public partial class {REGISTRY_CLASS_NAME}", "{"]
    for slot in registry.slots:
        output_lines.append(f"{INDENT}public static {slot.slot_type} {slot.name} {{ get; set; }} = null!;")
    output_lines.extend(["", f"{INDENT}public static void ResolveOthers(Node node)", f"{INDENT}{{"])
    for slot in registry.generic_slots:
        output_lines.append(f"{INDENT * 2}{slot.name} ??= node.GetNode({string_literal('/root/' + slot.name)});")
    output_lines.extend([f"{INDENT}}}", "}"])
    return GeneratedFragment(hint_name=REGISTRY_HINT_NAME, text=fragment_text(output_lines))


def render_singleton_class(slot: SingletonSlot) -> GeneratedFragment | None:
    """Partial class that stores the instance into its registry slot when ready."""
    record = slot.record
    if record is None:
        return None

    constructor_lines = [f"{INDENT * 2}Ready -= base.ReadyCallback;"] if record.base_is_singleton else []
    output_lines = ["using Godot;", "using System;", ""]
    output_lines.extend(file_scoped_namespace_lines(record.namespace))
    output_lines.extend([
        f"public partial class {record.name}",
        "{",
        f"{INDENT}partial void OnInit();",
        f"{INDENT}public {record.name}()",
        f"{INDENT}{{",
        *constructor_lines,
        f"{INDENT * 2}Ready += ReadyCallback;",
        f"{INDENT * 2}OnInit();",
        f"{INDENT}}}",
        "",
        "#pragma warning disable CS0109",
        f"{INDENT}partial void OnReady();",
        f"{INDENT}public new void ReadyCallback()",
        f"{INDENT}{{",
        f"{INDENT * 2}{REGISTRY_CLASS_NAME}.{slot.name} = this;",
        f"{INDENT * 2}{REGISTRY_CLASS_NAME}.ResolveOthers(this);",
        f"{INDENT * 2}OnReady();",
        f"{INDENT}}}",
        "#pragma warning restore CS0109",
        "}",
    ])
    return GeneratedFragment(hint_name=record.hint_name, text=fragment_text(output_lines))


def render_input_actions(entries: Iterable[ManifestEntry]) -> GeneratedFragment | None:
    action_entries = sorted(entries, key=lambda entry: entry.name)
    if not action_entries:
        return None

    output_lines = ["using Godot;", "using System;", "", f"public partial class {INPUT_ACTION_CLASS_NAME}", "{"]
    for entry in action_entries:
        output_lines.append(
            f"{INDENT}public static readonly StringName {sanitize_identifier(entry.name)} = {string_literal(entry.name)};"
        )
    output_lines.append("}")
    return GeneratedFragment(hint_name=INPUT_ACTION_HINT_NAME, text=fragment_text(output_lines))


def render_connection_list(record: ClassRecord, connections: Iterable[ConnectionReference]) -> GeneratedFragment | None:
    """
    Tools-only method that references every scene-wired handler of a class.

    Methods are listed in declaration order; for each one, connections keep
    the order they arrive in (scene path, then position in the scene).
    """
    connection_list = list(connections)
    body_lines: list[str] = []
    for method_name, call_expression in record.methods:
        for connection in connection_list:
            if connection.method != method_name:
                continue
            body_lines.extend([
                "",
                f"{INDENT * 2}// {connection.scene_path} - FromNode: {connection.from_node} - Signal: {connection.signal}",
                f"{INDENT * 2}{call_expression}",
            ])
    if not body_lines:
        return None

    output_lines = ["using Godot;", "using System;", "using System.Collections.Generic;", ""]
    output_lines.extend(file_scoped_namespace_lines(record.namespace))
    output_lines.extend([
        "#pragma warning disable CS0162",
        "#if TOOLS",
        f"public partial class {record.name}",
        "{",
        f"{INDENT}public void GetMethodConnectionTscnList()",
        f"{INDENT}{{",
        f"{INDENT * 2}return;",
        *body_lines,
        f"{INDENT}}}",
        "}",
        "#endif // TOOLS",
        "#pragma warning restore CS0162",
    ])
    return GeneratedFragment(hint_name=f"{record.hint_name}{CONNECTION_HINT_SUFFIX}", text=fragment_text(output_lines))


def notify_property_lines(member: DeclaredMember, indent: str) -> list[str]:
    """
    Change-notifying property for one field, or nothing when the name would not change.

    The signal and export flags of the marker are not honored: the engine's
    own generator never sees generated output.
    """
    field_name = member.name
    field_type = member.type
    property_name = to_pascal_case(field_name)
    if not property_name or property_name == field_name:
        return []

    inner = indent + INDENT
    return [
        f"{indent}public event Action<{field_type}, {field_type}> {property_name}Changed;",
        f"{indent}partial void On{property_name}Changing({field_type} oldValue, {field_type} newValue);",
        f"{indent}partial void On{property_name}Changed({field_type} oldValue, {field_type} newValue);",
        "",
        f'{indent}/// <inheritdoc cref="{field_name}"/>',
        f"{indent}public {field_type} {property_name}",
        f"{indent}{{",
        f"{inner}get => {field_name};",
        f"{inner}set",
        f"{inner}{{",
        f"{inner}{INDENT}if (!EqualityComparer<{field_type}>.Default.Equals({field_name}, value))",
        f"{inner}{INDENT}{{",
        f"{inner}{INDENT * 2}var oldValue = {field_name};",
        f"{inner}{INDENT * 2}On{property_name}Changing(oldValue, value);",
        f"{inner}{INDENT * 2}{field_name} = value;",
        f"{inner}{INDENT * 2}On{property_name}Changed(oldValue, value);",
        f"{inner}{INDENT * 2}{property_name}Changed?.Invoke(oldValue, value);",
        f"{inner}{INDENT}}}",
        f"{inner}}}",
        f"{indent}}}",
        "",
    ]


def render_notify_properties(scanned: ScannedClass) -> GeneratedFragment | None:
    """Notify properties are only generated for top-level classes."""
    if scanned.is_nested:
        return None

    class_indent = INDENT if scanned.namespace else ""
    member_indent = class_indent + INDENT
    property_lines: list[str] = []
    for member in scanned.members_of(MemberKind.NOTIFY_FIELD):
        property_lines.extend(notify_property_lines(member, member_indent))
    if not property_lines:
        return None
    while property_lines and property_lines[-1] == "":
        property_lines.pop()

    output_lines = ["using Godot;", "using System;", "using System.Collections.Generic;", ""]
    if scanned.namespace:
        output_lines.extend([f"namespace {scanned.namespace}", "{"])
    output_lines.extend([f"{class_indent}public partial class {scanned.name_with_type_parameters}", f"{class_indent}{{"])
    output_lines.extend(property_lines)
    output_lines.append(f"{class_indent}}}")
    if scanned.namespace:
        output_lines.append("}")
    return GeneratedFragment(hint_name=f"{scanned.hint_name}{NOTIFY_HINT_SUFFIX}", text=fragment_text(output_lines))


# ============================================================
# Output directory
# ============================================================

GENERATED_SUFFIX = ".g.cs"


def stale_fragment_paths(fragments: Iterable[GeneratedFragment], output_dir: Path) -> list[Path]:
    """Generated files in the output directory that no fragment produces any more."""
    if not output_dir.is_dir():
        return []
    expected_names = {fragment.hint_name for fragment in fragments}
    return sorted(
        path for path in output_dir.iterdir()
        if path.is_file() and path.name.endswith(GENERATED_SUFFIX) and path.name not in expected_names
    )


def outdated_fragments(fragments: Iterable[GeneratedFragment], output_dir: Path) -> list[str]:
    """Hint names whose file is missing or differs from the rendered text."""
    outdated: list[str] = []
    for fragment in fragments:
        target_path = output_dir / fragment.hint_name
        if not target_path.is_file() or target_path.read_text(encoding="utf-8") != fragment.text:
            outdated.append(fragment.hint_name)
    return outdated


def write_fragments(fragments: Iterable[GeneratedFragment], output_dir: Path) -> tuple[list[str], list[str]]:
    """
    Write changed fragments and delete stale ones.

    Returns (written hint names, removed file names); unchanged files are not
    rewritten so their mtimes stay put.
    """
    fragment_list = list(fragments)
    output_dir.mkdir(parents=True, exist_ok=True)

    written: list[str] = []
    for hint_name in outdated_fragments(fragment_list, output_dir):
        fragment = next(fragment for fragment in fragment_list if fragment.hint_name == hint_name)
        (output_dir / hint_name).write_text(fragment.text, encoding="utf-8")
        written.append(hint_name)

    removed: list[str] = []
    for stale_path in stale_fragment_paths(fragment_list, output_dir):
        stale_path.unlink()
        removed.append(stale_path.name)
    return written, removed
