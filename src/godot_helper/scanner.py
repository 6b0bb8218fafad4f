"""Find marked members on classes derived from the engine's root object type."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .diagnostics import SourceLocation
from .symbols import GLOBAL_PREFIX, MarkerData, MemberSymbol, TypeSymbol


# ============================================================
# Fixed identifiers
# ============================================================

ROOT_TYPE_ASSEMBLY = "GodotSharp"
ROOT_TYPE_NAME = "Godot.GodotObject"

SINGLETON_MARKER = "GodotHelper.SourceGenerators.Attributes.AutoLoadGetAttribute"
ACCESSOR_MARKER = "GodotHelper.SourceGenerators.Attributes.AutoGetAttribute"
NOTIFY_MARKER = "GodotHelper.SourceGenerators.Attributes.NotifyAttribute"
REMOTE_CALL_MARKER = "Godot.RpcAttribute"
EVENT_SIGNAL_MARKER = "Godot.SignalAttribute"

UNIQUE_NAME_PREFIX = "%"

TypeResolver = Callable[[str], Optional[TypeSymbol]]


class MemberKind(str, Enum):
    ACCESSOR = "accessor"
    REMOTE_CALL = "remote_call"
    EVENT_EMIT = "event_emit"
    SINGLETON_CLASS = "singleton_class"
    NOTIFY_FIELD = "notify_field"


# ============================================================
# Records
# ============================================================

@dataclass(frozen=True)
class DeclaredMember:
    """A marked declaration plus the positional arguments of its marker."""
    kind: MemberKind
    owner: str
    name: str
    type: str
    marker_args: tuple[object, ...] = ()
    symbol_kind: str = ""
    parameters: tuple[tuple[str, str], ...] = ()
    location: SourceLocation = SourceLocation()

    @property
    def explicit_path(self) -> str:
        return str(self.marker_args[0]) if self.marker_args else ""

    @property
    def not_null(self) -> bool:
        return bool(self.marker_args[1]) if len(self.marker_args) > 1 else True

    @property
    def node_path(self) -> str:
        """Explicit accessor path, or the unique-name path derived from the member name."""
        explicit_path = self.explicit_path
        if explicit_path.strip():
            return explicit_path
        return f"{UNIQUE_NAME_PREFIX}{self.name}"


@dataclass(frozen=True)
class SingletonRecord:
    base_is_singleton: bool
    namespace: str
    hint_name: str
    name: str
    fully_qualified_name: str


@dataclass(frozen=True)
class ClassRecord:
    name: str
    namespace: str
    hint_name: str
    source_paths: tuple[str, ...]
    methods: tuple[tuple[str, str], ...]


@dataclass(frozen=True)
class ScannedClass:
    """Everything the emitter needs to know about one declared class."""
    qualified_name: str
    name: str
    namespace: str
    name_with_type_parameters: str
    hint_name: str
    containing_declarations: tuple[tuple[str, str], ...]
    derives_from_root: bool
    members: tuple[DeclaredMember, ...]
    singleton: SingletonRecord | None = None
    class_record: ClassRecord | None = None

    @property
    def is_nested(self) -> bool:
        return bool(self.containing_declarations)

    def members_of(self, kind: MemberKind) -> tuple[DeclaredMember, ...]:
        return tuple(member for member in self.members if member.kind is kind)


# ============================================================
# Naming helpers
# ============================================================

def sanitize_qualified_name_for_hint(qualified_name: str) -> str:
    """Fragment names cannot hold angle brackets."""
    return qualified_name.replace("<", "(Of ").replace(">", ")")


def include_global(qualified_name: str) -> str:
    if not qualified_name or qualified_name.startswith(GLOBAL_PREFIX):
        return qualified_name
    return GLOBAL_PREFIX + qualified_name


def declaration_keyword(symbol: TypeSymbol) -> str:
    if symbol.kind in ("interface", "struct", "record"):
        return symbol.kind
    return "class"


def generate_method_call(member: MemberSymbol) -> str:
    """A call expression that references the method with default arguments."""
    arguments = ", ".join(f"default({parameter.type})" for parameter in member.parameters)
    return f"{member.name}({arguments});"


# ============================================================
# Symbol graph walking
# ============================================================

def inherits_from(
    symbol: TypeSymbol | None,
    resolve_type: TypeResolver,
    *,
    assembly_name: str = ROOT_TYPE_ASSEMBLY,
    type_name: str = ROOT_TYPE_NAME,
) -> bool:
    """Walk the base chain explicitly, matching by assembly and qualified name."""
    visited: set[str] = set()
    while symbol is not None:
        if symbol.assembly == assembly_name and symbol.lookup_name == type_name:
            return True
        if symbol.lookup_name in visited or not symbol.base_type:
            return False
        visited.add(symbol.lookup_name)
        symbol = resolve_type(symbol.base_type)
    return False


def base_symbol_of(symbol: TypeSymbol, resolve_type: TypeResolver) -> TypeSymbol | None:
    if not symbol.base_type:
        return None
    return resolve_type(symbol.base_type)


def containing_declarations_of(symbol: TypeSymbol, resolve_type: TypeResolver) -> tuple[tuple[str, str], ...]:
    """(keyword, name) for every enclosing type, outermost first."""
    declarations: list[tuple[str, str]] = []
    containing_name = symbol.containing_type
    while containing_name:
        containing_symbol = resolve_type(containing_name)
        if containing_symbol is None:
            declarations.append(("class", containing_name.rsplit(".", 1)[-1]))
            break
        declarations.append((declaration_keyword(containing_symbol), containing_symbol.name_with_type_parameters))
        containing_name = containing_symbol.containing_type
    declarations.reverse()
    return tuple(declarations)


def _accessor_args(marker: MarkerData) -> tuple[object, ...]:
    explicit_path = marker.positional(0, marker.named("path", ""))
    not_null = marker.positional(1, marker.named("notNull", True))
    return (explicit_path or "", bool(not_null))


def _notify_args(marker: MarkerData) -> tuple[object, ...]:
    use_signal = marker.positional(0, marker.named("useSignal", False))
    use_export = marker.positional(1, marker.named("useExport", False))
    return (bool(use_signal), bool(use_export))


def _declared_member(kind: MemberKind, owner: TypeSymbol, member: MemberSymbol, marker_args: tuple[object, ...] = ()) -> DeclaredMember:
    return DeclaredMember(
        kind=kind,
        owner=owner.qualified_name,
        name=member.name,
        type=member.type,
        marker_args=marker_args,
        symbol_kind=member.kind,
        parameters=tuple((parameter.name, parameter.type) for parameter in member.parameters),
        location=member.location.to_source_location(),
    )


def collect_marked_members(symbol: TypeSymbol, *, derives_from_root: bool) -> list[DeclaredMember]:
    """Collect non-static marked members in declaration order."""
    collected: list[DeclaredMember] = []
    for member in symbol.members:
        if member.is_static:
            continue

        if member.kind in ("field", "property") and not member.is_implicit:
            notify_marker = member.find_marker(NOTIFY_MARKER)
            if member.kind == "field" and notify_marker is not None:
                collected.append(_declared_member(MemberKind.NOTIFY_FIELD, symbol, member, _notify_args(notify_marker)))

        if not derives_from_root:
            continue

        if member.kind in ("field", "property") and not member.is_implicit:
            accessor_marker = member.find_marker(ACCESSOR_MARKER)
            if accessor_marker is not None:
                collected.append(_declared_member(MemberKind.ACCESSOR, symbol, member, _accessor_args(accessor_marker)))
        elif member.kind == "method" and not member.is_implicit and member.method_kind == "ordinary":
            if member.find_marker(REMOTE_CALL_MARKER) is not None:
                collected.append(_declared_member(MemberKind.REMOTE_CALL, symbol, member))
        elif member.kind == "delegate":
            if member.find_marker(EVENT_SIGNAL_MARKER) is not None:
                collected.append(_declared_member(MemberKind.EVENT_EMIT, symbol, member))
    return collected


def build_singleton_record(symbol: TypeSymbol, resolve_type: TypeResolver) -> SingletonRecord:
    base_symbol = base_symbol_of(symbol, resolve_type)
    base_is_singleton = base_symbol is not None and base_symbol.find_marker(SINGLETON_MARKER) is not None
    return SingletonRecord(
        base_is_singleton=base_is_singleton,
        namespace=symbol.namespace,
        hint_name=f"{sanitize_qualified_name_for_hint(symbol.qualified_name)}_GodotHelper_AutoLoad.g.cs",
        name=symbol.name,
        fully_qualified_name=symbol.display_name,
    )


def build_class_record(symbol: TypeSymbol) -> ClassRecord:
    methods: dict[str, str] = {}
    for member in symbol.members:
        if member.kind != "method" or member.is_static or member.is_implicit or member.method_kind != "ordinary":
            continue
        # First overload wins
        methods.setdefault(member.name, generate_method_call(member))
    return ClassRecord(
        name=symbol.name,
        namespace=symbol.namespace,
        hint_name=sanitize_qualified_name_for_hint(symbol.qualified_name),
        source_paths=symbol.source_paths,
        methods=tuple(methods.items()),
    )


def scan_class(symbol: TypeSymbol, resolve_type: TypeResolver) -> ScannedClass | None:
    """
    Scan one merged class symbol.

    Returns None for engine types, and when the class neither derives from
    the root object type nor carries a marker this generator reacts to.
    """
    if symbol.kind != "class" or symbol.assembly == ROOT_TYPE_ASSEMBLY:
        return None

    base_symbol = base_symbol_of(symbol, resolve_type)
    derives_from_root = base_symbol is not None and inherits_from(base_symbol, resolve_type)
    members = collect_marked_members(symbol, derives_from_root=derives_from_root)

    singleton: SingletonRecord | None = None
    if symbol.find_marker(SINGLETON_MARKER) is not None:
        singleton = build_singleton_record(symbol, resolve_type)
        members.insert(
            0,
            DeclaredMember(
                kind=MemberKind.SINGLETON_CLASS,
                owner=symbol.qualified_name,
                name=symbol.name,
                type=symbol.display_name,
                symbol_kind="class",
                location=symbol.location.to_source_location(),
            ),
        )

    if not derives_from_root and not members:
        return None

    return ScannedClass(
        qualified_name=symbol.qualified_name,
        name=symbol.name,
        namespace=symbol.namespace,
        name_with_type_parameters=symbol.name_with_type_parameters,
        hint_name=sanitize_qualified_name_for_hint(symbol.qualified_name),
        containing_declarations=containing_declarations_of(symbol, resolve_type),
        derives_from_root=derives_from_root,
        members=tuple(members),
        singleton=singleton,
        class_record=build_class_record(symbol) if derives_from_root else None,
    )
