"""Parse scene assets (`.tscn`) into a filtered tag tree of script-backed signal wiring."""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional


class TagKind(str, Enum):
    EXT_RESOURCE = "ext_resource"
    NODE = "node"
    CONNECTION = "connection"
    OTHER = "other"

    @classmethod
    def from_header(cls, header_kind: str) -> "TagKind":
        for tag_kind in (cls.EXT_RESOURCE, cls.NODE, cls.CONNECTION):
            if tag_kind.value == header_kind:
                return tag_kind
        return cls.OTHER


ROOT_NODE_NAME = "."
SCRIPT_PATH_KEY = "cs"
SCRIPT_ID_KEY = "script"

EXT_RESOURCE_REFERENCE_REGEX = re.compile(r'^ExtResource\(\s*(?:"(?P<quoted>[^"]*)"|(?P<bare>[^)\s]+))\s*\)$')
HEADER_KIND_REGEX = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*")

OPENING_BRACKETS = {"[": "]", "(": ")", "{": "}"}


# ============================================================
# Tag tree
# ============================================================

@dataclass(frozen=True)
class SceneTag:
    """One bracketed header plus the properties gathered for it (ordered)."""
    kind: TagKind
    name: str
    properties: tuple[tuple[str, str], ...] = ()

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        for property_key, property_value in self.properties:
            if property_key == key:
                return property_value
        return default

    def with_property(self, key: str, value: str) -> "SceneTag":
        kept = tuple((k, v) for k, v in self.properties if k != key)
        return SceneTag(kind=self.kind, name=self.name, properties=kept + ((key, value),))


@dataclass(frozen=True)
class SceneAsset:
    path: str
    tags: tuple[SceneTag, ...]

    @property
    def connections(self) -> tuple[SceneTag, ...]:
        return tuple(tag for tag in self.tags if tag.kind is TagKind.CONNECTION)

    def connection_references(self) -> list[tuple[int, "ConnectionReference"]]:
        """Retained connections with their position in the scene."""
        return [
            (ordinal, ConnectionReference(scene_path=self.path, tag=tag))
            for ordinal, tag in enumerate(self.connections)
        ]


@dataclass(frozen=True)
class ConnectionReference:
    """One retained connection, carried away from its scene for joining."""
    scene_path: str
    tag: SceneTag

    @property
    def method(self) -> str:
        return self.tag.name

    @property
    def script_path(self) -> str:
        return self.tag.get(SCRIPT_PATH_KEY, "") or ""

    @property
    def from_node(self) -> str:
        return self.tag.get("from", "") or ""

    @property
    def signal(self) -> str:
        return self.tag.get("signal", "") or ""


# ============================================================
# Tokenizer
# ============================================================

@dataclass(frozen=True)
class HeaderToken:
    kind: str
    pairs: tuple[tuple[str, str], ...]


def _read_quoted(text: str, start: int) -> tuple[str, int]:
    """Read a double-quoted string starting at `start`; return (inner_text, next_index)."""
    index = start + 1
    inner_chars: list[str] = []
    while index < len(text):
        char = text[index]
        if char == "\\" and index + 1 < len(text):
            inner_chars.append(text[index + 1])
            index += 2
            continue
        if char == '"':
            return "".join(inner_chars), index + 1
        inner_chars.append(char)
        index += 1
    # Unterminated quote: take the rest
    return "".join(inner_chars), index


def _read_grouped(text: str, start: int) -> tuple[str, int]:
    """Read a bracketed group (quote-aware, nesting-aware) and return its raw text."""
    closers: list[str] = []
    index = start
    in_quote = False
    while index < len(text):
        char = text[index]
        if in_quote:
            if char == "\\":
                index += 2
                continue
            if char == '"':
                in_quote = False
        elif char == '"':
            in_quote = True
        elif char in OPENING_BRACKETS:
            closers.append(OPENING_BRACKETS[char])
        elif closers and char == closers[-1]:
            closers.pop()
            if not closers:
                return text[start:index + 1], index + 1
        index += 1
    return text[start:], index


def _read_value(text: str, start: int) -> tuple[str, int]:
    """
    Read one property value.

    Quoted strings lose their quotes. Arrays, dictionaries and constructor
    calls (`["a", "b"]`, `ExtResource("1")`) are kept as raw text; they are
    not decomposed into elements.
    """
    if start >= len(text):
        return "", start
    if text[start] == '"':
        return _read_quoted(text, start)

    index = start
    while index < len(text) and not text[index].isspace():
        if text[index] in OPENING_BRACKETS:
            _group_text, group_end = _read_grouped(text, index)
            index = group_end
            continue
        index += 1
    return text[start:index], index


def tokenize_header(line: str) -> HeaderToken | None:
    """Tokenize `[kind key="val" key2=val2 ...]` into a kind and ordered key/value pairs."""
    stripped = line.strip()
    if not (stripped.startswith("[") and stripped.endswith("]")):
        return None
    body = stripped[1:-1]
    kind_match = HEADER_KIND_REGEX.match(body)
    if kind_match is None:
        return None

    pairs: list[tuple[str, str]] = []
    index = kind_match.end()
    while index < len(body):
        if body[index].isspace():
            index += 1
            continue
        equals_index = body.find("=", index)
        if equals_index < 0:
            break
        key = body[index:equals_index].strip()
        value_start = equals_index + 1
        while value_start < len(body) and body[value_start] == " ":
            value_start += 1
        value, index = _read_value(body, value_start)
        if key and not any(char.isspace() for char in key):
            pairs.append((key, value))

    return HeaderToken(kind=kind_match.group(0), pairs=tuple(pairs))


def parse_ext_resource_reference(raw_value: str) -> str | None:
    """`ExtResource("1_abc")` / `ExtResource( 1 )` -> resource id."""
    match = EXT_RESOURCE_REFERENCE_REGEX.match(raw_value.strip())
    if match is None:
        return None
    return match.group("quoted") if match.group("quoted") is not None else match.group("bare")


def node_path_of(node_name: str, parent_path: str | None) -> str:
    """Path of a node relative to the scene root, as connection `to`/`from` use it."""
    if parent_path is None:
        return ROOT_NODE_NAME
    if parent_path in ("", ROOT_NODE_NAME):
        return node_name
    return f"{parent_path}/{node_name}"


# ============================================================
# Parser
# ============================================================

class SceneParser:
    """
    Streaming parser for one scene asset.

    Keeps script-backed `ext_resource` tags, every named `node` tag, and the
    `connection` tags whose target node carries one of those scripts.
    """

    def __init__(self, path: str, *, script_extension: str = ".cs") -> None:
        self.path = path
        self.script_extension = script_extension
        self.tags: list[SceneTag] = []
        self.resources_by_id: dict[str, SceneTag] = {}
        self.nodes_by_path: dict[str, SceneTag] = {}
        self._pending_node: SceneTag | None = None
        self._pending_node_path: str | None = None
        self._current_kind = TagKind.OTHER
        self._previous_header_kind: TagKind | None = None
        self.abandoned = False

    def feed(self, lines: Iterable[str]) -> "SceneParser":
        for raw_line in lines:
            stripped = raw_line.strip()
            if not stripped or stripped.startswith(";"):
                continue
            header = tokenize_header(stripped)
            if header is not None:
                if not self._handle_header(header):
                    self.abandoned = True
                    return self
                continue
            self._handle_body_line(stripped)
        self._flush_pending_node()
        return self

    def result(self) -> SceneAsset | None:
        """The parsed asset, or None when it holds no resolved connection."""
        if self.abandoned:
            return None
        if not any(tag.kind is TagKind.CONNECTION for tag in self.tags):
            return None
        return SceneAsset(path=self.path, tags=tuple(self.tags))

    # -- headers --
    def _handle_header(self, header: HeaderToken) -> bool:
        """Process one header; False means the asset is irrelevant and parsing stops."""
        tag_kind = TagKind.from_header(header.kind)
        self._flush_pending_node()

        if (
            self._previous_header_kind is TagKind.EXT_RESOURCE
            and tag_kind is not TagKind.EXT_RESOURCE
            and not self.resources_by_id
        ):
            # All external resources have been listed and none is a script
            return False
        self._previous_header_kind = tag_kind
        self._current_kind = tag_kind

        if tag_kind is TagKind.EXT_RESOURCE:
            self._add_ext_resource(header.pairs)
        elif tag_kind is TagKind.NODE:
            self._start_node(header.pairs)
        elif tag_kind is TagKind.CONNECTION:
            self._add_connection(header.pairs)
        return True

    def _add_ext_resource(self, pairs: tuple[tuple[str, str], ...]) -> None:
        properties = dict(pairs)
        resource_path = properties.get("path", "")
        resource_id = properties.get("id")
        if not resource_path.endswith(self.script_extension) or not resource_id:
            return
        tag = SceneTag(kind=TagKind.EXT_RESOURCE, name=resource_id, properties=pairs)
        self.resources_by_id[resource_id] = tag
        self.tags.append(tag)

    def _start_node(self, pairs: tuple[tuple[str, str], ...]) -> None:
        properties = dict(pairs)
        node_name = properties.get("name")
        if not node_name:
            self._current_kind = TagKind.OTHER
            return
        parent_path = properties.get("parent")
        tag_name = node_name if parent_path is not None else ROOT_NODE_NAME
        self._pending_node = SceneTag(kind=TagKind.NODE, name=tag_name, properties=pairs)
        self._pending_node_path = node_path_of(node_name, parent_path)

    def _flush_pending_node(self) -> None:
        if self._pending_node is None or self._pending_node_path is None:
            return
        self.nodes_by_path[self._pending_node_path] = self._pending_node
        self.tags.append(self._pending_node)
        self._pending_node = None
        self._pending_node_path = None

    def _add_connection(self, pairs: tuple[tuple[str, str], ...]) -> None:
        properties = dict(pairs)
        method_name = properties.get("method")
        target_path = properties.get("to")
        if not method_name or target_path is None:
            return
        target_node = self.nodes_by_path.get(target_path)
        if target_node is None:
            return
        script_id = target_node.get(SCRIPT_ID_KEY)
        if script_id is None:
            return
        script_resource = self.resources_by_id.get(script_id)
        if script_resource is None:
            return
        tag = SceneTag(kind=TagKind.CONNECTION, name=method_name, properties=pairs)
        self.tags.append(tag.with_property(SCRIPT_PATH_KEY, script_resource.get("path", "")))

    # -- body lines --
    def _handle_body_line(self, stripped: str) -> None:
        if self._current_kind is not TagKind.NODE or self._pending_node is None:
            return
        if "=" not in stripped:
            return
        key, raw_value = stripped.split("=", 1)
        if key.strip() != SCRIPT_ID_KEY:
            return
        resource_id = parse_ext_resource_reference(raw_value)
        if resource_id is not None:
            self._pending_node = self._pending_node.with_property(SCRIPT_ID_KEY, resource_id)


def parse_scene(path: str, lines: Iterable[str], *, script_extension: str = ".cs") -> SceneAsset | None:
    """Parse one scene asset; None when it has no connection into a script."""
    return SceneParser(path, script_extension=script_extension).feed(lines).result()
