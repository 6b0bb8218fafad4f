"""Parse the project manifest (`project.godot`) into ordered, typed entries."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable


class EntryKind(str, Enum):
    SINGLETON = "singleton"
    INPUT_ACTION = "input_action"


# Section header name -> kind of entry its body lines produce
SECTION_ENTRY_KINDS: dict[str, EntryKind] = {
    "autoload": EntryKind.SINGLETON,
    "input": EntryKind.INPUT_ACTION,
}

COMMENT_PREFIXES = (";", "#")


@dataclass(frozen=True)
class ManifestEntry:
    kind: EntryKind
    name: str
    path: str = ""


@dataclass(frozen=True)
class ManifestSection:
    name: str
    lines: tuple[str, ...]


def is_section_header(stripped_line: str) -> bool:
    return stripped_line.startswith("[") and stripped_line.endswith("]") and len(stripped_line) > 2


def split_sections(lines: Iterable[str]) -> list[ManifestSection]:
    """
    Group raw lines under the bracketed header that precedes them.

    Every section is kept, in file order; lines before the first header
    belong to a section with an empty name. Blank and comment lines are
    dropped here so section bodies only hold candidate entries.
    """
    sections: list[ManifestSection] = []
    current_name = ""
    current_lines: list[str] = []

    for raw_line in lines:
        stripped = raw_line.strip()
        if not stripped or stripped.startswith(COMMENT_PREFIXES):
            continue
        if is_section_header(stripped):
            if current_name or current_lines:
                sections.append(ManifestSection(name=current_name, lines=tuple(current_lines)))
            current_name = stripped[1:-1].strip()
            current_lines = []
            continue
        current_lines.append(raw_line)

    if current_name or current_lines:
        sections.append(ManifestSection(name=current_name, lines=tuple(current_lines)))
    return sections


def parse_singleton_line(line: str) -> ManifestEntry | None:
    """`Name="*res://path.cs"` -> singleton entry; anything else is skipped."""
    fields = line.split("=")
    if len(fields) != 2:
        return None
    name = fields[0].strip()
    if not name:
        return None
    return ManifestEntry(kind=EntryKind.SINGLETON, name=name, path=fields[1].strip().strip('"'))


def parse_input_action_line(line: str) -> ManifestEntry | None:
    """`move_up={` -> input action entry; continuation lines have no `=` and are skipped."""
    fields = line.split("=")
    if len(fields) < 2:
        return None
    name = fields[0].strip()
    if not name or name.startswith(('"', "{", "}", "[", "]")):
        return None
    return ManifestEntry(kind=EntryKind.INPUT_ACTION, name=name)


LINE_PARSERS = {
    EntryKind.SINGLETON: parse_singleton_line,
    EntryKind.INPUT_ACTION: parse_input_action_line,
}


def parse_manifest(lines: Iterable[str]) -> tuple[ManifestEntry, ...]:
    """
    Parse manifest lines into singleton and input-action entries.

    All sections are split generically and the relevant ones are selected by
    name, so section order in the file does not matter. Malformed lines are
    skipped. A name is kept once per kind; the first occurrence wins.
    """
    entries: list[ManifestEntry] = []
    seen_names: set[tuple[EntryKind, str]] = set()

    for section in split_sections(lines):
        entry_kind = SECTION_ENTRY_KINDS.get(section.name)
        if entry_kind is None:
            continue
        parse_line = LINE_PARSERS[entry_kind]
        for raw_line in section.lines:
            entry = parse_line(raw_line)
            if entry is None:
                continue
            if (entry.kind, entry.name) in seen_names:
                continue
            seen_names.add((entry.kind, entry.name))
            entries.append(entry)

    return tuple(entries)
