"""
Function chunker — attributes diff hunks to the function or class that
encloses them.

Boundaries are found with a small ordered table of regexes, one per
declaration syntax.  Support for another language is one more entry.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional

from .diff_parser import DiffHunk, ParsedDiff

MODULE_LEVEL = "module-level"


@dataclass(frozen=True)
class BoundaryPattern:
    """A declaration regex and the group holding the declared name."""
    name: str
    regex: re.Pattern
    group: int = 1


# Order matters: the first pattern that matches a line wins.
BOUNDARY_PATTERNS: list[BoundaryPattern] = [
    BoundaryPattern("js-export-function",
                    re.compile(r"^\s*export\s+(?:async\s+)?function\s+(\w+)")),
    BoundaryPattern("js-function",
                    re.compile(r"^\s*(?:async\s+)?function\s+(\w+)")),
    BoundaryPattern("js-export-class",
                    re.compile(r"^\s*export\s+class\s+(\w+)")),
    BoundaryPattern("class",
                    re.compile(r"^\s*class\s+(\w+)")),
    BoundaryPattern("js-arrow-const",
                    re.compile(r"^\s*(?:export\s+)?const\s+(\w+)\s*=\s*(?:async\s*)?\(")),
    BoundaryPattern("python-def",
                    re.compile(r"^\s*(?:async\s+)?def\s+(\w+)")),
    BoundaryPattern("go-func",
                    re.compile(r"^\s*func\s+(?:\([^)]*\)\s*)?(\w+)")),
]

# Identifiers the patterns above can pick up from control-flow lines; a
# pattern that captures one is passed over in favour of the next.
_KEYWORDS = frozenset({"if", "for", "while", "switch", "catch", "else", "return"})


@dataclass
class FunctionChunk:
    """Changes attributed to one enclosing function or class."""
    function_name: str
    start_line: int
    hunks: list[DiffHunk] = field(default_factory=list)
    lines_added: int = 0
    lines_removed: int = 0


def detect_boundary(line: str) -> Optional[str]:
    """Return the declared name if *line* opens a function or class."""
    for pattern in BOUNDARY_PATTERNS:
        match = pattern.regex.match(line)
        if match:
            name = match.group(pattern.group)
            if name in _KEYWORDS:
                continue
            return name
    return None


def chunk_by_functions(diff: ParsedDiff) -> list[FunctionChunk]:
    """Group the hunks of *diff* by their enclosing function.

    Each hunk is attributed to the last boundary seen while scanning its
    lines (``module-level`` when none is seen).  A hunk spanning several
    boundaries therefore counts only toward the last one.  Hunks that
    resolve to the same name anywhere in the diff share one chunk.
    """
    chunks: dict[str, FunctionChunk] = {}

    for hunk in diff.hunks:
        current = MODULE_LEVEL
        for line in hunk.lines:
            name = detect_boundary(line.content)
            if name:
                current = name

        chunk = chunks.get(current)
        if chunk is None:
            chunk = FunctionChunk(function_name=current, start_line=hunk.new_start)
            chunks[current] = chunk
        chunk.hunks.append(hunk)
        chunk.lines_added += sum(1 for ln in hunk.lines if ln.kind == "add")
        chunk.lines_removed += sum(1 for ln in hunk.lines if ln.kind == "remove")

    return list(chunks.values())


def summarize_function_changes(diff: ParsedDiff) -> str:
    """Return ``path -> foo() +5/-2, bar() +1/-0`` for *diff*."""
    chunks = chunk_by_functions(diff)
    if not chunks:
        return f"{diff.file_path}: no changes"
    parts = ", ".join(
        f"{c.function_name}() +{c.lines_added}/-{c.lines_removed}" for c in chunks
    )
    return f"{diff.file_path} -> {parts}"
