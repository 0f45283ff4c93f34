"""
Unified diff parser — turns ``git diff`` output into per-file records.

Line numbers follow the new-file coordinate space: additions and context
lines advance the counter, removals do not.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

# Patterns
_FILE_SPLIT = re.compile(r"^diff --git ", re.MULTILINE)
_PATH_PAIR = re.compile(r"a/(.+?)\s+b/(.+)")
_HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")

# Checked in order; the first marker present wins.
_CHANGE_MARKERS = (
    ("new file mode", "added"),
    ("deleted file mode", "deleted"),
    ("rename from", "renamed"),
)

_ACTIONS = {
    "added": "Added",
    "deleted": "Deleted",
    "renamed": "Renamed",
    "modified": "Modified",
}


@dataclass
class DiffLine:
    """One classified line inside a hunk."""
    kind: str            # "add" | "remove" | "context"
    content: str
    line_number: int


@dataclass
class DiffHunk:
    """A contiguous block of changes sharing one ``@@`` header."""
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    lines: list[DiffLine] = field(default_factory=list)


@dataclass
class ParsedDiff:
    """All hunks for one file of a unified diff."""
    file_path: str
    change_type: str = "modified"
    hunks: list[DiffHunk] = field(default_factory=list)
    lines_added: int = 0
    lines_removed: int = 0


def parse_diff(diff_text: str) -> list[ParsedDiff]:
    """Parse one or more concatenated unified diffs.

    Parameters
    ----------
    diff_text:
        Raw output of ``git diff``; each file starts with a
        ``diff --git a/<path> b/<path>`` header.

    Returns
    -------
    list[ParsedDiff]
        One record per file, in input order.  Chunks without a
        recognizable path pair are dropped.
    """
    if not diff_text:
        return []

    results: list[ParsedDiff] = []
    for chunk in _FILE_SPLIT.split(diff_text):
        if not chunk.strip():
            continue
        lines = chunk.split("\n")
        match = _PATH_PAIR.search(lines[0])
        if not match:
            logger.debug("[Diff] Skipping chunk without path pair: %r", lines[0][:80])
            continue

        parsed = ParsedDiff(
            file_path=match.group(2).strip(),
            change_type=_classify(chunk),
        )
        _parse_hunks(lines[1:], parsed)
        results.append(parsed)
    return results


def _classify(chunk: str) -> str:
    for marker, change_type in _CHANGE_MARKERS:
        if marker in chunk:
            return change_type
    return "modified"


def _parse_hunks(lines: list[str], parsed: ParsedDiff) -> None:
    current: DiffHunk | None = None
    line_number = 0

    for line in lines:
        header = _HUNK_HEADER.match(line)
        if header:
            current = DiffHunk(
                old_start=int(header.group(1)),
                old_count=int(header.group(2) or 1),
                new_start=int(header.group(3)),
                new_count=int(header.group(4) or 1),
            )
            parsed.hunks.append(current)
            line_number = current.new_start
            continue

        # File headers and index lines before the first hunk
        if current is None:
            continue

        if line.startswith("+") and not line.startswith("+++"):
            current.lines.append(DiffLine("add", line[1:], line_number))
            parsed.lines_added += 1
            line_number += 1
        elif line.startswith("-") and not line.startswith("---"):
            current.lines.append(DiffLine("remove", line[1:], line_number))
            parsed.lines_removed += 1
        elif line.startswith(" "):
            current.lines.append(DiffLine("context", line[1:], line_number))
            line_number += 1


def serialize_diff(diffs: list[ParsedDiff]) -> str:
    """Render parsed diffs back to unified diff text.

    Hunk headers are always written with explicit counts, so the output
    parses back to the same hunk boundaries and line kinds.
    """
    out: list[str] = []
    for diff in diffs:
        path = diff.file_path
        out.append(f"diff --git a/{path} b/{path}")
        if diff.change_type == "added":
            out.append("new file mode 100644")
            out.append("--- /dev/null")
        elif diff.change_type == "deleted":
            out.append("deleted file mode 100644")
            out.append(f"--- a/{path}")
        elif diff.change_type == "renamed":
            out.append(f"rename from {path}")
            out.append(f"rename to {path}")
            out.append(f"--- a/{path}")
        else:
            out.append(f"--- a/{path}")
        out.append("+++ /dev/null" if diff.change_type == "deleted" else f"+++ b/{path}")

        for hunk in diff.hunks:
            out.append(
                f"@@ -{hunk.old_start},{hunk.old_count} "
                f"+{hunk.new_start},{hunk.new_count} @@"
            )
            for line in hunk.lines:
                prefix = {"add": "+", "remove": "-"}.get(line.kind, " ")
                out.append(prefix + line.content)
    return "\n".join(out) + ("\n" if out else "")


def summarize_diff(diffs: list[ParsedDiff]) -> str:
    """One line per file: ``Modified: src/app.py (+3/-1)``."""
    return "\n".join(
        f"{_ACTIONS.get(d.change_type, 'Modified')}: {d.file_path} "
        f"(+{d.lines_added}/-{d.lines_removed})"
        for d in diffs
    )
