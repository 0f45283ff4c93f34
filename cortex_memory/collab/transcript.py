"""
Session transcript reader.

Transcripts are JSON lines written by the coding assistant.  Only the
parts the daemon needs are extracted: tool calls, the files touched by
write/edit tools, and tool results that look like errors.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

_WRITE_TOOLS = frozenset({"Write", "Edit", "MultiEdit", "NotebookEdit"})
_ERROR_MARKERS = ("error", "failed")
_MAX_ERROR_CHARS = 500
_MAX_OUTPUT_CHARS = 2000


@dataclass
class ToolCall:
    tool: str
    input: dict = field(default_factory=dict)
    output: Optional[str] = None


@dataclass
class ParsedTranscript:
    tool_calls: list[ToolCall] = field(default_factory=list)
    files_modified: list[str] = field(default_factory=list)
    error_messages: list[str] = field(default_factory=list)
    assistant_messages: list[str] = field(default_factory=list)

    @property
    def tool_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for call in self.tool_calls:
            counts[call.tool] = counts.get(call.tool, 0) + 1
        return counts


def _blocks(entry: dict) -> list:
    message = entry.get("message")
    content = message.get("content") if isinstance(message, dict) else entry.get("content")
    if isinstance(content, str):
        return [{"type": "text", "text": content}]
    return content if isinstance(content, list) else []


def _text_of(blocks: list) -> str:
    parts = []
    for block in blocks:
        if isinstance(block, dict) and block.get("type") == "text":
            parts.append(str(block.get("text", "")))
    return "\n".join(p for p in parts if p)


def _result_text(block: dict) -> str:
    content = block.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return _text_of(content)
    return ""


def parse_transcript(path: Optional[str]) -> ParsedTranscript:
    """Parse a transcript file.  Missing or unreadable files parse as empty."""
    parsed = ParsedTranscript()
    if not path:
        return parsed
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            lines = f.readlines()
    except OSError as exc:
        logger.debug("[Transcript] Cannot read %s: %s", path, exc)
        return parsed

    modified: dict[str, None] = {}
    for line in lines:
        if not line.strip():
            continue
        try:
            entry = json.loads(line)
        except ValueError:
            continue
        if not isinstance(entry, dict):
            continue

        blocks = _blocks(entry)
        if entry.get("type") == "assistant":
            text = _text_of(blocks)
            if text:
                parsed.assistant_messages.append(text)

        for block in blocks:
            if not isinstance(block, dict):
                continue
            if block.get("type") == "tool_use":
                tool_input = block.get("input") if isinstance(block.get("input"), dict) else {}
                name = str(block.get("name", ""))
                parsed.tool_calls.append(ToolCall(tool=name, input=tool_input))
                file_path = tool_input.get("file_path")
                if name in _WRITE_TOOLS and file_path:
                    modified[str(file_path)] = None
            elif block.get("type") == "tool_result":
                text = _result_text(block)
                if not text:
                    continue
                lowered = text.lower()
                if block.get("is_error") or any(m in lowered for m in _ERROR_MARKERS):
                    parsed.error_messages.append(text[:_MAX_ERROR_CHARS])
                if parsed.tool_calls:
                    parsed.tool_calls[-1].output = text[:_MAX_OUTPUT_CHARS]

    parsed.files_modified = list(modified)
    return parsed


def read_tail(path: Optional[str], max_chars: int = 8000) -> str:
    """Last *max_chars* characters of a transcript, or "" if unreadable."""
    if not path:
        return ""
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            return f.read()[-max_chars:]
    except OSError:
        return ""
