"""
File-backed event inbox.

Session hooks append JSON lines to ``.claude/cortex-events.jsonl``; the
daemon is the only reader.  A line-count cursor stored next to the log
(``<log>.cursor``) records how far the daemon has read, together with the
timestamp of the last line it consumed.  If the log ends up shorter than
the cursor, or that line no longer carries the same timestamp, the log was
truncated or replaced and reading restarts from the top.  A fresh queue
also rescans once from the top for lines still marked unprocessed, so
events read but never marked before a restart are delivered again.

Read failures never raise: a missing or unreadable log reads as empty.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Iterable, Optional, Union

logger = logging.getLogger(__name__)

FILE_ACCESS = "file_access"
SESSION_END = "session_end"
EVENT_KINDS = (FILE_ACCESS, SESSION_END)

_CURSOR_SUFFIX = ".cursor"


@dataclass
class QueueEvent:
    """One line of the event log."""
    kind: str
    session_id: str = ""
    timestamp: str = ""
    file: Optional[str] = None
    tool: Optional[str] = None
    transcript_ref: Optional[str] = None
    processed: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> Optional["QueueEvent"]:
        """Build an event from its wire form; None if required keys are missing."""
        kind = data.get("type")
        ts = data.get("ts")
        if kind not in EVENT_KINDS or not ts:
            return None
        return cls(
            kind=kind,
            session_id=data.get("session_id") or "",
            timestamp=str(ts),
            file=data.get("file"),
            tool=data.get("tool"),
            transcript_ref=data.get("transcript_path"),
            processed=bool(data.get("processed", False)),
        )

    def to_dict(self) -> dict:
        data = {"type": self.kind, "session_id": self.session_id, "ts": self.timestamp}
        if self.file is not None:
            data["file"] = self.file
        if self.tool is not None:
            data["tool"] = self.tool
        if self.transcript_ref is not None:
            data["transcript_path"] = self.transcript_ref
        if self.processed:
            data["processed"] = True
        return data


@dataclass
class _Cursor:
    lines: int = 0
    last_ts: str = ""


def _dumps(data: dict) -> str:
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False)


def _line_ts(line: str) -> str:
    try:
        data = json.loads(line)
    except ValueError:
        return ""
    return str(data.get("ts", "")) if isinstance(data, dict) else ""


def append_event(log_path: str, event: Union[QueueEvent, dict]) -> bool:
    """Append one event line.  Used by hooks and the CLI; never raises."""
    data = event.to_dict() if isinstance(event, QueueEvent) else dict(event)
    try:
        os.makedirs(os.path.dirname(os.path.abspath(log_path)), exist_ok=True)
        with open(log_path, "a", encoding="utf-8") as f:
            f.write(_dumps(data) + "\n")
        return True
    except OSError as exc:
        logger.warning("[Queue] Could not append event to %s: %s", log_path, exc)
        return False


class EventQueue:
    """
    Parameters
    ----------
    log_path:
        The JSON-lines event log.
    cursor_path:
        Where the read cursor is kept.  Defaults to ``<log_path>.cursor``.
    """

    def __init__(self, log_path: str, cursor_path: Optional[str] = None) -> None:
        self._log_path = log_path
        self._cursor_path = cursor_path or log_path + _CURSOR_SUFFIX
        # Rescan from the top on the first read and after a failed rewrite.
        self._rescan = True

    @property
    def log_path(self) -> str:
        return self._log_path

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def _read_lines(self) -> Optional[list[str]]:
        """Complete, non-blank lines of the log; None on I/O failure."""
        parsed = self._read_log()
        return None if parsed is None else parsed[0]

    def _read_log(self) -> Optional[tuple[list[str], str]]:
        """Complete lines plus the unterminated tail fragment still being
        written (empty when the log ends cleanly); None on I/O failure."""
        try:
            with open(self._log_path, "r", encoding="utf-8") as f:
                text = f.read()
        except FileNotFoundError:
            return [], ""
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("[Queue] Could not read %s: %s", self._log_path, exc)
            return None

        parts = text.split("\n")
        tail = parts.pop()
        # A trailing fragment may be a line still being written; only take
        # it once it parses.
        fragment = ""
        if tail.strip() and _line_ts(tail):
            parts.append(tail)
        else:
            fragment = tail
        return [line for line in parts if line.strip()], fragment

    def read(self) -> list[QueueEvent]:
        """Return unprocessed events appended since the previous read.

        Events come back in file order.  Malformed lines are skipped.  The
        first read of a new queue also returns unprocessed lines behind the
        saved cursor, so events read but never marked before a restart are
        delivered again.
        """
        lines = self._read_lines()
        if lines is None:
            return []

        cursor = self._load_cursor()
        reset = cursor.lines > len(lines) or (
            cursor.lines > 0 and _line_ts(lines[cursor.lines - 1]) != cursor.last_ts
        )
        if reset:
            logger.warning(
                "[Queue] %s was truncated or replaced; reading from the start",
                self._log_path,
            )
            cursor = _Cursor()

        start = 0 if self._rescan else cursor.lines
        self._rescan = False
        events: list[QueueEvent] = []
        for line in lines[start:]:
            try:
                data = json.loads(line)
            except ValueError:
                logger.debug("[Queue] Skipping malformed line: %r", line[:120])
                continue
            event = QueueEvent.from_dict(data) if isinstance(data, dict) else None
            if event is None:
                logger.debug("[Queue] Skipping unrecognised event: %r", line[:120])
                continue
            if not event.processed:
                events.append(event)

        if reset or len(lines) != cursor.lines:
            last_ts = _line_ts(lines[-1]) if lines else ""
            self._save_cursor(_Cursor(lines=len(lines), last_ts=last_ts))
        return events

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def mark_processed(self, events: Iterable[QueueEvent]) -> int:
        """Flip ``processed`` on every line whose timestamp is in *events*.

        Other lines are written back unchanged.  Returns the number of
        lines flipped; I/O errors are logged and yield 0.
        """
        stamps = {e.timestamp for e in events}
        if not stamps:
            return 0
        parsed = self._read_log()
        if not parsed or not parsed[0]:
            self._rescan = True
            return 0
        lines, fragment = parsed

        flipped = 0
        out: list[str] = []
        for line in lines:
            try:
                data = json.loads(line)
            except ValueError:
                out.append(line)
                continue
            if isinstance(data, dict) and str(data.get("ts", "")) in stamps \
                    and not data.get("processed"):
                data["processed"] = True
                out.append(_dumps(data))
                flipped += 1
            else:
                out.append(line)

        try:
            with open(self._log_path, "w", encoding="utf-8") as f:
                f.write("\n".join(out) + "\n" + fragment)
        except OSError as exc:
            logger.warning("[Queue] Could not rewrite %s: %s", self._log_path, exc)
            self._rescan = True
            return 0
        return flipped

    def clear(self) -> None:
        """Empty the log and reset the cursor."""
        try:
            with open(self._log_path, "w", encoding="utf-8"):
                pass
        except OSError as exc:
            logger.warning("[Queue] Could not clear %s: %s", self._log_path, exc)
        self._save_cursor(_Cursor())

    # ------------------------------------------------------------------
    # Cursor persistence
    # ------------------------------------------------------------------

    def _load_cursor(self) -> _Cursor:
        try:
            with open(self._cursor_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return _Cursor(lines=int(data.get("lines", 0)), last_ts=str(data.get("last_ts", "")))
        except FileNotFoundError:
            return _Cursor()
        except (OSError, ValueError, TypeError, AttributeError) as exc:
            logger.warning("[Queue] Ignoring unreadable cursor %s: %s", self._cursor_path, exc)
            return _Cursor()

    def _save_cursor(self, cursor: _Cursor) -> None:
        try:
            with open(self._cursor_path, "w", encoding="utf-8") as f:
                json.dump({"lines": cursor.lines, "last_ts": cursor.last_ts}, f)
        except OSError as exc:
            logger.warning("[Queue] Could not save cursor %s: %s", self._cursor_path, exc)
