"""
Knowledge store schema: base tables, full-text shadow tables and the
versioned list of additive migrations.
"""

from __future__ import annotations

from dataclasses import dataclass

SCHEMA_VERSION = 3

SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER PRIMARY KEY,
    applied_at  TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS sessions (
    id                TEXT PRIMARY KEY,
    started_at        TEXT NOT NULL,
    ended_at          TEXT,
    duration_seconds  INTEGER,
    summary           TEXT,
    key_changes       TEXT,
    chain_id          TEXT,
    chain_label       TEXT,
    status            TEXT NOT NULL DEFAULT 'active',
    tags              TEXT
);

CREATE TABLE IF NOT EXISTS decisions (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id      TEXT,
    created_at      TEXT NOT NULL,
    category        TEXT NOT NULL DEFAULT 'architecture',
    title           TEXT NOT NULL,
    reasoning       TEXT NOT NULL DEFAULT '',
    alternatives    TEXT,
    files_affected  TEXT,
    superseded_by   INTEGER REFERENCES decisions(id),
    confidence      TEXT NOT NULL DEFAULT 'high',
    access_count    INTEGER NOT NULL DEFAULT 0,
    last_accessed   TEXT,
    archived_at     TEXT
);

CREATE TABLE IF NOT EXISTS errors (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id       TEXT,
    first_seen       TEXT NOT NULL,
    last_seen        TEXT NOT NULL,
    occurrences      INTEGER NOT NULL DEFAULT 1,
    error_signature  TEXT NOT NULL UNIQUE,
    error_message    TEXT NOT NULL,
    root_cause       TEXT,
    fix_description  TEXT,
    fix_diff         TEXT,
    files_involved   TEXT,
    prevention_rule  TEXT,
    severity         TEXT NOT NULL DEFAULT 'medium',
    access_count     INTEGER NOT NULL DEFAULT 0,
    last_accessed    TEXT,
    archived_at      TEXT
);

CREATE TABLE IF NOT EXISTS learnings (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id       TEXT,
    created_at       TEXT NOT NULL,
    anti_pattern     TEXT NOT NULL,
    correct_pattern  TEXT NOT NULL,
    detection_regex  TEXT,
    context          TEXT,
    severity         TEXT NOT NULL DEFAULT 'medium',
    occurrences      INTEGER NOT NULL DEFAULT 1,
    auto_block       INTEGER NOT NULL DEFAULT 0,
    access_count     INTEGER NOT NULL DEFAULT 0,
    last_accessed    TEXT,
    archived_at      TEXT
);

CREATE TABLE IF NOT EXISTS unfinished (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id        TEXT,
    created_at        TEXT NOT NULL,
    description       TEXT NOT NULL,
    context           TEXT,
    priority          TEXT NOT NULL DEFAULT 'medium',
    resolved_at       TEXT,
    resolved_session  TEXT,
    blocked_by        TEXT
);

CREATE TABLE IF NOT EXISTS project_files (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    path                  TEXT NOT NULL UNIQUE,
    file_type             TEXT,
    description           TEXT,
    change_count          INTEGER NOT NULL DEFAULT 0,
    error_count           INTEGER NOT NULL DEFAULT 0,
    last_changed          TEXT,
    last_changed_session  TEXT
);

CREATE TABLE IF NOT EXISTS dependencies (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    source_file  TEXT NOT NULL,
    target_file  TEXT NOT NULL,
    import_type  TEXT NOT NULL DEFAULT 'static',
    symbols      TEXT,
    UNIQUE(source_file, target_file)
);

CREATE TABLE IF NOT EXISTS diffs (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id     TEXT,
    file_path      TEXT NOT NULL,
    diff_content   TEXT NOT NULL,
    change_type    TEXT NOT NULL DEFAULT 'modified',
    lines_added    INTEGER NOT NULL DEFAULT 0,
    lines_removed  INTEGER NOT NULL DEFAULT 0,
    created_at     TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS agent_runs (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    agent_name     TEXT NOT NULL,
    session_id     TEXT,
    started_at     TEXT NOT NULL,
    finished_at    TEXT,
    success        INTEGER,
    error_message  TEXT,
    duration_ms    INTEGER,
    items_saved    INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS health_snapshots (
    id       INTEGER PRIMARY KEY AUTOINCREMENT,
    date     TEXT NOT NULL UNIQUE,
    score    INTEGER NOT NULL,
    metrics  TEXT NOT NULL,
    trend    TEXT NOT NULL DEFAULT 'stable'
);

CREATE INDEX IF NOT EXISTS idx_sessions_started   ON sessions(started_at);
CREATE INDEX IF NOT EXISTS idx_sessions_chain     ON sessions(chain_id);
CREATE INDEX IF NOT EXISTS idx_decisions_category ON decisions(category);
CREATE INDEX IF NOT EXISTS idx_errors_signature   ON errors(error_signature);
CREATE INDEX IF NOT EXISTS idx_learnings_block    ON learnings(auto_block);
CREATE INDEX IF NOT EXISTS idx_unfinished_open    ON unfinished(resolved_at);
CREATE INDEX IF NOT EXISTS idx_diffs_file         ON diffs(file_path);
CREATE INDEX IF NOT EXISTS idx_diffs_session      ON diffs(session_id);
CREATE INDEX IF NOT EXISTS idx_deps_source        ON dependencies(source_file);
CREATE INDEX IF NOT EXISTS idx_deps_target        ON dependencies(target_file);
CREATE INDEX IF NOT EXISTS idx_agent_runs_name    ON agent_runs(agent_name, started_at);
"""


# (version, statements).  Column adds may already be present on
# databases created from the current SCHEMA; those errors are tolerated.
MIGRATIONS: list[tuple[int, list[str]]] = [
    (2, [
        "ALTER TABLE decisions ADD COLUMN access_count INTEGER NOT NULL DEFAULT 0",
        "ALTER TABLE decisions ADD COLUMN last_accessed TEXT",
        "ALTER TABLE decisions ADD COLUMN archived_at TEXT",
        "ALTER TABLE errors ADD COLUMN access_count INTEGER NOT NULL DEFAULT 0",
        "ALTER TABLE errors ADD COLUMN last_accessed TEXT",
        "ALTER TABLE errors ADD COLUMN archived_at TEXT",
        "ALTER TABLE learnings ADD COLUMN access_count INTEGER NOT NULL DEFAULT 0",
        "ALTER TABLE learnings ADD COLUMN last_accessed TEXT",
        "ALTER TABLE learnings ADD COLUMN archived_at TEXT",
    ]),
    (3, [
        "ALTER TABLE agent_runs ADD COLUMN items_saved INTEGER NOT NULL DEFAULT 0",
        "ALTER TABLE unfinished ADD COLUMN blocked_by TEXT",
    ]),
]


@dataclass(frozen=True)
class FtsTable:
    """A base table and the full-text shadow table that mirrors it."""
    base: str
    shadow: str
    columns: tuple[str, ...]
    # Set on tables supporting soft delete; search hides archived rows.
    archivable: bool = False

    @property
    def ddl(self) -> str:
        cols = ", ".join(self.columns)
        return f"CREATE VIRTUAL TABLE IF NOT EXISTS {self.shadow} USING fts5({cols})"


FTS_TABLES: dict[str, FtsTable] = {
    t.base: t
    for t in (
        FtsTable("sessions", "sessions_fts", ("summary", "key_changes")),
        FtsTable("decisions", "decisions_fts", ("title", "reasoning"), archivable=True),
        FtsTable("errors", "errors_fts",
                 ("error_message", "root_cause", "fix_description"), archivable=True),
        FtsTable("learnings", "learnings_fts",
                 ("anti_pattern", "correct_pattern", "context"), archivable=True),
        FtsTable("unfinished", "unfinished_fts", ("description", "context")),
    )
}
