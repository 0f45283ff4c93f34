"""Tests for function-level attribution of diff hunks."""

import re

import pytest

from cortex_memory.analysis import chunker
from cortex_memory.analysis.chunker import (
    MODULE_LEVEL, BoundaryPattern, chunk_by_functions, detect_boundary,
    summarize_function_changes,
)
from cortex_memory.analysis.diff_parser import parse_diff


@pytest.mark.parametrize("line, name", [
    ("export function render(props) {", "render"),
    ("export async function load() {", "load"),
    ("function helper(a, b) {", "helper"),
    ("export class Store {", "Store"),
    ("class Parser:", "Parser"),
    ("const onClick = (event) => {", "onClick"),
    ("export const fetchAll = async (url) => {", "fetchAll"),
    ("    def run(self):", "run"),
    ("async def main():", "main"),
    ("func (s *Server) Serve(addr string) error {", "Serve"),
    ("func main() {", "main"),
])
def test_detect_boundary(line, name):
    assert detect_boundary(line) == name


@pytest.mark.parametrize("line", [
    "x = compute()",
    "    return value",
    "// function in a comment? no, not at start",
])
def test_no_boundary(line):
    assert detect_boundary(line) is None


def test_keyword_capture_falls_through_to_next_pattern(monkeypatch):
    patterns = [
        BoundaryPattern("loose-call", re.compile(r"^\s*(\w+)\s*\(")),
        BoundaryPattern("js-function", re.compile(r"^\s*\w+\s*\(.*function\s+(\w+)")),
    ]
    monkeypatch.setattr(chunker, "BOUNDARY_PATTERNS", patterns)
    assert detect_boundary("if (ready) function onReady() {") == "onReady"
    assert detect_boundary("while (true) {") is None


class TestChunkByFunctions:

    def test_hunk_attributed_to_function(self):
        text = (
            "diff --git a/m.py b/m.py\n"
            "@@ -1,3 +1,4 @@\n"
            " def foo():\n"
            "-    return 1\n"
            "+    x = 2\n"
            "+    return x\n"
        )
        chunks = chunk_by_functions(parse_diff(text)[0])
        assert len(chunks) == 1
        assert chunks[0].function_name == "foo"
        assert chunks[0].lines_added == 2
        assert chunks[0].lines_removed == 1
        assert chunks[0].start_line == 1

    def test_module_level_when_no_boundary(self):
        text = "diff --git a/m.py b/m.py\n@@ -1,1 +1,2 @@\n import os\n+import sys\n"
        chunks = chunk_by_functions(parse_diff(text)[0])
        assert [c.function_name for c in chunks] == [MODULE_LEVEL]

    def test_same_name_hunks_merge(self):
        text = (
            "diff --git a/m.py b/m.py\n"
            "@@ -1,2 +1,2 @@\n"
            " def foo():\n"
            "-    a = 1\n"
            "+    a = 2\n"
            "@@ -20,2 +20,3 @@\n"
            " def foo():\n"
            "+    b = 3\n"
        )
        chunks = chunk_by_functions(parse_diff(text)[0])
        assert len(chunks) == 1
        assert len(chunks[0].hunks) == 2
        assert chunks[0].lines_added == 2
        assert chunks[0].start_line == 1

    def test_last_boundary_wins(self):
        text = (
            "diff --git a/m.py b/m.py\n"
            "@@ -1,4 +1,5 @@\n"
            " def first():\n"
            "+    pass\n"
            " def second():\n"
            "+    pass\n"
        )
        chunks = chunk_by_functions(parse_diff(text)[0])
        assert [c.function_name for c in chunks] == ["second"]


def test_summarize_function_changes():
    text = (
        "diff --git a/m.py b/m.py\n"
        "@@ -1,2 +1,2 @@\n"
        " def foo():\n"
        "-    a = 1\n"
        "+    a = 2\n"
    )
    assert summarize_function_changes(parse_diff(text)[0]) == "m.py -> foo() +1/-1"


def test_summarize_without_hunks():
    diff = parse_diff("diff --git a/bin.dat b/bin.dat\nBinary files differ\n")[0]
    assert summarize_function_changes(diff) == "bin.dat: no changes"
