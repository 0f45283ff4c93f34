"""
Pure text analysis: unified diff parsing, function-level chunking and
near-duplicate detection.  No I/O, no store access.
"""
