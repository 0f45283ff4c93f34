"""
Thin wrappers around things outside the core: the git binary, the
summarization API and session transcripts.  Failures come back as empty
results, never as exceptions.
"""
