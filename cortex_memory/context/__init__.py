"""Relevance scoring and assembly of the session-start context block."""
