"""
Google Gemini summarizer — calls the Gemini REST API directly.

Used to turn a session's raw record into a short summary.  Any failure
(no key, network, bad response) yields None; callers keep their fallback.
"""

from __future__ import annotations

import logging
from typing import Optional

import requests

logger = logging.getLogger(__name__)

MAX_INPUT_CHARS = 120_000
DEFAULT_TIMEOUT = 20
DEFAULT_MAX_OUTPUT_TOKENS = 600


class Summarizer:
    def __init__(
        self,
        api_key: str,
        model: str = "gemini-1.5-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_config(cls, cfg) -> Optional["Summarizer"]:
        """Build from a :class:`~cortex_memory.config.Config`; None without a key."""
        if not cfg.GEMINI_API_KEY:
            return None
        return cls(cfg.GEMINI_API_KEY, cfg.GEMINI_MODEL, cfg.GEMINI_BASE_URL)

    def summarize(
        self,
        title: str,
        text: str,
        instructions: str = "Summarize concisely.",
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
    ) -> Optional[str]:
        prompt = f"Task: {title}\n{instructions}\n\n{(text or '')[:MAX_INPUT_CHARS]}"
        payload = {
            "contents": [
                {
                    "parts": [{"text": prompt}]
                }
            ],
            "generationConfig": {
                "temperature": 0.2,
                "maxOutputTokens": max_output_tokens,
            },
        }
        url = f"{self.base_url}/models/{self.model}:generateContent?key={self.api_key}"
        try:
            response = requests.post(url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.debug("[Gemini] Summarization failed: %s", exc)
            return None

        try:
            parts = data["candidates"][0]["content"]["parts"]
            text_out = "".join(p.get("text") or "" for p in parts).strip()
        except (AttributeError, TypeError, KeyError, IndexError) as exc:
            logger.debug("[Gemini] Unexpected response shape: %s", exc)
            return None
        return text_out or None
