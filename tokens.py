"""Token counting and truncation for tool responses."""

import logging
from typing import Any, List, Optional

TRUNCATION_NOTICE = "\n\n[Response truncated due to length]"
DEFAULT_MAX_TOKENS = 20000
# Only used to count tokens, never for inference.
ENCODING_MODEL = "gpt-4"

logger = logging.getLogger("obsidian_rest_mcp.tokens")


class TokenBudgeter:
    """Keeps response text under a token ceiling.

    The tiktoken encoding is loaded on first use unless one is injected.
    Anything with ``encode(str, disallowed_special=()) -> list[int]`` and
    ``decode(list[int]) -> str`` works as an encoding.
    """

    def __init__(self, max_tokens: int = DEFAULT_MAX_TOKENS, encoding: Optional[Any] = None):
        self.max_tokens = max_tokens
        self._encoding = encoding
        self._closed = False

    @property
    def encoding(self) -> Any:
        if self._closed:
            raise RuntimeError("TokenBudgeter is closed")
        if self._encoding is None:
            import tiktoken

            self._encoding = tiktoken.encoding_for_model(ENCODING_MODEL)
        return self._encoding

    def _encode(self, text: str) -> List[int]:
        # Special-token text in notes is ordinary content.
        return self.encoding.encode(text, disallowed_special=())

    def count_tokens(self, text: str) -> int:
        return len(self._encode(text))

    def truncate(self, text: str, limit: Optional[int] = None) -> str:
        """Return ``text`` cut to ``limit`` tokens, notice included, if it is too long."""
        limit = self.max_tokens if limit is None else limit
        tokens = self._encode(text)
        if len(tokens) <= limit:
            return text
        available = max(limit - len(self._encode(TRUNCATION_NOTICE)), 0)
        return self.encoding.decode(tokens[:available]) + TRUNCATION_NOTICE

    def close(self) -> None:
        """Drop the tokenizer. Safe to call more than once."""
        if not self._closed:
            self._closed = True
            self._encoding = None
            logger.debug("Tokenizer released")
